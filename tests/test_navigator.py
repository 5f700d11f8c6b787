import pytest

from category_mapper.agents.navigator import CHILD_LABEL, OTHER_OPTION, VERTICAL_LABEL, DrillDownNavigator
from category_mapper.exception import NavigationError, OracleContractError
from category_mapper.llm.base import OracleSession, SelectionOracle
from category_mapper.models import TaxonomySnapshot

from conftest import ScriptedOracle, make_vertical


def test_leaf_scenario(scenario_index):
    oracle = ScriptedOracle(["Electronics", "Computers"])
    result = DrillDownNavigator(scenario_index, oracle).navigate("Laptop computers")

    assert result.category_id == "el-1"
    assert result.full_name == "Electronics > Computers"
    assert result.confidence == "high"
    assert result.turns == 2
    assert result.reasoning == "Reached leaf category at level 1"
    assert result.path == ["Electronics", "Computers"]


def test_parent_fallback_scenario(scenario_index):
    oracle = ScriptedOracle(["Electronics", OTHER_OPTION])
    result = DrillDownNavigator(scenario_index, oracle).navigate("Gadgets")

    assert result.category_id == "el"
    assert result.full_name == "Electronics"
    assert result.confidence == "medium"
    assert result.turns == 2
    assert '"Electronics"' in result.reasoning
    # No deeper turn after the fallback.
    assert len(oracle.calls) == 2


def test_first_turn_offers_plain_vertical_names(scenario_index):
    oracle = ScriptedOracle(["Furniture", "Chairs"])
    DrillDownNavigator(scenario_index, oracle).navigate("Office chair")

    first = oracle.calls[0]
    assert first["label"] == VERTICAL_LABEL
    assert [o.name for o in first["options"]] == ["Electronics", "Furniture"]
    assert not any(o.is_leaf for o in first["options"])


def test_child_turn_annotates_leaves_and_appends_other(deep_index):
    oracle = ScriptedOracle(["Electronics", "Computers", "Laptops"])
    DrillDownNavigator(deep_index, oracle).navigate("MacBook Air")

    second = oracle.calls[1]
    assert second["label"] == CHILD_LABEL
    assert [(o.name, o.is_leaf) for o in second["options"]] == [
        ("Computers", False),
        ("Phones", False),
        (OTHER_OPTION, True),
    ]

    third = oracle.calls[2]
    assert [(o.name, o.is_leaf) for o in third["options"]] == [
        ("Laptops", True),
        ("Desktop Computers", False),
        (OTHER_OPTION, True),
    ]


def test_leaf_reached_without_extra_turn(deep_index):
    oracle = ScriptedOracle(["Electronics", "Computers", "Desktop Computers", "Gaming Desktops"])
    result = DrillDownNavigator(deep_index, oracle).navigate("RGB gaming tower")

    assert result.category_id == "el-1-2-1"
    assert result.confidence == "high"
    assert result.turns == 4
    assert oracle.answers == []


def test_turns_bounded_by_tree_depth(deep_index):
    # Deepest branch is 4 levels (Home & Garden > Kitchen > Cookware > Frying Pans).
    def always_first_real_option(query, names, label):
        return names[0]

    oracle = ScriptedOracle(always_first_real_option)
    result = DrillDownNavigator(deep_index, oracle).navigate("anything")

    assert result.turns <= 4
    assert len(oracle.calls) == result.turns


def test_fallback_at_deeper_level_returns_current_category(deep_index):
    oracle = ScriptedOracle(["Home & Garden", "Kitchen", OTHER_OPTION])
    result = DrillDownNavigator(deep_index, oracle).navigate("Kitchen gadgets")

    assert result.category_id == "hg-1"
    assert result.full_name == "Home & Garden > Kitchen"
    assert result.confidence == "medium"
    assert result.turns == 3


def test_unknown_child_name_is_fatal(scenario_index):
    oracle = ScriptedOracle(["Electronics", "C"])

    with pytest.raises(NavigationError, match="Could not find child category 'C'"):
        DrillDownNavigator(scenario_index, oracle).navigate("Something")


def test_unknown_vertical_is_fatal(scenario_index):
    oracle = ScriptedOracle(["Toys"])

    with pytest.raises(NavigationError, match="Could not resolve vertical 'Toys'"):
        DrillDownNavigator(scenario_index, oracle).navigate("Lego")


def test_vertical_fallback_option_not_accepted(scenario_index):
    oracle = ScriptedOracle([OTHER_OPTION])

    with pytest.raises(NavigationError):
        DrillDownNavigator(scenario_index, oracle).navigate("Lego")


def test_oracle_contract_error_propagates(scenario_index):
    class RejectingSession(OracleSession):
        def select(self, query, options, label):
            raise OracleContractError("answer not in option set")

    class RejectingOracle(SelectionOracle):
        def new_session(self):
            return RejectingSession()

    with pytest.raises(OracleContractError):
        DrillDownNavigator(scenario_index, RejectingOracle()).navigate("Lego")


def test_unexpected_oracle_failure_becomes_navigation_error(scenario_index):
    def explode(query, names, label):
        raise RuntimeError("connection reset")

    with pytest.raises(NavigationError, match="connection reset"):
        DrillDownNavigator(scenario_index, ScriptedOracle(explode)).navigate("Lego")


def test_max_turns_ceiling(deep_index):
    oracle = ScriptedOracle(["Electronics", "Computers", "Desktop Computers"])

    with pytest.raises(NavigationError, match="exceeded 2 turns"):
        DrillDownNavigator(deep_index, oracle, max_turns=2).navigate("Gaming PC")


def test_invalid_max_turns(scenario_index):
    with pytest.raises(NavigationError):
        DrillDownNavigator(scenario_index, ScriptedOracle(), max_turns=0)


def test_empty_taxonomy_is_fatal():
    from category_mapper.dbs.taxonomy_index import TaxonomyIndex

    index = TaxonomyIndex(TaxonomySnapshot(version="empty", verticals=[]))
    with pytest.raises(NavigationError, match="no verticals"):
        DrillDownNavigator(index, ScriptedOracle()).navigate("Lego")


def test_vertical_root_that_is_a_leaf():
    from category_mapper.dbs.taxonomy_index import TaxonomyIndex

    index = TaxonomyIndex(TaxonomySnapshot(verticals=[make_vertical("Gift Cards", "gc", [])]))
    oracle = ScriptedOracle(["Gift Cards"])
    result = DrillDownNavigator(index, oracle).navigate("Amazon gift card")

    assert result.category_id == "gc"
    assert result.confidence == "high"
    assert result.turns == 1
    assert result.reasoning == "Reached leaf category at level 0"


def test_each_navigation_gets_its_own_session(scenario_index):
    oracle = ScriptedOracle(["Electronics", "Phones", "Furniture", "Chairs"])
    navigator = DrillDownNavigator(scenario_index, oracle)

    navigator.navigate("iPhone")
    navigator.navigate("Stool")

    assert len(oracle.sessions) == 2
    assert all(s.closed for s in oracle.sessions)


def test_session_closed_on_failure(scenario_index):
    oracle = ScriptedOracle(["Electronics", "C"])

    with pytest.raises(NavigationError):
        DrillDownNavigator(scenario_index, oracle).navigate("Something")

    assert oracle.sessions[0].closed


def test_reload_mid_walk_does_not_mix_versions(scenario_snapshot):
    from category_mapper.dbs.taxonomy_index import TaxonomyIndex

    index = TaxonomyIndex(scenario_snapshot)
    v2 = TaxonomySnapshot(
        version="2025-01",
        verticals=[make_vertical("Electronics", "el", [("Televisions", [])])],
    )

    def answer(query, names, label):
        if label == VERTICAL_LABEL:
            index.load(v2)
            return "Electronics"
        return "Televisions" if "Televisions" in names else "Computers"

    oracle = ScriptedOracle(answer)
    navigator = DrillDownNavigator(index, oracle)
    result = navigator.navigate("Laptop")

    assert index.version == "2025-01"
    assert result.full_name == "Electronics > Computers"
    assert [o.name for o in oracle.calls[1]["options"]] == ["Computers", "Phones", OTHER_OPTION]

    oracle.answers = lambda query, names, label: "Electronics" if label == VERTICAL_LABEL else "Televisions"
    assert navigator.navigate("OLED TV").full_name == "Electronics > Televisions"
