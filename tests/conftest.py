import os

os.environ.setdefault("LOG_TO_FILE", "0")

import pytest

from category_mapper.dbs.mapping_cache import InMemoryMappingStore, MappingCache
from category_mapper.dbs.taxonomy_index import GID_PREFIX, TaxonomyIndex
from category_mapper.llm.base import OracleSession, SelectionOracle
from category_mapper.models import Category, CategoryRef, TaxonomySnapshot, VerticalSnapshot


def make_vertical(name, prefix, tree):
    """
    Build a VerticalSnapshot from a nested (name, children) tree.
    Ids follow the Shopify scheme: el, el-1, el-1-2, ...
    """
    categories = []

    def walk(node_name, node_id, children, level, ancestors, parent_id):
        child_ids = [f"{node_id}-{i}" for i in range(1, len(children) + 1)]
        categories.append(
            Category(
                id=GID_PREFIX + node_id,
                level=level,
                name=node_name,
                full_name=" > ".join([a.name for a in ancestors] + [node_name]),
                parent_id=GID_PREFIX + parent_id if parent_id else None,
                children=[CategoryRef(id=GID_PREFIX + cid, name=c[0]) for cid, c in zip(child_ids, children)],
                ancestors=list(ancestors),
            )
        )
        own_ref = CategoryRef(id=GID_PREFIX + node_id, name=node_name)
        for cid, (child_name, grandchildren) in zip(child_ids, children):
            walk(child_name, cid, grandchildren, level + 1, ancestors + [own_ref], node_id)

    walk(name, prefix, tree, 0, [], None)
    return VerticalSnapshot(name=name, prefix=prefix, categories=categories)


class ScriptedSession(OracleSession):
    def __init__(self, oracle):
        self.oracle = oracle
        self.closed = False

    def select(self, query, options, label):
        self.oracle.calls.append({"query": query, "options": list(options), "label": label})
        if callable(self.oracle.answers):
            return self.oracle.answers(query, [o.name for o in options], label)
        if not self.oracle.answers:
            raise AssertionError(f"Oracle asked more turns than scripted (label={label})")
        return self.oracle.answers.pop(0)

    def close(self):
        self.closed = True


class ScriptedOracle(SelectionOracle):
    """Answers turns from a list (or a callable) and records what it was offered."""

    def __init__(self, answers=None):
        self.answers = list(answers or []) if not callable(answers) else answers
        self.calls = []
        self.sessions = []

    def new_session(self):
        session = ScriptedSession(self)
        self.sessions.append(session)
        return session


@pytest.fixture
def scenario_snapshot():
    """Electronics -> {Computers, Phones}, Furniture -> {Chairs}; every level-1 node is a leaf."""
    return TaxonomySnapshot(
        version="2024-07",
        verticals=[
            make_vertical("Electronics", "el", [("Computers", []), ("Phones", [])]),
            make_vertical("Furniture", "fr", [("Chairs", [])]),
        ],
    )


@pytest.fixture
def scenario_index(scenario_snapshot):
    return TaxonomyIndex(scenario_snapshot)


@pytest.fixture
def deep_snapshot():
    return TaxonomySnapshot(
        version="2024-07",
        verticals=[
            make_vertical(
                "Electronics",
                "el",
                [
                    ("Computers", [("Laptops", []), ("Desktop Computers", [("Gaming Desktops", [])])]),
                    ("Phones", [("Mobile Phones", []), ("Phone Cases", [])]),
                ],
            ),
            make_vertical(
                "Home & Garden",
                "hg",
                [("Kitchen", [("Cookware", [("Frying Pans", [])])]), ("Laptops Stands", [])],
            ),
        ],
    )


@pytest.fixture
def deep_index(deep_snapshot):
    return TaxonomyIndex(deep_snapshot)


@pytest.fixture
def memory_cache():
    return MappingCache(InMemoryMappingStore())
