import sys
from typing import List

from category_mapper.dbs.taxonomy_index import TaxonomyIndex, strip_gid
from category_mapper.exception import CustomException, NavigationError
from category_mapper.llm.base import OracleSession, SelectionOracle
from category_mapper.logger import get_logger
from category_mapper.models import Category, NavigationResult, SelectionOption

logger = get_logger(__name__)

OTHER_OPTION = "Other (use parent category)"
VERTICAL_LABEL = "top-level category"
CHILD_LABEL = "child category"
DEFAULT_MAX_TURNS = 32


class DrillDownNavigator:
    """
    Walks the taxonomy from a vertical root down to a leaf, one oracle turn per level:

    1. SelectVertical: choose among all top-level verticals
    2. SelectChild (repeated): choose among the current node's children, or
       stop at the current node via the "Other (use parent category)" option
    3. Terminal: leaf reached (high), parent fallback (medium), or NavigationError

    Each navigation opens its own oracle session, so the transcript lives
    exactly as long as the walk. The walk also pins the taxonomy version it
    started on; a reload mid-walk only affects later navigations.
    """

    def __init__(self, taxonomy: TaxonomyIndex, oracle: SelectionOracle, max_turns: int = DEFAULT_MAX_TURNS):
        if max_turns < 1:
            raise NavigationError(f"max_turns must be at least 1, got {max_turns}")
        self.taxonomy = taxonomy
        self.oracle = oracle
        self.max_turns = max_turns

    def navigate(self, query: str) -> NavigationResult:
        """Runs a full drill-down for `query`. Never consults or writes any cache."""
        try:
            with self.oracle.session() as session:
                return self._walk(query, session, self.taxonomy.pinned())
        except CustomException:
            raise
        except Exception as e:
            logger.error(f"Navigation failed for '{query}': {e}")
            raise NavigationError(e, sys)

    # ------------------------------------------------------------------
    # STATES
    # ------------------------------------------------------------------
    def _walk(self, query: str, session: OracleSession, taxonomy: TaxonomyIndex) -> NavigationResult:
        turns = 0
        path: List[str] = []

        # Turn 1: top-level vertical
        verticals = taxonomy.get_verticals()
        if not verticals:
            raise NavigationError("Taxonomy has no verticals to navigate.")

        logger.info(f"  [Turn {turns + 1}] Selecting top-level vertical from {len(verticals)} options...")
        selected = session.select(query, [SelectionOption(name=v.name) for v in verticals], VERTICAL_LABEL)
        turns += 1

        vertical = next((v for v in verticals if v.name == selected), None)
        if vertical is None or vertical.root_category is None:
            raise NavigationError(f"Could not resolve vertical '{selected}' to a root category.")

        path.append(vertical.name)
        current_id = vertical.root_category.id
        logger.info(f"    └─ Selected: {vertical.name}")

        # Turn 2+: drill down until a leaf or the parent fallback
        while True:
            category = taxonomy.get_category(current_id)
            if category is None:
                raise NavigationError(f"Category '{current_id}' disappeared mid-walk.")

            children = taxonomy.get_children(category.id)
            if not children:
                return self._terminal(
                    category,
                    confidence="high",
                    reasoning=f"Reached leaf category at level {category.level}",
                    turns=turns,
                    path=path,
                )

            if turns >= self.max_turns:
                raise NavigationError(
                    f"Navigation exceeded {self.max_turns} turns at '{category.full_name}'."
                )

            logger.info(f"  [Turn {turns + 1}] Selecting from {len(children)} children of '{category.name}'...")
            options = [
                SelectionOption(name=child.name, is_leaf=not taxonomy.get_children(child.id))
                for child in children
            ]
            options.append(SelectionOption(name=OTHER_OPTION, is_leaf=True))

            selected = session.select(query, options, CHILD_LABEL)
            turns += 1

            if selected == OTHER_OPTION:
                logger.info(f'    └─ Selected: Other (using parent category "{category.name}")')
                return self._terminal(
                    category,
                    confidence="medium",
                    reasoning=f'Used parent category "{category.name}" - subcategories too specific',
                    turns=turns,
                    path=path,
                )

            child = next((c for c in children if c.name == selected), None)
            if child is None:
                raise NavigationError(
                    f"Could not find child category '{selected}' under '{category.full_name}'."
                )

            path.append(child.name)
            current_id = child.id
            logger.info(f"    └─ Selected: {child.name}")

    @staticmethod
    def _terminal(category: Category, confidence: str, reasoning: str, turns: int, path: List[str]) -> NavigationResult:
        return NavigationResult(
            category_id=strip_gid(category.id),
            full_name=category.full_name,
            confidence=confidence,
            reasoning=reasoning,
            turns=turns,
            path=list(path),
        )
