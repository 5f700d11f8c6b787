"""
taxonomy_index.py

In-memory read model over one taxonomy snapshot.

Responsibilities:
    - Resolve categories by canonical id (gid://...) or bare alias id
    - Serve ordered children / ancestors / verticals
    - Name search, globally or inside one subtree

The index is built once per snapshot and never mutated afterwards. `load()`
builds a complete new state and swaps it in with a single assignment, so
readers running concurrently see either the old tree or the new one.

Dangling child / ancestor references are dropped while building, so lookups
never need to re-check them.
"""

from collections import deque
from typing import Dict, List, Optional, Tuple

from category_mapper.logger import get_logger
from category_mapper.models import (
    Category,
    CategoryMetadata,
    SearchResult,
    TaxonomySnapshot,
    Vertical,
)

logger = get_logger(__name__)

GID_PREFIX = "gid://shopify/TaxonomyCategory/"

EXACT_SCORE = 100
PREFIX_SCORE = 80
SUFFIX_SCORE = 75
SEGMENT_SCORE = 70
PARTIAL_SCORE = 50


def strip_gid(category_id: str) -> str:
    """'gid://shopify/TaxonomyCategory/el-1' -> 'el-1'. Bare ids pass through."""
    if category_id.startswith(GID_PREFIX):
        return category_id[len(GID_PREFIX):]
    return category_id


def to_gid(category_id: str) -> str:
    if category_id.startswith(GID_PREFIX):
        return category_id
    return f"{GID_PREFIX}{category_id}"


def _partial_score(category: Category, query: str) -> Optional[int]:
    """Substring score for an already lower-cased query, or None when it does not match."""
    name = category.name.lower()
    full_name = category.full_name.lower()

    if query not in name and query not in full_name:
        return None

    score = PARTIAL_SCORE
    if name.startswith(query):
        score = PREFIX_SCORE
    if f" > {query}" in full_name:
        score = SEGMENT_SCORE
    if full_name.endswith(query):
        score = SUFFIX_SCORE
    return score


def _rank(results: List[SearchResult], limit: int) -> List[SearchResult]:
    # Deeper categories win ties: they are the more specific answer.
    results.sort(key=lambda r: (-r.score, -r.category.level))
    return results[:max(limit, 0)]


class _IndexState:
    """Everything derived from one snapshot. Built once, then read-only."""

    def __init__(self, snapshot: TaxonomySnapshot):
        self.version = snapshot.version
        self.categories: List[Category] = []
        self.by_id: Dict[str, Category] = {}
        self.by_name: Dict[str, List[Category]] = {}
        self.children: Dict[str, Tuple[Category, ...]] = {}
        self.ancestors: Dict[str, Tuple[Category, ...]] = {}
        self.verticals: List[Vertical] = []

        self._index_categories(snapshot)
        self._resolve_references()
        self._resolve_verticals(snapshot)

    # ----------------------------------------------------------------------
    # BUILD STEPS
    # ----------------------------------------------------------------------
    def _index_categories(self, snapshot: TaxonomySnapshot):
        for vertical in snapshot.verticals:
            for category in vertical.categories:
                if category.id in self.by_id:
                    logger.warning(f"Duplicate category id '{category.id}' in snapshot. Keeping the first one.")
                    continue

                self.categories.append(category)
                self.by_id[category.id] = category
                self.by_id.setdefault(strip_gid(category.id), category)

                name = category.name.lower()
                full_name = category.full_name.lower()
                self.by_name.setdefault(name, []).append(category)
                if full_name != name:
                    self.by_name.setdefault(full_name, []).append(category)

    def _resolve_references(self):
        dropped = 0
        for category in self.categories:
            children = []
            for ref in category.children:
                child = self.by_id.get(ref.id)
                if child is None:
                    dropped += 1
                    logger.debug(f"Dropping unresolved child '{ref.id}' of '{category.id}'.")
                    continue
                children.append(child)
            self.children[category.id] = tuple(children)

            ancestors = []
            for ref in category.ancestors:
                ancestor = self.by_id.get(ref.id)
                if ancestor is None:
                    dropped += 1
                    logger.debug(f"Dropping unresolved ancestor '{ref.id}' of '{category.id}'.")
                    continue
                ancestors.append(ancestor)
            self.ancestors[category.id] = tuple(ancestors)

        if dropped:
            logger.warning(f"Dropped {dropped} dangling category references while building the index.")

    def _resolve_verticals(self, snapshot: TaxonomySnapshot):
        for vertical in snapshot.verticals:
            root = self.by_id.get(to_gid(vertical.prefix)) or self.by_id.get(vertical.prefix)
            if root is None:
                # Snapshots that do not key roots by prefix still have exactly one level-0 node per vertical.
                root = next((c for c in vertical.categories if c.level == 0 and c.id in self.by_id), None)
            if root is None:
                logger.warning(f"Vertical '{vertical.name}' ({vertical.prefix}) has no root category.")
            self.verticals.append(Vertical(name=vertical.name, prefix=vertical.prefix, root_category=root))


class TaxonomyIndex:
    """Lookup and search over the category tree of one taxonomy version."""

    def __init__(self, snapshot: Optional[TaxonomySnapshot] = None):
        self._state: Optional[_IndexState] = None
        if snapshot is not None:
            self.load(snapshot)

    @classmethod
    def from_file(cls, path: str) -> "TaxonomyIndex":
        from category_mapper.sync.taxonomy_loader import load_taxonomy_file

        return cls(load_taxonomy_file(path))

    def load(self, snapshot: TaxonomySnapshot) -> None:
        """Build indices for `snapshot` and replace the current tree wholesale."""
        state = _IndexState(snapshot)
        self._state = state
        logger.info(
            f"Taxonomy {state.version} loaded: {len(state.categories)} categories "
            f"in {len(state.verticals)} verticals."
        )

    def pinned(self) -> "TaxonomyIndex":
        """
        Index fixed on the tree loaded right now. Later `load()` calls on this
        index do not reach it, so a multi-step walk sees a single version.
        """
        view = TaxonomyIndex()
        view._state = self._state
        return view

    # ----------------------------------------------------------------------
    # METADATA
    # ----------------------------------------------------------------------
    @property
    def is_loaded(self) -> bool:
        return self._state is not None

    @property
    def version(self) -> str:
        return self._state.version if self._state else "unknown"

    def category_count(self) -> int:
        return len(self._state.categories) if self._state else 0

    def all_categories(self) -> List[Category]:
        return list(self._state.categories) if self._state else []

    # ----------------------------------------------------------------------
    # LOOKUPS
    # ----------------------------------------------------------------------
    def get_category(self, category_id: str) -> Optional[Category]:
        state = self._state
        if state is None or not category_id:
            return None
        return state.by_id.get(category_id)

    def get_children(self, category_id: str) -> List[Category]:
        state = self._state
        category = state.by_id.get(category_id) if state and category_id else None
        if category is None:
            return []
        return list(state.children.get(category.id, ()))

    def get_ancestors(self, category_id: str) -> List[Category]:
        state = self._state
        category = state.by_id.get(category_id) if state and category_id else None
        if category is None:
            return []
        return list(state.ancestors.get(category.id, ()))

    def get_verticals(self) -> List[Vertical]:
        return list(self._state.verticals) if self._state else []

    def get_metadata(self, category_id: str) -> Optional[CategoryMetadata]:
        state = self._state
        category = state.by_id.get(category_id) if state and category_id else None
        if category is None:
            return None
        children = state.children.get(category.id, ())
        return CategoryMetadata(
            id=strip_gid(category.id),
            name=category.name,
            full_name=category.full_name,
            level=category.level,
            is_leaf=len(children) == 0,
            children_count=len(children),
            parent_id=strip_gid(category.parent_id) if category.parent_id else None,
        )

    # ----------------------------------------------------------------------
    # SEARCH
    # ----------------------------------------------------------------------
    def search(self, text: str, limit: int = 10) -> List[SearchResult]:
        """Rank every category against `text` (case-insensitive)."""
        state = self._state
        if state is None or not text:
            return []
        query = text.lower().strip()
        if not query:
            return []

        results: List[SearchResult] = []
        seen = set()

        for category in state.by_name.get(query, []):
            if category.id in seen:
                continue
            seen.add(category.id)
            results.append(SearchResult(category=category, score=EXACT_SCORE, match_type="exact"))

        for category in state.categories:
            if category.id in seen:
                continue
            score = _partial_score(category, query)
            if score is not None:
                results.append(SearchResult(category=category, score=score, match_type="partial"))

        return _rank(results, limit)

    def search_within_subtree(self, root_id: str, text: str, limit: int = 10) -> List[SearchResult]:
        """Same ranking as `search`, restricted to the descendants of `root_id`."""
        if self.get_category(root_id) is None or not text:
            return []
        query = text.lower().strip()
        if not query:
            return []

        results: List[SearchResult] = []
        for category in self._descendants(root_id):
            if category.name.lower() == query or category.full_name.lower() == query:
                results.append(SearchResult(category=category, score=EXACT_SCORE, match_type="exact"))
                continue
            score = _partial_score(category, query)
            if score is not None:
                results.append(SearchResult(category=category, score=score, match_type="partial"))

        return _rank(results, limit)

    def _descendants(self, root_id: str) -> List[Category]:
        """Breadth-first descendants of `root_id`, root excluded."""
        state = self._state
        root = state.by_id.get(root_id) if state and root_id else None
        if root is None:
            return []

        descendants: List[Category] = []
        visited = {root.id}
        queue = deque([root.id])
        while queue:
            current_id = queue.popleft()
            for child in state.children.get(current_id, ()):
                if child.id in visited:
                    continue
                visited.add(child.id)
                descendants.append(child)
                queue.append(child.id)
        return descendants
