import sys
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Dict, Iterable, Optional, Tuple, Union

from category_mapper.agents.navigator import DEFAULT_MAX_TURNS, DrillDownNavigator
from category_mapper.dbs.mapping_cache import MappingCache, build_mapping_store
from category_mapper.dbs.taxonomy_index import TaxonomyIndex
from category_mapper.exception import CustomException, NavigationError
from category_mapper.llm import OpenAIClient, SelectionOracle
from category_mapper.logger import get_logger
from category_mapper.models import MappingRecord, MappingResult, NavigationResult, TaxonomySnapshot
from category_mapper.utils.load_config import load_config_file

logger = get_logger(__name__)


def store_manual_mapping(
    taxonomy: TaxonomyIndex,
    cache: MappingCache,
    input_text: str,
    category_id: str,
    confidence: str = "low",
) -> MappingRecord:
    """Validate `category_id` against the loaded taxonomy and store a curated mapping. Needs no oracle."""
    if not input_text or not input_text.strip():
        raise CustomException("Cannot store a mapping for an empty input.")
    category = taxonomy.get_category(category_id)
    if category is None:
        raise CustomException(f"Unknown taxonomy category '{category_id}' in taxonomy {taxonomy.version}")
    return cache.save_manual(input_text, category.id, category.full_name, confidence=confidence)


class CategoryMapper:
    """
    Entry point for mapping a category path or product title onto the taxonomy:
    1. Mapping cache (exact input string)
    2. Drill-down navigation through the oracle
    3. Cache write-back

    Cache failures are logged and never turn a finished navigation into an error.
    """

    def __init__(
        self,
        taxonomy: Optional[TaxonomyIndex] = None,
        oracle: Optional[SelectionOracle] = None,
        cache: Optional[MappingCache] = None,
        config: Optional[dict] = None,
    ):
        try:
            self.config = config if config is not None else load_config_file()

            if taxonomy is None:
                taxonomy = TaxonomyIndex.from_file(self.config["paths"]["taxonomy_file"])
            if oracle is None:
                oracle = OpenAIClient(config=self.config)
            if cache is None:
                cache = MappingCache(build_mapping_store(self.config))

            self.taxonomy = taxonomy
            self.oracle = oracle
            self.cache = cache

            max_turns = self.config.get("navigation", {}).get("max_turns", DEFAULT_MAX_TURNS)
            self.navigator = DrillDownNavigator(self.taxonomy, self.oracle, max_turns=max_turns)

            service_config = self.config.get("service", {})
            self.max_workers = service_config.get("max_workers", 4)
            self.request_timeout = service_config.get("request_timeout_seconds", 120)

            logger.info(f"CategoryMapper initialized on taxonomy {self.taxonomy.version}.")
        except CustomException:
            raise
        except Exception as e:
            logger.error(f"Failed to initialize CategoryMapper: {e}")
            raise CustomException(e, sys)

    # ------------------------------------------------------------------
    # MAPPING
    # ------------------------------------------------------------------
    def map(self, input_text: str, refresh: bool = False) -> MappingResult:
        """
        Map `input_text` to one taxonomy category.

        Args:
            input_text: Category path or product title. Used verbatim as the cache key.
            refresh: Skip the cache lookup and re-navigate, overwriting the stored
                mapping (e.g. after a taxonomy version change).
        """
        if not input_text or not input_text.strip():
            raise CustomException("Cannot map an empty input.")

        started = time.perf_counter()

        if not refresh:
            record = self._lookup(input_text)
            if record:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.info(f"[CACHE HIT] {input_text} -> {record.full_name} ({elapsed_ms:.0f}ms)")
                return MappingResult(
                    category_id=record.category_id,
                    full_name=record.full_name,
                    confidence=record.confidence,
                    cached=True,
                    turns=None,
                )

        logger.info(f'[MAPPING] "{input_text}"')
        result = self.navigator.navigate(input_text)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"[COMPLETE] {input_text} -> {result.full_name}")
        logger.info(f"  ├─ Turns: {result.turns}")
        logger.info(f"  ├─ Confidence: {result.confidence}")
        logger.info(f"  └─ Time: {elapsed_ms:.0f}ms ({elapsed_ms / max(result.turns, 1):.0f}ms/turn)")

        self._store(input_text, result)

        return MappingResult(
            category_id=result.category_id,
            full_name=result.full_name,
            confidence=result.confidence,
            cached=False,
            turns=result.turns,
            reasoning=result.reasoning,
        )

    def map_category(self, category_path: str) -> MappingResult:
        """Map a retailer category path, e.g. 'Electronics > Computers > Laptops'."""
        return self.map(category_path)

    def map_product(self, product_title: str) -> MappingResult:
        """Map a product title, e.g. 'Apple MacBook Air 13-inch M2'."""
        return self.map(product_title)

    def map_many(
        self,
        inputs: Iterable[str],
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Union[MappingResult, CustomException]]:
        """
        Map distinct inputs concurrently, at most `max_workers` navigations at a time.

        Each input gets its own result or its own error. `timeout` is the
        per-request ceiling in seconds, counted from the moment that input's
        navigation starts. A navigation that overruns it is abandoned and frees
        its slot, so inputs still queued behind it are not held up.
        """
        pending = deque(dict.fromkeys(inputs))
        order = list(pending)
        timeout = self.request_timeout if timeout is None else timeout
        workers = max(max_workers or self.max_workers, 1)

        outcomes: Dict[str, Union[MappingResult, CustomException]] = {}
        running: Dict[str, Tuple[Future, float]] = {}

        while pending or running:
            while pending and len(running) < workers:
                text = pending.popleft()
                running[text] = (self._start_mapping(text), time.monotonic() + timeout)

            next_deadline = min(deadline for _, deadline in running.values())
            wait(
                [future for future, _ in running.values()],
                timeout=max(next_deadline - time.monotonic(), 0),
                return_when=FIRST_COMPLETED,
            )

            now = time.monotonic()
            for text, (future, deadline) in list(running.items()):
                if future.done():
                    outcomes[text] = self._outcome(text, future)
                elif now >= deadline:
                    logger.error(f"Mapping '{text}' timed out after {timeout}s.")
                    outcomes[text] = NavigationError(f"Mapping timed out after {timeout}s")
                else:
                    continue
                del running[text]

        return {text: outcomes[text] for text in order}

    def _start_mapping(self, text: str) -> Future:
        """Run `map(text)` on its own daemon thread; a stalled oracle call never blocks shutdown."""
        future: Future = Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.map(text))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name=f"category-mapper:{text[:40]}", daemon=True).start()
        return future

    @staticmethod
    def _outcome(text: str, future: Future) -> Union[MappingResult, CustomException]:
        error = future.exception()
        if error is None:
            return future.result()
        logger.error(f"Mapping '{text}' failed: {error}")
        return error if isinstance(error, CustomException) else CustomException(error)

    def save_manual_mapping(self, input_text: str, category_id: str, confidence: str = "low") -> MappingRecord:
        """Store a curated mapping. The category must exist in the loaded taxonomy."""
        return store_manual_mapping(self.taxonomy, self.cache, input_text, category_id, confidence=confidence)

    # ------------------------------------------------------------------
    # TAXONOMY + HEALTH
    # ------------------------------------------------------------------
    def reload_taxonomy(self, snapshot: TaxonomySnapshot) -> None:
        """
        Swap in a new taxonomy version. Existing cache entries are left as they
        are and only re-navigated when requested with refresh=True.
        """
        previous = self.taxonomy.version
        self.taxonomy.load(snapshot)
        logger.info(f"Taxonomy swapped: {previous} -> {self.taxonomy.version}")

    def health(self) -> dict:
        try:
            cache_stats = self.cache.statistics().model_dump()
        except Exception as e:
            logger.error(f"Failed to read cache statistics: {e}")
            cache_stats = None

        return {
            "status": "ok",
            "taxonomy_version": self.taxonomy.version,
            "total_categories": self.taxonomy.category_count(),
            "cache_stats": cache_stats,
        }

    # ------------------------------------------------------------------
    # CACHE HELPERS
    # ------------------------------------------------------------------
    def _lookup(self, key: str) -> Optional[MappingRecord]:
        try:
            return self.cache.lookup(key)
        except Exception as e:
            logger.error(f"Mapping cache lookup failed for '{key}', navigating instead: {e}")
            return None

    def _store(self, key: str, result: NavigationResult) -> None:
        try:
            self.cache.upsert(
                key,
                result.category_id,
                result.confidence,
                result.full_name,
                provenance="oracle",
            )
        except Exception as e:
            logger.error(f"Failed to cache mapping for '{key}': {e}")
