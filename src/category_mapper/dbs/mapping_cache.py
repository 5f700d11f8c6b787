"""
mapping_cache.py

Memo of (input text -> selected taxonomy category).

Keys are stored exactly as the caller passed them. Unlike a corrections table
there is no lower-casing or whitespace collapsing: "Laptops" and "laptops "
are different keys.

Stores:
    - PostgresMappingStore: durable, atomic INSERT ... ON CONFLICT upsert
    - InMemoryMappingStore: process-local, for tests and offline runs
"""

import os
import sys
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from category_mapper.dbs.taxonomy_index import strip_gid, to_gid
from category_mapper.exception import CacheError, ConfigError
from category_mapper.logger import get_logger
from category_mapper.models import MappingRecord, MappingStatistics

logger = get_logger(__name__)

CONFIDENCE_TIERS = ("high", "medium", "low")
PROVENANCES = ("oracle", "manual")

RECORD_COLUMNS = "mapping_key, category_id, category_gid, full_name, confidence, provenance, created_at, updated_at"


def _row_to_record(row) -> MappingRecord:
    return MappingRecord(
        key=row["mapping_key"],
        category_id=row["category_id"],
        category_gid=row["category_gid"],
        full_name=row["full_name"],
        confidence=row["confidence"],
        provenance=row["provenance"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class MappingStore(ABC):
    """Keyed store with atomic upsert and aggregate counts."""

    @abstractmethod
    def get(self, key: str) -> Optional[MappingRecord]:
        ...

    @abstractmethod
    def upsert(
        self,
        key: str,
        category_id: str,
        category_gid: str,
        full_name: str,
        confidence: str,
        provenance: str,
    ) -> MappingRecord:
        ...

    @abstractmethod
    def all(self) -> List[MappingRecord]:
        ...

    @abstractmethod
    def statistics(self) -> MappingStatistics:
        ...


class PostgresMappingStore(MappingStore):
    def __init__(self, conn_str: Optional[str] = None):
        try:
            self.conn_str = conn_str or os.getenv("NEON_CONN_STR")
            if not self.conn_str:
                raise ConfigError("Database connection string (NEON_CONN_STR) not found.")

            self._init_db()
            logger.info("Initialized PostgresMappingStore.")
        except ConfigError:
            raise
        except Exception as e:
            raise CacheError(e, sys)

    def _init_db(self):
        """Creates the mappings table if it doesn't exist."""
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor() as cur:
                    cur.execute('''
                        CREATE TABLE IF NOT EXISTS category_mappings (
                            mapping_key TEXT PRIMARY KEY,
                            category_id TEXT NOT NULL,
                            category_gid TEXT NOT NULL,
                            full_name TEXT NOT NULL,
                            confidence TEXT NOT NULL CHECK (confidence IN ('high', 'medium', 'low')),
                            provenance TEXT NOT NULL CHECK (provenance IN ('oracle', 'manual')),
                            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    ''')
                    cur.execute('''
                        CREATE INDEX IF NOT EXISTS idx_category_mappings_category_id
                        ON category_mappings (category_id)
                    ''')
            logger.debug("Mapping cache schema verified.")
        except Exception as e:
            logger.error("Failed to initialize mapping cache schema.")
            raise CacheError(e, sys)

    def get(self, key: str) -> Optional[MappingRecord]:
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        f"SELECT {RECORD_COLUMNS} FROM category_mappings WHERE mapping_key = %s",
                        (key,),
                    )
                    row = cur.fetchone()
            return _row_to_record(row) if row else None
        except Exception as e:
            logger.error(f"Failed to fetch mapping for '{key}': {e}")
            raise CacheError(e, sys)

    def upsert(self, key, category_id, category_gid, full_name, confidence, provenance) -> MappingRecord:
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(f"""
                        INSERT INTO category_mappings (
                            mapping_key, category_id, category_gid, full_name, confidence, provenance,
                            created_at, updated_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                        ON CONFLICT (mapping_key)
                        DO UPDATE SET
                            category_id = EXCLUDED.category_id,
                            category_gid = EXCLUDED.category_gid,
                            full_name = EXCLUDED.full_name,
                            confidence = EXCLUDED.confidence,
                            provenance = EXCLUDED.provenance,
                            updated_at = CURRENT_TIMESTAMP
                        RETURNING {RECORD_COLUMNS};
                    """, (key, category_id, category_gid, full_name, confidence, provenance))
                    row = cur.fetchone()
            return _row_to_record(row)
        except Exception as e:
            logger.error(f"Failed to save mapping for '{key}': {e}")
            raise CacheError(e, sys)

    def all(self) -> List[MappingRecord]:
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(f"SELECT {RECORD_COLUMNS} FROM category_mappings ORDER BY created_at DESC")
                    rows = cur.fetchall()
            return [_row_to_record(row) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list mappings: {e}")
            raise CacheError(e, sys)

    def statistics(self) -> MappingStatistics:
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT COUNT(*) FROM category_mappings")
                    total = cur.fetchone()[0]

                    cur.execute("SELECT confidence, COUNT(*) FROM category_mappings GROUP BY confidence")
                    by_confidence = {tier: count for tier, count in cur.fetchall()}

                    cur.execute("SELECT provenance, COUNT(*) FROM category_mappings GROUP BY provenance")
                    by_provenance = {source: count for source, count in cur.fetchall()}

            return MappingStatistics(total=total, by_confidence=by_confidence, by_provenance=by_provenance)
        except Exception as e:
            logger.error(f"Failed to compute mapping statistics: {e}")
            raise CacheError(e, sys)


class InMemoryMappingStore(MappingStore):
    """Dict-backed store; a lock makes each upsert atomic."""

    def __init__(self):
        self._records: Dict[str, MappingRecord] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[MappingRecord]:
        with self._lock:
            return self._records.get(key)

    def upsert(self, key, category_id, category_gid, full_name, confidence, provenance) -> MappingRecord:
        with self._lock:
            now = datetime.now(timezone.utc)
            existing = self._records.get(key)
            record = MappingRecord(
                key=key,
                category_id=category_id,
                category_gid=category_gid,
                full_name=full_name,
                confidence=confidence,
                provenance=provenance,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._records[key] = record
            return record

    def all(self) -> List[MappingRecord]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def statistics(self) -> MappingStatistics:
        with self._lock:
            records = list(self._records.values())

        stats = MappingStatistics(total=len(records))
        for record in records:
            stats.by_confidence[record.confidence] = stats.by_confidence.get(record.confidence, 0) + 1
            stats.by_provenance[record.provenance] = stats.by_provenance.get(record.provenance, 0) + 1
        return stats


def build_mapping_store(config: dict) -> MappingStore:
    backend = config.get("cache", {}).get("backend", "postgres")
    if backend == "postgres":
        return PostgresMappingStore()
    if backend == "memory":
        logger.warning("Using in-memory mapping cache; mappings are lost on restart.")
        return InMemoryMappingStore()
    raise ConfigError(f"Unknown cache backend: {backend}")


class MappingCache:
    """Exact-string lookup/upsert over a MappingStore."""

    def __init__(self, store: MappingStore):
        self.store = store

    def lookup(self, key: str) -> Optional[MappingRecord]:
        """Returns the record for `key`, or None. A miss is not an error."""
        record = self.store.get(key)
        if record:
            logger.debug(f"Mapping cache hit: '{key}' -> {record.category_id}")
        return record

    def upsert(
        self,
        key: str,
        category_id: str,
        confidence: str,
        full_name: str,
        provenance: str = "oracle",
    ) -> MappingRecord:
        """
        Insert `key` or overwrite every field but created_at.
        Re-mapping after a taxonomy update therefore never duplicates a row.
        """
        if confidence not in CONFIDENCE_TIERS:
            raise CacheError(f"Invalid confidence tier: {confidence!r}")
        if provenance not in PROVENANCES:
            raise CacheError(f"Invalid provenance: {provenance!r}")

        bare_id = strip_gid(category_id)
        record = self.store.upsert(
            key=key,
            category_id=bare_id,
            category_gid=to_gid(bare_id),
            full_name=full_name,
            confidence=confidence,
            provenance=provenance,
        )
        logger.info(f"Mapping saved: '{key}' -> '{bare_id}' ({confidence}, {provenance})")
        return record

    def save_manual(self, key: str, category_id: str, full_name: str, confidence: str = "low") -> MappingRecord:
        """Curated mapping entered by a person rather than produced by navigation."""
        return self.upsert(key, category_id, confidence, full_name, provenance="manual")

    def all_records(self) -> List[MappingRecord]:
        return self.store.all()

    def statistics(self) -> MappingStatistics:
        return self.store.statistics()
