import aiosqlite
import json
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Snapshot storage used by the inference service.

    Stats rows are keyed by (epoch_id, height, participant index), model
    payloads by (epoch_id, height), and the timeline is a single row that
    every save overwrites.
    """

    @abstractmethod
    async def initialize(self) -> None: ...

    @abstractmethod
    async def save_stats_batch(
        self,
        epoch_id: int,
        height: int,
        participants_stats: List[Dict[str, Any]]
    ) -> None: ...

    @abstractmethod
    async def get_stats(self, epoch_id: int, height: int) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def save_models_cache(
        self,
        epoch_id: int,
        height: int,
        models_all: Dict[str, Any],
        models_stats: Dict[str, Any]
    ) -> None: ...

    @abstractmethod
    async def get_models_cache(self, epoch_id: int, height: int) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def save_timeline_cache(self, timeline: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def get_timeline_cache(self) -> Optional[Dict[str, Any]]: ...


class CacheDB(CacheStore):
    def __init__(self, db_path: str = "cache.db"):
        self.db_path = db_path

    async def initialize(self):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS inference_stats (
                    epoch_id INTEGER NOT NULL,
                    height INTEGER NOT NULL,
                    participant_index TEXT NOT NULL,
                    stats_json TEXT NOT NULL,
                    seed_signature TEXT,
                    cached_at TEXT NOT NULL,
                    PRIMARY KEY (epoch_id, height, participant_index)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_epoch_height
                ON inference_stats(epoch_id, height)
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS models_api_cache (
                    epoch_id INTEGER NOT NULL,
                    height INTEGER NOT NULL,
                    models_all_json TEXT NOT NULL,
                    models_stats_json TEXT NOT NULL,
                    cached_at TEXT NOT NULL,
                    PRIMARY KEY (epoch_id, height)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_models_api_epoch
                ON models_api_cache(epoch_id)
            """)

            # Reserved for per-inference breakdowns; nothing reads or writes it yet.
            await db.execute("""
                CREATE TABLE IF NOT EXISTS participant_inferences (
                    epoch_id INTEGER NOT NULL,
                    participant_id TEXT NOT NULL,
                    inference_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    start_block_height TEXT NOT NULL,
                    start_block_timestamp TEXT NOT NULL,
                    validated_by_json TEXT,
                    prompt_hash TEXT,
                    response_hash TEXT,
                    prompt_payload TEXT,
                    response_payload TEXT,
                    prompt_token_count TEXT,
                    completion_token_count TEXT,
                    model TEXT,
                    last_updated TEXT NOT NULL,
                    PRIMARY KEY (epoch_id, participant_id, inference_id)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_participant_inferences
                ON participant_inferences(epoch_id, participant_id, status)
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS timeline_cache (
                    id INTEGER PRIMARY KEY,
                    timeline_json TEXT NOT NULL,
                    cached_at TEXT NOT NULL
                )
            """)

            await db.commit()
            logger.info(f"Database initialized at {self.db_path}")

    async def save_stats_batch(
        self,
        epoch_id: int,
        height: int,
        participants_stats: List[Dict[str, Any]]
    ):
        cached_at = datetime.utcnow().isoformat()
        rows = [
            (
                epoch_id,
                height,
                stats.get("index"),
                json.dumps(stats),
                stats.get("seed_signature"),
                cached_at
            )
            for stats in participants_stats
        ]

        async with aiosqlite.connect(self.db_path) as db:
            try:
                await db.executemany("""
                    INSERT OR REPLACE INTO inference_stats
                    (epoch_id, height, participant_index, stats_json, seed_signature, cached_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, rows)
                await db.commit()
            except aiosqlite.Error:
                await db.rollback()
                raise

        logger.info(f"Saved {len(rows)} stats for epoch {epoch_id} at height {height}")

    async def get_stats(self, epoch_id: int, height: int) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row

            async with db.execute("""
                SELECT stats_json FROM inference_stats
                WHERE epoch_id = ? AND height = ?
            """, (epoch_id, height)) as cursor:
                rows = await cursor.fetchall()
                return [json.loads(row["stats_json"]) for row in rows]

    async def save_models_cache(
        self,
        epoch_id: int,
        height: int,
        models_all: Dict[str, Any],
        models_stats: Dict[str, Any]
    ):
        cached_at = datetime.utcnow().isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT OR REPLACE INTO models_api_cache
                (epoch_id, height, models_all_json, models_stats_json, cached_at)
                VALUES (?, ?, ?, ?, ?)
            """, (epoch_id, height, json.dumps(models_all), json.dumps(models_stats), cached_at))
            await db.commit()

    async def get_models_cache(self, epoch_id: int, height: int) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("""
                SELECT models_all_json, models_stats_json, cached_at
                FROM models_api_cache WHERE epoch_id = ? AND height = ?
            """, (epoch_id, height)) as cursor:
                row = await cursor.fetchone()
                if not row:
                    return None
                return {
                    "models_all": json.loads(row["models_all_json"]),
                    "models_stats": json.loads(row["models_stats_json"]),
                    "cached_at": row["cached_at"]
                }

    async def save_timeline_cache(self, timeline: Dict[str, Any]):
        cached_at = datetime.utcnow().isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT OR REPLACE INTO timeline_cache (id, timeline_json, cached_at)
                VALUES (1, ?, ?)
            """, (json.dumps(timeline), cached_at))
            await db.commit()

    async def get_timeline_cache(self) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("""
                SELECT timeline_json, cached_at FROM timeline_cache WHERE id = 1
            """) as cursor:
                row = await cursor.fetchone()
                if not row:
                    return None
                return {"timeline": json.loads(row["timeline_json"]), "cached_at": row["cached_at"]}


class MemoryCacheDB(CacheStore):
    """In-process stand-in for CacheDB when SQLite cannot be opened.

    Values are kept JSON-encoded so reads hand back fresh copies, the same
    as rows loaded from SQLite.
    """

    def __init__(self):
        self.db_path = None
        self._stats: Dict[Tuple[int, int, str], str] = {}
        self._models: Dict[Tuple[int, int], Dict[str, str]] = {}
        self._timeline: Optional[Dict[str, str]] = None

    async def initialize(self):
        logger.info("Using in-memory cache store")

    async def save_stats_batch(
        self,
        epoch_id: int,
        height: int,
        participants_stats: List[Dict[str, Any]]
    ):
        for stats in participants_stats:
            self._stats[(epoch_id, height, stats.get("index"))] = json.dumps(stats)

    async def get_stats(self, epoch_id: int, height: int) -> List[Dict[str, Any]]:
        return [
            json.loads(stats_json)
            for (row_epoch, row_height, _), stats_json in self._stats.items()
            if row_epoch == epoch_id and row_height == height
        ]

    async def save_models_cache(
        self,
        epoch_id: int,
        height: int,
        models_all: Dict[str, Any],
        models_stats: Dict[str, Any]
    ):
        self._models[(epoch_id, height)] = {
            "models_all_json": json.dumps(models_all),
            "models_stats_json": json.dumps(models_stats),
            "cached_at": datetime.utcnow().isoformat()
        }

    async def get_models_cache(self, epoch_id: int, height: int) -> Optional[Dict[str, Any]]:
        row = self._models.get((epoch_id, height))
        if not row:
            return None
        return {
            "models_all": json.loads(row["models_all_json"]),
            "models_stats": json.loads(row["models_stats_json"]),
            "cached_at": row["cached_at"]
        }

    async def save_timeline_cache(self, timeline: Dict[str, Any]):
        self._timeline = {
            "timeline_json": json.dumps(timeline),
            "cached_at": datetime.utcnow().isoformat()
        }

    async def get_timeline_cache(self) -> Optional[Dict[str, Any]]:
        if not self._timeline:
            return None
        return {"timeline": json.loads(self._timeline["timeline_json"]), "cached_at": self._timeline["cached_at"]}


async def open_cache_db(db_path: str) -> CacheStore:
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        cache_db = CacheDB(db_path)
        await cache_db.initialize()
        return cache_db
    except (OSError, aiosqlite.Error) as e:
        logger.warning(f"SQLite cache at {db_path} unavailable ({e}), falling back to in-memory cache")
        memory_db = MemoryCacheDB()
        await memory_db.initialize()
        return memory_db
