"""SQLite key/value store for credentials, options and misc data.

Every partition is a table of ``(item, value)`` rows with the value stored as
JSON, so each key is independently addressable. Option reads go through a
short-lived in-memory cache that any write to ``options`` invalidates.
"""
import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import aiosqlite

from bookmarker.config import DEFAULT_DATA_DIR, get_config
from bookmarker.lru import TTLCache

logger = logging.getLogger(__name__)

# Default database location
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "bookmarker.db"

SCHEMA_VERSION = 2
PARTITIONS = ("credentials", "options", "misc", "hashes")

# Options carried over unchanged when upgrading from schema version 1
CARRIED_OPTIONS = ("cbx_autoTags", "cbx_displayFolders")
# old name -> new name
RENAMED_OPTIONS = {"cbx_autoDesc": "cbx_autoDescription"}

DEFAULT_OPTIONS: Dict[str, Any] = {
    "cbx_showURL": True,
    "cbx_showDescription": True,
    "cbx_autoDescription": True,
    "cbx_showKeywords": True,
    "cbx_successMessage": True,
    "cbx_alreadyStored": True,
    "cbx_autoTags": True,
    "cbx_reduceKeywords": True,
    "cbx_cacheBookmarkChecks": True,
    "input_headlinesDepth": 3,
    "input_networkTimeout": 10,
    "input_bookmarkCacheTTL": 10,
    "folderIDs": ["-1"],  # root folder
}


class KeyValueStore:
    """Async SQLite store with versioned partitions and an options read cache."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        option_cache_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the key/value store.

        Args:
            db_path: Path to SQLite database. Defaults to config or ~/.bookmarker/bookmarker.db
            option_cache_ttl: Seconds an option read stays cached (defaults to config)
            clock: Monotonic clock used by the options cache
        """
        storage_config = get_config().storage
        self.db_path = db_path or storage_config.db_path or DEFAULT_DB_PATH
        if option_cache_ttl is None:
            option_cache_ttl = storage_config.option_cache_ttl
        self._option_cache = TTLCache(option_cache_ttl, clock=clock)
        self._connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the database, creating partitions and migrating old schemas."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        cursor = await self._connection.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        old_version = row[0] if row else 0

        for partition in PARTITIONS:
            await self._connection.execute(
                f"CREATE TABLE IF NOT EXISTS {partition} (item TEXT PRIMARY KEY, value TEXT)"
            )
        await self._connection.commit()

        if old_version < SCHEMA_VERSION:
            logger.info("Upgrading store %s from version %d", self.db_path, old_version)
            await self._upgrade(old_version)
            await self._connection.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            await self._connection.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _upgrade(self, old_version: int) -> None:
        if old_version == 0:
            await self.init_defaults()
            return

        if old_version == 1:
            previous = await self.load("options", *CARRIED_OPTIONS, *RENAMED_OPTIONS)
            await self.init_defaults()

            restored = {key: previous[key] for key in CARRIED_OPTIONS if previous[key] is not None}
            for old_key, new_key in RENAMED_OPTIONS.items():
                if previous[old_key] is not None:
                    restored[new_key] = previous[old_key]
            if restored:
                await self.store("options", restored)

            await self.delete("options", *RENAMED_OPTIONS)

    def _require_connection(self, store_name: str) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        if store_name not in PARTITIONS:
            raise ValueError(f"Unknown store: {store_name}")
        return self._connection

    async def load(self, store_name: str, *keys: str) -> Any:
        """Load one or more keys from a partition.

        Args:
            store_name: Partition to read from
            keys: Keys to read

        Returns:
            The bare value for a single key, otherwise a dict of key -> value.
            Missing or unreadable keys are None.
        """
        connection = self._require_connection(store_name)

        result: Dict[str, Any] = {}
        for key in keys:
            try:
                cursor = await connection.execute(
                    f"SELECT value FROM {store_name} WHERE item = ?",
                    (key,),
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as e:
                logger.warning("Could not read %s/%s: %s", store_name, key, e)
                row = None

            result[key] = self._decode(row["value"]) if row is not None else None

        if len(keys) == 1:
            return result[keys[0]]

        return result

    async def load_all(self, store_name: str) -> List[Dict[str, Any]]:
        """Return every record of a partition as ``{"item", "value"}`` dicts."""
        connection = self._require_connection(store_name)

        try:
            cursor = await connection.execute(f"SELECT item, value FROM {store_name}")
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.warning("Could not read %s: %s", store_name, e)
            return []

        return [{"item": row["item"], "value": self._decode(row["value"])} for row in rows]

    async def store(self, store_name: str, *records: Dict[str, Any]) -> None:
        """Persist every key/value pair of every record as its own row."""
        connection = self._require_connection(store_name)

        rows = [(key, json.dumps(value)) for record in records for key, value in record.items()]
        await connection.executemany(
            f"INSERT OR REPLACE INTO {store_name} (item, value) VALUES (?, ?)",
            rows,
        )
        await connection.commit()

        if store_name == "options":
            self._option_cache.invalidate()

    async def delete(self, store_name: str, *keys: str) -> None:
        """Delete keys from a partition. Missing keys are ignored."""
        connection = self._require_connection(store_name)

        await connection.executemany(
            f"DELETE FROM {store_name} WHERE item = ?",
            [(key,) for key in keys],
        )
        await connection.commit()

        if store_name == "options":
            self._option_cache.invalidate()

    async def store_hash(self, hash_value: str) -> None:
        """Record a hash together with the current timestamp."""
        await self.store("hashes", {hash_value: time.time()})

    async def get_option(self, name: str) -> Any:
        """Return an option value, or False if it was never set."""
        hit, value = self._option_cache.lookup(name)
        if hit:
            return value

        value = await self.load("options", name)
        if value is None:
            value = False

        self._option_cache.put(name, value)
        return value

    async def get_options(self, names: Iterable[str]) -> Dict[str, Any]:
        """Batch variant of :meth:`get_option`.

        Cached names are answered from memory; the rest are read concurrently.
        """
        names = list(names)
        found: Dict[str, Any] = {}
        misses = []

        for name in names:
            hit, value = self._option_cache.lookup(name)
            if hit:
                found[name] = value
            else:
                misses.append(name)

        if misses:
            values = await asyncio.gather(*(self.load("options", name) for name in misses))
            for name, value in zip(misses, values):
                if value is None:
                    value = False
                self._option_cache.put(name, value)
                found[name] = value

        return {name: found[name] for name in names}

    async def init_defaults(self) -> None:
        """Seed every option with its default value."""
        await self.store("options", DEFAULT_OPTIONS)

    async def clear_data(self, subject: str) -> None:
        """Clear stored data.

        Args:
            subject: 'all' (re-seeds defaults), 'options' or 'credentials'
        """
        if subject == "all":
            partitions = PARTITIONS
        elif subject in ("options", "credentials"):
            partitions = (subject,)
        else:
            raise ValueError(f"Unknown subject: {subject}")

        for partition in partitions:
            connection = self._require_connection(partition)
            await connection.execute(f"DELETE FROM {partition}")
        await connection.commit()
        self._option_cache.invalidate()

        if subject == "all":
            await self.init_defaults()

    def _decode(self, raw: Optional[str]) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable value: %r", raw[:80])
            return None


# Global store instance
_store: Optional[KeyValueStore] = None


async def get_store() -> KeyValueStore:
    """Get or create the global key/value store instance.

    Returns:
        Initialized KeyValueStore
    """
    global _store

    if _store is None:
        _store = KeyValueStore()
        await _store.initialize()

    return _store
