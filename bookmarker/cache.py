"""Local cache of server tags, folders and bookmark-check results.

Tags and folders are kept for a day and reloaded from the server when they
expire or a refresh is forced. Bookmark checks are an optimization only: if
anything goes wrong with them the error is logged and the cache acts as a
miss.
"""
import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import aiosqlite

from bookmarker.api import FOLDER_ENDPOINT, TAG_ENDPOINT, ApiClient, is_error_result
from bookmarker.config import DEFAULT_DATA_DIR, get_config
from bookmarker.notification import Notifier
from bookmarker.storage import KeyValueStore

logger = logging.getLogger(__name__)

# Default database location
DEFAULT_CACHE_DB_PATH = DEFAULT_DATA_DIR / "cache.db"

CACHE_PARTITIONS = ("keywords", "folders", "bookmarkChecks")
BOOKMARK_CHECKS = "bookmarkChecks"

# The server calls them tags, the cache calls them keywords
TYPE_ALIASES = {"tags": "keywords"}
ENDPOINTS = {"keywords": TAG_ENDPOINT, "folders": FOLDER_ENDPOINT}

DEFAULT_BOOKMARK_CHECK_TTL = 10  # minutes
FOLDER_INDENT = "\u2007\u2007"  # two figure spaces per level


class ConnectionPool:
    """A single reusable aiosqlite connection to the cache database.

    The connection is closed after ``idle_timeout`` seconds without use,
    checked for staleness before reuse, and concurrent callers share one
    in-flight open.
    """

    def __init__(self, db_path: Path, idle_timeout: float, required_table: str = BOOKMARK_CHECKS):
        self.db_path = db_path
        self.idle_timeout = idle_timeout
        self.required_table = required_table
        self._connection: Optional[aiosqlite.Connection] = None
        self._opening: Optional[asyncio.Future] = None
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._closing: Optional[asyncio.Future] = None

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    async def acquire(self) -> aiosqlite.Connection:
        """Return the pooled connection, opening it if needed."""
        self._reset_idle_timer()

        if self._connection is not None:
            if await self._is_usable(self._connection):
                return self._connection
            await self._discard()

        if self._opening is None:
            self._opening = asyncio.ensure_future(self._open())

        opening = self._opening
        try:
            return await asyncio.shield(opening)
        finally:
            if self._opening is opening and opening.done():
                self._opening = None

    async def close(self) -> None:
        """Close the pooled connection and cancel the idle timer."""
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None
        self._opening = None
        await self._discard()

    async def _open(self) -> aiosqlite.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        connection = await aiosqlite.connect(self.db_path)
        connection.row_factory = aiosqlite.Row

        for partition in CACHE_PARTITIONS:
            await connection.execute(
                f"CREATE TABLE IF NOT EXISTS {partition} ("
                "item TEXT PRIMARY KEY, value TEXT, url TEXT, timestamp REAL)"
            )
        await connection.commit()

        self._connection = connection
        return connection

    async def _is_usable(self, connection: aiosqlite.Connection) -> bool:
        try:
            cursor = await connection.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                (self.required_table,),
            )
            return await cursor.fetchone() is not None
        except (aiosqlite.Error, ValueError) as e:
            logger.warning("Stale cache connection detected, recreating: %s", e)
            return False

    async def _discard(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except (aiosqlite.Error, ValueError) as e:
            logger.debug("Ignoring error while closing cache connection: %s", e)

    def _reset_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self.idle_timeout, self._on_idle)

    def _on_idle(self) -> None:
        self._idle_handle = None
        logger.debug("Closing idle cache connection")
        self._closing = asyncio.ensure_future(self.close())


def hash_url(url: str) -> str:
    """Fast, non-cryptographic cache key for a URL.

    32-bit shift-and-add string hash rendered in base 36, suffixed with the
    URL length to make collisions less likely. Hash and length are taken
    over UTF-16 code units so keys match the ones the browser extension
    writes.
    """
    data = url.encode("utf-16-le", "surrogatepass")
    units = [int.from_bytes(data[i:i + 2], "little") for i in range(0, len(data), 2)]

    value = 0
    for unit in units:
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 0x100000000
    return f"url_{_base36(abs(value))}_{len(units)}"


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def pre_render_folders(folders: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Flatten the server folder tree into an indented list.

    Args:
        folders: Folder nodes with 'id', 'title' and optional 'children'

    Returns:
        List of {'name', 'value'} dicts, starting with the root folder
    """
    structure: List[Dict[str, Any]] = [{"name": "Root", "value": "-1"}]

    def walk(nodes: List[Dict[str, Any]], indent: str) -> None:
        for folder in sorted(nodes, key=lambda f: str(f.get("title", "")).casefold()):
            structure.append({"name": f"{indent}{folder.get('title', '')}", "value": folder.get("id")})
            if folder.get("children"):
                walk(folder["children"], indent + FOLDER_INDENT)

    walk(folders or [], "")
    return structure


class TagCache:
    """Two-tier cache over server tags/folders plus the bookmark-check cache."""

    def __init__(
        self,
        store: KeyValueStore,
        api: ApiClient,
        notifier: Optional[Notifier] = None,
        db_path: Optional[Path] = None,
        ttl_hours: Optional[float] = None,
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            store: Key/value store for option lookups
            api: Client used to fetch fresh tags and folders
            notifier: Receives "cache refreshed" notifications on forced reloads
            db_path: Path to the cache database (defaults to config or ~/.bookmarker/cache.db)
            ttl_hours: Lifetime of tag/folder entries (defaults to config)
            idle_timeout: Seconds before the pooled connection is closed (defaults to config)
            clock: Wall clock returning seconds since the epoch
        """
        cache_config = get_config().cache
        self.db_path = db_path or cache_config.db_path or DEFAULT_CACHE_DB_PATH
        if ttl_hours is None:
            ttl_hours = cache_config.tag_ttl_hours
        if idle_timeout is None:
            idle_timeout = cache_config.pool_idle_timeout

        self.ttl_seconds = ttl_hours * 60 * 60
        self._store = store
        self._api = api
        self._notifier = notifier
        self._clock = clock
        self._pool = ConnectionPool(self.db_path, idle_timeout)

    async def close(self) -> None:
        """Close the pooled database connection."""
        await self._pool.close()

    # ------------------------------------------------------------------
    # Tags and folders
    # ------------------------------------------------------------------

    async def cache_get(self, type: str, force_server: bool = False) -> Any:
        """Return cached tags or folders, reloading them from the server if needed.

        Args:
            type: 'keywords' (or 'tags') or 'folders'
            force_server: Ignore the cache and reload

        Returns:
            Cached or freshly fetched data. An error response from the server
            is returned as-is and not cached.
        """
        partition = self._partition(type)
        connection = await self._pool.acquire()

        element = await self._read_value(connection, partition, partition)
        created = await self._read_value(connection, partition, f"{partition}_created")

        if not element or await self._expired(connection, partition, created, force_server):
            data = await self._api.call(ENDPOINTS[partition], "GET")
            if is_error_result(data):
                logger.warning("Could not load %s from server: %s", partition, data)
                return data

            if partition == "folders":
                data = pre_render_folders(data.get("data") if isinstance(data, dict) else data)

            await self.cache_add(partition, data)
            if force_server and self._notifier is not None:
                await self._notifier.cache_refreshed()
            return data

        return element

    async def cache_add(self, type: str, data: Any) -> None:
        """Overwrite the cached value and its creation time."""
        partition = self._partition(type)
        connection = await self._pool.acquire()

        await connection.executemany(
            f"INSERT OR REPLACE INTO {partition} (item, value) VALUES (?, ?)",
            [
                (partition, json.dumps(data)),
                (f"{partition}_created", json.dumps(self._clock())),
            ],
        )
        await connection.commit()

    async def cache_temp_add(self, type: str, new_items: Iterable[str]) -> List[str]:
        """Add items the user just created so they show up before the next sync.

        Returns:
            The merged, sorted and de-duplicated list now in the cache
        """
        partition = self._partition(type)
        cached = await self.cache_get(partition)
        if not isinstance(cached, list):
            cached = []

        merged = sorted(set(cached).union(new_items))

        connection = await self._pool.acquire()
        await connection.execute(
            f"INSERT OR REPLACE INTO {partition} (item, value) VALUES (?, ?)",
            (partition, json.dumps(merged)),
        )
        await connection.commit()
        return merged

    async def clear(self) -> None:
        """Empty the tag and folder caches."""
        connection = await self._pool.acquire()
        for partition in ENDPOINTS:
            await connection.execute(f"DELETE FROM {partition}")
        await connection.commit()

    def _partition(self, type: str) -> str:
        partition = TYPE_ALIASES.get(type, type)
        if partition not in ENDPOINTS:
            raise ValueError(f"Unknown cache type: {type}")
        return partition

    async def _read_value(self, connection: aiosqlite.Connection, partition: str, item: str) -> Any:
        cursor = await connection.execute(
            f"SELECT value FROM {partition} WHERE item = ?",
            (item,),
        )
        row = await cursor.fetchone()
        if row is None or row["value"] is None:
            return None
        return json.loads(row["value"])

    async def _expired(
        self,
        connection: aiosqlite.Connection,
        partition: str,
        created: Optional[float],
        force_server: bool,
    ) -> bool:
        if force_server or created is None:
            return True

        if self._clock() - created > self.ttl_seconds:
            await connection.executemany(
                f"DELETE FROM {partition} WHERE item = ?",
                [(partition,), (f"{partition}_created",)],
            )
            await connection.commit()
            return True

        return False

    # ------------------------------------------------------------------
    # Bookmark checks
    # ------------------------------------------------------------------

    async def cache_bookmark_check(
        self,
        url: str,
        result: Any,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Remember the result of checking whether ``url`` is bookmarked.

        Args:
            url: The checked URL (normalized by the caller if desired)
            result: JSON-serializable check result
            options: Pre-fetched options, saves a storage read
        """
        try:
            if not await self._bookmark_cache_enabled(options):
                return

            connection = await self._pool.acquire()
            await connection.execute(
                f"INSERT OR REPLACE INTO {BOOKMARK_CHECKS} (item, value, url, timestamp) "
                "VALUES (?, ?, ?, ?)",
                (hash_url(url), json.dumps(result), url, self._clock()),
            )
            await connection.commit()
        except Exception as e:
            logger.error("Failed to cache bookmark check: %s", e)

    async def get_cached_bookmark_check(
        self,
        url: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Return a cached check result, or None if missing, expired or disabled."""
        try:
            if not await self._bookmark_cache_enabled(options):
                return None

            connection = await self._pool.acquire()
            cache_key = hash_url(url)
            cursor = await connection.execute(
                f"SELECT value, timestamp FROM {BOOKMARK_CHECKS} WHERE item = ?",
                (cache_key,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            ttl = await self._bookmark_check_ttl(options)
            age_minutes = (self._clock() - row["timestamp"]) / 60
            if age_minutes > ttl:
                await self._delete_check(connection, cache_key)
                return None

            return json.loads(row["value"])
        except Exception as e:
            logger.error("Failed to get cached bookmark check: %s", e)
            return None

    async def invalidate_bookmark_cache(self, url: str) -> None:
        """Forget the cached check result for ``url``."""
        try:
            if not await self._bookmark_cache_enabled(None):
                return
            connection = await self._pool.acquire()
            await self._delete_check(connection, hash_url(url))
        except Exception as e:
            logger.error("Failed to invalidate bookmark cache: %s", e)

    async def clear_bookmark_check_cache(self) -> None:
        """Forget every cached check result."""
        try:
            if not await self._bookmark_cache_enabled(None):
                return
            connection = await self._pool.acquire()
            await connection.execute(f"DELETE FROM {BOOKMARK_CHECKS}")
            await connection.commit()
        except Exception as e:
            logger.error("Failed to clear bookmark check cache: %s", e)

    async def _delete_check(self, connection: aiosqlite.Connection, cache_key: str) -> None:
        await connection.execute(f"DELETE FROM {BOOKMARK_CHECKS} WHERE item = ?", (cache_key,))
        await connection.commit()

    async def _bookmark_cache_enabled(self, options: Optional[Dict[str, Any]]) -> bool:
        if options and options.get("cbx_cacheBookmarkChecks") is not None:
            return bool(options["cbx_cacheBookmarkChecks"])
        return bool(await self._store.get_option("cbx_cacheBookmarkChecks"))

    async def _bookmark_check_ttl(self, options: Optional[Dict[str, Any]]) -> float:
        value = None
        if options:
            value = options.get("input_bookmarkCacheTTL")
        if value is None:
            value = await self._store.get_option("input_bookmarkCacheTTL")
        try:
            ttl = float(value)
        except (TypeError, ValueError):
            ttl = 0.0
        if isinstance(value, bool) or ttl <= 0:
            ttl = DEFAULT_BOOKMARK_CHECK_TTL
        return ttl


# Global cache instance
_tag_cache: Optional[TagCache] = None


async def get_tag_cache() -> TagCache:
    """Get or create the global tag cache instance.

    Returns:
        TagCache wired to the global store
    """
    global _tag_cache

    if _tag_cache is None:
        from bookmarker.storage import get_store

        store = await get_store()
        _tag_cache = TagCache(store, ApiClient(store), Notifier(store))

    return _tag_cache
