"""Assembly of the bookmark payload for a captured page.

Combines description and keyword extraction with the "is this page already
bookmarked" check and the folder list.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from bookmarker.api import BOOKMARK_ENDPOINT, ApiClient
from bookmarker.cache import TagCache
from bookmarker.keywords import KeywordExtractor
from bookmarker.meta import get_description
from bookmarker.page import fetch_page_html, is_bookmarkable_url, parse_document
from bookmarker.similarity import SimilarityEngine, get_similarity_engine
from bookmarker.storage import KeyValueStore
from bookmarker.url_normalizer import UrlNormalizer, get_url_normalizer

logger = logging.getLogger(__name__)

CHECK_OPTIONS = (
    "cbx_alreadyStored",
    "cbx_fuzzyUrlMatch",
    "cbx_cacheBookmarkChecks",
    "input_bookmarkCacheTTL",
)

DEFAULT_TITLE_CHECK_LIMIT = 20
DEFAULT_TITLE_SIMILARITY_THRESHOLD = 75  # percent


def empty_check(ok: bool = True) -> Dict[str, Any]:
    return {"ok": ok, "found": False, "matches": [], "count": 0}


def merge_matches(url_matches: List[Dict[str, Any]], title_matches: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Merge URL and title matches by bookmark id.

    URL matches come first, then title matches by descending similarity.
    A bookmark matched both ways is kept as a URL match.
    """
    merged: Dict[Any, Dict[str, Any]] = {}

    for match in url_matches:
        merged[match.get("id")] = {**match, "matchType": "url", "priority": 1}

    for match in title_matches:
        if match.get("id") not in merged:
            merged[match.get("id")] = {**match, "matchType": "title", "priority": 2}

    return sorted(
        merged.values(),
        key=lambda match: (match["priority"], -(match.get("similarity") or 0)),
    )


class BookmarkInspector:
    """Builds the data shown when the user bookmarks a page."""

    def __init__(
        self,
        store: KeyValueStore,
        tag_cache: TagCache,
        api: ApiClient,
        extractor: Optional[KeywordExtractor] = None,
        similarity: Optional[SimilarityEngine] = None,
        normalizer: Optional[UrlNormalizer] = None,
    ):
        self.store = store
        self.tag_cache = tag_cache
        self.api = api
        self.extractor = extractor or KeywordExtractor(store, tag_cache)
        self.similarity = similarity or get_similarity_engine()
        self.normalizer = normalizer or get_url_normalizer()
        self._inflight: Dict[str, asyncio.Task] = {}

    async def get_data(
        self,
        url: str,
        title: str = "",
        html: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Collect everything needed to bookmark a page.

        Args:
            url: Page URL
            title: Page title
            html: Page HTML; fetched from ``url`` when not given
            cancel_event: Setting this event aborts the server requests

        Returns:
            The stored bookmark if the page is already bookmarked, otherwise
            the extracted data with ``bookmarkID`` -1. ``ok`` is False with an
            ``error`` message when the page cannot be processed.
        """
        if not is_bookmarkable_url(url):
            return {"ok": False, "error": "URL is not bookmarkable"}

        if html is None:
            html = await fetch_page_html(url)
            if html is None:
                return {"ok": False, "error": "Unable to get page content"}

        document = parse_document(html)

        keywords, check, folders = await asyncio.gather(
            self.extractor.get_keywords(html, document),
            self.check_bookmark(url, title, cancel_event),
            self.get_folders(),
        )

        if check.get("ok") and check.get("found"):
            data = dict(check)
            data["keywords"] = data.get("tags")
            data["folders"] = folders
            data["bookmarkID"] = data.get("id")
            return data

        return {
            "ok": True,
            "url": url,
            "title": title,
            "description": get_description(document),
            "keywords": keywords,
            "checkBookmark": check,
            "folders": folders,
            "bookmarkID": -1,
        }

    async def get_folders(self) -> Any:
        """Folder choices, or [] if the user does not use folders."""
        if not await self.store.get_option("cbx_displayFolders"):
            return []
        return await self.tag_cache.cache_get("folders")

    async def check_bookmark(
        self,
        url: str,
        title: str = "",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Find stored bookmarks matching a page by URL and, optionally, title.

        Concurrent checks of the same URL share one server round trip.
        """
        options = await self.store.get_options(CHECK_OPTIONS)

        if not options.get("cbx_alreadyStored"):
            return empty_check()

        cache_key = self.normalizer.normalize(url) if options.get("cbx_fuzzyUrlMatch") else url

        cached = await self.tag_cache.get_cached_bookmark_check(cache_key, options)
        if cached:
            logger.debug("Using cached bookmark check for %s", url)
            return cached

        inflight = self._inflight.get(cache_key)
        if inflight is not None:
            logger.debug("Waiting for in-flight bookmark check of %s", url)
            return await self._join(inflight, cancel_event)

        task = asyncio.ensure_future(self._run_check(cache_key, title, options, cancel_event))
        self._inflight[cache_key] = task
        task.add_done_callback(lambda _: self._inflight.pop(cache_key, None))
        return await asyncio.shield(task)

    async def _join(self, task: asyncio.Task, cancel_event: Optional[asyncio.Event]) -> Dict[str, Any]:
        """Wait for another caller's check unless ``cancel_event`` fires first."""
        if cancel_event is None:
            return await asyncio.shield(task)

        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        return empty_check(ok=False)

    async def _run_check(
        self,
        cache_key: str,
        title: str,
        options: Dict[str, Any],
        cancel_event: Optional[asyncio.Event],
    ) -> Dict[str, Any]:
        options["cbx_titleSimilarityCheck"] = await self.store.get_option("cbx_titleSimilarityCheck")
        result = await self.check_by_url(cache_key, cancel_event)

        if not (result["found"] and result["matches"]) and options.get("cbx_titleSimilarityCheck") and title:
            title_matches = await self.check_by_title(title, cancel_event)
            if title_matches:
                merged = merge_matches(result["matches"], title_matches)
                result["matches"] = merged
                result["count"] = len(merged)
                result["found"] = bool(merged)
                if merged:
                    result.update(merged[0])

        if result["ok"]:
            await self.tag_cache.cache_bookmark_check(cache_key, result, options)
        return result

    async def check_by_url(self, url: str, cancel_event: Optional[asyncio.Event] = None) -> Dict[str, Any]:
        """Look up bookmarks stored under ``url``.

        The first match is also copied to the top level of the result.
        """
        result = await self.api.call(BOOKMARK_ENDPOINT, "GET", {"url": url, "page": -1}, cancel_event)

        if not isinstance(result, dict) or result.get("status") != "success":
            logger.debug("Bookmark check by URL failed: %s", result)
            return empty_check(ok=False)

        bookmarks = result.get("data") or []
        if not bookmarks:
            return empty_check()

        response = {"ok": True, "found": True, "matches": bookmarks, "count": len(bookmarks)}
        response.update(bookmarks[0])
        return response

    async def check_by_title(self, title: str, cancel_event: Optional[asyncio.Event] = None) -> List[Dict[str, Any]]:
        """Recent bookmarks with a title similar to ``title``; [] on any failure."""
        try:
            options = await self.store.get_options(
                ["input_titleCheckLimit", "input_titleSimilarityThreshold"]
            )
            limit = options.get("input_titleCheckLimit") or DEFAULT_TITLE_CHECK_LIMIT
            threshold = (options.get("input_titleSimilarityThreshold") or DEFAULT_TITLE_SIMILARITY_THRESHOLD) / 100

            result = await self.api.call(BOOKMARK_ENDPOINT, "GET", {"page": 0, "limit": limit}, cancel_event)
            if not isinstance(result, dict) or result.get("status") != "success":
                logger.debug("Title check failed: %s", result)
                return []

            matches = self.similarity.batch_similarity_check(title, result.get("data") or [], threshold)
            logger.debug("Found %d similar titles", len(matches))
            return matches
        except Exception as e:
            logger.warning("Title check failed: %s", e)
            return []
