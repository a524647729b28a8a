"""URL normalization for duplicate detection and cache keys.

Handles the usual variants of one address: protocol, ``www.``, trailing
slash, query parameter order and fragment.
"""
import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bookmarker.config import get_config
from bookmarker.lru import LRUCache

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


class UrlNormalizer:
    """Memoizing URL normalizer."""

    def __init__(self, cache_size: Optional[int] = None):
        if cache_size is None:
            cache_size = get_config().cache.url_cache_size
        self._cache = LRUCache(cache_size)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def normalize(
        self,
        url: str,
        normalize_protocol: bool = True,
        remove_www: bool = True,
        remove_trailing_slash: bool = True,
        sort_query_params: bool = True,
        remove_fragment: bool = True,
    ) -> str:
        """Normalize a URL.

        Args:
            url: The URL to normalize
            normalize_protocol: Convert http to https
            remove_www: Drop a leading 'www.' from the host
            remove_trailing_slash: Drop one trailing slash (never the root path)
            sort_query_params: Sort query parameters by key
            remove_fragment: Drop the '#fragment'

        Returns:
            The normalized URL, or the input unchanged if it cannot be parsed
        """
        options = (normalize_protocol, remove_www, remove_trailing_slash, sort_query_params, remove_fragment)
        cache_key = (url, options)

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            normalized = _normalize(url, *options)
        except ValueError as e:
            logger.warning("URL normalization failed for %r: %s", url, e)
            return url

        self._cache.put(cache_key, normalized)
        return normalized

    def equivalent(self, url1: str, url2: str, **options: bool) -> bool:
        """True if both URLs normalize to the same string."""
        return self.normalize(url1, **options) == self.normalize(url2, **options)


def _normalize(
    url: str,
    normalize_protocol: bool,
    remove_www: bool,
    remove_trailing_slash: bool,
    sort_query_params: bool,
    remove_fragment: bool,
) -> str:
    parts = urlsplit(url)
    scheme = parts.scheme
    if not scheme:
        raise ValueError("missing scheme")
    if scheme in DEFAULT_PORTS and not parts.hostname:
        raise ValueError("missing host")

    if normalize_protocol and scheme == "http":
        scheme = "https"

    netloc = parts.netloc
    path = parts.path
    if parts.hostname:
        host = parts.hostname  # already lower-cased
        if remove_www and host.startswith("www."):
            host = host[4:]
        if ":" in host:
            host = f"[{host}]"

        port = parts.port
        if port is not None and port != DEFAULT_PORTS.get(scheme):
            host = f"{host}:{port}"

        userinfo, _, _ = parts.netloc.rpartition("@")
        netloc = f"{userinfo}@{host}" if userinfo else host
        path = path or "/"

    query = parts.query
    if sort_query_params and query:
        pairs = parse_qsl(query, keep_blank_values=True)
        pairs.sort(key=lambda pair: pair[0])
        query = urlencode(pairs)

    fragment = "" if remove_fragment else parts.fragment

    normalized = urlunsplit((scheme, netloc, path, query, fragment))

    if remove_trailing_slash and normalized.endswith("/") and path != "/":
        normalized = normalized[:-1]

    return normalized


# Global normalizer instance
_normalizer: Optional[UrlNormalizer] = None


def get_url_normalizer() -> UrlNormalizer:
    """Get or create the global URL normalizer."""
    global _normalizer

    if _normalizer is None:
        _normalizer = UrlNormalizer()

    return _normalizer


def normalize_url(url: str, **options: bool) -> str:
    return get_url_normalizer().normalize(url, **options)


def urls_are_equivalent(url1: str, url2: str, **options: bool) -> bool:
    return get_url_normalizer().equivalent(url1, url2, **options)
