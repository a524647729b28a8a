"""Keyword extraction cascade.

Each strategy takes the raw page text and the parsed document and returns a
list of candidate keywords. Strategies run in order; the first non-empty
result is reduced against the server's tag vocabulary and returned.
"""
import json
import logging
import re
from typing import Any, Callable, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

from bookmarker.api import is_error_result
from bookmarker.cache import TagCache
from bookmarker.meta import MetaName, get_description, get_meta
from bookmarker.storage import KeyValueStore

logger = logging.getLogger(__name__)

Strategy = Callable[[str, BeautifulSoup], List[str]]

KEYWORD_META: Tuple[MetaName, ...] = (
    ("name", "keywords"),
    ("property", "keywords"),
    ("name", "news_keywords"),
    ("property", "article:tag"),
    ("property", "og:article:tag"),
    ("itemprop", "keywords"),
    ("name", "sailthru.tags"),
    ("name", "parsely-tags"),
    ("http-equiv", "keywords"),
)

# Checked in this order when a single meta value has to be split.
META_DIVIDERS = (",", ";", " ", "&amp;")

GITHUB_TOPIC_SELECTORS = (
    'a[class*="topic-tag"]',
    'a[data-view-component][title^="Topic:"]',
    'a[href^="/topics/"]',
    'a[data-ga-click="Topic, repository page"]',
)

DATALAYER_PUSH = re.compile(r"push\((.*)\)")
XPL_METADATA = re.compile(r"xplGlobal\.document\.metadata=(\{.*?\});")
BRUTE_FORCE_KEYWORDS = re.compile(r'keywords:\s*"(.*)"')
WORD_SPLIT = re.compile(r"[\W_]+")

DEFAULT_HEADLINES_DEPTH = 3


def _script_text(element: Any) -> str:
    return element.string or element.get_text() or ""


def _strip_tokens(tokens: Iterable[str]) -> List[str]:
    return [token.strip() for token in tokens if token and token.strip()]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def from_meta(page_text: str, document: BeautifulSoup) -> List[str]:
    """Keyword meta tags.

    A lone value is split on the first divider it contains. A lone value
    without any divider yields nothing.
    """
    values = get_meta(document, *KEYWORD_META)
    if not values:
        return []

    if len(values) == 1:
        value = values[0]
        divider = next((d for d in META_DIVIDERS if d in value), None)
        if divider is None:
            return []
        values = value.split(divider)

    return [value.replace('"', "").strip() for value in values]


def from_rel_tag(page_text: str, document: BeautifulSoup) -> List[str]:
    return _strip_tokens(a.get_text() for a in document.select("a[rel=tag]"))


def from_rel_category(page_text: str, document: BeautifulSoup) -> List[str]:
    return _strip_tokens(a.get_text() for a in document.select("a[rel=category]"))


def _jsonld_keywords(keywords: Any) -> List[str]:
    """Normalize the shapes 'keywords' takes in JSON-LD."""
    if isinstance(keywords, str):
        return _strip_tokens(keywords.split(","))

    if not isinstance(keywords, list) or not keywords:
        return []

    # [{"termCode": {"label": ...}}, ...]
    if isinstance(keywords[0], dict):
        labels = []
        for term in keywords:
            label = (term.get("termCode") or {}).get("label") if isinstance(term, dict) else None
            if label:
                labels.append(label)
        return labels

    strings = [keyword for keyword in keywords if isinstance(keyword, str)]

    # ["tag:foo", "section:bar", ...]
    tagged = []
    for keyword in strings:
        prefix, sep, value = keyword.partition(":")
        if sep and prefix.strip().lower() == "tag":
            tagged.append(value.strip())
    if tagged:
        return tagged

    return strings


def _jsonld_node_keywords(node: Any) -> List[str]:
    if not isinstance(node, dict):
        return []

    keywords = _jsonld_keywords(node.get("keywords"))
    if keywords:
        return keywords

    graph = node.get("@graph")
    if isinstance(graph, list):
        for member in graph:
            if not isinstance(member, dict):
                continue
            types = member.get("@type")
            if types == "Article" or (isinstance(types, list) and "Article" in types):
                keywords = _jsonld_keywords(member.get("keywords"))
                if keywords:
                    return keywords

    main_entity = node.get("mainEntity")
    if isinstance(main_entity, dict) and isinstance(main_entity.get("keywords"), list):
        return _jsonld_keywords(main_entity["keywords"])

    return []


def from_json_ld(page_text: str, document: BeautifulSoup) -> List[str]:
    """Keywords from application/ld+json scripts; unparsable scripts are skipped."""
    for script in document.select('script[type="application/ld+json"]'):
        try:
            data = json.loads(_script_text(script))
        except ValueError:
            logger.debug("Skipping unparsable JSON-LD block")
            continue

        nodes = data if isinstance(data, list) else [data]
        for node in nodes:
            keywords = _jsonld_node_keywords(node)
            if keywords:
                return keywords

    return []


def from_datalayer(page_text: str, document: BeautifulSoup) -> List[str]:
    """Google Tag Manager ``dataLayer.push({...content.keywords...})``."""
    for script in document.find_all("script"):
        text = _script_text(script)
        if "dataLayer.push" not in text:
            continue

        match = DATALAYER_PUSH.search(text)
        if not match:
            continue

        try:
            payload = json.loads(match.group(1).replace("undefined", '"x"'))
            keywords = payload["content"]["keywords"].split("|")
        except (ValueError, KeyError, TypeError, AttributeError):
            continue

        keywords = _strip_tokens(keywords)
        if keywords:
            return keywords

    return []


def from_github_topics(page_text: str, document: BeautifulSoup) -> List[str]:
    for selector in GITHUB_TOPIC_SELECTORS:
        elements = document.select(selector)
        if elements:
            return _strip_tokens(element.get_text() for element in elements)

    return []


def from_next_data(page_text: str, document: BeautifulSoup) -> List[str]:
    """Next.js hydration data: ``props.pageProps.post.tags``."""
    element = document.find(id="__NEXT_DATA__")
    if element is None:
        return []

    data = json.loads(_script_text(element))
    try:
        tags = data["props"]["pageProps"]["post"]["tags"]
    except (KeyError, TypeError):
        return []

    if isinstance(tags, str):
        return _strip_tokens(tags.split(","))
    if isinstance(tags, list):
        return [tag for tag in tags if isinstance(tag, str) and tag]
    return []


def from_xpl_global(page_text: str, document: BeautifulSoup) -> List[str]:
    """IEEE Xplore ``xplGlobal.document.metadata={...};`` payload."""
    match = XPL_METADATA.search(page_text or "")
    if not match:
        return []

    try:
        metadata = json.loads(match.group(1))
    except ValueError:
        return []

    keywords = []
    for group in metadata.get("keywords") or []:
        if isinstance(group, dict):
            keywords.extend(kwd for kwd in group.get("kwd") or [] if isinstance(kwd, str))
    return keywords


def from_brute_force(page_text: str, document: BeautifulSoup) -> List[str]:
    """Last resort: a literal ``keywords: "a, b"`` anywhere in the page text."""
    match = BRUTE_FORCE_KEYWORDS.search(page_text or "")
    if not match:
        return []
    return _strip_tokens(match.group(1).split(","))


STRATEGIES: Tuple[Strategy, ...] = (
    from_meta,
    from_rel_tag,
    from_rel_category,
    from_json_ld,
    from_datalayer,
    from_github_topics,
    from_next_data,
    from_xpl_global,
    from_brute_force,
)


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------

def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


class KeywordExtractor:
    """Runs the strategy cascade and reduces results to known tags."""

    def __init__(
        self,
        store: KeyValueStore,
        tag_cache: TagCache,
        strategies: Optional[Iterable[Strategy]] = None,
    ):
        self.store = store
        self.tag_cache = tag_cache
        self.strategies = tuple(strategies) if strategies is not None else STRATEGIES

    async def get_keywords(self, page_text: str, document: BeautifulSoup) -> List[str]:
        """Keyword suggestions for a page.

        Args:
            page_text: Raw page HTML/text
            document: Parsed page

        Returns:
            Keywords, possibly reduced to tags already on the server
        """
        if not await self.store.get_option("cbx_autoTags"):
            return []

        for strategy in self.strategies:
            try:
                keywords = strategy(page_text, document)
            except Exception as e:
                logger.warning("Keyword strategy %s failed: %s", strategy.__name__, e)
                continue

            if keywords:
                logger.debug("Keywords found by %s: %s", strategy.__name__, keywords)
                return await self.reduce_keywords(keywords)

        if not await self.store.get_option("cbx_extendedKeywords"):
            return []

        return await self._extended_keywords(document)

    async def _extended_keywords(self, document: BeautifulSoup) -> List[str]:
        """Match description and headline words against known tags."""
        description = get_description(document)
        if description:
            keywords = await self.reduce_keywords(WORD_SPLIT.split(description), force=True)
            if keywords:
                return keywords

        max_level = await self.store.get_option("input_headlinesDepth")
        try:
            max_level = int(max_level)
        except (TypeError, ValueError):
            max_level = DEFAULT_HEADLINES_DEPTH

        for level in range(1, max_level + 1):
            words: List[str] = []
            for headline in document.find_all(f"h{level}"):
                words.extend(WORD_SPLIT.split(headline.get_text()))

            if words:
                keywords = await self.reduce_keywords(words, force=True)
                if keywords:
                    return keywords

        return []

    async def reduce_keywords(self, keywords: Iterable[str], force: bool = False) -> List[str]:
        """Keep only keywords the server already knows as tags.

        Matching is case-insensitive; the candidate's own casing is kept.
        Without ``force`` this only applies when cbx_reduceKeywords is on.
        An unavailable or empty vocabulary leaves nothing.
        """
        keywords = list(keywords)
        if not force and not await self.store.get_option("cbx_reduceKeywords"):
            return keywords

        keywords = _unique(keyword for keyword in keywords if keyword)

        vocabulary = await self.tag_cache.cache_get("keywords")
        if not vocabulary or is_error_result(vocabulary) or not isinstance(vocabulary, list):
            return []

        known = {str(tag).lower() for tag in vocabulary}
        return _unique(keyword for keyword in keywords if keyword.lower() in known)
