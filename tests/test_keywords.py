"""Tests for keywords module."""
import json
from unittest.mock import AsyncMock

import pytest

from bookmarker.keywords import (
    KeywordExtractor,
    from_brute_force,
    from_datalayer,
    from_github_topics,
    from_json_ld,
    from_meta,
    from_next_data,
    from_rel_category,
    from_rel_tag,
    from_xpl_global,
)
from bookmarker.page import parse_document


def make_extractor(options, vocabulary=None, **kwargs):
    store = AsyncMock()
    store.get_option.side_effect = lambda name: options.get(name, False)
    tag_cache = AsyncMock()
    tag_cache.cache_get.return_value = vocabulary if vocabulary is not None else []
    return KeywordExtractor(store, tag_cache, **kwargs)


def ld_json(data):
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


NO_REDUCE = {"cbx_autoTags": True, "cbx_reduceKeywords": False, "cbx_extendedKeywords": False}


class TestMetaStrategy:
    def test_comma_separated(self):
        doc = parse_document('<meta name="keywords" content="python, asyncio, &quot;sqlite&quot;">')
        assert from_meta("", doc) == ["python", "asyncio", "sqlite"]

    def test_semicolon_separated(self):
        doc = parse_document('<meta name="keywords" content="alpha;beta">')
        assert from_meta("", doc) == ["alpha", "beta"]

    def test_comma_beats_space(self):
        doc = parse_document('<meta name="keywords" content="space travel, moon">')
        assert from_meta("", doc) == ["space travel", "moon"]

    def test_space_separated(self):
        doc = parse_document('<meta name="news_keywords" content="alpha beta">')
        assert from_meta("", doc) == ["alpha", "beta"]

    def test_semicolon_checked_before_amp(self):
        doc = parse_document('<meta name="keywords" content="mold&amp;amp;course">')
        assert from_meta("", doc) == ["mold&amp", "course"]

    def test_single_value_without_divider_is_dropped(self):
        doc = parse_document('<meta name="keywords" content="python">')
        assert from_meta("", doc) == []

    def test_multiple_values_kept_whole(self):
        doc = parse_document(
            '<meta property="article:tag" content="Space Travel">'
            '<meta property="article:tag" content="Moon">'
        )
        assert from_meta("", doc) == ["Space Travel", "Moon"]


class TestAnchorStrategies:
    def test_rel_tag(self):
        doc = parse_document('<a rel="tag" href="/t/1"> Tag1 </a><a rel="tag" href="/t/2">Tag2</a>')
        assert from_rel_tag("", doc) == ["Tag1", "Tag2"]

    def test_rel_category(self):
        doc = parse_document('<a rel="category" href="/c/news">News</a>')
        assert from_rel_category("", doc) == ["News"]


class TestJsonLdStrategy:
    def test_list(self):
        assert from_json_ld("", parse_document(ld_json({"keywords": ["a", "b"]}))) == ["a", "b"]

    def test_comma_string(self):
        doc = parse_document(ld_json({"keywords": "keyword1,keyword2"}))
        assert from_json_ld("", doc) == ["keyword1", "keyword2"]

    def test_graph_article(self):
        doc = parse_document(ld_json({"@graph": [
            {"@type": "WebPage", "name": "x"},
            {"@type": "Article", "keywords": ["graph1", "graph2"]},
        ]}))
        assert from_json_ld("", doc) == ["graph1", "graph2"]

    def test_term_codes(self):
        doc = parse_document(ld_json({"keywords": [
            {"termCode": {"label": "Space"}},
            {"termCode": {}},
            {"termCode": {"label": "Moon"}},
        ]}))
        assert from_json_ld("", doc) == ["Space", "Moon"]

    def test_tag_prefixed(self):
        doc = parse_document(ld_json({"keywords": ["tag:climate", "section:science", "Tag:trees"]}))
        assert from_json_ld("", doc) == ["climate", "trees"]

    def test_main_entity(self):
        doc = parse_document(ld_json({"mainEntity": {"keywords": ["x", "y"]}}))
        assert from_json_ld("", doc) == ["x", "y"]

    def test_list_root(self):
        doc = parse_document(ld_json([{"@type": "WebSite"}, {"keywords": "a, b"}]))
        assert from_json_ld("", doc) == ["a", "b"]

    def test_invalid_script_skipped(self):
        doc = parse_document(
            '<script type="application/ld+json">invalid json {</script>'
            + ld_json({"keywords": ["good"]})
        )
        assert from_json_ld("", doc) == ["good"]

    def test_only_invalid(self):
        doc = parse_document('<script type="application/ld+json">invalid json {</script>')
        assert from_json_ld("", doc) == []


class TestDataLayerStrategy:
    def test_keywords_from_push(self):
        doc = parse_document(
            '<script>dataLayer.push({"content": {"keywords": "space|nasa|moon"}, "user": undefined});</script>'
        )
        assert from_datalayer("", doc) == ["space", "nasa", "moon"]

    def test_broken_payload_tries_next_script(self):
        doc = parse_document(
            "<script>dataLayer.push({broken);</script>"
            '<script>dataLayer.push({"content": {"keywords": "ok"}});</script>'
        )
        assert from_datalayer("", doc) == ["ok"]

    def test_no_datalayer(self):
        assert from_datalayer("", parse_document("<script>var x = 1;</script>")) == []


class TestGithubStrategy:
    def test_topic_tag_class(self):
        doc = parse_document(
            '<a class="topic-tag topic-tag-link" href="/topics/python">\n  python\n</a>'
            '<a class="topic-tag topic-tag-link" href="/topics/cli"> cli </a>'
        )
        assert from_github_topics("", doc) == ["python", "cli"]

    def test_legacy_markup(self):
        doc = parse_document('<a data-ga-click="Topic, repository page">rust</a>')
        assert from_github_topics("", doc) == ["rust"]


class TestNextDataStrategy:
    def test_tags(self):
        data = {"props": {"pageProps": {"post": {"tags": "react,nextjs"}}}}
        doc = parse_document(f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(data)}</script>')
        assert from_next_data("", doc) == ["react", "nextjs"]

    def test_missing_element(self):
        assert from_next_data("", parse_document("<p></p>")) == []

    def test_missing_path(self):
        doc = parse_document('<script id="__NEXT_DATA__" type="application/json">{"props": {}}</script>')
        assert from_next_data("", doc) == []

    def test_malformed_json_raises(self):
        doc = parse_document('<script id="__NEXT_DATA__" type="application/json">{not json</script>')
        with pytest.raises(ValueError):
            from_next_data("", doc)


class TestTextStrategies:
    def test_xpl_global(self):
        text = 'xplGlobal.document.metadata={"keywords": [{"kwd": ["kw1", "kw2"]}]};'
        assert from_xpl_global(text, None) == ["kw1", "kw2"]

    def test_xpl_global_invalid(self):
        assert from_xpl_global("xplGlobal.document.metadata={invalid};", None) == []
        assert from_xpl_global("no xplGlobal here", None) == []

    def test_brute_force(self):
        text = 'some text keywords: "keyword1, keyword2, keyword3" more text'
        assert from_brute_force(text, None) == ["keyword1", "keyword2", "keyword3"]

    def test_brute_force_missing(self):
        assert from_brute_force("no keywords here", None) == []


@pytest.mark.asyncio
class TestGetKeywords:
    async def test_auto_tags_disabled(self):
        extractor = make_extractor({"cbx_autoTags": False})
        doc = parse_document('<a rel="tag">Tag1</a>')
        assert await extractor.get_keywords("", doc) == []
        extractor.tag_cache.cache_get.assert_not_awaited()

    async def test_rel_tags_only(self):
        extractor = make_extractor(NO_REDUCE)
        doc = parse_document('<a rel="tag" href="/1">Tag1</a><a rel="tag" href="/2">Tag2</a>')
        assert await extractor.get_keywords("", doc) == ["Tag1", "Tag2"]

    async def test_first_strategy_wins(self):
        extractor = make_extractor(NO_REDUCE)
        doc = parse_document('<meta name="keywords" content="meta1, meta2"><a rel="tag">Tag1</a>')
        assert await extractor.get_keywords("", doc) == ["meta1", "meta2"]

    async def test_text_strategies_use_page_text(self):
        extractor = make_extractor(NO_REDUCE)
        text = 'xplGlobal.document.metadata={"keywords": [{"kwd": ["kw1", "kw2"]}]};'
        assert await extractor.get_keywords(text, parse_document("<p></p>")) == ["kw1", "kw2"]

    async def test_results_are_reduced(self):
        options = {"cbx_autoTags": True, "cbx_reduceKeywords": True}
        extractor = make_extractor(options, vocabulary=["tag1"])
        doc = parse_document('<a rel="tag">Tag1</a><a rel="tag">Tag2</a>')
        assert await extractor.get_keywords("", doc) == ["Tag1"]

    async def test_malformed_next_data_is_tolerated(self):
        extractor = make_extractor(NO_REDUCE)
        doc = parse_document('<script id="__NEXT_DATA__" type="application/json">{not json</script>')
        assert await extractor.get_keywords("", doc) == []

    async def test_failing_strategy_is_skipped(self):
        def broken(page_text, document):
            raise RuntimeError("boom")

        def working(page_text, document):
            return ["found"]

        extractor = make_extractor(NO_REDUCE, strategies=[broken, working])
        assert await extractor.get_keywords("", parse_document("")) == ["found"]

    async def test_option_errors_propagate(self):
        extractor = make_extractor({})
        extractor.store.get_option.side_effect = RuntimeError("storage down")
        with pytest.raises(RuntimeError, match="storage down"):
            await extractor.get_keywords("", parse_document(""))

    async def test_nothing_found(self):
        extractor = make_extractor(NO_REDUCE)
        assert await extractor.get_keywords("plain text", parse_document("<p>plain text</p>")) == []


@pytest.mark.asyncio
class TestExtendedKeywords:
    OPTIONS = {
        "cbx_autoTags": True,
        "cbx_reduceKeywords": False,
        "cbx_extendedKeywords": True,
        "input_headlinesDepth": 3,
    }

    async def test_description_words(self):
        extractor = make_extractor(self.OPTIONS, vocabulary=["python", "asyncio"])
        doc = parse_document('<meta name="description" content="Learn asyncio with Python_today.">')
        assert await extractor.get_keywords("", doc) == ["asyncio", "Python"]

    async def test_headline_words(self):
        extractor = make_extractor(self.OPTIONS, vocabulary=["sqlite"])
        doc = parse_document("<h1>Welcome</h1><h2>Using SQLite</h2><h2>More</h2>")
        assert await extractor.get_keywords("", doc) == ["SQLite"]

    async def test_headline_depth_limit(self):
        options = {**self.OPTIONS, "input_headlinesDepth": 1}
        extractor = make_extractor(options, vocabulary=["sqlite"])
        doc = parse_document("<h1>Welcome</h1><h2>Using SQLite</h2>")
        assert await extractor.get_keywords("", doc) == []

    async def test_all_headlines_of_a_level_count(self):
        extractor = make_extractor(self.OPTIONS, vocabulary=["python"])
        doc = parse_document("<h1>Python</h1><h1>Welcome</h1>")
        assert await extractor.get_keywords("", doc) == ["Python"]

    async def test_disabled(self):
        options = {**self.OPTIONS, "cbx_extendedKeywords": False}
        extractor = make_extractor(options, vocabulary=["python"])
        doc = parse_document("<h1>Python</h1>")
        assert await extractor.get_keywords("", doc) == []


@pytest.mark.asyncio
class TestReduceKeywords:
    async def test_case_insensitive_keeps_original_casing(self):
        extractor = make_extractor({}, vocabulary=["foo", "baz"])
        assert await extractor.reduce_keywords(["Foo", "Bar"], force=True) == ["Foo"]

    async def test_unchanged_when_disabled(self):
        extractor = make_extractor({"cbx_reduceKeywords": False}, vocabulary=["foo"])
        assert await extractor.reduce_keywords(["Foo", "Bar", "Foo"]) == ["Foo", "Bar", "Foo"]
        extractor.tag_cache.cache_get.assert_not_awaited()

    async def test_option_enables_reduction(self):
        extractor = make_extractor({"cbx_reduceKeywords": True}, vocabulary=["foo"])
        assert await extractor.reduce_keywords(["Foo", "Bar"]) == ["Foo"]

    async def test_deduplicates(self):
        extractor = make_extractor({}, vocabulary=["foo", "bar"])
        assert await extractor.reduce_keywords(["foo", "bar", "foo"], force=True) == ["foo", "bar"]

    async def test_empty_vocabulary(self):
        extractor = make_extractor({}, vocabulary=[])
        assert await extractor.reduce_keywords(["foo"], force=True) == []

    async def test_error_vocabulary(self):
        extractor = make_extractor({}, vocabulary={"status": 404, "statusText": "Not Found"})
        assert await extractor.reduce_keywords(["foo"], force=True) == []

    async def test_cache_errors_propagate(self):
        extractor = make_extractor({})
        extractor.tag_cache.cache_get.side_effect = RuntimeError("Cache error")
        with pytest.raises(RuntimeError, match="Cache error"):
            await extractor.reduce_keywords(["foo"], force=True)
