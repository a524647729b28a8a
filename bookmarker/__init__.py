"""Bookmark enrichment core: option storage, tag caching, similarity and keyword extraction."""
