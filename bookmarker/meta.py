"""Meta tag lookups and page description extraction."""
import re
from typing import List, Tuple

from bs4 import BeautifulSoup

MetaName = Tuple[str, str]  # (attribute, value)

DESCRIPTION_META: Tuple[MetaName, ...] = (
    ("property", "og:description"),
    ("name", "description"),
    ("name", "twitter:description"),
    ("content", "og:description"),
    ("name", "og:description"),
    ("rel", "search"),
    ("http-equiv", "description"),
)

_EDGE_NEWLINES = re.compile(r"^\n+|\n+$")


def get_meta(document: BeautifulSoup, *meta_names: MetaName) -> List[str]:
    """Return the ``content`` values of the first matching meta identifier.

    Identifiers are tried in order; attribute values match case-insensitively
    and elements with empty content are ignored.

    Args:
        document: Parsed page
        meta_names: (attribute, value) pairs, e.g. ('name', 'keywords')

    Returns:
        Content strings of the first identifier that had any, else []
    """
    for attribute, value in meta_names:
        contents = [
            element.get("content")
            for element in document.select(f'[{attribute}="{value}" i]')
            if element.get("content")
        ]
        if contents:
            return contents

    return []


def get_description(document: BeautifulSoup) -> str:
    """The page description from the usual meta tags, or ''."""
    description = get_meta(document, *DESCRIPTION_META)
    if not description:
        return ""

    return _EDGE_NEWLINES.sub("", description[0]).strip()
