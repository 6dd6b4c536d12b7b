"""
Content renderers for post bodies

Turns raw post content into sanitised HTML. The renderer is chosen by the
``forum.content_parser`` setting:
- ``bbcode``: BBCode markup, raw HTML escaped
- ``markdown``: CommonMark, raw HTML escaped and unsafe links rejected
"""

import logging
import re
from typing import Iterable

import bbcode
from markdown_it import MarkdownIt


logger = logging.getLogger(__name__)


class ContentRenderer:
    """Base class for post content renderers."""

    name = ""

    def render(self, content: str) -> str:
        """
        Render raw post content.

        Args:
            content: Raw content as entered by the author

        Returns:
            str: Sanitised HTML
        """
        raise NotImplementedError


class BBCodeRenderer(ContentRenderer):
    """Renders BBCode with the bbcode package's default tag set."""

    name = "bbcode"

    def __init__(self):
        self._parser = bbcode.Parser(escape_html=True, replace_links=True)

    def render(self, content: str) -> str:
        return self._parser.format(content or "")


class MarkdownRenderer(ContentRenderer):
    """Renders CommonMark; embedded HTML is escaped rather than passed through."""

    name = "markdown"

    def __init__(self):
        # markdown-it's default link validator rejects javascript:, vbscript:, file: and data: URLs
        self._md = MarkdownIt("commonmark", {"html": False})

    def render(self, content: str) -> str:
        return self._md.render(content or "")


_RENDERERS = {
    BBCodeRenderer.name: BBCodeRenderer,
    MarkdownRenderer.name: MarkdownRenderer,
}


def get_renderer(name: str) -> ContentRenderer:
    """
    Build the renderer registered under ``name``.

    Args:
        name: "bbcode" or "markdown"

    Returns:
        ContentRenderer instance

    Raises:
        ValueError: If no renderer has that name
    """
    try:
        renderer_class = _RENDERERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown content parser: {name}")
    logger.debug(f"Using {renderer_class.__name__} for post content")
    return renderer_class()


def filter_forbidden_words(content: str, words: Iterable[str]) -> str:
    """
    Replace every occurrence of a forbidden word with ``*``.

    Matching is case-insensitive and longer words are replaced first.

    Args:
        content: Raw post content
        words: Forbidden words

    Returns:
        str: Filtered content
    """
    cleaned = sorted({word.strip() for word in words if word and word.strip()}, key=len, reverse=True)
    if not cleaned or not content:
        return content
    pattern = re.compile("|".join(re.escape(word) for word in cleaned), re.IGNORECASE)
    return pattern.sub("*", content)
