"""Markdown conversion for Folio.

The Markdown converter is the one place where body text becomes HTML. It is a
pure function of its input and is called once per content item per build by
the render worker; the result is stored on the item and reused by every
output format.

Key classes:
- MarkdownConverter: Converts Markdown to HTML with heading ids and highlighting.
- RenderedMarkdown: HTML plus the headings collected for a table of contents.
- Heading: One heading entry of the table of contents.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

MARKDOWN_PLUGINS = ["strikethrough", "footnotes", "table", "url"]


@dataclass(frozen=True)
class Heading:
    """Represents a heading extracted from markdown content for TOC generation.

    Attributes:
        id: Anchor ID for the heading (URL-friendly slug).
        text: The text content of the heading.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


@dataclass(frozen=True)
class RenderedMarkdown:
    html: str
    toc: tuple[Heading, ...] = field(default_factory=tuple)


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text.

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _HighlightRenderer(mistune.HTMLRenderer):
    """Markdown renderer adding heading ids and Pygments highlighting.

    Attributes:
        headings: Headings seen during rendering, in document order.
    """

    def __init__(self) -> None:
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        """Render a heading with a unique id and record it for the TOC."""
        base_id = _generate_heading_id(text) or "section"

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        self.headings.append(Heading(id=heading_id, text=text, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block, highlighted when the language is known."""
        if info:
            language = info.split()[0]
            try:
                lexer = get_lexer_by_name(language, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return highlight(code, lexer, formatter)
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        lang_class = f' class="language-{info.split()[0]}"' if info else ""
        return f"<pre><code{lang_class}>{escaped}</code></pre>\n"


class MarkdownConverter:
    """Converts Markdown text to HTML.

    A fresh mistune renderer is created per call so concurrent workers never
    share heading state.
    """

    def to_html(self, markdown: str) -> RenderedMarkdown:
        """Render Markdown content to HTML.

        Args:
            markdown: Markdown source content.

        Returns:
            RenderedMarkdown with the HTML and collected headings.
        """
        renderer = _HighlightRenderer()
        convert = mistune.create_markdown(renderer=renderer, plugins=MARKDOWN_PLUGINS)
        html = convert(markdown)
        return RenderedMarkdown(html=html, toc=tuple(renderer.headings))
