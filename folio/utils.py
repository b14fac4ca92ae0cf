"""Utility functions for Folio.

String processing and path helpers shared by the content store, the template
functions and the build coordinator.

Key functions:
    slugify: Convert filenames or titles to URL slugs.
    extract_date_from_name: Extract date from a YYYY-MM-DD filename prefix.
    strip_html: Remove tags from an HTML fragment.
    count_words: Count words in text or HTML.
    reading_time: Estimate minutes needed to read a text.
    is_markdown: Check if a path is a Markdown file.
    is_internal_path: Check if a path is hidden from content loading.
    ensure_clean_dir: Ensure a directory exists and is empty.
    join_root_url: Join a base URL with a path.
    absolutize_html_urls: Prefix root-relative links in HTML with a base URL.
"""

from __future__ import annotations

import html
import math
import re
import shutil
import unicodedata
from datetime import datetime
from pathlib import Path

TAG_RE = re.compile(r"<[^>]+>")
URL_ATTR_RE = re.compile(r'(?P<prefix>\b(?:href|src|action)=["\'])(?P<url>/[^"\']*)(?P<suffix>["\'])')
WORDS_PER_MINUTE = 200
MARKDOWN_SUFFIXES = (".md", ".markdown")


def strip_date_prefix(name: str) -> str:
    """Drop a leading ``YYYY-MM-DD-`` from a filename stem."""
    parts = name.split("-")
    if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
        return "-".join(parts[3:])
    return name


def slugify(name: str) -> str:
    """Convert a filename stem or a title to a slug, dropping any date prefix.

    Accented characters are folded to ASCII before non-alphanumerics collapse
    to single hyphens.

    Args:
        name: Filename stem or free text.

    Returns:
        URL-friendly slug, ``"index"`` when nothing usable remains.

    Examples:
        >>> slugify("2024-01-15-Hello World")
        'hello-world'
    """
    cleaned = strip_date_prefix(name)
    cleaned = unicodedata.normalize("NFKD", cleaned).encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        datetime object if a valid date prefix is found, None otherwise.
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def strip_html(text: str) -> str:
    """Remove tags and unescape entities, collapsing whitespace runs."""
    without_tags = TAG_RE.sub(" ", text)
    return " ".join(html.unescape(without_tags).split())


def html_to_text(text: str) -> str:
    """Project an HTML body to plain text, keeping paragraph breaks."""
    blocks = re.split(r"</(?:p|h[1-6]|li|pre|blockquote|div|tr)>", text, flags=re.IGNORECASE)
    paragraphs = [strip_html(block) for block in blocks]
    return "\n\n".join(p for p in paragraphs if p)


def count_words(text: str) -> int:
    """Count whitespace-separated words, ignoring markup."""
    plain = strip_html(text)
    return len(plain.split()) if plain else 0


def reading_time(text: str, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Estimate reading time in whole minutes, never less than one."""
    return max(1, math.ceil(count_words(text) / words_per_minute))


def truncate_words(text: str, count: int, ellipsis: str = "...") -> str:
    words = text.split()
    if len(words) <= count:
        return " ".join(words)
    return " ".join(words[:count]) + ellipsis


def is_internal_path(path: Path) -> bool:
    """Check if a path is internal (contains components starting with _).

    Internal paths include layouts, partials, and files hidden from loading.
    """
    return any(part.startswith("_") for part in path.parts)


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file (case-insensitive suffix)."""
    return path.suffix.lower() in MARKDOWN_SUFFIXES


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def join_root_url(root_url: str, path: str) -> str:
    """Join a root URL and a path without doubling the slash between them.

    Examples:
        >>> join_root_url("https://example.com/blog/", "/about/")
        'https://example.com/blog/about/'
    """
    if not root_url:
        return path
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{root_url.rstrip('/')}{suffix}"


def absolutize_html_urls(html: str, root_url: str) -> str:
    """Rewrite root-relative ``href``, ``src`` and ``action`` values to absolute URLs.

    Protocol-relative URLs (``//host``) are left alone.
    """
    if not root_url:
        return html

    def repl(match: re.Match) -> str:
        url = match.group("url")
        if url.startswith("//"):
            return match.group(0)
        return f"{match.group('prefix')}{join_root_url(root_url, url)}{match.group('suffix')}"

    return URL_ATTR_RE.sub(repl, html)
