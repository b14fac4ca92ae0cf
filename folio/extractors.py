"""Front matter extraction for Folio.

Content files open with a YAML header fenced by ``---`` lines, followed by the
Markdown body. This module splits the two and turns the header into a typed
FrontMatter, raising ParseError with a precise reason when the header is not
usable.

Key functions:
- split_frontmatter: Separate the raw YAML header from the body.
- parse_frontmatter: Parse and validate the header into a FrontMatter.
- parse_date: Coerce YAML scalars into datetimes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any

import yaml

from .exceptions import ParseError

FRONTMATTER_OPEN_RE = re.compile(r"\A---[ \t]*\r?\n")
FRONTMATTER_CLOSE_RE = re.compile(r"^---[ \t]*(?:\r?\n|\Z)", re.MULTILINE)

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
)

RECOGNIZED_FIELDS = (
    "title",
    "date",
    "tags",
    "categories",
    "layout",
    "draft",
    "description",
    "author",
    "series",
    "slug",
    "permalink",
    "outputs",
)


@dataclass(frozen=True)
class FrontMatter:
    """Typed view of a content file's YAML header.

    Attributes:
        title: Required page title.
        date: Publication date, if declared.
        tags: Tag names, in declaration order.
        categories: Category names, in declaration order.
        layout: Layout name used to pick templates.
        draft: Draft items are skipped unless drafts are requested.
        description: Optional summary.
        author: Optional author name.
        series: Optional series the item belongs to.
        slug: Optional slug override.
        permalink: Optional explicit URL.
        outputs: Optional output format names overriding the site default.
        extra: Every other header key, in insertion order.
    """

    title: str
    date: datetime | None = None
    tags: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    layout: str = "default"
    draft: bool = False
    description: str = ""
    author: str = ""
    series: str = ""
    slug: str = ""
    permalink: str = ""
    outputs: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict, compare=False)


def split_frontmatter(text: str, path: str) -> tuple[str | None, str]:
    """Split a content file into its raw header and body.

    Args:
        text: Raw file content.
        path: Source path used in error messages.

    Returns:
        Tuple of (header text or None when the file has no header, body).

    Raises:
        ParseError: If the opening fence has no closing fence.
    """
    text = text.lstrip("\ufeff")
    opening = FRONTMATTER_OPEN_RE.match(text)
    if not opening:
        return None, text
    closing = FRONTMATTER_CLOSE_RE.search(text, opening.end())
    if not closing:
        raise ParseError(path, "front matter is not terminated by a '---' line")
    return text[opening.end() : closing.start()], text[closing.end() :]


def parse_frontmatter(header: str | None, path: str) -> FrontMatter:
    """Parse a YAML header into a FrontMatter.

    Args:
        header: Raw YAML text, or None when the file has no header.
        path: Source path used in error messages.

    Returns:
        The validated FrontMatter.

    Raises:
        ParseError: If the YAML is malformed, is not a mapping, lacks a title,
            or holds a value of the wrong type.
    """
    if header is None:
        raise ParseError(path, "missing front matter (a 'title' field is required)")
    try:
        raw = yaml.safe_load(header)
    except yaml.YAMLError as exc:
        raise ParseError(path, f"front matter is not valid YAML: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ParseError(path, "front matter must be a mapping of fields")

    data = {str(k): v for k, v in raw.items()}
    title = data.get("title")
    if title is None or (isinstance(title, str) and not title.strip()):
        raise ParseError(path, "required field 'title' is missing")

    draft = data.get("draft", False)
    if not isinstance(draft, bool):
        raise ParseError(path, f"field 'draft' must be true or false, got {draft!r}")

    layout = data.get("layout")
    return FrontMatter(
        title=str(title),
        date=parse_date(data["date"], path) if data.get("date") is not None else None,
        tags=_string_list(data.get("tags"), "tags", path),
        categories=_string_list(data.get("categories"), "categories", path),
        layout=str(layout) if layout else "default",
        draft=draft,
        description=_optional_string(data.get("description")),
        author=_optional_string(data.get("author")),
        series=_optional_string(data.get("series")),
        slug=_optional_string(data.get("slug")),
        permalink=_optional_string(data.get("permalink")),
        outputs=_string_list(data.get("outputs"), "outputs", path),
        extra={k: v for k, v in data.items() if k not in RECOGNIZED_FIELDS},
    )


def parse_date(value: Any, path: str) -> datetime:
    """Coerce a YAML date value into a datetime.

    PyYAML already turns unquoted ISO dates into ``date``/``datetime``; quoted
    strings are tried against DATE_FORMATS and ISO-8601.

    Raises:
        ParseError: If the value cannot be read as a date.
    """
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str):
        text = value.strip()
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        try:
            return _naive_utc(datetime.fromisoformat(text))
        except ValueError:
            pass
    raise ParseError(path, f"field 'date' cannot be parsed: {value!r}")


def _naive_utc(value: datetime) -> datetime:
    # Aware and naive datetimes cannot be compared when sorting by date.
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _string_list(value: Any, key: str, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        items = []
        for entry in value:
            if isinstance(entry, (dict, list)):
                raise ParseError(path, f"field '{key}' must be a list of names")
            items.append(str(entry))
        return tuple(items)
    raise ParseError(path, f"field '{key}' must be a list of names, got {value!r}")


def _optional_string(value: Any) -> str:
    return "" if value is None else str(value)
