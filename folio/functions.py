"""Built-in template functions for Folio.

Every function here is installed as a Jinja filter, so templates call them as
``{{ title | slugify }}`` or ``{{ date | date_format("%B %d, %Y") }}``. Filter names
known neither here nor to Jinja are rejected when a template is compiled.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from markupsafe import Markup, escape

from . import utils


def upper(value: Any) -> str:
    return str(value).upper()


def lower(value: Any) -> str:
    return str(value).lower()


def capitalize(value: Any) -> str:
    return str(value).capitalize()


def titlecase(value: Any) -> str:
    """Capitalize each whitespace-separated word, leaving the rest untouched."""
    return " ".join(word[:1].upper() + word[1:] for word in str(value).split(" "))


def slugify(value: Any) -> str:
    return utils.slugify(str(value))


def char_count(value: Any) -> int:
    return len(str(value))


def word_count(value: Any) -> int:
    return utils.count_words(str(value))


def reading_time(value: Any) -> int:
    return utils.reading_time(str(value))


def truncate_words(value: Any, count: int = 30, ellipsis: str = "...") -> str:
    return utils.truncate_words(utils.strip_html(str(value)), count, ellipsis)


def strip_html(value: Any) -> str:
    return utils.strip_html(str(value))


def date_format(value: Any, fmt: str = "%Y-%m-%d") -> str:
    """Format a date or datetime with ``strftime``.

    Strings are returned unchanged and ``None`` renders as an empty string.
    """
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime(fmt)
    return str(value)


def xml_escape(value: Any) -> Markup:
    return escape(str(value))


def to_json(value: Any) -> str:
    """Serialize a value as JSON; dates become ISO-8601 strings."""
    return json.dumps(_jsonable(value), ensure_ascii=False)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return str(value) if isinstance(value, Markup) else value
    return str(value)


BUILTIN_FILTERS: dict[str, Callable[..., Any]] = {
    "upper": upper,
    "lower": lower,
    "capitalize": capitalize,
    "titlecase": titlecase,
    "slugify": slugify,
    "char_count": char_count,
    "word_count": word_count,
    "reading_time": reading_time,
    "truncate_words": truncate_words,
    "strip_html": strip_html,
    "date_format": date_format,
    "xml_escape": xml_escape,
    "json": to_json,
}
