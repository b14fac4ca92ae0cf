"""Output formats for Folio.

Every content item can be rendered into several formats. A format fixes the
output filename, the template suffix used to find layouts and partials, and
which projection of the body the template receives.

Classes:
    OutputFormat: Description of one output format.
    FormatRegistry: Registry mapping format names to OutputFormat.

Functions:
    create_default_format_registry: Registry with html, json, plaintext and feed.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class OutputFormat:
    """Description of one output format.

    Attributes:
        name: Format name used in configuration and front matter.
        extension: Suffix of the output file and of the format's templates.
        base_name: Output filename without extension.
        is_html: Whether the template receives the rendered HTML body.
        is_plain_text: Whether the template receives a plain-text projection.
        autoescape: Whether Jinja autoescaping is enabled.
        builtin_template: Template used when the site defines no default layout.
    """

    name: str
    extension: str
    base_name: str = "index"
    is_html: bool = False
    is_plain_text: bool = False
    autoescape: bool = False
    builtin_template: str = ""

    @property
    def filename(self) -> str:
        return f"{self.base_name}.{self.extension}"

    def output_path(self, url: str) -> str:
        """Relative output path for an item served at ``url``."""
        url_path = url.strip("/")
        return f"{url_path}/{self.filename}" if url_path else self.filename


_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
</head>
<body>
<article>
<h1>{{ title }}</h1>
{{ content | safe }}
</article>
</body>
</html>
"""

_JSON_TEMPLATE = """{
  "title": {{ title | json }},
  "url": {{ url | json }},
  "date": {{ (date | date_format("%Y-%m-%dT%H:%M:%S") if date else none) | json }},
  "tags": {{ tags | json }},
  "categories": {{ categories | json }},
  "description": {{ description | json }},
  "word_count": {{ word_count }},
  "reading_time": {{ reading_time }},
  "content": {{ content | json }}
}
"""

_PLAINTEXT_TEMPLATE = """{{ title }}
{{ "=" * (title | char_count) }}
{% if date %}{{ date | date_format("%Y-%m-%d") }}
{% endif %}
{{ content }}
"""

_FEED_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<entry xmlns="http://www.w3.org/2005/Atom">
  <title>{{ title }}</title>
  <link href="{{ url_for(url) }}"/>
  <id>{{ url_for(url) }}</id>
  {% if date %}<updated>{{ date | date_format("%Y-%m-%dT%H:%M:%SZ") }}</updated>
  {% endif %}{% for tag in tags %}<category term="{{ tag }}"/>
  {% endfor %}<summary>{{ description or (content | truncate_words(50)) }}</summary>
</entry>
"""


class FormatRegistry:
    """Registry mapping format names to OutputFormat instances."""

    def __init__(self) -> None:
        self._formats: dict[str, OutputFormat] = {}

    def register(self, output_format: OutputFormat) -> None:
        self._formats[output_format.name] = output_format

    def get(self, name: str) -> OutputFormat | None:
        return self._formats.get(name)

    def __getitem__(self, name: str) -> OutputFormat:
        return self._formats[name]

    def __contains__(self, name: object) -> bool:
        return name in self._formats

    def names(self) -> list[str]:
        return list(self._formats)


def create_default_format_registry() -> FormatRegistry:
    """Create a registry with the built-in formats.

    Returns:
        FormatRegistry with html, json, plaintext and feed.
    """
    registry = FormatRegistry()
    registry.register(
        OutputFormat(
            name="html",
            extension="html",
            is_html=True,
            autoescape=True,
            builtin_template=_HTML_TEMPLATE,
        )
    )
    registry.register(
        OutputFormat(
            name="json",
            extension="json",
            is_html=True,
            builtin_template=_JSON_TEMPLATE,
        )
    )
    registry.register(
        OutputFormat(
            name="plaintext",
            extension="txt",
            is_plain_text=True,
            builtin_template=_PLAINTEXT_TEMPLATE,
        )
    )
    registry.register(
        OutputFormat(
            name="feed",
            extension="xml",
            is_plain_text=True,
            autoescape=True,
            builtin_template=_FEED_TEMPLATE,
        )
    )
    return registry


default_format_registry = create_default_format_registry()
