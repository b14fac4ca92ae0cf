"""Content loading for Folio.

This module turns the files under the content root into ContentItem objects.
Each file is read once, split into YAML front matter and Markdown body, and
validated. A bad file yields a ParseError for that file only; loading carries
on with the rest and the caller decides whether any error is fatal.

Key classes:
- ContentItem: One page or post, with its metadata and rendered body.
- ContentStore: Facade that discovers files and builds ContentItems.
- FileContentLoader: Discovers content files below the content root.
- UrlDeriver: Computes item URLs from permalinks and patterns.
- LoadResult: Items plus the per-file errors found while loading.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path

from .config import BuildConfig
from .exceptions import ParseError
from .extractors import FrontMatter, parse_frontmatter, split_frontmatter
from .formats import FormatRegistry, default_format_registry
from .protocols import ContentLoader
from .renderers import Heading, RenderedMarkdown
from .utils import count_words, extract_date_from_name, is_internal_path, is_markdown, reading_time, slugify

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ContentItem:
    """Represents one content file with all its metadata.

    The rendered body is attached exactly once per build by the render pass;
    attaching it a second time raises, so already-converted HTML can never be
    fed back through the Markdown converter.

    Attributes:
        source_path: POSIX path relative to the content root (unique key).
        metadata: Typed front matter.
        raw_body: Markdown body as read from disk.
        url: URL path the item is served at.
        output_formats: Names of the formats to produce.
    """

    source_path: str
    metadata: FrontMatter
    raw_body: str
    url: str
    output_formats: frozenset[str]
    _rendered: RenderedMarkdown | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def title(self) -> str:
        return self.metadata.title

    @property
    def date(self) -> datetime | None:
        return self.metadata.date

    @property
    def tags(self) -> tuple[str, ...]:
        return self.metadata.tags

    @property
    def categories(self) -> tuple[str, ...]:
        return self.metadata.categories

    @property
    def layout(self) -> str:
        return self.metadata.layout

    @property
    def draft(self) -> bool:
        return self.metadata.draft

    @property
    def description(self) -> str:
        return self.metadata.description

    @property
    def series(self) -> str:
        return self.metadata.series

    @property
    def section(self) -> str:
        parts = Path(self.source_path).parts
        return parts[0] if len(parts) > 1 else ""

    @property
    def slug(self) -> str:
        return self.metadata.slug or slugify(Path(self.source_path).stem)

    @property
    def word_count(self) -> int:
        return count_words(self.raw_body)

    @property
    def reading_time(self) -> int:
        return reading_time(self.raw_body)

    @property
    def is_rendered(self) -> bool:
        return self._rendered is not None

    @property
    def rendered_body(self) -> str:
        if self._rendered is None:
            raise RuntimeError(f"{self.source_path} has not been rendered yet")
        return self._rendered.html

    @property
    def toc(self) -> tuple[Heading, ...]:
        return self._rendered.toc if self._rendered else ()

    def attach_rendered_body(self, rendered: RenderedMarkdown) -> None:
        """Store the Markdown conversion result for this build."""
        with self._lock:
            if self._rendered is not None:
                raise RuntimeError(f"{self.source_path} was already rendered in this build")
            self._rendered = rendered

    def __repr__(self) -> str:
        return f"ContentItem({self.source_path!r}, url={self.url!r})"


@dataclass
class LoadResult:
    items: list[ContentItem]
    errors: list[ParseError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class FileContentLoader:
    """Discovers content files below a directory.

    Files and folders whose name starts with ``_`` are internal (layouts,
    partials, hidden content) and are never returned.
    """

    def __init__(self, content_dir: Path):
        self.content_dir = content_dir

    def iter_files(self) -> list[Path]:
        """List Markdown files below the content root, sorted by path."""
        files: list[Path] = []
        for path in self.content_dir.rglob("*"):
            if path.is_dir():
                continue
            rel = path.relative_to(self.content_dir)
            if is_internal_path(rel):
                continue
            if is_markdown(path):
                files.append(path)
        return sorted(files)


class UrlDeriver:
    """Derives URLs for content items.

    An explicit ``permalink`` wins. Otherwise the configured pattern is
    expanded with ``:slug``, ``:section``, ``:year``, ``:month``, ``:day`` and
    ``:title``. ``index`` files map to the URL of their folder.
    """

    def __init__(self, pattern: str = "/:slug/"):
        self.pattern = pattern

    def derive(self, rel: Path, metadata: FrontMatter) -> str:
        if metadata.permalink:
            return self._normalize(metadata.permalink)
        section_path = "/".join(rel.parent.parts)
        if rel.stem == "index" and not metadata.slug:
            return self._normalize(section_path)

        slug = metadata.slug or slugify(rel.stem)
        date = metadata.date
        tokens = {
            ":section": section_path,
            ":slug": slug,
            ":title": slugify(metadata.title),
            ":year": f"{date.year:04d}" if date else "",
            ":month": f"{date.month:02d}" if date else "",
            ":day": f"{date.day:02d}" if date else "",
        }
        url = self.pattern
        # Longest tokens first so ":slug" never clobbers a longer name.
        for token in sorted(tokens, key=len, reverse=True):
            url = url.replace(token, tokens[token])
        return self._normalize(url)

    @staticmethod
    def _normalize(url: str) -> str:
        segments = [s for s in url.split("/") if s]
        if not segments:
            return "/"
        path = "/".join(segments)
        # Paths with a file extension (e.g. /feed.xml) keep no trailing slash.
        if "." in segments[-1]:
            return f"/{path}"
        return f"/{path}/"


class ContentStore:
    """Facade for loading content files into ContentItems.

    Attributes:
        content_dir: Directory containing the content tree.
        config: Build configuration.
    """

    def __init__(
        self,
        content_dir: Path,
        config: BuildConfig | None = None,
        formats: FormatRegistry | None = None,
        loader: ContentLoader | None = None,
    ):
        self.content_dir = content_dir
        self.config = config or BuildConfig()
        self.formats = formats or default_format_registry
        self._loader = loader or FileContentLoader(content_dir)
        self._url_deriver = UrlDeriver(self.config.permalink_pattern)

    def load_all(self, include_drafts: bool | None = None) -> LoadResult:
        """Load every content file.

        Args:
            include_drafts: Whether draft items are kept; defaults to the
                configured value.

        Returns:
            LoadResult with the parsed items (sorted by source path) and one
            ParseError per file that could not be loaded.
        """
        if include_drafts is None:
            include_drafts = self.config.include_drafts
        items: list[ContentItem] = []
        errors: list[ParseError] = []
        for path in self._loader.iter_files():
            try:
                item = self.load_file(path)
            except ParseError as exc:
                logger.warning("Skipping %s: %s", exc.path, exc.reason)
                errors.append(exc)
                continue
            if item.draft and not include_drafts:
                logger.debug("Skipping draft %s", item.source_path)
                continue
            items.append(item)

        errors.extend(self._check_url_collisions(items))
        logger.info("Loaded %d content items (%d errors)", len(items), len(errors))
        return LoadResult(items=items, errors=errors)

    def load_file(self, path: Path) -> ContentItem:
        """Parse one content file.

        Raises:
            ParseError: If the file cannot be read or its front matter is invalid.
        """
        rel = path.relative_to(self.content_dir)
        source_path = rel.as_posix()
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(source_path, f"file is not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise ParseError(source_path, f"cannot read file: {exc}") from exc

        header, body = split_frontmatter(text, source_path)
        metadata = parse_frontmatter(header, source_path)
        if metadata.date is None:
            # Jekyll-style names such as 2024-01-15-post.md date undated items.
            filename_date = extract_date_from_name(rel.stem)
            if filename_date is not None:
                metadata = replace(metadata, date=filename_date)
        return ContentItem(
            source_path=source_path,
            metadata=metadata,
            raw_body=body,
            url=self._url_deriver.derive(rel, metadata),
            output_formats=self._resolve_formats(metadata, source_path),
        )

    def _resolve_formats(self, metadata: FrontMatter, source_path: str) -> frozenset[str]:
        names = metadata.outputs or self.config.output_formats
        unknown = [name for name in names if name not in self.formats]
        if unknown:
            raise ParseError(source_path, f"unknown output format(s): {', '.join(unknown)}")
        return frozenset(names)

    def _check_url_collisions(self, items: list[ContentItem]) -> list[ParseError]:
        seen: dict[str, str] = {}
        errors: list[ParseError] = []
        kept: list[ContentItem] = []
        for item in items:
            owner = seen.get(item.url)
            if owner is not None:
                errors.append(ParseError(item.source_path, f"URL {item.url} is already used by {owner}"))
                continue
            seen[item.url] = item.source_path
            kept.append(item)
        items[:] = kept
        return errors
