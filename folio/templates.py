"""Template resolution for Folio.

This module uses Jinja2 to turn a content item into the text of each of its
output formats, and listing pages into HTML. Layouts are looked up per format
(``_layouts/post.html.jinja`` for HTML, ``_layouts/post.json.jinja`` for JSON
and so on), partials are expanded through the ``partial()`` function, and
every Jinja failure is translated into a TemplateError naming the item and
the template.

Key classes:
- TemplateResolver: Renders items into one or more output formats, and listings.
- PartialResolutionFrame: Tracks the partial nesting of one expansion.

Design principles:
- The resolver only reads the SiteAggregate handed to each render call and
  never builds one itself.
- Partial expansion depth is bounded, so partials that include each other
  fail with MAX_DEPTH_EXCEEDED instead of recursing forever.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    Template,
    TemplateAssertionError,
    TemplateNotFound,
    TemplateRuntimeError,
    TemplateSyntaxError,
)
from markupsafe import Markup, escape

from .config import BuildConfig
from .exceptions import TemplateError, TemplateErrorKind
from .formats import FormatRegistry, OutputFormat, default_format_registry
from .functions import BUILTIN_FILTERS
from .listings import LISTING_LAYOUT, LISTING_TEMPLATE
from .renderers import Heading
from .utils import html_to_text, join_root_url, strip_html

if TYPE_CHECKING:
    from .aggregate import SiteAggregate
    from .content import ContentItem
    from .listings import ListingPage

__all__ = ["PartialResolutionFrame", "TemplateResolver", "render_toc"]

logger = logging.getLogger(__name__)

LAYOUTS_DIR = "_layouts"
PARTIALS_DIR = "_partials"
UNKNOWN_NAME_PREFIXES = ("No filter named", "No test named")


def render_toc(item: ContentItem) -> Markup:
    """Render a table of contents as nested HTML from an item's headings.

    Generates properly nested `<ul><li><a href="#id">text</a></li></ul>` structure
    based on heading levels.

    Args:
        item: Rendered content item.

    Returns:
        Markup-safe HTML string of the nested TOC, or empty Markup if no headings.
    """
    return _render_toc_from_headings(item.toc)


def _render_toc_from_headings(headings: tuple[Heading, ...]) -> Markup:
    if not headings:
        return Markup("")

    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        # Close nested lists if going to a shallower level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        elif not level_stack or level > level_stack[-1]:  # pragma: no branch
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(f'<li><a href="#{escape(heading.id)}">{escape(heading.text)}</a>')

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


@dataclass(frozen=True)
class PartialResolutionFrame:
    """Position of one partial expansion in the nesting chain.

    The layout itself is depth 0; each ``partial()`` call descends one level.

    Attributes:
        depth: Current nesting depth.
        chain: Names of the partials being expanded, outermost first.
        max_depth: Deepest allowed nesting.
    """

    depth: int = 0
    chain: tuple[str, ...] = ()
    max_depth: int = 10

    def descend(self, name: str) -> PartialResolutionFrame:
        """Return the frame for expanding ``name`` inside this one.

        Raises:
            TemplateError: MAX_DEPTH_EXCEEDED when the new depth is too deep.
        """
        chain = (*self.chain, name)
        depth = self.depth + 1
        if depth > self.max_depth:
            raise TemplateError(
                TemplateErrorKind.MAX_DEPTH_EXCEEDED,
                f"partial nesting exceeds {self.max_depth} levels",
                template=name,
                chain=chain,
            )
        return PartialResolutionFrame(depth=depth, chain=chain, max_depth=self.max_depth)


class _PartialExpander:
    """The ``partial()`` function seen by one template at one depth."""

    def __init__(
        self,
        resolver: TemplateResolver,
        output_format: OutputFormat,
        context: dict[str, Any],
        frame: PartialResolutionFrame,
    ):
        self._resolver = resolver
        self._format = output_format
        self._context = context
        self._frame = frame

    def __call__(self, name: str, **extra: Any) -> Markup:
        frame = self._frame.descend(name)
        template = self._resolver._load_partial(name, self._format, frame)
        context = {**self._context, **extra}
        context["partial"] = _PartialExpander(self._resolver, self._format, context, frame)
        logger.debug("Expanding partial %s at depth %d", name, frame.depth)
        return Markup(template.render(context))


class TemplateResolver:
    """Template resolver using Jinja2.

    Attributes:
        site_dir: Content root holding ``_layouts`` and ``_partials``.
        config: Build configuration.
        data: Global site data.
        formats: Registry of output formats.
    """

    def __init__(
        self,
        site_dir: Path,
        config: BuildConfig | None = None,
        data: dict[str, Any] | None = None,
        formats: FormatRegistry | None = None,
    ):
        """Initialize the template resolver.

        Args:
            site_dir: Content root with layouts and partials.
            config: Build configuration (defaults apply when omitted).
            data: Global site data.
            formats: Output format registry.
        """
        self.site_dir = site_dir
        self.config = config or BuildConfig()
        self.data = data or {}
        self.formats = formats or default_format_registry
        self.root_url = self.config.root_url or str(self.data.get("url", "") or "")
        loader = FileSystemLoader(str(site_dir))
        # Escaping is decided by the output format, not the template name.
        self._envs = {
            True: self._make_env(loader, autoescape=True),
            False: self._make_env(loader, autoescape=False),
        }
        self._builtin_cache: dict[str, Template] = {}

    def _make_env(self, loader: FileSystemLoader, autoescape: bool) -> Environment:
        env = Environment(loader=loader, autoescape=autoescape, enable_async=False)
        env.filters.update(BUILTIN_FILTERS)
        env.globals["url_for"] = self._url_for
        env.globals["render_toc"] = render_toc
        env.globals["data"] = self.data
        return env

    def _url_for(self, path: str) -> str:
        """Generate a URL for a path, applying root_url if configured.

        Args:
            path: Path to generate URL for.

        Returns:
            Full URL with root_url prefix if configured.
        """
        if path.startswith(("http://", "https://", "//")):
            return path
        normalized = path if path.startswith("/") else f"/{path}"
        if self.root_url:
            return join_root_url(self.root_url, normalized)
        return normalized

    def output_format(self, name: str) -> OutputFormat:
        output_format = self.formats.get(name)
        if output_format is None:
            raise TemplateError(TemplateErrorKind.RENDER, f"unknown output format {name!r}")
        return output_format

    def render(self, item: ContentItem, aggregate: SiteAggregate, output_format: str) -> str:
        """Render one item in one output format.

        Args:
            item: Content item whose body has already been converted.
            aggregate: Site-wide views exposed to templates as ``site``.
            output_format: Name of the format to produce.

        Returns:
            The rendered text.

        Raises:
            TemplateError: On any layout, partial or rendering failure.
        """
        return self._render_guarded(
            item.source_path,
            output_format,
            lambda fmt: self._load_layout(item, fmt),
            lambda fmt: self._build_context(item, aggregate, fmt),
        )

    def render_listing(self, page: ListingPage, aggregate: SiteAggregate) -> str:
        """Render a listing page as HTML.

        The layout is ``_layouts/<kind>.html.jinja`` (archive, tag, category
        or home), then ``_layouts/list.html.jinja``, then a built-in list.

        Raises:
            TemplateError: On any layout, partial or rendering failure; the
                error path is the listing URL.
        """
        return self._render_guarded(
            page.url,
            "html",
            lambda fmt: self._load_listing_layout(page.kind, fmt),
            lambda fmt: self._build_listing_context(page, aggregate, fmt),
        )

    def _render_guarded(
        self,
        path: str,
        output_format: str,
        load: Callable[[OutputFormat], Template],
        build_context: Callable[[OutputFormat], dict[str, Any]],
    ) -> str:
        template_name = None
        try:
            fmt = self.output_format(output_format)
            template = load(fmt)
            template_name = template.name
            context = build_context(fmt)
            context["partial"] = _PartialExpander(
                self,
                fmt,
                context,
                PartialResolutionFrame(max_depth=self.config.max_partial_depth),
            )
            return template.render(context)
        except TemplateError as exc:
            raise exc.with_path(path) from None
        except TemplateSyntaxError as exc:
            raise self._syntax_error(exc).with_path(path) from exc
        except TemplateRuntimeError as exc:
            # Filters used only inside untaken branches are checked at render time.
            kind = (
                TemplateErrorKind.UNKNOWN_FUNCTION
                if str(exc).startswith(UNKNOWN_NAME_PREFIXES)
                else TemplateErrorKind.RENDER
            )
            raise TemplateError(kind, str(exc), template=template_name, path=path) from exc
        except Exception as exc:
            raise TemplateError(
                TemplateErrorKind.RENDER,
                f"{type(exc).__name__}: {exc}",
                template=template_name,
                path=path,
            ) from exc

    def render_all(
        self, item: ContentItem, aggregate: SiteAggregate, formats: list[str] | None = None
    ) -> dict[str, str]:
        """Render one item in several formats.

        Args:
            item: Content item whose body has already been converted.
            aggregate: Site-wide views.
            formats: Format names; defaults to the item's own formats.

        Returns:
            Mapping of format name to rendered text.
        """
        names = formats if formats is not None else sorted(item.output_formats)
        return {name: self.render(item, aggregate, name) for name in names}

    def _build_context(self, item: ContentItem, aggregate: SiteAggregate, fmt: OutputFormat) -> dict[str, Any]:
        body = item.rendered_body
        if fmt.is_html:
            content: Any = Markup(body) if fmt.autoescape else body
        elif fmt.is_plain_text:
            content = html_to_text(body)
        else:
            content = strip_html(body)

        meta = item.metadata
        context: dict[str, Any] = dict(meta.extra)
        context.update(
            {
                "title": meta.title,
                "url": item.url,
                "date": meta.date,
                "tags": list(meta.tags),
                "categories": list(meta.categories),
                "description": meta.description,
                "author": meta.author,
                "series": meta.series,
                "reading_time": item.reading_time,
                "word_count": item.word_count,
                "toc": item.toc,
                "content": content,
                "item": item,
                "site": aggregate,
                "data": self.data,
                "config": self.config,
                "format": fmt,
            }
        )
        return context

    def _build_listing_context(
        self, page: ListingPage, aggregate: SiteAggregate, fmt: OutputFormat
    ) -> dict[str, Any]:
        return {
            "title": page.title,
            "url": page.url,
            "kind": page.kind,
            "term": page.term,
            "items": page.items,
            "paginator": page.paginator,
            "site": aggregate,
            "data": self.data,
            "config": self.config,
            "format": fmt,
        }

    def _load_listing_layout(self, kind: str, fmt: OutputFormat) -> Template:
        env = self._envs[fmt.autoescape]
        candidates = self._layout_candidates(kind, fmt) + self._layout_candidates(LISTING_LAYOUT, fmt)
        template = self._find(env, candidates)
        if template is not None:
            return template
        template = self._builtin_cache.get(LISTING_LAYOUT)
        if template is None:
            template = env.from_string(LISTING_TEMPLATE)
            self._builtin_cache[LISTING_LAYOUT] = template
        return template

    def _load_layout(self, item: ContentItem, fmt: OutputFormat) -> Template:
        env = self._envs[fmt.autoescape]
        layout = item.layout
        template = self._find(env, self._layout_candidates(layout, fmt))
        if template is not None:
            return template
        if layout != "default":
            if not self._layout_exists_in_any_format(layout):
                raise TemplateError(
                    TemplateErrorKind.MISSING_LAYOUT,
                    f"layout {layout!r} not found in {LAYOUTS_DIR}/",
                    template=f"{LAYOUTS_DIR}/{layout}.{fmt.extension}.jinja",
                )
            template = self._find(env, self._layout_candidates("default", fmt))
            if template is not None:
                return template
        return self._builtin(fmt)

    @staticmethod
    def _layout_candidates(layout: str, fmt: OutputFormat) -> list[str]:
        return [
            f"{LAYOUTS_DIR}/{layout}.{fmt.extension}.jinja",
            f"{LAYOUTS_DIR}/{layout}.{fmt.extension}",
        ]

    def _layout_exists_in_any_format(self, layout: str) -> bool:
        layouts_dir = self.site_dir / LAYOUTS_DIR
        return layouts_dir.is_dir() and any(layouts_dir.glob(f"{layout}.*"))

    def _builtin(self, fmt: OutputFormat) -> Template:
        template = self._builtin_cache.get(fmt.name)
        if template is None:
            template = self._envs[fmt.autoescape].from_string(fmt.builtin_template)
            self._builtin_cache[fmt.name] = template
        return template

    def _load_partial(self, name: str, fmt: OutputFormat, frame: PartialResolutionFrame) -> Template:
        candidates = [
            f"{PARTIALS_DIR}/{name}.{fmt.extension}.jinja",
            f"{PARTIALS_DIR}/{name}.jinja",
            f"{PARTIALS_DIR}/{name}",
        ]
        try:
            template = self._find(self._envs[fmt.autoescape], candidates)
        except TemplateSyntaxError as exc:
            raise self._syntax_error(exc, frame.chain) from exc
        if template is None:
            raise TemplateError(
                TemplateErrorKind.MISSING_PARTIAL,
                f"partial {name!r} not found in {PARTIALS_DIR}/",
                template=candidates[0],
                chain=frame.chain,
            )
        return template

    @staticmethod
    def _find(env: Environment, candidates: list[str]) -> Template | None:
        for name in candidates:
            try:
                return env.get_template(name)
            except TemplateNotFound:
                continue
        return None

    @staticmethod
    def _syntax_error(exc: TemplateSyntaxError, chain: tuple[str, ...] = ()) -> TemplateError:
        location = f"{exc.name or '<string>'}:{exc.lineno}"
        message = exc.message or str(exc)
        if isinstance(exc, TemplateAssertionError) and message.startswith(UNKNOWN_NAME_PREFIXES):
            return TemplateError(TemplateErrorKind.UNKNOWN_FUNCTION, message, template=location, chain=chain)
        return TemplateError(TemplateErrorKind.SYNTAX, message, template=location, chain=chain)

    def render_string(self, source: str, context: dict[str, Any], output_format: str = "html") -> str:
        """Render a template string in the environment of ``output_format``.

        Args:
            source: Template source.
            context: Variables to make available in the template.
            output_format: Format deciding whether autoescaping applies.

        Returns:
            Rendered string.
        """
        fmt = self.output_format(output_format)
        try:
            template = self._envs[fmt.autoescape].from_string(source)
        except TemplateSyntaxError as exc:
            raise self._syntax_error(exc) from exc
        return template.render(context)
