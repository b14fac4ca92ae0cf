"""Site building functionality for Folio.

This module contains the build coordinator, which drives one build through
its phases: load content, detect changes against the cache, build the site
aggregate, render the changed items concurrently, then write listing pages
and site feeds and commit the cache. Per-item failures are collected and
reported together; the cache is only committed when every item succeeded.

Key classes:
- BuildCoordinator: Runs one build and exposes its current state.
- BuildStats: Counters describing a finished build.
- Done / Failed: The two possible build outcomes.

Key functions:
- build_site: Convenience wrapper raising BuildError on failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

from .aggregate import SiteAggregate
from .cache import TEMPLATE_PREFIX, BuildCache, CacheState
from .config import BuildConfig, load_config, load_data
from .content import ContentItem, ContentStore
from .exceptions import BuildError, FolioError, TemplateError
from .feeds import FeedRegistry, create_default_feed_registry
from .formats import FormatRegistry, OutputFormat, default_format_registry
from .listings import plan_listings
from .protocols import MarkdownRenderer
from .renderers import MarkdownConverter
from .scheduler import Result, Task, TaskScheduler
from .templates import LAYOUTS_DIR, PARTIALS_DIR, TemplateResolver
from .utils import absolutize_html_urls, ensure_clean_dir
from .writer import OutputWriter

logger = logging.getLogger(__name__)


class BuildState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    CHANGE_DETECTION = "change_detection"
    AGGREGATING = "aggregating"
    RENDERING = "rendering"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BuildStats:
    """Counters describing a finished build.

    Attributes:
        total_items: Items loaded from the content root.
        changed_items: Items whose source (or a template) changed.
        rendered_items: Items rendered in this build.
        skipped_items: Items left untouched because nothing changed.
        files_written: Output files written by render workers.
        listings: Listing pages written, as paths below the output root.
        feeds: Site-level feed files written.
        parse_errors: Content files skipped because they failed to parse.
        duration: Wall-clock seconds for the whole build.
        results: One Result per rendered item.
        output_dir: Directory the site was built into.
    """

    total_items: int = 0
    changed_items: int = 0
    rendered_items: int = 0
    skipped_items: int = 0
    files_written: int = 0
    listings: list[str] = field(default_factory=list)
    feeds: list[str] = field(default_factory=list)
    parse_errors: int = 0
    duration: float = 0.0
    results: list[Result] = field(default_factory=list, repr=False)
    output_dir: Path | None = None


@dataclass(frozen=True)
class Done:
    stats: BuildStats
    ok = True


@dataclass(frozen=True)
class Failed:
    error: BuildError
    state: BuildState = BuildState.FAILED
    ok = False


BuildOutcome = Union[Done, Failed]


class BuildCoordinator:
    """Runs one build of a Folio project.

    Attributes:
        project_root: Directory holding folio.yaml, data/ and the content root.
        config: Effective build configuration.
        state: Current phase, observable while and after ``run`` executes.
        history: Every state entered, in order.
    """

    def __init__(
        self,
        project_root: Path,
        config: BuildConfig | None = None,
        clean: bool = False,
        converter: MarkdownRenderer | None = None,
        formats: FormatRegistry | None = None,
        feeds: FeedRegistry | None = None,
    ):
        self.project_root = project_root
        self.config = config or load_config(project_root)
        self.clean = clean
        self.converter = converter or MarkdownConverter()
        self.formats = formats or default_format_registry
        self.feeds = feeds or create_default_feed_registry()
        self.content_dir = project_root / self.config.content_dir
        self.output_dir = project_root / self.config.output_dir
        self.cache = BuildCache(project_root / self.config.cache_dir, self.config.fingerprint)
        self.writer = OutputWriter(self.output_dir)
        self.state = BuildState.IDLE
        self.history: list[BuildState] = [BuildState.IDLE]
        self.data: dict[str, Any] = {}
        self.aggregate: SiteAggregate | None = None

    def _transition(self, state: BuildState) -> None:
        logger.info("Build state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def run(self) -> BuildOutcome:
        """Run the build through every phase.

        Returns:
            Done with the build stats, or Failed with a BuildError listing
            every failing path. Only Done leaves a committed cache behind.
        """
        started = time.perf_counter()
        try:
            stats = self._run()
        except BuildError as exc:
            self._transition(BuildState.FAILED)
            for path, reason in exc.failures:
                logger.error("%s: %s", path, reason)
            return Failed(exc)
        except FolioError as exc:
            self._transition(BuildState.FAILED)
            path = getattr(exc, "path", None) or str(self.project_root)
            logger.error("%s", exc)
            return Failed(BuildError([(path, str(exc))], phase="configuration"))
        except Exception:
            self._transition(BuildState.FAILED)
            raise
        stats.duration = time.perf_counter() - started
        self._transition(BuildState.DONE)
        logger.info(
            "Built %d of %d items (%d files, %d listings, %d feeds) in %.2fs",
            stats.rendered_items,
            stats.total_items,
            stats.files_written,
            len(stats.listings),
            len(stats.feeds),
            stats.duration,
        )
        return Done(stats)

    def _run(self) -> BuildStats:
        stats = BuildStats(output_dir=self.output_dir)

        self._transition(BuildState.LOADING)
        items = self._load(stats)

        self._transition(BuildState.CHANGE_DETECTION)
        fingerprints, render_set = self._detect_changes(items, stats)

        self._transition(BuildState.AGGREGATING)
        self.aggregate = SiteAggregate.build(items)

        self._transition(BuildState.RENDERING)
        resolver = TemplateResolver(self.content_dir, self.config, self.data, self.formats)
        self._render(render_set, resolver, self.aggregate, stats)

        self._transition(BuildState.FINALIZING)
        if self.config.listings:
            stats.listings = self._write_listings(resolver, self.aggregate)
        stats.feeds = self.feeds.generate_all(self.writer, self.aggregate, self._feed_data())
        self.cache.commit(fingerprints)
        return stats

    def _load(self, stats: BuildStats) -> list[ContentItem]:
        if not self.content_dir.is_dir():
            raise BuildError(
                [(str(self.content_dir), "content directory does not exist")],
                phase="loading",
            )
        self.data = load_data(self.project_root)
        store = ContentStore(self.content_dir, self.config, self.formats)
        result = store.load_all()
        stats.total_items = len(result.items)
        stats.parse_errors = len(result.errors)
        if result.errors and self.config.strict_content:
            raise BuildError([(e.path, e.reason) for e in result.errors], phase="loading")
        return result.items

    def _detect_changes(
        self, items: list[ContentItem], stats: BuildStats
    ) -> tuple[dict[str, str], list[ContentItem]]:
        if self.clean:
            ensure_clean_dir(self.output_dir)
        incremental = self.config.incremental and not self.clean
        state = self.cache.load() if incremental else CacheState.invalid()

        fingerprints = self.cache.snapshot(self.content_dir, [i.source_path for i in items])
        fingerprints.update(
            self.cache.snapshot(self.content_dir, self._template_files(), prefix=TEMPLATE_PREFIX)
        )
        changed = self.cache.changed_since(state, fingerprints, incremental=incremental)

        recorded_templates = {p for p in state.entries if p.startswith(TEMPLATE_PREFIX)}
        current_templates = {p for p in fingerprints if p.startswith(TEMPLATE_PREFIX)}
        templates_changed = bool(
            {p for p in changed if p.startswith(TEMPLATE_PREFIX)}
            or (state.valid and recorded_templates != current_templates)
        )
        if templates_changed:
            logger.info("Templates changed; every item will be rendered")
            changed_items = list(items)
        else:
            changed_items = [i for i in items if i.source_path in changed]
        stats.changed_items = len(changed_items)

        if incremental and self.config.render_changed_only:
            changed_paths = {i.source_path for i in changed_items}
            render_set = [
                i for i in items if i.source_path in changed_paths or self._missing_output(i)
            ]
        else:
            render_set = list(items)
        stats.skipped_items = len(items) - len(render_set)
        logger.info(
            "%d items changed, %d to render, %d unchanged",
            len(changed_items),
            len(render_set),
            stats.skipped_items,
        )
        return fingerprints, render_set

    def _template_files(self) -> list[str]:
        files: list[str] = []
        for folder in (LAYOUTS_DIR, PARTIALS_DIR):
            root = self.content_dir / folder
            if root.is_dir():
                files.extend(
                    p.relative_to(self.content_dir).as_posix() for p in root.rglob("*") if p.is_file()
                )
        return sorted(files)

    def _missing_output(self, item: ContentItem) -> bool:
        return any(
            not self.writer.exists(self.formats[name].output_path(item.url))
            for name in item.output_formats
        )

    def _render(
        self,
        render_set: list[ContentItem],
        resolver: TemplateResolver,
        aggregate: SiteAggregate,
        stats: BuildStats,
    ) -> None:
        tasks = [
            Task(task_id=n, item=item, formats=tuple(sorted(item.output_formats)))
            for n, item in enumerate(render_set)
        ]
        scheduler = TaskScheduler(self.config.max_workers, self.config.parallel)
        results = scheduler.process(tasks, lambda task: self._render_task(task, resolver, aggregate))
        stats.results = results
        stats.rendered_items = sum(1 for r in results if r.success)
        stats.files_written = sum(len(r.formats_written) for r in results)
        failures = [(r.source_path, r.error or "unknown error") for r in results if not r.success]
        if failures:
            raise BuildError(failures, phase="rendering")

    def _render_task(self, task: Task, resolver: TemplateResolver, aggregate: SiteAggregate) -> list[str]:
        """Render one item: convert Markdown once, then every format."""
        item = task.item
        item.attach_rendered_body(self.converter.to_html(item.raw_body))
        outputs = resolver.render_all(item, aggregate, list(task.formats))
        written = []
        for name, text in outputs.items():
            fmt = self.formats[name]
            relative = fmt.output_path(item.url)
            self.writer.write(relative, self._finish(text, fmt, resolver.root_url))
            written.append(relative)
        return written

    @staticmethod
    def _finish(text: str, fmt: OutputFormat, root_url: str) -> str:
        if root_url and fmt.extension == "html":
            return absolutize_html_urls(text, root_url)
        return text

    def _write_listings(self, resolver: TemplateResolver, aggregate: SiteAggregate) -> list[str]:
        """Render every listing page; listings are rebuilt on each build."""
        fmt = self.formats.get("html")
        if fmt is None:
            logger.info("No html format registered; skipping listings")
            return []
        written: list[str] = []
        failures: list[tuple[str, str]] = []
        for page in plan_listings(aggregate, self.config.per_page):
            try:
                text = resolver.render_listing(page, aggregate)
            except TemplateError as exc:
                logger.error("Listing %s failed: %s", page.url, exc)
                failures.append((page.url, str(exc)))
                continue
            relative = fmt.output_path(page.url)
            self.writer.write(relative, self._finish(text, fmt, resolver.root_url))
            written.append(relative)
        if failures:
            raise BuildError(failures, phase="finalizing")
        logger.debug("Wrote %d listing pages", len(written))
        return written

    def _feed_data(self) -> dict[str, Any]:
        data = dict(self.data)
        if not data.get("url") and self.config.root_url:
            data["url"] = self.config.root_url
        return data


def build_site(
    project_root: Path,
    config: BuildConfig | None = None,
    clean: bool = False,
    **overrides: Any,
) -> BuildStats:
    """Build the site once.

    Args:
        project_root: Root directory of the project.
        config: Configuration to use instead of folio.yaml.
        clean: Whether to wipe the output directory and render everything.
        **overrides: Configuration values replacing the loaded ones.

    Returns:
        BuildStats of the successful build.

    Raises:
        BuildError: If any item failed to load or render.
    """
    base = config or load_config(project_root)
    outcome = BuildCoordinator(project_root, base.with_overrides(**overrides), clean=clean).run()
    if isinstance(outcome, Failed):
        raise outcome.error
    return outcome.stats
