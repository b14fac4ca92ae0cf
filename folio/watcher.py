"""File watching for Folio.

Watches the content root, the data folder and folio.yaml, and runs a fresh
incremental build whenever something changes. Changes below the output and
cache directories are ignored so a build never triggers itself.

Key classes:
- SiteWatcher: Owns the watchdog observer and runs rebuilds.
- _ChangeHandler: File system event handler for triggering rebuilds.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildCoordinator, BuildOutcome
from .config import CONFIG_FILENAME, BuildConfig, load_config
from .exceptions import FolioError

logger = logging.getLogger(__name__)

WATCHED_FOLDERS = ("data",)
BUSY_RETRY_SECONDS = 0.1


class SiteWatcher:
    """Rebuilds a project whenever its sources change.

    Attributes:
        project_root: Root directory of the project.
        on_build: Callback receiving each build outcome.
    """

    def __init__(
        self,
        project_root: Path,
        overrides: dict | None = None,
        on_build: Callable[[BuildOutcome], None] | None = None,
        debounce_seconds: float = 0.2,
    ):
        self.project_root = project_root
        self.overrides = overrides or {}
        self.on_build = on_build
        self.debounce_seconds = debounce_seconds
        self._observer: Observer | None = None
        self._lock = threading.Lock()
        self._last_rebuild_at = 0.0
        self._last_signature: tuple | None = None
        self._pending: threading.Timer | None = None
        self._timer_lock = threading.Lock()

    def _config(self) -> BuildConfig:
        return load_config(self.project_root).with_overrides(**self.overrides)

    @property
    def ignored_dirs(self) -> tuple[Path, ...]:
        config = self._config()
        return (
            self.project_root / config.output_dir,
            self.project_root / config.cache_dir,
        )

    def watched_dirs(self) -> list[Path]:
        config = self._config()
        folders = [self.project_root / config.content_dir]
        folders.extend(self.project_root / name for name in WATCHED_FOLDERS)
        return [folder for folder in folders if folder.exists()]

    def rebuild(self) -> BuildOutcome | None:
        """Run one build unless one is running or nothing changed.

        A call inside the debounce window, or while another build runs, is
        deferred rather than dropped: one trailing rebuild is scheduled for
        when the window closes.

        Returns:
            The build outcome, or None when the rebuild was skipped or deferred.
        """
        wait = self._last_rebuild_at + self.debounce_seconds - time.time()
        if wait > 0:
            self._schedule(wait)
            return None
        if not self._lock.acquire(blocking=False):
            self._schedule(max(self.debounce_seconds, BUSY_RETRY_SECONDS))
            return None
        try:
            signature = self._compute_signature()
            if signature is not None and signature == self._last_signature:
                return None
            logger.info("Change detected; rebuilding")
            outcome = BuildCoordinator(self.project_root, self._config()).run()
            self._last_signature = signature
            if self.on_build:
                self.on_build(outcome)
            return outcome
        finally:
            self._last_rebuild_at = time.time()
            self._lock.release()

    def _schedule(self, delay: float) -> None:
        with self._timer_lock:
            if self._pending is not None:
                return
            timer = threading.Timer(delay, self._run_pending)
            timer.daemon = True
            self._pending = timer
            timer.start()
            logger.debug("Rebuild deferred by %.2fs", delay)

    def _run_pending(self) -> None:
        with self._timer_lock:
            self._pending = None
        try:
            self.rebuild()
        except FolioError as exc:
            logger.error("Deferred rebuild failed: %s", exc)

    @property
    def pending(self) -> bool:
        """True while a trailing rebuild is scheduled."""
        return self._pending is not None

    def _compute_signature(self) -> tuple | None:
        entries: list[tuple] = []
        config_path = self.project_root / CONFIG_FILENAME
        roots = self.watched_dirs()
        paths = [config_path] if config_path.exists() else []
        for root in roots:
            paths.extend(sorted(p for p in root.rglob("*") if p.is_file()))
        for path in paths:
            try:
                stat = path.stat()
            except OSError:
                continue
            rel = path.relative_to(self.project_root)
            entries.append((str(rel), stat.st_mtime_ns, stat.st_size))
        return tuple(entries) if entries else None

    def start(self) -> None:
        """Start watching in background threads."""
        handler = _ChangeHandler(self)
        observer = Observer()
        for folder in self.watched_dirs():
            observer.schedule(handler, str(folder), recursive=True)
        # Watch root for folio.yaml
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.project_root)

    def stop(self) -> None:
        with self._timer_lock:
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def serve_forever(self) -> None:  # pragma: no cover - integration path
        self.rebuild()
        self.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: SiteWatcher):
        super().__init__()
        self.watcher = watcher

    def should_rebuild(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        path = Path(event.src_path)
        for ignored in self.watcher.ignored_dirs:
            try:
                path.relative_to(ignored)
                return False
            except ValueError:
                pass
        # Only folio.yaml matters among the files at the project root.
        if path.parent == self.watcher.project_root:
            return path.name == CONFIG_FILENAME
        return True

    def on_any_event(self, event: FileSystemEvent) -> None:
        if self.should_rebuild(event):
            self.watcher.rebuild()
