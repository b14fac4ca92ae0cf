"""Render task scheduling for Folio.

Tasks are fanned out to a bounded thread pool. Whatever a worker raises is
caught and turned into a failed Result, so one broken page never stops the
others from rendering and every task yields exactly one Result.

Key classes:
- Task: One content item to render in one or more formats.
- Result: Outcome of one Task.
- TaskScheduler: Runs tasks inline or on a ThreadPoolExecutor.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import FolioError

if TYPE_CHECKING:
    from .content import ContentItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    task_id: int
    item: ContentItem
    formats: tuple[str, ...] = ()

    @property
    def source_path(self) -> str:
        return self.item.source_path


@dataclass(frozen=True)
class Result:
    """Outcome of one task.

    Attributes:
        task_id: Id of the task this result answers.
        source_path: Source path of the task's item.
        success: Whether every format was rendered and written.
        error: Failure description when ``success`` is False.
        formats_written: Output paths written by the worker.
        duration: Wall-clock seconds spent in the worker.
    """

    task_id: int
    source_path: str
    success: bool
    error: str | None = None
    formats_written: tuple[str, ...] = field(default_factory=tuple)
    duration: float = 0.0

    @classmethod
    def failed(cls, task: Task, error: BaseException, duration: float = 0.0) -> Result:
        return cls(
            task_id=task.task_id,
            source_path=task.source_path,
            success=False,
            error=format_error(error),
            duration=duration,
        )


WorkerFn = Callable[[Task], Iterable[str]]


def format_error(exc: BaseException) -> str:
    """Format an exception into a user-friendly error message."""
    if isinstance(exc, FolioError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"


class TaskScheduler:
    """Runs render tasks, in parallel when allowed.

    Attributes:
        max_workers: Upper bound on concurrently running workers.
        parallel: Whether to use the thread pool at all.
    """

    def __init__(self, max_workers: int = 4, parallel: bool = True):
        self.max_workers = max(1, max_workers)
        self.parallel = parallel

    @property
    def is_parallel(self) -> bool:
        return self.parallel and self.max_workers > 1

    def process(self, tasks: Iterable[Task], worker_fn: WorkerFn) -> list[Result]:
        """Run ``worker_fn`` for every task.

        Args:
            tasks: Tasks to run.
            worker_fn: Callable returning the paths it wrote for a task.

        Returns:
            One Result per task, ordered by task id.
        """
        task_list = list(tasks)
        if not task_list:
            return []
        if not self.is_parallel:
            logger.debug("Running %d tasks inline", len(task_list))
            results = [self._run(task, worker_fn) for task in task_list]
        else:
            workers = min(self.max_workers, len(task_list))
            logger.debug("Running %d tasks on %d workers", len(task_list), workers)
            results = []
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="folio-render") as executor:
                future_map = {executor.submit(self._run, task, worker_fn): task for task in task_list}
                for future in as_completed(future_map):
                    results.append(future.result())
        return sorted(results, key=lambda r: r.task_id)

    @staticmethod
    def _run(task: Task, worker_fn: WorkerFn) -> Result:
        started = time.perf_counter()
        try:
            written = tuple(worker_fn(task))
        except Exception as exc:
            duration = time.perf_counter() - started
            logger.error("Rendering %s failed: %s", task.source_path, exc)
            return Result.failed(task, exc, duration)
        duration = time.perf_counter() - started
        logger.debug("Rendered %s in %.3fs", task.source_path, duration)
        return Result(
            task_id=task.task_id,
            source_path=task.source_path,
            success=True,
            formats_written=written,
            duration=duration,
        )
