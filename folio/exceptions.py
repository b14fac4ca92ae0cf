"""Exception types for Folio.

Errors are split by how far they travel:

- ParseError and TemplateError belong to a single content item. They are
  collected during a build and never abort it on their own.
- CacheError describes an unusable cache file. It is logged and the build
  falls back to rendering everything.
- BuildError is the aggregate failure surfaced to the caller, listing every
  failing path.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class FolioError(Exception):
    """Base class for all Folio errors."""


class ConfigError(FolioError):
    """Invalid value in folio.yaml or an unreadable site data file.

    Attributes:
        path: The offending file, when one is known.
    """

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class ParseError(FolioError):
    """A content file could not be turned into a ContentItem.

    Attributes:
        path: Source path relative to the content root.
        reason: Human-readable reason.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class CacheError(FolioError):
    """The build cache file is missing, corrupt or from another cache version."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class TemplateErrorKind(str, Enum):
    SYNTAX = "syntax"
    MISSING_LAYOUT = "missing_layout"
    MISSING_PARTIAL = "missing_partial"
    MAX_DEPTH_EXCEEDED = "max_depth_exceeded"
    UNKNOWN_FUNCTION = "unknown_function"
    RENDER = "render"


class TemplateError(FolioError):
    """Rendering one content item failed.

    Attributes:
        kind: Which class of failure occurred.
        message: Human-readable description.
        template: Name of the template being rendered, if known.
        chain: Partial names being expanded when the error occurred.
        path: Source path of the content item, filled in by the resolver.
    """

    def __init__(
        self,
        kind: TemplateErrorKind,
        message: str,
        template: str | None = None,
        chain: Iterable[str] = (),
        path: str | None = None,
    ):
        self.kind = kind
        self.message = message
        self.template = template
        self.chain = tuple(chain)
        self.path = path
        super().__init__(self._describe())

    def _describe(self) -> str:
        text = f"[{self.kind.value}] {self.message}"
        if self.template:
            text += f" (template {self.template})"
        if self.chain:
            text += f" (partials: {' -> '.join(self.chain)})"
        return text

    def with_path(self, path: str) -> TemplateError:
        self.path = path
        return self


class BuildError(FolioError):
    """One or more content items failed to load or render.

    Attributes:
        failures: List of (source path, reason) pairs, one per failing item.
        phase: Build phase in which the failures were collected.
    """

    def __init__(self, failures: Iterable[tuple[str, str]], phase: str = "rendering"):
        self.failures = list(failures)
        self.phase = phase
        count = len(self.failures)
        noun = "item" if count == 1 else "items"
        super().__init__(f"{count} {noun} failed during {phase}")

    @property
    def failed_paths(self) -> list[str]:
        return [path for path, _ in self.failures]
