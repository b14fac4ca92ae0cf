"""Protocol definitions for Folio.

This module defines the interfaces (protocols) the build coordinator depends
on, following the Dependency Inversion Principle (DIP) of SOLID.

These protocols enable:
- Loose coupling between components
- Easy testing through mock implementations
- Extensibility without modifying existing code (Open/Closed Principle)
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .aggregate import SiteAggregate
    from .content import ContentItem
    from .renderers import RenderedMarkdown


@runtime_checkable
class MarkdownRenderer(Protocol):
    """Protocol for converting Markdown bodies to HTML.

    Implementations must be pure: the same input always yields the same
    output, and calls may run concurrently.
    """

    @abstractmethod
    def to_html(self, markdown: str) -> RenderedMarkdown:
        """Convert Markdown to HTML.

        Args:
            markdown: Markdown source.

        Returns:
            RenderedMarkdown holding the HTML and its headings.
        """
        ...


@runtime_checkable
class TemplateRenderer(Protocol):
    """Protocol for rendering content items through templates."""

    @abstractmethod
    def render(self, item: ContentItem, aggregate: SiteAggregate, output_format: str) -> str:
        """Render one item in one output format."""
        ...

    @abstractmethod
    def render_all(
        self, item: ContentItem, aggregate: SiteAggregate, formats: list[str] | None = None
    ) -> dict[str, str]:
        """Render one item in several output formats."""
        ...


@runtime_checkable
class ContentLoader(Protocol):
    """Protocol for discovering content files.

    This separates file discovery from content parsing (SRP).
    """

    @abstractmethod
    def iter_files(self) -> list[Path]:
        """Return every content file, sorted by path."""
        ...


@runtime_checkable
class Writer(Protocol):
    """Protocol for persisting generated files."""

    @abstractmethod
    def write(self, relative_path: str, data: bytes | str) -> Path:
        """Write ``data`` at ``relative_path`` below the output root."""
        ...

    @abstractmethod
    def exists(self, relative_path: str) -> bool:
        ...
