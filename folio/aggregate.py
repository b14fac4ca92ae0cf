"""Site-wide aggregate views over the loaded content.

The aggregate is built exactly once per build, after loading and before any
rendering, and is read-only from then on. Templates reach it as ``site`` to
list posts by tag, category or date without ever triggering a rebuild.

Key classes:
- ItemCollection: Immutable sequence of ContentItems with template helpers.
- SiteAggregate: Indexes over every loaded item.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import datetime
from types import MappingProxyType
from typing import Any

from .content import ContentItem

logger = logging.getLogger(__name__)


def _date_key(item: ContentItem) -> tuple[datetime, str]:
    # Undated items sort as the oldest; source path breaks ties.
    return (item.date or datetime.min, item.source_path)


class ItemCollection(Sequence[ContentItem]):
    """Lightweight helper for working with lists of items in templates and code."""

    def __init__(self, items: Iterable[ContentItem] = ()):
        self._items = tuple(items)

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return ItemCollection(self._items[index])
        return self._items[index]

    def with_tag(self, tag: str) -> ItemCollection:
        return ItemCollection(i for i in self._items if tag in i.tags)

    def in_section(self, section: str) -> ItemCollection:
        return ItemCollection(i for i in self._items if i.section == section)

    def sorted(self, reverse: bool = True) -> ItemCollection:
        """Sort items by date, then by source path.

        Args:
            reverse: If True (default), newest first. If False, oldest first.

        Returns:
            A new ItemCollection with sorted items.
        """
        return ItemCollection(sorted(self._items, key=_date_key, reverse=reverse))

    def latest(self, count: int = 5) -> ItemCollection:
        return self.sorted()[:count]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"ItemCollection({len(self._items)} items)"


class SiteAggregate:
    """Read-only indexes over every item of one build.

    Use ``SiteAggregate.build(items)``; every index is computed up front and
    the instance rejects attribute assignment afterwards, so concurrent render
    workers can share it without locking.

    Attributes:
        generation: Counter incremented by each construction, for diagnostics.
    """

    generation = 0
    _frozen = False

    def __init__(self, items: Iterable[ContentItem]):
        ordered = tuple(sorted(items, key=lambda i: i.source_path))
        by_tag: dict[str, list[ContentItem]] = {}
        by_category: dict[str, list[ContentItem]] = {}
        by_series: dict[str, list[ContentItem]] = {}
        for item in ordered:
            for tag in dict.fromkeys(item.tags):
                by_tag.setdefault(tag, []).append(item)
            for category in dict.fromkeys(item.categories):
                by_category.setdefault(category, []).append(item)
            if item.series:
                by_series.setdefault(item.series, []).append(item)

        self._all = ItemCollection(ordered)
        self._by_tag = self._freeze(by_tag, reverse=True)
        self._by_category = self._freeze(by_category, reverse=True)
        self._by_series = self._freeze(by_series, reverse=False)
        self._by_url = MappingProxyType({i.url: i for i in ordered})
        self._by_path = MappingProxyType({i.source_path: i for i in ordered})
        self._recent = ItemCollection(i for i in self._all.sorted() if not i.draft)

        type(self).generation += 1
        self._frozen = True
        logger.debug(
            "Built site aggregate: %d items, %d tags, %d categories",
            len(ordered),
            len(by_tag),
            len(by_category),
        )

    @classmethod
    def build(cls, items: Iterable[ContentItem]) -> SiteAggregate:
        """Build the aggregate for one build from the loaded items."""
        return cls(items)

    @staticmethod
    def _freeze(index: dict[str, list[ContentItem]], reverse: bool) -> Mapping[str, ItemCollection]:
        return MappingProxyType(
            {key: ItemCollection(values).sorted(reverse=reverse) for key, values in sorted(index.items())}
        )

    def __setattr__(self, name: str, value: Any) -> None:
        if self._frozen:
            raise AttributeError(f"SiteAggregate is read-only; cannot set {name!r}")
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"SiteAggregate is read-only; cannot delete {name!r}")

    def all(self) -> ItemCollection:
        return self._all

    def by_tag(self, tag: str) -> ItemCollection:
        """Items carrying ``tag``, newest first."""
        return self._by_tag.get(tag, ItemCollection())

    def by_category(self, category: str) -> ItemCollection:
        """Items in ``category``, newest first."""
        return self._by_category.get(category, ItemCollection())

    def recent(self, count: int = 10) -> ItemCollection:
        """The ``count`` newest published items; empty when ``count`` is not positive."""
        return self._recent[: max(count, 0)]

    def series(self, name: str) -> ItemCollection:
        """Items of a series, oldest first so they read in order."""
        return self._by_series.get(name, ItemCollection())

    def by_url(self, url: str) -> ContentItem | None:
        return self._by_url.get(url)

    def get(self, source_path: str) -> ContentItem | None:
        return self._by_path.get(source_path)

    def tags(self) -> tuple[str, ...]:
        return tuple(self._by_tag)

    def categories(self) -> tuple[str, ...]:
        return tuple(self._by_category)

    def __len__(self) -> int:
        return len(self._all)

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._all)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"SiteAggregate({len(self._all)} items)"
