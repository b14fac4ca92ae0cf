"""Listing pages for Folio.

Listings are site-level HTML pages built from the SiteAggregate after every
item rendered: a paginated archive of the published dated posts, one
paginated page set per tag and per category, and a home page of the newest
posts when the site has no content of its own at ``/``. A listing never
replaces a content item; when both claim a URL the item wins.

Classes:
    Paginator: One page of a paginated item list.
    ListingPage: A listing to render, with its paginator.

Functions:
    plan_listings: Every listing page for one aggregate.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from .aggregate import ItemCollection, SiteAggregate
from .content import ContentItem
from .utils import slugify

logger = logging.getLogger(__name__)

ARCHIVE_BASE = "/posts"
TAGS_BASE = "/tags"
CATEGORIES_BASE = "/categories"
HOME_ITEM_LIMIT = 5
LISTING_LAYOUT = "list"

LISTING_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
</head>
<body>
<h1>{{ title }}</h1>
<ul>
{% for entry in items %}<li><a href="{{ entry.url }}">{{ entry.title }}</a>
{%- if entry.date %} <time>{{ entry.date | date_format("%Y-%m-%d") }}</time>{% endif %}</li>
{% endfor %}</ul>
{% if paginator.total_pages > 1 %}<nav class="pagination">
{% if paginator.has_previous %}<a href="{{ paginator.previous_url }}" rel="prev">Previous</a>
{% endif %}<span>Page {{ paginator.page }} of {{ paginator.total_pages }}</span>
{% if paginator.has_next %}<a href="{{ paginator.next_url }}" rel="next">Next</a>
{% endif %}</nav>
{% endif %}</body>
</html>
"""


@dataclass(frozen=True)
class Paginator:
    """One page of a paginated item list.

    Page 1 lives at ``base_url/``, later pages at ``base_url/page/N/``.

    Attributes:
        entries: Every item of the list, in display order.
        per_page: Items per page.
        page: Current page, starting at 1.
        base_url: URL prefix without a trailing slash; empty for the site root.
    """

    entries: tuple[ContentItem, ...]
    per_page: int = 10
    page: int = 1
    base_url: str = ""

    @property
    def total_items(self) -> int:
        return len(self.entries)

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(len(self.entries) / self.per_page))

    @property
    def items(self) -> ItemCollection:
        start = (self.page - 1) * self.per_page
        return ItemCollection(self.entries[start : start + self.per_page])

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def previous_url(self) -> str | None:
        return self.page_url(self.page - 1) if self.has_previous else None

    @property
    def next_url(self) -> str | None:
        return self.page_url(self.page + 1) if self.has_next else None

    @property
    def url(self) -> str:
        return self.page_url(self.page)

    def page_url(self, page: int) -> str:
        if page <= 1:
            return f"{self.base_url}/"
        return f"{self.base_url}/page/{page}/"

    def page_range(self, window: int = 2) -> range:
        """Page numbers within ``window`` of the current page."""
        return range(max(self.page - window, 1), min(self.page + window, self.total_pages) + 1)


@dataclass(frozen=True)
class ListingPage:
    """A listing page to render.

    Attributes:
        kind: "archive", "tag", "category" or "home"; also the layout name.
        title: Page title.
        paginator: Items of this page and links to its neighbours.
        term: The tag or category being listed, if any.
    """

    kind: str
    title: str
    paginator: Paginator
    term: str | None = None

    @property
    def url(self) -> str:
        return self.paginator.url

    @property
    def items(self) -> ItemCollection:
        return self.paginator.items


def _paginate(
    kind: str,
    title: str,
    entries: Sequence[ContentItem],
    base_url: str,
    per_page: int,
    term: str | None = None,
) -> list[ListingPage]:
    entries = tuple(entries)
    pages = []
    for page in range(1, Paginator(entries, per_page).total_pages + 1):
        heading = title if page == 1 else f"{title} - Page {page}"
        paginator = Paginator(entries, per_page=per_page, page=page, base_url=base_url)
        pages.append(ListingPage(kind=kind, title=heading, paginator=paginator, term=term))
    return pages


def _published(items: ItemCollection) -> list[ContentItem]:
    return [item for item in items if not item.draft]


def plan_listings(aggregate: SiteAggregate, per_page: int = 10) -> list[ListingPage]:
    """Work out every listing page for one build.

    Args:
        aggregate: The site aggregate of this build.
        per_page: Items per page.

    Returns:
        Listing pages in a stable order: home, archive, tags, categories.
        Pages whose URL is already taken by a content item, or by an earlier
        listing, are left out.
    """
    # Home and archive list dated posts; undated pages stay out of them.
    posts = [item for item in aggregate.recent(len(aggregate)) if item.date]
    planned: list[ListingPage] = []
    if posts:
        planned.append(
            ListingPage(
                kind="home",
                title="Home",
                paginator=Paginator(tuple(posts[:HOME_ITEM_LIMIT]), per_page=HOME_ITEM_LIMIT),
            )
        )
        planned.extend(_paginate("archive", "All Posts", posts, ARCHIVE_BASE, per_page))
    for tag in aggregate.tags():
        entries = _published(aggregate.by_tag(tag))
        if entries:
            base = f"{TAGS_BASE}/{slugify(tag)}"
            planned.extend(_paginate("tag", f'Posts tagged "{tag}"', entries, base, per_page, term=tag))
    for category in aggregate.categories():
        entries = _published(aggregate.by_category(category))
        if entries:
            base = f"{CATEGORIES_BASE}/{slugify(category)}"
            title = f'Posts in "{category}"'
            planned.extend(_paginate("category", title, entries, base, per_page, term=category))

    pages: list[ListingPage] = []
    claimed: set[str] = set()
    for page in planned:
        owner = aggregate.by_url(page.url)
        if owner is not None:
            if page.kind != "home":
                logger.warning(
                    "Skipping %s listing at %s; %s uses that URL", page.kind, page.url, owner.source_path
                )
            continue
        if page.url in claimed:
            logger.warning(
                "Skipping %s listing for %r; %s is already generated", page.kind, page.term, page.url
            )
            continue
        claimed.add(page.url)
        pages.append(page)
    logger.debug("Planned %d listing pages", len(pages))
    return pages
