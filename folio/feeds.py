"""Site-level feeds for Folio.

Feeds describe the site as a whole rather than one item, so they are written
once per successful build from the SiteAggregate, after every item rendered.
They need an absolute base URL (``url`` in site data, falling back to the
configured ``root_url``); without one every feed is skipped.

Classes:
    FeedContext: Site-wide values shared by every feed.
    FeedGenerator: Base class for feed generators.
    SitemapGenerator: sitemap.xml listing every published item.
    RSSGenerator: rss.xml with the newest dated items.
    AtomGenerator: atom.xml with the newest dated items.
    JSONFeedGenerator: feed.json in JSON Feed 1.1 format.
    FeedRegistry: Ordered set of generators run by the build.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from markupsafe import escape

if TYPE_CHECKING:
    from .aggregate import SiteAggregate
    from .content import ContentItem
    from .protocols import Writer

logger = logging.getLogger(__name__)

FEED_ITEM_LIMIT = 20
EPOCH = datetime(1970, 1, 1)
RFC822 = "%a, %d %b %Y %H:%M:%S +0000"
RFC3339 = "%Y-%m-%dT%H:%M:%SZ"


@dataclass(frozen=True)
class FeedContext:
    base_url: str
    title: str = "Folio Feed"
    description: str = ""
    author: str = ""

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> FeedContext:
        return cls(
            base_url=str(data.get("url", "") or "").rstrip("/"),
            title=str(data.get("title") or "Folio Feed"),
            description=str(data.get("description") or ""),
            author=str(data.get("author") or ""),
        )

    def link(self, item: ContentItem) -> str:
        return f"{self.base_url}{item.url}"


def _summary(item: ContentItem) -> str:
    return item.description or item.title


def _dated(aggregate: SiteAggregate, limit: int) -> list[ContentItem]:
    return [item for item in aggregate.recent(len(aggregate)) if item.date][:limit]


class FeedGenerator(ABC):
    """Base class for one site-level feed file."""

    filename: str = ""

    @abstractmethod
    def generate(self, aggregate: SiteAggregate, context: FeedContext) -> str:
        """Return the feed document for ``aggregate``."""

    def write(self, writer: Writer, aggregate: SiteAggregate, context: FeedContext) -> None:
        writer.write(self.filename, self.generate(aggregate, context))
        logger.debug("Wrote feed %s", self.filename)


class SitemapGenerator(FeedGenerator):
    """Lists every published item."""

    filename = "sitemap.xml"

    def generate(self, aggregate: SiteAggregate, context: FeedContext) -> str:
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for item in aggregate.all():
            if item.draft:
                continue
            loc = escape(context.link(item))
            lastmod = f"<lastmod>{item.date:%Y-%m-%d}</lastmod>" if item.date else ""
            lines.append(f"  <url><loc>{loc}</loc>{lastmod}</url>")
        lines.append("</urlset>")
        return "\n".join(lines)


class RSSGenerator(FeedGenerator):
    filename = "rss.xml"

    def __init__(self, limit: int = FEED_ITEM_LIMIT):
        self.limit = limit

    def generate(self, aggregate: SiteAggregate, context: FeedContext) -> str:
        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom"><channel>',
            f"<title>{escape(context.title)}</title>",
            f"<link>{escape(context.base_url)}/</link>",
            f"<description>{escape(context.description)}</description>",
            f'<atom:link href="{escape(context.base_url)}/{self.filename}" rel="self" '
            'type="application/rss+xml"/>',
        ]
        items = _dated(aggregate, self.limit)
        # Output depends on content only; the newest entry dates the channel.
        if items:
            rss.append(f"<lastBuildDate>{items[0].date.strftime(RFC822)}</lastBuildDate>")
        for item in items:
            link = escape(context.link(item))
            categories = "".join(
                f"<category>{escape(name)}</category>" for name in (*item.tags, *item.categories)
            )
            rss.append(
                f"<item><title>{escape(item.title)}</title><link>{link}</link>"
                f'<guid isPermaLink="true">{link}</guid>'
                f"<description>{escape(_summary(item))}</description>"
                f"<pubDate>{item.date.strftime(RFC822)}</pubDate>{categories}</item>"
            )
        rss.append("</channel></rss>")
        return "\n".join(rss)


class AtomGenerator(FeedGenerator):
    filename = "atom.xml"

    def __init__(self, limit: int = FEED_ITEM_LIMIT):
        self.limit = limit

    def generate(self, aggregate: SiteAggregate, context: FeedContext) -> str:
        items = _dated(aggregate, self.limit)
        # The feed is as fresh as its newest entry.
        updated = items[0].date if items else EPOCH
        base = escape(context.base_url)
        atom = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<feed xmlns="http://www.w3.org/2005/Atom">',
            f"<title>{escape(context.title)}</title>",
            f'<link href="{base}/{self.filename}" rel="self"/>',
            f'<link href="{base}/"/>',
            f"<id>{base}/</id>",
            f"<updated>{updated.strftime(RFC3339)}</updated>",
        ]
        if context.author:
            atom.append(f"<author><name>{escape(context.author)}</name></author>")
        for item in items:
            link = escape(context.link(item))
            categories = "".join(f'<category term="{escape(tag)}"/>' for tag in item.tags)
            atom.append(
                f'<entry><title>{escape(item.title)}</title><link href="{link}"/><id>{link}</id>'
                f"<updated>{item.date.strftime(RFC3339)}</updated>"
                f"<summary>{escape(_summary(item))}</summary>{categories}</entry>"
            )
        atom.append("</feed>")
        return "\n".join(atom)


class JSONFeedGenerator(FeedGenerator):
    filename = "feed.json"

    def __init__(self, limit: int = FEED_ITEM_LIMIT):
        self.limit = limit

    def generate(self, aggregate: SiteAggregate, context: FeedContext) -> str:
        entries = []
        for item in _dated(aggregate, self.limit):
            entry: dict[str, Any] = {
                "id": context.link(item),
                "url": context.link(item),
                "title": item.title,
                "summary": _summary(item),
                "date_published": item.date.strftime(RFC3339),
                "tags": list(item.tags),
            }
            author = item.metadata.author or context.author
            if author:
                entry["authors"] = [{"name": author}]
            entries.append(entry)
        feed: dict[str, Any] = {
            "version": "https://jsonfeed.org/version/1.1",
            "title": context.title,
            "home_page_url": f"{context.base_url}/",
            "feed_url": f"{context.base_url}/{self.filename}",
            "items": entries,
        }
        if context.description:
            feed["description"] = context.description
        return json.dumps(feed, indent=2, ensure_ascii=False)


class FeedRegistry:
    """Ordered collection of feed generators."""

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def generate_all(self, writer: Writer, aggregate: SiteAggregate, data: dict[str, Any]) -> list[str]:
        """Write every registered feed.

        Args:
            writer: Destination for the feed files.
            aggregate: The site aggregate of this build.
            data: Site data; ``url`` is required, ``title``, ``description``
                and ``author`` are optional.

        Returns:
            Filenames written, in registration order. Empty when the site has
            no base URL.
        """
        context = FeedContext.from_data(data)
        if not context.base_url:
            logger.info("No site url configured; skipping feeds")
            return []
        for generator in self._generators:
            generator.write(writer, aggregate, context)
        return [generator.filename for generator in self._generators]


def create_default_feed_registry() -> FeedRegistry:
    registry = FeedRegistry()
    registry.register(SitemapGenerator())
    registry.register(RSSGenerator())
    registry.register(AtomGenerator())
    registry.register(JSONFeedGenerator())
    return registry
