from datetime import datetime
from pathlib import Path

import pytest

from folio.aggregate import SiteAggregate
from folio.config import BuildConfig
from folio.content import ContentItem
from folio.exceptions import TemplateError, TemplateErrorKind
from folio.extractors import FrontMatter
from folio.listings import ListingPage, Paginator, plan_listings
from folio.templates import TemplateResolver


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def make_item(path, title, date=None, tags=(), categories=(), draft=False, url=None):
    return ContentItem(
        source_path=path,
        metadata=FrontMatter(
            title=title, date=date, tags=tuple(tags), categories=tuple(categories), draft=draft
        ),
        raw_body="",
        url=url or f"/{path.removesuffix('.md')}/",
        output_formats=frozenset({"html"}),
    )


def numbered_posts(count):
    return [
        make_item(f"p{n}.md", f"Post {n}", date=datetime(2024, 1, n + 1), tags=["py"] if n % 2 else [])
        for n in range(count)
    ]


def test_paginator_pages_and_urls():
    entries = tuple(numbered_posts(5))
    first = Paginator(entries, per_page=2, page=1, base_url="/posts")
    assert first.total_pages == 3
    assert [i.title for i in first.items] == ["Post 0", "Post 1"]
    assert first.url == "/posts/"
    assert first.has_previous is False
    assert first.previous_url is None
    assert first.next_url == "/posts/page/2/"

    last = Paginator(entries, per_page=2, page=3, base_url="/posts")
    assert [i.title for i in last.items] == ["Post 4"]
    assert last.has_next is False
    assert last.previous_url == "/posts/page/2/"
    assert list(last.page_range(window=1)) == [2, 3]


def test_empty_paginator_has_one_page():
    paginator = Paginator((), per_page=10)
    assert paginator.total_pages == 1
    assert len(paginator.items) == 0
    assert paginator.url == "/"


def test_plan_listings_covers_home_archive_tags_and_categories():
    items = numbered_posts(3) + [
        make_item("guide.md", "Guide", date=datetime(2024, 3, 1), categories=["Docs"]),
        make_item("wip.md", "WIP", date=datetime(2025, 1, 1), tags=["py"], draft=True),
    ]
    pages = plan_listings(SiteAggregate.build(items), per_page=2)

    assert [(p.kind, p.url) for p in pages] == [
        ("home", "/"),
        ("archive", "/posts/"),
        ("archive", "/posts/page/2/"),
        ("tag", "/tags/py/"),
        ("category", "/categories/docs/"),
    ]
    home, archive = pages[0], pages[1]
    assert [i.title for i in home.items] == ["Guide", "Post 2", "Post 1", "Post 0"]
    assert [i.title for i in archive.items] == ["Guide", "Post 2"]
    assert pages[2].title == "All Posts - Page 2"
    assert pages[3].term == "py"
    assert [i.title for i in pages[3].items] == ["Post 1"]


def test_content_items_keep_their_urls(caplog):
    items = numbered_posts(2) + [
        make_item("index.md", "Welcome", url="/"),
        make_item("tags/py.md", "Python", url="/tags/py/"),
    ]
    pages = plan_listings(SiteAggregate.build(items))
    urls = [p.url for p in pages]
    assert "/" not in urls
    assert "/tags/py/" not in urls
    assert "/posts/" in urls
    assert "tags/py.md uses that URL" in caplog.text


def test_tags_with_the_same_slug_share_one_listing(caplog):
    items = [
        make_item("a.md", "A", date=datetime(2024, 1, 1), tags=["C Sharp"]),
        make_item("b.md", "B", date=datetime(2024, 1, 2), tags=["c-sharp"]),
    ]
    pages = plan_listings(SiteAggregate.build(items))
    assert [p.url for p in pages if p.kind == "tag"] == ["/tags/c-sharp/"]
    assert "already generated" in caplog.text


def test_empty_site_has_no_listings():
    assert plan_listings(SiteAggregate.build([])) == []


def test_builtin_listing_template(tmp_path):
    site = SiteAggregate.build(numbered_posts(3))
    page = plan_listings(site, per_page=2)[1]
    html = TemplateResolver(tmp_path).render_listing(page, site)

    assert "<title>All Posts</title>" in html
    assert '<a href="/p2/">Post 2</a> <time>2024-01-03</time>' in html
    assert '<a href="/posts/page/2/" rel="next">Next</a>' in html
    assert "Page 1 of 2" in html


def test_listing_layout_lookup_prefers_kind_then_list(tmp_path):
    write(tmp_path / "_layouts" / "list.html.jinja", "list:{{ title }}:{{ items | length }}")
    write(
        tmp_path / "_layouts" / "tag.html.jinja",
        "tag:{{ term }}:{% for i in items %}{{ i.title }}{% endfor %}",
    )
    site = SiteAggregate.build(numbered_posts(4))
    pages = {p.kind: p for p in plan_listings(site)}
    resolver = TemplateResolver(tmp_path, BuildConfig())

    assert resolver.render_listing(pages["tag"], site) == "tag:py:Post 3Post 1"
    assert resolver.render_listing(pages["archive"], site) == "list:All Posts:4"


def test_listing_layouts_can_use_partials_and_site_data(tmp_path):
    write(tmp_path / "_layouts" / "list.html.jinja", "{{ partial('nav') }}|{{ data.title }}")
    write(tmp_path / "_partials" / "nav.html.jinja", "<nav>{{ paginator.total_items }}</nav>")
    site = SiteAggregate.build(numbered_posts(2))
    page = ListingPage(kind="archive", title="All", paginator=Paginator(tuple(site.recent(5))))
    resolver = TemplateResolver(tmp_path, data={"title": "My <Site>"})
    assert resolver.render_listing(page, site) == "<nav>2</nav>|My &lt;Site&gt;"


def test_listing_errors_name_the_listing_url(tmp_path):
    write(tmp_path / "_layouts" / "list.html.jinja", "{{ title | nope }}")
    site = SiteAggregate.build(numbered_posts(1))
    page = plan_listings(site)[1]
    with pytest.raises(TemplateError) as excinfo:
        TemplateResolver(tmp_path).render_listing(page, site)
    assert excinfo.value.kind is TemplateErrorKind.UNKNOWN_FUNCTION
    assert excinfo.value.path == "/posts/"
