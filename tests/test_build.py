import os
import threading
from pathlib import Path

import pytest
import yaml

from folio.aggregate import SiteAggregate
from folio.build import BuildCoordinator, BuildState, Done, Failed, build_site
from folio.config import BuildConfig, load_config
from folio.exceptions import BuildError
from folio.renderers import MarkdownConverter


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def touch_later(path: Path, seconds: int = 10) -> None:
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))


def create_site(root: Path, config: str = "") -> Path:
    if config:
        write(root / "folio.yaml", config)
    write(root / "site" / "posts" / "a.md", "---\ntitle: A\ndate: 2024-01-01\ntags: [x]\n---\nAlpha body.\n")
    write(root / "site" / "posts" / "b.md", "---\ntitle: B\ndate: 2024-02-01\n---\nBeta body.\n")
    return root


def run(root: Path, **kwargs):
    outcome = BuildCoordinator(root, **kwargs).run()
    assert isinstance(outcome, Done), getattr(outcome, "error", None)
    return outcome.stats


class CountingConverter(MarkdownConverter):
    def __init__(self):
        super().__init__()
        self.calls = 0
        self._lock = threading.Lock()

    def to_html(self, markdown):
        with self._lock:
            self.calls += 1
        return super().to_html(markdown)


def test_build_writes_one_page_per_item(tmp_path):
    root = create_site(tmp_path)
    stats = run(root)

    assert stats.total_items == 2
    assert stats.rendered_items == 2
    assert stats.files_written == 2
    page = (root / "output" / "a" / "index.html").read_text(encoding="utf-8")
    assert "<title>A</title>" in page
    assert "<p>Alpha body.</p>" in page
    assert (root / "output" / "b" / "index.html").exists()
    assert (root / ".folio-cache" / "build-cache.yaml").exists()


def test_second_build_without_changes_renders_nothing(tmp_path):
    root = create_site(tmp_path)
    run(root)
    before = (root / "output" / "a" / "index.html").stat().st_mtime_ns

    stats = run(root)
    assert stats.rendered_items == 0
    assert stats.skipped_items == 2
    assert (root / "output" / "a" / "index.html").stat().st_mtime_ns == before


def test_only_modified_item_is_rendered(tmp_path):
    root = create_site(tmp_path)
    for n in range(3):
        write(root / "site" / f"page{n}.md", f"---\ntitle: Page {n}\n---\nBody {n}.\n")
    run(root)

    changed = write(root / "site" / "page1.md", "---\ntitle: Page 1\n---\nNew body.\n")
    touch_later(changed)
    stats = run(root)

    assert stats.total_items == 5
    assert stats.changed_items == 1
    assert stats.rendered_items == 1
    assert [r.source_path for r in stats.results] == ["page1.md"]
    assert "New body." in (root / "output" / "page1" / "index.html").read_text(encoding="utf-8")


def test_touch_counts_as_change_with_mtime_fingerprints(tmp_path):
    root = create_site(tmp_path)
    run(root)
    touch_later(root / "site" / "posts" / "a.md")
    assert run(root).rendered_items == 1


def test_touch_is_ignored_with_hash_fingerprints(tmp_path):
    root = create_site(tmp_path, "fingerprint: hash\n")
    run(root)
    touch_later(root / "site" / "posts" / "a.md")
    assert run(root).rendered_items == 0


def test_aggregate_is_built_once_and_markdown_converted_once(tmp_path):
    root = create_site(tmp_path, "output_formats: [html, json, plaintext]\n")
    converter = CountingConverter()
    before = SiteAggregate.generation

    stats = run(root, converter=converter)

    assert SiteAggregate.generation == before + 1
    assert converter.calls == 2
    assert stats.files_written == 6
    assert (root / "output" / "a" / "index.json").exists()
    assert (root / "output" / "a" / "index.txt").exists()


def test_layouts_see_the_site_aggregate(tmp_path):
    root = create_site(tmp_path)
    write(
        root / "site" / "_layouts" / "default.html.jinja",
        "{{ title }}:{% for post in site.by_tag('x') %}{{ post.title }}{% endfor %}"
        ":{{ site.recent(1)[0].title }}",
    )
    run(root)
    assert (root / "output" / "a" / "index.html").read_text(encoding="utf-8") == "A:A:B"


def test_template_change_renders_every_item(tmp_path):
    root = create_site(tmp_path)
    run(root)

    write(root / "site" / "_layouts" / "default.html.jinja", "custom {{ title }}")
    stats = run(root)
    assert stats.rendered_items == 2
    assert (root / "output" / "b" / "index.html").read_text(encoding="utf-8") == "custom B"

    assert run(root).rendered_items == 0
    (root / "site" / "_layouts" / "default.html.jinja").unlink()
    assert run(root).rendered_items == 2


def test_missing_output_is_rendered_again(tmp_path):
    root = create_site(tmp_path)
    run(root)
    (root / "output" / "b" / "index.html").unlink()

    stats = run(root)
    assert [r.source_path for r in stats.results] == ["posts/b.md"]
    assert (root / "output" / "b" / "index.html").exists()


def test_corrupt_cache_falls_back_to_full_build(tmp_path):
    root = create_site(tmp_path)
    run(root)
    (root / ".folio-cache" / "build-cache.yaml").write_text("{broken: [", encoding="utf-8")

    stats = run(root)
    assert stats.rendered_items == 2
    assert run(root).rendered_items == 0


def test_full_build_ignores_cache(tmp_path):
    root = create_site(tmp_path)
    run(root)
    config = load_config(root).with_overrides(incremental=False)
    assert run(root, config=config).rendered_items == 2


def test_clean_empties_output_first(tmp_path):
    root = create_site(tmp_path)
    run(root)
    stale = write(root / "output" / "stale.html", "old")

    stats = run(root, clean=True)
    assert not stale.exists()
    assert stats.rendered_items == 2


def test_state_history(tmp_path):
    coordinator = BuildCoordinator(create_site(tmp_path))
    coordinator.run()
    assert coordinator.state is BuildState.DONE
    assert coordinator.history == [
        BuildState.IDLE,
        BuildState.LOADING,
        BuildState.CHANGE_DETECTION,
        BuildState.AGGREGATING,
        BuildState.RENDERING,
        BuildState.FINALIZING,
        BuildState.DONE,
    ]


def test_render_failures_are_all_reported_and_cache_not_committed(tmp_path):
    root = create_site(tmp_path)
    write(root / "site" / "_layouts" / "broken.html.jinja", "{{ title | nope }}")
    write(root / "site" / "bad1.md", "---\ntitle: Bad 1\nlayout: broken\n---\n")
    write(root / "site" / "bad2.md", "---\ntitle: Bad 2\nlayout: broken\n---\n")

    coordinator = BuildCoordinator(root)
    outcome = coordinator.run()

    assert isinstance(outcome, Failed)
    assert outcome.ok is False
    assert outcome.error.phase == "rendering"
    assert sorted(outcome.error.failed_paths) == ["bad1.md", "bad2.md"]
    assert all("unknown_function" in reason for _, reason in outcome.error.failures)
    assert coordinator.history[-2:] == [BuildState.RENDERING, BuildState.FAILED]
    # Healthy items are still written; the cache is left untouched.
    assert (root / "output" / "a" / "index.html").exists()
    assert not (root / ".folio-cache" / "build-cache.yaml").exists()


def test_parse_errors_fail_strict_builds(tmp_path):
    root = create_site(tmp_path)
    write(root / "site" / "untitled.md", "---\ndate: 2024-01-01\n---\nNo title.\n")

    outcome = BuildCoordinator(root).run()
    assert isinstance(outcome, Failed)
    assert outcome.error.phase == "loading"
    assert outcome.error.failed_paths == ["untitled.md"]
    assert not (root / "output").exists()


def test_parse_errors_are_skipped_when_not_strict(tmp_path):
    root = create_site(tmp_path, "strict_content: false\n")
    write(root / "site" / "untitled.md", "---\ndate: 2024-01-01\n---\nNo title.\n")
    stats = run(root)
    assert stats.parse_errors == 1
    assert stats.rendered_items == 2


def test_missing_content_directory(tmp_path):
    outcome = BuildCoordinator(tmp_path).run()
    assert isinstance(outcome, Failed)
    assert outcome.error.phase == "loading"


def test_feeds_and_absolute_urls_with_root_url(tmp_path):
    root = create_site(tmp_path, "root_url: https://example.com\n")
    write(root / "site" / "_layouts" / "default.html.jinja", '<a href="/b/">B</a> {{ content }}')
    stats = run(root)

    assert stats.feeds == ["sitemap.xml", "rss.xml", "atom.xml", "feed.json"]
    sitemap = (root / "output" / "sitemap.xml").read_text(encoding="utf-8")
    assert "<loc>https://example.com/a/</loc>" in sitemap
    rss = (root / "output" / "rss.xml").read_text(encoding="utf-8")
    assert rss.index("<title>B</title>") < rss.index("<title>A</title>")
    page = (root / "output" / "a" / "index.html").read_text(encoding="utf-8")
    assert '<a href="https://example.com/b/">' in page


def test_drafts_only_built_on_request(tmp_path):
    root = create_site(tmp_path)
    write(root / "site" / "wip.md", "---\ntitle: WIP\ndraft: true\n---\n")
    run(root)
    assert not (root / "output" / "wip" / "index.html").exists()

    config = BuildConfig(include_drafts=True)
    run(root, config=config)
    assert (root / "output" / "wip" / "index.html").exists()


def test_serial_and_parallel_builds_match(tmp_path):
    serial_root = create_site(tmp_path / "serial")
    parallel_root = create_site(tmp_path / "parallel")
    run(serial_root, config=BuildConfig(parallel=False))
    run(parallel_root, config=BuildConfig(max_workers=8))
    for rel in ("a/index.html", "b/index.html"):
        assert (serial_root / "output" / rel).read_bytes() == (parallel_root / "output" / rel).read_bytes()


def test_build_site_raises_build_error(tmp_path):
    root = create_site(tmp_path)
    write(root / "site" / "untitled.md", "---\n---\n")
    with pytest.raises(BuildError) as excinfo:
        build_site(root)
    assert excinfo.value.failed_paths == ["untitled.md"]


def test_build_site_applies_overrides(tmp_path):
    root = create_site(tmp_path)
    stats = build_site(root, output_dir="public", parallel=False)
    assert stats.output_dir == root / "public"
    assert (root / "public" / "a" / "index.html").exists()


def output_tree(root: Path) -> dict[str, bytes]:
    output = root / "output"
    return {str(p.relative_to(output)): p.read_bytes() for p in sorted(output.rglob("*")) if p.is_file()}


def cache_records(root: Path) -> dict[str, str]:
    records = yaml.safe_load((root / ".folio-cache" / "build-cache.yaml").read_text(encoding="utf-8"))
    return {record["path"]: record["fingerprint"] for record in records}


def test_unchanged_rebuild_is_byte_identical(tmp_path):
    root = create_site(tmp_path, "root_url: https://example.com\noutput_formats: [html, json, plaintext]\n")
    run(root)
    outputs = output_tree(root)
    cache = (root / ".folio-cache" / "build-cache.yaml").read_bytes()
    assert "rss.xml" in outputs and "atom.xml" in outputs

    run(root)
    assert output_tree(root) == outputs
    assert (root / ".folio-cache" / "build-cache.yaml").read_bytes() == cache

    # A full rebuild rewrites every file with the same bytes.
    run(root, config=load_config(root).with_overrides(incremental=False))
    assert output_tree(root) == outputs


def test_cache_update_touches_only_the_changed_entry(tmp_path):
    root = create_site(tmp_path)
    for n in range(3):
        write(root / "site" / f"page{n}.md", f"---\ntitle: Page {n}\n---\nBody {n}.\n")
    run(root)
    before = cache_records(root)

    touch_later(root / "site" / "posts" / "a.md")
    stats = run(root)
    after = cache_records(root)

    assert stats.changed_items == 1
    assert after.keys() == before.keys()
    assert {path for path in after if after[path] != before[path]} == {"posts/a.md"}
    for rel in ("a/index.html", "b/index.html", "page0/index.html", "page1/index.html", "page2/index.html"):
        assert (root / "output" / rel).exists()


def test_malformed_site_data_fails_the_build(tmp_path):
    root = create_site(tmp_path)
    write(root / "data" / "site.yaml", "title: [unclosed\n")

    coordinator = BuildCoordinator(root)
    outcome = coordinator.run()

    assert isinstance(outcome, Failed)
    assert outcome.error.phase == "configuration"
    assert outcome.error.failed_paths == [str(root / "data" / "site.yaml")]
    assert coordinator.state is BuildState.FAILED
    assert not (root / ".folio-cache" / "build-cache.yaml").exists()


def test_listing_pages_are_written(tmp_path):
    root = create_site(tmp_path, "per_page: 1\n")
    write(root / "site" / "guide.md", "---\ntitle: Guide\ncategories: [Docs]\n---\nHow to.\n")
    stats = run(root)

    assert stats.listings == [
        "index.html",
        "posts/index.html",
        "posts/page/2/index.html",
        "tags/x/index.html",
        "categories/docs/index.html",
    ]
    assert stats.files_written == 3
    first = (root / "output" / "posts" / "index.html").read_text(encoding="utf-8")
    assert '<a href="/b/">B</a>' in first
    assert '<a href="/posts/page/2/" rel="next">Next</a>' in first
    second = (root / "output" / "posts" / "page" / "2" / "index.html").read_text(encoding="utf-8")
    assert '<a href="/a/">A</a>' in second
    assert "Guide" in (root / "output" / "categories" / "docs" / "index.html").read_text(encoding="utf-8")


def test_listings_follow_content_changes_without_rendering_items(tmp_path):
    root = create_site(tmp_path)
    run(root)
    write(root / "site" / "posts" / "c.md", "---\ntitle: C\ndate: 2024-03-01\ntags: [x]\n---\nGamma.\n")

    stats = run(root)
    assert [r.source_path for r in stats.results] == ["posts/c.md"]
    tag_page = (root / "output" / "tags" / "x" / "index.html").read_text(encoding="utf-8")
    assert tag_page.index(">C</a>") < tag_page.index(">A</a>")


def test_site_index_replaces_home_listing(tmp_path):
    root = create_site(tmp_path)
    write(root / "site" / "index.md", "---\ntitle: Welcome\n---\nHello.\n")
    stats = run(root)
    assert "index.html" not in stats.listings
    assert "<title>Welcome</title>" in (root / "output" / "index.html").read_text(encoding="utf-8")


def test_listings_can_be_disabled(tmp_path):
    root = create_site(tmp_path, "listings: false\n")
    stats = run(root)
    assert stats.listings == []
    assert not (root / "output" / "posts").exists()


def test_listing_urls_are_absolute_with_root_url(tmp_path):
    root = create_site(tmp_path, "root_url: https://example.com\n")
    run(root)
    archive = (root / "output" / "posts" / "index.html").read_text(encoding="utf-8")
    assert '<a href="https://example.com/a/">A</a>' in archive


def test_listing_failure_fails_finalizing_and_skips_cache(tmp_path):
    root = create_site(tmp_path)
    write(root / "site" / "_layouts" / "tag.html.jinja", "{{ term | nope }}")

    coordinator = BuildCoordinator(root)
    outcome = coordinator.run()

    assert isinstance(outcome, Failed)
    assert outcome.error.phase == "finalizing"
    assert outcome.error.failed_paths == ["/tags/x/"]
    assert coordinator.history[-2:] == [BuildState.FINALIZING, BuildState.FAILED]
    assert (root / "output" / "a" / "index.html").exists()
    assert not (root / ".folio-cache" / "build-cache.yaml").exists()
