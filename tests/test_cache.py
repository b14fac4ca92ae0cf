import logging
import os

import pytest

from folio.cache import CACHE_VERSION, BuildCache, CacheState


def touch_later(path, seconds=10):
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))


def test_missing_cache_is_invalid(tmp_path):
    state = BuildCache(tmp_path / ".folio-cache").load()
    assert state.valid is False
    assert len(state) == 0


def test_commit_then_load_round_trip(tmp_path):
    cache = BuildCache(tmp_path / ".folio-cache")
    cache.commit({"posts/a.md": "mtime:1:2", "b.md": "mtime:3:4"})
    state = cache.load()
    assert state.valid
    assert state.cache_version == CACHE_VERSION
    assert dict(state.entries) == {"posts/a.md": "mtime:1:2", "b.md": "mtime:3:4"}
    leftovers = [p.name for p in cache.cache_dir.iterdir() if p.name != "build-cache.yaml"]
    assert leftovers == []


@pytest.mark.parametrize(
    "text",
    [
        "{not: [valid\n",
        "just a string\n",
        "- path: a.md\n",
        "- path: a.md\n  fingerprint: x\n  cache_version: 999\n",
    ],
)
def test_corrupt_cache_logs_warning_and_is_invalid(tmp_path, caplog, text):
    cache = BuildCache(tmp_path)
    cache.path.write_text(text, encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="folio.cache"):
        state = cache.load()
    assert state.valid is False
    assert "Ignoring build cache" in caplog.text


def test_mtime_fingerprint_changes_on_touch(tmp_path):
    source = tmp_path / "a.md"
    source.write_text("same", encoding="utf-8")
    cache = BuildCache(tmp_path / ".folio-cache")
    before = cache.fingerprint(source)
    assert before.startswith("mtime:")
    touch_later(source)
    assert cache.fingerprint(source) != before


def test_hash_fingerprint_ignores_touch(tmp_path):
    source = tmp_path / "a.md"
    source.write_text("same", encoding="utf-8")
    cache = BuildCache(tmp_path / ".folio-cache", strategy="hash")
    before = cache.fingerprint(source)
    assert before.startswith("sha256:")
    touch_later(source)
    assert cache.fingerprint(source) == before
    source.write_text("different", encoding="utf-8")
    assert cache.fingerprint(source) != before


def test_unknown_strategy_rejected(tmp_path):
    with pytest.raises(ValueError):
        BuildCache(tmp_path, strategy="md5")


def test_snapshot_uses_relative_keys_and_prefix(tmp_path):
    (tmp_path / "posts").mkdir()
    (tmp_path / "posts" / "a.md").write_text("a", encoding="utf-8")
    cache = BuildCache(tmp_path / ".folio-cache")
    assert list(cache.snapshot(tmp_path, ["posts/a.md"])) == ["posts/a.md"]
    assert list(cache.snapshot(tmp_path, ["posts/a.md"], prefix="@templates/")) == ["@templates/posts/a.md"]


def test_changed_since():
    state = CacheState(entries={"a.md": "1", "b.md": "2", "gone.md": "3"})
    current = {"a.md": "1", "b.md": "changed", "new.md": "4"}
    assert BuildCache.changed_since(state, current) == {"b.md", "new.md"}
    assert BuildCache.changed_since(state, current, incremental=False) == set(current)
    assert BuildCache.changed_since(CacheState.invalid(), current) == set(current)
