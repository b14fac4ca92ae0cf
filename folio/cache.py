"""Incremental build cache for Folio.

The cache remembers a fingerprint for every source and template file of the
last successful build. The next build compares fresh fingerprints against it
to decide what to render again. A missing, unreadable or foreign cache file
is never an error: the build simply treats everything as changed.

Key classes:
- CacheState: Fingerprints loaded from disk plus a validity flag.
- BuildCache: Loads, computes, compares and commits fingerprints.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import FINGERPRINT_STRATEGIES
from .exceptions import CacheError

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
CACHE_FILENAME = "build-cache.yaml"
TEMPLATE_PREFIX = "@templates/"


@dataclass(frozen=True)
class CacheState:
    """Fingerprints recorded by the last successful build.

    Attributes:
        entries: Relative path to fingerprint.
        cache_version: Format version the entries were written with.
        valid: False when no usable cache file was found.
    """

    entries: Mapping[str, str] = field(default_factory=dict)
    cache_version: int = CACHE_VERSION
    valid: bool = True

    @classmethod
    def invalid(cls) -> CacheState:
        return cls(entries={}, valid=False)

    def __len__(self) -> int:
        return len(self.entries)


class BuildCache:
    """Fingerprint store backed by a YAML file.

    Attributes:
        cache_dir: Directory holding the cache file.
        strategy: ``"mtime"`` (modification time and size) or ``"hash"`` (SHA-256).
    """

    def __init__(self, cache_dir: Path, strategy: str = "mtime"):
        if strategy not in FINGERPRINT_STRATEGIES:
            raise ValueError(f"Unknown fingerprint strategy: {strategy}")
        self.cache_dir = cache_dir
        self.strategy = strategy

    @property
    def path(self) -> Path:
        return self.cache_dir / CACHE_FILENAME

    def load(self) -> CacheState:
        """Read the cache file.

        Returns:
            The recorded state, or an invalid empty state when the file is
            missing, unreadable, malformed or from another cache version.
        """
        if not self.path.exists():
            logger.info("No build cache at %s; full build", self.path)
            return CacheState.invalid()
        try:
            return self._parse(self.path.read_text(encoding="utf-8"))
        except CacheError as exc:
            logger.warning("Ignoring build cache: %s", exc)
            return CacheState.invalid()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable build cache %s: %s", self.path, exc)
            return CacheState.invalid()

    def _parse(self, text: str) -> CacheState:
        try:
            records = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise CacheError(str(self.path), f"invalid YAML: {exc}") from exc
        if records is None:
            records = []
        if not isinstance(records, list):
            raise CacheError(str(self.path), "expected a list of records")

        entries: dict[str, str] = {}
        for record in records:
            if not isinstance(record, dict) or not {"path", "fingerprint", "cache_version"} <= record.keys():
                raise CacheError(str(self.path), f"malformed record: {record!r}")
            if record["cache_version"] != CACHE_VERSION:
                raise CacheError(
                    str(self.path),
                    f"cache version {record['cache_version']!r} does not match {CACHE_VERSION}",
                )
            entries[str(record["path"])] = str(record["fingerprint"])
        return CacheState(entries=entries)

    def fingerprint(self, path: Path) -> str:
        """Compute the fingerprint of one file with the configured strategy."""
        if self.strategy == "hash":
            digest = hashlib.sha256()
            with path.open("rb") as fh:
                for chunk in iter(lambda: fh.read(65536), b""):
                    digest.update(chunk)
            return f"sha256:{digest.hexdigest()}"
        stat = path.stat()
        return f"mtime:{stat.st_mtime_ns}:{stat.st_size}"

    def snapshot(self, root: Path, relative_paths: Iterable[str], prefix: str = "") -> dict[str, str]:
        """Fingerprint files below ``root``.

        Args:
            root: Directory the paths are relative to.
            relative_paths: POSIX paths relative to ``root``.
            prefix: Key prefix, used to keep template entries apart.

        Returns:
            Mapping of prefixed relative path to fingerprint.
        """
        return {f"{prefix}{rel}": self.fingerprint(root / rel) for rel in relative_paths}

    @staticmethod
    def changed_since(state: CacheState, current: Mapping[str, str], incremental: bool = True) -> set[str]:
        """Return the paths whose fingerprint differs from the recorded state.

        Every path counts as changed when ``incremental`` is False or the
        state is invalid.
        """
        if not incremental or not state.valid:
            return set(current)
        return {path for path, fp in current.items() if state.entries.get(path) != fp}

    def commit(self, fingerprints: Mapping[str, str]) -> None:
        """Atomically replace the cache file with ``fingerprints``."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        records = [
            {"path": path, "fingerprint": fp, "cache_version": CACHE_VERSION}
            for path, fp in sorted(fingerprints.items())
        ]
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=".build-cache-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                yaml.safe_dump(records, fh, sort_keys=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Committed %d fingerprints to %s", len(records), self.path)
