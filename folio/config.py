"""Configuration loading for Folio.

Site configuration lives in ``folio.yaml`` at the project root. Values not set
there fall back to DEFAULT_CONFIG. Global template data is read from YAML files
in ``data/``.

Key functions:
- load_config: Load folio.yaml into a BuildConfig.
- load_data: Load site data from the data directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

CONFIG_FILENAME = "folio.yaml"

FINGERPRINT_STRATEGIES = ("mtime", "hash")
BOOLEAN_KEYS = (
    "incremental",
    "render_changed_only",
    "parallel",
    "strict_content",
    "include_drafts",
    "listings",
)

DEFAULT_CONFIG: dict[str, Any] = {
    "output_dir": "output",
    "content_dir": "site",
    "cache_dir": ".folio-cache",
    "root_url": "",
    "incremental": True,
    "render_changed_only": True,
    "parallel": True,
    "max_workers": 4,
    "fingerprint": "mtime",
    "max_partial_depth": 10,
    "output_formats": ["html"],
    "permalink_pattern": "/:slug/",
    "strict_content": True,
    "include_drafts": False,
    "listings": True,
    "per_page": 10,
}


@dataclass(frozen=True)
class BuildConfig:
    """Settings for one build run.

    Attributes:
        output_dir: Directory (relative to the project root) receiving output.
        content_dir: Directory holding content, layouts and partials.
        cache_dir: Directory holding the incremental build cache.
        root_url: Optional base URL used to absolutize links in HTML output.
        incremental: Whether the stored cache is consulted at all.
        render_changed_only: Whether only changed items are re-rendered.
        parallel: Whether render tasks use the worker pool.
        max_workers: Size of the worker pool.
        fingerprint: "mtime" (mtime plus size) or "hash" (sha256 of content).
        max_partial_depth: Deepest allowed nesting of partial expansions.
        output_formats: Formats produced for items that do not set ``outputs``.
        permalink_pattern: URL pattern for items without ``permalink``.
        strict_content: Whether a content parse error fails the build.
        include_drafts: Whether draft items are built.
        listings: Whether archive, tag, category and home listing pages are written.
        per_page: Items per listing page.
    """

    output_dir: str = "output"
    content_dir: str = "site"
    cache_dir: str = ".folio-cache"
    root_url: str = ""
    incremental: bool = True
    render_changed_only: bool = True
    parallel: bool = True
    max_workers: int = 4
    fingerprint: str = "mtime"
    max_partial_depth: int = 10
    output_formats: tuple[str, ...] = ("html",)
    permalink_pattern: str = "/:slug/"
    strict_content: bool = True
    include_drafts: bool = False
    listings: bool = True
    per_page: int = 10
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> BuildConfig:
        """Build a config from a plain mapping, validating known keys.

        Unknown keys are kept in ``extra`` so templates can read them.
        """
        known = {f.name for f in fields(cls)} - {"extra"}
        merged = {**DEFAULT_CONFIG, **values}
        kwargs = {k: v for k, v in merged.items() if k in known}
        extra = {k: v for k, v in merged.items() if k not in known}
        kwargs["output_formats"] = _as_name_tuple(kwargs["output_formats"], "output_formats")
        config = cls(**kwargs, extra=extra)
        config.validate()
        return config

    def validate(self) -> None:
        if self.fingerprint not in FINGERPRINT_STRATEGIES:
            raise ConfigError(
                f"fingerprint must be one of {', '.join(FINGERPRINT_STRATEGIES)}, "
                f"got {self.fingerprint!r}"
            )
        if not isinstance(self.max_workers, int) or isinstance(self.max_workers, bool):
            raise ConfigError(f"max_workers must be an integer, got {self.max_workers!r}")
        if not isinstance(self.max_partial_depth, int) or self.max_partial_depth < 1:
            raise ConfigError(
                f"max_partial_depth must be a positive integer, got {self.max_partial_depth!r}"
            )
        if not isinstance(self.per_page, int) or isinstance(self.per_page, bool) or self.per_page < 1:
            raise ConfigError(f"per_page must be a positive integer, got {self.per_page!r}")
        if not self.output_formats:
            raise ConfigError("output_formats must name at least one format")
        for name in BOOLEAN_KEYS:
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")

    def with_overrides(self, **overrides: Any) -> BuildConfig:
        """Return a copy with the given non-None values replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "output_formats" in changes:
            changes["output_formats"] = _as_name_tuple(changes["output_formats"], "output_formats")
        updated = replace(self, **changes)
        updated.validate()
        return updated


def _as_name_tuple(value: Any, key: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(f"{key} must be a list of names, got {value!r}")


def load_config(project_root: Path) -> BuildConfig:
    """Load site configuration from folio.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        BuildConfig with defaults applied.

    Raises:
        ConfigError: If folio.yaml is not valid YAML or holds invalid values.
    """
    config_path = project_root / CONFIG_FILENAME
    values: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"{config_path}: {exc}", path=str(config_path)) from exc
        if isinstance(loaded, dict):
            values.update(loaded)
    return BuildConfig.from_mapping(values)


def load_data(project_root: Path) -> dict[str, Any]:
    """Load site data from YAML files in the data directory.

    ``data/site.yaml`` is merged at the top level; every other file is exposed
    under its stem.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing merged data from all YAML files.

    Raises:
        ConfigError: If a data file cannot be read or is not valid YAML.
    """
    data_dir = project_root / "data"
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted(data_dir.glob("*.yaml")):
        try:
            with open(path, encoding="utf-8") as f:
                payload = yaml.safe_load(f) or {}
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            raise ConfigError(f"{path}: {exc}", path=str(path)) from exc
        if not isinstance(payload, dict):
            continue
        if path.name == "site.yaml":
            data.update(payload)
        else:
            data[path.stem] = payload
    return data
