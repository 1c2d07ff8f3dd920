"""Configuration for ScriptGraph analysis runs, loaded from TOML."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple

import toml

from .errors import ConfigError

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("SCRIPTGRAPH_HOME", str(Path.home() / ".scriptgraph"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

SUPPORTED_EXTENSIONS: Tuple[str, ...] = (".ps1", ".psm1")
DEFAULT_MAX_FILE_SIZE = 1024 * 1024
DEFAULT_TOP_ISSUES = 5
DEFAULT_DUPLICATE_WINDOW = 6

SKIP_DIRS: FrozenSet[str] = frozenset({
    ".git", ".github", ".vscode", ".idea", "node_modules",
    "bin", "obj", "build", "dist", ".scriptgraph",
})


@dataclass(frozen=True)
class AnalysisConfig:
    extensions: Tuple[str, ...] = SUPPORTED_EXTENSIONS
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    top_issues: int = DEFAULT_TOP_ISSUES
    duplicate_window: int = DEFAULT_DUPLICATE_WINDOW
    disabled_rules: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        if self.max_file_size <= 0:
            raise ConfigError("max_file_size must be a positive number of bytes")
        if self.workers < 1:
            raise ConfigError("workers must be at least 1")
        if self.top_issues < 0:
            raise ConfigError("top_issues cannot be negative")
        if self.duplicate_window < 2:
            raise ConfigError("duplicate_window must be at least 2")
        if not self.extensions:
            raise ConfigError("at least one file extension is required")

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values) if values else self


def _from_section(section: Dict[str, Any]) -> AnalysisConfig:
    kwargs: Dict[str, Any] = {}
    if "extensions" in section:
        kwargs["extensions"] = tuple(
            ext if ext.startswith(".") else f".{ext}" for ext in section["extensions"]
        )
    for key in ("max_file_size", "workers", "top_issues", "duplicate_window"):
        if key in section:
            try:
                kwargs[key] = int(section[key])
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"'{key}' must be an integer, got {section[key]!r}") from exc
    if "disabled_rules" in section:
        kwargs["disabled_rules"] = frozenset(section["disabled_rules"])
    return AnalysisConfig(**kwargs)


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    config_file = path or CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
        return {}


def load_config(path: Optional[Path] = None) -> AnalysisConfig:
    """Load the ``[analysis]`` section.

    Falls back to defaults when the file is missing or unreadable.
    Invalid values raise ``ConfigError``.
    """
    full = load_full_config(path)
    return _from_section(full.get("analysis", {}))


def save_config(config: AnalysisConfig, path: Optional[Path] = None) -> Path:
    """Write ``[analysis]`` to the TOML file, preserving other sections."""
    config_file = path or CONFIG_FILE
    full = load_full_config(config_file)
    full["analysis"] = {
        "extensions": list(config.extensions),
        "max_file_size": config.max_file_size,
        "workers": config.workers,
        "top_issues": config.top_issues,
        "duplicate_window": config.duplicate_window,
        "disabled_rules": sorted(config.disabled_rules),
    }
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w", encoding="utf-8") as f:
        toml.dump(full, f)
    return config_file
