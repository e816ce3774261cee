"""
Coordinator configuration.

Values come from defaults, then ``<data_dir>/config.toml`` (``[coordinator]``
table), then ``TASKMESH_*`` environment variables.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

DEFAULT_DATA_DIR = Path.home() / ".taskmesh"
ENV_PREFIX = "TASKMESH_"

DISPATCH_MODES = ("batch", "pool")
MATCH_MODES = ("exact", "substring")


@dataclass(frozen=True)
class CoordinatorConfig:
    """Tunable limits and policies for a coordinator."""

    max_parallel: int = 5
    max_retries: int = 3
    conflict_threshold: float = 7
    default_max_concurrent_tasks: int = 5
    max_agents: int | None = 20
    dispatch_mode: str = "pool"  # batch, pool
    task_timeout: float | None = None  # seconds per attempt
    capability_match: str = "exact"  # exact, substring
    adaptive_scoring: bool = False
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {self.max_parallel}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.default_max_concurrent_tasks < 1:
            raise ValueError(
                "default_max_concurrent_tasks must be >= 1, "
                f"got {self.default_max_concurrent_tasks}"
            )
        if self.max_agents is not None and self.max_agents < 1:
            raise ValueError(f"max_agents must be >= 1, got {self.max_agents}")
        if self.dispatch_mode not in DISPATCH_MODES:
            raise ValueError(f"dispatch_mode must be one of {DISPATCH_MODES}")
        if self.capability_match not in MATCH_MODES:
            raise ValueError(f"capability_match must be one of {MATCH_MODES}")
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ValueError(f"task_timeout must be > 0, got {self.task_timeout}")

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.toml"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "logs" / "taskmesh.log"

    def with_overrides(self, **overrides: Any) -> CoordinatorConfig:
        """Copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["data_dir"] = str(self.data_dir)
        return data


def _coerce(name: str, raw: Any) -> Any:
    """Convert a TOML or environment value to the field's type."""
    if name in ("max_parallel", "max_retries", "default_max_concurrent_tasks"):
        return int(raw)
    if name == "max_agents":
        return None if str(raw).lower() in ("", "none", "0") else int(raw)
    if name == "conflict_threshold":
        return float(raw)
    if name == "task_timeout":
        return None if str(raw).lower() in ("", "none", "0") else float(raw)
    if name == "adaptive_scoring":
        return raw if isinstance(raw, bool) else str(raw).lower() in ("1", "true", "yes", "on")
    if name == "data_dir":
        return Path(raw).expanduser()
    return str(raw)


def load_config(
    path: Path | None = None,
    env: dict[str, str] | None = None,
    data_dir: Path | None = None,
) -> CoordinatorConfig:
    """
    Load configuration.

    Args:
        path: Explicit config file; defaults to ``<data_dir>/config.toml``
        env: Environment mapping (defaults to os.environ)
        data_dir: Base directory when neither the file nor env sets one

    Returns:
        CoordinatorConfig with file and environment values applied
    """
    env = dict(os.environ) if env is None else env
    values: dict[str, Any] = {}

    base = data_dir
    env_dir = env.get(f"{ENV_PREFIX}DATA_DIR")
    if env_dir and base is None:
        base = Path(env_dir).expanduser()
    if base is not None:
        values["data_dir"] = base

    config_file = path or (base or DEFAULT_DATA_DIR) / "config.toml"
    if config_file.exists():
        with open(config_file, "rb") as f:
            section = tomllib.load(f).get("coordinator", {})
        names = {f.name for f in fields(CoordinatorConfig)}
        for key, raw in section.items():
            if key in names:
                values[key] = _coerce(key, raw)

    for f in fields(CoordinatorConfig):
        if f.name == "data_dir":
            continue
        raw = env.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is not None:
            values[f.name] = _coerce(f.name, raw)

    return CoordinatorConfig(**values)
