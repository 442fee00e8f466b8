"""Immutable configuration values for preparation and counting.

Configuration is passed explicitly into ``prepare``/``analyze`` and never
mutated globally. ``with_overrides`` derives a new value instead.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, TypeVar

from cristae_density.errors import ConfigurationError

__all__ = [
    "PrepareConfig",
    "CountingConfig",
    "ProjectConfig",
    "DEFAULT_CONFIG",
    "load_config",
    "save_config",
    "config_to_dict",
    "with_overrides",
]

_T = TypeVar("_T")


@dataclass(frozen=True)
class PrepareConfig:
    """Batch preparation settings.

    Notes
    -----
    Timeouts are per attempt: the model load and the probability computation
    each get their own bounded wait, and a timed-out attempt tears the client
    down before the next one starts.
    """

    padding: int = 20
    max_attempts: int = 2
    load_timeout_s: float = 10.0
    compute_timeout_s: float = 30.0
    poll_interval_s: float = 0.25
    progress_interval_s: float = 5.0
    gc_batch_size: int = 50
    probability_channel: int = 0

    def validate(self) -> None:
        if self.padding < 0:
            raise ConfigurationError(f"padding must be >= 0, got {self.padding}")
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        for name in ("load_timeout_s", "compute_timeout_s", "poll_interval_s", "progress_interval_s"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.gc_batch_size < 1:
            raise ConfigurationError(f"gc_batch_size must be >= 1, got {self.gc_batch_size}")
        if self.probability_channel < 0:
            raise ConfigurationError("probability_channel must be >= 0")


@dataclass(frozen=True)
class CountingConfig:
    """Peak detection settings for the linear-intercept count.

    ``threshold`` is expressed in the 8-bit range; with
    ``scale_threshold_to_map`` it is rescaled for 0-1 float maps.
    """

    threshold: float = 128.0
    min_width: int = 2
    min_distance: int = 3
    scale_threshold_to_map: bool = True

    def validate(self) -> None:
        if self.min_width < 0:
            raise ConfigurationError(f"min_width must be >= 0, got {self.min_width}")
        if self.min_distance < 0:
            raise ConfigurationError(f"min_distance must be >= 0, got {self.min_distance}")


@dataclass(frozen=True)
class ProjectConfig:
    prepare: PrepareConfig = field(default_factory=PrepareConfig)
    counting: CountingConfig = field(default_factory=CountingConfig)

    def validate(self) -> None:
        self.prepare.validate()
        self.counting.validate()


DEFAULT_CONFIG = ProjectConfig()


def with_overrides(config: _T, **overrides: Any) -> _T:
    """Return a copy of ``config`` with non-``None`` overrides applied."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    if not changes:
        return config
    return replace(config, **changes)


def _section(cls, data: Dict[str, Any], name: str):
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config section '{name}' must be an object.")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in config section '{name}': {sorted(unknown)}",
            context={"section": name},
        )
    return cls(**data)


def config_to_dict(config: ProjectConfig) -> Dict[str, Any]:
    return {"prepare": asdict(config.prepare), "counting": asdict(config.counting)}


def load_config(path: Path) -> ProjectConfig:
    """Load a JSON config with optional ``prepare``/``counting`` objects."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Config file is not valid JSON: {path}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be an object.")
    unknown = set(data) - {"prepare", "counting"}
    if unknown:
        raise ConfigurationError(f"Unknown config sections: {sorted(unknown)}")
    config = ProjectConfig(
        prepare=_section(PrepareConfig, data.get("prepare", {}), "prepare"),
        counting=_section(CountingConfig, data.get("counting", {}), "counting"),
    )
    config.validate()
    return config


def save_config(path: Path, config: ProjectConfig) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(config_to_dict(config), f, indent=2)
