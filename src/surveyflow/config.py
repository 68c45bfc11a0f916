"""
Runtime configuration, loaded from YAML.

Example:

    weighted_order: weighted      # or "shuffle"
    log_evaluation_failures: true
    skip_invisible_pages: true
    random_seed: 42               # optional, reproducible sessions
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from surveyflow.ordering import WEIGHTED_SAMPLING, WEIGHTED_SHUFFLE


class ConfigError(ValueError):
    """Raised for unreadable or invalid configuration."""
    pass


@dataclass(frozen=True)
class RuntimeConfig:
    """
    Knobs of SurveyRuntime.

    Properties:
        weighted_order: "weighted" for weighted sampling of WEIGHTED items,
            "shuffle" to treat WEIGHTED as a plain shuffle
        log_evaluation_failures: log fail-open evaluation events at WARNING
            (False logs them at DEBUG)
        skip_invisible_pages: sequential navigation skips hidden pages
        random_seed: seed for all randomness; None draws from the OS
    """

    weighted_order: str = WEIGHTED_SAMPLING
    log_evaluation_failures: bool = True
    skip_invisible_pages: bool = True
    random_seed: Optional[int] = None

    def __post_init__(self):
        if self.weighted_order not in (WEIGHTED_SAMPLING, WEIGHTED_SHUFFLE):
            raise ConfigError(
                f"weighted_order must be {WEIGHTED_SAMPLING!r} or {WEIGHTED_SHUFFLE!r}, "
                f"got {self.weighted_order!r}"
            )
        for name in ("log_evaluation_failures", "skip_invisible_pages"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be a boolean")
        if self.random_seed is not None and (
            isinstance(self.random_seed, bool) or not isinstance(self.random_seed, int)
        ):
            raise ConfigError("random_seed must be an integer")


def config_from_dict(d: Optional[Dict[str, Any]]) -> RuntimeConfig:
    if d is None:
        return RuntimeConfig()
    if not isinstance(d, dict):
        raise ConfigError("Configuration must be a mapping")
    known = {f.name for f in fields(RuntimeConfig)}
    unknown = sorted(set(d) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    return RuntimeConfig(**d)


def config_from_yaml(text: str) -> RuntimeConfig:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML: {exc}") from exc
    return config_from_dict(data)


def load_config(path: Union[str, Path]) -> RuntimeConfig:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    return config_from_yaml(text)
