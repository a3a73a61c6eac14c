"""
Harness configuration loading

Configuration comes from an optional YAML file plus environment overrides
of the form QUORUM_E2E_<FIELD>. Values are validated once, when the
HarnessConfig is built, so scenarios can trust every timeout they read.

Design Notes:
- All durations are seconds (floats); YAML may also use '500ms' / '30s'
- The healing overhead added atop each fault's heal estimate is an
  environment-dependent margin, so it lives here instead of in code
- Environment values are parsed as JSON first, then taken as strings
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .common import parse_duration
from .exceptions import ConfigurationError, ErrorCodes

LOG = logging.getLogger(__name__)

ENV_PREFIX = "QUORUM_E2E_"

_DURATION_FIELDS = {
    "healing_overhead",
    "stable_timeout",
    "isolation_timeout",
    "health_timeout",
    "poll_interval",
    "write_timeout",
    "round_base_timeout",
    "permit_wait",
    "worker_grace",
    "delay_min",
    "delay_max",
    "stall_min",
    "stall_max",
    "stall_interval_min",
    "stall_interval_max",
}


@dataclass
class HarnessConfig:
    """Tunables shared by every scenario run"""
    node_count: int = 3
    quorum_threshold: Optional[int] = None
    healing_overhead: float = 40.0
    stable_timeout: float = 30.0
    isolation_timeout: float = 10.0
    health_timeout: float = 30.0
    poll_interval: float = 0.5
    write_timeout: float = 1.0
    round_base_timeout: float = 60.0
    permit_wait: float = 10.0
    worker_grace: float = 60.0
    delay_min: float = 10.0
    delay_max: float = 90.0
    stall_min: float = 1.0
    stall_max: float = 20.0
    stall_interval_min: float = 0.1
    stall_interval_max: float = 1.0
    seed: Optional[int] = None
    index_name: str = "test"

    def __post_init__(self):
        self.validate()

    @property
    def effective_quorum(self) -> int:
        if self.quorum_threshold is not None:
            return self.quorum_threshold
        return self.node_count // 2 + 1

    def validate(self) -> None:
        if self.node_count < 2:
            raise ConfigurationError(
                f"node_count must be at least 2, got {self.node_count}",
                field="node_count"
            )
        if self.quorum_threshold is not None and not 1 <= self.quorum_threshold <= self.node_count:
            raise ConfigurationError(
                f"quorum_threshold must be within [1, {self.node_count}], "
                f"got {self.quorum_threshold}",
                field="quorum_threshold"
            )
        for name in _DURATION_FIELDS:
            value = getattr(self, name)
            if name == "healing_overhead":
                if value < 0:
                    raise ConfigurationError(f"{name} must not be negative", field=name)
            elif value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}", field=name)
        for low, high in (("delay_min", "delay_max"), ("stall_min", "stall_max"),
                          ("stall_interval_min", "stall_interval_max")):
            if getattr(self, low) > getattr(self, high):
                raise ConfigurationError(f"{low} exceeds {high}", field=low)

    def heal_budget(self, expected_time_to_heal: float) -> float:
        """Reconvergence budget after a fault has been removed"""
        return expected_time_to_heal + self.healing_overhead

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConfigManager:
    """
    Builds HarnessConfig objects from YAML files and the environment.

    Keeps the last loaded file cached so repeated scenario runs in one
    session do not re-read it.
    """

    def __init__(self, config_dir: Union[str, Path, None] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self._cache: Dict[Path, Dict[str, Any]] = {}

    def _resolve(self, filename: Union[str, Path]) -> Path:
        path = Path(filename)
        if not path.is_absolute():
            path = self.config_dir / path
        return path

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        if path in self._cache:
            return self._cache[path]

        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                config_file=str(path),
                code=ErrorCodes.CONFIG_FILE_NOT_FOUND
            )

        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file {path}: {e}",
                config_file=str(path)
            )

        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"Configuration file {path} must contain a mapping",
                config_file=str(path)
            )

        # Scenario files may nest the tunables under a 'harness' key
        raw = raw.get("harness", raw)
        self._cache[path] = raw
        return raw

    @staticmethod
    def _get_env_override(key: str, default: Any = None) -> Any:
        env_value = os.getenv(f"{ENV_PREFIX}{key.upper()}")
        if env_value is None:
            return default
        try:
            return json.loads(env_value)
        except json.JSONDecodeError:
            return env_value

    def _normalize(self, values: Dict[str, Any], source: Optional[Path]) -> Dict[str, Any]:
        known = {f.name for f in fields(HarnessConfig)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {sorted(unknown)}",
                config_file=str(source) if source else None,
                field=sorted(unknown)[0]
            )

        result = dict(values)
        for name in _DURATION_FIELDS & set(result):
            try:
                result[name] = parse_duration(result[name])
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"Invalid duration for {name}: {result[name]!r}",
                    config_file=str(source) if source else None,
                    field=name
                )
        return result

    def load(self, filename: Union[str, Path, None] = None,
             apply_env_overrides: bool = True, **overrides: Any) -> HarnessConfig:
        """
        Build a HarnessConfig.

        Precedence, lowest first: dataclass defaults, YAML file,
        environment, explicit keyword overrides.
        """
        path = self._resolve(filename) if filename else None
        values: Dict[str, Any] = dict(self._read_yaml(path)) if path else {}

        if apply_env_overrides:
            for f in fields(HarnessConfig):
                env_value = self._get_env_override(f.name)
                if env_value is not None:
                    LOG.debug(f"Environment override for {f.name}: {env_value!r}")
                    values[f.name] = env_value

        values.update({k: v for k, v in overrides.items() if v is not None})
        values = self._normalize(values, path)

        try:
            config = HarnessConfig(**values)
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                config_file=str(path) if path else None
            )

        LOG.debug(f"Loaded harness configuration: {config.to_dict()}")
        return config

    def reload(self, filename: Union[str, Path]) -> HarnessConfig:
        """Drop the cached copy of a file and load it again"""
        self._cache.pop(self._resolve(filename), None)
        return self.load(filename)
