"""
ReplayTap Replay Configuration

YAML-based replay configuration: where recorded test sets live, how to reach
the system under test, and which response fields are noise.

Noise example:

    globalNoise:
      global:
        body:
          # to ignore some values for a field, list regex patterns
          url: ["https?://\\S+"]
        header:
          # to ignore the entire field, pass an empty list
          Date: []
      test-sets:
        test-set-1:
          body:
            url: []
          header:
            User-Agent: ["PostmanRuntime/7.34.0"]
"""

import copy
import re
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

import yaml

from ..errors import ConfigError
from ..models import NoiseMap

NOISE_SCOPES = ('body', 'header')


def empty_noise() -> NoiseMap:
    """Return a NoiseMap with both scopes present and empty."""
    return {scope: {} for scope in NOISE_SCOPES}


def merge_noise(base: Optional[NoiseMap], override: Optional[NoiseMap]) -> NoiseMap:
    """
    Left-join a test-set noise map onto a base (global) noise map.

    For every field in the override's "body" or "header" scope, the override's
    pattern list replaces the base's list for that exact field. An empty list
    in the override means "ignore the field entirely" and is carried over like
    any other value. Fields only in the base are kept; fields only in the
    override are added. Missing scopes count as empty.

    Neither input is modified; the result shares no containers with them.

    Args:
        base: Global noise map
        override: Test-set noise map

    Returns:
        New merged noise map with both scopes present
    """
    merged = empty_noise()

    for source in (base or {}, override or {}):
        for scope in NOISE_SCOPES:
            for field_name, patterns in (source.get(scope) or {}).items():
                merged[scope][field_name] = list(patterns or [])

    return merged


def validate_noise(noise: Any, where: str = "noise") -> NoiseMap:
    """
    Check a raw noise section and return a normalized deep copy.

    Raises:
        ConfigError: If a scope is not a mapping, a pattern list is not a list
            of strings, or a pattern is not a valid regular expression
    """
    if noise is None:
        return empty_noise()
    if not isinstance(noise, dict):
        raise ConfigError(f"{where}: expected a mapping, got {type(noise).__name__}")

    unknown = set(noise) - set(NOISE_SCOPES)
    if unknown:
        raise ConfigError(f"{where}: unknown noise scope(s) {sorted(unknown)}")

    result = empty_noise()
    for scope in NOISE_SCOPES:
        fields = noise.get(scope) or {}
        if not isinstance(fields, dict):
            raise ConfigError(f"{where}.{scope}: expected a mapping of field to patterns")

        for field_name, patterns in fields.items():
            if patterns is None:
                patterns = []
            if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
                raise ConfigError(f"{where}.{scope}.{field_name}: expected a list of regex strings")
            for pattern in patterns:
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ConfigError(
                        f"{where}.{scope}.{field_name}: invalid pattern {pattern!r}: {e}"
                    ) from e
            result[scope][str(field_name)] = list(patterns)

    return result


@dataclass
class NoiseConfig:
    """Global noise plus per-test-set overrides."""

    global_noise: NoiseMap = field(default_factory=empty_noise)
    test_sets: Dict[str, NoiseMap] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'NoiseConfig':
        """
        Create noise config from a ``globalNoise`` section.

        Accepts {"global": {...}, "test-sets": {"<id>": {...}}}.
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError("globalNoise: expected a mapping")

        test_sets = data.get('test-sets') or data.get('test_sets') or {}
        if not isinstance(test_sets, dict):
            raise ConfigError("globalNoise.test-sets: expected a mapping of test set to noise")

        return cls(
            global_noise=validate_noise(data.get('global'), 'globalNoise.global'),
            test_sets={
                str(test_set_id): validate_noise(noise, f"globalNoise.test-sets.{test_set_id}")
                for test_set_id, noise in test_sets.items()
            }
        )

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'NoiseConfig':
        """Load noise from a YAML file holding a ``globalNoise`` section or its contents."""
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if isinstance(data, dict) and 'globalNoise' in data:
            data = data['globalNoise']
        return cls.from_dict(data)

    def for_test_set(self, test_set_id: str) -> NoiseMap:
        """Effective noise for a test set: the global map with its override applied."""
        return merge_noise(self.global_noise, self.test_sets.get(test_set_id))

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the ``globalNoise`` shape."""
        return {
            'global': copy.deepcopy(self.global_noise),
            'test-sets': copy.deepcopy(self.test_sets)
        }


def _as_bool(value: Any, name: str) -> bool:
    # YAML quoting turns flags into strings ("false")
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 'yes', 'on', '1'):
            return True
        if lowered in ('false', 'no', 'off', '0', ''):
            return False
    if isinstance(value, int):
        return bool(value)
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


@dataclass
class ReplayConfig:
    """Configuration for a replay run."""

    # Where recorded test sets live
    path: str = "./replaytap"
    test_sets: List[str] = field(default_factory=list)  # empty = all

    # System under test
    api_timeout: float = 5.0  # seconds, per replayed request
    target_host: Optional[str] = None  # e.g. container IP; None = recorded host
    verify_ssl: bool = True
    max_retries: int = 0  # connection retries per request

    # Run behavior
    max_workers: int = 5
    skip_unsupported: bool = False  # skip unknown protocol kinds instead of failing them
    mock_name: str = "mocks"

    log_level: str = "info"
    noise: NoiseConfig = field(default_factory=NoiseConfig)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'ReplayConfig':
        """Load config from YAML file."""
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ReplayConfig':
        """
        Create config from dictionary.

        Keys may be written in camelCase (``apiTimeout``) or snake_case
        (``api_timeout``). The ``test`` section, when present, is merged over
        the top level.
        """
        if data is not None and not isinstance(data, dict):
            raise ConfigError("replay config: expected a mapping")
        data = dict(data or {})
        test_section = data.pop('test', None) or {}
        if not isinstance(test_section, dict):
            raise ConfigError("replay config: the test section must be a mapping")
        data.update(test_section)

        def get(name: str, default: Any) -> Any:
            camel = re.sub(r'_([a-z])', lambda m: m.group(1).upper(), name)
            return data.get(camel, data.get(name, default))

        test_sets = get('selected_tests', None) or get('test_sets', [])
        if isinstance(test_sets, dict):
            test_sets = list(test_sets)

        try:
            config = cls(
                path=str(get('path', cls.path)),
                test_sets=[str(t) for t in test_sets],
                api_timeout=float(get('api_timeout', cls.api_timeout)),
                target_host=get('target_host', None) or None,
                verify_ssl=_as_bool(get('verify_ssl', True), 'verifySsl'),
                max_retries=int(get('max_retries', 0)),
                max_workers=int(get('max_workers', cls.max_workers)),
                skip_unsupported=_as_bool(get('skip_unsupported', False), 'skipUnsupported'),
                mock_name=str(get('mock_name', cls.mock_name)),
                log_level=str(get('log_level', cls.log_level)),
                noise=NoiseConfig.from_dict(get('global_noise', None))
            )
        except ConfigError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigError(f"replay config: {e}") from e

        config.validate()
        return config

    def validate(self):
        """Raise ConfigError on out-of-range values."""
        if self.api_timeout <= 0:
            raise ConfigError(f"apiTimeout must be positive, got {self.api_timeout}")
        if self.max_workers < 1:
            raise ConfigError(f"maxWorkers must be at least 1, got {self.max_workers}")
        if self.max_retries < 0:
            raise ConfigError(f"maxRetries must not be negative, got {self.max_retries}")
        if self.log_level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigError(f"logLevel must be a logging level name, got {self.log_level!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (camelCase keys, as read by from_dict)."""
        return {
            'path': self.path,
            'selectedTests': list(self.test_sets),
            'apiTimeout': self.api_timeout,
            'targetHost': self.target_host,
            'verifySsl': self.verify_ssl,
            'maxRetries': self.max_retries,
            'maxWorkers': self.max_workers,
            'skipUnsupported': self.skip_unsupported,
            'mockName': self.mock_name,
            'logLevel': self.log_level,
            'globalNoise': self.noise.to_dict()
        }

    def save(self, yaml_path: str):
        """Save config to YAML file."""
        with open(yaml_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
