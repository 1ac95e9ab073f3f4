"""
ReplayTap Response Comparator

Noise-aware comparison of an expected (captured) response against the
response observed on replay.

Noise semantics, per field:
- field absent from noise: values must be equal
- field with an empty pattern list: ignored entirely
- field with patterns: a differing value is tolerated when the actual value
  matches one of the patterns
"""

import json
import re
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from ..common import parse_json_body
from ..models import HTTPResponse, NoiseMap

# Body noise key applying to a non-JSON body as a whole
WHOLE_BODY = "*"

_MISSING = object()


@dataclass
class ComparisonResult:
    """Outcome of comparing an expected response with an actual one."""

    passed: bool
    mismatches: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'passed': self.passed,
            'mismatches': list(self.mismatches)
        }


def flatten_json(value: Any) -> Dict[str, Any]:
    """
    Flatten a decoded JSON value into dotted paths.

    Empty objects and arrays are kept as leaves.

    Example:
        flatten_json({"data": {"items": [{"id": 1}]}})
        # -> {"data.items.0.id": 1}
    """
    return {_dotted(path): leaf for path, leaf in _flatten(value).items()}


def _flatten(value: Any, path: Tuple[str, ...] = ()) -> Dict[Tuple[str, ...], Any]:
    # Paths stay tuples so a key containing a dot never collides with nesting
    if isinstance(value, dict) and value:
        flat: Dict[Tuple[str, ...], Any] = {}
        for key, child in value.items():
            flat.update(_flatten(child, path + (str(key),)))
        return flat

    if isinstance(value, list) and value:
        flat = {}
        for index, child in enumerate(value):
            flat.update(_flatten(child, path + (str(index),)))
        return flat

    return {path: value}


def _dotted(path: Tuple[str, ...]) -> str:
    return '.'.join(path)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def json_equal(expected: Any, actual: Any) -> bool:
    """
    Compare two decoded JSON leaves as JSON values.

    Booleans never equal numbers (``true`` is not ``1``), while integers and
    floats compare by numeric value (``1`` equals ``1.0``).
    """
    if _is_number(expected) and _is_number(actual):
        return expected == actual
    return type(expected) is type(actual) and expected == actual


class ResponseComparator:
    """
    Compare responses under a noise map.

    Example:
        comparator = ResponseComparator(config.noise.for_test_set("test-set-1"))
        result = comparator.compare(test_case.http_resp, actual)
        if not result.passed:
            print(result.mismatches)
    """

    def __init__(self, noise: Optional[NoiseMap] = None):
        """
        Initialize comparator.

        Args:
            noise: Effective noise map for the test set (and test case)
        """
        noise = noise or {}
        # Header names are case-insensitive
        self.header_noise = {
            name.lower(): [re.compile(p) for p in patterns]
            for name, patterns in (noise.get('header') or {}).items()
        }
        self.body_noise = {
            name: [re.compile(p) for p in patterns]
            for name, patterns in (noise.get('body') or {}).items()
        }

    def compare(self, expected: HTTPResponse, actual: HTTPResponse) -> ComparisonResult:
        """Compare status code, headers and body."""
        mismatches: List[str] = []

        if expected.status_code != actual.status_code:
            mismatches.append(f"status: expected {expected.status_code}, got {actual.status_code}")

        mismatches.extend(self.compare_headers(expected.headers, actual.headers))
        mismatches.extend(self.compare_body(expected.body, actual.body))

        return ComparisonResult(passed=not mismatches, mismatches=mismatches)

    def compare_headers(self, expected: Dict[str, str], actual: Dict[str, str]) -> List[str]:
        """
        Compare headers present in the expected response.

        Extra headers in the actual response are not mismatches.
        """
        actual_lower = {k.lower(): str(v) for k, v in actual.items()}
        mismatches = []

        for name, expected_value in expected.items():
            key = name.lower()
            actual_value = actual_lower.get(key)
            if actual_value == str(expected_value):
                continue

            patterns = self.header_noise.get(key)
            if patterns is not None and self._tolerated(patterns, actual_value):
                continue

            if actual_value is None:
                mismatches.append(f"header {name}: missing (expected {expected_value!r})")
            else:
                mismatches.append(f"header {name}: expected {expected_value!r}, got {actual_value!r}")

        return mismatches

    def compare_body(self, expected: str, actual: str) -> List[str]:
        """Compare bodies field by field when both are JSON, as text otherwise."""
        expected_json = parse_json_body(expected, default=_MISSING)
        actual_json = parse_json_body(actual, default=_MISSING)

        if expected_json is _MISSING or actual_json is _MISSING:
            return self._compare_text_body(expected or "", actual or "")

        expected_flat = _flatten(expected_json)
        actual_flat = _flatten(actual_json)
        mismatches = []

        for path in sorted(set(expected_flat) | set(actual_flat)):
            expected_value = expected_flat.get(path, _MISSING)
            actual_value = actual_flat.get(path, _MISSING)
            if json_equal(expected_value, actual_value):
                continue

            patterns = self._body_patterns(path)
            if patterns is not None:
                text = None if actual_value is _MISSING else _as_text(actual_value)
                if self._tolerated(patterns, text):
                    continue

            mismatches.append(_describe(_dotted(path), expected_value, actual_value))

        return mismatches

    def _compare_text_body(self, expected: str, actual: str) -> List[str]:
        if expected == actual:
            return []

        patterns = self.body_noise.get(WHOLE_BODY)
        if patterns is not None and self._tolerated(patterns, actual):
            return []

        return [f"body: expected {_truncate(expected)!r}, got {_truncate(actual)!r}"]

    def _body_patterns(self, parts: Tuple[str, ...]) -> Optional[List[re.Pattern]]:
        """
        Find the noise patterns applying to a flattened body path.

        A noise key applies when it equals the dotted path or one of its
        ancestors (``data`` covers ``data.items.0.id``), equals the last path
        segment, or fully matches the dotted path as a regular expression. A
        top-level scalar body is covered by the whole-body key.
        """
        if not parts:
            return self.body_noise.get(WHOLE_BODY)

        for end in range(len(parts), 0, -1):
            prefix = _dotted(parts[:end])
            if prefix in self.body_noise:
                return self.body_noise[prefix]

        if parts[-1] in self.body_noise:
            return self.body_noise[parts[-1]]

        path = _dotted(parts)
        for key, patterns in self.body_noise.items():
            if key == WHOLE_BODY:
                continue
            try:
                if re.fullmatch(key, path):
                    return patterns
            except re.error:
                continue

        return None

    @staticmethod
    def _tolerated(patterns: List[re.Pattern], actual_value: Optional[str]) -> bool:
        if not patterns:
            return True
        if actual_value is None:
            return False
        return any(p.search(actual_value) for p in patterns)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _describe(path: str, expected: Any, actual: Any) -> str:
    label = f"body.{path}" if path else "body"
    if actual is _MISSING:
        return f"{label}: missing (expected {expected!r})"
    if expected is _MISSING:
        return f"{label}: unexpected field (got {actual!r})"
    return f"{label}: expected {expected!r}, got {actual!r}"


def _truncate(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + '...'

