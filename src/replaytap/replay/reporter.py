"""
ReplayTap Result Reporter

Bookkeeping of which mock backed each test set's replay, for the post-run
report. Recording never raises: a failure only makes the report less complete.
"""

import json
import logging
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Callable


@dataclass
class MockUsageRecord:
    """A mock consulted while replaying a test set."""

    test_set_id: str
    mock_name: str
    mock_file: Optional[str] = None
    used: bool = True
    recorded_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class ResultReporter:
    """
    Record per-test-set mock usage and log per-test-case status.

    Example:
        reporter = ResultReporter(mock_name="mocks", path="./replaytap")
        reporter.record_mock_usage("test-set-0")
        reporter.mock_usage("test-set-0")[0].mock_file
        # -> "replaytap/test-set-0/mocks.yaml"
    """

    def __init__(
        self,
        mock_name: str = "mocks",
        path: Optional[str] = None,
        mock_file_resolver: Optional[Callable[[str], Any]] = None
    ):
        """
        Initialize result reporter.

        Args:
            mock_name: Name of the mock backing the replay
            path: Directory holding the recorded test sets
            mock_file_resolver: Optional callable mapping a test set id to its
                mock file (defaults to <path>/<test-set>/<mock_name>.yaml)
        """
        self._mock_name = mock_name
        self.path = Path(path) if path else None
        self.mock_file_resolver = mock_file_resolver
        self.logger = logging.getLogger("replaytap.reporter")
        self._lock = threading.Lock()
        self._records: Dict[str, List[MockUsageRecord]] = {}

    @property
    def mock_name(self) -> str:
        """Identity of the mock this reporter records."""
        return self._mock_name

    def record_status(self, passed: bool, test_set_id: str, test_case: str = ""):
        """Log the outcome of one test case."""
        suffix = f" ({test_case})" if test_case else ""
        if passed:
            self.logger.debug(f"Test case passed for {test_set_id}{suffix}")
        else:
            self.logger.debug(f"Test case failed for {test_set_id}{suffix}")

    def record_mock_usage(self, test_set_id: str) -> Optional[MockUsageRecord]:
        """
        Record that this reporter's mock backed a test set's replay.

        Returns:
            The new record, or None if recording failed
        """
        try:
            mock_file = self._resolve_mock_file(test_set_id)
            record = MockUsageRecord(
                test_set_id=test_set_id,
                mock_name=self._mock_name,
                mock_file=str(mock_file) if mock_file else None,
                used=bool(mock_file) and Path(mock_file).exists()
            )
            with self._lock:
                self._records.setdefault(test_set_id, []).append(record)
        except Exception as e:
            self.logger.warning(f"Failed to record mock usage for {test_set_id}: {e}")
            return None

        self.logger.debug(f"Mock file for test set {test_set_id}: {record.mock_file}")
        return record

    def mock_usage(self, test_set_id: str) -> List[MockUsageRecord]:
        """Records for a test set, oldest first."""
        with self._lock:
            return list(self._records.get(test_set_id, []))

    def to_dict(self) -> Dict[str, Any]:
        """Convert all records to a dictionary keyed by test set."""
        with self._lock:
            return {
                'mock_name': self._mock_name,
                'test_sets': {
                    test_set_id: [r.to_dict() for r in records]
                    for test_set_id, records in self._records.items()
                }
            }

    def save(self, output_file: str):
        """Save mock usage records to a JSON file."""
        with open(output_file, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def _resolve_mock_file(self, test_set_id: str) -> Optional[Path]:
        if self.mock_file_resolver is not None:
            resolved = self.mock_file_resolver(test_set_id)
            return Path(resolved) if resolved else None
        if self.path is None:
            return None
        return self.path / test_set_id / f"{self._mock_name}.yaml"
