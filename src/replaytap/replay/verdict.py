"""
ReplayTap Verdict Aggregation

Per-test-set pass/fail counters fed by concurrently replayed test cases.
"""

import logging
import threading
from dataclasses import dataclass, asdict
from typing import Dict, Any, List


@dataclass(frozen=True)
class TestSetVerdict:
    """
    Snapshot of a test set's counters.

    A test set passes only when at least one case ran and none failed; an
    empty test set does not pass.
    """

    __test__ = False  # not a pytest class

    total: int = 0
    passed: int = 0
    failed: int = 0

    @property
    def status(self) -> bool:
        return self.failed == 0 and self.total > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data['status'] = self.status
        return data


class _Counters:
    __slots__ = ('total', 'passed', 'failed')

    def __init__(self):
        self.total = 0
        self.passed = 0
        self.failed = 0

    def status(self) -> bool:
        return self.failed == 0 and self.total > 0


class VerdictAggregator:
    """
    Thread-safe pass/fail counters keyed by test set id.

    Every ``record_outcome`` call increments ``total`` and exactly one of
    ``passed``/``failed``. All access goes through a single lock, so outcomes
    reported from worker threads or asyncio tasks are never lost.

    Example:
        aggregator = VerdictAggregator()
        aggregator.record_outcome("test-set-0", True)
        aggregator.record_outcome("test-set-0", False)
        verdict = aggregator.snapshot("test-set-0")
        # TestSetVerdict(total=2, passed=1, failed=1), verdict.status is False
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, _Counters] = {}
        self.logger = logging.getLogger("replaytap.verdict")

    def start(self, test_set_id: str):
        """Reset the counters of a test set for a fresh run."""
        with self._lock:
            self._counters[test_set_id] = _Counters()

    def record_outcome(self, test_set_id: str, passed: bool):
        """Record the outcome of one replayed test case."""
        with self._lock:
            counters = self._counters.setdefault(test_set_id, _Counters())
            was_passing = counters.status()

            counters.total += 1
            if passed:
                counters.passed += 1
            else:
                counters.failed += 1

            is_passing = counters.status()

        if is_passing != was_passing:
            self.logger.debug(
                f"Test set {test_set_id} status changed: "
                f"{_status_name(was_passing)} -> {_status_name(is_passing)}"
            )

    def snapshot(self, test_set_id: str) -> TestSetVerdict:
        """Return an immutable copy of a test set's counters."""
        with self._lock:
            counters = self._counters.get(test_set_id)
            if counters is None:
                return TestSetVerdict()
            return TestSetVerdict(
                total=counters.total,
                passed=counters.passed,
                failed=counters.failed
            )

    def test_set_ids(self) -> List[str]:
        """Ids of all test sets with counters."""
        with self._lock:
            return list(self._counters)


def _status_name(passing: bool) -> str:
    return "passing" if passing else "failing"
