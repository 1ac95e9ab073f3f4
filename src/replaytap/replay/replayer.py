"""
ReplayTap Test Set Replayer

Replays recorded test sets against the system under test and scores each
test case with the noise-aware comparator.
"""

import asyncio
import dataclasses
import json
import logging
import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable

from ..common import TestSetLoader, replace_host
from ..errors import ReplayError, ParseError, MissingTargetHostError
from ..models import HTTPResponse, NoiseMap, TestCase
from .comparator import ResponseComparator
from .emulator import RequestEmulator
from .replay_config import ReplayConfig, merge_noise, validate_noise
from .reporter import ResultReporter, MockUsageRecord
from .verdict import VerdictAggregator, TestSetVerdict


@dataclass
class TestCaseResult:
    """Outcome of replaying a single test case."""

    __test__ = False  # not a pytest class

    name: str
    test_set_id: str
    passed: bool
    replayed_url: str = ""
    expected_status: int = 0
    actual: Optional[HTTPResponse] = None
    mismatches: List[str] = field(default_factory=list)
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'name': self.name,
            'test_set_id': self.test_set_id,
            'passed': self.passed,
            'skipped': self.skipped,
            'replayed_url': self.replayed_url,
            'expected_status': self.expected_status,
            'actual': self.actual.to_dict() if self.actual else None,
            'mismatches': list(self.mismatches),
            'error': self.error
        }


@dataclass
class TestSetResult:
    """Results from replaying one test set."""

    __test__ = False  # not a pytest class

    test_set_id: str
    verdict: TestSetVerdict
    results: List[TestCaseResult] = field(default_factory=list)
    duration_sec: float = 0.0
    mock_usage: Optional[MockUsageRecord] = None

    @property
    def status(self) -> bool:
        return self.verdict.status

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def pass_rate(self) -> float:
        """Calculate pass rate percentage."""
        if self.verdict.total == 0:
            return 0.0
        return (self.verdict.passed / self.verdict.total) * 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'test_set_id': self.test_set_id,
            'verdict': self.verdict.to_dict(),
            'skipped': self.skipped,
            'pass_rate': round(self.pass_rate, 2),
            'duration_sec': round(self.duration_sec, 2),
            'mock_usage': self.mock_usage.to_dict() if self.mock_usage else None,
            'results': [r.to_dict() for r in self.results]
        }


class TestSetReplayer:
    """
    Replay recorded test sets and judge each replayed interaction.

    Features:
    - Concurrent replay of a test set's cases (bounded by max_workers)
    - Global + per-test-set + per-test-case noise
    - Host rewriting to reach a containerized system under test
    - Thread-safe verdict counters and mock usage bookkeeping

    Cancelling a running ``run_test_set`` cancels every in-flight request.

    Example:
        config = ReplayConfig.from_yaml('replaytap.yaml')
        replayer = TestSetReplayer(config)
        results = replayer.replay()
        for test_set_id, result in results.items():
            print(test_set_id, result.verdict.status)
    """

    __test__ = False  # not a pytest class

    def __init__(
        self,
        config: Optional[ReplayConfig] = None,
        emulator: Optional[RequestEmulator] = None,
        aggregator: Optional[VerdictAggregator] = None,
        reporter: Optional[ResultReporter] = None,
        loader: Optional[TestSetLoader] = None,
        host_resolver: Optional[Callable[[], str]] = None
    ):
        """
        Initialize replayer.

        Args:
            config: Replay configuration (defaults to ReplayConfig())
            emulator: Request emulator (built from config if None)
            aggregator: Verdict counters (a fresh one if None)
            reporter: Mock usage reporter (built from config if None)
            loader: Test set loader (built from config.path if None)
            host_resolver: Callable returning the host to replay against,
                e.g. a container's IP; takes precedence over config.target_host
        """
        self.config = config or ReplayConfig()

        # Level applies to every replaytap.* logger
        logging.getLogger("replaytap").setLevel(getattr(logging, self.config.log_level.upper()))
        self.logger = logging.getLogger("replaytap.replay")

        self.emulator = emulator or RequestEmulator.from_config(self.config)
        self.aggregator = aggregator or VerdictAggregator()
        self.reporter = reporter or ResultReporter(
            mock_name=self.config.mock_name,
            path=self.config.path
        )
        self.loader = loader or TestSetLoader(self.config.path)
        self.host_resolver = host_resolver

    def _target_host(self) -> Optional[str]:
        """Host to replay against; None when no rewriting is configured."""
        if self.host_resolver is not None:
            return self.host_resolver() or ""
        return self.config.target_host

    def _prepare(self, test_case: TestCase, target_host: Optional[str]) -> TestCase:
        """Point the test case at the target host, keeping the recorded URL on error."""
        request = test_case.http_req
        if target_host is None or request is None:
            return test_case

        try:
            url = replace_host(request.url, target_host)
        except ParseError as e:
            self.logger.warning(f"{e}; replaying {test_case.name} against the recorded URL")
            return test_case
        except MissingTargetHostError as e:
            self.logger.warning(f"{e}; replaying {test_case.name} against the recorded address")
            return test_case

        return dataclasses.replace(test_case, http_req=dataclasses.replace(request, url=url))

    async def _replay_single(
        self,
        test_set_id: str,
        test_case: TestCase,
        noise: NoiseMap,
        target_host: Optional[str],
        semaphore: asyncio.Semaphore
    ) -> TestCaseResult:
        """Replay and judge one test case, recording its outcome."""
        async with semaphore:
            prepared = self._prepare(test_case, target_host)
            expected = test_case.http_resp or HTTPResponse(status_code=0)
            result = TestCaseResult(
                name=test_case.name,
                test_set_id=test_set_id,
                passed=False,
                replayed_url=prepared.http_req.url if prepared.http_req else "",
                expected_status=expected.status_code
            )

            try:
                actual = await self.emulator.simulate_request(prepared, test_set_id)
                if actual is None:
                    result.skipped = True
                    return result

                case_noise = merge_noise(noise, validate_noise(test_case.noise, f"{test_case.name}.noise"))
                comparison = ResponseComparator(case_noise).compare(expected, actual)
                result.actual = actual
                result.passed = comparison.passed
                result.mismatches = comparison.mismatches
            except ReplayError as e:
                self.logger.warning(f"Test case {test_case.name} in {test_set_id} failed: {e}")
                result.error = str(e)

        self.aggregator.record_outcome(test_set_id, result.passed)
        self.reporter.record_status(result.passed, test_set_id, test_case.name)
        return result

    def _unexpected_failure(self, test_set_id: str, test_case: TestCase, error: Exception) -> TestCaseResult:
        """Count a test case whose replay raised outside the replay error hierarchy."""
        self.logger.error(
            f"Unexpected error replaying {test_case.name} in {test_set_id}: {error}",
            exc_info=error
        )
        self.aggregator.record_outcome(test_set_id, False)
        self.reporter.record_status(False, test_set_id, test_case.name)
        return TestCaseResult(
            name=test_case.name,
            test_set_id=test_set_id,
            passed=False,
            replayed_url=test_case.http_req.url if test_case.http_req else "",
            error=f"Unexpected error: {error}"
        )

    async def run_test_set(
        self,
        test_set_id: str,
        test_cases: Optional[List[TestCase]] = None,
        verbose: bool = False
    ) -> TestSetResult:
        """
        Replay every test case of a test set.

        Args:
            test_set_id: Test set to replay
            test_cases: Test cases to replay (loaded from config.path if None)
            verbose: Print per-test-case progress

        Returns:
            TestSetResult with the final verdict and per-case results
        """
        if test_cases is None:
            test_cases = self.loader.load(test_set_id)

        self.aggregator.start(test_set_id)
        noise = self.config.noise.for_test_set(test_set_id)
        target_host = self._target_host()
        semaphore = asyncio.Semaphore(self.config.max_workers)

        self.logger.info(f"Replaying {len(test_cases)} test case(s) of {test_set_id}")
        start_time = time.time()

        outcomes = await asyncio.gather(*(
            self._replay_single(test_set_id, test_case, noise, target_host, semaphore)
            for test_case in test_cases
        ), return_exceptions=True)

        results: List[TestCaseResult] = []
        for test_case, outcome in zip(test_cases, outcomes):
            if isinstance(outcome, TestCaseResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            results.append(self._unexpected_failure(test_set_id, test_case, outcome))

        verdict = self.aggregator.snapshot(test_set_id)
        result = TestSetResult(
            test_set_id=test_set_id,
            verdict=verdict,
            results=results,
            duration_sec=time.time() - start_time,
            mock_usage=self.reporter.record_mock_usage(test_set_id)
        )

        self.logger.info(
            f"Test set {test_set_id}: {verdict.passed}/{verdict.total} passed, "
            f"{verdict.failed} failed -> {'PASSED' if verdict.status else 'FAILED'}"
        )

        if verbose:
            self._print_result(result)

        return result

    async def run(
        self,
        test_set_ids: Optional[List[str]] = None,
        verbose: bool = False
    ) -> Dict[str, TestSetResult]:
        """
        Replay several test sets, one after another.

        Args:
            test_set_ids: Test sets to replay (defaults to config.test_sets,
                then to every test set found under config.path)
            verbose: Print progress information

        Returns:
            Results keyed by test set id
        """
        if not test_set_ids:
            test_set_ids = self.config.test_sets or self.loader.list_test_sets()

        results: Dict[str, TestSetResult] = {}
        for test_set_id in test_set_ids:
            results[test_set_id] = await self.run_test_set(test_set_id, verbose=verbose)

        return results

    def replay(
        self,
        test_set_ids: Optional[List[str]] = None,
        verbose: bool = False
    ) -> Dict[str, TestSetResult]:
        """Synchronous wrapper around ``run``."""
        return asyncio.run(self.run(test_set_ids, verbose=verbose))

    def _print_result(self, result: TestSetResult):
        total = len(result.results)
        for i, case in enumerate(result.results, 1):
            if case.skipped:
                icon = "⏭️"
            elif case.passed:
                icon = "✅"
            else:
                icon = "❌"
            detail = case.error or "; ".join(case.mismatches)
            print(f"[{i}/{total}] {icon} {case.name} {case.replayed_url}" + (f": {detail}" if detail else ""))

        verdict = result.verdict
        print(f"\n📊 {result.test_set_id} Summary:")
        print(f"   Total: {verdict.total}")
        print(f"   Passed: {verdict.passed} ({result.pass_rate:.1f}%)")
        print(f"   Failed: {verdict.failed}")
        if result.skipped:
            print(f"   Skipped: {result.skipped}")
        print(f"   Duration: {result.duration_sec:.2f}s")

    def save_result(self, results: Dict[str, TestSetResult], output_file: str):
        """
        Save replay results to JSON file.

        Args:
            results: Results keyed by test set id
            output_file: Path to output JSON file
        """
        data = {
            'test_sets': {test_set_id: r.to_dict() for test_set_id, r in results.items()},
            'mocks': self.reporter.to_dict()
        }
        with open(output_file, 'w') as f:
            json.dump(data, f, indent=2)

        self.logger.info(f"Saved replay results to {output_file}")
