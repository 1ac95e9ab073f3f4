"""
Tests for ReplayTap Test Set Replayer

Tests the replay orchestration including:
- Replaying test sets against a system under test
- Noise merging (global, per test set, per test case)
- Host rewriting for containerized targets
- Failed, skipped and unsupported test cases
- Cancellation of a running test set
- Saving results
"""

import asyncio
import json
import pytest
import tempfile
from pathlib import Path
from unittest.mock import Mock

import httpx
from fastapi import FastAPI, Request

from src.replaytap.models import HTTP, HTTPRequest, HTTPResponse, TestCase
from src.replaytap.replay.emulator import HTTPEmulator, ProtocolEmulator, RequestEmulator
from src.replaytap.replay.replay_config import NoiseConfig, ReplayConfig
from src.replaytap.replay.replayer import TestSetReplayer, TestSetResult
from src.replaytap.replay.reporter import ResultReporter
from src.replaytap.replay.verdict import TestSetVerdict, VerdictAggregator


def make_case(name, url, status=200, body=None, headers=None, method='GET', kind=HTTP, noise=None):
    return TestCase(
        name=name,
        kind=kind,
        http_req=HTTPRequest(method=method, url=url),
        http_resp=HTTPResponse(
            status_code=status,
            headers=headers or {},
            body=json.dumps(body) if body is not None else ''
        ),
        noise=noise or {}
    )


def make_replayer(handler, config=None, **kwargs):
    config = config or ReplayConfig(path='unused', max_workers=4)
    emulator = RequestEmulator(
        api_timeout=config.api_timeout,
        emulators={HTTP: HTTPEmulator(transport=httpx.MockTransport(handler))},
        skip_unsupported=config.skip_unsupported
    )
    return TestSetReplayer(config, emulator=emulator, **kwargs)


def users_handler(request):
    """System under test: /users/<id> returns the user, anything else 404."""
    parts = request.url.path.strip('/').split('/')
    if len(parts) == 2 and parts[0] == 'users':
        return httpx.Response(200, json={'id': int(parts[1]), 'seen_at': 'now'})
    return httpx.Response(404, json={'error': 'not found'})


@pytest.fixture
def sample_cases():
    """Five cases: three match the system under test, two don't."""
    return [
        make_case('get-user-1', 'http://api.example.com/users/1', body={'id': 1, 'seen_at': 'now'}),
        make_case('get-user-2', 'http://api.example.com/users/2', body={'id': 2, 'seen_at': 'now'}),
        make_case('get-user-3', 'http://api.example.com/users/3', body={'id': 3, 'seen_at': 'now'}),
        make_case('get-user-wrong-id', 'http://api.example.com/users/4', body={'id': 5, 'seen_at': 'now'}),
        make_case('get-orders', 'http://api.example.com/orders', body={'orders': []})
    ]


class TestRunTestSet:
    """Test replaying a single test set."""

    def test_verdict_three_pass_two_fail(self, sample_cases):
        """Test the verdict for 5 cases where 3 pass and 2 fail."""
        replayer = make_replayer(users_handler)

        result = asyncio.run(replayer.run_test_set('test-set-0', sample_cases))

        assert isinstance(result, TestSetResult)
        assert result.verdict == TestSetVerdict(total=5, passed=3, failed=2)
        assert result.status is False
        assert [r.passed for r in result.results] == [True, True, True, False, False]
        assert result.results[3].mismatches == ['body.id: expected 5, got 4']
        assert 'status: expected 200, got 404' in result.results[4].mismatches
        assert result.pass_rate == 60.0

    def test_all_passing(self, sample_cases):
        replayer = make_replayer(users_handler)

        result = asyncio.run(replayer.run_test_set('test-set-0', sample_cases[:3]))

        assert result.verdict.status is True

    def test_empty_test_set_does_not_pass(self):
        """Test that replaying zero test cases reports a failing verdict."""
        replayer = make_replayer(users_handler)

        result = asyncio.run(replayer.run_test_set('test-set-empty', []))

        assert result.verdict == TestSetVerdict(total=0, passed=0, failed=0)
        assert result.status is False

    def test_global_noise_applied(self):
        """Test that global noise tolerates variable fields."""
        config = ReplayConfig(
            path='unused',
            noise=NoiseConfig.from_dict({'global': {'body': {'seen_at': []}}})
        )
        case = make_case('get-user-1', 'http://api.example.com/users/1', body={'id': 1, 'seen_at': 'yesterday'})

        result = asyncio.run(make_replayer(users_handler, config).run_test_set('test-set-0', [case]))

        assert result.verdict.status is True

    def test_test_set_noise_override(self):
        """Test that a test-set override replaces the global patterns."""
        config = ReplayConfig(
            path='unused',
            noise=NoiseConfig.from_dict({
                'global': {'body': {'seen_at': ['^never$']}},
                'test-sets': {'test-set-1': {'body': {'seen_at': []}}}
            })
        )
        case = make_case('get-user-1', 'http://api.example.com/users/1', body={'id': 1, 'seen_at': 'yesterday'})
        replayer = make_replayer(users_handler, config)

        strict = asyncio.run(replayer.run_test_set('test-set-0', [case]))
        relaxed = asyncio.run(replayer.run_test_set('test-set-1', [case]))

        assert strict.verdict.status is False
        assert relaxed.verdict.status is True
        assert config.noise.global_noise['body']['seen_at'] == ['^never$']

    def test_test_case_noise(self):
        """Test that noise recorded on the test case itself is honored."""
        case = make_case(
            'get-user-1', 'http://api.example.com/users/1',
            body={'id': 1, 'seen_at': 'yesterday'},
            noise={'body': {'seen_at': []}}
        )

        result = asyncio.run(make_replayer(users_handler).run_test_set('test-set-0', [case]))

        assert result.verdict.status is True

    def test_invalid_test_case_noise_fails_case(self):
        """Test that a broken noise pattern fails only that case."""
        case = make_case(
            'get-user-1', 'http://api.example.com/users/1',
            body={'id': 1, 'seen_at': 'now'},
            noise={'body': {'seen_at': ['([']}}
        )

        result = asyncio.run(make_replayer(users_handler).run_test_set('test-set-0', [case]))

        assert result.verdict == TestSetVerdict(total=1, passed=0, failed=1)
        assert 'invalid pattern' in result.results[0].error

    def test_network_error_counts_as_failure(self, sample_cases):
        """Test that an unreachable target fails the case, not the run."""
        def handler(request):
            if request.url.path == '/users/2':
                raise httpx.ConnectError('Connection refused', request=request)
            return users_handler(request)

        result = asyncio.run(make_replayer(handler).run_test_set('test-set-0', sample_cases[:3]))

        assert result.verdict == TestSetVerdict(total=3, passed=2, failed=1)
        assert 'Connection refused' in result.results[1].error

    def test_timeout_counts_as_failure(self):
        """Test that a hung target fails the case within the timeout."""
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        config = ReplayConfig(path='unused', api_timeout=0.05)
        case = make_case('slow', 'http://api.example.com/slow')

        result = asyncio.run(make_replayer(handler, config).run_test_set('test-set-0', [case]))

        assert result.verdict == TestSetVerdict(total=1, passed=0, failed=1)
        assert 'timed out' in result.results[0].error

    def test_unsupported_kind_counts_as_failure(self, sample_cases):
        """Test that an unknown protocol kind is a visible failure."""
        cases = sample_cases[:1] + [make_case('grpc-1', 'grpc://api.example.com/Svc/Call', kind='Grpc')]

        result = asyncio.run(make_replayer(users_handler).run_test_set('test-set-0', cases))

        assert result.verdict == TestSetVerdict(total=2, passed=1, failed=1)
        assert "Unsupported protocol kind 'Grpc'" in result.results[1].error

    def test_unsupported_kind_skipped_when_enabled(self, sample_cases):
        """Test that skipped kinds are left out of the counters."""
        config = ReplayConfig(path='unused', skip_unsupported=True)
        cases = sample_cases[:1] + [make_case('grpc-1', 'grpc://api.example.com/Svc/Call', kind='Grpc')]

        result = asyncio.run(make_replayer(users_handler, config).run_test_set('test-set-0', cases))

        assert result.verdict == TestSetVerdict(total=1, passed=1, failed=0)
        assert result.skipped == 1
        assert result.results[1].skipped is True

    def test_non_string_header_fails_only_that_case(self, sample_cases):
        """Test that a header httpx refuses to send fails the case, not the run."""
        bad_case = TestCase(
            name='retry-header',
            http_req=HTTPRequest(method='GET', url='http://api.example.com/users/2', headers={'X-Retry': 3}),
            http_resp=HTTPResponse(status_code=200)
        )

        result = asyncio.run(make_replayer(users_handler).run_test_set('test-set-0', [sample_cases[0], bad_case]))

        assert result.verdict == TestSetVerdict(total=2, passed=1, failed=1)
        assert 'could not be built' in result.results[1].error

    def test_unexpected_error_fails_only_that_case(self, sample_cases):
        """Test that an emulator bug is counted as a failed case."""
        class BrokenEmulator(ProtocolEmulator):
            kind = 'Broken'

            async def simulate(self, test_case, test_set_id, timeout):
                raise RuntimeError('emulator bug')

        replayer = make_replayer(users_handler)
        replayer.emulator.register('Broken', BrokenEmulator())
        cases = [sample_cases[0], make_case('broken-1', 'http://api.example.com/users/9', kind='Broken')]

        result = asyncio.run(replayer.run_test_set('test-set-0', cases))

        assert result.verdict == TestSetVerdict(total=2, passed=1, failed=1)
        assert [r.name for r in result.results] == ['get-user-1', 'broken-1']
        assert result.results[1].error == 'Unexpected error: emulator bug'

    def test_concurrency_bounded_by_max_workers(self):
        """Test that no more than max_workers requests are in flight."""
        state = {'active': 0, 'peak': 0}

        async def handler(request):
            state['active'] += 1
            state['peak'] = max(state['peak'], state['active'])
            await asyncio.sleep(0.01)
            state['active'] -= 1
            return users_handler(request)

        config = ReplayConfig(path='unused', max_workers=2)
        cases = [
            make_case(f'get-user-{i}', f'http://api.example.com/users/{i}', body={'id': i, 'seen_at': 'now'})
            for i in range(10)
        ]

        result = asyncio.run(make_replayer(handler, config).run_test_set('test-set-0', cases))

        assert result.verdict.total == 10
        assert result.verdict.status is True
        assert state['peak'] == 2

    def test_cancellation_stops_in_flight_requests(self, sample_cases):
        """Test that cancelling a test set run cancels every pending replay."""
        state = {'started': 0, 'cancelled': 0, 'completed': 0}

        async def handler(request):
            state['started'] += 1
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                state['cancelled'] += 1
                raise
            state['completed'] += 1
            return httpx.Response(200)

        config = ReplayConfig(path='unused', api_timeout=10, max_workers=5)
        replayer = make_replayer(handler, config)

        async def scenario():
            task = asyncio.ensure_future(replayer.run_test_set('test-set-0', sample_cases))
            while state['started'] < len(sample_cases):
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(asyncio.wait_for(scenario(), timeout=2))

        assert state['cancelled'] == len(sample_cases)
        assert state['completed'] == 0

    def test_mock_usage_recorded(self, sample_cases):
        """Test that each test set run records its mock usage."""
        reporter = ResultReporter(mock_name='mocks')
        replayer = make_replayer(users_handler, reporter=reporter)

        result = asyncio.run(replayer.run_test_set('test-set-0', sample_cases[:1]))

        assert result.mock_usage is not None
        assert result.mock_usage.mock_name == 'mocks'
        assert len(reporter.mock_usage('test-set-0')) == 1

    def test_shared_aggregator(self, sample_cases):
        """Test that outcomes land in an injected aggregator."""
        aggregator = VerdictAggregator()
        replayer = make_replayer(users_handler, aggregator=aggregator)

        asyncio.run(replayer.run_test_set('test-set-0', sample_cases))

        assert aggregator.snapshot('test-set-0').total == 5


class TestHostRewriting:
    """Test replaying against a different host."""

    def test_target_host_from_config(self, sample_cases):
        """Test that requests go to the configured target host."""
        hosts = []

        def handler(request):
            hosts.append((request.url.host, request.url.port))
            return users_handler(request)

        config = ReplayConfig(path='unused', target_host='172.18.0.2')
        case = make_case('get-user-1', 'http://api.example.com:8080/users/1', body={'id': 1, 'seen_at': 'now'})

        result = asyncio.run(make_replayer(handler, config).run_test_set('test-set-0', [case]))

        assert hosts == [('172.18.0.2', 8080)]
        assert result.results[0].replayed_url == 'http://172.18.0.2:8080/users/1'
        assert result.verdict.status is True

    def test_host_resolver_takes_precedence(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return users_handler(request)

        config = ReplayConfig(path='unused', target_host='172.18.0.2')
        case = make_case('get-user-1', 'http://api.example.com/users/1', body={'id': 1, 'seen_at': 'now'})
        resolver = Mock(return_value='10.0.0.5')
        replayer = make_replayer(handler, config, host_resolver=resolver)

        asyncio.run(replayer.run_test_set('test-set-0', [case]))

        assert hosts == ['10.0.0.5']
        resolver.assert_called_once_with()

    def test_missing_target_host_falls_back(self, caplog):
        """Test that an undetermined container address keeps the recorded host."""
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return users_handler(request)

        case = make_case('get-user-1', 'http://api.example.com/users/1', body={'id': 1, 'seen_at': 'now'})
        replayer = make_replayer(handler, host_resolver=lambda: '')

        result = asyncio.run(replayer.run_test_set('test-set-0', [case]))

        assert hosts == ['api.example.com']
        assert result.verdict.status is True
        assert 'no target host available' in caplog.text

    def test_unparseable_url_falls_back(self, sample_cases, caplog):
        """Test that a recorded URL that cannot be rewritten is replayed as recorded."""
        config = ReplayConfig(path='unused', target_host='172.18.0.2')
        bad_case = make_case('bad-url', 'http://[::1/x')

        result = asyncio.run(
            make_replayer(users_handler, config).run_test_set('test-set-0', [sample_cases[0], bad_case])
        )

        assert "Failed to parse URL: 'http://[::1/x'" in caplog.text
        assert result.results[1].replayed_url == 'http://[::1/x'
        assert result.results[1].passed is False
        assert result.results[1].error
        assert result.verdict == TestSetVerdict(total=2, passed=1, failed=1)

    def test_no_rewrite_without_target(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return users_handler(request)

        case = make_case('get-user-1', 'http://api.example.com/users/1', body={'id': 1, 'seen_at': 'now'})

        asyncio.run(make_replayer(handler).run_test_set('test-set-0', [case]))

        assert hosts == ['api.example.com']


class TestAgainstASGIApplication:
    """Replay against an in-process FastAPI application."""

    @pytest.fixture
    def app(self):
        app = FastAPI()

        @app.post("/users")
        async def create_user(request: Request):
            payload = await request.json()
            return {'id': 7, 'name': payload['name'], 'request_id': request.headers.get('x-request-id')}

        return app

    def test_replay_post(self, app):
        """Test replaying a POST whose response carries a volatile field."""
        config = ReplayConfig(
            path='unused',
            noise=NoiseConfig.from_dict({'global': {'body': {'request_id': [r'^req-\d+$']}}})
        )
        emulator = RequestEmulator(
            emulators={HTTP: HTTPEmulator(transport=httpx.ASGITransport(app=app))}
        )
        case = TestCase(
            name='create-user',
            http_req=HTTPRequest(
                method='POST',
                url='http://recorded-host:8000/users',
                headers={'Content-Type': 'application/json', 'X-Request-Id': 'req-2'},
                body='{"name": "Jane"}'
            ),
            http_resp=HTTPResponse(
                status_code=200,
                headers={'content-type': 'application/json'},
                body='{"id": 7, "name": "Jane", "request_id": "req-1"}'
            )
        )

        result = asyncio.run(TestSetReplayer(config, emulator=emulator).run_test_set('test-set-0', [case]))

        assert result.results[0].mismatches == []
        assert result.verdict == TestSetVerdict(total=1, passed=1, failed=0)


class TestRunAndSave:
    """Test running test sets from disk and saving results."""

    @pytest.fixture
    def recordings_dir(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            for test_set_id, user_id, expected_id in (('test-set-0', 1, 1), ('test-set-1', 2, 3)):
                tests_dir = root / test_set_id / 'tests'
                tests_dir.mkdir(parents=True)
                (tests_dir / 'test-1.yaml').write_text(
                    "kind: Http\n"
                    "name: test-1\n"
                    "spec:\n"
                    "  req:\n"
                    "    method: GET\n"
                    f"    url: http://api.example.com/users/{user_id}\n"
                    "  resp:\n"
                    "    status_code: 200\n"
                    f"    body: '{{\"id\": {expected_id}, \"seen_at\": \"now\"}}'\n"
                )
            yield root

    def test_replay_all_test_sets(self, recordings_dir):
        """Test the synchronous entry point over every discovered test set."""
        config = ReplayConfig(path=str(recordings_dir))
        replayer = make_replayer(users_handler, config)

        results = replayer.replay()

        assert list(results) == ['test-set-0', 'test-set-1']
        assert results['test-set-0'].verdict.status is True
        assert results['test-set-1'].verdict.status is False

    def test_replay_selected_test_sets(self, recordings_dir):
        config = ReplayConfig(path=str(recordings_dir), test_sets=['test-set-1'])

        results = make_replayer(users_handler, config).replay()

        assert list(results) == ['test-set-1']

    def test_verbose_output(self, recordings_dir, capsys):
        config = ReplayConfig(path=str(recordings_dir), test_sets=['test-set-1'])

        make_replayer(users_handler, config).replay(verbose=True)

        output = capsys.readouterr().out
        assert '❌ test-1' in output
        assert 'Failed: 1' in output

    def test_save_result(self, recordings_dir):
        """Test saving results to a JSON file."""
        config = ReplayConfig(path=str(recordings_dir))
        replayer = make_replayer(users_handler, config)
        results = replayer.replay()
        output_path = recordings_dir / 'report.json'

        replayer.save_result(results, str(output_path))

        data = json.loads(output_path.read_text())
        assert data['test_sets']['test-set-0']['verdict'] == {
            'total': 1, 'passed': 1, 'failed': 0, 'status': True
        }
        assert data['test_sets']['test-set-1']['results'][0]['mismatches'] == ['body.id: expected 3, got 2']
        assert 'test-set-0' in data['mocks']['test_sets']


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
