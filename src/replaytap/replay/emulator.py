"""
ReplayTap Request Emulator

Sends captured test cases to the system under test. One ProtocolEmulator per
protocol kind; RequestEmulator dispatches on the test case's kind so callers
replay heterogeneous test cases through a single entry point.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from ..errors import SimulationError, SimulationTimeoutError, UnsupportedProtocolError
from ..models import HTTP, HTTPResponse, TestCase

# Headers that describe the original connection, not the request
HOP_BY_HOP_HEADERS = ('host', 'content-length', 'transfer-encoding', 'connection')


class ProtocolEmulator(ABC):
    """Replays test cases of a single protocol kind."""

    kind: str = ""

    @abstractmethod
    async def simulate(self, test_case: TestCase, test_set_id: str, timeout: float) -> HTTPResponse:
        """
        Send the test case's request and return the observed response.

        Must honor ``timeout`` (seconds) and let ``asyncio.CancelledError``
        propagate.
        """


class HTTPEmulator(ProtocolEmulator):
    """
    Replay HTTP test cases with httpx.

    Each call opens its own AsyncClient and closes it on every exit path,
    including timeouts and cancellation. Redirects are not followed: the
    recorded response is the one the captured request received.

    Example:
        emulator = HTTPEmulator(verify_ssl=False)
        response = await emulator.simulate(test_case, "test-set-0", timeout=5)
    """

    kind = HTTP

    def __init__(
        self,
        verify_ssl: bool = True,
        max_retries: int = 0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize HTTP emulator.

        Args:
            verify_ssl: Whether to verify SSL certificates
            max_retries: Connection retries per request
            transport: Optional httpx transport (used instead of the network)
        """
        self.verify_ssl = verify_ssl
        self.max_retries = max_retries
        self.transport = transport
        self.logger = logging.getLogger("replaytap.emulator")

    def _create_client(self, timeout: float) -> httpx.AsyncClient:
        """Create HTTP client bounded by the given timeout."""
        transport = self.transport or httpx.AsyncHTTPTransport(
            verify=self.verify_ssl,
            retries=self.max_retries
        )
        return httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(timeout),
            follow_redirects=False
        )

    async def simulate(self, test_case: TestCase, test_set_id: str, timeout: float) -> HTTPResponse:
        request = test_case.http_req
        if request is None:
            raise SimulationError(f"Test case {test_case.name!r} has no HTTP request", test_case.name)

        headers = {
            k: v for k, v in request.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS
        }

        start_time = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                self._send(test_case.name, request.method, request.url, headers, request.body, timeout),
                timeout=timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise SimulationTimeoutError(
                f"{request.method} {request.url} timed out after {timeout}s",
                test_case.name
            ) from e
        except httpx.HTTPError as e:
            raise SimulationError(
                f"{request.method} {request.url} failed: {e}",
                test_case.name
            ) from e

        response.duration_ms = (time.perf_counter() - start_time) * 1000
        return response

    async def _send(
        self,
        test_case_name: str,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: str,
        timeout: float
    ) -> HTTPResponse:
        async with self._create_client(timeout) as client:
            # Recorded data can hold a URL or header httpx refuses to send
            try:
                outbound = client.build_request(
                    method=method,
                    url=url,
                    headers=headers,
                    content=body.encode('utf-8') if body else None
                )
            except (httpx.InvalidURL, TypeError, ValueError) as e:
                raise SimulationError(
                    f"{method} {url} could not be built: {e}",
                    test_case_name
                ) from e

            response = await client.send(outbound)

            return HTTPResponse(
                status_code=response.status_code,
                headers=dict(response.headers.items()),
                body=response.text
            )


class RequestEmulator:
    """
    Dispatch test cases to the emulator registered for their protocol kind.

    Unknown kinds raise UnsupportedProtocolError. With ``skip_unsupported``
    they are logged and None is returned instead.

    Example:
        emulator = RequestEmulator(api_timeout=10)
        emulator.register("Grpc", GRPCEmulator())
        response = await emulator.simulate_request(test_case, "test-set-0")
    """

    def __init__(
        self,
        api_timeout: float = 5.0,
        emulators: Optional[Dict[str, ProtocolEmulator]] = None,
        skip_unsupported: bool = False
    ):
        """
        Initialize request emulator.

        Args:
            api_timeout: Default timeout in seconds for each replayed request
            emulators: Emulators by protocol kind (defaults to HTTP only)
            skip_unsupported: Return None for unknown kinds instead of raising
        """
        self.api_timeout = api_timeout
        self.skip_unsupported = skip_unsupported
        self.logger = logging.getLogger("replaytap.emulator")
        self.emulators: Dict[str, ProtocolEmulator] = {}

        if emulators is None:
            emulators = {HTTP: HTTPEmulator()}
        for kind, emulator in emulators.items():
            self.register(kind, emulator)

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.AsyncBaseTransport] = None) -> 'RequestEmulator':
        """Create emulator from a ReplayConfig."""
        http = HTTPEmulator(
            verify_ssl=config.verify_ssl,
            max_retries=config.max_retries,
            transport=transport
        )
        return cls(
            api_timeout=config.api_timeout,
            emulators={HTTP: http},
            skip_unsupported=config.skip_unsupported
        )

    def register(self, kind: str, emulator: ProtocolEmulator):
        """Register (or replace) the emulator for a protocol kind."""
        self.emulators[kind] = emulator

    def supports(self, kind: str) -> bool:
        return kind in self.emulators

    async def simulate_request(
        self,
        test_case: TestCase,
        test_set_id: str,
        timeout: Optional[float] = None
    ) -> Optional[HTTPResponse]:
        """
        Replay a test case against the system under test.

        Args:
            test_case: Test case to replay
            test_set_id: Test set the case belongs to
            timeout: Seconds to wait for the response (defaults to api_timeout)

        Returns:
            The observed response, or None for a skipped unsupported kind

        Raises:
            UnsupportedProtocolError: No emulator for the kind (unless skipping)
            SimulationError: The request could not be completed
            SimulationTimeoutError: The system under test did not answer in time
        """
        emulator = self.emulators.get(test_case.kind)
        if emulator is None:
            if self.skip_unsupported:
                self.logger.warning(
                    f"Skipping test case {test_case.name} of unsupported kind {test_case.kind!r} "
                    f"in {test_set_id}"
                )
                return None
            raise UnsupportedProtocolError(test_case.kind, test_case.name)

        timeout = timeout if timeout is not None else self.api_timeout

        self.logger.debug(f"Before simulating the request: {test_case.name} ({test_set_id})")
        if test_case.http_req is not None:
            self.logger.debug(f"The url of the test case: {test_case.http_req.url}")

        response = await emulator.simulate(test_case, test_set_id, timeout)

        self.logger.debug(f"After simulating the request: {test_case.name}")
        return response
