"""
ReplayTap Data Model

Test cases as loaded from a test set, and the responses observed when
replaying them.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

# Protocol kinds
HTTP = "Http"

NoiseMap = Dict[str, Dict[str, List[str]]]


@dataclass(frozen=True)
class HTTPRequest:
    """A captured HTTP request."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HTTPRequest':
        """Create request from a test-case ``req`` section."""
        return cls(
            method=str(data.get('method', 'GET')).upper(),
            url=data.get('url', ''),
            headers=_headers(data.get('header') or data.get('headers')),
            body=_body_text(data.get('body'))
        )


@dataclass
class HTTPResponse:
    """A response, either expected (captured) or observed on replay."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    duration_ms: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HTTPResponse':
        """Create response from a test-case ``resp`` section."""
        return cls(
            status_code=int(data.get('status_code', data.get('status', 0)) or 0),
            headers=_headers(data.get('header') or data.get('headers')),
            body=_body_text(data.get('body')),
            duration_ms=float(data.get('duration_ms', 0) or 0)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'status_code': self.status_code,
            'headers': dict(self.headers),
            'body': self.body,
            'duration_ms': round(self.duration_ms, 2)
        }


@dataclass(frozen=True)
class TestCase:
    """
    A captured request with its expected response.

    ``kind`` selects the protocol emulator used to replay it. ``noise`` holds
    test-case level noise in the same shape as a NoiseMap.
    """

    __test__ = False  # not a pytest class

    name: str
    kind: str = HTTP
    http_req: Optional[HTTPRequest] = None
    http_resp: Optional[HTTPResponse] = None
    noise: NoiseMap = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TestCase':
        """
        Create test case from a loaded document.

        Two shapes are accepted:
        - Test-case shape: {"kind", "name", "spec": {"req", "resp", "noise"}}
        - Flat capture shape: {"method", "url", "req_headers", "req_body",
          "status", "resp_headers", "resp_body"}
        """
        if 'spec' in data:
            spec = data.get('spec') or {}
            return cls(
                name=data.get('name', 'unnamed'),
                kind=data.get('kind', HTTP),
                http_req=HTTPRequest.from_dict(spec.get('req') or {}),
                http_resp=HTTPResponse.from_dict(spec.get('resp') or {}),
                noise=_noise_section(spec.get('noise'))
            )

        return cls(
            name=data.get('name') or f"{data.get('method', 'GET')} {data.get('url', '')}",
            kind=data.get('kind', HTTP),
            http_req=HTTPRequest(
                method=str(data.get('method', 'GET')).upper(),
                url=data.get('url', ''),
                headers=_headers(data.get('req_headers')),
                body=_body_text(data.get('req_body'))
            ),
            http_resp=HTTPResponse(
                status_code=int(data.get('status', 0) or 0),
                headers=_headers(data.get('resp_headers')),
                body=_body_text(data.get('resp_body')),
                duration_ms=float(data.get('duration_ms', 0) or 0)
            )
        )


def _headers(headers: Any) -> Dict[str, str]:
    # YAML reads "X-Retry: 3" as an int; repeated headers may come as lists
    result = {}
    for name, value in (headers or {}).items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        result[str(name)] = "" if value is None else str(value)
    return result


def _body_text(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, (dict, list)):
        return json.dumps(body)
    return str(body)


def _noise_section(noise: Any) -> NoiseMap:
    # Test cases may list noised fields as a plain list: ["body.ts", "header.Date"]
    if not noise:
        return {}
    if isinstance(noise, list):
        result: NoiseMap = {'body': {}, 'header': {}}
        for entry in noise:
            scope, _, name = str(entry).partition('.')
            if scope in result and name:
                result[scope][name] = []
        return result
    return {scope: dict(fields or {}) for scope, fields in noise.items()}
