"""
ReplayTap URL Utilities

URL helpers for pointing captured requests at a different host at replay time.
"""

from urllib.parse import urlsplit, urlunsplit
from typing import Tuple

from ..errors import ParseError, MissingTargetHostError


def split_authority(netloc: str) -> Tuple[str, str, str]:
    """
    Split a URL authority into its components.

    Args:
        netloc: Authority as returned by urlsplit (``user:pw@host:port``)

    Returns:
        Tuple of (userinfo, host, port) where userinfo and port are empty
        strings when absent. IPv6 hosts keep their brackets.
    """
    userinfo, at, hostport = netloc.rpartition('@')
    if not at:
        userinfo = ''

    if hostport.startswith('['):
        end = hostport.find(']')
        if end == -1:
            raise ValueError(f"Unterminated IPv6 address in {netloc!r}")
        host = hostport[:end + 1]
        rest = hostport[end + 1:]
        port = rest[1:] if rest.startswith(':') else ''
        return userinfo, host, port

    host, colon, port = hostport.partition(':')
    return userinfo, host, port if colon else ''


def replace_host(original_url: str, new_host: str) -> str:
    """
    Replace the hostname of a URL, keeping everything else intact.

    Scheme, userinfo, port, path, query and fragment are preserved.

    Args:
        original_url: URL recorded at capture time
        new_host: Host (name or IP) to send the request to instead

    Returns:
        The URL with its hostname replaced

    Raises:
        ParseError: If the URL cannot be parsed; ``err.url`` holds the
            original URL so callers can fall back to it
        MissingTargetHostError: If ``new_host`` is empty

    Example:
        replace_host("http://old-host:8080/path?x=1", "10.0.0.5")
        # -> "http://10.0.0.5:8080/path?x=1"
    """
    try:
        parsed = urlsplit(original_url)
        # Validates the port as a side effect
        parsed.port
        userinfo, host, port = split_authority(parsed.netloc)
    except ValueError as e:
        raise ParseError(original_url, str(e)) from e

    if not host:
        raise ParseError(original_url, "no host in URL")

    if not new_host:
        raise MissingTargetHostError(original_url)

    if ':' in new_host and not new_host.startswith('['):
        new_host = f"[{new_host}]"

    netloc = new_host
    if userinfo:
        netloc = f"{userinfo}@{netloc}"
    if port:
        netloc = f"{netloc}:{port}"

    return urlunsplit((
        parsed.scheme,
        netloc,
        parsed.path,
        parsed.query,
        parsed.fragment
    ))
