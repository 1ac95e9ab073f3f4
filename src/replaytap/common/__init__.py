"""
ReplayTap Common Utilities

Shared utilities and helpers used across ReplayTap modules.
"""

from .utils import TestSetLoader, load_test_set, parse_json_body
from .url_utils import replace_host, split_authority

__all__ = [
    'TestSetLoader',
    'load_test_set',
    'parse_json_body',
    'replace_host',
    'split_authority',
]
