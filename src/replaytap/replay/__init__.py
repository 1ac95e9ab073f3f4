"""
ReplayTap Replay Module

Replays recorded test sets against a system under test and judges each
replayed interaction.

This module provides:
- Noise configuration and merging (global + per-test-set)
- Protocol-dispatching request emulation
- Noise-aware response comparison
- Per-test-set verdicts and mock usage reporting
"""

from .replayer import TestSetReplayer, TestSetResult, TestCaseResult
from .replay_config import ReplayConfig, NoiseConfig, merge_noise
from .emulator import RequestEmulator, ProtocolEmulator, HTTPEmulator
from .comparator import ResponseComparator, ComparisonResult
from .verdict import VerdictAggregator, TestSetVerdict
from .reporter import ResultReporter, MockUsageRecord

__all__ = [
    # Replayer
    'TestSetReplayer',
    'TestSetResult',
    'TestCaseResult',

    # Configuration
    'ReplayConfig',
    'NoiseConfig',
    'merge_noise',

    # Emulation
    'RequestEmulator',
    'ProtocolEmulator',
    'HTTPEmulator',

    # Judging
    'ResponseComparator',
    'ComparisonResult',
    'VerdictAggregator',
    'TestSetVerdict',
    'ResultReporter',
    'MockUsageRecord',
]

__version__ = '1.0.0'
