"""
ReplayTap

Replay recorded HTTP test sets against a system under test and decide,
field by field and with configurable noise, whether each interaction matches.
"""

__version__ = '1.0.0'
