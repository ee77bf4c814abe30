"""
Utility Module for the Invoice Reconciler.

Shared infrastructure used by every other package:
    - Logging configuration
    - Exception hierarchy
    - Money and filesystem helpers
"""

from .logger import setup_logger, get_logger, setup_logger_from_config
from .helpers import ensure_directory, generate_timestamp, round_money, to_decimal

__all__ = [
    'setup_logger',
    'get_logger',
    'setup_logger_from_config',
    'ensure_directory',
    'generate_timestamp',
    'round_money',
    'to_decimal',
]
