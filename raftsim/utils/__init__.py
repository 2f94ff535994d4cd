"""
Utility modules for raftsim.
"""

from .logging_config import setup_logging, NodeContextFormatter, NodeLoggerAdapter, EventLogger

__all__ = [
    'setup_logging',
    'NodeContextFormatter',
    'NodeLoggerAdapter',
    'EventLogger',
]
