"""
Utils Package for the RepForm engine.
"""

from .channel import EventChannel
from .logger import SessionLogger, LogLevel, LogCategory

__all__ = [
    'EventChannel',
    'SessionLogger', 'LogLevel', 'LogCategory',
]
