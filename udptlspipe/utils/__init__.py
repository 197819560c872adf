"""
Utility modules for the pipe client.
Includes configuration, logging setup and the diagnostics facade.
"""

from udptlspipe.utils.config import ConfigManager, PipeConfiguration
from udptlspipe.utils.diagnostics import Diagnostics, LogLevel
from udptlspipe.utils.logging_setup import setup_logging

__all__ = [
    'ConfigManager',
    'PipeConfiguration',
    'Diagnostics',
    'LogLevel',
    'setup_logging'
]
