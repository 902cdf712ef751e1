"""
Core module initialization.
Exports configuration and logging utilities.
"""

from app.core.config import (
    BackorderPolicy,
    EnvironmentMode,
    QueueConfig,
    RealtimeBackend,
    Settings,
    get_settings,
    setup_logging,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "BackorderPolicy",
    "QueueConfig",
    "RealtimeBackend",
]
