"""
Utility helpers.
"""
from mechanics_sync.utils.logging import LogContext, setup_logging

__all__ = ["setup_logging", "LogContext"]
