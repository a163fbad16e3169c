# config
"""
Configuration Module

Modules:
- settings.py: layered Settings (defaults -> YAML -> environment)
- logging.py: structlog configuration (stderr only)

Usage:
    from sfmcp.foundation.config import get_setting, get_logger
"""

from .logging import configure_logging, get_logger
from .settings import Settings, get_setting, get_settings

__all__ = [
    "Settings",
    "configure_logging",
    "get_logger",
    "get_setting",
    "get_settings",
]
