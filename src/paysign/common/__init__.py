"""Common utilities for paysign."""

from paysign.common.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
