"""Utility modules for Queue Sender."""

from .constants import *
from .exceptions import *
from .validation import *
from .config import Settings, StreamTimings, get_settings_path

__all__ = [
    # Config
    "Settings",
    "StreamTimings",
    "get_settings_path",
]
