"""Validation utilities for Queue Sender.

This module provides validation functions for connection parameters and
timing values supplied by callers or loaded from settings.
"""

from .constants import VALID_BAUD_RATES
from .exceptions import InvalidParameterError


def validate_port_name(port: str) -> str:
    """Validate serial port name.

    Args:
        port: Serial port name (e.g., "COM3" or "/dev/ttyUSB0")

    Returns:
        The validated port name

    Raises:
        InvalidParameterError: If port name is invalid
    """
    if not port or not isinstance(port, str):
        raise InvalidParameterError("port", port, "must be non-empty string")

    port = port.strip()
    if not port:
        raise InvalidParameterError("port", port, "must be non-empty")

    return port


def validate_baud_rate(baud: int) -> int:
    """Validate baud rate.

    Args:
        baud: Baud rate value

    Returns:
        The validated baud rate

    Raises:
        InvalidParameterError: If baud rate is invalid
    """
    try:
        baud = int(baud)
    except (TypeError, ValueError):
        raise InvalidParameterError("baud_rate", baud, "must be integer")

    if baud not in VALID_BAUD_RATES:
        raise InvalidParameterError(
            "baud_rate",
            baud,
            f"must be one of {list(VALID_BAUD_RATES)}"
        )

    return baud


def validate_interval(interval: float, min_val: float = 0.0, name: str = "interval") -> float:
    """Validate time interval.

    Args:
        interval: Time interval in seconds
        min_val: Minimum allowed value (default 0.0)
        name: Parameter name used in the error message

    Returns:
        The validated interval

    Raises:
        InvalidParameterError: If interval is invalid
    """
    try:
        interval = float(interval)
    except (TypeError, ValueError):
        raise InvalidParameterError(name, interval, "must be numeric")

    if interval < min_val:
        raise InvalidParameterError(
            name,
            interval,
            f"must be >= {min_val}"
        )

    return interval


def validate_positive_int(value: int, name: str) -> int:
    """Validate a strictly positive integer (limits, counts)."""
    if isinstance(value, bool):
        raise InvalidParameterError(name, value, "must be integer")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(name, value, "must be integer")

    if value < 1:
        raise InvalidParameterError(name, value, "must be >= 1")

    return value
