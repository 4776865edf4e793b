#!/usr/bin/env python3
# Queue Sender (GRBL G-code Queue Sender)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Custom exceptions for Queue Sender.

This module defines specific exception types for transport, streaming,
queue and settings failures so callers can tell a bad cable from a bad
configuration.
"""

from typing import Any, Optional


class QueueSenderException(Exception):
    """Base exception for all Queue Sender errors."""
    pass


# ============================================================================
# TRANSPORT EXCEPTIONS
# ============================================================================

class TransportException(QueueSenderException):
    """Base exception for serial transport errors."""
    pass


class PortOpenError(TransportException):
    """Device unavailable, busy or misconfigured."""

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.address = address


class WriteError(TransportException):
    """Failed to write a line to the transport."""
    pass


class DrainError(TransportException):
    """Failed to flush the host-side output buffer."""
    pass


class TransportClosedError(TransportException):
    """Operation attempted on (or interrupted by) a closed transport."""
    pass


class TransportBusyError(TransportException):
    """Transport is already leased by another owner."""
    pass


# ============================================================================
# STREAMING EXCEPTIONS
# ============================================================================

class StreamException(QueueSenderException):
    """Base exception for streaming protocol conditions."""
    pass


class AckTimeout(StreamException):
    """No response to the line in flight before its deadline."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        super().__init__(message)
        self.line_number = line_number


class CorruptionDetected(StreamException):
    """Received line looks like serial noise."""
    pass


class ControllerResetDetected(StreamException):
    """Firmware startup banner received after transmission started."""
    pass


class ControllerUnresponsive(StreamException):
    """Too many consecutive acknowledgment timeouts."""
    pass


# ============================================================================
# QUEUE EXCEPTIONS
# ============================================================================

class QueueException(QueueSenderException):
    """Base exception for job queue errors."""
    pass


class QueueStateError(QueueException):
    """Queue operation rejected in the current queue state."""
    pass


class JobNotFoundError(QueueException):
    """No job with the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobStoreError(QueueException):
    """Failed to read or write the persisted queue."""
    pass


# ============================================================================
# SETTINGS EXCEPTIONS
# ============================================================================

class SettingsException(QueueSenderException):
    """Base exception for settings errors."""
    pass


class SettingsLoadError(SettingsException):
    """Failed to load settings file."""
    pass


class SettingsSaveError(SettingsException):
    """Failed to save settings file."""
    pass


class SettingsValidationError(SettingsException):
    """Settings validation failed."""
    pass


# ============================================================================
# VALIDATION EXCEPTIONS
# ============================================================================

class ValidationException(QueueSenderException):
    """Base exception for validation errors."""
    pass


class InvalidParameterError(ValidationException):
    """Invalid parameter value."""

    def __init__(self, parameter_name: str, value: Any, reason: Optional[str] = None):
        self.parameter_name = parameter_name
        self.value = value
        self.reason = reason

        message = f"Invalid value for '{parameter_name}': {value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
