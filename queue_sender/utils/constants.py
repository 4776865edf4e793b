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

"""Constants and configuration values for Queue Sender.

This module centralizes timing values, protocol markers and limits used
by the transport, the streaming engine and the job queue.
"""

import re

# ============================================================================
# SERIAL COMMUNICATION CONSTANTS
# ============================================================================

BAUD_DEFAULT = 115200
"""Default baud rate for GRBL serial communication."""

PORT_DEFAULT = "/dev/ttyUSB0"
"""Serial device used when no port is configured."""

VALID_BAUD_RATES = (9600, 19200, 38400, 57600, 115200, 230400)
"""Baud rates accepted for GRBL controllers."""

SERIAL_TIMEOUT = 0.1
"""Read timeout (seconds) for a single serial read call."""

SERIAL_WRITE_TIMEOUT = 0.5
"""Write timeout (seconds) for serial writes."""

LINE_TERMINATOR = "\n"
"""Terminator appended to every outgoing command line."""

RX_DELIMITER = b"\n"
"""Delimiter used to split received bytes into lines (trailing CR stripped)."""

RX_BUFFER_LIMIT = 4096
"""Maximum bytes buffered without a delimiter before the partial line is flushed."""

# ============================================================================
# CONNECTION TIMING
# ============================================================================

SETTLE_DELAY = 0.5
"""Pause (seconds) after closing a port before reopening it."""

STREAM_BOOT_DELAY = 3.0
"""Firmware boot window (seconds) before the first streamed line."""

PERSISTENT_BOOT_DELAY = 2.5
"""Firmware boot window (seconds) after opening the persistent connection."""

COMMAND_BOOT_DELAY = 2.0
"""Firmware boot window (seconds) for a short-lived single-command connection."""

PERSISTENT_RESPONSE_WINDOW = 1.0
"""Seconds spent collecting replies to a command on the persistent connection."""

COMMAND_RESPONSE_WINDOW = 1.5
"""Seconds spent collecting replies on a short-lived command connection."""

# ============================================================================
# STREAMING PROTOCOL
# ============================================================================

RESPONSE_TIMEOUT = 3.0
"""Per-line acknowledgment deadline (seconds)."""

MAX_CONSECUTIVE_TIMEOUTS = 5
"""Consecutive line timeouts tolerated before the controller is declared unresponsive."""

COMPLETION_GRACE_DELAY = 1.0
"""Delay (seconds) between the completion event and closing the port."""

CORRUPTION_MIN_LENGTH = 20
"""Received lines must be longer than this to be considered corrupted."""

CORRUPTION_PAT = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]|\?{3,}")
"""Control characters or runs of question marks that indicate line noise."""

ACK_TOKENS = ("ok", "done")
"""Case-insensitive substrings that acknowledge the line in flight."""

ERROR_PREFIX = "error:"
"""Prefix (case-insensitive) of a GRBL error response."""

BANNER_TOKENS = ("Grbl", "['$' for help]")
"""Substrings that together identify the GRBL startup banner."""

COMMENT_PREFIX = ";"
"""Lines starting with this prefix are comments and never streamed."""

# ============================================================================
# QUEUE
# ============================================================================

JOB_TYPE_DEFAULT = "gcode"
"""Job type tag used when the producer supplies none."""

QUEUE_FILENAME = "queue.json"
"""Filename of the persisted job queue inside the settings directory."""

WORKER_THREAD_NAME = "QueueSender-Worker"
"""Name of the background queue processing thread."""

THREAD_JOIN_TIMEOUT = 0.5
"""Seconds to wait for a worker thread to finish."""

# ============================================================================
# EVENTS
# ============================================================================

EVENT_QUEUE_MAXSIZE = 3000
"""Maximum number of events buffered per push observer before dropping."""

STATUS_LOG_TAIL = 200
"""Number of recent log messages kept by the pull status board."""

# ============================================================================
# SETTINGS
# ============================================================================

SETTINGS_FILENAME = "settings.json"
"""Filename of the settings file."""

SETTINGS_BACKUP_SUFFIX = ".bak"
"""Suffix of the settings backup file."""

SETTINGS_TEMP_SUFFIX = ".tmp"
"""Suffix of the temporary file used for atomic saves."""

CONFIG_DIR_ENV = "QUEUE_SENDER_CONFIG_DIR"
"""Environment variable overriding the settings directory."""
