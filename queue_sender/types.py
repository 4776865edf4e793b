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

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Iterator, Literal, Protocol, TypeAlias, overload

if TYPE_CHECKING:
    from .events import Event


class LineTransport(Protocol):
    """Line-oriented byte stream owned by one writer at a time."""

    @property
    def address(self) -> str: ...

    def open(self) -> None: ...
    def is_open(self) -> bool: ...
    def set_control_lines(self, dtr: bool = False, rts: bool = False) -> None: ...
    def write_line(self, line: str) -> None: ...
    def drain(self) -> None: ...
    def read_line(self, timeout: float) -> str | None: ...
    def close(self) -> None: ...


class LineSource(Protocol):
    def __len__(self) -> int: ...
    def __iter__(self) -> Iterator[str]: ...

    @overload
    def __getitem__(self, idx: int) -> str: ...

    @overload
    def __getitem__(self, idx: slice) -> list[str]: ...


EventKind: TypeAlias = Literal["status", "log", "progress", "complete", "error"]
EventPayload: TypeAlias = dict[str, Any]

Clock: TypeAlias = Callable[[], float]
Sleeper: TypeAlias = Callable[[float], None]

# Session output for the streamer to carry out, in order.
Effect = (
    tuple[Literal["send"], int, str]
    | tuple[Literal["arm_timer"], float]
    | tuple[Literal["cancel_timer"]]
    | tuple[Literal["emit"], EventKind, EventPayload]
    | tuple[Literal["close"], bool]
)

# Receives event envelopes (see events.Event).
EventSink: TypeAlias = Callable[["Event"], None]

# Builds an unopened transport for a TransportConfig.
TransportFactory: TypeAlias = Callable[[Any], LineTransport]
