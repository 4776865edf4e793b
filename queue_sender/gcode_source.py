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

"""Command sequences and job metadata handed over by G-code producers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from .utils.constants import COMMENT_PREFIX, JOB_TYPE_DEFAULT


def clean_command_line(line: str) -> str:
    """Strip whitespace and BOM; comment lines become empty."""
    line = line.replace("\ufeff", "").strip()
    if line.startswith(COMMENT_PREFIX):
        return ""
    return line


class CommandSequence:
    """Immutable, ordered list of streamable command lines."""

    __slots__ = ("_lines",)

    def __init__(self, lines: Iterable[str] = ()):
        cleaned = (clean_command_line(str(ln)) for ln in lines)
        self._lines: tuple[str, ...] = tuple(ln for ln in cleaned if ln)

    @classmethod
    def from_text(cls, text: str) -> "CommandSequence":
        return cls(text.splitlines())

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "CommandSequence":
        return cls(lines)

    @classmethod
    def from_file(cls, path: str, encoding: str = "utf-8") -> "CommandSequence":
        with open(path, "r", encoding=encoding, errors="replace") as f:
            return cls(f)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)

    def __getitem__(self, idx):
        if isinstance(idx, slice):
            return list(self._lines[idx])
        return self._lines[idx]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CommandSequence):
            return self._lines == other._lines
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._lines)

    def __repr__(self) -> str:
        return f"CommandSequence({len(self._lines)} lines)"

    @property
    def lines(self) -> tuple[str, ...]:
        return self._lines

    def to_text(self) -> str:
        return "\n".join(self._lines)


@dataclass
class JobMetadata:
    """Producer supplied description of a command sequence."""

    job_type: str = JOB_TYPE_DEFAULT
    total_lines: int = 0
    estimated_duration_s: float | None = None
    created_at: float = field(default_factory=time.time)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.job_type,
            "totalLines": self.total_lines,
            "estimatedDurationSeconds": self.estimated_duration_s,
            "createdAt": self.created_at,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobMetadata":
        duration = data.get("estimatedDurationSeconds")
        return cls(
            job_type=str(data.get("type") or JOB_TYPE_DEFAULT),
            total_lines=int(data.get("totalLines") or 0),
            estimated_duration_s=float(duration) if duration is not None else None,
            created_at=float(data.get("createdAt") or time.time()),
            extra=dict(data.get("extra") or {}),
        )
