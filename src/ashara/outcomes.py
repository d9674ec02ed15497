"""Result of a single HTTP attempt."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .exceptions import AsharaError


@dataclass(frozen=True)
class Success:
    body: bytes


@dataclass(frozen=True)
class SuccessEmpty:
    body: bytes = b""


@dataclass(frozen=True)
class RetryableFailure:
    reason: str
    error: AsharaError | None = None


@dataclass(frozen=True)
class TerminalFailure:
    error: AsharaError


AttemptOutcome = Union[Success, SuccessEmpty, RetryableFailure, TerminalFailure]
