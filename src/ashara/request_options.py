"""Request description and per-request overrides for the REST clients."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Mapping

from .payload import FileAttachment


@dataclass(frozen=True)
class Request:
    method: str
    route: str
    payload: Any = None
    files: tuple[FileAttachment | BinaryIO, ...] = field(default=())


@dataclass(frozen=True)
class RequestOptions:
    """Overrides applied to a single ``execute`` call.

    ``cancel_event`` is honoured by the synchronous client: setting it
    interrupts rate-limit waits and backoff sleeps. ``total_timeout`` bounds
    a whole call on the asynchronous client, where cancelling the task works
    as well.
    """

    timeout: float | None = None
    max_attempts: int | None = None
    headers: Mapping[str, str] | None = None
    cancel_event: threading.Event | None = None
    total_timeout: float | None = None
