"""Rate-limit-aware REST pipeline for the Discord HTTP API."""

from .buffers import BufferPool, BufferWriter
from .client import VERSION as __version__
from .client import AsyncRestClient, RestClient
from .exceptions import (
    AsharaAttachmentError,
    AsharaAuthError,
    AsharaCancelledError,
    AsharaEncodingError,
    AsharaError,
    AsharaHTTPError,
    AsharaRateLimitError,
    AsharaRetriesExhaustedError,
    AsharaTimeoutError,
    AsharaTransportError,
    AsharaValidationError,
)
from .gate import AsyncRateGate, RateGate
from .payload import EncodedBody, FileAttachment, PayloadCodec
from .request_options import Request, RequestOptions

__all__ = [
    "AsharaAttachmentError",
    "AsharaAuthError",
    "AsharaCancelledError",
    "AsharaEncodingError",
    "AsharaError",
    "AsharaHTTPError",
    "AsharaRateLimitError",
    "AsharaRetriesExhaustedError",
    "AsharaTimeoutError",
    "AsharaTransportError",
    "AsharaValidationError",
    "AsyncRateGate",
    "AsyncRestClient",
    "BufferPool",
    "BufferWriter",
    "EncodedBody",
    "FileAttachment",
    "PayloadCodec",
    "RateGate",
    "Request",
    "RequestOptions",
    "RestClient",
    "__version__",
]
