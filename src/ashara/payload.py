"""JSON and multipart body encoding for outgoing requests."""

from __future__ import annotations

import json
import os
import re
import types
from dataclasses import dataclass
from typing import Any, BinaryIO, Collection, Mapping, Sequence, Union, get_args, get_origin

import httpx
from pydantic import BaseModel

from .buffers import BufferPool, BufferWriter
from .exceptions import AsharaAttachmentError, AsharaEncodingError

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_OCTET_STREAM = "application/octet-stream"
PAYLOAD_JSON_FIELD = "payload_json"
FILE_CHUNK_SIZE = 64 * 1024

# A string literal, optionally followed by ``:null`` (an object key set to
# null), or a single-element array holding null.
_JSON_TOKEN = re.compile(rb'"(?:[^"\\]|\\.)*"(?P<null_value>\s*:\s*null\b)?|\[\s*null\s*\]')
_ARRAY_TYPES = (list, tuple, set, frozenset)


@dataclass(frozen=True)
class FileAttachment:
    """A file to upload alongside a request.

    The stream belongs to the caller: it is read once, from its current
    position, while the body is encoded and is never closed here.
    """

    name: str
    stream: BinaryIO
    size: int | None = None

    @classmethod
    def from_file(cls, file: BinaryIO) -> "FileAttachment":
        name = getattr(file, "name", None)
        if not isinstance(name, str) or not name:
            raise ValueError("file object has no usable name")
        size = os.fstat(file.fileno()).st_size
        return cls(name=os.path.basename(name), stream=file, size=size)


@dataclass(frozen=True)
class EncodedBody:
    content: bytes = b""
    content_type: str | None = None


def patch_null_arrays(raw: bytes, array_fields: Collection[str] = ()) -> bytes:
    """Rewrite null arrays in serialized JSON to empty arrays.

    ``[null]`` always becomes ``[]``; ``"key":null`` becomes ``"key":[]`` when
    ``key`` is listed in ``array_fields``. Content of string values is left
    untouched and the rewrite is idempotent.
    """
    keys = {json.dumps(name, ensure_ascii=False).encode("utf-8") for name in array_fields}

    def swap(match: re.Match[bytes]) -> bytes:
        token = match.group(0)
        if token.startswith(b"["):
            return b"[]"
        if match.group("null_value") is None:
            return token
        key = token[: match.start("null_value") - match.start()]
        if key in keys:
            return key + b":[]"
        return token

    return _JSON_TOKEN.sub(swap, raw)


def _is_array_annotation(annotation: Any) -> bool:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        return any(_is_array_annotation(arg) for arg in get_args(annotation) if arg is not type(None))
    return origin in _ARRAY_TYPES or annotation in _ARRAY_TYPES


def _array_field_names(model: BaseModel) -> frozenset[str]:
    names = set()
    for name, field in type(model).model_fields.items():
        if _is_array_annotation(field.annotation):
            names.add(field.serialization_alias or field.alias or name)
    return frozenset(names)


def _resolve_attachment(index: int, file: FileAttachment | BinaryIO) -> FileAttachment:
    if isinstance(file, FileAttachment):
        return file
    try:
        return FileAttachment.from_file(file)
    except (OSError, ValueError, AttributeError) as exc:
        raise AsharaAttachmentError(
            f"failed to read metadata of file[{index}]: {exc}",
            index=index,
            cause=exc,
        ) from exc


def _read_stream(index: int, attachment: FileAttachment, pool: BufferPool) -> bytes:
    with BufferWriter(pool, attachment.size or 0) as writer:
        while True:
            try:
                chunk = attachment.stream.read(FILE_CHUNK_SIZE)
            except (OSError, ValueError) as exc:
                raise AsharaEncodingError(
                    f'failed to encode file[{index}] "{attachment.name}" into multipart payload: {exc}',
                    cause=exc,
                ) from exc
            if not chunk:
                return writer.getvalue()
            if not isinstance(chunk, (bytes, bytearray, memoryview)):
                raise AsharaEncodingError(f'file[{index}] "{attachment.name}" must be opened in binary mode')
            writer.write(chunk)


class PayloadCodec:
    """Turns a structured payload and optional attachments into request bytes."""

    def __init__(self, pool: BufferPool | None = None) -> None:
        self.pool = pool or BufferPool()

    def encode(
        self,
        payload: Any = None,
        files: Sequence[FileAttachment | BinaryIO] | None = None,
    ) -> EncodedBody:
        if files:
            return self.encode_multipart(payload, files)
        if payload is None:
            return EncodedBody()
        return EncodedBody(self.encode_json(payload), CONTENT_TYPE_JSON)

    def encode_json(self, payload: Any) -> bytes:
        array_fields: frozenset[str] = frozenset()
        try:
            if isinstance(payload, BaseModel):
                array_fields = _array_field_names(payload)
                payload = payload.model_dump(mode="json", by_alias=True, exclude_unset=True)
            elif isinstance(payload, Mapping):
                payload = dict(payload)
            raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise AsharaEncodingError(f"failed to serialize payload to JSON: {exc}", cause=exc) from exc
        return patch_null_arrays(raw, array_fields)

    def encode_multipart(
        self,
        payload: Any,
        files: Sequence[FileAttachment | BinaryIO],
    ) -> EncodedBody:
        """Render ``payload_json`` and ``files[i]`` parts into a single body.

        Every stream is read up front so the returned bytes can be re-sent on
        each attempt.
        """
        attachments = [_resolve_attachment(index, file) for index, file in enumerate(files)]
        fields: list[tuple[str, tuple[str | None, bytes, str]]] = []
        if payload is not None:
            fields.append((PAYLOAD_JSON_FIELD, (None, self.encode_json(payload), CONTENT_TYPE_JSON)))
        for index, attachment in enumerate(attachments):
            content = _read_stream(index, attachment, self.pool)
            fields.append((f"files[{index}]", (attachment.name, content, CONTENT_TYPE_OCTET_STREAM)))

        try:
            rendered = httpx.Request("POST", "/", files=fields)
            content = rendered.read()
        except (TypeError, ValueError) as exc:
            raise AsharaEncodingError(f"failed to build multipart payload: {exc}", cause=exc) from exc
        return EncodedBody(content, rendered.headers["Content-Type"])
