"""formpost encoder - multipart/form-data wire format.

Every part is written as:

    --<boundary>\\r\\n
    Content-Disposition: form-data; name="<name>"[; filename="<file>"]\\r\\n
    Content-Type: <mime>\\r\\n
    \\r\\n
    <payload>\\r\\n

and the body ends with ``--<boundary>--\\r\\n``.
"""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Iterable
from typing import IO

from formpost.errors import Cancelled

TWO_HYPHENS = b"--"
LINE_END = b"\r\n"
MAX_CHUNK_SIZE = 1024 * 1024
BOUNDARY_MARK = "*****"


def make_boundary() -> str:
    """Return a fresh boundary token.

    Epoch milliseconds keep the classic ``*****<millis>*****`` shape; the
    random hex suffix separates instances created in the same millisecond.
    """
    millis = int(time.time() * 1000)
    return f"{BOUNDARY_MARK}{millis}{secrets.token_hex(6)}{BOUNDARY_MARK}"


class CancelToken:
    """Thread-safe flag checked between fields and between chunks."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled("Request cancelled.")


class PlainField:
    """A named in-memory form value."""

    streaming = False
    file_name: str | None = None

    def __init__(self, name: str, mime_type: str, data: bytes):
        self.name = name
        self.mime_type = mime_type
        self.data = data
        self.stream: IO[bytes] | None = None

    @property
    def is_file(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"PlainField(name={self.name!r}, mime_type={self.mime_type!r})"


class FileField:
    """A named file-like form value, buffered or streamed from a source."""

    def __init__(
        self,
        name: str,
        mime_type: str,
        file_name: str | None,
        data: bytes | None = None,
        stream: IO[bytes] | None = None,
    ):
        self.name = name
        self.mime_type = mime_type
        self.file_name = file_name
        self.data = data
        self.stream = stream
        # Set once at construction; the payload kind never changes.
        self.streaming = stream is not None

    @property
    def is_file(self) -> bool:
        return True

    def close(self) -> None:
        if self.stream is not None and not self.stream.closed:
            self.stream.close()

    def __repr__(self) -> str:
        kind = "stream" if self.streaming else "bytes"
        return (
            f"FileField(name={self.name!r}, mime_type={self.mime_type!r}, "
            f"file_name={self.file_name!r}, payload={kind})"
        )


Field = PlainField | FileField


def render_part_header(field: Field, boundary: str) -> bytes:
    """Delimiter line, Content-Disposition, Content-Type and the blank line."""
    disposition = f'Content-Disposition: form-data; name="{field.name}"'
    if field.is_file:
        file_name = field.file_name if field.file_name is not None else ""
        disposition += f'; filename="{file_name}"'
    lines = [
        TWO_HYPHENS + boundary.encode("utf-8"),
        disposition.encode("utf-8"),
        f"Content-Type: {field.mime_type}".encode("utf-8"),
        b"",
    ]
    return LINE_END.join(lines) + LINE_END


def closing_delimiter(boundary: str) -> bytes:
    return TWO_HYPHENS + boundary.encode("utf-8") + TWO_HYPHENS + LINE_END


def copy_stream(
    source: IO[bytes],
    out: IO[bytes],
    chunk_size: int = MAX_CHUNK_SIZE,
    cancel: CancelToken | None = None,
) -> int:
    """Copy source to out in chunks of at most chunk_size bytes.

    Reads until the source returns an empty chunk. Only the bytes actually
    read are written. Returns the number of bytes copied.
    """
    chunk_size = max(1, min(chunk_size, MAX_CHUNK_SIZE))
    total = 0
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()
        chunk = source.read(chunk_size)
        if not chunk:
            break
        out.write(chunk)
        total += len(chunk)
    return total


def write_field(
    field: Field,
    boundary: str,
    out: IO[bytes],
    chunk_size: int = MAX_CHUNK_SIZE,
    cancel: CancelToken | None = None,
) -> None:
    out.write(render_part_header(field, boundary))
    if field.streaming:
        copy_stream(field.stream, out, chunk_size=chunk_size, cancel=cancel)
    else:
        out.write(field.data)
    out.write(LINE_END)


def write_body(
    fields: Iterable[Field],
    boundary: str,
    out: IO[bytes],
    chunk_size: int = MAX_CHUNK_SIZE,
    cancel: CancelToken | None = None,
) -> None:
    """Serialize every field in order, then the closing delimiter."""
    for field in fields:
        if cancel is not None:
            cancel.raise_if_cancelled()
        write_field(field, boundary, out, chunk_size=chunk_size, cancel=cancel)
    out.write(closing_delimiter(boundary))
