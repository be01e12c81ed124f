"""formpost request - the multipart request builder."""

from __future__ import annotations

import codecs
import io
import logging
import os
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, Future
from typing import Any

from formpost.connection import DEFAULT_TIMEOUT, Connection, open_connection
from formpost.encoder import MAX_CHUNK_SIZE, CancelToken, Field, FileField, PlainField, make_boundary
from formpost.errors import FileNotFound, InvalidArgument, RequestStateError
from formpost.executor import PostResult, execute_post

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
DEFAULT_USER_AGENT = f"formpost/{VERSION}"
TEXT_ENCODING = "utf-8"
FIXED_HEADERS = frozenset({"method", "content-type", "host", "content-length"})

_BYTES_TYPES = (bytes, bytearray, memoryview)
_FORBIDDEN_HEADER_CHARS = ('"', "\r", "\n")


def _require(**kwargs: Any) -> None:
    missing = [name for name, value in kwargs.items() if value is None]
    if missing:
        raise InvalidArgument(f"Missing required argument(s): {', '.join(missing)}")


def _check_header_text(**kwargs: Any) -> None:
    # Values land inside a quoted part header.
    for label, value in kwargs.items():
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidArgument(f"{label} must be a str, got {type(value).__name__}")
        if any(c in value for c in _FORBIDDEN_HEADER_CHARS):
            raise InvalidArgument(f"{label} may not contain quotes or line breaks: {value!r}")


def _to_bytes(data: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(data, str):
        return data.encode(TEXT_ENCODING)
    return bytes(data)


class MultipartRequest:
    """Collects form fields and headers, then POSTs them once.

    Fields are written in the order they were added. The boundary is
    generated when the request is created and shared by every part of its
    single execution.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float | None = DEFAULT_TIMEOUT,
        chunk_size: int = MAX_CHUNK_SIZE,
        response_encoding: str = "utf-8",
        connection_factory: Callable[..., Connection] | None = None,
    ):
        try:
            codecs.lookup(response_encoding)
        except LookupError as e:
            raise InvalidArgument(f"Unknown response encoding: {response_encoding}") from e
        if chunk_size < 1:
            raise InvalidArgument("chunk_size must be positive")

        self.boundary = make_boundary()
        self.timeout = timeout
        self.chunk_size = min(chunk_size, MAX_CHUNK_SIZE)
        self.response_encoding = response_encoding
        self.connection_factory = connection_factory or open_connection
        self._fields: list[Field] = []
        self._headers: dict[str, str] = {
            "connection": "Keep-Alive",
            "user-agent": user_agent,
        }
        self._executed = False

    # ── Fields ───────────────────────────────────────────────────────────

    @property
    def fields(self) -> tuple[Field, ...]:
        return tuple(self._fields)

    def add_field(self, name: str, mime_type: str, data: str | bytes) -> None:
        """Add a plain field. Text is encoded as UTF-8."""
        _require(name=name, mime_type=mime_type, data=data)
        _check_header_text(name=name, mime_type=mime_type)
        if not isinstance(data, (str, *_BYTES_TYPES)):
            raise InvalidArgument(
                f"Field {name!r}: expected str or bytes, got {type(data).__name__}",
            )
        self._fields.append(PlainField(name, mime_type, _to_bytes(data)))

    def add_file(
        self,
        name: str,
        mime_type: str,
        file_name: str | None,
        data: Any,
    ) -> None:
        """Add a file-like field.

        data may be:
          - bytes (or str, encoded as UTF-8): sent from memory
          - an os.PathLike: opened now and streamed at execution
          - a readable binary stream: streamed at execution
        file_name is required for the two streaming forms.
        """
        _require(name=name, mime_type=mime_type, data=data)
        _check_header_text(name=name, mime_type=mime_type, file_name=file_name)

        if isinstance(data, (str, *_BYTES_TYPES)):
            self._fields.append(FileField(name, mime_type, file_name, data=_to_bytes(data)))
            return

        _require(file_name=file_name)
        if isinstance(data, os.PathLike):
            try:
                stream = open(data, "rb")  # noqa: SIM115
            except FileNotFoundError as e:
                raise FileNotFound(f"No such file for field {name!r}: {os.fspath(data)}") from e
            self._fields.append(
                FileField(name, mime_type, file_name, stream=stream),
            )
            return

        if isinstance(data, io.TextIOBase):
            raise InvalidArgument(f"Field {name!r}: stream must be opened in binary mode")

        if callable(getattr(data, "read", None)):
            self._fields.append(FileField(name, mime_type, file_name, stream=data))
            return

        raise InvalidArgument(
            f"Field {name!r}: expected bytes, a path or a readable stream, "
            f"got {type(data).__name__}",
        )

    def add_fields(self, values: Mapping[str, str | bytes]) -> None:
        """Add several plain fields in mapping order."""
        if values is None:
            raise InvalidArgument("Missing required argument(s): values")
        for name, value in values.items():
            mime = "text/plain" if isinstance(value, str) else "application/octet-stream"
            self.add_field(name, mime, value)

    # ── Headers ──────────────────────────────────────────────────────────

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def set_header(self, name: str, value: str) -> None:
        _require(name=name, value=value)
        lower_name = name.lower()
        if lower_name in FIXED_HEADERS:
            logger.warning('Cannot change "%s" header', name)
            return
        self._headers[lower_name] = value

    def unset_header(self, name: str) -> None:
        _require(name=name)
        self._headers.pop(name.lower(), None)

    # ── Execution ────────────────────────────────────────────────────────

    def execute(self, url: str, cancel: CancelToken | None = None) -> PostResult:
        """POST the accumulated fields to url. Runs once per request."""
        _require(url=url)
        if self._executed:
            raise RequestStateError("MultipartRequest has already been executed.")
        self._executed = True
        return execute_post(
            url,
            self.fields,
            self.boundary,
            self.headers,
            connection_factory=self.connection_factory,
            timeout=self.timeout,
            chunk_size=self.chunk_size,
            response_encoding=self.response_encoding,
            cancel=cancel,
        )

    def submit(
        self,
        url: str,
        executor: Executor,
        cancel: CancelToken | None = None,
    ) -> Future[PostResult]:
        """Run execute() on the given executor and return its future."""
        return executor.submit(self.execute, url, cancel)
