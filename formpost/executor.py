"""formpost executor - runs one multipart POST over a connection."""

import codecs
import logging
import time
from collections.abc import Callable, Sequence
from typing import IO

from formpost.connection import Connection, host_header, open_connection
from formpost.encoder import MAX_CHUNK_SIZE, CancelToken, Field, write_body
from formpost.errors import (
    Cancelled,
    ConnectionError,
    FormPostError,
    ReceiveError,
    SendError,
    UnexpectedError,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class PostResult:
    """Result of a multipart POST."""

    def __init__(self):
        self.status_code: int = 0
        self.headers: dict[str, str] = {}
        self.text: str = ""
        self.elapsed_ms: float = 0
        self.error: FormPostError | None = None
        # Set when writing or closing the body failed but a response was
        # still read.
        self.send_error: SendError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __repr__(self) -> str:
        if self.error is not None:
            return f"PostResult(error={self.error!r})"
        return f"PostResult(status_code={self.status_code}, text={self.text[:40]!r})"


def read_response_text(stream: IO[bytes], encoding: str = "utf-8") -> str:
    """Decode a response stream line by line and join the lines.

    Line terminators (\\n, \\r, \\r\\n) are dropped and nothing is put back
    between lines, so multi-line bodies come back as a single line.
    """
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    lines: list[str] = []
    while True:
        chunk = stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        lines.append(_drop_line_breaks(decoder.decode(chunk)))
    lines.append(_drop_line_breaks(decoder.decode(b"", final=True)))
    return "".join(lines)


def _drop_line_breaks(text: str) -> str:
    return text.replace("\r", "").replace("\n", "")


def execute_post(
    url: str,
    fields: Sequence[Field],
    boundary: str,
    headers: dict[str, str],
    connection_factory: Callable[..., Connection] = open_connection,
    timeout: float | None = 30,
    chunk_size: int = MAX_CHUNK_SIZE,
    response_encoding: str = "utf-8",
    cancel: CancelToken | None = None,
) -> PostResult:
    """POST fields as multipart/form-data to url.

    - Connects, configures, writes the body, then reads the response
    - Never raises for I/O failures; the result's error field is set instead
    - A failure while writing or closing the body is recorded as
      send_error and the response is still read
    - Streams of streaming fields and the connection are always closed
    """
    result = PostResult()
    connection = None
    start = time.monotonic()

    try:
        connection = _connect(connection_factory, url, timeout)
        _configure(connection, url, boundary, headers)
        result.send_error = _send(connection, fields, boundary, chunk_size, cancel)
        if cancel is not None:
            cancel.raise_if_cancelled()
        result.text = _receive(connection, response_encoding)
        result.status_code = connection.status_code
        result.headers = dict(connection.response_headers)
    except Cancelled as e:
        logger.info("Multipart request to %s cancelled.", url)
        result.error = e
    except FormPostError as e:
        logger.error("Multipart request to %s failed: %s", url, e)
        result.error = e
    except Exception as e:
        logger.exception("Unexpected error during multipart request to %s", url)
        result.error = UnexpectedError(f"Unexpected error: {e}")
    finally:
        _close_fields(fields)
        if connection is not None:
            _close_connection(connection)
        result.elapsed_ms = (time.monotonic() - start) * 1000

    return result


def _connect(connection_factory, url, timeout) -> Connection:
    try:
        return connection_factory(url, timeout=timeout)
    except FormPostError:
        raise
    except (OSError, ValueError) as e:
        raise ConnectionError(f"Couldn't open connection to {url}: {e}") from e


def _configure(connection: Connection, url: str, boundary: str, headers: dict[str, str]):
    connection.set_request_method("POST")
    connection.set_request_property("Host", host_header(url))
    connection.set_request_property(
        "Content-Type",
        f"multipart/form-data; boundary={boundary}",
    )
    # Applied after the defaults above, so a same-named entry wins.
    for name, value in headers.items():
        connection.set_request_property(name, value)


def _send(connection, fields, boundary, chunk_size, cancel) -> SendError | None:
    try:
        out = connection.open_output()
    except OSError as e:
        raise SendError(f"Couldn't send data. Is the URL correct? ({e})") from e

    send_error = None
    try:
        write_body(fields, boundary, out, chunk_size=chunk_size, cancel=cancel)
        out.flush()
    except Cancelled:
        raise
    except Exception as e:
        # Source read failures land here too.
        logger.error("Couldn't write to HTTP stream: %s", e)
        send_error = SendError(f"Couldn't write request body: {e}")
    finally:
        try:
            out.close()
        except Exception as e:
            logger.error("Couldn't close HTTP stream: %s", e)
            send_error = send_error or SendError(f"Couldn't close request body: {e}")

    # A failed write or close does not stop the response from being read.
    return send_error


def _receive(connection: Connection, encoding: str) -> str:
    try:
        stream = connection.open_input()
    except OSError as e:
        raise ReceiveError(f"Couldn't read server response: {e}") from e

    try:
        return read_response_text(stream, encoding)
    except OSError as e:
        raise ReceiveError(f"Couldn't read server response: {e}") from e
    finally:
        stream.close()


def _close_fields(fields: Sequence[Field]) -> None:
    for field in fields:
        if not field.streaming:
            continue
        try:
            field.close()
        except Exception as e:
            logger.warning("Couldn't close source of field %r: %s", field.name, e)


def _close_connection(connection: Connection) -> None:
    try:
        connection.close()
    except Exception as e:
        logger.warning("Couldn't close connection: %s", e)
