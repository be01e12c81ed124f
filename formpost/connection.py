"""formpost connection - the byte-stream endpoint a request is written to.

A connection takes the request method and headers, hands out a writable
stream for the body, and afterwards a readable stream for the response.
RequestsConnection buffers the body and sends it with ``requests`` when the
response stream is first asked for, so the transport computes
Content-Length.
"""

from __future__ import annotations

import tempfile
from typing import IO, Any, Protocol
from urllib.parse import urlsplit

import requests
from requests.structures import CaseInsensitiveDict

from formpost.errors import ConnectionError, ReceiveError, SendError

DEFAULT_TIMEOUT = 30
DEFAULT_SPOOL_MAX_SIZE = 8 * 1024 * 1024
READ_CHUNK_SIZE = 64 * 1024
SUPPORTED_SCHEMES = ("http", "https")


class Connection(Protocol):
    status_code: int
    response_headers: dict[str, str]

    def set_request_method(self, method: str) -> None: ...

    def set_request_property(self, name: str, value: str) -> None: ...

    def open_output(self) -> IO[bytes]: ...

    def open_input(self) -> IO[bytes]: ...

    def close(self) -> None: ...


class _SpoolWriter:
    """Write end of the body spool. Closing it leaves the spool readable."""

    def __init__(self, spool):
        self._spool = spool
        self.closed = False

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed request body")
        return self._spool.write(data)

    def flush(self) -> None:
        self._spool.flush()

    def close(self) -> None:
        self.closed = True


class _ResponseReader:
    """Read end of a streamed response; transport failures become ReceiveError."""

    def __init__(self, response: requests.Response, chunk_size: int = READ_CHUNK_SIZE):
        self._response = response
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self.closed = False

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        # Returns whatever the next transport chunk holds; b"" means end.
        if self.closed:
            return b""
        try:
            return next(self._chunks, b"")
        except requests.exceptions.RequestException as e:
            raise ReceiveError(f"Couldn't read server response: {e}") from e

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._response.close()


class RequestsConnection:
    """Connection backed by a requests Session."""

    def __init__(
        self,
        url: str,
        timeout: float | None = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE,
    ):
        self.url = url
        self.timeout = timeout
        self.spool_max_size = spool_max_size
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.method = "GET"
        self.request_headers: CaseInsensitiveDict = CaseInsensitiveDict()
        self.status_code = 0
        self.response_headers: dict[str, str] = {}
        self._spool: Any = None
        self._response: requests.Response | None = None
        self._reader: _ResponseReader | None = None

    def set_request_method(self, method: str) -> None:
        self.method = method.upper()

    def set_request_property(self, name: str, value: str) -> None:
        self.request_headers[name] = value

    def open_output(self) -> _SpoolWriter:
        if self._response is not None:
            raise SendError("Request already sent; cannot reopen its body.")
        if self._spool is None:
            self._spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_size)
        return _SpoolWriter(self._spool)

    def _request_body(self) -> Any:
        if self._spool is None:
            return None
        size = self._spool.tell()
        self._spool.seek(0)
        if size <= self.spool_max_size:
            return self._spool.read()
        return self._spool

    def open_input(self) -> _ResponseReader:
        if self._reader is not None:
            return self._reader
        try:
            self._response = self.session.request(
                self.method,
                self.url,
                headers=dict(self.request_headers),
                data=self._request_body(),
                timeout=self.timeout,
                stream=True,
                allow_redirects=False,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise ConnectionError(f"Couldn't reach {self.url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ReceiveError(f"Request to {self.url} failed: {e}") from e

        self.status_code = self._response.status_code
        self.response_headers = dict(self._response.headers)
        self._reader = _ResponseReader(self._response)
        return self._reader

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
        elif self._response is not None:
            self._response.close()
        if self._spool is not None:
            self._spool.close()
            self._spool = None
        if self._owns_session:
            self.session.close()


def open_connection(
    url: str,
    timeout: float | None = DEFAULT_TIMEOUT,
    session: requests.Session | None = None,
    spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE,
) -> RequestsConnection:
    """Validate the target URL and return a connection for it."""
    parts = urlsplit(url)
    if parts.scheme.lower() not in SUPPORTED_SCHEMES:
        raise ConnectionError(f"Couldn't open connection to {url!r}: unsupported scheme.")
    if not parts.hostname:
        raise ConnectionError(f"Couldn't open connection to {url!r}: missing host.")
    try:
        parts.port
    except ValueError as e:
        raise ConnectionError(f"Couldn't open connection to {url!r}: {e}") from e
    return RequestsConnection(
        url,
        timeout=timeout,
        session=session,
        spool_max_size=spool_max_size,
    )


def host_header(url: str) -> str:
    """Host header value for a URL: hostname, plus the port when explicit."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return host
