"""Shared fixtures for formpost tests."""

import io

import pytest
from click.testing import CliRunner

from formpost import core
from formpost.executor import PostResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def tmp_project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def global_formpost_dir(tmp_path, monkeypatch):
    """Override the global ~/.formpost directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".formpost"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    return fake_global


class RecordingStream(io.BytesIO):
    """Output stream that keeps its bytes after close and can fail on demand."""

    def __init__(self, fail_write=False, fail_close=False):
        super().__init__()
        self.fail_write = fail_write
        self.fail_close = fail_close
        self.data = b""
        self.write_calls = 0

    def write(self, b):
        self.write_calls += 1
        if self.fail_write:
            raise OSError("broken pipe")
        return super().write(b)

    def close(self):
        if not self.closed:
            self.data = self.getvalue()
        super().close()
        if self.fail_close:
            self.fail_close = False
            raise OSError("close failed")


class FakeConnection:
    """In-memory Connection: records the request, replays a canned response."""

    def __init__(
        self,
        response=b"ok",
        status_code=200,
        response_headers=None,
        output=None,
        output_error=None,
        input_error=None,
    ):
        self.url = None
        self.timeout = None
        self.method = None
        self.properties: list[tuple[str, str]] = []
        self.output = output if output is not None else RecordingStream()
        self.output_error = output_error
        self.input_error = input_error
        self.response = response
        self.status_code = status_code
        self.response_headers = response_headers or {}
        self.input = None
        self.close_count = 0

    def factory(self, url, timeout=None):
        self.url = url
        self.timeout = timeout
        return self

    def set_request_method(self, method):
        self.method = method

    def set_request_property(self, name, value):
        self.properties.append((name, value))

    def open_output(self):
        if self.output_error is not None:
            raise self.output_error
        return self.output

    def open_input(self):
        if self.input_error is not None:
            raise self.input_error
        self.input = io.BytesIO(self.response)
        return self.input

    def close(self):
        self.close_count += 1

    @property
    def body(self) -> bytes:
        return self.output.data

    @property
    def request_headers(self) -> dict[str, str]:
        """Effective headers, last write wins (case-insensitive)."""
        effective: dict[str, tuple[str, str]] = {}
        for name, value in self.properties:
            effective[name.lower()] = (name, value)
        return {name.lower(): value for name, value in effective.values()}


@pytest.fixture
def fake_connection():
    return FakeConnection()


def make_post_result(
    status_code=200,
    text="",
    headers=None,
    elapsed_ms=42.0,
    error=None,
    send_error=None,
):
    """Factory for PostResult objects."""
    r = PostResult()
    r.status_code = status_code
    r.text = text
    r.headers = headers or {}
    r.elapsed_ms = elapsed_ms
    r.error = error
    r.send_error = send_error
    return r
