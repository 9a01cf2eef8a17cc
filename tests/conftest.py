from __future__ import annotations

import io
import json
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from email.message import Message
from typing import Any, Callable

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.backends import fail


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.values: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.values.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.values[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        self.values.pop((service, username), None)


@pytest.fixture(autouse=True)
def memory_keyring():
    """Never touch the real OS keyring from tests."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def no_keyring():
    keyring.set_keyring(fail.Keyring())


@pytest.fixture(scope="session")
def qapp():
    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


def wait_until(predicate: Callable[[], bool], timeout_ms: int = 3000) -> bool:
    from PySide6.QtTest import QTest

    deadline = time.monotonic() + timeout_ms / 1000.0
    while time.monotonic() < deadline:
        if predicate():
            return True
        QTest.qWait(20)
    return predicate()


# ---------- Fake HTTP ----------


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: bytes

    @property
    def path(self) -> str:
        return urllib.parse.urlsplit(self.url).path

    @property
    def query(self) -> dict[str, str]:
        return dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(self.url).query, keep_blank_values=True))

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))

    def form(self) -> dict[str, str]:
        return dict(urllib.parse.parse_qsl(self.body.decode("utf-8"), keep_blank_values=True))


@dataclass
class FakeReply:
    status: int = 200
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    raw: bytes | None = None

    def body(self) -> bytes:
        if self.raw is not None:
            return self.raw
        if self.payload is None:
            return b""
        return json.dumps(self.payload).encode("utf-8")


class _FakeResponse:
    def __init__(self, reply: FakeReply) -> None:
        self.status = reply.status
        self.reason = "OK"
        self.headers = _message(reply.headers)
        self._body = reply.body()

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def _message(headers: dict[str, str]) -> Message:
    message = Message()
    for key, value in headers.items():
        message[key] = value
    return message


class FakeHttp:
    """Stands in for ``urllib.request.urlopen``; ``handler`` maps requests to replies."""

    def __init__(self) -> None:
        self.requests: list[RecordedRequest] = []
        self.handler: Callable[[RecordedRequest], FakeReply] = lambda _req: FakeReply(404, {"message": "not found"})

    def __call__(self, request: urllib.request.Request, timeout: float | None = None) -> _FakeResponse:
        recorded = RecordedRequest(
            method=request.get_method(),
            url=request.full_url,
            headers={key.lower(): value for key, value in request.header_items()},
            body=request.data or b"",
        )
        self.requests.append(recorded)
        reply = self.handler(recorded)
        if isinstance(reply, BaseException):
            raise reply
        if 200 <= reply.status < 300:
            return _FakeResponse(reply)
        raise urllib.error.HTTPError(
            recorded.url,
            reply.status,
            "error",
            _message(reply.headers),
            io.BytesIO(reply.body()),
        )


@pytest.fixture
def fake_http(monkeypatch) -> FakeHttp:
    fake = FakeHttp()
    monkeypatch.setattr(urllib.request, "urlopen", fake)
    return fake
