import asyncio

import pytest

from solhands import http


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self.body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self.body.decode()

    async def read(self):
        return self.body


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url))
        return self.responses.pop(0)


@pytest.fixture
def no_sleep(monkeypatch):
    async def fake_sleep(seconds):
        pass

    monkeypatch.setattr(http.asyncio, "sleep", fake_sleep)


def _install(monkeypatch, session):
    async def get_session():
        return session

    monkeypatch.setattr(http, "get_session", get_session)


def test_fetch_json_retries_server_errors(monkeypatch, no_sleep):
    session = FakeSession([FakeResponse(502, b"bad gateway"), FakeResponse(200, b'{"ok": true}')])
    _install(monkeypatch, session)
    assert asyncio.run(http.fetch_json("https://idl.example/pump.json")) == {"ok": True}
    assert len(session.calls) == 2


def test_fetch_json_raises_last_error(monkeypatch, no_sleep):
    session = FakeSession([FakeResponse(404, b"missing"), FakeResponse(404, b"missing")])
    _install(monkeypatch, session)
    with pytest.raises(http.HTTPError, match="404"):
        asyncio.run(http.fetch_json("https://idl.example/pump.json"))


def test_get_session_is_per_loop():
    async def pair():
        s1 = await http.get_session()
        s2 = await http.get_session()
        await http.close_session()
        return s1, s2

    s1, s2 = asyncio.run(pair())
    assert s1 is s2
    assert s1.closed
