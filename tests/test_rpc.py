import asyncio

import pytest

pytest.importorskip("solders")

from solders.pubkey import Pubkey

from solhands import rpc
from solhands.rpc import DEFAULT_RPC_URL, MAX_BACKOFF_MS, RpcManager, account_exists, current_slot, fetch_account


class DummyClient:
    def __init__(self, url, **kwargs):
        self.url = url
        self.kwargs = kwargs
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.fixture
def patched(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(rpc, "AsyncClient", DummyClient)
    monkeypatch.setattr(rpc.asyncio, "sleep", fake_sleep)
    return sleeps


def test_manager_defaults_to_public_endpoint(patched):
    manager = RpcManager([])
    assert manager.get_client().url == DEFAULT_RPC_URL
    assert manager.get_client() is manager.get_client()


def test_rotate_cycles_urls_with_backoff(patched):
    manager = RpcManager(["https://a", "https://b"])
    first = manager.get_client()

    second = asyncio.run(manager.rotate())
    assert second.url == "https://b"
    assert first.closed
    third = asyncio.run(manager.rotate())
    assert third.url == "https://a"
    assert patched == [0.5, 1.0]

    for _ in range(6):
        asyncio.run(manager.rotate())
    assert manager.backoff_ms == MAX_BACKOFF_MS
    manager.mark_good()
    assert manager.backoff_ms == 500


def test_fetch_account_snapshot(client):
    address = Pubkey.new_unique()
    assert asyncio.run(fetch_account(client, address)) is None
    assert asyncio.run(account_exists(client, address)) is False
    client.set_account(address, b"\x01\x02", slot=990, lamports=7)
    snap = asyncio.run(fetch_account(client, address))
    assert (snap.data, snap.slot, snap.lamports) == (b"\x01\x02", 990, 7)
    assert asyncio.run(current_slot(client)) == 1000
