import asyncio
from types import SimpleNamespace

import pytest

pytest.importorskip("solders")

from solana.exceptions import SolanaRpcException
from solders.pubkey import Pubkey

import solhands.venues.pools as pools_mod
from solhands.constants import WSOL_MINT
from solhands.venues.pools import (
    PUMPSWAP_POOL_MIN_LEN,
    PoolInfo,
    PoolVenue,
    PumpSwapPoolLookup,
    RaydiumPoolLookup,
    decode_pumpswap_pool,
)
from solhands.venues.quoting import Venue, constant_product_out


def pumpswap_pool_bytes(base, quote, base_vault, quote_vault, creator):
    data = bytearray(PUMPSWAP_POOL_MIN_LEN)
    for offset, key in (
        (43, base),
        (75, quote),
        (107, Pubkey.new_unique()),
        (139, base_vault),
        (171, quote_vault),
        (211, creator),
    ):
        data[offset : offset + 32] = bytes(key)
    return bytes(data)


class StaticLookup:
    def __init__(self, pool):
        self.pool = pool

    async def find(self, mint_a, mint_b):
        if self.pool is None:
            return None
        if {mint_a, mint_b} == {self.pool.base_mint, self.pool.quote_mint}:
            return self.pool
        return None


class FakePoolVenue(PoolVenue):
    venue = Venue.PUMPSWAP


def make_pool():
    return PoolInfo(
        pool_id=Pubkey.new_unique(),
        base_mint=Pubkey.new_unique(),
        quote_mint=WSOL_MINT,
        base_vault=Pubkey.new_unique(),
        quote_vault=Pubkey.new_unique(),
    )


def test_decode_pumpswap_pool_layout():
    base, vb, vq, creator = (Pubkey.new_unique() for _ in range(4))
    pool_id = Pubkey.new_unique()
    pool = decode_pumpswap_pool(pool_id, pumpswap_pool_bytes(base, WSOL_MINT, vb, vq, creator))
    assert pool.pool_id == pool_id
    assert (pool.base_mint, pool.quote_mint) == (base, WSOL_MINT)
    assert (pool.base_vault, pool.quote_vault) == (vb, vq)
    assert pool.coin_creator == creator
    assert pool.orient(base) == (vb, vq)
    assert pool.orient(WSOL_MINT) == (vq, vb)
    assert decode_pumpswap_pool(pool_id, bytes(100)) is None


def test_pumpswap_lookup_tries_both_orientations(client):
    base, vb, vq, creator = (Pubkey.new_unique() for _ in range(4))
    pool_id = Pubkey.new_unique()
    data = pumpswap_pool_bytes(base, WSOL_MINT, vb, vq, creator)
    responses = [[], [SimpleNamespace(pubkey=pool_id, account=SimpleNamespace(data=data))]]

    async def gpa(program_id, **kwargs):
        client.calls.append(("gpa", [f.offset for f in kwargs["filters"]]))
        return SimpleNamespace(value=responses.pop(0))

    client.get_program_accounts = gpa
    pool = asyncio.run(PumpSwapPoolLookup(client).find(WSOL_MINT, base))
    assert pool.pool_id == pool_id
    assert client.calls == [("gpa", [43, 75]), ("gpa", [43, 75])]


def test_raydium_lookup_caches_pool_list(monkeypatch):
    base, quote = Pubkey.new_unique(), Pubkey.new_unique()
    entry = {
        "id": str(Pubkey.new_unique()),
        "baseMint": str(base),
        "quoteMint": str(quote),
        "baseVault": str(Pubkey.new_unique()),
        "quoteVault": str(Pubkey.new_unique()),
    }
    calls = []

    async def fake_fetch(url, **kwargs):
        calls.append(url)
        return {"official": [entry], "unOfficial": [{"id": "x"}], "name": "ignored"}

    monkeypatch.setattr(pools_mod, "fetch_json", fake_fetch)
    lookup = RaydiumPoolLookup(ttl=60)
    pool = asyncio.run(lookup.find(quote, base))
    assert str(pool.pool_id) == entry["id"]
    assert pool.keys["baseMint"] == str(base)
    assert asyncio.run(lookup.find(base, Pubkey.new_unique())) is None
    assert len(calls) == 1


def test_quote_uses_vault_balances(client):
    pool = make_pool()
    client.balances[pool.base_vault] = 1_000_000
    client.balances[pool.quote_vault] = 5_000_000
    venue = FakePoolVenue(client, StaticLookup(pool))
    q = asyncio.run(venue.quote(WSOL_MINT, pool.base_mint, 10_000))
    assert q.venue is Venue.PUMPSWAP
    assert (q.reserve_in, q.reserve_out) == (5_000_000, 1_000_000)
    assert q.out_amount == constant_product_out(5_000_000, 1_000_000, 10_000)
    assert q.slot == client.slot
    assert q.pool_id == str(pool.pool_id)


def test_quote_missing_pool_or_reserves_is_none(client):
    pool = make_pool()
    assert asyncio.run(FakePoolVenue(client, StaticLookup(None)).quote(WSOL_MINT, pool.base_mint, 1)) is None
    assert asyncio.run(FakePoolVenue(client, StaticLookup(pool)).quote(WSOL_MINT, pool.base_mint, 1)) is None


def test_quote_read_error_is_none(client):
    pool = make_pool()

    async def broken(*args, **kwargs):
        raise SolanaRpcException("transport down")

    client.get_token_account_balance = broken
    assert asyncio.run(FakePoolVenue(client, StaticLookup(pool)).quote(WSOL_MINT, pool.base_mint, 1)) is None


def test_health_requires_recent_pool_write(client):
    pool = make_pool()
    venue = FakePoolVenue(client, StaticLookup(pool))
    assert asyncio.run(venue.healthy(WSOL_MINT, pool.base_mint)) is False
    client.set_account(pool.pool_id, bytes(PUMPSWAP_POOL_MIN_LEN), slot=client.slot - 3)
    assert asyncio.run(venue.healthy(WSOL_MINT, pool.base_mint)) is True
    client.set_account(pool.pool_id, bytes(PUMPSWAP_POOL_MIN_LEN), slot=client.slot - 4)
    assert asyncio.run(venue.healthy(WSOL_MINT, pool.base_mint)) is False
