import asyncio
import logging
import struct

import orjson
import pytest

pytest.importorskip("solders")

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from solhands.config import ResolverSettings
from solhands.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    PUMPFUN_PROGRAM_ID,
    PUMPSWAP_PROGRAM_ID,
    RAYDIUM_V4_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
)
from solhands.errors import VenueBuildError
from solhands.idl.resolver import AccountResolver
from solhands.idl.schema import parse_schema
from solhands.venues.curve import CURVE_FEE_BPS, CurveVenue, decode_curve_state
from solhands.venues.pools import PoolInfo
from solhands.venues.pumpswap import PumpSwapVenue
from solhands.venues.quoting import SwapRequest, Venue, constant_product_out, min_out_for
from solhands.venues.raydium import POOL_ACCOUNT_KEYS, RaydiumVenue, swap_base_in_data

COMPUTE_BUDGET = Pubkey.from_string("ComputeBudget111111111111111111111111111111")


class StaticLookup:
    def __init__(self, pool):
        self.pool = pool

    async def find(self, mint_a, mint_b):
        if self.pool is not None and {mint_a, mint_b} == {self.pool.base_mint, self.pool.quote_mint}:
            return self.pool
        return None


def load(path):
    return parse_schema(orjson.loads(path.read_bytes()))


def pda(seeds, program):
    return Pubkey.find_program_address(seeds, program)[0]


def u64s(data, offset, count):
    return list(struct.unpack_from("<" + "Q" * count, bytes(data), offset))


def marker(tag):
    return Instruction(Pubkey.new_unique(), tag, [])


# --------------------------------------------------------------------------
# bonding curve
# --------------------------------------------------------------------------


@pytest.fixture
def curve_setup(client, pump_idl_path, tmp_path):
    schema = load(pump_idl_path)
    resolver = AccountResolver(
        client, schema, settings=ResolverSettings(creator_vault_store_path=tmp_path / "v.json")
    )
    mint, creator, fee = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()
    curve = pda([b"bonding-curve", bytes(mint)], PUMPFUN_PROGRAM_ID)

    def put_curve(vtoken, vsol, complete=False):
        client.set_account(
            curve,
            schema.account_discriminators["BondingCurve"]
            + struct.pack("<QQQQQ", vtoken, vsol, 0, 0, 0)
            + (b"\x01" if complete else b"\x00")
            + bytes(creator),
            owner=PUMPFUN_PROGRAM_ID,
        )

    client.set_account(
        pda([b"global"], PUMPFUN_PROGRAM_ID),
        schema.account_discriminators["Global"] + b"\x01" + bytes(32) + bytes(fee) + bytes(8),
        owner=PUMPFUN_PROGRAM_ID,
    )
    return CurveVenue(client, resolver), mint, curve, put_curve


def test_decode_curve_state_raw_layout():
    address = Pubkey.new_unique()
    data = bytes(8) + struct.pack("<QQQQQ", 7, 9, 0, 0, 0) + b"\x01" + bytes(32)
    state = decode_curve_state(address, data, 5)
    assert (state.virtual_token_reserves, state.virtual_sol_reserves, state.complete) == (7, 9, True)
    assert decode_curve_state(address, bytes(20), 5) is None


def test_curve_buy_sets_token_amount_and_sol_cap(client, curve_setup):
    venue, mint, curve, put_curve = curve_setup
    put_curve(1_000_000_000_000, 30_000_000_000)
    payer = Pubkey.new_unique()
    request = SwapRequest(payer=payer, input_mint=WSOL_MINT, output_mint=mint, amount_in=100_000_000, slippage_bps=100)

    ixs = asyncio.run(venue.build_swap(request))

    expected_tokens = min_out_for(
        constant_product_out(30_000_000_000, 1_000_000_000_000, 100_000_000, CURVE_FEE_BPS), 100
    )
    assert [ix.program_id for ix in ixs] == [ASSOCIATED_TOKEN_PROGRAM_ID, ASSOCIATED_TOKEN_PROGRAM_ID, PUMPFUN_PROGRAM_ID]
    buy = ixs[-1]
    assert bytes(buy.data)[:8] == bytes([102, 6, 61, 18, 1, 218, 235, 234])
    assert u64s(buy.data, 8, 2) == [expected_tokens, 100_000_000]
    keys = [m.pubkey for m in buy.accounts]
    assert get_associated_token_address(curve, mint) in keys
    assert get_associated_token_address(payer, mint) in keys


def test_curve_buy_skips_existing_atas(client, curve_setup):
    venue, mint, curve, put_curve = curve_setup
    put_curve(1_000_000_000_000, 30_000_000_000)
    payer = Pubkey.new_unique()
    client.set_account(get_associated_token_address(payer, mint), bytes(165))
    client.set_account(get_associated_token_address(curve, mint), bytes(165))
    request = SwapRequest(payer=payer, input_mint=WSOL_MINT, output_mint=mint, amount_in=1_000, slippage_bps=50)
    assert len(asyncio.run(venue.build_swap(request))) == 1


def test_curve_buy_without_readable_curve_fails(curve_setup):
    venue, mint, _, _ = curve_setup
    request = SwapRequest(
        payer=Pubkey.new_unique(), input_mint=WSOL_MINT, output_mint=mint, amount_in=1_000, slippage_bps=50
    )
    with pytest.raises(VenueBuildError) as info:
        asyncio.run(venue.build_swap(request))
    assert info.value.venue == "curve"


def test_curve_sell_quotes_sol_minimum(curve_setup):
    venue, mint, _, put_curve = curve_setup
    put_curve(1_000_000_000_000, 30_000_000_000)
    request = SwapRequest(
        payer=Pubkey.new_unique(), input_mint=mint, output_mint=WSOL_MINT, amount_in=5_000_000, slippage_bps=50
    )
    sell = asyncio.run(venue.build_swap(request))[-1]
    expected = min_out_for(
        constant_product_out(1_000_000_000_000, 30_000_000_000, 5_000_000, CURVE_FEE_BPS), 50
    )
    assert bytes(sell.data)[:8] == bytes([51, 230, 133, 164, 1, 127, 131, 173])
    assert u64s(sell.data, 8, 2) == [5_000_000, expected]


def test_curve_sell_without_quote_encodes_zero_and_warns(curve_setup, caplog):
    venue, mint, _, put_curve = curve_setup
    put_curve(0, 0)
    request = SwapRequest(
        payer=Pubkey.new_unique(), input_mint=mint, output_mint=WSOL_MINT, amount_in=5_000, slippage_bps=50
    )
    with caplog.at_level(logging.WARNING):
        sell = asyncio.run(venue.build_swap(request))[-1]
    assert u64s(sell.data, 8, 2) == [5_000, 0]
    assert "slippage protection disabled" in caplog.text


def test_curve_buy_frames_request_instructions(curve_setup):
    venue, mint, _, put_curve = curve_setup
    put_curve(1_000_000_000_000, 30_000_000_000)
    pre, post = marker(b"pre"), marker(b"post")
    request = SwapRequest(
        payer=Pubkey.new_unique(),
        input_mint=WSOL_MINT,
        output_mint=mint,
        amount_in=1_000,
        slippage_bps=50,
        pre_instructions=(pre,),
        post_instructions=(post,),
    )
    ixs = asyncio.run(venue.build_swap(request))
    assert [ix.program_id for ix in ixs] == [
        pre.program_id,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        PUMPFUN_PROGRAM_ID,
        post.program_id,
    ]
    assert (ixs[0], ixs[-1]) == (pre, post)


def test_curve_health(client, curve_setup):
    venue, mint, _, put_curve = curve_setup
    assert asyncio.run(venue.healthy(WSOL_MINT, mint)) is False
    put_curve(1, 1)
    assert asyncio.run(venue.healthy(WSOL_MINT, mint)) is True
    put_curve(1, 1, complete=True)
    assert asyncio.run(venue.healthy(WSOL_MINT, mint)) is False


# --------------------------------------------------------------------------
# PumpSwap
# --------------------------------------------------------------------------


def put_global_config(client, schema, recipient):
    recipients = [bytes(32), bytes(recipient)] + [bytes(32)] * 6
    client.set_account(
        pda([b"global_config"], PUMPSWAP_PROGRAM_ID),
        schema.account_discriminators["GlobalConfig"]
        + bytes(32)
        + struct.pack("<QQB", 20, 5, 0)
        + b"".join(recipients),
        owner=PUMPSWAP_PROGRAM_ID,
    )


@pytest.fixture
def pumpswap_setup(client, pump_amm_idl_path, tmp_path):
    schema = load(pump_amm_idl_path)
    resolver = AccountResolver(
        client,
        schema,
        program_id=PUMPSWAP_PROGRAM_ID,
        settings=ResolverSettings(creator_vault_store_path=tmp_path / "v.json"),
    )
    token, creator, recipient = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()
    pool = PoolInfo(
        pool_id=Pubkey.new_unique(),
        base_mint=token,
        quote_mint=WSOL_MINT,
        base_vault=Pubkey.new_unique(),
        quote_vault=Pubkey.new_unique(),
        coin_creator=creator,
    )
    client.balances[pool.base_vault] = 1_000_000_000
    client.balances[pool.quote_vault] = 50_000_000_000
    put_global_config(client, schema, recipient)
    venue = PumpSwapVenue(client, resolver, pools=StaticLookup(pool))
    return venue, pool, recipient


def test_pumpswap_sell_overrides_pool_accounts(pumpswap_setup):
    venue, pool, recipient = pumpswap_setup
    payer = Pubkey.new_unique()
    request = SwapRequest(
        payer=payer, input_mint=pool.base_mint, output_mint=WSOL_MINT, amount_in=1_000_000, slippage_bps=50
    )
    ixs = asyncio.run(venue.build_swap(request))
    sell = ixs[-1]
    assert sell.program_id == PUMPSWAP_PROGRAM_ID
    assert bytes(sell.data)[:8] == bytes([51, 230, 133, 164, 1, 127, 131, 173])
    expected = min_out_for(constant_product_out(1_000_000_000, 50_000_000_000, 1_000_000), 50)
    assert u64s(sell.data, 8, 2) == [1_000_000, expected]

    keys = [m.pubkey for m in sell.accounts]
    authority = pda([b"creator_vault", bytes(pool.coin_creator)], PUMPSWAP_PROGRAM_ID)
    assert keys[0] == pool.pool_id
    assert keys[1] == payer
    assert keys[2] == pda([b"global_config"], PUMPSWAP_PROGRAM_ID)
    assert keys[5] == get_associated_token_address(payer, pool.base_mint)
    assert keys[6] == get_associated_token_address(payer, WSOL_MINT)
    assert keys[7:9] == [pool.base_vault, pool.quote_vault]
    assert keys[9] == recipient
    assert keys[10] == get_associated_token_address(recipient, WSOL_MINT)
    assert keys[11:13] == [TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID]
    assert keys[15] == pda([b"__event_authority"], PUMPSWAP_PROGRAM_ID)
    assert keys[17] == get_associated_token_address(authority, WSOL_MINT)
    assert keys[18] == authority


def test_pumpswap_buy_uses_quoted_base_out(pumpswap_setup):
    venue, pool, _ = pumpswap_setup
    request = SwapRequest(
        payer=Pubkey.new_unique(), input_mint=WSOL_MINT, output_mint=pool.base_mint, amount_in=2_000_000, slippage_bps=100
    )
    buy = asyncio.run(venue.build_swap(request))[-1]
    expected = min_out_for(constant_product_out(50_000_000_000, 1_000_000_000, 2_000_000), 100)
    assert bytes(buy.data)[:8] == bytes([102, 6, 61, 18, 1, 218, 235, 234])
    assert u64s(buy.data, 8, 2) == [expected, 2_000_000]


def test_pumpswap_buy_without_quote_fails(client, pumpswap_setup):
    venue, pool, _ = pumpswap_setup
    client.balances.clear()
    request = SwapRequest(
        payer=Pubkey.new_unique(), input_mint=WSOL_MINT, output_mint=pool.base_mint, amount_in=2_000, slippage_bps=100
    )
    with pytest.raises(VenueBuildError):
        asyncio.run(venue.build_swap(request))


def test_pumpswap_missing_pool_is_build_error(pumpswap_setup):
    venue, _, _ = pumpswap_setup
    request = SwapRequest(
        payer=Pubkey.new_unique(),
        input_mint=WSOL_MINT,
        output_mint=Pubkey.new_unique(),
        amount_in=2_000,
        slippage_bps=100,
    )
    with pytest.raises(VenueBuildError) as info:
        asyncio.run(venue.build_swap(request))
    assert info.value.venue == Venue.PUMPSWAP.value


def test_pumpswap_fee_recipient_is_cached(client, pumpswap_setup):
    venue, _, recipient = pumpswap_setup
    assert asyncio.run(venue.protocol_fee_recipient()) == recipient
    client.accounts.clear()
    assert asyncio.run(venue.protocol_fee_recipient()) == recipient


def test_pumpswap_fee_recipient_follows_refresh_setting(client, pumpswap_setup, tmp_path):
    venue, _, recipient = pumpswap_setup
    resolver = AccountResolver(
        client,
        venue.resolver.schema,
        program_id=PUMPSWAP_PROGRAM_ID,
        settings=ResolverSettings(fee_refresh_ms=0, creator_vault_store_path=tmp_path / "w.json"),
    )
    refreshing = PumpSwapVenue(client, resolver, pools=venue.pools)
    assert asyncio.run(refreshing.protocol_fee_recipient()) == recipient
    rotated = Pubkey.new_unique()
    put_global_config(client, resolver.schema, rotated)
    assert asyncio.run(refreshing.protocol_fee_recipient()) == rotated


def test_pumpswap_frames_request_instructions_after_priority_fee(pumpswap_setup):
    venue, pool, _ = pumpswap_setup
    pre, post = marker(b"pre"), marker(b"post")
    request = SwapRequest(
        payer=Pubkey.new_unique(),
        input_mint=pool.base_mint,
        output_mint=WSOL_MINT,
        amount_in=1_000_000,
        slippage_bps=50,
        priority_fee=1_000,
        pre_instructions=(pre,),
        post_instructions=(post,),
    )
    ixs = asyncio.run(venue.build_swap(request))
    assert [ix.program_id for ix in ixs] == [
        COMPUTE_BUDGET,
        pre.program_id,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        PUMPSWAP_PROGRAM_ID,
        post.program_id,
    ]


# --------------------------------------------------------------------------
# Raydium
# --------------------------------------------------------------------------


def raydium_pool(base, quote):
    keys = {name: str(Pubkey.new_unique()) for name, _ in POOL_ACCOUNT_KEYS}
    keys.update(baseMint=str(base), quoteMint=str(quote))
    return PoolInfo(
        pool_id=Pubkey.from_string(keys["id"]),
        base_mint=base,
        quote_mint=quote,
        base_vault=Pubkey.from_string(keys["baseVault"]),
        quote_vault=Pubkey.from_string(keys["quoteVault"]),
        keys=keys,
    )


def test_swap_base_in_data_layout():
    assert swap_base_in_data(5, 3) == bytes([9]) + struct.pack("<QQ", 5, 3)


def test_raydium_build_orders_eighteen_accounts(client):
    token = Pubkey.new_unique()
    pool = raydium_pool(token, WSOL_MINT)
    client.balances[pool.base_vault] = 10_000_000
    client.balances[pool.quote_vault] = 20_000_000
    payer = Pubkey.new_unique()
    venue = RaydiumVenue(client, pools=StaticLookup(pool))
    request = SwapRequest(payer=payer, input_mint=WSOL_MINT, output_mint=token, amount_in=10_000, slippage_bps=50)

    ixs = asyncio.run(venue.build_swap(request))
    assert ixs[0].program_id == ASSOCIATED_TOKEN_PROGRAM_ID
    swap = ixs[-1]
    assert swap.program_id == RAYDIUM_V4_PROGRAM_ID
    assert len(swap.accounts) == 18
    expected = min_out_for(constant_product_out(20_000_000, 10_000_000, 10_000), 50)
    assert bytes(swap.data) == swap_base_in_data(10_000, expected)

    metas = swap.accounts
    assert metas[0].pubkey == TOKEN_PROGRAM_ID
    assert [str(m.pubkey) for m in metas[1:15]] == [pool.keys[name] for name, _ in POOL_ACCOUNT_KEYS]
    assert [m.is_writable for m in metas[1:15]] == [w for _, w in POOL_ACCOUNT_KEYS]
    assert metas[15].pubkey == get_associated_token_address(payer, WSOL_MINT)
    assert metas[16].pubkey == get_associated_token_address(payer, token)
    assert metas[17].pubkey == payer and metas[17].is_signer
    assert not any(m.is_signer for m in metas[:17])


def test_raydium_frames_request_instructions(client):
    token = Pubkey.new_unique()
    pool = raydium_pool(token, WSOL_MINT)
    client.balances[pool.base_vault] = 10_000_000
    client.balances[pool.quote_vault] = 20_000_000
    venue = RaydiumVenue(client, pools=StaticLookup(pool))
    wrap, unwrap = (marker(b"wrap"), marker(b"sync")), (marker(b"close"),)
    request = SwapRequest(
        payer=Pubkey.new_unique(),
        input_mint=WSOL_MINT,
        output_mint=token,
        amount_in=10_000,
        slippage_bps=50,
        pre_instructions=wrap,
        post_instructions=unwrap,
    )
    ixs = asyncio.run(venue.build_swap(request))
    assert tuple(ixs[:2]) == wrap
    assert ixs[2].program_id == ASSOCIATED_TOKEN_PROGRAM_ID
    assert ixs[3].program_id == RAYDIUM_V4_PROGRAM_ID
    assert tuple(ixs[4:]) == unwrap


def test_raydium_build_missing_key_is_build_error(client):
    token = Pubkey.new_unique()
    pool = raydium_pool(token, WSOL_MINT)
    del pool.keys["marketBids"]
    venue = RaydiumVenue(client, pools=StaticLookup(pool))
    request = SwapRequest(
        payer=Pubkey.new_unique(), input_mint=WSOL_MINT, output_mint=token, amount_in=10, slippage_bps=50, min_out=1
    )
    with pytest.raises(VenueBuildError):
        asyncio.run(venue.build_swap(request))
