import asyncio
import struct

import pytest

pytest.importorskip("solders")

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from solhands.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from solhands.mint import decode_mint, fetch_mint_safety, mint_decimals, owner_token_balance, token_balance


def mint_data(*, authority=None, freeze=None, supply=10**15, decimals=6):
    def coption(key):
        return struct.pack("<I", 0) + bytes(32) if key is None else struct.pack("<I", 1) + bytes(key)

    return coption(authority) + struct.pack("<Q", supply) + bytes([decimals, 1]) + coption(freeze)


def test_decode_mint_without_authorities():
    info = decode_mint(mint_data(), TOKEN_PROGRAM_ID)
    assert info.mint_authority is None and info.freeze_authority is None
    assert (info.decimals, info.supply, info.owner_program) == (6, 10**15, TOKEN_PROGRAM_ID)


def test_decode_mint_with_authorities():
    authority, freeze = Pubkey.new_unique(), Pubkey.new_unique()
    info = decode_mint(mint_data(authority=authority, freeze=freeze, decimals=9), TOKEN_2022_PROGRAM_ID)
    assert info.mint_authority == authority
    assert info.freeze_authority == freeze
    assert info.owner_program == TOKEN_2022_PROGRAM_ID


def test_decode_mint_rejects_short_data():
    with pytest.raises(ValueError):
        decode_mint(bytes(40), TOKEN_PROGRAM_ID)


def test_fetch_mint_safety_and_decimals(client):
    mint = Pubkey.new_unique()
    assert asyncio.run(fetch_mint_safety(client, mint)) is None
    assert asyncio.run(mint_decimals(client, mint)) == 9
    client.set_account(mint, mint_data(decimals=6))
    assert asyncio.run(mint_decimals(client, mint)) == 6


def test_token_balance_missing_account_is_none(client):
    assert asyncio.run(token_balance(client, Pubkey.new_unique())) is None


def test_owner_token_balance_reads_associated_account(client):
    owner, mint = Pubkey.new_unique(), Pubkey.new_unique()
    assert asyncio.run(owner_token_balance(client, owner, mint)) == 0
    client.balances[get_associated_token_address(owner, mint)] = 42
    assert asyncio.run(owner_token_balance(client, owner, mint)) == 42
