import asyncio

import pytest

pytest.importorskip("solders")

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from spl.token.instructions import get_associated_token_address

from solhands.assembly import (
    Anchor,
    assemble,
    build_unwrap_instructions,
    build_wrap_instructions,
    ensure_ata_instructions,
    fetch_anchor,
    sign_transaction,
    with_priority_fee,
)
from solhands.constants import ASSOCIATED_TOKEN_PROGRAM_ID, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID, WSOL_MINT

COMPUTE_BUDGET = Pubkey.from_string("ComputeBudget111111111111111111111111111111")


def _transfer(payer):
    return transfer(TransferParams(from_pubkey=payer, to_pubkey=Pubkey.new_unique(), lamports=1))


def test_with_priority_fee_prepends_only_when_positive():
    ix = _transfer(Pubkey.new_unique())
    assert with_priority_fee([ix], None) == [ix]
    assert with_priority_fee([ix], 0) == [ix]
    out = with_priority_fee([ix], 5_000)
    assert len(out) == 2
    assert out[0].program_id == COMPUTE_BUDGET
    assert out[1] == ix


def test_assemble_then_sign():
    kp = Keypair()
    anchor = Anchor(blockhash=Hash.new_unique(), last_valid_block_height=10)
    tx = assemble([_transfer(kp.pubkey())], kp.pubkey(), anchor)
    assert list(tx.signatures) == [Signature.default()]
    assert tx.message.recent_blockhash == anchor.blockhash

    signed = sign_transaction(tx, [kp])
    assert signed.signatures[0] != Signature.default()
    assert signed.message == tx.message


def test_fetch_anchor(client):
    anchor = asyncio.run(fetch_anchor(client))
    assert anchor.blockhash == client.blockhash
    assert anchor.last_valid_block_height == client.last_valid_block_height


def test_ensure_ata_is_idempotent(client):
    owner, mint = Pubkey.new_unique(), Pubkey.new_unique()
    ata, ixs = asyncio.run(ensure_ata_instructions(client, owner, owner, mint))
    assert ata == get_associated_token_address(owner, mint)
    assert [ix.program_id for ix in ixs] == [ASSOCIATED_TOKEN_PROGRAM_ID]

    client.set_account(ata, bytes(165))
    _, ixs = asyncio.run(ensure_ata_instructions(client, owner, owner, mint))
    assert ixs == []


def test_wrap_instructions(client):
    owner = Pubkey.new_unique()
    ata, ixs = asyncio.run(build_wrap_instructions(client, owner, owner, 1_000))
    assert ata == get_associated_token_address(owner, WSOL_MINT)
    assert [ix.program_id for ix in ixs] == [ASSOCIATED_TOKEN_PROGRAM_ID, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID]

    client.set_account(ata, bytes(165))
    _, ixs = asyncio.run(build_wrap_instructions(client, owner, owner, 1_000))
    assert [ix.program_id for ix in ixs] == [SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID]

    with pytest.raises(ValueError):
        asyncio.run(build_wrap_instructions(client, owner, owner, 0))


def test_unwrap_closes_wsol_account_to_owner():
    owner = Pubkey.new_unique()
    ata, ixs = build_unwrap_instructions(owner)
    assert len(ixs) == 1
    close = ixs[0]
    assert close.program_id == TOKEN_PROGRAM_ID
    assert [m.pubkey for m in close.accounts][:2] == [ata, owner]
