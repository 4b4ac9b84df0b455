"""Transaction assembly primitives shared by every venue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Finalized
from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.instructions import (
    CloseAccountParams,
    SyncNativeParams,
    close_account,
    create_associated_token_account,
    sync_native,
)

from .constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID, WSOL_MINT
from .rpc import account_exists

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Anchor:
    """Recent blockhash a transaction is bound to."""

    blockhash: Hash
    last_valid_block_height: int


def with_priority_fee(instructions: Sequence[Instruction], fee: int | None) -> List[Instruction]:
    """Prepend a compute-unit price instruction when ``fee`` is positive."""

    ixs = list(instructions)
    if not fee or fee <= 0:
        return ixs
    return [set_compute_unit_price(int(fee)), *ixs]


async def fetch_anchor(client: AsyncClient, commitment: Commitment = Finalized) -> Anchor:
    resp = await client.get_latest_blockhash(commitment)
    return Anchor(
        blockhash=resp.value.blockhash,
        last_valid_block_height=int(resp.value.last_valid_block_height),
    )


def assemble(
    instructions: Sequence[Instruction], payer: Pubkey, anchor: Anchor
) -> VersionedTransaction:
    """Compile ``instructions`` into an unsigned v0 transaction paid by ``payer``.

    Signature slots are filled with default signatures; use
    :func:`sign_transaction` before sending.
    """

    msg = MessageV0.try_compile(payer, list(instructions), [], anchor.blockhash)
    placeholders = [Signature.default()] * msg.header.num_required_signatures
    return VersionedTransaction.populate(msg, placeholders)


def sign_transaction(tx: VersionedTransaction, signers: Sequence[Keypair]) -> VersionedTransaction:
    return VersionedTransaction(tx.message, list(signers))


def associated_token_address(
    owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM_ID
) -> Pubkey:
    addr, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return addr


async def ensure_ata_instructions(
    client: AsyncClient, payer: Pubkey, owner: Pubkey, mint: Pubkey
) -> Tuple[Pubkey, List[Instruction]]:
    """Return the owner's associated token account and any instruction needed to create it."""

    ata = associated_token_address(owner, mint)
    if await account_exists(client, ata):
        return ata, []
    logger.debug("Creating associated token account %s for %s", ata, owner)
    return ata, [create_associated_token_account(payer, owner, mint)]


async def build_wrap_instructions(
    client: AsyncClient, payer: Pubkey, owner: Pubkey, amount: int
) -> Tuple[Pubkey, List[Instruction]]:
    """Move ``amount`` lamports into the owner's wrapped-SOL account and sync it."""

    if amount <= 0:
        raise ValueError("wrap amount must be positive")
    ata, ixs = await ensure_ata_instructions(client, payer, owner, WSOL_MINT)
    ixs.append(transfer(TransferParams(from_pubkey=payer, to_pubkey=ata, lamports=int(amount))))
    ixs.append(sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=ata)))
    return ata, ixs


def build_unwrap_instructions(owner: Pubkey) -> Tuple[Pubkey, List[Instruction]]:
    """Close the owner's wrapped-SOL account, returning its lamports to ``owner``."""

    ata = associated_token_address(owner, WSOL_MINT)
    ix = close_account(
        CloseAccountParams(program_id=TOKEN_PROGRAM_ID, account=ata, dest=owner, owner=owner)
    )
    return ata, [ix]


__all__ = [
    "Anchor",
    "assemble",
    "associated_token_address",
    "build_unwrap_instructions",
    "build_wrap_instructions",
    "ensure_ata_instructions",
    "fetch_anchor",
    "sign_transaction",
    "with_priority_fee",
]
