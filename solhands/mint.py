"""SPL mint inspection and token balances."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solders.pubkey import Pubkey

from .assembly import associated_token_address
from .rpc import fetch_account

logger = logging.getLogger(__name__)

MINT_LAYOUT_LEN = 82
_SUPPLY_OFFSET = 36
_DECIMALS_OFFSET = 44
_INITIALIZED_OFFSET = 45
_FREEZE_AUTHORITY_OFFSET = 46


@dataclass(frozen=True)
class MintSafety:
    mint_authority: Pubkey | None
    freeze_authority: Pubkey | None
    owner_program: Pubkey
    decimals: int
    supply: int


def _coption_pubkey(data: bytes, offset: int) -> Pubkey | None:
    tag = int.from_bytes(data[offset : offset + 4], "little")
    if tag == 0:
        return None
    return Pubkey.from_bytes(bytes(data[offset + 4 : offset + 36]))


def decode_mint(data: bytes, owner: Pubkey) -> MintSafety:
    if len(data) < MINT_LAYOUT_LEN:
        raise ValueError(f"mint account too short ({len(data)} bytes)")
    return MintSafety(
        mint_authority=_coption_pubkey(data, 0),
        freeze_authority=_coption_pubkey(data, _FREEZE_AUTHORITY_OFFSET),
        owner_program=owner,
        decimals=data[_DECIMALS_OFFSET],
        supply=int.from_bytes(data[_SUPPLY_OFFSET:_DECIMALS_OFFSET], "little"),
    )


async def fetch_mint_safety(client: AsyncClient, mint: Pubkey) -> MintSafety | None:
    """Return authorities and owning program for ``mint``, or ``None`` if it does not exist."""

    snapshot = await fetch_account(client, mint)
    if snapshot is None:
        return None
    return decode_mint(snapshot.data, snapshot.owner)


async def mint_decimals(client: AsyncClient, mint: Pubkey, default: int = 9) -> int:
    info = await fetch_mint_safety(client, mint)
    return default if info is None else info.decimals


async def token_balance(client: AsyncClient, account: Pubkey) -> int | None:
    """Return the raw balance of token ``account`` or ``None`` when it cannot be read."""

    try:
        resp = await client.get_token_account_balance(account)
    except RPCException as exc:
        logger.debug("Token balance for %s unavailable: %s", account, exc)
        return None
    value = getattr(resp, "value", None)
    if value is None:
        return None
    return int(value.amount)


async def owner_token_balance(client: AsyncClient, owner: Pubkey, mint: Pubkey) -> int:
    """Return ``owner``'s balance of ``mint`` held in its associated token account."""

    balance = await token_balance(client, associated_token_address(owner, mint))
    return balance or 0


__all__ = [
    "MINT_LAYOUT_LEN",
    "MintSafety",
    "decode_mint",
    "fetch_mint_safety",
    "mint_decimals",
    "owner_token_balance",
    "token_balance",
]
