"""Raydium AMM v4 (venue B): ``swapBaseIn`` built from the public pool list keys."""

from __future__ import annotations

import logging
import struct
from typing import List, Mapping

from solana.rpc.async_api import AsyncClient
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..assembly import associated_token_address, ensure_ata_instructions
from ..constants import RAYDIUM_V4_PROGRAM_ID, TOKEN_PROGRAM_ID
from ..errors import VenueBuildError
from ..util import coerce_pubkey
from .pools import _READ_ERRORS, PoolInfo, PoolVenue, RaydiumPoolLookup, unprotected_min_out_warning
from .quoting import SwapRequest, Venue

logger = logging.getLogger(__name__)

SWAP_BASE_IN_TAG = 9
_SWAP_ARGS = struct.Struct("<BQQ")

# (pool-list key, writable) in instruction order, between the token program
# and the user accounts
POOL_ACCOUNT_KEYS = (
    ("id", True),
    ("authority", False),
    ("openOrders", True),
    ("targetOrders", True),
    ("baseVault", True),
    ("quoteVault", True),
    ("marketProgramId", False),
    ("marketId", True),
    ("marketBids", True),
    ("marketAsks", True),
    ("marketEventQueue", True),
    ("marketBaseVault", True),
    ("marketQuoteVault", True),
    ("marketAuthority", False),
)


def swap_base_in_data(amount_in: int, min_out: int) -> bytes:
    return _SWAP_ARGS.pack(SWAP_BASE_IN_TAG, int(amount_in), int(min_out))


def swap_base_in_instruction(
    keys: Mapping[str, object],
    source: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount_in: int,
    min_out: int,
) -> Instruction:
    """Return the 18-account ``swapBaseIn`` instruction for pool ``keys``."""

    metas = [AccountMeta(TOKEN_PROGRAM_ID, False, False)]
    for name, writable in POOL_ACCOUNT_KEYS:
        address = coerce_pubkey(keys.get(name))
        if address is None:
            raise VenueBuildError(Venue.RAYDIUM.value, f"pool key {name} missing")
        metas.append(AccountMeta(address, False, writable))
    metas.append(AccountMeta(source, False, True))
    metas.append(AccountMeta(destination, False, True))
    metas.append(AccountMeta(owner, True, False))
    program_id = coerce_pubkey(keys.get("programId")) or RAYDIUM_V4_PROGRAM_ID
    return Instruction(program_id, swap_base_in_data(amount_in, min_out), metas)


class RaydiumVenue(PoolVenue):
    venue = Venue.RAYDIUM

    def __init__(self, client: AsyncClient, *, pools: RaydiumPoolLookup | None = None) -> None:
        super().__init__(client, pools or RaydiumPoolLookup())

    async def build_swap(self, request: SwapRequest) -> List[Instruction]:
        try:
            pool: PoolInfo = await self.require_pool(request)
            min_out = await self.quoted_min_out(request)
            if min_out is None:
                unprotected_min_out_warning(self.venue, request.input_mint)
                min_out = 0
            destination, ixs = await ensure_ata_instructions(
                self.client, request.payer, request.payer, request.output_mint
            )
        except _READ_ERRORS as exc:
            raise VenueBuildError(self.venue.value, str(exc)) from exc
        source = associated_token_address(request.payer, request.input_mint)
        ixs.append(
            swap_base_in_instruction(
                pool.keys, source, destination, request.payer, request.amount_in, min_out
            )
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Raydium swap via pool %s min_out=%d", pool.pool_id, min_out)
        return request.envelop(ixs)


__all__ = ["POOL_ACCOUNT_KEYS", "RaydiumVenue", "swap_base_in_data", "swap_base_in_instruction"]
