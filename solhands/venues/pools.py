"""Per-venue pool discovery by mint pair."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Protocol

import aiohttp
from cachetools import TTLCache
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solana.rpc.types import MemcmpOpts
from solders.pubkey import Pubkey

from ..constants import PUMPSWAP_PROGRAM_ID
from ..errors import VenueBuildError
from ..http import HTTPError, fetch_json
from ..logging_utils import warn_once_per
from ..mint import token_balance
from ..rpc import current_slot, fetch_account
from ..util import coerce_pubkey
from .quoting import (
    DEFAULT_FEE_BPS,
    SwapRequest,
    Venue,
    VenueQuote,
    constant_product_quote,
    min_out_for,
    slot_within_lag,
)

logger = logging.getLogger(__name__)

RAYDIUM_POOLS_URL = "https://api.raydium.io/v2/sdk/liquidity/mainnet.json"

_READ_ERRORS = (SolanaRpcException, RPCException, HTTPError, aiohttp.ClientError, asyncio.TimeoutError)

# PumpSwap ``Pool`` account layout
PUMPSWAP_BASE_MINT_OFFSET = 43
PUMPSWAP_QUOTE_MINT_OFFSET = 75
PUMPSWAP_LP_MINT_OFFSET = 107
PUMPSWAP_BASE_VAULT_OFFSET = 139
PUMPSWAP_QUOTE_VAULT_OFFSET = 171
PUMPSWAP_COIN_CREATOR_OFFSET = 211
PUMPSWAP_POOL_MIN_LEN = PUMPSWAP_COIN_CREATOR_OFFSET + 32


@dataclass(frozen=True)
class PoolInfo:
    pool_id: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    fee_bps: int = DEFAULT_FEE_BPS
    coin_creator: Pubkey | None = None
    keys: Mapping[str, Any] = field(default_factory=dict)

    def orient(self, input_mint: Pubkey) -> tuple[Pubkey, Pubkey]:
        """Return ``(input_vault, output_vault)`` for a swap from ``input_mint``."""

        if input_mint == self.base_mint:
            return self.base_vault, self.quote_vault
        return self.quote_vault, self.base_vault


class PoolLookup(Protocol):
    async def find(self, mint_a: Pubkey, mint_b: Pubkey) -> PoolInfo | None: ...


def _key_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(bytes(data[offset : offset + 32]))


def decode_pumpswap_pool(pool_id: Pubkey, data: bytes) -> PoolInfo | None:
    if len(data) < PUMPSWAP_POOL_MIN_LEN:
        return None
    return PoolInfo(
        pool_id=pool_id,
        base_mint=_key_at(data, PUMPSWAP_BASE_MINT_OFFSET),
        quote_mint=_key_at(data, PUMPSWAP_QUOTE_MINT_OFFSET),
        base_vault=_key_at(data, PUMPSWAP_BASE_VAULT_OFFSET),
        quote_vault=_key_at(data, PUMPSWAP_QUOTE_VAULT_OFFSET),
        coin_creator=_key_at(data, PUMPSWAP_COIN_CREATOR_OFFSET),
        keys={"lp_mint": _key_at(data, PUMPSWAP_LP_MINT_OFFSET)},
    )


class PumpSwapPoolLookup:
    """Find PumpSwap pools with ``getProgramAccounts`` memcmp filters on both mints."""

    def __init__(self, client: AsyncClient, program_id: Pubkey = PUMPSWAP_PROGRAM_ID) -> None:
        self.client = client
        self.program_id = program_id

    async def _scan(self, base: Pubkey, quote: Pubkey) -> PoolInfo | None:
        resp = await self.client.get_program_accounts(
            self.program_id,
            encoding="base64",
            filters=[
                MemcmpOpts(offset=PUMPSWAP_BASE_MINT_OFFSET, bytes=str(base)),
                MemcmpOpts(offset=PUMPSWAP_QUOTE_MINT_OFFSET, bytes=str(quote)),
            ],
        )
        for keyed in resp.value or []:
            pool = decode_pumpswap_pool(keyed.pubkey, bytes(keyed.account.data))
            if pool is not None:
                return pool
        return None

    async def find(self, mint_a: Pubkey, mint_b: Pubkey) -> PoolInfo | None:
        pool = await self._scan(mint_a, mint_b)
        if pool is None:
            pool = await self._scan(mint_b, mint_a)
        if pool is None:
            logger.debug("No PumpSwap pool for %s/%s", mint_a, mint_b)
        return pool


def _pool_from_json(entry: Mapping[str, Any]) -> PoolInfo | None:
    pool_id = coerce_pubkey(entry.get("id"))
    base_mint = coerce_pubkey(entry.get("baseMint"))
    quote_mint = coerce_pubkey(entry.get("quoteMint"))
    base_vault = coerce_pubkey(entry.get("baseVault"))
    quote_vault = coerce_pubkey(entry.get("quoteVault"))
    if None in (pool_id, base_mint, quote_mint, base_vault, quote_vault):
        return None
    return PoolInfo(
        pool_id=pool_id,  # type: ignore[arg-type]
        base_mint=base_mint,  # type: ignore[arg-type]
        quote_mint=quote_mint,  # type: ignore[arg-type]
        base_vault=base_vault,  # type: ignore[arg-type]
        quote_vault=quote_vault,  # type: ignore[arg-type]
        keys=dict(entry),
    )


class RaydiumPoolLookup:
    """Raydium v4 pools from the public liquidity list, cached for ``ttl`` seconds."""

    def __init__(
        self,
        url: str = RAYDIUM_POOLS_URL,
        *,
        ttl: float = 300.0,
        timer=time.monotonic,
    ) -> None:
        self.url = url
        self._cache: TTLCache = TTLCache(maxsize=1, ttl=ttl, timer=timer)

    async def pools(self) -> List[Mapping[str, Any]]:
        cached = self._cache.get(self.url)
        if cached is not None:
            return cached
        payload = await fetch_json(self.url)
        entries: List[Mapping[str, Any]] = []
        if isinstance(payload, Mapping):
            for value in payload.values():
                if isinstance(value, list):
                    entries.extend(v for v in value if isinstance(v, Mapping))
        elif isinstance(payload, list):
            entries.extend(v for v in payload if isinstance(v, Mapping))
        logger.info("Loaded %d Raydium pools", len(entries))
        self._cache[self.url] = entries
        return entries

    async def find(self, mint_a: Pubkey, mint_b: Pubkey) -> PoolInfo | None:
        a, b = str(mint_a), str(mint_b)
        for entry in await self.pools():
            base, quote = entry.get("baseMint"), entry.get("quoteMint")
            if (base == a and quote == b) or (base == b and quote == a):
                return _pool_from_json(entry)
        return None


class PoolVenue:
    """Quote and health checks common to the constant-product venues."""

    venue: Venue

    def __init__(self, client: AsyncClient, pools: PoolLookup) -> None:
        self.client = client
        self.pools = pools

    async def quote(self, input_mint: Pubkey, output_mint: Pubkey, amount: int) -> VenueQuote | None:
        """Return a quote or ``None`` when the pool or its reserves are unavailable."""

        if amount <= 0:
            return None
        try:
            pool = await self.pools.find(input_mint, output_mint)
            if pool is None:
                return None
            in_vault, out_vault = pool.orient(input_mint)
            reserve_in, reserve_out = await asyncio.gather(
                token_balance(self.client, in_vault), token_balance(self.client, out_vault)
            )
            if not reserve_in or not reserve_out:
                return None
            slot = await current_slot(self.client)
        except _READ_ERRORS as exc:
            warn_once_per(
                1, f"quote:{self.venue.value}", "%s quote unavailable: %s", self.venue.value, exc, logger=logger
            )
            return None
        return constant_product_quote(
            self.venue,
            reserve_in,
            reserve_out,
            amount,
            fee_bps=pool.fee_bps,
            slot=slot,
            pool_id=str(pool.pool_id),
        )

    async def healthy(self, input_mint: Pubkey, output_mint: Pubkey) -> bool:
        """A venue is healthy when its pool exists and was observed within the slot lag."""

        try:
            pool = await self.pools.find(input_mint, output_mint)
            if pool is None:
                return False
            snapshot = await fetch_account(self.client, pool.pool_id)
            if snapshot is None:
                return False
            slot = await current_slot(self.client)
        except _READ_ERRORS as exc:
            logger.warning("%s health check failed: %s", self.venue.value, exc)
            return False
        return slot_within_lag(snapshot.slot, slot)

    async def require_pool(self, request: SwapRequest) -> PoolInfo:
        pool = await self.pools.find(request.input_mint, request.output_mint)
        if pool is None:
            raise VenueBuildError(self.venue.value, "pool not found for mint pair")
        return pool

    async def quoted_min_out(self, request: SwapRequest) -> int | None:
        if request.min_out is not None:
            return request.min_out
        quote = await self.quote(request.input_mint, request.output_mint, request.amount_in)
        if quote is None:
            return None
        return min_out_for(quote.out_amount, request.slippage_bps)


def unprotected_min_out_warning(venue: Venue, mint: Pubkey) -> None:
    warn_once_per(
        10,
        f"min_out:{venue.value}:{mint}",
        "%s swap for %s has no quote; encoding zero output minimum, on-chain slippage protection disabled",
        venue.value,
        mint,
        logger=logger,
    )


__all__ = [
    "PUMPSWAP_POOL_MIN_LEN",
    "PoolInfo",
    "PoolLookup",
    "PoolVenue",
    "PumpSwapPoolLookup",
    "RAYDIUM_POOLS_URL",
    "RaydiumPoolLookup",
    "decode_pumpswap_pool",
    "unprotected_min_out_warning",
]
