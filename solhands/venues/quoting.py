"""Constant-product quoting shared by the open-market venues."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol, Sequence, Tuple

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..assembly import with_priority_fee
from ..constants import BPS_DENOMINATOR

DEFAULT_FEE_BPS = 25
MAX_SLOT_LAG = 3
MAX_QUOTE_AGE_SECONDS = 30.0


class Venue(str, Enum):
    CURVE = "curve"
    PUMPSWAP = "pumpswap"
    RAYDIUM = "raydium"

    @property
    def alternate(self) -> "Venue":
        if self is Venue.PUMPSWAP:
            return Venue.RAYDIUM
        if self is Venue.RAYDIUM:
            return Venue.PUMPSWAP
        return self


@dataclass(frozen=True)
class VenueQuote:
    venue: Venue
    out_amount: int
    impact_bps: float
    reserve_in: int
    reserve_out: int
    slot: int
    timestamp: float
    pool_id: str


@dataclass(frozen=True)
class SwapRequest:
    """One swap against a venue, amounts in smallest units.

    ``pre_instructions`` run before the venue's own setup and swap,
    ``post_instructions`` after it, in the order given.
    """

    payer: Pubkey
    input_mint: Pubkey
    output_mint: Pubkey
    amount_in: int
    slippage_bps: int
    priority_fee: int | None = None
    min_out: int | None = None
    pre_instructions: Tuple[Instruction, ...] = ()
    post_instructions: Tuple[Instruction, ...] = ()

    def __post_init__(self) -> None:
        if self.amount_in <= 0:
            raise ValueError("amount_in must be positive")

    def envelop(self, instructions: Sequence[Instruction]) -> List[Instruction]:
        """Return ``instructions`` framed by the request's extras and fee."""

        return with_priority_fee(
            [*self.pre_instructions, *instructions, *self.post_instructions],
            self.priority_fee,
        )


def constant_product_out(reserve_in: int, reserve_out: int, amount_in: int, fee_bps: int = DEFAULT_FEE_BPS) -> int:
    """Return ``y - (x*y) // (x + dx_after_fee)`` for reserves ``(x, y)``."""

    if reserve_in <= 0 or reserve_out <= 0 or amount_in <= 0:
        return 0
    dx = amount_in * (BPS_DENOMINATOR - fee_bps) // BPS_DENOMINATOR
    return reserve_out - (reserve_in * reserve_out) // (reserve_in + dx)


def price_impact_bps(reserve_in: int, reserve_out: int, amount_in: int, fee_bps: int = DEFAULT_FEE_BPS) -> float:
    """Relative move of ``reserve_out / reserve_in`` caused by the trade, in bps."""

    if reserve_in <= 0 or reserve_out <= 0:
        return float(BPS_DENOMINATOR)
    dx = amount_in * (BPS_DENOMINATOR - fee_bps) // BPS_DENOMINATOR
    new_in = reserve_in + dx
    new_out = (reserve_in * reserve_out) // new_in
    before = reserve_out / reserve_in
    after = new_out / new_in
    return abs(after - before) / before * BPS_DENOMINATOR


def constant_product_quote(
    venue: Venue,
    reserve_in: int,
    reserve_out: int,
    amount_in: int,
    *,
    fee_bps: int = DEFAULT_FEE_BPS,
    slot: int,
    pool_id: str,
    timestamp: float | None = None,
) -> VenueQuote:
    return VenueQuote(
        venue=venue,
        out_amount=constant_product_out(reserve_in, reserve_out, amount_in, fee_bps),
        impact_bps=price_impact_bps(reserve_in, reserve_out, amount_in, fee_bps),
        reserve_in=reserve_in,
        reserve_out=reserve_out,
        slot=slot,
        timestamp=time.time() if timestamp is None else timestamp,
        pool_id=pool_id,
    )


def min_out_for(expected_out: int, slippage_bps: int) -> int:
    return expected_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def is_fresh(quote: VenueQuote, current_slot: int, now: float | None = None) -> bool:
    now = time.time() if now is None else now
    return current_slot - quote.slot <= MAX_SLOT_LAG and now - quote.timestamp <= MAX_QUOTE_AGE_SECONDS


def slot_within_lag(account_slot: int, current_slot: int) -> bool:
    return current_slot - account_slot <= MAX_SLOT_LAG


class VenueQuoter(Protocol):
    """Interface the orchestrator uses for an open-market venue."""

    venue: Venue

    async def quote(self, input_mint: Pubkey, output_mint: Pubkey, amount: int) -> VenueQuote | None: ...

    async def healthy(self, input_mint: Pubkey, output_mint: Pubkey) -> bool: ...

    async def build_swap(self, request: SwapRequest) -> List[Instruction]: ...


__all__ = [
    "DEFAULT_FEE_BPS",
    "MAX_QUOTE_AGE_SECONDS",
    "MAX_SLOT_LAG",
    "SwapRequest",
    "Venue",
    "VenueQuote",
    "VenueQuoter",
    "constant_product_out",
    "constant_product_quote",
    "is_fresh",
    "min_out_for",
    "price_impact_bps",
    "slot_within_lag",
]
