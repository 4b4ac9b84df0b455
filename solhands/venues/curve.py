"""Launch-phase venue: the Pump.fun bonding curve.

Buys pay SOL directly (no wrapped-SOL account) and receive tokens; sells
return SOL.  Both instructions are built through :class:`AccountResolver`
so the account list follows whatever schema is loaded.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Any, List, Mapping

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..assembly import ensure_ata_instructions
from ..constants import WSOL_MINT
from ..errors import EncodingError, ResolutionError, SchemaError, VenueBuildError
from ..idl.codec import decode_account
from ..idl.resolver import AccountResolver, KnownInputs
from ..rpc import current_slot, fetch_account
from .pools import unprotected_min_out_warning
from .quoting import SwapRequest, Venue, VenueQuote, constant_product_quote, min_out_for, slot_within_lag

logger = logging.getLogger(__name__)

CURVE_FEE_BPS = 100
_RESERVES = struct.Struct("<QQ")
_COMPLETE_OFFSET = 8 + 5 * 8


@dataclass(frozen=True)
class CurveState:
    address: Pubkey
    virtual_token_reserves: int
    virtual_sol_reserves: int
    complete: bool
    slot: int


def _field(decoded: Mapping[str, Any], name: str) -> Any:
    if name in decoded:
        return decoded[name]
    head, *rest = name.split("_")
    return decoded[head + "".join(part.title() for part in rest)]


def decode_curve_state(address: Pubkey, data: bytes, slot: int, resolver: AccountResolver | None = None) -> CurveState | None:
    """Decode virtual reserves from raw ``BondingCurve`` data.

    The typed decoder is tried first; the fixed layout is used when the
    schema does not describe the account.
    """

    if resolver is not None:
        try:
            decoded = decode_account(resolver.schema, "BondingCurve", data)
            return CurveState(
                address=address,
                virtual_token_reserves=int(_field(decoded, "virtual_token_reserves")),
                virtual_sol_reserves=int(_field(decoded, "virtual_sol_reserves")),
                complete=bool(decoded.get("complete", False)),
                slot=slot,
            )
        except (EncodingError, SchemaError, KeyError, TypeError, ValueError) as exc:
            logger.debug("BondingCurve decode failed: %s", exc)
    if len(data) <= _COMPLETE_OFFSET:
        return None
    vtoken, vsol = _RESERVES.unpack_from(data, 8)
    return CurveState(
        address=address,
        virtual_token_reserves=vtoken,
        virtual_sol_reserves=vsol,
        complete=bool(data[_COMPLETE_OFFSET]),
        slot=slot,
    )


class CurveVenue:
    venue = Venue.CURVE

    def __init__(self, client: AsyncClient, resolver: AccountResolver) -> None:
        self.client = client
        self.resolver = resolver

    async def read_curve(self, mint: Pubkey) -> CurveState | None:
        address = self.resolver.bonding_curve_address(mint)
        snapshot = await fetch_account(self.client, address)
        if snapshot is None:
            return None
        return decode_curve_state(address, snapshot.data, snapshot.slot, self.resolver)

    async def quote(self, input_mint: Pubkey, output_mint: Pubkey, amount: int) -> VenueQuote | None:
        buying = input_mint == WSOL_MINT
        mint = output_mint if buying else input_mint
        if amount <= 0:
            return None
        try:
            state = await self.read_curve(mint)
            slot = await current_slot(self.client)
        except (SolanaRpcException, RPCException) as exc:
            logger.warning("Curve read for %s failed: %s", mint, exc)
            return None
        if state is None or not state.virtual_sol_reserves or not state.virtual_token_reserves:
            return None
        if buying:
            reserve_in, reserve_out = state.virtual_sol_reserves, state.virtual_token_reserves
        else:
            reserve_in, reserve_out = state.virtual_token_reserves, state.virtual_sol_reserves
        return constant_product_quote(
            self.venue,
            reserve_in,
            reserve_out,
            amount,
            fee_bps=CURVE_FEE_BPS,
            slot=slot,
            pool_id=str(state.address),
        )

    async def healthy(self, input_mint: Pubkey, output_mint: Pubkey) -> bool:
        mint = output_mint if input_mint == WSOL_MINT else input_mint
        try:
            state = await self.read_curve(mint)
            slot = await current_slot(self.client)
        except (SolanaRpcException, RPCException) as exc:
            logger.warning("Curve health check for %s failed: %s", mint, exc)
            return False
        return state is not None and not state.complete and slot_within_lag(state.slot, slot)

    async def _setup(self, payer: Pubkey, mint: Pubkey) -> List[Instruction]:
        _, ixs = await ensure_ata_instructions(self.client, payer, payer, mint)
        curve = self.resolver.bonding_curve_address(mint)
        _, curve_ixs = await ensure_ata_instructions(self.client, payer, curve, mint)
        return ixs + curve_ixs

    async def build_swap(self, request: SwapRequest) -> List[Instruction]:
        if request.input_mint == WSOL_MINT:
            return await self.build_buy(request)
        return await self.build_sell(request)

    async def build_buy(self, request: SwapRequest) -> List[Instruction]:
        """Spend at most ``amount_in`` lamports for a quoted token amount."""

        mint = request.output_mint
        try:
            quote = await self.quote(WSOL_MINT, mint, request.amount_in)
            if quote is None or quote.out_amount <= 0:
                raise VenueBuildError(self.venue.value, f"bonding curve for {mint} unreadable")
            tokens = request.min_out if request.min_out is not None else min_out_for(
                quote.out_amount, request.slippage_bps
            )
            ixs = await self._setup(request.payer, mint)
            ix = await self.resolver.build(
                "buy",
                KnownInputs(payer=request.payer, mint=mint),
                amount=request.amount_in,
                min_out=tokens,
                arg_overrides={"amount": tokens, "max_sol_cost": request.amount_in},
            )
        except VenueBuildError:
            raise
        except (SchemaError, ResolutionError, EncodingError, SolanaRpcException, RPCException) as exc:
            raise VenueBuildError(self.venue.value, str(exc)) from exc
        ixs.append(ix)
        return request.envelop(ixs)

    async def build_sell(self, request: SwapRequest) -> List[Instruction]:
        """Sell ``amount_in`` tokens for SOL."""

        mint = request.input_mint
        try:
            min_out = request.min_out
            if min_out is None:
                quote = await self.quote(mint, WSOL_MINT, request.amount_in)
                if quote is None:
                    unprotected_min_out_warning(self.venue, mint)
                    min_out = 0
                else:
                    min_out = min_out_for(quote.out_amount, request.slippage_bps)
            ixs = await self._setup(request.payer, mint)
            ix = await self.resolver.build(
                "sell",
                KnownInputs(payer=request.payer, mint=mint),
                amount=request.amount_in,
                min_out=min_out,
            )
        except (SchemaError, ResolutionError, EncodingError, SolanaRpcException, RPCException) as exc:
            raise VenueBuildError(self.venue.value, str(exc)) from exc
        ixs.append(ix)
        return request.envelop(ixs)


__all__ = ["CURVE_FEE_BPS", "CurveState", "CurveVenue", "decode_curve_state"]
