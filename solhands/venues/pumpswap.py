"""PumpSwap AMM (venue A): quotes, health and swap instructions."""

from __future__ import annotations

import logging
from typing import Dict, List

from solana.rpc.async_api import AsyncClient
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..assembly import associated_token_address, ensure_ata_instructions
from ..constants import PUMPSWAP_PROGRAM_ID, TOKEN_PROGRAM_ID
from ..errors import EncodingError, ResolutionError, SchemaError, VenueBuildError
from ..idl.caches import FeeRecipientCache
from ..idl.codec import decode_account
from ..idl.resolver import AccountResolver, KnownInputs
from ..rpc import fetch_account
from ..util import coerce_pubkey
from .pools import _READ_ERRORS, PoolInfo, PoolVenue, PumpSwapPoolLookup, unprotected_min_out_warning
from .quoting import SwapRequest, Venue

logger = logging.getLogger(__name__)

GLOBAL_CONFIG_SEED = b"global_config"
CREATOR_VAULT_SEED = b"creator_vault"
# discriminator, admin, lp fee bps, protocol fee bps, disable flags
PROTOCOL_FEE_RECIPIENTS_OFFSET = 8 + 32 + 8 + 8 + 1


class PumpSwapVenue(PoolVenue):
    """Venue A.  Instructions are built through the resolver with the PumpSwap schema."""

    venue = Venue.PUMPSWAP

    def __init__(
        self,
        client: AsyncClient,
        resolver: AccountResolver,
        *,
        pools: PumpSwapPoolLookup | None = None,
        fee_recipient_cache: FeeRecipientCache | None = None,
    ) -> None:
        super().__init__(client, pools or PumpSwapPoolLookup(client, resolver.program_id))
        self.resolver = resolver
        self.fee_recipient_cache = fee_recipient_cache or FeeRecipientCache(
            resolver.settings.fee_refresh_ms / 1000
        )

    @property
    def program_id(self) -> Pubkey:
        return self.resolver.program_id or PUMPSWAP_PROGRAM_ID

    def global_config_address(self) -> Pubkey:
        addr, _ = Pubkey.find_program_address([GLOBAL_CONFIG_SEED], self.program_id)
        return addr

    def coin_creator_vault_authority(self, coin_creator: Pubkey) -> Pubkey:
        addr, _ = Pubkey.find_program_address([CREATOR_VAULT_SEED, bytes(coin_creator)], self.program_id)
        return addr

    async def protocol_fee_recipient(self) -> Pubkey:
        cached = self.fee_recipient_cache.get()
        if cached is not None:
            return cached
        config = self.global_config_address()
        snapshot = await fetch_account(self.client, config)
        if snapshot is None:
            raise ResolutionError("protocol_fee_recipient", f"global config {config} not found")
        recipient: Pubkey | None = None
        try:
            decoded = decode_account(self.resolver.schema, "GlobalConfig", snapshot.data)
            recipients = decoded.get("protocol_fee_recipients") or decoded.get("protocolFeeRecipients") or []
            recipient = next(
                (pk for pk in map(coerce_pubkey, recipients) if pk is not None and pk != Pubkey.default()),
                None,
            )
        except (EncodingError, SchemaError) as exc:
            logger.debug("GlobalConfig decode failed: %s", exc)
        if recipient is None:
            end = PROTOCOL_FEE_RECIPIENTS_OFFSET + 32
            if len(snapshot.data) < end:
                raise ResolutionError("protocol_fee_recipient", "global config too short")
            recipient = Pubkey.from_bytes(bytes(snapshot.data[PROTOCOL_FEE_RECIPIENTS_OFFSET:end]))
        self.fee_recipient_cache.set(recipient)
        return recipient

    async def _overrides(self, pool: PoolInfo, payer: Pubkey) -> Dict[str, Pubkey]:
        recipient = await self.protocol_fee_recipient()
        overrides = {
            "pool": pool.pool_id,
            "global_config": self.global_config_address(),
            "base_mint": pool.base_mint,
            "quote_mint": pool.quote_mint,
            "user_base_token_account": associated_token_address(payer, pool.base_mint),
            "user_quote_token_account": associated_token_address(payer, pool.quote_mint),
            "pool_base_token_account": pool.base_vault,
            "pool_quote_token_account": pool.quote_vault,
            "protocol_fee_recipient": recipient,
            "protocol_fee_recipient_token_account": associated_token_address(recipient, pool.quote_mint),
            "base_token_program": TOKEN_PROGRAM_ID,
            "quote_token_program": TOKEN_PROGRAM_ID,
        }
        if pool.coin_creator is not None:
            authority = self.coin_creator_vault_authority(pool.coin_creator)
            overrides["coin_creator_vault_authority"] = authority
            overrides["coin_creator_vault_ata"] = associated_token_address(authority, pool.quote_mint)
        return overrides

    async def build_swap(self, request: SwapRequest) -> List[Instruction]:
        """Return ATA setup plus one PumpSwap ``buy`` or ``sell`` instruction.

        Selling base sends ``base_amount_in``/``min_quote_amount_out``; buying
        base from quote needs a quote to size ``base_amount_out`` against the
        ``max_quote_amount_in`` cap.
        """

        try:
            pool = await self.require_pool(request)
            selling_base = request.input_mint == pool.base_mint
            min_out = await self.quoted_min_out(request)
            if selling_base:
                name = "sell"
                if min_out is None:
                    unprotected_min_out_warning(self.venue, request.input_mint)
                    min_out = 0
                args = {"base_amount_in": request.amount_in, "min_quote_amount_out": min_out}
            else:
                name = "buy"
                if not min_out:
                    raise VenueBuildError(self.venue.value, "no quote available to size buy")
                args = {"base_amount_out": min_out, "max_quote_amount_in": request.amount_in}
            _, ixs = await ensure_ata_instructions(
                self.client, request.payer, request.payer, request.output_mint
            )
            inputs = KnownInputs(
                payer=request.payer,
                mint=pool.base_mint,
                holding_account=associated_token_address(request.payer, pool.base_mint),
                overrides=await self._overrides(pool, request.payer),
            )
            ix = await self.resolver.build(
                name, inputs, amount=request.amount_in, min_out=min_out, arg_overrides=args
            )
        except VenueBuildError:
            raise
        except (SchemaError, ResolutionError, EncodingError, *_READ_ERRORS) as exc:
            raise VenueBuildError(self.venue.value, str(exc)) from exc
        ixs.append(ix)
        return request.envelop(ixs)


__all__ = ["PumpSwapVenue"]
