"""Execution orchestrator: turn a trading decision into landed swaps.

One call to :meth:`Executor.execute` runs a single cycle for one asset::

    GATED -> SIZED -> ROUTED -> SLICED -> SUBMITTED -> SETTLED

Any stage may end the cycle early as ``SKIPPED`` (a safety gate or policy
said no) or ``FAILED`` (something broke).  Neither is raised to the caller;
both are reported in the returned :class:`ExecutionResult`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .assembly import build_unwrap_instructions, build_wrap_instructions
from .config import ExecutionConfig, ResolverSettings, load_execution_config
from .constants import LAMPORTS_PER_SOL, TOKEN_PROGRAM_ID, USDC_MINT, WSOL_MINT
from .errors import SafetyGateSkip, SimulationError, SubmissionError, VenueBuildError
from .idl.resolver import AccountResolver
from .idl.schema import load_schema
from .mint import fetch_mint_safety, owner_token_balance
from .oracle import HintPriceOracle, SolPriceOracle
from .phase import Phase, PhaseRegistry
from .rpc import RpcManager, current_slot
from .submit import SliceSubmitter
from .venues.curve import CurveVenue
from .venues.pumpswap import PumpSwapVenue
from .venues.quoting import SwapRequest, Venue, VenueQuote, VenueQuoter, is_fresh
from .venues.raydium import RaydiumVenue

logger = logging.getLogger(__name__)

USDC_UNITS = 1_000_000


class Action(str, Enum):
    BUY = "buy"
    EXIT = "exit"
    HOLD = "hold"


@dataclass(frozen=True)
class Decision:
    mint: str
    action: Action
    size_usd: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", Action(self.action))


class ExecutionState(str, Enum):
    GATED = "gated"
    SIZED = "sized"
    ROUTED = "routed"
    SLICED = "sliced"
    SUBMITTED = "submitted"
    SETTLED = "settled"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ExecutionResult:
    mint: str
    action: Action
    state: ExecutionState = ExecutionState.GATED
    reason: str | None = None
    venue: Venue | None = None
    total_slices: int = 0
    confirmed_slices: int = 0
    planned_amount: int = 0
    confirmed_amount: int = 0
    signatures: List[str] = field(default_factory=list)
    pnl_delta: float = 0.0
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.state is ExecutionState.SETTLED


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DailyPnlAccumulator:
    """Signed USD running total that resets once per UTC calendar day."""

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self._clock = clock
        self._day: date | None = None
        self._total = 0.0

    def _roll(self) -> None:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        today = now.date()
        if self._day is None:
            self._day = today
        elif today != self._day:
            logger.info("Daily PnL reset (%s closed at %.2f USD)", self._day, self._total)
            self._day = today
            self._total = 0.0

    @property
    def total(self) -> float:
        self._roll()
        return self._total

    def add(self, delta_usd: float) -> float:
        self._roll()
        self._total += delta_usd
        return self._total


@dataclass(frozen=True)
class PlannedSlice:
    venue: Venue
    amount: int


@dataclass
class ExecutionPlan:
    """Ordered slices for one batch; instructions are built per slice when it runs."""

    slices: List[PlannedSlice]

    @property
    def total(self) -> int:
        return sum(s.amount for s in self.slices)

    def fail_over(self, start: int, venue: Venue) -> None:
        """Move slice ``start`` and every later slice to ``venue``."""

        self.slices[start:] = [PlannedSlice(venue, s.amount) for s in self.slices[start:]]


def split_amount(total: int, k: int) -> List[int]:
    """Split ``total`` into ``k`` equal parts with the remainder on the last one."""

    if total <= 0:
        raise ValueError("total must be positive")
    k = max(1, int(k))
    part = total // k
    if part == 0:
        return [total]
    return [part] * (k - 1) + [total - part * (k - 1)]


def choose_venue(
    *,
    primary_healthy: bool,
    primary_quote: VenueQuote | None,
    alternate_quote: VenueQuote | None,
    amount: int,
    slot: int,
    impact_cap_bps: float,
    switch_margin_bps: float,
    now: float | None = None,
) -> Tuple[Venue, str]:
    """Pick PumpSwap or Raydium for an open-market batch.

    Returns the venue and a short reason for the log.
    """

    venue = Venue.PUMPSWAP if primary_healthy else Venue.RAYDIUM
    reason = "default" if primary_healthy else "primary unhealthy"
    pq, rq = primary_quote, alternate_quote
    quotes = {Venue.PUMPSWAP: pq, Venue.RAYDIUM: rq}

    if pq is not None and rq is not None:
        if rq.impact_bps - pq.impact_bps <= -switch_margin_bps:
            venue, reason = Venue.RAYDIUM, "alternate impact better by margin"
        if pq.impact_bps > impact_cap_bps and rq.impact_bps <= impact_cap_bps:
            venue, reason = Venue.RAYDIUM, "primary over impact cap"
        chosen = quotes[venue]
        other = quotes[venue.alternate]
        if amount > chosen.reserve_in // 100 and chosen.impact_bps > impact_cap_bps:
            if other is not None and other.impact_bps <= impact_cap_bps:
                venue, reason = venue.alternate, "slice exceeds 1% of reserve"
        fresh = {v: is_fresh(q, slot, now) for v, q in quotes.items() if q is not None}
        if not fresh[venue] and fresh[venue.alternate]:
            venue, reason = venue.alternate, "stale quote"
    elif quotes[venue] is None and quotes[venue.alternate] is not None:
        venue, reason = venue.alternate, "quote unavailable"
    return venue, reason


class Executor:
    """Run decisions against the curve, PumpSwap and Raydium venues."""

    def __init__(
        self,
        client: AsyncClient,
        payer: Keypair,
        venues: Mapping[Venue, VenueQuoter],
        *,
        config: ExecutionConfig | None = None,
        oracle: SolPriceOracle | None = None,
        phases: PhaseRegistry | None = None,
        pnl: DailyPnlAccumulator | None = None,
        submitter: SliceSubmitter | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.client = client
        self.payer = payer
        self.venues = dict(venues)
        self.config = config or load_execution_config()
        self.oracle = oracle or HintPriceOracle(self.config.sol_usd_hint)
        self.phases = phases or PhaseRegistry()
        self.pnl = pnl or DailyPnlAccumulator()
        self.submitter = submitter or SliceSubmitter(
            client,
            [payer],
            commitment=Commitment(self.config.confirm_commitment),
            max_retries=self.config.max_send_retries,
            simulate=self.config.simulate_before_send,
        )
        self._sleep = sleep or asyncio.sleep

    @property
    def owner(self) -> Pubkey:
        return self.payer.pubkey()

    # ------------------------------------------------------------------
    # gates
    # ------------------------------------------------------------------
    async def check_gates(self, decision: Decision, phase: Phase) -> None:
        """Raise :class:`SafetyGateSkip` for the first gate that blocks ``decision``."""

        cfg = self.config
        if cfg.kill_switch:
            raise SafetyGateSkip("kill switch active")
        if cfg.daily_loss_limit_usd > 0 and self.pnl.total <= -cfg.daily_loss_limit_usd:
            raise SafetyGateSkip("daily loss limit reached")
        if decision.action is Action.HOLD:
            raise SafetyGateSkip("hold")
        if decision.mint in cfg.deny_mints:
            raise SafetyGateSkip("mint on deny list")
        if cfg.allow_mints and decision.mint not in cfg.allow_mints:
            raise SafetyGateSkip("mint not on allow list")
        if phase is Phase.CURVE:
            if decision.action is Action.BUY and cfg.disable_curve_buy:
                raise SafetyGateSkip("curve buys disabled")
            return
        info = await fetch_mint_safety(self.client, Pubkey.from_string(decision.mint))
        if info is None:
            raise SafetyGateSkip("mint account not found")
        if cfg.block_freeze and info.freeze_authority is not None:
            raise SafetyGateSkip("freeze authority active")
        if cfg.block_mint_authority and info.mint_authority is not None:
            raise SafetyGateSkip("mint authority active")
        if info.owner_program != TOKEN_PROGRAM_ID:
            raise SafetyGateSkip("non-standard token program")

    # ------------------------------------------------------------------
    # sizing
    # ------------------------------------------------------------------
    async def size(self, decision: Decision, phase: Phase) -> Tuple[Pubkey, Pubkey, int]:
        """Return ``(input_mint, output_mint, amount_in)`` in smallest units."""

        mint = Pubkey.from_string(decision.mint)
        if decision.action is Action.BUY:
            if decision.size_usd <= 0:
                raise SafetyGateSkip("non-positive size")
            if phase is Phase.CURVE or self.config.prefer_wsol:
                price = max(self.oracle.get(), 1e-6)
                amount = int(decision.size_usd / price * LAMPORTS_PER_SOL)
                input_mint = WSOL_MINT
            else:
                amount = int(decision.size_usd * USDC_UNITS)
                input_mint = USDC_MINT
            if amount <= 0:
                raise SafetyGateSkip("size rounds to zero")
            return input_mint, mint, amount
        balance = await owner_token_balance(self.client, self.owner, mint)
        if balance <= 0:
            raise SafetyGateSkip("nothing to exit")
        output_mint = WSOL_MINT if phase is Phase.CURVE else USDC_MINT
        return mint, output_mint, balance

    # ------------------------------------------------------------------
    # routing
    # ------------------------------------------------------------------
    async def route(
        self, input_mint: Pubkey, output_mint: Pubkey, amount: int
    ) -> Tuple[Venue, Dict[Venue, VenueQuote | None]]:
        primary = self.venues[Venue.PUMPSWAP]
        alternate = self.venues[Venue.RAYDIUM]
        healthy = await primary.healthy(input_mint, output_mint)
        pq, rq, slot = await asyncio.gather(
            primary.quote(input_mint, output_mint, amount),
            alternate.quote(input_mint, output_mint, amount),
            current_slot(self.client),
        )
        venue, reason = choose_venue(
            primary_healthy=healthy,
            primary_quote=pq,
            alternate_quote=rq,
            amount=amount,
            slot=slot,
            impact_cap_bps=self.config.impact_cap_bps,
            switch_margin_bps=self.config.switch_margin_bps,
        )
        logger.info("Routed %s -> %s via %s (%s)", input_mint, output_mint, venue.value, reason)
        return venue, {Venue.PUMPSWAP: pq, Venue.RAYDIUM: rq}

    # ------------------------------------------------------------------
    # slicing
    # ------------------------------------------------------------------
    async def build_slice(
        self, venue: Venue, input_mint: Pubkey, output_mint: Pubkey, amount: int
    ) -> List[Instruction]:
        owner = self.owner
        native_legs = venue is not Venue.CURVE
        pre: List[Instruction] = []
        post: List[Instruction] = []
        if native_legs and input_mint == WSOL_MINT:
            _, pre = await build_wrap_instructions(self.client, owner, owner, amount)
        if native_legs and output_mint == WSOL_MINT:
            _, post = build_unwrap_instructions(owner)
        request = SwapRequest(
            payer=owner,
            input_mint=input_mint,
            output_mint=output_mint,
            amount_in=amount,
            slippage_bps=self.config.slippage_bps,
            priority_fee=self.config.priority_fee,
            pre_instructions=tuple(pre),
            post_instructions=tuple(post),
        )
        return await self.venues[venue].build_swap(request)

    async def run_plan(
        self,
        plan: ExecutionPlan,
        input_mint: Pubkey,
        output_mint: Pubkey,
        result: ExecutionResult,
    ) -> None:
        """Build and submit each slice in order, recording progress on ``result``.

        Stops early on a second build failure or on a slice that could not be
        landed; slices confirmed before that still count.
        """

        failed_over = False
        i = 0
        while i < len(plan.slices):
            planned = plan.slices[i]
            try:
                ixs = await self.build_slice(planned.venue, input_mint, output_mint, planned.amount)
            except VenueBuildError as exc:
                if planned.venue is Venue.CURVE or failed_over:
                    logger.warning("%s build failed: %s", planned.venue.value, exc.reason)
                    result.error = exc
                    return
                failed_over = True
                logger.warning(
                    "%s build failed (%s); moving remaining slices to %s",
                    planned.venue.value,
                    exc.reason,
                    planned.venue.alternate.value,
                )
                plan.fail_over(i, planned.venue.alternate)
                result.venue = planned.venue.alternate
                continue
            try:
                sub = await self.submitter.submit(self.owner, ixs)
            except SimulationError as exc:
                logger.warning("Slice %d/%d rejected in simulation: %s", i + 1, len(plan.slices), exc)
                result.error = exc
            except SubmissionError as exc:
                logger.warning(
                    "Slice %d/%d not landed after %d attempts; abandoning the rest: %s",
                    i + 1,
                    len(plan.slices),
                    exc.attempts,
                    exc,
                )
                result.error = exc
                if exc.signature:
                    result.signatures.append(exc.signature)
                return
            else:
                result.confirmed_amount += planned.amount
                result.confirmed_slices += 1
                result.signatures.append(str(sub.signature))
            i += 1
            if i < len(plan.slices) and self.config.slice_delay_ms > 0:
                await self._sleep(self.config.slice_delay_ms / 1000)

    def settle(
        self,
        decision: Decision,
        result: ExecutionResult,
        output_mint: Pubkey,
        quotes: Mapping[Venue, VenueQuote | None],
    ) -> None:
        """Book the confirmed share of the batch into the daily PnL, once."""

        if result.confirmed_amount <= 0 or result.planned_amount <= 0:
            result.state = ExecutionState.FAILED
            result.reason = result.reason or "no slice confirmed"
            logger.warning("No slice of %s %s confirmed", decision.action.value, decision.mint)
            return
        share = result.confirmed_amount / result.planned_amount
        if decision.action is Action.BUY:
            result.pnl_delta = -decision.size_usd * share
        elif output_mint == USDC_MINT and result.venue is not None:
            quote = quotes.get(result.venue)
            if quote is not None:
                result.pnl_delta = quote.out_amount / USDC_UNITS * share
        self.pnl.add(result.pnl_delta)
        result.state = ExecutionState.SETTLED
        logger.info(
            "%s %s via %s: %d/%d slices confirmed, pnl %+.2f USD",
            decision.action.value,
            decision.mint,
            result.venue.value if result.venue else "-",
            result.confirmed_slices,
            result.total_slices,
            result.pnl_delta,
        )

    # ------------------------------------------------------------------
    # cycle
    # ------------------------------------------------------------------
    async def execute(self, decision: Decision, phase: Phase | None = None) -> ExecutionResult:
        """Run one cycle for ``decision``; never raises."""

        phase = Phase(phase) if phase is not None else self.phases.get(decision.mint)
        result = ExecutionResult(mint=decision.mint, action=decision.action)
        quotes: Dict[Venue, VenueQuote | None] = {}
        output_mint = USDC_MINT
        try:
            await self.check_gates(decision, phase)
            input_mint, output_mint, amount = await self.size(decision, phase)
            result.state = ExecutionState.SIZED

            if phase is Phase.CURVE:
                venue = Venue.CURVE
            else:
                venue, quotes = await self.route(input_mint, output_mint, amount)
            result.state = ExecutionState.ROUTED
            result.venue = venue

            plan = ExecutionPlan(
                [PlannedSlice(venue, part) for part in split_amount(amount, self.config.splits_k)]
            )
            result.planned_amount = plan.total
            result.total_slices = len(plan.slices)
            result.state = ExecutionState.SLICED
            await self.run_plan(plan, input_mint, output_mint, result)
            result.state = ExecutionState.SUBMITTED
        except SafetyGateSkip as exc:
            result.state = ExecutionState.SKIPPED
            result.reason = exc.reason
            logger.warning("Skipped %s %s: %s", decision.action.value, decision.mint, exc.reason)
            return result
        except Exception as exc:
            result.error = exc
            logger.exception("Execution of %s %s failed", decision.action.value, decision.mint)
            if result.confirmed_amount <= 0:
                result.state = ExecutionState.FAILED
                return result
        self.settle(decision, result, output_mint, quotes)
        return result


async def create_executor(
    payer: Keypair,
    *,
    config: ExecutionConfig | None = None,
    settings: ResolverSettings | None = None,
    rpc: RpcManager | None = None,
) -> Executor:
    """Load both instruction schemas and wire the three venues to one client."""

    config = config or load_execution_config()
    settings = settings or ResolverSettings.from_env()
    rpc = rpc or RpcManager(config.rpc_urls)
    client = rpc.get_client()
    pump_schema, amm_schema = await asyncio.gather(
        load_schema(settings.idl_path, settings.idl_url),
        load_schema(settings.pumpswap_idl_path, settings.pumpswap_idl_url),
    )
    curve_resolver = AccountResolver(client, pump_schema, program_id=settings.program_id, settings=settings)
    amm_resolver = AccountResolver(
        client,
        amm_schema,
        program_id=settings.pumpswap_program_id,
        settings=settings,
        creator_vault_cache=curve_resolver.creator_vault_cache,
    )
    venues: Dict[Venue, VenueQuoter] = {
        Venue.CURVE: CurveVenue(client, curve_resolver),
        Venue.PUMPSWAP: PumpSwapVenue(client, amm_resolver),
        Venue.RAYDIUM: RaydiumVenue(client),
    }
    await curve_resolver.prefetch_fee_recipient()
    return Executor(client, payer, venues, config=config, oracle=HintPriceOracle(config.sol_usd_hint))


__all__ = [
    "Action",
    "Decision",
    "DailyPnlAccumulator",
    "ExecutionPlan",
    "ExecutionResult",
    "ExecutionState",
    "Executor",
    "PlannedSlice",
    "choose_venue",
    "create_executor",
    "split_amount",
]
