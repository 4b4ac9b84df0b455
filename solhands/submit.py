"""Per-slice submission: simulate, sign, send with bounded retries, confirm.

Each slice walks ``BUILT -> SIGNED -> SIMULATED -> BROADCAST -> CONFIRMED``
or ends in ``FAILED``.  Once a signed transaction has been broadcast it is
only ever re-sent as is; a new blockhash (and therefore a new transaction)
is used only while nothing has reached the network, or after the old
blockhash has provably expired.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .assembly import Anchor, assemble, fetch_anchor, sign_transaction
from .errors import SimulationError, SubmissionError
from .logging_utils import serialize_for_log

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (SolanaRpcException, RPCException, UnconfirmedTxError, asyncio.TimeoutError)


class SliceState(str, Enum):
    BUILT = "built"
    SIGNED = "signed"
    SIMULATED = "simulated"
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class SliceSubmission:
    """Progress record for one slice transaction."""

    payer: Pubkey
    instructions: List[Instruction]
    state: SliceState = SliceState.BUILT
    transaction: VersionedTransaction | None = None
    anchor: Anchor | None = None
    signature: Signature | None = None
    attempts: int = 0
    history: List[SliceState] = field(default_factory=list)

    @property
    def broadcast(self) -> bool:
        return self.signature is not None

    def move(self, state: SliceState) -> None:
        self.history.append(self.state)
        self.state = state
        logger.debug("slice %s -> %s", self.signature or "-", state.value)


class SliceSubmitter:
    def __init__(
        self,
        client: AsyncClient,
        signers: Sequence[Keypair],
        *,
        commitment: Commitment = Confirmed,
        max_retries: int = 3,
        simulate: bool = True,
        retry_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.client = client
        self.signers = list(signers)
        self.commitment = commitment
        self.max_retries = max_retries
        self.simulate = simulate
        self.retry_delay = retry_delay
        self._sleep = sleep or asyncio.sleep

    async def _prepare(self, sub: SliceSubmission) -> None:
        sub.anchor = await fetch_anchor(self.client)
        unsigned = assemble(sub.instructions, sub.payer, sub.anchor)
        sub.transaction = sign_transaction(unsigned, self.signers)
        sub.signature = None
        sub.move(SliceState.SIGNED)

    async def _simulate(self, sub: SliceSubmission) -> None:
        assert sub.transaction is not None
        try:
            resp = await self.client.simulate_transaction(sub.transaction, commitment=self.commitment)
        except _TRANSPORT_ERRORS as exc:
            sub.move(SliceState.FAILED)
            raise SimulationError(f"simulation unavailable: {exc}", attempts=sub.attempts) from exc
        err = resp.value.err
        if err is not None:
            logs = resp.value.logs or []
            if logger.isEnabledFor(logging.INFO):
                logger.info("Simulation logs: %s", serialize_for_log(logs[-5:]))
            sub.move(SliceState.FAILED)
            raise SimulationError(f"simulation failed: {err}", attempts=sub.attempts)
        sub.move(SliceState.SIMULATED)

    async def _send(self, sub: SliceSubmission) -> None:
        assert sub.transaction is not None
        resp = await self.client.send_raw_transaction(
            bytes(sub.transaction),
            opts=TxOpts(skip_preflight=True, preflight_commitment=self.commitment),
        )
        if sub.signature is None:
            sub.signature = resp.value
            sub.move(SliceState.BROADCAST)

    async def _confirm(self, sub: SliceSubmission) -> None:
        assert sub.signature is not None and sub.anchor is not None
        resp = await self.client.confirm_transaction(
            sub.signature,
            self.commitment,
            last_valid_block_height=sub.anchor.last_valid_block_height,
        )
        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            sub.move(SliceState.FAILED)
            raise SubmissionError(
                f"transaction failed on chain: {status.err}",
                signature=str(sub.signature),
                broadcast=True,
                attempts=sub.attempts,
            )
        sub.move(SliceState.CONFIRMED)

    async def submit(self, payer: Pubkey, instructions: Sequence[Instruction]) -> SliceSubmission:
        """Land ``instructions`` as one transaction or raise :class:`SubmissionError`.

        :class:`SimulationError` is raised before anything is broadcast when
        preflight simulation rejects the transaction.
        """

        sub = SliceSubmission(payer=payer, instructions=list(instructions))
        try:
            await self._prepare(sub)
        except _TRANSPORT_ERRORS as exc:
            sub.move(SliceState.FAILED)
            raise SubmissionError(f"could not fetch blockhash: {exc}") from exc
        if self.simulate:
            await self._simulate(sub)

        last_error: Exception | None = None
        while sub.attempts < self.max_retries:
            sub.attempts += 1
            try:
                if sub.transaction is None:
                    await self._prepare(sub)
                await self._send(sub)
                await self._confirm(sub)
                return sub
            except TransactionExpiredBlockheightExceededError as exc:
                logger.warning("Slice %s expired unconfirmed; rebuilding", sub.signature)
                sub.transaction = None
                sub.signature = None
                last_error = exc
            except _TRANSPORT_ERRORS as exc:
                last_error = exc
                if not sub.broadcast:
                    sub.transaction = None
                logger.warning(
                    "Send attempt %s/%s failed (broadcast=%s): %s",
                    sub.attempts,
                    self.max_retries,
                    sub.broadcast,
                    exc,
                )
            if sub.attempts < self.max_retries:
                await self._sleep(self.retry_delay)

        sub.move(SliceState.FAILED)
        raise SubmissionError(
            f"retries exhausted: {last_error}",
            signature=str(sub.signature) if sub.signature is not None else None,
            broadcast=sub.broadcast,
            attempts=sub.attempts,
        )


__all__ = ["SliceState", "SliceSubmission", "SliceSubmitter"]
