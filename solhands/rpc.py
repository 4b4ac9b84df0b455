"""RPC endpoint rotation and thin account read helpers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
INITIAL_BACKOFF_MS = 500
MAX_BACKOFF_MS = 10_000


class RpcManager:
    """Hand out an :class:`AsyncClient` and rotate endpoints on failure.

    Each :meth:`rotate` call moves to the next configured URL after sleeping
    for the current backoff, which doubles up to ``MAX_BACKOFF_MS``;
    :meth:`mark_good` resets the backoff once a call succeeds again.
    """

    def __init__(
        self,
        urls: Sequence[str] | None = None,
        *,
        commitment: Commitment = Confirmed,
        timeout: float = 10.0,
    ) -> None:
        self.urls = [u for u in (urls or []) if u] or [DEFAULT_RPC_URL]
        self.commitment = commitment
        self.timeout = timeout
        self.index = 0
        self.backoff_ms = INITIAL_BACKOFF_MS
        self._client: AsyncClient | None = None

    @property
    def url(self) -> str:
        return self.urls[self.index]

    def get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = AsyncClient(self.url, commitment=self.commitment, timeout=self.timeout)
        return self._client

    async def rotate(self) -> AsyncClient:
        previous = self._client
        self.index = (self.index + 1) % len(self.urls)
        logger.warning(
            "Rotating RPC endpoint to %s after %d ms backoff", self.url, self.backoff_ms
        )
        await asyncio.sleep(self.backoff_ms / 1000)
        self.backoff_ms = min(self.backoff_ms * 2, MAX_BACKOFF_MS)
        self._client = None
        if previous is not None:
            await previous.close()
        return self.get_client()

    def mark_good(self) -> None:
        self.backoff_ms = INITIAL_BACKOFF_MS

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


@dataclass(frozen=True)
class AccountSnapshot:
    """Raw account bytes together with the slot they were observed at."""

    address: Pubkey
    data: bytes
    owner: Pubkey
    lamports: int
    slot: int


async def fetch_account(client: AsyncClient, address: Pubkey) -> AccountSnapshot | None:
    """Return the account at ``address`` or ``None`` when it does not exist.

    Transport errors propagate to the caller.
    """

    resp = await client.get_account_info(address)
    value = resp.value
    if value is None:
        return None
    return AccountSnapshot(
        address=address,
        data=bytes(value.data),
        owner=value.owner,
        lamports=int(value.lamports),
        slot=int(resp.context.slot),
    )


async def account_exists(client: AsyncClient, address: Pubkey) -> bool:
    return (await fetch_account(client, address)) is not None


async def current_slot(client: AsyncClient) -> int:
    resp = await client.get_slot()
    return int(resp.value)


__all__ = [
    "AccountSnapshot",
    "DEFAULT_RPC_URL",
    "RpcManager",
    "account_exists",
    "current_slot",
    "fetch_account",
]
