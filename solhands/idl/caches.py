"""Injected TTL caches owned by the account resolver."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict

import orjson
from cachetools import TTLCache
from solders.pubkey import Pubkey

from ..jsonutil import dumps_bytes
from ..util import coerce_pubkey

logger = logging.getLogger(__name__)

Timer = Callable[[], float]

_FEE_RECIPIENT_KEY = "fee_recipient"


class FeeRecipientCache:
    """Single process-wide fee recipient with a refresh interval."""

    def __init__(self, ttl: float = 300.0, *, timer: Timer = time.monotonic) -> None:
        self._cache: TTLCache = TTLCache(maxsize=1, ttl=max(ttl, 1e-9), timer=timer)

    def get(self) -> Pubkey | None:
        return self._cache.get(_FEE_RECIPIENT_KEY)

    def set(self, value: Pubkey) -> None:
        self._cache[_FEE_RECIPIENT_KEY] = value

    def clear(self) -> None:
        self._cache.clear()


class CreatorVaultStore:
    """Flat ``{mint: vault}`` JSON map on disk.

    Writes go through a single lock and replace the file atomically, so a
    reader never observes a half-written map.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def read(self) -> Dict[str, Pubkey]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        try:
            data = orjson.loads(raw or b"{}")
        except orjson.JSONDecodeError:
            logger.warning("Ignoring unreadable creator vault store %s", self.path)
            return {}
        if not isinstance(data, dict):
            return {}
        out: Dict[str, Pubkey] = {}
        for mint, vault in data.items():
            pk = coerce_pubkey(vault)
            if pk is not None:
                out[str(mint)] = pk
        return out

    async def write(self, mint: Pubkey, vault: Pubkey) -> None:
        async with self._lock:
            current = {k: str(v) for k, v in self.read().items()}
            current[str(mint)] = str(vault)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(f"{self.path.name}.tmp")
            tmp.write_bytes(dumps_bytes(current, sort_keys=True, indent=2))
            os.replace(tmp, self.path)
        logger.debug("Persisted creator vault %s => %s", mint, vault)


class CreatorVaultCache:
    """Per-mint creator vault addresses with TTL expiry.

    The optional ``store`` is read once, lazily, on first use; entries loaded
    from it start a fresh TTL window.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        *,
        store: CreatorVaultStore | None = None,
        persist: bool = False,
        timer: Timer = time.monotonic,
        maxsize: int = 4096,
    ) -> None:
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=max(ttl, 1e-9), timer=timer)
        self.store = store
        self.persist = persist
        self._loaded = store is None

    def ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if self.store is None:
            return
        entries = self.store.read()
        for mint, vault in entries.items():
            self._cache[mint] = vault
        if entries:
            logger.info("Loaded %d creator vault entries from %s", len(entries), self.store.path)

    def get(self, mint: Pubkey) -> Pubkey | None:
        self.ensure_loaded()
        return self._cache.get(str(mint))

    async def put(self, mint: Pubkey, vault: Pubkey, *, persist: bool | None = None) -> None:
        self.ensure_loaded()
        self._cache[str(mint)] = vault
        if (self.persist if persist is None else persist) and self.store is not None:
            await self.store.write(mint, vault)


__all__ = ["CreatorVaultCache", "CreatorVaultStore", "FeeRecipientCache"]
