from __future__ import annotations

import asyncio
import logging
import os
import weakref
from typing import Any

import aiohttp

from .jsonutil import loads

logger = logging.getLogger(__name__)


class HTTPError(Exception):
    """Raised when an HTTP request returns a non-success status code."""


# Maintain a session per event loop to avoid cross-loop usage errors when
# tests drive several ``asyncio.run`` loops in one process.
_SESSIONS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, aiohttp.ClientSession]" = weakref.WeakKeyDictionary()


def _timeout_seconds() -> float:
    try:
        return float(os.getenv("HTTP_TIMEOUT_SEC", "15") or 15)
    except ValueError:
        return 15.0


async def get_session() -> aiohttp.ClientSession:
    """Return an aiohttp session bound to the current event loop."""
    loop = asyncio.get_running_loop()
    sess = _SESSIONS.get(loop)
    if sess is None or sess.closed:
        ua = os.getenv("HTTP_USER_AGENT", "solhands/0.1")
        sess = aiohttp.ClientSession(
            headers={"User-Agent": ua},
            timeout=aiohttp.ClientTimeout(total=_timeout_seconds()),
        )
        _SESSIONS[loop] = sess
    return sess


async def close_session() -> None:
    """Close all known aiohttp sessions."""
    to_close = list(_SESSIONS.values())
    _SESSIONS.clear()
    for sess in to_close:
        if not sess.closed:
            await sess.close()


async def fetch_json(
    url: str,
    method: str = "GET",
    *,
    attempts: int = 2,
    backoff: float = 0.3,
    **kwargs: Any,
) -> Any:
    """Fetch *url* using *method* and return the parsed JSON body.

    Transport failures and non-success statuses are retried ``attempts`` times
    with exponential backoff; the last error is re-raised.
    """

    sess = await get_session()
    last_error: Exception | None = None
    for attempt in range(max(1, attempts)):
        try:
            async with sess.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise HTTPError(f"{method} {url} -> {response.status}: {text[:300]}")
                raw = await response.read()
                return loads(raw)
        except (aiohttp.ClientError, asyncio.TimeoutError, HTTPError) as exc:
            last_error = exc
            if attempt + 1 >= attempts:
                break
            logger.debug("Retrying %s after error: %s", url, exc)
            await asyncio.sleep(backoff * (2**attempt))
    assert last_error is not None
    raise last_error


__all__ = ["HTTPError", "close_session", "fetch_json", "get_session"]
