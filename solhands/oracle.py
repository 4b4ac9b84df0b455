"""SOL/USD price sources consumed by order sizing."""

from __future__ import annotations

import logging
import math
from typing import Protocol

from .util import parse_float_env

logger = logging.getLogger(__name__)


class SolPriceOracle(Protocol):
    def get(self) -> float: ...


class HintPriceOracle:
    """Return the last accepted SOL/USD price, seeded from ``SOL_USD_HINT``."""

    def __init__(self, price: float | None = None) -> None:
        self._last = float(price) if price is not None else parse_float_env("SOL_USD_HINT", 150.0)

    def get(self) -> float:
        return self._last

    def update(self, price: float) -> bool:
        """Accept ``price`` when it is finite and positive; otherwise keep the last value."""

        if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            logger.debug("Ignoring invalid SOL/USD update %r", price)
            return False
        self._last = float(price)
        return True


__all__ = ["HintPriceOracle", "SolPriceOracle"]
