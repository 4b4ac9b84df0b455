"""In-memory venue phase registry."""

from __future__ import annotations

from enum import Enum
from typing import Dict


class Phase(str, Enum):
    CURVE = "curve"
    AMM = "amm"


class PhaseRegistry:
    """Track which liquidity mechanism currently governs each mint.

    Mints that were never reported default to the bonding curve.
    """

    def __init__(self, default: Phase = Phase.CURVE) -> None:
        self.default = default
        self._phase_by_mint: Dict[str, Phase] = {}

    def get(self, mint: str) -> Phase:
        return self._phase_by_mint.get(str(mint), self.default)

    def set(self, mint: str, phase: Phase | str) -> None:
        self._phase_by_mint[str(mint)] = Phase(phase)


__all__ = ["Phase", "PhaseRegistry"]
