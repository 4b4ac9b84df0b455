from __future__ import annotations

from typing import Dict, FrozenSet, List

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

_COMMITMENTS = ("processed", "confirmed", "finalized")


class ExecutionConfigModel(BaseModel):
    """Schema for execution service settings."""

    model_config = ConfigDict(extra="forbid")

    priority_fee: int = 0
    slippage_bps: int = 50
    switch_margin_bps: int = 40
    impact_cap_bps: int = 120
    splits_k: int = 2
    slice_delay_ms: int = 250
    deny_mints: FrozenSet[str] = frozenset()
    allow_mints: FrozenSet[str] = frozenset()
    prefer_wsol: bool = True
    daily_loss_limit_usd: float = 0.0
    kill_switch: bool = False
    block_freeze: bool = True
    block_mint_authority: bool = True
    disable_curve_buy: bool = False
    max_send_retries: int = 3
    confirm_commitment: str = "confirmed"
    simulate_before_send: bool = True
    sol_usd_hint: float = 150.0
    rpc_urls: List[str] = []

    @field_validator("splits_k", mode="before")
    @classmethod
    def _clamp_splits(cls, value: object) -> int:
        return max(2, min(8, int(float(value))))  # type: ignore[arg-type]

    @field_validator(
        "priority_fee",
        "slippage_bps",
        "switch_margin_bps",
        "impact_cap_bps",
        "slice_delay_ms",
        "max_send_retries",
    )
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be non-negative")
        return value

    @field_validator("slippage_bps")
    @classmethod
    def _slippage_range(cls, value: int) -> int:
        if value >= 10_000:
            raise ValueError("slippage_bps must be below 10000")
        return value

    @field_validator("confirm_commitment")
    @classmethod
    def _known_commitment(cls, value: str) -> str:
        norm = value.strip().lower()
        if norm not in _COMMITMENTS:
            raise ValueError(f"confirm_commitment must be one of {', '.join(_COMMITMENTS)}")
        return norm

    @field_validator("rpc_urls")
    @classmethod
    def _http_urls(cls, value: List[str]) -> List[str]:
        for url in value:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"invalid RPC url: {url}")
        return value

    @model_validator(mode="after")
    def _positive_hint(self) -> "ExecutionConfigModel":
        if self.sol_usd_hint <= 0:
            raise ValueError("sol_usd_hint must be positive")
        if self.daily_loss_limit_usd < 0:
            raise ValueError("daily_loss_limit_usd must be non-negative")
        if self.max_send_retries < 1:
            raise ValueError("max_send_retries must be at least 1")
        return self


def validate_execution_config(data: Dict[str, object]) -> Dict[str, object]:
    """Validate ``data`` against :class:`ExecutionConfigModel`.

    Returns the validated data with type normalization applied.
    Raises ``ValueError`` on validation errors.
    """
    try:
        return ExecutionConfigModel(**data).model_dump()
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc
