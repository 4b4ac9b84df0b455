"""Environment driven configuration for the execution service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import FrozenSet, List, Mapping

from solders.pubkey import Pubkey

from .config_schema import validate_execution_config
from .constants import PUMPFUN_PROGRAM_ID, PUMPSWAP_PROGRAM_ID
from .util import (
    parse_bool_env,
    parse_csv_env,
    parse_float_env,
    parse_int_env,
    pubkey_env,
)

DEFAULT_PUMPFUN_IDL_URL = (
    "https://raw.githubusercontent.com/pump-fun/pump-public-docs/main/idl/pump.json"
)
DEFAULT_PUMPSWAP_IDL_URL = (
    "https://raw.githubusercontent.com/pump-fun/pump-public-docs/main/idl/pump_amm.json"
)
DEFAULT_REFRESH_MS = 300_000


@dataclass(frozen=True)
class ExecutionConfig:
    """Thresholds and policy switches consumed by the orchestrator."""

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
    rpc_urls: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "ExecutionConfig":
        """Validate ``data`` and build a config; unknown keys raise ``ValueError``."""

        validated = validate_execution_config(dict(data))
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in validated.items() if k in names})

    @classmethod
    def from_env(cls) -> "ExecutionConfig":
        rpc_urls = [
            url.strip()
            for url in (os.getenv("SOL_RPC_URL"), os.getenv("SOL_RPC_URL_FAILOVER"))
            if url and url.strip()
        ]
        return cls.from_mapping(
            {
                "priority_fee": parse_int_env("PRIORITY_FEE_LAMPORTS", 0),
                "slippage_bps": parse_int_env("SLIPPAGE_BPS", 50),
                "switch_margin_bps": parse_int_env("SWITCH_MARGIN_BPS", 40),
                "impact_cap_bps": parse_int_env("IMPACT_CAP_BPS", 120),
                "splits_k": parse_int_env("SPLITS_K", 2),
                "slice_delay_ms": parse_int_env("SLICE_DELAY_MS", 250),
                "deny_mints": parse_csv_env("DENY_MINTS"),
                "allow_mints": parse_csv_env("ALLOW_MINTS"),
                "prefer_wsol": parse_bool_env("PREFER_WSOL", True),
                "daily_loss_limit_usd": parse_float_env("DAILY_LOSS_LIMIT_USD", 0.0),
                "kill_switch": parse_bool_env("KILL_SWITCH", False),
                "block_freeze": parse_bool_env("BLOCK_FREEZE", True),
                "block_mint_authority": parse_bool_env("BLOCK_MINT_AUTH", True),
                "disable_curve_buy": parse_bool_env("DISABLE_CURVE_BUY", False),
                "max_send_retries": parse_int_env("MAX_SEND_RETRIES", 3),
                "confirm_commitment": os.getenv("CONFIRM_COMMITMENT", "confirmed"),
                "simulate_before_send": parse_bool_env("SIMULATE_BEFORE_SEND", True),
                "sol_usd_hint": parse_float_env("SOL_USD_HINT", 150.0),
                "rpc_urls": rpc_urls,
            }
        )


def load_execution_config() -> ExecutionConfig:
    """Return :class:`ExecutionConfig` built from the current environment."""

    return ExecutionConfig.from_env()


@dataclass(frozen=True)
class ResolverSettings:
    """Where instruction schemas come from and how resolver caches behave."""

    idl_path: Path = Path("pump.json")
    idl_url: str = DEFAULT_PUMPFUN_IDL_URL
    pumpswap_idl_path: Path = Path("pump_amm.json")
    pumpswap_idl_url: str = DEFAULT_PUMPSWAP_IDL_URL
    program_id: Pubkey = PUMPFUN_PROGRAM_ID
    pumpswap_program_id: Pubkey = PUMPSWAP_PROGRAM_ID
    fee_recipient_override: Pubkey | None = None
    fee_refresh_ms: int = DEFAULT_REFRESH_MS
    creator_vault_override: Pubkey | None = None
    creator_vault_refresh_ms: int = DEFAULT_REFRESH_MS
    creator_vault_store_path: Path = Path("creator_vault_cache.json")
    persist_creator_vault: bool = False

    @classmethod
    def from_env(cls) -> "ResolverSettings":
        return cls(
            idl_path=Path(os.getenv("PUMPFUN_IDL_PATH") or "pump.json"),
            idl_url=os.getenv("PUMPFUN_IDL_URL") or DEFAULT_PUMPFUN_IDL_URL,
            pumpswap_idl_path=Path(os.getenv("PUMPSWAP_IDL_PATH") or "pump_amm.json"),
            pumpswap_idl_url=os.getenv("PUMPSWAP_IDL_URL") or DEFAULT_PUMPSWAP_IDL_URL,
            program_id=pubkey_env("PUMPFUN_PROGRAM_ID") or PUMPFUN_PROGRAM_ID,
            fee_recipient_override=pubkey_env("PUMPFUN_FEE_RECIPIENT"),
            fee_refresh_ms=max(0, parse_int_env("PUMPFUN_FEE_REFRESH_MS", DEFAULT_REFRESH_MS)),
            creator_vault_override=pubkey_env("PUMPFUN_CREATOR_VAULT"),
            creator_vault_refresh_ms=max(
                0, parse_int_env("PUMPFUN_CREATOR_VAULT_REFRESH_MS", DEFAULT_REFRESH_MS)
            ),
            creator_vault_store_path=Path(
                os.getenv("CREATOR_VAULT_STORE_PATH") or "creator_vault_cache.json"
            ),
            persist_creator_vault=parse_bool_env("PERSIST_CREATOR_VAULT", False),
        )


__all__ = [
    "DEFAULT_PUMPFUN_IDL_URL",
    "DEFAULT_PUMPSWAP_IDL_URL",
    "ExecutionConfig",
    "ResolverSettings",
    "load_execution_config",
]
