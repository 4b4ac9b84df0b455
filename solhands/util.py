# Utility functions for environment parsing and value coercion.

from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Mapping

from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)


_TRUE_VALUES = {"1", "true", "yes", "y", "on", "enable", "enabled", "t"}
_FALSE_VALUES = {"0", "false", "no", "n", "off", "disable", "disabled", "f"}


def parse_bool_env(
    name: str,
    default: bool = False,
    *,
    overrides: Mapping[str, bool] | None = None,
    extra_true: Iterable[str] | None = None,
    extra_false: Iterable[str] | None = None,
    log_unknown: bool = False,
) -> bool:
    """Return the boolean value for environment variable ``name``.

    Additional truthy/falsey spellings can be supplied via ``extra_true`` and
    ``extra_false``.  ``overrides`` allows per-call mappings (after
    normalization) to accommodate application-specific aliases.  Unknown
    values fall back to ``default`` and can optionally be logged.
    """

    val = os.getenv(name)
    if val is None:
        return default
    norm = val.strip().lower()
    if overrides:
        lowered_overrides = {str(k).strip().lower(): v for k, v in overrides.items()}
        if norm in lowered_overrides:
            return lowered_overrides[norm]
    true_values = _TRUE_VALUES | {str(s).strip().lower() for s in (extra_true or [])}
    false_values = _FALSE_VALUES | {str(s).strip().lower() for s in (extra_false or [])}
    if norm in true_values:
        return True
    if norm in false_values:
        return False
    if log_unknown:
        logger.debug(
            "Ignoring unknown boolean env %s=%r; using default=%s", name, val, default
        )
    return default


def parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)


def parse_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return int(default)
    try:
        return int(float(raw))
    except ValueError:
        return int(default)


def parse_csv_env(name: str) -> frozenset[str]:
    """Return the comma separated values of ``name`` as a set of stripped strings."""

    raw = os.getenv(name) or ""
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def coerce_pubkey(value: Any) -> Pubkey | None:
    """Best-effort conversion of strings, byte arrays and lists to :class:`Pubkey`."""

    if isinstance(value, Pubkey):
        return value
    try:
        if isinstance(value, str):
            return Pubkey.from_string(value.strip())
        if isinstance(value, (bytes, bytearray)) and len(value) == 32:
            return Pubkey.from_bytes(bytes(value))
        if isinstance(value, (list, tuple)) and len(value) == 32:
            return Pubkey.from_bytes(bytes(int(v) for v in value))
    except (ValueError, TypeError):
        return None
    return None


def pubkey_env(name: str) -> Pubkey | None:
    """Return ``name`` parsed as a :class:`Pubkey`, ignoring unparsable values."""

    raw = os.getenv(name)
    if not raw:
        return None
    parsed = coerce_pubkey(raw)
    if parsed is None:
        logger.warning("Ignoring invalid public key in %s=%r", name, raw)
    return parsed


__all__ = [
    "coerce_pubkey",
    "parse_bool_env",
    "parse_csv_env",
    "parse_float_env",
    "parse_int_env",
    "pubkey_env",
]
