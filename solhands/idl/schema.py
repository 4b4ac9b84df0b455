"""Anchor IDL parsing into typed instruction schema entries.

Both the legacy (``isMut``/``isSigner``) and the current
(``writable``/``signer``/``pda``) IDL dialects are accepted.  Raw documents
are normalised before parsing: ``"pubkey"`` becomes ``"publicKey"``,
``{"defined": {"name": X}}`` collapses to ``{"defined": X}`` and a handful
of ``Option*`` helper enums referenced by newer Pump.fun IDLs are injected
when missing.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import weakref
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple, Union

import aiohttp
import orjson
from solders.pubkey import Pubkey

from ..errors import SchemaError
from ..http import HTTPError, fetch_json
from ..util import coerce_pubkey

logger = logging.getLogger(__name__)

_OPTION_HELPER_TYPES: Tuple[Tuple[str, str], ...] = (
    ("OptionBool", "bool"),
    ("OptionU64", "u64"),
    ("OptionI64", "i64"),
    ("OptionString", "string"),
    ("OptionPubkey", "publicKey"),
)


@dataclass(frozen=True)
class ConstSeed:
    value: bytes


@dataclass(frozen=True)
class AccountSeed:
    """Seed taken from another role's resolved address."""

    path: str


@dataclass(frozen=True)
class FieldSeed:
    """Seed decoded from a field of another (fetched) account."""

    account: str
    field: str
    account_type: str | None = None


Seed = Union[ConstSeed, AccountSeed, FieldSeed]


@dataclass(frozen=True)
class DerivationRule:
    seeds: Tuple[Seed, ...]
    program: Pubkey | None = None
    program_hint: str | None = None

    def dependencies(self) -> Tuple[str, ...]:
        deps: List[str] = []
        for seed in self.seeds:
            if isinstance(seed, AccountSeed):
                deps.append(seed.path)
            elif isinstance(seed, FieldSeed):
                deps.append(seed.account)
        return tuple(dict.fromkeys(deps))


@dataclass(frozen=True)
class AccountRole:
    name: str
    signer: bool = False
    writable: bool = False
    address: Pubkey | None = None
    derivation: DerivationRule | None = None


@dataclass(frozen=True)
class ArgumentSpec:
    name: str
    type: Any


@dataclass(frozen=True)
class InstructionSchemaEntry:
    name: str
    accounts: Tuple[AccountRole, ...]
    args: Tuple[ArgumentSpec, ...] = ()
    discriminator: bytes | None = None

    def role(self, name: str) -> AccountRole | None:
        for acc in self.accounts:
            if acc.name == name:
                return acc
        return None

    @property
    def tag(self) -> bytes:
        if self.discriminator is not None:
            return self.discriminator
        return hashlib.sha256(f"global:{self.name}".encode()).digest()[:8]


@dataclass
class InstructionSchema:
    """A parsed program schema: instructions, account layouts and named types."""

    name: str
    program_id: Pubkey | None
    instructions: Dict[str, InstructionSchemaEntry]
    types: Dict[str, Any] = field(default_factory=dict)
    accounts: Dict[str, Any] = field(default_factory=dict)
    account_discriminators: Dict[str, bytes] = field(default_factory=dict)

    def instruction(self, name: str) -> InstructionSchemaEntry:
        try:
            return self.instructions[name]
        except KeyError:
            raise SchemaError(f"instruction {name!r} not found in schema {self.name!r}") from None

    def account_layout(self, name: str) -> Any | None:
        """Return the struct definition for account type ``name`` if known."""

        layout = self.accounts.get(name)
        if layout is not None:
            return layout
        return self.types.get(name)


def _normalize_defined(obj: Any) -> Any:
    if isinstance(obj, list):
        return [_normalize_defined(v) for v in obj]
    if not isinstance(obj, dict):
        if obj == "pubkey":
            return "publicKey"
        return obj
    out: Dict[str, Any] = {}
    for key, value in obj.items():
        if key == "defined" and isinstance(value, dict) and isinstance(value.get("name"), str):
            out[key] = value["name"]
        else:
            out[key] = _normalize_defined(value)
    return out


def normalize_idl(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a normalised deep copy of the IDL document ``raw``."""

    if not isinstance(raw, Mapping):
        raise SchemaError("IDL document must be a JSON object")
    idl: Dict[str, Any] = _normalize_defined(dict(raw))
    types = idl.get("types")
    idl["types"] = list(types) if isinstance(types, list) else []
    known = {t.get("name") for t in idl["types"] if isinstance(t, dict)}
    for name, inner in _OPTION_HELPER_TYPES:
        if name in known:
            continue
        idl["types"].append(
            {
                "name": name,
                "type": {
                    "kind": "enum",
                    "variants": [{"name": "None"}, {"name": "Some", "fields": [{"type": inner}]}],
                },
            }
        )
    return idl


def _seed_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode()
    if isinstance(value, list):
        try:
            return bytes(int(v) for v in value)
        except (TypeError, ValueError) as exc:
            raise SchemaError(f"invalid const seed {value!r}") from exc
    raise SchemaError(f"invalid const seed {value!r}")


def _parse_derivation(role: str, pda: Mapping[str, Any]) -> DerivationRule | None:
    seeds: List[Seed] = []
    for seed in pda.get("seeds") or []:
        kind = seed.get("kind")
        if kind == "const":
            seeds.append(ConstSeed(_seed_bytes(seed.get("value"))))
        elif kind == "account":
            path = str(seed.get("path") or "")
            if not path:
                raise SchemaError(f"account seed without path on {role}")
            if "." in path:
                account, _, fld = path.partition(".")
                seeds.append(FieldSeed(account=account, field=fld, account_type=seed.get("account")))
            else:
                seeds.append(AccountSeed(path))
        elif kind == "arg":
            # Argument-derived seeds depend on call data; leave the role to other rules.
            logger.debug("Skipping arg-seeded derivation for %s", role)
            return None
        else:
            raise SchemaError(f"unknown seed kind {kind!r} on {role}")
    if not seeds:
        return None

    program: Pubkey | None = None
    hint: str | None = None
    pg = pda.get("program")
    if isinstance(pg, Mapping):
        if pg.get("kind") == "const":
            value = pg.get("value")
            program = coerce_pubkey(value)
            if program is None:
                raise SchemaError(f"invalid derivation program on {role}: {value!r}")
        elif pg.get("kind") == "account":
            hint = str(pg.get("path") or "") or None
    return DerivationRule(seeds=tuple(seeds), program=program, program_hint=hint)


def _flatten_accounts(items: List[Any]) -> List[Mapping[str, Any]]:
    flat: List[Mapping[str, Any]] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise SchemaError(f"invalid account entry {item!r}")
        nested = item.get("accounts")
        if isinstance(nested, list):
            flat.extend(_flatten_accounts(nested))
        else:
            flat.append(item)
    return flat


def _parse_role(acc: Mapping[str, Any]) -> AccountRole:
    name = acc.get("name")
    if not isinstance(name, str) or not name:
        raise SchemaError(f"account role without name: {acc!r}")
    address = None
    if acc.get("address"):
        address = coerce_pubkey(acc["address"])
        if address is None:
            raise SchemaError(f"invalid fixed address on {name}: {acc['address']!r}")
    derivation = None
    if isinstance(acc.get("pda"), Mapping):
        derivation = _parse_derivation(name, acc["pda"])
    return AccountRole(
        name=name,
        signer=bool(acc.get("signer", acc.get("isSigner", False))),
        writable=bool(acc.get("writable", acc.get("isMut", False))),
        address=address,
        derivation=derivation,
    )


def _parse_instruction(ix: Mapping[str, Any]) -> InstructionSchemaEntry:
    name = ix.get("name")
    if not isinstance(name, str) or not name:
        raise SchemaError(f"instruction without name: {ix!r}")
    roles = tuple(_parse_role(acc) for acc in _flatten_accounts(list(ix.get("accounts") or [])))
    args = []
    for arg in ix.get("args") or []:
        if not isinstance(arg, Mapping) or "name" not in arg or "type" not in arg:
            raise SchemaError(f"invalid argument on {name}: {arg!r}")
        args.append(ArgumentSpec(name=str(arg["name"]), type=arg["type"]))
    disc = ix.get("discriminator")
    return InstructionSchemaEntry(
        name=name,
        accounts=roles,
        args=tuple(args),
        discriminator=bytes(disc) if isinstance(disc, list) and len(disc) == 8 else None,
    )


def parse_schema(raw: Mapping[str, Any]) -> InstructionSchema:
    """Normalise and parse an IDL document into an :class:`InstructionSchema`."""

    idl = normalize_idl(raw)
    instructions: Dict[str, InstructionSchemaEntry] = {}
    for ix in idl.get("instructions") or []:
        if not isinstance(ix, Mapping):
            raise SchemaError(f"invalid instruction entry {ix!r}")
        entry = _parse_instruction(ix)
        instructions[entry.name] = entry
    if not instructions:
        raise SchemaError("schema declares no instructions")

    types = {t["name"]: t.get("type") for t in idl["types"] if isinstance(t, Mapping) and "name" in t}
    accounts: Dict[str, Any] = {}
    discs: Dict[str, bytes] = {}
    for acc in idl.get("accounts") or []:
        if not isinstance(acc, Mapping) or "name" not in acc:
            continue
        accounts[acc["name"]] = acc.get("type") or types.get(acc["name"])
        disc = acc.get("discriminator")
        if isinstance(disc, list) and len(disc) == 8:
            discs[acc["name"]] = bytes(disc)

    address = idl.get("address") or (idl.get("metadata") or {}).get("address")
    metadata_name = (idl.get("metadata") or {}).get("name")
    return InstructionSchema(
        name=str(idl.get("name") or metadata_name or "unnamed"),
        program_id=coerce_pubkey(address) if address else None,
        instructions=instructions,
        types=types,
        accounts=accounts,
        account_discriminators=discs,
    )


_SCHEMA_CACHE: Dict[Tuple[str, str], InstructionSchema] = {}
_SCHEMA_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def clear_schema_cache() -> None:
    _SCHEMA_CACHE.clear()


async def load_schema(path: str | Path | None, url: str | None = None) -> InstructionSchema:
    """Load a schema from ``path`` if it exists, else from ``url``.

    The parsed schema is cached for the lifetime of the process, keyed by the
    ``(path, url)`` pair.  Unreadable, malformed or unreachable documents raise
    :class:`SchemaError`.
    """

    key = (str(path or ""), url or "")
    cached = _SCHEMA_CACHE.get(key)
    if cached is not None:
        return cached
    lock = _SCHEMA_LOCKS.setdefault(asyncio.get_running_loop(), asyncio.Lock())
    async with lock:
        cached = _SCHEMA_CACHE.get(key)
        if cached is not None:
            return cached
        raw: Any = None
        local = Path(path) if path else None
        if local is not None and local.is_file():
            try:
                raw = orjson.loads(local.read_bytes())
            except (OSError, orjson.JSONDecodeError) as exc:
                raise SchemaError(f"failed to read schema {local}: {exc}") from exc
            source = str(local)
        elif url:
            try:
                raw = await fetch_json(url)
            except (aiohttp.ClientError, asyncio.TimeoutError, HTTPError, orjson.JSONDecodeError) as exc:
                raise SchemaError(f"failed to fetch schema {url}: {exc}") from exc
            source = url
        else:
            raise SchemaError(f"schema not found at {path!r} and no URL configured")
        schema = parse_schema(raw)
        logger.info(
            "Loaded schema %s from %s (%d instructions)", schema.name, source, len(schema.instructions)
        )
        _SCHEMA_CACHE[key] = schema
        return schema


__all__ = [
    "AccountRole",
    "AccountSeed",
    "ArgumentSpec",
    "ConstSeed",
    "DerivationRule",
    "FieldSeed",
    "InstructionSchema",
    "InstructionSchemaEntry",
    "Seed",
    "clear_schema_cache",
    "load_schema",
    "normalize_idl",
    "parse_schema",
]
