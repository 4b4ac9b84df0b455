"""Resolve instruction schema account roles to concrete addresses.

Every role of an instruction is matched against an ordered rule table
before any network access happens:

1. a fixed address declared by the schema;
2. a known semantic role (caller overrides, the caller's holding account,
   payer-like names, the asset mint, well-known programs and sysvars);
3. the schema's derivation rule (constant, account and field seeds);
4. a name heuristic from :data:`HEURISTICS`.

A role without a matching rule raises :class:`ResolutionError` and nothing
is built.  The selected rules form a dependency graph (a derivation may need
other roles, or accounts that are not part of the instruction at all), which
is executed in topological order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Sequence, Tuple

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..assembly import associated_token_address
from ..config import ResolverSettings
from ..constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    PUMPFUN_FEE_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    SYSVAR_RENT_PUBKEY,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from ..errors import EncodingError, ResolutionError, SchemaError, SolhandsError
from ..rpc import fetch_account
from ..util import coerce_pubkey
from .caches import CreatorVaultCache, CreatorVaultStore, FeeRecipientCache
from .codec import decode_account, encode_arguments
from .schema import (
    AccountRole,
    AccountSeed,
    ConstSeed,
    DerivationRule,
    FieldSeed,
    InstructionSchema,
    InstructionSchemaEntry,
)

logger = logging.getLogger(__name__)

HOLDING_ROLES = frozenset(
    {"associated_user", "user_token_account", "user_ata", "user_associated_token_account"}
)
PAYER_ROLES = frozenset({"user", "payer", "authority", "owner", "signer"})
WELL_KNOWN_ROLES: Mapping[str, Pubkey] = {
    "system_program": SYSTEM_PROGRAM_ID,
    "token_program": TOKEN_PROGRAM_ID,
    "token_2022_program": TOKEN_2022_PROGRAM_ID,
    "associated_token_program": ASSOCIATED_TOKEN_PROGRAM_ID,
    "rent": SYSVAR_RENT_PUBKEY,
}

BONDING_CURVE_SEED = b"bonding-curve"
CREATOR_VAULT_SEED = b"creator-vault"
FEE_CONFIG_SEED = b"fee_config"
GLOBAL_SEED = b"global"
EVENT_AUTHORITY_SEED = b"__event_authority"

# discriminator, five u64 reserves/supply fields, complete flag, creator
BONDING_CURVE_MIN_LEN = 8 + 5 * 8 + 1 + 32
# discriminator, initialized flag, authority
GLOBAL_FEE_RECIPIENT_OFFSET = 8 + 1 + 32

_FEE_KEY_NAMES = (
    "feeRecipient",
    "fee_recipient",
    "feeReceiver",
    "fee_receiver",
    "feeVault",
    "fee_vault",
    "feeDestination",
    "fee_dest",
)


@dataclass(frozen=True)
class KnownInputs:
    """Caller supplied facts for one instruction build."""

    payer: Pubkey
    mint: Pubkey
    holding_account: Pubkey | None = None
    overrides: Mapping[str, Pubkey] = field(default_factory=dict)

    @property
    def user_token_account(self) -> Pubkey:
        return self.holding_account or associated_token_address(self.payer, self.mint)


@dataclass(frozen=True)
class ResolvedAccountSet:
    """Role name to address mapping in schema order; never partial."""

    entry: InstructionSchemaEntry
    addresses: Mapping[str, Pubkey]

    def __getitem__(self, name: str) -> Pubkey:
        return self.addresses[name]

    def __contains__(self, name: object) -> bool:
        return name in self.addresses

    def __iter__(self) -> Iterator[str]:
        return iter(self.addresses)

    def __len__(self) -> int:
        return len(self.addresses)

    def get(self, name: str, default: Pubkey | None = None) -> Pubkey | None:
        return self.addresses.get(name, default)

    def account_metas(self) -> List[AccountMeta]:
        return [
            AccountMeta(self.addresses[role.name], role.signer, role.writable)
            for role in self.entry.accounts
        ]


class _Build:
    __slots__ = ("inputs", "resolved")

    def __init__(self, inputs: KnownInputs) -> None:
        self.inputs = inputs
        self.resolved: Dict[str, Pubkey] = {}


@dataclass(frozen=True)
class Rule:
    """How one role gets its address; ``deps`` must be resolved first."""

    kind: str
    deps: Tuple[str, ...]
    run: Callable[[_Build], Awaitable[Pubkey]]


def _fixed(kind: str, address: Pubkey) -> Rule:
    async def run(_build: _Build) -> Pubkey:
        return address

    return Rule(kind, (), run)


@dataclass(frozen=True)
class Heuristic:
    label: str
    matches: Callable[[str], bool]
    make_rule: Callable[["AccountResolver", str], Rule]


def _pda(seeds: Sequence[bytes], program: Pubkey) -> Pubkey:
    addr, _ = Pubkey.find_program_address(list(seeds), program)
    return addr


def extract_fee_key(obj: Any) -> Pubkey | None:
    """Find a fee recipient public key anywhere inside decoded account data."""

    if isinstance(obj, Mapping):
        for key in _FEE_KEY_NAMES:
            if key in obj:
                pk = coerce_pubkey(obj[key])
                if pk is not None:
                    return pk
        recipients = obj.get("fee_recipients") or obj.get("feeRecipients")
        if isinstance(recipients, list):
            for elem in recipients:
                pk = coerce_pubkey(elem)
                if pk is not None:
                    return pk
        values = list(obj.values())
    elif isinstance(obj, list):
        values = obj
    else:
        return None
    for value in values:
        found = extract_fee_key(value)
        if found is not None:
            return found
    return None


def _camel(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_"))


class AccountResolver:
    """Resolve roles and build instructions for one program schema."""

    def __init__(
        self,
        client: AsyncClient,
        schema: InstructionSchema,
        *,
        program_id: Pubkey | None = None,
        settings: ResolverSettings | None = None,
        fee_recipient_cache: FeeRecipientCache | None = None,
        creator_vault_cache: CreatorVaultCache | None = None,
        fee_program_id: Pubkey | None = None,
    ) -> None:
        self.client = client
        self.schema = schema
        self.settings = settings or ResolverSettings()
        self.program_id = program_id or schema.program_id or self.settings.program_id
        self.fee_program_id = fee_program_id or self._schema_fee_program() or PUMPFUN_FEE_PROGRAM_ID
        self.fee_recipient_cache = fee_recipient_cache or FeeRecipientCache(
            self.settings.fee_refresh_ms / 1000
        )
        self.creator_vault_cache = creator_vault_cache or CreatorVaultCache(
            self.settings.creator_vault_refresh_ms / 1000,
            store=CreatorVaultStore(self.settings.creator_vault_store_path),
            persist=self.settings.persist_creator_vault,
        )

    def _schema_fee_program(self) -> Pubkey | None:
        for entry in self.schema.instructions.values():
            role = entry.role("fee_program")
            if role is not None and role.address is not None:
                return role.address
        return None

    # ------------------------------------------------------------------
    # rule selection
    # ------------------------------------------------------------------
    def _known_rule(self, name: str, inputs: KnownInputs) -> Rule | None:
        key = name.lower()
        if name in inputs.overrides:
            return _fixed("override", inputs.overrides[name])
        if key in HOLDING_ROLES:
            return _fixed("holding", inputs.user_token_account)
        if key in PAYER_ROLES:
            return _fixed("payer", inputs.payer)
        if key == "mint":
            return _fixed("mint", inputs.mint)
        if key in WELL_KNOWN_ROLES:
            return _fixed("well_known", WELL_KNOWN_ROLES[key])
        if key == "program":
            return _fixed("program", self.program_id)
        if key == "fee_program":
            return _fixed("well_known", self.fee_program_id)
        return None

    def select_rule(self, name: str, role: AccountRole | None, inputs: KnownInputs) -> Rule | None:
        """Return the first matching rule for ``name`` or ``None``."""

        if role is not None and role.address is not None:
            return _fixed("fixed", role.address)
        known = self._known_rule(name, inputs)
        if known is not None:
            return known
        if role is not None and role.derivation is not None:
            return self._derivation_rule(name, role.derivation)
        key = name.lower()
        for heuristic in HEURISTICS:
            if heuristic.matches(key):
                return heuristic.make_rule(self, name)
        return None

    def plan(self, entry: InstructionSchemaEntry, inputs: KnownInputs) -> List[Tuple[str, Rule]]:
        """Select a rule for every role and order them by dependency.

        Performs no I/O.  Raises :class:`ResolutionError` naming the first
        role (or auxiliary dependency) without a rule, and
        :class:`SchemaError` on cyclic derivations.
        """

        rules: Dict[str, Rule] = {}
        pending = [role.name for role in entry.accounts]
        while pending:
            name = pending.pop(0)
            if name in rules:
                continue
            rule = self.select_rule(name, entry.role(name), inputs)
            if rule is None:
                raise ResolutionError(name, f"no rule matches in {entry.name}")
            rules[name] = rule
            pending.extend(dep for dep in rule.deps if dep not in rules)

        sorter = TopologicalSorter({name: rule.deps for name, rule in rules.items()})
        try:
            order = list(sorter.static_order())
        except CycleError as exc:
            raise SchemaError(f"cyclic account derivation in {entry.name}: {exc.args[1]}") from exc
        return [(name, rules[name]) for name in order]

    # ------------------------------------------------------------------
    # resolution
    # ------------------------------------------------------------------
    async def resolve(self, entry: InstructionSchemaEntry, inputs: KnownInputs) -> ResolvedAccountSet:
        plan = self.plan(entry, inputs)
        build = _Build(inputs)
        for name, rule in plan:
            build.resolved[name] = await rule.run(build)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("%s.%s -> %s (%s)", entry.name, name, build.resolved[name], rule.kind)
        return ResolvedAccountSet(
            entry=entry,
            addresses={role.name: build.resolved[role.name] for role in entry.accounts},
        )

    def build_instruction(
        self,
        entry: InstructionSchemaEntry,
        accounts: ResolvedAccountSet,
        data: bytes,
    ) -> Instruction:
        return Instruction(self.program_id, entry.tag + data, accounts.account_metas())

    async def build(
        self,
        name: str,
        inputs: KnownInputs,
        *,
        amount: int,
        min_out: int = 0,
        arg_overrides: Mapping[str, Any] | None = None,
    ) -> Instruction:
        """Resolve accounts and encode arguments for instruction ``name``."""

        entry = self.schema.instruction(name)
        data = encode_arguments(
            entry.args,
            amount=amount,
            min_out=min_out,
            overrides=arg_overrides,
            types=self.schema.types,
        )
        accounts = await self.resolve(entry, inputs)
        return self.build_instruction(entry, accounts, data)

    # ------------------------------------------------------------------
    # derivations
    # ------------------------------------------------------------------
    def _program_for(self, rule: DerivationRule) -> Pubkey:
        if rule.program is not None:
            return rule.program
        hint = (rule.program_hint or "").lower()
        if "token_2022" in hint:
            return TOKEN_2022_PROGRAM_ID
        if "associated_token" in hint:
            return ASSOCIATED_TOKEN_PROGRAM_ID
        if "token" in hint:
            return TOKEN_PROGRAM_ID
        return self.program_id

    def _derivation_rule(self, name: str, rule: DerivationRule) -> Rule:
        async def run(build: _Build) -> Pubkey:
            seeds: List[bytes] = []
            for seed in rule.seeds:
                if isinstance(seed, ConstSeed):
                    seeds.append(seed.value)
                elif isinstance(seed, AccountSeed):
                    seeds.append(bytes(build.resolved[seed.path]))
                else:
                    seeds.append(await self._field_seed(name, seed, build))
            return _pda(seeds, self._program_for(rule))

        return Rule("derived", rule.dependencies(), run)

    async def _field_seed(self, role: str, seed: FieldSeed, build: _Build) -> bytes:
        address = build.resolved[seed.account]
        snapshot = await fetch_account(self.client, address)
        if snapshot is None:
            raise ResolutionError(role, f"{seed.account} account {address} not found")
        type_name = seed.account_type or _camel(seed.account)
        try:
            value: Any = decode_account(self.schema, type_name, snapshot.data)
            for part in seed.field.split("."):
                value = value[part]
        except (EncodingError, SchemaError, KeyError, TypeError) as exc:
            if len(snapshot.data) >= BONDING_CURVE_MIN_LEN:
                logger.debug("Typed decode of %s failed (%s); using trailing bytes", type_name, exc)
                return bytes(snapshot.data[-32:])
            raise ResolutionError(role, f"cannot decode {seed.account}.{seed.field}") from exc
        if isinstance(value, Pubkey):
            return bytes(value)
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        raise ResolutionError(role, f"{seed.account}.{seed.field} is not usable as a seed")

    def bonding_curve_address(self, mint: Pubkey) -> Pubkey:
        return _pda([BONDING_CURVE_SEED, bytes(mint)], self.program_id)

    def global_address(self) -> Pubkey:
        return _pda([GLOBAL_SEED], self.program_id)

    def fee_config_address(self) -> Pubkey:
        return _pda([FEE_CONFIG_SEED, bytes(self.program_id)], self.fee_program_id)

    def event_authority_address(self) -> Pubkey:
        return _pda([EVENT_AUTHORITY_SEED], self.program_id)

    def creator_from_curve(self, data: bytes) -> Pubkey:
        """Return the creator recorded in raw bonding curve account ``data``."""

        try:
            creator = coerce_pubkey(decode_account(self.schema, "BondingCurve", data).get("creator"))
        except (EncodingError, SchemaError) as exc:
            logger.debug("BondingCurve decode failed: %s", exc)
            creator = None
        if creator is not None:
            return creator
        if len(data) >= BONDING_CURVE_MIN_LEN:
            return Pubkey.from_bytes(bytes(data[-32:]))
        raise ResolutionError("creator_vault", f"bonding curve data too short ({len(data)} bytes)")

    async def creator_vault(self, mint: Pubkey, *, persist: bool | None = None) -> Pubkey:
        """Return the creator vault for ``mint`` (override, cache, then derivation)."""

        if self.settings.creator_vault_override is not None:
            return self.settings.creator_vault_override
        cached = self.creator_vault_cache.get(mint)
        if cached is not None:
            return cached
        curve = self.bonding_curve_address(mint)
        snapshot = await fetch_account(self.client, curve)
        if snapshot is None:
            raise ResolutionError("creator_vault", f"no bonding curve for {mint}")
        creator = self.creator_from_curve(snapshot.data)
        vault = _pda([CREATOR_VAULT_SEED, bytes(creator)], self.program_id)
        await self.creator_vault_cache.put(mint, vault, persist=persist)
        logger.info("Derived creator vault %s for %s", vault, mint)
        return vault

    async def fee_recipient(self) -> Pubkey:
        """Return the protocol fee recipient (override, cache, then global state)."""

        if self.settings.fee_recipient_override is not None:
            return self.settings.fee_recipient_override
        cached = self.fee_recipient_cache.get()
        if cached is not None:
            return cached
        global_pda = self.global_address()
        snapshot = await fetch_account(self.client, global_pda)
        if snapshot is None:
            raise ResolutionError("fee_recipient", f"global state {global_pda} not found")
        recipient: Pubkey | None = None
        for type_name in self.schema.accounts:
            try:
                recipient = extract_fee_key(decode_account(self.schema, type_name, snapshot.data))
            except (EncodingError, SchemaError):
                continue
            if recipient is not None:
                break
        if recipient is None:
            end = GLOBAL_FEE_RECIPIENT_OFFSET + 32
            if len(snapshot.data) < end:
                raise ResolutionError(
                    "fee_recipient", f"global state too short ({len(snapshot.data)} bytes)"
                )
            recipient = Pubkey.from_bytes(bytes(snapshot.data[GLOBAL_FEE_RECIPIENT_OFFSET:end]))
        self.fee_recipient_cache.set(recipient)
        return recipient

    async def prefetch_fee_recipient(self) -> Pubkey | None:
        try:
            return await self.fee_recipient()
        except (SolhandsError, SolanaRpcException) as exc:
            logger.warning("Fee recipient prefetch failed: %s", exc)
            return None

    async def prefetch_creator_vault(self, mint: Pubkey, *, persist: bool = False) -> bool:
        try:
            await self.creator_vault(mint, persist=persist)
        except (SolhandsError, SolanaRpcException) as exc:
            logger.warning("Creator vault prefetch for %s failed: %s", mint, exc)
            return False
        return True

    # heuristic rule factories -------------------------------------------
    def _rule_associated_bonding_curve(self, name: str) -> Rule:
        async def run(build: _Build) -> Pubkey:
            return associated_token_address(build.resolved["bonding_curve"], build.inputs.mint)

        return Rule("heuristic", ("bonding_curve",), run)

    def _rule_bonding_curve(self, name: str) -> Rule:
        async def run(build: _Build) -> Pubkey:
            return self.bonding_curve_address(build.inputs.mint)

        return Rule("heuristic", (), run)

    def _rule_creator_vault(self, name: str) -> Rule:
        async def run(build: _Build) -> Pubkey:
            return await self.creator_vault(build.inputs.mint)

        return Rule("heuristic", (), run)

    def _rule_fee_config(self, name: str) -> Rule:
        async def run(build: _Build) -> Pubkey:
            return self.fee_config_address()

        return Rule("heuristic", (), run)

    def _rule_fee_recipient(self, name: str) -> Rule:
        async def run(build: _Build) -> Pubkey:
            return await self.fee_recipient()

        return Rule("heuristic", (), run)

    def _rule_global(self, name: str) -> Rule:
        return _fixed("heuristic", self.global_address())

    def _rule_event_authority(self, name: str) -> Rule:
        return _fixed("heuristic", self.event_authority_address())


HEURISTICS: Tuple[Heuristic, ...] = (
    Heuristic(
        "associated_bonding_curve",
        lambda k: "associated" in k and ("bond" in k or "curve" in k),
        AccountResolver._rule_associated_bonding_curve,
    ),
    Heuristic("bonding_curve", lambda k: "bond" in k or "curve" in k, AccountResolver._rule_bonding_curve),
    Heuristic("creator_vault", lambda k: "creator" in k and "vault" in k, AccountResolver._rule_creator_vault),
    Heuristic("fee_config", lambda k: "fee" in k and "config" in k, AccountResolver._rule_fee_config),
    Heuristic(
        "fee_recipient",
        lambda k: "fee" in k and ("recipient" in k or "receiver" in k),
        AccountResolver._rule_fee_recipient,
    ),
    Heuristic("global", lambda k: k == "global", AccountResolver._rule_global),
    Heuristic("event_authority", lambda k: "event" in k and "authorit" in k, AccountResolver._rule_event_authority),
)


__all__ = [
    "AccountResolver",
    "BONDING_CURVE_MIN_LEN",
    "HEURISTICS",
    "Heuristic",
    "HOLDING_ROLES",
    "KnownInputs",
    "PAYER_ROLES",
    "ResolvedAccountSet",
    "Rule",
    "WELL_KNOWN_ROLES",
    "extract_fee_key",
]
