"""Instruction schema loading, binary codec and account resolution."""

from .codec import discriminator, encode_arguments
from .resolver import AccountResolver, KnownInputs, ResolvedAccountSet
from .schema import InstructionSchema, InstructionSchemaEntry, load_schema, parse_schema

__all__ = [
    "AccountResolver",
    "InstructionSchema",
    "InstructionSchemaEntry",
    "KnownInputs",
    "ResolvedAccountSet",
    "discriminator",
    "encode_arguments",
    "load_schema",
    "parse_schema",
]
