import hashlib

import pytest

pytest.importorskip("solders")

from solders.pubkey import Pubkey

from solhands.errors import EncodingError, SchemaError
from solhands.idl.codec import (
    account_discriminator,
    argument_role,
    decode_account,
    decode_int,
    discriminator,
    encode_arguments,
    encode_default,
    encode_int,
    encode_value,
)
from solhands.idl.schema import ArgumentSpec, parse_schema


def test_discriminator_matches_anchor_convention():
    assert discriminator("buy") == hashlib.sha256(b"global:buy").digest()[:8]
    assert discriminator("buy") == bytes([102, 6, 61, 18, 1, 218, 235, 234])
    assert account_discriminator("BondingCurve") == hashlib.sha256(b"account:BondingCurve").digest()[:8]


@pytest.mark.parametrize(
    "type_name,value,expected",
    [
        ("u8", 255, b"\xff"),
        ("i8", -1, b"\xff"),
        ("u16", 1, b"\x01\x00"),
        ("u32", 0x01020304, b"\x04\x03\x02\x01"),
        ("i64", -2, (-2).to_bytes(8, "little", signed=True)),
        ("u128", 1 << 100, (1 << 100).to_bytes(16, "little")),
    ],
)
def test_encode_int_widths(type_name, value, expected):
    assert encode_int(value, type_name) == expected
    assert decode_int(expected, type_name) == value


@pytest.mark.parametrize("type_name,value", [("u8", 256), ("u64", -1), ("i8", 128), ("u64", 1 << 64)])
def test_encode_int_out_of_range_never_truncates(type_name, value):
    with pytest.raises(EncodingError):
        encode_int(value, type_name)


def test_encode_int_rejects_non_integers():
    with pytest.raises(EncodingError):
        encode_int(1.5, "u64")
    with pytest.raises(EncodingError):
        encode_int(True, "u8")


def test_encode_default_shapes():
    types = {
        "Pair": {"kind": "struct", "fields": [{"name": "a", "type": "u16"}, {"name": "b", "type": "bool"}]},
        "Side": {"kind": "enum", "variants": [{"name": "Bid"}, {"name": "Ask"}]},
    }
    assert encode_default({"option": "u64"}) == b"\x00"
    assert encode_default({"vec": "u8"}) == b"\x00\x00\x00\x00"
    assert encode_default("string") == b"\x00\x00\x00\x00"
    assert encode_default({"array": ["u16", 3]}) == bytes(6)
    assert encode_default({"defined": "Pair"}, types) == bytes(3)
    assert encode_default({"defined": "Side"}, types) == b"\x00"
    assert encode_default({"defined": "OptionBool"}) == b"\x00"
    assert encode_default({"defined": "Mystery"}, types) == b""


def test_argument_roles():
    assert argument_role("min_sol_output") == "min_out"
    assert argument_role("minAmountOut") == "min_out"
    assert argument_role("amount") == "amount"
    assert argument_role("max_sol_cost") == "amount"
    assert argument_role("base_amount_in") == "amount"
    assert argument_role("track_volume") is None


def test_encode_arguments_by_name_and_override():
    args = [
        ArgumentSpec("amount", "u64"),
        ArgumentSpec("min_sol_output", "u64"),
        ArgumentSpec("track_volume", {"option": "bool"}),
    ]
    data = encode_arguments(args, amount=1_000, min_out=990)
    assert data == (1_000).to_bytes(8, "little") + (990).to_bytes(8, "little") + b"\x00"

    data = encode_arguments(args, amount=1_000, min_out=990, overrides={"amount": 7, "track_volume": True})
    assert data[:8] == (7).to_bytes(8, "little")
    assert data[-2:] == b"\x01\x01"


def test_encode_arguments_override_matches_legacy_camel_case():
    args = [ArgumentSpec("baseAmountOut", "u64"), ArgumentSpec("maxQuoteAmountIn", "u64")]
    data = encode_arguments(args, amount=500, overrides={"base_amount_out": 42})
    assert data == (42).to_bytes(8, "little") + (500).to_bytes(8, "little")


def test_encode_arguments_amount_out_of_range():
    with pytest.raises(EncodingError):
        encode_arguments([ArgumentSpec("amount", "u8")], amount=300)


def test_encode_value_option_helper_enum():
    types = {
        "OptionU64": {
            "kind": "enum",
            "variants": [{"name": "None"}, {"name": "Some", "fields": [{"type": "u64"}]}],
        }
    }
    assert encode_value({"defined": "OptionU64"}, None, types) == b"\x00"
    assert encode_value({"defined": "OptionU64"}, 5, types) == b"\x01" + (5).to_bytes(8, "little")


def test_decode_account_checks_discriminator():
    creator = Pubkey.new_unique()
    schema = parse_schema(
        {
            "instructions": [{"name": "noop", "accounts": [], "args": []}],
            "accounts": [
                {
                    "name": "Thing",
                    "type": {
                        "kind": "struct",
                        "fields": [{"name": "count", "type": "u32"}, {"name": "owner", "type": "pubkey"}],
                    },
                }
            ],
        }
    )
    data = account_discriminator("Thing") + (9).to_bytes(4, "little") + bytes(creator) + b"trailing"
    decoded = decode_account(schema, "Thing", data)
    assert decoded == {"count": 9, "owner": creator}

    with pytest.raises(EncodingError):
        decode_account(schema, "Thing", bytes(8) + data[8:])
    with pytest.raises(SchemaError):
        decode_account(schema, "Other", data)
