from pathlib import Path
from types import SimpleNamespace

import pytest
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.signature import Signature

from solhands.constants import TOKEN_PROGRAM_ID
from solhands.idl.schema import clear_schema_cache
from solhands.logging_utils import reset_warn_once_cache

FIXTURES = Path(__file__).parent / "fixtures"


class FakeClient:
    """In-memory stand-in for ``AsyncClient`` covering the calls solhands makes."""

    def __init__(self):
        self.slot = 1000
        self.accounts = {}
        self.balances = {}
        self.program_accounts = []
        self.blockhash = Hash.new_unique()
        self.last_valid_block_height = 5000
        self.simulate_err = None
        self.send_errors = []
        self.confirm_errors = []
        self.confirm_status_err = None
        self.sent = []
        self.calls = []

    def set_account(self, address, data, *, owner=TOKEN_PROGRAM_ID, slot=None, lamports=1):
        self.accounts[address] = SimpleNamespace(
            data=bytes(data), owner=owner, lamports=lamports, slot=self.slot if slot is None else slot
        )

    async def get_account_info(self, address, *args, **kwargs):
        self.calls.append(("get_account_info", address))
        acct = self.accounts.get(address)
        slot = acct.slot if acct is not None else self.slot
        return SimpleNamespace(value=acct, context=SimpleNamespace(slot=slot))

    async def get_slot(self, *args, **kwargs):
        return SimpleNamespace(value=self.slot)

    async def get_token_account_balance(self, address, *args, **kwargs):
        if address not in self.balances:
            raise RPCException({"code": -32602, "message": "could not find account"})
        return SimpleNamespace(value=SimpleNamespace(amount=str(self.balances[address])))

    async def get_program_accounts(self, program_id, *args, **kwargs):
        self.calls.append(("get_program_accounts", kwargs.get("filters")))
        return SimpleNamespace(value=list(self.program_accounts))

    async def get_latest_blockhash(self, *args, **kwargs):
        return SimpleNamespace(
            value=SimpleNamespace(
                blockhash=self.blockhash, last_valid_block_height=self.last_valid_block_height
            )
        )

    async def simulate_transaction(self, tx, *args, **kwargs):
        self.calls.append(("simulate_transaction", tx))
        return SimpleNamespace(value=SimpleNamespace(err=self.simulate_err, logs=["log"]))

    async def send_raw_transaction(self, raw, *args, **kwargs):
        self.sent.append(raw)
        if self.send_errors:
            exc = self.send_errors.pop(0)
            if exc is not None:
                raise exc
        return SimpleNamespace(value=Signature.new_unique())

    async def confirm_transaction(self, signature, *args, **kwargs):
        self.calls.append(("confirm_transaction", signature))
        if self.confirm_errors:
            exc = self.confirm_errors.pop(0)
            if exc is not None:
                raise exc
        return SimpleNamespace(value=[SimpleNamespace(err=self.confirm_status_err)])

    async def close(self):
        pass


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def pump_idl_path():
    return FIXTURES / "pump_idl.json"


@pytest.fixture
def pump_amm_idl_path():
    return FIXTURES / "pump_amm_idl.json"


@pytest.fixture(autouse=True)
def _reset_module_caches():
    clear_schema_cache()
    reset_warn_once_cache()
    yield
    clear_schema_cache()