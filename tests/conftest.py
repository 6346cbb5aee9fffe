"""Shared fixtures: test settings and an in-memory chain provider."""

from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from adfaucet.config.settings import load_settings
from adfaucet.main import create_app
from adfaucet.models.records import TransferQuery, TransferRecord
from adfaucet.services.auction import AdAuctionService
from adfaucet.services.gate import EligibilityGate
from adfaucet.utils.errors import UpstreamError

# Well-known development key (first account of the Hardhat/Anvil test mnemonic).
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
FUNDING_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ISSUER_ADDRESS = "0x" + "11" * 20
TOKEN_ADDRESS = "0x" + "22" * 20
AUCTION_ADDRESS = "0x" + "33" * 20
BID_TOKEN_ADDRESS = "0x" + "44" * 20
USER_ADDRESS = "0x" + "ab" * 20
TX_HASH = "0x" + "cd" * 32

BASE_ENV = {
    "ALCHEMY_ENDPOINT": "https://rpc.example.invalid/v2/test",
    "PRIVATE_KEY": TEST_PRIVATE_KEY,
    "FUNDING_ADDRESS": FUNDING_ADDRESS,
    "CLAIM_AMOUNT": "0.01",
    "GAS_PRICE_GWEI": "30",
    "ISSUER_ADDRESS": ISSUER_ADDRESS,
    "TOKEN_ADDRESS": TOKEN_ADDRESS,
    "AUCTION_CONTRACT_ADDRESS": AUCTION_ADDRESS,
}


def make_transfer(
    from_address: str,
    to_address: str,
    value: Optional[str] = "1",
    raw_value: int = 10**18,
    block_number: int = 1,
    transaction_hash: str = TX_HASH,
    asset: Optional[str] = "JPYC",
    timestamp: Optional[str] = "2024-05-01T12:00:00.000Z",
) -> TransferRecord:
    return TransferRecord(
        from_address=from_address.lower(),
        to_address=to_address.lower(),
        raw_value=raw_value,
        block_number=block_number,
        transaction_hash=transaction_hash,
        value=value,
        asset=asset,
        timestamp=timestamp,
    )


class FakeChainProvider:
    """ChainDataProvider keeping everything in dictionaries and recording every call."""

    def __init__(self):
        self.transfers: Dict[tuple, List[TransferRecord]] = {}
        self.balances: Dict[str, int] = {}
        self.receipts: Dict[str, Any] = {}
        self.contract_values: Dict[tuple, Any] = {}
        self.failures: Dict[str, Exception] = {}
        self.network_gas_price = 10**9
        self.receipt = {"status": 1, "blockNumber": 123}

        self.queries: List[TransferQuery] = []
        self.balance_calls: List[str] = []
        self.contract_calls: List[tuple] = []
        self.sent: List[tuple] = []

    def add_transfers(self, category: str, from_address: Optional[str], to_address: str, records):
        key = (category, from_address.lower() if from_address else None, to_address.lower())
        self.transfers.setdefault(key, []).extend(records)

    def _maybe_fail(self, name: str):
        if name in self.failures:
            raise self.failures[name]

    async def get_asset_transfers(self, query: TransferQuery) -> List[TransferRecord]:
        self.queries.append(query)
        self._maybe_fail("get_asset_transfers")
        key = (query.category[0], query.from_address, query.to_address)
        return list(self.transfers.get(key, []))

    async def get_balance(self, address: str) -> int:
        self.balance_calls.append(address)
        self._maybe_fail("get_balance")
        return self.balances.get(address, 0)

    async def get_transaction_receipt(self, tx_hash: str):
        receipt = self.receipts.get(tx_hash)
        if isinstance(receipt, Exception):
            raise receipt
        return receipt

    async def read_contract(self, address: str, abi, function_name: str, *args: Any) -> Any:
        self.contract_calls.append((address.lower(), function_name, args))
        key = (address.lower(), function_name)
        if key not in self.contract_values:
            raise UpstreamError(f"RPC call failed: {function_name} reverted")
        value = self.contract_values[key]
        return value(*args) if callable(value) else value

    async def get_gas_price(self) -> int:
        self._maybe_fail("get_gas_price")
        return self.network_gas_price

    async def send_transaction(self, to: str, value: int, gas_price: int) -> str:
        self._maybe_fail("send_transaction")
        self.sent.append((to, value, gas_price))
        return TX_HASH

    async def wait_for_receipt(self, tx_hash: str):
        self._maybe_fail("wait_for_receipt")
        return self.receipt


@pytest.fixture
def env():
    return dict(BASE_ENV)


@pytest.fixture
def settings(env):
    return load_settings(env)


@pytest.fixture
def provider():
    return FakeChainProvider()


@pytest.fixture
def gate(settings, provider):
    return EligibilityGate(settings, provider)


@pytest.fixture
def auction(settings, provider):
    return AdAuctionService(settings, provider)


@pytest.fixture
def client(settings, provider):
    return TestClient(create_app(settings, provider))
