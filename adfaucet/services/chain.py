"""
Chain data access.

Everything that talks to the indexer or the RPC node lives behind the
ChainDataProvider protocol so the gate and the auction service can be
exercised with an in-memory fake.
"""
import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from adfaucet.config.settings import Settings
from adfaucet.models.records import TransferQuery, TransferRecord
from adfaucet.utils.errors import TransactionError, UpstreamError

logger = logging.getLogger(__name__)

# Plain native transfer; used when the node refuses to estimate.
NATIVE_TRANSFER_GAS = 21000


class ChainDataProvider(Protocol):
    async def get_asset_transfers(self, query: TransferQuery) -> List[TransferRecord]: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]: ...

    async def read_contract(self, address: str, abi: List[Dict[str, Any]], function_name: str, *args: Any) -> Any: ...

    async def get_gas_price(self) -> int: ...

    async def send_transaction(self, to: str, value: int, gas_price: int) -> str: ...

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]: ...


class AlchemyChainProvider:
    """ChainDataProvider backed by an Alchemy endpoint (JSON-RPC + web3.py)."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None, w3: Optional[Web3] = None):
        self._settings = settings
        self._session = session or requests.Session()
        self._w3 = w3 or Web3(Web3.HTTPProvider(settings.rpc_endpoint, request_kwargs={"timeout": settings.http_timeout}))
        self._ids = itertools.count(1)

    # JSON-RPC ---------------------------------------------------------------

    def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session.post(
                self._settings.rpc_endpoint,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._settings.http_timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Alchemy API request failed: {str(e)}") from e

        if not response.ok:
            raise UpstreamError(f"Alchemy API error: {response.status_code} {response.reason}")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"Alchemy API returned invalid JSON: {str(e)}") from e

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            raise UpstreamError(f"Alchemy API error: {message or error}")
        return data.get("result")

    async def get_asset_transfers(self, query: TransferQuery) -> List[TransferRecord]:
        result = await asyncio.to_thread(self._rpc, "alchemy_getAssetTransfers", [query.to_params()])
        transfers = (result or {}).get("transfers")
        if not isinstance(transfers, list):
            return []
        return [TransferRecord.from_indexer(transfer) for transfer in transfers]

    async def get_balance(self, address: str) -> int:
        result = await asyncio.to_thread(self._rpc, "eth_getBalance", [address.lower(), "latest"])
        return int(result or "0x0", 16)

    # web3 -------------------------------------------------------------------

    async def _web3_call(self, fn, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise UpstreamError(f"RPC call failed: {str(e)}") from e

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        def fetch():
            try:
                return self._w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        return await self._web3_call(fetch)

    async def read_contract(self, address: str, abi: List[Dict[str, Any]], function_name: str, *args: Any) -> Any:
        contract = self._w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        return await self._web3_call(contract.functions[function_name](*args).call)

    async def get_gas_price(self) -> int:
        return await self._web3_call(lambda: self._w3.eth.gas_price)

    def _sign_and_send(self, to: str, value: int, gas_price: int) -> str:
        signer = Account.from_key(self._settings.private_key)
        tx = {
            "from": signer.address,
            "to": Web3.to_checksum_address(to),
            "value": value,
            "gasPrice": gas_price,
            "nonce": self._w3.eth.get_transaction_count(signer.address, "pending"),
            "chainId": self._w3.eth.chain_id,
        }
        try:
            tx["gas"] = self._w3.eth.estimate_gas(tx)
        except (Web3Exception, ValueError) as e:
            logger.warning(f"⚠️ Gas estimation failed: {str(e)}, using {NATIVE_TRANSFER_GAS}")
            tx["gas"] = NATIVE_TRANSFER_GAS

        signed_tx = signer.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def send_transaction(self, to: str, value: int, gas_price: int) -> str:
        try:
            tx_hash = await asyncio.to_thread(self._sign_and_send, to, value, gas_price)
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise TransactionError("Failed to send transaction", details=str(e)) from e
        logger.info(f"📡 Claim transaction sent: {tx_hash}")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        try:
            receipt = await asyncio.to_thread(
                self._w3.eth.wait_for_transaction_receipt, tx_hash, self._settings.receipt_timeout
            )
        except TimeExhausted as e:
            raise TransactionError(
                f"Transaction {tx_hash} not mined within {self._settings.receipt_timeout} seconds",
                details=str(e),
                transactionHash=tx_hash,
            ) from e
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise TransactionError("Failed to fetch transaction receipt", details=str(e), transactionHash=tx_hash) from e

        if receipt.get("status", 0) != 1:
            raise TransactionError(f"Transaction failed: {tx_hash}", transactionHash=tx_hash)
        return receipt
