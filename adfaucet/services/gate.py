"""
Claim eligibility gate.

A claim passes three read-only checks, in order, before any native token is
sent:

1. the address received the issuer token from the issuer address,
2. its native balance is at most the claim amount,
3. the funding address never paid it before.

Each step yields either a value or a Failure; the first Failure ends the claim.
Nothing is cached between requests.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar, Union

from web3 import Web3

from adfaucet.config.settings import Settings
from adfaucet.models.records import EligibilityDecision, TransferQuery, TransferRecord, total_received
from adfaucet.services.chain import ChainDataProvider
from adfaucet.utils.errors import FaucetError, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(str, Enum):
    REJECTED = "rejected"
    UPSTREAM = "upstream"
    TRANSACTION = "transaction"


class Reason(str, Enum):
    NO_ISSUER_TRANSFER = "no_issuer_transfer"
    NOT_ELIGIBLE = "not_eligible"
    ALREADY_CLAIMED = "already_claimed"
    CLAIM_IN_PROGRESS = "claim_in_progress"
    UPSTREAM_ERROR = "upstream_error"
    TRANSACTION_FAILED = "transaction_failed"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    reason: Reason
    message: str
    status_code: int
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "reason": self.reason.value, **self.details}


@dataclass(frozen=True)
class Success:
    payload: Dict[str, Any]


ClaimResult = Union[Success, Failure]


@dataclass(frozen=True)
class TransferReport:
    verified: bool
    address: str
    counterparty: str
    transfers_count: int
    total_received: float
    latest_transfer: Optional[TransferRecord]
    message: str

    @classmethod
    def build(cls, address: str, counterparty: str, transfers, found: str, missing: str) -> "TransferReport":
        return cls(
            verified=len(transfers) > 0,
            address=address,
            counterparty=counterparty,
            transfers_count=len(transfers),
            total_received=float(total_received(transfers)),
            latest_transfer=transfers[0] if transfers else None,
            message=found if transfers else missing,
        )

    def to_dict(self, counterparty_key: str) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "address": self.address,
            counterparty_key: self.counterparty,
            "transfersCount": self.transfers_count,
            "totalReceived": self.total_received,
            "latestTransfer": self.latest_transfer.summary() if self.latest_transfer else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class BalanceReport:
    address: str
    balance_wei: int
    eligible: bool

    @property
    def balance(self) -> float:
        return float(Web3.from_wei(self.balance_wei, "ether"))

    @property
    def balance_formatted(self) -> str:
        return f"{self.balance:.6f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "balance": self.balance,
            "balanceFormatted": self.balance_formatted,
            "balanceWei": str(self.balance_wei),
        }


class ClaimReservations:
    """
    Short-lived per-address reservations for claims in flight.

    Only guards a single process: two workers can still pay the same address
    twice if the indexer has not seen the first payout yet.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._expiry: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def reserve(self, address: str) -> bool:
        async with self._lock:
            now = self._clock()
            self._expiry = {key: expiry for key, expiry in self._expiry.items() if expiry > now}
            if address in self._expiry:
                return False
            self._expiry[address] = now + self._ttl
            return True

    async def release(self, address: str) -> None:
        async with self._lock:
            self._expiry.pop(address, None)

    def is_reserved(self, address: str) -> bool:
        expiry = self._expiry.get(address)
        return expiry is not None and expiry > self._clock()


class EligibilityGate:
    def __init__(
        self,
        settings: Settings,
        provider: ChainDataProvider,
        reservations: Optional[ClaimReservations] = None,
    ):
        self.settings = settings
        self.provider = provider
        self.reservations = reservations or ClaimReservations(settings.reservation_ttl)

    # Read-only checks -------------------------------------------------------

    async def verify_issuer_transfer(self, address: str) -> TransferReport:
        """Issuer token transfers from the issuer address to ``address``."""
        query = TransferQuery(
            category=["erc20"],
            to_address=address,
            from_address=self.settings.issuer_address,
            contract_addresses=[self.settings.token_address],
            max_count=self.settings.transfer_max_count,
        )
        transfers = await self.provider.get_asset_transfers(query)
        symbol = self.settings.issuer_token_symbol
        return TransferReport.build(
            address,
            self.settings.issuer_address,
            transfers,
            found=f"This address has received {symbol} from the issuer",
            missing=f"This address has not received {symbol} from the issuer",
        )

    async def check_balance(self, address: str) -> BalanceReport:
        balance_wei = await self.provider.get_balance(address)
        return BalanceReport(
            address=address,
            balance_wei=balance_wei,
            eligible=balance_wei <= self.settings.claim_amount_wei,
        )

    async def check_prior_claims(self, address: str) -> TransferReport:
        """Native transfers already sent from the funding address to ``address``."""
        query = TransferQuery(
            category=["external"],
            to_address=address,
            from_address=self.settings.funding_address,
            max_count=self.settings.transfer_max_count,
        )
        transfers = await self.provider.get_asset_transfers(query)
        symbol = self.settings.native_symbol
        return TransferReport.build(
            address,
            self.settings.funding_address,
            transfers,
            found=f"This address has received {symbol} from the sender address",
            missing=f"This address has not received {symbol} from the sender address",
        )

    async def gas_price(self) -> int:
        network_price = await self.provider.get_gas_price()
        return max(network_price or 0, self.settings.gas_price_floor_wei)

    # Claim ------------------------------------------------------------------

    async def _step(self, label: str, action: Callable[[], Awaitable[T]]) -> Union[Ok[T], Failure]:
        try:
            return Ok(await action())
        except UpstreamError as e:
            logger.error(f"{label} failed: {e.message}")
            return Failure(
                FailureKind.UPSTREAM,
                Reason.UPSTREAM_ERROR,
                label,
                500,
                {"details": e.message},
            )

    async def claim(self, address: str, dry_run: bool = False) -> ClaimResult:
        if not dry_run and not await self.reservations.reserve(address):
            logger.warning(f"Claim already in progress for {address}")
            return Failure(
                FailureKind.REJECTED,
                Reason.CLAIM_IN_PROGRESS,
                "A claim for this address is already being processed",
                409,
            )

        result: Optional[ClaimResult] = None
        try:
            result = await self._run_claim(address, dry_run)
            return result
        finally:
            # A broadcast transaction keeps its reservation even if the receipt never came.
            broadcast = isinstance(result, Success) or (
                isinstance(result, Failure) and "transactionHash" in result.details
            )
            if not dry_run and not broadcast:
                await self.reservations.release(address)

    async def _run_claim(self, address: str, dry_run: bool) -> ClaimResult:
        settings = self.settings
        decision = EligibilityDecision()

        issuer = await self._step(
            "Failed to check issuer transfer history", lambda: self.verify_issuer_transfer(address)
        )
        if isinstance(issuer, Failure):
            return issuer
        decision = EligibilityDecision(issuer_verified=issuer.value.verified)
        if not issuer.value.verified:
            logger.info(f"Claim rejected for {address}: no issuer transfer")
            return Failure(
                FailureKind.REJECTED,
                Reason.NO_ISSUER_TRANSFER,
                issuer.value.message,
                400,
                {"issuerTransfersCount": issuer.value.transfers_count, "eligibility": decision.to_dict()},
            )

        balance = await self._step("Failed to check balance", lambda: self.check_balance(address))
        if isinstance(balance, Failure):
            return balance
        decision = EligibilityDecision(issuer_verified=True, balance_eligible=balance.value.eligible)
        if not balance.value.eligible:
            logger.info(f"Claim rejected for {address}: balance {balance.value.balance_formatted}")
            return Failure(
                FailureKind.REJECTED,
                Reason.NOT_ELIGIBLE,
                f"Address balance is above {settings.claim_amount} {settings.native_symbol}",
                400,
                {
                    "balance": balance.value.balance,
                    "balanceFormatted": balance.value.balance_formatted,
                    "eligibility": decision.to_dict(),
                },
            )

        prior = await self._step("Failed to check transfer history", lambda: self.check_prior_claims(address))
        if isinstance(prior, Failure):
            return prior
        decision = EligibilityDecision(
            issuer_verified=True, balance_eligible=True, already_claimed=prior.value.verified
        )
        if prior.value.verified:
            logger.info(f"Claim rejected for {address}: already claimed {prior.value.transfers_count} time(s)")
            return Failure(
                FailureKind.REJECTED,
                Reason.ALREADY_CLAIMED,
                f"This address has already received {settings.native_symbol} from the sender address",
                400,
                {"transfersCount": prior.value.transfers_count, "eligibility": decision.to_dict()},
            )

        return await self._disburse(address, dry_run, balance.value, decision)

    async def _disburse(
        self, address: str, dry_run: bool, balance: BalanceReport, decision: EligibilityDecision
    ) -> ClaimResult:
        settings = self.settings
        base = {
            "success": True,
            "address": address,
            "amount": str(settings.claim_amount),
            "balanceBefore": balance.balance,
            "senderTransferVerified": True,
            "eligibility": decision.to_dict(),
        }

        gas_price: Optional[int] = None
        tx_hash: Optional[str] = None
        try:
            gas_price = await self.gas_price()
            if dry_run:
                logger.info(f"Dry-run claim for {address} at gas price {gas_price}")
                return Success({**base, "dryRun": True, "gasPrice": str(gas_price)})

            tx_hash = await self.provider.send_transaction(address, settings.claim_amount_wei, gas_price)
            receipt = await self.provider.wait_for_receipt(tx_hash)
        except FaucetError as e:
            logger.error(f"Failed to send transaction to {address}: {e.message} (gasPrice={gas_price}, dryRun={dry_run})")
            details = {"details": e.details or e.message}
            tx_hash = tx_hash or e.extra.get("transactionHash")
            if tx_hash:
                details["transactionHash"] = tx_hash
            return Failure(
                FailureKind.TRANSACTION,
                Reason.TRANSACTION_FAILED,
                "Failed to send transaction",
                500,
                details,
            )

        block_number = receipt.get("blockNumber")
        logger.info(f"✅ Sent {settings.claim_amount} {settings.native_symbol} to {address}: {tx_hash}")
        return Success(
            {
                **base,
                "transactionHash": tx_hash,
                "blockNumber": str(block_number) if block_number is not None else None,
                "gasPrice": str(gas_price),
            }
        )
