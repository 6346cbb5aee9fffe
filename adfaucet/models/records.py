from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Literal, Optional

ZERO = Decimal(0)

BidSource = Literal["event", "rawTransfer", "contract"]


def parse_quantity(raw: Any) -> Optional[int]:
    """Parse an indexer quantity given as 0x-hex, decimal string or number."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, int):
        return raw
    text = str(raw)
    if text.startswith("0x"):
        return int(text, 16)
    try:
        return int(Decimal(text))
    except InvalidOperation:
        return None


@dataclass(frozen=True)
class TransferQuery:
    category: List[str]
    to_address: Optional[str] = None
    from_address: Optional[str] = None
    contract_addresses: List[str] = field(default_factory=list)
    max_count: int = 100
    from_block: str = "0x0"
    to_block: str = "latest"
    exclude_zero_value: bool = True
    order: str = "desc"
    with_metadata: bool = True

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "fromBlock": self.from_block,
            "toBlock": self.to_block,
            "category": list(self.category),
            "excludeZeroValue": self.exclude_zero_value,
            "maxCount": hex(self.max_count),
            "order": self.order,
            "withMetadata": self.with_metadata,
        }
        if self.to_address:
            params["toAddress"] = self.to_address.lower()
        if self.from_address:
            params["fromAddress"] = self.from_address.lower()
        if self.contract_addresses:
            params["contractAddresses"] = [address.lower() for address in self.contract_addresses]
        return params


@dataclass(frozen=True)
class TransferRecord:
    from_address: str
    to_address: str
    raw_value: int
    block_number: int
    transaction_hash: str
    value: Optional[str] = None
    token_contract: Optional[str] = None
    decimals: Optional[int] = None
    asset: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_indexer(cls, transfer: Dict[str, Any]) -> "TransferRecord":
        """Build a record from one entry of ``alchemy_getAssetTransfers``."""
        raw_contract = transfer.get("rawContract") or {}
        metadata = transfer.get("metadata") or {}
        value = transfer.get("value")
        decimals = parse_quantity(raw_contract.get("decimal"))

        raw_value = parse_quantity(raw_contract.get("value"))
        if raw_value is None and value is not None:
            text = str(value)
            if text.startswith("0x"):
                raw_value = int(text, 16)
            else:
                try:
                    raw_value = int(Decimal(text) * (10 ** (decimals if decimals is not None else 18)))
                except InvalidOperation:
                    raw_value = 0

        return cls(
            from_address=(transfer.get("from") or "").lower(),
            to_address=(transfer.get("to") or "").lower(),
            raw_value=raw_value or 0,
            block_number=parse_quantity(transfer.get("blockNum")) or 0,
            transaction_hash=transfer.get("hash") or "",
            value=None if value is None else str(value),
            token_contract=(raw_contract.get("address") or None),
            decimals=decimals,
            asset=transfer.get("asset"),
            timestamp=metadata.get("blockTimestamp"),
        )

    @property
    def numeric_value(self) -> Decimal:
        try:
            return Decimal(self.value or "0")
        except InvalidOperation:
            return ZERO

    @property
    def epoch_timestamp(self) -> Optional[float]:
        if not self.timestamp:
            return None
        return datetime.fromisoformat(self.timestamp.replace("Z", "+00:00")).timestamp()

    def summary(self) -> Dict[str, Any]:
        return {
            "blockNumber": self.block_number,
            "transactionHash": self.transaction_hash,
            "value": self.value,
            "timestamp": self.timestamp,
        }


def total_received(transfers: List[TransferRecord]) -> Decimal:
    return sum((transfer.numeric_value for transfer in transfers), ZERO)


@dataclass(frozen=True)
class EligibilityDecision:
    issuer_verified: Optional[bool] = None
    balance_eligible: Optional[bool] = None
    already_claimed: Optional[bool] = None

    def to_dict(self) -> Dict[str, Optional[bool]]:
        return {
            "issuerVerified": self.issuer_verified,
            "balanceEligible": self.balance_eligible,
            "alreadyClaimed": self.already_claimed,
        }


@dataclass(frozen=True)
class BidValue:
    source: BidSource
    value: int


@dataclass(frozen=True)
class BidRecord:
    bidder: str
    bid_amount: BidValue
    image_url: Optional[str] = None
    alt_text: Optional[str] = None
    href_url: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: Optional[float] = None
    transaction_hash: Optional[str] = None
    token_symbol: Optional[str] = None

    def history_entry(self) -> Dict[str, Any]:
        return {
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "from": self.bidder,
            "value": str(self.bid_amount.value),
            "valueSource": self.bid_amount.source,
            "tokenSymbol": self.token_symbol or "Unknown",
            "imageUrl": self.image_url,
            "altText": self.alt_text,
            "hrefUrl": self.href_url,
        }

    def current_ad(self) -> Dict[str, Any]:
        return {
            "bidder": self.bidder,
            "bidAmount": str(self.bid_amount.value),
            "image-url": self.image_url or "",
            "alt-text": self.alt_text or "",
            "href-url": self.href_url or "",
            "timestamp": int(self.timestamp or 0),
        }


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    decimals: int


@dataclass(frozen=True)
class MinBid:
    amount: int
    formatted: str
    symbol: str
