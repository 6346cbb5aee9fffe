import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from web3 import Web3
from web3.constants import ADDRESS_ZERO

from adfaucet.config.settings import Settings
from adfaucet.models.records import BidRecord, BidValue, MinBid, TokenInfo, TransferQuery, TransferRecord
from adfaucet.services.abi import AD_AUCTION_ABI, ERC20_ABI, encode_call, find_bid_event
from adfaucet.services.chain import ChainDataProvider
from adfaucet.utils.address import require_address
from adfaucet.utils.errors import BidRejectedError, UpstreamError

logger = logging.getLogger(__name__)

# Image URLs that bidders got wrong on-chain, mapped to the image they meant.
IMAGE_URL_CORRECTIONS = {
    "https://prcdn.freetls.fastly.net/release_image/46288/150/46288-150-4068449046755ead34a8b0[…]pg?format=jpeg&auto=webp&fit=bounds&width=720&height=480":
        "https://prcdn.freetls.fastly.net/release_image/46288/150/46288-150-4068449046755ead34a8b0c5252c2b82-1280x720.jpg?width=1950&height=1350&quality=85%2C75&format=jpeg&auto=webp&fit=bounds&bg-color=fff",
    "https://drive.google.com/file/d/1xBsNosSi2nDfnFr_CsIuQrgkJbEA8vsg/view?usp=drive_link":
        "https://prcdn.freetls.fastly.net/release_image/46288/150/46288-150-4068449046755ead34a8b0c5252c2b82-1280x720.jpg?width=1950&height=1350&quality=85%2C75&format=jpeg&auto=webp&fit=bounds&bg-color=fff",
}


def correct_image_url(url: Optional[str]) -> Optional[str]:
    return IMAGE_URL_CORRECTIONS.get(url, url) if url else url


def format_units(amount: int, decimals: int) -> str:
    value = Decimal(amount).scaleb(-decimals)
    return format(value.normalize(), "f") if value else "0"


class AdAuctionService:
    """Reads the ad auction contract and prepares bids for the bidder's wallet."""

    def __init__(self, settings: Settings, provider: ChainDataProvider):
        self.settings = settings
        self.provider = provider
        self.contract_address = settings.auction_contract_address

    async def _read(self, function_name: str, *args: Any, address: Optional[str] = None) -> Any:
        return await self.provider.read_contract(address or self.contract_address, AD_AUCTION_ABI, function_name, *args)

    async def get_token_info(self) -> TokenInfo:
        try:
            symbol, decimals = await asyncio.gather(
                self._read("getTokenSymbol"),
                self._read("getTokenDecimals"),
            )
        except UpstreamError as e:
            logger.error(f"Failed to fetch token info: {e.message}")
            return TokenInfo(symbol=self.settings.native_symbol, decimals=18)
        return TokenInfo(symbol=str(symbol), decimals=int(decimals))

    async def get_current_ad(self) -> BidRecord:
        bidder, bid_amount, image_url, alt_text, href_url, timestamp = await self._read("getCurrentAd")
        return BidRecord(
            bidder=bidder,
            bid_amount=BidValue(source="contract", value=int(bid_amount)),
            image_url=correct_image_url(image_url),
            alt_text=alt_text,
            href_url=href_url,
            timestamp=float(timestamp),
        )

    async def get_min_bid(self) -> MinBid:
        amount, token_info = await asyncio.gather(self._read("getMinBidAmount"), self.get_token_info())
        return MinBid(
            amount=int(amount),
            formatted=format_units(int(amount), token_info.decimals),
            symbol=token_info.symbol,
        )

    async def get_bid_token_address(self, contract_address: Optional[str] = None) -> Optional[str]:
        """Token the auction accepts, or None when the contract cannot tell us."""
        try:
            token = await self._read("getERC20TokenAddress", address=contract_address)
        except UpstreamError as e:
            logger.error(f"Failed to get ERC20 token address from contract: {e.message}")
            return None
        if not token or token.lower() == ADDRESS_ZERO:
            return None
        return token.lower()

    # History ----------------------------------------------------------------

    async def get_ad_history(
        self, contract_address: Optional[str] = None, token_address: Optional[str] = None
    ) -> List[BidRecord]:
        """
        Rebuild the bid history from token transfers into the auction contract.

        Each transfer is enriched from its receipt's AdBidPlaced log when one can
        be decoded; the decoded bid amount then replaces the transfer value.
        """
        contract_address = (contract_address or self.contract_address).lower()
        if not token_address:
            token_address = await self.get_bid_token_address(contract_address)

        query = TransferQuery(
            category=["erc20"],
            to_address=contract_address,
            contract_addresses=[token_address] if token_address else [],
            max_count=self.settings.history_max_count,
        )
        transfers = await self.provider.get_asset_transfers(query)

        semaphore = asyncio.Semaphore(max(1, self.settings.history_concurrency))

        async def enrich(transfer: TransferRecord) -> BidRecord:
            async with semaphore:
                return await self._bid_from_transfer(transfer)

        history = await asyncio.gather(*(enrich(transfer) for transfer in transfers))
        return sorted(history, key=lambda record: record.block_number or 0, reverse=True)

    async def _bid_from_transfer(self, transfer: TransferRecord) -> BidRecord:
        event: Optional[Dict[str, Any]] = None
        try:
            receipt = await self.provider.get_transaction_receipt(transfer.transaction_hash)
        except UpstreamError as e:
            logger.error(f"Failed to get transaction receipt for {transfer.transaction_hash}: {e.message}")
            receipt = None
        if receipt:
            event = find_bid_event(receipt.get("logs") or [])

        if event is not None and event.get("bidAmount") is not None:
            amount = BidValue(source="event", value=int(event["bidAmount"]))
        else:
            amount = BidValue(source="rawTransfer", value=transfer.raw_value)

        event = event or {}
        return BidRecord(
            bidder=transfer.from_address,
            bid_amount=amount,
            image_url=correct_image_url(event.get("imageUrl")),
            alt_text=event.get("altText"),
            href_url=event.get("hrefUrl"),
            block_number=transfer.block_number,
            timestamp=transfer.epoch_timestamp,
            transaction_hash=transfer.transaction_hash,
            token_symbol=transfer.asset,
        )

    # Bidding ----------------------------------------------------------------

    async def prepare_place_bid(
        self, bidder: str, image_url: str, alt_text: str, href_url: str, amount: int
    ) -> List[Dict[str, Any]]:
        """
        Unsigned transactions the bidder's wallet must send, in order.
        An ERC20 approve is included only when the current allowance is short.
        """
        bidder = require_address(bidder, "bidder address")
        if amount <= 0:
            raise BidRejectedError("Bid amount must be positive", amount=str(amount))

        token_address, min_bid = await asyncio.gather(
            self._read("getERC20TokenAddress"),
            self._read("getMinBidAmount"),
        )
        if int(amount) < int(min_bid):
            raise BidRejectedError(
                "Bid amount is below the minimum bid",
                amount=str(amount),
                minBidAmount=str(min_bid),
            )

        allowance = await self.provider.read_contract(
            token_address,
            ERC20_ABI,
            "allowance",
            Web3.to_checksum_address(bidder),
            Web3.to_checksum_address(self.contract_address),
        )

        auction = Web3.to_checksum_address(self.contract_address)
        transactions = []
        if int(allowance) < amount:
            transactions.append(
                {
                    "step": "approve",
                    "from": bidder,
                    "to": Web3.to_checksum_address(token_address),
                    "value": "0",
                    "data": encode_call(ERC20_ABI, "approve", [auction, amount]),
                }
            )
        transactions.append(
            {
                "step": "placeBid",
                "from": bidder,
                "to": auction,
                "value": "0",
                "data": encode_call(AD_AUCTION_ABI, "placeBid", [image_url, alt_text, href_url, amount]),
            }
        )
        logger.info(f"Prepared {len(transactions)} bid transaction(s) for {bidder}")
        return transactions
