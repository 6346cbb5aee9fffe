import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from adfaucet.models.schemas import PlaceBidRequest
from adfaucet.routes.deps import get_auction
from adfaucet.services.auction import AdAuctionService
from adfaucet.utils.address import require_address
from adfaucet.utils.errors import BidRejectedError, UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter()

CACHE_CONTROL = "public, s-maxage=30, stale-while-revalidate=300"


@router.post("/ad-history")
async def ad_history(request: Request, auction: AdAuctionService = Depends(get_auction)):
    """
    Bid history of the auction contract, newest first.
    The body is optional; a missing or unreadable body means "use the defaults".
    """
    body = {}
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Failed to parse ad-history body, using defaults: {str(e)}")
    if not isinstance(body, dict):
        body = {}

    contract_address = body.get("contractAddress")
    contract_address = require_address(contract_address, "contract address") if contract_address else None
    token_address = body.get("erc20TokenAddress")
    token_address = require_address(token_address, "token address") if token_address else None

    try:
        history = await auction.get_ad_history(contract_address, token_address)
    except UpstreamError as e:
        logger.error(f"Error fetching ad history: {e.message}")
        raise UpstreamError("Failed to fetch ad history", details=e.message) from e

    return {"history": [record.history_entry() for record in history], "total": len(history)}


@router.get("/current-ad")
async def current_ad(auction: AdAuctionService = Depends(get_auction)):
    try:
        ad = await auction.get_current_ad()
    except UpstreamError as e:
        logger.error(f"Error fetching current ad: {e.message}")
        raise UpstreamError("Failed to fetch current ad", details=e.message) from e

    headers = {
        "Cache-Control": CACHE_CONTROL,
        "CDN-Cache-Control": CACHE_CONTROL,
    }
    return JSONResponse(content=ad.current_ad(), headers=headers)


@router.get("/min-bid")
async def min_bid(auction: AdAuctionService = Depends(get_auction)):
    try:
        result = await auction.get_min_bid()
    except UpstreamError as e:
        logger.error(f"Error fetching min bid amount: {e.message}")
        raise UpstreamError("Failed to fetch min bid amount", details=e.message) from e
    return {"amount": str(result.amount), "formatted": result.formatted, "symbol": result.symbol}


@router.get("/token-info")
async def token_info(auction: AdAuctionService = Depends(get_auction)):
    info = await auction.get_token_info()
    return {"symbol": info.symbol, "decimals": info.decimals}


@router.post("/place-bid")
async def place_bid(request: PlaceBidRequest, auction: AdAuctionService = Depends(get_auction)):
    """Unsigned approve/placeBid transactions for the bidder's wallet."""
    bidder = require_address(request.bidder, "bidder address")
    try:
        amount = int(request.amount)
    except ValueError:
        raise BidRejectedError("Invalid bid amount", amount=str(request.amount))

    try:
        transactions = await auction.prepare_place_bid(
            bidder, request.imageUrl, request.altText, request.hrefUrl, amount
        )
    except UpstreamError as e:
        logger.error(f"Error preparing bid for {bidder}: {e.message}")
        raise UpstreamError("Failed to prepare bid", details=e.message) from e
    return {"transactions": transactions}
