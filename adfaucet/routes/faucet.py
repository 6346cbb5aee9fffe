import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from adfaucet.models.schemas import AddressRequest, ClaimRequest
from adfaucet.routes.deps import get_gate
from adfaucet.services.gate import EligibilityGate, Failure
from adfaucet.utils.address import require_address
from adfaucet.utils.errors import AddressValidationError, UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter()


def _query_address(address: Optional[str]) -> str:
    if not address:
        raise AddressValidationError("Address query parameter is required")
    return address


async def _verify_issuer_transfer(address: str, gate: EligibilityGate) -> dict:
    address = require_address(address)
    try:
        report = await gate.verify_issuer_transfer(address)
    except UpstreamError as e:
        logger.error(f"Error verifying issuer transfer for {address}: {e.message}")
        raise UpstreamError("Failed to verify issuer transfer", details=e.message) from e
    return report.to_dict("issuerAddress")


async def _balance(address: str, gate: EligibilityGate) -> dict:
    address = require_address(address)
    try:
        report = await gate.check_balance(address)
    except UpstreamError as e:
        logger.error(f"Error getting balance for {address}: {e.message}")
        raise UpstreamError("Failed to get balance", details=e.message) from e
    return report.to_dict()


@router.post("/verify-issuer-transfer")
async def verify_issuer_transfer(request: AddressRequest, gate: EligibilityGate = Depends(get_gate)):
    """Check whether the address received the issuer token from the issuer."""
    return await _verify_issuer_transfer(request.address, gate)


@router.get("/verify-issuer-transfer")
async def verify_issuer_transfer_query(address: Optional[str] = None, gate: EligibilityGate = Depends(get_gate)):
    return await _verify_issuer_transfer(_query_address(address), gate)


@router.post("/balance")
async def get_balance(request: AddressRequest, gate: EligibilityGate = Depends(get_gate)):
    """Native balance of the address."""
    return await _balance(request.address, gate)


@router.get("/balance")
async def get_balance_query(address: Optional[str] = None, gate: EligibilityGate = Depends(get_gate)):
    return await _balance(_query_address(address), gate)


@router.post("/claim")
async def claim(request: ClaimRequest, gate: EligibilityGate = Depends(get_gate)):
    """
    Send the claim amount to the address if it passes the eligibility gate.
    With ``dryRun: true`` the gate runs but nothing is broadcast.
    """
    address = require_address(request.address)
    result = await gate.claim(address, dry_run=request.is_dry_run)
    if isinstance(result, Failure):
        return JSONResponse(status_code=result.status_code, content=result.to_dict())
    return result.payload
