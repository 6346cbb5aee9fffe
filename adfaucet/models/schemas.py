from pydantic import BaseModel, Field
from typing import Any, Optional, Union


# Addresses stay loosely typed here; routes validate them with require_address
# so that a bad address is a 400 with a readable message, not a 422.
class AddressRequest(BaseModel):
    address: Optional[str] = None


class ClaimRequest(BaseModel):
    address: Optional[str] = None
    dryRun: Optional[Any] = Field(None, description="Only the literal true enables dry-run mode")

    @property
    def is_dry_run(self) -> bool:
        return self.dryRun is True


class PlaceBidRequest(BaseModel):
    bidder: Optional[str] = None
    imageUrl: str
    altText: str = ""
    hrefUrl: str = ""
    amount: Union[int, str] = Field(..., description="Bid amount in token base units")
