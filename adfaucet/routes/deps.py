from fastapi import Depends, Request

from adfaucet.config.settings import Settings
from adfaucet.services.auction import AdAuctionService
from adfaucet.services.gate import EligibilityGate


def get_settings(request: Request) -> Settings:
    # Configuration problems fail the request before any chain call is made.
    config_error = getattr(request.app.state, "config_error", None)
    if config_error is not None:
        raise config_error
    return request.app.state.settings


def get_gate(request: Request, settings: Settings = Depends(get_settings)) -> EligibilityGate:
    return request.app.state.gate


def get_auction(request: Request, settings: Settings = Depends(get_settings)) -> AdAuctionService:
    return request.app.state.auction
