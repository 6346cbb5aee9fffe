import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from adfaucet.config.settings import Settings, load_settings
from adfaucet.middleware.cors import setup_cors
from adfaucet.routes import auction, faucet, health
from adfaucet.services.auction import AdAuctionService
from adfaucet.services.chain import AlchemyChainProvider, ChainDataProvider
from adfaucet.services.gate import EligibilityGate
from adfaucet.utils.errors import ConfigError, FaucetError
from adfaucet.utils.log import configure_logging

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, provider: Optional[ChainDataProvider] = None) -> FastAPI:
    """
    Build the API. Settings are read from the environment unless given.

    A configuration problem does not prevent the app from starting; every API
    request then fails with the configuration error instead.
    """
    config_error = None
    if settings is None:
        try:
            settings = load_settings()
        except ConfigError as e:
            logger.error(f"❌ {e.message}: {e.details}")
            config_error = e

    configure_logging(settings.log_level if settings else "INFO")

    app = FastAPI(title="Ad Faucet API")
    setup_cors(app, settings.allowed_origins if settings else ("*",))

    app.state.settings = settings
    app.state.config_error = config_error
    if settings is not None:
        provider = provider or AlchemyChainProvider(settings)
        app.state.provider = provider
        app.state.gate = EligibilityGate(settings, provider)
        app.state.auction = AdAuctionService(settings, provider)

    @app.exception_handler(FaucetError)
    async def faucet_error_handler(request: Request, exc: FaucetError):
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message} {exc.details or ''}".rstrip())
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"{request.method} {request.url.path} -> 400: invalid request body")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"{request.method} {request.url.path} -> 500: unhandled {type(exc).__name__}")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})

    app.include_router(health.router)
    app.include_router(faucet.router, prefix="/api")
    app.include_router(auction.router, prefix="/api")
    return app


app = create_app()
