from typing import Any, Dict, Optional


class FaucetError(Exception):
    """Base error rendered as ``{"error": ..., "details": ...}`` by the API."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.details = details
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ConfigError(FaucetError):
    status_code = 500


class AddressValidationError(FaucetError):
    status_code = 400


class UpstreamError(FaucetError):
    """The indexer or RPC node answered with an error or could not be reached."""

    status_code = 500


class TransactionError(FaucetError):
    status_code = 500


class BidRejectedError(FaucetError):
    status_code = 400
