import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3

from adfaucet.utils.address import is_valid_address
from adfaucet.utils.errors import ConfigError

# Each setting may be provided under several names; the first one set wins.
ENV_KEYS = {
    "rpc_endpoint": ("ALCHEMY_ENDPOINT", "RPC_URL"),
    "private_key": ("PRIVATE_KEY", "SECRET_KEY"),
    "funding_address": ("FUNDING_ADDRESS", "ADDRESS"),
    "claim_amount": ("CLAIM_AMOUNT",),
    "gas_price_floor_gwei": ("GAS_PRICE_GWEI",),
    "issuer_address": ("ISSUER_ADDRESS",),
    "token_address": ("TOKEN_ADDRESS",),
    "auction_contract_address": ("AUCTION_CONTRACT_ADDRESS", "COMMERCIAL_CONTRACT_ADDRESS"),
}

ADDRESS_SETTINGS = ("funding_address", "issuer_address", "token_address", "auction_contract_address")


@dataclass(frozen=True)
class Settings:
    rpc_endpoint: str
    private_key: str = field(repr=False)
    funding_address: str
    claim_amount: Decimal
    gas_price_floor_gwei: Decimal
    issuer_address: str
    token_address: str
    auction_contract_address: str
    native_symbol: str = "POL"
    issuer_token_symbol: str = "JPYC"
    allowed_origins: Tuple[str, ...] = ("*",)
    http_timeout: float = 30.0
    receipt_timeout: int = 120
    reservation_ttl: int = 300
    transfer_max_count: int = 100
    history_max_count: int = 1000
    history_concurrency: int = 8
    log_level: str = "INFO"

    @property
    def claim_amount_wei(self) -> int:
        return Web3.to_wei(self.claim_amount, "ether")

    @property
    def gas_price_floor_wei(self) -> int:
        return Web3.to_wei(self.gas_price_floor_gwei, "gwei")


def _lookup(env: Mapping[str, str], names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value:
            return value.strip()
    return None


def _decimal(name: str, raw: str, errors: List[str]) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        errors.append(f"{name} must be a number, got {raw!r}")
        return Decimal(0)
    if value <= 0:
        errors.append(f"{name} must be positive, got {raw!r}")
    return value


def _int(env: Mapping[str, str], name: str, default: int, errors: List[str]) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer, got {raw!r}")
        return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment (a .env file is loaded first).
    Every missing or malformed variable is reported in a single ConfigError.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values = {key: _lookup(env, names) for key, names in ENV_KEYS.items()}
    missing = [ENV_KEYS[key][0] for key, value in values.items() if not value]
    if missing:
        raise ConfigError(
            "Missing required environment variables",
            details=", ".join(missing),
            missing=missing,
        )

    errors: List[str] = []
    for key in ADDRESS_SETTINGS:
        if not is_valid_address(values[key]):
            errors.append(f"{ENV_KEYS[key][0]} is not a valid address: {values[key]!r}")

    claim_amount = _decimal("CLAIM_AMOUNT", values["claim_amount"], errors)
    gas_floor = _decimal("GAS_PRICE_GWEI", values["gas_price_floor_gwei"], errors)

    try:
        signer_address = Account.from_key(values["private_key"]).address
    except Exception as e:
        errors.append(f"PRIVATE_KEY could not be loaded: {str(e)}")
    else:
        funding = values["funding_address"] or ""
        if signer_address.lower() != funding.lower():
            errors.append(
                f"PRIVATE_KEY address {signer_address} does not match FUNDING_ADDRESS {funding}"
            )

    origins = tuple(
        origin.strip() for origin in env.get("ALLOWED_ORIGINS", "*").split(",") if origin.strip()
    ) or ("*",)

    http_timeout_raw = env.get("HTTP_TIMEOUT")
    http_timeout = 30.0
    if http_timeout_raw:
        try:
            http_timeout = float(http_timeout_raw)
        except ValueError:
            errors.append(f"HTTP_TIMEOUT must be a number, got {http_timeout_raw!r}")

    settings_kwargs = dict(
        receipt_timeout=_int(env, "RECEIPT_TIMEOUT", 120, errors),
        reservation_ttl=_int(env, "CLAIM_RESERVATION_TTL", 300, errors),
        transfer_max_count=_int(env, "TRANSFER_MAX_COUNT", 100, errors),
        history_max_count=_int(env, "HISTORY_MAX_COUNT", 1000, errors),
        history_concurrency=_int(env, "HISTORY_CONCURRENCY", 8, errors),
    )

    if errors:
        raise ConfigError("Invalid configuration", details="; ".join(errors), problems=errors)

    return Settings(
        rpc_endpoint=values["rpc_endpoint"],
        private_key=values["private_key"],
        funding_address=values["funding_address"].lower(),
        claim_amount=claim_amount,
        gas_price_floor_gwei=gas_floor,
        issuer_address=values["issuer_address"].lower(),
        token_address=values["token_address"].lower(),
        auction_contract_address=values["auction_contract_address"].lower(),
        native_symbol=env.get("NATIVE_SYMBOL", "POL"),
        issuer_token_symbol=env.get("ISSUER_TOKEN_SYMBOL", "JPYC"),
        allowed_origins=origins,
        http_timeout=http_timeout,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        **settings_kwargs,
    )
