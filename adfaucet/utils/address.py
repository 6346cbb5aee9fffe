import re
from typing import Any, Optional

from adfaucet.utils.errors import AddressValidationError

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(value: Any) -> bool:
    return isinstance(value, str) and bool(ADDRESS_PATTERN.fullmatch(value))


def require_address(value: Optional[Any], label: str = "address") -> str:
    """
    Validate a user supplied address and return its canonical lower-case form.
    Raises AddressValidationError before any network call is made.
    """
    if not value or not isinstance(value, str):
        raise AddressValidationError(f"Valid {label} is required")
    if not ADDRESS_PATTERN.fullmatch(value):
        raise AddressValidationError(f"Invalid {label} format")
    return value.lower()
