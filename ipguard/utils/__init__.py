from .addresses import (
    UNAVAILABLE,
    AddressResolution,
    address_from_headers,
    is_private_address,
    normalize_address,
    resolve_address,
)

__all__ = [
    "UNAVAILABLE",
    "AddressResolution",
    "address_from_headers",
    "is_private_address",
    "normalize_address",
    "resolve_address",
]
