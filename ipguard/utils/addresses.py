"""Normalization and resolution of caller network addresses."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Mapping

FORWARDED_FOR_HEADER = "X-Forwarded-For"
REAL_IP_HEADER = "X-Real-IP"


@dataclass(frozen=True)
class AddressResolution:
    address: str | None
    source: str

    @property
    def is_resolved(self) -> bool:
        return self.address is not None


UNAVAILABLE = AddressResolution(address=None, source="unavailable")


def normalize_address(raw: str) -> str:
    """Return the canonical string form of an IPv4 or IPv6 address.

    IPv4-mapped IPv6 addresses collapse to dotted IPv4, other IPv6 addresses
    use the compressed form. Brackets and a trailing port are stripped.
    Raises ValueError when the value is not an address.
    """
    if not isinstance(raw, str):
        raise ValueError("Address must be a string")
    value = raw.strip()
    if not value:
        raise ValueError("Address is empty")
    if value.startswith("["):
        closing = value.find("]")
        if closing == -1:
            raise ValueError(f"Malformed address: {raw}")
        value = value[1:closing]
    elif value.count(":") == 1:
        host, _, port = value.partition(":")
        if port.isdigit():
            value = host
    if "%" in value:
        value = value.split("%", 1)[0]
    parsed = ipaddress.ip_address(value)
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return str(parsed.ipv4_mapped)
    return parsed.compressed


def is_private_address(address: str) -> bool:
    try:
        parsed = ipaddress.ip_address(normalize_address(address))
    except ValueError:
        return True
    return (
        parsed.is_private
        or parsed.is_loopback
        or parsed.is_link_local
        or parsed.is_unspecified
        or parsed.is_reserved
        or parsed.is_multicast
    )


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _first_public(candidates: list[str]) -> str | None:
    for candidate in candidates:
        try:
            normalized = normalize_address(candidate)
        except ValueError:
            continue
        if not is_private_address(normalized):
            return normalized
    return None


def address_from_headers(headers: Mapping[str, str], remote_addr: str | None = None) -> str | None:
    forwarded = _header(headers, FORWARDED_FOR_HEADER)
    if forwarded:
        found = _first_public([part for part in forwarded.split(",") if part.strip()])
        if found:
            return found
    real_ip = _header(headers, REAL_IP_HEADER)
    if real_ip:
        found = _first_public([real_ip])
        if found:
            return found
    if remote_addr:
        return _first_public([remote_addr])
    return None


def resolve_address(
    hint: str | None,
    headers: Mapping[str, str],
    remote_addr: str | None = None,
) -> AddressResolution:
    if hint is not None and str(hint).strip():
        try:
            return AddressResolution(address=normalize_address(str(hint)), source="client")
        except ValueError:
            return UNAVAILABLE
    derived = address_from_headers(headers, remote_addr)
    if derived is None:
        return UNAVAILABLE
    return AddressResolution(address=derived, source="headers")
