# src/qfund/runtime/address.py
from __future__ import annotations

import re
from typing import Any

from qfund.contract.errors import ContractError

# Lowercase only: an address has exactly one accepted spelling, so
# whitelist membership and vote keys compare byte-for-byte.
_ADDR_RE = re.compile(r"[a-z0-9][a-z0-9_.\-]*")

MIN_ADDRESS_LEN = 3
MAX_ADDRESS_LEN = 90


def validate_address(addr: Any) -> str:
    """Host address parser. Returns the address or raises ContractError(InvalidAddress)."""
    if not isinstance(addr, str):
        raise ContractError.invalid_address(str(addr), "not a string")
    if len(addr) < MIN_ADDRESS_LEN:
        raise ContractError.invalid_address(addr, "too short")
    if len(addr) > MAX_ADDRESS_LEN:
        raise ContractError.invalid_address(addr, "too long")
    if addr != addr.lower():
        raise ContractError.invalid_address(addr, "not normalized")
    if not _ADDR_RE.fullmatch(addr):
        raise ContractError.invalid_address(addr, "invalid characters")
    return addr


def is_valid_address(addr: Any) -> bool:
    try:
        validate_address(addr)
        return True
    except ContractError:
        return False


class HostApi:
    """Host capabilities the contract may call back into."""

    def addr_validate(self, addr: str) -> str:
        return validate_address(addr)


__all__ = ["validate_address", "is_valid_address", "HostApi"]
