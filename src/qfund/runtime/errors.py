from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

INVALID_ENVELOPE = "invalid_envelope"
BAD_SIGNATURE = "bad_signature"
BAD_NONCE = "bad_nonce"
INSUFFICIENT_FUNDS = "InsufficientFunds"
INVALID_FUNDS = "InvalidFunds"
NOT_INSTANTIATED = "not_instantiated"
ALREADY_INSTANTIATED = "already_instantiated"
UNKNOWN_MESSAGE = "unknown_message"
INVALID_MSG = "invalid_msg"


@dataclass
class HostError(Exception):
    """Failure raised by the host around a contract call (never by the contract itself)."""

    code: str
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:  # pragma: no cover
        if not self.details:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.reason, "details": dict(self.details)}
