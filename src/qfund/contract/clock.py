# src/qfund/contract/clock.py
from __future__ import annotations

"""Deadlines and the phase gate.

A deadline is data: expiration is decided by comparing the block the host
is currently executing against the stored value, at every call.

Wire format:
    {"at_height": 15}
    {"at_time": "1571797419879305533"}   (nanoseconds since epoch)
    {"never": {}}
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from qfund.contract.types import U64_MAX, BlockInfo

Json = Dict[str, Any]

AT_HEIGHT = "at_height"
AT_TIME = "at_time"
NEVER = "never"


@dataclass(frozen=True)
class Expiration:
    kind: str
    value: int = 0

    @staticmethod
    def at_height(height: int) -> "Expiration":
        return Expiration(AT_HEIGHT, int(height))

    @staticmethod
    def at_time(time_ns: int) -> "Expiration":
        return Expiration(AT_TIME, int(time_ns))

    @staticmethod
    def never() -> "Expiration":
        return Expiration(NEVER, 0)

    @staticmethod
    def from_json(j: Any) -> "Expiration":
        if isinstance(j, Expiration):
            return j
        if j is None:
            return Expiration.never()
        if not isinstance(j, dict) or len(j) != 1:
            raise ValueError("expiration must be an object with exactly one of at_height, at_time, never")
        kind, raw = next(iter(j.items()))
        if kind == NEVER:
            return Expiration.never()
        if kind not in (AT_HEIGHT, AT_TIME):
            raise ValueError(f"unknown expiration kind: {kind!r}")
        if isinstance(raw, bool):
            raise ValueError(f"{kind} must be an integer")
        try:
            v = int(raw)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{kind} must be an integer") from e
        if v < 0 or v > U64_MAX:
            raise ValueError(f"{kind} out of u64 range")
        return Expiration(kind, v)

    def to_json(self) -> Json:
        if self.kind == AT_HEIGHT:
            return {AT_HEIGHT: int(self.value)}
        if self.kind == AT_TIME:
            # u64 nanoseconds are serialized as a string, like other wide integers.
            return {AT_TIME: str(int(self.value))}
        return {NEVER: {}}

    def is_expired(self, block: BlockInfo) -> bool:
        if self.kind == AT_HEIGHT:
            return int(block.height) >= int(self.value)
        if self.kind == AT_TIME:
            return int(block.time_ns) >= int(self.value)
        return False

    def __str__(self) -> str:
        if self.kind == AT_HEIGHT:
            return f"expiration height: {self.value}"
        if self.kind == AT_TIME:
            return f"expiration time: {self.value}"
        return "expiration: never"


def deadlines_ordered(proposal_deadline: Expiration, voting_deadline: Expiration) -> Optional[bool]:
    """Return whether proposal_deadline <= voting_deadline.

    None when the two use different clocks and cannot be compared.
    """
    if voting_deadline.kind == NEVER:
        return True
    if proposal_deadline.kind == NEVER:
        return False
    if proposal_deadline.kind != voting_deadline.kind:
        return None
    return int(proposal_deadline.value) <= int(voting_deadline.value)


def in_proposal_window(proposal_deadline: Expiration, block: BlockInfo) -> bool:
    return not proposal_deadline.is_expired(block)


def in_voting_window(voting_deadline: Expiration, block: BlockInfo) -> bool:
    return not voting_deadline.is_expired(block)


def after_voting(voting_deadline: Expiration, block: BlockInfo) -> bool:
    return voting_deadline.is_expired(block)


__all__ = [
    "Expiration",
    "deadlines_ordered",
    "in_proposal_window",
    "in_voting_window",
    "after_voting",
]
