from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from qfund.contract.types import Coin

Json = Dict[str, Any]


@dataclass(frozen=True)
class MsgVerdict:
    ok: bool
    code: str
    reason: str
    details: Optional[Dict[str, Any]] = None

    @staticmethod
    def admit() -> "MsgVerdict":
        return MsgVerdict(True, "ok", "admitted", None)

    @staticmethod
    def reject(code: str, reason: str, details: Optional[Dict[str, Any]] = None) -> "MsgVerdict":
        return MsgVerdict(False, code, reason, details)


@dataclass(frozen=True)
class MsgEnvelope:
    """A signed request to the distributor.

    `msg` is the tagged JSON of an init or execute message; `funds` are the
    coins the sender attaches (escrowed by the host before the handler runs).
    """

    sender: str
    nonce: int
    msg: Json
    funds: Tuple[Json, ...] = ()
    sig: str = ""

    @staticmethod
    def from_json(j: Any) -> "MsgEnvelope":
        if isinstance(j, MsgEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        funds_raw = j.get("funds") or []
        if not isinstance(funds_raw, list):
            raise ValueError("funds must be a list")
        return MsgEnvelope(
            sender=str(j.get("sender", "")),
            nonce=int(j.get("nonce", 0)),
            msg=dict(j.get("msg", {}) or {}),
            funds=tuple(dict(c) for c in funds_raw),
            sig=str(j.get("sig", "") or ""),
        )

    def to_json(self) -> Json:
        return {
            "sender": self.sender,
            "nonce": self.nonce,
            "msg": self.msg,
            "funds": [dict(c) for c in self.funds],
            "sig": self.sig,
        }

    def coins(self) -> List[Coin]:
        return [Coin.from_json(c) for c in self.funds]


@dataclass(frozen=True)
class ExecResult:
    """Outcome of one executed envelope."""

    height: int
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    transfers: List[Json] = field(default_factory=list)
    data: Optional[Any] = None

    def attribute(self, key: str) -> Optional[str]:
        for k, v in self.attributes:
            if k == key:
                return v
        return None

    def to_json(self) -> Json:
        return {
            "ok": True,
            "height": self.height,
            "attributes": [{"key": k, "value": v} for k, v in self.attributes],
            "transfers": list(self.transfers),
        }
