# src/qfund/contract/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

Json = Dict[str, Any]

U64_MAX = (1 << 64) - 1
U128_MAX = (1 << 128) - 1


def _as_amount(v: Any) -> int:
    # Amounts travel as decimal strings on the wire (u128 does not fit in a JSON number).
    if isinstance(v, bool):
        raise ValueError("amount must be an integer")
    if isinstance(v, int):
        n = v
    elif isinstance(v, str) and v.strip().isascii() and v.strip().isdigit():
        n = int(v.strip())
    else:
        raise ValueError(f"amount must be a non-negative integer, got {v!r}")
    if n < 0 or n > U128_MAX:
        raise ValueError(f"amount out of u128 range: {n}")
    return n


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: int

    @staticmethod
    def from_json(j: Any) -> "Coin":
        if isinstance(j, Coin):
            return j
        if not isinstance(j, dict):
            raise ValueError("coin must be an object")
        return Coin(denom=str(j.get("denom", "")), amount=_as_amount(j.get("amount", 0)))

    def to_json(self) -> Json:
        return {"denom": self.denom, "amount": str(int(self.amount))}


def coin(amount: int, denom: str) -> Coin:
    return Coin(denom=denom, amount=int(amount))


@dataclass(frozen=True)
class BlockInfo:
    height: int
    time_ns: int
    chain_id: str = "qfund-dev"

    def to_json(self) -> Json:
        return {"height": int(self.height), "time_ns": int(self.time_ns), "chain_id": self.chain_id}

    @staticmethod
    def from_json(j: Json) -> "BlockInfo":
        return BlockInfo(
            height=int(j.get("height", 0)),
            time_ns=int(j.get("time_ns", 0)),
            chain_id=str(j.get("chain_id") or "qfund-dev"),
        )


@dataclass(frozen=True)
class Env:
    block: BlockInfo
    contract_address: str


@dataclass(frozen=True)
class MessageInfo:
    sender: str
    funds: Tuple[Coin, ...] = ()


@dataclass(frozen=True)
class BankSend:
    """Outbound asset transfer requested by the contract; executed by the host."""

    to_address: str
    amount: Tuple[Coin, ...]

    def total(self, denom: str) -> int:
        return sum(int(c.amount) for c in self.amount if c.denom == denom)

    def to_json(self) -> Json:
        return {"to_address": self.to_address, "amount": [c.to_json() for c in self.amount]}


@dataclass(frozen=True)
class Attribute:
    key: str
    value: str


@dataclass
class Response:
    messages: List[BankSend] = field(default_factory=list)
    attributes: List[Attribute] = field(default_factory=list)
    data: Optional[Any] = None

    def add_attribute(self, key: str, value: Any) -> "Response":
        self.attributes.append(Attribute(str(key), str(value)))
        return self

    def add_attributes(self, pairs: List[Tuple[str, Any]]) -> "Response":
        for k, v in pairs:
            self.add_attribute(k, v)
        return self

    def add_message(self, msg: BankSend) -> "Response":
        self.messages.append(msg)
        return self

    def add_messages(self, msgs: List[BankSend]) -> "Response":
        self.messages.extend(msgs)
        return self

    def attribute(self, key: str) -> Optional[str]:
        for a in self.attributes:
            if a.key == key:
                return a.value
        return None

    def to_json(self) -> Json:
        return {
            "attributes": [{"key": a.key, "value": a.value} for a in self.attributes],
            "messages": [m.to_json() for m in self.messages],
            "data": self.data,
        }
