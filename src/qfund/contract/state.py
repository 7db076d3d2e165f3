# src/qfund/contract/state.py
from __future__ import annotations

"""Persisted state of a funding round.

Namespaces (keys are ASCII; ids zero padded so key order == id order):

    config                      singleton Config
    proposal_seq                singleton u64 counter
    proposal/<id:020d>          one Proposal per id
    vote/<id:020d>/<voter>      one Vote per (proposal, voter)

Amounts are stored as decimal strings.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from qfund.contract.clock import Expiration
from qfund.contract.types import Coin
from qfund.runtime.kv import KVStore

Json = Dict[str, Any]

CONFIG_KEY = "config"
PROPOSAL_SEQ_KEY = "proposal_seq"
PROPOSAL_PREFIX = "proposal/"
VOTE_PREFIX = "vote/"

_ID_WIDTH = 20  # len(str(2**64 - 1))


def _id_part(n: int) -> str:
    return f"{int(n):0{_ID_WIDTH}d}"


def proposal_key(proposal_id: int) -> str:
    return f"{PROPOSAL_PREFIX}{_id_part(proposal_id)}"


def vote_prefix(proposal_id: int) -> str:
    return f"{VOTE_PREFIX}{_id_part(proposal_id)}/"


def vote_key(proposal_id: int, voter: str) -> str:
    return f"{vote_prefix(proposal_id)}{voter}"


@dataclass(frozen=True)
class Config:
    admin: str
    leftover_addr: str
    create_proposal_whitelist: Optional[Tuple[str, ...]]
    vote_proposal_whitelist: Optional[Tuple[str, ...]]
    voting_period: Expiration
    proposal_period: Expiration
    budget: Coin
    algorithm: Json
    distributed: bool = False

    def to_json(self) -> Json:
        return {
            "admin": self.admin,
            "leftover_addr": self.leftover_addr,
            "create_proposal_whitelist": (
                None if self.create_proposal_whitelist is None else list(self.create_proposal_whitelist)
            ),
            "vote_proposal_whitelist": (
                None if self.vote_proposal_whitelist is None else list(self.vote_proposal_whitelist)
            ),
            "voting_period": self.voting_period.to_json(),
            "proposal_period": self.proposal_period.to_json(),
            "budget": self.budget.to_json(),
            "algorithm": dict(self.algorithm),
            "distributed": bool(self.distributed),
        }

    @staticmethod
    def from_json(j: Json) -> "Config":
        cwl = j.get("create_proposal_whitelist")
        vwl = j.get("vote_proposal_whitelist")
        return Config(
            admin=str(j["admin"]),
            leftover_addr=str(j["leftover_addr"]),
            create_proposal_whitelist=None if cwl is None else tuple(str(x) for x in cwl),
            vote_proposal_whitelist=None if vwl is None else tuple(str(x) for x in vwl),
            voting_period=Expiration.from_json(j.get("voting_period")),
            proposal_period=Expiration.from_json(j.get("proposal_period")),
            budget=Coin.from_json(j["budget"]),
            algorithm=dict(j.get("algorithm") or {}),
            distributed=bool(j.get("distributed", False)),
        )


@dataclass(frozen=True)
class Proposal:
    id: int
    title: str = ""
    description: str = ""
    metadata: Optional[str] = None
    fund_address: str = ""
    collected_funds: int = 0

    def to_json(self) -> Json:
        return {
            "id": int(self.id),
            "title": self.title,
            "description": self.description,
            "metadata": self.metadata,
            "fund_address": self.fund_address,
            "collected_funds": str(int(self.collected_funds)),
        }

    @staticmethod
    def from_json(j: Json) -> "Proposal":
        return Proposal(
            id=int(j["id"]),
            title=str(j.get("title") or ""),
            description=str(j.get("description") or ""),
            metadata=j.get("metadata"),
            fund_address=str(j.get("fund_address") or ""),
            collected_funds=int(j.get("collected_funds") or 0),
        )


@dataclass(frozen=True)
class Vote:
    proposal_id: int
    voter: str
    fund: Coin

    def to_json(self) -> Json:
        return {"proposal_id": int(self.proposal_id), "voter": self.voter, "fund": self.fund.to_json()}

    @staticmethod
    def from_json(j: Json) -> "Vote":
        return Vote(proposal_id=int(j["proposal_id"]), voter=str(j["voter"]), fund=Coin.from_json(j["fund"]))


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def load_config(store: KVStore) -> Config:
    raw = store.get(CONFIG_KEY)
    if not isinstance(raw, dict):
        raise LookupError("config not found")
    return Config.from_json(raw)


def may_load_config(store: KVStore) -> Optional[Config]:
    raw = store.get(CONFIG_KEY)
    return Config.from_json(raw) if isinstance(raw, dict) else None


def save_config(store: KVStore, cfg: Config) -> None:
    store.set(CONFIG_KEY, cfg.to_json())


def load_proposal_seq(store: KVStore) -> int:
    raw = store.get(PROPOSAL_SEQ_KEY)
    return int(raw) if raw is not None else 0


def save_proposal_seq(store: KVStore, seq: int) -> None:
    store.set(PROPOSAL_SEQ_KEY, int(seq))


def may_load_proposal(store: KVStore, proposal_id: int) -> Optional[Proposal]:
    raw = store.get(proposal_key(proposal_id))
    return Proposal.from_json(raw) if isinstance(raw, dict) else None


def save_proposal(store: KVStore, p: Proposal) -> None:
    store.set(proposal_key(p.id), p.to_json())


def iter_proposals(store: KVStore) -> Iterator[Proposal]:
    """All proposals, ascending by id."""
    for _, raw in store.range(PROPOSAL_PREFIX):
        if isinstance(raw, dict):
            yield Proposal.from_json(raw)


def may_load_vote(store: KVStore, proposal_id: int, voter: str) -> Optional[Vote]:
    raw = store.get(vote_key(proposal_id, voter))
    return Vote.from_json(raw) if isinstance(raw, dict) else None


def save_vote(store: KVStore, v: Vote) -> None:
    store.set(vote_key(v.proposal_id, v.voter), v.to_json())


def iter_votes(store: KVStore, proposal_id: int) -> Iterator[Vote]:
    for _, raw in store.range(vote_prefix(proposal_id)):
        if isinstance(raw, dict):
            yield Vote.from_json(raw)


def vote_amounts(store: KVStore, proposal_id: int) -> List[int]:
    return [int(v.fund.amount) for v in iter_votes(store, proposal_id)]


__all__ = [
    "Config",
    "Proposal",
    "Vote",
    "load_config",
    "may_load_config",
    "save_config",
    "load_proposal_seq",
    "save_proposal_seq",
    "may_load_proposal",
    "save_proposal",
    "iter_proposals",
    "may_load_vote",
    "save_vote",
    "iter_votes",
    "vote_amounts",
    "proposal_key",
    "vote_key",
    "vote_prefix",
]
