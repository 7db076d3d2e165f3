# src/qfund/contract/matching.py
from __future__ import annotations

"""Capital-constrained liberal radicalism (quadratic funding with a fixed budget).

For each proposal p with contributions c_1..c_n:

    match_raw(p) = (sum(isqrt(c_i)))**2
    match(p)     = match_raw(p) * budget // sum(match_raw)
    leftover     = budget - sum(match(p))

Everything is integer arithmetic. Python ints are unbounded, so the
product match_raw * budget never overflows; both match(p) and leftover
are <= budget and stay within u128 whenever the budget does.

Results differ from real-valued references (e.g. wtfisqf.com) by the
truncation of isqrt and of the final division.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from qfund.contract.errors import ContractError
from qfund.contract.types import U128_MAX


def isqrt(n: int) -> int:
    """Largest r with r*r <= n (Newton's method)."""
    if n < 0:
        raise ValueError("isqrt of negative number")
    if n < 2:
        return n
    # Initial guess is a power of two >= sqrt(n); iterates decrease monotonically.
    x = 1 << ((n.bit_length() + 1) // 2)
    while True:
        y = (x + n // x) // 2
        if y >= x:
            return x
        x = y


@dataclass(frozen=True)
class RawGrant:
    addr: str
    funds: Tuple[int, ...]
    collected_vote_funds: int


@dataclass(frozen=True)
class CalculatedGrant:
    addr: str
    grant: int
    collected_vote_funds: int


def matched_sum(funds: Sequence[int]) -> int:
    """match_raw for one proposal; order of contributions is irrelevant."""
    s = 0
    for v in funds:
        if v < 0 or v > U128_MAX:
            raise ContractError.amount_overflow("vote")
        s += isqrt(int(v))
    return s * s


def calculate_matched_sum(grants: Sequence[RawGrant]) -> List[CalculatedGrant]:
    return [
        CalculatedGrant(addr=g.addr, grant=matched_sum(g.funds), collected_vote_funds=g.collected_vote_funds)
        for g in grants
    ]


def constrain_by_budget(grants: Sequence[CalculatedGrant], budget: int) -> List[CalculatedGrant]:
    raw_total = sum(g.grant for g in grants)
    if raw_total == 0:
        # Nothing to match against; the whole budget becomes leftover.
        return [CalculatedGrant(addr=g.addr, grant=0, collected_vote_funds=g.collected_vote_funds) for g in grants]
    return [
        CalculatedGrant(
            addr=g.addr,
            grant=(g.grant * budget) // raw_total,
            collected_vote_funds=g.collected_vote_funds,
        )
        for g in grants
    ]


def calculate_clr(grants: Sequence[RawGrant], budget: Optional[int]) -> Tuple[List[CalculatedGrant], int]:
    """Return (per-proposal grants in input order, leftover dust)."""
    if budget is None:
        raise ContractError.clr_constrain_required()
    if budget < 0 or budget > U128_MAX:
        raise ContractError.amount_overflow("budget")

    matched = calculate_matched_sum(grants)
    constrained = constrain_by_budget(matched, int(budget))

    constrained_sum = sum(c.grant for c in constrained)
    leftover = int(budget) - constrained_sum
    if leftover < 0:  # pragma: no cover
        raise AssertionError("clr distributed more than the budget")
    return constrained, leftover


__all__ = [
    "isqrt",
    "RawGrant",
    "CalculatedGrant",
    "matched_sum",
    "calculate_matched_sum",
    "constrain_by_budget",
    "calculate_clr",
]
