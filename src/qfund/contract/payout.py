# src/qfund/contract/payout.py
from __future__ import annotations

from typing import List, Sequence

from qfund.contract.matching import CalculatedGrant
from qfund.contract.types import BankSend, Coin


def plan_payouts(
    grants: Sequence[CalculatedGrant],
    leftover: int,
    leftover_addr: str,
    denom: str,
    *,
    elide_zero: bool = False,
) -> List[BankSend]:
    """Ordered transfers for a finished round.

    One transfer per proposal (grant + its own contributions) in id order,
    then the leftover dust. A zero-amount leftover is still emitted unless
    `elide_zero` is set for hosts that reject zero transfers.
    """
    msgs: List[BankSend] = []
    for g in grants:
        amount = int(g.grant) + int(g.collected_vote_funds)
        if elide_zero and amount == 0:
            continue
        msgs.append(BankSend(to_address=g.addr, amount=(Coin(denom, amount),)))

    if not (elide_zero and int(leftover) == 0):
        msgs.append(BankSend(to_address=leftover_addr, amount=(Coin(denom, int(leftover)),)))
    return msgs


def plan_total(msgs: Sequence[BankSend], denom: str) -> int:
    return sum(m.total(denom) for m in msgs)
