# src/qfund/contract/helper.py
from __future__ import annotations

from typing import Optional, Sequence

from qfund.contract.errors import ContractError
from qfund.contract.types import Coin


def extract_budget_coin(sent_funds: Sequence[Coin], denom: str) -> Coin:
    """Return the single attached coin if it is a positive amount of `denom`.

    Used for the budget at init and for every contribution.
    """
    if len(sent_funds) != 1:
        raise ContractError.wrong_coin_sent()
    c = sent_funds[0]
    if c.denom != denom:
        raise ContractError.wrong_fund_coin(expected=denom, got=c.denom)
    if int(c.amount) <= 0:
        raise ContractError.wrong_coin_sent()
    return c


def check_whitelist(whitelist: Optional[Sequence[str]], sender: str) -> None:
    # No whitelist means anyone may call.
    if whitelist is None:
        return
    if sender not in whitelist:
        raise ContractError.unauthorized()


def require_no_funds(sent_funds: Sequence[Coin]) -> None:
    if len(sent_funds) != 0:
        raise ContractError.wrong_coin_sent()
