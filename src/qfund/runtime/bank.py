# src/qfund/runtime/bank.py
from __future__ import annotations

"""Host bank: one balance per (address, denom) under `bank/<addr>/<denom>`.

Balances are decimal strings. The contract never touches these keys; the
host moves attached funds into the contract identity before a handler runs
and pays out the handler's BankSend effects afterwards.
"""

from typing import Dict, Iterable, List

from qfund.contract.types import U128_MAX, BankSend, Coin
from qfund.runtime.errors import INSUFFICIENT_FUNDS, INVALID_FUNDS, HostError
from qfund.runtime.kv import KVStore

BANK_PREFIX = "bank/"


def balance_key(addr: str, denom: str) -> str:
    return f"{BANK_PREFIX}{addr}/{denom}"


def balance_of(store: KVStore, addr: str, denom: str) -> int:
    raw = store.get(balance_key(addr, denom))
    return int(raw) if raw is not None else 0


def _set_balance(store: KVStore, addr: str, denom: str, amount: int) -> None:
    if amount < 0 or amount > U128_MAX:
        raise HostError(INVALID_FUNDS, "balance out of range", {"address": addr, "denom": denom})
    if amount == 0:
        store.delete(balance_key(addr, denom))
    else:
        store.set(balance_key(addr, denom), str(amount))


def balances(store: KVStore, addr: str) -> Dict[str, int]:
    prefix = f"{BANK_PREFIX}{addr}/"
    return {k[len(prefix):]: int(v) for k, v in store.range(prefix)}


def total_supply(store: KVStore, denom: str) -> int:
    # Addresses never contain "/", so the denom is everything after `bank/<addr>/`.
    total = 0
    for k, v in store.range(BANK_PREFIX):
        _, _, key_denom = k[len(BANK_PREFIX):].partition("/")
        if key_denom == denom:
            total += int(v)
    return total


def mint(store: KVStore, addr: str, coins: Iterable[Coin]) -> None:
    """Credit new funds (genesis and tests)."""
    for c in coins:
        _set_balance(store, addr, c.denom, balance_of(store, addr, c.denom) + int(c.amount))


def transfer(store: KVStore, from_addr: str, to_addr: str, coins: Iterable[Coin]) -> None:
    for c in coins:
        amount = int(c.amount)
        have = balance_of(store, from_addr, c.denom)
        if have < amount:
            raise HostError(
                INSUFFICIENT_FUNDS,
                "insufficient funds",
                {"address": from_addr, "denom": c.denom, "have": str(have), "need": str(amount)},
            )
        if amount == 0 or from_addr == to_addr:
            continue
        _set_balance(store, from_addr, c.denom, have - amount)
        _set_balance(store, to_addr, c.denom, balance_of(store, to_addr, c.denom) + amount)


def execute_sends(store: KVStore, from_addr: str, msgs: Iterable[BankSend]) -> List[BankSend]:
    """Run BankSend effects in order; returns the executed list."""
    done: List[BankSend] = []
    for m in msgs:
        transfer(store, from_addr, m.to_address, m.amount)
        done.append(m)
    return done


__all__ = [
    "balance_key",
    "balance_of",
    "balances",
    "total_supply",
    "mint",
    "transfer",
    "execute_sends",
]
