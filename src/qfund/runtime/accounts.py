# src/qfund/runtime/accounts.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from qfund.runtime.kv import KVStore

Json = Dict[str, Any]

ACCOUNT_PREFIX = "account/"


def account_key(addr: str) -> str:
    return f"{ACCOUNT_PREFIX}{addr}"


def load_account(store: KVStore, addr: str) -> Optional[Json]:
    raw = store.get(account_key(addr))
    return raw if isinstance(raw, dict) else None


def register_account(store: KVStore, addr: str, pubkey: str) -> Json:
    """Add `pubkey` (hex) to the account's active keys, creating the account if needed."""
    acct = load_account(store, addr) or {"pubkeys": [], "nonce": 0}
    keys: List[str] = [str(k) for k in acct.get("pubkeys") or []]
    pk = pubkey.strip().lower()
    if pk and pk not in keys:
        keys.append(pk)
    acct["pubkeys"] = keys
    acct.setdefault("nonce", 0)
    store.set(account_key(addr), acct)
    return acct


def last_nonce(store: KVStore, addr: str) -> int:
    acct = load_account(store, addr)
    return int(acct.get("nonce", 0)) if acct else 0


def bump_nonce(store: KVStore, addr: str, nonce: int) -> None:
    acct = load_account(store, addr) or {"pubkeys": [], "nonce": 0}
    acct["nonce"] = int(nonce)
    store.set(account_key(addr), acct)


def active_pubkeys(acct: Optional[Json]) -> List[str]:
    if not isinstance(acct, dict):
        return []
    out: List[str] = []
    for pk in acct.get("pubkeys") or []:
        if isinstance(pk, str) and pk.strip() and pk.strip() not in out:
            out.append(pk.strip())
    return out
