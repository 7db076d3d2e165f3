# src/qfund/runtime/admission.py
from __future__ import annotations

import json
from typing import Any, Dict

from qfund.contract.types import U64_MAX, U128_MAX
from qfund.runtime.address import is_valid_address
from qfund.runtime.envelope import MsgEnvelope, MsgVerdict
from qfund.runtime.errors import INVALID_ENVELOPE, INVALID_FUNDS

Json = Dict[str, Any]

DEFAULT_MAX_MSG_BYTES = 64 * 1024


def _amount_ok(v: Any) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, int):
        n = v
    elif isinstance(v, str) and v.isascii() and v.isdigit():
        n = int(v)
    else:
        return False
    return 0 <= n <= U128_MAX


def admit_envelope(env: MsgEnvelope, *, max_msg_bytes: int = DEFAULT_MAX_MSG_BYTES) -> MsgVerdict:
    """Stateless shape checks. Signature and nonce need state and live in the host.

    Funds are only checked for shape here (denom string, u128 amount). How
    many coins, which denom and whether the amount is zero are the
    contract's to judge.
    """
    if not is_valid_address(env.sender):
        return MsgVerdict.reject(INVALID_ENVELOPE, "invalid sender address", {"sender": env.sender})

    if env.nonce <= 0 or env.nonce > U64_MAX:
        return MsgVerdict.reject(INVALID_ENVELOPE, "nonce must be a positive u64", {"nonce": env.nonce})

    if not isinstance(env.msg, dict) or len(env.msg) != 1:
        return MsgVerdict.reject(INVALID_ENVELOPE, "msg must be an object with exactly one variant key", {})

    try:
        size = len(json.dumps(env.msg, separators=(",", ":")).encode("utf-8"))
    except (TypeError, ValueError):
        return MsgVerdict.reject(INVALID_ENVELOPE, "msg is not JSON-serializable", {})
    if size > int(max_msg_bytes):
        return MsgVerdict.reject(INVALID_ENVELOPE, "msg too large", {"bytes": size, "max": int(max_msg_bytes)})

    for c in env.funds:
        denom = c.get("denom") if isinstance(c, dict) else None
        if not isinstance(denom, str) or not denom.strip():
            return MsgVerdict.reject(INVALID_FUNDS, "coin denom must be a non-empty string", {})
        if not _amount_ok(c.get("amount")):
            return MsgVerdict.reject(
                INVALID_FUNDS, "coin amount must be a u128 decimal", {"denom": denom, "amount": c.get("amount")}
            )

    return MsgVerdict.admit()



__all__ = ["admit_envelope", "DEFAULT_MAX_MSG_BYTES"]
