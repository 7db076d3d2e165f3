# src/qfund/runtime/sigverify.py

from __future__ import annotations

from typing import Any, Dict, Optional

from qfund.crypto.sig import canonical_msg_message, verify_ed25519_signature
from qfund.runtime.accounts import active_pubkeys
from qfund.runtime.envelope import MsgEnvelope

Json = Dict[str, Any]


def verify_envelope_signature(
    account: Optional[Json],
    env: MsgEnvelope,
    *,
    chain_id: str,
    require_signatures: bool = True,
) -> bool:
    """Verify an envelope signature against the sender's registered keys.

    Policy:
      - require_signatures=False: accept (dev hosts only).
      - Sender without registered keys: reject.
      - Otherwise the signature must verify against one active key.

    Pure (no I/O).
    """
    if not require_signatures:
        return True

    if not env.sender.strip() or not env.sig.strip():
        return False

    keys = active_pubkeys(account)
    if not keys:
        return False

    msg = canonical_msg_message(
        chain_id=chain_id,
        sender=env.sender,
        nonce=env.nonce,
        msg=env.msg,
        funds=list(env.funds),
    )
    for pk in keys:
        if verify_ed25519_signature(message=msg, sig=env.sig, pubkey=pk):
            return True
    return False
