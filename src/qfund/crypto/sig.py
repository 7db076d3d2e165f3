# src/qfund/crypto/sig.py
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("not hex or base64") from e


def canonical_msg_message(
    *,
    chain_id: str,
    sender: str,
    nonce: int,
    msg: Json,
    funds: Optional[List[Json]] = None,
) -> bytes:
    """Bytes covered by an envelope signature.

    chain_id is bound in so a signature cannot be replayed on another chain.
    Coin amounts are normalized to decimal strings.
    """
    coins = []
    for c in funds or []:
        coins.append({"denom": str(c.get("denom", "")), "amount": str(c.get("amount", "0"))})
    obj: Json = {
        "chain_id": str(chain_id),
        "sender": str(sender),
        "nonce": int(nonce),
        "msg": msg if isinstance(msg, dict) else {},
        "funds": coins,
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing a 32-byte seed
    (a 64-byte expanded key is accepted; its first 32 bytes are the seed).
    encoding: "hex" (default) or "b64".
    """
    pk_b = _decode_bytes(privkey)
    if len(pk_b) == 64:
        pk_b = pk_b[:32]
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")

    key = Ed25519PrivateKey.from_private_bytes(pk_b)
    sig_b = key.sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def pubkey_hex_from_privkey(privkey: str) -> str:
    pk_b = _decode_bytes(privkey)[:32]
    key = Ed25519PrivateKey.from_private_bytes(pk_b)
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


__all__ = [
    "canonical_msg_message",
    "verify_ed25519_signature",
    "sign_ed25519",
    "pubkey_hex_from_privkey",
]
