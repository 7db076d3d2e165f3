# src/qfund/runtime/host.py
from __future__ import annotations

"""Single-contract host for the distributor.

The host owns everything the contract assumes from its environment: the
block clock, sender authentication (Ed25519 envelopes with strictly
increasing nonces), the bank holding attached funds, and execution of the
BankSend effects a handler returns.

Each submitted envelope is one atomic unit. Fund escrow, contract writes,
payouts, the nonce bump, the block row and the journal entry are buffered
in an OverlayKVStore and committed together; any ContractError or
HostError drops the whole unit.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from qfund.contract import contract as qf
from qfund.contract.errors import ContractError
from qfund.contract.msg import EXECUTE_VARIANTS, QUERY_VARIANTS, InitMsg
from qfund.contract.state import may_load_config
from qfund.contract.types import BlockInfo, Coin, Env, MessageInfo, Response
from qfund.runtime import bank
from qfund.runtime.accounts import last_nonce, bump_nonce, load_account, register_account
from qfund.runtime.address import HostApi, validate_address
from qfund.runtime.admission import DEFAULT_MAX_MSG_BYTES, admit_envelope
from qfund.runtime.envelope import ExecResult, MsgEnvelope
from qfund.runtime.errors import (
    ALREADY_INSTANTIATED,
    BAD_NONCE,
    BAD_SIGNATURE,
    INVALID_ENVELOPE,
    INVALID_MSG,
    NOT_INSTANTIATED,
    UNKNOWN_MESSAGE,
    HostError,
)
from qfund.runtime.kv import OverlayKVStore
from qfund.runtime.sigverify import verify_envelope_signature
from qfund.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("qfund.host")

INSTANTIATE = "instantiate"
DEFAULT_CONTRACT_ADDRESS = "qfund-contract"

_CLOCK_MODES = {"manual", "auto"}


class ContractHost:
    def __init__(
        self,
        *,
        store: Any,
        chain_id: str = "qfund-dev",
        contract_address: str = DEFAULT_CONTRACT_ADDRESS,
        clock_mode: str = "manual",
        require_signatures: bool = True,
        elide_zero_transfers: bool = False,
        max_msg_bytes: int = DEFAULT_MAX_MSG_BYTES,
        now_ns: Callable[[], int] = time.time_ns,
    ) -> None:
        if clock_mode not in _CLOCK_MODES:
            raise ValueError(f"clock_mode must be one of {sorted(_CLOCK_MODES)}; got: {clock_mode!r}")
        self._store = store
        self.chain_id = str(chain_id)
        self.contract_address = validate_address(contract_address)
        self.clock_mode = clock_mode
        self.require_signatures = bool(require_signatures)
        self.elide_zero_transfers = bool(elide_zero_transfers)
        self.max_msg_bytes = int(max_msg_bytes)
        self._now_ns = now_ns
        self._api = HostApi()
        self._lock = threading.RLock()

        persisted = store.read_block()
        if persisted is not None:
            self._block = BlockInfo.from_json(persisted)
        else:
            t0 = 0 if clock_mode == "manual" else int(now_ns())
            self._block = BlockInfo(height=0, time_ns=t0, chain_id=self.chain_id)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    @property
    def block(self) -> BlockInfo:
        return self._block

    def set_block(self, *, height: int, time_ns: int) -> BlockInfo:
        """Move the clock to an absolute position. The clock never goes backwards."""
        with self._lock:
            if int(height) < self._block.height or int(time_ns) < self._block.time_ns:
                raise ValueError(
                    f"block must not go backwards: have ({self._block.height}, {self._block.time_ns}), "
                    f"got ({height}, {time_ns})"
                )
            self._block = BlockInfo(height=int(height), time_ns=int(time_ns), chain_id=self.chain_id)
            self._store.apply_batch({}, block=self._block.to_json())
            return self._block

    def advance_block(self, *, height: int = 1, time_ns: int = 0) -> BlockInfo:
        """Move the clock forward by the given deltas."""
        with self._lock:
            return self.set_block(height=self._block.height + int(height), time_ns=self._block.time_ns + int(time_ns))

    def _next_block(self) -> BlockInfo:
        if self.clock_mode == "manual":
            return self._block
        t = max(int(self._now_ns()), self._block.time_ns)
        return BlockInfo(height=self._block.height + 1, time_ns=t, chain_id=self.chain_id)

    # ------------------------------------------------------------------
    # Genesis / operator helpers
    # ------------------------------------------------------------------

    def register_account(self, addr: str, pubkey: str) -> Json:
        with self._lock:
            validate_address(addr)
            overlay = OverlayKVStore(self._store)
            acct = register_account(overlay, addr, pubkey)
            overlay.commit()
            return acct

    def mint(self, addr: str, coins: Iterable[Coin]) -> None:
        with self._lock:
            validate_address(addr)
            overlay = OverlayKVStore(self._store)
            bank.mint(overlay, addr, coins)
            overlay.commit()

    def balance(self, addr: str, denom: str) -> int:
        return bank.balance_of(self._store, addr, denom)

    def next_nonce(self, sender: str) -> int:
        return last_nonce(self._store, sender) + 1

    def events(self, *, limit: int = 100) -> List[Json]:
        return self._store.events(limit=limit)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def submit(self, envelope: Any) -> ExecResult:
        """Authenticate and execute one envelope atomically."""
        try:
            env = MsgEnvelope.from_json(envelope)
        except (TypeError, ValueError) as e:
            raise HostError(INVALID_ENVELOPE, f"malformed envelope: {e}") from e

        verdict = admit_envelope(env, max_msg_bytes=self.max_msg_bytes)
        if not verdict.ok:
            self._log_rejected(env, verdict.code, verdict.reason)
            raise HostError(verdict.code, verdict.reason, dict(verdict.details or {}))

        kind = next(iter(env.msg.keys()))
        with self._lock:
            overlay = OverlayKVStore(self._store)
            try:
                blk, resp = self._apply(overlay, env, kind)
            except (ContractError, HostError) as e:
                overlay.discard()
                self._log_rejected(env, e.code, e.reason)
                raise

            transfers = [m.to_json() for m in resp.messages]
            attrs = [(a.key, a.value) for a in resp.attributes]
            event: Json = {
                "height": blk.height,
                "time_ns": blk.time_ns,
                "sender": env.sender,
                "nonce": env.nonce,
                "kind": kind,
                "attributes": [{"key": k, "value": v} for k, v in attrs],
                "transfers": transfers,
            }
            overlay.commit(block=blk.to_json(), event=event)
            self._block = blk

        log_event(
            log,
            "msg_executed",
            sender=env.sender,
            nonce=env.nonce,
            kind=kind,
            height=blk.height,
            transfers=len(transfers),
        )
        return ExecResult(height=blk.height, attributes=attrs, transfers=transfers, data=resp.data)

    def _apply(self, overlay: OverlayKVStore, env: MsgEnvelope, kind: str):
        if kind != INSTANTIATE and kind not in EXECUTE_VARIANTS:
            raise HostError(UNKNOWN_MESSAGE, f"unknown message: {kind!r}", {"kind": kind})

        have = last_nonce(overlay, env.sender)
        if env.nonce <= have:
            raise HostError(BAD_NONCE, "nonce must increase", {"sender": env.sender, "last": have, "got": env.nonce})

        account = load_account(overlay, env.sender)
        if not verify_envelope_signature(
            account, env, chain_id=self.chain_id, require_signatures=self.require_signatures
        ):
            raise HostError(BAD_SIGNATURE, "signature verification failed", {"sender": env.sender})

        blk = self._next_block()
        contract_env = Env(block=blk, contract_address=self.contract_address)
        coins = env.coins()

        # Escrow first: the handler sees funds that already sit in the contract.
        bank.transfer(overlay, env.sender, self.contract_address, coins)

        info = MessageInfo(sender=env.sender, funds=tuple(coins))
        deps = qf.Deps(store=overlay, api=self._api, elide_zero_transfers=self.elide_zero_transfers)
        body = env.msg[kind] if env.msg[kind] is not None else {}

        instantiated = may_load_config(overlay) is not None
        resp: Response
        if kind == INSTANTIATE:
            if instantiated:
                raise HostError(ALREADY_INSTANTIATED, "contract already instantiated", {})
            try:
                init = InitMsg.model_validate(body)
            except ValidationError as e:
                raise HostError(INVALID_MSG, "invalid instantiate msg", {"errors": _errors(e)}) from e
            resp = qf.instantiate(deps, contract_env, info, init)
        else:
            if not instantiated:
                raise HostError(NOT_INSTANTIATED, "contract not instantiated", {})
            try:
                msg = EXECUTE_VARIANTS[kind].model_validate(body)
            except ValidationError as e:
                raise HostError(INVALID_MSG, f"invalid {kind} msg", {"errors": _errors(e)}) from e
            resp = qf.execute(deps, contract_env, info, msg)

        bank.execute_sends(overlay, self.contract_address, resp.messages)
        bump_nonce(overlay, env.sender, env.nonce)
        return blk, resp

    def _log_rejected(self, env: MsgEnvelope, code: str, reason: str) -> None:
        log_event(log, "msg_rejected", sender=env.sender, nonce=env.nonce, code=code, reason=reason)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, msg: Any) -> Json:
        if not isinstance(msg, dict) or len(msg) != 1:
            raise HostError(INVALID_MSG, "query must be an object with exactly one variant key", {})
        tag = next(iter(msg.keys()))
        model = QUERY_VARIANTS.get(str(tag))
        if model is None:
            raise HostError(UNKNOWN_MESSAGE, f"unknown query: {tag!r}", {"kind": tag})
        try:
            q = model.model_validate(msg[tag] if msg[tag] is not None else {})
        except ValidationError as e:
            raise HostError(INVALID_MSG, f"invalid {tag} query", {"errors": _errors(e)}) from e
        if may_load_config(self._store) is None:
            raise HostError(NOT_INSTANTIATED, "contract not instantiated", {})
        env = Env(block=self._block, contract_address=self.contract_address)
        return qf.query(qf.Deps(store=self._store, api=self._api), env, q)

    def status(self) -> Json:
        cfg = may_load_config(self._store)
        out: Json = {
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "clock_mode": self.clock_mode,
            "block": self._block.to_json(),
            "instantiated": cfg is not None,
        }
        if cfg is not None:
            out["config"] = {
                "admin": cfg.admin,
                "leftover_addr": cfg.leftover_addr,
                "budget": cfg.budget.to_json(),
                "proposal_period": cfg.proposal_period.to_json(),
                "voting_period": cfg.voting_period.to_json(),
                "distributed": cfg.distributed,
            }
            out["contract_balance"] = str(bank.balance_of(self._store, self.contract_address, cfg.budget.denom))
        return out


def _errors(e: ValidationError) -> List[Json]:
    return [{"loc": [str(x) for x in err.get("loc", ())], "msg": str(err.get("msg", ""))} for err in e.errors()]


__all__ = ["ContractHost", "INSTANTIATE", "DEFAULT_CONTRACT_ADDRESS"]
