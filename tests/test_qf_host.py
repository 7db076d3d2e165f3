from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from qfund.contract.errors import INVALID_ADDRESS, PROPOSAL_NOT_FOUND, WRONG_COIN_SENT, WRONG_FUND_COIN, ContractError
from qfund.contract.types import Coin
from qfund.runtime import bank
from qfund.runtime.errors import (
    ALREADY_INSTANTIATED,
    BAD_NONCE,
    BAD_SIGNATURE,
    INSUFFICIENT_FUNDS,
    INVALID_ENVELOPE,
    INVALID_FUNDS,
    INVALID_MSG,
    NOT_INSTANTIATED,
    UNKNOWN_MESSAGE,
    HostError,
)
from qfund.runtime.host import ContractHost
from qfund.runtime.host_boot import build_host
from qfund.runtime.kv import MemoryKVStore
from qfund.runtime.node_config import node_config_from_dict
from qfund.testing.sigtools import deterministic_ed25519_keypair, make_envelope, sign_envelope

Json = Dict[str, Any]

CHAIN = "qfund-test"
DENOM = "ucosm"
PEOPLE = ["admin", "creator", "voter0", "voter1", "voter2", "mallory"]


def _funds(amount: int, denom: str = DENOM) -> List[Json]:
    return [{"denom": denom, "amount": str(amount)}]


def _new_host(**kw: Any) -> ContractHost:
    host = ContractHost(store=MemoryKVStore(), chain_id=CHAIN, **kw)
    for name in PEOPLE:
        pk, _ = deterministic_ed25519_keypair(label=name)
        host.register_account(name, pk)
        host.mint(name, [Coin(DENOM, 10_000_000), Coin("uatom", 1_000)])
    return host


def _submit(host: ContractHost, sender: str, msg: Json, funds: Optional[List[Json]] = None):
    env = make_envelope(sender, host.next_nonce(sender), msg, funds=funds, chain_id=CHAIN)
    return host.submit(env)


def _instantiate(host: ContractHost, budget: int = 550000, proposal_height: int = 10, voting_height: int = 15):
    return _submit(
        host,
        "admin",
        {
            "instantiate": {
                "admin": "admin",
                "leftover_addr": "addr",
                "proposal_period": {"at_height": proposal_height},
                "voting_period": {"at_height": voting_height},
                "budget_denom": DENOM,
            }
        },
        _funds(budget),
    )


def _create(host: ContractHost, fund_address: str, sender: str = "creator"):
    return _submit(
        host,
        sender,
        {"create_proposal": {"title": fund_address, "description": "d", "fund_address": fund_address}},
    )


def _vote(host: ContractHost, voter: str, pid: int, amount: int, denom: str = DENOM):
    return _submit(host, voter, {"vote_proposal": {"proposal_id": pid}}, _funds(amount, denom))


def _host_error(fn, *args: Any, **kw: Any) -> HostError:
    with pytest.raises(HostError) as ei:
        fn(*args, **kw)
    return ei.value


def test_full_round_moves_funds_through_bank() -> None:
    host = _new_host()
    supply = bank.total_supply(host._store, DENOM)

    _instantiate(host)
    assert host.balance("qfund-contract", DENOM) == 550000

    for f in ("fund1", "fund2", "fund3", "fund4"):
        _create(host, f)
    contribs = [[1200, 44999, 33], [30000, 58999], [230000, 100], [100000, 5]]
    for pid, amounts in enumerate(contribs, start=1):
        for j, amount in enumerate(amounts):
            _vote(host, f"voter{j}", pid, amount)

    host.set_block(height=15, time_ns=0)
    res = _submit(host, "admin", {"trigger_distribution": {}})

    assert res.attribute("leftover") == "1"
    assert [(t["to_address"], t["amount"][0]["amount"]) for t in res.transfers] == [
        ("fund1", "106444"),
        ("fund2", "253601"),
        ("fund3", "458637"),
        ("fund4", "196653"),
        ("addr", "1"),
    ]
    assert host.balance("fund3", DENOM) == 458637
    assert host.balance("addr", DENOM) == 1
    assert host.balance("qfund-contract", DENOM) == 0
    assert bank.total_supply(host._store, DENOM) == supply


def test_signature_and_nonce_rules() -> None:
    host = _new_host()
    _instantiate(host)

    # Signed by the wrong key.
    env = {"sender": "creator", "nonce": host.next_nonce("creator"), "msg": {"trigger_distribution": {}}, "funds": []}
    forged = sign_envelope(env, chain_id=CHAIN, label="mallory")
    assert _host_error(host.submit, forged).code == BAD_SIGNATURE

    # Signed for another chain.
    other_chain = sign_envelope(env, chain_id="other-chain")
    assert _host_error(host.submit, other_chain).code == BAD_SIGNATURE

    # Unknown sender has no keys.
    stranger = make_envelope("stranger", 1, {"trigger_distribution": {}}, chain_id=CHAIN)
    assert _host_error(host.submit, stranger).code == BAD_SIGNATURE

    # Replays are refused once executed.
    ok = make_envelope(
        "creator",
        host.next_nonce("creator"),
        {"create_proposal": {"title": "t", "description": "d", "fund_address": "fund1"}},
        chain_id=CHAIN,
    )
    host.submit(ok)
    assert _host_error(host.submit, ok).code == BAD_NONCE


def test_failed_message_rolls_back_escrow_and_nonce() -> None:
    host = _new_host()
    _instantiate(host)
    _create(host, "fund1")

    nonce = host.next_nonce("voter0")
    atom = host.balance("voter0", "uatom")
    with pytest.raises(ContractError) as ei:
        _vote(host, "voter0", 1, 10, denom="uatom")
    assert ei.value.code == WRONG_FUND_COIN
    assert host.balance("voter0", "uatom") == atom
    assert host.balance("qfund-contract", "uatom") == 0
    assert host.next_nonce("voter0") == nonce

    with pytest.raises(ContractError) as ei:
        _vote(host, "voter0", 42, 10)
    assert ei.value.code == PROPOSAL_NOT_FOUND


def test_insufficient_funds() -> None:
    host = _new_host()
    _instantiate(host)
    _create(host, "fund1")
    before = host.balance("voter1", DENOM)
    err = _host_error(_vote, host, "voter1", 1, before + 1)
    assert err.code == INSUFFICIENT_FUNDS
    assert host.balance("voter1", DENOM) == before


def test_lifecycle_errors() -> None:
    host = _new_host()
    assert _host_error(_create, host, "fund1").code == NOT_INSTANTIATED
    assert _host_error(host.query, {"all_proposals": {}}).code == NOT_INSTANTIATED

    _instantiate(host)
    assert _host_error(_instantiate, host).code == ALREADY_INSTANTIATED
    assert _host_error(_submit, host, "creator", {"withdraw": {}}).code == UNKNOWN_MESSAGE
    assert _host_error(_submit, host, "creator", {"vote_proposal": {"proposal_id": "x"}}).code == INVALID_MSG
    assert _host_error(host.query, {"proposal_by_idx": {"id": 1}}).code == UNKNOWN_MESSAGE
    assert _host_error(host.query, {"proposal_by_id": {}}).code == INVALID_MSG


def test_envelope_admission() -> None:
    host = _new_host()
    _instantiate(host)
    _create(host, "fund1")

    assert _host_error(host.submit, {"sender": "Voter0", "nonce": 1, "msg": {}}).code == INVALID_ENVELOPE
    assert _host_error(host.submit, {"sender": "voter0", "nonce": "one", "msg": {}}).code == INVALID_ENVELOPE
    assert _host_error(host.submit, {"sender": "voter0", "nonce": 0, "msg": {"trigger_distribution": {}}}).code == (
        INVALID_ENVELOPE
    )

    # Non-ASCII digits are not amounts.
    weird = [{"denom": DENOM, "amount": "²"}]
    assert _host_error(_submit, host, "voter0", {"vote_proposal": {"proposal_id": 1}}, weird).code == INVALID_FUNDS
    assert _host_error(_vote, host, "voter0", 1, -5).code == INVALID_FUNDS


def test_zero_or_split_funds_are_wrong_coin_sent() -> None:
    host = _new_host()
    with pytest.raises(ContractError) as ei:
        _instantiate(host, budget=0)
    assert ei.value.code == WRONG_COIN_SENT

    _instantiate(host)
    _create(host, "fund1")
    before = host.balance("voter0", DENOM)
    nonce = host.next_nonce("voter0")

    with pytest.raises(ContractError) as ei:
        _vote(host, "voter0", 1, 0)
    assert ei.value.code == WRONG_COIN_SENT

    split = _funds(5) + _funds(6)
    with pytest.raises(ContractError) as ei:
        _submit(host, "voter0", {"vote_proposal": {"proposal_id": 1}}, split)
    assert ei.value.code == WRONG_COIN_SENT

    assert host.balance("voter0", DENOM) == before
    assert host.next_nonce("voter0") == nonce


def test_address_with_trailing_newline_is_not_a_second_principal() -> None:
    host = _new_host()
    _instantiate(host)
    with pytest.raises(ContractError) as ei:
        _create(host, "carol\n")
    assert ei.value.code == INVALID_ADDRESS
    assert host.query({"all_proposals": {}})["proposals"] == []


def test_total_supply_counts_denoms_with_slashes() -> None:
    store = MemoryKVStore()
    bank.mint(store, "alice", [Coin("ibc/ABC", 7), Coin("ABC", 100)])
    bank.mint(store, "bob", [Coin("ibc/ABC", 5)])
    assert bank.total_supply(store, "ibc/ABC") == 12
    assert bank.total_supply(store, "ABC") == 100
    assert bank.balances(store, "alice") == {"ABC": 100, "ibc/ABC": 7}



def test_unsigned_host_accepts_unsigned_envelopes() -> None:
    host = ContractHost(store=MemoryKVStore(), chain_id=CHAIN, require_signatures=False)
    host.mint("admin", [Coin(DENOM, 100)])
    res = host.submit(
        make_envelope(
            "admin",
            1,
            {
                "instantiate": {
                    "admin": "admin",
                    "leftover_addr": "addr",
                    "voting_period": {"at_height": 5},
                    "proposal_period": {"at_height": 5},
                    "budget_denom": DENOM,
                }
            },
            funds=_funds(100),
        )
    )
    assert res.attribute("action") == "instantiate"
    assert host.status()["contract_balance"] == "100"


def test_manual_clock_never_goes_backwards() -> None:
    host = _new_host()
    host.set_block(height=5, time_ns=100)
    assert host.advance_block(height=2, time_ns=50).to_json() == {"height": 7, "time_ns": 150, "chain_id": CHAIN}
    with pytest.raises(ValueError):
        host.set_block(height=6, time_ns=150)


def test_auto_clock_starts_a_block_per_message() -> None:
    ticks = iter([1_000, 2_000, 1_500, 5_000])
    host = _new_host(clock_mode="auto", now_ns=lambda: next(ticks))
    assert host.block.time_ns == 1_000

    r1 = _instantiate(host, proposal_height=100, voting_height=200)
    r2 = _create(host, "fund1")
    assert (r1.height, r2.height) == (1, 2)
    # Wall clock went backwards (1_500); block time does not.
    assert host.block.time_ns == 2_000


def test_event_journal_records_executed_messages() -> None:
    host = _new_host()
    _instantiate(host)
    _create(host, "fund1")
    with pytest.raises(ContractError):
        _vote(host, "voter0", 9, 10)

    evs = host.events(limit=10)
    assert [e["kind"] for e in evs] == ["instantiate", "create_proposal"]
    assert {"key": "proposal_id", "value": "1"} in evs[1]["attributes"]
    assert [e["seq"] for e in evs] == [1, 2]


def test_queries_through_host() -> None:
    host = _new_host()
    _instantiate(host)
    _create(host, "fund1")
    _create(host, "fund2")
    _vote(host, "voter0", 2, 77)

    out = host.query({"all_proposals": {}})
    assert [p["fund_address"] for p in out["proposals"]] == ["fund1", "fund2"]
    assert host.query({"proposal_by_id": {"id": 2}})["collected_funds"] == "77"
    with pytest.raises(ContractError):
        host.query({"proposal_by_id": {"id": 3}})


def test_random_rounds_conserve_funds_and_seal_windows() -> None:
    rng = random.Random(20240601)
    for _ in range(8):
        host = _new_host()
        budget = rng.randrange(1, 2_000_000)
        _instantiate(host, budget=budget, proposal_height=10, voting_height=20)
        start = {n: host.balance(n, DENOM) for n in PEOPLE}

        n_props = rng.randrange(0, 5)
        for i in range(n_props):
            host.set_block(height=min(9, host.block.height + rng.randrange(0, 3)), time_ns=0)
            assert _create(host, f"fund{i + 1}").attribute("proposal_id") == str(i + 1)

        contributed = 0
        voted = set()
        for _ in range(rng.randrange(0, 12)):
            host.set_block(height=min(19, host.block.height + rng.randrange(0, 2)), time_ns=0)
            if n_props == 0:
                break
            voter = rng.choice(["voter0", "voter1", "voter2"])
            pid = rng.randrange(1, n_props + 1)
            amount = rng.randrange(1, 50_000)
            if (voter, pid) in voted:
                with pytest.raises(ContractError):
                    _vote(host, voter, pid, amount)
                continue
            _vote(host, voter, pid, amount)
            voted.add((voter, pid))
            contributed += amount

        host.set_block(height=20, time_ns=0)
        with pytest.raises(ContractError):
            _vote(host, "voter0", 1, 1)

        res = _submit(host, "admin", {"trigger_distribution": {}})
        paid = sum(int(t["amount"][0]["amount"]) for t in res.transfers)
        assert paid == budget + contributed
        assert all(t["amount"][0]["denom"] == DENOM for t in res.transfers)
        assert host.balance("qfund-contract", DENOM) == 0
        assert sum(host.balance(n, DENOM) for n in PEOPLE) == sum(start.values()) - contributed

        host.set_block(height=21, time_ns=0)
        with pytest.raises(ContractError):
            _create(host, "late")


def test_sqlite_host_persists_across_restarts(tmp_path: Path) -> None:
    admin_pk, _ = deterministic_ed25519_keypair(label="admin")
    cfg = node_config_from_dict(
        {
            "chain_id": CHAIN,
            "mode": "dev",
            "clock_mode": "manual",
            "db_path": str(tmp_path / "node.db"),
            "accounts": [{"address": "admin", "pubkey": admin_pk, "balances": {DENOM: 1000}}],
        }
    )
    host = build_host(cfg)
    assert host.balance("admin", DENOM) == 1000
    _instantiate(host, budget=400)
    host.set_block(height=3, time_ns=0)

    again = build_host(cfg)
    # Genesis is applied once per database.
    assert again.balance("admin", DENOM) == 600
    assert again.block.height == 3
    assert again.status()["instantiated"] is True
    assert again.next_nonce("admin") == 2
