from __future__ import annotations

from typing import Any, Optional, Tuple

import pytest

from qfund.contract.clock import Expiration
from qfund.contract.contract import (
    Deps,
    execute,
    instantiate,
    query,
    query_all_proposals,
    query_proposal_id,
)
from qfund.contract.errors import (
    ADDRESS_ALREADY_VOTED_PROJECT,
    INVALID_ADDRESS,
    INVALID_DEADLINES,
    PROPOSAL_NOT_FOUND,
    PROPOSAL_PERIOD_EXPIRED,
    UNAUTHORIZED,
    VOTING_PERIOD_EXPIRED,
    VOTING_PERIOD_NOT_EXPIRED,
    WRONG_COIN_SENT,
    WRONG_FUND_COIN,
    ContractError,
)
from qfund.contract.msg import InitMsg
from qfund.contract.state import load_config, load_proposal_seq, may_load_proposal, may_load_vote
from qfund.contract.types import BlockInfo, Coin, Env, MessageInfo
from qfund.runtime.kv import MemoryKVStore

DENOM = "ucosm"


def _env(height: int, time_ns: int = 0) -> Env:
    return Env(block=BlockInfo(height=height, time_ns=time_ns), contract_address="qfund-contract")


def _info(sender: str, *coins: Tuple[int, str]) -> MessageInfo:
    return MessageInfo(sender=sender, funds=tuple(Coin(denom=d, amount=a) for a, d in coins))


def _init(
    *,
    budget: int = 550000,
    proposal_height: int = 10,
    voting_height: int = 15,
    create_wl: Optional[list] = None,
    vote_wl: Optional[list] = None,
    elide_zero: bool = False,
) -> Deps:
    deps = Deps(store=MemoryKVStore(), elide_zero_transfers=elide_zero)
    msg = InitMsg(
        admin="admin",
        leftover_addr="addr",
        create_proposal_whitelist=create_wl,
        vote_proposal_whitelist=vote_wl,
        proposal_period=Expiration.at_height(proposal_height),
        voting_period=Expiration.at_height(voting_height),
        budget_denom=DENOM,
    )
    instantiate(deps, _env(0), _info("admin", (budget, DENOM)), msg)
    return deps


def _create(deps: Deps, sender: str, fund_address: str, height: int = 1, title: str = "t") -> Any:
    return execute(
        deps,
        _env(height),
        _info(sender),
        {"create_proposal": {"title": title, "description": "d", "fund_address": fund_address}},
    )


def _vote(deps: Deps, voter: str, proposal_id: int, amount: int, height: int = 2, denom: str = DENOM) -> Any:
    return execute(deps, _env(height), _info(voter, (amount, denom)), {"vote_proposal": {"proposal_id": proposal_id}})


def _trigger(deps: Deps, sender: str = "admin", height: int = 20) -> Any:
    return execute(deps, _env(height), _info(sender), {"trigger_distribution": {}})


def _code(fn, *args, **kw) -> str:
    with pytest.raises(ContractError) as ei:
        fn(*args, **kw)
    return ei.value.code


# ---------------------------------------------------------------------------
# instantiate
# ---------------------------------------------------------------------------


def test_instantiate_stores_config_and_budget() -> None:
    deps = _init(budget=1234)
    cfg = load_config(deps.store)
    assert cfg.admin == "admin"
    assert cfg.leftover_addr == "addr"
    assert cfg.budget == Coin(DENOM, 1234)
    assert cfg.distributed is False
    assert "capital_constrained_liberal_radicalism" in cfg.algorithm
    assert load_proposal_seq(deps.store) == 0


def test_instantiate_rejects_expired_deadlines_in_order() -> None:
    deps = Deps(store=MemoryKVStore())
    both_expired = InitMsg(
        admin="admin",
        leftover_addr="addr",
        proposal_period=Expiration.at_height(5),
        voting_period=Expiration.at_height(5),
        budget_denom=DENOM,
    )
    assert _code(instantiate, deps, _env(10), _info("admin", (1, DENOM)), both_expired) == PROPOSAL_PERIOD_EXPIRED

    voting_expired = InitMsg(
        admin="admin",
        leftover_addr="addr",
        proposal_period=Expiration.at_time(10**18),
        voting_period=Expiration.at_height(5),
        budget_denom=DENOM,
    )
    assert _code(instantiate, deps, _env(10), _info("admin", (1, DENOM)), voting_expired) == VOTING_PERIOD_EXPIRED
    assert deps.store.get("config") is None


def test_instantiate_requires_proposal_deadline_before_voting_deadline() -> None:
    deps = Deps(store=MemoryKVStore())
    msg = InitMsg(
        admin="admin",
        leftover_addr="addr",
        proposal_period=Expiration.at_height(20),
        voting_period=Expiration.at_height(15),
        budget_denom=DENOM,
    )
    assert _code(instantiate, deps, _env(0), _info("admin", (1, DENOM)), msg) == INVALID_DEADLINES


def test_instantiate_budget_coin_checks() -> None:
    deps = Deps(store=MemoryKVStore())
    msg = InitMsg(
        admin="admin",
        leftover_addr="addr",
        proposal_period=Expiration.at_height(10),
        voting_period=Expiration.at_height(15),
        budget_denom=DENOM,
    )
    assert _code(instantiate, deps, _env(0), _info("admin"), msg) == WRONG_COIN_SENT
    assert _code(instantiate, deps, _env(0), _info("admin", (5, DENOM), (5, "uatom")), msg) == WRONG_COIN_SENT
    assert _code(instantiate, deps, _env(0), _info("admin", (5, "uatom")), msg) == WRONG_FUND_COIN


def test_instantiate_validates_addresses() -> None:
    deps = Deps(store=MemoryKVStore())
    msg = InitMsg(
        admin="Admin",
        leftover_addr="addr",
        proposal_period=Expiration.at_height(10),
        voting_period=Expiration.at_height(15),
        budget_denom=DENOM,
    )
    assert _code(instantiate, deps, _env(0), _info("admin", (5, DENOM)), msg) == INVALID_ADDRESS


# ---------------------------------------------------------------------------
# create / vote
# ---------------------------------------------------------------------------


def test_create_proposal_assigns_increasing_ids() -> None:
    deps = _init()
    ids = []
    for i in range(3):
        resp = _create(deps, "anyone", f"fund{i}", title=f"p{i}")
        assert resp.attribute("action") == "create_proposal"
        assert resp.attribute("title") == f"p{i}"
        ids.append(int(resp.attribute("proposal_id")))
    assert ids == [1, 2, 3]

    p = query_proposal_id(deps, 2)
    assert p.fund_address == "fund1"
    assert p.collected_funds == 0


def test_create_proposal_rejects_funds_address_and_late_calls() -> None:
    deps = _init()
    assert _code(_create, deps, "anyone", "Not-Valid") == INVALID_ADDRESS
    assert _code(_create, deps, "anyone", "fund1", height=10) == PROPOSAL_PERIOD_EXPIRED
    assert load_proposal_seq(deps.store) == 0


def test_lifecycle_gates() -> None:
    deps = _init(proposal_height=10, voting_height=15)

    assert _create(deps, "creator", "fund1", height=5).attribute("proposal_id") == "1"
    assert _code(_create, deps, "creator", "fund2", height=11) == PROPOSAL_PERIOD_EXPIRED

    resp = _vote(deps, "voter1", 1, 1000, height=12)
    assert resp.attribute("action") == "vote_proposal"
    assert resp.attribute("proposal_key") == "1"
    assert resp.attribute("voter") == "voter1"
    assert resp.attribute("collected_fund") == "1000"

    assert _code(_vote, deps, "voter2", 1, 1000, height=16) == VOTING_PERIOD_EXPIRED
    assert _code(_trigger, deps, "stranger", height=16) == UNAUTHORIZED

    resp = _trigger(deps, "admin", height=16)
    assert resp.attribute("action") == "trigger_distribution"
    assert [m.to_address for m in resp.messages] == ["fund1", "addr"]


def test_trigger_before_voting_ends_is_rejected() -> None:
    deps = _init()
    assert _code(_trigger, deps, "admin", height=14) == VOTING_PERIOD_NOT_EXPIRED


def test_trigger_rejects_attached_funds() -> None:
    deps = _init()
    with pytest.raises(ContractError) as ei:
        execute(deps, _env(20), _info("admin", (1, DENOM)), {"trigger_distribution": {}})
    assert ei.value.code == WRONG_COIN_SENT


def test_double_vote_is_rejected() -> None:
    deps = _init()
    _create(deps, "creator", "fund1")
    _vote(deps, "voter1", 1, 700)
    assert _code(_vote, deps, "voter1", 1, 300) == ADDRESS_ALREADY_VOTED_PROJECT
    assert query_proposal_id(deps, 1).collected_funds == 700

    # Same voter on another proposal is fine.
    _create(deps, "creator", "fund2")
    _vote(deps, "voter1", 2, 300)
    assert may_load_vote(deps.store, 2, "voter1") is not None


def test_vote_denom_mismatch_changes_nothing() -> None:
    deps = _init()
    _create(deps, "creator", "fund1")
    before = deps.store.snapshot()

    with pytest.raises(ContractError) as ei:
        _vote(deps, "voter1", 1, 10, denom="uatom")
    assert ei.value.code == WRONG_FUND_COIN
    assert ei.value.details == {"expected": DENOM, "got": "uatom"}
    assert deps.store.snapshot() == before


def test_vote_checks_funds_before_proposal_existence() -> None:
    deps = _init()
    with pytest.raises(ContractError) as ei:
        execute(deps, _env(2), _info("voter1"), {"vote_proposal": {"proposal_id": 9}})
    assert ei.value.code == WRONG_COIN_SENT
    assert _code(_vote, deps, "voter1", 9, 10) == PROPOSAL_NOT_FOUND


def test_create_whitelist() -> None:
    deps = _init(create_wl=["xavier"])
    assert _code(_create, deps, "yolanda", "fund1") == UNAUTHORIZED
    assert _create(deps, "xavier", "fund1").attribute("proposal_id") == "1"


def test_vote_whitelist_checked_before_deadline() -> None:
    deps = _init(vote_wl=["voter1"])
    _create(deps, "creator", "fund1")
    # Past the voting deadline, a non-listed voter still sees Unauthorized first.
    assert _code(_vote, deps, "intruder", 1, 10, height=30) == UNAUTHORIZED
    _vote(deps, "voter1", 1, 10)


# ---------------------------------------------------------------------------
# distribution
# ---------------------------------------------------------------------------


def _s2_round(elide_zero: bool = False) -> Deps:
    deps = _init(budget=550000, elide_zero=elide_zero)
    contribs = [[1200, 44999, 33], [30000, 58999], [230000, 100], [100000, 5]]
    for i, _ in enumerate(contribs, start=1):
        _create(deps, "creator", f"fund{i}")
    for pid, amounts in enumerate(contribs, start=1):
        for j, amount in enumerate(amounts):
            _vote(deps, f"voter{j}", pid, amount)
    return deps


def test_distribution_pays_grant_plus_contributions() -> None:
    deps = _s2_round()
    resp = _trigger(deps)

    assert [(m.to_address, m.total(DENOM)) for m in resp.messages] == [
        ("fund1", 106444),
        ("fund2", 253601),
        ("fund3", 458637),
        ("fund4", 196653),
        ("addr", 1),
    ]
    assert resp.attribute("leftover") == "1"
    # Denom purity.
    assert all(c.denom == DENOM for m in resp.messages for c in m.amount)
    assert load_config(deps.store).distributed is True


def test_distribution_is_terminal() -> None:
    deps = _s2_round()
    _trigger(deps)

    assert _code(_create, deps, "creator", "fund9", height=1) == PROPOSAL_PERIOD_EXPIRED
    assert _code(_vote, deps, "voter9", 1, 5, height=2) == VOTING_PERIOD_EXPIRED
    assert _code(_trigger, deps, "stranger") == UNAUTHORIZED

    again = _trigger(deps, height=25)
    assert again.messages == []
    assert again.attribute("already_distributed") == "true"


def test_distribution_without_votes_refunds_budget_to_leftover() -> None:
    deps = _init(budget=777)
    _create(deps, "creator", "fund1")
    resp = _trigger(deps)
    assert [(m.to_address, m.total(DENOM)) for m in resp.messages] == [("fund1", 0), ("addr", 777)]

    deps = _init(budget=777, elide_zero=True)
    _create(deps, "creator", "fund1")
    resp = _trigger(deps)
    assert [(m.to_address, m.total(DENOM)) for m in resp.messages] == [("addr", 777)]


def test_zero_leftover_transfer_is_emitted_by_default() -> None:
    deps = _init(budget=1000)
    _create(deps, "creator", "fund1")
    _vote(deps, "voter1", 1, 49)
    resp = _trigger(deps)
    assert [(m.to_address, m.total(DENOM)) for m in resp.messages] == [("fund1", 1049), ("addr", 0)]


# ---------------------------------------------------------------------------
# queries
# ---------------------------------------------------------------------------


def test_queries() -> None:
    deps = _init()
    _create(deps, "creator", "fund1", title="first")
    _create(deps, "creator", "fund2", title="second")
    _vote(deps, "voter1", 2, 40)

    one = query(deps, _env(3), {"proposal_by_id": {"id": 2}})
    assert one["title"] == "second"
    assert one["collected_funds"] == "40"

    listed = query_all_proposals(deps)
    assert [p["id"] for p in listed["proposals"]] == [1, 2]

    with pytest.raises(ContractError) as ei:
        query(deps, _env(3), {"proposal_by_id": {"id": 3}})
    assert ei.value.code == PROPOSAL_NOT_FOUND
    assert may_load_proposal(deps.store, 3) is None
