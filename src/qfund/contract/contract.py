# src/qfund/contract/contract.py
from __future__ import annotations

"""Entry points of the quadratic-funding distributor.

Handlers are pure over (store, env, info, msg): they read and write the
store they are given and return a Response carrying event attributes and
the outbound transfers the host must execute. Any ContractError aborts the
call; the host discards the store writes made so far.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from qfund.contract.clock import after_voting, deadlines_ordered, in_proposal_window, in_voting_window
from qfund.contract.errors import ContractError
from qfund.contract.helper import check_whitelist, extract_budget_coin, require_no_funds
from qfund.contract.matching import RawGrant, calculate_clr
from qfund.contract.msg import (
    AllProposals,
    AllProposalsResponse,
    CreateProposal,
    InitMsg,
    ProposalByID,
    TriggerDistribution,
    VoteProposal,
    parse_execute_msg,
    parse_query_msg,
)
from qfund.contract.payout import plan_payouts
from qfund.contract.state import (
    Config,
    Proposal,
    Vote,
    iter_proposals,
    load_config,
    load_proposal_seq,
    may_load_proposal,
    may_load_vote,
    save_config,
    save_proposal,
    save_proposal_seq,
    save_vote,
    vote_amounts,
)
from qfund.contract.types import U128_MAX, Env, MessageInfo, Response
from qfund.runtime.address import HostApi
from qfund.runtime.kv import KVStore
from qfund.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("qfund.contract")

CLR_ALGORITHM = "capital_constrained_liberal_radicalism"


@dataclass
class Deps:
    store: KVStore
    api: HostApi = field(default_factory=HostApi)
    elide_zero_transfers: bool = False


# ---------------------------------------------------------------------------
# Instantiate
# ---------------------------------------------------------------------------


def instantiate(deps: Deps, env: Env, info: MessageInfo, msg: InitMsg) -> Response:
    msg.check_periods(env.block)

    ordered = deadlines_ordered(msg.proposal_period, msg.voting_period)
    if ordered is False:
        raise ContractError.invalid_deadlines(msg.proposal_period.to_json(), msg.voting_period.to_json())

    budget = extract_budget_coin(info.funds, msg.budget_denom)
    if int(budget.amount) > U128_MAX:
        raise ContractError.amount_overflow("budget")

    deps.api.addr_validate(msg.admin)
    deps.api.addr_validate(msg.leftover_addr)

    create_wl: Optional[List[str]] = None
    if msg.create_proposal_whitelist is not None:
        create_wl = [deps.api.addr_validate(w) for w in msg.create_proposal_whitelist]
    vote_wl: Optional[List[str]] = None
    if msg.vote_proposal_whitelist is not None:
        vote_wl = [deps.api.addr_validate(w) for w in msg.vote_proposal_whitelist]

    cfg = Config(
        admin=msg.admin,
        leftover_addr=msg.leftover_addr,
        create_proposal_whitelist=None if create_wl is None else tuple(create_wl),
        vote_proposal_whitelist=None if vote_wl is None else tuple(vote_wl),
        voting_period=msg.voting_period,
        proposal_period=msg.proposal_period,
        budget=budget,
        algorithm=msg.algorithm.model_dump(mode="json"),
    )
    save_config(deps.store, cfg)
    save_proposal_seq(deps.store, 0)

    return Response().add_attributes(
        [
            ("action", "instantiate"),
            ("admin", cfg.admin),
            ("budget", f"{budget.amount}{budget.denom}"),
        ]
    )


# ---------------------------------------------------------------------------
# Execute
# ---------------------------------------------------------------------------


def execute(deps: Deps, env: Env, info: MessageInfo, msg: Any) -> Response:
    """Dispatch an execute message (model instance or tagged JSON)."""
    m = parse_execute_msg(msg)
    if isinstance(m, CreateProposal):
        return execute_create_proposal(
            deps, env, info, m.title, m.description, m.metadata, m.fund_address
        )
    if isinstance(m, VoteProposal):
        return execute_vote_proposal(deps, env, info, m.proposal_id)
    if isinstance(m, TriggerDistribution):
        return execute_trigger_distribution(deps, env, info)
    raise ValueError(f"unhandled execute msg: {type(m).__name__}")  # pragma: no cover


def execute_create_proposal(
    deps: Deps,
    env: Env,
    info: MessageInfo,
    title: str,
    description: str,
    metadata: Optional[str],
    fund_address: str,
) -> Response:
    config = load_config(deps.store)

    check_whitelist(config.create_proposal_whitelist, info.sender)

    if config.distributed or not in_proposal_window(config.proposal_period, env.block):
        raise ContractError.proposal_period_expired()

    deps.api.addr_validate(fund_address)

    pid = load_proposal_seq(deps.store) + 1
    save_proposal_seq(deps.store, pid)
    save_proposal(
        deps.store,
        Proposal(
            id=pid,
            title=title,
            description=description,
            metadata=metadata,
            fund_address=fund_address,
        ),
    )

    return Response().add_attributes(
        [
            ("action", "create_proposal"),
            ("title", title),
            ("proposal_id", pid),
        ]
    )


def execute_vote_proposal(deps: Deps, env: Env, info: MessageInfo, proposal_id: int) -> Response:
    config = load_config(deps.store)

    check_whitelist(config.vote_proposal_whitelist, info.sender)

    if config.distributed or not in_voting_window(config.voting_period, env.block):
        raise ContractError.voting_period_expired()

    fund = extract_budget_coin(info.funds, config.budget.denom)

    proposal = may_load_proposal(deps.store, proposal_id)
    if proposal is None:
        raise ContractError.proposal_not_found(proposal_id)

    if may_load_vote(deps.store, proposal_id, info.sender) is not None:
        raise ContractError.address_already_voted_project()

    collected = int(proposal.collected_funds) + int(fund.amount)
    if collected > U128_MAX:
        raise ContractError.amount_overflow("collected_funds")

    proposal = Proposal(
        id=proposal.id,
        title=proposal.title,
        description=proposal.description,
        metadata=proposal.metadata,
        fund_address=proposal.fund_address,
        collected_funds=collected,
    )
    save_proposal(deps.store, proposal)
    save_vote(deps.store, Vote(proposal_id=proposal_id, voter=info.sender, fund=fund))

    return Response().add_attributes(
        [
            ("action", "vote_proposal"),
            ("proposal_key", proposal_id),
            ("voter", info.sender),
            ("collected_fund", proposal.collected_funds),
        ]
    )


def execute_trigger_distribution(deps: Deps, env: Env, info: MessageInfo) -> Response:
    config = load_config(deps.store)

    if info.sender != config.admin:
        raise ContractError.unauthorized()

    if not after_voting(config.voting_period, env.block):
        raise ContractError.voting_period_not_expired()

    require_no_funds(info.funds)

    if config.distributed:
        # Terminal round: repeating the trigger changes nothing.
        return Response().add_attributes([("action", "trigger_distribution"), ("already_distributed", "true")])

    grants: List[RawGrant] = []
    for p in iter_proposals(deps.store):
        grants.append(
            RawGrant(
                addr=p.fund_address,
                funds=tuple(vote_amounts(deps.store, p.id)),
                collected_vote_funds=int(p.collected_funds),
            )
        )

    if CLR_ALGORITHM not in config.algorithm:
        raise ContractError.clr_constrain_required()
    distr_funds, leftover = calculate_clr(grants, int(config.budget.amount))

    msgs = plan_payouts(
        distr_funds,
        leftover,
        config.leftover_addr,
        config.budget.denom,
        elide_zero=deps.elide_zero_transfers,
    )

    save_config(
        deps.store,
        Config(
            admin=config.admin,
            leftover_addr=config.leftover_addr,
            create_proposal_whitelist=config.create_proposal_whitelist,
            vote_proposal_whitelist=config.vote_proposal_whitelist,
            voting_period=config.voting_period,
            proposal_period=config.proposal_period,
            budget=config.budget,
            algorithm=config.algorithm,
            distributed=True,
        ),
    )

    log_event(
        log,
        "distribution",
        proposals=len(distr_funds),
        budget=str(config.budget.amount),
        leftover=str(leftover),
        transfers=len(msgs),
    )

    return (
        Response()
        .add_messages(msgs)
        .add_attributes([("action", "trigger_distribution"), ("leftover", leftover)])
    )


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


def query(deps: Deps, env: Env, msg: Any) -> Json:
    m = parse_query_msg(msg)
    if isinstance(m, ProposalByID):
        return query_proposal_id(deps, m.id).to_json()
    if isinstance(m, AllProposals):
        return query_all_proposals(deps)
    raise ValueError(f"unhandled query msg: {type(m).__name__}")  # pragma: no cover


def query_proposal_id(deps: Deps, proposal_id: int) -> Proposal:
    p = may_load_proposal(deps.store, proposal_id)
    if p is None:
        raise ContractError.proposal_not_found(proposal_id)
    return p


def query_all_proposals(deps: Deps) -> Json:
    resp = AllProposalsResponse(proposals=[p.to_json() for p in iter_proposals(deps.store)])
    return resp.model_dump(mode="json")


__all__ = [
    "Deps",
    "instantiate",
    "execute",
    "execute_create_proposal",
    "execute_vote_proposal",
    "execute_trigger_distribution",
    "query",
    "query_proposal_id",
    "query_all_proposals",
]
