# src/qfund/contract/errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

Json = Dict[str, Any]


# Error kinds are part of the external surface: indexers and clients
# discriminate on these exact strings.
UNAUTHORIZED = "Unauthorized"
PROPOSAL_NOT_FOUND = "ProposalNotFound"
PROPOSAL_PERIOD_EXPIRED = "ProposalPeriodExpired"
VOTING_PERIOD_EXPIRED = "VotingPeriodExpired"
VOTING_PERIOD_NOT_EXPIRED = "VotingPeriodNotExpired"
WRONG_COIN_SENT = "WrongCoinSent"
WRONG_FUND_COIN = "WrongFundCoin"
ADDRESS_ALREADY_VOTED_PROJECT = "AddressAlreadyVotedProject"
CLR_CONSTRAIN_REQUIRED = "CLRConstrainRequired"
INVALID_DEADLINES = "InvalidDeadlines"
INVALID_ADDRESS = "InvalidAddress"
AMOUNT_OVERFLOW = "AmountOverflow"

ERROR_KINDS = frozenset(
    {
        UNAUTHORIZED,
        PROPOSAL_NOT_FOUND,
        PROPOSAL_PERIOD_EXPIRED,
        VOTING_PERIOD_EXPIRED,
        VOTING_PERIOD_NOT_EXPIRED,
        WRONG_COIN_SENT,
        WRONG_FUND_COIN,
        ADDRESS_ALREADY_VOTED_PROJECT,
        CLR_CONSTRAIN_REQUIRED,
        INVALID_DEADLINES,
        INVALID_ADDRESS,
        AMOUNT_OVERFLOW,
    }
)


@dataclass
class ContractError(Exception):
    """Canonical error type raised by distributor handlers.

    `code` is one of ERROR_KINDS; `reason` is the human readable message.
    Any ContractError aborts the whole operation.
    """

    code: str
    reason: str
    details: Json = field(default_factory=dict)

    def __str__(self) -> str:
        return self.reason

    def to_json(self) -> Json:
        return {"code": self.code, "message": self.reason, "details": dict(self.details)}

    @staticmethod
    def unauthorized() -> "ContractError":
        return ContractError(UNAUTHORIZED, "Unauthorized")

    @staticmethod
    def proposal_not_found(proposal_id: Any = None) -> "ContractError":
        details = {} if proposal_id is None else {"proposal_id": proposal_id}
        return ContractError(PROPOSAL_NOT_FOUND, "Proposal not found", details)

    @staticmethod
    def proposal_period_expired() -> "ContractError":
        return ContractError(PROPOSAL_PERIOD_EXPIRED, "Proposal period expired")

    @staticmethod
    def voting_period_expired() -> "ContractError":
        return ContractError(VOTING_PERIOD_EXPIRED, "Voting period expired")

    @staticmethod
    def voting_period_not_expired() -> "ContractError":
        return ContractError(VOTING_PERIOD_NOT_EXPIRED, "Voting period not expired")

    @staticmethod
    def wrong_coin_sent() -> "ContractError":
        return ContractError(WRONG_COIN_SENT, "Wrong coin sent")

    @staticmethod
    def wrong_fund_coin(expected: str, got: str) -> "ContractError":
        return ContractError(
            WRONG_FUND_COIN,
            f"Wrong fund coin (expected: {expected}, got: {got})",
            {"expected": expected, "got": got},
        )

    @staticmethod
    def address_already_voted_project() -> "ContractError":
        return ContractError(ADDRESS_ALREADY_VOTED_PROJECT, "Address already voted project")

    @staticmethod
    def clr_constrain_required() -> "ContractError":
        return ContractError(CLR_CONSTRAIN_REQUIRED, "CLR algorithm requires a budget constrain")

    @staticmethod
    def invalid_deadlines(proposal_deadline: Json, voting_deadline: Json) -> "ContractError":
        return ContractError(
            INVALID_DEADLINES,
            "Proposal deadline must not be after voting deadline",
            {"proposal_deadline": proposal_deadline, "voting_deadline": voting_deadline},
        )

    @staticmethod
    def invalid_address(addr: str, reason: str) -> "ContractError":
        return ContractError(INVALID_ADDRESS, f"Invalid address: {reason}", {"address": addr})

    @staticmethod
    def amount_overflow(field_name: str) -> "ContractError":
        return ContractError(AMOUNT_OVERFLOW, f"Amount does not fit in 128 bits: {field_name}", {"field": field_name})


__all__ = ["ContractError", "ERROR_KINDS", "Json"]
