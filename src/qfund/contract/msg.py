from __future__ import annotations

"""Message schemas for the distributor.

Messages are externally tagged JSON objects with snake_case variant names:

    {"create_proposal": {"title": "...", "description": "...", "fund_address": "..."}}
    {"vote_proposal": {"proposal_id": 1}}
    {"trigger_distribution": {}}
    {"proposal_by_id": {"id": 1}}
    {"all_proposals": {}}

Field names are part of the external contract and must not change.
Schemas only check shape; the handlers in qfund.contract.contract enforce
semantics (windows, whitelists, funds).
"""

import base64
import binascii
from typing import Annotated, Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, field_validator

from qfund.contract.clock import Expiration
from qfund.contract.errors import ContractError
from qfund.contract.types import U64_MAX, BlockInfo

Json = Dict[str, Any]


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True, frozen=True)


ExpirationField = Annotated[
    Expiration,
    BeforeValidator(Expiration.from_json),
    PlainSerializer(lambda e: e.to_json(), return_type=dict),
]


class ClrParameters(_StrictModel):
    # Reserved for future variants; carried opaquely.
    parameter: str = ""


class QuadraticFundingAlgorithm(_StrictModel):
    """Only CLR exists today: {"capital_constrained_liberal_radicalism": {"parameter": ""}}."""

    capital_constrained_liberal_radicalism: ClrParameters

    @staticmethod
    def clr(parameter: str = "") -> "QuadraticFundingAlgorithm":
        return QuadraticFundingAlgorithm(capital_constrained_liberal_radicalism=ClrParameters(parameter=parameter))


class InitMsg(_StrictModel):
    admin: str = Field(..., min_length=1)
    leftover_addr: str = Field(..., min_length=1)
    create_proposal_whitelist: Optional[List[str]] = None
    vote_proposal_whitelist: Optional[List[str]] = None
    voting_period: ExpirationField = Field(default_factory=Expiration.never)
    proposal_period: ExpirationField = Field(default_factory=Expiration.never)
    budget_denom: str = Field(..., min_length=1)
    algorithm: QuadraticFundingAlgorithm = Field(default_factory=QuadraticFundingAlgorithm.clr)

    def check_periods(self, block: BlockInfo) -> None:
        """Both deadlines must still be open when the round is created."""
        if self.proposal_period.is_expired(block):
            raise ContractError.proposal_period_expired()
        if self.voting_period.is_expired(block):
            raise ContractError.voting_period_expired()


# ---------------------------------------------------------------------------
# Execute
# ---------------------------------------------------------------------------


class CreateProposal(_StrictModel):
    title: str
    description: str
    metadata: Optional[str] = None
    fund_address: str

    @field_validator("metadata")
    @classmethod
    def _metadata_is_base64(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("metadata must be base64") from e
        return v


class VoteProposal(_StrictModel):
    proposal_id: int = Field(..., ge=0, le=U64_MAX)


class TriggerDistribution(_StrictModel):
    pass


ExecuteMsg = Union[CreateProposal, VoteProposal, TriggerDistribution]

EXECUTE_VARIANTS: Dict[str, Type[_StrictModel]] = {
    "create_proposal": CreateProposal,
    "vote_proposal": VoteProposal,
    "trigger_distribution": TriggerDistribution,
}


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


class ProposalByID(_StrictModel):
    id: int = Field(..., ge=0, le=U64_MAX)


class AllProposals(_StrictModel):
    pass


class AllProposalsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    proposals: List[Json] = Field(default_factory=list)


QueryMsg = Union[ProposalByID, AllProposals]

QUERY_VARIANTS: Dict[str, Type[_StrictModel]] = {
    "proposal_by_id": ProposalByID,
    "all_proposals": AllProposals,
}


def _parse_tagged(j: Any, variants: Dict[str, Type[_StrictModel]], what: str) -> Any:
    if isinstance(j, tuple(variants.values())):
        return j
    if not isinstance(j, dict) or len(j) != 1:
        raise ValueError(f"{what} must be an object with exactly one variant key")
    tag, body = next(iter(j.items()))
    model = variants.get(str(tag))
    if model is None:
        raise ValueError(f"unknown {what} variant: {tag!r}")
    return model.model_validate(body if body is not None else {})


def parse_execute_msg(j: Any) -> ExecuteMsg:
    return _parse_tagged(j, EXECUTE_VARIANTS, "execute msg")


def parse_query_msg(j: Any) -> QueryMsg:
    return _parse_tagged(j, QUERY_VARIANTS, "query msg")


def _tag_of(msg: BaseModel, variants: Dict[str, Type[_StrictModel]]) -> str:
    for tag, model in variants.items():
        if type(msg) is model:
            return tag
    raise ValueError(f"not a known variant: {type(msg).__name__}")


def execute_msg_to_json(msg: ExecuteMsg) -> Json:
    return {_tag_of(msg, EXECUTE_VARIANTS): msg.model_dump(mode="json", exclude_none=True)}


def query_msg_to_json(msg: QueryMsg) -> Json:
    return {_tag_of(msg, QUERY_VARIANTS): msg.model_dump(mode="json")}


__all__ = [
    "InitMsg",
    "QuadraticFundingAlgorithm",
    "ClrParameters",
    "CreateProposal",
    "VoteProposal",
    "TriggerDistribution",
    "ExecuteMsg",
    "ProposalByID",
    "AllProposals",
    "QueryMsg",
    "AllProposalsResponse",
    "parse_execute_msg",
    "parse_query_msg",
    "execute_msg_to_json",
    "query_msg_to_json",
]
