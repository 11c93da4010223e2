"""Election records."""

from enum import Enum

from pydantic import BaseModel, Field


class Phase(str, Enum):
    """Election lifecycle stage. Transitions only go forward."""

    SETUP = "setup"
    VOTING = "voting"
    CLOSED = "closed"


class DelegationMode(str, Enum):
    """How a delegated ballot is resolved."""

    # Single hop: an undecided target gets the delegator's vote target parked
    # on its own record, later delegations overwrite it.
    LITERAL = "literal"
    # Follow delegate links to the final delegate and move the ballot weight.
    CHAIN = "chain"


class Candidate(BaseModel):
    id: int = Field(..., ge=0)
    name: str
    proposal: str
    vote_count: int = Field(default=0, ge=0)


class CandidateResult(BaseModel):
    id: int
    name: str
    vote_count: int


class Voter(BaseModel):
    """Voter record. Unknown identities read as the zero-valued default."""

    is_registered: bool = False
    has_voted: bool = False
    vote_target: int = 0
    delegate_to: str | None = None
    weight: int = 0


class ElectionState(BaseModel):
    phase: Phase
    candidate_count: int
    voter_count: int
    delegation_mode: DelegationMode


# Returned by get_winner when no candidates were registered
NO_WINNER = Candidate(id=0, name="", proposal="", vote_count=0)


class ElectionSnapshot(BaseModel):
    """Full engine state, as written to and read from a snapshot store."""

    admin_identity: str
    phase: Phase
    delegation_mode: DelegationMode
    candidates: list[Candidate] = Field(default_factory=list)
    voters: dict[str, Voter] = Field(default_factory=dict)
    last_sequence: int = 0
