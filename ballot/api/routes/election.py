"""Election API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ballot.api.deps import get_current_identity, get_engine, get_event_log
from ballot.core.responses import success_response
from ballot.services.engine import ElectionEngine
from ballot.services.events import EventType, InMemoryEventLog

router = APIRouter(prefix="/election", tags=["Election"])

Engine = Annotated[ElectionEngine, Depends(get_engine)]
Identity = Annotated[str, Depends(get_current_identity)]


# ============================================
# PYDANTIC MODELS
# ============================================


class CandidateCreate(BaseModel):
    """Create candidate request model."""

    name: str = Field(..., min_length=1, max_length=255)
    proposal: str = Field(default="", max_length=5000)


class VoterCreate(BaseModel):
    """Register voter request model."""

    identity: str = Field(..., min_length=1, max_length=255)


class VoteRequest(BaseModel):
    """Direct vote request model."""

    candidate_id: int


class DelegateRequest(BaseModel):
    """Delegation request model."""

    target: str = Field(..., min_length=1, max_length=255)


# ============================================
# ELECTION STATE
# ============================================


@router.get("")
def get_election(engine: Engine):
    """Current phase, registry sizes and delegation mode."""
    return success_response(data=engine.get_election())


@router.post("/start")
def start_election(engine: Engine, identity: Identity):
    """Open voting. Administrator only."""
    engine.start_election(identity)
    return success_response(
        data=engine.get_election(), message="Election started successfully"
    )


@router.post("/end")
def end_election(engine: Engine, identity: Identity):
    """Close voting. Administrator only."""
    engine.end_election(identity)
    return success_response(
        data=engine.get_election(), message="Election ended successfully"
    )


@router.get("/winner")
def get_winner(engine: Engine):
    """
    Winner of a closed election.

    Ties go to the lowest candidate id. An election without candidates
    reports id 0 with an empty name.
    """
    return success_response(data=engine.get_winner())


# ============================================
# CANDIDATES
# ============================================


@router.post("/candidates", status_code=status.HTTP_201_CREATED)
def add_candidate(request: CandidateCreate, engine: Engine, identity: Identity):
    """Register a candidate during setup. Administrator only."""
    candidate = engine.add_candidate(identity, request.name, request.proposal)
    return success_response(data=candidate, message="Candidate added successfully")


@router.get("/candidates")
def list_candidates(engine: Engine):
    return success_response(data=engine.list_candidates())


@router.get("/candidates/{candidate_id}")
def get_candidate(candidate_id: int, engine: Engine):
    return success_response(data=engine.get_candidate(candidate_id))


@router.get("/results")
def list_results(engine: Engine):
    return success_response(data=engine.list_results())


@router.get("/results/{candidate_id}")
def get_results(candidate_id: int, engine: Engine):
    return success_response(data=engine.get_results(candidate_id))


# ============================================
# VOTERS
# ============================================


@router.post("/voters", status_code=status.HTTP_201_CREATED)
def add_voter(request: VoterCreate, engine: Engine, identity: Identity):
    """Give an identity the right to vote. Administrator only."""
    voter = engine.add_voter(identity, request.identity)
    return success_response(
        data={"identity": request.identity, **voter.model_dump()},
        message="Voter added successfully",
    )


@router.get("/voters/{voter_identity}")
def get_voter_details(voter_identity: str, engine: Engine):
    """Voter record; unregistered identities read as all-zero values."""
    voter = engine.get_voter_details(voter_identity)
    return success_response(data={"identity": voter_identity, **voter.model_dump()})


# ============================================
# BALLOTS
# ============================================


@router.post("/vote")
def cast_vote(request: VoteRequest, engine: Engine, identity: Identity):
    """Cast the caller's ballot for a candidate."""
    voter = engine.vote(identity, request.candidate_id)
    return success_response(
        data={"identity": identity, **voter.model_dump()},
        message="Vote cast successfully",
    )


@router.post("/delegate")
def delegate_vote(request: DelegateRequest, engine: Engine, identity: Identity):
    """Route the caller's ballot through another registered voter."""
    voter = engine.delegate(identity, request.target)
    return success_response(
        data={"identity": identity, **voter.model_dump()},
        message="Vote delegated successfully",
    )


# ============================================
# EVENTS
# ============================================


@router.get("/events")
def list_events(
    engine: Engine,
    event_log: Annotated[InMemoryEventLog, Depends(get_event_log)],
    since: int = Query(0, ge=0),
    event_type: EventType | None = Query(None),
):
    """Accepted operations in order, optionally after a sequence number."""
    engine.flush()
    return success_response(data=event_log.list_events(since, event_type))
