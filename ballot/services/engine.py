"""
Election engine: phase state machine, registries and ballot resolution.

One engine holds one election. Every operation runs under the engine lock,
so each call is applied completely or, when validation fails, not at all.
Events are numbered and queued under the lock, then handed to the sinks by a
single dispatcher thread in the order operations were accepted, so a slow
sink never holds up the engine.
"""

from collections.abc import Iterable
from typing import Any
import queue
import threading

from ballot.core.logging_config import get_logger
from ballot.services.errors import (
    AlreadyRegisteredError,
    AlreadyVotedError,
    AuthorizationError,
    DelegationLoopError,
    ElectionError,
    InvalidCandidateError,
    InvalidDelegateError,
    PhaseError,
    SelfDelegationError,
)
from ballot.services.events import ElectionEvent, EventSink, EventType
from ballot.services.models import (
    NO_WINNER,
    Candidate,
    CandidateResult,
    DelegationMode,
    ElectionSnapshot,
    ElectionState,
    Phase,
    Voter,
)

logger = get_logger(__name__)


class ElectionEngine:
    """Single-administrator election with direct and delegated ballots."""

    def __init__(
        self,
        admin_identity: str,
        sinks: Iterable[EventSink] | None = None,
        delegation_mode: DelegationMode | str = DelegationMode.LITERAL,
    ) -> None:
        self.admin_identity = admin_identity
        self.delegation_mode = DelegationMode(delegation_mode)
        self._phase = Phase.SETUP
        # candidate id N lives at index N - 1
        self._candidates: list[Candidate] = []
        self._voters: dict[str, Voter] = {}
        # (last sequence before subscribing, sink)
        self._sinks: list[tuple[int, EventSink]] = [(0, sink) for sink in sinks or []]
        self._sinks_lock = threading.Lock()
        self._sequence = 0
        self._lock = threading.RLock()
        self._queue: queue.Queue[ElectionEvent | None] = queue.Queue()
        self._dispatcher: threading.Thread | None = None

    # ============================================
    # SINKS
    # ============================================

    def subscribe(self, sink: EventSink) -> None:
        """Register a sink for events accepted from now on."""
        with self._lock:
            with self._sinks_lock:
                self._sinks.append((self._sequence, sink))

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        # Called with the engine lock held: number and enqueue only.
        self._sequence += 1
        event = ElectionEvent(
            sequence=self._sequence, event_type=event_type, payload=payload
        )
        if self._dispatcher is None:
            self._dispatcher = threading.Thread(
                target=self._dispatch, name="election-events", daemon=True
            )
            self._dispatcher.start()
        self._queue.put(event)

    def _dispatch(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is None:
                    return
                self._deliver(event)
            finally:
                self._queue.task_done()

    def _deliver(self, event: ElectionEvent) -> None:
        with self._sinks_lock:
            sinks = [sink for since, sink in self._sinks if event.sequence > since]
        for sink in sinks:
            try:
                sink(event)
            except Exception:
                # Delivery is best effort; the operation is already applied.
                logger.exception(
                    f"Event sink {sink!r} failed on event #{event.sequence}"
                )

    def flush(self) -> None:
        """Block until every event accepted so far has reached the sinks."""
        self._queue.join()

    def close(self) -> None:
        """Deliver pending events and stop the dispatcher thread."""
        with self._lock:
            dispatcher, self._dispatcher = self._dispatcher, None
            if dispatcher is not None:
                self._queue.put(None)
        if dispatcher is not None:
            dispatcher.join()

    # ============================================
    # GUARDS
    # ============================================

    def _reject(self, operation: str, caller: str | None, error: ElectionError):
        logger.warning(
            f"Rejected {operation}: {error.message}",
            extra={
                "extra_fields": {
                    "operation": operation,
                    "caller": caller,
                    "error": error.code,
                    "phase": self._phase.value,
                }
            },
        )
        return error

    def _require_admin(self, operation: str, caller: str) -> None:
        if caller != self.admin_identity:
            raise self._reject(
                operation,
                caller,
                AuthorizationError(f"Only the administrator can {operation}"),
            )

    def _require_phase(self, operation: str, caller: str | None, expected: Phase):
        if self._phase == expected:
            return
        if expected == Phase.SETUP:
            message = "Election has already started"
        elif expected == Phase.VOTING and self._phase == Phase.SETUP:
            message = "Election has not started yet"
        elif expected == Phase.VOTING:
            message = "Election has already ended"
        else:
            message = "Election has not ended yet"
        raise self._reject(operation, caller, PhaseError(message, phase=self._phase))

    def _require_ballot(self, operation: str, caller: str) -> Voter:
        voter = self._voters.get(caller)
        if voter is None:
            raise self._reject(
                operation,
                caller,
                AuthorizationError(f"{caller} is not a registered voter"),
            )
        if voter.has_voted:
            raise self._reject(
                operation, caller, AlreadyVotedError(f"{caller} has already voted")
            )
        return voter

    def _candidate(self, candidate_id: int) -> Candidate:
        if (
            not isinstance(candidate_id, int)
            or isinstance(candidate_id, bool)
            or not 1 <= candidate_id <= len(self._candidates)
        ):
            raise InvalidCandidateError(candidate_id)
        return self._candidates[candidate_id - 1]

    # ============================================
    # SETUP
    # ============================================

    def add_candidate(self, caller: str, name: str, proposal: str) -> Candidate:
        """Register a candidate and return it with its assigned id."""
        with self._lock:
            self._require_admin("add_candidate", caller)
            self._require_phase("add_candidate", caller, Phase.SETUP)

            candidate = Candidate(
                id=len(self._candidates) + 1, name=name, proposal=proposal
            )
            self._candidates.append(candidate)
            logger.info(f"Candidate added: #{candidate.id} {name}")
            self._emit(EventType.CANDIDATE_ADDED, candidate_id=candidate.id)
            return candidate.model_copy()

    def add_voter(self, caller: str, identity: str) -> Voter:
        """Give ``identity`` the right to vote."""
        with self._lock:
            self._require_admin("add_voter", caller)
            self._require_phase("add_voter", caller, Phase.SETUP)
            if identity in self._voters:
                raise self._reject(
                    "add_voter",
                    caller,
                    AlreadyRegisteredError(f"{identity} is already registered"),
                )

            voter = Voter(is_registered=True, weight=1)
            self._voters[identity] = voter
            logger.info(f"Voter added: {identity}")
            self._emit(EventType.VOTER_ADDED, identity=identity)
            return voter.model_copy()

    def start_election(self, caller: str) -> None:
        with self._lock:
            self._require_admin("start_election", caller)
            self._require_phase("start_election", caller, Phase.SETUP)
            self._phase = Phase.VOTING
            logger.info(
                f"Election started with {len(self._candidates)} candidates "
                f"and {len(self._voters)} voters"
            )
            self._emit(EventType.ELECTION_STARTED)

    def end_election(self, caller: str) -> None:
        with self._lock:
            self._require_admin("end_election", caller)
            self._require_phase("end_election", caller, Phase.VOTING)
            self._phase = Phase.CLOSED
            logger.info("Election ended")
            self._emit(EventType.ELECTION_ENDED)

    # ============================================
    # BALLOTS
    # ============================================

    def vote(self, caller: str, candidate_id: int) -> Voter:
        """Cast the caller's ballot, plus any weight delegated to them."""
        with self._lock:
            self._require_phase("vote", caller, Phase.VOTING)
            voter = self._require_ballot("vote", caller)
            try:
                candidate = self._candidate(candidate_id)
            except InvalidCandidateError as e:
                raise self._reject("vote", caller, e) from None

            voter.has_voted = True
            voter.vote_target = candidate_id
            candidate.vote_count += voter.weight
            voter.weight = 0
            logger.info(f"Vote cast by {caller} for candidate #{candidate_id}")
            self._emit(EventType.VOTE_CAST, identity=caller, candidate_id=candidate_id)
            return voter.model_copy()

    def delegate(self, caller: str, target: str) -> Voter:
        """Route the caller's ballot through another registered voter."""
        with self._lock:
            self._require_phase("delegate", caller, Phase.VOTING)
            voter = self._require_ballot("delegate", caller)
            if target == caller:
                raise self._reject(
                    "delegate",
                    caller,
                    SelfDelegationError("Voters cannot delegate to themselves"),
                )
            if target not in self._voters:
                raise self._reject(
                    "delegate",
                    caller,
                    InvalidDelegateError(f"{target} is not a registered voter"),
                )

            if self.delegation_mode == DelegationMode.CHAIN:
                self._delegate_chain(caller, voter, target)
            else:
                self._delegate_literal(voter, target)

            logger.info(f"Vote delegated by {caller} to {target}")
            self._emit(EventType.VOTE_DELEGATED, identity=caller, target=target)
            return voter.model_copy()

    def _delegate_literal(self, voter: Voter, target: str) -> None:
        delegate = self._voters[target]
        voter.has_voted = True
        voter.delegate_to = target
        voter.weight = 0

        if delegate.has_voted:
            # A delegate who has not resolved to a candidate credits nobody
            if 1 <= delegate.vote_target <= len(self._candidates):
                self._candidates[delegate.vote_target - 1].vote_count += 1
        else:
            # Parked on the delegate; a later delegation to the same voter
            # overwrites it. A caller who has not voted never has a target of
            # their own in this mode, so the parked value is always 0.
            delegate.vote_target = voter.vote_target

    def _delegate_chain(self, caller: str, voter: Voter, target: str) -> None:
        final = target
        seen = {caller}
        while self._voters[final].delegate_to is not None:
            seen.add(final)
            final = self._voters[final].delegate_to
            if final in seen:
                break
        if final in seen:
            raise self._reject(
                "delegate",
                caller,
                DelegationLoopError(f"Delegating to {target} would form a loop"),
            )

        delegate = self._voters[final]
        weight = voter.weight
        voter.has_voted = True
        voter.delegate_to = target
        voter.weight = 0

        if delegate.has_voted:
            voter.vote_target = delegate.vote_target
            self._candidates[delegate.vote_target - 1].vote_count += weight
        else:
            delegate.weight += weight

    # ============================================
    # QUERIES
    # ============================================

    def get_candidate(self, candidate_id: int) -> Candidate:
        with self._lock:
            return self._candidate(candidate_id).model_copy()

    def get_results(self, candidate_id: int) -> CandidateResult:
        with self._lock:
            candidate = self._candidate(candidate_id)
            return CandidateResult(
                id=candidate.id, name=candidate.name, vote_count=candidate.vote_count
            )

    def list_candidates(self) -> list[Candidate]:
        with self._lock:
            return [candidate.model_copy() for candidate in self._candidates]

    def list_results(self) -> list[CandidateResult]:
        with self._lock:
            return [
                CandidateResult(id=c.id, name=c.name, vote_count=c.vote_count)
                for c in self._candidates
            ]

    def get_voter_details(self, identity: str) -> Voter:
        with self._lock:
            voter = self._voters.get(identity)
            return voter.model_copy() if voter is not None else Voter()

    def get_election(self) -> ElectionState:
        with self._lock:
            return ElectionState(
                phase=self._phase,
                candidate_count=len(self._candidates),
                voter_count=len(self._voters),
                delegation_mode=self.delegation_mode,
            )

    @property
    def phase(self) -> Phase:
        return self._phase

    def get_winner(self) -> Candidate:
        """
        Return the candidate with the most votes once the election is closed.

        Ties go to the lowest candidate id. With no candidates the zero-valued
        ``NO_WINNER`` record is returned.
        """
        with self._lock:
            self._require_phase("get_winner", None, Phase.CLOSED)
            if not self._candidates:
                return NO_WINNER.model_copy()

            winner = self._candidates[0]
            for candidate in self._candidates[1:]:
                if candidate.vote_count > winner.vote_count:
                    winner = candidate
            return winner.model_copy()

    # ============================================
    # SNAPSHOTS
    # ============================================

    def snapshot(self) -> ElectionSnapshot:
        with self._lock:
            return ElectionSnapshot(
                admin_identity=self.admin_identity,
                phase=self._phase,
                delegation_mode=self.delegation_mode,
                candidates=[c.model_copy() for c in self._candidates],
                voters={k: v.model_copy() for k, v in self._voters.items()},
                last_sequence=self._sequence,
            )

    @classmethod
    def from_snapshot(
        cls, snapshot: ElectionSnapshot, sinks: Iterable[EventSink] | None = None
    ) -> "ElectionEngine":
        """Rebuild an engine from a snapshot. Candidate ids must be dense."""
        for index, candidate in enumerate(snapshot.candidates, start=1):
            if candidate.id != index:
                raise ValueError(
                    f"Snapshot candidate ids are not dense: expected {index}, "
                    f"got {candidate.id}"
                )

        engine = cls(
            snapshot.admin_identity,
            sinks=sinks,
            delegation_mode=snapshot.delegation_mode,
        )
        engine._phase = snapshot.phase
        engine._candidates = [c.model_copy() for c in snapshot.candidates]
        engine._voters = {
            identity: voter.model_copy()
            for identity, voter in snapshot.voters.items()
            if voter.is_registered
        }
        engine._sequence = snapshot.last_sequence
        return engine
