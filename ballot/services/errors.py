"""Election engine errors.

Every error is a client-facing condition raised before any state changes.
"""

from ballot.services.models import Phase


class ElectionError(Exception):
    """Base class for rejected election operations."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        return type(self).__name__


class AuthorizationError(ElectionError):
    """Caller is not the administrator, or not a registered voter."""


class PhaseError(ElectionError):
    """Operation invoked outside the phase that permits it."""

    def __init__(self, message: str, phase: Phase | None = None) -> None:
        super().__init__(message)
        self.phase = phase


class AlreadyRegisteredError(ElectionError):
    """Voter identity was already registered."""


class AlreadyVotedError(ElectionError):
    """Voter already voted or delegated."""


class InvalidCandidateError(ElectionError):
    """Candidate id outside ``1..candidate_count``."""

    def __init__(self, candidate_id: int) -> None:
        super().__init__(f"Invalid candidate id: {candidate_id}")
        self.candidate_id = candidate_id


class InvalidDelegateError(ElectionError):
    """Delegation target is not a registered voter."""


class SelfDelegationError(ElectionError):
    """Voter tried to delegate to themself."""


class DelegationLoopError(InvalidDelegateError):
    """Following the delegation chain leads back to the delegator."""
