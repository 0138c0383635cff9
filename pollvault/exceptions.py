"""
pollvault/exceptions.py
Typed domain exceptions for the voting core.

Validation failures are recoverable: the caller fixes the input and
retries. IntegrityMismatchError is kept on its own branch because it means
stored data was altered outside the ledger, not that a user made a mistake.
"""
from typing import Any, Dict, Optional


class VotingError(Exception):
    """Base exception for pollvault. Carries a machine-readable code."""
    status_code: int = 400
    code: str = "VOTING_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, status_code: int = None):
        self.message = message
        self.details = details or {}
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# ---------------------------------------------------------------------------
# Ballot rejection reasons, in validator order
# ---------------------------------------------------------------------------

class BallotRejectedError(VotingError):
    """A ballot failed one of the submission preconditions."""
    code = "BALLOT_REJECTED"


class OutOfWindowError(BallotRejectedError):
    """Poll window closed/not yet open, or event no longer accepts ballots."""
    code = "OUT_OF_WINDOW"
    status_code = 403


class RoleNotAllowedError(BallotRejectedError):
    code = "ROLE_NOT_ALLOWED"
    status_code = 403


class SequenceViolationError(BallotRejectedError):
    """Judge ballot on a voters_first poll before the voter phase completed."""
    code = "SEQUENCE_VIOLATION"
    status_code = 403


class UnknownVoterError(BallotRejectedError):
    code = "UNKNOWN_VOTER"
    status_code = 403


class SelfVoteForbiddenError(BallotRejectedError):
    code = "SELF_VOTE_FORBIDDEN"


class InvalidBallotShapeError(BallotRejectedError):
    code = "INVALID_BALLOT_SHAPE"


class ConcurrentSubmissionError(BallotRejectedError):
    """Another ballot for the same member committed first; safe to retry."""
    code = "CONCURRENT_SUBMISSION"
    status_code = 409


# ---------------------------------------------------------------------------
# Lifecycle and configuration
# ---------------------------------------------------------------------------

class StatusTransitionDeniedError(VotingError):
    """Manual status change blocked by a named guard."""
    code = "STATUS_TRANSITION_DENIED"
    status_code = 409

    def __init__(self, message: str, guard: str, details: Optional[Dict[str, Any]] = None):
        self.guard = guard
        merged = {"guard": guard}
        merged.update(details or {})
        super().__init__(message, merged)


class NotFoundError(VotingError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidConfigurationError(VotingError):
    code = "INVALID_CONFIGURATION"


class ResultsNotPublicError(VotingError):
    """The poll's results are visible to organizers only."""
    code = "RESULTS_NOT_PUBLIC"
    status_code = 403


class TieBreakerConflictError(VotingError):
    """A tied entry already belongs to an active tie-breaker of the same poll."""
    code = "TIE_BREAKER_CONFLICT"
    status_code = 409


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------

class IntegrityError(VotingError):
    """Base for ledger failures. Never caught and retried with new data."""
    code = "INTEGRITY_ERROR"
    status_code = 409


class IntegrityMismatchError(IntegrityError):
    """Stored payload no longer hashes to the stored commitment hash."""
    code = "INTEGRITY_MISMATCH"

    def __init__(self, commitment_id: int, stored_hash: str, recomputed_hash: str):
        self.commitment_id = commitment_id
        self.stored_hash = stored_hash
        self.recomputed_hash = recomputed_hash
        super().__init__(
            f"Commitment {commitment_id} hash mismatch - data may have been tampered with",
            {
                "commitment_id": commitment_id,
                "stored_hash": stored_hash,
                "recomputed_hash": recomputed_hash,
            },
        )


class ExternalReferenceLockedError(IntegrityError):
    """tx_ref/block_ref already recorded for this commitment."""
    code = "EXTERNAL_REFERENCE_LOCKED"


class SubmissionsLockedError(VotingError):
    """The event stopped accepting team submissions."""
    code = "SUBMISSIONS_LOCKED"
    status_code = 409
