"""
Matching Errors.

Exception hierarchy of the matching engine. Every error carries a short
``code`` used in logs, worker results and rollback reasons.
"""

from typing import Optional


class MatchingError(Exception):
    """Base error of the matching engine."""

    code = "MATCHING_ERROR"

    def __init__(self, message: str = "", *, intent_id: Optional[int] = None):
        super().__init__(message or self.code)
        self.intent_id = intent_id


# ========== Transient (retried with backoff) ==========


class TransientMatchingError(MatchingError):
    """Temporary failure: lock conflicts, timeouts, lost connections."""

    code = "TRANSIENT"


class LockContentionError(TransientMatchingError):
    """A row or advisory lock could not be acquired."""

    code = "LOCK_CONTENTION"


class FormationTimeoutError(TransientMatchingError):
    """A formation transaction exceeded its timeout."""

    code = "FORMATION_TIMEOUT"


# ========== Permanent (item marked failed) ==========


class PermanentMatchingError(MatchingError):
    """Failure that a retry cannot fix."""

    code = "PERMANENT"


class IntentDataError(PermanentMatchingError):
    """Intent references a missing or incomplete Home/Search."""

    code = "INTENT_DATA"


class MatchIntegrityError(PermanentMatchingError):
    """Persisted match row with a missing or invalid type/snapshot."""

    code = "MATCH_INTEGRITY"


# ========== Invariant violations (single formation rolled back) ==========


class InvariantViolation(MatchingError):
    """A formation precondition no longer holds under lock."""

    code = "INVARIANT"


class NotEligibleError(InvariantViolation):
    """A party is no longer eligible (out of flow, no credits)."""

    code = "NOT_ELIGIBLE"


class DuplicateMatchError(InvariantViolation):
    """An active match already exists on one of the edges."""

    code = "DUPLICATE_MATCH"


class CreditInvariantError(InvariantViolation):
    """Consuming credits would leave a negative or unbalanced counter."""

    code = "CREDIT_INVARIANT"


class TriangleReuseError(InvariantViolation):
    """A participant was already used by another triangle in this run."""

    code = "TRIANGLE_REUSE"
