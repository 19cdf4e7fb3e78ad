"""
Matching module for housing exchanges.

This module provides compatibility checks, STANDARD (reciprocal) and
TRIANGLE (3-cycle) match formation, and the distributed enqueue/worker
machinery that runs them.
"""

from src.matching.checks import (
    CheckResult,
    CheckStep,
    DateTolerance,
    Direction,
    EdgeEvaluation,
    StepLog,
    accepts,
    evaluate_edge,
    evaluate_reciprocal,
    haversine_distance,
)
from src.matching.engine import MatchingEngine, SeekerResult
from src.matching.errors import (
    CreditInvariantError,
    DuplicateMatchError,
    FormationTimeoutError,
    IntentDataError,
    InvariantViolation,
    LockContentionError,
    MatchIntegrityError,
    MatchingError,
    NotEligibleError,
    PermanentMatchingError,
    TransientMatchingError,
    TriangleReuseError,
)
from src.matching.leases import LeasedClaim, RedisLeasedClaim, intent_claim_key
from src.matching.ledger import CreditLedger
from src.matching.maintenance import MaintenanceReport, MatchingMaintenance
from src.matching.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    RedisNotificationOutbox,
)
from src.matching.queue import QueueStats, RedisWorkQueue, WorkItem, WorkQueue
from src.matching.store import MatchingStore, MatchingTransaction, PostgresMatchingStore
from src.matching.tracing import (
    CandidateEvaluation,
    FinalResult,
    MatchEvaluationLog,
    MatchTracer,
    SweepSummary,
)
from src.matching.worker import MatchingEnqueuer, MatchingWorker, WorkerResult, WorkerStatus

__all__ = [
    # Checks
    "CheckResult",
    "CheckStep",
    "DateTolerance",
    "Direction",
    "EdgeEvaluation",
    "StepLog",
    "accepts",
    "evaluate_edge",
    "evaluate_reciprocal",
    "haversine_distance",
    # Tracing
    "CandidateEvaluation",
    "FinalResult",
    "MatchEvaluationLog",
    "MatchTracer",
    "SweepSummary",
    # Errors
    "MatchingError",
    "TransientMatchingError",
    "LockContentionError",
    "FormationTimeoutError",
    "PermanentMatchingError",
    "IntentDataError",
    "MatchIntegrityError",
    "InvariantViolation",
    "NotEligibleError",
    "DuplicateMatchError",
    "CreditInvariantError",
    "TriangleReuseError",
    # Collaborators
    "MatchingStore",
    "MatchingTransaction",
    "PostgresMatchingStore",
    "CreditLedger",
    "NotificationSink",
    "LoggingNotificationSink",
    "RedisNotificationOutbox",
    "LeasedClaim",
    "RedisLeasedClaim",
    "intent_claim_key",
    "WorkQueue",
    "WorkItem",
    "QueueStats",
    "RedisWorkQueue",
    # Engine
    "MatchingEngine",
    "SeekerResult",
    "MatchingEnqueuer",
    "MatchingWorker",
    "WorkerResult",
    "WorkerStatus",
    "MatchingMaintenance",
    "MaintenanceReport",
]
