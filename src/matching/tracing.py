"""
Matching run tracing.

A MatchTracer is created per run (sweep or worker item). It owns the run id,
decides which evaluations are logged (debug mode or a traced user pair),
keeps the evaluations it logged and builds the end-of-run summary.
"""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from loguru import logger

from config.settings import MatchingSettings
from src.matching.checks import EdgeEvaluation, StepLog
from src.modules.intents.models import Intent


class FinalResult(str, Enum):
    """Final outcome of a pair evaluation."""

    MATCH_CREATED = "MATCH_CREATED"
    REJECTED = "REJECTED"
    COMPATIBLE = "COMPATIBLE"


@dataclass
class MatchEvaluationLog:
    """Evaluation of one seeker/target pair within a run."""

    run_id: str
    seeker_intent_id: int
    seeker_user_id: int
    target_intent_id: int
    target_user_id: int
    steps: list[StepLog] = field(default_factory=list)
    final_result: FinalResult = FinalResult.REJECTED
    rejection_step: Optional[str] = None
    rejection_reason: Optional[str] = None


@dataclass
class CandidateEvaluation:
    """Read-only evaluation of a candidate, as returned by a preview."""

    target_intent_id: int
    target_user_id: int
    evaluation: EdgeEvaluation

    @property
    def compatible(self) -> bool:
        return self.evaluation.passed

    @property
    def rejection_step(self) -> Optional[str]:
        rejection = self.evaluation.rejection
        return rejection.step.value if rejection else None

    @property
    def rejection_reason(self) -> Optional[str]:
        rejection = self.evaluation.rejection
        return rejection.reason if rejection else None


@dataclass
class SweepSummary:
    """Counters of a matching run."""

    run_id: str
    seekers_processed: int = 0
    candidates_considered: int = 0
    standard_rows_created: int = 0
    triangle_rows_created: int = 0
    users_removed_from_flow: int = 0
    seekers_failed: int = 0
    duration_ms: int = 0
    # seeker intent id -> last rejection reason, for seekers with no match
    unmatched_reasons: dict[int, str] = field(default_factory=dict)

    @property
    def standard_pairs(self) -> int:
        return self.standard_rows_created // 2

    @property
    def triangles(self) -> int:
        return self.triangle_rows_created // 3

    @property
    def total_rows(self) -> int:
        return self.standard_rows_created + self.triangle_rows_created


def new_run_id() -> str:
    """
    Generate a run id: UTC timestamp + short random suffix.

    Examples:
        >>> new_run_id()  # doctest: +SKIP
        '20260301T120000-3fa2c1'
    """
    return f"{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S')}-{secrets.token_hex(3)}"


class MatchTracer:
    """Structured logger for one matching run."""

    def __init__(self, settings: MatchingSettings, run_id: Optional[str] = None):
        """
        Initialize tracer.

        Args:
            settings: Matching settings (debug flag and traced pair)
            run_id: Existing run id, generated when omitted
        """
        self.run_id = run_id or new_run_id()
        self.debug = settings.debug
        self.trace_user_a = settings.trace_user_a
        self.trace_user_b = settings.trace_user_b
        self.evaluations: list[MatchEvaluationLog] = []
        self.log = logger.bind(module="Matching", run_id=self.run_id)
        self._started = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def should_trace_pair(self, user_a: int, user_b: int) -> bool:
        """True when (user_a, user_b) is the configured pair, in either order."""
        if self.trace_user_a is None or self.trace_user_b is None:
            return False
        return {user_a, user_b} == {self.trace_user_a, self.trace_user_b}

    def is_logged(self, seeker: Intent, target: Intent) -> bool:
        return self.debug or self.should_trace_pair(seeker.user_id, target.user_id)

    def log_step(self, seeker_intent_id: int, target_intent_id: int, step: StepLog) -> None:
        """Log one step at INFO."""
        status = "PASS" if step.passed else "FAIL"
        details = ", ".join(f"{k}={v!r}" for k, v in step.details.items() if k != "zones_checked")
        self.log.info(
            f"[{self.run_id}] Seeker={seeker_intent_id} Target={target_intent_id} "
            f"{step.step.value}/{step.direction.value}: {status} - {step.reason} ({details})"
        )

    def record_evaluation(
        self,
        seeker: Intent,
        target: Intent,
        evaluation: EdgeEvaluation,
        final_result: FinalResult,
    ) -> Optional[MatchEvaluationLog]:
        """
        Log and keep an evaluation when debug is on or the pair is traced.

        Returns:
            The retained log, or None when the pair is not logged
        """
        if not self.is_logged(seeker, target):
            return None

        for step in evaluation.steps:
            self.log_step(seeker.id, target.id, step)

        rejection = evaluation.rejection
        entry = MatchEvaluationLog(
            run_id=self.run_id,
            seeker_intent_id=seeker.id,
            seeker_user_id=seeker.user_id,
            target_intent_id=target.id,
            target_user_id=target.user_id,
            steps=list(evaluation.steps),
            final_result=final_result,
            rejection_step=rejection.step.value if rejection else None,
            rejection_reason=rejection.reason if rejection else None,
        )
        self.evaluations.append(entry)
        return entry

    def log_transaction(
        self,
        event: Literal["START", "COMMIT", "ROLLBACK"],
        intent_ids: list[int],
        **details: Any,
    ) -> None:
        """Log formation transaction events."""
        extra = ", ".join(f"{k}={v}" for k, v in details.items())
        message = f"[{self.run_id}][TX] {event} intents={intent_ids}"
        if extra:
            message = f"{message} {extra}"
        if event == "ROLLBACK":
            self.log.warning(message)
        elif self.debug:
            self.log.info(message)
        else:
            self.log.debug(message)

    def log_match_created(
        self, match_id: int, seeker_intent_id: int, target_intent_id: int, target_home_id: int
    ) -> None:
        self.log.info(
            f"[{self.run_id}] MATCH CREATED #{match_id}: Seeker={seeker_intent_id} "
            f"-> Home={target_home_id} (owner Intent={target_intent_id})"
        )

    def log_summary(self, summary: SweepSummary) -> None:
        """Log the end-of-run summary."""
        self.log.info(
            f"[{summary.run_id}] Run summary: seekers={summary.seekers_processed}, "
            f"candidates={summary.candidates_considered}, "
            f"standard={summary.standard_pairs} pairs ({summary.standard_rows_created} rows), "
            f"triangle={summary.triangles} ({summary.triangle_rows_created} rows), "
            f"removed_from_flow={summary.users_removed_from_flow}, "
            f"failed={summary.seekers_failed}, duration={summary.duration_ms}ms"
        )
        for intent_id, reason in sorted(summary.unmatched_reasons.items()):
            self.log.info(f"[{summary.run_id}] Unmatched seeker {intent_id}: {reason}")
