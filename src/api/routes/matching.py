"""Matching routes."""

from fastapi import APIRouter, HTTPException
from loguru import logger

from src.jobs import scheduler
from src.matching import IntentDataError

matching_log = logger.bind(module="Matching")

router = APIRouter(prefix="/matching", tags=["Matching"])


@router.get("/status")
async def matching_status() -> dict:
    """Queue counts and number of eligible seekers."""
    components = await scheduler.get_components()
    stats = await components.queue.stats()
    return {
        "status": True,
        "eligible": await components.store.count_eligible(),
        "queue": {
            "pending": stats.pending,
            "processing": stats.processing,
            "failed": stats.failed,
        },
    }


@router.post("/run")
async def trigger_sweep() -> dict:
    """Manually run a full matching sweep."""
    matching_log.info("Manually triggering matching sweep...")
    components = await scheduler.get_components()
    summary = await components.engine.run_matching_sweep()
    return {
        "status": True,
        "run_id": summary.run_id,
        "seekers_processed": summary.seekers_processed,
        "candidates_considered": summary.candidates_considered,
        "standard_pairs": summary.standard_pairs,
        "triangles": summary.triangles,
        "users_removed_from_flow": summary.users_removed_from_flow,
        "seekers_failed": summary.seekers_failed,
        "duration_ms": summary.duration_ms,
    }


@router.get("/preview/{intent_id}")
async def preview_candidates(intent_id: int) -> dict:
    """Evaluate a seeker's candidates without locking or writing."""
    components = await scheduler.get_components()
    try:
        evaluations = await components.engine.find_candidate_matches(intent_id)
    except IntentDataError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return {
        "status": True,
        "intent_id": intent_id,
        "candidates": [
            {
                "target_intent_id": c.target_intent_id,
                "target_user_id": c.target_user_id,
                "compatible": c.compatible,
                "rejection_step": c.rejection_step,
                "rejection_reason": c.rejection_reason,
                "steps": [s.to_dict() for s in c.evaluation.steps],
            }
            for c in evaluations
        ],
    }
