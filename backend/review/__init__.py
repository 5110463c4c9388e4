"""
Rentals Intake — Review Orchestrator

The review pipeline, run once per submission (and again on rescore):

  1. status → under_review             + status_changed event
  2. load application documents
  3. score (remote, local on failure)  + ai_review_completed event
  4. persist ReviewResult
  5. policy → next status              + workflow_decision event

Every step commits before the next. A failure after step 1 leaves the
application in under_review; rescore_application() is the way out.
"""
import logging
import time as _time

from sqlalchemy.orm import Session as DbSession

from backend.audit import (
    AI_REVIEW_COMPLETED, RESCORE_REQUESTED, STATUS_CHANGED, WORKFLOW_DECISION, record_event,
)
from backend.applications import get_application
from backend.db import ApplicationStatus, ReviewResult, Role, utcnow
from backend.documents import document_metadata
from backend.errors import InvalidTransition
from backend.policy import RESCORABLE, can_transition, decide_from_result
from backend.scoring import score_application

log = logging.getLogger(__name__)


def _applicant(app) -> dict:
    return {"name": app.applicant_name, "email": app.applicant_email, "phone": app.applicant_phone}


def _move(app, target: ApplicationStatus) -> ApplicationStatus:
    prior = ApplicationStatus(app.status)
    if not can_transition(prior, target):
        raise InvalidTransition(prior, target)
    app.status = target
    app.updated_at = utcnow()
    return prior


async def run_review_workflow(db: DbSession, application_id: str, actor_role: Role,
                              scorer=None) -> ReviewResult:
    """Score an application and advance its status. Returns the new ReviewResult."""
    t0 = _time.time()
    actor_role = Role(actor_role)
    app = get_application(db, application_id)

    # 1. Hold for review
    prior = _move(app, ApplicationStatus.UNDER_REVIEW)
    record_event(db, app.id, actor_role, STATUS_CHANGED,
                 {"from": prior.value, "status": ApplicationStatus.UNDER_REVIEW.value})

    # 2. Documents
    documents = [document_metadata(d) for d in app.documents]

    # 3. Score
    outcome = await score_application(documents, _applicant(app), scorer)
    payload = outcome.payload
    audit_meta = {"engine": outcome.engine, "fraudScore": payload.fraud_score,
                  "recommendedAction": payload.recommended_action,
                  "signals": payload.severity_counts(), "isAiGenerated": payload.is_ai_generated}
    if outcome.error:
        audit_meta["error"] = outcome.error
    record_event(db, app.id, actor_role, AI_REVIEW_COMPLETED, audit_meta)

    # 4. Persist result
    record = payload.to_record()
    result = ReviewResult(
        application_id=app.id,
        fraud_score=payload.fraud_score,
        summary=payload.summary,
        ai_notes=payload.ai_notes,
        signals=record["signals"],
        document_classifications=record["documentClassifications"],
        recommended_action=payload.recommended_action,
        confidence_level=payload.confidence_level,
        is_ai_generated=payload.is_ai_generated,
    )
    app.review_results.append(result)
    db.commit()

    # 5. Decide (event written even when the status stays under_review)
    next_status = decide_from_result(result)
    _move(app, next_status)
    record_event(db, app.id, actor_role, WORKFLOW_DECISION, {
        "fraudScore": result.fraud_score,
        "recommendedAction": result.recommended_action,
        "status": next_status.value,
        "reviewResultId": result.id,
        "note": "AI-suggested outcome; a reviewer can override it with a manual decision.",
    })

    log.info("[Review] %s → %s (score=%.2f, action=%s, engine=%s, %dms)",
             app.id, next_status.value, result.fraud_score, result.recommended_action,
             outcome.engine, round((_time.time() - t0) * 1000))
    return result


async def rescore_application(db: DbSession, application_id: str, actor_role: Role,
                              scorer=None, requested_by: str = None) -> ReviewResult:
    """Re-run the pipeline for an application that has not reached a final status."""
    app = get_application(db, application_id)
    current = ApplicationStatus(app.status)
    if current not in RESCORABLE:
        raise InvalidTransition(current, ApplicationStatus.UNDER_REVIEW,
                                f"Application is already {current.value}; only submitted or "
                                f"under_review applications can be rescored")
    record_event(db, app.id, Role(actor_role), RESCORE_REQUESTED,
                 {"priorStatus": current.value, "userId": requested_by})
    return await run_review_workflow(db, application_id, actor_role, scorer)
