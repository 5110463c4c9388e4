"""
Rentals Intake — Application Store

Intake validation, persistence and API records for rental applications.

  create_application()      → application + documents + application_submitted event
  get_application()         → row or ApplicationNotFound
  list_applications()       → newest first, optional status filter, paginated
  list_for_user()           → an applicant's own applications
  record_manual_decision()  → human override to approved/flagged + manual_decision event

Review results and audit events are append-only; nothing here deletes rows.
"""
import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session as DbSession, selectinload

from backend.audit import APPLICATION_SUBMITTED, MANUAL_DECISION, audit_to_record, record_event
from backend.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MAX_DECISION_NOTES
from backend.db import Application, ApplicationStatus, Document, ReviewResult, Role, User, utcnow
from backend.documents import DocumentInput, document_to_record
from backend.errors import ApplicationNotFound, InvalidTransition
from backend.policy import can_transition

log = logging.getLogger(__name__)


# ============================================================
# INTAKE SCHEMAS
# ============================================================
class ApplicationInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    applicant_name: str = Field(alias="applicantName", min_length=2, max_length=200)
    applicant_email: EmailStr = Field(alias="applicantEmail")
    applicant_phone: Optional[str] = Field(default=None, alias="applicantPhone", max_length=50)
    documents: list[DocumentInput] = Field(min_length=1)


class DecisionInput(BaseModel):
    decision: Literal["approved", "flagged"]
    notes: Optional[str] = Field(default=None, max_length=MAX_DECISION_NOTES)


# ============================================================
# WRITES
# ============================================================
def create_application(db: DbSession, data: ApplicationInput, actor: User) -> Application:
    """Persist a submitted application with its document metadata.
    An applicant's submission is linked to their account."""
    role = Role(actor.role)
    app = Application(
        applicant_name=data.applicant_name,
        applicant_email=str(data.applicant_email),
        applicant_phone=data.applicant_phone or None,
        applicant_id=actor.id if role == Role.APPLICANT else None,
        status=ApplicationStatus.SUBMITTED,
    )
    app.documents = [
        Document(filename=d.filename, mime_type=d.mime_type, size_bytes=d.size_bytes,
                 position=i, storage_url=None)
        for i, d in enumerate(data.documents)
    ]
    db.add(app)
    db.flush()
    record_event(db, app.id, role, APPLICATION_SUBMITTED,
                 {"documentCount": len(data.documents), "userId": actor.id}, commit=False)
    db.commit()
    log.info("[Intake] Application %s submitted by %s (%d documents)", app.id, role.value, len(data.documents))
    return app


def record_manual_decision(db: DbSession, application: Application, data: DecisionInput,
                           user: User) -> Application:
    """Human override. Overwrites status only; prior review results and events stay."""
    target = ApplicationStatus(data.decision)
    prior = ApplicationStatus(application.status)
    if not can_transition(prior, target, manual=True):
        raise InvalidTransition(prior, target)

    latest = latest_review(db, application.id)
    application.status = target
    application.updated_at = utcnow()
    record_event(db, application.id, Role(user.role), MANUAL_DECISION, {
        "priorStatus": prior.value,
        "priorAiAction": latest.recommended_action if latest else None,
        "decision": target.value,
        "notes": data.notes,
        "userId": user.id,
        "userName": user.name,
    }, commit=False)
    db.commit()
    log.info("[Decision] %s: %s → %s by %s", application.id, prior.value, target.value, user.email)
    return application


# ============================================================
# READS
# ============================================================
def get_application(db: DbSession, application_id: str) -> Application:
    app = db.get(Application, application_id)
    if app is None:
        raise ApplicationNotFound(application_id)
    return app


def latest_review(db: DbSession, application_id: str) -> Optional[ReviewResult]:
    return db.scalar(select(ReviewResult)
                     .where(ReviewResult.application_id == application_id)
                     .order_by(ReviewResult.id.desc()).limit(1))


def list_reviews(db: DbSession, application_id: str) -> list:
    """All review results for an application, newest first."""
    return list(db.scalars(select(ReviewResult)
                           .where(ReviewResult.application_id == application_id)
                           .order_by(ReviewResult.id.desc())))


def parse_status_filter(status: Optional[str]) -> Optional[ApplicationStatus]:
    """Known status values filter the list; anything else is ignored."""
    try:
        return ApplicationStatus(status) if status else None
    except ValueError:
        return None


def list_applications(db: DbSession, status: Optional[str] = None,
                      limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> dict:
    limit = min(MAX_PAGE_SIZE, limit) if limit and limit > 0 else DEFAULT_PAGE_SIZE
    offset = max(0, offset or 0)
    status_filter = parse_status_filter(status)

    q = select(Application)
    count_q = select(func.count()).select_from(Application)
    if status_filter is not None:
        q = q.where(Application.status == status_filter)
        count_q = count_q.where(Application.status == status_filter)

    rows = list(db.scalars(
        q.options(selectinload(Application.documents), selectinload(Application.review_results))
         .order_by(Application.created_at.desc()).limit(limit).offset(offset)))
    total = db.scalar(count_q)
    return {
        "applications": [application_summary(a) for a in rows],
        "pagination": {"total": total, "limit": limit, "offset": offset,
                       "hasMore": offset + len(rows) < total},
    }


def list_for_user(db: DbSession, user: User) -> list:
    """Applications linked to the user's account or filed under their email."""
    q = (select(Application)
         .where(or_(Application.applicant_id == user.id,
                    func.lower(Application.applicant_email) == (user.email or "").lower()))
         .options(selectinload(Application.documents), selectinload(Application.review_results))
         .order_by(Application.created_at.desc()))
    return list(db.scalars(q))


# ============================================================
# RECORDS
# ============================================================
def review_to_record(r: ReviewResult) -> dict:
    return {
        "id": r.id,
        "applicationId": r.application_id,
        "fraudScore": r.fraud_score,
        "summary": r.summary,
        "aiNotes": r.ai_notes,
        "signals": r.signals or [],
        "documentClassifications": r.document_classifications or [],
        "recommendedAction": r.recommended_action,
        "confidenceLevel": r.confidence_level,
        "isAiGenerated": r.is_ai_generated,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }


def _review_brief(r: Optional[ReviewResult]) -> Optional[dict]:
    if r is None:
        return None
    return {"fraudScore": r.fraud_score, "summary": r.summary,
            "recommendedAction": r.recommended_action,
            "confidenceLevel": r.confidence_level, "isAiGenerated": r.is_ai_generated}


def _base_record(app: Application) -> dict:
    return {
        "id": app.id,
        "applicantName": app.applicant_name,
        "applicantEmail": app.applicant_email,
        "applicantPhone": app.applicant_phone,
        "applicantId": app.applicant_id,
        "status": ApplicationStatus(app.status).value,
        "createdAt": app.created_at.isoformat() if app.created_at else None,
        "updatedAt": app.updated_at.isoformat() if app.updated_at else None,
    }


def application_summary(app: Application) -> dict:
    """List view: document metadata and the latest review in brief."""
    rec = _base_record(app)
    rec["documents"] = [
        {"id": d.id, "filename": d.filename, "mimeType": d.mime_type, "sizeBytes": d.size_bytes}
        for d in app.documents
    ]
    rec["latestReview"] = _review_brief(app.review_results[-1] if app.review_results else None)
    return rec


def application_to_record(app: Application, review: Optional[ReviewResult] = None,
                          audit_events: Optional[list] = None) -> dict:
    """Detail view: documents, latest review in full and, when given, recent audit events."""
    rec = _base_record(app)
    rec["documents"] = [document_to_record(d) for d in app.documents]
    rec["latestReview"] = review_to_record(review) if review else None
    if audit_events is not None:
        rec["auditEvents"] = [audit_to_record(ev) for ev in audit_events]
    return rec
