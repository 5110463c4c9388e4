"""
Rentals Intake — Audit Trail
Append-only AuditEvent writes. Events are never updated or deleted.
"""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session as DbSession

from backend.db import AuditEvent, Role

log = logging.getLogger(__name__)

# ============================================================
# ACTION CODES
# ============================================================
APPLICATION_SUBMITTED = "application_submitted"
STATUS_CHANGED = "status_changed"
AI_REVIEW_COMPLETED = "ai_review_completed"
WORKFLOW_DECISION = "workflow_decision"
MANUAL_DECISION = "manual_decision"
RESCORE_REQUESTED = "rescore_requested"


def record_event(db: DbSession, application_id: str, actor_role: Role, action: str,
                 metadata: dict = None, commit: bool = True) -> AuditEvent:
    """Append one audit event for an application."""
    ev = AuditEvent(application_id=application_id, actor_role=Role(actor_role),
                    action=action, event_metadata=metadata or {})
    db.add(ev)
    if commit:
        db.commit()
    else:
        db.flush()
    log.info("[Audit] %s → %s (%s)", application_id, action, Role(actor_role).value)
    return ev


def list_events(db: DbSession, application_id: str, limit: int = None, newest_first: bool = False) -> list:
    q = select(AuditEvent).where(AuditEvent.application_id == application_id)
    q = q.order_by(AuditEvent.id.desc() if newest_first else AuditEvent.id)
    if limit:
        q = q.limit(limit)
    return list(db.scalars(q))


def audit_to_record(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "applicationId": ev.application_id,
        "actorRole": Role(ev.actor_role).value,
        "action": ev.action,
        "metadata": ev.event_metadata or {},
        "createdAt": ev.created_at.isoformat() if ev.created_at else None,
    }
