import pytest
from sqlalchemy import select

from backend.applications import ApplicationInput, create_application
from backend.db import Application, ApplicationStatus, AuditEvent, ReviewResult, Role, User
from backend.errors import ApplicationNotFound, InvalidTransition, ScoringServiceError
from backend.review import rescore_application, run_review_workflow
from tests.conftest import StubScorer, application_body


@pytest.fixture
def submitter(db_session):
    user = User(email="jane@example.com", name="Jane Doe", password_hash="x", role=Role.APPLICANT)
    db_session.add(user)
    db_session.commit()
    return user


def new_application(db, user, *filenames):
    data = ApplicationInput.model_validate(application_body(*filenames))
    return create_application(db, data, user)


def actions(db, application_id):
    return list(db.scalars(select(AuditEvent.action)
                           .where(AuditEvent.application_id == application_id)
                           .order_by(AuditEvent.id)))


@pytest.mark.asyncio
async def test_workflow_writes_each_step(db_session, submitter):
    app = new_application(db_session, submitter, "id_card.png", "paystub_march.pdf", "offer_letter.pdf")
    assert app.status == ApplicationStatus.SUBMITTED
    assert app.applicant_id == submitter.id

    result = await run_review_workflow(db_session, app.id, Role.APPLICANT)

    assert result.fraud_score == pytest.approx(0.1)
    assert result.recommended_action == "approve"
    assert db_session.get(Application, app.id).status == ApplicationStatus.APPROVED
    assert actions(db_session, app.id) == [
        "application_submitted", "status_changed", "ai_review_completed", "workflow_decision"]

    events = {e.action: e for e in db_session.scalars(select(AuditEvent).where(AuditEvent.application_id == app.id))}
    assert events["status_changed"].event_metadata["status"] == "under_review"
    assert events["ai_review_completed"].event_metadata["engine"] == "local"
    decision = events["workflow_decision"].event_metadata
    assert decision["status"] == "approved"
    assert decision["recommendedAction"] == "approve"
    assert "override" in decision["note"]
    assert all(e.actor_role == Role.APPLICANT for e in events.values())


@pytest.mark.asyncio
async def test_decision_event_written_when_status_stays_under_review(db_session, submitter):
    app = new_application(db_session, submitter, "passport.pdf")
    await run_review_workflow(db_session, app.id, Role.APPLICANT)
    assert app.status == ApplicationStatus.UNDER_REVIEW
    assert actions(db_session, app.id)[-1] == "workflow_decision"


@pytest.mark.asyncio
async def test_remote_result_drives_the_decision(db_session, submitter):
    stub = StubScorer({"fraudScore": 0.82, "recommendedAction": "approve", "summary": "Mismatched names",
                       "signals": [{"code": "name_mismatch", "severity": "high"}]})
    app = new_application(db_session, submitter, "passport.pdf", "paystub.pdf", "offer.pdf")
    result = await run_review_workflow(db_session, app.id, Role.APPLICANT, stub)
    assert result.is_ai_generated is True
    assert result.signals[0]["code"] == "name_mismatch"
    assert app.status == ApplicationStatus.FLAGGED
    assert stub.calls[0]["documents"][0] == {"filename": "passport.pdf", "mimeType": "application/pdf",
                                             "sizeBytes": 120_000}


@pytest.mark.asyncio
async def test_scoring_failure_falls_back_and_is_audited(db_session, submitter):
    stub = StubScorer(exc=ScoringServiceError("APIConnectionError: Connection error."))
    app = new_application(db_session, submitter, "passport.pdf")
    result = await run_review_workflow(db_session, app.id, Role.APPLICANT, stub)
    assert result.is_ai_generated is False
    ev = db_session.scalar(select(AuditEvent).where(AuditEvent.application_id == app.id,
                                                    AuditEvent.action == "ai_review_completed"))
    assert ev.event_metadata["engine"] == "local_fallback"
    assert "Connection error" in ev.event_metadata["error"]


@pytest.mark.asyncio
async def test_unknown_application(db_session):
    with pytest.raises(ApplicationNotFound):
        await run_review_workflow(db_session, "does-not-exist", Role.ADMIN)


@pytest.mark.asyncio
async def test_rescore_appends_a_new_result(db_session, submitter):
    app = new_application(db_session, submitter, "passport.pdf")
    first = await run_review_workflow(db_session, app.id, Role.APPLICANT)
    second = await rescore_application(db_session, app.id, Role.REVIEWER,
                                       StubScorer({"fraudScore": 0.1, "recommendedAction": "approve"}))
    assert second.id != first.id
    assert app.status == ApplicationStatus.APPROVED
    assert len(list(db_session.scalars(select(ReviewResult).where(ReviewResult.application_id == app.id)))) == 2
    assert "rescore_requested" in actions(db_session, app.id)


@pytest.mark.asyncio
async def test_rescore_rejected_once_decided(db_session, submitter):
    app = new_application(db_session, submitter, "id_card.png", "paystub_march.pdf", "offer_letter.pdf")
    await run_review_workflow(db_session, app.id, Role.APPLICANT)
    before = actions(db_session, app.id)
    with pytest.raises(InvalidTransition):
        await rescore_application(db_session, app.id, Role.REVIEWER)
    assert actions(db_session, app.id) == before


@pytest.mark.asyncio
async def test_review_event_counts_signals_by_severity(db_session, submitter):
    app = new_application(db_session, submitter, "passport.pdf")
    await run_review_workflow(db_session, app.id, Role.APPLICANT)
    ev = db_session.scalar(select(AuditEvent).where(AuditEvent.application_id == app.id,
                                                    AuditEvent.action == "ai_review_completed"))
    assert ev.event_metadata["signals"] == {"low": 0, "medium": 1, "high": 1}
