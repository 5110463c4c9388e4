"""
Rentals Intake — Rental Application Intake & Review API
v1.2: document-metadata fraud scoring (Claude with rule-based fallback),
        three-way decision policy, append-only audit trail, reviewer overrides
"""

import hmac
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session as DbSession

from backend.config import (
    ADMIN_SECRET, CORS_ORIGINS, DEFAULT_PAGE_SIZE, LOG_LEVEL, RECENT_AUDIT_EVENTS,
    SERVICE_NAME, USE_REAL_API, VERSION,
)
from backend.db import Role, User, get_db, init_db, make_engine, make_session_factory
from backend.auth import (
    CreateUserInput, LoginInput, SignupInput,
    authenticate, can_view_application, clear_session_cookie, create_session, create_user,
    delete_session, get_current_user, require_role, set_session_cookie, token_from_request,
    user_to_record,
)
from backend.applications import (
    ApplicationInput, DecisionInput,
    application_summary, application_to_record, create_application, get_application,
    latest_review, list_applications, list_for_user, list_reviews, record_manual_decision,
    review_to_record,
)
from backend.audit import audit_to_record, list_events
from backend.errors import ApplicationNotFound, InvalidTransition
from backend.review import rescore_application, run_review_workflow
from backend.scoring import default_scorer

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

REVIEWERS = require_role(Role.REVIEWER, Role.ADMIN)
SUBMITTERS = require_role(Role.APPLICANT, Role.ADMIN)


def _load(db: DbSession, application_id: str):
    try:
        return get_application(db, application_id)
    except ApplicationNotFound:
        raise HTTPException(404, "Application not found")


def _int_param(value: Optional[str], default: int) -> int:
    # query strings that are not integers fall back to the default
    try:
        return int(value) if value not in (None, "") else default
    except ValueError:
        return default


# ============================================================
# HEALTH
# ============================================================
@router.get("/health")
async def health(request: Request):
    return {"status": "ok", "service": SERVICE_NAME, "version": VERSION,
            "scoring": "remote" if request.app.state.scorer is not None else "local"}


# ============================================================
# AUTH
# ============================================================
@router.post("/auth/signup", status_code=201)
async def signup(body: SignupInput, response: Response, db: DbSession = Depends(get_db)):
    user = create_user(db, str(body.email), body.password, body.name, Role.APPLICANT)
    token = create_session(db, user)
    set_session_cookie(response, token)
    return {"user": user_to_record(user), "token": token}

@router.post("/auth/login")
async def login(body: LoginInput, response: Response, db: DbSession = Depends(get_db)):
    user = authenticate(db, str(body.email), body.password)
    token = create_session(db, user)
    set_session_cookie(response, token)
    log.info("[Auth] %s logged in", user.email)
    return {"user": user_to_record(user), "token": token}

@router.post("/auth/logout")
async def logout(request: Request, response: Response, db: DbSession = Depends(get_db)):
    token = token_from_request(request)
    if token:
        delete_session(db, token)
    clear_session_cookie(response)
    return {"success": True}

@router.get("/auth/me")
async def me(user: User = Depends(get_current_user)):
    return {"user": user_to_record(user)}

@router.post("/auth/create-user", status_code=201)
async def create_user_with_role(body: CreateUserInput, db: DbSession = Depends(get_db)):
    if not hmac.compare_digest(body.admin_secret.encode(), ADMIN_SECRET.encode()):
        raise HTTPException(403, "Invalid admin secret")
    user = create_user(db, str(body.email), body.password, body.name, body.role)
    return {"user": user_to_record(user)}


# ============================================================
# APPLICATIONS
# ============================================================
@router.post("/applications", status_code=201)
async def submit_application(body: ApplicationInput, request: Request,
                             user: User = Depends(SUBMITTERS), db: DbSession = Depends(get_db)):
    app = create_application(db, body, user)
    await run_review_workflow(db, app.id, Role(user.role), request.app.state.scorer)
    return {"application": application_to_record(app, latest_review(db, app.id))}

@router.get("/applications")
async def list_all(status: Optional[str] = None, limit: Optional[str] = None, offset: Optional[str] = None,
                   user: User = Depends(REVIEWERS), db: DbSession = Depends(get_db)):
    return list_applications(db, status=status, limit=_int_param(limit, DEFAULT_PAGE_SIZE),
                             offset=_int_param(offset, 0))

router.add_api_route("/applications/list", list_all, methods=["GET"])

@router.get("/applications/mine")
async def list_mine(user: User = Depends(get_current_user), db: DbSession = Depends(get_db)):
    return {"applications": [application_summary(a) for a in list_for_user(db, user)]}

@router.get("/applications/{application_id}")
async def get_one(application_id: str, user: User = Depends(get_current_user),
                  db: DbSession = Depends(get_db)):
    app = _load(db, application_id)
    if not can_view_application(user, app):
        raise HTTPException(403, "You can only view your own applications")
    events = list_events(db, app.id, limit=RECENT_AUDIT_EVENTS, newest_first=True)
    return {"application": application_to_record(app, latest_review(db, app.id), events)}

@router.get("/applications/{application_id}/audit")
async def audit_trail(application_id: str, user: User = Depends(REVIEWERS),
                      db: DbSession = Depends(get_db)):
    app = _load(db, application_id)
    return {"applicationId": app.id, "events": [audit_to_record(ev) for ev in list_events(db, app.id)]}

@router.get("/applications/{application_id}/reviews")
async def review_history(application_id: str, user: User = Depends(REVIEWERS),
                         db: DbSession = Depends(get_db)):
    app = _load(db, application_id)
    return {"applicationId": app.id, "reviews": [review_to_record(r) for r in list_reviews(db, app.id)]}

@router.post("/applications/{application_id}/decision")
async def decide(application_id: str, body: DecisionInput, user: User = Depends(REVIEWERS),
                 db: DbSession = Depends(get_db)):
    app = _load(db, application_id)
    try:
        record_manual_decision(db, app, body, user)
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    return {"application": application_to_record(app, latest_review(db, app.id))}

@router.post("/applications/{application_id}/rescore")
async def rescore(application_id: str, request: Request, user: User = Depends(REVIEWERS),
                  db: DbSession = Depends(get_db)):
    app = _load(db, application_id)
    try:
        result = await rescore_application(db, app.id, Role(user.role), request.app.state.scorer,
                                           requested_by=user.id)
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    return {"application": application_to_record(app, result), "review": review_to_record(result)}


# ============================================================
# APP FACTORY
# ============================================================
_AUTO = object()

def create_app(session_factory=None, scorer=_AUTO) -> FastAPI:
    """Build the API. Storage and scoring are injected; by default a database from
    DATABASE_URL and a Claude scorer when ANTHROPIC_API_KEY is set."""
    if session_factory is None:
        engine = make_engine()
        init_db(engine)
        session_factory = make_session_factory(engine)
    if scorer is _AUTO:
        scorer = default_scorer()

    app = FastAPI(title="Rentals Intake API", version=VERSION)
    app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True,
                       allow_methods=["*"], allow_headers=["*"])
    app.state.session_factory = session_factory
    app.state.scorer = scorer
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.environ.get("PORT", 8000))
    log.info("Starting %s v%s on port %d", SERVICE_NAME, VERSION, port)
    log.info("Claude API: %s", "Connected" if USE_REAL_API else "Rule-based scoring only")
    uvicorn.run("backend.server:create_app", factory=True, host="0.0.0.0", port=port)
