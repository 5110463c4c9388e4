"""
Rentals Intake — Authentication & RBAC
Password hashing, session-backed JWT tokens, role gate and capability predicates.

The role always comes from the stored user row. Client-supplied role headers
are ignored.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy import select
from sqlalchemy.orm import Session as DbSession

from backend.config import (
    JWT_SECRET, JWT_ALGORITHM, SESSION_DURATION_HOURS,
    SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE, MIN_PASSWORD_LENGTH,
)
from backend.db import Application, Role, Session, User, get_db, utcnow

log = logging.getLogger(__name__)

# ============================================================
# PASSWORD HASHING
# ============================================================
import bcrypt

BCRYPT_MAX_BYTES = 72  # bcrypt ignores (newer releases reject) anything longer

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode()[:BCRYPT_MAX_BYTES], bcrypt.gensalt()).decode()

def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode()[:BCRYPT_MAX_BYTES], hashed.encode())
    except ValueError:
        return False

# ============================================================
# JWT
# ============================================================
import jwt as pyjwt

def create_jwt(user: User, token_id: str, expires_at: datetime) -> str:
    payload = {
        "sub": user.id, "email": user.email, "name": user.name,
        "role": Role(user.role).value, "jti": token_id,
        "exp": expires_at,
        "iat": datetime.now(timezone.utc),
    }
    return pyjwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

def decode_jwt(token: str) -> dict:
    try:
        return pyjwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(401, "Session expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(401, "Invalid token")

# ============================================================
# SESSIONS
# ============================================================
def _aware(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

def create_session(db: DbSession, user: User) -> str:
    """Persist a session row and return the signed token bound to it."""
    token_id = uuid.uuid4().hex
    expires_at = utcnow() + timedelta(hours=SESSION_DURATION_HOURS)
    db.add(Session(user_id=user.id, token_id=token_id, expires_at=expires_at))
    db.commit()
    return create_jwt(user, token_id, expires_at)

def delete_session(db: DbSession, token: str) -> None:
    """Revoke the session behind a token. Unknown or malformed tokens are a no-op."""
    try:
        payload = pyjwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM],
                               options={"verify_exp": False})
    except pyjwt.InvalidTokenError:
        return
    row = db.scalar(select(Session).where(Session.token_id == payload.get("jti")))
    if row:
        db.delete(row)
        db.commit()

def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME, token, httponly=True, secure=SESSION_COOKIE_SECURE,
        samesite="none" if SESSION_COOKIE_SECURE else "lax",
        max_age=SESSION_DURATION_HOURS * 3600, path="/",
    )

def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")

# ============================================================
# REQUEST HELPERS
# ============================================================
def token_from_request(request: Request) -> str:
    """Bearer header first (API clients), then the session cookie (browser)."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return request.cookies.get(SESSION_COOKIE_NAME, "")

def get_current_user(request: Request, db: DbSession = Depends(get_db)) -> User:
    """Dependency: require an authenticated user backed by a live session."""
    token = token_from_request(request)
    if not token:
        raise HTTPException(401, "Authentication required")
    payload = decode_jwt(token)

    session = db.scalar(select(Session).where(Session.token_id == payload.get("jti")))
    if session is None:
        raise HTTPException(401, "Session not found")
    if _aware(session.expires_at) < utcnow():
        db.delete(session)
        db.commit()
        raise HTTPException(401, "Session expired")

    user = db.get(User, session.user_id)
    if user is None:
        raise HTTPException(401, "Session user no longer exists")
    return user

def require_role(*roles: Role):
    """Dependency factory: require one of the given roles."""
    allowed = set(roles)

    def checker(user: User = Depends(get_current_user)) -> User:
        if Role(user.role) not in allowed:
            names = " or ".join(r.value for r in roles)
            raise HTTPException(403, f"Requires role {names}. Your role: {Role(user.role).value}")
        return user
    return checker

# ============================================================
# CAPABILITIES
# ============================================================
def can_create_application(role: Role) -> bool:
    return role in (Role.APPLICANT, Role.ADMIN)

def can_list_applications(role: Role) -> bool:
    return role in (Role.REVIEWER, Role.ADMIN)

def can_record_decision(role: Role) -> bool:
    return role in (Role.REVIEWER, Role.ADMIN)

def owns_application(user: User, application: Application) -> bool:
    """An applicant owns an application linked to their account or filed under their email."""
    if application.applicant_id and application.applicant_id == user.id:
        return True
    return bool(user.email) and user.email.lower() == (application.applicant_email or "").lower()

def can_view_application(user: User, application: Application) -> bool:
    role = Role(user.role)
    if role in (Role.REVIEWER, Role.ADMIN):
        return True
    return role == Role.APPLICANT and owns_application(user, application)

# ============================================================
# ACCOUNTS
# ============================================================
from pydantic import BaseModel, EmailStr, Field


class SignupInput(BaseModel):
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=128)
    name: str = Field(min_length=1, max_length=200)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class CreateUserInput(SignupInput):
    role: Role
    admin_secret: str = Field(alias="adminSecret")


def find_user(db: DbSession, email: str):
    return db.scalar(select(User).where(User.email == email.lower()))

def create_user(db: DbSession, email: str, password: str, name: str, role: Role = Role.APPLICANT) -> User:
    """Create a user. Raises HTTPException(400) when the email is taken."""
    if find_user(db, email):
        raise HTTPException(400, "Email already registered")
    user = User(email=email.lower(), name=name.strip(), password_hash=hash_password(password), role=Role(role))
    db.add(user)
    db.commit()
    log.info("[Auth] Created %s account %s", Role(role).value, user.email)
    return user

def authenticate(db: DbSession, email: str, password: str) -> User:
    user = find_user(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise HTTPException(401, "Invalid email or password")
    return user

def user_to_record(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name, "role": Role(user.role).value}
