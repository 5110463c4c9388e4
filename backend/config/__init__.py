"""
Rentals Intake — Configuration & Constants
Environment variables, feature flags, scoring settings and intake limits.
"""
import os
from pathlib import Path

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent.parent
BACKEND_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.environ.get("DATA_DIR", BASE_DIR / "data"))

DATA_DIR.mkdir(parents=True, exist_ok=True)

# ============================================================
# DATABASE
# ============================================================
DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{DATA_DIR / 'rentals.db'}")
DB_ECHO = os.environ.get("DB_ECHO", "false").lower() == "true"

# ============================================================
# SCORING (remote LLM with local fallback)
# ============================================================
USE_REAL_API = bool(os.environ.get("ANTHROPIC_API_KEY"))
SCORING_MODEL = os.environ.get("SCORING_MODEL", "claude-sonnet-4-20250514")
SCORING_MAX_TOKENS = int(os.environ.get("SCORING_MAX_TOKENS", "1500"))
SCORING_TIMEOUT_SECONDS = float(os.environ.get("SCORING_TIMEOUT_SECONDS", "20"))

# Local heuristic limits
MAX_EXPECTED_DOCUMENTS = 6
MIN_PLAUSIBLE_FILE_BYTES = 5000
LOCAL_SCORE_BASE = 0.1
LOCAL_SCORE_CAP = 0.95
HIGH_SEVERITY_WEIGHT = 0.25
MEDIUM_SEVERITY_WEIGHT = 0.1

# ============================================================
# AUTH
# ============================================================
JWT_SECRET = os.environ.get("JWT_SECRET", os.urandom(32).hex())
JWT_ALGORITHM = "HS256"
SESSION_DURATION_HOURS = int(os.environ.get("SESSION_DURATION_HOURS", "168"))  # 7 days
SESSION_COOKIE_NAME = "rentals_session"
SESSION_COOKIE_SECURE = os.environ.get("SESSION_COOKIE_SECURE", "true").lower() == "true"
ADMIN_SECRET = os.environ.get("ADMIN_SECRET", "rentals-admin-secret")
MIN_PASSWORD_LENGTH = 6

# ============================================================
# HTTP
# ============================================================
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_AUDIT_EVENTS = 5

# ============================================================
# INTAKE
# ============================================================
MAX_DECISION_NOTES = 500

# ============================================================
# LOGGING
# ============================================================
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ============================================================
# VERSION
# ============================================================
SERVICE_NAME = "rentals-intake-api"
VERSION = "1.2.0"
