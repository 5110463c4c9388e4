"""
Rentals Intake — Document Scoring

Maps an application's document metadata + applicant contact fields to a
ReviewPayload: fraud score, summary, signals, per-document classifications,
recommended action and confidence.

Two engines:
  Remote: Claude text completion → strict JSON normalization (never raises on
          a bad response; transport errors raise ScoringServiceError)
  Local:  Deterministic filename/size heuristic, no network

score_application() picks the engine and falls back to local on any remote
failure. Neither engine touches application status.
"""
import json
import logging
import time as _time
from dataclasses import dataclass
from typing import Literal, Optional

import anthropic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from backend.config import (
    USE_REAL_API, SCORING_MODEL, SCORING_MAX_TOKENS, SCORING_TIMEOUT_SECONDS,
    MAX_EXPECTED_DOCUMENTS, MIN_PLAUSIBLE_FILE_BYTES,
    LOCAL_SCORE_BASE, LOCAL_SCORE_CAP, HIGH_SEVERITY_WEIGHT, MEDIUM_SEVERITY_WEIGHT,
)
from backend.errors import ScoringServiceError
from backend.policy import FLAG_THRESHOLD
from backend.documents import (
    DOCUMENT_TYPES, IDENTITY_TYPES, INCOME_TYPES, EMPLOYMENT_TYPES,
    UNKNOWN_CONFIDENCE, classify_document,
)

log = logging.getLogger(__name__)

SEVERITIES = ("low", "medium", "high")
ACTIONS = ("approve", "flag", "manual_review")

ENGINE_REMOTE = "remote"
ENGINE_LOCAL = "local"
ENGINE_FALLBACK = "local_fallback"

PARSE_FAILURE_SCORE = 0.5


def _clamp(value, default: float, lo: float = 0.0, hi: float = 1.0) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if v != v:  # NaN
        return default
    return max(lo, min(hi, v))


def _camel(snake: str, camel: str, **kw):
    return Field(validation_alias=AliasChoices(camel, snake), serialization_alias=camel, **kw)


# ============================================================
# CANONICAL PAYLOAD SCHEMA
# ============================================================
class Signal(BaseModel):
    code: str = Field(min_length=1)
    severity: Literal["low", "medium", "high"] = "medium"
    description: str = ""
    recommendation: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v):
        v = str(v or "").strip().lower()
        return v if v in SEVERITIES else "medium"

    @field_validator("description", "recommendation", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)


class Classification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(min_length=1)
    document_type: Literal["id", "paystub", "employment", "bank_statement", "reference", "unknown"] = _camel(
        "document_type", "documentType", default="unknown")
    confidence: float = 0.5
    notes: str = ""

    @field_validator("document_type", mode="before")
    @classmethod
    def _doc_type(cls, v):
        v = str(v or "").strip().lower()
        return v if v in DOCUMENT_TYPES else "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _clamp(v, 0.5)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes(cls, v):
        return "" if v is None else str(v)


def _valid_items(model, items) -> list:
    """Keep the list entries that validate; drop malformed ones."""
    if not isinstance(items, list):
        return []
    kept = []
    for item in items:
        try:
            kept.append(model.model_validate(item))
        except ValidationError:
            log.debug("[Scoring] Dropping malformed %s entry: %r", model.__name__, item)
    return kept


class ReviewPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fraud_score: float = _camel("fraud_score", "fraudScore", default=PARSE_FAILURE_SCORE)
    summary: str = "AI review completed."
    ai_notes: str = _camel("ai_notes", "aiNotes", default="")
    signals: list[Signal] = Field(default_factory=list)
    document_classifications: list[Classification] = _camel(
        "document_classifications", "documentClassifications", default_factory=list)
    recommended_action: Literal["approve", "flag", "manual_review"] = _camel(
        "recommended_action", "recommendedAction", default="manual_review")
    confidence_level: float = _camel("confidence_level", "confidenceLevel", default=0.0)
    is_ai_generated: bool = _camel("is_ai_generated", "isAiGenerated", default=True)

    @field_validator("fraud_score", mode="before")
    @classmethod
    def _score(cls, v):
        return _clamp(v, PARSE_FAILURE_SCORE)

    @field_validator("confidence_level", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _clamp(v, 0.0)

    @field_validator("recommended_action", mode="before")
    @classmethod
    def _action(cls, v):
        v = str(v or "").strip().lower().replace("-", "_").replace(" ", "_")
        return v if v in ACTIONS else "manual_review"

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, v):
        v = "" if v is None else str(v).strip()
        return v or "AI review completed."

    @field_validator("ai_notes", mode="before")
    @classmethod
    def _notes(cls, v):
        return "" if v is None else str(v)

    @field_validator("signals", mode="before")
    @classmethod
    def _signals(cls, v):
        return _valid_items(Signal, v)

    @field_validator("document_classifications", mode="before")
    @classmethod
    def _classifications(cls, v):
        return _valid_items(Classification, v)

    def severity_counts(self) -> dict:
        counts = {s: 0 for s in SEVERITIES}
        for s in self.signals:
            counts[s.severity] += 1
        return counts

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)


@dataclass
class ScoringOutcome:
    payload: ReviewPayload
    engine: str
    error: Optional[str] = None


# ============================================================
# LOCAL HEURISTIC (deterministic, no network)
# ============================================================
def _signal(code: str, severity: str, description: str, recommendation: str) -> Signal:
    return Signal(code=code, severity=severity, description=description, recommendation=recommendation)


def recommend_action(fraud_score: float, high: int, medium: int) -> str:
    if high >= 2 or fraud_score >= FLAG_THRESHOLD:
        return "flag"
    if high >= 1 or medium >= 2:
        return "manual_review"
    return "approve"


def analyze_documents_locally(documents: list, applicant: dict = None) -> ReviewPayload:
    """Score document metadata with fixed rules. Pure function of its input."""
    classifications = [classify_document(d["filename"]) for d in documents]
    found = {c["documentType"] for c in classifications}
    signals = []

    if not found & IDENTITY_TYPES:
        signals.append(_signal("missing_identity_verification", "high",
            "No government-issued identification was submitted.",
            "Request a passport, driver's licence or national ID card."))
    if not found & INCOME_TYPES:
        signals.append(_signal("missing_income_verification", "high",
            "No proof of income (pay stub or bank statement) was submitted.",
            "Request recent pay stubs or bank statements."))
    if not found & EMPLOYMENT_TYPES:
        signals.append(_signal("missing_employment_verification", "medium",
            "No employment verification (offer letter or employment contract) was submitted.",
            "Request an employment letter or contact the employer."))
    if len(documents) > MAX_EXPECTED_DOCUMENTS:
        signals.append(_signal("excessive_documents", "low",
            f"{len(documents)} documents submitted; more than {MAX_EXPECTED_DOCUMENTS} is unusual.",
            "Check for duplicate or padded submissions."))
    for d in documents:
        if d["sizeBytes"] < MIN_PLAUSIBLE_FILE_BYTES:
            signals.append(_signal("suspicious_file_size", "medium",
                f"'{d['filename']}' is only {d['sizeBytes']} bytes.",
                "Confirm the file is a complete, legible document."))

    high = sum(1 for s in signals if s.severity == "high")
    medium = sum(1 for s in signals if s.severity == "medium")
    fraud_score = round(min(LOCAL_SCORE_CAP,
                            LOCAL_SCORE_BASE + HIGH_SEVERITY_WEIGHT * high + MEDIUM_SEVERITY_WEIGHT * medium), 2)
    action = recommend_action(fraud_score, high, medium)

    if classifications:
        confidence = round(sum(c["confidence"] for c in classifications) / len(classifications), 2)
    else:
        confidence = UNKNOWN_CONFIDENCE

    if action == "flag":
        summary = "Potential risk detected. Manual review recommended."
    elif action == "manual_review":
        summary = "Verification gaps found. A reviewer should confirm before approval."
    else:
        summary = "Documents appear consistent with expectations."

    type_counts = {}
    for c in classifications:
        type_counts[c["documentType"]] = type_counts.get(c["documentType"], 0) + 1
    breakdown = ", ".join(f"{t}×{n}" for t, n in type_counts.items()) or "none"
    notes = (f"Rule-based review (no AI). Classified {len(documents)} document(s): {breakdown}. "
             f"Signals: {high} high, {medium} medium, {len(signals) - high - medium} low.")

    return ReviewPayload(
        fraud_score=fraud_score, summary=summary, ai_notes=notes, signals=signals,
        document_classifications=[Classification.model_validate(c) for c in classifications],
        recommended_action=action, confidence_level=confidence, is_ai_generated=False,
    )


# ============================================================
# REMOTE (Claude)
# ============================================================
SCORING_PROMPT = """You are a fraud analyst reviewing a rental application. Only document METADATA is available (filename, MIME type, size). No file contents are provided.

APPLICANT:
{applicant_json}

DOCUMENTS:
{documents_json}

Classify each document as one of: id, paystub, employment, bank_statement, reference, unknown.
Look for: missing identity, income or employment verification; implausibly small files; MIME types that do not match the filename; padded or duplicated submissions; inconsistencies with the applicant's contact details.

Respond ONLY with a valid JSON object (no markdown, no backticks) with this structure:
{{
  "fraudScore": 0.0-1.0,
  "summary": "one or two sentences",
  "aiNotes": "reasoning for the reviewer",
  "signals": [{{"code": "snake_case_code", "severity": "low|medium|high", "description": "...", "recommendation": "..."}}],
  "documentClassifications": [{{"filename": "...", "documentType": "id|paystub|employment|bank_statement|reference|unknown", "confidence": 0.0-1.0, "notes": "..."}}],
  "recommendedAction": "approve|flag|manual_review",
  "confidenceLevel": 0.0-1.0
}}

Your recommendation is advisory; a human reviewer makes the final decision."""


def _strip_fences(text: str) -> str:
    text = (text or "").strip()
    if text.startswith("```"):
        first_nl = text.index("\n") if "\n" in text else len(text)
        text = text[first_nl + 1:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


def parse_failure_payload(documents: list, reason: str) -> ReviewPayload:
    """Well-formed payload for an unreadable AI response: always routes to a human."""
    return ReviewPayload(
        fraud_score=PARSE_FAILURE_SCORE,
        summary="AI review response could not be parsed. Manual review required.",
        ai_notes=f"Parse error: {reason}",
        signals=[_signal("ai_response_parse_error", "medium",
                         "The AI scoring response was not valid structured output.",
                         "Review the documents manually.")],
        document_classifications=[
            Classification(filename=d["filename"], document_type="unknown", confidence=0.0,
                           notes="Not classified (AI response unreadable)")
            for d in documents if d.get("filename")
        ],
        recommended_action="manual_review", confidence_level=0.0, is_ai_generated=True,
    )


def parse_scoring_response(text: str, documents: list) -> ReviewPayload:
    """Normalize a raw model response into a ReviewPayload. Never raises."""
    try:
        data = json.loads(_strip_fences(text))
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        data["isAiGenerated"] = True
        return ReviewPayload.model_validate(data)
    except (ValueError, TypeError) as e:  # JSONDecodeError and ValidationError are ValueErrors
        log.warning("[Scoring] Unparseable AI response: %s", e)
        return parse_failure_payload(documents, str(e))


class RemoteScorer:
    """Scores applications with a Claude model. Transport failures raise ScoringServiceError."""

    def __init__(self, client=None, model: str = SCORING_MODEL,
                 max_tokens: int = SCORING_MAX_TOKENS, timeout: float = SCORING_TIMEOUT_SECONDS):
        self.client = client or anthropic.AsyncAnthropic(timeout=timeout, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens

    def build_prompt(self, documents: list, applicant: dict) -> str:
        return SCORING_PROMPT.format(
            applicant_json=json.dumps(applicant, indent=2, default=str),
            documents_json=json.dumps(documents, indent=2, default=str))

    async def score(self, documents: list, applicant: dict) -> ReviewPayload:
        prompt = self.build_prompt(documents, applicant)
        t0 = _time.time()
        try:
            msg = await self.client.messages.create(
                model=self.model, max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}])
        except anthropic.APIError as e:
            raise ScoringServiceError(f"{type(e).__name__}: {e}") from e
        elapsed = round((_time.time() - t0) * 1000)
        text = "".join(getattr(block, "text", "") for block in (msg.content or []))
        payload = parse_scoring_response(text, documents)
        log.info("[Scoring] %s answered in %dms: score=%.2f action=%s",
                 self.model, elapsed, payload.fraud_score, payload.recommended_action)
        return payload


def default_scorer():
    """Remote scorer when an API key is configured, else None (local only)."""
    return RemoteScorer() if USE_REAL_API else None


async def score_application(documents: list, applicant: dict, scorer=None) -> ScoringOutcome:
    """Score with the remote engine when available, falling back to local rules on any failure."""
    if scorer is None:
        return ScoringOutcome(analyze_documents_locally(documents, applicant), ENGINE_LOCAL)
    try:
        return ScoringOutcome(await scorer.score(documents, applicant), ENGINE_REMOTE)
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        log.warning("[Scoring] Remote scoring failed, using local rules: %s", error)
        return ScoringOutcome(analyze_documents_locally(documents, applicant), ENGINE_FALLBACK, error)
