"""
Rentals Intake — Documents Module

Document metadata intake, record transformation (ORM row → API record), and
filename-based document classification.

Only metadata is handled: filename, declared MIME type and declared size.
No binary content is ever received or stored.

Classification (first matching type wins, fixed confidence per type):
  1. id             (0.90)  passport, driver's licence, ID card
  2. paystub        (0.85)  pay stubs, payslips, salary/wage statements
  3. employment     (0.80)  offer letters, employment letters
  4. bank_statement (0.75)  bank statements
  5. reference      (0.70)  landlord / personal references
  6. unknown        (0.30)
"""

import re

from pydantic import BaseModel, ConfigDict, Field

from backend.db import Document

# ============================================================
# DOCUMENT TYPES
# ============================================================
DOCUMENT_TYPES = ("id", "paystub", "employment", "bank_statement", "reference", "unknown")

CLASSIFICATION_RULES = [
    ("id", 0.9, ("passport", "license", "licence", "id", "identification", "identity", "drivers")),
    ("paystub", 0.85, ("paystub", "payslip", "paycheck", "stub", "salary", "wage", "w2")),
    ("employment", 0.8, ("employment", "employer", "offer", "job")),
    ("bank_statement", 0.75, ("bank", "statement")),
    ("reference", 0.7, ("reference", "landlord", "recommendation")),
]
UNKNOWN_CONFIDENCE = 0.3

# Which document types satisfy each verification requirement
IDENTITY_TYPES = {"id"}
INCOME_TYPES = {"paystub", "bank_statement"}
EMPLOYMENT_TYPES = {"employment"}


# ============================================================
# INTAKE SCHEMA
# ============================================================
class DocumentInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    filename: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(alias="mimeType", min_length=1, max_length=100)
    size_bytes: int = Field(alias="sizeBytes", ge=0, strict=True)


# ============================================================
# CLASSIFICATION
# ============================================================
def _filename_tokens(filename: str) -> tuple[str, list]:
    stem = filename.lower().rsplit(".", 1)[0] if "." in filename else filename.lower()
    return stem, [t for t in re.split(r"[^a-z0-9]+", stem) if t]


def classify_document(filename: str) -> dict:
    """Classify one document by filename keywords.
    Short keywords (e.g. "id") must be a whole token so "paid" or "video" never match."""
    stem, tokens = _filename_tokens(filename or "")
    for doc_type, confidence, keywords in CLASSIFICATION_RULES:
        for kw in keywords:
            if kw in tokens or (len(kw) > 3 and kw in stem):
                return {"filename": filename, "documentType": doc_type,
                        "confidence": confidence, "notes": f"Filename matched '{kw}'"}
    return {"filename": filename, "documentType": "unknown",
            "confidence": UNKNOWN_CONFIDENCE, "notes": "No recognised keyword in filename"}


# ============================================================
# RECORD TRANSFORMATION
# ============================================================
def document_to_record(doc: Document) -> dict:
    """Transform a Document row into its API record."""
    return {
        "id": doc.id,
        "filename": doc.filename,
        "mimeType": doc.mime_type,
        "sizeBytes": doc.size_bytes,
        "storageUrl": doc.storage_url,
        "createdAt": doc.created_at.isoformat() if doc.created_at else None,
    }


def document_metadata(doc) -> dict:
    """Metadata view handed to the scorer. Accepts a Document row or a DocumentInput."""
    return {"filename": doc.filename, "mimeType": doc.mime_type, "sizeBytes": doc.size_bytes}
