"""
Rentals Intake — Decision Policy & Status State Machine

Single source of truth for how a review result moves an application.

  submitted ──► under_review ──► approved
                     │   ▲
                     │   └── (stays: needs a human)
                     └─────► flagged

Automated moves follow the graph above. A human decision may move any
application straight to approved or flagged. Nothing ever returns to submitted.

decide_next_status() is pure: same (fraudScore, recommendedAction) → same status.
"""

from backend.db import ApplicationStatus, ReviewResult


# ============================================================
# THRESHOLDS
# ============================================================
FLAG_THRESHOLD = 0.7
REVIEW_THRESHOLD = 0.4


# ============================================================
# STATE MACHINE
# ============================================================
AUTOMATED_TRANSITIONS = {
    ApplicationStatus.SUBMITTED: {ApplicationStatus.UNDER_REVIEW},
    ApplicationStatus.UNDER_REVIEW: {
        ApplicationStatus.UNDER_REVIEW, ApplicationStatus.APPROVED, ApplicationStatus.FLAGGED,
    },
    ApplicationStatus.APPROVED: set(),
    ApplicationStatus.FLAGGED: set(),
}

MANUAL_TARGETS = {ApplicationStatus.APPROVED, ApplicationStatus.FLAGGED}

# Statuses the review pipeline may (re)start from
RESCORABLE = {ApplicationStatus.SUBMITTED, ApplicationStatus.UNDER_REVIEW}


def can_transition(current, next_status, manual: bool = False) -> bool:
    current, next_status = ApplicationStatus(current), ApplicationStatus(next_status)
    if manual:
        return next_status in MANUAL_TARGETS
    return next_status in AUTOMATED_TRANSITIONS[current]


# ============================================================
# DECISION
# ============================================================
def decide_next_status(fraud_score: float, recommended_action: str) -> ApplicationStatus:
    """Map an AI-suggested outcome onto the next application status.

    flagged       action is "flag" or score ≥ FLAG_THRESHOLD
    under_review  action is "manual_review" or score ≥ REVIEW_THRESHOLD
    approved      otherwise
    """
    if recommended_action == "flag" or fraud_score >= FLAG_THRESHOLD:
        return ApplicationStatus.FLAGGED
    if recommended_action == "manual_review" or fraud_score >= REVIEW_THRESHOLD:
        return ApplicationStatus.UNDER_REVIEW
    return ApplicationStatus.APPROVED


def decide_from_result(result: ReviewResult) -> ApplicationStatus:
    return decide_next_status(result.fraud_score, result.recommended_action)
