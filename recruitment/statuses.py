from __future__ import annotations

from enum import Enum
from typing import Any, TypeVar

from utils import ApiError


class CandidateStatus(str, Enum):
    APPLIED = "APPLIED"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    SELECTED = "SELECTED"
    OFFER_SENT = "OFFER_SENT"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    HIRED = "HIRED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CandidateStatus.HIRED, CandidateStatus.REJECTED})
INTERVIEW_STAGE_STATUSES = frozenset({CandidateStatus.INTERVIEW_SCHEDULED, CandidateStatus.INTERVIEW_COMPLETED})

# Older records carry per-round or per-channel variants of the same stage.
_LEGACY_CANDIDATE_STATUSES = {
    "RE_APPLIED": CandidateStatus.APPLIED,
    "APPLIED_FOR_MULTIPLE_JOBS": CandidateStatus.APPLIED,
    "HR_INTERVIEW_IN_PROGRESS": CandidateStatus.INTERVIEW_SCHEDULED,
    "MANAGER_INTERVIEW_IN_PROGRESS": CandidateStatus.INTERVIEW_SCHEDULED,
    "HR_INTERVIEW_COMPLETED": CandidateStatus.INTERVIEW_COMPLETED,
    "MANAGER_INTERVIEW_COMPLETED": CandidateStatus.INTERVIEW_COMPLETED,
    "OFFER_PENDING": CandidateStatus.SELECTED,
}


class InterviewStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    RESCHEDULED = "RESCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


OPEN_INTERVIEW_STATUSES = frozenset({InterviewStatus.SCHEDULED, InterviewStatus.RESCHEDULED})


class Recommendation(str, Enum):
    PROCEED = "PROCEED"
    REJECT = "REJECT"
    HOLD = "HOLD"
    FURTHER_ROUND = "FURTHER_ROUND"


class OfferStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class VerificationStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    CLEARED = "CLEARED"
    FAILED = "FAILED"


class VerificationItemStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class CandidateSource(str, Enum):
    SELF_APPLIED = "SELF_APPLIED"
    REFERRAL = "REFERRAL"
    MANUAL = "MANUAL"


class GoalStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: type[E], value: Any, *, field: str) -> E:
    if isinstance(value, enum_cls):
        return value
    s = str(value or "").strip()
    if enum_cls is not GoalStatus:
        s = s.upper()
    else:
        s = s.lower()
    try:
        return enum_cls(s)
    except ValueError:
        raise ApiError("BAD_REQUEST", f"Invalid {field}: {value!r}")


def parse_candidate_status(value: Any) -> CandidateStatus:
    s = str(value.value if isinstance(value, Enum) else value or "").strip().upper()
    legacy = _LEGACY_CANDIDATE_STATUSES.get(s)
    if legacy is not None:
        return legacy
    return parse_enum(CandidateStatus, s, field="candidate status")


def stored_status_values(status: CandidateStatus) -> list[str]:
    """Every stored string that reads back as `status`, legacy variants included."""
    return [status.value] + [k for k, v in _LEGACY_CANDIDATE_STATUSES.items() if v == status]
