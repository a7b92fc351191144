from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional

from recruitment.statuses import (
    CandidateStatus,
    VerificationItemStatus,
    VerificationStatus,
    parse_enum,
)
from utils import ApiError


class DocumentCategory(str, Enum):
    PAN_CARD = "PAN_CARD"
    AADHAAR_CARD = "AADHAAR_CARD"
    ADDRESS_PROOF = "ADDRESS_PROOF"
    IDENTITY_PROOF = "IDENTITY_PROOF"
    EDUCATIONAL_CERTIFICATES = "EDUCATIONAL_CERTIFICATES"


class ContactType(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


class ItemType(str, Enum):
    DOCUMENT = "DOCUMENT"
    CONTACT = "CONTACT"
    ADDRESS = "ADDRESS"


ADDRESS_CATEGORY = "CURRENT_ADDRESS"

BGV_REACHABLE_STATUSES = frozenset({CandidateStatus.OFFER_ACCEPTED, CandidateStatus.HIRED})

# Verifier decisions; NOT_STARTED is only the initial state.
DECISION_STATUSES = frozenset({VerificationStatus.IN_PROGRESS, VerificationStatus.CLEARED, VerificationStatus.FAILED})

_DECISION_ALIASES = {"APPROVE": VerificationStatus.CLEARED, "REJECT": VerificationStatus.FAILED}


def assert_bgv_reachable(status: CandidateStatus) -> None:
    if status not in BGV_REACHABLE_STATUSES:
        raise ApiError(
            "BGV_NOT_AVAILABLE",
            f"Background verification is available after the offer is accepted (candidate is {status.value})",
            http_status=409,
        )


def parse_item_category(item_type: ItemType, value: Any) -> str:
    if item_type == ItemType.DOCUMENT:
        return parse_enum(DocumentCategory, value, field="document category").value
    if item_type == ItemType.CONTACT:
        return parse_enum(ContactType, value, field="contact type").value
    return ADDRESS_CATEGORY


def item_status_change(new_status: VerificationItemStatus, reason: Any) -> tuple[VerificationItemStatus, str]:
    """Any status may move to any other; only REJECTED keeps a reason."""
    text = str(reason or "").strip()
    if new_status == VerificationItemStatus.REJECTED:
        if not text:
            raise ApiError("REASON_REQUIRED", "Rejection reason is required")
        return new_status, text
    return new_status, ""


def details_changed(old: dict[str, Any], new: dict[str, Any]) -> bool:
    keys = set(old) | set(new)
    return any(str(old.get(k) or "").strip() != str(new.get(k) or "").strip() for k in keys)


def parse_decision(value: Any, remark: Any) -> tuple[VerificationStatus, str]:
    s = str(value or "").strip().upper()
    status = _DECISION_ALIASES.get(s) or parse_enum(VerificationStatus, s, field="verification status")
    if status not in DECISION_STATUSES:
        raise ApiError("BAD_REQUEST", f"Verification cannot be set back to {status.value}")
    text = str(remark or "").strip()
    if status == VerificationStatus.FAILED and not text:
        raise ApiError("REASON_REQUIRED", "A remark is required when verification fails")
    return status, text


def summarize_items(statuses: Iterable[Any]) -> dict[str, int]:
    out = {s.value: 0 for s in VerificationItemStatus}
    total = 0
    for raw in statuses:
        key = raw.value if isinstance(raw, Enum) else str(raw or "").upper()
        if key in out:
            out[key] += 1
        total += 1
    out["total"] = total
    return out


def bgv_status_or_none(raw: Optional[str]) -> Optional[VerificationStatus]:
    if not raw:
        return None
    try:
        return VerificationStatus(str(raw).upper())
    except ValueError:
        return None
