from __future__ import annotations

from enum import Enum
from typing import Callable, Optional

from recruitment.statuses import INTERVIEW_STAGE_STATUSES, CandidateStatus, VerificationStatus
from utils import ApiError


class KanbanColumn(str, Enum):
    APPLIED = "applied"
    INTERVIEW_SCHEDULED = "scheduled"
    ROUND_1 = "round1"
    ROUND_2 = "round2"
    ROUND_3 = "round3"
    FINAL_ROUND = "round4"
    GENERATE_OFFER = "offer"
    DOCUMENT_COLLECTION = "docs"
    BACKGROUND_VERIFICATION = "bgv"
    ONBOARDED = "onboarded"
    REJECTED = "rejected"


COLUMN_TITLES = {
    KanbanColumn.APPLIED: "Applied",
    KanbanColumn.INTERVIEW_SCHEDULED: "Interview Scheduled",
    KanbanColumn.ROUND_1: "Round 1",
    KanbanColumn.ROUND_2: "Round 2",
    KanbanColumn.ROUND_3: "Round 3",
    KanbanColumn.FINAL_ROUND: "Final Round",
    KanbanColumn.GENERATE_OFFER: "Generate Offer",
    KanbanColumn.DOCUMENT_COLLECTION: "Document Collection",
    KanbanColumn.BACKGROUND_VERIFICATION: "Background Verification",
    KanbanColumn.ONBOARDED: "Onboarded",
    KanbanColumn.REJECTED: "Rejected",
}

COLUMN_ORDER = tuple(KanbanColumn)

FINAL_ROUND_NUMBER = 4

_BGV_STARTED = frozenset({VerificationStatus.IN_PROGRESS, VerificationStatus.CLEARED, VerificationStatus.FAILED})

Predicate = Callable[[CandidateStatus, int, Optional[VerificationStatus]], bool]


def _in_round(n: int) -> Predicate:
    return lambda status, rnd, bgv: status in INTERVIEW_STAGE_STATUSES and rnd == n


PREDICATES: dict[KanbanColumn, Predicate] = {
    KanbanColumn.APPLIED: lambda status, rnd, bgv: status == CandidateStatus.APPLIED,
    KanbanColumn.INTERVIEW_SCHEDULED: _in_round(0),
    KanbanColumn.ROUND_1: _in_round(1),
    KanbanColumn.ROUND_2: _in_round(2),
    KanbanColumn.ROUND_3: _in_round(3),
    KanbanColumn.FINAL_ROUND: lambda status, rnd, bgv: status in INTERVIEW_STAGE_STATUSES and rnd >= FINAL_ROUND_NUMBER,
    KanbanColumn.GENERATE_OFFER: lambda status, rnd, bgv: status in {CandidateStatus.SELECTED, CandidateStatus.OFFER_SENT},
    KanbanColumn.DOCUMENT_COLLECTION: lambda status, rnd, bgv: status == CandidateStatus.OFFER_ACCEPTED
    and (bgv is None or bgv == VerificationStatus.NOT_STARTED),
    KanbanColumn.BACKGROUND_VERIFICATION: lambda status, rnd, bgv: status == CandidateStatus.OFFER_ACCEPTED and bgv in _BGV_STARTED,
    KanbanColumn.ONBOARDED: lambda status, rnd, bgv: status == CandidateStatus.HIRED,
    KanbanColumn.REJECTED: lambda status, rnd, bgv: status == CandidateStatus.REJECTED,
}


def matching_columns(
    status: CandidateStatus,
    current_round: int,
    bgv_status: Optional[VerificationStatus] = None,
) -> list[KanbanColumn]:
    rnd = max(0, int(current_round or 0))
    return [col for col in COLUMN_ORDER if PREDICATES[col](status, rnd, bgv_status)]


def column_for(
    status: CandidateStatus,
    current_round: int,
    bgv_status: Optional[VerificationStatus] = None,
) -> KanbanColumn:
    cols = matching_columns(status, current_round, bgv_status)
    if len(cols) != 1:
        raise ApiError(
            "INTERNAL",
            f"Board columns ambiguous for {status.value}/round {current_round}: {[c.value for c in cols]}",
            http_status=500,
        )
    return cols[0]
