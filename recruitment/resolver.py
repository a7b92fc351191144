from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from recruitment.rounds import (
    Actor,
    InterviewRecord,
    RoundConfig,
    can_access_round,
    enabled_rounds,
    find_round,
    first_round,
    next_round_after,
)
from recruitment.statuses import CandidateStatus, OfferStatus, Recommendation, VerificationStatus


class ActionType(str, Enum):
    SCHEDULE = "SCHEDULE"
    START = "START"
    VIEW_PROGRESS = "VIEW_PROGRESS"
    GENERATE_OFFER = "GENERATE_OFFER"
    VIEW_OFFER = "VIEW_OFFER"
    BACKGROUND_VERIFICATION = "BACKGROUND_VERIFICATION"
    ONBOARD = "ONBOARD"
    DOCUMENT_COLLECTION = "DOCUMENT_COLLECTION"
    CONVERT_TO_STAFF = "CONVERT_TO_STAFF"
    VIEW_LOGS = "VIEW_LOGS"
    VIEW_PROFILE = "VIEW_PROFILE"
    NONE = "NONE"


LABELS = {
    ActionType.SCHEDULE: "Schedule Interview",
    ActionType.START: "Start Interview",
    ActionType.VIEW_PROGRESS: "Interview Scheduled",
    ActionType.GENERATE_OFFER: "Generate Offer Letter",
    ActionType.VIEW_OFFER: "View Offer",
    ActionType.BACKGROUND_VERIFICATION: "Background Verification",
    ActionType.ONBOARD: "Onboard",
    ActionType.DOCUMENT_COLLECTION: "Document Collection",
    ActionType.CONVERT_TO_STAFF: "Convert to Staff",
    ActionType.VIEW_LOGS: "View Logs",
    ActionType.VIEW_PROFILE: "View Profile",
    ActionType.NONE: "Hired for another job",
}

_VISIBLE_OFFER_STATUSES = frozenset({OfferStatus.SENT, OfferStatus.ACCEPTED})
_CONVERTIBLE_STATUSES = frozenset({CandidateStatus.SELECTED, CandidateStatus.OFFER_ACCEPTED, CandidateStatus.HIRED})
_PAST_OFFER_STATUSES = frozenset({CandidateStatus.OFFER_ACCEPTED, CandidateStatus.HIRED})
_REPEAT_ROUND_VERDICTS = frozenset({Recommendation.HOLD, Recommendation.FURTHER_ROUND})


@dataclass(frozen=True)
class CandidateSnapshot:
    candidate_id: str
    status: CandidateStatus
    current_round: int = 0
    hired_for_other_job: Optional[Mapping[str, Any]] = None
    employee_id: str = ""


@dataclass(frozen=True)
class ResolverContext:
    rounds: Sequence[RoundConfig] = ()
    offer_statuses: Sequence[OfferStatus] = ()
    bgv_status: Optional[VerificationStatus] = None
    has_documents: bool = False
    read_only: bool = False
    convert_to_staff: bool = False


@dataclass(frozen=True)
class ResolvedAction:
    type: ActionType
    label: str
    enabled: bool = True
    round: Optional[int] = None
    interview_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type.value, "label": self.label, "enabled": self.enabled}
        if self.round is not None:
            out["round"] = self.round
        if self.interview_id:
            out["interviewId"] = self.interview_id
        return out


def _action(kind: ActionType, *, enabled: bool = True, round: Optional[int] = None, interview_id: str = "") -> ResolvedAction:
    return ResolvedAction(type=kind, label=LABELS[kind], enabled=enabled, round=round, interview_id=interview_id)


def _latest(interviews: Sequence[InterviewRecord]) -> Optional[InterviewRecord]:
    if not interviews:
        return None
    return max(interviews, key=lambda it: (it.submitted_at or it.created_at, it.interview_id))


def _may_start(it: InterviewRecord, round_cfg: Optional[RoundConfig], actor: Actor) -> bool:
    if actor.is_elevated:
        return True
    if it.interviewer_id:
        return bool(actor.user_id) and actor.user_id == it.interviewer_id
    return round_cfg is not None and can_access_round(round_cfg, actor)


def _resolve_scheduled(
    candidate: CandidateSnapshot,
    interviews: Sequence[InterviewRecord],
    rounds: Sequence[RoundConfig],
    actor: Actor,
) -> ResolvedAction:
    rnd = candidate.current_round
    for_round = [it for it in interviews if it.round_number == rnd]
    open_ones = [it for it in for_round if it.is_open]
    if open_ones:
        it = _latest(open_ones)
        if _may_start(it, find_round(rounds, rnd), actor):
            return _action(ActionType.START, round=rnd, interview_id=it.interview_id)
        return _action(ActionType.VIEW_PROGRESS, round=rnd, interview_id=it.interview_id)

    submitted = [it for it in for_round if it.is_submitted]
    if submitted:
        it = _latest(submitted)
        return _action(ActionType.VIEW_LOGS, round=rnd, interview_id=it.interview_id)

    # Interview for the round was cancelled.
    return _action(ActionType.SCHEDULE, round=rnd)


def _resolve_completed(
    candidate: CandidateSnapshot,
    interviews: Sequence[InterviewRecord],
    rounds: Sequence[RoundConfig],
) -> ResolvedAction:
    rnd = candidate.current_round
    submitted = [it for it in interviews if it.round_number == rnd and it.is_submitted]
    latest = _latest(submitted)
    if latest is not None and latest.recommendation in _REPEAT_ROUND_VERDICTS:
        return _action(ActionType.SCHEDULE, round=rnd)

    if rounds:
        nxt = next_round_after(rnd, rounds)
    else:
        nxt = rnd + 1
    if nxt is None:
        return _action(ActionType.VIEW_PROGRESS, round=rnd)
    return _action(ActionType.SCHEDULE, round=nxt)


def resolve_action(
    candidate: CandidateSnapshot,
    interviews: Sequence[InterviewRecord],
    actor: Actor,
    context: Optional[ResolverContext] = None,
) -> ResolvedAction:
    """
    Pick the single next action for a candidate card.

    First match wins; frozen and rejected candidates outrank normal progression.
    Whether the actor may invoke the action is decided separately by
    capabilities.is_action_allowed.
    """

    ctx = context or ResolverContext()
    status = candidate.status
    rounds = enabled_rounds(ctx.rounds)

    if candidate.hired_for_other_job and status != CandidateStatus.HIRED:
        if ctx.read_only:
            return _action(ActionType.VIEW_PROFILE)
        job_title = str(candidate.hired_for_other_job.get("jobTitle") or "").strip()
        label = f"Hired for {job_title}" if job_title else LABELS[ActionType.NONE]
        return ResolvedAction(type=ActionType.NONE, label=label, enabled=False)

    if status == CandidateStatus.REJECTED:
        return _action(ActionType.VIEW_PROFILE)

    if status == CandidateStatus.APPLIED:
        return _action(ActionType.SCHEDULE, round=first_round(rounds))

    if status == CandidateStatus.INTERVIEW_SCHEDULED:
        return _resolve_scheduled(candidate, interviews, rounds, actor)

    if status == CandidateStatus.INTERVIEW_COMPLETED:
        return _resolve_completed(candidate, interviews, rounds)

    if status == CandidateStatus.SELECTED:
        return _action(ActionType.GENERATE_OFFER)

    if status not in _PAST_OFFER_STATUSES and any(s in _VISIBLE_OFFER_STATUSES for s in ctx.offer_statuses):
        return _action(ActionType.VIEW_OFFER)

    if status == CandidateStatus.OFFER_ACCEPTED and ctx.bgv_status != VerificationStatus.CLEARED:
        if ctx.has_documents:
            return _action(ActionType.BACKGROUND_VERIFICATION)
        return _action(ActionType.DOCUMENT_COLLECTION)

    if ctx.convert_to_staff and status in _CONVERTIBLE_STATUSES:
        return _action(ActionType.CONVERT_TO_STAFF)

    if status == CandidateStatus.OFFER_ACCEPTED:
        return _action(ActionType.ONBOARD)

    if status == CandidateStatus.HIRED:
        if candidate.employee_id:
            return _action(ActionType.VIEW_LOGS)
        return _action(ActionType.CONVERT_TO_STAFF)

    return _action(ActionType.VIEW_PROFILE)
