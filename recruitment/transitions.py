from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional

from recruitment.statuses import CandidateStatus, Recommendation
from utils import ApiError


class Trigger(str, Enum):
    SCHEDULE_INTERVIEW = "SCHEDULE_INTERVIEW"
    RESCHEDULE_INTERVIEW = "RESCHEDULE_INTERVIEW"
    SUBMIT_INTERVIEW = "SUBMIT_INTERVIEW"
    SELECT = "SELECT"
    SEND_OFFER = "SEND_OFFER"
    ACCEPT_OFFER = "ACCEPT_OFFER"
    DECLINE_OFFER = "DECLINE_OFFER"
    EXPIRE_OFFER = "EXPIRE_OFFER"
    MOVE_TO_ONBOARDING = "MOVE_TO_ONBOARDING"
    REJECT = "REJECT"


S = CandidateStatus

TRANSITIONS: dict[tuple[CandidateStatus, Trigger], CandidateStatus] = {
    (S.APPLIED, Trigger.SCHEDULE_INTERVIEW): S.INTERVIEW_SCHEDULED,
    (S.INTERVIEW_COMPLETED, Trigger.SCHEDULE_INTERVIEW): S.INTERVIEW_SCHEDULED,
    # Re-scheduling a round whose interview was cancelled.
    (S.INTERVIEW_SCHEDULED, Trigger.SCHEDULE_INTERVIEW): S.INTERVIEW_SCHEDULED,
    (S.INTERVIEW_SCHEDULED, Trigger.RESCHEDULE_INTERVIEW): S.INTERVIEW_SCHEDULED,
    (S.INTERVIEW_COMPLETED, Trigger.SELECT): S.SELECTED,
    (S.SELECTED, Trigger.SEND_OFFER): S.OFFER_SENT,
    (S.OFFER_SENT, Trigger.SEND_OFFER): S.OFFER_SENT,
    (S.OFFER_SENT, Trigger.ACCEPT_OFFER): S.OFFER_ACCEPTED,
    (S.OFFER_SENT, Trigger.DECLINE_OFFER): S.SELECTED,
    (S.OFFER_SENT, Trigger.EXPIRE_OFFER): S.SELECTED,
    (S.OFFER_ACCEPTED, Trigger.MOVE_TO_ONBOARDING): S.HIRED,
}

SUBMITTABLE_STATUSES = frozenset({S.INTERVIEW_SCHEDULED, S.INTERVIEW_COMPLETED})

# Operator "update status" requests may only use triggers that need no companion record.
MANUAL_TRIGGERS = {S.SELECTED: Trigger.SELECT, S.REJECTED: Trigger.REJECT}

ALREADY_CONVERTED_MESSAGE = "Candidate has already been converted to employee. Cannot move to onboarding."


def frozen_message(hired_for_other_job: Mapping[str, Any], trigger: Trigger) -> str:
    job_title = str((hired_for_other_job or {}).get("jobTitle") or "another job").strip()
    if trigger in {Trigger.SCHEDULE_INTERVIEW, Trigger.RESCHEDULE_INTERVIEW}:
        return f"Candidate is already hired for {job_title}. Interviews cannot be scheduled for this application."
    return f"Candidate is already hired for {job_title}. This application is frozen."


def next_status(
    current: CandidateStatus,
    trigger: Trigger,
    *,
    recommendation: Optional[Recommendation] = None,
    is_last_round: bool = False,
    hired_for_other_job: Optional[Mapping[str, Any]] = None,
    reason: str = "",
) -> CandidateStatus:
    """
    Resolve the status a candidate moves to when `trigger` fires.

    Raises ApiError with a specific code for every refused move:
    PIPELINE_FROZEN, ALREADY_CONVERTED, REASON_REQUIRED, INVALID_TRANSITION.
    """

    if hired_for_other_job and current != S.HIRED and trigger != Trigger.REJECT:
        raise ApiError("PIPELINE_FROZEN", frozen_message(hired_for_other_job, trigger), http_status=409)

    if trigger == Trigger.MOVE_TO_ONBOARDING and current == S.HIRED:
        raise ApiError("ALREADY_CONVERTED", ALREADY_CONVERTED_MESSAGE, http_status=409)

    if trigger == Trigger.REJECT:
        if current.is_terminal:
            raise ApiError("INVALID_TRANSITION", f"Cannot reject a candidate in {current.value}", http_status=409)
        if not str(reason or "").strip():
            raise ApiError("REASON_REQUIRED", "Rejection reason is required")
        return S.REJECTED

    if trigger == Trigger.SUBMIT_INTERVIEW:
        if current not in SUBMITTABLE_STATUSES:
            raise ApiError("INVALID_TRANSITION", f"Cannot submit an interview for a candidate in {current.value}", http_status=409)
        if recommendation is None:
            raise ApiError("BAD_REQUEST", "Missing recommendation")
        if recommendation == Recommendation.REJECT:
            return S.REJECTED
        if recommendation == Recommendation.PROCEED and is_last_round:
            return S.SELECTED
        return S.INTERVIEW_COMPLETED

    target = TRANSITIONS.get((current, trigger))
    if target is None:
        raise ApiError(
            "INVALID_TRANSITION",
            f"Cannot apply {trigger.value} to a candidate in {current.value}",
            http_status=409,
        )
    return target


def manual_trigger_for(current: CandidateStatus, target: CandidateStatus) -> Trigger:
    trigger = MANUAL_TRIGGERS.get(target)
    if trigger is None:
        raise ApiError(
            "INVALID_TRANSITION",
            f"Status {target.value} can only be reached through its workflow action",
            http_status=409,
        )
    if trigger != Trigger.REJECT and (current, trigger) not in TRANSITIONS:
        raise ApiError("INVALID_TRANSITION", f"Cannot move from {current.value} to {target.value}", http_status=409)
    return trigger
