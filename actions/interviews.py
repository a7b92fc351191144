from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select

from actions.candidate_repo import (
    candidate_status,
    get_candidate,
    hired_for_other_job,
    interview_records,
    load_rounds,
    lock_candidate,
    serialize_candidate,
)
from actions.helpers import (
    actor_from_auth,
    actor_id,
    append_audit,
    clamp_int,
    next_prefixed_id,
    parse_version,
    require_str,
)
from actions.lifecycle_service import apply_transition, check_version
from models import Candidate, Interview, User
from recruitment.rounds import (
    Actor,
    RoundConfig,
    can_access_round,
    enabled_rounds,
    find_round,
    first_round,
    is_last_round,
    is_round_locked,
    next_round_after,
    progress_from_interviews,
)
from recruitment.scoring import assert_valid_submission, normalized_responses, overall_score
from recruitment.statuses import (
    CandidateStatus,
    InterviewStatus,
    OPEN_INTERVIEW_STATUSES,
    Recommendation,
    parse_enum,
)
from recruitment.transitions import Trigger, next_status
from utils import ApiError, AuthContext, iso_utc_now, normalize_role, parse_datetime_maybe, safe_json_load, safe_json_string, to_iso_utc


# Roles that see every interview; everyone else only sees interviews assigned to them.
_ALL_INTERVIEWS_ROLES = {"SUPER_ADMIN", "ADMIN", "SENIOR_HR", "HR", "RECRUITER"}

_REPEAT_VERDICTS = {Recommendation.HOLD, Recommendation.FURTHER_ROUND}


def _serialize_interview(it: Interview, *, include_responses: bool = False) -> dict[str, Any]:
    out = {
        "interviewId": it.interviewId,
        "candidateId": it.candidateId,
        "jobId": it.jobId,
        "round": int(it.round or 0),
        "roundName": it.roundName,
        "status": it.status,
        "scheduledAt": it.scheduledAt,
        "durationMinutes": int(it.durationMinutes or 0),
        "mode": it.mode,
        "location": it.location,
        "interviewerId": it.interviewerId,
        "overallScore": it.overallScore,
        "recommendation": it.recommendation or None,
        "feedback": it.feedback,
        "cancelReason": it.cancelReason,
        "submittedBy": it.submittedBy,
        "submittedAt": it.submittedAt,
    }
    if include_responses:
        out["responses"] = safe_json_load(it.responsesJson, [])
    return out


def _flow_rounds(db, cand: Candidate) -> list[RoundConfig]:
    rounds = load_rounds(db, cand.jobId)
    if not enabled_rounds(rounds):
        raise ApiError("FLOW_NOT_CONFIGURED", "No interview flow is configured for this job")
    return rounds


def _enabled_round(rounds: list[RoundConfig], n: int) -> RoundConfig:
    rc = find_round(rounds, n)
    if rc is None or not rc.enabled:
        raise ApiError("ROUND_NOT_FOUND", f"Round {n} is not part of this interview flow")
    return rc


def _assert_unlocked(db, cand: Candidate, rounds: list[RoundConfig], n: int) -> None:
    progress = progress_from_interviews(interview_records(db, cand.candidateId))
    enabled_numbers = [r.round_number for r in enabled_rounds(rounds)]
    if is_round_locked(n, progress, enabled_round_numbers=enabled_numbers):
        raise ApiError("ROUND_LOCKED", f"Round {n} is locked until the previous round is cleared", http_status=409)


def _assert_not_passed(db, cand: Candidate, n: int) -> None:
    # A round is only repeated after HOLD or FURTHER_ROUND.
    for p in progress_from_interviews(interview_records(db, cand.candidateId)):
        if p.round_number == n and p.recommendation == Recommendation.PROCEED:
            raise ApiError("INVALID_TRANSITION", f"Round {n} has already been cleared", http_status=409)


def _open_interviews(db, candidate_id: str) -> list[Interview]:
    return (
        db.execute(
            select(Interview)
            .where(Interview.candidateId == candidate_id)
            .where(Interview.status.in_([s.value for s in OPEN_INTERVIEW_STATUSES]))
        )
        .scalars()
        .all()
    )


def _default_round(db, cand: Candidate, rounds: list[RoundConfig]) -> int:
    status = candidate_status(cand)
    current = int(cand.currentRound or 0)
    if status == CandidateStatus.APPLIED:
        return first_round(rounds)
    if status == CandidateStatus.INTERVIEW_SCHEDULED:
        return current
    submitted = [it for it in interview_records(db, cand.candidateId) if it.round_number == current and it.is_submitted]
    if submitted:
        latest = max(submitted, key=lambda it: it.submitted_at or it.created_at)
        if latest.recommendation in _REPEAT_VERDICTS:
            return current
    nxt = next_round_after(current, rounds)
    if nxt is None:
        raise ApiError("ROUND_NOT_FOUND", "No interview rounds remain for this candidate")
    return nxt


def _check_interviewer(db, rc: RoundConfig, interviewer_id: str) -> str:
    iid = str(interviewer_id or "").strip()
    if not iid:
        return ""
    user = db.execute(select(User).where(User.userId == iid)).scalar_one_or_none()
    if not user or str(user.status or "").upper() != "ACTIVE":
        raise ApiError("INTERVIEWER_NOT_ELIGIBLE", "Interviewer not found or inactive")
    if not can_access_round(rc, Actor(user_id=user.userId, role=user.role, email=user.email)):
        raise ApiError(
            "INTERVIEWER_NOT_ELIGIBLE",
            f"{user.fullName or user.email} cannot conduct {rc.name or f'round {rc.round_number}'}",
        )
    return user.userId


def _scheduled_at(data: dict, cfg) -> str:
    dt = parse_datetime_maybe((data or {}).get("scheduledAt"), app_timezone=cfg.APP_TIMEZONE)
    if not dt:
        raise ApiError("BAD_REQUEST", "scheduledAt must be an ISO date-time")
    return to_iso_utc(dt)


def interview_schedule(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cand = lock_candidate(db, candidate_id=data.get("candidateId"))
    # Refuse frozen or out-of-stage candidates before looking at rounds.
    next_status(candidate_status(cand), Trigger.SCHEDULE_INTERVIEW, hired_for_other_job=hired_for_other_job(cand))
    rounds = _flow_rounds(db, cand)

    raw_round = data.get("round")
    n = clamp_int(raw_round, 0, lo=0, hi=1000) if raw_round not in (None, "") else _default_round(db, cand, rounds)
    rc = _enabled_round(rounds, n)

    if n < int(cand.currentRound or 0):
        raise ApiError("BAD_REQUEST", f"Round {n} is already behind the candidate's current round")
    if _open_interviews(db, cand.candidateId):
        raise ApiError("CONFLICT", "Candidate already has an open interview", http_status=409)
    _assert_not_passed(db, cand, n)
    _assert_unlocked(db, cand, rounds, n)

    scheduled_at = _scheduled_at(data, cfg)
    interviewer_id = _check_interviewer(db, rc, data.get("interviewerId"))

    to_status = apply_transition(
        db,
        cand=cand,
        trigger=Trigger.SCHEDULE_INTERVIEW,
        auth=auth,
        expected_version=parse_version(data),
        patch={"currentRound": n},
        stage_tag="INTERVIEW_SCHEDULE",
        meta={"round": n},
    )

    now = iso_utc_now()
    it = Interview(
        interviewId=next_prefixed_id(db, "INTERVIEW", "INT-", width=5),
        candidateId=cand.candidateId,
        jobId=cand.jobId,
        round=n,
        roundName=rc.name or f"Round {n}",
        status=InterviewStatus.SCHEDULED.value,
        scheduledAt=scheduled_at,
        durationMinutes=clamp_int(data.get("durationMinutes"), 30, lo=5, hi=480),
        mode=str(data.get("mode") or "").strip().upper(),
        location=str(data.get("location") or "").strip(),
        interviewerId=interviewer_id,
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    db.add(it)

    append_audit(
        db,
        entityType="INTERVIEW",
        entityId=it.interviewId,
        action="INTERVIEW_SCHEDULE",
        toState=InterviewStatus.SCHEDULED.value,
        stageTag="INTERVIEW_SCHEDULE",
        actor=auth,
        at=now,
        meta={"candidateId": cand.candidateId, "round": n, "scheduledAt": scheduled_at, "interviewerId": interviewer_id},
    )
    db.flush()
    return {"interview": _serialize_interview(it), "candidate": serialize_candidate(cand), "status": to_status.value}


def _get_interview(db, interview_id: Any) -> Interview:
    iid = str(interview_id or "").strip()
    if not iid:
        raise ApiError("BAD_REQUEST", "Missing interviewId")
    it = db.execute(select(Interview).where(Interview.interviewId == iid)).scalar_one_or_none()
    if not it:
        raise ApiError("NOT_FOUND", "Interview not found")
    return it


def _assert_open(it: Interview) -> None:
    status = InterviewStatus(str(it.status or "").upper())
    if status == InterviewStatus.COMPLETED:
        raise ApiError("CONFLICT", "Interview has already been submitted", http_status=409)
    if status not in OPEN_INTERVIEW_STATUSES:
        raise ApiError("INVALID_TRANSITION", f"Interview is {status.value}", http_status=409)


def interview_reschedule(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    it = _get_interview(db, data.get("interviewId"))
    cand = lock_candidate(db, candidate_id=it.candidateId)
    _assert_open(it)

    scheduled_at = _scheduled_at(data, cfg)
    interviewer_id = it.interviewerId
    if "interviewerId" in data:
        rc = _enabled_round(_flow_rounds(db, cand), int(it.round or 0))
        interviewer_id = _check_interviewer(db, rc, data.get("interviewerId"))

    apply_transition(
        db,
        cand=cand,
        trigger=Trigger.RESCHEDULE_INTERVIEW,
        auth=auth,
        expected_version=parse_version(data),
        stage_tag="INTERVIEW_RESCHEDULE",
        meta={"interviewId": it.interviewId, "from": it.scheduledAt, "to": scheduled_at},
    )

    now = iso_utc_now()
    from_at = it.scheduledAt
    it.scheduledAt = scheduled_at
    it.interviewerId = interviewer_id
    it.status = InterviewStatus.RESCHEDULED.value
    if "durationMinutes" in data:
        it.durationMinutes = clamp_int(data.get("durationMinutes"), 30, lo=5, hi=480)
    it.updatedAt = now
    it.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="INTERVIEW",
        entityId=it.interviewId,
        action="INTERVIEW_RESCHEDULE",
        fromState=from_at,
        toState=scheduled_at,
        stageTag="INTERVIEW_RESCHEDULE",
        remark=str(data.get("reason") or ""),
        actor=auth,
        at=now,
    )
    return {"interview": _serialize_interview(it), "candidate": serialize_candidate(cand)}


def interview_cancel(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    it = _get_interview(db, data.get("interviewId"))
    cand = lock_candidate(db, candidate_id=it.candidateId)
    _assert_open(it)
    check_version(cand, parse_version(data))

    reason = str(data.get("reason") or "").strip()
    if not reason:
        raise ApiError("REASON_REQUIRED", "Cancellation reason is required")

    now = iso_utc_now()
    from_status = it.status
    it.status = InterviewStatus.CANCELLED.value
    it.cancelReason = reason
    it.updatedAt = now
    it.updatedBy = actor_id(auth)

    # The candidate keeps its status; the round is offered for scheduling again.
    cand.version = int(cand.version or 1) + 1
    cand.updatedAt = now
    cand.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="INTERVIEW",
        entityId=it.interviewId,
        action="INTERVIEW_CANCEL",
        fromState=from_status,
        toState=InterviewStatus.CANCELLED.value,
        stageTag="INTERVIEW_CANCEL",
        remark=reason,
        actor=auth,
        at=now,
        meta={"candidateId": cand.candidateId, "round": int(it.round or 0)},
    )
    return {"interview": _serialize_interview(it), "candidate": serialize_candidate(cand)}


def _may_submit(it: Interview, rc: RoundConfig, actor: Actor) -> bool:
    if actor.is_elevated:
        return True
    if it.interviewerId:
        return actor.user_id == it.interviewerId
    return can_access_round(rc, actor)


def interview_submit(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    actor = actor_from_auth(auth)
    it = _get_interview(db, data.get("interviewId"))
    cand = lock_candidate(db, candidate_id=it.candidateId)
    _assert_open(it)

    rounds = _flow_rounds(db, cand)
    n = int(it.round or 0)
    rc = _enabled_round(rounds, n)
    if not _may_submit(it, rc, actor):
        raise ApiError("INTERVIEWER_NOT_ASSIGNED", "You are not assigned to conduct this interview", http_status=403)
    _assert_unlocked(db, cand, rounds, n)

    recommendation = parse_enum(Recommendation, require_str(data, "recommendation"), field="recommendation")
    responses = data.get("responses") or []
    if not isinstance(responses, list):
        raise ApiError("BAD_REQUEST", "responses must be a list")
    assert_valid_submission(rc.questions, responses)

    feedback = str(data.get("feedback") or "").strip()
    last = is_last_round(n, rounds)
    to_status = apply_transition(
        db,
        cand=cand,
        trigger=Trigger.SUBMIT_INTERVIEW,
        auth=auth,
        expected_version=parse_version(data),
        recommendation=recommendation,
        is_last_round=last,
        reason=feedback or f"Rejected in {rc.name or f'round {n}'}",
        stage_tag="INTERVIEW_SUBMIT",
        meta={"interviewId": it.interviewId, "round": n, "recommendation": recommendation.value, "lastRound": last},
    )

    now = iso_utc_now()
    it.responsesJson = safe_json_string(normalized_responses(rc.questions, responses), "[]")
    it.overallScore = overall_score(rc.questions, responses)
    it.recommendation = recommendation.value
    it.feedback = feedback
    it.status = InterviewStatus.COMPLETED.value
    it.submittedBy = actor.user_id
    it.submittedAt = now
    it.updatedAt = now
    it.updatedBy = actor.user_id

    append_audit(
        db,
        entityType="INTERVIEW",
        entityId=it.interviewId,
        action="INTERVIEW_SUBMIT",
        fromState=InterviewStatus.SCHEDULED.value,
        toState=InterviewStatus.COMPLETED.value,
        stageTag="INTERVIEW_SUBMIT",
        remark=feedback,
        actor=auth,
        at=now,
        meta={"candidateId": cand.candidateId, "overallScore": it.overallScore, "recommendation": recommendation.value},
    )
    return {
        "interview": _serialize_interview(it, include_responses=True),
        "candidate": serialize_candidate(cand),
        "status": to_status.value,
    }


def interview_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    role = normalize_role(auth.role if auth else "")

    q = select(Interview)
    cid = str(data.get("candidateId") or "").strip()
    if cid:
        q = q.where(Interview.candidateId == cid)
    status = str(data.get("status") or "").upper().strip()
    if status:
        q = q.where(Interview.status == parse_enum(InterviewStatus, status, field="interview status").value)

    interviewer_id = str(data.get("interviewerId") or "").strip()
    if role not in _ALL_INTERVIEWS_ROLES or data.get("mine"):
        interviewer_id = auth.userId
    if interviewer_id:
        q = q.where(Interview.interviewerId == interviewer_id)

    rows = db.execute(q.order_by(Interview.scheduledAt, Interview.interviewId)).scalars().all()
    return {"items": [_serialize_interview(it) for it in rows], "total": len(rows)}


def interview_progress_get(data, auth: AuthContext | None, db, cfg):
    actor = actor_from_auth(auth)
    cand = get_candidate(db, (data or {}).get("candidateId"))
    rounds = load_rounds(db, cand.jobId)
    records = interview_records(db, cand.candidateId)
    progress = progress_from_interviews(records)
    by_round = {p.round_number: p for p in progress}
    enabled_numbers = [r.round_number for r in enabled_rounds(rounds)]

    items = []
    for rc in sorted(rounds, key=lambda r: r.round_number):
        p: Optional[Any] = by_round.get(rc.round_number)
        open_ids = [r.interview_id for r in records if r.round_number == rc.round_number and r.is_open]
        items.append(
            {
                "roundNumber": rc.round_number,
                "roundName": rc.name,
                "enabled": rc.enabled,
                "locked": rc.enabled and is_round_locked(rc.round_number, progress, enabled_round_numbers=enabled_numbers),
                "completed": bool(p and p.is_completed),
                "recommendation": p.recommendation.value if p and p.recommendation else None,
                "openInterviewId": open_ids[-1] if open_ids else None,
                "canAccess": can_access_round(rc, actor),
            }
        )

    return {
        "candidateId": cand.candidateId,
        "status": candidate_status(cand).value,
        "currentRound": int(cand.currentRound or 0),
        "rounds": items,
    }
