from __future__ import annotations

from datetime import timedelta
from typing import Any

from sqlalchemy import func, or_, select

from actions.candidate_repo import (
    candidate_snapshot,
    candidate_status,
    employee_for_email,
    get_bgv,
    get_candidate,
    get_job,
    interview_records,
    interview_rows,
    resolver_context,
    serialize_candidate,
)
from actions.helpers import actor_from_auth, actor_id, append_audit, next_prefixed_id, parse_version, require_str
from actions.lifecycle_service import transition_candidate
from auth import capabilities_for_user
from models import AuditLog, BackgroundVerification, Candidate, Interview, JobOpening, Offer
from recruitment.capabilities import is_action_allowed
from recruitment.kanban import COLUMN_ORDER, COLUMN_TITLES, column_for
from recruitment.query_state import params_from_query, query_from_params
from recruitment.resolver import resolve_action
from recruitment.statuses import (
    CandidateSource,
    CandidateStatus,
    InterviewStatus,
    OPEN_INTERVIEW_STATUSES,
    parse_candidate_status,
    parse_enum,
    stored_status_values,
)
from recruitment.transitions import Trigger, manual_trigger_for
from recruitment.verification import bgv_status_or_none
from utils import ApiError, AuthContext, iso_utc_now, normalize_role, parse_ymd, safe_json_load, safe_json_string


# Roles outside recruiting may only refer people.
_REFERRAL_ONLY_ROLES = {"MANAGER", "TEAM_LEADER", "EMPLOYEE"}

_BOARD_LIMIT = 1000


def _hired_elsewhere(db, email: str) -> dict[str, Any] | None:
    """The hiring record of a person already converted through another application."""

    emp = employee_for_email(db, email)
    if emp:
        job = db.execute(select(JobOpening).where(JobOpening.jobId == emp.jobId)).scalar_one_or_none()
        return {
            "jobTitle": (job.title if job else "") or emp.designation or "",
            "hiredDate": emp.joiningDate or emp.createdAt or "",
            "jobId": emp.jobId or "",
            "candidateId": emp.candidateId or "",
        }

    hired = (
        db.execute(
            select(Candidate)
            .where(func.lower(Candidate.email) == email)
            .where(Candidate.status == CandidateStatus.HIRED.value)
        )
        .scalars()
        .first()
    )
    if hired:
        job = db.execute(select(JobOpening).where(JobOpening.jobId == hired.jobId)).scalar_one_or_none()
        return {
            "jobTitle": (job.title if job else "") or hired.position or "",
            "hiredDate": hired.hiredAt or "",
            "jobId": hired.jobId,
            "candidateId": hired.candidateId,
        }
    return None


def resolved_action_for(db, cand: Candidate, auth: AuthContext, *, read_only: bool = False, convert_to_staff: bool = False) -> dict[str, Any]:
    resolved = resolve_action(
        candidate_snapshot(cand),
        interview_records(db, cand.candidateId),
        actor_from_auth(auth),
        resolver_context(db, cand, read_only=read_only, convert_to_staff=convert_to_staff),
    )
    allowed = is_action_allowed(capabilities_for_user(db, auth), resolved.type)
    out = resolved.to_dict()
    out["allowed"] = allowed
    out["enabled"] = bool(resolved.enabled and allowed)
    return out


def candidate_add(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    job = get_job(db, data.get("jobId"))
    if str(job.status or "").upper() == "CLOSED":
        raise ApiError("BAD_REQUEST", "Job opening is closed")

    name = require_str(data, "name")
    email = require_str(data, "email").lower()
    if "@" not in email:
        raise ApiError("BAD_REQUEST", "Invalid email")

    role = normalize_role(auth.role if auth else "")
    raw_source = data.get("source")
    if role in _REFERRAL_ONLY_ROLES:
        source = parse_enum(CandidateSource, raw_source or CandidateSource.REFERRAL.value, field="source")
        if source != CandidateSource.REFERRAL:
            raise ApiError("FORBIDDEN", "Only referrals can be added by this role", http_status=403)
    else:
        source = parse_enum(CandidateSource, raw_source or CandidateSource.MANUAL.value, field="source")

    dup = (
        db.execute(select(Candidate).where(Candidate.jobId == job.jobId).where(func.lower(Candidate.email) == email))
        .scalars()
        .first()
    )
    if dup:
        raise ApiError(
            "CONFLICT",
            "Candidate has already applied for this job",
            http_status=409,
            details={"candidateId": dup.candidateId},
        )

    hired_info = _hired_elsewhere(db, email)
    now = iso_utc_now()
    referred_by = str(data.get("referredBy") or "").strip()
    if source == CandidateSource.REFERRAL and not referred_by:
        referred_by = actor_id(auth)

    cand = Candidate(
        candidateId=next_prefixed_id(db, "CANDIDATE", "CAND-", width=5),
        jobId=job.jobId,
        name=name,
        email=email,
        phone=str(data.get("phone") or "").strip(),
        position=str(data.get("position") or job.title or "").strip(),
        source=source.value,
        referredBy=referred_by,
        resumeUrl=str(data.get("resumeUrl") or "").strip(),
        status=CandidateStatus.APPLIED.value,
        currentRound=0,
        hiredForOtherJobJson=safe_json_string(hired_info, "") if hired_info else "",
        version=1,
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    db.add(cand)

    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=cand.candidateId,
        action="CANDIDATE_ADD",
        toState=CandidateStatus.APPLIED.value,
        stageTag="CANDIDATE_ADD",
        actor=auth,
        at=now,
        meta={"jobId": job.jobId, "source": source.value, "hiredForOtherJob": hired_info},
    )
    db.flush()
    return {"candidate": serialize_candidate(cand)}


def candidate_get(data, auth: AuthContext | None, db, cfg):
    cand = get_candidate(db, (data or {}).get("candidateId"))
    offers = (
        db.execute(select(Offer).where(Offer.candidateId == cand.candidateId).order_by(Offer.revisionNumber))
        .scalars()
        .all()
    )
    bgv = get_bgv(db, cand.candidateId)
    return {
        "candidate": serialize_candidate(cand),
        "action": resolved_action_for(db, cand, auth),
        "interviews": [
            {
                "interviewId": it.interviewId,
                "round": int(it.round or 0),
                "roundName": it.roundName,
                "status": it.status,
                "scheduledAt": it.scheduledAt,
                "interviewerId": it.interviewerId,
                "recommendation": it.recommendation or None,
                "overallScore": it.overallScore,
            }
            for it in interview_rows(db, cand.candidateId)
        ],
        "offers": [{"offerId": o.offerId, "status": o.status, "revisionNumber": int(o.revisionNumber or 0)} for o in offers],
        "bgvStatus": bgv.overallStatus if bgv else None,
    }


def candidate_list(data, auth: AuthContext | None, db, cfg):
    query = query_from_params(data or {})

    q = select(Candidate)
    if query.search:
        like = f"%{query.search.lower()}%"
        q = q.where(
            or_(
                func.lower(Candidate.name).like(like),
                func.lower(Candidate.email).like(like),
                Candidate.phone.like(like),
                func.lower(Candidate.candidateId).like(like),
            )
        )
    if query.status is not None:
        q = q.where(Candidate.status.in_(stored_status_values(query.status)))
    if query.source is not None:
        q = q.where(Candidate.source == query.source.value)
    if query.job_id:
        q = q.where(Candidate.jobId == query.job_id)
    if query.date_from:
        q = q.where(Candidate.createdAt >= query.date_from)
    to_day = parse_ymd(query.date_to)
    if to_day is not None:
        # createdAt is a UTC ISO timestamp; the `to` day is inclusive.
        q = q.where(Candidate.createdAt < (to_day + timedelta(days=1)).isoformat())

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = (
        db.execute(q.order_by(Candidate.createdAt.desc(), Candidate.candidateId.desc()).offset(query.offset).limit(query.limit))
        .scalars()
        .all()
    )

    items = []
    for cand in rows:
        item = serialize_candidate(cand)
        item["action"] = resolved_action_for(db, cand, auth)
        items.append(item)

    return {
        "items": items,
        "total": int(total or 0),
        "page": query.page,
        "limit": query.limit,
        "params": params_from_query(query),
    }


def candidate_status_update(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cid = require_str(data, "candidateId")
    target = parse_candidate_status(require_str(data, "status"))
    reason = str(data.get("reason") or data.get("remark") or "").strip()

    cand = get_candidate(db, cid)
    trigger = manual_trigger_for(candidate_status(cand), target)
    if trigger == Trigger.REJECT:
        return _reject(db, cid, reason=reason, auth=auth, version=parse_version(data))

    cand, to_status = transition_candidate(
        db,
        candidate_id=cid,
        trigger=trigger,
        auth=auth,
        expected_version=parse_version(data),
        reason=reason,
        stage_tag="CANDIDATE_STATUS_UPDATE",
    )
    return {"candidate": serialize_candidate(cand)}


def _reject(db, cid: str, *, reason: str, auth: AuthContext, version) -> dict[str, Any]:
    cand, _ = transition_candidate(
        db,
        candidate_id=cid,
        trigger=Trigger.REJECT,
        auth=auth,
        expected_version=version,
        reason=reason,
        stage_tag="CANDIDATE_REJECT",
    )

    now = iso_utc_now()
    cancelled = []
    open_rows = (
        db.execute(
            select(Interview)
            .where(Interview.candidateId == cid)
            .where(Interview.status.in_([s.value for s in OPEN_INTERVIEW_STATUSES]))
        )
        .scalars()
        .all()
    )
    for it in open_rows:
        it.status = InterviewStatus.CANCELLED.value
        it.cancelReason = "Candidate rejected"
        it.updatedAt = now
        it.updatedBy = actor_id(auth)
        cancelled.append(it.interviewId)

    return {"candidate": serialize_candidate(cand), "cancelledInterviews": cancelled}


def candidate_reject(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cid = require_str(data, "candidateId")
    reason = str(data.get("reason") or "").strip()
    return _reject(db, cid, reason=reason, auth=auth, version=parse_version(data))


def candidate_action_get(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cand = get_candidate(db, data.get("candidateId"))
    action = resolved_action_for(
        db,
        cand,
        auth,
        read_only=bool(data.get("readOnly")),
        convert_to_staff=bool(data.get("convertToStaff")),
    )
    return {"candidateId": cand.candidateId, "status": candidate_status(cand).value, "version": int(cand.version or 1), "action": action}


def candidate_logs(data, auth: AuthContext | None, db, cfg):
    cand = get_candidate(db, (data or {}).get("candidateId"))
    cid = cand.candidateId

    entity_ids = {cid}
    entity_ids.update(db.execute(select(Interview.interviewId).where(Interview.candidateId == cid)).scalars().all())
    entity_ids.update(db.execute(select(Offer.offerId).where(Offer.candidateId == cid)).scalars().all())
    entity_ids.update(
        db.execute(select(BackgroundVerification.bgvId).where(BackgroundVerification.candidateId == cid)).scalars().all()
    )

    rows = (
        db.execute(select(AuditLog).where(AuditLog.entityId.in_(sorted(entity_ids))).order_by(AuditLog.at, AuditLog.logId))
        .scalars()
        .all()
    )
    return {
        "candidateId": cid,
        "items": [
            {
                "entityType": r.entityType,
                "entityId": r.entityId,
                "action": r.action,
                "fromState": r.fromState,
                "toState": r.toState,
                "stageTag": r.stageTag,
                "remark": r.remark,
                "actorUserId": r.actorUserId,
                "actorRole": r.actorRole,
                "at": r.at,
                "meta": safe_json_load(r.metaJson, None),
            }
            for r in rows
            if r.stageTag != "API_CALL"
        ],
    }


def candidate_board_get(data, auth: AuthContext | None, db, cfg):
    job_id = str((data or {}).get("jobId") or "").strip()

    q = select(Candidate)
    if job_id:
        q = q.where(Candidate.jobId == job_id)
    matched = int(db.execute(select(func.count()).select_from(q.subquery())).scalar_one() or 0)
    cands = db.execute(q.order_by(Candidate.createdAt.desc()).limit(_BOARD_LIMIT)).scalars().all()

    bgv_by_candidate = {
        cid: bgv_status_or_none(status)
        for cid, status in db.execute(select(BackgroundVerification.candidateId, BackgroundVerification.overallStatus)).all()
    }

    columns = {col: [] for col in COLUMN_ORDER}
    for cand in cands:
        status = candidate_status(cand)
        col = column_for(status, int(cand.currentRound or 0), bgv_by_candidate.get(cand.candidateId))
        columns[col].append(
            {
                "candidateId": cand.candidateId,
                "name": cand.name,
                "jobId": cand.jobId,
                "status": status.value,
                "currentRound": int(cand.currentRound or 0),
                "frozen": bool(cand.hiredForOtherJobJson) and status != CandidateStatus.HIRED,
                "version": int(cand.version or 1),
            }
        )

    return {
        "columns": [
            {"key": col.value, "title": COLUMN_TITLES[col], "count": len(columns[col]), "items": columns[col]}
            for col in COLUMN_ORDER
        ],
        "total": matched,
        "shown": len(cands),
        "truncated": matched > len(cands),
    }
