from __future__ import annotations

from sqlalchemy import delete, select

from actions.candidate_repo import get_job, load_flow, load_rounds
from actions.helpers import actor_id, append_audit, clamp_int, next_prefixed_id
from models import InterviewFlow, InterviewRound, JobOpening
from recruitment.rounds import RoundConfig, enabled_rounds, validate_flow
from utils import ApiError, AuthContext, iso_utc_now, normalize_role, safe_json_string


_JOB_STATUSES = {"OPEN", "ON_HOLD", "CLOSED"}


def _serialize_job(job: JobOpening) -> dict:
    return {
        "jobId": job.jobId,
        "title": job.title,
        "department": job.department,
        "location": job.location,
        "description": job.description,
        "openings": int(job.openings or 0),
        "status": job.status,
        "flowId": job.flowId or "",
        "createdAt": job.createdAt or "",
        "updatedAt": job.updatedAt or "",
    }


def job_opening_upsert(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    title = str(data.get("title") or "").strip()
    job_id = str(data.get("jobId") or "").strip()
    now = iso_utc_now()

    if job_id:
        job = get_job(db, job_id)
        created = False
    else:
        if not title:
            raise ApiError("BAD_REQUEST", "Missing title")
        job = JobOpening(jobId=next_prefixed_id(db, "JOB", "JOB-"), status="OPEN", openings=1, createdAt=now, createdBy=actor_id(auth))
        db.add(job)
        created = True

    if title:
        job.title = title
    for key in ("department", "location", "description"):
        if key in data:
            setattr(job, key, str(data.get(key) or "").strip())
    if "openings" in data:
        job.openings = clamp_int(data.get("openings"), 1, lo=1, hi=10_000)
    if "status" in data:
        status = str(data.get("status") or "").upper().strip()
        if status not in _JOB_STATUSES:
            raise ApiError("BAD_REQUEST", f"Invalid job status: {status}")
        job.status = status
    job.updatedAt = now
    job.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="JOB_OPENING",
        entityId=job.jobId,
        action="JOB_OPENING_UPSERT",
        toState=job.status or "OPEN",
        stageTag="JOB_CREATE" if created else "JOB_UPDATE",
        actor=auth,
        at=now,
    )
    return {"job": _serialize_job(job), "created": created}


def job_opening_list(data, auth: AuthContext | None, db, cfg):
    status = str((data or {}).get("status") or "").upper().strip()
    q = select(JobOpening)
    if status:
        q = q.where(JobOpening.status == status)
    rows = db.execute(q.order_by(JobOpening.createdAt.desc())).scalars().all()
    return {"items": [_serialize_job(j) for j in rows], "total": len(rows)}


def _parse_rounds(raw) -> list[RoundConfig]:
    if not isinstance(raw, list) or not raw:
        raise ApiError("BAD_REQUEST", "rounds must be a non-empty list")
    rounds = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ApiError("BAD_REQUEST", "Each round must be an object")
        rounds.append(RoundConfig.from_dict(item, i))
    validate_flow(rounds)
    if not enabled_rounds(rounds):
        raise ApiError("BAD_REQUEST", "At least one round must be enabled")
    return rounds


def _serialize_flow(flow: InterviewFlow, rounds: list[RoundConfig]) -> dict:
    return {
        "flowId": flow.flowId,
        "jobId": flow.jobId,
        "name": flow.name or "",
        "rounds": [r.to_dict() for r in sorted(rounds, key=lambda r: r.round_number)],
        "updatedAt": flow.updatedAt or "",
    }


def interview_flow_upsert(data, auth: AuthContext | None, db, cfg):
    """Replaces the job's rounds wholesale; round numbers are kept as given."""

    data = data or {}
    job = get_job(db, data.get("jobId"))
    rounds = _parse_rounds(data.get("rounds"))
    now = iso_utc_now()

    flow = load_flow(db, job.jobId)
    created = flow is None
    if created:
        flow = InterviewFlow(flowId=next_prefixed_id(db, "FLOW", "FLOW-"), jobId=job.jobId, createdAt=now, createdBy=actor_id(auth))
        db.add(flow)
    flow.name = str(data.get("name") or flow.name or f"{job.title} interview flow")
    flow.updatedAt = now
    flow.updatedBy = actor_id(auth)

    db.execute(delete(InterviewRound).where(InterviewRound.flowId == flow.flowId))
    for r in rounds:
        db.add(
            InterviewRound(
                flowId=flow.flowId,
                roundNumber=r.round_number,
                roundName=r.name or f"Round {r.round_number}",
                assignedRole=normalize_role(r.assigned_role),
                assignedInterviewersJson=safe_json_string(list(r.assigned_interviewers), "[]"),
                questionsJson=safe_json_string([q.to_dict() for q in r.questions], "[]"),
                enabled=r.enabled,
            )
        )
    job.flowId = flow.flowId
    db.flush()

    append_audit(
        db,
        entityType="INTERVIEW_FLOW",
        entityId=flow.flowId,
        action="INTERVIEW_FLOW_UPSERT",
        stageTag="FLOW_CREATE" if created else "FLOW_UPDATE",
        actor=auth,
        at=now,
        meta={"jobId": job.jobId, "rounds": [r.round_number for r in rounds], "enabled": [r.round_number for r in enabled_rounds(rounds)]},
    )
    return {"flow": _serialize_flow(flow, rounds), "created": created}


def interview_flow_get(data, auth: AuthContext | None, db, cfg):
    job = get_job(db, (data or {}).get("jobId"))
    flow = load_flow(db, job.jobId)
    if not flow:
        raise ApiError("FLOW_NOT_CONFIGURED", "No interview flow is configured for this job")
    return {"flow": _serialize_flow(flow, load_rounds(db, job.jobId))}
