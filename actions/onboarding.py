from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import func, select

from actions.candidate_repo import (
    candidate_status,
    get_bgv,
    hired_for_other_job,
    lock_candidate,
    serialize_candidate,
)
from actions.helpers import actor_id, append_audit, next_prefixed_id, parse_version, setting_bool
from actions.lifecycle_service import apply_transition
from actions.offers import latest_offer
from auth import invalidate_rbac_cache, revoke_user_sessions
from models import Candidate, Employee, Interview, JobOpening, Offer, User
from recruitment.statuses import (
    TERMINAL_STATUSES,
    CandidateStatus,
    InterviewStatus,
    OPEN_INTERVIEW_STATUSES,
    OfferStatus,
    VerificationStatus,
)
from recruitment.transitions import Trigger, next_status
from recruitment.verification import bgv_status_or_none
from utils import ApiError, AuthContext, iso_utc_now, normalize_role, safe_json_string


def _accepted_offer(db, cand: Candidate, offer_id: str = "") -> Offer:
    if offer_id:
        o = db.execute(select(Offer).where(Offer.offerId == offer_id)).scalar_one_or_none()
        if not o or o.candidateId != cand.candidateId:
            raise ApiError("NOT_FOUND", "Offer not found")
    else:
        o = latest_offer(db, cand.candidateId)
        if not o:
            raise ApiError("INVALID_TRANSITION", "Candidate has no offer", http_status=409)
    if str(o.status or "").upper() != OfferStatus.ACCEPTED.value:
        raise ApiError("INVALID_TRANSITION", f"Only an accepted offer can move to onboarding (offer is {o.status})", http_status=409)
    return o


def _onboard(db, cand: Candidate, *, auth: AuthContext, offer_id: str = "", version: Optional[int] = None) -> Offer:
    # ALREADY_CONVERTED and frozen applications are refused before offer checks.
    next_status(candidate_status(cand), Trigger.MOVE_TO_ONBOARDING, hired_for_other_job=hired_for_other_job(cand))
    offer = _accepted_offer(db, cand, offer_id)

    if setting_bool(db, "ONBOARDING_REQUIRES_BGV_CLEARED", True):
        bgv = get_bgv(db, cand.candidateId)
        status = bgv_status_or_none(bgv.overallStatus) if bgv else None
        if status != VerificationStatus.CLEARED:
            raise ApiError(
                "BGV_NOT_CLEARED",
                "Background verification must be cleared before onboarding",
                http_status=409,
                details={"bgvStatus": status.value if status else None},
            )

    apply_transition(
        db,
        cand=cand,
        trigger=Trigger.MOVE_TO_ONBOARDING,
        auth=auth,
        expected_version=version,
        stage_tag="MOVE_TO_ONBOARDING",
        meta={"offerId": offer.offerId},
    )
    return offer


def move_to_onboarding(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    offer_id = str(data.get("offerId") or "").strip()
    cid = str(data.get("candidateId") or "").strip()
    if not cid and offer_id:
        o = db.execute(select(Offer).where(Offer.offerId == offer_id)).scalar_one_or_none()
        if not o:
            raise ApiError("NOT_FOUND", "Offer not found")
        cid = o.candidateId

    cand = lock_candidate(db, candidate_id=cid)
    offer = _onboard(db, cand, auth=auth, offer_id=offer_id, version=parse_version(data))
    return {"candidate": serialize_candidate(cand), "offerId": offer.offerId}


def _serialize_employee(emp: Employee) -> dict[str, Any]:
    return {
        "employeeId": emp.employeeId,
        "candidateId": emp.candidateId,
        "jobId": emp.jobId,
        "name": emp.name,
        "email": emp.email,
        "phone": emp.phone,
        "designation": emp.designation,
        "joiningDate": emp.joiningDate,
        "managerId": emp.managerId or None,
        "status": emp.status,
    }


def _employee_known(db, employee_id: str) -> bool:
    if db.execute(select(Employee.employeeId).where(Employee.employeeId == employee_id)).first():
        return True
    return db.execute(select(User.userId).where(User.employeeId == employee_id)).first() is not None


def _freeze_other_applications(db, cand: Candidate, *, job_title: str, hired_date: str, auth: AuthContext) -> list[str]:
    info = {"jobTitle": job_title, "hiredDate": hired_date, "jobId": cand.jobId, "candidateId": cand.candidateId}
    others = (
        db.execute(
            select(Candidate)
            .where(func.lower(Candidate.email) == str(cand.email or "").lower())
            .where(Candidate.candidateId != cand.candidateId)
            .with_for_update(of=Candidate)
        )
        .scalars()
        .all()
    )

    now = iso_utc_now()
    frozen: list[str] = []
    for other in others:
        if candidate_status(other) in TERMINAL_STATUSES or other.hiredForOtherJobJson:
            continue
        other.hiredForOtherJobJson = safe_json_string(info, "")
        other.version = int(other.version or 1) + 1
        other.updatedAt = now
        other.updatedBy = actor_id(auth)

        open_rows = (
            db.execute(
                select(Interview)
                .where(Interview.candidateId == other.candidateId)
                .where(Interview.status.in_([s.value for s in OPEN_INTERVIEW_STATUSES]))
            )
            .scalars()
            .all()
        )
        for it in open_rows:
            it.status = InterviewStatus.CANCELLED.value
            it.cancelReason = f"Hired for {job_title}"
            it.updatedAt = now
            it.updatedBy = actor_id(auth)

        append_audit(
            db,
            entityType="CANDIDATE",
            entityId=other.candidateId,
            action="HIRED_FOR_OTHER_JOB",
            fromState=other.status,
            toState=other.status,
            stageTag="PIPELINE_FROZEN",
            remark=f"Hired for {job_title}",
            actor=auth,
            at=now,
            meta=info,
        )
        frozen.append(other.candidateId)
    return frozen


def candidate_convert_to_staff(data, auth: AuthContext | None, db, cfg):
    """
    Create the Employee record for a hired candidate.

    Idempotent: a candidate that already has an Employee returns it unchanged.
    An OFFER_ACCEPTED candidate is moved to onboarding first, under the same
    offer and background-verification checks as MOVE_TO_ONBOARDING.
    """

    data = data or {}
    cand = lock_candidate(db, candidate_id=data.get("candidateId"))

    existing = db.execute(select(Employee).where(Employee.candidateId == cand.candidateId)).scalar_one_or_none()
    if existing:
        return {"employee": _serialize_employee(existing), "candidate": serialize_candidate(cand), "alreadyConverted": True, "frozenApplications": []}

    if candidate_status(cand) != CandidateStatus.HIRED:
        offer = _onboard(db, cand, auth=auth, version=parse_version(data))
    else:
        offer = latest_offer(db, cand.candidateId)

    manager_id = str(data.get("managerId") or "").strip().upper()
    if manager_id and not _employee_known(db, manager_id):
        raise ApiError("NOT_FOUND", f"Manager {manager_id} not found")

    job = db.execute(select(JobOpening).where(JobOpening.jobId == cand.jobId)).scalar_one_or_none()
    job_title = (job.title if job else "") or cand.position or ""
    now = iso_utc_now()

    emp = Employee(
        employeeId=next_prefixed_id(db, "EMPLOYEE", "EMP-"),
        candidateId=cand.candidateId,
        jobId=cand.jobId,
        name=cand.name,
        email=str(cand.email or "").lower(),
        phone=cand.phone,
        designation=(offer.designation if offer else "") or job_title,
        joiningDate=(offer.joiningDate if offer else "") or now[:10],
        managerId=manager_id,
        status="ACTIVE",
        createdAt=now,
        createdBy=actor_id(auth),
    )
    db.add(emp)

    cand.employeeId = emp.employeeId
    cand.version = int(cand.version or 1) + 1
    cand.updatedAt = now
    cand.updatedBy = actor_id(auth)

    user = db.execute(select(User).where(func.lower(User.email) == emp.email)).scalars().first()
    if user:
        user.employeeId = emp.employeeId
        if normalize_role(user.role) == "CANDIDATE":
            user.role = "EMPLOYEE"
            user.updatedAt = now
            user.updatedBy = actor_id(auth)
            revoke_user_sessions(db, user_id=user.userId, revoked_by=actor_id(auth))
            invalidate_rbac_cache()

    frozen = _freeze_other_applications(db, cand, job_title=job_title, hired_date=cand.hiredAt or now, auth=auth)

    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=cand.candidateId,
        action="CONVERT_TO_STAFF",
        fromState=CandidateStatus.HIRED.value,
        toState=CandidateStatus.HIRED.value,
        stageTag="CONVERT_TO_STAFF",
        actor=auth,
        at=now,
        meta={"employeeId": emp.employeeId, "frozenApplications": frozen},
    )
    db.flush()
    return {"employee": _serialize_employee(emp), "candidate": serialize_candidate(cand), "alreadyConverted": False, "frozenApplications": frozen}
