from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select

from models import (
    BackgroundVerification,
    Candidate,
    CandidateDocument,
    Employee,
    Interview,
    InterviewFlow,
    InterviewRound,
    JobOpening,
    Offer,
)
from recruitment.resolver import CandidateSnapshot, ResolverContext
from recruitment.rounds import InterviewRecord, RoundConfig
from recruitment.statuses import (
    CandidateStatus,
    InterviewStatus,
    OfferStatus,
    Recommendation,
    parse_candidate_status,
)
from recruitment.verification import bgv_status_or_none
from utils import ApiError, normalize_role, safe_json_load


def lock_candidate(db, *, candidate_id: str) -> Candidate:
    cid = str(candidate_id or "").strip()
    if not cid:
        raise ApiError("BAD_REQUEST", "Missing candidateId")

    cand = (
        db.execute(select(Candidate).where(Candidate.candidateId == cid).with_for_update(of=Candidate))
        .scalars()
        .first()
    )
    if not cand:
        raise ApiError("NOT_FOUND", "Candidate not found")
    return cand


def get_candidate(db, candidate_id: str) -> Candidate:
    cid = str(candidate_id or "").strip()
    if not cid:
        raise ApiError("BAD_REQUEST", "Missing candidateId")
    cand = db.execute(select(Candidate).where(Candidate.candidateId == cid)).scalar_one_or_none()
    if not cand:
        raise ApiError("NOT_FOUND", "Candidate not found")
    return cand


def get_job(db, job_id: str) -> JobOpening:
    jid = str(job_id or "").strip()
    if not jid:
        raise ApiError("BAD_REQUEST", "Missing jobId")
    job = db.execute(select(JobOpening).where(JobOpening.jobId == jid)).scalar_one_or_none()
    if not job:
        raise ApiError("NOT_FOUND", "Job opening not found")
    return job


def candidate_status(cand: Candidate) -> CandidateStatus:
    return parse_candidate_status(cand.status)


def hired_for_other_job(cand: Candidate) -> Optional[dict[str, Any]]:
    info = safe_json_load(cand.hiredForOtherJobJson, {})
    return info or None


def load_flow(db, job_id: str) -> Optional[InterviewFlow]:
    return db.execute(select(InterviewFlow).where(InterviewFlow.jobId == str(job_id or ""))).scalar_one_or_none()


def round_config_from_row(row: InterviewRound) -> RoundConfig:
    return RoundConfig.from_dict(
        {
            "roundNumber": row.roundNumber,
            "roundName": row.roundName,
            "assignedRole": row.assignedRole,
            "assignedInterviewers": safe_json_load(row.assignedInterviewersJson, []),
            "questions": safe_json_load(row.questionsJson, []),
            "enabled": bool(row.enabled),
        }
    )


def load_rounds(db, job_id: str) -> list[RoundConfig]:
    """All rounds (enabled or not) of the job's flow; empty when no flow is configured."""

    flow = load_flow(db, job_id)
    if not flow:
        return []
    rows = (
        db.execute(select(InterviewRound).where(InterviewRound.flowId == flow.flowId).order_by(InterviewRound.roundNumber))
        .scalars()
        .all()
    )
    return [round_config_from_row(r) for r in rows]


def _recommendation_or_none(raw: Any) -> Optional[Recommendation]:
    s = str(raw or "").strip().upper()
    if not s:
        return None
    try:
        return Recommendation(s)
    except ValueError:
        return None


def interview_record(row: Interview) -> InterviewRecord:
    return InterviewRecord(
        interview_id=row.interviewId,
        round_number=int(row.round or 0),
        status=InterviewStatus(str(row.status or "SCHEDULED").upper()),
        recommendation=_recommendation_or_none(row.recommendation),
        interviewer_id=str(row.interviewerId or ""),
        submitted_at=str(row.submittedAt or ""),
        created_at=str(row.createdAt or ""),
        overall_score=row.overallScore,
    )


def interview_rows(db, candidate_id: str) -> list[Interview]:
    return (
        db.execute(select(Interview).where(Interview.candidateId == candidate_id).order_by(Interview.createdAt))
        .scalars()
        .all()
    )


def interview_records(db, candidate_id: str) -> list[InterviewRecord]:
    return [interview_record(r) for r in interview_rows(db, candidate_id)]


def candidate_snapshot(cand: Candidate) -> CandidateSnapshot:
    return CandidateSnapshot(
        candidate_id=cand.candidateId,
        status=candidate_status(cand),
        current_round=int(cand.currentRound or 0),
        hired_for_other_job=hired_for_other_job(cand),
        employee_id=str(cand.employeeId or ""),
    )


def get_bgv(db, candidate_id: str) -> Optional[BackgroundVerification]:
    return (
        db.execute(select(BackgroundVerification).where(BackgroundVerification.candidateId == candidate_id))
        .scalar_one_or_none()
    )


def has_documents(db, candidate_id: str) -> bool:
    row = db.execute(select(CandidateDocument.documentId).where(CandidateDocument.candidateId == candidate_id)).first()
    return row is not None


def offer_statuses(db, candidate_id: str) -> list[OfferStatus]:
    rows = db.execute(select(Offer.status).where(Offer.candidateId == candidate_id)).scalars().all()
    out = []
    for s in rows:
        try:
            out.append(OfferStatus(str(s or "").upper()))
        except ValueError:
            continue
    return out


def resolver_context(db, cand: Candidate, *, read_only: bool = False, convert_to_staff: bool = False) -> ResolverContext:
    bgv = get_bgv(db, cand.candidateId)
    return ResolverContext(
        rounds=tuple(load_rounds(db, cand.jobId)),
        offer_statuses=tuple(offer_statuses(db, cand.candidateId)),
        bgv_status=bgv_status_or_none(bgv.overallStatus) if bgv else None,
        has_documents=has_documents(db, cand.candidateId),
        read_only=read_only,
        convert_to_staff=convert_to_staff,
    )


def employee_for_email(db, email: str) -> Optional[Employee]:
    e = str(email or "").strip().lower()
    if not e:
        return None
    return db.execute(select(Employee).where(Employee.email == e)).scalars().first()


def serialize_candidate(cand: Candidate) -> dict[str, Any]:
    return {
        "candidateId": cand.candidateId,
        "jobId": cand.jobId,
        "name": cand.name,
        "email": cand.email,
        "phone": cand.phone,
        "position": cand.position,
        "source": cand.source,
        "referredBy": cand.referredBy,
        "resumeUrl": cand.resumeUrl,
        "status": candidate_status(cand).value,
        "currentRound": int(cand.currentRound or 0),
        "hiredForOtherJob": hired_for_other_job(cand),
        "employeeId": cand.employeeId or "",
        "rejectionReason": cand.rejectionReason or "",
        "rejectedFromStatus": cand.rejectedFromStatus or "",
        "rejectedAt": cand.rejectedAt or "",
        "hiredAt": cand.hiredAt or "",
        "version": int(cand.version or 1),
        "createdAt": cand.createdAt or "",
        "updatedAt": cand.updatedAt or "",
    }


def assert_own_application(cand: Candidate, auth) -> None:
    """CANDIDATE sessions may only touch applications filed under their own email."""
    if normalize_role(auth.role) != "CANDIDATE":
        return
    if str(cand.email or "").strip().lower() != str(auth.email or "").strip().lower():
        raise ApiError("FORBIDDEN", "This application belongs to another candidate", http_status=403)
