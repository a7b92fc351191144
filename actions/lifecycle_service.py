from __future__ import annotations

from typing import Any, Optional

from actions.candidate_repo import candidate_status, hired_for_other_job, lock_candidate
from actions.helpers import actor_id, append_audit
from models import Candidate
from recruitment.statuses import CandidateStatus, Recommendation
from recruitment.transitions import Trigger, next_status
from utils import ApiError, AuthContext, iso_utc_now


def check_version(cand: Candidate, expected_version: Optional[int]) -> None:
    if expected_version is None:
        return
    current = int(cand.version or 1)
    if int(expected_version) != current:
        raise ApiError(
            "STALE_STATE",
            "Candidate was changed by someone else. Reload and try again.",
            http_status=409,
            details={"expectedVersion": int(expected_version), "currentVersion": current},
        )


def apply_transition(
    db,
    *,
    cand: Candidate,
    trigger: Trigger,
    auth: AuthContext,
    expected_version: Optional[int] = None,
    recommendation: Optional[Recommendation] = None,
    is_last_round: bool = False,
    reason: str = "",
    patch: Optional[dict[str, Any]] = None,
    stage_tag: str = "",
    meta: Any = None,
) -> CandidateStatus:
    """
    Audited status transition on an already locked Candidate row.

    The pure transition table decides the target; this function checks the
    optimistic version, applies `patch`, bumps the version and writes one
    AuditLog row. It never commits: the API router owns the transaction.
    """

    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")

    check_version(cand, expected_version)

    from_status = candidate_status(cand)
    to_status = next_status(
        from_status,
        trigger,
        recommendation=recommendation,
        is_last_round=is_last_round,
        hired_for_other_job=hired_for_other_job(cand),
        reason=reason,
    )

    now = iso_utc_now()
    for key, value in (patch or {}).items():
        setattr(cand, key, value)

    if to_status == CandidateStatus.REJECTED and from_status != CandidateStatus.REJECTED:
        cand.rejectionReason = str(reason or cand.rejectionReason or "")
        cand.rejectedFromStatus = from_status.value
        cand.rejectedAt = now
    if to_status == CandidateStatus.HIRED:
        cand.hiredAt = now

    cand.status = to_status.value
    cand.version = int(cand.version or 1) + 1
    cand.updatedAt = now
    cand.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=cand.candidateId,
        action=trigger.value,
        fromState=from_status.value,
        toState=to_status.value,
        stageTag=stage_tag or trigger.value,
        remark=str(reason or ""),
        actor=auth,
        at=now,
        meta=meta,
    )
    return to_status


def transition_candidate(
    db,
    *,
    candidate_id: str,
    trigger: Trigger,
    auth: AuthContext,
    expected_version: Optional[int] = None,
    **kwargs: Any,
) -> tuple[Candidate, CandidateStatus]:
    cand = lock_candidate(db, candidate_id=candidate_id)
    to_status = apply_transition(db, cand=cand, trigger=trigger, auth=auth, expected_version=expected_version, **kwargs)
    return cand, to_status
