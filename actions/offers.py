from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select

from actions.candidate_repo import assert_own_application, candidate_status, hired_for_other_job, lock_candidate, serialize_candidate
from actions.helpers import actor_id, append_audit, next_prefixed_id, parse_version, setting_int
from actions.lifecycle_service import apply_transition
from models import Candidate, Offer
from recruitment.statuses import CandidateStatus, OfferStatus
from recruitment.transitions import Trigger, next_status
from utils import ApiError, AuthContext, iso_utc_now, normalize_role, parse_ymd, safe_json_load, safe_json_string


log = logging.getLogger("jobs")

_REVISABLE = {OfferStatus.SENT, OfferStatus.REJECTED, OfferStatus.EXPIRED}
_TERM_FIELDS = ("designation", "ctc", "joiningDate", "expiryDate", "notes")


def app_today(cfg) -> date:
    try:
        tz = ZoneInfo(cfg.APP_TIMEZONE)
    except Exception:
        tz = ZoneInfo("UTC")
    return datetime.now(tz).date()


def _serialize_offer(o: Offer) -> dict[str, Any]:
    return {
        "offerId": o.offerId,
        "candidateId": o.candidateId,
        "jobId": o.jobId,
        "status": o.status,
        "designation": o.designation,
        "ctc": o.ctc,
        "joiningDate": o.joiningDate,
        "expiryDate": o.expiryDate,
        "notes": o.notes,
        "previousOfferId": o.previousOfferId or None,
        "isRevision": bool(o.isRevision),
        "revisionNumber": int(o.revisionNumber or 0),
        "revisionChanges": safe_json_load(o.revisionChangesJson, {}),
        "sentAt": o.sentAt,
        "respondedAt": o.respondedAt,
        "rejectionReason": o.rejectionReason,
        "createdAt": o.createdAt,
    }


def _offer_status(o: Offer) -> OfferStatus:
    return OfferStatus(str(o.status or "").upper())


def _get_offer(db, offer_id: Any) -> Offer:
    oid = str(offer_id or "").strip()
    if not oid:
        raise ApiError("BAD_REQUEST", "Missing offerId")
    o = db.execute(select(Offer).where(Offer.offerId == oid)).scalar_one_or_none()
    if not o:
        raise ApiError("NOT_FOUND", "Offer not found")
    return o


def _offers_for(db, candidate_id: str) -> list[Offer]:
    return (
        db.execute(select(Offer).where(Offer.candidateId == candidate_id).order_by(Offer.createdAt, Offer.offerId))
        .scalars()
        .all()
    )


def latest_offer(db, candidate_id: str) -> Optional[Offer]:
    rows = _offers_for(db, candidate_id)
    return rows[-1] if rows else None


def _assert_latest(db, o: Offer) -> None:
    latest = latest_offer(db, o.candidateId)
    if latest is not None and latest.offerId != o.offerId:
        raise ApiError(
            "OFFER_SUPERSEDED",
            "A newer revision of this offer exists",
            http_status=409,
            details={"latestOfferId": latest.offerId},
        )


def _parse_terms(data: dict, cfg, db, *, defaults: Optional[Offer] = None) -> dict[str, Any]:
    terms: dict[str, Any] = {}
    if defaults is not None:
        terms = {k: getattr(defaults, k) for k in _TERM_FIELDS}

    if "designation" in data or defaults is None:
        terms["designation"] = str(data.get("designation") or "").strip()
    if "ctc" in data:
        raw = data.get("ctc")
        try:
            terms["ctc"] = float(raw) if raw not in (None, "") else None
        except (TypeError, ValueError):
            raise ApiError("BAD_REQUEST", "ctc must be a number")
        if terms["ctc"] is not None and terms["ctc"] < 0:
            raise ApiError("BAD_REQUEST", "ctc cannot be negative")
    elif defaults is None:
        terms["ctc"] = None
    for key in ("joiningDate", "expiryDate"):
        if key in data:
            raw = str(data.get(key) or "").strip()
            if raw and parse_ymd(raw) is None:
                raise ApiError("BAD_REQUEST", f"{key} must be YYYY-MM-DD")
            terms[key] = raw[:10]
        elif defaults is None:
            terms[key] = ""
    if "notes" in data or defaults is None:
        terms["notes"] = str(data.get("notes") or "").strip()

    if not terms["expiryDate"]:
        days = setting_int(db, "OFFER_DEFAULT_VALIDITY_DAYS", 7)
        terms["expiryDate"] = (app_today(cfg) + timedelta(days=days)).isoformat()
    if not terms["designation"]:
        raise ApiError("BAD_REQUEST", "Missing designation")
    return terms


def offer_create(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cand = lock_candidate(db, candidate_id=data.get("candidateId"))
    status = candidate_status(cand)
    # Frozen candidates and anyone not yet selected are refused here.
    next_status(status, Trigger.SEND_OFFER, hired_for_other_job=hired_for_other_job(cand))
    if status != CandidateStatus.SELECTED:
        raise ApiError("INVALID_TRANSITION", "Offers can only be created for selected candidates", http_status=409)

    latest = latest_offer(db, cand.candidateId)
    if latest is not None and _offer_status(latest) in {OfferStatus.DRAFT, OfferStatus.SENT}:
        raise ApiError("CONFLICT", "Candidate already has an open offer", http_status=409, details={"offerId": latest.offerId})

    terms = _parse_terms(data, cfg, db)
    now = iso_utc_now()
    o = Offer(
        offerId=next_prefixed_id(db, "OFFER", "OFF-", width=5),
        candidateId=cand.candidateId,
        jobId=cand.jobId,
        status=OfferStatus.DRAFT.value,
        revisionNumber=0,
        isRevision=False,
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
        **terms,
    )
    db.add(o)

    append_audit(
        db,
        entityType="OFFER",
        entityId=o.offerId,
        action="OFFER_CREATE",
        toState=OfferStatus.DRAFT.value,
        stageTag="OFFER_CREATE",
        actor=auth,
        at=now,
        meta={"candidateId": cand.candidateId, "terms": terms},
    )
    db.flush()
    return {"offer": _serialize_offer(o)}


def offer_send(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    o = _get_offer(db, data.get("offerId"))
    cand = lock_candidate(db, candidate_id=o.candidateId)
    if _offer_status(o) != OfferStatus.DRAFT:
        raise ApiError("INVALID_TRANSITION", f"Only draft offers can be sent (offer is {o.status})", http_status=409)
    _assert_latest(db, o)

    apply_transition(
        db,
        cand=cand,
        trigger=Trigger.SEND_OFFER,
        auth=auth,
        expected_version=parse_version(data),
        stage_tag="OFFER_SEND",
        meta={"offerId": o.offerId, "revisionNumber": int(o.revisionNumber or 0)},
    )

    now = iso_utc_now()
    o.status = OfferStatus.SENT.value
    o.sentAt = now
    o.updatedAt = now
    o.updatedBy = actor_id(auth)
    append_audit(
        db,
        entityType="OFFER",
        entityId=o.offerId,
        action="OFFER_SEND",
        fromState=OfferStatus.DRAFT.value,
        toState=OfferStatus.SENT.value,
        stageTag="OFFER_SEND",
        actor=auth,
        at=now,
    )
    return {"offer": _serialize_offer(o), "candidate": serialize_candidate(cand)}


def _responding_offer(db, data: dict, auth: AuthContext, cfg) -> tuple[Offer, Candidate]:
    o = _get_offer(db, data.get("offerId"))
    cand = lock_candidate(db, candidate_id=o.candidateId)
    assert_own_application(cand, auth)
    if _offer_status(o) != OfferStatus.SENT:
        raise ApiError("INVALID_TRANSITION", f"Offer is {o.status}", http_status=409)
    _assert_latest(db, o)
    return o, cand


def offer_accept(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    o, cand = _responding_offer(db, data, auth, cfg)

    expiry = parse_ymd(o.expiryDate)
    if expiry is not None and app_today(cfg) > expiry:
        raise ApiError("OFFER_EXPIRED", f"Offer expired on {o.expiryDate}", http_status=409)

    apply_transition(
        db,
        cand=cand,
        trigger=Trigger.ACCEPT_OFFER,
        auth=auth,
        expected_version=parse_version(data),
        stage_tag="OFFER_ACCEPT",
        meta={"offerId": o.offerId},
    )

    now = iso_utc_now()
    o.status = OfferStatus.ACCEPTED.value
    o.respondedAt = now
    o.updatedAt = now
    o.updatedBy = actor_id(auth)
    append_audit(
        db,
        entityType="OFFER",
        entityId=o.offerId,
        action="OFFER_ACCEPT",
        fromState=OfferStatus.SENT.value,
        toState=OfferStatus.ACCEPTED.value,
        stageTag="OFFER_ACCEPT",
        actor=auth,
        at=now,
    )
    return {"offer": _serialize_offer(o), "candidate": serialize_candidate(cand)}


def offer_reject(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    o, cand = _responding_offer(db, data, auth, cfg)
    reason = str(data.get("reason") or "").strip()

    apply_transition(
        db,
        cand=cand,
        trigger=Trigger.DECLINE_OFFER,
        auth=auth,
        expected_version=parse_version(data),
        reason=reason,
        stage_tag="OFFER_REJECT",
        meta={"offerId": o.offerId},
    )

    now = iso_utc_now()
    o.status = OfferStatus.REJECTED.value
    o.rejectionReason = reason
    o.respondedAt = now
    o.updatedAt = now
    o.updatedBy = actor_id(auth)
    append_audit(
        db,
        entityType="OFFER",
        entityId=o.offerId,
        action="OFFER_REJECT",
        fromState=OfferStatus.SENT.value,
        toState=OfferStatus.REJECTED.value,
        stageTag="OFFER_REJECT",
        remark=reason,
        actor=auth,
        at=now,
    )
    return {"offer": _serialize_offer(o), "candidate": serialize_candidate(cand)}


def offer_revise(data, auth: AuthContext | None, db, cfg):
    """New DRAFT revision; the previous offer's terms are never modified."""

    data = data or {}
    prev = _get_offer(db, data.get("offerId"))
    cand = lock_candidate(db, candidate_id=prev.candidateId)
    next_status(candidate_status(cand), Trigger.SEND_OFFER, hired_for_other_job=hired_for_other_job(cand))
    if _offer_status(prev) not in _REVISABLE:
        raise ApiError("INVALID_TRANSITION", f"An offer in {prev.status} cannot be revised", http_status=409)
    _assert_latest(db, prev)

    terms = _parse_terms(data, cfg, db, defaults=prev)
    changes = {
        k: {"from": getattr(prev, k), "to": terms[k]}
        for k in _TERM_FIELDS
        if getattr(prev, k) != terms[k]
    }
    if not changes:
        raise ApiError("BAD_REQUEST", "Revision does not change any offer terms")

    now = iso_utc_now()
    o = Offer(
        offerId=next_prefixed_id(db, "OFFER", "OFF-", width=5),
        candidateId=cand.candidateId,
        jobId=cand.jobId,
        status=OfferStatus.DRAFT.value,
        previousOfferId=prev.offerId,
        isRevision=True,
        revisionNumber=int(prev.revisionNumber or 0) + 1,
        revisionChangesJson=safe_json_string(changes, "{}"),
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
        **terms,
    )
    db.add(o)

    append_audit(
        db,
        entityType="OFFER",
        entityId=o.offerId,
        action="OFFER_REVISE",
        toState=OfferStatus.DRAFT.value,
        stageTag="OFFER_REVISE",
        remark=str(data.get("reason") or ""),
        actor=auth,
        at=now,
        meta={"candidateId": cand.candidateId, "previousOfferId": prev.offerId, "changes": changes},
    )
    db.flush()
    return {"offer": _serialize_offer(o)}


def offer_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    q = select(Offer)
    cid = str(data.get("candidateId") or "").strip()
    if cid:
        q = q.where(Offer.candidateId == cid)
    status = str(data.get("status") or "").upper().strip()
    if status:
        q = q.where(Offer.status == status)

    if normalize_role(auth.role) == "CANDIDATE":
        own = db.execute(select(Candidate.candidateId).where(Candidate.email == str(auth.email or "").lower())).scalars().all()
        q = q.where(Offer.candidateId.in_(list(own))).where(Offer.status != OfferStatus.DRAFT.value)

    rows = db.execute(q.order_by(Offer.createdAt, Offer.offerId)).scalars().all()
    return {"items": [_serialize_offer(o) for o in rows], "total": len(rows)}


def expire_due_offers(db, cfg, *, auth: AuthContext, today: Optional[date] = None) -> dict[str, Any]:
    """
    Expire SENT offers whose expiryDate has passed; the candidate returns to SELECTED.

    Superseded revisions are left alone: only the latest offer per candidate
    drives the candidate's status.
    """

    today = today or app_today(cfg)
    rows = (
        db.execute(select(Offer).where(Offer.status == OfferStatus.SENT.value).order_by(Offer.offerId))
        .scalars()
        .all()
    )

    expired: list[str] = []
    skipped: list[dict[str, str]] = []
    for o in rows:
        expiry = parse_ymd(o.expiryDate)
        if expiry is None or expiry >= today:
            continue
        latest = latest_offer(db, o.candidateId)
        if latest is None or latest.offerId != o.offerId:
            continue

        cand = lock_candidate(db, candidate_id=o.candidateId)
        try:
            apply_transition(
                db,
                cand=cand,
                trigger=Trigger.EXPIRE_OFFER,
                auth=auth,
                stage_tag="OFFER_EXPIRE",
                meta={"offerId": o.offerId, "expiryDate": o.expiryDate},
            )
        except ApiError as e:
            skipped.append({"offerId": o.offerId, "code": e.code, "message": e.message})
            log.warning("offer_expiry skipped offer=%s code=%s", o.offerId, e.code)
            continue

        now = iso_utc_now()
        o.status = OfferStatus.EXPIRED.value
        o.updatedAt = now
        o.updatedBy = actor_id(auth)
        append_audit(
            db,
            entityType="OFFER",
            entityId=o.offerId,
            action="OFFER_EXPIRE",
            fromState=OfferStatus.SENT.value,
            toState=OfferStatus.EXPIRED.value,
            stageTag="OFFER_EXPIRE",
            actor=auth,
            at=now,
        )
        expired.append(o.offerId)

    return {"today": today.isoformat(), "expired": expired, "skipped": skipped}


def offer_expire_sweep(data, auth: AuthContext | None, db, cfg):
    today = parse_ymd((data or {}).get("today"))
    return expire_due_offers(db, cfg, auth=auth, today=today)
