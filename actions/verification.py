from __future__ import annotations

from typing import Any

from sqlalchemy import select

from actions.candidate_repo import assert_own_application, candidate_status, get_bgv, get_candidate, lock_candidate
from actions.helpers import actor_id, append_audit, require_str
from actions.offers import latest_offer
from models import BackgroundVerification, Candidate, CandidateDocument, VerificationItem
from recruitment.statuses import VerificationItemStatus, parse_enum
from recruitment.verification import (
    ADDRESS_CATEGORY,
    ContactType,
    DocumentCategory,
    ItemType,
    assert_bgv_reachable,
    details_changed,
    item_status_change,
    parse_decision,
    parse_item_category,
    summarize_items,
)
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, safe_json_load, safe_json_string


_CONTACT_FIELDS = ("name", "phone", "email", "relationship", "organization")
_ADDRESS_FIELDS = ("line1", "line2", "city", "state", "postalCode", "country")


def _serialize_item(it: VerificationItem) -> dict[str, Any]:
    return {
        "itemId": it.itemId,
        "itemType": it.itemType,
        "category": it.category,
        "status": it.status,
        "details": safe_json_load(it.detailsJson, {}),
        "remarks": it.remarks,
        "rejectionReason": it.rejectionReason or None,
        "verifiedAt": it.verifiedAt,
        "verifiedBy": it.verifiedBy,
        "updatedAt": it.updatedAt,
    }


def _items(db, bgv_id: str) -> list[VerificationItem]:
    return (
        db.execute(select(VerificationItem).where(VerificationItem.bgvId == bgv_id).order_by(VerificationItem.itemType, VerificationItem.category))
        .scalars()
        .all()
    )


def _serialize_bgv(db, bgv: BackgroundVerification) -> dict[str, Any]:
    items = _items(db, bgv.bgvId)
    return {
        "bgvId": bgv.bgvId,
        "candidateId": bgv.candidateId,
        "offerId": bgv.offerId,
        "overallStatus": bgv.overallStatus,
        "decisionRemark": bgv.decisionRemark,
        "decidedAt": bgv.decidedAt,
        "decidedBy": bgv.decidedBy,
        "items": [_serialize_item(i) for i in items],
        # Informational only; overallStatus is never derived from it.
        "summary": summarize_items(i.status for i in items),
    }


def _new_item(bgv_id: str, item_type: ItemType, category: str, now: str, auth: AuthContext) -> VerificationItem:
    return VerificationItem(
        itemId="BGVI-" + new_uuid(),
        bgvId=bgv_id,
        itemType=item_type.value,
        category=category,
        status=VerificationItemStatus.PENDING.value,
        detailsJson="",
        updatedAt=now,
        updatedBy=actor_id(auth),
    )


def _ensure_bgv(db, cand: Candidate, auth: AuthContext) -> tuple[BackgroundVerification, bool]:
    assert_bgv_reachable(candidate_status(cand))
    bgv = get_bgv(db, cand.candidateId)
    if bgv:
        return bgv, False

    now = iso_utc_now()
    offer = latest_offer(db, cand.candidateId)
    bgv = BackgroundVerification(
        bgvId="BGV-" + new_uuid(),
        candidateId=cand.candidateId,
        offerId=offer.offerId if offer else "",
        overallStatus="NOT_STARTED",
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    db.add(bgv)
    for cat in DocumentCategory:
        db.add(_new_item(bgv.bgvId, ItemType.DOCUMENT, cat.value, now, auth))
    db.add(_new_item(bgv.bgvId, ItemType.ADDRESS, ADDRESS_CATEGORY, now, auth))

    append_audit(
        db,
        entityType="BGV",
        entityId=bgv.bgvId,
        action="BGV_START",
        toState="NOT_STARTED",
        stageTag="BGV_START",
        actor=auth,
        at=now,
        meta={"candidateId": cand.candidateId},
    )
    db.flush()
    return bgv, True


def bgv_start(data, auth: AuthContext | None, db, cfg):
    cand = lock_candidate(db, candidate_id=(data or {}).get("candidateId"))
    bgv, created = _ensure_bgv(db, cand, auth)
    return {"bgv": _serialize_bgv(db, bgv), "created": created}


def bgv_get(data, auth: AuthContext | None, db, cfg):
    cand = get_candidate(db, (data or {}).get("candidateId"))
    bgv = get_bgv(db, cand.candidateId)
    if not bgv:
        raise ApiError("NOT_FOUND", "Background verification has not been started")
    return {"bgv": _serialize_bgv(db, bgv), "documents": _documents(db, cand.candidateId)}


def _find_item(db, bgv_id: str, item_type: ItemType, category: str):
    return (
        db.execute(
            select(VerificationItem)
            .where(VerificationItem.bgvId == bgv_id)
            .where(VerificationItem.itemType == item_type.value)
            .where(VerificationItem.category == category)
        )
        .scalar_one_or_none()
    )


def _upsert_details(db, bgv: BackgroundVerification, item_type: ItemType, category: str, details: dict, auth: AuthContext) -> tuple[VerificationItem, bool]:
    """Store new details; any change resets the item to PENDING."""

    now = iso_utc_now()
    item = _find_item(db, bgv.bgvId, item_type, category)
    if item is None:
        item = _new_item(bgv.bgvId, item_type, category, now, auth)
        db.add(item)
        old: dict = {}
    else:
        old = safe_json_load(item.detailsJson, {})

    changed = details_changed(old, details)
    if changed:
        item.detailsJson = safe_json_string(details, "{}")
        item.status = VerificationItemStatus.PENDING.value
        item.rejectionReason = ""
        item.verifiedAt = ""
        item.verifiedBy = ""
        item.updatedAt = now
        item.updatedBy = actor_id(auth)
        append_audit(
            db,
            entityType="BGV",
            entityId=bgv.bgvId,
            action=f"BGV_{item_type.value}_UPDATE",
            toState=VerificationItemStatus.PENDING.value,
            stageTag="BGV_DETAILS_UPDATE",
            actor=auth,
            at=now,
            meta={"itemId": item.itemId, "category": category},
        )
    db.flush()
    return item, changed


def bgv_contact_upsert(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cand = lock_candidate(db, candidate_id=data.get("candidateId"))
    assert_own_application(cand, auth)
    category = parse_item_category(ItemType.CONTACT, data.get("contactType") or ContactType.PRIMARY.value)

    details = {k: str(data.get(k) or "").strip() for k in _CONTACT_FIELDS}
    if not details["name"] or not details["phone"]:
        raise ApiError("BAD_REQUEST", "Contact name and phone are required")

    bgv, _ = _ensure_bgv(db, cand, auth)
    item, changed = _upsert_details(db, bgv, ItemType.CONTACT, category, details, auth)
    return {"item": _serialize_item(item), "changed": changed}


def bgv_address_update(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cand = lock_candidate(db, candidate_id=data.get("candidateId"))
    assert_own_application(cand, auth)

    details = {k: str(data.get(k) or "").strip() for k in _ADDRESS_FIELDS}
    if not details["line1"] or not details["city"]:
        raise ApiError("BAD_REQUEST", "Address line1 and city are required")

    bgv, _ = _ensure_bgv(db, cand, auth)
    item, changed = _upsert_details(db, bgv, ItemType.ADDRESS, ADDRESS_CATEGORY, details, auth)
    return {"item": _serialize_item(item), "changed": changed}


def bgv_item_verify(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    item_id = require_str(data, "itemId")
    item = db.execute(select(VerificationItem).where(VerificationItem.itemId == item_id)).scalar_one_or_none()
    if not item:
        raise ApiError("NOT_FOUND", "Verification item not found")

    new_status = parse_enum(VerificationItemStatus, require_str(data, "status"), field="item status")
    status, reason = item_status_change(new_status, data.get("reason"))

    now = iso_utc_now()
    from_status = item.status
    item.status = status.value
    item.rejectionReason = reason
    if "remarks" in data:
        item.remarks = str(data.get("remarks") or "").strip()
    if status == VerificationItemStatus.VERIFIED:
        item.verifiedAt = now
        item.verifiedBy = actor_id(auth)
    else:
        item.verifiedAt = ""
        item.verifiedBy = ""
    item.updatedAt = now
    item.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="BGV",
        entityId=item.bgvId,
        action="BGV_ITEM_VERIFY",
        fromState=from_status,
        toState=status.value,
        stageTag="BGV_ITEM_VERIFY",
        remark=reason,
        actor=auth,
        at=now,
        meta={"itemId": item.itemId, "itemType": item.itemType, "category": item.category},
    )
    return {"item": _serialize_item(item)}


def bgv_status_set(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cand = lock_candidate(db, candidate_id=data.get("candidateId"))
    assert_bgv_reachable(candidate_status(cand))
    bgv = get_bgv(db, cand.candidateId)
    if not bgv:
        raise ApiError("NOT_FOUND", "Background verification has not been started")

    status, remark = parse_decision(data.get("status"), data.get("remark"))

    now = iso_utc_now()
    from_status = bgv.overallStatus
    bgv.overallStatus = status.value
    bgv.decisionRemark = remark
    bgv.decidedAt = now
    bgv.decidedBy = actor_id(auth)
    bgv.updatedAt = now
    bgv.updatedBy = actor_id(auth)

    # Board column and next action depend on the BGV status.
    cand.version = int(cand.version or 1) + 1
    cand.updatedAt = now
    cand.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="BGV",
        entityId=bgv.bgvId,
        action="BGV_STATUS_SET",
        fromState=from_status,
        toState=status.value,
        stageTag="BGV_DECISION",
        remark=remark,
        actor=auth,
        at=now,
        meta={"candidateId": cand.candidateId},
    )
    return {"bgv": _serialize_bgv(db, bgv)}


def _serialize_document(d: CandidateDocument) -> dict[str, Any]:
    return {
        "documentId": d.documentId,
        "category": d.category,
        "fileName": d.fileName,
        "url": d.url,
        "uploadedAt": d.uploadedAt,
        "uploadedBy": d.uploadedBy,
    }


def _documents(db, candidate_id: str) -> list[dict[str, Any]]:
    rows = (
        db.execute(select(CandidateDocument).where(CandidateDocument.candidateId == candidate_id).order_by(CandidateDocument.uploadedAt))
        .scalars()
        .all()
    )
    return [_serialize_document(d) for d in rows]


def document_add(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    cand = lock_candidate(db, candidate_id=data.get("candidateId"))
    assert_own_application(cand, auth)
    assert_bgv_reachable(candidate_status(cand))

    category = parse_item_category(ItemType.DOCUMENT, data.get("category"))
    url = require_str(data, "url")
    now = iso_utc_now()
    doc = CandidateDocument(
        documentId="DOC-" + new_uuid(),
        candidateId=cand.candidateId,
        category=category,
        fileName=str(data.get("fileName") or "").strip(),
        url=url,
        uploadedAt=now,
        uploadedBy=actor_id(auth),
    )
    db.add(doc)

    # New evidence puts the matching document check back in the queue.
    bgv = get_bgv(db, cand.candidateId)
    if bgv:
        item = _find_item(db, bgv.bgvId, ItemType.DOCUMENT, category)
        if item and item.status != VerificationItemStatus.PENDING.value:
            item.status = VerificationItemStatus.PENDING.value
            item.rejectionReason = ""
            item.verifiedAt = ""
            item.verifiedBy = ""
            item.updatedAt = now
            item.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=cand.candidateId,
        action="DOCUMENT_ADD",
        stageTag="DOCUMENT_COLLECTION",
        actor=auth,
        at=now,
        meta={"documentId": doc.documentId, "category": category},
    )
    db.flush()
    return {"document": _serialize_document(doc)}


def document_list(data, auth: AuthContext | None, db, cfg):
    cand = get_candidate(db, (data or {}).get("candidateId"))
    assert_own_application(cand, auth)
    return {"candidateId": cand.candidateId, "items": _documents(db, cand.candidateId)}
