from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from recruitment.statuses import CandidateSource, CandidateStatus, parse_candidate_status
from utils import ApiError, parse_ymd


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

# Changing these keeps the current page.
_PAGING_FIELDS = frozenset({"page"})


@dataclass(frozen=True)
class CandidateQuery:
    search: str = ""
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    status: Optional[CandidateStatus] = None
    source: Optional[CandidateSource] = None
    job_id: str = ""
    date_from: str = ""
    date_to: str = ""

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _int_param(raw: Any, default: int, *, lo: int, hi: Optional[int] = None) -> int:
    try:
        n = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    if n < lo:
        return default
    if hi is not None and n > hi:
        return hi
    return n


def _status_param(raw: Any) -> Optional[CandidateStatus]:
    s = str(raw or "").strip().upper()
    if not s or s == "ALL":
        return None
    try:
        return parse_candidate_status(s)
    except ApiError:
        return None


def _source_param(raw: Any) -> Optional[CandidateSource]:
    s = str(raw or "").strip().upper()
    try:
        return CandidateSource(s) if s else None
    except ValueError:
        return None


def _date_param(raw: Any) -> str:
    s = str(raw or "").strip()
    if not s:
        return ""
    return s if parse_ymd(s) is not None else ""


def query_from_params(params: Mapping[str, Any]) -> CandidateQuery:
    """Lenient: anything unparseable falls back to its default."""
    params = params or {}
    return CandidateQuery(
        search=str(params.get("search") or "").strip(),
        page=_int_param(params.get("page"), DEFAULT_PAGE, lo=1),
        limit=_int_param(params.get("limit"), DEFAULT_LIMIT, lo=1, hi=MAX_LIMIT),
        status=_status_param(params.get("status")),
        source=_source_param(params.get("source")),
        job_id=str(params.get("jobId") or "").strip(),
        date_from=_date_param(params.get("from")),
        date_to=_date_param(params.get("to")),
    )


def params_from_query(query: CandidateQuery) -> dict[str, str]:
    """Canonical URL params; defaults are omitted."""
    out: dict[str, str] = {}
    if query.search:
        out["search"] = query.search
    if query.page != DEFAULT_PAGE:
        out["page"] = str(query.page)
    if query.limit != DEFAULT_LIMIT:
        out["limit"] = str(query.limit)
    if query.status is not None:
        out["status"] = query.status.value
    if query.source is not None:
        out["source"] = query.source.value
    if query.job_id:
        out["jobId"] = query.job_id
    if query.date_from:
        out["from"] = query.date_from
    if query.date_to:
        out["to"] = query.date_to
    return out


def with_changes(query: CandidateQuery, **changes: Any) -> CandidateQuery:
    known = {f.name for f in fields(CandidateQuery)}
    unknown = set(changes) - known
    if unknown:
        raise TypeError(f"Unknown query fields: {sorted(unknown)}")

    updated = replace(query, **changes)
    filter_changed = any(
        getattr(query, k) != getattr(updated, k) for k in changes if k not in _PAGING_FIELDS
    )
    if filter_changed and "page" not in changes:
        updated = replace(updated, page=DEFAULT_PAGE)
    return updated
