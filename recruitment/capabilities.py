from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from recruitment.resolver import ActionType
from recruitment.rounds import ELEVATED_ROLES
from utils import normalize_role


Permissions = dict[str, frozenset[str]]

_CRUD = ("view", "read", "create", "update", "delete")

FULL_ACCESS: dict[str, tuple[str, ...]] = {
    "dashboard": _CRUD,
    "interview": _CRUD,
    "job_openings": _CRUD + ("add", "edit"),
    "candidates": _CRUD + ("add", "start_interview", "view_profile", "convert_to_staff", "view_offer"),
    "interview_appointments": _CRUD + ("schedule", "edit"),
    "interview_process": _CRUD,
    "offer_letter": _CRUD + ("template", "generate"),
    "document_collection": _CRUD + ("verify",),
    "background_verification": _CRUD + ("verify",),
    "refer_candidate": _CRUD,
    "staff": _CRUD,
    "performance": _CRUD + ("approve",),
    "goals_management": _CRUD + ("approve", "reject", "assign"),
}

_HR_ACCESS = {k: v for k, v in FULL_ACCESS.items() if k not in {"staff"}}

ROLE_DEFAULTS: dict[str, dict[str, tuple[str, ...]]] = {
    "SENIOR_HR": _HR_ACCESS,
    "HR": _HR_ACCESS,
    "RECRUITER": {
        "interview": ("view", "read"),
        "job_openings": ("view", "read"),
        "candidates": ("view", "read", "create", "add", "view_profile", "start_interview"),
        "interview_appointments": ("view", "read", "schedule"),
        "interview_process": ("view", "read"),
        "refer_candidate": ("view", "read", "create"),
    },
    "MANAGER": {
        "interview": ("view", "read"),
        "candidates": ("view", "read", "view_profile", "start_interview"),
        "interview_process": ("view", "read"),
        "performance": ("view", "read", "approve"),
        "goals_management": ("view", "read", "create", "approve", "reject", "assign"),
    },
    "TEAM_LEADER": {
        "candidates": ("view", "read", "view_profile", "start_interview"),
        "performance": ("view", "read"),
        "goals_management": ("view", "read", "create"),
    },
    "EMPLOYEE": {
        "performance": ("view", "read"),
        "goals_management": ("view", "read", "create"),
        "refer_candidate": ("view", "read", "create"),
    },
    "CANDIDATE": {},
}

ACTION_PERMISSIONS: dict[ActionType, tuple[str, str]] = {
    ActionType.SCHEDULE: ("interview_appointments", "schedule"),
    ActionType.START: ("candidates", "start_interview"),
    ActionType.CONVERT_TO_STAFF: ("candidates", "convert_to_staff"),
    ActionType.VIEW_PROFILE: ("candidates", "view_profile"),
    ActionType.VIEW_OFFER: ("candidates", "view_offer"),
    ActionType.GENERATE_OFFER: ("offer_letter", "generate"),
    ActionType.ONBOARD: ("document_collection", "view"),
    ActionType.DOCUMENT_COLLECTION: ("document_collection", "view"),
    ActionType.BACKGROUND_VERIFICATION: ("background_verification", "view"),
    ActionType.VIEW_LOGS: ("candidates", "view"),
    ActionType.VIEW_PROGRESS: ("candidates", "view"),
}

KNOWN_ACTIONS = frozenset(a for actions in FULL_ACCESS.values() for a in actions)

_COMPOSITE_KEYS = {
    "candidate_action_start_interview": ("candidates", "start_interview"),
    "candidate_action_view_profile": ("candidates", "view_profile"),
    "candidate_action_convert_to_staff": ("candidates", "convert_to_staff"),
    "candidate_action_view_offer": ("candidates", "view_offer"),
}


def _freeze(raw: Mapping[str, Iterable[str]]) -> Permissions:
    return {str(m): frozenset(str(a) for a in actions) for m, actions in raw.items()}


def parse_permission_string(value: str) -> Optional[tuple[str, str]]:
    """`candidates.view`, `candidates_view` or `candidate_action_view_offer` -> (module, action)."""
    s = str(value or "").strip().lower()
    if not s:
        return None
    if s in _COMPOSITE_KEYS:
        return _COMPOSITE_KEYS[s]
    if "." in s:
        module, action = s.split(".", 1)
        if module in FULL_ACCESS:
            return module, (action if action in KNOWN_ACTIONS else "view")
        return None
    if "_" in s:
        module, _sep, action = s.rpartition("_")
        if module in FULL_ACCESS:
            return module, (action if action in KNOWN_ACTIONS else "view")
    if s in FULL_ACCESS:
        return s, "view"
    return None


def normalize_permissions(raw: Any) -> Permissions:
    """Accepts `[{module, actions}]`, `{module: [actions]}` or a list of permission strings."""
    out: dict[str, set[str]] = {}
    if isinstance(raw, Mapping):
        raw = [{"module": k, "actions": v} for k, v in raw.items()]
    if not isinstance(raw, (list, tuple)):
        return {}

    for item in raw:
        if isinstance(item, Mapping):
            module = str(item.get("module") or "").strip()
            actions = item.get("actions") or []
            if module and isinstance(actions, (list, tuple, set, frozenset)):
                out.setdefault(module, set()).update(str(a).strip().lower() for a in actions if str(a or "").strip())
            continue
        if str(item or "").strip().lower() == "full_hrms_access":
            for module, actions in FULL_ACCESS.items():
                out.setdefault(module, set()).update(actions)
            continue
        parsed = parse_permission_string(str(item or ""))
        if parsed:
            out.setdefault(parsed[0], set()).add(parsed[1])

    return {m: frozenset(a) for m, a in out.items()}


def resolve_permissions(role: str, role_permissions: Any = None, explicit_permissions: Any = None) -> Permissions:
    """
    Single capability resolution for every call site.

    Precedence: elevated role -> full access; explicit user permissions;
    custom role permissions; built-in defaults for the role.
    """

    role_u = normalize_role(role)
    if role_u in ELEVATED_ROLES:
        return _freeze(FULL_ACCESS)

    explicit = normalize_permissions(explicit_permissions)
    if explicit:
        return explicit

    from_role = normalize_permissions(role_permissions)
    if from_role:
        return from_role

    return _freeze(ROLE_DEFAULTS.get(role_u, {}))


def has_action(permissions: Mapping[str, Iterable[str]], module: str, action: str) -> bool:
    actions = permissions.get(module)
    if not actions:
        return False
    return action in actions


def is_action_allowed(permissions: Mapping[str, Iterable[str]], action_type: ActionType) -> bool:
    needed = ACTION_PERMISSIONS.get(action_type)
    if needed is None:
        return False
    return has_action(permissions, needed[0], needed[1])


def serialize_permissions(permissions: Mapping[str, Iterable[str]]) -> list[dict[str, Any]]:
    return [{"module": m, "actions": sorted(permissions[m])} for m in sorted(permissions)]
