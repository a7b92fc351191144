from __future__ import annotations

from typing import Any, Callable

from actions.auth_actions import get_me, login_exchange, logout, my_permissions_get, session_validate
from actions.candidates import (
    candidate_action_get,
    candidate_add,
    candidate_board_get,
    candidate_get,
    candidate_list,
    candidate_logs,
    candidate_reject,
    candidate_status_update,
)
from actions.goals import (
    goal_complete,
    goal_create,
    goal_decide,
    goal_list,
    goal_progress_update,
    goal_submit,
    kra_summary_get,
)
from actions.interviews import (
    interview_cancel,
    interview_list,
    interview_progress_get,
    interview_reschedule,
    interview_schedule,
    interview_submit,
)
from actions.jobs import interview_flow_get, interview_flow_upsert, job_opening_list, job_opening_upsert
from actions.offers import (
    offer_accept,
    offer_create,
    offer_expire_sweep,
    offer_list,
    offer_reject,
    offer_revise,
    offer_send,
)
from actions.onboarding import candidate_convert_to_staff, move_to_onboarding
from actions.users import users_list, users_upsert
from actions.verification import (
    bgv_address_update,
    bgv_contact_upsert,
    bgv_get,
    bgv_item_verify,
    bgv_start,
    bgv_status_set,
    document_add,
    document_list,
)
from utils import ApiError, AuthContext

Handler = Callable[[Any, "AuthContext | None", Any, Any], Any]

HANDLERS: dict[str, Handler] = {
    "LOGIN_EXCHANGE": login_exchange,
    "SESSION_VALIDATE": session_validate,
    "GET_ME": get_me,
    "MY_PERMISSIONS_GET": my_permissions_get,
    "LOGOUT": logout,
    "USERS_LIST": users_list,
    "USERS_UPSERT": users_upsert,
    "JOB_OPENING_UPSERT": job_opening_upsert,
    "JOB_OPENING_LIST": job_opening_list,
    "INTERVIEW_FLOW_UPSERT": interview_flow_upsert,
    "INTERVIEW_FLOW_GET": interview_flow_get,
    "CANDIDATE_ADD": candidate_add,
    "CANDIDATE_GET": candidate_get,
    "CANDIDATE_LIST": candidate_list,
    "CANDIDATE_STATUS_UPDATE": candidate_status_update,
    "CANDIDATE_REJECT": candidate_reject,
    "CANDIDATE_ACTION_GET": candidate_action_get,
    "CANDIDATE_LOGS": candidate_logs,
    "CANDIDATE_BOARD_GET": candidate_board_get,
    "INTERVIEW_SCHEDULE": interview_schedule,
    "INTERVIEW_RESCHEDULE": interview_reschedule,
    "INTERVIEW_CANCEL": interview_cancel,
    "INTERVIEW_SUBMIT": interview_submit,
    "INTERVIEW_LIST": interview_list,
    "INTERVIEW_PROGRESS_GET": interview_progress_get,
    "OFFER_CREATE": offer_create,
    "OFFER_SEND": offer_send,
    "OFFER_REVISE": offer_revise,
    "OFFER_ACCEPT": offer_accept,
    "OFFER_REJECT": offer_reject,
    "OFFER_LIST": offer_list,
    "OFFER_EXPIRE_SWEEP": offer_expire_sweep,
    "MOVE_TO_ONBOARDING": move_to_onboarding,
    "CANDIDATE_CONVERT_TO_STAFF": candidate_convert_to_staff,
    "BGV_START": bgv_start,
    "BGV_GET": bgv_get,
    "BGV_CONTACT_UPSERT": bgv_contact_upsert,
    "BGV_ADDRESS_UPDATE": bgv_address_update,
    "BGV_ITEM_VERIFY": bgv_item_verify,
    "BGV_STATUS_SET": bgv_status_set,
    "DOCUMENT_ADD": document_add,
    "DOCUMENT_LIST": document_list,
    "GOAL_CREATE": goal_create,
    "GOAL_SUBMIT": goal_submit,
    "GOAL_DECIDE": goal_decide,
    "GOAL_PROGRESS_UPDATE": goal_progress_update,
    "GOAL_COMPLETE": goal_complete,
    "GOAL_LIST": goal_list,
    "KRA_SUMMARY_GET": kra_summary_get,
}


def dispatch(action: str, data: Any, auth: AuthContext | None, db, cfg):
    handler = HANDLERS.get(str(action or "").upper().strip())
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action}")
    return handler(data if isinstance(data, dict) else {}, auth, db, cfg)
