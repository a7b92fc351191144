from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from recruitment.statuses import InterviewStatus, Recommendation
from utils import ApiError, normalize_role


ELEVATED_ROLES = frozenset({"SUPER_ADMIN", "ADMIN"})

# Assigned round role -> roles that may also conduct it.
ROUND_ROLE_EQUIVALENTS: dict[str, frozenset[str]] = {
    "RECRUITER": frozenset({"HR", "SENIOR_HR"}),
    "HR": frozenset({"SENIOR_HR"}),
}

DEFAULT_MAX_SCORE = 100


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str
    email: str = ""

    @property
    def role_code(self) -> str:
        return normalize_role(self.role)

    @property
    def is_elevated(self) -> bool:
        return self.role_code in ELEVATED_ROLES


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    type: str = "text"
    is_required: bool = False
    max_score: int = DEFAULT_MAX_SCORE

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], index: int = 0) -> "Question":
        try:
            max_score = int(raw.get("maxScore") or DEFAULT_MAX_SCORE)
        except (TypeError, ValueError):
            max_score = DEFAULT_MAX_SCORE
        return cls(
            id=str(raw.get("id") or raw.get("questionId") or f"q-{index}").strip(),
            text=str(raw.get("questionText") or raw.get("text") or "").strip(),
            type=str(raw.get("questionType") or raw.get("type") or "text").strip(),
            is_required=bool(raw.get("isRequired")),
            max_score=max_score,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "questionText": self.text,
            "questionType": self.type,
            "isRequired": self.is_required,
            "maxScore": self.max_score,
        }


@dataclass(frozen=True)
class RoundConfig:
    round_number: int
    name: str = ""
    assigned_role: str = ""
    assigned_interviewers: tuple[str, ...] = ()
    questions: tuple[Question, ...] = ()
    enabled: bool = True

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], index: int = 0) -> "RoundConfig":
        try:
            number = int(raw.get("roundNumber") or 0)
        except (TypeError, ValueError):
            number = 0
        interviewers = raw.get("assignedInterviewers") or []
        if not isinstance(interviewers, (list, tuple)):
            interviewers = []
        questions = raw.get("questions") or []
        if not isinstance(questions, (list, tuple)):
            questions = []
        return cls(
            round_number=number or index + 1,
            name=str(raw.get("roundName") or raw.get("name") or "").strip(),
            assigned_role=str(raw.get("assignedRole") or "").strip(),
            assigned_interviewers=tuple(str(x).strip() for x in interviewers if str(x or "").strip()),
            questions=tuple(Question.from_dict(q, i) for i, q in enumerate(questions) if isinstance(q, Mapping)),
            enabled=raw.get("enabled") is not False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "roundNumber": self.round_number,
            "roundName": self.name,
            "assignedRole": self.assigned_role,
            "assignedInterviewers": list(self.assigned_interviewers),
            "questions": [q.to_dict() for q in self.questions],
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class ProgressRecord:
    round_number: int
    is_completed: bool
    recommendation: Optional[Recommendation] = None


@dataclass(frozen=True)
class InterviewRecord:
    interview_id: str
    round_number: int
    status: InterviewStatus
    recommendation: Optional[Recommendation] = None
    interviewer_id: str = ""
    submitted_at: str = ""
    created_at: str = ""
    overall_score: Optional[float] = None

    @property
    def is_submitted(self) -> bool:
        return self.status == InterviewStatus.COMPLETED

    @property
    def is_open(self) -> bool:
        return self.status in {InterviewStatus.SCHEDULED, InterviewStatus.RESCHEDULED}


def enabled_rounds(rounds: Iterable[RoundConfig]) -> list[RoundConfig]:
    return sorted((r for r in rounds if r.enabled), key=lambda r: r.round_number)


def validate_flow(rounds: Sequence[RoundConfig]) -> None:
    seen: set[int] = set()
    for r in rounds:
        if r.round_number <= 0:
            raise ApiError("BAD_REQUEST", "Round numbers must be positive")
        if r.round_number in seen:
            raise ApiError("BAD_REQUEST", f"Duplicate round number: {r.round_number}")
        seen.add(r.round_number)
        for q in r.questions:
            if q.max_score <= 0:
                raise ApiError("BAD_REQUEST", f"Round {r.round_number}: maxScore must be positive")
            if not q.text:
                raise ApiError("BAD_REQUEST", f"Round {r.round_number}: question text is required")


def find_round(rounds: Iterable[RoundConfig], round_number: int) -> Optional[RoundConfig]:
    for r in rounds:
        if r.round_number == round_number:
            return r
    return None


def first_round(rounds: Iterable[RoundConfig]) -> int:
    enabled = enabled_rounds(rounds)
    return enabled[0].round_number if enabled else 1


def next_round_after(current: int, rounds: Iterable[RoundConfig]) -> Optional[int]:
    for r in enabled_rounds(rounds):
        if r.round_number > current:
            return r.round_number
    return None


def is_last_round(round_number: int, rounds: Iterable[RoundConfig]) -> bool:
    return next_round_after(round_number, rounds) is None


def progress_from_interviews(interviews: Iterable[InterviewRecord]) -> list[ProgressRecord]:
    """Latest submitted interview per round."""
    latest: dict[int, InterviewRecord] = {}
    for it in interviews:
        if not it.is_submitted:
            continue
        prev = latest.get(it.round_number)
        if prev is None or (it.submitted_at or it.created_at) >= (prev.submitted_at or prev.created_at):
            latest[it.round_number] = it
    return [
        ProgressRecord(round_number=n, is_completed=True, recommendation=latest[n].recommendation)
        for n in sorted(latest)
    ]


def is_round_locked(
    round_number: int,
    progress_records: Iterable[ProgressRecord],
    *,
    enabled_round_numbers: Optional[Iterable[int]] = None,
) -> bool:
    if round_number <= 1:
        return False

    previous = round_number - 1
    if enabled_round_numbers is not None:
        earlier = [n for n in enabled_round_numbers if n < round_number]
        if not earlier:
            return False
        previous = max(earlier)

    for rec in progress_records:
        if rec.round_number == previous and rec.is_completed and rec.recommendation == Recommendation.PROCEED:
            return False
    return True


def can_access_round(round_config: RoundConfig, actor: Actor) -> bool:
    if actor.is_elevated:
        return True
    if actor.user_id and actor.user_id in round_config.assigned_interviewers:
        return True

    assigned = normalize_role(round_config.assigned_role)
    role = actor.role_code
    if not assigned or not role:
        return False
    if assigned == role:
        return True
    return role in ROUND_ROLE_EQUIVALENTS.get(assigned, frozenset())
