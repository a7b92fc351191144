from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from recruitment.rounds import Question
from utils import ApiError


@dataclass(frozen=True)
class QuestionError:
    question_id: str
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"questionId": self.question_id, "field": self.field, "message": self.message}


def parse_score(value: Any, max_score: int) -> int:
    """Return the score as an int in [1, max_score] or raise ValueError with a user-facing reason."""
    if value is None or isinstance(value, bool):
        raise ValueError("Score is required")
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("Score is required")
        if not re.fullmatch(r"-?\d+", s):
            raise ValueError("Score must be a whole number")
        n = int(s)
    elif isinstance(value, int):
        n = value
    elif isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            raise ValueError("Score must be a whole number")
        n = int(value)
    else:
        raise ValueError("Score must be a whole number")

    if n < 1:
        raise ValueError("Score must be at least 1")
    if n > max_score:
        raise ValueError(f"Score cannot exceed {max_score}")
    return n


def match_response(question: Question, index: int, responses: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    qid = question.id
    qtext = question.text.lower()
    for r in responses:
        if qid and str(r.get("questionId") or "").strip() == qid:
            return r
    for r in responses:
        rtext = str(r.get("questionText") or "").strip().lower()
        if qtext and rtext == qtext:
            return r
    if index < len(responses) and not str(responses[index].get("questionId") or "").strip():
        return responses[index]
    return None


def validate_responses(questions: Sequence[Question], responses: Sequence[Mapping[str, Any]]) -> list[QuestionError]:
    errors: list[QuestionError] = []
    rows = [r for r in (responses or []) if isinstance(r, Mapping)]
    for i, q in enumerate(questions):
        r = match_response(q, i, rows) or {}
        raw_answer = r.get("answer")
        answer = "" if raw_answer is None else str(raw_answer).strip()
        if q.is_required and not answer:
            errors.append(QuestionError(q.id, "answer", f"Answer is required: {q.text}"))
        try:
            parse_score(r.get("score"), q.max_score)
        except ValueError as e:
            errors.append(QuestionError(q.id, "score", str(e)))
    return errors


def assert_valid_submission(questions: Sequence[Question], responses: Sequence[Mapping[str, Any]]) -> None:
    errors = validate_responses(questions, responses)
    if errors:
        raise ApiError(
            "VALIDATION_FAILED",
            "Please answer all required questions and provide scores between 1 and the maximum for every question.",
            details={"errors": [e.to_dict() for e in errors]},
        )


def normalized_responses(questions: Sequence[Question], responses: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Call only after assert_valid_submission."""
    rows = [r for r in (responses or []) if isinstance(r, Mapping)]
    out = []
    for i, q in enumerate(questions):
        r = match_response(q, i, rows) or {}
        out.append(
            {
                "questionId": q.id,
                "questionText": q.text,
                "questionType": q.type,
                "answer": r.get("answer") if r.get("answer") is not None else "",
                "score": parse_score(r.get("score"), q.max_score),
                "maxScore": q.max_score,
                "remarks": str(r.get("remarks") or ""),
            }
        )
    return out


def overall_score(questions: Sequence[Question], responses: Sequence[Mapping[str, Any]]) -> Optional[float]:
    rows = normalized_responses(questions, responses)
    total_max = sum(r["maxScore"] for r in rows)
    if total_max <= 0:
        return None
    return round(sum(r["score"] for r in rows) / total_max * 100, 1)
