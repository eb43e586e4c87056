import os
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union

from activitylog.core.disambiguation import disambiguate
from activitylog.core.fallback import to_kind
from activitylog.core.schemas import FIELD_SCHEMAS, check_fields, coerce_field, questions_for_missing
from activitylog.core.types import (
    ActivityKind,
    AnswerType,
    ClarificationOutcome,
    ClarificationQuestion,
    ParseResult,
)

CONFIRMED_CONFIDENCE = float(os.getenv("CONFIRMED_CONFIDENCE", "0.95"))
CLARIFICATION_TTL_MINUTES = int(os.getenv("CLARIFICATION_TTL_MINUTES", "30"))

_YES_TERMS = {"yes", "y", "yeah", "yep", "true", "done", "correct", "right"}
_NO_TERMS = {"no", "n", "nope", "false", "not", "wrong"}


class SessionStatus(str, Enum):
    active = "active"
    completed = "completed"
    skipped = "skipped"
    expired = "expired"


class InvalidClarificationAnswer(ValueError):
    def __init__(self, question_id: str, message: str):
        super().__init__(message)
        self.question_id = question_id


class ClarificationStateError(RuntimeError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_number(value: float) -> Union[int, float]:
    return int(value) if float(value).is_integer() else float(value)


def coerce_answer(question: ClarificationQuestion, value: Any) -> Any:
    """Validate a raw answer against the question's answer type.

    Raises InvalidClarificationAnswer when the answer cannot be used.
    """
    if question.answer_type == AnswerType.number:
        if isinstance(value, bool):
            raise InvalidClarificationAnswer(question.id, "Please include a number.")
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            match = re.search(r"(-?\d+(?:\.\d+)?)", str(value or ""))
            if not match:
                raise InvalidClarificationAnswer(question.id, "Please include a number.")
            number = float(match.group(1))
        if question.min is not None and number < question.min:
            raise InvalidClarificationAnswer(question.id, f"Please enter a value of at least {question.min:g}.")
        if question.max is not None and number > question.max:
            raise InvalidClarificationAnswer(question.id, f"Please enter a value no greater than {question.max:g}.")
        return _as_number(number)

    if question.answer_type == AnswerType.boolean:
        if isinstance(value, bool):
            return value
        lowered = str(value or "").strip().lower()
        if lowered in _YES_TERMS:
            return True
        if lowered in _NO_TERMS:
            return False
        raise InvalidClarificationAnswer(question.id, "Please answer yes or no.")

    text = str(value).strip() if value is not None and not isinstance(value, bool) else ""
    if not text:
        raise InvalidClarificationAnswer(question.id, "Please provide an answer.")
    if question.answer_type == AnswerType.select and question.options:
        for option in question.options:
            if option.lower() == text.lower():
                return option
        raise InvalidClarificationAnswer(question.id, f"Please choose one of: {', '.join(question.options)}.")
    return text[:600]


def merge_answers(result: ParseResult, answers: dict[str, Any]) -> tuple[ActivityKind, dict[str, Any]]:
    kind = result.kind
    fields = dict(result.fields)
    if "kind" in answers:
        answered_kind = to_kind(answers["kind"])
        # An answer naming no known category leaves the original kind in place.
        if answered_kind not in (kind, ActivityKind.unknown):
            kind = answered_kind
            fields = {}
    recategorized = kind != result.kind
    for key, value in answers.items():
        if key == "kind" or (recategorized and key not in FIELD_SCHEMAS[kind].model_fields):
            continue
        fields[key] = coerce_field(kind, key, value)
    return kind, fields


class ClarificationSession:
    """Walks a user through follow-up questions for one ambiguous result.

    Transitions: answering the last question completes the session, ``back``
    revisits the previous question without dropping collected answers, and
    ``skip`` abandons the questions but keeps the original fields. A ``kind``
    answer that changes the category appends questions for the new kind's
    required fields. Nothing is emitted until ``finalize`` is called on a
    completed or skipped session.
    """

    def __init__(
        self,
        original_result: ParseResult,
        questions: tuple[ClarificationQuestion, ...],
        *,
        base_questions: Optional[tuple[ClarificationQuestion, ...]] = None,
        current_index: int = 0,
        answers: Optional[dict[str, Any]] = None,
        status: SessionStatus = SessionStatus.active,
        last_activity_at: Optional[datetime] = None,
    ) -> None:
        if not questions:
            raise ValueError("A clarification session needs at least one question")
        self.original_result = original_result
        self.base_questions = tuple(base_questions or questions)
        self.questions = tuple(questions)
        self.current_index = current_index
        self.answers: dict[str, Any] = dict(answers or {})
        self.status = status
        self.last_activity_at = last_activity_at or _utcnow()

    @property
    def current_question(self) -> Optional[ClarificationQuestion]:
        if self.status != SessionStatus.active:
            return None
        return self.questions[self.current_index]

    def _require_active(self) -> None:
        if self.status != SessionStatus.active:
            raise ClarificationStateError(f"Clarification session is {self.status.value}")

    def answer(self, value: Any, now: Optional[datetime] = None) -> None:
        self._require_active()
        question = self.questions[self.current_index]
        self.answers[question.id] = coerce_answer(question, value)
        self.last_activity_at = now or _utcnow()
        if question.id == "kind":
            follow_ups = self._follow_up_questions()
            keep = {q.id for q in self.base_questions + follow_ups}
            self.answers = {key: answer for key, answer in self.answers.items() if key in keep}
            self.questions = self.base_questions + follow_ups
        if self.current_index + 1 < len(self.questions):
            self.current_index += 1
        else:
            self.status = SessionStatus.completed

    def _follow_up_questions(self) -> tuple[ClarificationQuestion, ...]:
        asked = {q.id for q in self.base_questions}
        base_answers = {key: answer for key, answer in self.answers.items() if key in asked}
        kind, fields = merge_answers(self.original_result, base_answers)
        if kind == self.original_result.kind:
            return ()
        _, missing = check_fields(kind, fields)
        return tuple(q for q in questions_for_missing(kind, missing) if q.id not in asked)

    def back(self, now: Optional[datetime] = None) -> None:
        self._require_active()
        if self.current_index > 0:
            self.current_index -= 1
        self.last_activity_at = now or _utcnow()

    def skip(self, now: Optional[datetime] = None) -> None:
        self._require_active()
        self.status = SessionStatus.skipped
        self.last_activity_at = now or _utcnow()

    def is_expired(self, now: Optional[datetime] = None, ttl_minutes: int = CLARIFICATION_TTL_MINUTES) -> bool:
        if self.status == SessionStatus.expired:
            return True
        if self.status != SessionStatus.active or ttl_minutes <= 0:
            return False
        last = self.last_activity_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return (now or _utcnow()) - last > timedelta(minutes=ttl_minutes)

    def expire(self) -> None:
        self._require_active()
        self.status = SessionStatus.expired

    def finalize(self) -> ParseResult:
        if self.status == SessionStatus.skipped:
            return replace(
                self.original_result,
                fields=dict(self.original_result.fields),
                questions=(),
                clarification_outcome=ClarificationOutcome.skipped,
                flagged=True,
            )
        if self.status != SessionStatus.completed:
            raise ClarificationStateError(f"Cannot finalize a {self.status.value} clarification session")
        kind, fields = merge_answers(self.original_result, self.answers)
        complete, _ = check_fields(kind, fields)
        finalized = replace(
            self.original_result,
            kind=kind,
            fields=fields,
            confidence=CONFIRMED_CONFIDENCE if complete else self.original_result.confidence,
            questions=(),
            clarification_outcome=ClarificationOutcome.completed,
            flagged=not complete,
        )
        return disambiguate(finalized)

    def to_state(self) -> dict[str, Any]:
        return {
            "original_result": self.original_result.to_dict(),
            "questions": [q.to_dict() for q in self.questions],
            "base_questions": [q.to_dict() for q in self.base_questions],
            "current_index": self.current_index,
            "answers": dict(self.answers),
            "status": self.status.value,
            "last_activity_at": self.last_activity_at.isoformat(),
        }

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> "ClarificationSession":
        return cls(
            ParseResult.from_dict(state["original_result"]),
            tuple(ClarificationQuestion.from_dict(q) for q in state["questions"]),
            base_questions=tuple(ClarificationQuestion.from_dict(q) for q in state.get("base_questions") or ()),
            current_index=int(state.get("current_index", 0)),
            answers=dict(state.get("answers") or {}),
            status=SessionStatus(state.get("status", SessionStatus.active.value)),
            last_activity_at=datetime.fromisoformat(state["last_activity_at"]),
        )
