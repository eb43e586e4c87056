from datetime import datetime, timedelta, timezone

import pytest

from activitylog.core.clarification import (
    ClarificationSession,
    ClarificationStateError,
    InvalidClarificationAnswer,
    SessionStatus,
    coerce_answer,
)
from activitylog.core.schemas import kind_question, questions_for_missing
from activitylog.core.types import (
    ActivityKind,
    AnswerType,
    ClarificationOutcome,
    ClarificationQuestion,
    MatcherUsed,
    ParseResult,
)


def _weight_session() -> ClarificationSession:
    original = ParseResult(
        kind=ActivityKind.weight,
        fields={},
        confidence=0.6,
        raw_text="my weight this morning",
        matcher_used=MatcherUsed.fallback,
        normalized_text="my weight this morning",
    )
    return ClarificationSession(original, tuple(questions_for_missing(ActivityKind.weight, ["value", "unit"])))


def test_answers_complete_the_session() -> None:
    session = _weight_session()
    assert session.current_question.id == "value"
    session.answer("about 182 lbs")
    assert session.current_question.id == "unit"
    session.answer("KG")
    assert session.status == SessionStatus.completed

    result = session.finalize()
    assert result.fields == {"value": 182, "unit": "kg"}
    assert result.confidence == 0.95
    assert result.clarification_outcome == ClarificationOutcome.completed
    assert result.flagged is False


def test_back_preserves_answers() -> None:
    session = _weight_session()
    session.answer(182)
    session.back()
    assert session.current_index == 0
    assert session.answers == {"value": 182}
    session.back()
    assert session.current_index == 0


def test_skip_keeps_original_fields_exactly() -> None:
    original = ParseResult(
        kind=ActivityKind.food,
        fields={"items": ["oatmeal"]},
        confidence=0.7,
        raw_text="oatmeal",
        matcher_used=MatcherUsed.fallback,
    )
    session = ClarificationSession(original, tuple(questions_for_missing(ActivityKind.food, ["meal"])))
    session.skip()
    result = session.finalize()
    assert result.fields == original.fields
    assert result.confidence == original.confidence
    assert result.clarification_outcome == ClarificationOutcome.skipped
    assert result.flagged is True


def test_skip_after_partial_answers_still_keeps_original_fields() -> None:
    session = _weight_session()
    session.answer(182)
    session.skip()
    assert session.finalize().fields == {}


def test_invalid_answer_leaves_state_unchanged() -> None:
    session = _weight_session()
    with pytest.raises(InvalidClarificationAnswer) as exc_info:
        session.answer("not sure")
    assert exc_info.value.question_id == "value"
    assert session.current_index == 0
    assert session.answers == {}
    assert session.status == SessionStatus.active


@pytest.mark.parametrize(
    "question,value,expected",
    [
        (ClarificationQuestion(id="hours", prompt_text="?", answer_type=AnswerType.number, min=0, max=24), "7.5h", 7.5),
        (ClarificationQuestion(id="ok", prompt_text="?", answer_type=AnswerType.boolean), "Yes", True),
        (ClarificationQuestion(id="ok", prompt_text="?", answer_type=AnswerType.boolean), "nope", False),
        (
            ClarificationQuestion(id="meal", prompt_text="?", answer_type=AnswerType.select, options=("lunch", "dinner")),
            "Dinner",
            "dinner",
        ),
        (ClarificationQuestion(id="activity", prompt_text="?", answer_type=AnswerType.text), "  tennis ", "tennis"),
    ],
)
def test_coerce_answer(question: ClarificationQuestion, value, expected) -> None:
    assert coerce_answer(question, value) == expected


@pytest.mark.parametrize(
    "question,value",
    [
        (ClarificationQuestion(id="hours", prompt_text="?", answer_type=AnswerType.number, min=0, max=24), "30"),
        (ClarificationQuestion(id="hours", prompt_text="?", answer_type=AnswerType.number), True),
        (ClarificationQuestion(id="ok", prompt_text="?", answer_type=AnswerType.boolean), "maybe"),
        (
            ClarificationQuestion(id="meal", prompt_text="?", answer_type=AnswerType.select, options=("lunch",)),
            "brunch",
        ),
        (ClarificationQuestion(id="activity", prompt_text="?", answer_type=AnswerType.text), "   "),
    ],
)
def test_coerce_answer_rejects(question: ClarificationQuestion, value) -> None:
    with pytest.raises(InvalidClarificationAnswer):
        coerce_answer(question, value)


def test_kind_answer_recategorizes() -> None:
    original = ParseResult(
        kind=ActivityKind.water,
        fields={"amount": 2, "unit": "liters"},
        confidence=0.6,
        raw_text="2 liters",
        matcher_used=MatcherUsed.fallback,
    )
    session = ClarificationSession(original, (kind_question(),))
    session.answer("water")
    result = session.finalize()
    assert result.kind == ActivityKind.water
    assert result.fields == {"amount": 2, "unit": "liters"}

    session = ClarificationSession(original, (kind_question(),))
    session.answer("sleep")
    assert session.status == SessionStatus.active
    assert session.current_question.id == "hours"
    session.answer("7.5")
    result = session.finalize()
    assert result.kind == ActivityKind.sleep
    assert result.fields == {"hours": 7.5}
    assert result.confidence == 0.95
    assert result.flagged is False


def test_changing_kind_again_replaces_follow_up_questions() -> None:
    original = ParseResult(
        kind=ActivityKind.water,
        fields={"amount": 2, "unit": "liters"},
        confidence=0.6,
        raw_text="2 liters",
        matcher_used=MatcherUsed.fallback,
    )
    session = ClarificationSession(original, (kind_question(),))
    session.answer("sleep")
    session.answer(8)
    assert session.status == SessionStatus.completed

    session = ClarificationSession(original, (kind_question(),))
    session.answer("energy")
    assert session.current_question.id == "level"
    session.back()
    session.answer("water")
    assert session.status == SessionStatus.completed
    assert session.finalize().fields == {"amount": 2, "unit": "liters"}


def test_recategorized_without_required_fields_keeps_original_confidence() -> None:
    original = ParseResult(
        kind=ActivityKind.water,
        fields={"amount": 2, "unit": "liters"},
        confidence=0.6,
        raw_text="2 liters",
        matcher_used=MatcherUsed.fallback,
    )
    session = ClarificationSession(
        original,
        (kind_question(),),
        answers={"kind": "sleep"},
        status=SessionStatus.completed,
    )
    result = session.finalize()
    assert result.kind == ActivityKind.sleep
    assert result.fields == {}
    assert result.confidence == 0.6
    assert result.flagged is True


def test_kind_answer_resolves_category_labels() -> None:
    original = ParseResult(
        kind=ActivityKind.water,
        fields={"amount": 2, "unit": "liters"},
        confidence=0.6,
        raw_text="2 liters",
        matcher_used=MatcherUsed.fallback,
    )
    # Category labels such as "cardio" resolve through the kind aliases.
    session = ClarificationSession(
        original, (kind_question(),), answers={"kind": "cardio"}, status=SessionStatus.completed
    )
    assert session.finalize().kind == ActivityKind.workout

    session = ClarificationSession(
        original, (kind_question(),), answers={"kind": "something else"}, status=SessionStatus.completed
    )
    result = session.finalize()
    assert result.kind == ActivityKind.water
    assert result.fields == {"amount": 2, "unit": "liters"}


def test_completed_workout_answer_is_disambiguated() -> None:
    original = ParseResult(
        kind=ActivityKind.workout,
        fields={"activity": "sport"},
        confidence=0.6,
        raw_text="did some sport",
        matcher_used=MatcherUsed.fallback,
    )
    question = ClarificationQuestion(id="activity", prompt_text="Which sport?", answer_type=AnswerType.text)
    session = ClarificationSession(original, (question,))
    session.answer("Tennis")
    result = session.finalize()
    assert result.fields["activity"] == "tennis"
    assert result.sport_specific is True


def test_finished_session_rejects_actions() -> None:
    session = _weight_session()
    session.skip()
    with pytest.raises(ClarificationStateError):
        session.answer(180)
    with pytest.raises(ClarificationStateError):
        session.back()

    active = _weight_session()
    with pytest.raises(ClarificationStateError):
        active.finalize()


def test_expiry_after_idle_timeout() -> None:
    session = _weight_session()
    start = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
    session.answer(180, now=start)
    assert not session.is_expired(now=start + timedelta(minutes=29), ttl_minutes=30)
    assert session.is_expired(now=start + timedelta(minutes=31), ttl_minutes=30)
    session.expire()
    assert session.status == SessionStatus.expired
    with pytest.raises(ClarificationStateError):
        session.finalize()


def test_state_round_trip_resumes_session() -> None:
    session = _weight_session()
    session.answer(182)
    restored = ClarificationSession.from_state(session.to_state())
    assert restored.current_question.id == "unit"
    restored.answer("lbs")
    assert restored.finalize().fields == {"value": 182, "unit": "lbs"}
