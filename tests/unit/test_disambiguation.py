import pytest

from activitylog.core.disambiguation import disambiguate, find_sport_in_text, is_generic_activity
from activitylog.core.types import ActivityKind, MatcherUsed, ParseResult


def _workout(fields: dict, raw_text: str) -> ParseResult:
    return ParseResult(
        kind=ActivityKind.workout,
        fields=fields,
        confidence=0.85,
        raw_text=raw_text,
        matcher_used=MatcherUsed.fallback,
        normalized_text=" ".join(raw_text.lower().split()),
    )


def test_generic_label_recovered_from_text() -> None:
    result = disambiguate(_workout({"activity": "sport", "duration_minutes": 120}, "played tennis for 2 hours"))
    assert result.fields["activity"] == "tennis"
    assert result.fields["duration_minutes"] == 120
    assert result.sport_specific is True


def test_multi_word_names_win() -> None:
    result = disambiguate(_workout({"activity": "strength"}, "did bench press and some squats"))
    assert result.fields["activity"] == "bench press"


def test_alternate_key_used_before_text() -> None:
    result = disambiguate(_workout({"activity": "exercise", "sport": "Badminton"}, "played a match"))
    assert result.fields["activity"] == "badminton"
    assert result.sport_specific is True


@pytest.mark.parametrize("activity", ["rock climbing", "deadlift", "running", "pickleball"])
def test_specific_name_never_replaced(activity: str) -> None:
    result = disambiguate(_workout({"activity": activity}, "played tennis and some basketball"))
    assert result.fields["activity"] == activity
    assert result.sport_specific is True


def test_generic_label_kept_when_nothing_found() -> None:
    result = disambiguate(_workout({"activity": "workout"}, "did a workout"))
    assert result.fields["activity"] == "workout"
    assert result.sport_specific is False


def test_missing_activity_is_generic() -> None:
    assert is_generic_activity(None)
    assert is_generic_activity("  Cardio ")
    assert not is_generic_activity("squash")


def test_keyword_matching_uses_word_boundaries() -> None:
    assert find_sport_in_text("I was golfing") is None
    assert find_sport_in_text("18 holes of golf") == "golf"


def test_non_workout_results_unchanged() -> None:
    food = ParseResult(
        kind=ActivityKind.food,
        fields={"meal": "lunch", "items": ["salad"]},
        confidence=0.85,
        raw_text="salad for lunch",
        matcher_used=MatcherUsed.pattern,
    )
    assert disambiguate(food) is food
