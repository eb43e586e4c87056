import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from activitylog.core.types import ActivityKind, AnswerType, ClarificationQuestion


class WeightFields(BaseModel):
    value: float = Field(gt=0, le=1500)
    unit: Literal["lbs", "kg"]


class SleepFields(BaseModel):
    hours: float = Field(ge=0, le=24)


class WaterFields(BaseModel):
    amount: float = Field(gt=0)
    unit: Literal["liters", "cups", "ml", "oz"]


class EnergyFields(BaseModel):
    level: int = Field(ge=1, le=10)


class FoodFields(BaseModel):
    meal: Literal["breakfast", "lunch", "dinner", "snack"]
    items: list[str] = Field(min_length=1)


class WorkoutFields(BaseModel):
    activity: str = Field(min_length=1, max_length=64)
    distance: Optional[float] = Field(default=None, gt=0)
    distance_unit: Optional[Literal["km", "miles", "m"]] = None
    duration_minutes: Optional[float] = Field(default=None, gt=0)


class MoodFields(BaseModel):
    mood: Literal["great", "good", "okay", "bad", "terrible", "tired"]
    notes: Optional[str] = None


class UnknownFields(BaseModel):
    text: str


FIELD_SCHEMAS: dict[ActivityKind, type[BaseModel]] = {
    ActivityKind.weight: WeightFields,
    ActivityKind.sleep: SleepFields,
    ActivityKind.water: WaterFields,
    ActivityKind.energy: EnergyFields,
    ActivityKind.food: FoodFields,
    ActivityKind.workout: WorkoutFields,
    ActivityKind.mood: MoodFields,
    ActivityKind.unknown: UnknownFields,
}

MEAL_OPTIONS = ("breakfast", "lunch", "dinner", "snack")
MOOD_OPTIONS = ("great", "good", "okay", "bad", "terrible", "tired")
KIND_OPTIONS = tuple(kind.value for kind in ActivityKind if kind != ActivityKind.unknown)


def check_fields(kind: ActivityKind, fields: dict[str, Any]) -> tuple[bool, list[str]]:
    """Validate ``fields`` against the schema for ``kind``.

    Returns ``(complete, missing)`` where ``missing`` lists the field names
    that are absent or invalid, in schema order.
    """
    schema = FIELD_SCHEMAS[kind]
    try:
        schema.model_validate(fields)
    except ValidationError as exc:
        bad = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
        ordered = [name for name in schema.model_fields if name in bad]
        return False, ordered
    return True, []


def coerce_field(kind: ActivityKind, name: str, value: Any) -> Any:
    # Clarification answers arrive as plain scalars; shape them for the schema.
    if kind == ActivityKind.food and name == "items" and isinstance(value, str):
        return [part.strip().lower() for part in re.split(r",|\band\b", value) if part.strip()]
    if kind == ActivityKind.energy and name == "level" and isinstance(value, float):
        return int(round(value))
    if isinstance(value, str) and name in {"unit", "distance_unit", "meal", "mood", "activity"}:
        return value.strip().lower()
    return value


_MISSING_FIELD_QUESTIONS: dict[tuple[ActivityKind, str], ClarificationQuestion] = {
    (ActivityKind.weight, "value"): ClarificationQuestion(
        id="value", prompt_text="What was your weight?", answer_type=AnswerType.number, min=1, max=1500
    ),
    (ActivityKind.weight, "unit"): ClarificationQuestion(
        id="unit", prompt_text="Was that in lbs or kg?", answer_type=AnswerType.select, options=("lbs", "kg")
    ),
    (ActivityKind.sleep, "hours"): ClarificationQuestion(
        id="hours", prompt_text="How many hours did you sleep?", answer_type=AnswerType.number, min=0, max=24
    ),
    (ActivityKind.water, "amount"): ClarificationQuestion(
        id="amount", prompt_text="How much water did you drink?", answer_type=AnswerType.number, min=0
    ),
    (ActivityKind.water, "unit"): ClarificationQuestion(
        id="unit",
        prompt_text="Which unit was that in?",
        answer_type=AnswerType.select,
        options=("oz", "ml", "cups", "liters"),
    ),
    (ActivityKind.energy, "level"): ClarificationQuestion(
        id="level", prompt_text="On a 1-10 scale, what is your energy level?", answer_type=AnswerType.number, min=1, max=10
    ),
    (ActivityKind.food, "meal"): ClarificationQuestion(
        id="meal", prompt_text="Which meal was this?", answer_type=AnswerType.select, options=MEAL_OPTIONS
    ),
    (ActivityKind.food, "items"): ClarificationQuestion(
        id="items", prompt_text="What did you eat? (comma separated is fine)", answer_type=AnswerType.text
    ),
    (ActivityKind.workout, "activity"): ClarificationQuestion(
        id="activity", prompt_text="What activity or sport did you do?", answer_type=AnswerType.text
    ),
    (ActivityKind.workout, "distance"): ClarificationQuestion(
        id="distance", prompt_text="How far did you go?", answer_type=AnswerType.number, min=0
    ),
    (ActivityKind.workout, "distance_unit"): ClarificationQuestion(
        id="distance_unit",
        prompt_text="Was the distance in km, miles or meters?",
        answer_type=AnswerType.select,
        options=("km", "miles", "m"),
    ),
    (ActivityKind.workout, "duration_minutes"): ClarificationQuestion(
        id="duration_minutes", prompt_text="How many minutes did it take?", answer_type=AnswerType.number, min=0
    ),
    (ActivityKind.mood, "mood"): ClarificationQuestion(
        id="mood", prompt_text="How are you feeling?", answer_type=AnswerType.select, options=MOOD_OPTIONS
    ),
}


def questions_for_missing(kind: ActivityKind, missing: list[str]) -> list[ClarificationQuestion]:
    questions: list[ClarificationQuestion] = []
    for name in missing:
        question = _MISSING_FIELD_QUESTIONS.get((kind, name))
        if question is not None:
            questions.append(question)
    return questions


def kind_question() -> ClarificationQuestion:
    return ClarificationQuestion(
        id="kind",
        prompt_text="What kind of entry is this?",
        answer_type=AnswerType.select,
        options=KIND_OPTIONS,
    )
