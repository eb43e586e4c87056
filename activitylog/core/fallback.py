import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Optional, Protocol

from activitylog.core.context import ClassifierContext
from activitylog.core.matchers import normalize_distance_unit, normalize_water_unit, normalize_weight_unit
from activitylog.core.schemas import coerce_field, kind_question
from activitylog.core.types import ActivityKind, AnswerType, ClarificationQuestion, MatcherUsed, ParseResult
from activitylog.services.llm import LLMClient

logger = logging.getLogger("uvicorn.error")

FALLBACK_TIMEOUT_SECONDS = float(os.getenv("FALLBACK_TIMEOUT_SECONDS", "4.0"))

FALLBACK_UNAVAILABLE = "fallback_unavailable"

KIND_ALIASES = {
    "cardio": ActivityKind.workout,
    "strength": ActivityKind.workout,
    "sport": ActivityKind.workout,
    "sports": ActivityKind.workout,
    "exercise": ActivityKind.workout,
    "nutrition": ActivityKind.food,
    "meal": ActivityKind.food,
    "hydration": ActivityKind.water,
}

FIELD_KEY_ALIASES = {
    ActivityKind.weight: {"weight": "value"},
    ActivityKind.food: {"foods": "items", "mealType": "meal", "meal_type": "meal"},
    ActivityKind.workout: {
        "distanceUnit": "distance_unit",
        "duration": "duration_minutes",
        "durationMinutes": "duration_minutes",
        "exerciseName": "exercise_name",
        "sportName": "sport_name",
    },
    ActivityKind.sleep: {"duration": "hours"},
    ActivityKind.energy: {"energy": "level"},
}


class ClassificationBackend(Protocol):
    name: str

    def classify(self, text: str, context: Optional[ClassifierContext]) -> dict[str, Any]:
        ...


def _classification_prompt(text: str, context: Optional[ClassifierContext]) -> str:
    body = {
        "task": "Classify a short wellness log entry and extract structured fields.",
        "input": {
            "text": text,
        },
        "context": context.to_prompt_dict() if context is not None else {},
        "output_schema": {
            "kind": "weight|sleep|water|energy|food|workout|mood|unknown",
            "confidence": "number 0-100",
            "fields": {
                "weight": {"value": "number", "unit": "lbs|kg"},
                "sleep": {"hours": "number"},
                "water": {"amount": "number", "unit": "liters|cups|ml|oz"},
                "energy": {"level": "integer 1-10"},
                "food": {"meal": "breakfast|lunch|dinner|snack", "items": ["string"]},
                "workout": {
                    "activity": "specific sport or exercise name",
                    "distance": "number|null",
                    "distance_unit": "km|miles|m|null",
                    "duration_minutes": "number|null",
                },
                "mood": {"mood": "great|good|okay|bad|terrible|tired", "notes": "string|null"},
            },
            "questions": [
                {
                    "id": "field name the answer fills",
                    "prompt_text": "string",
                    "answer_type": "select|number|text|boolean",
                    "options": ["string"],
                    "min": "number|null",
                    "max": "number|null",
                }
            ],
        },
        "rules": [
            "Pick exactly one kind. Use unknown when the text is not a wellness log.",
            "Only fill fields for the chosen kind.",
            "For workouts, name the specific sport or exercise when the text mentions one.",
            "Use the user's preferred weight unit when the text omits it.",
            "Ask questions only for fields you could not determine.",
            "Return strict JSON only.",
        ],
    }
    return json.dumps(body, separators=(",", ":"))


class LLMClassificationBackend:
    name = "llm"

    def __init__(self, llm_client: LLMClient):
        self.llm_client = llm_client

    def classify(self, text: str, context: Optional[ClassifierContext]) -> dict[str, Any]:
        return self.llm_client.generate_json(
            prompt=_classification_prompt(text, context),
            task_type="classification",
            system_instruction=(
                "Return strict JSON only with keys: kind, confidence, fields, questions. "
                "No markdown, no prose, no extra keys."
            ),
        )


def to_kind(value: Any) -> ActivityKind:
    label = str(value or "").strip().lower()
    if label in KIND_ALIASES:
        return KIND_ALIASES[label]
    try:
        return ActivityKind(label)
    except ValueError:
        return ActivityKind.unknown


def _to_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:
        return 0.0
    if confidence > 1.0:
        confidence = confidence / 100.0
    return max(0.0, min(1.0, confidence))


def _map_fields(kind: ActivityKind, raw_fields: Any, text: str) -> dict[str, Any]:
    if kind == ActivityKind.unknown:
        return {"text": text}
    if not isinstance(raw_fields, dict):
        return {}
    aliases = FIELD_KEY_ALIASES.get(kind, {})
    fields: dict[str, Any] = {}
    for key, value in raw_fields.items():
        if value is None:
            continue
        name = aliases.get(str(key), str(key))
        fields[name] = coerce_field(kind, name, value)

    unit = fields.get("unit")
    if isinstance(unit, str):
        if kind == ActivityKind.weight:
            fields["unit"] = normalize_weight_unit(unit)
        elif kind == ActivityKind.water:
            fields["unit"] = normalize_water_unit(unit)
    distance_unit = fields.get("distance_unit")
    if kind == ActivityKind.workout and isinstance(distance_unit, str):
        fields["distance_unit"] = normalize_distance_unit(distance_unit)
    if kind == ActivityKind.food and isinstance(fields.get("items"), list):
        fields["items"] = [str(item).strip().lower() for item in fields["items"] if str(item).strip()]
    return fields


def _parse_questions(raw_questions: Any) -> tuple[ClarificationQuestion, ...]:
    if not isinstance(raw_questions, list):
        return ()
    questions: list[ClarificationQuestion] = []
    for entry in raw_questions:
        if not isinstance(entry, dict):
            continue
        question_id = str(entry.get("id") or "").strip()
        if question_id == "kind":
            # Category questions always offer the closed kind list.
            questions.append(kind_question())
            continue
        prompt_text = str(entry.get("prompt_text") or entry.get("question") or "").strip()
        try:
            answer_type = AnswerType(str(entry.get("answer_type") or entry.get("type") or "").strip().lower())
        except ValueError:
            continue
        if not question_id or not prompt_text:
            continue
        options = entry.get("options")
        if answer_type == AnswerType.select:
            if not isinstance(options, list) or not options:
                continue
            options = tuple(str(option) for option in options)
        else:
            options = None
        try:
            min_value = float(entry["min"]) if entry.get("min") is not None else None
            max_value = float(entry["max"]) if entry.get("max") is not None else None
        except (TypeError, ValueError):
            min_value = max_value = None
        questions.append(
            ClarificationQuestion(
                id=question_id,
                prompt_text=prompt_text[:300],
                answer_type=answer_type,
                options=options,
                min=min_value,
                max=max_value,
            )
        )
    return tuple(questions)


def unknown_result(text: str, raw_text: str, matcher_used: MatcherUsed, matcher_name: str) -> ParseResult:
    return ParseResult(
        kind=ActivityKind.unknown,
        fields={"text": raw_text},
        confidence=0.0,
        raw_text=raw_text,
        matcher_used=matcher_used,
        normalized_text=text,
        matcher_name=matcher_name,
    )


class FallbackClassifier:
    """Classifies text that no pattern matcher claimed.

    The backend runs under a hard deadline. Timeouts, transport failures,
    missing AI configuration and unusable payloads are logged and turned into
    an ``unknown`` result with zero confidence so the caller always gets a
    ParseResult back.
    """

    def __init__(self, backend: ClassificationBackend, timeout_seconds: float = FALLBACK_TIMEOUT_SECONDS):
        self.backend = backend
        self.timeout_seconds = timeout_seconds

    def classify(
        self, text: str, context: Optional[ClassifierContext] = None, raw_text: Optional[str] = None
    ) -> ParseResult:
        source = raw_text if raw_text is not None else text
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fallback-classifier")
        try:
            future = executor.submit(self.backend.classify, text, context)
            payload = future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError:
            logger.warning("fallback classifier timed out after %.1fs", self.timeout_seconds)
            return unknown_result(text, source, MatcherUsed.fallback, FALLBACK_UNAVAILABLE)
        except Exception as exc:
            logger.warning("fallback classifier unavailable: %s", str(exc)[:200])
            return unknown_result(text, source, MatcherUsed.fallback, FALLBACK_UNAVAILABLE)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if not isinstance(payload, dict):
            logger.warning("fallback classifier returned a non-object payload")
            return unknown_result(text, source, MatcherUsed.fallback, FALLBACK_UNAVAILABLE)

        kind = to_kind(payload.get("kind") or payload.get("type"))
        try:
            fields = _map_fields(kind, payload.get("fields") or payload.get("data"), source)
        except (TypeError, ValueError) as exc:
            logger.warning("fallback classifier fields unusable: %s", str(exc)[:200])
            return unknown_result(text, source, MatcherUsed.fallback, FALLBACK_UNAVAILABLE)
        confidence = _to_confidence(payload.get("confidence"))
        if kind == ActivityKind.unknown:
            confidence = 0.0
        return ParseResult(
            kind=kind,
            fields=fields,
            confidence=confidence,
            raw_text=source,
            matcher_used=MatcherUsed.fallback,
            normalized_text=text,
            matcher_name=getattr(self.backend, "name", "fallback"),
            questions=_parse_questions(payload.get("questions")),
        )
