import re
from dataclasses import replace
from typing import Any, Optional

from activitylog.core.types import ActivityKind, ParseResult

GENERIC_ACTIVITY_LABELS = {
    "",
    "sport",
    "sports",
    "exercise",
    "workout",
    "cardio",
    "training",
    "activity",
    "fitness",
    "strength",
    "gym",
}

# Backends sometimes put the specific name under a secondary key.
ALTERNATE_ACTIVITY_KEYS = ("sport", "sport_name", "exercise", "exercise_name", "name")

# Multi-word names first so "bench press" wins over "press"-style fragments.
SPORT_KEYWORDS = (
    "bench press",
    "overhead press",
    "table tennis",
    "rock climbing",
    "jump rope",
    "deadlift",
    "squats",
    "squat",
    "pull ups",
    "push ups",
    "tennis",
    "pickleball",
    "badminton",
    "squash",
    "padel",
    "basketball",
    "volleyball",
    "soccer",
    "football",
    "baseball",
    "softball",
    "hockey",
    "cricket",
    "rugby",
    "golf",
    "boxing",
    "kickboxing",
    "martial arts",
    "climbing",
    "bouldering",
    "yoga",
    "pilates",
    "crossfit",
    "skiing",
    "snowboarding",
    "surfing",
    "skating",
    "dancing",
    "running",
    "cycling",
    "swimming",
    "hiking",
    "rowing",
    "walking",
)
_SPORT_RES = tuple((name, re.compile(r"\b" + re.escape(name) + r"\b")) for name in SPORT_KEYWORDS)


def is_generic_activity(value: Any) -> bool:
    if value is None:
        return True
    return str(value).strip().lower() in GENERIC_ACTIVITY_LABELS


def find_sport_in_text(text: str) -> Optional[str]:
    lower = " ".join((text or "").lower().split())
    for name, pattern in _SPORT_RES:
        if pattern.search(lower):
            return name
    return None


def disambiguate(result: ParseResult) -> ParseResult:
    if result.kind != ActivityKind.workout:
        return result
    fields = dict(result.fields)
    activity = fields.get("activity")
    if not is_generic_activity(activity):
        return replace(result, fields=fields, sport_specific=True)

    recovered: Optional[str] = None
    for key in ALTERNATE_ACTIVITY_KEYS:
        candidate = fields.get(key)
        if isinstance(candidate, str) and not is_generic_activity(candidate):
            recovered = candidate.strip().lower()
            break
    if recovered is None:
        recovered = find_sport_in_text(result.raw_text) or find_sport_in_text(result.normalized_text)

    if recovered is None:
        return replace(result, fields=fields, sport_specific=False)
    fields["activity"] = recovered
    return replace(result, fields=fields, sport_specific=True)
