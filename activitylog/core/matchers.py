import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from activitylog.core.types import ActivityKind, MatcherUsed, ParseResult

# Numeric-anchored shapes are less ambiguous than keyword-anchored ones.
WEIGHT_CONFIDENCE = 0.95
ENERGY_CONFIDENCE = 0.95
SLEEP_CONFIDENCE = 0.95
WATER_CONFIDENCE = 0.90
FOOD_CONFIDENCE = 0.85
WORKOUT_CONFIDENCE = 0.85
MOOD_CONFIDENCE = 0.80

_WEIGHT_RE = re.compile(r"^(?:weight\s+)?(\d+(?:\.\d+)?)\s*(lbs?|kg|kilos?|pounds?)?$")
_ENERGY_RE = re.compile(r"\benergy\s+(\d+)(?:\s*/\s*10)?")
_SLEEP_RE = re.compile(r"\b(?:slept|sleep)\s+(?:for\s+)?(\d+(?:\.\d+)?)\s*(?:hours?|hrs?)?")
_WATER_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(oz|ml|cups?|liters?|l)\b")
_DISTANCE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(k|km|mi|miles?|meters?|m)\b")
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(mins?|minutes?|hours?|hrs?)")

MEAL_KEYWORDS = ("breakfast", "lunch", "dinner", "snack")

FOOD_VOCABULARY = (
    "eggs",
    "toast",
    "chicken",
    "rice",
    "salad",
    "sandwich",
    "pizza",
    "pasta",
    "steak",
    "fish",
    "vegetables",
    "fruit",
    "yogurt",
    "cereal",
    "oatmeal",
    "coffee",
    "tea",
    "juice",
    "milk",
    "cheese",
    "bread",
    "apple",
    "banana",
    "orange",
    "berries",
    "nuts",
    "soup",
    "burger",
)
FOOD_PLACEHOLDER = "meal"
_FOOD_RES = tuple((food, re.compile(r"\b" + re.escape(food) + r"(?:s|es)?\b")) for food in FOOD_VOCABULARY)

# Ordered: the first family with a verb present names the activity.
WORKOUT_VERB_FAMILIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("running", ("ran", "run", "running", "jogged", "jogging")),
    ("walking", ("walked", "walking")),
    ("cycling", ("cycled", "cycling", "biked", "biking")),
    ("swimming", ("swam", "swimming")),
    ("hiking", ("hiked", "hiking")),
    ("rowing", ("rowed", "rowing")),
)
_WORKOUT_FAMILY_RES = tuple(
    (activity, re.compile(r"\b(?:" + "|".join(verbs) + r")\b")) for activity, verbs in WORKOUT_VERB_FAMILIES
)

MOOD_ANCHORS = ("feeling", "feel")
MOOD_WORDS = ("great", "good", "bad", "terrible", "tired")
DEFAULT_MOOD = "okay"


def _number(raw: str) -> Union[int, float]:
    value = float(raw)
    return int(value) if value.is_integer() else value


def _result(name: str, kind: ActivityKind, fields: dict[str, Any], confidence: float, text: str, raw_text: str) -> ParseResult:
    return ParseResult(
        kind=kind,
        fields=fields,
        confidence=confidence,
        raw_text=raw_text,
        matcher_used=MatcherUsed.pattern,
        normalized_text=text,
        matcher_name=name,
    )


def match_energy(text: str, raw_text: str) -> Optional[ParseResult]:
    match = _ENERGY_RE.search(text)
    if not match:
        return None
    return _result("energy", ActivityKind.energy, {"level": int(match.group(1))}, ENERGY_CONFIDENCE, text, raw_text)


def match_sleep(text: str, raw_text: str) -> Optional[ParseResult]:
    match = _SLEEP_RE.search(text)
    if not match:
        return None
    return _result("sleep", ActivityKind.sleep, {"hours": _number(match.group(1))}, SLEEP_CONFIDENCE, text, raw_text)


def normalize_water_unit(token: str) -> str:
    if "liter" in token or token == "l":
        return "liters"
    if "cup" in token:
        return "cups"
    if "ml" in token:
        return "ml"
    return "oz"


def match_water(text: str, raw_text: str) -> Optional[ParseResult]:
    # An amount alone is too weak a signal; require the word "water" too.
    if "water" not in text:
        return None
    match = _WATER_RE.search(text)
    if not match:
        return None
    fields = {"amount": _number(match.group(1)), "unit": normalize_water_unit(match.group(2))}
    return _result("water", ActivityKind.water, fields, WATER_CONFIDENCE, text, raw_text)


def normalize_weight_unit(token: Optional[str]) -> str:
    return "kg" if token and "k" in token else "lbs"


def match_weight(text: str, raw_text: str) -> Optional[ParseResult]:
    match = _WEIGHT_RE.match(text)
    if not match:
        return None
    fields = {"value": _number(match.group(1)), "unit": normalize_weight_unit(match.group(2))}
    return _result("weight", ActivityKind.weight, fields, WEIGHT_CONFIDENCE, text, raw_text)


def extract_food_items(text: str) -> list[str]:
    found = []
    for food, pattern in _FOOD_RES:
        match = pattern.search(text)
        if match:
            found.append((match.start(), food))
    return [food for _, food in sorted(found)]


def match_food(text: str, raw_text: str) -> Optional[ParseResult]:
    meal = next((keyword for keyword in MEAL_KEYWORDS if keyword in text), None)
    if meal is None:
        return None
    items = extract_food_items(text) or [FOOD_PLACEHOLDER]
    return _result("food", ActivityKind.food, {"meal": meal, "items": items}, FOOD_CONFIDENCE, text, raw_text)


def normalize_distance_unit(token: str) -> str:
    if token in {"k", "km"}:
        return "km"
    if "mi" in token:
        return "miles"
    return "m"


def match_workout(text: str, raw_text: str) -> Optional[ParseResult]:
    activity = next((name for name, pattern in _WORKOUT_FAMILY_RES if pattern.search(text)), None)
    if activity is None:
        return None
    fields: dict[str, Any] = {"activity": activity}
    distance = _DISTANCE_RE.search(text)
    if distance:
        fields["distance"] = _number(distance.group(1))
        fields["distance_unit"] = normalize_distance_unit(distance.group(2))
    duration = _DURATION_RE.search(text)
    if duration:
        value = float(duration.group(1))
        unit = duration.group(2)
        minutes = value * 60 if ("hour" in unit or "hr" in unit) else value
        fields["duration_minutes"] = _number(str(minutes))
    return _result("workout", ActivityKind.workout, fields, WORKOUT_CONFIDENCE, text, raw_text)


def match_mood(text: str, raw_text: str) -> Optional[ParseResult]:
    if not any(anchor in text for anchor in MOOD_ANCHORS):
        return None
    mood = next((word for word in MOOD_WORDS if word in text), DEFAULT_MOOD)
    return _result("mood", ActivityKind.mood, {"mood": mood, "notes": raw_text}, MOOD_CONFIDENCE, text, raw_text)


@dataclass(frozen=True)
class PatternMatcher:
    name: str
    kind: ActivityKind
    try_match: Callable[[str, str], Optional[ParseResult]]


# Priority is load-bearing: "energy 7" must never reach the bare-number weight
# shape, and numeric shapes must win over meal/verb/feeling keywords. Adding a
# matcher means choosing its slot here.
MATCHER_ORDER: tuple[PatternMatcher, ...] = (
    PatternMatcher("energy", ActivityKind.energy, match_energy),
    PatternMatcher("sleep", ActivityKind.sleep, match_sleep),
    PatternMatcher("water", ActivityKind.water, match_water),
    PatternMatcher("weight", ActivityKind.weight, match_weight),
    PatternMatcher("food", ActivityKind.food, match_food),
    PatternMatcher("workout", ActivityKind.workout, match_workout),
    PatternMatcher("mood", ActivityKind.mood, match_mood),
)


def match_patterns(
    text: str, raw_text: Optional[str] = None, matchers: tuple[PatternMatcher, ...] = MATCHER_ORDER
) -> Optional[ParseResult]:
    if not text:
        return None
    source = raw_text if raw_text is not None else text
    for matcher in matchers:
        result = matcher.try_match(text, source)
        if result is not None:
            return result
    return None
