from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ActivityKind(str, Enum):
    weight = "weight"
    sleep = "sleep"
    water = "water"
    energy = "energy"
    food = "food"
    workout = "workout"
    mood = "mood"
    unknown = "unknown"


class MatcherUsed(str, Enum):
    pattern = "pattern"
    fallback = "fallback"


class AnswerType(str, Enum):
    select = "select"
    number = "number"
    text = "text"
    boolean = "boolean"


class GateAction(str, Enum):
    commit = "commit"
    clarify = "clarify"
    store_with_flag = "store_with_flag"


class ClarificationOutcome(str, Enum):
    completed = "completed"
    skipped = "skipped"


@dataclass(frozen=True)
class RawInput:
    text: str
    source_user_id: str
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ClarificationQuestion:
    # id names the field the answer fills; "kind" re-categorizes the result.
    id: str
    prompt_text: str
    answer_type: AnswerType
    options: Optional[tuple[str, ...]] = None
    min: Optional[float] = None
    max: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt_text": self.prompt_text,
            "answer_type": self.answer_type.value,
            "options": list(self.options) if self.options is not None else None,
            "min": self.min,
            "max": self.max,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClarificationQuestion":
        options = data.get("options")
        return cls(
            id=str(data["id"]),
            prompt_text=str(data["prompt_text"]),
            answer_type=AnswerType(data["answer_type"]),
            options=tuple(str(o) for o in options) if options is not None else None,
            min=data.get("min"),
            max=data.get("max"),
        )


@dataclass(frozen=True)
class ParseResult:
    """One interpretation of an utterance.

    Instances are never mutated: disambiguation and clarification build a new
    ParseResult with ``dataclasses.replace`` so the original stays available
    for audit.
    """

    kind: ActivityKind
    fields: dict[str, Any]
    confidence: float
    raw_text: str
    matcher_used: MatcherUsed
    normalized_text: str = ""
    matcher_name: Optional[str] = None
    questions: tuple[ClarificationQuestion, ...] = ()
    sport_specific: Optional[bool] = None
    clarification_outcome: Optional[ClarificationOutcome] = None
    flagged: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "fields": dict(self.fields),
            "confidence": self.confidence,
            "raw_text": self.raw_text,
            "matcher_used": self.matcher_used.value,
            "normalized_text": self.normalized_text,
            "matcher_name": self.matcher_name,
            "questions": [q.to_dict() for q in self.questions],
            "sport_specific": self.sport_specific,
            "clarification_outcome": (
                self.clarification_outcome.value if self.clarification_outcome else None
            ),
            "flagged": self.flagged,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParseResult":
        outcome = data.get("clarification_outcome")
        return cls(
            kind=ActivityKind(data["kind"]),
            fields=dict(data.get("fields") or {}),
            confidence=float(data["confidence"]),
            raw_text=str(data.get("raw_text") or ""),
            matcher_used=MatcherUsed(data["matcher_used"]),
            normalized_text=str(data.get("normalized_text") or ""),
            matcher_name=data.get("matcher_name"),
            questions=tuple(ClarificationQuestion.from_dict(q) for q in data.get("questions") or []),
            sport_specific=data.get("sport_specific"),
            clarification_outcome=ClarificationOutcome(outcome) if outcome else None,
            flagged=bool(data.get("flagged", False)),
        )


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    questions: tuple[ClarificationQuestion, ...] = ()
    missing_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class Interpretation:
    raw_input: RawInput
    result: ParseResult
    decision: GateDecision


@dataclass(frozen=True)
class Provenance:
    raw_text: str
    normalized_text: str
    matcher_used: MatcherUsed
    matcher_name: Optional[str]
    clarified: bool
    clarification_outcome: Optional[ClarificationOutcome]


@dataclass(frozen=True)
class ActivityRecord:
    user_id: str
    kind: ActivityKind
    fields: dict[str, Any]
    confidence: float
    provenance: Provenance
    needs_review: bool
    fields_complete: bool
    captured_at: datetime
    sport_specific: Optional[bool] = None
    source: str = "chat"
