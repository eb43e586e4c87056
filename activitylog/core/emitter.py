import logging
from typing import Any

from activitylog.core.schemas import check_fields
from activitylog.core.types import (
    ActivityKind,
    ActivityRecord,
    ClarificationQuestion,
    GateAction,
    ParseResult,
    Provenance,
    RawInput,
)
from activitylog.db.store import ActivityStore

logger = logging.getLogger("uvicorn.error")


def emit(result: ParseResult, raw_input: RawInput, source: str = "chat") -> ActivityRecord:
    """Build the final ActivityRecord for a committed, clarified or flagged result."""
    complete, _ = check_fields(result.kind, result.fields)
    provenance = Provenance(
        raw_text=raw_input.text,
        normalized_text=result.normalized_text,
        matcher_used=result.matcher_used,
        matcher_name=result.matcher_name,
        clarified=result.clarification_outcome is not None,
        clarification_outcome=result.clarification_outcome,
    )
    return ActivityRecord(
        user_id=raw_input.source_user_id,
        kind=result.kind,
        fields=dict(result.fields),
        confidence=result.confidence,
        provenance=provenance,
        needs_review=result.flagged or not complete,
        fields_complete=complete,
        captured_at=raw_input.captured_at,
        sport_specific=result.sport_specific,
        source=source,
    )


class ActivityRecordEmitter:
    def __init__(self, store: ActivityStore):
        self.store = store

    def save(self, result: ParseResult, raw_input: RawInput, source: str = "chat") -> tuple[ActivityRecord, int]:
        record = emit(result, raw_input, source=source)
        # StorageError is left to the caller; records are never retried here.
        record_id = self.store.save(record)
        logger.info(
            "activity stored id=%s user=%s kind=%s needs_review=%s",
            record_id,
            record.user_id,
            record.kind.value,
            record.needs_review,
        )
        return record, record_id


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _summary(kind: ActivityKind, fields: dict[str, Any]) -> str:
    if kind == ActivityKind.weight:
        return f"Weight logged: {_format_number(fields.get('value'))} {fields.get('unit', '')}".rstrip() + "."
    if kind == ActivityKind.sleep:
        return f"{_format_number(fields.get('hours'))} hours of sleep logged."
    if kind == ActivityKind.water:
        return f"{_format_number(fields.get('amount'))} {fields.get('unit', '')} of water logged."
    if kind == ActivityKind.energy:
        return f"Energy {_format_number(fields.get('level'))}/10 noted."
    if kind == ActivityKind.food:
        meal = str(fields.get("meal") or "meal").capitalize()
        items = fields.get("items") or []
        if items:
            return f"{meal} recorded: {', '.join(str(item) for item in items)}."
        return f"{meal} recorded."
    if kind == ActivityKind.workout:
        activity = str(fields.get("activity") or "workout").capitalize()
        details = []
        if fields.get("distance") is not None:
            details.append(f"{_format_number(fields['distance'])} {fields.get('distance_unit') or ''}".strip())
        if fields.get("duration_minutes") is not None:
            details.append(f"{_format_number(fields['duration_minutes'])} min")
        if details:
            return f"{activity} logged ({', '.join(details)})."
        return f"{activity} logged."
    if kind == ActivityKind.mood:
        return f"Mood noted: {fields.get('mood', 'okay')}."
    return "Entry saved."


def acknowledgement(
    result: ParseResult,
    action: GateAction,
    questions: tuple[ClarificationQuestion, ...] = (),
) -> str:
    if action == GateAction.clarify and questions:
        return questions[0].prompt_text
    if action == GateAction.store_with_flag or result.flagged:
        if result.kind == ActivityKind.unknown:
            return "Saved as-is for later review."
        return f"Recorded (let me know if I misunderstood). {_summary(result.kind, result.fields)}"
    prefix = "Got it!" if result.confidence >= 0.9 else "Logged!"
    return f"{prefix} {_summary(result.kind, result.fields)}"
