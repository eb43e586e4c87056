import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activitylog.core.types import (
    ActivityKind,
    ActivityRecord,
    ClarificationOutcome,
    MatcherUsed,
    Provenance,
)
from activitylog.db.models import ActivityRecordRow, FrequentPhrase

logger = logging.getLogger("uvicorn.error")

FREQUENT_PHRASE_LIMIT = 10


class StorageError(RuntimeError):
    pass


class ActivityStore(Protocol):
    def save(self, record: ActivityRecord) -> int:
        ...

    def query_recent(self, user_id: str, limit: int = 20) -> list[ActivityRecord]:
        ...


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def fields_from_row(row: ActivityRecordRow) -> dict[str, Any]:
    try:
        fields = json.loads(row.fields_json or "{}")
    except json.JSONDecodeError:
        return {}
    return fields if isinstance(fields, dict) else {}


def record_from_row(row: ActivityRecordRow) -> ActivityRecord:
    return ActivityRecord(
        user_id=row.user_id,
        kind=ActivityKind(row.kind),
        fields=fields_from_row(row),
        confidence=row.confidence,
        provenance=Provenance(
            raw_text=row.raw_text,
            normalized_text=row.normalized_text,
            matcher_used=MatcherUsed(row.matcher_used),
            matcher_name=row.matcher_name,
            clarified=row.clarified,
            clarification_outcome=(
                ClarificationOutcome(row.clarification_outcome) if row.clarification_outcome else None
            ),
        ),
        needs_review=row.needs_review,
        fields_complete=row.fields_complete,
        captured_at=row.captured_at.replace(tzinfo=timezone.utc),
        sport_specific=row.sport_specific,
        source=row.source,
    )


class SqlActivityStore:
    def __init__(self, db: Session):
        self.db = db

    def stage(self, record: ActivityRecord) -> ActivityRecordRow:
        """Add the record to the current transaction without committing it."""
        provenance = record.provenance
        row = ActivityRecordRow(
            user_id=record.user_id,
            kind=record.kind.value,
            fields_json=json.dumps(record.fields),
            confidence=record.confidence,
            needs_review=record.needs_review,
            fields_complete=record.fields_complete,
            sport_specific=record.sport_specific,
            source=record.source,
            raw_text=provenance.raw_text,
            normalized_text=provenance.normalized_text,
            matcher_used=provenance.matcher_used.value,
            matcher_name=provenance.matcher_name,
            clarified=provenance.clarified,
            clarification_outcome=(
                provenance.clarification_outcome.value if provenance.clarification_outcome else None
            ),
            captured_at=naive_utc(record.captured_at),
        )
        try:
            self.db.add(row)
            self.db.flush()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("activity record save failed user=%s kind=%s", record.user_id, record.kind.value)
            raise StorageError("Failed to store activity record") from exc
        return row

    def save(self, record: ActivityRecord) -> int:
        row = self.stage(record)
        try:
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("activity record save failed user=%s kind=%s", record.user_id, record.kind.value)
            raise StorageError("Failed to store activity record") from exc
        return row.id

    def query_recent(self, user_id: str, limit: int = 20) -> list[ActivityRecord]:
        return [record_from_row(row) for row in self.query_recent_rows(user_id, limit)]

    def query_recent_rows(self, user_id: str, limit: int = 20) -> list[ActivityRecordRow]:
        return list(
            self.db.execute(
                select(ActivityRecordRow)
                .where(ActivityRecordRow.user_id == user_id)
                .order_by(desc(ActivityRecordRow.captured_at), desc(ActivityRecordRow.id))
                .limit(max(1, limit))
            ).scalars().all()
        )

    def record_phrase(self, user_id: str, phrase: str, kind: Optional[ActivityKind] = None) -> None:
        text = " ".join((phrase or "").lower().split())[:255]
        if not text:
            return
        row = self.db.execute(
            select(FrequentPhrase).where(FrequentPhrase.user_id == user_id, FrequentPhrase.phrase == text)
        ).scalar_one_or_none()
        now = datetime.utcnow()
        if row is None:
            tracked = self.db.execute(
                select(func.count(FrequentPhrase.id)).where(FrequentPhrase.user_id == user_id)
            ).scalar_one()
            # New phrases stop being tracked once the limit is reached.
            if tracked >= FREQUENT_PHRASE_LIMIT:
                return
            row = FrequentPhrase(user_id=user_id, phrase=text, count=1, last_used_at=now)
            self.db.add(row)
        else:
            row.count += 1
            row.last_used_at = now
        if kind is not None:
            row.kind = kind.value
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("Failed to update frequent phrases") from exc

    def frequent_phrases(self, user_id: str, limit: int = FREQUENT_PHRASE_LIMIT) -> list[dict[str, Any]]:
        rows = self.db.execute(
            select(FrequentPhrase)
            .where(FrequentPhrase.user_id == user_id)
            .order_by(desc(FrequentPhrase.count), desc(FrequentPhrase.last_used_at))
            .limit(max(1, min(limit, FREQUENT_PHRASE_LIMIT)))
        ).scalars().all()
        return [
            {
                "phrase": row.phrase,
                "kind": row.kind,
                "count": row.count,
                "last_used_at": row.last_used_at.isoformat(),
            }
            for row in rows
        ]
