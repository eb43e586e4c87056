from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from activitylog.db.models import ActivityRecordRow
from activitylog.db.session import get_db
from activitylog.db.store import SqlActivityStore, fields_from_row

router = APIRouter(prefix="/activities", tags=["activities"])


class ActivityOut(BaseModel):
    id: int
    kind: str
    fields: dict[str, Any]
    confidence: float
    needs_review: bool
    fields_complete: bool
    sport_specific: Optional[bool] = None
    source: str
    raw_text: str
    matcher_used: str
    matcher_name: Optional[str] = None
    clarified: bool
    clarification_outcome: Optional[str] = None
    captured_at: datetime


class CommonPhraseOut(BaseModel):
    phrase: str
    kind: Optional[str] = None
    count: int
    last_used_at: datetime


def _activity_out(row: ActivityRecordRow) -> ActivityOut:
    return ActivityOut(
        id=row.id,
        kind=row.kind,
        fields=fields_from_row(row),
        confidence=row.confidence,
        needs_review=row.needs_review,
        fields_complete=row.fields_complete,
        sport_specific=row.sport_specific,
        source=row.source,
        raw_text=row.raw_text,
        matcher_used=row.matcher_used,
        matcher_name=row.matcher_name,
        clarified=row.clarified,
        clarification_outcome=row.clarification_outcome,
        captured_at=row.captured_at,
    )


@router.get("", response_model=list[ActivityOut])
def list_activities(
    user_id: str = Query(min_length=1, max_length=64),
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
) -> list[ActivityOut]:
    rows = SqlActivityStore(db).query_recent_rows(user_id, limit=limit)
    return [_activity_out(row) for row in rows]


@router.get("/common", response_model=list[CommonPhraseOut])
def common_phrases(
    user_id: str = Query(min_length=1, max_length=64),
    db: Session = Depends(get_db),
) -> list[CommonPhraseOut]:
    return [CommonPhraseOut.model_validate(item) for item in SqlActivityStore(db).frequent_phrases(user_id)]
