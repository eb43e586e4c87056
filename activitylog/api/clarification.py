import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from activitylog.api.deps import (
    ClarificationOut,
    ParseResultOut,
    clarification_out,
    result_out,
    save_session,
    storage_unavailable,
)
from activitylog.core.clarification import (
    ClarificationSession,
    InvalidClarificationAnswer,
    SessionStatus,
)
from activitylog.core.emitter import acknowledgement, emit
from activitylog.core.types import GateAction, RawInput
from activitylog.db.models import ClarificationSessionRow
from activitylog.db.session import get_db
from activitylog.db.store import SqlActivityStore, StorageError

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/clarifications", tags=["clarifications"])


class ClarificationActionRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class ClarificationAnswerRequest(ClarificationActionRequest):
    value: Any = None


class ClarificationResponse(BaseModel):
    clarification: ClarificationOut
    result: Optional[ParseResultOut] = None
    record_id: Optional[int] = None
    acknowledgement: str


def _load_session(db: Session, clarification_id: int, user_id: str) -> tuple[ClarificationSessionRow, ClarificationSession]:
    row = db.get(ClarificationSessionRow, clarification_id)
    if not row or row.user_id != user_id:
        raise HTTPException(status_code=404, detail="Clarification not found")
    session = ClarificationSession.from_state(json.loads(row.state_json))
    if session.is_expired():
        if session.status == SessionStatus.active:
            session.expire()
            save_session(db, row, session)
            logger.info("clarification expired id=%s user=%s", row.id, row.user_id)
        raise HTTPException(status_code=410, detail="Clarification expired. Please log the entry again.")
    return row, session


def _require_active(session: ClarificationSession) -> None:
    if session.status != SessionStatus.active:
        raise HTTPException(status_code=409, detail=f"Clarification already {session.status.value}")


def _finish(db: Session, row: ClarificationSessionRow, session: ClarificationSession) -> ClarificationResponse:
    result = session.finalize()
    raw_input = RawInput(text=row.raw_text, source_user_id=row.user_id, captured_at=row.captured_at)
    record = emit(result, raw_input, source=row.source)
    try:
        record_row = SqlActivityStore(db).stage(record)
    except StorageError as exc:
        raise storage_unavailable(exc) from exc
    record_id = record_row.id
    # The record and the closed session commit together or not at all.
    row.record_id = record_id
    save_session(db, row, session)
    logger.info(
        "clarified activity stored id=%s user=%s kind=%s needs_review=%s",
        record_id,
        record.user_id,
        record.kind.value,
        record.needs_review,
    )
    action = GateAction.store_with_flag if result.flagged else GateAction.commit
    return ClarificationResponse(
        clarification=clarification_out(row, session),
        result=result_out(result),
        record_id=record_id,
        acknowledgement=acknowledgement(result, action),
    )


def _pending(row: ClarificationSessionRow, session: ClarificationSession) -> ClarificationResponse:
    question = session.current_question
    return ClarificationResponse(
        clarification=clarification_out(row, session),
        acknowledgement=question.prompt_text if question else f"Clarification {session.status.value}.",
    )


@router.get("/{clarification_id}", response_model=ClarificationResponse)
def get_clarification(
    clarification_id: int,
    user_id: str = Query(min_length=1, max_length=64),
    db: Session = Depends(get_db),
) -> ClarificationResponse:
    row, session = _load_session(db, clarification_id, user_id)
    return _pending(row, session)


@router.post("/{clarification_id}/answer", response_model=ClarificationResponse)
def answer_clarification(
    clarification_id: int,
    payload: ClarificationAnswerRequest,
    db: Session = Depends(get_db),
) -> ClarificationResponse:
    row, session = _load_session(db, clarification_id, payload.user_id)
    _require_active(session)
    try:
        session.answer(payload.value)
    except InvalidClarificationAnswer as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if session.status == SessionStatus.completed:
        return _finish(db, row, session)
    save_session(db, row, session)
    return _pending(row, session)


@router.post("/{clarification_id}/back", response_model=ClarificationResponse)
def back_clarification(
    clarification_id: int,
    payload: ClarificationActionRequest,
    db: Session = Depends(get_db),
) -> ClarificationResponse:
    row, session = _load_session(db, clarification_id, payload.user_id)
    _require_active(session)
    session.back()
    save_session(db, row, session)
    return _pending(row, session)


@router.post("/{clarification_id}/skip", response_model=ClarificationResponse)
def skip_clarification(
    clarification_id: int,
    payload: ClarificationActionRequest,
    db: Session = Depends(get_db),
) -> ClarificationResponse:
    row, session = _load_session(db, clarification_id, payload.user_id)
    _require_active(session)
    session.skip()
    return _finish(db, row, session)
