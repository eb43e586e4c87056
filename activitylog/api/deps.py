import json
import logging
from typing import Any, Optional

from fastapi import Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activitylog.core.cache import ClassificationCache
from activitylog.core.clarification import ClarificationSession
from activitylog.core.emitter import ActivityRecordEmitter, acknowledgement
from activitylog.core.fallback import FallbackClassifier, LLMClassificationBackend
from activitylog.core.pipeline import ActivityInterpreter
from activitylog.core.types import ClarificationQuestion, GateAction, Interpretation, ParseResult
from activitylog.db.models import ClarificationSessionRow
from activitylog.db.store import SqlActivityStore, StorageError, naive_utc
from activitylog.services.llm import LLMClient, get_llm_client

logger = logging.getLogger("uvicorn.error")


class QuestionOut(BaseModel):
    id: str
    prompt_text: str
    answer_type: str
    options: Optional[list[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None


class ParseResultOut(BaseModel):
    kind: str
    fields: dict[str, Any]
    confidence: float
    matcher_used: str
    matcher_name: Optional[str] = None
    sport_specific: Optional[bool] = None
    clarification_outcome: Optional[str] = None
    flagged: bool = False


class ClarificationOut(BaseModel):
    clarification_id: int
    status: str
    question: Optional[QuestionOut] = None
    question_index: int
    question_count: int
    answers: dict[str, Any]


class ParseResponse(BaseModel):
    action: str
    result: ParseResultOut
    record_id: Optional[int] = None
    clarification: Optional[ClarificationOut] = None
    acknowledgement: str


def get_classification_cache(request: Request) -> Optional[ClassificationCache]:
    return getattr(request.app.state, "classification_cache", None)


def get_interpreter(llm_client: LLMClient = Depends(get_llm_client)) -> ActivityInterpreter:
    return ActivityInterpreter(classifier=FallbackClassifier(LLMClassificationBackend(llm_client)))


def question_out(question: Optional[ClarificationQuestion]) -> Optional[QuestionOut]:
    if question is None:
        return None
    return QuestionOut.model_validate(question.to_dict())


def result_out(result: ParseResult) -> ParseResultOut:
    payload = result.to_dict()
    return ParseResultOut.model_validate({key: payload[key] for key in ParseResultOut.model_fields})


def clarification_out(row: ClarificationSessionRow, session: ClarificationSession) -> ClarificationOut:
    return ClarificationOut(
        clarification_id=row.id,
        status=session.status.value,
        question=question_out(session.current_question),
        question_index=session.current_index,
        question_count=len(session.questions),
        answers=dict(session.answers),
    )


def save_session(db: Session, row: ClarificationSessionRow, session: ClarificationSession) -> None:
    row.status = session.status.value
    row.state_json = json.dumps(session.to_state())
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as exc:
        db.rollback()
        raise storage_unavailable(StorageError("Failed to store clarification session")) from exc


def storage_unavailable(exc: StorageError) -> HTTPException:
    logger.warning("storage unavailable: %s", exc)
    return HTTPException(status_code=503, detail="Activity storage is unavailable. Please try again.")


def handle_interpretation(db: Session, interpretation: Interpretation, source: str) -> ParseResponse:
    """Persist or park one interpretation and describe the outcome."""
    result = interpretation.result
    decision = interpretation.decision
    raw_input = interpretation.raw_input

    if decision.action == GateAction.clarify:
        session = ClarificationSession(result, decision.questions)
        row = ClarificationSessionRow(
            user_id=raw_input.source_user_id,
            raw_text=raw_input.text,
            source=source,
            captured_at=naive_utc(raw_input.captured_at),
            status=session.status.value,
            state_json="{}",
        )
        save_session(db, row, session)
        return ParseResponse(
            action=decision.action.value,
            result=result_out(result),
            clarification=clarification_out(row, session),
            acknowledgement=acknowledgement(result, decision.action, decision.questions),
        )

    emitter = ActivityRecordEmitter(SqlActivityStore(db))
    try:
        _, record_id = emitter.save(result, raw_input, source=source)
    except StorageError as exc:
        raise storage_unavailable(exc) from exc
    return ParseResponse(
        action=decision.action.value,
        result=result_out(result),
        record_id=record_id,
        acknowledgement=acknowledgement(result, decision.action),
    )
