import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from activitylog.api.deps import (
    ParseResponse,
    get_classification_cache,
    get_interpreter,
    handle_interpretation,
    storage_unavailable,
)
from activitylog.core.cache import ClassificationCache
from activitylog.core.context import ClassifierContext
from activitylog.core.context_builder import build_classifier_context
from activitylog.core.pipeline import ActivityInterpreter
from activitylog.core.types import ActivityKind, RawInput
from activitylog.db.session import get_db
from activitylog.db.store import SqlActivityStore, StorageError

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/parse", tags=["parse"])

VALID_SOURCES = {"chat", "voice", "quick_log"}


class ParseRequest(BaseModel):
    text: str = Field(max_length=2000)
    user_id: str = Field(min_length=1, max_length=64)
    source: str = Field(default="chat", max_length=32)

    @model_validator(mode="after")
    def validate_fields(self):
        self.user_id = self.user_id.strip()
        if not self.user_id:
            raise ValueError("user_id is required")
        if self.source not in VALID_SOURCES:
            raise ValueError("source must be chat/voice/quick_log")
        return self


class MultiParseResponse(BaseModel):
    items: list[ParseResponse]


def _context_loader(store: SqlActivityStore, user_id: str):
    def _load() -> ClassifierContext:
        return build_classifier_context(store, user_id)

    return _load


def _track_phrase(store: SqlActivityStore, user_id: str, text: str, kind: Optional[ActivityKind]) -> None:
    try:
        store.record_phrase(user_id, text, kind)
    except StorageError as exc:
        raise storage_unavailable(exc) from exc


@router.post("", response_model=ParseResponse)
def parse_entry(
    payload: ParseRequest,
    db: Session = Depends(get_db),
    interpreter: ActivityInterpreter = Depends(get_interpreter),
    cache: Optional[ClassificationCache] = Depends(get_classification_cache),
) -> ParseResponse:
    store = SqlActivityStore(db)
    raw_input = RawInput(text=payload.text, source_user_id=payload.user_id)
    interpretation = interpreter.interpret(raw_input, context=_context_loader(store, payload.user_id), cache=cache)
    response = handle_interpretation(db, interpretation, payload.source)
    if interpretation.result.kind != ActivityKind.unknown:
        _track_phrase(store, payload.user_id, payload.text, interpretation.result.kind)
    return response


@router.post("/multi", response_model=MultiParseResponse)
def parse_multi_entry(
    payload: ParseRequest,
    db: Session = Depends(get_db),
    interpreter: ActivityInterpreter = Depends(get_interpreter),
    cache: Optional[ClassificationCache] = Depends(get_classification_cache),
) -> MultiParseResponse:
    store = SqlActivityStore(db)
    raw_input = RawInput(text=payload.text, source_user_id=payload.user_id)
    interpretations = interpreter.interpret_many(
        raw_input, context=_context_loader(store, payload.user_id), cache=cache
    )
    items = [handle_interpretation(db, interpretation, payload.source) for interpretation in interpretations]
    if len(interpretations) > 1:
        logger.info("multi-entry parse user=%s segments=%s", payload.user_id, len(interpretations))
    kinds = {interpretation.result.kind for interpretation in interpretations} - {ActivityKind.unknown}
    if kinds:
        _track_phrase(store, payload.user_id, payload.text, kinds.pop() if len(kinds) == 1 else None)
    return MultiParseResponse(items=items)
