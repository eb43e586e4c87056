import os
from dataclasses import dataclass

from activitylog.core.schemas import check_fields, kind_question, questions_for_missing
from activitylog.core.types import ClarificationQuestion, GateAction, GateDecision, ParseResult

GATE_COMMIT_THRESHOLD = float(os.getenv("GATE_COMMIT_THRESHOLD", "0.80"))
GATE_CLARIFY_THRESHOLD = float(os.getenv("GATE_CLARIFY_THRESHOLD", "0.50"))


@dataclass(frozen=True)
class GateThresholds:
    commit: float = GATE_COMMIT_THRESHOLD
    clarify: float = GATE_CLARIFY_THRESHOLD

    def __post_init__(self) -> None:
        if not 0.0 <= self.clarify <= self.commit <= 1.0:
            raise ValueError("Gate thresholds must satisfy 0 <= clarify <= commit <= 1")


DEFAULT_THRESHOLDS = GateThresholds()


def _merge_questions(*groups: tuple[ClarificationQuestion, ...]) -> tuple[ClarificationQuestion, ...]:
    seen: set[str] = set()
    merged: list[ClarificationQuestion] = []
    for group in groups:
        for question in group:
            if question.id in seen:
                continue
            seen.add(question.id)
            merged.append(question)
    return tuple(merged)


def decide(result: ParseResult, thresholds: GateThresholds = DEFAULT_THRESHOLDS) -> GateDecision:
    """Route a ParseResult to commit, clarify or store-with-flag.

    Pure function of the result and thresholds. Low confidence always wins
    over completeness.
    """
    complete, missing = check_fields(result.kind, result.fields)
    if result.confidence < thresholds.clarify:
        return GateDecision(action=GateAction.store_with_flag, missing_fields=tuple(missing))
    if complete and result.confidence >= thresholds.commit:
        return GateDecision(action=GateAction.commit)

    questions = _merge_questions(result.questions, tuple(questions_for_missing(result.kind, missing)))
    if not questions and complete:
        # Moderate confidence with nothing missing: confirm the category instead.
        questions = (kind_question(),)
    if questions:
        return GateDecision(action=GateAction.clarify, questions=questions, missing_fields=tuple(missing))
    return GateDecision(action=GateAction.store_with_flag, missing_fields=tuple(missing))
