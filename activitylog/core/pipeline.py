import logging
import re
from dataclasses import replace
from typing import Callable, Optional, Union

from activitylog.core.cache import ClassificationCache
from activitylog.core.context import ClassifierContext
from activitylog.core.disambiguation import disambiguate
from activitylog.core.fallback import FALLBACK_UNAVAILABLE, FallbackClassifier, unknown_result
from activitylog.core.gate import DEFAULT_THRESHOLDS, GateThresholds, decide
from activitylog.core.matchers import MATCHER_ORDER, PatternMatcher, match_patterns
from activitylog.core.normalizer import normalize
from activitylog.core.types import GateAction, Interpretation, MatcherUsed, ParseResult, RawInput

logger = logging.getLogger("uvicorn.error")

MALFORMED_INPUT = "malformed_input"

_SEGMENT_SPLIT_RE = re.compile(r"[,;]|\sand\s", re.IGNORECASE)

ContextSource = Union[ClassifierContext, Callable[[], ClassifierContext], None]


def split_segments(text: str) -> list[str]:
    return [segment.strip() for segment in _SEGMENT_SPLIT_RE.split(text or "") if segment.strip()]


class ActivityInterpreter:
    """Runs one utterance through normalize, match, fallback, disambiguate and gate.

    ``context`` may be a ClassifierContext or a zero-argument callable that
    builds one; it is only resolved when the fallback classifier is needed.
    ``cache`` is owned by the caller and shared across invocations.
    """

    def __init__(
        self,
        classifier: Optional[FallbackClassifier] = None,
        matchers: tuple[PatternMatcher, ...] = MATCHER_ORDER,
        thresholds: GateThresholds = DEFAULT_THRESHOLDS,
    ):
        self.classifier = classifier
        self.matchers = matchers
        self.thresholds = thresholds

    def _classify(
        self,
        text: str,
        raw_text: str,
        user_id: str,
        context: ContextSource,
        cache: Optional[ClassificationCache],
    ) -> ParseResult:
        if self.classifier is None:
            return unknown_result(text, raw_text, MatcherUsed.fallback, FALLBACK_UNAVAILABLE)

        if cache is not None:
            cached = cache.get(user_id, text)
            if cached is not None:
                return replace(cached, raw_text=raw_text)

        resolved = context() if callable(context) else context
        result = self.classifier.classify(text, resolved, raw_text=raw_text)
        if cache is not None and result.matcher_name != FALLBACK_UNAVAILABLE:
            cache.set(user_id, text, result)
        return result

    def parse(
        self,
        raw_input: RawInput,
        context: ContextSource = None,
        cache: Optional[ClassificationCache] = None,
    ) -> ParseResult:
        text = normalize(raw_input.text)
        if not text:
            return unknown_result(text, raw_input.text, MatcherUsed.pattern, MALFORMED_INPUT)
        result = match_patterns(text, raw_input.text, self.matchers)
        if result is None:
            result = self._classify(text, raw_input.text, raw_input.source_user_id, context, cache)
        return disambiguate(result)

    def interpret(
        self,
        raw_input: RawInput,
        context: ContextSource = None,
        cache: Optional[ClassificationCache] = None,
    ) -> Interpretation:
        result = self.parse(raw_input, context=context, cache=cache)
        decision = decide(result, self.thresholds)
        if decision.action == GateAction.store_with_flag:
            result = replace(result, flagged=True)
        logger.info(
            "interpreted user=%s kind=%s confidence=%.2f matcher=%s action=%s",
            raw_input.source_user_id,
            result.kind.value,
            result.confidence,
            result.matcher_name,
            decision.action.value,
        )
        return Interpretation(raw_input=raw_input, result=result, decision=decision)

    def interpret_many(
        self,
        raw_input: RawInput,
        context: ContextSource = None,
        cache: Optional[ClassificationCache] = None,
    ) -> list[Interpretation]:
        segments = split_segments(raw_input.text)
        claimed = [segment for segment in segments if match_patterns(normalize(segment), segment, self.matchers)]
        if len(claimed) < 2:
            return [self.interpret(raw_input, context=context, cache=cache)]
        return [
            self.interpret(replace(raw_input, text=segment), context=context, cache=cache)
            for segment in segments
        ]
