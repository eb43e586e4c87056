from collections import Counter
from typing import Optional

from activitylog.core.context import ClassifierContext
from activitylog.core.types import ActivityKind, ActivityRecord
from activitylog.db.store import SqlActivityStore

CONTEXT_RECENT_LIMIT = 20
CONTEXT_KIND_LIMIT = 3


def _preferred_weight_unit(recent: list[ActivityRecord]) -> Optional[str]:
    for record in recent:
        if record.kind == ActivityKind.weight and record.fields.get("unit") in {"lbs", "kg"}:
            return record.fields["unit"]
    return None


def build_classifier_context(store: SqlActivityStore, user_id: str) -> ClassifierContext:
    recent = store.query_recent(user_id, limit=CONTEXT_RECENT_LIMIT)
    phrases = store.frequent_phrases(user_id)
    kind_counts = Counter(record.kind for record in recent if record.kind != ActivityKind.unknown)

    payload = {
        "profile": {
            "user_id": user_id,
            "preferred_weight_unit": _preferred_weight_unit(recent),
        },
        "recent_logs": [
            {
                "kind": record.kind.value,
                "fields": record.fields,
                "raw_text": record.provenance.raw_text[:2000],
                "logged_at": record.captured_at,
            }
            for record in recent
        ],
        "patterns": {
            "frequent_phrases": [item["phrase"] for item in phrases],
            "frequent_kinds": [kind.value for kind, _ in kind_counts.most_common(CONTEXT_KIND_LIMIT)],
        },
    }
    return ClassifierContext.model_validate(payload)
