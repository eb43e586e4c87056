from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from activitylog.core.types import ActivityKind


class UserProfile(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    preferred_weight_unit: Optional[Literal["lbs", "kg"]] = None


class RecentLog(BaseModel):
    kind: ActivityKind
    fields: dict[str, Any] = Field(default_factory=dict)
    raw_text: str = Field(default="", max_length=2000)
    logged_at: Optional[datetime] = None


class Patterns(BaseModel):
    frequent_phrases: list[str] = Field(default_factory=list, max_length=10)
    frequent_kinds: list[ActivityKind] = Field(default_factory=list)


class ClassifierContext(BaseModel):
    profile: UserProfile
    recent_logs: list[RecentLog] = Field(default_factory=list, max_length=20)
    patterns: Patterns = Field(default_factory=Patterns)

    def to_prompt_dict(self) -> dict[str, Any]:
        return {
            "preferred_weight_unit": self.profile.preferred_weight_unit,
            "recent_logs": [
                {"kind": log.kind.value, "fields": log.fields, "text": log.raw_text[:200]}
                for log in self.recent_logs[:10]
            ],
            "frequent_phrases": self.patterns.frequent_phrases,
            "frequent_kinds": [kind.value for kind in self.patterns.frequent_kinds],
        }
