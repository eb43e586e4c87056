from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()


class ActivityRecordRow(Base):
    __tablename__ = "activity_records"
    __table_args__ = (Index("ix_activity_records_user_captured", "user_id", "captured_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    fields_json: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fields_complete: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sport_specific: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    source: Mapped[str] = mapped_column(String(32), default="chat", nullable=False)

    raw_text: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_text: Mapped[str] = mapped_column(Text, nullable=False)
    matcher_used: Mapped[str] = mapped_column(String(16), nullable=False)
    matcher_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    clarified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    clarification_outcome: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class ClarificationSessionRow(Base):
    __tablename__ = "clarification_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)
    state_json: Mapped[str] = mapped_column(Text, nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(32), default="chat", nullable=False)
    record_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class FrequentPhrase(Base):
    __tablename__ = "frequent_phrases"
    __table_args__ = (UniqueConstraint("user_id", "phrase", name="uq_frequent_phrases_user_phrase"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    phrase: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
