"""
SQLAlchemy 2.0 ORM models for matchpool.
Ids are opaque strings so imported documents keep their original keys.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ChampionshipORM(Base):
    __tablename__ = "championships"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    api_code: Mapped[Optional[str]] = mapped_column(String(20))
    sync_mode: Mapped[str] = mapped_column(String(10), nullable=False, default="manual")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MatchORM(Base):
    __tablename__ = "matches"
    __table_args__ = (
        CheckConstraint("home_score IS NULL OR home_score >= 0", name="chk_home_score_non_negative"),
        CheckConstraint("away_score IS NULL OR away_score >= 0", name="chk_away_score_non_negative"),
        Index("ix_matches_status_scheduled_at", "status", "scheduled_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    championship_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("championships.id"), nullable=False, index=True
    )
    home_team_id: Mapped[str] = mapped_column(String(64), nullable=False)
    home_team_name: Mapped[str] = mapped_column(String(200), nullable=False)
    home_team_crest: Mapped[Optional[str]] = mapped_column(Text)
    away_team_id: Mapped[str] = mapped_column(String(64), nullable=False)
    away_team_name: Mapped[str] = mapped_column(String(200), nullable=False)
    away_team_crest: Mapped[Optional[str]] = mapped_column(Text)
    external_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    round: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    home_score: Mapped[Optional[int]] = mapped_column(Integer)
    away_score: Mapped[Optional[int]] = mapped_column(Integer)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    is_manual_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    betting_reopened: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class UserORM(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    exact_scores: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    outcomes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PredictionORM(Base):
    __tablename__ = "predictions"
    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_prediction_match_user"),
        CheckConstraint("predicted_home >= 0 AND predicted_away >= 0", name="chk_prediction_non_negative"),
    )

    # f"{match_id}_{user_id}"
    id: Mapped[str] = mapped_column(String(140), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    match_id: Mapped[str] = mapped_column(String(64), ForeignKey("matches.id"), nullable=False, index=True)
    championship_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    predicted_home: Mapped[int] = mapped_column(Integer, nullable=False)
    predicted_away: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[Optional[int]] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SystemSettingsORM(Base):
    __tablename__ = "system_settings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default="config")
    api_update_interval: Mapped[Optional[int]] = mapped_column(Integer)
    score_priority: Mapped[Optional[str]] = mapped_column(String(10))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


def prediction_id(match_id: str, user_id: str) -> str:
    """Deterministic key: at most one prediction per user per match."""
    return f"{match_id}_{user_id}"
