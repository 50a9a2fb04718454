"""SQLAlchemy ORM models for settings, targets and metric rollups.

GitHub-shaped records (members, seats, teams, surveys...) live in the
document store; see ``core.mongo``.
"""

from datetime import date as date_type
from typing import Any

from sqlalchemy import JSON, Date, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


# =============================================================================
# SETTINGS
# =============================================================================


class Setting(Base, TimestampMixin):
    """A named application setting (baseUrl, developerCount, ...)."""

    __tablename__ = "settings"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Setting {self.name}={self.value!r}>"


# =============================================================================
# TARGETS
# =============================================================================


class TargetValues(Base, TimestampMixin):
    """The single row of configured targets, grouped by org/user/impact."""

    __tablename__ = "targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    user: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    impact: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "org": self.org,
            "user": self.user,
            "impact": self.impact,
            **self.timestamps(),
        }


# =============================================================================
# METRICS ROLLUP
# =============================================================================


class MetricDaily(Base, TimestampMixin):
    """Per-day totals of the Copilot usage metrics for an org (and team)."""

    __tablename__ = "metrics_daily"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org: Mapped[str] = mapped_column(String(255), nullable=False)
    # Empty string for org-wide rows so the unique constraint holds
    team: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    date: Mapped[date_type] = mapped_column(Date, nullable=False)

    total_active_users: Mapped[int] = mapped_column(Integer, default=0)
    total_engaged_users: Mapped[int] = mapped_column(Integer, default=0)

    code_suggestions: Mapped[int] = mapped_column(Integer, default=0)
    code_acceptances: Mapped[int] = mapped_column(Integer, default=0)
    code_lines_suggested: Mapped[int] = mapped_column(Integer, default=0)
    code_lines_accepted: Mapped[int] = mapped_column(Integer, default=0)

    ide_chats: Mapped[int] = mapped_column(Integer, default=0)
    ide_chat_copy_events: Mapped[int] = mapped_column(Integer, default=0)
    ide_chat_insertion_events: Mapped[int] = mapped_column(Integer, default=0)

    dotcom_chats: Mapped[int] = mapped_column(Integer, default=0)
    pr_summaries_created: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("org", "team", "date"),
        Index("ix_metrics_daily_org_date", "org", "date"),
    )
