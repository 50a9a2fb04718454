"""SQLAlchemy ORM Models for Copilot Value."""

from .base import Base, TimestampMixin
from .models import MetricDaily, Setting, TargetValues

__all__ = [
    "Base",
    "TimestampMixin",
    "MetricDaily",
    "Setting",
    "TargetValues",
]
