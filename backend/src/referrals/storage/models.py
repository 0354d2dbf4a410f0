"""Declarative base shared by all referral models."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from referrals.utils.date_utils import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TimestampMixin:
    """Created/modified timestamps."""

    date_created: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    date_modified: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
