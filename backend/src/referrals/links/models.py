"""Referral link and link usage database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from referrals.storage.models import Base, TimestampMixin


class LinkStatus(str, Enum):
    """Link lifecycle states. Every state other than Active is final."""
    ACTIVE = "Active"
    CANCELLED = "Cancelled"
    LIMIT_REACHED = "LimitReached"
    EXPIRED = "Expired"


class LinkUsageStatus(str, Enum):
    """Usage lifecycle states."""
    PENDING = "Pending"
    COMPLETED = "Completed"
    EXPIRED = "Expired"


LINK_TRANSITIONS: frozenset[tuple[LinkStatus, LinkStatus]] = frozenset({
    (LinkStatus.ACTIVE, LinkStatus.CANCELLED),
    (LinkStatus.ACTIVE, LinkStatus.LIMIT_REACHED),
    (LinkStatus.ACTIVE, LinkStatus.EXPIRED),
})

LINK_USAGE_TRANSITIONS: frozenset[tuple[LinkUsageStatus, LinkUsageStatus]] = frozenset({
    (LinkUsageStatus.PENDING, LinkUsageStatus.COMPLETED),
    (LinkUsageStatus.PENDING, LinkUsageStatus.EXPIRED),
})


# Link statuses under which a pending usage may still complete
LINK_STATUSES_COMPLETABLE = frozenset({LinkStatus.ACTIVE, LinkStatus.LIMIT_REACHED})


def can_transition_link(current: LinkStatus, new: LinkStatus) -> bool:
    return (current, new) in LINK_TRANSITIONS


def can_transition_usage(current: LinkUsageStatus, new: LinkUsageStatus) -> bool:
    return (current, new) in LINK_USAGE_TRANSITIONS


class Link(TimestampMixin, Base):
    """Shareable claim target owned by a referrer within one program."""

    __tablename__ = "referral_links"
    __table_args__ = (
        UniqueConstraint("user_id", "program_id", "name", name="uq_referral_links_user_program_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    program_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referral_programs.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status: Mapped[LinkStatus] = mapped_column(
        SQLEnum(LinkStatus), default=LinkStatus.ACTIVE, nullable=False, index=True
    )

    # Generated at creation, never changed afterwards
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    short_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Completed usages counted against this link
    completion_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    zlto_reward_cumulative: Mapped[float | None] = mapped_column(Float, nullable=True)

    @validates("url", "short_url")
    def validate_immutable_url(self, key: str, value: str | None) -> str | None:
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"Link {key} cannot be changed once set")
        return value

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, name='{self.name}', status={self.status.value})>"


class LinkUsage(TimestampMixin, Base):
    """A referee's claim against a link.

    At most one usage per referee and program.
    """

    __tablename__ = "referral_link_usages"
    __table_args__ = (
        UniqueConstraint("user_id", "program_id", name="uq_referral_link_usages_user_program"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    program_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referral_programs.id"), nullable=False, index=True
    )
    link_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referral_links.id"), nullable=False, index=True
    )
    # Referee
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status: Mapped[LinkUsageStatus] = mapped_column(
        SQLEnum(LinkUsageStatus), default=LinkUsageStatus.PENDING, nullable=False, index=True
    )

    # Amounts actually awarded, set at completion
    zlto_reward_referrer: Mapped[float | None] = mapped_column(Float, nullable=True)
    zlto_reward_referee: Mapped[float | None] = mapped_column(Float, nullable=True)

    date_claimed: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    date_completed: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    date_expired: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<LinkUsage(id={self.id}, link={self.link_id}, user={self.user_id}, status={self.status.value})>"
