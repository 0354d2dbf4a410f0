"""Referral program database models and lifecycle."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from referrals.lookups.models import Country
from referrals.storage.models import Base, TimestampMixin


class ProgramStatus(str, Enum):
    """Program lifecycle states.

    Active: links may be created and claimed.
    Inactive: paused by an admin; pending usages expire instead of completing.
    Expired: end date reached; active links and pending usages expire.
    LimitReached: global completion cap hit; active links flagged LimitReached.
    UnCompletable: pathway broken; no new links or claims until fixed.
    Deleted: terminal; active links are cancelled.
    """
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    EXPIRED = "Expired"
    LIMIT_REACHED = "LimitReached"
    UN_COMPLETABLE = "UnCompletable"
    DELETED = "Deleted"


PROGRAM_TRANSITIONS: frozenset[tuple[ProgramStatus, ProgramStatus]] = frozenset({
    (ProgramStatus.ACTIVE, ProgramStatus.INACTIVE),
    (ProgramStatus.ACTIVE, ProgramStatus.EXPIRED),
    (ProgramStatus.ACTIVE, ProgramStatus.LIMIT_REACHED),
    (ProgramStatus.ACTIVE, ProgramStatus.UN_COMPLETABLE),
    (ProgramStatus.ACTIVE, ProgramStatus.DELETED),
    (ProgramStatus.INACTIVE, ProgramStatus.ACTIVE),
    (ProgramStatus.INACTIVE, ProgramStatus.DELETED),
    (ProgramStatus.UN_COMPLETABLE, ProgramStatus.ACTIVE),
    (ProgramStatus.UN_COMPLETABLE, ProgramStatus.EXPIRED),
    (ProgramStatus.UN_COMPLETABLE, ProgramStatus.LIMIT_REACHED),
    (ProgramStatus.UN_COMPLETABLE, ProgramStatus.DELETED),
    (ProgramStatus.EXPIRED, ProgramStatus.DELETED),
    (ProgramStatus.LIMIT_REACHED, ProgramStatus.DELETED),
})

# Statuses in which configuration may still be edited
PROGRAM_STATUSES_EDITABLE = frozenset({
    ProgramStatus.ACTIVE,
    ProgramStatus.INACTIVE,
    ProgramStatus.UN_COMPLETABLE,
})

# Statuses visible to non-admin callers
PROGRAM_STATUSES_PUBLIC = frozenset({ProgramStatus.ACTIVE, ProgramStatus.UN_COMPLETABLE})

# Statuses swept to Expired once the end date passes
PROGRAM_STATUSES_EXPIRABLE = frozenset({ProgramStatus.ACTIVE, ProgramStatus.UN_COMPLETABLE})

# Statuses under which pending usages may still complete
PROGRAM_STATUSES_COMPLETABLE = frozenset({ProgramStatus.ACTIVE, ProgramStatus.LIMIT_REACHED})

# Statuses soft-deleted once left untouched past the retention period
PROGRAM_STATUSES_DELETABLE = frozenset({ProgramStatus.EXPIRED, ProgramStatus.LIMIT_REACHED})


def can_transition(current: ProgramStatus, new: ProgramStatus) -> bool:
    """Whether ``current -> new`` is an allowed program transition."""
    return (current, new) in PROGRAM_TRANSITIONS


program_countries = Table(
    "referral_program_countries",
    Base.metadata,
    Column("program_id", Integer, ForeignKey("referral_programs.id"), primary_key=True),
    Column("country_id", Integer, ForeignKey("countries.id"), primary_key=True),
)


class Program(TimestampMixin, Base):
    """Time-boxed referral campaign.

    Caps are enforced at claim time; claims made before a cap was hit may
    still complete but earn no reward. Rewards are read at completion time
    and drawn from the pool with referee priority.
    """

    __tablename__ = "referral_programs"
    __table_args__ = (
        # At most one default program
        Index(
            "ix_referral_programs_default",
            "is_default",
            unique=True,
            sqlite_where=text("is_default = 1"),
            postgresql_where=text("is_default"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Days a referee has to complete after claiming (None = no window)
    completion_window_in_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Caps
    completion_limit_referee: Mapped[int | None] = mapped_column(Integer, nullable=True)  # per link
    completion_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)  # program-wide
    completion_total: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Rewards
    zlto_reward_referrer: Mapped[float | None] = mapped_column(Float, nullable=True)
    zlto_reward_referee: Mapped[float | None] = mapped_column(Float, nullable=True)
    zlto_reward_pool: Mapped[float | None] = mapped_column(Float, nullable=True)
    zlto_reward_cumulative: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Link creation gates
    proof_of_personhood_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pathway_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    multiple_links_allowed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[ProgramStatus] = mapped_column(
        SQLEnum(ProgramStatus), default=ProgramStatus.INACTIVE, nullable=False, index=True
    )
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    date_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    date_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    modified_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    # Empty = available worldwide
    countries: Mapped[list[Country]] = relationship(
        Country, secondary=program_countries, lazy="selectin", order_by=Country.name
    )

    @property
    def completion_balance(self) -> int | None:
        """Remaining completions under the global cap (None = uncapped)."""
        if self.completion_limit is None:
            return None
        return self.completion_limit - (self.completion_total or 0)

    @property
    def completion_limit_reached(self) -> bool:
        balance = self.completion_balance
        return balance is not None and balance <= 0

    @property
    def zlto_reward_balance(self) -> float | None:
        """Remaining reward pool (None = no pool enforcement)."""
        if self.zlto_reward_pool is None:
            return None
        return self.zlto_reward_pool - (self.zlto_reward_cumulative or 0.0)

    @property
    def country_ids(self) -> list[int]:
        return [country.id for country in self.countries]

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, name='{self.name}', status={self.status.value})>"
