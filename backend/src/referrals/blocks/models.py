"""Referral block database model."""

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from referrals.storage.models import Base, TimestampMixin


class Block(TimestampMixin, Base):
    """Bars a user from referral participation while active.

    Unblocking deactivates the row; a later block creates a new one.
    """

    __tablename__ = "referral_blocks"
    __table_args__ = (
        # At most one active block per user
        Index(
            "ix_referral_blocks_user_active",
            "user_id",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reason_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("referral_block_reasons.id"), nullable=False
    )
    comment_block: Mapped[str | None] = mapped_column(String(500), nullable=True)
    comment_unblock: Mapped[str | None] = mapped_column(String(500), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    modified_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    def __repr__(self) -> str:
        return f"<Block(id={self.id}, user={self.user_id}, active={self.active})>"
