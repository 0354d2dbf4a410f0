"""User directory model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from referrals.storage.models import Base, TimestampMixin


class User(TimestampMixin, Base):
    """A platform user acting as referrer, referee or administrator."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    country_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("countries.id"), nullable=True)

    # Set once the user completed their profile
    date_onboarded: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def onboarded(self) -> bool:
        return self.date_onboarded is not None

    @property
    def name(self) -> str:
        return self.display_name or self.username

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"
