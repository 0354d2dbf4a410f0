"""Lookup tables: countries and block reasons."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from referrals.storage.models import Base


class Country(Base):
    """Country lookup.

    The record with code ``WW`` is the worldwide marker.
    """

    __tablename__ = "countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(125), nullable=False, unique=True)
    code_alpha2: Mapped[str] = mapped_column(String(2), nullable=False, unique=True, index=True)

    def __repr__(self) -> str:
        return f"<Country(code={self.code_alpha2}, name='{self.name}')>"


class BlockReason(Base):
    """Reason recorded when a user is blocked from referrals."""

    __tablename__ = "referral_block_reasons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(125), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    def __repr__(self) -> str:
        return f"<BlockReason(name='{self.name}')>"
