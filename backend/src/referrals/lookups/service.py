"""Lookup services for countries and block reasons."""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from referrals.exceptions import NotFoundError
from referrals.logging_config import get_logger
from referrals.lookups.models import BlockReason, Country
from referrals.storage.db import Database, db

logger = get_logger(__name__)

# Seed data loaded by ``referrals seed``
DEFAULT_COUNTRIES = [
    ("Worldwide", "WW"),
    ("Botswana", "BW"),
    ("Kenya", "KE"),
    ("Lesotho", "LS"),
    ("Mozambique", "MZ"),
    ("Namibia", "NA"),
    ("Nigeria", "NG"),
    ("South Africa", "ZA"),
    ("Zambia", "ZM"),
    ("Zimbabwe", "ZW"),
]

DEFAULT_BLOCK_REASONS = [
    ("Other", "Blocked for a reason not covered by a specific category"),
]


class CountryService:
    """Read access to the country lookup."""

    def __init__(self, database: Database | None = None):
        self.db = database or db

    def get_by_id(self, country_id: int) -> Country:
        with self.db.session() as session:
            country = session.get(Country, country_id)
            if country is None:
                raise NotFoundError(f"Country with id '{country_id}' does not exist")
            return country

    def get_by_code_alpha2(self, code: str, session: Session | None = None) -> Country:
        """Get country by its two-letter code (case-insensitive)."""
        if not code or not code.strip():
            raise ValueError("Country code is required")

        code = code.strip().upper()
        with self.db.session(session) as session:
            country = session.scalars(
                select(Country).where(func.upper(Country.code_alpha2) == code)
            ).first()
            if country is None:
                raise NotFoundError(f"Country with code '{code}' does not exist")
            return country

    def list_all(self) -> list[Country]:
        with self.db.session() as session:
            return list(session.scalars(select(Country).order_by(Country.name)))

    def seed(self) -> int:
        """Insert missing default countries. Returns the number added."""
        added = 0
        with self.db.session() as session:
            existing = set(session.scalars(select(Country.code_alpha2)))
            for name, code in DEFAULT_COUNTRIES:
                if code in existing:
                    continue
                session.add(Country(name=name, code_alpha2=code))
                added += 1

        logger.info("countries_seeded", added=added)
        return added


class BlockReasonService:
    """Read access to the block reason lookup."""

    def __init__(self, database: Database | None = None):
        self.db = database or db

    def get_by_id(self, reason_id: int) -> BlockReason:
        with self.db.session() as session:
            reason = session.get(BlockReason, reason_id)
            if reason is None:
                raise NotFoundError(f"Block reason with id '{reason_id}' does not exist")
            return reason

    def get_by_name(self, name: str) -> BlockReason:
        with self.db.session() as session:
            reason = session.scalars(
                select(BlockReason).where(func.lower(BlockReason.name) == name.strip().lower())
            ).first()
            if reason is None:
                raise NotFoundError(f"Block reason '{name}' does not exist")
            return reason

    def seed(self) -> int:
        """Insert missing default block reasons. Returns the number added."""
        added = 0
        with self.db.session() as session:
            existing = set(session.scalars(select(BlockReason.name)))
            for name, description in DEFAULT_BLOCK_REASONS:
                if name in existing:
                    continue
                session.add(BlockReason(name=name, description=description))
                added += 1

        logger.info("block_reasons_seeded", added=added)
        return added


# Singleton instances
country_service = CountryService()
block_reason_service = BlockReasonService()
