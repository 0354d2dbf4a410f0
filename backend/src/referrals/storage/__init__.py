"""Persistence layer: engine, sessions and repositories."""

from referrals.storage.db import Database, db
from referrals.storage.models import Base
from referrals.storage.repository import Repository

__all__ = ["Base", "Database", "Repository", "db"]
