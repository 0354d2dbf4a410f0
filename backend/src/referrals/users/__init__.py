"""User directory consumed by the referral engine."""

from referrals.users.models import User
from referrals.users.service import UserService, user_service

__all__ = ["User", "UserService", "user_service"]
