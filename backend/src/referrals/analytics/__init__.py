"""Referral participation reporting."""

from referrals.analytics.models import ReferralParticipationRole, UserAnalytics
from referrals.analytics.service import AnalyticsService, analytics_service

__all__ = [
    "AnalyticsService",
    "ReferralParticipationRole",
    "UserAnalytics",
    "analytics_service",
]
