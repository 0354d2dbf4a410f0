"""Analytics search filters."""

from referrals.analytics.models import ReferralParticipationRole
from referrals.schemas import DateRangeFilter


class AnalyticsSearchFilter(DateRangeFilter):
    """Analytics criteria; the date range applies to creation dates."""
    role: ReferralParticipationRole = ReferralParticipationRole.REFERRER
    program_id: int | None = None
    user_id: int | None = None
