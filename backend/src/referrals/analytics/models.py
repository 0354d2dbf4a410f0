"""Referral analytics result types."""

from dataclasses import dataclass
from enum import Enum


class ReferralParticipationRole(str, Enum):
    """Side of a referral a user is reported on."""

    REFERRER = "Referrer"
    REFEREE = "Referee"


@dataclass
class UserAnalytics:
    """Participation summary for one user in one role.

    As referrer the completed count and reward total come from the link
    counters; as referee they come from the user's own claims. Link counts
    stay zero for referees.
    """

    user_id: int
    display_name: str
    link_count: int = 0
    link_count_active: int = 0
    usage_count_completed: int = 0
    usage_count_pending: int = 0
    usage_count_expired: int = 0
    zlto_reward_total: float = 0.0
