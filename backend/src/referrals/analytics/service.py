"""Analytics service: referral participation per user and the leaderboard."""

from sqlalchemy import Select, case, func, literal, select

from referrals.analytics.models import ReferralParticipationRole, UserAnalytics
from referrals.analytics.schemas import AnalyticsSearchFilter
from referrals.links.models import Link, LinkStatus, LinkUsage, LinkUsageStatus
from referrals.logging_config import get_logger
from referrals.schemas import SearchResults
from referrals.storage.db import Database, db
from referrals.users.models import User
from referrals.users.service import UserService, user_service
from referrals.utils.date_utils import end_of_day, start_of_day

logger = get_logger(__name__)


def redact_display_name(name: str | None) -> str:
    """Keep the first letter of each word: 'Jane Doe' -> 'J*** D***'."""
    if not name or not name.strip():
        return ""
    return " ".join(f"{word[0]}***" for word in name.split())


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


class AnalyticsService:
    """Read-only aggregation over links and link usages."""

    def __init__(self, database: Database | None = None, users: UserService | None = None):
        self.db = database or db
        self.users = users or user_service
        self.logger = get_logger(__name__)

    def by_user(self, username: str, role: ReferralParticipationRole) -> UserAnalytics:
        """Participation summary of the acting user.

        Users without any activity get an all-zero summary.
        """
        user = self.users.get_by_username(username)
        results = self.search(AnalyticsSearchFilter(role=role, user_id=user.id))

        if results.items:
            return results.items[0]
        return UserAnalytics(user_id=user.id, display_name=user.name)

    def leaderboard(self, filter: AnalyticsSearchFilter) -> SearchResults[UserAnalytics]:
        """Public ranking: no per-user filter and redacted display names."""
        results = self.search(filter.model_copy(update={"user_id": None}))
        for item in results.items:
            item.display_name = redact_display_name(item.display_name)
        return results

    def search(self, filter: AnalyticsSearchFilter) -> SearchResults[UserAnalytics]:
        """Aggregate per user, ordered by completed count then name then id."""
        if filter.role == ReferralParticipationRole.REFERRER:
            stmt = self._referrer_query(filter)
        else:
            stmt = self._referee_query(filter)

        ranked = stmt.subquery()
        stmt = select(ranked).order_by(
            ranked.c.usage_count_completed.desc(),
            ranked.c.display_name,
            ranked.c.user_id,
        )

        with self.db.session() as session:
            results = SearchResults[UserAnalytics]()
            if filter.pagination_enabled:
                results.total_count = session.scalar(select(func.count()).select_from(ranked))
                stmt = stmt.offset(filter.offset).limit(filter.page_size)

            results.items = [
                UserAnalytics(
                    user_id=row.user_id,
                    display_name=row.display_name or "",
                    link_count=row.link_count,
                    link_count_active=row.link_count_active,
                    usage_count_completed=row.usage_count_completed,
                    usage_count_pending=row.usage_count_pending,
                    usage_count_expired=row.usage_count_expired,
                    zlto_reward_total=float(row.zlto_reward_total or 0),
                )
                for row in session.execute(stmt)
            ]

        self.logger.debug(
            "analytics_searched",
            role=filter.role.value,
            items=len(results.items),
            total=results.total_count,
        )
        return results

    def _link_criteria(self, filter: AnalyticsSearchFilter) -> list:
        criteria = []
        if filter.program_id is not None:
            criteria.append(Link.program_id == filter.program_id)
        if filter.date_start is not None:
            criteria.append(Link.date_created >= start_of_day(filter.date_start))
        if filter.date_end is not None:
            criteria.append(Link.date_created <= end_of_day(filter.date_end))
        if filter.user_id is not None:
            criteria.append(Link.user_id == filter.user_id)
        return criteria

    def _referrer_query(self, filter: AnalyticsSearchFilter) -> Select:
        # Completed counts and rewards come from the link counters; pending
        # and expired counts from the usages of the same links.
        criteria = self._link_criteria(filter)

        link_agg = (
            select(
                Link.user_id.label("user_id"),
                func.max(func.coalesce(User.display_name, User.username)).label("display_name"),
                func.count(Link.id).label("link_count"),
                _count_where(Link.status == LinkStatus.ACTIVE).label("link_count_active"),
                func.coalesce(func.sum(Link.completion_total), 0).label("usage_count_completed"),
                func.coalesce(func.sum(Link.zlto_reward_cumulative), 0).label("zlto_reward_total"),
            )
            .join(User, User.id == Link.user_id)
            .where(*criteria)
            .group_by(Link.user_id)
            .subquery()
        )

        usage_agg = (
            select(
                Link.user_id.label("user_id"),
                _count_where(LinkUsage.status == LinkUsageStatus.PENDING).label("pending"),
                _count_where(LinkUsage.status == LinkUsageStatus.EXPIRED).label("expired"),
            )
            .select_from(LinkUsage)
            .join(Link, Link.id == LinkUsage.link_id)
            .where(*criteria)
            .group_by(Link.user_id)
            .subquery()
        )

        return select(
            link_agg.c.user_id,
            link_agg.c.display_name,
            link_agg.c.link_count,
            link_agg.c.link_count_active,
            link_agg.c.usage_count_completed,
            func.coalesce(usage_agg.c.pending, 0).label("usage_count_pending"),
            func.coalesce(usage_agg.c.expired, 0).label("usage_count_expired"),
            link_agg.c.zlto_reward_total,
        ).outerjoin(usage_agg, usage_agg.c.user_id == link_agg.c.user_id)

    def _referee_query(self, filter: AnalyticsSearchFilter) -> Select:
        stmt = (
            select(
                LinkUsage.user_id.label("user_id"),
                func.max(func.coalesce(User.display_name, User.username)).label("display_name"),
                literal(0).label("link_count"),
                literal(0).label("link_count_active"),
                _count_where(LinkUsage.status == LinkUsageStatus.COMPLETED).label("usage_count_completed"),
                _count_where(LinkUsage.status == LinkUsageStatus.PENDING).label("usage_count_pending"),
                _count_where(LinkUsage.status == LinkUsageStatus.EXPIRED).label("usage_count_expired"),
                func.coalesce(func.sum(LinkUsage.zlto_reward_referee), 0).label("zlto_reward_total"),
            )
            .join(User, User.id == LinkUsage.user_id)
            .group_by(LinkUsage.user_id)
        )

        if filter.program_id is not None:
            stmt = stmt.where(LinkUsage.program_id == filter.program_id)
        if filter.date_start is not None:
            stmt = stmt.where(LinkUsage.date_created >= start_of_day(filter.date_start))
        if filter.date_end is not None:
            stmt = stmt.where(LinkUsage.date_created <= end_of_day(filter.date_end))
        if filter.user_id is not None:
            stmt = stmt.where(LinkUsage.user_id == filter.user_id)
        return stmt


# Singleton instance
analytics_service = AnalyticsService()
