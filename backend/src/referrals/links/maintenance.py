"""Bulk link state changes cascaded from programs and blocks."""

from sqlalchemy.orm import Session

from referrals.links.models import Link, LinkStatus, LinkUsage, LinkUsageStatus
from referrals.logging_config import get_logger
from referrals.storage.db import Database, db
from referrals.storage.repository import Repository
from referrals.utils.date_utils import utcnow

logger = get_logger(__name__)


class LinkMaintenanceService:
    """Cascading link updates.

    Every method accepts the caller's session so the cascade commits or rolls
    back together with the change that triggered it.
    """

    def __init__(self, database: Database | None = None):
        self.db = database or db
        self.logger = get_logger(__name__)

    def cancel_by_user_id(self, user_id: int, session: Session | None = None) -> int:
        """Cancel all active links of a referrer (on block).

        Returns:
            Number of links cancelled
        """
        return self._flip_active_links(
            Link.user_id == user_id, LinkStatus.CANCELLED, session,
            event="links_cancelled_by_user", user_id=user_id,
        )

    def cancel_by_program_id(self, program_id: int, session: Session | None = None) -> int:
        """Cancel all active links of a program (on deletion)."""
        return self._flip_active_links(
            Link.program_id == program_id, LinkStatus.CANCELLED, session,
            event="links_cancelled_by_program", program_id=program_id,
        )

    def limit_reached_by_program_id(self, program_id: int, session: Session | None = None) -> int:
        """Flag all active links of a program LimitReached (global cap hit).

        Pending usages are left to complete.
        """
        return self._flip_active_links(
            Link.program_id == program_id, LinkStatus.LIMIT_REACHED, session,
            event="links_limit_reached_by_program", program_id=program_id,
        )

    def expire_by_program_id(self, program_ids: list[int], session: Session | None = None) -> int:
        """Expire active links of the given programs and their pending usages.

        Returns:
            Number of links expired
        """
        program_ids = list(dict.fromkeys(program_ids))
        if not program_ids:
            raise ValueError("At least one program id is required")

        with self.db.session(session) as s:
            links = Repository(s, Link)
            items = links.all(
                links.query(for_update=True).where(
                    Link.program_id.in_(program_ids),
                    Link.status == LinkStatus.ACTIVE,
                )
            )
            if not items:
                self.logger.info("no_expirable_links", program_ids=program_ids)
                return 0

            for item in items:
                item.status = LinkStatus.EXPIRED
            links.update_many(items)

            usages_expired = self._expire_usages_by_link_id(s, [item.id for item in items])

            self.logger.info(
                "links_expired_by_program",
                program_ids=program_ids,
                links=len(items),
                usages=usages_expired,
            )
            return len(items)

    def _expire_usages_by_link_id(self, session: Session, link_ids: list[int]) -> int:
        usages = Repository(session, LinkUsage)
        items = usages.all(
            usages.query(for_update=True).where(
                LinkUsage.link_id.in_(link_ids),
                LinkUsage.status == LinkUsageStatus.PENDING,
            )
        )
        now = utcnow()
        for item in items:
            item.status = LinkUsageStatus.EXPIRED
            item.date_expired = now
        usages.update_many(items)
        return len(items)

    def _flip_active_links(
        self,
        criterion,
        status: LinkStatus,
        session: Session | None,
        event: str,
        **log_fields,
    ) -> int:
        with self.db.session(session) as s:
            links = Repository(s, Link)
            items = links.all(
                links.query(for_update=True).where(criterion, Link.status == LinkStatus.ACTIVE)
            )
            for item in items:
                item.status = status
            links.update_many(items)

            self.logger.info(event, count=len(items), **log_fields)
            return len(items)


# Singleton instance
link_maintenance_service = LinkMaintenanceService()
