"""Link usage service: referee claims, completion rewards and expiry."""

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from referrals.blocks.service import BlockService, block_service
from referrals.exceptions import NotFoundError, ValidationError, ValidationReason
from referrals.links.models import (
    LINK_STATUSES_COMPLETABLE,
    Link,
    LinkStatus,
    LinkUsage,
    LinkUsageStatus,
    can_transition_usage,
)
from referrals.links.schemas import LinkUsageSearchFilter
from referrals.links.service import LinkService, link_service
from referrals.logging_config import get_logger
from referrals.programs.eligibility import program_accessible_to_user
from referrals.programs.models import PROGRAM_STATUSES_COMPLETABLE, Program, ProgramStatus
from referrals.programs.service import ProgramService, program_service
from referrals.schemas import SearchResults
from referrals.settings import settings
from referrals.storage.db import Database, db
from referrals.storage.repository import Repository
from referrals.users.service import UserService, user_service
from referrals.utils.date_utils import format_date, utcnow

logger = get_logger(__name__)


def allocate_rewards(
    referee_amount: float | None,
    referrer_amount: float | None,
    pool_balance: float | None,
) -> tuple[float | None, float | None]:
    """Split the remaining pool between referee and referrer.

    The referee is paid first; either side may receive a partial amount
    when the pool runs low. Without a pool the configured amounts are paid.

    Returns:
        (referee reward, referrer reward), None where nothing is paid
    """
    if pool_balance is None:
        return referee_amount or None, referrer_amount or None

    remaining = max(pool_balance, 0.0)
    referee = min(referee_amount or 0.0, remaining)
    remaining -= referee
    referrer = min(referrer_amount or 0.0, remaining)
    return referee or None, referrer or None


def window_elapsed(usage: LinkUsage, window_in_days: int | None, now: datetime) -> bool:
    """Whether the usage's completion window has run out. No window never elapses."""
    if window_in_days is None:
        return False
    return usage.date_claimed + timedelta(days=window_in_days) <= now


class LinkUsageService:
    """Service for referee claims and their completion.

    Claims and completions lock the program row, then the link row, then the
    usage row, so concurrent callers cannot push counters past their caps.
    """

    def __init__(
        self,
        database: Database | None = None,
        links: LinkService | None = None,
        programs: ProgramService | None = None,
        users: UserService | None = None,
        blocks: BlockService | None = None,
    ):
        self.db = database or db
        self.links = links or link_service
        self.programs = programs or program_service
        self.users = users or user_service
        self.blocks = blocks or block_service
        self.logger = get_logger(__name__)

    # ==================== QUERIES ====================

    def get_usage_by_id(
        self,
        usage_id: int,
        session: Session | None = None,
        for_update: bool = False,
    ) -> LinkUsage:
        """Get usage by ID.

        Raises:
            NotFoundError: If the usage does not exist
        """
        with self.db.session(session) as s:
            usage = Repository(s, LinkUsage).get_by_id(usage_id, for_update=for_update)

        if usage is None:
            raise NotFoundError(f"Referral link usage with id '{usage_id}' does not exist")
        return usage

    def get_by_program_id_as_referee_or_none(
        self,
        user_id: int,
        program_id: int,
        session: Session | None = None,
        for_update: bool = False,
    ) -> LinkUsage | None:
        with self.db.session(session) as s:
            usages = Repository(s, LinkUsage)
            return usages.first(
                usages.query(for_update).where(
                    LinkUsage.user_id == user_id,
                    LinkUsage.program_id == program_id,
                )
            )

    def get_by_program_id_as_referee(self, program_id: int, username: str) -> LinkUsage:
        """Get the acting user's claim for a program.

        Raises:
            NotFoundError: If the user has not claimed a link for the program
        """
        user = self.users.get_by_username(username)
        usage = self.get_by_program_id_as_referee_or_none(user.id, program_id)
        if usage is None:
            raise NotFoundError(
                f"No referral link usage found for program '{program_id}' and the current user"
            )
        return usage

    def search(self, filter: LinkUsageSearchFilter) -> SearchResults[LinkUsage]:
        """Search usages, most recently claimed first."""
        with self.db.session() as s:
            usages = Repository(s, LinkUsage)
            stmt = usages.query()

            if filter.program_id is not None:
                stmt = stmt.where(LinkUsage.program_id == filter.program_id)
            if filter.link_id is not None:
                stmt = stmt.where(LinkUsage.link_id == filter.link_id)
            if filter.user_id is not None:
                stmt = stmt.where(LinkUsage.user_id == filter.user_id)
            if filter.statuses:
                stmt = stmt.where(LinkUsage.status.in_(list(dict.fromkeys(filter.statuses))))
            if filter.date_start is not None:
                stmt = stmt.where(LinkUsage.date_claimed >= filter.date_start)
            if filter.date_end is not None:
                stmt = stmt.where(LinkUsage.date_claimed <= filter.date_end)

            results = SearchResults[LinkUsage]()
            if filter.pagination_enabled:
                results.total_count = s.scalar(
                    select(func.count()).select_from(stmt.order_by(None).subquery())
                )
                stmt = stmt.offset(filter.offset).limit(filter.page_size)

            stmt = stmt.order_by(LinkUsage.date_claimed.desc(), LinkUsage.id.desc())
            results.items = usages.all(stmt)
            return results

    # ==================== COMMANDS ====================

    def claim_as_referee(self, link_id: int, username: str) -> LinkUsage:
        """Claim a referral link for the acting user.

        Checks run in order and fail before anything is written: self
        referral, profile completion, existing claim for the program, program
        status and dates, country, completion balance, link status, referrer
        block, per-link cap.

        Returns:
            New pending usage

        Raises:
            ValidationError: If a claim rule is violated
        """
        user = self.users.get_by_username(username)
        link = self.links.get_by_id(link_id)

        with self.db.session() as s:
            program = self.programs.get_by_id(link.program_id, session=s, for_update=True)
            link = self.links.get_by_id(link_id, session=s, for_update=True)
            now = utcnow()

            if link.user_id == user.id:
                raise ValidationError(
                    ValidationReason.SELF_REFERRAL,
                    "You cannot claim your own referral link",
                )

            if not user.onboarded:
                raise ValidationError(
                    ValidationReason.PROFILE_INCOMPLETE,
                    "You must complete your profile before claiming a referral link",
                )

            window = settings.claim_onboarding_window_minutes
            if window is not None and user.date_onboarded < now - timedelta(minutes=window):
                raise ValidationError(
                    ValidationReason.ONBOARDING_WINDOW_ELAPSED,
                    f"Referral links can only be claimed within {window} minutes of completing your profile",
                )

            existing = self.get_by_program_id_as_referee_or_none(
                user.id, program.id, session=s, for_update=True
            )
            if existing is not None:
                self._raise_existing_claim(existing, program)

            if program.status != ProgramStatus.ACTIVE:
                raise ValidationError(
                    ValidationReason.PROGRAM_NOT_ACTIVE,
                    f"Referral program '{program.name}' cannot be claimed because its status is "
                    f"'{program.status.value}'",
                )

            if program.date_start > now:
                raise ValidationError(
                    ValidationReason.PROGRAM_NOT_STARTED,
                    f"Referral program '{program.name}' is not active or has not started",
                )

            if program.date_end is not None and program.date_end < now:
                raise ValidationError(
                    ValidationReason.PROGRAM_EXPIRED,
                    f"Referral program '{program.name}' expired on '{format_date(program.date_end)}'",
                )

            if not program_accessible_to_user(
                self.programs.worldwide_country_id(s), user.country_id, program.country_ids
            ):
                raise ValidationError(
                    ValidationReason.COUNTRY_NOT_ELIGIBLE,
                    f"Referral program '{program.name}' is not available in your country",
                )

            if program.completion_limit_reached:
                raise ValidationError(
                    ValidationReason.COMPLETION_LIMIT_REACHED,
                    f"Referral program '{program.name}' has reached its completion limit",
                )

            if link.status != LinkStatus.ACTIVE:
                raise ValidationError(
                    ValidationReason.LINK_NOT_ACTIVE,
                    f"Referral link '{link.name}' cannot be claimed because its status is "
                    f"'{link.status.value}'",
                )

            if self.blocks.is_blocked(link.user_id, session=s):
                raise ValidationError(
                    ValidationReason.USER_BLOCKED,
                    f"Referral link '{link.name}' is no longer available",
                )

            if self._link_limit_reached(program, link):
                raise ValidationError(
                    ValidationReason.COMPLETION_LIMIT_REACHED,
                    f"Referral link '{link.name}' has reached its completion limit",
                )

            usage = Repository(s, LinkUsage).create(
                LinkUsage(
                    program_id=program.id,
                    link_id=link.id,
                    user_id=user.id,
                    status=LinkUsageStatus.PENDING,
                    date_claimed=now,
                )
            )

            self.logger.info(
                "link_claimed",
                usage_id=usage.id,
                link_id=link.id,
                program_id=program.id,
                referee_id=user.id,
                referrer_id=link.user_id,
            )
            return usage

    def process_completion(self, usage_id: int) -> LinkUsage:
        """Complete a pending usage once the referee met the program criteria.

        Rewards are read from the program at this point and paid from the
        remaining pool. When the program or link cap is already exhausted the
        usage completes without rewards and no counter advances.

        The usage expires instead when the program or link no longer accepts
        completions, or its completion window has elapsed.

        Returns:
            The usage, Completed or Expired

        Raises:
            ValidationError: If the usage is not pending
        """
        usage = self.get_usage_by_id(usage_id)

        with self.db.session() as s:
            program = self.programs.get_by_id(usage.program_id, session=s, for_update=True)
            link = self.links.get_by_id(usage.link_id, session=s, for_update=True)
            usage = self.get_usage_by_id(usage_id, session=s, for_update=True)
            now = utcnow()

            if not can_transition_usage(usage.status, LinkUsageStatus.COMPLETED):
                raise ValidationError(
                    ValidationReason.USAGE_NOT_PENDING,
                    f"Referral link usage '{usage.id}' cannot be completed because its status is "
                    f"'{usage.status.value}'",
                )

            blocked_by = self._completion_blocked_by(program, link, usage, now)
            if blocked_by is not None:
                usage.status = LinkUsageStatus.EXPIRED
                usage.date_expired = now
                Repository(s, LinkUsage).update(usage)

                self.logger.warning(
                    "usage_expired_on_completion",
                    usage_id=usage.id,
                    link_id=link.id,
                    program_id=program.id,
                    cause=blocked_by,
                )
                return usage

            counted = not program.completion_limit_reached and not self._link_limit_reached(program, link)
            if counted:
                reward_referee, reward_referrer = allocate_rewards(
                    program.zlto_reward_referee,
                    program.zlto_reward_referrer,
                    program.zlto_reward_balance,
                )
            else:
                reward_referee, reward_referrer = None, None
                self.logger.warning(
                    "usage_completed_over_limit",
                    usage_id=usage.id,
                    link_id=link.id,
                    program_id=program.id,
                )

            usage.status = LinkUsageStatus.COMPLETED
            usage.date_completed = now
            usage.zlto_reward_referee = reward_referee
            usage.zlto_reward_referrer = reward_referrer
            Repository(s, LinkUsage).update(usage)

            if counted:
                self.links.process_completion(program, link.id, reward_referrer, session=s)
                self.programs.process_completion(
                    program.id,
                    (reward_referee or 0.0) + (reward_referrer or 0.0),
                    session=s,
                )

            self.logger.info(
                "usage_completed",
                usage_id=usage.id,
                link_id=link.id,
                program_id=program.id,
                reward_referee=reward_referee,
                reward_referrer=reward_referrer,
            )
            return usage

    def process_expiration(self) -> int:
        """Expire pending usages whose program completion window has elapsed.

        Returns:
            Number of usages expired
        """
        now = utcnow()
        with self.db.session() as s:
            usages = Repository(s, LinkUsage)
            rows = s.execute(
                usages.query(for_update=True)
                .add_columns(Program.completion_window_in_days)
                .join(Program, LinkUsage.program_id == Program.id)
                .where(
                    LinkUsage.status == LinkUsageStatus.PENDING,
                    Program.completion_window_in_days.is_not(None),
                )
            ).all()

            expired = [usage for usage, window in rows if window_elapsed(usage, window, now)]
            if not expired:
                self.logger.info("no_expirable_usages")
                return 0

            for usage in expired:
                usage.status = LinkUsageStatus.EXPIRED
                usage.date_expired = now
            usages.update_many(expired)

            self.logger.info("usages_expired", count=len(expired))
            return len(expired)

    # ==================== INTERNALS ====================

    def _completion_blocked_by(
        self,
        program: Program,
        link: Link,
        usage: LinkUsage,
        now: datetime,
    ) -> str | None:
        """Name of the gate that stops a pending usage from completing, if any."""
        if program.status not in PROGRAM_STATUSES_COMPLETABLE:
            return f"program_{program.status.name.lower()}"
        if link.status not in LINK_STATUSES_COMPLETABLE:
            return f"link_{link.status.name.lower()}"
        if window_elapsed(usage, program.completion_window_in_days, now):
            return "completion_window_elapsed"
        return None

    def _link_limit_reached(self, program: Program, link: Link) -> bool:
        limit = program.completion_limit_referee
        return limit is not None and (link.completion_total or 0) >= limit

    def _raise_existing_claim(self, usage: LinkUsage, program: Program) -> None:
        if usage.status == LinkUsageStatus.PENDING:
            raise ValidationError(
                ValidationReason.CLAIM_PENDING,
                f"You have already claimed a referral link for program '{program.name}' "
                f"that is still pending",
            )
        if usage.status == LinkUsageStatus.COMPLETED:
            raise ValidationError(
                ValidationReason.CLAIM_COMPLETED,
                f"You already completed program '{program.name}'",
            )
        raise ValidationError(
            ValidationReason.CLAIM_EXPIRED,
            f"Your claim for program '{program.name}' has expired",
        )


# Singleton instance
link_usage_service = LinkUsageService()
