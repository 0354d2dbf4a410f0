"""Link service: referral link creation, cancellation and counters."""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from referrals.blocks.service import BlockService, block_service
from referrals.exceptions import (
    DataInconsistencyError,
    NotFoundError,
    SecurityError,
    ValidationError,
    ValidationReason,
)
from referrals.links.models import Link, LinkStatus, can_transition_link
from referrals.links.schemas import LinkRequestCreate, LinkRequestUpdate, LinkSearchFilter
from referrals.links.shortener import ShortLinkClient, short_link_client
from referrals.logging_config import get_logger
from referrals.programs.eligibility import program_accessible_to_user
from referrals.programs.models import Program, ProgramStatus
from referrals.programs.service import ProgramService, program_service
from referrals.schemas import SearchResults
from referrals.settings import settings
from referrals.storage.db import Database, db
from referrals.storage.repository import Repository
from referrals.users.models import User
from referrals.users.service import UserService, user_service
from referrals.utils.date_utils import format_date, utcnow

logger = get_logger(__name__)


def build_claim_url(program_id: int, link_id: int) -> str:
    """Canonical URL a referee opens to claim a link."""
    return f"{settings.app_base_url.rstrip('/')}/referrals/claim/{program_id}?linkId={link_id}"


class LinkService:
    """Service for managing referral links.

    Link creation holds a lock on the program row so cap and per-user link
    checks cannot race with concurrent creations or completions.
    """

    def __init__(
        self,
        database: Database | None = None,
        programs: ProgramService | None = None,
        users: UserService | None = None,
        blocks: BlockService | None = None,
        shortener: ShortLinkClient | None = None,
    ):
        self.db = database or db
        self.programs = programs or program_service
        self.users = users or user_service
        self.blocks = blocks or block_service
        self.shortener = shortener or short_link_client
        self.logger = get_logger(__name__)

    # ==================== QUERIES ====================

    def get_by_id(
        self,
        link_id: int,
        username: str | None = None,
        session: Session | None = None,
        for_update: bool = False,
    ) -> Link:
        """Get link by ID.

        Args:
            link_id: Link ID
            username: When given, the link must belong to this user (admins excepted)
            session: Caller's session to join
            for_update: Lock the row until the caller's transaction ends

        Raises:
            NotFoundError: If the link does not exist
            SecurityError: If the link belongs to someone else
        """
        with self.db.session(session) as s:
            link = Repository(s, Link).get_by_id(link_id, for_update=for_update)

        if link is None:
            raise NotFoundError(f"Link with id '{link_id}' does not exist")

        if username is not None:
            self._ensure_owner(link, self.users.get_by_username(username))
        return link

    def get_by_name_or_none(
        self,
        user_id: int,
        program_id: int,
        name: str,
        session: Session | None = None,
    ) -> Link | None:
        """Get a user's link in a program by name (case-insensitive)."""
        if not name or not name.strip():
            raise ValueError("Link name is required")

        with self.db.session(session) as s:
            links = Repository(s, Link)
            return links.first(
                links.query().where(
                    Link.user_id == user_id,
                    Link.program_id == program_id,
                    func.lower(Link.name) == name.strip().lower(),
                )
            )

    def search(self, filter: LinkSearchFilter) -> SearchResults[Link]:
        """Search links, newest first."""
        with self.db.session() as s:
            links = Repository(s, Link)
            stmt = links.query()

            if filter.program_id is not None:
                stmt = stmt.where(Link.program_id == filter.program_id)
            if filter.user_id is not None:
                stmt = stmt.where(Link.user_id == filter.user_id)
            if filter.statuses:
                stmt = stmt.where(Link.status.in_(list(dict.fromkeys(filter.statuses))))
            if filter.date_start is not None:
                stmt = stmt.where(Link.date_created >= filter.date_start)
            if filter.date_end is not None:
                stmt = stmt.where(Link.date_created <= filter.date_end)

            results = SearchResults[Link]()
            if filter.pagination_enabled:
                results.total_count = s.scalar(
                    select(func.count()).select_from(stmt.order_by(None).subquery())
                )
                stmt = stmt.offset(filter.offset).limit(filter.page_size)

            stmt = stmt.order_by(Link.date_created.desc(), Link.id.desc())
            results.items = links.all(stmt)
            return results

    # ==================== COMMANDS ====================

    def create(self, request: LinkRequestCreate, username: str) -> Link:
        """Create a referral link for the acting user.

        Checks run in order and fail before anything is written: program
        status, start date, end date, completion balance, country, block,
        multiple-links policy, duplicate name.

        Returns:
            Created link with its URL and short URL

        Raises:
            ValidationError: If a creation rule is violated
        """
        user = self.users.get_by_username(username)

        with self.db.session() as s:
            program = self.programs.get_by_id(request.program_id, session=s, for_update=True)
            self._ensure_program_open(program)

            if not program_accessible_to_user(
                self.programs.worldwide_country_id(s), user.country_id, program.country_ids
            ):
                raise ValidationError(
                    ValidationReason.COUNTRY_NOT_ELIGIBLE,
                    f"Referral program '{program.name}' is not available in your country",
                )

            if self.blocks.is_blocked(user.id, session=s):
                raise ValidationError(
                    ValidationReason.USER_BLOCKED,
                    "You are not allowed to create referral links",
                )

            links = Repository(s, Link)

            if not program.multiple_links_allowed:
                active = links.first(
                    links.query().where(
                        Link.user_id == user.id,
                        Link.program_id == program.id,
                        Link.status == LinkStatus.ACTIVE,
                    )
                )
                if active is not None:
                    raise ValidationError(
                        ValidationReason.MULTIPLE_LINKS_NOT_ALLOWED,
                        f"Multiple active referral links are not allowed for program '{program.name}'",
                    )

            if self.get_by_name_or_none(user.id, program.id, request.name, session=s) is not None:
                raise ValidationError(
                    ValidationReason.DUPLICATE_LINK_NAME,
                    f"A referral link with the name '{request.name}' already exists "
                    f"for program '{program.name}'",
                )

            link = links.create(
                Link(
                    name=request.name,
                    description=request.description,
                    program_id=program.id,
                    user_id=user.id,
                    status=LinkStatus.ACTIVE,
                    completion_total=0,
                    zlto_reward_cumulative=0.0,
                )
            )

            # The claim URL embeds the link id, so it is set after the insert
            link.url = build_claim_url(program.id, link.id)
            link.short_url = self.shortener.create_short_link(link.url, title=link.name)
            links.update(link)

            self.logger.info(
                "link_created",
                link_id=link.id,
                program_id=program.id,
                user_id=user.id,
                short_url=link.short_url,
            )
            return link

    def update(self, request: LinkRequestUpdate, username: str) -> Link:
        """Rename or re-describe one of the acting user's active links."""
        user = self.users.get_by_username(username)

        with self.db.session() as s:
            link = self.get_by_id(request.id, session=s, for_update=True)
            self._ensure_owner(link, user)

            if link.status != LinkStatus.ACTIVE:
                raise ValidationError(
                    ValidationReason.LINK_NOT_UPDATABLE,
                    f"Link '{link.name}' can no longer be updated (current status '{link.status.value}')",
                )

            existing = self.get_by_name_or_none(link.user_id, link.program_id, request.name, session=s)
            if existing is not None and existing.id != link.id:
                raise ValidationError(
                    ValidationReason.DUPLICATE_LINK_NAME,
                    f"A referral link with the name '{request.name}' already exists",
                )

            link.name = request.name
            link.description = request.description
            Repository(s, Link).update(link)

            self.logger.info("link_updated", link_id=link.id, user_id=user.id)
            return link

    def cancel(self, link_id: int, username: str) -> Link:
        """Cancel a link owned by the acting user (or any link, for admins).

        Cancelling an already cancelled link returns it unchanged.
        """
        user = self.users.get_by_username(username)

        with self.db.session() as s:
            link = self.get_by_id(link_id, session=s, for_update=True)
            self._ensure_owner(link, user)

            if link.status == LinkStatus.CANCELLED:
                return link

            if not can_transition_link(link.status, LinkStatus.CANCELLED):
                raise ValidationError(
                    ValidationReason.LINK_NOT_CANCELLABLE,
                    f"Link '{link.name}' cannot be cancelled (current status '{link.status.value}')",
                )

            link.status = LinkStatus.CANCELLED
            Repository(s, Link).update(link)

            self.logger.info("link_cancelled", link_id=link.id, cancelled_by=user.id)
            return link

    def process_completion(
        self,
        program: Program,
        link_id: int,
        reward_amount: float | None,
        session: Session,
    ) -> Link:
        """Count one completed usage against a link.

        The caller passes the program it already holds locked; the link row is
        locked here. Flips the link to LimitReached once the per-link cap is
        reached or the program itself has reached its limit.

        Args:
            program: Locked owning program
            link_id: Link ID
            reward_amount: Referrer reward paid for this completion
            session: Caller's transaction
        """
        links = Repository(session, Link)
        link = self.get_by_id(link_id, session=session, for_update=True)

        if link.program_id != program.id:
            raise DataInconsistencyError(
                f"Link '{link.id}' does not belong to program '{program.id}'"
            )

        limit = program.completion_limit_referee
        if limit is not None and (link.completion_total or 0) >= limit:
            self.logger.warning(
                "link_completion_limit_already_reached",
                link_id=link.id,
                total=link.completion_total,
                limit=limit,
            )
        else:
            link.completion_total = (link.completion_total or 0) + 1
            if reward_amount is not None and reward_amount > 0:
                link.zlto_reward_cumulative = (link.zlto_reward_cumulative or 0.0) + reward_amount

        limit_reached = limit is not None and (link.completion_total or 0) >= limit
        if link.status == LinkStatus.ACTIVE and (
            limit_reached or program.status == ProgramStatus.LIMIT_REACHED
        ):
            link.status = LinkStatus.LIMIT_REACHED
            self.logger.info(
                "link_limit_reached",
                link_id=link.id,
                total=link.completion_total,
                limit=limit,
                program_status=program.status.value,
            )

        links.update(link)
        return link

    # ==================== INTERNALS ====================

    def _ensure_owner(self, link: Link, user: User) -> None:
        if link.user_id != user.id and not user.is_admin:
            raise SecurityError(f"Link with id '{link.id}' does not belong to the current user")

    def _ensure_program_open(self, program: Program) -> None:
        """Program must be active, started, not ended and below its cap."""
        now = utcnow()

        if program.status != ProgramStatus.ACTIVE:
            raise ValidationError(
                ValidationReason.PROGRAM_NOT_ACTIVE,
                f"Referral program '{program.name}' is not active or has not started",
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

        if program.completion_limit_reached:
            raise ValidationError(
                ValidationReason.COMPLETION_LIMIT_REACHED,
                f"Referral program '{program.name}' has reached its completion limit",
            )


# Singleton instance
link_service = LinkService()
