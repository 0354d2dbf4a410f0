"""Program service: lifecycle, completion caps and default designation."""

from datetime import timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from referrals.exceptions import (
    DataInconsistencyError,
    NotFoundError,
    ValidationError,
    ValidationReason,
)
from referrals.links.maintenance import LinkMaintenanceService, link_maintenance_service
from referrals.logging_config import get_logger
from referrals.lookups.models import Country
from referrals.lookups.service import CountryService, country_service
from referrals.programs.eligibility import (
    default_program_is_worldwide,
    resolve_available_countries_for_program_search,
)
from referrals.programs.models import (
    PROGRAM_STATUSES_DELETABLE,
    PROGRAM_STATUSES_EDITABLE,
    PROGRAM_STATUSES_EXPIRABLE,
    PROGRAM_STATUSES_PUBLIC,
    Program,
    ProgramStatus,
    can_transition,
)
from referrals.programs.schemas import (
    ProgramRequestBase,
    ProgramRequestCreate,
    ProgramRequestUpdate,
    ProgramSearchFilter,
)
from referrals.schemas import SearchResults
from referrals.settings import settings
from referrals.storage.db import Database, db
from referrals.storage.repository import Repository
from referrals.users.service import UserService, user_service
from referrals.utils.date_utils import end_of_day, format_date, start_of_day, utcnow

logger = get_logger(__name__)


class ProgramService:
    """Service for managing referral programs.

    Operations:
    - Create / update program configuration
    - Status transitions with link cascades
    - Completion counting against the global cap
    - Default program designation
    """

    def __init__(
        self,
        database: Database | None = None,
        link_maintenance: LinkMaintenanceService | None = None,
        countries: CountryService | None = None,
        users: UserService | None = None,
    ):
        self.db = database or db
        self.link_maintenance = link_maintenance or link_maintenance_service
        self.countries = countries or country_service
        self.users = users or user_service
        self.logger = get_logger(__name__)

    def worldwide_country_id(self, session: Session | None = None) -> int:
        """ID of the country record meaning 'no restriction'."""
        return self.countries.get_by_code_alpha2(settings.worldwide_country_code, session=session).id

    # ==================== QUERIES ====================

    def get_by_id_or_none(
        self,
        program_id: int,
        session: Session | None = None,
        for_update: bool = False,
    ) -> Program | None:
        """Get program by ID.

        Args:
            program_id: Program ID
            session: Caller's session to join
            for_update: Lock the row until the caller's transaction ends
        """
        with self.db.session(session) as s:
            return Repository(s, Program).get_by_id(program_id, for_update=for_update)

    def get_by_id(
        self,
        program_id: int,
        session: Session | None = None,
        for_update: bool = False,
    ) -> Program:
        """Get program by ID.

        Raises:
            NotFoundError: If the program does not exist
        """
        program = self.get_by_id_or_none(program_id, session=session, for_update=for_update)
        if program is None:
            raise NotFoundError(f"Program with id '{program_id}' does not exist")
        return program

    def get_by_name_or_none(self, name: str, session: Session | None = None) -> Program | None:
        """Get program by name (case-insensitive)."""
        if not name or not name.strip():
            raise ValueError("Program name is required")

        with self.db.session(session) as s:
            programs = Repository(s, Program)
            return programs.first(
                programs.query().where(func.lower(Program.name) == name.strip().lower())
            )

    def get_default_or_none(
        self,
        session: Session | None = None,
        for_update: bool = False,
    ) -> Program | None:
        """Get the default program.

        Raises:
            DataInconsistencyError: If more than one program is marked default
        """
        with self.db.session(session) as s:
            programs = Repository(s, Program)
            results = programs.all(programs.query(for_update).where(Program.is_default.is_(True)))

        if len(results) > 1:
            raise DataInconsistencyError("Multiple programs are marked as default")
        return results[0] if results else None

    def search(
        self,
        filter: ProgramSearchFilter,
        username: str | None = None,
    ) -> SearchResults[Program]:
        """Search programs visible to the caller.

        Anonymous and non-admin callers only see started Active/UnCompletable
        programs in their country or worldwide.
        """
        user = self.users.get_by_username(username) if username else None
        is_admin = bool(user and user.is_admin)

        country_ids = resolve_available_countries_for_program_search(
            worldwide_id=self.worldwide_country_id(),
            is_authenticated=user is not None,
            is_admin=is_admin,
            user_country_id=user.country_id if user else None,
            requested_country_ids=filter.country_ids,
        )

        with self.db.session() as s:
            programs = Repository(s, Program)
            stmt = programs.query()

            if country_ids is not None:
                stmt = stmt.where(
                    or_(
                        ~Program.countries.any(),
                        Program.countries.any(Country.id.in_(country_ids)),
                    )
                )

            if not is_admin:
                stmt = stmt.where(
                    Program.status.in_(list(PROGRAM_STATUSES_PUBLIC)),
                    Program.date_start <= utcnow(),
                )

            if filter.statuses:
                stmt = stmt.where(Program.status.in_(list(dict.fromkeys(filter.statuses))))

            if filter.value_contains and filter.value_contains.strip():
                pattern = f"%{filter.value_contains.strip()}%"
                stmt = stmt.where(
                    or_(Program.name.ilike(pattern), Program.description.ilike(pattern))
                )

            results = SearchResults[Program]()
            if filter.pagination_enabled:
                results.total_count = s.scalar(
                    select(func.count()).select_from(stmt.order_by(None).subquery())
                )
                stmt = stmt.offset(filter.offset).limit(filter.page_size)

            stmt = stmt.order_by(Program.is_default.desc(), Program.name, Program.id)
            results.items = programs.all(stmt)
            return results

    # ==================== COMMANDS ====================

    def create(self, request: ProgramRequestCreate, username: str) -> Program:
        """Create a new program.

        Args:
            request: Validated create request
            username: Acting administrator

        Returns:
            Created program
        """
        if self.get_by_name_or_none(request.name) is not None:
            raise ValidationError(
                ValidationReason.DUPLICATE_PROGRAM_NAME,
                f"Program with the specified name '{request.name}' already exists",
            )

        user = self.users.get_by_username(username)

        with self.db.session() as s:
            program = Program(
                status=ProgramStatus.ACTIVE if request.post_as_active else ProgramStatus.INACTIVE,
                is_default=False,
                created_by_user_id=user.id,
                modified_by_user_id=user.id,
            )
            self._apply_request(s, program, request)
            program = Repository(s, Program).create(program)

            if request.is_default:
                self._set_as_default(s, program)

            self.logger.info(
                "program_created",
                program_id=program.id,
                name=program.name,
                status=program.status.value,
                is_default=program.is_default,
                created_by=user.id,
            )
            return program

    def update(self, request: ProgramRequestUpdate, username: str) -> Program:
        """Update an editable program's configuration."""
        user = self.users.get_by_username(username)

        with self.db.session() as s:
            programs = Repository(s, Program)
            program = self.get_by_id(request.id, session=s, for_update=True)

            if program.status not in PROGRAM_STATUSES_EDITABLE:
                raise ValidationError(
                    ValidationReason.PROGRAM_NOT_EDITABLE,
                    f"Program '{program.name}' can no longer be updated "
                    f"(current status '{program.status.value}')",
                )

            existing = self.get_by_name_or_none(request.name, session=s)
            if existing is not None and existing.id != program.id:
                raise ValidationError(
                    ValidationReason.DUPLICATE_PROGRAM_NAME,
                    f"Program with the specified name '{request.name}' already exists",
                )

            self._apply_request(s, program, request)
            program.modified_by_user_id = user.id

            if request.is_default:
                self._set_as_default(s, program)
            else:
                program.is_default = False

            programs.update(program)

            self.logger.info("program_updated", program_id=program.id, modified_by=user.id)
            return program

    def update_status(self, program_id: int, status: ProgramStatus, username: str) -> Program:
        """Transition a program to a new status.

        Cascades to links: Deleted cancels them, Expired expires them (and
        their pending usages), LimitReached flags them.

        Raises:
            ValidationError: If the transition is not allowed
        """
        user = self.users.get_by_username(username)

        with self.db.session() as s:
            program = self.get_by_id(program_id, session=s, for_update=True)

            if program.status == status:
                return program

            self._ensure_transition(program, status)

            if status == ProgramStatus.ACTIVE:
                self._ensure_activatable(program)

            previous = program.status
            program.status = status
            program.modified_by_user_id = user.id

            if status == ProgramStatus.DELETED:
                program.is_default = False

            Repository(s, Program).update(program)
            self._cascade_status(s, program)

            self.logger.info(
                "program_status_updated",
                program_id=program.id,
                previous=previous.value,
                status=status.value,
                modified_by=user.id,
            )
            return program

    def set_as_default(self, program_id: int, username: str) -> Program:
        """Designate the default program, clearing any previous default.

        Raises:
            ValidationError: If the program is not available worldwide
        """
        user = self.users.get_by_username(username)

        with self.db.session() as s:
            program = self.get_by_id(program_id, session=s, for_update=True)
            self._set_as_default(s, program)
            program.modified_by_user_id = user.id
            Repository(s, Program).update(program)
            return program

    def process_completion(
        self,
        program_id: int,
        reward_amount: float | None = None,
        session: Session | None = None,
    ) -> Program:
        """Count one completion against the program.

        Locks the program row, increments the completion total and reward
        cumulative, and flips the program to LimitReached when the global cap
        is newly reached. The total never exceeds the limit.

        Args:
            program_id: Program ID
            reward_amount: Total reward paid for this completion
            session: Caller's transaction (joined so link and program
                counters commit together)
        """
        with self.db.session(session) as s:
            program = self.get_by_id(program_id, session=s, for_update=True)

            if program.completion_limit_reached:
                self.logger.warning(
                    "program_completion_limit_already_reached",
                    program_id=program.id,
                    total=program.completion_total,
                    limit=program.completion_limit,
                )
                return program

            program.completion_total = (program.completion_total or 0) + 1

            if reward_amount is not None and reward_amount > 0:
                program.zlto_reward_cumulative = (program.zlto_reward_cumulative or 0.0) + reward_amount

            flipped = False
            if program.completion_limit_reached and program.status != ProgramStatus.LIMIT_REACHED:
                if can_transition(program.status, ProgramStatus.LIMIT_REACHED):
                    program.status = ProgramStatus.LIMIT_REACHED
                    flipped = True
                else:
                    self.logger.info(
                        "program_limit_reached_status_unchanged",
                        program_id=program.id,
                        status=program.status.value,
                    )

            Repository(s, Program).update(program)

            if flipped:
                self.logger.info(
                    "program_limit_reached",
                    program_id=program.id,
                    total=program.completion_total,
                    limit=program.completion_limit,
                )
                self.link_maintenance.limit_reached_by_program_id(program.id, session=s)
            else:
                self.logger.debug(
                    "program_completion_processed",
                    program_id=program.id,
                    total=program.completion_total,
                    reward=reward_amount or 0,
                )

            return program

    def process_expiration(self) -> list[int]:
        """Expire Active/UnCompletable programs whose end date has passed.

        Returns:
            IDs of expired programs
        """
        now = utcnow()
        with self.db.session() as s:
            programs = Repository(s, Program)
            items = programs.all(
                programs.query(for_update=True).where(
                    Program.status.in_(list(PROGRAM_STATUSES_EXPIRABLE)),
                    Program.date_end.is_not(None),
                    Program.date_end <= now,
                )
            )
            if not items:
                self.logger.info("no_expirable_programs")
                return []

            for item in items:
                item.status = ProgramStatus.EXPIRED
                self.logger.info(
                    "program_expired",
                    program_id=item.id,
                    date_end=format_date(item.date_end),
                )
            programs.update_many(items)

            program_ids = [item.id for item in items]
            self.link_maintenance.expire_by_program_id(program_ids, session=s)
            return program_ids

    def process_deletion(self, retention_days: int | None = None) -> list[int]:
        """Soft-delete Expired/LimitReached programs left untouched too long.

        Args:
            retention_days: Days since last modification (defaults to settings)

        Returns:
            IDs of deleted programs
        """
        if retention_days is None:
            retention_days = settings.program_deletion_retention_days
        if retention_days < 0:
            raise ValueError("Retention must not be negative")

        cutoff = utcnow() - timedelta(days=retention_days)
        with self.db.session() as s:
            programs = Repository(s, Program)
            items = programs.all(
                programs.query(for_update=True)
                .where(
                    Program.status.in_(list(PROGRAM_STATUSES_DELETABLE)),
                    Program.date_modified <= cutoff,
                )
                .order_by(Program.date_modified)
            )
            if not items:
                self.logger.info("no_deletable_programs", retention_days=retention_days)
                return []

            for item in items:
                item.status = ProgramStatus.DELETED
                item.is_default = False
                self.logger.info("program_flagged_for_deletion", program_id=item.id)
            programs.update_many(items)

            for item in items:
                self.link_maintenance.cancel_by_program_id(item.id, session=s)
            return [item.id for item in items]

    # ==================== INTERNALS ====================

    def _apply_request(self, session: Session, program: Program, request: ProgramRequestBase) -> None:
        program.name = request.name
        program.description = request.description
        program.image_url = request.image_url
        program.completion_window_in_days = request.completion_window_in_days
        program.completion_limit_referee = request.completion_limit_referee
        program.completion_limit = request.completion_limit
        program.zlto_reward_referrer = request.zlto_reward_referrer
        program.zlto_reward_referee = request.zlto_reward_referee
        program.zlto_reward_pool = request.zlto_reward_pool
        program.proof_of_personhood_required = request.proof_of_personhood_required
        program.pathway_required = request.pathway_required
        program.multiple_links_allowed = request.multiple_links_allowed
        program.date_start = start_of_day(request.date_start)
        program.date_end = end_of_day(request.date_end) if request.date_end else None
        program.countries = self._resolve_countries(session, request.country_ids)

    def _resolve_countries(self, session: Session, country_ids: list[int] | None) -> list[Country]:
        if not country_ids:
            return []

        countries = list(session.scalars(select(Country).where(Country.id.in_(country_ids))))
        missing = set(country_ids) - {country.id for country in countries}
        if missing:
            raise NotFoundError(f"Countries with ids {sorted(missing)} do not exist")
        return countries

    def _ensure_transition(self, program: Program, status: ProgramStatus) -> None:
        if not can_transition(program.status, status):
            raise ValidationError(
                ValidationReason.INVALID_STATUS_TRANSITION,
                f"Program '{program.name}' cannot transition from "
                f"'{program.status.value}' to '{status.value}'",
            )

    def _ensure_activatable(self, program: Program) -> None:
        if program.date_end is not None and program.date_end <= utcnow():
            raise ValidationError(
                ValidationReason.PROGRAM_EXPIRED,
                f"Program '{program.name}' expired on '{format_date(program.date_end)}'",
            )
        if program.completion_limit_reached:
            raise ValidationError(
                ValidationReason.COMPLETION_LIMIT_REACHED,
                f"Program '{program.name}' has reached its completion limit",
            )

    def _cascade_status(self, session: Session, program: Program) -> None:
        if program.status == ProgramStatus.DELETED:
            self.link_maintenance.cancel_by_program_id(program.id, session=session)
        elif program.status == ProgramStatus.EXPIRED:
            self.link_maintenance.expire_by_program_id([program.id], session=session)
        elif program.status == ProgramStatus.LIMIT_REACHED:
            self.link_maintenance.limit_reached_by_program_id(program.id, session=session)

    def _set_as_default(self, session: Session, program: Program) -> Program:
        if not default_program_is_worldwide(self.worldwide_country_id(session), program.country_ids):
            raise ValidationError(
                ValidationReason.PROGRAM_NOT_WORLDWIDE,
                f"Program '{program.name}' must be available worldwide to be the default",
            )

        current = self.get_default_or_none(session=session, for_update=True)
        if current is not None and current.id == program.id:
            return program

        programs = Repository(session, Program)
        if current is not None:
            current.is_default = False
            programs.update(current)

        program.is_default = True
        programs.update(program)

        self.logger.info(
            "program_set_as_default",
            program_id=program.id,
            previous_default_id=current.id if current else None,
        )
        return program


# Singleton instance
program_service = ProgramService()
