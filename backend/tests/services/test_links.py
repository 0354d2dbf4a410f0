"""
Unit tests for the link service.

Tests focus on:
- Creation rules and their order
- Cancellation idempotency and ownership
- Per-link completion counters
"""
from datetime import timedelta
from unittest.mock import patch

import pytest

from referrals.blocks.schemas import BlockRequest
from referrals.exceptions import NotFoundError, SecurityError, ValidationError, ValidationReason
from referrals.links.models import LinkStatus
from referrals.links.schemas import LinkRequestCreate, LinkRequestUpdate, LinkSearchFilter
from referrals.programs.models import ProgramStatus
from referrals.storage.repository import Repository
from referrals.utils.date_utils import utcnow


def _create(link_service, program, user, name="My New Link"):
    return link_service.create(LinkRequestCreate(program_id=program.id, name=name), user.username)


class TestCreate:
    """Tests for LinkService.create"""

    def test_create_link(self, link_service, referrer, make_program, countries, shortener):
        """Open program in the user's country yields an active link with a short URL"""
        program = make_program(
            date_start=utcnow() - timedelta(days=7),
            countries=[countries["ZA"], countries["WW"]],
            multiple_links_allowed=False,
        )

        link = _create(link_service, program, referrer)

        assert link.status == LinkStatus.ACTIVE
        assert link.short_url == "https://sho.rt/abc123"
        assert link.url.endswith(f"/referrals/claim/{program.id}?linkId={link.id}")
        assert link.user_id == referrer.id
        shortener.create_short_link.assert_called_once_with(link.url, title="My New Link")

    def test_program_not_started(self, link_service, referrer, make_program):
        """Program starting in the future rejects link creation"""
        program = make_program(date_start=utcnow() + timedelta(days=7))

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer)

        assert "not active or has not started" in exc_info.value.message
        assert exc_info.value.reason == ValidationReason.PROGRAM_NOT_STARTED

    def test_program_not_active(self, link_service, referrer, make_program):
        """Inactive program rejects link creation"""
        program = make_program(status=ProgramStatus.INACTIVE)

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer)

        assert "not active" in exc_info.value.message
        assert exc_info.value.reason == ValidationReason.PROGRAM_NOT_ACTIVE

    def test_program_ended(self, link_service, referrer, make_program):
        """Program past its end date rejects link creation"""
        program = make_program(date_end=utcnow() - timedelta(days=1))

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer)

        assert "expired" in exc_info.value.message

    def test_completion_limit_reached(self, link_service, referrer, make_program):
        """Program without completion balance rejects link creation"""
        program = make_program(completion_limit=10, completion_total=10)

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer)

        assert "completion limit" in exc_info.value.message

    def test_country_not_eligible(self, link_service, referrer, make_program, countries):
        """Program limited to another country rejects link creation"""
        program = make_program(countries=[countries["KE"]])

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer)

        assert "not available in your country" in exc_info.value.message

    def test_blocked_user(self, link_service, block_service, admin, referrer, make_program, block_reason_service):
        """Blocked users cannot create links"""
        program = make_program()
        reason = block_reason_service.get_by_name("Other")
        block_service.block(BlockRequest(user_id=referrer.id, reason_id=reason.id), admin.username)

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer)

        assert exc_info.value.reason == ValidationReason.USER_BLOCKED

    def test_multiple_links_not_allowed(self, link_service, referrer, make_program):
        """Second active link is rejected when the program allows only one"""
        program = make_program(multiple_links_allowed=False)
        _create(link_service, program, referrer, name="First")

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer, name="Second")

        assert "Multiple active referral links are not allowed" in exc_info.value.message

    def test_cancelled_link_does_not_count(self, link_service, referrer, make_program, make_link):
        """A cancelled link does not block a new one"""
        program = make_program(multiple_links_allowed=False)
        make_link(program, referrer, name="Old", status=LinkStatus.CANCELLED)

        link = _create(link_service, program, referrer, name="New")

        assert link.status == LinkStatus.ACTIVE

    def test_duplicate_name(self, link_service, referrer, make_program, make_link):
        """Link names are unique per user and program, regardless of case"""
        program = make_program(multiple_links_allowed=True)
        make_link(program, referrer, name="Friends")

        with pytest.raises(ValidationError) as exc_info:
            _create(link_service, program, referrer, name="friends")

        assert "already exists" in exc_info.value.message

    def test_same_name_other_user(self, link_service, referrer, referee, make_program, make_link):
        """Another user may reuse a link name"""
        program = make_program()
        make_link(program, referee, name="Friends")

        assert _create(link_service, program, referrer, name="Friends").name == "Friends"

    def test_shortener_failure_persists_nothing(self, link_service, referrer, make_program, shortener):
        """Short link failure aborts the creation"""
        program = make_program()
        shortener.create_short_link.side_effect = RuntimeError("provider down")

        with pytest.raises(RuntimeError):
            _create(link_service, program, referrer)

        assert link_service.search(LinkSearchFilter(program_id=program.id)).items == []


class TestUpdate:
    """Tests for LinkService.update"""

    def test_rename(self, link_service, referrer, make_program, make_link):
        """Owner can rename an active link"""
        link = make_link(make_program(), referrer, name="Old")

        result = link_service.update(
            LinkRequestUpdate(id=link.id, name="New", description="For my class"), referrer.username
        )

        assert result.name == "New"
        assert result.description == "For my class"

    def test_inactive_link(self, link_service, referrer, make_program, make_link):
        """Links that are no longer active cannot be updated"""
        link = make_link(make_program(), referrer, status=LinkStatus.EXPIRED)

        with pytest.raises(ValidationError) as exc_info:
            link_service.update(LinkRequestUpdate(id=link.id, name="New"), referrer.username)

        assert exc_info.value.reason == ValidationReason.LINK_NOT_UPDATABLE

    def test_url_is_immutable(self, link_service, referrer, make_program, make_link):
        """Generated URLs cannot be replaced"""
        link = make_link(make_program(), referrer, url="https://example.com/a")

        with pytest.raises(ValueError):
            link.url = "https://example.com/b"


class TestCancel:
    """Tests for LinkService.cancel"""

    def test_owner_cancels(self, link_service, referrer, make_program, make_link):
        """Owner can cancel an active link"""
        link = make_link(make_program(), referrer)

        assert link_service.cancel(link.id, referrer.username).status == LinkStatus.CANCELLED

    def test_cancel_twice_writes_nothing(self, link_service, referrer, make_program, make_link):
        """Cancelling a cancelled link returns it unchanged"""
        link = make_link(make_program(), referrer, status=LinkStatus.CANCELLED)

        with patch.object(Repository, "update") as mock_update:
            result = link_service.cancel(link.id, referrer.username)

        assert result.status == LinkStatus.CANCELLED
        mock_update.assert_not_called()

    def test_other_user_rejected(self, link_service, referrer, referee, make_program, make_link):
        """Only the owner may cancel a link"""
        link = make_link(make_program(), referrer)

        with pytest.raises(SecurityError):
            link_service.cancel(link.id, referee.username)

    def test_admin_may_cancel(self, link_service, admin, referrer, make_program, make_link):
        """Admins may cancel any link"""
        link = make_link(make_program(), referrer)

        assert link_service.cancel(link.id, admin.username).status == LinkStatus.CANCELLED

    def test_limit_reached_link(self, link_service, referrer, make_program, make_link):
        """Links in another final state cannot be cancelled"""
        link = make_link(make_program(), referrer, status=LinkStatus.LIMIT_REACHED)

        with pytest.raises(ValidationError) as exc_info:
            link_service.cancel(link.id, referrer.username)

        assert exc_info.value.reason == ValidationReason.LINK_NOT_CANCELLABLE
        assert "'LimitReached'" in exc_info.value.message


class TestQueries:
    """Tests for link lookups and search"""

    def test_get_by_id_missing(self, link_service):
        """Unknown link id raises NotFoundError"""
        with pytest.raises(NotFoundError):
            link_service.get_by_id(404)

    def test_get_by_id_checks_owner(self, link_service, referrer, referee, make_program, make_link):
        """Lookup on behalf of a user enforces ownership"""
        link = make_link(make_program(), referrer)

        assert link_service.get_by_id(link.id, username=referrer.username).id == link.id
        with pytest.raises(SecurityError):
            link_service.get_by_id(link.id, username=referee.username)

    def test_search_by_user_and_status(self, link_service, referrer, referee, make_program, make_link):
        """Search filters by referrer and status"""
        program = make_program(multiple_links_allowed=True)
        active = make_link(program, referrer)
        make_link(program, referrer, status=LinkStatus.CANCELLED)
        make_link(program, referee)

        results = link_service.search(
            LinkSearchFilter(user_id=referrer.id, statuses=[LinkStatus.ACTIVE], page_number=1, page_size=10)
        )

        assert results.total_count == 1
        assert [link.id for link in results.items] == [active.id]


class TestProcessCompletion:
    """Tests for LinkService.process_completion"""

    def test_counts_and_flips_at_cap(self, link_service, program_service, database, referrer, make_program, make_link):
        """Reaching the per-link cap flips the link to LimitReached"""
        program = make_program(completion_limit_referee=2)
        link = make_link(program, referrer, completion_total=1, zlto_reward_cumulative=10.0)

        with database.session() as session:
            locked = program_service.get_by_id(program.id, session=session, for_update=True)
            result = link_service.process_completion(locked, link.id, 10.0, session=session)

        assert result.completion_total == 2
        assert result.zlto_reward_cumulative == 20.0
        assert result.status == LinkStatus.LIMIT_REACHED

    def test_never_exceeds_cap(self, link_service, program_service, database, referrer, make_program, make_link):
        """Counter stays at the per-link cap"""
        program = make_program(completion_limit_referee=2)
        link = make_link(program, referrer, completion_total=2, status=LinkStatus.LIMIT_REACHED)

        with database.session() as session:
            locked = program_service.get_by_id(program.id, session=session, for_update=True)
            result = link_service.process_completion(locked, link.id, 10.0, session=session)

        assert result.completion_total == 2
        assert result.zlto_reward_cumulative == 0.0

    def test_program_limit_reached_flips_link(
        self, link_service, program_service, database, referrer, make_program, make_link
    ):
        """Link follows a program that has reached its limit"""
        program = make_program(status=ProgramStatus.LIMIT_REACHED)
        link = make_link(program, referrer)

        with database.session() as session:
            locked = program_service.get_by_id(program.id, session=session, for_update=True)
            result = link_service.process_completion(locked, link.id, None, session=session)

        assert result.completion_total == 1
        assert result.status == LinkStatus.LIMIT_REACHED
