"""
Unit tests for the link usage service.

Tests focus on:
- Claim rules and their order
- Program-level claim deduplication
- Completion rewards, pool and caps
- Completion gates and concurrent completions
- Expiry of stale claims
"""
import threading
import time
from datetime import timedelta
from unittest.mock import ANY, patch

import pytest

from referrals.blocks.schemas import BlockRequest
from referrals.exceptions import NotFoundError, ValidationError, ValidationReason
from referrals.links.models import LinkStatus, LinkUsageStatus
from referrals.links.schemas import LinkUsageSearchFilter
from referrals.links.usage_service import allocate_rewards
from referrals.programs.models import ProgramStatus
from referrals.settings import settings
from referrals.utils.date_utils import utcnow


class TestAllocateRewards:
    """Tests for allocate_rewards"""

    def test_no_pool_pays_configured_amounts(self):
        """Without a pool both sides get their configured reward"""
        assert allocate_rewards(10, 20, None) == (10, 20)

    def test_pool_covers_both(self):
        """Sufficient pool pays both in full"""
        assert allocate_rewards(10, 20, 100) == (10, 20)

    def test_referee_paid_first(self):
        """Low pool pays the referee before the referrer"""
        assert allocate_rewards(10, 10, 15) == (10, 5)

    def test_partial_referee(self):
        """Nearly empty pool pays only part of the referee reward"""
        assert allocate_rewards(10, 10, 4) == (4, None)

    def test_empty_pool(self):
        """Exhausted pool pays nothing"""
        assert allocate_rewards(10, 10, 0) == (None, None)

    def test_no_rewards_configured(self):
        """Programs without rewards pay nothing"""
        assert allocate_rewards(None, None, None) == (None, None)


class TestClaimAsReferee:
    """Tests for LinkUsageService.claim_as_referee"""

    def test_claim(self, link_usage_service, referrer, referee, make_program, make_link):
        """Valid claim creates a pending usage"""
        program = make_program()
        link = make_link(program, referrer)

        usage = link_usage_service.claim_as_referee(link.id, referee.username)

        assert usage.status == LinkUsageStatus.PENDING
        assert usage.program_id == program.id
        assert usage.link_id == link.id
        assert usage.user_id == referee.id
        assert usage.date_claimed is not None

    def test_own_link(self, link_usage_service, referrer, make_program, make_link):
        """Referrers cannot claim their own link"""
        link = make_link(make_program(), referrer)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, referrer.username)

        assert "cannot claim your own referral link" in exc_info.value.message

    def test_own_link_checked_first(self, link_usage_service, referrer, make_program, make_link):
        """Self referral is reported even when the program is closed"""
        link = make_link(make_program(status=ProgramStatus.INACTIVE), referrer)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, referrer.username)

        assert exc_info.value.reason == ValidationReason.SELF_REFERRAL

    def test_profile_incomplete(self, link_usage_service, user_service, referrer, make_program, make_link):
        """Users who have not onboarded cannot claim"""
        newcomer = user_service.create("newcomer@example.com")
        link = make_link(make_program(), referrer)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, newcomer.username)

        assert "must complete your profile" in exc_info.value.message

    def test_onboarding_window(self, link_usage_service, user_service, referrer, make_program, make_link, monkeypatch):
        """With a window configured, long-onboarded users cannot claim"""
        monkeypatch.setattr(settings, "claim_onboarding_window_minutes", 60)
        veteran = user_service.create("veteran@example.com", date_onboarded=utcnow() - timedelta(days=2))
        link = make_link(make_program(), referrer)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, veteran.username)

        assert exc_info.value.reason == ValidationReason.ONBOARDING_WINDOW_ELAPSED

    def test_pending_claim_in_program(
        self, link_usage_service, referrer, referee, other_referee, make_program, make_link
    ):
        """A pending claim blocks claiming another link of the same program"""
        program = make_program(multiple_links_allowed=True)
        first = make_link(program, referrer)
        second = make_link(program, other_referee)
        link_usage_service.claim_as_referee(first.id, referee.username)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(second.id, referee.username)

        assert "pending" in exc_info.value.message
        assert exc_info.value.reason == ValidationReason.CLAIM_PENDING

    def test_completed_claim_in_program(
        self, link_usage_service, referrer, referee, other_referee, make_program, make_link, make_usage
    ):
        """A completed claim blocks claiming the program again"""
        program = make_program()
        first = make_link(program, referrer)
        second = make_link(program, other_referee)
        make_usage(first, referee, status=LinkUsageStatus.COMPLETED)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(second.id, referee.username)

        assert "already completed" in exc_info.value.message

    def test_program_not_active(self, link_usage_service, referrer, referee, make_program, make_link):
        """Claim on an inactive program reports the program status"""
        link = make_link(make_program(status=ProgramStatus.INACTIVE), referrer)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, referee.username)

        assert "status is 'Inactive'" in exc_info.value.message

    def test_program_completion_limit(self, link_usage_service, referrer, referee, make_program, make_link):
        """Claim on an exhausted program fails"""
        link = make_link(make_program(completion_limit=10, completion_total=10), referrer)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, referee.username)

        assert "completion limit" in exc_info.value.message

    def test_link_not_active(self, link_usage_service, referrer, referee, make_program, make_link):
        """Claim on a cancelled link reports the link status"""
        link = make_link(make_program(), referrer, status=LinkStatus.CANCELLED)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, referee.username)

        assert "status is 'Cancelled'" in exc_info.value.message

    def test_link_completion_limit(self, link_usage_service, referrer, referee, make_program, make_link):
        """Claim on a link at its per-link cap fails"""
        program = make_program(completion_limit_referee=5)
        link = make_link(program, referrer, completion_total=5)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, referee.username)

        assert "completion limit" in exc_info.value.message

    def test_country_not_eligible(self, link_usage_service, referrer, other_referee, make_program, make_link, countries):
        """Referees outside the program countries cannot claim"""
        link = make_link(make_program(countries=[countries["ZA"]]), referrer)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, other_referee.username)

        assert "not available in your country" in exc_info.value.message

    def test_blocked_referrer(
        self, link_usage_service, block_service, block_reason_service, admin, referrer, referee,
        make_program, make_link,
    ):
        """Links of a blocked referrer cannot be claimed"""
        link = make_link(make_program(), referrer)
        reason = block_reason_service.get_by_name("Other")
        block_service.block(BlockRequest(user_id=referrer.id, reason_id=reason.id), admin.username)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.claim_as_referee(link.id, referee.username)

        assert exc_info.value.reason == ValidationReason.USER_BLOCKED

    def test_unknown_link(self, link_usage_service, referee):
        """Unknown link id raises NotFoundError"""
        with pytest.raises(NotFoundError):
            link_usage_service.claim_as_referee(404, referee.username)


class TestProcessCompletion:
    """Tests for LinkUsageService.process_completion"""

    def test_completion_pays_and_counts(
        self, link_usage_service, link_service, program_service, referrer, referee, make_program, make_link
    ):
        """Completion pays both sides and advances link and program counters"""
        program = make_program(
            zlto_reward_referee=10, zlto_reward_referrer=20, zlto_reward_pool=1000, completion_limit=50
        )
        link = make_link(program, referrer)
        usage = link_usage_service.claim_as_referee(link.id, referee.username)

        result = link_usage_service.process_completion(usage.id)

        assert result.status == LinkUsageStatus.COMPLETED
        assert result.date_completed is not None
        assert result.zlto_reward_referee == 10
        assert result.zlto_reward_referrer == 20

        link = link_service.get_by_id(link.id)
        assert link.completion_total == 1
        assert link.zlto_reward_cumulative == 20

        program = program_service.get_by_id(program.id)
        assert program.completion_total == 1
        assert program.zlto_reward_cumulative == 30

    def test_low_pool_pays_referee_first(
        self, link_usage_service, referrer, referee, make_program, make_link, make_usage
    ):
        """Remaining pool goes to the referee before the referrer"""
        program = make_program(
            zlto_reward_referee=10,
            zlto_reward_referrer=10,
            zlto_reward_pool=30,
            zlto_reward_cumulative=15,
            completion_limit=10,
        )
        usage = make_usage(make_link(program, referrer), referee)

        result = link_usage_service.process_completion(usage.id)

        assert result.zlto_reward_referee == 10
        assert result.zlto_reward_referrer == 5

    def test_last_completion_reaches_limit(
        self, link_usage_service, program_service, link_service, referrer, referee, make_program,
        make_link, link_maintenance,
    ):
        """Completing the last allowed referral flips program and links to LimitReached"""
        program = make_program(completion_limit=1, completion_total=0)
        link = make_link(program, referrer)
        usage = link_usage_service.claim_as_referee(link.id, referee.username)

        link_usage_service.process_completion(usage.id)

        assert program_service.get_by_id(program.id).status == ProgramStatus.LIMIT_REACHED
        assert link_service.get_by_id(link.id).status == LinkStatus.LIMIT_REACHED
        link_maintenance.limit_reached_by_program_id.assert_called_once_with(program.id, session=ANY)

    def test_claims_beyond_cap_complete_without_reward(
        self, link_usage_service, program_service, referrer, referee, other_referee, make_program, make_link,
    ):
        """Claims made before the cap was hit complete without reward or overshoot"""
        program = make_program(zlto_reward_referee=5, completion_limit=1, multiple_links_allowed=True)
        link = make_link(program, referrer)
        first = link_usage_service.claim_as_referee(link.id, referee.username)
        second = link_usage_service.claim_as_referee(link.id, other_referee.username)

        link_usage_service.process_completion(first.id)
        late = link_usage_service.process_completion(second.id)

        assert late.status == LinkUsageStatus.COMPLETED
        assert late.zlto_reward_referee is None
        assert program_service.get_by_id(program.id).completion_total == 1

    def test_link_cap_never_exceeded(
        self, link_usage_service, link_service, referrer, referee, other_referee, make_program, make_link,
    ):
        """Per-link counter stays at its cap when more claims complete than it allows"""
        program = make_program(zlto_reward_referrer=10, completion_limit_referee=2)
        link = make_link(program, referrer, completion_total=1, zlto_reward_cumulative=10.0)
        first = link_usage_service.claim_as_referee(link.id, referee.username)
        second = link_usage_service.claim_as_referee(link.id, other_referee.username)

        link_usage_service.process_completion(first.id)
        late = link_usage_service.process_completion(second.id)

        assert late.zlto_reward_referrer is None
        result = link_service.get_by_id(link.id)
        assert result.completion_total == 2
        assert result.zlto_reward_cumulative == 20.0
        assert result.status == LinkStatus.LIMIT_REACHED

    def test_completed_usage_rejected(
        self, link_usage_service, referrer, referee, make_program, make_link, make_usage
    ):
        """Only pending usages can be completed"""
        usage = make_usage(make_link(make_program(), referrer), referee, status=LinkUsageStatus.COMPLETED)

        with pytest.raises(ValidationError) as exc_info:
            link_usage_service.process_completion(usage.id)

        assert exc_info.value.reason == ValidationReason.USAGE_NOT_PENDING
        assert "'Completed'" in exc_info.value.message

    def test_deleted_program_expires_usage(
        self, link_usage_service, program_service, referrer, referee, make_program, make_link, make_usage
    ):
        """A pending claim on a deleted program with a cancelled link expires unpaid"""
        program = make_program(
            status=ProgramStatus.DELETED, zlto_reward_referee=10, zlto_reward_referrer=5
        )
        usage = make_usage(make_link(program, referrer, status=LinkStatus.CANCELLED), referee)

        result = link_usage_service.process_completion(usage.id)

        assert result.status == LinkUsageStatus.EXPIRED
        assert result.date_expired is not None
        assert result.date_completed is None
        assert result.zlto_reward_referee is None
        assert result.zlto_reward_referrer is None
        assert program_service.get_by_id(program.id).completion_total == 0

    def test_inactive_program_expires_usage(
        self, link_usage_service, referrer, referee, make_program, make_link, make_usage
    ):
        """Paused programs do not accept completions"""
        program = make_program(status=ProgramStatus.INACTIVE, zlto_reward_referee=10)
        usage = make_usage(make_link(program, referrer), referee)

        result = link_usage_service.process_completion(usage.id)

        assert result.status == LinkUsageStatus.EXPIRED
        assert result.zlto_reward_referee is None

    def test_cancelled_link_expires_usage(
        self, link_usage_service, link_service, referrer, referee, make_program, make_link, make_usage
    ):
        """Claims through a cancelled link expire even on an active program"""
        program = make_program(zlto_reward_referrer=10)
        link = make_link(program, referrer, status=LinkStatus.CANCELLED)
        usage = make_usage(link, referee)

        result = link_usage_service.process_completion(usage.id)

        assert result.status == LinkUsageStatus.EXPIRED
        assert link_service.get_by_id(link.id).completion_total == 0

    def test_elapsed_window_expires_usage(
        self, link_usage_service, referrer, referee, make_program, make_link, make_usage
    ):
        """Completion after the window expires the claim even before the sweep runs"""
        program = make_program(completion_window_in_days=1, zlto_reward_referee=10)
        usage = make_usage(
            make_link(program, referrer), referee, date_claimed=utcnow() - timedelta(days=2)
        )

        result = link_usage_service.process_completion(usage.id)

        assert result.status == LinkUsageStatus.EXPIRED
        assert result.zlto_reward_referee is None

    def test_within_window_completes(
        self, link_usage_service, referrer, referee, make_program, make_link, make_usage
    ):
        """Completion inside the window pays out"""
        program = make_program(completion_window_in_days=3, zlto_reward_referee=10)
        usage = make_usage(
            make_link(program, referrer), referee, date_claimed=utcnow() - timedelta(days=2)
        )

        result = link_usage_service.process_completion(usage.id)

        assert result.status == LinkUsageStatus.COMPLETED
        assert result.zlto_reward_referee == 10


class TestConcurrentCompletion:
    """Completions racing on one program"""

    def test_no_overshoot_under_concurrent_completions(
        self, link_usage_service, program_service, referrer, referee, other_referee,
        make_program, make_link, make_usage,
    ):
        """Two completions against the last slot pay out once and count once"""
        program = make_program(completion_limit=1, zlto_reward_referee=10, zlto_reward_referrer=10)
        link = make_link(program, referrer)
        usages = [make_usage(link, referee), make_usage(link, other_referee)]

        read_program = program_service.get_by_id

        def slow_read(*args, **kwargs):
            # Widen the gap between reading the counters and writing them
            result = read_program(*args, **kwargs)
            time.sleep(0.2)
            return result

        start = threading.Barrier(len(usages))
        errors = []

        def complete(usage_id):
            try:
                start.wait(timeout=10)
                link_usage_service.process_completion(usage_id)
            except Exception as e:
                errors.append(e)

        with patch.object(program_service, "get_by_id", side_effect=slow_read):
            threads = [threading.Thread(target=complete, args=(usage.id,)) for usage in usages]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=60)

        assert errors == []
        results = [link_usage_service.get_usage_by_id(usage.id) for usage in usages]
        rewarded = [usage for usage in results if usage.zlto_reward_referee]
        program = program_service.get_by_id(program.id)

        assert all(usage.status == LinkUsageStatus.COMPLETED for usage in results)
        assert len(rewarded) <= program.completion_total <= program.completion_limit
        assert len(rewarded) == 1
        assert program.zlto_reward_cumulative == 20


class TestQueries:
    """Tests for usage lookups, search and expiry"""

    def test_get_by_program_as_referee(
        self, link_usage_service, referrer, referee, make_program, make_link, make_usage
    ):
        """Referee can look up their own claim for a program"""
        program = make_program()
        usage = make_usage(make_link(program, referrer), referee)

        assert link_usage_service.get_by_program_id_as_referee(program.id, referee.username).id == usage.id

    def test_get_by_program_as_referee_missing(self, link_usage_service, referee, make_program):
        """Missing claim raises NotFoundError"""
        with pytest.raises(NotFoundError):
            link_usage_service.get_by_program_id_as_referee(make_program().id, referee.username)

    def test_search_by_status(
        self, link_usage_service, referrer, referee, other_referee, make_program, make_link, make_usage
    ):
        """Search filters by status"""
        link = make_link(make_program(), referrer)
        pending = make_usage(link, referee)
        make_usage(link, other_referee, status=LinkUsageStatus.COMPLETED)

        results = link_usage_service.search(
            LinkUsageSearchFilter(link_id=link.id, statuses=[LinkUsageStatus.PENDING])
        )

        assert [usage.id for usage in results.items] == [pending.id]

    def test_process_expiration(
        self, link_usage_service, referrer, referee, other_referee, make_program, make_link, make_usage
    ):
        """Pending claims past the completion window expire"""
        program = make_program(completion_window_in_days=1)
        link = make_link(program, referrer)
        stale = make_usage(link, referee, date_claimed=utcnow() - timedelta(days=2))
        fresh = make_usage(link, other_referee, date_claimed=utcnow() - timedelta(hours=2))

        assert link_usage_service.process_expiration() == 1
        assert link_usage_service.get_usage_by_id(stale.id).status == LinkUsageStatus.EXPIRED
        assert link_usage_service.get_usage_by_id(fresh.id).status == LinkUsageStatus.PENDING
