"""
Pytest configuration and shared fixtures for the referral engine tests.

Every test gets its own SQLite database with seeded countries and block
reasons, and services wired to that database.
"""
import itertools
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from referrals.analytics.service import AnalyticsService
from referrals.blocks.service import BlockService
from referrals.links.maintenance import LinkMaintenanceService
from referrals.links.models import Link, LinkStatus, LinkUsage, LinkUsageStatus
from referrals.links.service import LinkService
from referrals.links.shortener import ShortLinkClient
from referrals.links.usage_service import LinkUsageService
from referrals.lookups.service import BlockReasonService, CountryService
from referrals.programs.models import Program, ProgramStatus
from referrals.programs.service import ProgramService
from referrals.storage.db import Database
from referrals.users.service import UserService
from referrals.utils.date_utils import utcnow

_names = itertools.count(1)


@pytest.fixture
def database(tmp_path):
    """Fresh SQLite database per test"""
    database = Database(f"sqlite:///{tmp_path / 'referrals.db'}")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def country_service(database):
    service = CountryService(database)
    service.seed()
    return service


@pytest.fixture
def block_reason_service(database):
    service = BlockReasonService(database)
    service.seed()
    return service


@pytest.fixture
def countries(country_service):
    """Seeded countries keyed by alpha-2 code"""
    return {country.code_alpha2: country for country in country_service.list_all()}


@pytest.fixture
def user_service(database):
    return UserService(database)


@pytest.fixture
def admin(user_service, countries):
    return user_service.create(
        "admin@example.com",
        display_name="Admin",
        country_id=countries["ZA"].id,
        date_onboarded=utcnow() - timedelta(days=30),
        is_admin=True,
    )


@pytest.fixture
def referrer(user_service, countries):
    return user_service.create(
        "thandi@example.com",
        display_name="Thandi Nkosi",
        country_id=countries["ZA"].id,
        date_onboarded=utcnow() - timedelta(days=30),
    )


@pytest.fixture
def referee(user_service, countries):
    return user_service.create(
        "sipho@example.com",
        display_name="Sipho Dlamini",
        country_id=countries["ZA"].id,
        date_onboarded=utcnow() - timedelta(minutes=5),
    )


@pytest.fixture
def other_referee(user_service, countries):
    return user_service.create(
        "amara@example.com",
        display_name="Amara Obi",
        country_id=countries["NG"].id,
        date_onboarded=utcnow() - timedelta(minutes=5),
    )


@pytest.fixture
def link_maintenance(database):
    """Real maintenance service wrapped so cascade calls can be asserted"""
    return MagicMock(wraps=LinkMaintenanceService(database))


@pytest.fixture
def shortener():
    """Short link client that never leaves the process"""
    client = MagicMock(spec=ShortLinkClient)
    client.create_short_link.side_effect = lambda url, title=None: "https://sho.rt/abc123"
    return client


@pytest.fixture
def program_service(database, link_maintenance, country_service, user_service):
    return ProgramService(database, link_maintenance, country_service, user_service)


@pytest.fixture
def block_service(database, link_maintenance, user_service, block_reason_service):
    return BlockService(database, link_maintenance, user_service, block_reason_service)


@pytest.fixture
def link_service(database, program_service, user_service, block_service, shortener):
    return LinkService(database, program_service, user_service, block_service, shortener)


@pytest.fixture
def link_usage_service(database, link_service, program_service, user_service, block_service):
    return LinkUsageService(database, link_service, program_service, user_service, block_service)


@pytest.fixture
def analytics_service(database, user_service):
    return AnalyticsService(database, user_service)


@pytest.fixture
def make_program(database, admin):
    """Insert a program directly, bypassing request validation"""

    def _make(countries=(), **fields) -> Program:
        values = {
            "name": f"Program {next(_names)}",
            "status": ProgramStatus.ACTIVE,
            "date_start": utcnow() - timedelta(days=7),
            "created_by_user_id": admin.id,
            "modified_by_user_id": admin.id,
        }
        values.update(fields)
        with database.session() as session:
            program = Program(**values)
            program.countries = [session.merge(country) for country in countries]
            session.add(program)
            session.flush()
            return program

    return _make


@pytest.fixture
def make_link(database):
    """Insert a link directly in any state"""

    def _make(program: Program, user, **fields) -> Link:
        values = {
            "name": f"Link {next(_names)}",
            "program_id": program.id,
            "user_id": user.id,
            "status": LinkStatus.ACTIVE,
            "completion_total": 0,
            "zlto_reward_cumulative": 0.0,
        }
        values.update(fields)
        with database.session() as session:
            link = Link(**values)
            session.add(link)
            session.flush()
            return link

    return _make


@pytest.fixture
def make_usage(database):
    """Insert a usage directly in any state"""

    def _make(link: Link, user, **fields) -> LinkUsage:
        values = {
            "program_id": link.program_id,
            "link_id": link.id,
            "user_id": user.id,
            "status": LinkUsageStatus.PENDING,
            "date_claimed": utcnow(),
        }
        values.update(fields)
        with database.session() as session:
            usage = LinkUsage(**values)
            session.add(usage)
            session.flush()
            return usage

    return _make
