"""Alembic environment bound to the referral engine settings and metadata."""

from alembic import context
from sqlalchemy import engine_from_config, pool

from referrals.settings import settings
from referrals.storage.models import Base

# Register every mapped class on the shared metadata
import referrals.blocks.models  # noqa: E402,F401
import referrals.links.models  # noqa: E402,F401
import referrals.lookups.models  # noqa: E402,F401
import referrals.programs.models  # noqa: E402,F401
import referrals.users.models  # noqa: E402,F401

config = context.config
config.set_main_option("sqlalchemy.url", settings.database_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=settings.database_url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=settings.database_url.startswith("sqlite"),
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
