"""
Migration Runner - Applies pending Alembic migrations at application startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP; the database status endpoint uses
check_migrations_status() to report schema drift.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from openstream.config import settings
from openstream.observability.logging import get_logger

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Schema revision state."""

    current_revision: str | None
    head_revision: str | None
    error: str | None = None

    @property
    def pending(self) -> bool:
        """Whether the schema lags behind the newest migration."""
        return self.error is None and self.current_revision != self.head_revision


def _get_sync_database_url() -> str:
    """Alembic's command API is synchronous; swap asyncpg for psycopg2."""
    return settings.database_url.replace("asyncpg", "psycopg2")


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", _get_sync_database_url().replace("%", "%%"))
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Only upgrades when the database is behind head.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        alembic_cfg = _alembic_config()
        engine = create_engine(_get_sync_database_url())

        try:
            current = _get_current_revision(engine)
            head = _get_head_revision(alembic_cfg)

            if current == head:
                logger.info("schema_up_to_date", revision=current)
                return

            logger.info("migrations_starting", from_revision=current, to_revision=head)
            command.upgrade(alembic_cfg, "head")

            logger.info("migrations_complete", revision=_get_current_revision(engine))
        finally:
            engine.dispose()

    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e


def check_migrations_status() -> MigrationStatus:
    """Check migration status without applying anything."""
    if not ALEMBIC_INI_PATH.exists():
        return MigrationStatus(None, None, error="Alembic config not found")

    try:
        alembic_cfg = _alembic_config()
        engine = create_engine(_get_sync_database_url())
        try:
            return MigrationStatus(
                current_revision=_get_current_revision(engine),
                head_revision=_get_head_revision(alembic_cfg),
            )
        finally:
            engine.dispose()

    except Exception as e:
        return MigrationStatus(None, None, error=str(e))
