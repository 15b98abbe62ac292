"""
Migration Runner - Runs Alembic migrations at application startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP; otherwise run `alembic upgrade head`.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from launch_studio.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def get_sync_database_url() -> str:
    """Get synchronous database URL for migrations.

    Alembic's command API uses synchronous connections, so asyncpg URLs
    are converted to psycopg2 URLs.
    """
    return settings.database_url.replace("asyncpg", "psycopg2")


def _get_current_revision(engine: Engine) -> str | None:
    """Get the current database revision."""
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    """Get the head revision from migration scripts."""
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Only runs migrations if there are pending ones.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        alembic_cfg = Config(str(ALEMBIC_INI_PATH))
        sync_url = get_sync_database_url()
        alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))

        engine = create_engine(sync_url)
        try:
            current = _get_current_revision(engine)
            head = _get_head_revision(alembic_cfg)

            if current == head:
                logger.info("database_schema_up_to_date", revision=current)
                return

            logger.info("running_migrations", from_revision=current, to_revision=head)
            command.upgrade(alembic_cfg, "head")

            logger.info("migrations_complete", revision=_get_current_revision(engine))
        finally:
            engine.dispose()

    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
