"""
Database migration system for the riddle game.
Handles index creation on top of the SQLModel tables.
"""

from sqlmodel import SQLModel, Field, text, Session, select
from typing import Optional
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


class Migration(SQLModel, table=True):
    """Track applied migrations"""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    applied_at: datetime


MIGRATIONS = [
    (
        "001_leaderboard_indexes",
        """
        CREATE INDEX IF NOT EXISTS idx_player_points_last_played ON player(points, last_played)
        """,
    ),
    (
        "002_history_indexes",
        """
        CREATE INDEX IF NOT EXISTS idx_history_riddle ON historyentry(riddle_id);
        CREATE INDEX IF NOT EXISTS idx_history_status ON historyentry(username, status)
        """,
    ),
    (
        "003_riddle_log_index",
        """
        CREATE INDEX IF NOT EXISTS idx_riddle_created_at ON riddle(created_at)
        """,
    ),
]


def ensure_migration_table(engine):
    Migration.metadata.create_all(engine, tables=[Migration.__table__])


def has_migration_been_applied(engine, migration_name: str) -> bool:
    ensure_migration_table(engine)
    with Session(engine) as session:
        result = session.exec(
            select(Migration).where(Migration.name == migration_name)
        ).first()
        return result is not None


def apply_migration(engine, migration_name: str, migration_sql: str) -> bool:
    """Apply a migration and record it. Returns False when it was already applied."""
    if has_migration_been_applied(engine, migration_name):
        logger.info(f"Migration {migration_name} already applied, skipping")
        return False

    logger.info(f"Applying migration: {migration_name}")
    with Session(engine) as session:
        try:
            for statement in migration_sql.strip().split(';'):
                statement = statement.strip()
                if statement:
                    session.execute(text(statement))
            session.add(Migration(name=migration_name, applied_at=datetime.now(timezone.utc)))
            session.commit()
            logger.info(f"Migration {migration_name} applied successfully")
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to apply migration {migration_name}: {e}")
            raise
    return True


def run_migrations(engine) -> int:
    """Run all pending migrations, return how many were applied"""
    applied = 0
    for name, sql in MIGRATIONS:
        if apply_migration(engine, name, sql):
            applied += 1
    logger.info("All migrations completed")
    return applied
