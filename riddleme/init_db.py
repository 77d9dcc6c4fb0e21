import os

from sqlmodel import SQLModel

from . import models  # noqa: F401  registers tables on the metadata
from .crud import make_engine
from .logging_utils import get_logger
from .migrations import run_migrations

logger = get_logger("riddleme.init_db")


def init_db(path: str = ""):
    path = path or os.getenv("DATABASE_URL", "sqlite:///./riddles.db")
    engine = make_engine(path)
    SQLModel.metadata.create_all(engine)
    # indexes are an optimisation; a failed migration must not block startup
    try:
        run_migrations(engine)
    except Exception as e:
        logger.warning("migrations_failed", extra={"error": str(e)})
    logger.info("db_initialized", extra={"path": path})
    return engine


if __name__ == '__main__':
    init_db()
