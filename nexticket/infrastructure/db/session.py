import logging
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from nexticket import config

logger = logging.getLogger(__name__)


def build_engine(url: str = config.DATABASE_URL) -> Engine:
    """Engine for ``url``; pool options only apply to server databases."""
    options = {"echo": config.DB_ECHO, "pool_pre_ping": True}
    if make_url(url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = config.DB_POOL_SIZE
    return create_engine(url, **options)


engine: Engine = build_engine()

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def get_db_session():
    """Unit of work for scripts: commit on success, roll back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def wait_for_database(
    bind: Engine = engine,
    attempts: int = config.DB_CONNECT_MAX_RETRIES,
    delay_seconds: float = config.DB_CONNECT_RETRY_DELAY,
) -> None:
    """Block until ``SELECT 1`` succeeds; re-raise after the last attempt."""
    for attempt in range(1, attempts + 1):
        try:
            with bind.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError:
            if attempt == attempts:
                logger.exception(
                    "Database unreachable after %s attempts. url=%s",
                    attempts,
                    bind.url.render_as_string(hide_password=True),
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s), next try in %.1fs",
                attempt,
                attempts,
                delay_seconds,
            )
            time.sleep(delay_seconds)
        else:
            logger.info("Database reachable after %s attempt(s).", attempt)
            return
