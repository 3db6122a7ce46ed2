from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./drop_one.db"
    log_level: str = "INFO"

    # Game defaults
    default_initial_lives: int = 5
    finals_threshold: int = 4
    timeout_penalty_lives: int = 1

    # Phase durations (seconds)
    waiting_seconds: int = 3
    select_two_seconds: int = 10
    exclude_one_seconds: int = 10
    revealing_seconds: int = 5

    # Inactivity / roster
    inactivity_timeout_seconds: int = 180
    roster_lock_seconds: int = 60

    # Bearer token for the external scheduler, disabled when unset
    scheduler_token: Optional[str] = None

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()

# SQLite needs check_same_thread=False because FastAPI runs sync endpoints in a threadpool
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency: yields a database session.

    The session is always closed once the request is done.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator: one call, one atomic unit of work.

    Usage:
        @transactional
        def some_business_logic(db: Session, ...):
            session = with_session_lock(session_id, db).first()
            session.status = SessionStatus.IN_PROGRESS
            # no manual commit, the decorator handles it

    On success:
        - commit
        - events queued with services.event_service.record_event are handed
          to subscribers, only after the commit (write-then-notify)

    On failure:
        - rollback, queued events are discarded
        - IntegrityError   -> ConcurrencyConflict (safe to retry)
        - OperationalError -> StoreUnavailable
        - anything else is re-raised unchanged

    Notes:
        - the first argument (or the `db` kwarg) must be the Session
        - do not commit inside the decorated function
        - do not nest decorated functions, the inner commit would end the
          outer transaction early
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # local imports: core/services import models, which imports this module
        from core.exceptions import ConcurrencyConflict, StoreUnavailable, DropOneException
        from services.event_service import dispatch_pending_events, discard_pending_events

        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
        except DropOneException:
            # business rule rejections are expected, no stack trace
            db.rollback()
            discard_pending_events(db)
            raise
        except IntegrityError as e:
            logger.warning(f"Integrity conflict in {func.__name__}: {e}")
            db.rollback()
            discard_pending_events(db)
            raise ConcurrencyConflict(f"Conflicting concurrent update in {func.__name__}") from e
        except OperationalError as e:
            logger.error(f"Store failure in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            discard_pending_events(db)
            raise StoreUnavailable(f"Store unavailable during {func.__name__}") from e
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            discard_pending_events(db)
            raise

        dispatch_pending_events(db)
        return result

    return wrapper
