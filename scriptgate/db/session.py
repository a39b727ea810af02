import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from scriptgate.core.errors import StoreUnavailable

logger = logging.getLogger("scriptgate.db")


def _normalize_dsn(url: str) -> str:
    url = url.strip()
    # Railway/Heroku possono fornire postgres:// senza driver
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def build_session_factory(database_url: str, connect_timeout: int = 5) -> sessionmaker:
    """Crea engine + factory di sessioni (una volta sola, in create_app)."""
    if not database_url:
        raise RuntimeError("DATABASE_URL mancante")

    url = _normalize_dsn(database_url)
    kwargs = {"pool_pre_ping": True, "future": True}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # stesso DB in memoria per tutte le connessioni (test)
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["connect_args"] = {"connect_timeout": connect_timeout}

    engine = create_engine(url, **kwargs)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def upsert_insert(db: Session, table):
    """INSERT con supporto ON CONFLICT per il dialetto in uso (PostgreSQL/SQLite)."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Dialetto non supportato per upsert: {dialect}")


def _safe_rollback(db: Session) -> None:
    try:
        db.rollback()
    except SQLAlchemyError:
        logger.warning("rollback fallito dopo errore store", exc_info=True)


@contextmanager
def store_errors(db: Session) -> Iterator[None]:
    """
    Confine verso lo store: ogni errore SQLAlchemy diventa StoreUnavailable
    (retryable), mai "not found". Le IntegrityError passano invariate perché
    i chiamanti le traducono in errori di dominio.
    """
    try:
        yield
    except IntegrityError:
        _safe_rollback(db)
        raise
    except SQLAlchemyError as e:
        _safe_rollback(db)
        logger.error("store error: %s", e.__class__.__name__)
        raise StoreUnavailable() from e
