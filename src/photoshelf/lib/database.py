from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import os


def get_engine(url: str | None = None):
    """Create a SQLAlchemy engine. Defaults to in-memory SQLite when url is None."""
    url = normalize_db_url(url or "sqlite:///:memory:")
    kwargs = {"echo": False, "future": True}
    if url.startswith("sqlite"):
        # uploads run on worker threads; sqlite connections must be shareable
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # one connection for every thread, otherwise each thread gets an empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


def normalize_db_url(value: str) -> str:
    """Normalize a database location into a SQLAlchemy URL.

    - If value already looks like a URL (contains '://'), return as-is.
    - If value looks like a filesystem path, convert to a sqlite URL.
    """
    if not value or "://" in value:
        return value

    # normalize backslashes for sqlite URL
    v = value.replace("\\", "/")
    if os.path.exists(v) or "/" in v or v.endswith((".db", ".sqlite", ".sqlite3")):
        return f"sqlite:///{v}"

    # fallback: return original value
    return value


def get_sessionmaker(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine):
    """Create all tables using metadata from the models package."""
    # Import models lazily to avoid circular imports at package import time
    from photoshelf.models import Base

    Base.metadata.create_all(engine)


class InMemoryAdapter:
    """Lightweight in-memory DB adapter for tests.

    Usage:
        adapter = InMemoryAdapter()
        session = adapter.session()
    """

    def __init__(self):
        self.engine = get_engine("sqlite:///:memory:")
        self.Session = get_sessionmaker(self.engine)
        init_db(self.engine)

    def session(self):
        return self.Session()
