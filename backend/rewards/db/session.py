from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from rewards.core.config import settings, PROJECT_ROOT


def _resolve_sqlite_url(db_url: str) -> str:
    raw_path = make_url(db_url).database or ""
    if raw_path in ("", ":memory:"):
        return "sqlite://"
    path = Path(raw_path)
    if not path.is_absolute():
        # Anchor relative paths to the backend project root to avoid cwd drift
        parts = path.parts
        if parts and parts[0].lower() == PROJECT_ROOT.name.lower():
            path = Path(*parts[1:])
        path = (PROJECT_ROOT / path).resolve()
    else:
        path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def build_engine(db_url: str) -> Engine:
    engine_kwargs: dict = {
        "future": True,
        "echo": False,
        # pre_ping keeps connections fresh across the idle time between crawl cycles.
        "pool_pre_ping": True,
    }
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        db_url = _resolve_sqlite_url(db_url)
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 60}
        if db_url == "sqlite://":
            # A single shared connection keeps an in-memory database alive across sessions.
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update({"pool_recycle": 2800, "pool_timeout": 30})

    engine = create_engine(db_url, **engine_kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - DB wiring
            cursor = dbapi_connection.cursor()
            if db_url != "sqlite://":
                cursor.execute("PRAGMA journal_mode=WAL;")
                cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA busy_timeout=60000;")
            cursor.close()

    return engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        future=True,
        expire_on_commit=False,
    )


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)

Base = declarative_base()
