from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import get_settings


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _sqlite_on_connect(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    # budgets and transactions rely on category/user foreign keys being enforced
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.close()


def make_engine(url: str, **kwargs) -> Engine:
    """Create an engine for ``url``.

    SQLite connections may be shared across FastAPI's worker threads and get
    foreign-key enforcement switched on for every new connection.
    """
    if _is_sqlite(url):
        kwargs.setdefault("connect_args", {})["check_same_thread"] = False
    eng = create_engine(url, **kwargs)
    if _is_sqlite(url):
        event.listen(eng, "connect", _sqlite_on_connect)
    return eng


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine = engine) -> None:
    import models  # noqa: F401

    Base.metadata.create_all(bind)
