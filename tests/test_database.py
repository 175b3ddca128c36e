from decimal import Decimal

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from database import init_db, make_engine, make_session_factory
from models import Budget


def test_init_db_creates_every_table() -> None:
    engine = make_engine("sqlite+pysqlite:///:memory:")
    init_db(engine)
    tables = set(inspect(engine).get_table_names())
    assert {"users", "api_tokens", "categories", "budgets", "transactions"} <= tables


def test_sqlite_connections_enforce_foreign_keys() -> None:
    engine = make_engine("sqlite+pysqlite:///:memory:")
    init_db(engine)
    session = make_session_factory(engine)()

    assert session.execute(text("PRAGMA foreign_keys")).scalar() == 1

    session.add(Budget(user_id=404, category_id=404, limit_amount=Decimal("10")))
    with pytest.raises(IntegrityError):
        session.commit()
