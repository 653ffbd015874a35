"""Engine and session factory wiring from DATABASE_URL."""
import pytest

import db
from db import connection


@pytest.fixture(autouse=True)
def reset_engine(monkeypatch):
    monkeypatch.setattr(connection, "_engine", None)
    monkeypatch.setattr(connection, "_session_factory", None)


def test_database_url_requires_asyncpg(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://user:pw@localhost:5432/crm")
    with pytest.raises(RuntimeError, match="postgresql\\+asyncpg"):
        connection.database_url()


def test_database_url_must_be_set(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        connection.get_engine()


@pytest.mark.asyncio
async def test_session_factory_is_shared_until_disposed(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://user:pw@localhost:5432/crm")

    factory = connection.get_session_factory()
    assert connection.get_session_factory() is factory
    assert factory.kw["expire_on_commit"] is False

    await connection.dispose_engine()

    assert connection._engine is None
    assert connection._session_factory is None


def test_package_exports_only_the_wiring_in_use():
    assert sorted(db.__all__) == [
        "dispose_engine",
        "get_engine",
        "get_session_factory",
        "make_session_factory",
    ]
