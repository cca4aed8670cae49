# tests/conftest.py
import os
import tempfile
import pytest
from sqlalchemy import delete

# point the engine at a throwaway SQLite file before anything touches it
_TMP = tempfile.mkdtemp(prefix="payments-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'payments.sqlite3')}"
os.environ["APP_ENV"] = "test"
os.environ.setdefault("METRICS_ENABLED", "0")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")

from app import create_app  # noqa: E402
from models.base import Base, init_engine_and_session, reset_engine  # noqa: E402
from models.store import CatalogEntry  # noqa: E402
from services.data_sources import get_store  # noqa: E402
from tests.utils import TEST_CONFIG  # noqa: E402

USERS = [("alice", "alice", "user"), ("bob", "bob", "user"), ("admin", "admin", "admin")]

CATALOG = [
    CatalogEntry("course", "c-101", "Calculus I", 50000),
    CatalogEntry("book", "b-1", "Number Theory", 29900),
    CatalogEntry("live_class", "lc-1", "Olympiad Prep", 19900),
    CatalogEntry("course", "c-draft", "Unreleased course", 10000, is_published=False),
]


def seed(store):
    for u, p, role in USERS:
        if not store.get_user(u):
            store.create_user(u, p, role)
    for item in CATALOG:
        store.upsert_catalog_item(item)


@pytest.fixture(scope="session")
def db_engine():
    reset_engine()
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="session")
def app(db_engine):
    return create_app(dict(TEST_CONFIG))


@pytest.fixture(autouse=True)
def _db_clean(db_engine, app):
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))
    with app.app_context():
        seed(get_store())
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def store(app):
    with app.app_context():
        return get_store()


@pytest.fixture()
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture()
def memory_app(db_engine):
    """Same app, but on the in-process store."""
    mem = create_app({**TEST_CONFIG, "PAYMENTS_DATA_SOURCE": "fallback"})
    with mem.app_context():
        seed(get_store())
    return mem
