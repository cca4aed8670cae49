import pytest

from models.memory_store import MemoryPaymentStore
from models.payments_store import SqlPaymentStore
from services import data_sources
from services.data_sources import DataSource, build_store, select_data_source


class _Cfg:
    def __init__(self, value, app_env="test"):
        self.config = {"PAYMENTS_DATA_SOURCE": value, "APP_ENV": app_env}
        import logging
        self.logger = logging.getLogger("test")


def test_explicit_choices():
    assert select_data_source(_Cfg("live")) is DataSource.LIVE
    assert select_data_source(_Cfg("FALLBACK")) is DataSource.FALLBACK


def test_unknown_choice_raises():
    with pytest.raises(RuntimeError):
        select_data_source(_Cfg("mongo"))


def test_auto_uses_database_when_reachable(monkeypatch):
    monkeypatch.setattr(data_sources, "probe_database", lambda: None)
    assert select_data_source(_Cfg("auto")) is DataSource.LIVE


def test_auto_falls_back_when_database_is_down(monkeypatch):
    def down():
        raise RuntimeError("connection refused")

    monkeypatch.setattr(data_sources, "probe_database", down)
    assert select_data_source(_Cfg("auto")) is DataSource.FALLBACK


def test_production_auto_refuses_memory_store(monkeypatch):
    def down():
        raise RuntimeError("connection refused")

    monkeypatch.setattr(data_sources, "probe_database", down)
    with pytest.raises(RuntimeError, match="production"):
        select_data_source(_Cfg("auto", app_env="production"))


def test_production_refuses_explicit_fallback():
    with pytest.raises(RuntimeError):
        select_data_source(_Cfg("fallback", app_env="production"))


def test_production_defaults_to_live(monkeypatch):
    def never():
        raise AssertionError("live must not touch the database at selection time")

    monkeypatch.setattr(data_sources, "probe_database", never)
    assert select_data_source(_Cfg(None, app_env="production")) is DataSource.LIVE


def test_production_auto_uses_reachable_database(monkeypatch):
    monkeypatch.setattr(data_sources, "probe_database", lambda: None)
    assert select_data_source(_Cfg("auto", app_env="production")) is DataSource.LIVE


def test_create_app_fails_in_production_when_database_is_down(monkeypatch, db_engine):
    from app import create_app
    from tests.utils import TEST_CONFIG

    def down():
        raise RuntimeError("connection refused")

    monkeypatch.setattr(data_sources, "probe_database", down)
    with pytest.raises(RuntimeError):
        create_app({**TEST_CONFIG, "APP_ENV": "production", "PAYMENTS_DATA_SOURCE": "auto"})


def test_build_store():
    assert isinstance(build_store(DataSource.LIVE), SqlPaymentStore)
    assert isinstance(build_store(DataSource.FALLBACK), MemoryPaymentStore)


def test_app_exposes_chosen_store(app, memory_app):
    with app.app_context():
        assert data_sources.get_data_source() is DataSource.LIVE
        assert data_sources.get_store().name == "sql"
    with memory_app.app_context():
        assert data_sources.get_data_source() is DataSource.FALLBACK
        assert data_sources.get_store().name == "memory"


def test_fallback_app_serves_full_flow(memory_app):
    from tests.utils import captured_event, create_order, login_user, order_id_of, post_webhook

    c = memory_app.test_client()
    login_user(c, "alice")
    oid = order_id_of(create_order(c))
    r = post_webhook(c, captured_event(oid, "pay_M1"))
    assert r.get_json() == {"success": True, "alreadyProcessed": False}
    r = post_webhook(c, captured_event(oid, "pay_M1"))
    assert r.get_json()["alreadyProcessed"] is True
    with memory_app.app_context():
        assert data_sources.get_store().has_enrollment("alice", "course", "c-101")
