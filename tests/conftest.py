# tests/conftest.py
import os
import tempfile

import pytest

# throwaway SQLite file shared by the whole session; must exist before create_app()
_DB_DIR = tempfile.mkdtemp(prefix="shop-payments-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.sqlite3')}"

from app import create_app  # noqa: E402
from models.base import Base, init_engine_and_session  # noqa: E402
from models.users_db import create_user  # noqa: E402
from services.payments.registry import registry  # noqa: E402
from tests.utils import (  # noqa: E402
    ARCA_SECRET, IDRAM_MERCHANT, IDRAM_SECRET, login_user,
)


@pytest.fixture(scope="session", autouse=True)
def _set_env():
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "1")
    os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
    os.environ["APP_URL"] = "https://shop.example.am"
    os.environ["PAYMENT_PROVIDERS"] = "idram,arca"
    os.environ.pop("ADMIN_PASSWORD", None)
    yield


@pytest.fixture(autouse=True)
def _provider_env(monkeypatch):
    # tests that need a provider unconfigured delenv() on top of this
    monkeypatch.setenv("IDRAM_MERCHANT_ID", IDRAM_MERCHANT)
    monkeypatch.setenv("IDRAM_SECRET_KEY", IDRAM_SECRET)
    monkeypatch.setenv("IDRAM_API_URL", "https://idram.test/api")
    monkeypatch.setenv("ARCA_USERNAME", "shop_api")
    monkeypatch.setenv("ARCA_PASSWORD", "shop_pw")
    monkeypatch.setenv("ARCA_CALLBACK_SECRET", ARCA_SECRET)
    monkeypatch.setenv("ARCA_API_URL", "https://arca.test/payment/rest")
    registry.limiter.reset()
    yield


@pytest.fixture(scope="session")
def app():
    return create_app({"TESTING": True, "WTF_CSRF_ENABLED": False})


@pytest.fixture(scope="session")
def db_engine(app):
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def _db_clean(db_engine):
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture
def admin_user():
    create_user("admin", "admin-pw", role="admin")
    return "admin", "admin-pw"


@pytest.fixture
def login_admin(client, admin_user):
    u, p = admin_user
    r = login_user(client, u, p)
    assert r.status_code == 200
    yield
    client.post("/api/v1/auth/logout")
