import os
import sys
from pathlib import Path

import fakeredis
import pytest

# Modules in backend/ import each other as top-level modules.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_ENABLED"] = "false"
os.environ.setdefault("TOTAL_TABLES", "5")

import database  # noqa: E402
import models  # noqa: E402
from redis_client import redis_client  # noqa: E402


@pytest.fixture
def db():
    """Fresh in-memory schema with the seeded tables, staff, flavors and menu."""
    models.Base.metadata.drop_all(bind=database.engine)
    models.Base.metadata.create_all(bind=database.engine)
    database.init_restaurant_config()

    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    previous = redis_client.client
    redis_client.client = fakeredis.FakeRedis(decode_responses=True)
    redis_client.client.flushall()
    yield redis_client.client
    redis_client.client = previous


@pytest.fixture
def client(db, fake_redis):
    from fastapi.testclient import TestClient

    from main import app

    return TestClient(app)


@pytest.fixture
def menu(db):
    """Menu item ids by name."""
    return {item.name: item.id for item in db.query(models.MenuItem).all()}


@pytest.fixture
def tables(db):
    """Table ids by table number."""
    return {t.table_number: t.id for t in db.query(models.Table).all()}
