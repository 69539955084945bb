from decimal import Decimal

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from helpers import InMemoryStore
from schemas import StoreSettings


@pytest.fixture
def database():
    return mongomock.MongoClient().pos_test


@pytest.fixture
def store(database):
    s = InMemoryStore(database)
    s.ensure_indexes()
    return s


@pytest.fixture
def set_tax_rate(store):
    def _set(rate):
        store.save_settings(StoreSettings(tax_rate=Decimal(str(rate))))
    return _set


@pytest.fixture
def client(database, store):
    main.app.dependency_overrides[main.get_db] = lambda: database
    main.app.dependency_overrides[main.get_store] = lambda: store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
