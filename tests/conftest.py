import mongomock
import pytest
from fastapi.testclient import TestClient

from database import get_db
from main import app


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    def _make(name="Cachupa Mix", price=10.0, stock=10, **extra):
        doc = {"name": name, "description": "", "price": price, "image": "", "category": "", "stock": stock}
        doc.update(extra)
        return str(db["products"].insert_one(doc).inserted_id)
    return _make
