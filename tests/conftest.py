import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document, get_db
from main import app
from reconciliation import validate_user
from security import create_access_token, hash_password

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = iter(range(1000))

    def _make_user(username, role="customer", **fields):
        doc = {
            "name": username.title(),
            "username": username,
            "passwordHash": PASSWORD_HASH,
            "mobile": f"98765{next(counter):05d}",
            "role": role,
        }
        doc.update(fields)
        user_id = create_document(db, "user", validate_user(doc))
        return db["user"].find_one({"_id": ObjectId(user_id)})

    return _make_user


@pytest.fixture
def auth():
    def _auth(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _auth


@pytest.fixture
def admin(make_user):
    return make_user("boss", role="admin", area="Head Office")


@pytest.fixture
def customer(make_user):
    return make_user("ravi", area="Kothrud")


@pytest.fixture
def other_customer(make_user):
    return make_user("meena", area="Baner")
