import os
import re
from contextlib import contextmanager

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")

import mongomock
import pytest
from fastapi.testclient import TestClient

from catalog import create_product
from database import Database, ensure_indexes, get_db
from errors import MailError
from mail import MailSender, get_mailer
from main import app
from schemas import ProductIn, Role
from users import create_user


class SnapshotDatabase(Database):
    """mongomock has no sessions, so a transaction restores a snapshot on error."""

    @contextmanager
    def transaction(self):
        snapshot = {name: list(self[name].find()) for name in self.list_collection_names()}
        try:
            yield None
        except Exception:
            for name in set(self.list_collection_names()) | set(snapshot):
                saved = {doc["_id"]: doc for doc in snapshot.get(name, [])}
                collection = self[name]
                for doc in list(collection.find()):
                    if doc["_id"] not in saved:
                        collection.delete_one({"_id": doc["_id"]})
                for doc in saved.values():
                    collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)
            raise


class RecordingMailer(MailSender):
    def __init__(self):
        super().__init__(user="shop@example.com", password="secret")
        self.sent = []
        self.fail = False

    def send(self, to, subject, text, html=None):
        if self.fail:
            raise MailError("SMTP unavailable")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})

    def last_code(self, email):
        for message in reversed(self.sent):
            if message["to"] == email:
                return re.search(r"\b(\d{6})\b", message["text"]).group(1)
        return None


@pytest.fixture
def db():
    database = SnapshotDatabase(mongomock.MongoClient(), "printshop_test")
    ensure_indexes(database)
    return database


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(db, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(database, email, password="secret123", role=Role.USER, active=True, **extra):
    return create_user(database, {
        "full_name": extra.pop("full_name", email.split("@")[0].title()),
        "email": email,
        "password": password,
        "role": role,
        "is_active": active,
        **extra,
    })


def login(client, email, password="secret123"):
    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture
def user(db):
    return make_user(db, "ann@example.com", full_name="Ann")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", role=Role.ADMIN)


@pytest.fixture
def super_admin(db):
    return make_user(db, "root@example.com", role=Role.SUPER_ADMIN)


@pytest.fixture
def user_headers(client, user):
    return login(client, "ann@example.com")


@pytest.fixture
def admin_headers(client, admin):
    return login(client, "admin@example.com")


@pytest.fixture
def product(db):
    return create_product(db, ProductIn(
        name="Classic Tee",
        category="t-shirts",
        variants=[
            {"color": "white", "size": "M", "price": 12.5, "stock": 10},
            {"color": "black", "size": "L", "price": 15.0, "stock": 5},
        ],
    ))


@pytest.fixture
def variants(product):
    return product["variants"]
