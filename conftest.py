import base64
import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app import create_app
from blobstore import LocalBlobStore
from datastore import Datastore
from errors import UpstreamStoreError
from models import Account, Header, Item, db, seed_remind_me


def make_account(session, email, name="Test User"):
    account = Account(name=name, email=email, password_hash="not-a-real-hash", mobile="0123456789")
    session.add(account)
    session.commit()
    return account.id


def make_item(session, account_id, header_name="Identity", title="Passport"):
    header = Header(account_id=account_id, name=header_name)
    session.add(header)
    session.flush()
    item = Item(account_id=account_id, header_id=header.id, header_name=header.name, title=title)
    session.add(item)
    session.commit()
    return item.id


def failing(*args, **kwargs):
    raise UpstreamStoreError("blob store", "injected failure")


# ----------------------------------------------------------
# ✅ Core fixtures: in-memory database, encrypted blobs on tmp_path
# ----------------------------------------------------------
@pytest.fixture
def engine():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    db.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        seed_remind_me(session)
        yield session


@pytest.fixture
def datastore(session):
    return Datastore(session)


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"), os.urandom(32), "test-signing-secret")


@pytest.fixture
def alice(session):
    return make_account(session, "alice@example.com", "Alice")


@pytest.fixture
def bob(session):
    return make_account(session, "bob@example.com", "Bob")


@pytest.fixture
def alice_item(session, alice):
    return make_item(session, alice)


@pytest.fixture
def bob_item(session, bob):
    return make_item(session, bob)


# ----------------------------------------------------------
# ✅ Flask app fixture for black box testing
# ----------------------------------------------------------
@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "ENCRYPTION_KEY_B64": base64.b64encode(os.urandom(32)).decode(),
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client
