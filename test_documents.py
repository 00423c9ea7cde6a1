import logging
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from conftest import failing, make_account, make_item
from datastore import Datastore
from documents import DocumentManager
from errors import NotFoundOrForbidden, UpstreamStoreError, ValidationError
from models import Document, db, seed_remind_me
from sweep import find_orphans
from utils import utcnow

PDF = "application/pdf"


@pytest.fixture
def documents(datastore, blobs):
    return DocumentManager(datastore, blobs)


def read_link(blobs, link):
    return blobs.get(blobs.resolve_link(link.url.rsplit("/", 1)[1]))


def count_documents(session):
    return session.scalar(select(func.count(Document.id)))


# ----------------------------
# 🧪 CREATE
# ----------------------------
def test_create_uploads_then_inserts(documents, blobs, session, alice, alice_item):
    '''Test Case: a 2MB pdf is stored and the row references its blob.'''
    content = b"%PDF-1.7\n" + b"\0" * (2 * 1024 * 1024)
    document_id = documents.create(alice, alice_item, "Passport scan", "passport.pdf", content, PDF)

    document = documents.get(alice, document_id)
    assert document.blob_key.endswith(".pdf")
    assert document.size_bytes == len(content)
    assert blobs.get(document.blob_key) == content


def test_create_rejects_spoofed_executable(documents, blobs, session, alice, alice_item):
    with pytest.raises(ValidationError):
        documents.create(alice, alice_item, "Totally a pdf", "setup.exe", b"MZ\x90\x00", PDF)
    assert blobs.list_keys() == []
    assert count_documents(session) == 0


def test_create_rejects_oversized_file(datastore, blobs, alice, alice_item):
    small = DocumentManager(datastore, blobs, max_bytes=16)
    with pytest.raises(ValidationError):
        small.create(alice, alice_item, "Big", "big.pdf", b"x" * 17, PDF)
    assert blobs.list_keys() == []


def test_create_on_foreign_item_uploads_nothing(documents, blobs, alice, bob_item):
    with pytest.raises(NotFoundOrForbidden):
        documents.create(alice, bob_item, "Sneaky", "sneaky.pdf", b"%PDF", PDF)
    assert blobs.list_keys() == []


def test_failed_insert_removes_uploaded_blob(documents, datastore, blobs, session, alice, alice_item, monkeypatch):
    monkeypatch.setattr(datastore, "add", failing)
    with pytest.raises(UpstreamStoreError):
        documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    assert blobs.list_keys() == []
    assert count_documents(session) == 0


def test_failed_upload_inserts_nothing(documents, blobs, session, alice, alice_item, monkeypatch):
    monkeypatch.setattr(blobs, "put", failing)
    with pytest.raises(UpstreamStoreError):
        documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    assert count_documents(session) == 0
    assert blobs.list_keys() == []


def test_failed_insert_and_failed_cleanup_logs_orphan(documents, datastore, blobs, alice, alice_item,
                                                      monkeypatch, caplog):
    monkeypatch.setattr(datastore, "add", failing)
    monkeypatch.setattr(blobs, "delete", failing)
    with caplog.at_level(logging.WARNING, logger="blobstore"):
        with pytest.raises(UpstreamStoreError):
            documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)

    [(key, _)] = blobs.list_keys()
    leaks = [r for r in caplog.records if getattr(r, "blob_key", None) == key]
    assert leaks and leaks[0].reason == "create-aborted"


# ----------------------------
# 🧪 REPLACE
# ----------------------------
def test_replace_serves_new_content(documents, blobs, alice, alice_item):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF-old", PDF)
    old_key = documents.get(alice, document_id).blob_key

    documents.replace(alice, document_id, filename="lease-2025.pdf", content=b"%PDF-new", content_type=PDF)

    assert read_link(blobs, documents.get_download_link(alice, document_id)) == b"%PDF-new"
    assert not blobs.exists(old_key)


def test_replace_when_old_blob_delete_fails(documents, datastore, blobs, alice, alice_item, monkeypatch):
    '''Test Case: the old blob cannot be removed; the replace still succeeds and the old blob leaks.'''
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF-old", PDF)
    old_key = documents.get(alice, document_id).blob_key
    monkeypatch.setattr(blobs, "delete", failing)

    documents.replace(alice, document_id, filename="lease.pdf", content=b"%PDF-new", content_type=PDF)

    assert read_link(blobs, documents.get_download_link(alice, document_id)) == b"%PDF-new"
    assert blobs.exists(old_key)
    assert find_orphans(datastore, blobs, now=utcnow() + timedelta(seconds=5), grace=timedelta(0)) == [old_key]


def test_failed_replace_keeps_old_blob(documents, datastore, blobs, alice, alice_item, monkeypatch):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF-old", PDF)
    old_key = documents.get(alice, document_id).blob_key
    monkeypatch.setattr(datastore, "flush", failing)

    with pytest.raises(UpstreamStoreError):
        documents.replace(alice, document_id, name="Renamed", filename="lease.pdf", content=b"%PDF-new",
                          content_type=PDF)

    monkeypatch.undo()
    document = documents.get(alice, document_id)
    assert document.blob_key == old_key
    assert document.name == "Lease"
    assert [key for key, _ in blobs.list_keys()] == [old_key]
    assert read_link(blobs, documents.get_download_link(alice, document_id)) == b"%PDF-old"


def test_replace_metadata_only_keeps_blob(documents, blobs, alice, alice_item):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    key = documents.get(alice, document_id).blob_key

    documents.replace(alice, document_id, name="Lease (signed)", renewal_required=True)

    document = documents.get(alice, document_id)
    assert (document.name, document.renewal_required, document.blob_key) == ("Lease (signed)", True, key)
    assert blobs.exists(key)


def test_replace_requires_a_change(documents, alice, alice_item):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    with pytest.raises(ValidationError):
        documents.replace(alice, document_id)


def test_concurrent_replace_last_commit_wins(tmp_path, blobs, monkeypatch):
    '''Test Case: two replaces race; the later commit wins and the other upload is orphaned.'''
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    db.metadata.create_all(engine)
    with Session(engine) as setup:
        seed_remind_me(setup)
        account_id = make_account(setup, "race@example.com")
        item_id = make_item(setup, account_id)

    with Session(engine) as first_session, Session(engine) as second_session:
        first = DocumentManager(Datastore(first_session), blobs)
        second = DocumentManager(Datastore(second_session), blobs)
        document_id = first.create(account_id, item_id, "Lease", "lease.pdf", b"%PDF-original", PDF)
        original_key = first.get(account_id, document_id).blob_key

        uploaded = []
        real_put = blobs.put

        def put_then_race(content, extension, content_type=None):
            key = real_put(content, extension, content_type)
            uploaded.append(key)
            if len(uploaded) == 1:
                # the second writer commits while the first is mid-replace
                second.replace(account_id, document_id, filename="lease.pdf", content=b"%PDF-second",
                               content_type=PDF)
            return key

        monkeypatch.setattr(blobs, "put", put_then_race)
        first.replace(account_id, document_id, filename="lease.pdf", content=b"%PDF-first", content_type=PDF)

    first_key, second_key = uploaded
    with Session(engine) as check:
        assert check.get(Document, document_id).blob_key == first_key
        assert find_orphans(Datastore(check), blobs, now=utcnow() + timedelta(seconds=5),
                            grace=timedelta(0)) == [second_key]
    assert not blobs.exists(original_key)
    assert blobs.get(first_key) == b"%PDF-first"
    engine.dispose()


# ----------------------------
# 🧪 DELETE & LINKS
# ----------------------------
def test_delete_removes_row_then_blob(documents, blobs, session, alice, alice_item):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    key = documents.get(alice, document_id).blob_key

    documents.delete(alice, document_id)

    assert count_documents(session) == 0
    assert not blobs.exists(key)
    with pytest.raises(NotFoundOrForbidden):
        documents.get_download_link(alice, document_id)


def test_delete_succeeds_when_blob_delete_fails(documents, blobs, session, alice, alice_item, monkeypatch, caplog):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    key = documents.get(alice, document_id).blob_key
    monkeypatch.setattr(blobs, "delete", failing)

    with caplog.at_level(logging.WARNING, logger="blobstore"):
        documents.delete(alice, document_id)

    assert count_documents(session) == 0
    assert blobs.exists(key)
    assert any(getattr(r, "blob_key", None) == key for r in caplog.records)


def test_download_link_ttl(documents, blobs, alice, alice_item):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    link = documents.get_download_link(alice, document_id)
    assert link.expires_in == 300
    assert link.url != f"/blobs/{document_id}"
    assert blobs.resolve_link(link.url.rsplit("/", 1)[1]) == documents.get(alice, document_id).blob_key
    assert documents.get_download_link(alice, document_id, ttl=60).expires_in == 60
    with pytest.raises(ValidationError):
        documents.get_download_link(alice, document_id, ttl=-5)


def test_download_link_ttl_is_bounded(documents, alice, alice_item):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    with pytest.raises(ValidationError):
        documents.get_download_link(alice, document_id, ttl=0)
    with pytest.raises(ValidationError):
        documents.get_download_link(alice, document_id, ttl=301)
    assert documents.get_download_link(alice, document_id, ttl=300).expires_in == 300


def test_other_account_cannot_touch_document(documents, blobs, alice, bob, alice_item):
    document_id = documents.create(alice, alice_item, "Lease", "lease.pdf", b"%PDF", PDF)
    key = documents.get(alice, document_id).blob_key

    for attempt in (
        lambda: documents.get_download_link(bob, document_id),
        lambda: documents.replace(bob, document_id, name="Mine now"),
        lambda: documents.delete(bob, document_id),
    ):
        with pytest.raises(NotFoundOrForbidden) as exc:
            attempt()
        assert exc.value.to_dict() == NotFoundOrForbidden("document").to_dict()

    assert documents.get(alice, document_id).name == "Lease"
    assert blobs.exists(key)
