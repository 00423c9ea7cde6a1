"""
Document lifecycle.

A document is a row in the datastore plus one blob in the blob store. The
two stores cannot share a transaction, so every operation orders its steps
so that a row never points at a blob that is not there:

- create uploads first and inserts the row second,
- replace uploads the new blob, commits the row change, then drops the old blob,
- delete removes the row first and the blob after commit.

When a step after the upload fails, the blob that no row will reference is
deleted best-effort. If that delete also fails it is logged as an orphan
for the sweep (see ``sweep.py``).
"""

import logging
import os
from dataclasses import dataclass

from sqlalchemy import delete

from blobstore import discard_blob
from config import Config
from errors import ValidationError
from guard import OwnershipGuard, scoped
from models import Document, Item
from utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadLink:
    url: str
    expires_in: int


def file_extension(filename):
    _, ext = os.path.splitext(filename or "")
    return ext[1:].lower()


def validate_upload(filename, content, content_type,
                    max_bytes=Config.MAX_UPLOAD_BYTES, allowed_mime=Config.ALLOWED_MIME):
    """Check size, extension and MIME type of an upload; returns the extension."""
    ext = file_extension(filename)
    if ext not in allowed_mime:
        raise ValidationError("invalid file type", field="file")
    if not content:
        raise ValidationError("empty file", field="file")
    if len(content) > max_bytes:
        raise ValidationError(f"file exceeds {max_bytes} bytes", field="file")
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime not in allowed_mime[ext]:
        raise ValidationError("content type does not match file type", field="file")
    return ext


class DocumentManager:
    def __init__(self, datastore, blobs, link_ttl=Config.DOWNLOAD_LINK_TTL,
                 max_link_ttl=Config.MAX_DOWNLOAD_LINK_TTL, max_bytes=Config.MAX_UPLOAD_BYTES,
                 allowed_mime=Config.ALLOWED_MIME):
        self.datastore = datastore
        self.blobs = blobs
        self.guard = OwnershipGuard(datastore)
        self.link_ttl = link_ttl
        self.max_link_ttl = max_link_ttl
        self.max_bytes = max_bytes
        self.allowed_mime = allowed_mime

    def _validate(self, filename, content, content_type):
        return validate_upload(filename, content, content_type, self.max_bytes, self.allowed_mime)

    def create(self, account_id, item_id, name, filename, content, content_type, renewal_required=False):
        name = (name or "").strip()
        if not name:
            raise ValidationError("document name required", field="name")
        ext = self._validate(filename, content, content_type)
        self.guard.verify(account_id, Item, item_id)

        key = self.blobs.put(content, ext, content_type)
        try:
            with self.datastore.transaction():
                document = self.datastore.add(Document(
                    account_id=account_id,
                    item_id=item_id,
                    name=name,
                    renewal_required=bool(renewal_required),
                    blob_key=key,
                    content_type=content_type,
                    size_bytes=len(content),
                ))
                document_id = document.id
        except Exception:
            discard_blob(self.blobs, key, "create-aborted", account_id=account_id, item_id=item_id)
            raise

        logger.info("document created: %s account=%s size=%d", document_id, account_id, len(content))
        return document_id

    def replace(self, account_id, document_id, name=None, filename=None, content=None,
                content_type=None, renewal_required=None):
        if name is None and content is None and renewal_required is None:
            raise ValidationError("nothing to update")
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("document name required", field="name")
        ext = self._validate(filename, content, content_type) if content is not None else None

        old_key = new_key = None
        try:
            with self.datastore.transaction():
                document = self.guard.verify(account_id, Document, document_id)
                old_key = document.blob_key
                if content is not None:
                    new_key = self.blobs.put(content, ext, content_type)
                    document.blob_key = new_key
                    document.content_type = content_type
                    document.size_bytes = len(content)
                if name is not None:
                    document.name = name
                if renewal_required is not None:
                    document.renewal_required = bool(renewal_required)
                document.updated_at = utcnow()
                self.datastore.flush()
        except Exception:
            if new_key:
                discard_blob(self.blobs, new_key, "replace-aborted", document_id=document_id)
            raise

        if new_key:
            discard_blob(self.blobs, old_key, "replaced", document_id=document_id)
        logger.info("document updated: %s account=%s new_content=%s", document_id, account_id, bool(new_key))

    def delete(self, account_id, document_id):
        with self.datastore.transaction():
            document = self.guard.verify(account_id, Document, document_id)
            key = document.blob_key
            self.datastore.execute(
                delete(Document).where(Document.id == document.id, Document.account_id == account_id)
            )
        discard_blob(self.blobs, key, "document-deleted", document_id=document_id)
        logger.info("document deleted: %s account=%s", document_id, account_id)

    def get(self, account_id, document_id):
        return self.guard.verify(account_id, Document, document_id)

    def list_for_item(self, account_id, item_id):
        self.guard.verify(account_id, Item, item_id)
        return self.datastore.query(
            scoped(Document, account_id).where(Document.item_id == item_id).order_by(Document.id)
        )

    def get_download_link(self, account_id, document_id, ttl=None):
        document = self.guard.verify(account_id, Document, document_id)
        ttl = self.link_ttl if ttl is None else int(ttl)
        if ttl <= 0:
            raise ValidationError("ttl must be positive", field="ttl")
        if ttl > self.max_link_ttl:
            raise ValidationError(f"ttl must not exceed {self.max_link_ttl} seconds", field="ttl")
        return DownloadLink(url=self.blobs.signed_url(document.blob_key, ttl), expires_in=ttl)
