"""
Reconciliation of blobs against document rows.

Compensating deletes are best-effort, so blobs can outlive the rows that
referenced them (failed create, replaced or deleted documents whose blob
delete failed, item cascades). The sweep lists every blob, drops the keys
still referenced by a document row, and deletes the rest once they are
older than a grace period. The grace period keeps it away from uploads
whose row insert has not committed yet.
"""

import logging
from datetime import timedelta

from sqlalchemy import select

from blobstore import discard_blob
from models import Document
from utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_GRACE = timedelta(minutes=60)


def find_orphans(datastore, blobs, now=None, grace=DEFAULT_GRACE):
    now = now or utcnow()
    stored = blobs.list_keys()
    referenced = set(datastore.query(select(Document.blob_key)))
    return sorted(key for key, modified in stored if key not in referenced and now - modified >= grace)


def sweep_orphans(datastore, blobs, now=None, grace=DEFAULT_GRACE):
    """
    Delete unreferenced blobs older than ``grace``; returns the deleted keys.

    A failed delete is logged and left for the next run.
    """
    deleted = []
    for key in find_orphans(datastore, blobs, now, grace):
        if discard_blob(blobs, key, "sweep"):
            deleted.append(key)
    if deleted:
        logger.info("orphan sweep removed %d blobs", len(deleted))
    return deleted
