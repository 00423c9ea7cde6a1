"""
Blob store gateway.

Document bytes live outside the relational store. Two backends share the
``BlobStore`` contract:

- ``LocalBlobStore`` keeps AES-GCM encrypted files on disk and hands out
  download links signed with itsdangerous.
- ``S3BlobStore`` keeps objects in a bucket and hands out presigned URLs.

Keys are ``<epoch millis>-<random hex>.<ext>``. The random part keeps
concurrent uploads in the same millisecond from colliding.
"""

import logging
import os
import re
import time
import uuid
from datetime import datetime, timedelta, timezone

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import InvalidTag
from itsdangerous import BadSignature, URLSafeTimedSerializer

from errors import NotFoundOrForbidden, UpstreamStoreError
from utils import decrypt_bytes, encrypt_bytes

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"^\d{13,}-[0-9a-f]{12}\.[a-z0-9]{1,10}$")


def new_blob_key(extension):
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}.{extension.lower()}"


def log_orphan(key, reason, **context):
    """Record a blob that no row references any more, for the sweep to reclaim."""
    logger.warning("orphaned blob %s (%s)", key, reason, extra={"blob_key": key, "reason": reason, **context})


def discard_blob(blobs, key, reason, **context):
    """
    Best-effort delete used for compensating actions. A failure is logged as
    an orphan and never raised: the primary operation has already decided
    its outcome.
    """
    try:
        blobs.delete(key)
    except UpstreamStoreError as exc:
        log_orphan(key, reason, error=str(exc), **context)
        return False
    return True


class BlobStore:
    """Contract shared by the storage backends."""

    def put(self, content: bytes, extension: str, content_type=None) -> str:
        """Store ``content`` under a freshly generated key and return the key."""
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def signed_url(self, key: str, ttl: int) -> str:
        """Time-limited retrieval URL for ``key``, valid for ``ttl`` seconds."""
        raise NotImplementedError

    def list_keys(self):
        """``[(key, last_modified)]`` for every stored blob, last_modified in naive UTC."""
        raise NotImplementedError


# ==========================================================
# 💾 LOCAL, ENCRYPTED AT REST
# ==========================================================
class LocalBlobStore(BlobStore):
    def __init__(self, root, encryption_key: bytes, signing_secret, base_url="/blobs"):
        self.root = root
        os.makedirs(root, exist_ok=True)
        self._key = encryption_key
        self._links = URLSafeTimedSerializer(signing_secret, salt="blob-link")
        self.base_url = base_url.rstrip("/")

    def _path(self, key):
        if not KEY_PATTERN.match(key or ""):
            raise NotFoundOrForbidden("blob", key)
        return os.path.join(self.root, key)

    def put(self, content, extension, content_type=None):
        key = new_blob_key(extension)
        path = self._path(key)
        partial = path + ".part"
        try:
            with open(partial, "wb") as f:
                f.write(encrypt_bytes(self._key, content))
            os.replace(partial, path)
        except OSError as exc:
            if os.path.exists(partial):
                os.remove(partial)
            raise UpstreamStoreError("blob store", str(exc)) from exc
        logger.debug("stored blob %s (%d bytes)", key, len(content))
        return key

    def get(self, key):
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return decrypt_bytes(self._key, f.read())
        except FileNotFoundError:
            raise NotFoundOrForbidden("blob", key)
        except (OSError, InvalidTag) as exc:
            raise UpstreamStoreError("blob store", str(exc) or exc.__class__.__name__) from exc

    def delete(self, key):
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise UpstreamStoreError("blob store", str(exc)) from exc

    def exists(self, key):
        return os.path.isfile(self._path(key))

    def signed_url(self, key, ttl):
        self._path(key)
        token = self._links.dumps({"k": key, "ttl": int(ttl)})
        return f"{self.base_url}/{token}"

    def resolve_link(self, token, now=None):
        """Return the key a signed link points at, if the link is genuine and unexpired."""
        try:
            payload, signed_at = self._links.loads(token, return_timestamp=True)
        except BadSignature:
            raise NotFoundOrForbidden("blob")
        now = now or datetime.now(timezone.utc)
        if now - signed_at > timedelta(seconds=payload["ttl"]):
            raise NotFoundOrForbidden("blob")
        return payload["k"]

    def list_keys(self):
        try:
            with os.scandir(self.root) as entries:
                return [
                    (entry.name, datetime.fromtimestamp(entry.stat().st_mtime, timezone.utc).replace(tzinfo=None))
                    for entry in entries
                    if entry.is_file() and KEY_PATTERN.match(entry.name)
                ]
        except OSError as exc:
            raise UpstreamStoreError("blob store", str(exc)) from exc


# ==========================================================
# ☁️ S3
# ==========================================================
class S3BlobStore(BlobStore):
    def __init__(self, bucket, prefix="documents", client=None, region=None,
                 endpoint_url=None, connect_timeout=5, read_timeout=30):
        if not bucket:
            raise RuntimeError("S3_BUCKET not set in .env")
        self.bucket = bucket
        self.prefix = (prefix or "").strip("/")
        if client is None:
            config = BotoConfig(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"mode": "standard", "max_attempts": 1},  # single attempt, failures surface
            )
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url, config=config)
        self.client = client

    def _object_key(self, key):
        if not KEY_PATTERN.match(key or ""):
            raise NotFoundOrForbidden("blob", key)
        return f"{self.prefix}/{key}" if self.prefix else key

    def put(self, content, extension, content_type=None):
        key = new_blob_key(extension)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self._object_key(key),
                Body=content,
                ContentType=content_type or "application/octet-stream",
                ServerSideEncryption="AES256",
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 upload failed for %s: %s", key, exc)
            raise UpstreamStoreError("blob store", str(exc)) from exc
        return key

    def get(self, key):
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=self._object_key(key))
            return resp["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                raise NotFoundOrForbidden("blob", key)
            raise UpstreamStoreError("blob store", str(exc)) from exc
        except BotoCoreError as exc:
            raise UpstreamStoreError("blob store", str(exc)) from exc

    def delete(self, key):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._object_key(key))
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 delete failed for %s: %s", key, exc)
            raise UpstreamStoreError("blob store", str(exc)) from exc

    def exists(self, key):
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._object_key(key))
            return True
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                return False
            raise UpstreamStoreError("blob store", str(exc)) from exc
        except BotoCoreError as exc:
            raise UpstreamStoreError("blob store", str(exc)) from exc

    def signed_url(self, key, ttl):
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": self._object_key(key)},
                ExpiresIn=int(ttl),
            )
        except (ClientError, BotoCoreError) as exc:
            raise UpstreamStoreError("blob store", str(exc)) from exc

    def list_keys(self):
        prefix = f"{self.prefix}/" if self.prefix else ""
        found = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"][len(prefix):]
                    if KEY_PATTERN.match(key):
                        modified = obj["LastModified"].astimezone(timezone.utc).replace(tzinfo=None)
                        found.append((key, modified))
        except (ClientError, BotoCoreError) as exc:
            raise UpstreamStoreError("blob store", str(exc)) from exc
        return found
