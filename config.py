import os
from dotenv import load_dotenv
load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
UPLOAD_DIR = os.path.join(BASE_DIR, "uploads")


def _flag(name, default="0"):
    return (os.getenv(name) or default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(BASE_DIR, 'app.db')}"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bounded pool; callers give up after DB_POOL_TIMEOUT seconds instead of waiting forever
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE") or 10)
    DB_POOL_TIMEOUT = float(os.getenv("DB_POOL_TIMEOUT") or 30)

    # Blob storage: "local" (encrypted files on disk) or "s3"
    BLOB_BACKEND = os.getenv("BLOB_BACKEND", "local")
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER") or UPLOAD_DIR
    S3_BUCKET = os.getenv("S3_BUCKET")
    S3_PREFIX = os.getenv("S3_PREFIX", "documents")
    S3_REGION = os.getenv("S3_REGION")
    S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL")
    BLOB_CONNECT_TIMEOUT = float(os.getenv("BLOB_CONNECT_TIMEOUT") or 5)
    BLOB_READ_TIMEOUT = float(os.getenv("BLOB_READ_TIMEOUT") or 30)

    # AES-256-GCM key in base64 (decode before use)
    ENCRYPTION_KEY_B64 = os.getenv("ENCRYPTION_KEY")

    # Allowed extensions and the MIME types accepted for each
    ALLOWED_MIME = {
        "pdf": {"application/pdf"},
        "png": {"image/png"},
        "jpg": {"image/jpeg"},
        "jpeg": {"image/jpeg"},
        "xls": {"application/vnd.ms-excel"},
        "xlsx": {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"},
    }
    MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES") or 10 * 1024 * 1024)
    # Multipart envelope on top of the file itself
    MAX_CONTENT_LENGTH = MAX_UPLOAD_BYTES + 64 * 1024

    DOWNLOAD_LINK_TTL = int(os.getenv("DOWNLOAD_LINK_TTL") or 300)
    MAX_DOWNLOAD_LINK_TTL = int(os.getenv("MAX_DOWNLOAD_LINK_TTL") or DOWNLOAD_LINK_TTL)
    SESSION_TOKEN_MAX_AGE = int(os.getenv("SESSION_TOKEN_MAX_AGE") or 3600)
    RECENT_DOCUMENTS_LIMIT = int(os.getenv("RECENT_DOCUMENTS_LIMIT") or 5)

    PURGE_BLOBS_ON_ITEM_DELETE = _flag("PURGE_BLOBS_ON_ITEM_DELETE")
    ORPHAN_SWEEP_MINUTES = int(os.getenv("ORPHAN_SWEEP_MINUTES") or 0)
    ORPHAN_GRACE_MINUTES = int(os.getenv("ORPHAN_GRACE_MINUTES") or 60)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
