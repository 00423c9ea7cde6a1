import os
import base64
import logging
from datetime import datetime, timezone
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


NONCE_SIZE = 12  # 96-bit nonce


# ==========================================================
# 🔐 ENCRYPTION / DECRYPTION
# ==========================================================
def load_encryption_key(key_b64):
    """Decode the base64 AES-256 key from configuration."""
    if not key_b64:
        raise RuntimeError("ENCRYPTION_KEY not set in .env — generate one using base64 key generator")
    key = base64.b64decode(key_b64)
    if len(key) != 32:
        raise RuntimeError("ENCRYPTION_KEY must decode to 32 bytes")
    return key


def encrypt_bytes(key: bytes, data: bytes) -> bytes:
    """Encrypt bytes using AES-GCM (256-bit). The nonce is prepended to the ciphertext."""
    aesgcm = AESGCM(key)
    nonce = os.urandom(NONCE_SIZE)
    return nonce + aesgcm.encrypt(nonce, data, None)


def decrypt_bytes(key: bytes, sealed: bytes) -> bytes:
    """Decrypt bytes produced by encrypt_bytes."""
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(sealed[:NONCE_SIZE], sealed[NONCE_SIZE:], None)


# ==========================================================
# 🕒 TIME
# ==========================================================
def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ==========================================================
# 🧾 LOGGING
# ==========================================================
def configure_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
