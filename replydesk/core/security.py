"""Security utilities: field encryption and webhook signatures."""

import hashlib
import hmac

from cryptography.fernet import Fernet

from replydesk.core.config import get_settings

# ── Field-level encryption (Fernet) ──────────────────────────

def _get_fernet() -> Fernet:
    settings = get_settings()
    if not settings.encryption_key:
        raise RuntimeError("ENCRYPTION_KEY is not configured")
    return Fernet(settings.encryption_key.encode())


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value. Returns base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a Fernet-encrypted value."""
    return _get_fernet().decrypt(ciphertext.encode()).decode()


# ── Webhook signatures (HMAC-SHA256) ─────────────────────────

def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a webhook signature. Missing secret never verifies."""
    if not secret or not signature:
        return False
    # Header values may carry non-ASCII characters; compare as bytes
    return hmac.compare_digest(sign_payload(secret, body).encode(), signature.strip().encode())
