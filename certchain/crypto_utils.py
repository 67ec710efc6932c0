import base64
import hashlib
import hmac
import json
import time
from typing import Callable

from cryptography.fernet import Fernet, InvalidToken

# ---------- HASHING ----------
def sha256_hash(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def canonicalize(obj) -> str:
    """Stable JSON text: sorted keys, no insignificant whitespace."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ---------- FINGERPRINT ----------
def generate_fingerprint(
    holder_name: str,
    enrollment_id: str,
    program: str,
    institution: str,
    issue_year: int,
    clock: Callable[[], int] = time.time_ns,
) -> str:
    """Return ``"0x" + sha256`` over the credential fields salted with the clock.

    The current instant is appended to the canonical field encoding, so two
    calls with identical fields yield different fingerprints. Callers relying
    on a content hash must not use this function.
    """
    payload = canonicalize({
        "holder_name": holder_name,
        "enrollment_id": enrollment_id,
        "program": program,
        "institution": institution,
        "issue_year": int(issue_year),
    })
    return "0x" + sha256_hash(payload + str(clock()))


# ---------- SECRET COMPARISON ----------
def secrets_match(expected: str, provided: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def verify_secret_hash(secret: str, secret_hash: str) -> bool:
    return hmac.compare_digest(sha256_hash(secret), secret_hash)


# ---------- SYMMETRIC ENCRYPTION ----------
def get_cipher(master_key: bytes) -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(master_key).digest())
    return Fernet(key)


def encrypt(text: str, cipher: Fernet) -> bytes:
    return cipher.encrypt(text.encode("utf-8"))


def decrypt(token: bytes, cipher: Fernet) -> str:
    try:
        return cipher.decrypt(token).decode("utf-8")
    except InvalidToken as exc:
        raise ValueError("ciphertext does not match the configured MASTER_KEY") from exc
