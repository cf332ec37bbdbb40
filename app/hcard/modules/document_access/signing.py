"""
HMAC signing of document access references.

Pure functions plus the config object they read. The canonical payload is
``"{document_id}.{expires_at_ms}.{subject_id}"``; the signature is HMAC-SHA256
over it, URL-safe base64 without padding.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass

from app.hcard.errors import ConfigurationError

MIN_TTL_SECONDS = 60
MAX_TTL_SECONDS = 3600
DEFAULT_TTL_SECONDS = 600


@dataclass(frozen=True)
class SigningConfig:
    secret: bytes
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    base_url: str = ""

    def __repr__(self) -> str:
        return f"SigningConfig(secret=<redacted>, ttl_seconds={self.ttl_seconds}, base_url={self.base_url!r})"


def load_signing_config(config: dict) -> SigningConfig:
    """Build the signing config from the Flask config mapping. Fails hard on a missing secret."""
    secret = str(config.get("DOCUMENT_SIGNING_SECRET") or "").strip()
    if not secret:
        raise ConfigurationError("DOCUMENT_SIGNING_SECRET is required; refusing to start without it.")

    ttl = config.get("DOCUMENT_URL_TTL_SECONDS")
    if ttl is None or ttl == "":
        ttl = DEFAULT_TTL_SECONDS
    try:
        ttl = int(ttl)
    except (TypeError, ValueError):
        raise ConfigurationError(f"DOCUMENT_URL_TTL_SECONDS must be an integer (got {ttl!r}).") from None
    if not MIN_TTL_SECONDS <= ttl <= MAX_TTL_SECONDS:
        raise ConfigurationError(
            f"DOCUMENT_URL_TTL_SECONDS must be between {MIN_TTL_SECONDS} and {MAX_TTL_SECONDS} (got {ttl})."
        )

    return SigningConfig(
        secret=secret.encode("utf-8"),
        ttl_seconds=ttl,
        base_url=str(config.get("PUBLIC_BASE_URL") or "").strip().rstrip("/"),
    )


def canonical_payload(document_id: int | str, expires_at: int, subject_id: int | str) -> str:
    return f"{document_id}.{expires_at}.{subject_id}"


def sign(payload: str, secret: bytes) -> str:
    digest = hmac.new(secret, payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify(payload: str, signature: str, secret: bytes) -> bool:
    expected = sign(payload, secret)
    if len(expected) != len(signature or ""):
        return False
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii", "replace"))
