"""
Token service: issues and validates time-boxed access references.

Tokens are stateless. Nothing is stored; a token stops working when it expires
or when the signing secret rotates.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import parse_qs, urlencode, urlsplit

from app.hcard.errors import Expired, InvalidSignature, MalformedToken

from .signing import SigningConfig, canonical_payload, sign, verify

logger = logging.getLogger(__name__)

SECURE_DOCUMENT_PATH = "/secure-document"

_PARAMS = ("documentId", "expiresAt", "subjectId", "signature")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TokenClaims:
    document_id: int
    subject_id: int
    expires_at: int


@dataclass(frozen=True)
class IssuedToken:
    signed_reference: str
    url: str
    expires_at: int

    def to_dict(self) -> dict:
        return {"url": self.url, "expiresAt": self.expires_at}


def parse_signed_reference(signed_reference: str) -> dict[str, str]:
    """
    Pull the four token fields out of a full URL or a bare query string.

    Raises MalformedToken when a field is missing or repeated.
    """
    raw = (signed_reference or "").strip()
    if not raw:
        raise MalformedToken("Empty access reference.")
    query = urlsplit(raw).query if ("?" in raw or "://" in raw) else raw
    parsed = parse_qs(query, keep_blank_values=True)

    fields: dict[str, str] = {}
    for name in _PARAMS:
        values = parsed.get(name) or []
        if len(values) != 1 or not values[0]:
            raise MalformedToken(f"Access reference has no single {name}.")
        fields[name] = values[0]
    return fields


class TokenService:
    def __init__(self, config: SigningConfig, clock: Callable[[], int] = now_ms) -> None:
        self.config = config
        self.clock = clock

    def build_url(self, query: str) -> str:
        return f"{self.config.base_url}{SECURE_DOCUMENT_PATH}?{query}"

    def issue(self, document_id: int, subject_id: int, ttl: int | None = None) -> IssuedToken:
        """``ttl`` is in seconds and defaults to the configured lifetime."""
        ttl_seconds = self.config.ttl_seconds if ttl is None else int(ttl)
        if ttl_seconds <= 0:
            raise ValueError("ttl must be positive")
        expires_at = self.clock() + ttl_seconds * 1000
        payload = canonical_payload(document_id, expires_at, subject_id)
        query = urlencode(
            {
                "documentId": document_id,
                "expiresAt": expires_at,
                "subjectId": subject_id,
                "signature": sign(payload, self.config.secret),
            }
        )
        return IssuedToken(signed_reference=query, url=self.build_url(query), expires_at=expires_at)

    def validate(self, signed_reference: str) -> TokenClaims:
        """Signature first, then expiry; a forged token never reports as merely expired."""
        fields = parse_signed_reference(signed_reference)
        try:
            document_id = int(fields["documentId"])
            expires_at = int(fields["expiresAt"])
            subject_id = int(fields["subjectId"])
        except ValueError:
            raise MalformedToken("Access reference fields are not integers.") from None

        payload = canonical_payload(fields["documentId"], fields["expiresAt"], fields["subjectId"])
        if not verify(payload, fields["signature"], self.config.secret):
            raise InvalidSignature("Signature mismatch.", document_id=fields["documentId"])
        if self.clock() > expires_at:
            raise Expired("Access reference expired.", document_id=document_id, expires_at=expires_at)
        return TokenClaims(document_id=document_id, subject_id=subject_id, expires_at=expires_at)
