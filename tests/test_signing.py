import string

import pytest

from app.hcard import create_app
from app.hcard.errors import ConfigurationError, Expired, InvalidSignature, MalformedToken, TokenError
from app.hcard.modules.document_access.signing import (
    SigningConfig,
    canonical_payload,
    load_signing_config,
    sign,
    verify,
)
from app.hcard.modules.document_access.tokens import TokenService, parse_signed_reference

SECRET = b"unit-test-secret"
NOW = 1_760_000_000_000


class FakeClock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture()
def clock():
    return FakeClock(NOW)


@pytest.fixture()
def tokens(clock):
    return TokenService(SigningConfig(secret=SECRET, ttl_seconds=600), clock=clock)


def test_sign_is_deterministic_and_unpadded():
    payload = canonical_payload(12, NOW, 7)
    assert payload == f"12.{NOW}.7"
    sig = sign(payload, SECRET)
    assert sig == sign(payload, SECRET)
    assert "=" not in sig
    assert set(sig) <= set(string.ascii_letters + string.digits + "-_")
    assert verify(payload, sig, SECRET)


def test_verify_rejects_other_secret_and_other_payload():
    payload = canonical_payload(12, NOW, 7)
    sig = sign(payload, SECRET)
    assert not verify(payload, sig, b"another-secret")
    assert not verify(canonical_payload(13, NOW, 7), sig, SECRET)
    assert not verify(payload, sig[:-1], SECRET)
    assert not verify(payload, "", SECRET)


def test_issue_validate_round_trip(tokens, clock):
    issued = tokens.issue(42, 7)
    assert issued.expires_at == NOW + 600_000
    assert issued.url.startswith("/secure-document?")

    claims = tokens.validate(issued.url)
    assert claims.document_id == 42
    assert claims.subject_id == 7
    assert clock() < claims.expires_at

    # bare query string works too
    assert tokens.validate(issued.signed_reference) == claims


def test_custom_ttl(tokens):
    issued = tokens.issue(42, 7, ttl=60)
    assert issued.expires_at == NOW + 60_000


def test_valid_at_expiry_and_expired_one_ms_later(tokens, clock):
    issued = tokens.issue(42, 7)

    clock.now = issued.expires_at
    assert tokens.validate(issued.signed_reference).document_id == 42

    clock.now = issued.expires_at + 1
    with pytest.raises(Expired) as exc:
        tokens.validate(issued.signed_reference)
    assert exc.value.public_body() == {"error": "invalid_or_expired", "message": "Link is invalid or has expired."}


def test_any_single_character_tamper_fails(tokens):
    ref = tokens.issue(42, 7).signed_reference
    for i, ch in enumerate(ref):
        replacement = "A" if ch != "A" else "B"
        tampered = ref[:i] + replacement + ref[i + 1 :]
        with pytest.raises(TokenError):
            tokens.validate(tampered)


def test_expired_and_forged_look_the_same_outside(tokens, clock):
    issued = tokens.issue(42, 7)
    forged = issued.signed_reference.replace("subjectId=7", "subjectId=8")
    with pytest.raises(InvalidSignature) as forged_exc:
        tokens.validate(forged)

    clock.now = issued.expires_at + 1
    with pytest.raises(Expired) as expired_exc:
        tokens.validate(issued.signed_reference)

    assert type(forged_exc.value) is not type(expired_exc.value)
    assert forged_exc.value.public_body() == expired_exc.value.public_body()
    assert forged_exc.value.status_code == expired_exc.value.status_code == 403


def test_forged_signature_on_expired_token_reports_invalid_signature(tokens, clock):
    issued = tokens.issue(42, 7)
    clock.now = issued.expires_at + 10_000
    forged = issued.signed_reference.replace("documentId=42", "documentId=43")
    with pytest.raises(InvalidSignature):
        tokens.validate(forged)


@pytest.mark.parametrize(
    "ref",
    [
        "",
        "documentId=1&expiresAt=2&subjectId=3",
        "documentId=1&documentId=2&expiresAt=2&subjectId=3&signature=x",
        "documentId=abc&expiresAt=2&subjectId=3&signature=x",
        "https://example.com/secure-document",
    ],
)
def test_malformed_references(tokens, ref):
    with pytest.raises(MalformedToken):
        tokens.validate(ref)


def test_parse_signed_reference_accepts_full_url():
    fields = parse_signed_reference("https://cards.example.com/secure-document?documentId=1&expiresAt=2&subjectId=3&signature=abc")
    assert fields == {"documentId": "1", "expiresAt": "2", "subjectId": "3", "signature": "abc"}


def test_public_base_url_prefixes_issued_urls(clock):
    svc = TokenService(SigningConfig(secret=SECRET, ttl_seconds=600, base_url="https://cards.example.com"), clock=clock)
    assert svc.issue(1, 2).url.startswith("https://cards.example.com/secure-document?documentId=1&")


def test_signing_config_requires_secret():
    with pytest.raises(ConfigurationError):
        load_signing_config({"DOCUMENT_SIGNING_SECRET": "  "})


@pytest.mark.parametrize("ttl", [0, 59, 3601, "ten"])
def test_signing_config_rejects_ttl_out_of_range(ttl):
    with pytest.raises(ConfigurationError):
        load_signing_config({"DOCUMENT_SIGNING_SECRET": "s", "DOCUMENT_URL_TTL_SECONDS": ttl})


def test_signing_config_repr_hides_secret():
    cfg = load_signing_config({"DOCUMENT_SIGNING_SECRET": "very-secret", "DOCUMENT_URL_TTL_SECONDS": 120})
    assert cfg.ttl_seconds == 120
    assert "very-secret" not in repr(cfg)


def test_create_app_refuses_to_start_without_signing_secret(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DOCUMENT_SIGNING_SECRET", "")
    with pytest.raises(ConfigurationError):
        create_app()
