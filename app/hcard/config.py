import os
from dataclasses import dataclass

from app.hcard.errors import ConfigurationError


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    document_signing_secret: str
    document_url_ttl_seconds: int
    public_base_url: str
    max_document_attempts: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer (got {raw!r})") from None


def load_settings() -> Settings:
    max_attempts = _getenv_int("MAX_DOCUMENT_ATTEMPTS", 5)
    if max_attempts < 1:
        raise ConfigurationError(f"MAX_DOCUMENT_ATTEMPTS must be at least 1 (got {max_attempts}).")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///hcard.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        # No default: a missing secret must stop the process at startup.
        document_signing_secret=_getenv("DOCUMENT_SIGNING_SECRET", ""),
        document_url_ttl_seconds=_getenv_int("DOCUMENT_URL_TTL_SECONDS", 600),
        public_base_url=_getenv("PUBLIC_BASE_URL", ""),
        max_document_attempts=max_attempts,
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "DOCUMENT_SIGNING_SECRET": s.document_signing_secret,
        "DOCUMENT_URL_TTL_SECONDS": s.document_url_ttl_seconds,
        "PUBLIC_BASE_URL": s.public_base_url,
        "MAX_DOCUMENT_ATTEMPTS": s.max_document_attempts,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # evidence uploads (photos, scanned lab results) stay small
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
