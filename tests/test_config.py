import pytest

from app.hcard import create_app
from app.hcard.config import load_settings
from app.hcard.errors import ConfigurationError


@pytest.fixture()
def base_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DOCUMENT_SIGNING_SECRET", "config-test-secret")
    monkeypatch.delenv("DOCUMENT_URL_TTL_SECONDS", raising=False)
    monkeypatch.delenv("MAX_DOCUMENT_ATTEMPTS", raising=False)
    return monkeypatch


def test_defaults(base_env):
    s = load_settings()
    assert s.max_document_attempts == 5
    assert s.document_url_ttl_seconds == 600


@pytest.mark.parametrize("value", ["0", "-3", "five"])
def test_bad_max_attempts_stops_startup(base_env, value):
    base_env.setenv("MAX_DOCUMENT_ATTEMPTS", value)
    with pytest.raises(ConfigurationError):
        create_app()


def test_non_integer_ttl_is_a_configuration_error(base_env):
    base_env.setenv("DOCUMENT_URL_TTL_SECONDS", "ten")
    with pytest.raises(ConfigurationError):
        load_settings()


def test_max_attempts_reaches_flask_config(base_env):
    base_env.setenv("MAX_DOCUMENT_ATTEMPTS", "3")
    app = create_app()
    assert app.config["MAX_DOCUMENT_ATTEMPTS"] == 3
