import pytest
from werkzeug.security import generate_password_hash

from app.hcard import auth, create_app
from app.hcard.db import session_scope
from app.hcard.models import Base, DocumentType, Role, User
from app.hcard.storage import LocalStorage
from scripts.init_db import seed_document_types, seed_rbac

SIGNING_SECRET = "test-document-signing-secret"

USERS = (
    ("admin@example.com", "admin"),
    ("inspector@example.com", "inspector"),
    ("applicant@example.com", "applicant"),
    ("other@example.com", "applicant"),
)


def _env(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("DOCUMENT_SIGNING_SECRET", SIGNING_SECRET)
    for k in (
        "DOCUMENT_URL_TTL_SECONDS",
        "PUBLIC_BASE_URL",
        "MAX_DOCUMENT_ATTEMPTS",
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
    ):
        monkeypatch.delenv(k, raising=False)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    _env(monkeypatch, tmp_path)
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_rbac(s)
        seed_document_types(s)
        for email, role_key in USERS:
            u = User(email=email, password_hash=generate_password_hash("pw"), is_active=True)
            u.roles.append(roles[role_key])
            s.add(u)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def storage(tmp_path):
    return LocalStorage(root=tmp_path / "storage")


def login(client, email: str) -> None:
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200, r.json


def user_id(app, email: str) -> int:
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one().id


def doc_type_id(app, key: str) -> int:
    with session_scope(app) as s:
        return s.query(DocumentType).filter(DocumentType.key == key).one().id


def get_user(s, email: str) -> User:
    return s.query(User).filter(User.email == email).one()


def get_role(s, key: str) -> Role:
    return s.query(Role).filter(Role.key == key).one()
