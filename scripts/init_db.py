import os
import sys
from pathlib import Path

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hcard.models import DocumentType, Permission, Role, User  # noqa: E402
from app.hcard.rbac import PERMISSIONS, ROLE_PERMISSIONS  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

# key, name, is_medical
DOCUMENT_TYPES: tuple[tuple[str, str, bool], ...] = (
    ("id_photo", "1x1 ID Picture", False),
    ("valid_id", "Valid Government ID", False),
    ("cedula", "Community Tax Certificate (Cedula)", False),
    ("chest_xray", "Chest X-ray", True),
    ("urinalysis", "Urinalysis", True),
    ("stool_exam", "Stool Examination", True),
    ("drug_test", "Drug Test", True),
    ("neuro_exam", "Neuro Exam", True),
    ("hepatitis_b", "Hepatitis B Test", True),
)


def seed_rbac(s: Session) -> dict[str, Role]:
    """Permissions and roles from ``app.hcard.rbac``. Adds what is missing, removes nothing."""
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for role_key, (role_name, perm_keys) in ROLE_PERMISSIONS.items():
        role = s.query(Role).filter(Role.key == role_key).one_or_none()
        if not role:
            role = Role(key=role_key, name=role_name)
            s.add(role)
        for k in perm_keys:
            if perms[k] not in role.permissions:
                role.permissions.append(perms[k])
        roles[role_key] = role
    return roles


def seed_document_types(s: Session) -> None:
    for key, name, is_medical in DOCUMENT_TYPES:
        dt = s.query(DocumentType).filter(DocumentType.key == key).one_or_none()
        if not dt:
            s.add(DocumentType(key=key, name=name, is_medical=is_medical, is_required=True))


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/document types/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@hcard.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///hcard.db").strip()

    # Direct engine/session so this can run in release without building the app.
    with script_session(db_url) as s:
        roles = seed_rbac(s)
        seed_document_types(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
        if roles["admin"] not in user.roles:
            user.roles.append(roles["admin"])

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
