from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.hcard.errors import Unauthenticated, Unauthorized
from app.hcard.models import User

# Holders of this permission may see and act on any applicant's documents.
REVIEW_PERMISSION = "documents.review"

PERMISSIONS: dict[str, str] = {
    "applications.create": "Applications: create own",
    "applications.manage": "Applications: change status",
    "documents.upload": "Documents: upload to own application",
    REVIEW_PERMISSION: "Documents: review, verify and refer",
    "referrals.view": "Referrals: view counts and resubmission queue",
    "access_logs.view": "Document access logs: view",
}

ROLE_PERMISSIONS: dict[str, tuple[str, list[str]]] = {
    "admin": ("Administrator", list(PERMISSIONS)),
    "inspector": (
        "Inspector",
        [REVIEW_PERMISSION, "referrals.view", "access_logs.view"],
    ),
    "applicant": ("Applicant", ["applications.create", "documents.upload"]),
}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def current_user_or_401() -> User:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise Unauthenticated("Sign in required.")
    return user


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = current_user_or_401()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise Unauthorized(f"Missing permission: {permission_key}")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_user_or_401()
        return fn(*args, **kwargs)

    return wrapped
