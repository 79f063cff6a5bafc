from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.ascops.errors import Forbidden, NotAuthenticated
from app.ascops.models import User


def current_user() -> User:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise NotAuthenticated("Authentication required.")
    return user


def user_has_role(user: User | None, *roles: str) -> bool:
    if not user or not user.is_active:
        return False
    return user.role in roles


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_user()
        return fn(*args, **kwargs)

    return wrapped


def require_role(*roles: str, message: str | None = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = current_user()
            # Authenticated but unauthorized -> 403
            if not user_has_role(user, *roles):
                raise Forbidden(message or "Your role does not have permission to perform this action")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
