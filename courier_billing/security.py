"""
courier_billing/security.py

Authentication and access control for the billing API.

Key rules:
- Every API request carries a JWT, either as `Authorization: Bearer <token>`
  or in the `token` cookie. The payload is {userId, username, role}.
- Two roles: admin and billing_operator. Admin satisfies every role check;
  billing_operator satisfies only billing_operator checks.
- Cookie-authenticated mutating requests must also pass Flask-WTF CSRF
  validation. Bearer requests are exempt because browsers never attach them
  automatically.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Callable, Dict, Optional

from flask import current_app, g, request
from flask_login import current_user
from jose import JWTError, jwt

from .errors import AuthError, ForbiddenError
from .extensions import csrf, db

logger = logging.getLogger(__name__)

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Endpoints reachable without a token, or that must not demand a CSRF token.
CSRF_EXEMPT_ENDPOINTS = {"auth.login", "auth.logout"}


# ----------------------------------------------------------------------
# JWT
# ----------------------------------------------------------------------
def create_access_token(user, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for `user` with the configured secret and expiry."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=current_app.config["JWT_EXPIRES_MINUTES"])
    payload = {
        "userId": user.id,
        "username": user.username,
        "role": user.role,
        "exp": datetime.utcnow() + expires_delta,
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config["JWT_ALGORITHM"],
    )


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token. Returns None when it is malformed, forged or expired."""
    try:
        return jwt.decode(
            token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config["JWT_ALGORITHM"]],
        )
    except JWTError:
        return None


def token_from_request() -> tuple[Optional[str], Optional[str]]:
    """Return (token, source) where source is 'header' or 'cookie'."""
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        token = header[len("Bearer "):].strip()
        if token:
            return token, "header"
    cookie = request.cookies.get(current_app.config["JWT_COOKIE_NAME"])
    if cookie:
        return cookie, "cookie"
    return None, None


def load_user_from_request(req):
    """Flask-Login request_loader: JWT -> active User (or None)."""
    from .models import User

    token, source = token_from_request()
    if not token:
        return None

    payload = verify_token(token)
    if payload is None:
        logger.info("Rejected invalid or expired token from %s", req.remote_addr)
        return None

    user = db.session.get(User, payload.get("userId"))
    if user is None or not user.is_active:
        return None

    g.auth_source = source
    g.token_payload = payload
    return user


# ----------------------------------------------------------------------
# Roles
# ----------------------------------------------------------------------
def has_role(user, required_role: str) -> bool:
    """
    Role check used by every protected route.

    admin           -> satisfies admin and billing_operator
    billing_operator -> satisfies billing_operator only
    """
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    role = getattr(user, "role", None)
    if required_role == "billing_operator":
        return role in ("admin", "billing_operator")
    return role == required_role


def login_required_api(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: any authenticated user, else 401 JSON."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            raise AuthError("Authentication required")
        return view_func(*args, **kwargs)

    return wrapper


def role_required(role: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator factory: 401 when anonymous, 403 when the role is insufficient.

    Usage:
        @role_required("admin")
        def create_mode(): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            if not current_user.is_authenticated:
                raise AuthError("Authentication required")
            if not has_role(current_user, role):
                raise ForbiddenError(f"Requires role: {role}")
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


# ----------------------------------------------------------------------
# CSRF for cookie sessions
# ----------------------------------------------------------------------
def cookie_csrf_guard() -> None:
    """
    before_request hook: cookie-authenticated writes must carry X-CSRFToken.

    Touching current_user runs the request loader, which records the token source.
    """
    if request.method not in MUTATING_METHODS:
        return None
    if not current_app.config.get("WTF_CSRF_ENABLED", True):
        return None
    if (request.endpoint or "") in CSRF_EXEMPT_ENDPOINTS:
        return None
    if current_user.is_authenticated and g.get("auth_source") == "cookie":
        csrf.protect()
    return None
