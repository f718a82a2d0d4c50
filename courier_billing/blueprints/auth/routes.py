"""
Authentication Routes

Provides:
- POST /auth/login       -> {token, user}; the token is also set as the `token` cookie
- POST /auth/logout      -> clears the cookie
- GET  /auth/me          -> current user
- GET  /auth/csrf-token  -> token for cookie-authenticated writes (X-CSRFToken header)
- PUT  /auth/me/bill-template -> save the operator's preferred bill template

Rules:
- Only active users may log in.
- Credentials validated via password hash.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from flask_wtf.csrf import generate_csrf

from ...errors import AuthError, ValidationError
from ...extensions import db
from ...models import Operator, User
from ...services.billing import TEMPLATE_NAMES
from ...security import create_access_token, login_required_api
from ...utils import json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Exchange username/password for a JWT."""
    payload = request.get_json(silent=True) or request.form
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""

    if not username or not password:
        raise ValidationError("Username and password are required", fields=["username", "password"])

    user = User.query.filter_by(username=username).first()
    if not user or not user.check_password(password):
        logger.warning("Failed login for %r from %s", username, request.remote_addr)
        raise AuthError("Invalid username or password")

    if not user.is_active:
        raise AuthError("Account is inactive")

    token = create_access_token(user)
    response = jsonify({"token": token, "user": user.to_dict()})
    response.set_cookie(
        current_app.config["JWT_COOKIE_NAME"],
        token,
        max_age=current_app.config["JWT_EXPIRES_MINUTES"] * 60,
        httponly=True,
        samesite="Lax",
        secure=not current_app.debug and not current_app.testing,
    )
    logger.info("User %s logged in", user.username)
    return response


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Drop the auth cookie. Bearer tokens simply expire."""
    response = jsonify({"ok": True})
    response.delete_cookie(current_app.config["JWT_COOKIE_NAME"])
    return response


# ============================================================
# CURRENT USER
# ============================================================

@auth_bp.route("/me")
@login_required_api
def me():
    return jsonify({"user": current_user.to_dict()})


@auth_bp.route("/csrf-token")
@login_required_api
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})


@auth_bp.route("/me/bill-template", methods=["PUT"])
@login_required_api
def set_bill_template():
    """Template used by /api/bills/generate when the request names none."""
    payload = json_body()
    template = payload.get("template") or None
    if template is not None and template not in TEMPLATE_NAMES:
        raise ValidationError(f"Unknown template: {template}", fields=["template"])

    operator = Operator.query.filter_by(user_id=current_user.id).first()
    if operator is None:
        operator = Operator(user_id=current_user.id)
        db.session.add(operator)
    operator.bill_template = template
    db.session.commit()
    return jsonify({"billTemplate": operator.bill_template})
