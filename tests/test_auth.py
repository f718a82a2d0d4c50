from datetime import timedelta
from types import SimpleNamespace

import pytest

from courier_billing.extensions import db
from courier_billing.models import User
from courier_billing.security import create_access_token, has_role


def _login(client, username="operator", password="secret123"):
    return client.post("/auth/login", json={"username": username, "password": password})


def test_login_returns_token_and_sets_cookie(client):
    response = _login(client)

    assert response.status_code == 200
    body = response.get_json()
    assert body["token"]
    assert body["user"]["username"] == "operator"
    assert "password_hash" not in body["user"]
    cookie = response.headers["Set-Cookie"]
    assert cookie.startswith("token=")
    assert "HttpOnly" in cookie


def test_login_accepts_form_posts(client):
    response = client.post("/auth/login", data={"username": "admin", "password": "secret123"})
    assert response.status_code == 200
    assert response.get_json()["user"]["role"] == "admin"


def test_login_failures(app, client):
    assert _login(client, password="wrong").status_code == 401
    assert _login(client, username="nobody").status_code == 401
    assert client.post("/auth/login", json={"username": "operator"}).status_code == 400

    with app.app_context():
        user = User.query.filter_by(username="operator").one()
        user.is_active = False
        db.session.commit()

    response = _login(client)
    assert response.status_code == 401
    assert response.get_json()["error"] == "Account is inactive"


def test_me_requires_a_valid_token(app, client, operator_headers):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401

    with app.app_context():
        user = User.query.filter_by(username="operator").one()
        expired = create_access_token(user, expires_delta=timedelta(minutes=-1))
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {expired}"}).status_code == 401

    response = client.get("/auth/me", headers=operator_headers)
    assert response.status_code == 200
    assert response.get_json()["user"]["role"] == "billing_operator"


def test_token_signed_with_another_secret_is_rejected(app, client):
    with app.app_context():
        user = User.query.filter_by(username="admin").one()
        app.config["JWT_SECRET_KEY"] = "someone-else"
        forged = create_access_token(user)
        app.config["JWT_SECRET_KEY"] = "test-secret"

    assert client.get("/auth/me", headers={"Authorization": f"Bearer {forged}"}).status_code == 401


def test_token_of_deactivated_user_is_rejected(app, client, operator_headers):
    with app.app_context():
        User.query.filter_by(username="operator").one().is_active = False
        db.session.commit()

    assert client.get("/auth/me", headers=operator_headers).status_code == 401


def test_cookie_session_and_logout(client):
    _login(client)

    assert client.get("/auth/me").status_code == 200

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_cookie_writes_need_a_csrf_token(app, client):
    app.config["WTF_CSRF_ENABLED"] = True
    _login(client)

    rejected = client.put("/auth/me/bill-template", json={"template": "Template 1"})
    assert rejected.status_code == 403
    assert rejected.get_json()["error"] == "CSRF validation failed"

    csrf_token = client.get("/auth/csrf-token").get_json()["csrfToken"]
    accepted = client.put(
        "/auth/me/bill-template", json={"template": "Template 1"}, headers={"X-CSRFToken": csrf_token}
    )
    assert accepted.status_code == 200


def test_bearer_writes_skip_csrf(app, client, operator_headers):
    app.config["WTF_CSRF_ENABLED"] = True

    response = client.put("/auth/me/bill-template", json={"template": "Default"}, headers=operator_headers)

    assert response.status_code == 200


def test_bill_template_must_be_known(client, operator_headers):
    response = client.put("/auth/me/bill-template", json={"template": "Glossy"}, headers=operator_headers)
    assert response.status_code == 400
    assert response.get_json()["fields"] == ["template"]


@pytest.mark.parametrize(
    "role, required, allowed",
    [
        ("admin", "admin", True),
        ("admin", "billing_operator", True),
        ("billing_operator", "billing_operator", True),
        ("billing_operator", "admin", False),
        ("viewer", "billing_operator", False),
        (None, "billing_operator", False),
    ],
)
def test_has_role(role, required, allowed):
    user = SimpleNamespace(is_authenticated=True, role=role)
    assert has_role(user, required) is allowed


def test_has_role_rejects_anonymous_users():
    assert has_role(None, "billing_operator") is False
    assert has_role(SimpleNamespace(is_authenticated=False, role="admin"), "admin") is False


def test_operator_cannot_use_admin_routes(client, operator_headers, admin_headers):
    payload = {"code": "SEA", "title": "Sea"}

    forbidden = client.post("/api/masters/modes", json=payload, headers=operator_headers)
    assert forbidden.status_code == 403
    assert forbidden.get_json()["error"] == "Requires role: admin"

    assert client.post("/api/setup", headers=operator_headers).status_code == 403
    assert client.post("/api/masters/modes", json=payload, headers=admin_headers).status_code == 201
