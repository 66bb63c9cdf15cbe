"""Registration, login, sessions and role checks."""

from datetime import timedelta

import pytest

from conftest import auth_headers, get_auth_token
from quickshop.extensions import db
from quickshop.models import SessionToken
from quickshop.services import session_service
from quickshop.services.auth_service import PasswordValidationError, validate_password_strength
from quickshop.time_utils import utcnow


class TestRegistration:

    def test_register_customer(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "email": "Sari@Example.com",
            "password": "Password123!",
            "full_name": "Sari",
        })
        assert resp.status_code == 201
        assert resp.json["user"]["email"] == "sari@example.com"
        assert resp.json["user"]["role"] == "customer"

    def test_duplicate_email(self, client, customer):
        resp = client.post("/api/auth/register", json={"email": customer.email, "password": "Password123!"})
        assert resp.status_code == 400

    @pytest.mark.parametrize("password", ["short1!", "password123!", "PASSWORD123!", "Password!!!", "Password123"])
    def test_weak_passwords(self, password):
        with pytest.raises(PasswordValidationError):
            validate_password_strength(password)

    def test_invalid_phone(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "email": "x@example.com", "password": "Password123!", "phone": "555",
        })
        assert resp.status_code == 400


class TestLogin:

    def test_login_and_me(self, client, customer):
        token = get_auth_token(client, customer.email)
        assert token

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["user"]["id"] == customer.id

    def test_token_stored_hashed(self, client, customer):
        token = get_auth_token(client, customer.email)
        row = db.session.query(SessionToken).one()
        assert row.token_hash == session_service.hash_token(token)
        assert row.token_hash != token

    def test_wrong_password(self, client, customer):
        resp = client.post("/api/auth/login", json={"email": customer.email, "password": "Nope123!x"})
        assert resp.status_code == 401

    def test_logout_revokes(self, client, customer):
        headers = auth_headers(get_auth_token(client, customer.email))
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_idle_timeout(self, client, customer):
        token = get_auth_token(client, customer.email)
        row = db.session.query(SessionToken).one()
        row.last_used_at = utcnow() - timedelta(hours=3)
        db.session.commit()

        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_deactivated_user(self, client, customer):
        token = get_auth_token(client, customer.email)
        customer.is_active = False
        db.session.commit()
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_missing_header(self, client, db_session):
        assert client.get("/api/auth/me").status_code == 401

    def test_cleanup_expired_sessions(self, client, customer):
        get_auth_token(client, customer.email)
        row = db.session.query(SessionToken).one()
        row.created_at = utcnow() - timedelta(days=40)
        row.expires_at = utcnow() - timedelta(days=39)
        db.session.commit()

        assert session_service.cleanup_expired_sessions(retention_days=30) == 1


class TestRoles:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/admin/orders"),
            ("GET", "/api/admin/cancellations"),
            ("GET", "/api/admin/stats"),
            ("GET", "/api/admin/products"),
        ],
    )
    def test_admin_routes_need_admin(self, client, customer_headers, method, path):
        resp = getattr(client, method.lower())(path, headers=customer_headers)
        assert resp.status_code == 403

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/cart"),
            ("PUT", "/api/cart"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders/cancel"),
            ("GET", "/api/admin/orders"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
