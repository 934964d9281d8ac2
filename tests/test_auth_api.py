"""
Tests for merchant registration, login and credential management.
"""

from uuid import UUID

import pytest

from src.domain.models import Merchant

from conftest import MERCHANT_PASSWORD

REGISTRATION = {
    "name": "Loja Teste",
    "email": "Nova@Example.com",
    "password": "secret123",
    "access_token": "TEST-1234567890-abcdef",
    "public_key": "TEST-public-key-abcdef",
}


class TestRegister:
    def test_register_returns_token_and_encrypts_credentials(
        self, client, session, credential_store
    ):
        response = client.post("/auth/register", json=REGISTRATION)

        assert response.status_code == 201
        data = response.json()
        assert data["token"]
        assert data["merchant"]["email"] == "nova@example.com"
        assert data["merchant"]["gateway_configured"] is True
        assert "access_token" not in data["merchant"]

        merchant = session.get(Merchant, UUID(data["merchant"]["id"]))
        assert merchant.access_token != REGISTRATION["access_token"]
        assert credential_store.decrypt(merchant.access_token) == REGISTRATION["access_token"]

    def test_token_works_for_me(self, client):
        token = client.post("/auth/register", json=REGISTRATION).json()["token"]

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["store_name"] == "Loja Teste"

    def test_duplicate_email_conflicts(self, client):
        client.post("/auth/register", json=REGISTRATION)
        response = client.post(
            "/auth/register", json={**REGISTRATION, "email": "nova@example.com"}
        )
        assert response.status_code == 409

    @pytest.mark.parametrize(
        "changes",
        [
            {"email": "invalid"},
            {"password": "123"},
            {"access_token": "sk_live_123"},
            {"public_key": "short"},
            {"name": "A"},
        ],
    )
    def test_invalid_registration(self, client, changes):
        response = client.post("/auth/register", json={**REGISTRATION, **changes})
        assert response.status_code == 400


class TestLogin:
    def test_login(self, client, merchant):
        response = client.post(
            "/auth/login",
            json={"email": merchant.email, "password": MERCHANT_PASSWORD},
        )
        assert response.status_code == 200
        assert response.json()["merchant"]["id"] == str(merchant.id)

    def test_wrong_password(self, client, merchant):
        response = client.post(
            "/auth/login", json={"email": merchant.email, "password": "wrong"}
        )
        assert response.status_code == 401

    def test_unknown_email(self, client):
        response = client.post(
            "/auth/login", json={"email": "ghost@example.com", "password": "whatever"}
        )
        assert response.status_code == 401


class TestBearerToken:
    def test_missing_token(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_token_accepted_as_query_parameter(self, client, merchant, auth_headers):
        token = auth_headers["Authorization"].split(" ", 1)[1]
        response = client.get("/auth/me", params={"token": token})
        assert response.status_code == 200


class TestCredentials:
    def test_update_credentials(self, client, auth_headers, merchant, session, credential_store):
        response = client.put(
            "/auth/credentials",
            json={"access_token": "APP_USR-999-new", "public_key": "APP_USR-public-999"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        session.refresh(merchant)
        assert credential_store.decrypt(merchant.access_token) == "APP_USR-999-new"
        assert merchant.public_key == "APP_USR-public-999"

    def test_invalid_credentials_rejected(self, client, auth_headers):
        response = client.put(
            "/auth/credentials",
            json={"access_token": "nope", "public_key": "APP_USR-public-999"},
            headers=auth_headers,
        )
        assert response.status_code == 400
