import pytest
from datetime import timedelta

from conftest import PASSWORD
from dronedesk.auth import create_token, decode_token, hash_password, verify_password
from dronedesk.errors import AuthError


class TestPasswords:
    def test_hash_roundtrip(self):
        stored = hash_password("s3cret-pass")

        assert verify_password("s3cret-pass", stored)
        assert not verify_password("wrong-pass", stored)

    def test_hash_is_bcrypt_and_salted(self):
        first = hash_password("s3cret-pass")
        second = hash_password("s3cret-pass")

        assert first.startswith("$2b$")
        assert first != second

    def test_unrecognised_hash(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestTokens:
    def test_type_checked(self):
        token = create_token("user-1", "refresh")

        assert decode_token(token, "refresh")["sub"] == "user-1"
        with pytest.raises(AuthError) as exc_info:
            decode_token(token, "access")
        assert exc_info.value.detail == "Invalid session"

    def test_expired(self):
        token = create_token("user-1", "access", expires_delta=timedelta(seconds=-30))

        with pytest.raises(AuthError) as exc_info:
            decode_token(token, "access")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Session expired"

    def test_garbage(self):
        with pytest.raises(AuthError):
            decode_token("not.a.token", "access")


class TestAuthRoutes:
    def test_register_sets_session(self, auth_client):
        assert auth_client.cookies.get("access_token")
        assert auth_client.cookies.get("refresh_token")

        me = auth_client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["data"]["user"]["email"] == "dispatch@example.com"

    def test_duplicate_email(self, auth_client):
        response = auth_client.post("/api/auth/register", json={
            "name": "Again", "email": "Dispatch@example.com", "phone": "+971500000001", "password": PASSWORD,
        })

        assert response.status_code == 409
        assert response.json()["resource"] == "user"

    def test_register_validation(self, client):
        response = client.post("/api/auth/register", json={
            "name": "", "email": "nope", "phone": "1", "password": "short",
        })

        assert response.status_code == 400
        paths = {detail["path"] for detail in response.json()["details"]}
        assert paths == {"name", "email", "phone", "password"}

    def test_login_and_logout(self, auth_client):
        auth_client.post("/api/auth/logout")
        auth_client.cookies.clear()
        assert auth_client.get("/api/auth/me").status_code == 401

        bad = auth_client.post("/api/auth/login", json={"email": "dispatch@example.com", "password": "wrong"})
        assert bad.status_code == 401
        assert bad.json() == {"error": "Invalid email or password"}

        good = auth_client.post("/api/auth/login", json={"email": "DISPATCH@example.com", "password": PASSWORD})
        assert good.status_code == 200
        assert auth_client.get("/api/auth/me").status_code == 200

    def test_refresh_issues_new_access_token(self, auth_client):
        auth_client.cookies.delete("access_token")
        assert auth_client.get("/api/schedule").status_code == 401

        refreshed = auth_client.post("/api/auth/refresh")
        assert refreshed.status_code == 200
        assert refreshed.json() == {"message": "Session refreshed"}
        assert auth_client.get("/api/schedule").status_code == 200

    def test_refresh_without_cookie(self, client):
        response = client.post("/api/auth/refresh")

        assert response.status_code == 401
        assert response.json() == {"error": "Missing refresh token"}

    def test_bearer_header_accepted(self, client, auth_client):
        token = auth_client.cookies.get("access_token")
        auth_client.cookies.clear()

        response = client.get("/api/drone", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
