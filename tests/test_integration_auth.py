"""Integration tests for the /api/auth routes.

Exercises the full request path: cookie and header extraction, session
issuance and revocation, the error envelope and the password flows.
"""

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from conftest import make_settings, register
from taskgate.app import create_app
from taskgate.service.container import Container


def _set_cookie_header(response) -> str:
    return response.headers.get("set-cookie", "")


class TestRegisterAndMe:
    def test_alice_scenario(self, client):
        """Register, read identity, log out, then identity is gone."""
        response = register(client)
        assert response.status_code == 200
        assert response.cookies.get("sid")

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        body = me.json()
        assert body["success"] is True
        assert body["data"]["email"] == "alice@example.com"
        assert body["data"]["role"] == "user"
        assert "password" not in body["data"]

        logout = client.get("/api/auth/logout")
        assert logout.status_code == 200
        assert logout.json() == {"success": True, "data": {}}

        after = client.get("/api/auth/me")
        assert after.status_code == 401
        assert after.json()["success"] is False

    def test_cookie_attributes(self, client):
        header = _set_cookie_header(register(client)).lower()
        assert header.startswith("sid=")
        assert "httponly" in header
        assert "samesite=lax" in header
        assert "path=/" in header
        assert "max-age=86400" in header
        assert "secure" not in header

    def test_cookie_is_secure_in_production(self, tmp_path, email_service):
        settings = make_settings(tmp_path, environment="production", jwt_secret="p" * 48)
        client = TestClient(create_app(container=Container(settings, email=email_service)))
        header = _set_cookie_header(register(client)).lower()
        assert "secure" in header

    def test_register_response_carries_token(self, client):
        body = register(client).json()
        assert body["token"] == client.cookies.get("sid")

    def test_register_rejects_role_field(self, client):
        response = client.post(
            "/api/auth/register",
            json={"name": "Mallory", "email": "m@example.com", "password": "Secret123", "role": "admin"},
        )
        assert response.status_code == 400
        assert "Unexpected field: role" in response.json()["error"]

    def test_duplicate_email_is_409(self, client):
        register(client)
        client.cookies.clear()
        response = register(client, email="ALICE@example.com")
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_weak_password_is_400_with_details(self, client):
        response = register(client, password="secret")
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["details"][0]["field"] == "password"
        assert "at least 8 characters" in body["error"]

    def test_me_without_credential_is_401(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Not authorized to access this route",
        }


class TestLogin:
    def test_five_wrong_logins_all_fail_the_same_way(self, client):
        register(client)
        client.cookies.clear()
        for _ in range(5):
            response = client.post(
                "/api/auth/login", json={"email": "alice@example.com", "password": "Wrong1234"}
            )
            assert response.status_code == 401
            assert response.json()["error"] == "Invalid credentials"

    def test_no_account_enumeration(self, client):
        register(client)
        client.cookies.clear()
        unknown = client.post(
            "/api/auth/login", json={"email": "nobody@example.com", "password": "Secret123"}
        )
        wrong = client.post(
            "/api/auth/login", json={"email": "alice@example.com", "password": "Wrong1234"}
        )
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.content == wrong.content

    def test_missing_fields_is_400(self, client):
        response = client.post("/api/auth/login", json={"email": "alice@example.com"})
        assert response.status_code == 400
        assert response.json()["error"] == "Please provide an email and password"

    def test_login_sets_new_cookie(self, client):
        register(client)
        first = client.cookies.get("sid")
        client.cookies.clear()
        response = client.post(
            "/api/auth/login", json={"email": "alice@example.com", "password": "Secret123"}
        )
        assert response.status_code == 200
        assert response.cookies.get("sid") not in (None, first)

    def test_malformed_json_is_400(self, client):
        response = client.post(
            "/api/auth/login",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestCredentialTransport:
    def test_bearer_header_works_without_cookie(self, client):
        token = register(client).json()["token"]
        client.cookies.clear()
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200

    def test_x_auth_token_header_works(self, client):
        token = register(client).json()["token"]
        client.cookies.clear()
        response = client.get("/api/auth/me", headers={"X-Auth-Token": token})
        assert response.status_code == 200

    def test_cookie_wins_over_bearer(self, client):
        register(client)
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer bogus"})
        assert response.status_code == 200

    def test_expired_session_is_rejected(self, client, container):
        token = register(client).json()["token"]
        container.session_backend.sessions[token].expires_at = (
            datetime.now(timezone.utc) - timedelta(seconds=1)
        )
        assert client.get("/api/auth/me").status_code == 401


class TestLogout:
    def test_logout_is_idempotent_and_clears_cookie(self, client):
        register(client)
        first = client.post("/api/auth/logout")
        second = client.post("/api/auth/logout")
        assert first.status_code == second.status_code == 200
        assert first.json() == second.json() == {"success": True, "data": {}}
        cleared = _set_cookie_header(first).lower()
        assert cleared.startswith("sid=")
        assert "path=/" in cleared
        assert "max-age=0" in cleared

    def test_logged_out_session_cannot_be_replayed(self, client):
        token = register(client).json()["token"]
        client.get("/api/auth/logout")
        client.cookies.clear()
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestUpdatePassword:
    def test_old_credential_fails_after_rotation(self, client):
        old = register(client).json()["token"]
        response = client.put(
            "/api/auth/updatepassword",
            json={"currentPassword": "Secret123", "newPassword": "Better456"},
        )
        assert response.status_code == 200
        new = response.json()["token"]
        assert new != old
        assert client.cookies.get("sid") == new

        client.cookies.clear()
        stale = client.get("/api/auth/me", headers={"Authorization": f"Bearer {old}"})
        assert stale.status_code == 401
        fresh = client.get("/api/auth/me", headers={"Authorization": f"Bearer {new}"})
        assert fresh.status_code == 200

    def test_wrong_current_password_is_401(self, client):
        register(client)
        response = client.put(
            "/api/auth/updatepassword",
            json={"currentPassword": "Wrong1234", "newPassword": "Better456"},
        )
        assert response.status_code == 401

    def test_requires_authentication(self, client):
        response = client.put(
            "/api/auth/updatepassword",
            json={"currentPassword": "Secret123", "newPassword": "Better456"},
        )
        assert response.status_code == 401


class TestUpdateDetails:
    def test_updates_name_and_email(self, client):
        register(client)
        response = client.put(
            "/api/auth/updatedetails", json={"name": "Alice Smith", "email": "Smith@Example.com"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Alice Smith"
        assert response.json()["data"]["email"] == "smith@example.com"

    def test_taken_email_is_409(self, client):
        register(client, email="bob@example.com", name="Bob")
        client.cookies.clear()
        register(client)
        response = client.put("/api/auth/updatedetails", json={"email": "bob@example.com"})
        assert response.status_code == 409


class TestPasswordReset:
    def test_forgot_password_never_reveals_existence(self, client, email_service):
        register(client)
        client.cookies.clear()
        known = client.post("/api/auth/forgotpassword", json={"email": "alice@example.com"})
        unknown = client.post("/api/auth/forgotpassword", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json() == {"success": True, "data": "Email sent"}
        assert len(email_service.sent) == 1

    def test_reset_link_sets_new_password(self, client, email_service):
        register(client)
        client.cookies.clear()
        client.post("/api/auth/forgotpassword", json={"email": "alice@example.com"})
        reset_url = email_service.sent[0][1]
        assert "/api/auth/resetpassword/" in reset_url
        token = reset_url.rsplit("/", 1)[-1]

        response = client.put(f"/api/auth/resetpassword/{token}", json={"password": "Brand9New"})
        assert response.status_code == 200
        assert client.cookies.get("sid")

        client.cookies.clear()
        login = client.post(
            "/api/auth/login", json={"email": "alice@example.com", "password": "Brand9New"}
        )
        assert login.status_code == 200

        reused = client.put(f"/api/auth/resetpassword/{token}", json={"password": "Other9New"})
        assert reused.status_code == 400
        assert reused.json()["error"] == "Invalid token"

    def test_delivery_failure_is_500(self, client, email_service):
        register(client)
        email_service.succeed = False
        response = client.post("/api/auth/forgotpassword", json={"email": "alice@example.com"})
        assert response.status_code == 500
        assert response.json()["error"] == "Email could not be sent"


class TestUpdateAvatar:
    PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

    def test_uploads_image(self, client):
        register(client)
        response = client.put(
            "/api/auth/updateavatar", files={"avatar": ("me.png", self.PNG, "image/png")}
        )
        assert response.status_code == 200
        avatar = response.json()["data"]["avatar"]
        assert avatar["url"].startswith("/media/avatars/avatar_")
        assert client.get(avatar["url"]).content == self.PNG

    def test_replacing_avatar_removes_previous_file(self, client, container):
        register(client)
        first = client.put(
            "/api/auth/updateavatar", files={"avatar": ("a.png", self.PNG, "image/png")}
        ).json()["data"]["avatar"]
        client.put("/api/auth/updateavatar", files={"avatar": ("b.png", self.PNG, "image/png")})
        name = first["public_id"].split("/", 1)[-1]
        assert not (container.avatars.base / name).exists()

    def test_rejects_non_image(self, client):
        register(client)
        response = client.put(
            "/api/auth/updateavatar", files={"avatar": ("notes.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Please upload an image file"

    def test_rejects_oversize_image(self, tmp_path, email_service):
        settings = make_settings(tmp_path, max_upload_bytes=16)
        client = TestClient(create_app(container=Container(settings, email=email_service)))
        register(client)
        response = client.put(
            "/api/auth/updateavatar", files={"avatar": ("big.png", self.PNG, "image/png")}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Please upload an image less than 16"

    def test_missing_file(self, client):
        register(client)
        response = client.put("/api/auth/updateavatar")
        assert response.status_code == 400
        assert response.json()["error"] == "Please upload a file"


class TestTokenModeRoutes:
    def test_token_mode_round_trip(self, tmp_path, email_service):
        settings = make_settings(tmp_path, auth_mode="token")
        client = TestClient(create_app(container=Container(settings, email=email_service)))
        response = register(client)
        assert response.cookies.get("token")
        assert client.get("/api/auth/me").status_code == 200
        client.get("/api/auth/logout")
        assert client.get("/api/auth/me").status_code == 401
