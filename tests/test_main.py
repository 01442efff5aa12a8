import asyncio
from datetime import timedelta

from citypulse import auth_utils
from citypulse.models.user import User

from .conftest import REGISTRATION


# -------------------------------------------------------
# ✅ General Endpoint Tests
# -------------------------------------------------------

def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "CityPulse API is running."}


def test_liveness_check(client):
    response = client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


def test_readiness_check(client):
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert response.json()["success"] is False


# -------------------------------------------------------
# 🔐 Register
# -------------------------------------------------------

def test_register_user_success(client, register, db_session):
    response = register()
    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["user"]["email"] == "a@x.com"
    assert data["user"]["firstName"] == "Asha"
    assert data["user"]["role"] == "citizen"
    assert data["user"]["avatar"] is None
    assert "password" not in data["user"]

    stored = db_session.query(User).filter(User.email == "a@x.com").one()
    assert stored.password_hash != REGISTRATION["password"]


def test_register_with_avatar(client, media_store):
    response = client.post(
        "/auth/register",
        data=REGISTRATION,
        files={"avatar": ("me.png", b"\x89PNG", "image/png")},
    )
    assert response.status_code == 201
    assert response.json()["user"]["avatar"].startswith("https://media.test/users/")


def test_register_avatar_failure_returns_generic_500(client, media_store, db_session):
    media_store.fail_names.add("me.png")
    response = client.post(
        "/auth/register",
        data=REGISTRATION,
        files={"avatar": ("me.png", b"\x89PNG", "image/png")},
    )
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Server error"}
    assert db_session.query(User).count() == 0


def test_register_user_duplicate_email(client, register, db_session):
    assert register().status_code == 201

    response = register(firstName="Another")
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "User already exists"}
    assert db_session.query(User).count() == 1


def test_register_missing_field_is_validation_error(client):
    form = {k: v for k, v in REGISTRATION.items() if k != "lastName"}
    response = client.post("/auth/register", data=form)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert any(err["field"] == "lastName" for err in body["errors"])


def test_register_invalid_email(client, register):
    response = register(email="not-an-email")
    assert response.status_code == 400


# -------------------------------------------------------
# 🔑 Login
# -------------------------------------------------------

def test_login_user_success(client, login):
    data = login()
    assert data["success"] is True
    assert data["user"]["email"] == "a@x.com"
    assert data["token"]
    assert data["refreshToken"]


def test_login_invalid_credentials(client, register):
    register()
    wrong_password = client.post("/auth/login", json={"email": "a@x.com", "password": "nope-nope"})
    unknown_user = client.post("/auth/login", json={"email": "b@x.com", "password": "Passw0rd"})

    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json() == {
        "success": False,
        "message": "Invalid email or password",
    }


# -------------------------------------------------------
# 🔄 Refresh & Logout
# -------------------------------------------------------

def test_refresh_rotation_scenario(client, login):
    first = login()
    refresh1 = first["refreshToken"]

    response = client.post("/auth/refresh", json={"refreshToken": refresh1})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["token"]
    assert data["refreshToken"] != refresh1

    replay = client.post("/auth/refresh", json={"refreshToken": refresh1})
    assert replay.status_code == 401
    assert replay.json()["success"] is False


def test_login_invalidates_previous_refresh_token(client, login):
    old = login()["refreshToken"]
    login()
    response = client.post("/auth/refresh", json={"refreshToken": old})
    assert response.status_code == 401


def test_refresh_requires_token(client):
    response = client.post("/auth/refresh", json={})
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Refresh token is required"}


def test_refresh_rejects_access_token(client, login):
    access = login()["token"]
    response = client.post("/auth/refresh", json={"refreshToken": access})
    assert response.status_code == 401


def test_logout_revokes_refresh_token(client, login):
    data = login()
    headers = {"Authorization": f"Bearer {data['token']}"}

    response = client.post("/auth/logout", headers=headers)
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = client.post("/auth/refresh", json={"refreshToken": data["refreshToken"]})
    assert response.status_code == 401


# -------------------------------------------------------
# 👤 Profile
# -------------------------------------------------------

def test_get_profile_success(client, auth_headers):
    response = client.get("/auth/me", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["user"]["email"] == "a@x.com"
    assert data["user"]["lastName"] == "Rao"


def test_get_profile_missing_token(client):
    response = client.get("/auth/me")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_get_profile_invalid_token(client):
    headers = {"Authorization": "Bearer invalidtoken"}
    response = client.get("/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Not authorized, token failed"}


def test_get_profile_expired_token(client, register, db_session):
    register()
    user = db_session.query(User).filter(User.email == "a@x.com").one()
    token = auth_utils.issue_access_token(user.user_id, expires_delta=timedelta(seconds=-1))

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_get_profile_with_refreshed_access_token(client, login):
    refreshed = client.post("/auth/refresh", json={"refreshToken": login()["refreshToken"]})
    headers = {"Authorization": f"Bearer {refreshed.json()['token']}"}
    response = client.get("/auth/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "a@x.com"


def test_register_rejects_non_image_avatar(client, media_store, db_session):
    response = client.post(
        "/auth/register",
        data=REGISTRATION,
        files={"avatar": ("notes.txt", b"hello", "text/plain")},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["errors"][0]["field"] == "avatar"
    assert media_store.files == {}
    assert db_session.query(User).count() == 0


def test_register_hashes_off_the_event_loop(client, monkeypatch):
    seen = {}
    real_hash = auth_utils.hash_password

    def spy(password):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False
        return real_hash(password)

    monkeypatch.setattr(auth_utils, "hash_password", spy)
    response = client.post("/auth/register", data=REGISTRATION)
    assert response.status_code == 201
    assert seen == {"on_loop": False}
