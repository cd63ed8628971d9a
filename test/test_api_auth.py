from unittest.mock import patch

from fastapi import HTTPException

from factories import AUTH_HEADERS


def signup_form(**overrides):
    form = {
        "display_name": "Ana Pillay",
        "email": "ana@example.com",
        "phone": "082 123 4567",
        "password": "secret1",
        "confirm_password": "secret1",
    }
    form.update(overrides)
    return form


async def test_signup_validation_errors(client, auth_client):
    response = await client.post("/auth/signup", data=signup_form(email="not-an-email", confirm_password="other1"))
    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert set(errors) == {"email", "confirm_password"}
    auth_client.auth.sign_up.assert_not_called()


async def test_signup_success(client):
    payload = {"user": {"id": "user-1", "email": "ana@example.com", "display_name": "Ana Pillay"}, "access_token": "t"}
    with patch("servicefinder.app.supabase_service.sign_up", return_value=payload) as sign_up:
        response = await client.post("/auth/signup", data=signup_form(email="  ana@example.com "))
    assert response.status_code == 201
    assert response.json()["user"]["id"] == "user-1"
    sign_up.assert_called_once_with("ana@example.com", "secret1", display_name="Ana Pillay", phone="082 123 4567")


async def test_signup_duplicate_email(client):
    with patch("servicefinder.app.supabase_service.sign_up",
               side_effect=HTTPException(status_code=409, detail="This email is already registered")):
        response = await client.post("/auth/signup", data=signup_form())
    assert response.status_code == 409
    assert response.json()["detail"] == "This email is already registered"


async def test_signin_requires_fields(client, auth_client):
    response = await client.post("/auth/signin", data={"email": "", "password": ""})
    assert response.status_code == 422
    assert set(response.json()["detail"]["errors"]) == {"email", "password"}
    auth_client.auth.sign_in_with_password.assert_not_called()


async def test_signin_success(client):
    payload = {"user": {"id": "user-1"}, "access_token": "access-1", "refresh_token": "refresh-1"}
    with patch("servicefinder.app.supabase_service.sign_in", return_value=payload) as sign_in:
        response = await client.post("/auth/signin", data={"email": "ana@example.com", "password": "secret1"})
    assert response.status_code == 200
    assert response.json()["access_token"] == "access-1"
    sign_in.assert_called_once_with("ana@example.com", "secret1")


async def test_signout_requires_session(client):
    response = await client.post("/auth/signout")
    assert response.status_code == 401


async def test_signout(client, signed_in_user):
    with patch("servicefinder.app.supabase_service.sign_out") as sign_out:
        response = await client.post("/auth/signout", headers=AUTH_HEADERS)
    assert response.status_code == 200
    sign_out.assert_called_once_with(access_token="test-token")


async def test_invalid_token_is_rejected(client):
    with patch("servicefinder.core.auth.get_user_from_token",
               side_effect=HTTPException(status_code=401, detail="Invalid or expired token")):
        response = await client.get("/profile", headers=AUTH_HEADERS)
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


async def test_password_reset_validates_email(client):
    response = await client.post("/auth/password-reset", data={"email": "nope"})
    assert response.status_code == 422

    with patch("servicefinder.app.supabase_service.send_password_reset") as send:
        response = await client.post("/auth/password-reset", data={"email": "ana@example.com"})
    assert response.status_code == 200
    send.assert_called_once_with("ana@example.com")


async def test_change_password_reauthenticates_first(client, signed_in_user):
    with patch("servicefinder.app.supabase_service") as backend:
        backend.reauthenticate.side_effect = HTTPException(
            status_code=401, detail="Failed to re-authenticate. Please check your password."
        )
        response = await client.patch(
            "/auth/password",
            data={"current_password": "wrong1", "new_password": "brand-new"},
            headers=AUTH_HEADERS,
        )
    assert response.status_code == 401
    backend.reauthenticate.assert_called_once_with("ana@example.com", "wrong1")
    backend.update_user_password.assert_not_called()


async def test_change_password_rejects_short_password(client, signed_in_user):
    response = await client.patch(
        "/auth/password",
        data={"current_password": "secret1", "new_password": "abc"},
        headers=AUTH_HEADERS,
    )
    assert response.status_code == 422
    assert response.json()["detail"]["errors"]["new_password"] == "Password must be at least 6 characters"


async def test_change_email_updates_profile(client, signed_in_user):
    with patch("servicefinder.app.supabase_service") as backend:
        backend.update_user_email.return_value = {"id": "user-1", "email": "new@example.com"}
        response = await client.patch(
            "/auth/email",
            data={"new_email": "new@example.com", "password": "secret1"},
            headers=AUTH_HEADERS,
        )
    assert response.status_code == 200
    backend.update_user_email.assert_called_once_with("user-1", "new@example.com")
    backend.update_user_profile.assert_called_once_with("user-1", {"email": "new@example.com"})


async def test_get_profile(client, signed_in_user):
    profile = {"id": "p1", "uid": "user-1", "display_name": "Ana P"}
    with patch("servicefinder.app.supabase_service.get_user_profile", return_value=profile):
        response = await client.get("/profile", headers=AUTH_HEADERS)
    assert response.json() == {"profile": profile, "display_name": "Ana"}


async def test_update_profile_validates_and_syncs_metadata(client, signed_in_user):
    response = await client.patch("/profile", data={"display_name": "A"}, headers=AUTH_HEADERS)
    assert response.status_code == 422

    with patch("servicefinder.app.supabase_service") as backend:
        backend.update_user_profile.return_value = {"id": "p1", "display_name": "Ana P"}
        response = await client.patch("/profile", data={"display_name": " Ana P "}, headers=AUTH_HEADERS)
    assert response.status_code == 200
    backend.update_user_profile.assert_called_once_with("user-1", {"display_name": "Ana P"})
    backend.update_user_metadata.assert_called_once_with("user-1", {"display_name": "Ana P"})
