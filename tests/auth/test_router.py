import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from identity.auth.dependencies import require_admin
from identity.main import create_app
from identity.rate_limit import configure_limiter, limiter
from shared.constants import Role
from shared.models import Principal

API = "/api/v1/auth"
DOCTOR_PHONE = "9876543210"
SESSION_DETAIL = "Session is no longer valid. Please log in again."


async def _otp_login(client: AsyncClient, role: str = "doctor", phone: str = DOCTOR_PHONE) -> dict:
    resp = await client.post(f"{API}/{role}/login-otp/request", json={"phone": phone})
    assert resp.status_code == 200, resp.text
    resp = await client.post(f"{API}/{role}/login-otp/verify", json={"phone": phone, "otp": "123456"})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient) -> None:
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "identity"}


@pytest.mark.asyncio
async def test_request_id_is_echoed(async_client: AsyncClient) -> None:
    resp = await async_client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert resp.headers["X-Request-ID"] == "abc-123"

    generated = await async_client.get("/health")
    assert len(generated.headers["X-Request-ID"]) == 36


# ── Login OTP ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_otp_request_normalizes_phone(async_client: AsyncClient, doctor, notifier) -> None:
    resp = await async_client.post(f"{API}/doctor/login-otp/request", json={"phone": "098765-43210"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "OTP sent to your phone number.", "phone": DOCTOR_PHONE}
    assert notifier.sms[0][0] == DOCTOR_PHONE


@pytest.mark.asyncio
async def test_login_otp_issues_tokens(async_client: AsyncClient, doctor, notifier) -> None:
    data = await _otp_login(async_client)

    assert notifier.sms == [(DOCTOR_PHONE, "123456", Role.DOCTOR)]
    assert data["account"]["id"] == str(doctor.id)
    assert data["account"]["role"] == "doctor"
    assert data["account"]["status"] == "approved"
    assert "password_hash" not in data["account"]
    assert data["tokens"]["token_type"] == "bearer"

    me = await async_client.get(f"{API}/me", headers=_bearer(data["tokens"]["access_token"]))
    assert me.status_code == 200
    assert me.json() == {"id": str(doctor.id), "role": "doctor"}


@pytest.mark.asyncio
async def test_unknown_role_is_rejected(async_client: AsyncClient) -> None:
    resp = await async_client.post(f"{API}/dentist/login-otp/request", json={"phone": DOCTOR_PHONE})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_nurse_cannot_use_login_otp(async_client: AsyncClient) -> None:
    resp = await async_client.post(f"{API}/nurse/login-otp/request", json={"phone": DOCTOR_PHONE})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unknown_phone(async_client: AsyncClient, notifier) -> None:
    resp = await async_client.post(f"{API}/patient/login-otp/request", json={"phone": "9000000000"})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Invalid phone number or account not found."
    assert notifier.sms == []


@pytest.mark.asyncio
async def test_wrong_otp_reports_remaining_attempts(async_client: AsyncClient, doctor) -> None:
    await async_client.post(f"{API}/doctor/login-otp/request", json={"phone": DOCTOR_PHONE})
    resp = await async_client.post(
        f"{API}/doctor/login-otp/verify", json={"phone": DOCTOR_PHONE, "otp": "000000"}
    )
    assert resp.status_code == 400
    assert "4 attempt(s) remaining" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_malformed_otp_is_validation_error(async_client: AsyncClient, doctor) -> None:
    resp = await async_client.post(
        f"{API}/doctor/login-otp/verify", json={"phone": DOCTOR_PHONE, "otp": "12ab56"}
    )
    assert resp.status_code == 422


# ── Password reset + login ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_password_reset_flow(async_client: AsyncClient, patient, notifier) -> None:
    resp = await async_client.post(f"{API}/patient/password-reset/request", json={"email": "a@b.com"})
    assert resp.status_code == 200
    assert resp.json()["message"] == "OTP sent to registered email address."
    assert notifier.emails == [("a@b.com", "123456", Role.PATIENT)]

    resp = await async_client.post(
        f"{API}/patient/password-reset/verify", json={"email": "a@b.com", "otp": "123456"}
    )
    assert resp.status_code == 200
    reset_token = resp.json()["reset_token"]

    confirm = {"email": "a@b.com", "reset_token": reset_token, "new_password": "NewPass123!"}
    resp = await async_client.post(f"{API}/patient/password-reset/confirm", json=confirm)
    assert resp.status_code == 200
    assert resp.json() == {"message": "Password has been reset successfully."}

    again = await async_client.post(f"{API}/patient/password-reset/confirm", json=confirm)
    assert again.status_code == 400

    old = await async_client.post(f"{API}/patient/login", json={"email": "a@b.com", "password": "OldPass123!"})
    assert old.status_code == 401
    new = await async_client.post(f"{API}/patient/login", json={"email": "a@b.com", "password": "NewPass123!"})
    assert new.status_code == 200
    assert new.json()["account"]["email"] == "a@b.com"


@pytest.mark.asyncio
async def test_password_reset_unknown_email(async_client: AsyncClient, notifier) -> None:
    resp = await async_client.post(f"{API}/admin/password-reset/request", json={"email": "x@b.com"})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Account not found with provided email."
    assert notifier.emails == []


@pytest.mark.asyncio
async def test_short_new_password_is_rejected(async_client: AsyncClient) -> None:
    resp = await async_client.post(
        f"{API}/patient/password-reset/confirm",
        json={"email": "a@b.com", "reset_token": "t", "new_password": "short"},
    )
    assert resp.status_code == 422


# ── Refresh / logout ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_refresh_rotation(async_client: AsyncClient, doctor) -> None:
    tokens = (await _otp_login(async_client))["tokens"]

    resp = await async_client.post(f"{API}/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 200
    rotated = resp.json()
    assert rotated["refresh_token"] != tokens["refresh_token"]

    reused = await async_client.post(f"{API}/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401
    assert reused.json()["detail"] == SESSION_DETAIL
    assert reused.headers["WWW-Authenticate"] == "Bearer"

    wrong_type = await async_client.post(f"{API}/refresh", json={"refresh_token": rotated["access_token"]})
    assert wrong_type.status_code == 401
    assert wrong_type.json()["detail"] == SESSION_DETAIL


@pytest.mark.asyncio
async def test_logout_revokes_tokens(async_client: AsyncClient, doctor) -> None:
    tokens = (await _otp_login(async_client))["tokens"]
    headers = _bearer(tokens["access_token"])

    resp = await async_client.post(
        f"{API}/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers
    )
    assert resp.status_code == 204

    me = await async_client.get(f"{API}/me", headers=headers)
    assert me.status_code == 401
    assert me.json()["detail"] == SESSION_DETAIL
    assert "revoked" not in me.text

    refresh = await async_client.post(f"{API}/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refresh.status_code == 401


@pytest.mark.asyncio
async def test_logout_never_fails(async_client: AsyncClient) -> None:
    resp = await async_client.post(f"{API}/logout", headers=_bearer("garbage"))
    assert resp.status_code == 204
    resp = await async_client.post(f"{API}/logout")
    assert resp.status_code == 204


@pytest.mark.asyncio
async def test_me_requires_token(async_client: AsyncClient) -> None:
    resp = await async_client.get(f"{API}/me")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Authentication required."


# ── Role guard ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_require_admin(app, async_client: AsyncClient, doctor, make_account) -> None:
    @app.get("/admin-only")
    async def admin_only(principal: Principal = Depends(require_admin)) -> dict:
        return {"id": str(principal.id)}

    doctor_tokens = (await _otp_login(async_client))["tokens"]
    resp = await async_client.get("/admin-only", headers=_bearer(doctor_tokens["access_token"]))
    assert resp.status_code == 403

    admin = await make_account(Role.ADMIN, email="root@example.com", password="AdminPass123!")
    login = await async_client.post(
        f"{API}/admin/login", json={"email": "root@example.com", "password": "AdminPass123!"}
    )
    assert login.status_code == 200
    resp = await async_client.get(
        "/admin-only", headers=_bearer(login.json()["tokens"]["access_token"])
    )
    assert resp.status_code == 200
    assert resp.json() == {"id": str(admin.id)}


# ── Rate limiting ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_otp_request_is_rate_limited(settings, session_factory, notifier) -> None:
    limited = create_app(
        settings.model_copy(update={"rate_limit_enabled": True}),
        session_factory=session_factory,
        notifier=notifier,
    )
    limiter.reset()
    try:
        async with AsyncClient(transport=ASGITransport(app=limited), base_url="http://test") as client:
            statuses = [
                (await client.post(f"{API}/patient/login-otp/request", json={"phone": "9000000000"})).status_code
                for _ in range(5)
            ]
    finally:
        limiter.reset()
        limiter.enabled = False
    assert statuses[0] == 404
    assert statuses[-1] == 429


def test_limiter_is_shared_by_every_app(settings, session_factory, notifier) -> None:
    try:
        on = create_app(
            settings.model_copy(update={"rate_limit_enabled": True}),
            session_factory=session_factory,
            notifier=notifier,
        )
        assert on.state.limiter is limiter
        assert limiter.enabled

        off = create_app(settings, session_factory=session_factory, notifier=notifier)
        assert off.state.limiter is on.state.limiter
        assert not limiter.enabled

        assert configure_limiter(settings.model_copy(update={"rate_limit_enabled": True})) is limiter
        assert limiter.enabled
    finally:
        limiter.enabled = False
