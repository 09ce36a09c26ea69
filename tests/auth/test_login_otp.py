from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from identity.auth import otp, service
from identity.auth.models import LoginOTPChallenge
from identity.auth.utils import utcnow
from identity.exceptions import (
    AccountNotFound,
    AccountPendingApproval,
    ChallengeNotFound,
    InvalidOTP,
    InvalidPhone,
    OTPExhausted,
    OTPExpired,
    UnsupportedRole,
    UserInactive,
)
from shared.constants import ApprovalStatus, Role

DOCTOR_PHONE = "9876543210"


async def _challenge_count(session) -> int:
    return await session.scalar(select(func.count()).select_from(LoginOTPChallenge))


async def _get_challenge(session) -> LoginOTPChallenge:
    result = await session.execute(
        select(LoginOTPChallenge).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _request(session, directory, settings, phone=DOCTOR_PHONE, role=Role.DOCTOR):
    issued = await service.request_login_otp(session, directory, settings, role=role, phone=phone)
    await session.commit()
    return issued


async def _verify(session, directory, code, phone=DOCTOR_PHONE, role=Role.DOCTOR):
    return await service.verify_login_otp(session, directory, role=role, phone=phone, code=code)


# ── Request ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_request_and_verify_returns_account(db_session, directory, settings, doctor) -> None:
    issued = await _request(db_session, directory, settings)
    assert issued.destination == DOCTOR_PHONE
    assert issued.code == "123456"

    challenge = await _get_challenge(db_session)
    assert challenge.attempts == 0
    assert challenge.max_attempts == 5
    assert challenge.otp_hash != "123456"

    account = await _verify(db_session, directory, "123456")
    assert account.id == doctor.id
    assert account.last_login_at is not None
    assert await _challenge_count(db_session) == 0


@pytest.mark.asyncio
async def test_request_normalizes_phone(db_session, directory, settings, doctor) -> None:
    issued = await _request(db_session, directory, settings, phone="0 98765-43210")
    assert issued.destination == DOCTOR_PHONE
    account = await _verify(db_session, directory, "123456", phone="(098765) 43210")
    assert account.id == doctor.id


@pytest.mark.asyncio
async def test_short_phone_is_invalid(db_session, directory, settings, doctor) -> None:
    with pytest.raises(InvalidPhone):
        await _request(db_session, directory, settings, phone="0123-456")


@pytest.mark.asyncio
async def test_unknown_phone_has_generic_message(db_session, directory, settings) -> None:
    with pytest.raises(AccountNotFound) as exc:
        await _request(db_session, directory, settings, phone="9000000000")
    assert exc.value.detail == "Invalid phone number or account not found."
    assert await _challenge_count(db_session) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [Role.NURSE, Role.ADMIN])
async def test_roles_without_login_otp(db_session, directory, settings, role) -> None:
    with pytest.raises(UnsupportedRole):
        await _request(db_session, directory, settings, role=role)


@pytest.mark.asyncio
async def test_inactive_account_cannot_request(db_session, directory, settings, make_account) -> None:
    await make_account(Role.PATIENT, email="off@example.com", phone=DOCTOR_PHONE, is_active=False)
    with pytest.raises(UserInactive):
        await _request(db_session, directory, settings, role=Role.PATIENT)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [ApprovalStatus.PENDING, ApprovalStatus.REJECTED])
async def test_unapproved_provider_cannot_request(
    db_session, directory, settings, make_account, status
) -> None:
    await make_account(Role.PHARMACY, email="rx@example.com", phone=DOCTOR_PHONE, status=status)
    with pytest.raises(AccountPendingApproval) as exc:
        await _request(db_session, directory, settings, role=Role.PHARMACY)
    assert exc.value.status_code == 403
    assert exc.value.approval_status == status


@pytest.mark.asyncio
async def test_same_phone_different_roles_are_separate(
    db_session, directory, settings, doctor, make_account
) -> None:
    await make_account(Role.PATIENT, email="p@example.com", phone=DOCTOR_PHONE)
    await _request(db_session, directory, settings, role=Role.DOCTOR)
    await _request(db_session, directory, settings, role=Role.PATIENT)
    assert await _challenge_count(db_session) == 2


# ── Replacement ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_new_request_replaces_previous_code(
    db_session, directory, settings, doctor, monkeypatch
) -> None:
    codes = iter(["111111", "222222"])
    monkeypatch.setattr(otp, "generate_code", lambda *, random_codes: next(codes))

    await _request(db_session, directory, settings)
    await _request(db_session, directory, settings)
    assert await _challenge_count(db_session) == 1

    with pytest.raises(InvalidOTP):
        await _verify(db_session, directory, "111111")
    account = await _verify(db_session, directory, "222222")
    assert account.id == doctor.id


@pytest.mark.asyncio
async def test_new_request_resets_attempts(db_session, directory, settings, doctor) -> None:
    await _request(db_session, directory, settings)
    with pytest.raises(InvalidOTP):
        await _verify(db_session, directory, "000000")
    assert (await _get_challenge(db_session)).attempts == 1

    await _request(db_session, directory, settings)
    assert (await _get_challenge(db_session)).attempts == 0


# ── Attempts ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_attempt_exhaustion_deletes_challenge(db_session, directory, settings, doctor) -> None:
    await _request(db_session, directory, settings)

    for remaining in (4, 3, 2, 1):
        with pytest.raises(InvalidOTP) as exc:
            await _verify(db_session, directory, "000000")
        assert exc.value.attempts_remaining == remaining

    with pytest.raises(OTPExhausted):
        await _verify(db_session, directory, "000000")
    assert await _challenge_count(db_session) == 0

    with pytest.raises(ChallengeNotFound):
        await _verify(db_session, directory, "123456")


@pytest.mark.asyncio
async def test_failed_attempt_survives_rollback(db_session, session_factory, directory, settings, doctor) -> None:
    await _request(db_session, directory, settings)
    with pytest.raises(InvalidOTP):
        await _verify(db_session, directory, "000000")
    await db_session.rollback()

    async with session_factory() as other:
        assert (await _get_challenge(other)).attempts == 1


@pytest.mark.asyncio
async def test_exhausted_counter_is_checked_before_code(db_session, directory, settings, doctor) -> None:
    await _request(db_session, directory, settings)
    await db_session.execute(update(LoginOTPChallenge).values(attempts=5))
    await db_session.commit()

    with pytest.raises(OTPExhausted):
        await _verify(db_session, directory, "123456")
    assert await _challenge_count(db_session) == 0


@pytest.mark.asyncio
async def test_verify_without_challenge(db_session, directory, doctor) -> None:
    with pytest.raises(ChallengeNotFound):
        await _verify(db_session, directory, "123456")


# ── Expiry ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_expired_challenge_is_deleted(db_session, directory, settings, doctor) -> None:
    await _request(db_session, directory, settings)
    await db_session.execute(
        update(LoginOTPChallenge).values(otp_expires_at=utcnow() - timedelta(seconds=1))
    )
    await db_session.commit()

    with pytest.raises(OTPExpired):
        await _verify(db_session, directory, "123456")
    assert await _challenge_count(db_session) == 0


@pytest.mark.asyncio
async def test_challenge_valid_until_expiry(db_session, directory, settings, doctor) -> None:
    await _request(db_session, directory, settings)
    await db_session.execute(
        update(LoginOTPChallenge).values(otp_expires_at=utcnow() + timedelta(seconds=5))
    )
    await db_session.commit()

    account = await _verify(db_session, directory, "123456")
    assert account.id == doctor.id


@pytest.mark.asyncio
async def test_account_removed_after_request(db_session, directory, settings, doctor) -> None:
    await _request(db_session, directory, settings)
    await db_session.delete(await db_session.get(type(doctor), doctor.id))
    await db_session.commit()

    with pytest.raises(AccountNotFound):
        await _verify(db_session, directory, "123456")
    # The code is spent either way
    assert await _challenge_count(db_session) == 0
