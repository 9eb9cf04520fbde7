from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy import func, select

from propmarket import otp
from propmarket.errors import AccountSuspended, DeliveryError, InvalidOrExpiredCode, NotFoundError, ValidationError
from propmarket.mailer import EmailSendError
from propmarket.models import OtpCode, User
from propmarket.otp import cleanup_expired, complete_onboarding, request_code, verify_code

from conftest import SUPER_ADMIN, make_user

T0 = dt.datetime(2026, 3, 1, 12, 0, 0, tzinfo=dt.timezone.utc)


class CapturingNotifier:
    def __init__(self):
        self.sent = []

    def __call__(self, email, code):
        self.sent.append((email, code))
        return "email"

    @property
    def last_code(self):
        return self.sent[-1][1]


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


@pytest.fixture
def notifier():
    return CapturingNotifier()


def test_request_code_persists_one_six_digit_code(db, notifier):
    delivery = request_code(db, "  A@X.com ", notifier, now=T0)

    assert delivery == "email"
    assert len(notifier.sent) == 1
    email, code = notifier.sent[0]
    assert email == "a@x.com"
    assert len(code) == 6 and code.isdigit()

    rows = db.execute(select(OtpCode).where(OtpCode.email == "a@x.com")).scalars().all()
    assert len(rows) == 1
    assert rows[0].attempt_count == 0
    assert rows[0].consumed is False


def test_request_code_rejects_malformed_email(db, notifier):
    with pytest.raises(ValidationError):
        request_code(db, "not-an-email", notifier, now=T0)
    assert notifier.sent == []


def test_second_request_invalidates_first_code(db, notifier, monkeypatch):
    codes = iter(["111111", "222222"])
    monkeypatch.setattr(otp, "generate_code", lambda length=None: next(codes))

    request_code(db, "a@x.com", notifier, now=T0)
    request_code(db, "a@x.com", notifier, now=T0)

    assert [c for _, c in notifier.sent] == ["111111", "222222"]
    assert db.execute(select(func.count(OtpCode.id)).where(OtpCode.email == "a@x.com")).scalar() == 1
    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db, "a@x.com", "111111", now=T0)
    user, _ = verify_code(db, "a@x.com", "222222", now=T0)
    assert user.email == "a@x.com"


def test_code_validates_at_most_once(db, notifier):
    request_code(db, "a@x.com", notifier, now=T0)
    code = notifier.last_code

    verify_code(db, "a@x.com", code, now=T0)
    db.commit()
    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db, "a@x.com", code, now=T0)


def test_expired_code_fails(db, notifier):
    request_code(db, "a@x.com", notifier, now=T0)
    code = notifier.last_code

    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db, "a@x.com", code, now=T0 + dt.timedelta(minutes=5, seconds=1))


def test_code_still_valid_just_before_expiry(db, notifier):
    request_code(db, "a@x.com", notifier, now=T0)
    user, _ = verify_code(db, "a@x.com", notifier.last_code, now=T0 + dt.timedelta(minutes=4, seconds=59))
    assert user.email == "a@x.com"


def test_wrong_code_then_right_code_for_new_email(db, notifier):
    request_code(db, "a@x.com", notifier, now=T0)
    code = notifier.last_code

    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db, "a@x.com", _wrong(code), now=T0)

    user, is_new = verify_code(db, "a@x.com", code, now=T0)
    db.commit()

    assert is_new is True
    assert user.role == "buyer"
    assert user.onboarding_complete is False
    assert db.execute(select(func.count(User.id)).where(User.email == "a@x.com")).scalar() == 1


def test_failed_attempts_are_counted_and_exhaust_the_code(db, notifier):
    request_code(db, "a@x.com", notifier, now=T0)
    code = notifier.last_code

    for _ in range(5):
        with pytest.raises(InvalidOrExpiredCode):
            verify_code(db, "a@x.com", _wrong(code), now=T0)
        db.rollback()

    row = db.execute(select(OtpCode).where(OtpCode.email == "a@x.com")).scalar_one()
    assert row.attempt_count == 5
    with pytest.raises(InvalidOrExpiredCode):
        verify_code(db, "a@x.com", code, now=T0)


def _stale_credential(session, email):
    return session.execute(select(OtpCode).where(OtpCode.email == email)).scalar_one()


def test_code_read_by_two_sessions_is_accepted_once(session_factory, notifier, monkeypatch):
    first, second = session_factory(), session_factory()
    try:
        request_code(first, "a@x.com", notifier, now=T0)
        code = notifier.last_code
        # `second` has read the row before `first` consumes it.
        stale = _stale_credential(second, "a@x.com")

        verify_code(first, "a@x.com", code, now=T0)
        first.commit()

        monkeypatch.setattr(otp, "_usable_credential", lambda db, email, now: stale)
        with pytest.raises(InvalidOrExpiredCode):
            verify_code(second, "a@x.com", code, now=T0)
    finally:
        first.close()
        second.close()


def test_concurrent_wrong_guesses_cannot_pass_the_attempt_limit(session_factory, notifier, monkeypatch):
    first, second = session_factory(), session_factory()
    try:
        request_code(first, "a@x.com", notifier, now=T0)
        code = notifier.last_code
        stale = _stale_credential(second, "a@x.com")

        for _ in range(5):
            with pytest.raises(InvalidOrExpiredCode):
                verify_code(first, "a@x.com", _wrong(code), now=T0)

        monkeypatch.setattr(otp, "_usable_credential", lambda db, email, now: stale)
        with pytest.raises(InvalidOrExpiredCode):
            verify_code(second, "a@x.com", _wrong(code), now=T0)
        with pytest.raises(InvalidOrExpiredCode):
            verify_code(second, "a@x.com", code, now=T0)

        count = first.execute(select(OtpCode.attempt_count).where(OtpCode.email == "a@x.com")).scalar_one()
        assert count == 5
    finally:
        first.close()
        second.close()


def test_super_admin_email_is_bootstrapped(db, notifier):
    request_code(db, SUPER_ADMIN, notifier, now=T0)
    user, is_new = verify_code(db, SUPER_ADMIN, notifier.last_code, now=T0)

    assert is_new is False
    assert user.role == "admin"
    assert user.is_super_admin is True
    assert user.onboarding_complete is True


def test_existing_super_admin_address_is_upgraded(db, session_factory, notifier):
    make_user(session_factory, SUPER_ADMIN, role="buyer", onboarded=False)

    request_code(db, SUPER_ADMIN, notifier, now=T0)
    user, is_new = verify_code(db, SUPER_ADMIN, notifier.last_code, now=T0)

    assert is_new is False
    assert (user.role, user.is_super_admin, user.onboarding_complete) == ("admin", True, True)


def test_super_admin_bootstrap_disabled_when_unset(db, notifier, monkeypatch):
    monkeypatch.setenv("SUPER_ADMIN_EMAIL", "")
    request_code(db, SUPER_ADMIN, notifier, now=T0)
    user, is_new = verify_code(db, SUPER_ADMIN, notifier.last_code, now=T0)

    assert is_new is True
    assert user.role == "buyer"


def test_returning_but_not_onboarded_user_is_still_new(db, session_factory, notifier):
    make_user(session_factory, "half@x.com", role="buyer", onboarded=False)
    request_code(db, "half@x.com", notifier, now=T0)
    _, is_new = verify_code(db, "half@x.com", notifier.last_code, now=T0)
    assert is_new is True


def test_suspended_user_cannot_log_in_and_code_is_spent(db, session_factory, notifier):
    make_user(session_factory, "gone@x.com", role="buyer", active=False)
    request_code(db, "gone@x.com", notifier, now=T0)
    code = notifier.last_code

    with pytest.raises(AccountSuspended):
        verify_code(db, "gone@x.com", code, now=T0)
    db.rollback()

    row = db.execute(select(OtpCode).where(OtpCode.email == "gone@x.com")).scalar_one()
    assert row.consumed is True


def test_delivery_failure_keeps_code_valid(db):
    def failing(email, code):
        failing.code = code
        raise EmailSendError("SMTP send failed: connection refused")

    with pytest.raises(DeliveryError):
        request_code(db, "a@x.com", failing, now=T0)

    user, _ = verify_code(db, "a@x.com", failing.code, now=T0)
    assert user.email == "a@x.com"


def test_complete_onboarding_rejects_short_fields_and_leaves_user_untouched(db, session_factory):
    u = make_user(session_factory, "new@x.com", role="buyer", onboarded=False)

    with pytest.raises(ValidationError):
        complete_onboarding(db, u.id, "A", "5551234567", "seller")
    with pytest.raises(ValidationError):
        complete_onboarding(db, u.id, "Alice", "555", "seller")
    with pytest.raises(ValidationError):
        complete_onboarding(db, u.id, "Alice", "5551234567", "admin")

    fresh = db.get(User, u.id)
    assert fresh.full_name is None
    assert fresh.phone is None
    assert fresh.role == "buyer"
    assert fresh.onboarding_complete is False


def test_complete_onboarding_sets_fields(db, session_factory):
    u = make_user(session_factory, "new@x.com", role="buyer", onboarded=False)

    user = complete_onboarding(db, u.id, "  Alice Doe ", "5551234567", "Agent")

    assert user.full_name == "Alice Doe"
    assert user.phone == "5551234567"
    assert user.role == "agent"
    assert user.onboarding_complete is True


def test_complete_onboarding_unknown_user(db):
    with pytest.raises(NotFoundError):
        complete_onboarding(db, "missing-id", "Alice", "5551234567", "buyer")


def test_cleanup_expired_removes_expired_and_consumed(db, notifier):
    request_code(db, "old@x.com", notifier, now=T0)
    request_code(db, "used@x.com", notifier, now=T0 + dt.timedelta(minutes=10))
    verify_code(db, "used@x.com", notifier.last_code, now=T0 + dt.timedelta(minutes=10))
    db.commit()
    request_code(db, "live@x.com", notifier, now=T0 + dt.timedelta(minutes=10))

    removed = cleanup_expired(db, now=T0 + dt.timedelta(minutes=11))
    db.commit()

    assert removed == 2
    remaining = db.execute(select(OtpCode.email)).scalars().all()
    assert remaining == ["live@x.com"]
