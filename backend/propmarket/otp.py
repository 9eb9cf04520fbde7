"""
Passwordless login: email one-time codes, identity resolution and onboarding.

Only one live code exists per email; asking for a new one replaces the old
one. Every failed check (wrong code, expired, already used, too many
attempts) surfaces as the same InvalidOrExpiredCode so callers cannot tell
which condition tripped.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
import secrets
from typing import Callable

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from propmarket.config import otp_exp_minutes, otp_length, otp_max_attempts, super_admin_email
from propmarket.errors import (
    AccountSuspended,
    DeliveryError,
    InvalidOrExpiredCode,
    NotFoundError,
    ValidationError,
)
from propmarket.mailer import EmailSendError
from propmarket.models import ONBOARDING_ROLES, OtpCode, User

logger = logging.getLogger(__name__)

# (email, code) -> delivery channel
Notifier = Callable[[str, str], str]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def normalize_email(email: str) -> str:
    e = (email or "").strip().lower()
    if not _EMAIL_RE.match(e):
        raise ValidationError("Please enter a valid email")
    return e


def generate_code(length: int | None = None) -> str:
    n = int(length or otp_length())
    return f"{secrets.randbelow(10 ** n):0{n}d}"


def request_code(db: Session, email: str, notifier: Notifier, *, now: dt.datetime | None = None) -> str:
    """
    Issue a fresh code for `email` and hand it to `notifier`.

    The credential is committed before delivery, so a failed send leaves a
    valid code behind; resending simply supersedes it.
    """
    email = normalize_email(email)
    now = now or _utcnow()
    code = generate_code()

    db.execute(delete(OtpCode).where(OtpCode.email == email))
    db.add(
        OtpCode(
            email=email,
            code=code,
            expires_at=now + dt.timedelta(minutes=otp_exp_minutes()),
            attempt_count=0,
            consumed=False,
            created_at=now,
        )
    )
    db.commit()

    try:
        delivery = notifier(email, code)
    except EmailSendError as e:
        logger.warning("OTP delivery failed for %s: %s", email, e)
        raise DeliveryError(str(e) or DeliveryError.default_message) from e
    logger.info("OTP issued for %s via %s", email, delivery)
    return delivery


def _usable(now: dt.datetime):
    return (
        (OtpCode.consumed.is_(False))
        & (OtpCode.attempt_count < otp_max_attempts())
        & (OtpCode.expires_at > now)
    )


def _usable_credential(db: Session, email: str, now: dt.datetime) -> OtpCode | None:
    return (
        db.execute(select(OtpCode).where((OtpCode.email == email) & _usable(now)).order_by(OtpCode.id.desc()))
        .scalars()
        .first()
    )


def _claim(db: Session, cred: OtpCode, now: dt.datetime, **values) -> bool:
    """
    Write `values` to the credential only while it is still usable.

    Check and write are a single UPDATE, so when two requests race on the
    same row only one of them gets rowcount 1.
    """
    res = db.execute(
        update(OtpCode)
        .where((OtpCode.id == cred.id) & _usable(now))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.expire(cred)
    return res.rowcount == 1


def _resolve_identity(db: Session, email: str) -> User:
    is_super = bool(super_admin_email()) and email == super_admin_email()
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()

    if user is None:
        if is_super:
            user = User(email=email, role="admin", is_super_admin=True, onboarding_complete=True)
        else:
            user = User(email=email, role="buyer", is_super_admin=False, onboarding_complete=False)
        db.add(user)
        db.flush()
        logger.info("Created identity %s for %s (super_admin=%s)", user.id, email, is_super)
        return user

    if is_super and not (user.is_super_admin and user.onboarding_complete and user.role == "admin"):
        # Self-heal a bootstrap address that was created before the flag existed.
        user.role = "admin"
        user.is_super_admin = True
        user.onboarding_complete = True
        db.add(user)
        db.flush()
        logger.info("Upgraded %s to super-admin", email)
    return user


def verify_code(db: Session, email: str, code: str, *, now: dt.datetime | None = None) -> tuple[User, bool]:
    """
    Check `code` for `email`, consume it, and return (user, is_new_user).

    `is_new_user` is true whenever onboarding is still pending, which also
    routes returning-but-unfinished accounts through onboarding.
    """
    email = normalize_email(email)
    now = now or _utcnow()
    submitted = (code or "").strip()

    cred = _usable_credential(db, email, now)
    if cred is None:
        raise InvalidOrExpiredCode()

    if not secrets.compare_digest(cred.code, submitted):
        _claim(db, cred, now, attempt_count=OtpCode.attempt_count + 1)
        # Persist the failed attempt; the request session rolls back on the error below.
        db.commit()
        logger.info("OTP mismatch for %s", email)
        raise InvalidOrExpiredCode()

    if not _claim(db, cred, now, consumed=True):
        db.rollback()
        logger.info("OTP for %s was spent by a concurrent request", email)
        raise InvalidOrExpiredCode()
    user = _resolve_identity(db, email)

    if not user.is_active:
        # The code is spent even though login is refused.
        db.commit()
        raise AccountSuspended()

    return user, not user.onboarding_complete


def validate_profile_fields(full_name: str, phone: str) -> tuple[str, str]:
    name = (full_name or "").strip()
    ph = (phone or "").strip()
    if len(name) < 2:
        raise ValidationError("Full name must be at least 2 characters")
    if len(ph) < 10:
        raise ValidationError("Phone number must be at least 10 characters")
    return name, ph


def complete_onboarding(db: Session, user_id: str, full_name: str, phone: str, role: str) -> User:
    # Validate everything before touching the row.
    name, ph = validate_profile_fields(full_name, phone)
    r = (role or "").strip().lower()
    if r not in ONBOARDING_ROLES:
        raise ValidationError("Role must be buyer, seller or agent")

    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    user.full_name = name
    user.phone = ph
    # The bootstrap admin keeps its role.
    if user.role != "admin":
        user.role = r
    user.onboarding_complete = True
    db.add(user)
    db.flush()
    return user


def cleanup_expired(db: Session, *, now: dt.datetime | None = None) -> int:
    """Delete expired and consumed credentials. Returns the number of rows removed."""
    now = now or _utcnow()
    res = db.execute(
        delete(OtpCode)
        .where(or_(OtpCode.expires_at <= now, OtpCode.consumed.is_(True)))
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)
