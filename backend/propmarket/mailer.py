from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

import requests

from propmarket.config import (
    brevo_api_key,
    brevo_from_email,
    brevo_sender_name,
    email_backend,
    is_local_dev,
    otp_exp_minutes,
    smtp_from_email,
    smtp_host,
    smtp_pass,
    smtp_port,
    smtp_user,
)

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"
SEND_TIMEOUT_SECONDS = 15


class EmailSendError(RuntimeError):
    pass


def _send_via_brevo(*, to_email: str, subject: str, text: str, html: str = "") -> None:
    """
    Brevo transactional email API:
    https://developers.brevo.com/docs/send-a-transactional-email
    """
    key = brevo_api_key()
    if not key:
        raise EmailSendError("BREVO_API_KEY not configured")
    sender_email = (brevo_from_email() or smtp_from_email()).strip()
    if not sender_email:
        raise EmailSendError("BREVO_FROM/SMTP_FROM not configured")

    payload = {
        "sender": {"email": sender_email, "name": brevo_sender_name()},
        "to": [{"email": to_email}],
        "subject": subject,
        "textContent": text,
    }
    if html:
        payload["htmlContent"] = html
    try:
        resp = requests.post(
            BREVO_SEND_URL,
            headers={"api-key": key, "Accept": "application/json"},
            json=payload,
            timeout=SEND_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise EmailSendError(f"Brevo request failed: {e}") from e
    if not (200 <= int(resp.status_code) < 300):
        raise EmailSendError(f"Brevo send failed: HTTP {resp.status_code}: {resp.text[:500]}")


def _send_via_smtp(*, to_email: str, subject: str, text: str, html: str = "") -> None:
    host = smtp_host()
    port = int(smtp_port())
    user = smtp_user()
    password = smtp_pass()
    sender = smtp_from_email()
    if not host:
        raise EmailSendError("SMTP_HOST not configured")
    if not sender:
        raise EmailSendError("SMTP_FROM (or BREVO_FROM/SMTP_USER) not configured")

    msg = EmailMessage()
    msg["From"] = f"{brevo_sender_name()} <{sender}>"
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        if port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, timeout=SEND_TIMEOUT_SECONDS, context=context) as s:
                if user and password:
                    s.login(user, password)
                s.send_message(msg)
            return

        with smtplib.SMTP(host, port, timeout=SEND_TIMEOUT_SECONDS) as s:
            s.ehlo()
            # STARTTLS when offered (typical on 587).
            if s.has_extn("starttls"):
                s.starttls(context=ssl.create_default_context())
                s.ehlo()
            if user and password:
                s.login(user, password)
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


def send_email(*, to_email: str, subject: str, text: str, html: str = "") -> str:
    """
    Deliver one message and return the channel used ("email" or "console").

    Prefers Brevo when configured; otherwise falls back to SMTP.
    """
    to_email = (to_email or "").strip()
    if not to_email or "@" not in to_email:
        raise EmailSendError("Invalid recipient email")

    backend = email_backend()
    if backend in ("console", "log"):
        logger.warning("EMAIL_BACKEND=console: to=%s subject=%s\n%s", to_email, subject, text)
        return "console"

    if backend == "brevo":
        _send_via_brevo(to_email=to_email, subject=subject, text=text, html=html)
        return "email"

    if backend == "smtp":
        _send_via_smtp(to_email=to_email, subject=subject, text=text, html=html)
        return "email"

    # "auto" (default): prefer Brevo when API key is present.
    if brevo_api_key():
        _send_via_brevo(to_email=to_email, subject=subject, text=text, html=html)
        return "email"

    if smtp_host():
        _send_via_smtp(to_email=to_email, subject=subject, text=text, html=html)
        return "email"

    # Dev-friendly fallback (no external email service configured).
    if is_local_dev():
        logger.warning(
            "No email provider configured; printing message in local dev. "
            "Set EMAIL_BACKEND=smtp/brevo (or configure SMTP_/BREVO_ env vars) for real delivery.\n"
            "to=%s subject=%s\n%s",
            to_email,
            subject,
            text,
        )
        return "console"

    raise EmailSendError(
        "Email provider not configured. Set BREVO_API_KEY+BREVO_FROM (Brevo) or SMTP_HOST+SMTP_FROM (SMTP)."
    )


def _otp_html(otp: str, mins: int) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        '<h2 style="color: #333; text-align: center;">PropMarket Login Verification</h2>'
        '<p style="font-size: 16px; color: #666; text-align: center;">Your one-time verification code is:</p>'
        f'<p style="font-size: 32px; font-weight: bold; letter-spacing: 8px; text-align: center;">{otp}</p>'
        f'<p style="font-size: 14px; color: #999; text-align: center;">This code expires in {mins} minutes.</p>'
        '<p style="font-size: 12px; color: #999; text-align: center;">'
        "If you didn't request this code, please ignore this email.</p>"
        "</div>"
    )


def send_otp_email(to_email: str, otp: str) -> str:
    """Notifier used by the OTP flow."""
    mins = otp_exp_minutes()
    subject = "Your PropMarket Login Code"
    text = (
        f"Your PropMarket verification code is: {otp}\n\n"
        f"This code expires in {mins} minutes.\n\n"
        "If you did not request this, you can ignore this email."
    )
    return send_email(to_email=to_email, subject=subject, text=text, html=_otp_html(otp, mins))
