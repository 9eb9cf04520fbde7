from __future__ import annotations

import os


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Production deployments should set real environment variables instead.
    """
    from dotenv import load_dotenv

    # Do not override existing environment variables.
    load_dotenv(override=False)


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


def _int_env(name: str, default: int, *, low: int | None = None, high: int | None = None) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        v = int(raw or str(default))
    except ValueError:
        v = default
    if low is not None and v < low:
        v = low
    if high is not None and v > high:
        v = high
    return v


def database_url() -> str:
    url = os.environ.get("DATABASE_URL") or "sqlite:///./local.db"
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def jwt_secret() -> str:
    return os.environ.get("JWT_SECRET") or "dev-secret-change-me"


def access_token_expire_minutes() -> int:
    # One week by default; clients re-run the OTP flow after that.
    return _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 7 * 24 * 60, low=5)


def is_local_dev() -> bool:
    """
    Heuristic for local/dev runs.

    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - test
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=api.example.com,example.com
    """
    raw = (os.environ.get("ALLOWED_HOSTS") or "").strip()
    if not raw:
        return ["*"]
    hosts = [h.strip() for h in raw.split(",") if h.strip()]
    return hosts or ["*"]


def cors_origins() -> list[str]:
    """
    Configure with env `CORS_ORIGINS` as a comma-separated list.
    """
    raw = (os.environ.get("CORS_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8081",
        "http://127.0.0.1:8081",
    ]


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if app_env() in {"prod", "production"}:
        if jwt_secret() == "dev-secret-change-me":
            raise RuntimeError("JWT_SECRET must be set in production (default dev secret detected)")


def super_admin_email() -> str:
    """
    The one address that is promoted to super-admin on its first OTP login.
    Empty disables the bootstrap.
    """
    return (os.environ.get("SUPER_ADMIN_EMAIL") or "").strip().lower()


# -----------------------
# OTP
# -----------------------
def otp_exp_minutes() -> int:
    return _int_env("OTP_EXP_MINUTES", 5, low=1, high=60)


def otp_length() -> int:
    return _int_env("OTP_LENGTH", 6, low=4, high=10)


def otp_max_attempts() -> int:
    return _int_env("OTP_MAX_ATTEMPTS", 5, low=1)


# -----------------------
# Email
# -----------------------
def email_backend() -> str:
    """
    Email backend selector:
    - "auto" (default): prefer Brevo if configured, else SMTP
    - "brevo": force Brevo (requires BREVO_API_KEY + sender)
    - "smtp": force SMTP (requires SMTP_HOST + sender)
    - "console": log email contents instead of sending (dev-only)
    """
    return (os.environ.get("EMAIL_BACKEND") or "auto").strip().lower()


def brevo_api_key() -> str:
    return (os.environ.get("BREVO_API_KEY") or "").strip()


def brevo_from_email() -> str:
    return (os.environ.get("BREVO_FROM") or "").strip()


def brevo_sender_name() -> str:
    return (os.environ.get("BREVO_SENDER_NAME") or "PropMarket").strip()


def smtp_host() -> str:
    return (os.environ.get("SMTP_HOST") or "").strip()


def smtp_port() -> int:
    return _int_env("SMTP_PORT", 587)


def smtp_user() -> str:
    return (os.environ.get("SMTP_USER") or "").strip()


def smtp_pass() -> str:
    return (os.environ.get("SMTP_PASS") or "").strip()


def smtp_from_email() -> str:
    # Allow either SMTP_FROM or BREVO_FROM as the sender address.
    return ((os.environ.get("SMTP_FROM") or "").strip() or brevo_from_email() or smtp_user()).strip()


# -----------------------
# Document storage (Cloudinary)
# -----------------------
def cloudinary_cloud_name() -> str:
    return (os.environ.get("CLOUDINARY_CLOUD_NAME") or "").strip()


def cloudinary_api_key() -> str:
    return (os.environ.get("CLOUDINARY_API_KEY") or "").strip()


def cloudinary_api_secret() -> str:
    return (os.environ.get("CLOUDINARY_API_SECRET") or "").strip()


def cloudinary_folder() -> str:
    return (os.environ.get("CLOUDINARY_FOLDER") or "propmarket/documents").strip() or "propmarket/documents"


def max_document_bytes() -> int:
    return _int_env("MAX_DOCUMENT_MB", 10, low=1, high=100) * 1024 * 1024
