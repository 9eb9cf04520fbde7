"""
Provision the super-admin account ahead of its first OTP login.

Uses the address given on the command line, else SUPER_ADMIN_EMAIL:
  python backend/scripts/bootstrap_admin.py owner@example.com
"""

from __future__ import annotations

import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import select  # noqa: E402

from propmarket.config import super_admin_email  # noqa: E402
from propmarket.db import session_scope  # noqa: E402
from propmarket.models import User  # noqa: E402
from propmarket.otp import normalize_email  # noqa: E402


def main() -> None:
    raw = sys.argv[1] if len(sys.argv) > 1 else super_admin_email()
    if not raw:
        raise SystemExit("Pass an email or set SUPER_ADMIN_EMAIL")
    email = normalize_email(raw)

    with session_scope() as db:
        user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is None:
            user = User(email=email)
            db.add(user)
        user.role = "admin"
        user.is_super_admin = True
        user.is_active = True
        user.onboarding_complete = True

    print(f"Super admin ready: {email}")


if __name__ == "__main__":
    main()
