"""
Delete expired and already-used login codes.

Run from cron, e.g. every hour:
  python backend/scripts/cleanup_otps.py
"""

from __future__ import annotations

import logging
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from propmarket.db import session_scope  # noqa: E402
from propmarket.otp import cleanup_expired  # noqa: E402


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    with session_scope() as db:
        removed = cleanup_expired(db)
    logging.getLogger("cleanup_otps").info("Removed %s OTP rows", removed)


if __name__ == "__main__":
    main()
