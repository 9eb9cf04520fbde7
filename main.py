"""
ASGI entrypoint for deployments.

The FastAPI app lives in `backend/propmarket/main.py` and imports itself as
`propmarket...`, which requires `backend/` to be on `PYTHONPATH`.

With this repo-root module the service can be started with:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import sys
from pathlib import Path


_ROOT = Path(__file__).resolve().parent
_BACKEND_DIR = _ROOT / "backend"

if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from propmarket.main import app  # noqa: E402,F401
