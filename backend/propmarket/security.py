from __future__ import annotations

import datetime as dt

import jwt

from propmarket.config import access_token_expire_minutes, jwt_secret


def create_access_token(*, user_id: str, role: str) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    exp = now + dt.timedelta(minutes=access_token_expire_minutes())
    payload = {"sub": str(user_id), "role": role, "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(payload, jwt_secret(), algorithm="HS256")


def decode_access_token(token: str) -> dict:
    # Raises jwt.InvalidTokenError (incl. ExpiredSignatureError) on bad tokens.
    return jwt.decode(token, jwt_secret(), algorithms=["HS256"])
