from __future__ import annotations

import jwt
from sqlalchemy import select

from propmarket.db import session_scope
from propmarket.models import OtpCode, User
from propmarket.security import decode_access_token

from conftest import SUPER_ADMIN, auth, make_user


def _login(client, sent_codes, email):
    r = client.post("/auth/request-otp", json={"email": email})
    assert r.status_code == 200, r.text
    code = sent_codes[-1][1]
    return client.post("/auth/verify-otp", json={"email": email, "code": code})


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert r.headers["X-Content-Type-Options"] == "nosniff"


def test_storage_status_reports_unconfigured(client):
    assert client.get("/config/storage-status").json() == {"configured": False}


def test_request_otp_sends_one_code(client, sent_codes):
    r = client.post("/auth/request-otp", json={"email": "New@Example.com"})
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert len(sent_codes) == 1
    assert sent_codes[0][0] == "new@example.com"


def test_request_otp_invalid_email(client, sent_codes):
    r = client.post("/auth/request-otp", json={"email": "bad"})
    assert r.status_code == 400
    assert r.json() == {"detail": "Please enter a valid email"}
    assert sent_codes == []


def test_request_otp_missing_email(client):
    r = client.post("/auth/request-otp", json={})
    assert r.status_code == 400
    assert r.json()["detail"] == "email is required"


def test_request_otp_delivery_failure_is_500(client, sent_codes):
    from propmarket.mailer import EmailSendError
    from propmarket.main import app, get_notifier

    def failing(email, code):
        raise EmailSendError("Brevo send failed: 401 unauthorized")

    app.dependency_overrides[get_notifier] = lambda: failing
    r = client.post("/auth/request-otp", json={"email": "a@x.com"})
    assert r.status_code == 500
    assert "Brevo" in r.json()["detail"]


def test_request_otp_is_rate_limited(client):
    for _ in range(5):
        assert client.post("/auth/request-otp", json={"email": "spam@x.com"}).status_code == 200
    r = client.post("/auth/request-otp", json={"email": "spam@x.com"})
    assert r.status_code == 429


def test_verify_otp_new_user(client, sent_codes, session_factory):
    r = _login(client, sent_codes, "a@x.com")
    assert r.status_code == 200, r.text
    body = r.json()

    assert body["is_new_user"] is True
    assert body["user"]["role"] == "buyer"
    assert body["user"]["onboarding_complete"] is False
    assert decode_access_token(body["access_token"])["sub"] == body["user"]["id"]

    with session_scope(session_factory) as s:
        assert len(s.execute(select(User).where(User.email == "a@x.com")).scalars().all()) == 1
        assert s.execute(select(OtpCode).where(OtpCode.email == "a@x.com")).scalar_one().consumed is True


def test_verify_otp_wrong_code_is_401(client, sent_codes):
    client.post("/auth/request-otp", json={"email": "a@x.com"})
    code = sent_codes[-1][1]
    wrong = "000000" if code != "000000" else "111111"

    r = client.post("/auth/verify-otp", json={"email": "a@x.com", "code": wrong})
    assert r.status_code == 401
    assert r.json() == {"detail": "Invalid or expired code"}


def test_wrong_attempt_is_persisted_across_requests(client, sent_codes, session_factory):
    client.post("/auth/request-otp", json={"email": "a@x.com"})
    code = sent_codes[-1][1]
    wrong = "000000" if code != "000000" else "111111"
    client.post("/auth/verify-otp", json={"email": "a@x.com", "code": wrong})

    with session_scope(session_factory) as s:
        assert s.execute(select(OtpCode).where(OtpCode.email == "a@x.com")).scalar_one().attempt_count == 1


def test_verify_otp_reused_code_is_401(client, sent_codes):
    assert _login(client, sent_codes, "a@x.com").status_code == 200
    code = sent_codes[-1][1]
    r = client.post("/auth/verify-otp", json={"email": "a@x.com", "code": code})
    assert r.status_code == 401


def test_verify_otp_malformed_code_is_400(client):
    r = client.post("/auth/verify-otp", json={"email": "a@x.com", "code": "abc"})
    assert r.status_code == 400


def test_verify_otp_suspended_is_403(client, sent_codes, session_factory):
    make_user(session_factory, "gone@x.com", role="buyer", active=False)
    r = _login(client, sent_codes, "gone@x.com")
    assert r.status_code == 403
    assert r.json() == {"detail": "Account suspended"}


def test_super_admin_login(client, sent_codes):
    body = _login(client, sent_codes, SUPER_ADMIN).json()
    assert body["is_new_user"] is False
    assert body["user"]["role"] == "admin"
    assert body["user"]["is_super_admin"] is True


def test_onboarding_through_api(client, sent_codes):
    body = _login(client, sent_codes, "a@x.com").json()
    headers = {"Authorization": f"Bearer {body['access_token']}"}

    r = client.post("/auth/complete-profile", json={"full_name": "A", "phone": "5551234567", "role": "seller"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Full name must be at least 2 characters"

    r = client.post(
        "/auth/complete-profile",
        json={"full_name": "Alice Doe", "phone": "5551234567", "role": "seller"},
        headers=headers,
    )
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["role"] == "seller"
    assert user["onboarding_complete"] is True

    again = _login(client, sent_codes, "a@x.com").json()
    assert again["is_new_user"] is False


def test_complete_profile_requires_token(client):
    r = client.post("/auth/complete-profile", json={"full_name": "Alice", "phone": "5551234567", "role": "buyer"})
    assert r.status_code == 401


def test_me_and_bad_tokens(client, buyer):
    r = client.get("/me", headers=auth(buyer))
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "buyer@example.com"

    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Bearer not-a-token"}).status_code == 401
    forged = jwt.encode({"sub": buyer.id}, "other-secret", algorithm="HS256")
    assert client.get("/me", headers={"Authorization": f"Bearer {forged}"}).status_code == 401


def test_suspended_token_is_refused(client, session_factory):
    u = make_user(session_factory, "gone@x.com", role="buyer", active=False)
    r = client.get("/me", headers=auth(u))
    assert r.status_code == 403


def test_update_profile_self_and_admin(client, buyer, seller, admin):
    r = client.patch(f"/users/{buyer.id}/profile", json={"full_name": "Bob Buyer", "phone": "5559876543"}, headers=auth(buyer))
    assert r.status_code == 200
    assert r.json()["user"]["full_name"] == "Bob Buyer"

    r = client.patch(f"/users/{buyer.id}/profile", json={"full_name": "Hacked", "phone": "5559876543"}, headers=auth(seller))
    assert r.status_code == 403

    r = client.patch(f"/users/{buyer.id}/profile", json={"full_name": "Robert", "phone": "5559876543"}, headers=auth(admin))
    assert r.status_code == 200

    r = client.patch(f"/users/{buyer.id}/profile", json={"full_name": "Robert", "phone": "123"}, headers=auth(buyer))
    assert r.status_code == 400

    r = client.patch("/users/missing/profile", json={"full_name": "Robert", "phone": "5559876543"}, headers=auth(admin))
    assert r.status_code == 404

    assert client.patch(f"/users/{buyer.id}/profile", json={"full_name": "Robert", "phone": "5559876543"}).status_code == 401
