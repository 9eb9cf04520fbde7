from __future__ import annotations

import json
import logging
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.middleware.trustedhost import TrustedHostMiddleware

import jwt

from propmarket.config import allowed_hosts, cors_origins, enforce_secure_secrets, is_local_dev
from propmarket.db import ENGINE, session_scope
from propmarket.errors import AccountSuspended, AppError, AuthenticationError
from propmarket.listings import (
    add_favorite,
    admin_stats,
    create_inquiry,
    create_listing,
    delete_listing,
    featured_listings,
    get_listing,
    list_favorites,
    mark_inquiry_read,
    owner_listings,
    pending_listings,
    received_inquiries,
    remove_favorite,
    search_listings,
    sent_inquiries,
    update_listing,
)
from propmarket.mailer import send_otp_email
from propmarket.models import Base, Inquiry, ModerationLog, Property, PropertyDocument, User
from propmarket.moderation import recent_logs, require_admin
from propmarket.otp import Notifier, complete_onboarding, request_code, verify_code
from propmarket.rate_limit import check_otp_request, check_otp_verify
from propmarket.security import create_access_token, decode_access_token
from propmarket.users import (
    create_admin,
    delete_user,
    list_users,
    listing_counts,
    recent_users,
    set_user_active,
    update_profile,
)
from propmarket.utils.cloudinary_storage import cloudinary_enabled
from propmarket.verification import (
    attach_document,
    decide_verification,
    document_count,
    list_documents,
    moderate_listing,
    pending_verifications,
    remove_document,
    request_verification,
    set_featured,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="PropMarket API")

# Production hardening: refuse to boot with the default JWT secret.
enforce_secure_secrets()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    resp.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    return resp


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def create_local_schema() -> None:
    """
    Local sqlite runs have no migration step; create the tables directly.
    Deployed databases are managed by Alembic.
    """
    if is_local_dev():
        Base.metadata.create_all(bind=ENGINE)


# -----------------------
# Error mapping
# -----------------------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    msg = "Invalid request"
    if errors:
        first = errors[0]
        msg = str(first.get("msg") or msg)
        # Pydantic prefixes messages raised from validators.
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        field = ".".join(str(x) for x in (first.get("loc") or ())[1:])
        if first.get("type") == "missing" and field:
            msg = f"{field} is required"
    return JSONResponse(status_code=400, content={"detail": msg})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# -----------------------
# Dependencies
# -----------------------
def get_db():
    with session_scope() as db:
        yield db


def get_notifier() -> Notifier:
    return send_otp_email


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    token = _bearer_token(authorization)
    if not token:
        raise AuthenticationError("Not authenticated")
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")
    user_id = str(payload.get("sub") or "")
    user = db.get(User, user_id) if user_id else None
    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AccountSuspended()
    return user


def get_optional_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User | None:
    token = _bearer_token(authorization)
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        return None
    user_id = str(payload.get("sub") or "")
    if not user_id:
        return None
    user = db.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


# -----------------------
# Serializers
# -----------------------
def _iso(v) -> str:
    return v.isoformat() if v else ""


def _json_list(raw: str | None) -> list[Any]:
    try:
        v = json.loads(raw or "[]")
    except ValueError:
        return []
    return v if isinstance(v, list) else []


def _user_out(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "phone": u.phone,
        "role": u.role,
        "avatar_url": u.avatar_url or "",
        "is_active": bool(u.is_active),
        "is_super_admin": bool(u.is_super_admin),
        "onboarding_complete": bool(u.onboarding_complete),
        "created_at": _iso(u.created_at),
    }


def _owner_summary(u: User | None) -> dict[str, Any] | None:
    if not u:
        return None
    return {
        "id": u.id,
        "full_name": u.full_name,
        "email": u.email,
        "phone": u.phone,
        "avatar_url": u.avatar_url or "",
        "role": u.role,
    }


def _property_out(p: Property, *, include_owner: bool = False, include_internal: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "listing_type": p.listing_type,
        "property_type": p.property_type,
        "price": p.price,
        "address": p.address,
        "city": p.city,
        "state": p.state,
        "zip_code": p.zip_code,
        "bedrooms": p.bedrooms,
        "bathrooms": p.bathrooms,
        "square_feet": p.square_feet,
        "year_built": p.year_built,
        "images": _json_list(p.images_json),
        "amenities": _json_list(p.amenities_json),
        "owner_id": p.owner_id,
        "owner_type": p.owner_type,
        "views": int(p.views or 0),
        "is_featured": bool(p.is_featured),
        "status": p.status,
        "verification_status": p.verification_status,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }
    if include_owner:
        out["owner"] = _owner_summary(p.owner)
    if include_internal:
        out["moderation_reason"] = p.moderation_reason or ""
        out["verification_notes"] = p.verification_notes
        out["verified_by"] = p.verified_by
        out["verified_at"] = _iso(p.verified_at)
    return out


def _document_out(d: PropertyDocument) -> dict[str, Any]:
    return {
        "id": d.id,
        "property_id": d.property_id,
        "document_type": d.document_type,
        "file_name": d.file_name,
        "file_url": d.file_url,
        "file_size": int(d.file_size or 0),
        "mime_type": d.mime_type,
        "uploaded_by": d.uploaded_by,
        "uploaded_at": _iso(d.uploaded_at),
    }


def _inquiry_out(db: Session, i: Inquiry) -> dict[str, Any]:
    p = db.get(Property, i.property_id)
    buyer = db.get(User, i.buyer_id)
    prop = (
        {"id": p.id, "title": p.title, "address": p.address, "city": p.city, "images": _json_list(p.images_json)}
        if p
        else {"id": "", "title": "Unknown", "address": "", "city": "", "images": []}
    )
    return {
        "id": i.id,
        "property_id": i.property_id,
        "buyer_id": i.buyer_id,
        "seller_id": i.seller_id,
        "message": i.message,
        "phone": i.phone,
        "email": i.email,
        "is_read": bool(i.is_read),
        "created_at": _iso(i.created_at),
        "property": prop,
        "buyer": _owner_summary(buyer),
    }


def _log_out(entry: ModerationLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "actor_user_id": entry.actor_user_id,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "reason": entry.reason,
        "created_at": _iso(entry.created_at),
    }


# -----------------------
# Schemas
# -----------------------
class RequestOtpIn(BaseModel):
    email: str


class VerifyOtpIn(BaseModel):
    email: str
    code: str = Field(..., min_length=4, max_length=12, pattern=r"^\s*\d+\s*$")


class ProfileIn(BaseModel):
    full_name: str = ""
    phone: str = ""


class CompleteProfileIn(ProfileIn):
    role: str = ""


class PropertyCreateIn(BaseModel):
    title: str | None = None
    description: str | None = None
    listing_type: str | None = None
    property_type: str | None = None
    price: float | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    bedrooms: int | None = 0
    bathrooms: int | None = 0
    square_feet: int | None = 0
    year_built: int | None = None
    images: list[str] = Field(default_factory=list)
    amenities: list[str] = Field(default_factory=list)


class PropertyUpdateIn(BaseModel):
    """
    Partial update; only the fields sent are applied.
    `status` accepts sold/leased for the owner of an approved listing.
    """

    title: str | None = None
    description: str | None = None
    listing_type: str | None = None
    property_type: str | None = None
    price: float | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    square_feet: int | None = None
    year_built: int | None = None
    images: list[str] | None = None
    amenities: list[str] | None = None
    status: str | None = None


class FavoriteIn(BaseModel):
    property_id: str


class InquiryIn(BaseModel):
    property_id: str
    message: str = ""
    email: str = ""
    phone: str | None = None


class ModerateIn(BaseModel):
    reason: str = ""


class VerifyDecisionIn(BaseModel):
    status: str = ""
    notes: str | None = None


class FeatureIn(BaseModel):
    is_featured: bool = True


class UserStatusIn(BaseModel):
    is_active: bool
    reason: str = ""


class CreateAdminIn(BaseModel):
    email: str
    full_name: str = ""
    phone: str = ""


# -----------------------
# Health
# -----------------------
@app.get("/health")
def health():
    return {"ok": True}


@app.get("/config/storage-status")
def storage_status():
    return {"configured": cloudinary_enabled()}


# -----------------------
# Auth (email OTP)
# -----------------------
@app.post("/auth/request-otp")
def auth_request_otp(
    data: RequestOtpIn,
    db: Annotated[Session, Depends(get_db)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
):
    check_otp_request((data.email or "").strip().lower())
    delivery = request_code(db, data.email, notifier)
    if delivery == "console":
        return {"ok": True, "message": "Code generated. Email service not configured; check server logs for the code."}
    return {"ok": True, "message": "Verification code sent to your email."}


@app.post("/auth/verify-otp")
def auth_verify_otp(data: VerifyOtpIn, db: Annotated[Session, Depends(get_db)]):
    check_otp_verify((data.email or "").strip().lower())
    user, is_new_user = verify_code(db, data.email, data.code)
    token = create_access_token(user_id=user.id, role=user.role)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": _user_out(user),
        "is_new_user": is_new_user,
    }


@app.post("/auth/complete-profile")
def auth_complete_profile(
    data: CompleteProfileIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    user = complete_onboarding(db, me.id, data.full_name, data.phone, data.role)
    return {"ok": True, "user": _user_out(user)}


@app.get("/me")
def me_profile(me: Annotated[User, Depends(get_current_user)]) -> dict[str, Any]:
    return {"user": _user_out(me)}


@app.patch("/users/{user_id}/profile")
def user_update_profile(
    user_id: str,
    data: ProfileIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    user = update_profile(db, me, user_id, data.full_name, data.phone)
    return {"ok": True, "user": _user_out(user)}


# -----------------------
# Properties
# -----------------------
@app.get("/properties")
def list_properties(
    db: Annotated[Session, Depends(get_db)],
    q: str | None = Query(default=None),
    listing_type: str | None = Query(default=None),
    property_type: str | None = Query(default=None),
    city: str | None = Query(default=None),
    min_price: float | None = Query(default=None, ge=0),
    max_price: float | None = Query(default=None, ge=0),
    bedrooms: int | None = Query(default=None, ge=0),
    bathrooms: int | None = Query(default=None, ge=0),
    verified_only: bool = Query(default=False),
    sort: str | None = Query(default=None),  # newest|oldest|price_low|price_high|most_viewed
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    rows = search_listings(
        db,
        q=q,
        listing_type=listing_type,
        property_type=property_type,
        city=city,
        min_price=min_price,
        max_price=max_price,
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        verified_only=verified_only,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    return {"items": [_property_out(p) for p in rows]}


@app.get("/properties/featured")
def list_featured_properties(
    db: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=6, ge=1, le=50),
):
    return {"items": [_property_out(p) for p in featured_listings(db, limit=limit)]}


@app.get("/properties/{property_id}")
def get_property(
    property_id: str,
    db: Annotated[Session, Depends(get_db)],
    me: Annotated[User | None, Depends(get_optional_user)],
):
    p = get_listing(db, property_id, me)
    internal = bool(me) and (me.id == p.owner_id or (me.role or "") == "admin")
    return _property_out(p, include_owner=True, include_internal=internal)


@app.post("/properties", status_code=201)
def create_property(
    data: PropertyCreateIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    p = create_listing(db, me, data.model_dump())
    return _property_out(p, include_internal=True)


@app.patch("/properties/{property_id}")
def update_property(
    property_id: str,
    data: PropertyUpdateIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    p = update_listing(db, property_id, me, data.model_dump(exclude_unset=True))
    return _property_out(p, include_internal=True)


@app.delete("/properties/{property_id}", status_code=204)
def delete_property(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    delete_listing(db, property_id, me)
    return Response(status_code=204)


@app.get("/my-listings")
def my_listings(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return {"items": [_property_out(p, include_internal=True) for p in owner_listings(db, me)]}


# -----------------------
# Ownership documents
# -----------------------
@app.get("/properties/{property_id}/documents")
def get_property_documents(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return {"items": [_document_out(d) for d in list_documents(db, property_id, me)]}


@app.post("/properties/{property_id}/documents", status_code=201)
def upload_property_document(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    file: UploadFile = File(...),
    document_type: str = Form(...),
):
    raw = file.file.read()
    doc = attach_document(
        db,
        listing_id=property_id,
        document_type=document_type,
        file_name=file.filename or "",
        content_type=file.content_type or "",
        raw=raw,
        requester=me,
    )
    return _document_out(doc)


@app.delete("/documents/{document_id}", status_code=204)
def delete_property_document(
    document_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    remove_document(db, document_id, me)
    return Response(status_code=204)


@app.post("/properties/{property_id}/request-verification")
def post_request_verification(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    p = request_verification(db, property_id, me)
    return _property_out(p, include_internal=True)


# -----------------------
# Favorites
# -----------------------
@app.get("/favorites")
def get_favorites(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return {"items": [_property_out(p) for p in list_favorites(db, me)]}


@app.post("/favorites", status_code=201)
def post_favorite(
    data: FavoriteIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    fav = add_favorite(db, me, data.property_id)
    return {"id": fav.id, "user_id": fav.user_id, "property_id": fav.property_id, "created_at": _iso(fav.created_at)}


@app.delete("/favorites/{property_id}", status_code=204)
def delete_favorite(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    remove_favorite(db, me, property_id)
    return Response(status_code=204)


# -----------------------
# Inquiries
# -----------------------
@app.post("/inquiries", status_code=201)
def post_inquiry(
    data: InquiryIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    i = create_inquiry(db, me, data.property_id, message=data.message, email=data.email, phone=data.phone)
    return _inquiry_out(db, i)


@app.get("/inquiries")
def get_received_inquiries(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return {"items": [_inquiry_out(db, i) for i in received_inquiries(db, me)]}


@app.get("/my-inquiries")
def get_sent_inquiries(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return {"items": [_inquiry_out(db, i) for i in sent_inquiries(db, me)]}


@app.patch("/inquiries/{inquiry_id}/read")
def patch_inquiry_read(
    inquiry_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    return _inquiry_out(db, mark_inquiry_read(db, inquiry_id, me))


# -----------------------
# Admin dashboards
# -----------------------
@app.get("/admin/stats")
def get_admin_stats(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    require_admin(me)
    return admin_stats(db)


@app.get("/admin/pending-listings")
def admin_pending_listings(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    require_admin(me)
    return {"items": [_property_out(p, include_owner=True, include_internal=True) for p in pending_listings(db)]}


@app.get("/admin/pending-verifications")
def admin_pending_verifications(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=100, ge=1, le=500),
):
    require_admin(me)
    items = []
    for p in pending_verifications(db, limit=limit):
        item = _property_out(p, include_owner=True, include_internal=True)
        item["document_count"] = document_count(db, p.id)
        items.append(item)
    return {"items": items}


@app.get("/admin/users")
def admin_list_users(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    q: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
):
    require_admin(me)
    users = list_users(db, q=q, limit=limit)
    counts = listing_counts(db, [u.id for u in users])
    items = []
    for u in users:
        item = _user_out(u)
        item["total_listings"] = counts.get(u.id, 0)
        items.append(item)
    return {"items": items}


@app.get("/admin/recent-users")
def admin_recent_users(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    require_admin(me)
    return {"items": [_user_out(u) for u in recent_users(db)]}


@app.get("/admin/logs")
def admin_logs(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    entity_type: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
):
    require_admin(me)
    return {"items": [_log_out(entry) for entry in recent_logs(db, limit=limit, entity_type=entity_type)]}


# -----------------------
# Admin moderation
# -----------------------
@app.patch("/admin/properties/{property_id}/approve")
def admin_approve_property(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    p = moderate_listing(db, property_id, me, "approved")
    return _property_out(p, include_internal=True)


@app.patch("/admin/properties/{property_id}/reject")
def admin_reject_property(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    data: ModerateIn | None = None,
):
    p = moderate_listing(db, property_id, me, "rejected", reason=(data.reason if data else "") or "")
    return _property_out(p, include_internal=True)


@app.patch("/admin/properties/{property_id}/verify")
def admin_verify_property(
    property_id: str,
    data: VerifyDecisionIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    p = decide_verification(db, property_id, me, data.status, data.notes)
    return _property_out(p, include_internal=True)


@app.patch("/admin/properties/{property_id}/feature")
def admin_feature_property(
    property_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    data: FeatureIn | None = None,
):
    p = set_featured(db, property_id, me, data.is_featured if data else True)
    return _property_out(p, include_internal=True)


@app.patch("/admin/users/{user_id}/status")
def admin_set_user_status(
    user_id: str,
    data: UserStatusIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    user = set_user_active(db, me, user_id, data.is_active, data.reason)
    return {"ok": True, "user": _user_out(user)}


@app.delete("/admin/users/{user_id}", status_code=204)
def admin_delete_user(
    user_id: str,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    delete_user(db, me, user_id)
    return Response(status_code=204)


@app.post("/admin/create-admin", status_code=201)
def admin_create_admin(
    data: CreateAdminIn,
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    require_admin(me)
    user = create_admin(db, me, data.email, data.full_name, data.phone)
    return {"ok": True, "user": _user_out(user)}
