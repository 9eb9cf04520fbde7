"""
Listing directory: create/edit/delete listings, public search, favorites,
buyer inquiries and the admin dashboard counters.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from propmarket.errors import AuthorizationError, NotFoundError, PreconditionFailed, ValidationError
from propmarket.models import (
    LISTING_TYPES,
    PROPERTY_TYPES,
    Favorite,
    Inquiry,
    Property,
    User,
)
from propmarket.moderation import is_admin, log_moderation
from propmarket.otp import normalize_email
from propmarket.verification import schedule_blob_destroy

logger = logging.getLogger(__name__)

LISTING_ROLES = {"seller", "agent", "admin"}
OWNER_STATUS_CHANGES = {"sold", "leased"}
SORT_OPTIONS = ("newest", "oldest", "price_low", "price_high", "most_viewed")

# field -> (minimum length, message)
_TEXT_RULES: dict[str, tuple[int, str]] = {
    "title": (5, "Title must be at least 5 characters"),
    "description": (20, "Description must be at least 20 characters"),
    "address": (5, "Address is required"),
    "city": (2, "City is required"),
    "state": (2, "State is required"),
    "zip_code": (5, "Zip code is required"),
}
_COUNT_FIELDS = ("bedrooms", "bathrooms", "square_feet")
_REQUIRED_ON_CREATE = ("title", "description", "listing_type", "property_type", "price", "address", "city", "state", "zip_code")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _get_property(db: Session, listing_id: str) -> Property:
    p = db.get(Property, str(listing_id))
    if not p:
        raise NotFoundError("Property not found")
    return p


def _str_list(v: Any, field: str) -> list[str]:
    if v is None:
        return []
    if not isinstance(v, (list, tuple)):
        raise ValidationError(f"Invalid {field}")
    return [str(x).strip() for x in v if str(x or "").strip()]


def clean_listing_fields(fields: dict[str, Any], *, partial: bool = False) -> dict[str, Any]:
    """
    Validate and normalize listing input.

    With partial=True only the keys present are checked (PATCH semantics);
    otherwise every required field must be supplied.
    """
    if not partial:
        for k in _REQUIRED_ON_CREATE:
            if fields.get(k) is None:
                raise ValidationError(f"{k.replace('_', ' ').capitalize()} is required")

    out: dict[str, Any] = {}
    for k, (min_len, msg) in _TEXT_RULES.items():
        if k not in fields or fields[k] is None:
            continue
        v = str(fields[k]).strip()
        if len(v) < min_len:
            raise ValidationError(msg)
        out[k] = v

    if fields.get("listing_type") is not None:
        lt = str(fields["listing_type"]).strip().lower()
        if lt not in LISTING_TYPES:
            raise ValidationError("Listing type must be sale or lease")
        out["listing_type"] = lt
    if fields.get("property_type") is not None:
        pt = str(fields["property_type"]).strip().lower()
        if pt not in PROPERTY_TYPES:
            raise ValidationError("Invalid property type")
        out["property_type"] = pt

    if fields.get("price") is not None:
        try:
            price = float(fields["price"])
        except (TypeError, ValueError):
            raise ValidationError("Invalid price")
        if price <= 0:
            raise ValidationError("Price must be greater than 0")
        out["price"] = price

    for k in _COUNT_FIELDS:
        if fields.get(k) is None:
            continue
        try:
            n = int(fields[k])
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {k.replace('_', ' ')}")
        if n < 0:
            raise ValidationError(f"{k.replace('_', ' ').capitalize()} cannot be negative")
        out[k] = n

    if "year_built" in fields:
        yb = fields["year_built"]
        if yb is None or yb == "":
            out["year_built"] = None
        else:
            try:
                year = int(yb)
            except (TypeError, ValueError):
                raise ValidationError("Invalid year built")
            if year < 1800 or year > _utcnow().year + 1:
                raise ValidationError("Invalid year built")
            out["year_built"] = year

    if "images" in fields:
        out["images_json"] = json.dumps(_str_list(fields["images"], "images"))
    if "amenities" in fields:
        out["amenities_json"] = json.dumps(_str_list(fields["amenities"], "amenities"))
    return out


def create_listing(db: Session, owner: User, fields: dict[str, Any]) -> Property:
    role = (owner.role or "").lower()
    if role not in LISTING_ROLES:
        raise AuthorizationError("Only sellers and agents can create listings")
    if not owner.onboarding_complete:
        raise AuthorizationError("Complete your profile before creating listings")

    values = clean_listing_fields(fields)
    now = _utcnow()
    p = Property(
        owner_id=owner.id,
        owner_type="agent" if role == "agent" else "seller",
        status="pending",
        verification_status="unverified",
        views=0,
        is_featured=False,
        created_at=now,
        updated_at=now,
        **values,
    )
    db.add(p)
    db.flush()
    log_moderation(db, actor_user_id=owner.id, entity_type="property", entity_id=p.id, action="create")
    return p


def update_listing(db: Session, listing_id: str, requester: User, fields: dict[str, Any]) -> Property:
    p = _get_property(db, listing_id)
    if not (str(p.owner_id) == str(requester.id) or is_admin(requester)):
        raise AuthorizationError("Only the owner who created the listing can edit it")

    values = clean_listing_fields(fields, partial=True)
    if fields.get("status") is not None:
        st = str(fields["status"]).strip().lower()
        if st not in OWNER_STATUS_CHANGES:
            raise ValidationError("Status can only be changed to sold or leased")
        if p.status != "approved":
            raise PreconditionFailed("Only approved listings can be marked sold or leased")
        values["status"] = st

    for k, v in values.items():
        setattr(p, k, v)
    p.updated_at = _utcnow()
    db.add(p)
    db.flush()
    log_moderation(db, actor_user_id=requester.id, entity_type="property", entity_id=p.id, action="update")
    return p


def delete_listing(db: Session, listing_id: str, requester: User) -> None:
    p = _get_property(db, listing_id)
    if not (str(p.owner_id) == str(requester.id) or is_admin(requester)):
        raise AuthorizationError("Only the owner who created the listing can delete it")

    for doc in list(p.documents or []):
        schedule_blob_destroy(db, doc)
    db.execute(delete(Favorite).where(Favorite.property_id == p.id))
    db.execute(delete(Inquiry).where(Inquiry.property_id == p.id))
    db.delete(p)
    db.flush()
    log_moderation(db, actor_user_id=requester.id, entity_type="property", entity_id=str(listing_id), action="delete")


def search_listings(
    db: Session,
    *,
    q: str | None = None,
    listing_type: str | None = None,
    property_type: str | None = None,
    city: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    bedrooms: int | None = None,
    bathrooms: int | None = None,
    verified_only: bool = False,
    sort: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Property]:
    stmt = select(Property).where(Property.status == "approved")
    if q and q.strip():
        like = f"%{q.strip()}%"
        stmt = stmt.where(
            or_(
                Property.title.ilike(like),
                Property.description.ilike(like),
                Property.address.ilike(like),
                Property.city.ilike(like),
            )
        )
    if listing_type:
        stmt = stmt.where(Property.listing_type == listing_type.strip().lower())
    if property_type:
        stmt = stmt.where(Property.property_type == property_type.strip().lower())
    if city and city.strip():
        stmt = stmt.where(Property.city.ilike(f"%{city.strip()}%"))
    if min_price is not None:
        stmt = stmt.where(Property.price >= float(min_price))
    if max_price is not None:
        stmt = stmt.where(Property.price <= float(max_price))
    if bedrooms is not None:
        stmt = stmt.where(Property.bedrooms >= int(bedrooms))
    if bathrooms is not None:
        stmt = stmt.where(Property.bathrooms >= int(bathrooms))
    if verified_only:
        stmt = stmt.where(Property.verification_status == "verified")

    s = (sort or "newest").strip().lower()
    if s == "oldest":
        stmt = stmt.order_by(Property.created_at.asc(), Property.id)
    elif s == "price_low":
        stmt = stmt.order_by(Property.price.asc(), Property.id)
    elif s == "price_high":
        stmt = stmt.order_by(Property.price.desc(), Property.id)
    elif s == "most_viewed":
        stmt = stmt.order_by(Property.views.desc(), Property.id)
    else:
        stmt = stmt.order_by(Property.created_at.desc(), Property.id)

    return list(db.execute(stmt.offset(int(offset)).limit(int(limit))).scalars().all())


def featured_listings(db: Session, *, limit: int = 6) -> list[Property]:
    stmt = (
        select(Property)
        .where((Property.status == "approved") & (Property.is_featured.is_(True)))
        .order_by(Property.views.desc(), Property.id)
        .limit(int(limit))
    )
    return list(db.execute(stmt).scalars().all())


def get_listing(db: Session, listing_id: str, viewer: User | None = None) -> Property:
    """Fetch a listing for its detail page and count the view."""
    p = _get_property(db, listing_id)
    if p.status != "approved":
        privileged = bool(viewer) and (str(p.owner_id) == str(viewer.id) or is_admin(viewer))
        if not privileged:
            raise NotFoundError("Property not found")
    p.views = int(p.views or 0) + 1
    db.add(p)
    db.flush()
    return p


def owner_listings(db: Session, owner: User) -> list[Property]:
    stmt = select(Property).where(Property.owner_id == owner.id).order_by(Property.created_at.desc(), Property.id)
    return list(db.execute(stmt).scalars().all())


def pending_listings(db: Session) -> list[Property]:
    stmt = select(Property).where(Property.status == "pending").order_by(Property.created_at.desc(), Property.id)
    return list(db.execute(stmt).scalars().all())


# -----------------------
# Favorites
# -----------------------
def list_favorites(db: Session, user: User) -> list[Property]:
    stmt = (
        select(Property)
        .join(Favorite, Favorite.property_id == Property.id)
        .where(Favorite.user_id == user.id)
        .order_by(Favorite.created_at.desc(), Favorite.id)
    )
    return list(db.execute(stmt).scalars().all())


def add_favorite(db: Session, user: User, listing_id: str) -> Favorite:
    p = _get_property(db, listing_id)
    existing = db.execute(
        select(Favorite).where((Favorite.user_id == user.id) & (Favorite.property_id == p.id))
    ).scalar_one_or_none()
    if existing:
        return existing
    fav = Favorite(user_id=user.id, property_id=p.id)
    db.add(fav)
    db.flush()
    return fav


def remove_favorite(db: Session, user: User, listing_id: str) -> None:
    db.execute(delete(Favorite).where((Favorite.user_id == user.id) & (Favorite.property_id == str(listing_id))))


# -----------------------
# Inquiries
# -----------------------
def create_inquiry(
    db: Session,
    buyer: User,
    listing_id: str,
    *,
    message: str,
    email: str,
    phone: str | None = None,
) -> Inquiry:
    msg = (message or "").strip()
    if len(msg) < 10:
        raise ValidationError("Message must be at least 10 characters")
    contact_email = normalize_email(email)
    p = _get_property(db, listing_id)
    if str(p.owner_id) == str(buyer.id):
        raise ValidationError("You cannot send an inquiry about your own listing")

    inquiry = Inquiry(
        property_id=p.id,
        buyer_id=buyer.id,
        seller_id=p.owner_id,
        message=msg,
        phone=(phone or "").strip(),
        email=contact_email,
        is_read=False,
    )
    db.add(inquiry)
    db.flush()
    logger.info("Inquiry %s created for property %s", inquiry.id, p.id)
    return inquiry


def received_inquiries(db: Session, seller: User) -> list[Inquiry]:
    stmt = select(Inquiry).where(Inquiry.seller_id == seller.id).order_by(Inquiry.created_at.desc(), Inquiry.id)
    return list(db.execute(stmt).scalars().all())


def sent_inquiries(db: Session, buyer: User) -> list[Inquiry]:
    stmt = select(Inquiry).where(Inquiry.buyer_id == buyer.id).order_by(Inquiry.created_at.desc(), Inquiry.id)
    return list(db.execute(stmt).scalars().all())


def mark_inquiry_read(db: Session, inquiry_id: str, requester: User) -> Inquiry:
    inquiry = db.get(Inquiry, str(inquiry_id))
    if not inquiry:
        raise NotFoundError("Inquiry not found")
    if str(inquiry.seller_id) != str(requester.id):
        raise AuthorizationError("Only the recipient can mark an inquiry as read")
    inquiry.is_read = True
    db.add(inquiry)
    db.flush()
    return inquiry


# -----------------------
# Admin dashboard
# -----------------------
def admin_stats(db: Session) -> dict[str, int]:
    def _count(stmt) -> int:
        return int(db.execute(stmt).scalar() or 0)

    return {
        "total_properties": _count(select(func.count(Property.id))),
        "pending_approvals": _count(select(func.count(Property.id)).where(Property.status == "pending")),
        "total_users": _count(select(func.count(User.id))),
        "active_listings": _count(select(func.count(Property.id)).where(Property.status == "approved")),
        "pending_verifications": _count(
            select(func.count(Property.id)).where(Property.verification_status == "pending")
        ),
    }
