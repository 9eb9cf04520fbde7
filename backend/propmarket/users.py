from __future__ import annotations

import logging

from sqlalchemy import delete, func, or_, select, update as sa_update
from sqlalchemy.orm import Session

from propmarket.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from propmarket.listings import delete_listing
from propmarket.models import Favorite, Inquiry, Property, PropertyDocument, User
from propmarket.moderation import is_admin, log_moderation, require_admin
from propmarket.otp import normalize_email, validate_profile_fields

logger = logging.getLogger(__name__)


def _get_user(db: Session, user_id: str) -> User:
    u = db.get(User, str(user_id))
    if not u:
        raise NotFoundError("User not found")
    return u


def update_profile(db: Session, requester: User, user_id: str, full_name: str, phone: str) -> User:
    if str(requester.id) != str(user_id) and not is_admin(requester):
        raise AuthorizationError("You can only edit your own profile")
    name, ph = validate_profile_fields(full_name, phone)
    u = _get_user(db, user_id)
    u.full_name = name
    u.phone = ph
    db.add(u)
    db.flush()
    return u


def list_users(db: Session, *, q: str | None = None, limit: int = 100) -> list[User]:
    stmt = select(User).order_by(User.created_at.desc(), User.id)
    qq = (q or "").strip().lower()
    if qq:
        stmt = stmt.where(
            or_(
                func.lower(User.email).contains(qq),
                func.lower(User.full_name).contains(qq),
                func.lower(User.phone).contains(qq),
            )
        )
    return list(db.execute(stmt.limit(int(limit))).scalars().all())


def recent_users(db: Session, *, limit: int = 10) -> list[User]:
    return list_users(db, limit=limit)


def listing_counts(db: Session, user_ids: list[str]) -> dict[str, int]:
    if not user_ids:
        return {}
    rows = db.execute(
        select(Property.owner_id, func.count(Property.id)).where(Property.owner_id.in_(user_ids)).group_by(Property.owner_id)
    ).all()
    return {str(owner_id): int(cnt or 0) for owner_id, cnt in rows}


def set_user_active(db: Session, admin: User, user_id: str, is_active: bool, reason: str = "") -> User:
    require_admin(admin)
    if str(user_id) == str(admin.id):
        raise ValidationError("Cannot change the status of your own account")
    u = _get_user(db, user_id)
    if u.is_super_admin:
        raise ValidationError("Cannot suspend the super admin")
    u.is_active = bool(is_active)
    db.add(u)
    db.flush()
    log_moderation(
        db,
        actor_user_id=admin.id,
        entity_type="user",
        entity_id=u.id,
        action="activate" if u.is_active else "suspend",
        reason=reason,
    )
    return u


def delete_user(db: Session, admin: User, user_id: str) -> None:
    """Remove an identity together with its listings, favorites and inquiries."""
    require_admin(admin)
    if str(user_id) == str(admin.id):
        raise ValidationError("Cannot delete your own account")
    u = _get_user(db, user_id)
    if u.is_super_admin:
        raise ValidationError("Cannot delete the super admin")

    owned = db.execute(select(Property.id).where(Property.owner_id == u.id)).scalars().all()
    for pid in owned:
        delete_listing(db, pid, admin)
    db.execute(delete(Favorite).where(Favorite.user_id == u.id))
    db.execute(delete(Inquiry).where(or_(Inquiry.buyer_id == u.id, Inquiry.seller_id == u.id)))
    db.execute(sa_update(Property).where(Property.verified_by == u.id).values(verified_by=None))
    db.execute(sa_update(PropertyDocument).where(PropertyDocument.uploaded_by == u.id).values(uploaded_by=None))
    db.delete(u)
    db.flush()
    log_moderation(db, actor_user_id=admin.id, entity_type="user", entity_id=str(user_id), action="delete")
    logger.info("User %s deleted by %s", user_id, admin.id)


def create_admin(db: Session, creator: User, email: str, full_name: str = "", phone: str = "") -> User:
    if not creator.is_super_admin:
        raise AuthorizationError("Only the super admin can create admins")
    e = normalize_email(email)
    exists = db.execute(select(User.id).where(User.email == e)).first()
    if exists:
        raise ConflictError("A user with this email already exists")
    u = User(
        email=e,
        full_name=(full_name or "").strip() or None,
        phone=(phone or "").strip() or None,
        role="admin",
        is_super_admin=False,
        onboarding_complete=True,
    )
    db.add(u)
    db.flush()
    log_moderation(db, actor_user_id=creator.id, entity_type="user", entity_id=u.id, action="create_admin")
    return u
