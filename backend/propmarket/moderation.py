from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from propmarket.errors import AuthorizationError
from propmarket.models import ModerationLog, User


def is_admin(user: User | None) -> bool:
    return bool(user) and (user.role or "").lower() == "admin"


def require_admin(user: User | None) -> User:
    if not is_admin(user):
        raise AuthorizationError("Admin only")
    return user


def log_moderation(
    db: Session,
    *,
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    reason: str = "",
) -> None:
    db.add(
        ModerationLog(
            actor_user_id=str(actor_user_id),
            entity_type=(entity_type or "").strip(),
            entity_id=str(entity_id),
            action=(action or "").strip(),
            reason=(reason or "").strip(),
        )
    )
    db.flush()


def recent_logs(db: Session, *, limit: int = 100, entity_type: str | None = None) -> list[ModerationLog]:
    stmt = select(ModerationLog).order_by(ModerationLog.created_at.desc(), ModerationLog.id.desc())
    if entity_type:
        stmt = stmt.where(ModerationLog.entity_type == entity_type)
    return list(db.execute(stmt.limit(int(limit))).scalars().all())
