"""
Ownership-document verification and admin moderation of listings.

Verification status moves unverified -> pending (first document, or an
explicit request once a document exists) -> verified | rejected (admin).
Owners may upload more documents and request again from any state.
Lifecycle status (approved/rejected) is moderated separately.
"""

from __future__ import annotations

import datetime as dt
import logging
import secrets

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from propmarket.config import max_document_bytes
from propmarket.errors import (
    AuthorizationError,
    InternalError,
    NotFoundError,
    PreconditionFailed,
    StorageUnavailable,
    ValidationError,
)
from propmarket.models import Property, PropertyDocument, User, document_types_for
from propmarket.moderation import is_admin, log_moderation, require_admin
from propmarket.utils.cloudinary_storage import (
    DocumentRejected,
    cloudinary_enabled,
    destroy,
    resolve_content_type,
    resource_type_for,
    upload_bytes,
    validate_document,
)

logger = logging.getLogger(__name__)

VERIFICATION_DECISIONS = ("verified", "rejected")
MODERATION_DECISIONS = ("approved", "rejected")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _get_property(db: Session, listing_id: str) -> Property:
    p = db.get(Property, str(listing_id))
    if not p:
        raise NotFoundError("Property not found")
    return p


def _is_owner(p: Property, user: User | None) -> bool:
    return bool(user) and str(p.owner_id) == str(user.id)


def document_count(db: Session, listing_id: str) -> int:
    return int(
        db.execute(select(func.count(PropertyDocument.id)).where(PropertyDocument.property_id == str(listing_id))).scalar()
        or 0
    )


def list_documents(db: Session, listing_id: str, requester: User) -> list[PropertyDocument]:
    p = _get_property(db, listing_id)
    if not (_is_owner(p, requester) or is_admin(requester)):
        raise AuthorizationError("You can only view documents for your own properties")
    stmt = (
        select(PropertyDocument)
        .where(PropertyDocument.property_id == p.id)
        .order_by(PropertyDocument.uploaded_at.desc(), PropertyDocument.id)
    )
    return list(db.execute(stmt).scalars().all())


# Session.info keys for storage work that waits on the transaction outcome.
_BLOBS_TO_DESTROY = "blobs_to_destroy"
_BLOBS_UPLOADED = "blobs_uploaded"


def _destroy_blob(public_id: str, mime_type: str | None) -> None:
    try:
        destroy(public_id=public_id, resource_type=resource_type_for(mime_type or ""))
    except Exception:
        logger.exception("Cloudinary destroy failed public_id=%s", public_id)


def schedule_blob_destroy(db: Session, doc: PropertyDocument) -> None:
    """Delete the stored file once the session commits; a rollback keeps it."""
    if (doc.storage_key or "").strip():
        db.info.setdefault(_BLOBS_TO_DESTROY, []).append((doc.storage_key, doc.mime_type))


@event.listens_for(Session, "after_commit")
def _apply_blob_work(session: Session) -> None:
    session.info.pop(_BLOBS_UPLOADED, None)
    for public_id, mime in session.info.pop(_BLOBS_TO_DESTROY, []):
        _destroy_blob(public_id, mime)


@event.listens_for(Session, "after_rollback")
def _undo_blob_work(session: Session) -> None:
    session.info.pop(_BLOBS_TO_DESTROY, None)
    for public_id, mime in session.info.pop(_BLOBS_UPLOADED, []):
        _destroy_blob(public_id, mime)


def attach_document(
    db: Session,
    *,
    listing_id: str,
    document_type: str,
    file_name: str,
    content_type: str,
    raw: bytes,
    requester: User,
) -> PropertyDocument:
    p = _get_property(db, listing_id)
    if not (_is_owner(p, requester) or is_admin(requester)):
        raise AuthorizationError("Only the owner or an admin can upload documents")
    if not cloudinary_enabled():
        raise StorageUnavailable()

    doc_type = (document_type or "").strip().lower()
    if not doc_type:
        raise ValidationError("Document type is required")
    if doc_type not in document_types_for(p.listing_type):
        raise ValidationError(f"Invalid document type for a {p.listing_type} listing")
    if not raw:
        raise ValidationError("File is required")
    mime = resolve_content_type(file_name, content_type)
    if not mime:
        raise ValidationError("Only PDF, JPEG and PNG documents are accepted")
    limit = max_document_bytes()
    if len(raw) > limit:
        raise ValidationError(f"File exceeds {limit // (1024 * 1024)}MB limit")
    try:
        validate_document(raw, mime)
    except DocumentRejected as e:
        raise ValidationError(str(e)) from e

    resource_type = resource_type_for(mime)
    try:
        url, public_id = upload_bytes(
            raw=raw,
            resource_type=resource_type,
            public_id=f"property_{p.id}_{secrets.token_hex(8)}",
            filename=(file_name or "").strip(),
        )
    except Exception as e:
        logger.exception(
            "Cloudinary upload failed (document) property_id=%s filename=%r content_type=%r size_bytes=%s",
            p.id,
            file_name,
            mime,
            len(raw),
        )
        raise InternalError("Failed to upload document") from e
    # Removed again if the transaction rolls back.
    db.info.setdefault(_BLOBS_UPLOADED, []).append((public_id, mime))

    doc = PropertyDocument(
        property_id=p.id,
        document_type=doc_type,
        file_name=(file_name or "").strip() or "document",
        file_url=url,
        storage_key=public_id,
        file_size=len(raw),
        mime_type=mime,
        uploaded_by=requester.id,
    )
    db.add(doc)
    if p.verification_status == "unverified":
        p.verification_status = "pending"
        p.updated_at = _utcnow()
        db.add(p)
    db.flush()
    log_moderation(db, actor_user_id=requester.id, entity_type="property_document", entity_id=doc.id, action="upload")
    return doc


def remove_document(db: Session, document_id: str, requester: User) -> None:
    doc = db.get(PropertyDocument, str(document_id))
    if not doc:
        raise NotFoundError("Document not found")
    p = _get_property(db, doc.property_id)
    if not (_is_owner(p, requester) or is_admin(requester)):
        raise AuthorizationError("Only the owner or an admin can delete documents")
    schedule_blob_destroy(db, doc)
    db.delete(doc)
    db.flush()
    log_moderation(db, actor_user_id=requester.id, entity_type="property_document", entity_id=str(document_id), action="delete")


def request_verification(db: Session, listing_id: str, requester: User) -> Property:
    p = _get_property(db, listing_id)
    if not _is_owner(p, requester):
        raise AuthorizationError("Only the owner can request verification")
    if document_count(db, p.id) < 1:
        raise PreconditionFailed("Upload at least one document before requesting verification")
    p.verification_status = "pending"
    p.updated_at = _utcnow()
    db.add(p)
    db.flush()
    return p


def decide_verification(
    db: Session,
    listing_id: str,
    admin: User,
    decision: str,
    notes: str | None = None,
) -> Property:
    require_admin(admin)
    status = (decision or "").strip().lower()
    if status not in VERIFICATION_DECISIONS:
        raise ValidationError("Status must be 'verified' or 'rejected'")
    p = _get_property(db, listing_id)

    now = _utcnow()
    p.verification_status = status
    p.verified_by = admin.id
    p.verified_at = now
    p.verification_notes = (notes or "").strip() or None
    p.updated_at = now
    db.add(p)
    db.flush()
    log_moderation(db, actor_user_id=admin.id, entity_type="property", entity_id=p.id, action=status, reason=p.verification_notes or "")
    return p


def moderate_listing(db: Session, listing_id: str, admin: User, status: str, reason: str = "") -> Property:
    require_admin(admin)
    st = (status or "").strip().lower()
    if st not in MODERATION_DECISIONS:
        raise ValidationError("Status must be 'approved' or 'rejected'")
    p = _get_property(db, listing_id)
    p.status = st
    p.moderation_reason = (reason or "").strip() if st == "rejected" else ""
    p.updated_at = _utcnow()
    db.add(p)
    db.flush()
    log_moderation(
        db,
        actor_user_id=admin.id,
        entity_type="property",
        entity_id=p.id,
        action="approve" if st == "approved" else "reject",
        reason=p.moderation_reason,
    )
    return p


def set_featured(db: Session, listing_id: str, admin: User, featured: bool) -> Property:
    require_admin(admin)
    p = _get_property(db, listing_id)
    p.is_featured = bool(featured)
    p.updated_at = _utcnow()
    db.add(p)
    db.flush()
    log_moderation(db, actor_user_id=admin.id, entity_type="property", entity_id=p.id, action="feature" if featured else "unfeature")
    return p


def pending_verifications(db: Session, *, limit: int = 100) -> list[Property]:
    stmt = (
        select(Property)
        .where(Property.verification_status == "pending")
        .order_by(Property.updated_at.desc(), Property.id)
        .limit(int(limit))
    )
    return list(db.execute(stmt).scalars().all())
