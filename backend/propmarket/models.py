from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


# Closed value sets. Stored as plain strings so migrations stay trivial.
USER_ROLES = ("buyer", "seller", "agent", "admin")
ONBOARDING_ROLES = ("buyer", "seller", "agent")
LISTING_TYPES = ("sale", "lease")
PROPERTY_TYPES = ("house", "apartment", "condo", "townhouse", "villa", "land", "commercial")
LISTING_STATUSES = ("pending", "approved", "rejected", "sold", "leased")
VERIFICATION_STATUSES = ("unverified", "pending", "verified", "rejected")

SALE_DOCUMENT_TYPES = (
    "sale_deed",
    "title_deed",
    "encumbrance_certificate",
    "property_tax_receipt",
    "mutation_certificate",
    "noc",
    "owner_id_proof",
    "allotment_letter",
    "possession_letter",
    "occupancy_certificate",
    "completion_certificate",
    "society_share_certificate",
    "survey_plan",
    "conversion_certificate",
    "patta_khata",
)
LEASE_DOCUMENT_TYPES = (
    "ownership_proof",
    "property_tax_receipt",
    "owner_id_proof",
    "noc_society",
)


def document_types_for(listing_type: str) -> tuple[str, ...]:
    return SALE_DOCUMENT_TYPES if (listing_type or "").lower() == "sale" else LEASE_DOCUMENT_TYPES


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    # Name and phone stay empty until onboarding is completed.
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(String(32), default="buyer", index=True)  # buyer | seller | agent | admin
    avatar_url: Mapped[str] = mapped_column(String(512), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_super_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    properties = relationship("Property", back_populates="owner", foreign_keys="Property.owner_id")


class OtpCode(Base):
    __tablename__ = "otp_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    code: Mapped[str] = mapped_column(String(12))
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), index=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    owner_type: Mapped[str] = mapped_column(String(16), default="seller")  # seller | agent

    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    listing_type: Mapped[str] = mapped_column(String(10), default="sale", index=True)  # sale | lease
    property_type: Mapped[str] = mapped_column(String(40), default="house", index=True)
    price: Mapped[float] = mapped_column(Float, default=0.0)

    address: Mapped[str] = mapped_column(String(512), default="")
    city: Mapped[str] = mapped_column(String(120), default="", index=True)
    state: Mapped[str] = mapped_column(String(80), default="")
    zip_code: Mapped[str] = mapped_column(String(20), default="")

    bedrooms: Mapped[int] = mapped_column(Integer, default=0)
    bathrooms: Mapped[int] = mapped_column(Integer, default=0)
    square_feet: Mapped[int] = mapped_column(Integer, default=0)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)

    images_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON-encoded list of URLs
    amenities_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON-encoded list of strings

    views: Mapped[int] = mapped_column(Integer, default=0)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)

    # Lifecycle (public visibility) and verification (document trust) are separate axes.
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    moderation_reason: Mapped[str] = mapped_column(Text, default="")
    verification_status: Mapped[str] = mapped_column(String(20), default="unverified", index=True)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_by: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    verified_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    owner = relationship("User", back_populates="properties", foreign_keys=[owner_id])
    documents = relationship("PropertyDocument", back_populates="property", cascade="all, delete-orphan")


class PropertyDocument(Base):
    __tablename__ = "property_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), index=True)
    document_type: Mapped[str] = mapped_column(String(60))
    file_name: Mapped[str] = mapped_column(String(255), default="")
    file_url: Mapped[str] = mapped_column(String(1024))
    # Cloudinary public_id for cleanup.
    storage_key: Mapped[str] = mapped_column(String(255), default="")
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), default="")
    uploaded_by: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    uploaded_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    property = relationship("Property", back_populates="documents")


class Inquiry(Base):
    __tablename__ = "inquiries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), index=True)
    buyer_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    seller_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    message: Mapped[str] = mapped_column(Text)
    phone: Mapped[str] = mapped_column(String(32), default="")
    email: Mapped[str] = mapped_column(String(255))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "property_id", name="uq_favorite_user_property"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), index=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ModerationLog(Base):
    __tablename__ = "moderation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Not a foreign key: the log outlives deleted identities.
    actor_user_id: Mapped[str] = mapped_column(String(36), index=True)
    entity_type: Mapped[str] = mapped_column(String(40), index=True)  # user|property|property_document
    entity_id: Mapped[str] = mapped_column(String(36), index=True)
    action: Mapped[str] = mapped_column(String(40), index=True)  # approve|reject|verify|suspend|upload|...
    reason: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
