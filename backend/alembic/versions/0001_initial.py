"""initial schema (users, otp codes, properties, documents, inquiries, favorites, logs)

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
        sa.Column("avatar_url", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_super_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("onboarding_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "otp_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=12), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_otp_codes_email", "otp_codes", ["email"])
    op.create_index("ix_otp_codes_expires_at", "otp_codes", ["expires_at"])

    op.create_table(
        "properties",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("owner_type", sa.String(length=16), nullable=False, server_default="seller"),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("listing_type", sa.String(length=10), nullable=False, server_default="sale"),
        sa.Column("property_type", sa.String(length=40), nullable=False, server_default="house"),
        sa.Column("price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("address", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("city", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("state", sa.String(length=80), nullable=False, server_default=""),
        sa.Column("zip_code", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("bedrooms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bathrooms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("square_feet", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("year_built", sa.Integer(), nullable=True),
        sa.Column("images_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("amenities_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("moderation_reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("verification_status", sa.String(length=20), nullable=False, server_default="unverified"),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("verified_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])
    op.create_index("ix_properties_listing_type", "properties", ["listing_type"])
    op.create_index("ix_properties_property_type", "properties", ["property_type"])
    op.create_index("ix_properties_city", "properties", ["city"])
    op.create_index("ix_properties_status", "properties", ["status"])
    op.create_index("ix_properties_verification_status", "properties", ["verification_status"])

    op.create_table(
        "property_documents",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("property_id", sa.String(length=36), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("document_type", sa.String(length=60), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("file_url", sa.String(length=1024), nullable=False),
        sa.Column("storage_key", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("uploaded_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_property_documents_property_id", "property_documents", ["property_id"])

    op.create_table(
        "inquiries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("property_id", sa.String(length=36), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("buyer_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seller_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_inquiries_property_id", "inquiries", ["property_id"])
    op.create_index("ix_inquiries_buyer_id", "inquiries", ["buyer_id"])
    op.create_index("ix_inquiries_seller_id", "inquiries", ["seller_id"])

    op.create_table(
        "favorites",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("property_id", sa.String(length=36), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "property_id", name="uq_favorite_user_property"),
    )
    op.create_index("ix_favorites_user_id", "favorites", ["user_id"])
    op.create_index("ix_favorites_property_id", "favorites", ["property_id"])

    op.create_table(
        "moderation_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=40), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_moderation_logs_actor_user_id", "moderation_logs", ["actor_user_id"])
    op.create_index("ix_moderation_logs_entity_type", "moderation_logs", ["entity_type"])
    op.create_index("ix_moderation_logs_entity_id", "moderation_logs", ["entity_id"])
    op.create_index("ix_moderation_logs_action", "moderation_logs", ["action"])


def downgrade() -> None:
    op.drop_table("moderation_logs")
    op.drop_table("favorites")
    op.drop_table("inquiries")
    op.drop_table("property_documents")
    op.drop_table("properties")
    op.drop_table("otp_codes")
    op.drop_table("users")
