"""Initial inventory schema: users/RBAC, audit, posts, cabinets, items, locations, alerts.

Revision ID: a0c1e2f3b4d5
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0c1e2f3b4d5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ---------- Users / RBAC ----------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
    )

    # ---------- Posts / contacts ----------
    op.create_table(
        "ambulance_posts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "post_contacts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ambulance_post_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["ambulance_post_id"], ["ambulance_posts.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_post_contacts_post", "post_contacts", ["ambulance_post_id"])

    # ---------- Cabinets ----------
    op.create_table(
        "cabinets",
        sa.Column("id", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("abbreviation", sa.String(3), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "post_cabinet_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ambulance_post_id", sa.String(64), nullable=False),
        sa.Column("cabinet_id", sa.String(10), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["ambulance_post_id"], ["ambulance_posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["cabinet_id"], ["cabinets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("ambulance_post_id", "cabinet_id", name="uq_post_cabinet_order"),
    )

    # ---------- Items / locations ----------
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "medical_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("search_terms", sa.Text(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("alert_email", sa.String(320), nullable=True),
        sa.Column("photo_url", sa.String(1024), nullable=True),
        sa.Column("photo_storage_key", sa.String(512), nullable=True),
        sa.Column("photo_content_type", sa.String(128), nullable=True),
        sa.Column("is_discontinued", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("replacement_item_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["replacement_item_id"], ["medical_items.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_medical_items_name", "medical_items", ["name"])
    op.create_index("idx_medical_items_category", "medical_items", ["category"])

    op.create_table(
        "item_locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("ambulance_post_id", sa.String(64), nullable=False),
        sa.Column("cabinet_id", sa.String(10), nullable=False),
        sa.Column("drawer", sa.String(64), nullable=True),
        sa.Column("contact_person_id", sa.Integer(), nullable=True),
        sa.Column("stock_status", sa.String(32), nullable=False, server_default="op-voorraad"),
        sa.Column("is_low_stock", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["medical_items.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ambulance_post_id"], ["ambulance_posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["cabinet_id"], ["cabinets.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["contact_person_id"], ["post_contacts.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("item_id", "ambulance_post_id", "cabinet_id", "drawer", name="uq_item_location"),
    )
    op.create_index("idx_item_locations_item", "item_locations", ["item_id"])
    op.create_index("idx_item_locations_post", "item_locations", ["ambulance_post_id"])
    op.create_index("idx_item_locations_status", "item_locations", ["stock_status"])

    # ---------- Alerts ----------
    op.create_table(
        "email_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("smtp_host", sa.String(255), nullable=False),
        sa.Column("smtp_port", sa.Integer(), nullable=False, server_default="587"),
        sa.Column("smtp_user", sa.String(255), nullable=True),
        sa.Column("smtp_password", sa.String(255), nullable=True),
        sa.Column("smtp_secure", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("from_email", sa.String(320), nullable=False),
        sa.Column("from_name", sa.String(255), nullable=False, server_default="Medische Inventaris"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "supply_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("item_location_id", sa.Integer(), nullable=True),
        sa.Column("ambulance_post_id", sa.String(64), nullable=True),
        sa.Column("recipient_email", sa.String(320), nullable=True),
        sa.Column("stock_status", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="sent"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("is_automatic", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("requested_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["item_id"], ["medical_items.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["item_location_id"], ["item_locations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["ambulance_post_id"], ["ambulance_posts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["requested_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_supply_requests_item", "supply_requests", ["item_id"])
    op.create_index("idx_supply_requests_post", "supply_requests", ["ambulance_post_id"])

    op.create_table(
        "email_notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), nullable=True),
        sa.Column("recipient_email", sa.String(320), nullable=False),
        sa.Column("subject", sa.String(512), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["medical_items.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_email_notifications_item", "email_notifications", ["item_id"])


def downgrade() -> None:
    op.drop_index("idx_email_notifications_item", table_name="email_notifications")
    op.drop_table("email_notifications")
    op.drop_index("idx_supply_requests_post", table_name="supply_requests")
    op.drop_index("idx_supply_requests_item", table_name="supply_requests")
    op.drop_table("supply_requests")
    op.drop_table("email_config")
    op.drop_index("idx_item_locations_status", table_name="item_locations")
    op.drop_index("idx_item_locations_post", table_name="item_locations")
    op.drop_index("idx_item_locations_item", table_name="item_locations")
    op.drop_table("item_locations")
    op.drop_index("idx_medical_items_category", table_name="medical_items")
    op.drop_index("idx_medical_items_name", table_name="medical_items")
    op.drop_table("medical_items")
    op.drop_table("categories")
    op.drop_table("post_cabinet_orders")
    op.drop_table("cabinets")
    op.drop_index("idx_post_contacts_post", table_name="post_contacts")
    op.drop_table("post_contacts")
    op.drop_table("ambulance_posts")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")
