"""storefront baseline: products, wishlist_items, browsing_history, product_recommendations

Revision ID: 0001_storefront_baseline
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_storefront_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("discount", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("subcategory", sa.String(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("rating_count", sa.Integer(), nullable=True),
        sa.Column("popularity", sa.Float(), nullable=True),
        sa.Column("colors", sa.JSON(), nullable=True),
        sa.Column("sizes", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_products_brand", "products", ["brand"])
    op.create_index("ix_products_category", "products", ["category"])

    op.create_table(
        "wishlist_items",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("added_at", sa.DateTime(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("notes", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("price_alert_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("original_price", sa.Float(), nullable=True),
        sa.UniqueConstraint("user_id", "product_id", name="uq_wishlist_items_user_product"),
    )
    op.create_index("ix_wishlist_items_user_id", "wishlist_items", ["user_id"])
    op.create_index("ix_wishlist_items_product_id", "wishlist_items", ["product_id"])

    op.create_table(
        "browsing_history",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("viewed_at", sa.DateTime(), nullable=False),
        sa.Column("source", sa.String(), nullable=False, server_default="direct"),
        sa.Column("time_spent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("device_info", sa.String(), nullable=False, server_default=""),
        sa.Column("scroll_depth", sa.Float(), nullable=False, server_default="0"),
        sa.Column("added_to_wishlist", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("added_to_bag", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_browsing_history_user_id", "browsing_history", ["user_id"])
    op.create_index("ix_browsing_history_product_id", "browsing_history", ["product_id"])
    op.create_index("ix_browsing_history_session_id", "browsing_history", ["session_id"])
    op.create_index("ix_browsing_history_viewed_at", "browsing_history", ["viewed_at"])
    op.create_index("idx_browsing_history_user_viewed", "browsing_history", ["user_id", "viewed_at"])
    op.create_index("idx_browsing_history_product_viewed", "browsing_history", ["product_id", "viewed_at"])
    op.create_index("idx_browsing_history_session_viewed", "browsing_history", ["session_id", "viewed_at"])

    op.create_table(
        "product_recommendations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("for_product_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("recommended_products", sa.JSON(), nullable=False),
        sa.Column("algorithm", sa.String(), nullable=False),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_product_recommendations_for_product_id", "product_recommendations", ["for_product_id"])
    op.create_index("ix_product_recommendations_last_updated", "product_recommendations", ["last_updated"])
    op.create_index("ix_product_recommendations_expires_at", "product_recommendations", ["expires_at"])
    op.create_index(
        "idx_product_recommendations_product_user",
        "product_recommendations",
        ["for_product_id", "user_id"],
    )


def downgrade() -> None:
    op.drop_table("product_recommendations")
    op.drop_table("browsing_history")
    op.drop_table("wishlist_items")
    op.drop_index("ix_products_category", table_name="products")
    op.drop_index("ix_products_brand", table_name="products")
    op.drop_table("products")
