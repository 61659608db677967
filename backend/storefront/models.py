from sqlalchemy import Column, String, Integer, Text, Boolean, DateTime, ForeignKey, JSON, Float, UniqueConstraint
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
import sqlalchemy as sa
from storefront.database import Base
from storefront.services.domain import ViewSource


def _uuid_str() -> str:
    return str(uuid.uuid4())


class WishlistPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Product(Base):
    """
    Catalog product as read by the recommendation engine.
    Rows are written by the storefront's catalog service; this service only reads them.
    """
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)
    brand = Column(String, nullable=True, index=True)
    price = Column(Float, nullable=True)
    discount = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True, index=True)
    subcategory = Column(String, nullable=True)
    rating = Column(Float, nullable=True)
    rating_count = Column(Integer, nullable=True)
    popularity = Column(Float, nullable=True)
    colors = Column(JSON, nullable=True)
    sizes = Column(JSON, nullable=True)
    # NULL is treated as active, matching catalog rows written before the flag existed
    is_active = Column(Boolean, nullable=True, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    wishlist_entries = relationship("WishlistItem", back_populates="product")


class WishlistItem(Base):
    __tablename__ = "wishlist_items"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    priority = Column(String, nullable=False, default=WishlistPriority.MEDIUM.value)
    notes = Column(String(500), nullable=False, default="")
    price_alert_enabled = Column(Boolean, nullable=False, default=False)
    original_price = Column(Float, nullable=True)

    # Relationships
    product = relationship("Product", back_populates="wishlist_entries")

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_wishlist_items_user_product"),
    )


class BrowsingHistory(Base):
    """
    One view of one product in one session, by a user or an anonymous visitor (user_id NULL).
    Repeated views inside the session window update the same row.
    """
    __tablename__ = "browsing_history"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), nullable=True, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    session_id = Column(String, nullable=False, index=True)
    viewed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    source = Column(String, nullable=False, default=ViewSource.DIRECT.value)
    time_spent = Column(Float, nullable=False, default=0)
    device_info = Column(String, nullable=False, default="")
    scroll_depth = Column(Float, nullable=False, default=0)
    added_to_wishlist = Column(Boolean, nullable=False, default=False)
    added_to_bag = Column(Boolean, nullable=False, default=False)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    product = relationship("Product")

    __table_args__ = (
        sa.Index("idx_browsing_history_user_viewed", "user_id", "viewed_at"),
        sa.Index("idx_browsing_history_product_viewed", "product_id", "viewed_at"),
        sa.Index("idx_browsing_history_session_viewed", "session_id", "viewed_at"),
    )


class ProductRecommendation(Base):
    """
    Cached fusion result for a (product, user) pair; user_id NULL is the anonymous entry.
    recommended_products holds [{"product_id", "score", "reasons"}] in ranked order.
    """
    __tablename__ = "product_recommendations"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    for_product_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    recommended_products = Column(JSON, nullable=False, default=list)
    algorithm = Column(String, nullable=False)
    last_updated = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        sa.Index("idx_product_recommendations_product_user", "for_product_id", "user_id"),
    )
