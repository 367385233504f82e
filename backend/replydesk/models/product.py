from sqlalchemy import Column, String, Float, Boolean, Integer, DateTime, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector

from replydesk.db.base import Base
from replydesk.core.config import settings


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String, unique=True, index=True, nullable=True)  # catalog platform id
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    vendor = Column(String, nullable=True)
    product_type = Column(String, nullable=True)
    min_price = Column(Float, nullable=True)
    max_price = Column(Float, nullable=True)
    currency = Column(String, default="TRY", nullable=False)
    total_inventory = Column(Integer, nullable=True)
    variants = Column(JSONB, default=list)  # [{"title": ..., "price": ..., "inventory": ...}]
    image_url = Column(String, nullable=True)
    product_url = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    embedding = Column(Vector(settings.VECTOR_DIMENSIONS), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
