# marketsync/models/replenishment_config.py
from sqlalchemy import Column, Float, ForeignKey, Integer, String

from marketsync.database import Base


class ReplenishmentConfig(Base):
    """
    Lead times and safety stock for restock suggestions.

    A row with product_id NULL is the tenant default; a product row overrides it.
    Threshold columns left NULL fall back to application settings.
    """
    __tablename__ = "replenishment_configs"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)

    avg_delivery_days = Column(Integer, default=7)
    full_release_days = Column(Integer, default=3)
    safety_stock = Column(Integer, default=10)
    min_coverage_days = Column(Integer, default=30)

    low_stock_floor = Column(Integer, nullable=True)
    divergence_ratio = Column(Float, nullable=True)
    critical_band = Column(Float, nullable=True)
    attention_band = Column(Float, nullable=True)
