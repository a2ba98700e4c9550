# marketsync/models/product.py
"""
Read models for the local catalogue.

Product CRUD lives elsewhere in the inventory system; the sync core only reads
SKU, cost and per-warehouse stock.
"""
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from marketsync.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    sku = Column(String, nullable=False, index=True)
    title = Column(String, default="")
    cost_cents = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True)

    stock_levels = relationship("StockLevel", back_populates="product", lazy="selectin")


class StockLevel(Base):
    __tablename__ = "stock_levels"
    __table_args__ = (UniqueConstraint("product_id", "warehouse_id", name="uq_stock_levels_product_warehouse"),)

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = Column(String, nullable=False)
    quantity = Column(Integer, default=0, nullable=False)

    product = relationship("Product", back_populates="stock_levels")
