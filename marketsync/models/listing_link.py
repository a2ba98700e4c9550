# marketsync/models/listing_link.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from marketsync.core.enums import SyncStatus
from marketsync.database import Base


class ListingLink(Base):
    """Mirror of a remote listing plus its link to a local product."""
    __tablename__ = "listing_links"
    __table_args__ = (UniqueConstraint("account_id", "item_id", name="uq_listing_links_account_item"),)

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("marketplace_accounts.id"), nullable=False, index=True)
    item_id = Column(String, nullable=False, index=True)
    # Null while the remote listing has no local counterpart
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)

    # --- Mirrored remote fields ---
    title = Column(String, default="")
    price_cents = Column(Integer, default=0)
    original_price_cents = Column(Integer, nullable=True)
    available_quantity = Column(Integer, default=0)
    sold_quantity = Column(Integer, default=0)
    sold_last_90d = Column(Integer, default=0)
    status = Column(String, default="active", index=True)
    remote_updated_at = Column(DateTime(timezone=True), nullable=True)
    shipping_mode = Column(String, nullable=True)
    logistic_type = Column(String, nullable=True)

    # --- Sync bookkeeping ---
    last_synced_at = Column(DateTime(timezone=True), nullable=True, index=True)
    sync_status = Column(String, default=SyncStatus.PENDING.value, index=True)
    sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return (f"<ListingLink(id={self.id}, item_id='{self.item_id}', product_id={self.product_id}, "
                f"qty={self.available_quantity}, sync_status='{self.sync_status}')>")
