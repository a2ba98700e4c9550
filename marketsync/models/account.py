# marketsync/models/account.py
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, BigInteger
from sqlalchemy.sql import func

from marketsync.database import Base


class MarketplaceAccount(Base):
    """
    A seller account connected through OAuth.

    Tokens are rotated by the auth manager; an account whose refresh fails is
    flagged inactive until the seller reconnects.
    """
    __tablename__ = "marketplace_accounts"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    ml_user_id = Column(BigInteger, nullable=False, index=True)
    nickname = Column(String, nullable=True)
    site_id = Column(String, default="MLB")

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MarketplaceAccount(id={self.id}, ml_user_id={self.ml_user_id}, active={self.is_active})>"
