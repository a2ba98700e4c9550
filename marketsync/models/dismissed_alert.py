# marketsync/models/dismissed_alert.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from marketsync.database import Base


class DismissedAlert(Base):
    __tablename__ = "dismissed_alerts"
    __table_args__ = (UniqueConstraint("account_id", "alert_id", name="uq_dismissed_alerts_account_alert"),)

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("marketplace_accounts.id"), nullable=False, index=True)
    alert_id = Column(String, nullable=False)
    dismissed_at = Column(DateTime(timezone=True), server_default=func.now())
