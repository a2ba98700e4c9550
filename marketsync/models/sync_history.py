# marketsync/models/sync_history.py
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text

from marketsync.database import Base


class SyncHistory(Base):
    """
    One row per sealed sync task. Rows are written once and never updated.
    """
    __tablename__ = "sync_history"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("marketplace_accounts.id"), nullable=False, index=True)
    strategy = Column(String, nullable=False, index=True)

    processed = Column(Integer, default=0)
    updated = Column(Integer, default=0)
    created = Column(Integer, default=0)
    errored = Column(Integer, default=0)
    errors = Column(JSON, default=list)
    skipped = Column(JSON, default=list)

    success = Column(Boolean, nullable=False)
    fatal_error = Column(Text, nullable=True)
    duration_seconds = Column(Float, default=0.0)

    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (f"<SyncHistory(id={self.id}, account_id={self.account_id}, strategy='{self.strategy}', "
                f"processed={self.processed}, errored={self.errored})>")
