"""
CommissionLedgerEntry - journal written by the default ledger collaborator.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime
from models.base import Base, _get_current_time


class CommissionLedgerEntry(Base):
    __tablename__ = 'commission_ledger'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    recipientUserID = Column(Integer, nullable=False, index=True)
    kind = Column(String(20), nullable=False, index=True)
    amount = Column(DECIMAL(18, 4), nullable=False)
    sourceEvent = Column(String, nullable=False)
    level = Column(Integer, nullable=True)
    createdAt = Column(DateTime(timezone=True), default=_get_current_time, index=True)

    def __repr__(self):
        return (
            f"<CommissionLedgerEntry(user={self.recipientUserID}, kind={self.kind}, "
            f"amount={self.amount}, source={self.sourceEvent})>"
        )
