# models/binary/period_counter.py
"""
PeriodCounter - payout accumulated by a node in the current cap window.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, UniqueConstraint
from models.base import Base


class PeriodCounter(Base):
    __tablename__ = 'binary_period_counters'
    __table_args__ = (
        UniqueConstraint('nodeID', 'period', name='uq_period_counter'),
    )

    counterID = Column(Integer, primary_key=True, autoincrement=True)
    nodeID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=False, index=True)
    period = Column(String(5), nullable=False)  # day / week / month

    accumulatedPayout = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))
    periodStart = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return (
            f"<PeriodCounter(node={self.nodeID}, period={self.period}, "
            f"paid={self.accumulatedPayout}, start={self.periodStart})>"
        )
