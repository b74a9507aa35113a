# models/binary/carry_forward.py
"""
CarryForwardEntry - residual lesser-leg volume kept for a later computation.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from models.base import Base, _get_current_time


class CarryForwardEntry(Base):
    __tablename__ = 'binary_carry_forward'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    # At most one live entry per node
    nodeID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=False, unique=True)
    leg = Column(String(5), nullable=False)  # lesser leg at creation time

    residualVolume = Column(DECIMAL(18, 4), nullable=False)
    createdAt = Column(DateTime(timezone=True), nullable=False, default=_get_current_time)
    expiresAt = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return (
            f"<CarryForwardEntry(node={self.nodeID}, leg={self.leg}, "
            f"residual={self.residualVolume}, expires={self.expiresAt})>"
        )
