# models/binary/binary_match.py
"""
BinaryMatchRecord - one row per matching computation that consumed volume.

Written in the same transaction as the unmatched-leg update, so the history
always agrees with the node. Leg figures are unmatched volume, not lifetime.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey, Index
from models.base import Base, _get_current_time


class BinaryMatchRecord(Base):
    __tablename__ = 'binary_matches'

    matchID = Column(Integer, primary_key=True, autoincrement=True)
    nodeID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=False)
    userID = Column(Integer, nullable=False, index=True)
    period = Column(String(5), nullable=False)  # close that triggered it

    leftBefore = Column(DECIMAL(18, 4), nullable=False)
    rightBefore = Column(DECIMAL(18, 4), nullable=False)
    leftAfter = Column(DECIMAL(18, 4), nullable=False)
    rightAfter = Column(DECIMAL(18, 4), nullable=False)

    # min(leftBefore, rightBefore)
    matchedVolume = Column(DECIMAL(18, 4), nullable=False)
    carryIn = Column(DECIMAL(18, 4), nullable=False, default=0)
    payout = Column(DECIMAL(18, 4), nullable=False)
    percentage = Column(DECIMAL(7, 4), nullable=False)
    residual = Column(DECIMAL(18, 4), nullable=False, default=0)
    capped = Column(Boolean, nullable=False, default=False)
    bindingWindow = Column(String(5), nullable=True)

    createdAt = Column(DateTime(timezone=True), nullable=False, default=_get_current_time)

    __table_args__ = (
        Index('ix_binary_matches_node_created', 'nodeID', 'createdAt'),
    )

    def __repr__(self):
        return (
            f"<BinaryMatchRecord(node={self.nodeID}, matched={self.matchedVolume}, "
            f"payout={self.payout}, period={self.period})>"
        )
