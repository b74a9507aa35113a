# models/binary/binary_node.py
"""
BinaryNode model - one row per placed user.

Arena-indexed: nodes reference each other by id only, no ORM relationships
between parent and children. Traversal goes through TreeStore.
"""
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey, UniqueConstraint
)
from models.base import Base, AuditMixin


class BinaryNode(Base, AuditMixin):
    __tablename__ = 'binary_nodes'
    __table_args__ = (
        # One occupant per slot; the loser of a placement race hits this
        UniqueConstraint('parentID', 'position', name='uq_binary_slot'),
    )

    nodeID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, nullable=False, unique=True, index=True)

    parentID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=True, index=True)
    position = Column(String(5), nullable=False)  # left / right / root
    leftChildID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=True)
    rightChildID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=True)

    # Volumes
    personalVolume = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))
    leftVolume = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))
    rightVolume = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))

    # Leg volume not yet consumed by matching; lifetime volumes above stay untouched
    leftUnmatched = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))
    rightUnmatched = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))

    # Subtree node counts (balanced placement)
    leftCount = Column(Integer, nullable=False, default=0)
    rightCount = Column(Integer, nullable=False, default=0)

    isActive = Column(Boolean, nullable=False, default=True)
    level = Column(Integer, nullable=False, default=0)

    # Matching history
    matchedToDate = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))
    lastMatchedAt = Column(DateTime(timezone=True), nullable=True)

    def childID(self, position: str):
        return self.leftChildID if position == "left" else self.rightChildID

    def setChildID(self, position: str, nodeId):
        if position == "left":
            self.leftChildID = nodeId
        else:
            self.rightChildID = nodeId

    def __repr__(self):
        return (
            f"<BinaryNode(nodeID={self.nodeID}, user={self.userID}, parent={self.parentID}, "
            f"pos={self.position}, L={self.leftVolume}, R={self.rightVolume})>"
        )
