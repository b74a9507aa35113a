# models/binary/placement_record.py
"""
PlacementRecord - placement history consumed by audit/reporting.
"""
from sqlalchemy import Column, Integer, String, DateTime
from models.base import Base, _get_current_time


class PlacementRecord(Base):
    __tablename__ = 'binary_placements'

    placementID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, nullable=False, index=True)
    sponsorUserID = Column(Integer, nullable=True)
    nodeID = Column(Integer, nullable=False)
    parentNodeID = Column(Integer, nullable=True)
    position = Column(String(5), nullable=False)
    mode = Column(String(10), nullable=False)  # auto / manual / root
    reason = Column(String, nullable=True)
    placedBy = Column(String, nullable=True)
    createdAt = Column(DateTime(timezone=True), default=_get_current_time)

    def __repr__(self):
        return (
            f"<PlacementRecord(user={self.userID}, parent={self.parentNodeID}, "
            f"pos={self.position}, mode={self.mode})>"
        )
