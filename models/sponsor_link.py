"""
SponsorLink model - referral chain used for level income.
Independent of binary placement.
"""
from sqlalchemy import Column, Integer
from models.base import Base, AuditMixin


class SponsorLink(Base, AuditMixin):
    __tablename__ = 'sponsor_links'

    userID = Column(Integer, primary_key=True)
    sponsorUserID = Column(Integer, nullable=True, index=True)

    def __repr__(self):
        return f"<SponsorLink(user={self.userID}, sponsor={self.sponsorUserID})>"
