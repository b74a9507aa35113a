# models/binary/binary_settings.py
"""
BinarySettingsRecord - persisted singleton of the binary plan settings.
Every save bumps `version`; readers cache by version.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, Boolean
from models.base import Base, AuditMixin


class BinarySettingsRecord(Base, AuditMixin):
    __tablename__ = 'binary_settings'

    settingsID = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False, default=1)

    spilloverEnabled = Column(Boolean, nullable=False, default=True)
    spilloverRule = Column(String(10), nullable=False, default="auto")
    placementPriority = Column(String(12), nullable=False, default="weaker-leg")

    cappingEnabled = Column(Boolean, nullable=False, default=True)
    dailyCap = Column(DECIMAL(18, 4), nullable=False, default=Decimal("5000"))
    weeklyCap = Column(DECIMAL(18, 4), nullable=False, default=Decimal("30000"))
    monthlyCap = Column(DECIMAL(18, 4), nullable=False, default=Decimal("100000"))

    matchingBonusPercentage = Column(DECIMAL(7, 4), nullable=False, default=Decimal("10"))

    carryForwardEnabled = Column(Boolean, nullable=False, default=True)
    maxCarryForwardDays = Column(Integer, nullable=False, default=30)
    minMatchAmount = Column(DECIMAL(18, 4), nullable=False, default=Decimal("0"))

    updatedBy = Column(String, nullable=True)

    def __repr__(self):
        return f"<BinarySettingsRecord(version={self.version}, priority={self.placementPriority})>"
