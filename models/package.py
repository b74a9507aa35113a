"""
Package model - investment packages and their level commission tables.
DECIMAL columns for precise financial calculations.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Package(Base, AuditMixin):
    __tablename__ = 'packages'

    packageID = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)

    minInvestment = Column(DECIMAL(18, 4), nullable=False)
    maxInvestment = Column(DECIMAL(18, 4), nullable=False)
    dailyReturnPercentage = Column(DECIMAL(7, 4), nullable=False)
    durationDays = Column(Integer, nullable=False)

    directCommissionPercentage = Column(DECIMAL(7, 4), nullable=False, default=0)
    binaryBonusPercentage = Column(DECIMAL(7, 4), nullable=False, default=0)
    levelDepth = Column(Integer, nullable=False, default=5)

    isActive = Column(Boolean, default=True)

    # Relationship
    levelCommissions = relationship(
        'PackageLevelCommission',
        back_populates='package',
        order_by='PackageLevelCommission.level',
        cascade='all, delete-orphan'
    )

    def __repr__(self):
        return f"<Package(packageID={self.packageID}, name={self.name}, depth={self.levelDepth})>"


class PackageLevelCommission(Base):
    __tablename__ = 'package_level_commissions'
    __table_args__ = (
        UniqueConstraint('packageID', 'level', name='uq_package_level'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    packageID = Column(Integer, ForeignKey('packages.packageID'), nullable=False, index=True)
    level = Column(Integer, nullable=False)
    percentage = Column(DECIMAL(7, 4), nullable=False)

    package = relationship('Package', back_populates='levelCommissions')

    def __repr__(self):
        return f"<PackageLevelCommission(package={self.packageID}, level={self.level}, pct={self.percentage})>"
