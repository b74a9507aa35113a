# compensation/services/settings_service.py
"""
Database-backed package and binary settings provider.

Reload policy: BinarySettings are cached process-wide together with the row
version. After SETTINGS_CACHE_TTL seconds the version is re-read; the full
record is reloaded only when the version moved. Saving settings bumps the
version and drops the cache.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging
import time

from config import Config
from models.binary.binary_settings import BinarySettingsRecord
from models.package import Package as PackageRecord, PackageLevelCommission
from compensation.config.plan import validate_binary_settings, validate_package
from compensation.errors import DependencyUnavailable, InvalidConfiguration, PackageNotFound
from compensation.interfaces import PackageSettingsProvider
from compensation.types import BinarySettings, Package, PlacementPriority, SpilloverRule

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1

# Lazy-loaded settings cache
_SETTINGS_CACHE: Dict[str, Any] = {"settings": None, "checkedAt": 0.0}


def invalidate_settings_cache():
    """Force the next getBinarySettings() to hit the database."""
    _SETTINGS_CACHE["settings"] = None
    _SETTINGS_CACHE["checkedAt"] = 0.0


def _to_decimal(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


class SettingsService(PackageSettingsProvider):
    """Service for reading and writing plan configuration."""

    def __init__(self, session: Session):
        self.session = session

    # ============================================================
    # BINARY SETTINGS
    # ============================================================

    def getBinarySettings(self) -> BinarySettings:
        """
        Current binary settings (cached, versioned).

        Raises:
            DependencyUnavailable: Database lookup failed
            InvalidConfiguration: Stored settings are invalid
        """
        cached: Optional[BinarySettings] = _SETTINGS_CACHE["settings"]
        ttl = Config.get(Config.SETTINGS_CACHE_TTL, 60)
        now = time.monotonic()

        if cached is not None and now - _SETTINGS_CACHE["checkedAt"] < ttl:
            return cached

        try:
            if cached is not None:
                version = self.session.query(BinarySettingsRecord.version).filter_by(
                    settingsID=SETTINGS_ROW_ID
                ).scalar()
                if version == cached.version:
                    _SETTINGS_CACHE["checkedAt"] = now
                    return cached

            record = self.session.query(BinarySettingsRecord).filter_by(
                settingsID=SETTINGS_ROW_ID
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Binary settings lookup failed: {e}", exc_info=True)
            raise DependencyUnavailable(f"Binary settings unavailable: {e}") from e

        if record is None:
            logger.info("No binary settings stored, using defaults")
            settings = BinarySettings()
        else:
            settings = self._recordToSettings(record)

        validate_binary_settings(settings)

        _SETTINGS_CACHE["settings"] = settings
        _SETTINGS_CACHE["checkedAt"] = now
        logger.info(f"Loaded binary settings version {settings.version}")

        return settings

    def saveBinarySettings(self, settings: BinarySettings, updatedBy: Optional[str] = None) -> BinarySettings:
        """
        Validate and persist settings, bumping the version.

        Raises:
            InvalidConfiguration: Settings rejected at write time
            DependencyUnavailable: Database write failed
        """
        validate_binary_settings(settings, strict=True)

        try:
            record = self.session.query(BinarySettingsRecord).filter_by(
                settingsID=SETTINGS_ROW_ID
            ).with_for_update().first()

            if record is None:
                record = BinarySettingsRecord(settingsID=SETTINGS_ROW_ID, version=0)
                self.session.add(record)

            record.spilloverEnabled = settings.spilloverEnabled
            record.spilloverRule = settings.spilloverRule.value
            record.placementPriority = settings.placementPriority.value
            record.cappingEnabled = settings.cappingEnabled
            record.dailyCap = settings.dailyCap
            record.weeklyCap = settings.weeklyCap
            record.monthlyCap = settings.monthlyCap
            record.matchingBonusPercentage = settings.matchingBonusPercentage
            record.carryForwardEnabled = settings.carryForwardEnabled
            record.maxCarryForwardDays = settings.maxCarryForwardDays
            record.minMatchAmount = settings.minMatchAmount
            record.version = (record.version or 0) + 1
            record.updatedBy = updatedBy

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Saving binary settings failed: {e}", exc_info=True)
            raise DependencyUnavailable(f"Binary settings write failed: {e}") from e

        invalidate_settings_cache()
        logger.info(f"Binary settings saved: version {record.version} by {updatedBy or 'system'}")

        return self._recordToSettings(record)

    @staticmethod
    def _recordToSettings(record: BinarySettingsRecord) -> BinarySettings:
        try:
            rule = SpilloverRule(record.spilloverRule)
            priority = PlacementPriority(record.placementPriority)
        except ValueError as e:
            raise InvalidConfiguration(f"Invalid stored binary settings: {e}") from e

        return BinarySettings(
            spilloverEnabled=bool(record.spilloverEnabled),
            spilloverRule=rule,
            placementPriority=priority,
            cappingEnabled=bool(record.cappingEnabled),
            dailyCap=_to_decimal(record.dailyCap),
            weeklyCap=_to_decimal(record.weeklyCap),
            monthlyCap=_to_decimal(record.monthlyCap),
            matchingBonusPercentage=_to_decimal(record.matchingBonusPercentage),
            carryForwardEnabled=bool(record.carryForwardEnabled),
            maxCarryForwardDays=int(record.maxCarryForwardDays),
            minMatchAmount=_to_decimal(record.minMatchAmount),
            version=int(record.version),
        )

    # ============================================================
    # PACKAGES
    # ============================================================

    def getPackage(self, packageId: int) -> Package:
        """
        Raises:
            PackageNotFound: Unknown id
            DependencyUnavailable: Database lookup failed
            InvalidConfiguration: Stored package is invalid
        """
        try:
            record = self.session.query(PackageRecord).filter_by(packageID=packageId).first()
            if record is None:
                raise PackageNotFound(f"Package {packageId} not found")

            percentages = self._levelPercentages(record)
        except SQLAlchemyError as e:
            logger.error(f"Package {packageId} lookup failed: {e}", exc_info=True)
            raise DependencyUnavailable(f"Package {packageId} unavailable: {e}") from e

        package = Package(
            id=record.packageID,
            name=record.name,
            minInvestment=_to_decimal(record.minInvestment),
            maxInvestment=_to_decimal(record.maxInvestment),
            dailyReturnPercentage=_to_decimal(record.dailyReturnPercentage),
            durationDays=int(record.durationDays),
            directCommissionPercentage=_to_decimal(record.directCommissionPercentage),
            binaryBonusPercentage=_to_decimal(record.binaryBonusPercentage),
            levelDepth=int(record.levelDepth),
            levelPercentages=percentages,
        )

        return validate_package(package)

    def getLevelCommissionTable(self, packageId: int) -> List[Dict[str, Decimal]]:
        package = self.getPackage(packageId)
        return [
            {"level": level, "percentage": package.levelPercentage(level)}
            for level in range(1, package.levelDepth + 1)
        ]

    def savePackage(self, package: Package) -> Package:
        """
        Validate and upsert a package with its level table.

        Raises:
            InvalidConfiguration: Package rejected
            DependencyUnavailable: Database write failed
        """
        validate_package(package)

        try:
            record = self.session.query(PackageRecord).filter_by(packageID=package.id).first()
            if record is None:
                record = PackageRecord(packageID=package.id)
                self.session.add(record)

            record.name = package.name
            record.minInvestment = package.minInvestment
            record.maxInvestment = package.maxInvestment
            record.dailyReturnPercentage = package.dailyReturnPercentage
            record.durationDays = package.durationDays
            record.directCommissionPercentage = package.directCommissionPercentage
            record.binaryBonusPercentage = package.binaryBonusPercentage
            record.levelDepth = package.levelDepth
            record.isActive = True

            # Old rows must be deleted before new ones hit uq_package_level
            record.levelCommissions.clear()
            self.session.flush()

            record.levelCommissions = [
                PackageLevelCommission(level=level, percentage=pct)
                for level, pct in enumerate(package.levelPercentages, start=1)
            ]

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Saving package {package.id} failed: {e}", exc_info=True)
            raise DependencyUnavailable(f"Package write failed: {e}") from e

        logger.info(f"Package {package.id} ({package.name}) saved, depth={package.levelDepth}")
        return package

    @staticmethod
    def _levelPercentages(record: PackageRecord) -> tuple:
        """Level table as a dense tuple; missing levels read as 0%."""
        by_level = {lc.level: _to_decimal(lc.percentage) for lc in record.levelCommissions}
        if any(level < 1 or level > record.levelDepth for level in by_level):
            raise InvalidConfiguration(
                f"Package {record.packageID}: level table outside 1..{record.levelDepth}"
            )
        return tuple(by_level.get(level, Decimal("0")) for level in range(1, record.levelDepth + 1))
