#!/usr/bin/env python3
"""
Income simulator - preview earnings for an investment in a package.

Usage:
    python scripts/simulate_income.py --package-id 1 --amount 1000 [--robot] [--json]
"""

import sys
import os
import argparse
from decimal import Decimal, InvalidOperation

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from compensation.errors import CompensationError
from compensation.services.settings_service import SettingsService
from compensation.services.simulation_service import SimulationEngine

import logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def money(value) -> str:
    """Two decimals for display; the figures themselves are exact."""
    return f"{value:,.2f}"


def print_result(package, result):
    print("\n" + "=" * 80)
    print(f"SIMULATION: {package.name} (package {package.id}), investment {result.investment}")
    print(f"Robot add-on: {'yes' if result.hasRobotAddon else 'no'}  "
          f"active levels: {result.activeLevels}/{package.levelDepth}")
    print("=" * 80 + "\n")

    print(f"Daily ROI:        {money(result.dailyRoi['min'])} - {money(result.dailyRoi['max'])}")
    print(f"Total return:     {money(result.totalReturn['min'])} - {money(result.totalReturn['max'])} "
          f"({package.durationDays} days)")
    print(f"Direct commission: {money(result.directCommission)}")
    print(f"Binary bonus:     {money(result.binaryBonus)}")

    print("\nLevel  Pct      Amount       Cumulative   Status")
    for row in result.levelCommissions:
        print(f"{row.level:5}  {row.percentage:<7}  {money(row.amount):<11}  {money(row.cumulative):<11}  "
              f"{row.status.value}")

    print(f"\nTotal level income: {money(result.totalLevelIncome)}")
    print(f"Total earnings:     {money(result.totalEarnings)}")

    preview = result.matchingPreview
    if preview is not None:
        print(f"\nMatching preview ({preview.leftVolume} vs {preview.rightVolume}): "
              f"payout {money(preview.payout)}, residual {preview.residual}"
              f"{' (capped)' if preview.capped else ''}")
    print("\n" + "=" * 80 + "\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Simulate income for an investment')
    parser.add_argument('--package-id', type=int, required=True, help='Package id')
    parser.add_argument('--amount', type=str, required=True, help='Investment amount')
    parser.add_argument('--robot', action='store_true', help='Robot add-on active')
    parser.add_argument('--json', action='store_true', help='Print JSON instead of a table')
    args = parser.parse_args()

    Config.initialize_from_env()

    session = get_session()
    try:
        settingsService = SettingsService(session)
        package = settingsService.getPackage(args.package_id)
        settings = settingsService.getBinarySettings()

        result = SimulationEngine().simulate(package, Decimal(args.amount), args.robot, settings)

        if args.json:
            print(result.to_json())
        else:
            print_result(package, result)

    except (CompensationError, ValueError, InvalidOperation) as e:
        print(f"❌ {e}")
        sys.exit(1)
    finally:
        session.close()


if __name__ == "__main__":
    main()
