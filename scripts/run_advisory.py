#!/usr/bin/env python3
"""
Advisory Runner Script

Runs the AgriCare advisories for ad-hoc soil values from the command line
and reports the answers together with dispatcher statistics (attempts,
credential rotations, fallbacks).

This script:
1. Builds a field and its conditions from the arguments
2. Fills markers that were not given from the field's simulated series
3. Runs the field insights and the management prescription
4. Prints each advisory and a dispatch summary

Usage:
    python scripts/run_advisory.py --moisture 22 --ph 5.1     Run all advisories
    python scripts/run_advisory.py --crop Potato              Harvest index for Potato
    python scripts/run_advisory.py --report                   Also print the text report
    python scripts/run_advisory.py --dry-run                  Show credential setup only
"""

import argparse
import asyncio
import sys
import time
from datetime import datetime
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from agricare.advisory import (
    AdvisoryService,
    FieldConditions,
    ManagementEntry,
    build_management_report,
    merge_conditions,
    simulate_readings,
)
from agricare.config import configure_logging, get_settings, mask_credential
from agricare.dispatcher import KeyRotatingDispatcher
from agricare.metrics import DispatchStatsStore
from agricare.metrics.reporter import MetricsReporter
from agricare.storage import Field


def print_setup() -> int:
    """Print provider and credential configuration. Returns the key count."""
    settings = get_settings()
    credentials = settings.credentials()

    print(f"\nProvider:      {settings.ai_provider}")
    print(f"Model:         {settings.ai_model}")
    print(f"Retry budget:  {settings.dispatch_retries} ({settings.retry_policy} policy)")
    print(f"Retry delay:   {settings.retry_delay_seconds}s")
    print(f"Credentials:   {len(credentials)} usable")
    for index, key in enumerate(credentials):
        print(f"  #{index}  {mask_credential(key)}")

    return len(credentials)


async def run_advisories(
    field: Field, conditions: FieldConditions, crop: str | None, stats: DispatchStatsStore
) -> tuple:
    """
    Run the field insights and the prescription concurrently.

    Returns:
        (FieldInsights, AdviceResult[ManagementPrescription])
    """
    dispatcher = KeyRotatingDispatcher(stats=stats)
    service = AdvisoryService(dispatcher=dispatcher)

    return await asyncio.gather(
        service.field_insights(field, conditions, crop=crop),
        service.management_prescriptions(field, conditions),
    )


def print_results(insights, prescription, verbose: bool = False) -> None:
    """Print a formatted summary of every advisory."""

    def tag(advice) -> str:
        return " [fallback]" if advice.fallback_used else ""

    print("\n" + "=" * 60)
    print("AGRICARE ADVISORY RESULTS")
    print("=" * 60)

    print(f"\nRecommended crops{tag(insights.crops)}:")
    for crop in insights.crops.value.crops:
        print(f"  {crop.name:<20} {crop.suitability:>5.0f}%  {crop.expected_yield}")
        if verbose:
            print(f"    {crop.requirements}")

    soil = insights.soil.value
    print(f"\nSoil health ({soil.status}){tag(insights.soil)}:")
    print(f"  {soil.summary}")

    print(f"\nManagement plan{tag(insights.plan)}:")
    for task in insights.plan.value.tasks:
        print(f"  [{task.priority:<6}] {task.title}")
        if verbose:
            print(f"    {task.description}")

    harvest = insights.harvest.value
    print(f"\nHarvest index for {harvest.crop}{tag(insights.harvest)}:")
    print(f"  {harvest.score:.0f}% ({harvest.status}) - {harvest.recommendation}")

    rx = prescription.value
    print(f"\nPrescription{tag(prescription)}:")
    print(f"  Irrigation: {'needed, ' + rx.irrigation.volume if rx.irrigation.needed else 'not needed'}")
    if rx.nutrient.needed:
        for fertilizer in rx.nutrient.fertilizers:
            print(f"  Fertilizer: {fertilizer.type} {fertilizer.amount}")
    else:
        print("  Fertilizer: not needed")

    for advice in (insights.crops, insights.soil, insights.plan, insights.harvest, prescription):
        if verbose and advice.error:
            print(f"\n  Fallback reason: {advice.error}")


def print_dispatch_summary(stats: DispatchStatsStore, elapsed_seconds: float) -> None:
    report = MetricsReporter(stats).generate_report()

    print("\nDispatch:")
    print(f"  Calls:       {report.total_dispatches}")
    print(f"  Attempts:    {report.total_attempts}")
    print(f"  Rotations:   {report.total_rotations}")
    print(f"  Success:     {report.success_rate:.1f}%")
    print(f"  Tokens:      {report.total_tokens}")
    print(f"  Total time:  {elapsed_seconds:.2f}s")

    if report.by_credential:
        print(f"\n  {'Credential':<12} {'OK':>4} {'Failed':>7} {'Avg ms':>8}")
        for label, cred in report.by_credential.items():
            print(
                f"  #{label:<11} {cred.successes:>4} {cred.failures:>7} "
                f"{cred.avg_latency_ms:>8.0f}"
            )

    print("\n" + "=" * 60)


def main():
    """Main entry point for the advisory runner."""

    parser = argparse.ArgumentParser(
        description="Run AgriCare advisories for ad-hoc soil values",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_advisory.py --moisture 22 --ph 5.1   Dry, acidic field
  python scripts/run_advisory.py --n 15 --p 10 --k 90     Nutrient-poor field
  python scripts/run_advisory.py --crop Potato            Harvest index for Potato
  python scripts/run_advisory.py --dry-run                Show setup only
        """,
    )

    parser.add_argument("--field-name", default="Demo Field", help="Field name")
    parser.add_argument("--location", default="Bogura", help="Field location")
    parser.add_argument("--size", type=float, default=1.0, help="Area in hectares")
    parser.add_argument("--soil", default="Loamy", help="Soil type")
    parser.add_argument(
        "--field-id",
        type=int,
        default=1,
        help="Seed for the simulated series that fills missing markers",
    )
    parser.add_argument("--temp", type=float, help="Soil temperature (C)")
    parser.add_argument("--moisture", type=float, help="Soil moisture (%%)")
    parser.add_argument("--ph", type=float, help="Soil pH")
    parser.add_argument("--n", type=float, help="Nitrogen (ppm)")
    parser.add_argument("--p", type=float, help="Phosphorus (ppm)")
    parser.add_argument("--k", type=float, help="Potassium (ppm)")
    parser.add_argument("--crop", help="Target crop for the harvest index")
    parser.add_argument(
        "--report", action="store_true", help="Also print the plain-text management report"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show descriptions and fallback reasons"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Show credential setup without calling the AI"
    )

    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings)

    print("=" * 60)
    print("AgriCare Advisory Runner")
    print("=" * 60)

    credential_count = print_setup()

    if args.dry_run:
        print("\n--dry-run specified, skipping advisories.")
        sys.exit(0 if credential_count else 1)

    if credential_count == 0:
        print("\nWARNING: no usable credentials; every advisory will use its fallback")

    try:
        field = Field(
            field_id=args.field_id,
            user_id="cli",
            field_name=args.field_name,
            location=args.location,
            size=args.size,
            soil_type=args.soil,
        )
    except ValueError as e:
        print(f"ERROR: Invalid field: {e}")
        sys.exit(1)

    manual = FieldConditions(
        temperature=args.temp,
        moisture=args.moisture,
        ph_level=args.ph,
        npk_n=args.n,
        npk_p=args.p,
        npk_k=args.k,
    )
    conditions = merge_conditions(manual, simulate_readings(args.field_id)[-1][1])
    print(f"\nConditions: {conditions.describe()}")

    stats = DispatchStatsStore()
    start_time = time.time()
    insights, prescription = asyncio.run(
        run_advisories(field, conditions, args.crop, stats)
    )
    elapsed = time.time() - start_time

    print_results(insights, prescription, verbose=args.verbose)

    if args.report:
        entry = ManagementEntry(field=field, conditions=conditions, prescription=prescription)
        print()
        print(build_management_report([entry], datetime.now()))

    print_dispatch_summary(stats, elapsed)

    # Exit code: 1 when any advisory fell back
    advices = [insights.crops, insights.soil, insights.plan, insights.harvest, prescription]
    sys.exit(1 if any(a.fallback_used for a in advices) else 0)


if __name__ == "__main__":
    main()
