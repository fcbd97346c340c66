#!/usr/bin/env python3
"""
On-demand reconciliation run.

Checks every review linked to an external project, reverts projects marked
"Live" whose review is not Approved, and prints a report. Configuration is
read from the same environment variables as the service.

Exit codes:
    0  every project is consistent (or was corrected)
    1  at least one drift could not be corrected
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from review_engine.config import Settings  # noqa: E402
from review_engine.reconciliation import ReconciliationReport  # noqa: E402
from review_engine.services import build_services  # noqa: E402


def generate_report(report: ReconciliationReport) -> str:
    lines = [
        "",
        "=" * 70,
        "RECONCILIATION REPORT",
        "=" * 70,
        f"Started:   {report.started_at.isoformat()}",
        f"Finished:  {report.finished_at.isoformat() if report.finished_at else '-'}",
        f"Summary:   {report.summary}",
        f"Corrected: {report.corrected_count}",
        "",
    ]
    for result in report.results:
        if result.corrected:
            marker = "FIXED"
        elif not result.is_valid:
            marker = "DRIFT"
        elif result.error:
            marker = "SKIP "
        else:
            marker = "OK   "
        lines.append(
            f"[{marker}] review {result.review_id} / project {result.external_project_id}: "
            f"{result.message}"
        )
        if result.error:
            lines.append(f"        error: {result.error}")
    lines.extend(["", "=" * 70])
    return "\n".join(lines)


async def main(argv=None):
    parser = argparse.ArgumentParser(description="Reconcile review statuses with external projects")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=None,
        help="Override RECONCILE_MAX_CONCURRENCY",
    )
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.max_concurrency is not None:
        settings.reconcile_max_concurrency = args.max_concurrency

    services = build_services(settings)
    report = await services.reconciliation.reconcile_all()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(generate_report(report))

    uncorrected = [r for r in report.results if not r.is_valid and not r.corrected]
    sys.exit(1 if uncorrected else 0)


if __name__ == "__main__":
    asyncio.run(main())
