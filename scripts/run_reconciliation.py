# scripts/run_reconciliation.py
"""
Scheduled reconciliation sweep between Firebase and Supabase.

Usage:
    python scripts/run_reconciliation.py                  # report only
    python scripts/run_reconciliation.py --sync           # copy rows to the lagging side
    python scripts/run_reconciliation.py --sync --by-row-id --tenant farm-1

Exit code is 0 for PASSED, 1 for WARNING and 2 for FAILED.
"""
import argparse
import json
import logging
import sys

from dairy_sync import create_app
from dairy_sync.models.reconciliation import ReconciliationStatus

EXIT_CODES = {
    ReconciliationStatus.PASSED: 0,
    ReconciliationStatus.WARNING: 1,
    ReconciliationStatus.FAILED: 2,
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Compare Firebase and Supabase row counts per tenant and table.")
    parser.add_argument('--sync', action='store_true', help="copy rows to the side with fewer rows")
    parser.add_argument('--by-row-id', action='store_true', help="with --sync, copy missing ids in both directions")
    parser.add_argument('--tenant', action='append', dest='tenants', help="limit to a tenant (repeatable)")
    args = parser.parse_args(argv)

    app = create_app()
    job = app.services['reconciliation']

    report = job.run(tenant_ids=args.tenants)
    result = report.to_dict()
    if args.sync and report.discrepancies:
        result['synced_rows'] = job.sync_discrepancies(report.discrepancies, by_row_id=args.by_row_id)
        logging.info(f"Synced {result['synced_rows']} rows")

    print(json.dumps(result, indent=2))
    return EXIT_CODES[report.status]


if __name__ == '__main__':
    sys.exit(main())
