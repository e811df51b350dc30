"""
Nursery Storefront — Payment Reconciliation Job
Resolves stuck checkout attempts; meant to run from cron every few minutes.

Usage:
    python reconcile.py
    python reconcile.py --cleanup
    python reconcile.py --cleanup --dry-run
"""
import argparse
import json
import sys

from storefront.database import init_db, SessionLocal
from storefront.services.finalization_engine import get_finalizer
from storefront.services.reconciliation import ReconciliationService
from storefront.utils.logger import setup_logging


def main():
    parser = argparse.ArgumentParser(description="Reconcile pending Razorpay payments")
    parser.add_argument("--cleanup", action="store_true", help="Also purge rows past their retention window")
    parser.add_argument("--dry-run", action="store_true", help="With --cleanup: count rows without deleting")
    args = parser.parse_args()

    setup_logging()
    init_db()
    service = ReconciliationService(get_finalizer(), SessionLocal)

    output = {"sweep": service.sweep().as_dict()}
    if args.cleanup:
        output["cleanup"] = service.cleanup(dry_run=args.dry_run)

    print(json.dumps(output, indent=2))
    # Non-zero exit lets cron surface attempts that need a human
    return 1 if output["sweep"]["needs_repair"] else 0


if __name__ == "__main__":
    sys.exit(main())
