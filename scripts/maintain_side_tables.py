"""
Maintenance jobs for the emergency lifecycle store.

  reconcile  Rebuild the active-emergency index and unit availability from
             record status (repair after partial side-table failures).
  sweep      Auto-advance confirmation gates whose timeout has elapsed. With
             --interval it keeps running; otherwise it does a single pass.

Usage:
    REDIS_HOST=localhost python scripts/maintain_side_tables.py reconcile
    python scripts/maintain_side_tables.py sweep --interval 60

Run from the project root so the shared module is importable.
"""

import argparse
import logging
import os
import sys
import time

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.join(ROOT, "services", "emergency-lifecycle"))

from shared.record_store import create_record_store
from coordinator import EmergencyCoordinator
from reconcile import rebuild_active_index, reconcile_units

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def reconcile(coordinator: EmergencyCoordinator) -> None:
    open_ids = rebuild_active_index(coordinator.repository, coordinator.active_index)
    result = reconcile_units(coordinator.repository)
    logger.info(
        f"Reconciled: {len(open_ids)} active, "
        f"{len(result['released'])} units released, {len(result['occupied'])} units marked busy"
    )


def sweep(coordinator: EmergencyCoordinator, interval: int) -> None:
    while True:
        advanced = coordinator.sweep_timeouts()
        logger.info(f"Sweep pass advanced {len(advanced)} emergencies")
        if interval <= 0:
            return
        time.sleep(interval)


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("reconcile")
    sweep_parser = sub.add_parser("sweep")
    sweep_parser.add_argument("--interval", type=int, default=0, help="seconds between passes (0 = run once)")
    args = parser.parse_args()

    coordinator = EmergencyCoordinator(create_record_store())
    try:
        if args.command == "reconcile":
            reconcile(coordinator)
        else:
            sweep(coordinator, args.interval)
    except KeyboardInterrupt:
        logger.info("Stopped.")


if __name__ == "__main__":
    main()
