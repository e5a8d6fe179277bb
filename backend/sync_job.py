"""Push local courses and schedules to the remote mirror - can be run as a cron job."""
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from db import create_db_and_tables, make_engine
from remote import mirror_from_env
from store import LocalStore
from sync import SyncEngine

logging.basicConfig(level=logging.INFO)


def main() -> int:
    engine = make_engine()
    create_db_and_tables(engine)
    store = LocalStore(engine)
    sync_engine = SyncEngine(mirror_from_env())
    try:
        result = sync_engine.sync_all(store)
    finally:
        sync_engine.close()
        store.close()

    for step in result.steps:
        print(f"SUCCESS: {step.collection}: {step.synced} synced, {step.deleted} deleted")
    if not result.ok:
        print(f"ERROR: sync failed at {result.failed_step}: {result.error.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
