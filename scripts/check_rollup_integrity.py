#!/usr/bin/env python3
"""
Compare every agent's cached commission rollups with the order rows.

Usage:
    python scripts/check_rollup_integrity.py            # report only
    python scripts/check_rollup_integrity.py --fix      # rewrite drifted rollups
    python scripts/check_rollup_integrity.py 42 --fix   # single agent
"""

import argparse
import asyncio
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from config import settings
from database.connection import Database
from database.repositories import AgentRepository
from services import ReconciliationService


async def check_rollups(agent_ids=None, fix=False, database_url=None) -> int:
    """Check (and optionally repair) rollups. Returns the number of drifted agents."""
    db = Database(database_url or settings.database_url, min_size=1, max_size=2)
    await db.initialize()

    try:
        service = ReconciliationService(db)
        if not agent_ids:
            agent_ids = await AgentRepository(db).get_all_ids()

        print("\n" + "=" * 70)
        print("  Commission Rollup Integrity")
        print("=" * 70 + "\n")

        drifted = 0
        for agent_id in agent_ids:
            if fix:
                report = await service.sync_rollups(agent_id)
            else:
                report = await service.check_integrity(agent_id)

            if report is None:
                print(f"? agent {agent_id:<8} not found")
                continue

            if report.is_consistent:
                print(f"  agent {agent_id:<8} ok")
                continue

            drifted += 1
            action = "fixed" if fix else "DRIFT"
            print(f"! agent {agent_id:<8} {action}")
            for issue in report.issues:
                print(f"      - {issue}")

        print(f"\n{len(agent_ids)} agents checked, {drifted} with drift\n")
        return drifted
    finally:
        await db.close()


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("agent_ids", nargs="*", type=int, help="agents to check (default: all)")
    parser.add_argument("--fix", action="store_true", help="rewrite drifted rollups from the order rows")
    parser.add_argument("--database-url", help="override DATABASE_URL")
    args = parser.parse_args()

    drifted = asyncio.run(check_rollups(args.agent_ids, args.fix, args.database_url))
    sys.exit(1 if drifted and not args.fix else 0)


if __name__ == "__main__":
    main()
