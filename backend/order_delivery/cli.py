"""Management CLI.

Usage:
    python -m order_delivery.cli purge-stale-sessions [HOURS]   # Delete abandoned registrations
    python -m order_delivery.cli check-db                       # Verify the database is reachable
"""

import asyncio
import logging
import sys

from order_delivery.config import settings
from order_delivery.services.scheduler import purge_stale_sessions
from order_delivery.unit_of_work import UnitOfWork


def purge(ttl_hours: int) -> None:
    count = asyncio.run(purge_stale_sessions(ttl_hours))
    print(f"Purged {count} registration session(s) idle for more than {ttl_hours}h")


def check_db() -> bool:
    async def _check() -> bool:
        async with UnitOfWork() as uow:
            return await uow.can_connect()

    ok = asyncio.run(_check())
    print("  OK" if ok else "  FAILED: database unreachable")
    return ok


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "purge-stale-sessions":
        hours = int(sys.argv[2]) if len(sys.argv) > 2 else settings.registration_session_ttl_hours
        purge(hours)
    elif cmd == "check-db":
        sys.exit(0 if check_db() else 1)
    else:
        print("Usage: python -m order_delivery.cli [purge-stale-sessions [HOURS]|check-db]")
