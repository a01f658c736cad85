from __future__ import annotations

import argparse
import logging
import time
from typing import Optional, Sequence

from cocklock.app.factory import create_lock_manager
from cocklock.application.errors import CockLockError, NoBackendsAvailable, NotAvailable
from cocklock.observability.logging import configure_logging
from cocklock.ports.lock_manager import LockManager

logger = logging.getLogger(__name__)


def poll(manager: LockManager, lock_name: str, ttl_ms: int, interval_seconds: float, iterations: Optional[int] = None) -> int:
    """Try to take ``lock_name`` every ``interval_seconds``; returns how many attempts succeeded."""
    acquired = 0
    attempt = 0
    while iterations is None or attempt < iterations:
        attempt += 1
        try:
            lease = manager.acquire(lock_name, ttl_ms)
            acquired += 1
            print(f"Holding {lock_name} on {lease.backend}")
        except NotAvailable:
            print(f"Someone else holds {lock_name}")
        except NoBackendsAvailable as e:
            print(f"No backend reachable: {e}")
        except CockLockError as e:
            logger.error(f"Unexpected lock error: {e}")
        if iterations is None or attempt < iterations:
            time.sleep(interval_seconds)
    return acquired


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    parser = argparse.ArgumentParser(description="cocklock distributed lock CLI")
    parser.add_argument("--owner-id", dest="owner_id", help="Owner identity; defaults to a fresh UUID")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("provision", help="Create the lock table and reaper on every backend")
    subparsers.add_parser("clean-up", help="Drop the lock table and reaper on every backend")

    acquire_parser = subparsers.add_parser("acquire", help="Acquire or renew a lock once")
    acquire_parser.add_argument("lock_name")
    acquire_parser.add_argument("--ttl-ms", type=int, default=0, help="0 holds the lock until released")

    release_parser = subparsers.add_parser("release", help="Release a lock held by --owner-id")
    release_parser.add_argument("lock_name")

    poll_parser = subparsers.add_parser("poll", help="Repeatedly try to take a lock")
    poll_parser.add_argument("lock_name")
    poll_parser.add_argument("--ttl-ms", type=int, default=10_000)
    poll_parser.add_argument("--interval", type=float, default=1.0, help="Seconds between attempts")
    poll_parser.add_argument("--iterations", type=int, help="Stop after this many attempts")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    try:
        manager = create_lock_manager(owner_id=args.owner_id, provision=args.command != "clean-up")
    except CockLockError as e:
        print(f"Could not start lock manager: {e}")
        return 1

    with manager:
        try:
            if args.command == "clean-up":
                manager.clean_up()
            elif args.command == "acquire":
                lease = manager.acquire(args.lock_name, args.ttl_ms)
                print(f"Acquired {lease.lock_name} as {lease.owner_id} on {lease.backend}")
            elif args.command == "release":
                manager.release(args.lock_name)
                print(f"Released {args.lock_name}")
            elif args.command == "poll":
                poll(manager, args.lock_name, args.ttl_ms, args.interval, args.iterations)
            else:
                print(f"Provisioned {manager.table_name}")
        except NotAvailable as e:
            print(str(e))
            return 2
        except CockLockError as e:
            print(f"{args.command} failed: {e}")
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
