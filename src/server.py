"""Maintenance runner for the marketplace submission domains.

Runs the expiration sweeps on a fixed interval, independent of request
traffic:
- submissions: ReapExpiredSessions (stale form sessions and their staged files)
- ordering: PurgeExpiredGuestCarts (anonymous carts past their expiry)

Usage:
    python src/server.py                       # Sweep both domains every interval
    python src/server.py --domain submissions  # Only form sessions
    python src/server.py --once                # One sweep, then exit
"""

import argparse
import asyncio

import structlog

from submissions.settings import get_settings

logger = structlog.get_logger(__name__)

DOMAIN_NAMES = ["submissions", "ordering"]


def _get_sweep(name):
    """Import and initialize a domain by name, returning (domain, command factory)."""
    if name == "submissions":
        from submissions.domain import submissions

        submissions.init()
        from submissions.session.expiry import ReapExpiredSessions

        return submissions, ReapExpiredSessions
    elif name == "ordering":
        from ordering.domain import ordering

        ordering.init()
        from ordering.cart.expiry import PurgeExpiredGuestCarts

        return ordering, PurgeExpiredGuestCarts
    else:
        raise ValueError(f"Unknown domain: {name}")


def sweep_once(sweeps) -> dict[str, int]:
    removed = {}
    for name, (domain, command_cls) in sweeps.items():
        with domain.domain_context():
            removed[name] = domain.process(command_cls(), asynchronous=False)
    return removed


async def run(domain_names, interval: float, once: bool = False):
    sweeps = {name: _get_sweep(name) for name in domain_names}

    while True:
        try:
            removed = await asyncio.to_thread(sweep_once, sweeps)
            logger.info("Maintenance sweep finished", removed=removed)
        except (ConnectionError, TimeoutError) as exc:
            logger.error("Maintenance sweep failed, will retry", error=str(exc))

        if once:
            return
        await asyncio.sleep(interval)


def main():
    parser = argparse.ArgumentParser(description="Marketplace maintenance runner")
    parser.add_argument(
        "--domain",
        choices=DOMAIN_NAMES,
        help="Sweep a single domain (default: sweep all)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between sweeps (default: SUBMISSIONS_REAP_INTERVAL_SECONDS)",
    )
    parser.add_argument("--once", action="store_true", help="Run one sweep and exit")
    args = parser.parse_args()

    domain_names = [args.domain] if args.domain else DOMAIN_NAMES
    interval = args.interval if args.interval is not None else get_settings().reap_interval_seconds

    asyncio.run(run(domain_names, interval, once=args.once))


if __name__ == "__main__":
    main()
