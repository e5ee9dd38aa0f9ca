#!/usr/bin/env python3
"""Mark server carts whose guest expiry has passed as abandoned."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from datetime import datetime, timezone

from storefront.cart_service.app.main import DEFAULT_DATABASE_URL
from storefront.cart_service.app.repository import CartRepository
from storefront.common import dispose_engines, get_session_factory, session_scope


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Abandon server carts past their guest expiry")
    parser.add_argument(
        "--database-url",
        default=os.getenv("STOREFRONT_DATABASE_URL", DEFAULT_DATABASE_URL),
        help="Cart service database URL (default: %(default)s or STOREFRONT_DATABASE_URL)",
    )
    parser.add_argument(
        "--now",
        type=_parse_timestamp,
        default=None,
        help="ISO-8601 timestamp to evaluate expiry against (default: current UTC time)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List carts that would be abandoned without updating them",
    )
    return parser.parse_args()


async def _expire(database_url: str, *, now: datetime, dry_run: bool) -> dict[str, object]:
    session_factory = get_session_factory(database_url)
    async with session_scope(session_factory) as session:
        repository = CartRepository(session)
        if dry_run:
            cart_ids = await repository.stale_cart_ids(now)
        else:
            cart_ids = await repository.expire_stale(now)
    return {
        "dry_run": dry_run,
        "now": now.isoformat(),
        "abandoned" if not dry_run else "candidates": len(cart_ids),
        "cart_ids": cart_ids,
    }


async def main_async() -> int:
    args = parse_args()
    now = args.now or datetime.now(timezone.utc)
    try:
        report = await _expire(args.database_url, now=now, dry_run=args.dry_run)
    finally:
        await dispose_engines()

    print(json.dumps(report, indent=2, sort_keys=True))
    return 0


def main() -> None:
    try:
        exit_code = asyncio.run(main_async())
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
