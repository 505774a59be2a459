#!/usr/bin/env python
"""
Follow one user's daily bar live: print a snapshot now and again after every
scratch card change Supabase reports for that user.

Usage:
    python scripts/watch_daily_bar.py <user_id> [--role bestie] [--once]

Environment variables required:
    SUPABASE_URL
    SUPABASE_KEY
    DAILY_BAR_TIMEZONE (optional – defaults to America/Denver)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from supabase import acreate_client

from daily_bar.dates import DEFAULT_TIMEZONE
from daily_bar.realtime import DailyBarWatcher
from daily_bar.service import DailyBarAggregator, DailyBarData
from daily_bar.store import SupabaseDailyBarStore
from daily_bar.visibility import Viewer


def _print_snapshot(snapshot: DailyBarData) -> None:
    done = [key for key, value in snapshot.completions.items() if value]
    print(f"🗓️  {snapshot.date} | done: {', '.join(done) or 'nothing yet'}"
          f" | card available: {'yes' if snapshot.has_available_card else 'no'}")
    print(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False))


async def watch(user_id: str, role: str, once: bool) -> None:
    supabase_url = os.environ.get("SUPABASE_URL")
    supabase_key = os.environ.get("SUPABASE_KEY")
    if not (supabase_url and supabase_key):
        raise SystemExit("Missing SUPABASE_URL or SUPABASE_KEY environment variables.")

    client = await acreate_client(supabase_url, supabase_key)
    aggregator = DailyBarAggregator(
        SupabaseDailyBarStore(client),
        timezone_name=os.environ.get("DAILY_BAR_TIMEZONE") or DEFAULT_TIMEZONE,
    )
    viewer = Viewer(user_id=user_id, role=role, is_authenticated=True)

    if once:
        _print_snapshot(await aggregator.load(viewer))
        return

    print(f"👀 Watching daily bar for {user_id} (Ctrl+C to stop)...")
    async with DailyBarWatcher(aggregator, viewer, on_update=_print_snapshot):
        await asyncio.Event().wait()


def main() -> None:
    parser = argparse.ArgumentParser(description="Print a user's daily bar and follow live updates.")
    parser.add_argument("user_id", help="Supabase auth user id")
    parser.add_argument("--role", default="bestie", help="Role label used for feature visibility")
    parser.add_argument("--once", action="store_true", help="Print one snapshot and exit")
    args = parser.parse_args()

    asyncio.run(watch(args.user_id, args.role, args.once))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit("\n⚠️ Stopped watching.")
