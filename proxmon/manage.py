#!/usr/bin/env python3
"""
proxmon management CLI.

Usage: python -m proxmon.manage <command> [options]
"""

import argparse
import logging
import sys
import time

from proxmon.collector.poller import Collector
from proxmon.config.config import get_settings
from proxmon.errors import ProxmonError
from proxmon.metrics.series import SeriesAggregator
from proxmon.models.models import PollTarget
from proxmon.proxmox.client import ProxmoxClient
from proxmon.storage.sqlite import SnapshotStore
from proxmon.utils.json import dumps

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="proxmon management CLI")
    parser.add_argument("--node", default=settings.proxmox.default_node,
                        help="Proxmox node name")
    parser.add_argument("--vmid", default=settings.proxmox.default_vmid,
                        help="Guest id")
    parser.add_argument("--db", default=settings.storage.path,
                        help="Snapshot database path")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True,
                                       help="Available commands")

    # --- 'collect' command ---
    collect_parser = subparsers.add_parser("collect", help="Poll the guest once and store a snapshot")
    collect_parser.set_defaults(func=cmd_collect)

    # --- 'latest' command ---
    latest_parser = subparsers.add_parser("latest", help="Show the most recent stored snapshot")
    latest_parser.set_defaults(func=cmd_latest)

    # --- 'list' command ---
    list_parser = subparsers.add_parser("list", help="List stored snapshots, newest first")
    list_parser.add_argument("--limit", type=int, default=None,
                             help="Maximum snapshots (default 50, max 500)")
    list_parser.set_defaults(func=cmd_list)

    # --- 'series' command ---
    series_parser = subparsers.add_parser("series", help="Print the derived chart series")
    series_parser.add_argument("--window", type=int, default=settings.series.window_size,
                               help="Window size")
    series_parser.set_defaults(func=cmd_series)

    # --- 'poll' command ---
    poll_parser = subparsers.add_parser("poll", help="Poll continuously until interrupted")
    poll_parser.add_argument("--interval", type=float,
                             default=settings.proxmox.poll_interval_seconds,
                             help="Seconds between polls")
    poll_parser.set_defaults(func=cmd_poll)

    return parser


def cmd_collect(args, store: SnapshotStore) -> int:
    client = ProxmoxClient(get_settings().proxmox)
    try:
        metrics = Collector(client, store).collect_once(PollTarget(node=args.node, vmid=args.vmid))
    finally:
        client.close()
    print(dumps(metrics))
    return 0


def cmd_latest(args, store: SnapshotStore) -> int:
    snapshot = store.latest(args.node, args.vmid)
    if not snapshot:
        print(f"No snapshots found for {args.node}/{args.vmid}", file=sys.stderr)
        return 1
    print(dumps(snapshot))
    return 0


def cmd_list(args, store: SnapshotStore) -> int:
    print(dumps(store.list_snapshots(args.node, args.vmid, args.limit)))
    return 0


def cmd_series(args, store: SnapshotStore) -> int:
    snapshots = store.list_snapshots(args.node, args.vmid, args.window)
    print(dumps(SeriesAggregator(args.window).aggregate(snapshots)))
    return 0


def cmd_poll(args, store: SnapshotStore) -> int:
    client = ProxmoxClient(get_settings().proxmox)
    collector = Collector(client, store)
    if not collector.start(PollTarget(node=args.node, vmid=args.vmid), interval=args.interval):
        client.close()
        return 1

    print("Polling. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(10)
    except KeyboardInterrupt:
        print("\nShutdown signal received. Stopping poller...")
    finally:
        collector.stop()
        client.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        store = SnapshotStore(args.db)
    except ProxmonError as e:
        print(f"CRITICAL: Failed to open snapshot store: {e}", file=sys.stderr)
        return 1

    try:
        return args.func(args, store)
    except ProxmonError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
