# src/campus_sync/cli.py
"""
Command-line entry point.

    campus-sync sync [--kind offices] [--respect-backoff]
    campus-sync status
    campus-sync conflicts
    campus-sync resolve QUEUE_ID discard_local|abandon
    campus-sync serve
"""

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

from .config import configure_logging, initialize_config
from .core.models import ConflictDecision
from .core.schema import SYNC_ORDER
from .errors import CampusSyncError
from .sync.coordinator import SyncCoordinator


async def _run(args: argparse.Namespace, coordinator: SyncCoordinator) -> int:
    await coordinator.store.init()
    try:
        if args.command == "sync":
            if coordinator.reconciler is None:
                print("❌ No remote configured (set SUPABASE_URL and SUPABASE_KEY)")
                return 1
            force = not args.respect_backoff
            if args.kind:
                reports = {args.kind: await coordinator.sync(args.kind, force=force)}
            else:
                reports = await coordinator.sync_all(force=force)
            failed = False
            for kind, report in reports.items():
                merged = report.merge.changed if report.merge else 0
                print(f"🔄 {kind}: {report.pushed} pushed, {report.failed} failed, "
                      f"{report.blocked} blocked, {len(report.conflicts)} conflicts, {merged} merged")
                for conflict in report.conflicts:
                    print(f"   ⚠️ conflict #{conflict.queue_id}: '{conflict.name}' ({conflict.constraint})")
                failed = failed or bool(report.errors)
            return 1 if failed else 0

        if args.command == "status":
            print(json.dumps(await coordinator.status(), indent=2))
            return 0

        if args.command == "conflicts":
            entries = await coordinator.conflicts()
            if not entries:
                print("✅ No conflicts")
            for entry in entries:
                print(f"#{entry.queue_id} {entry.entity_kind} '{entry.payload.get('name')}': {entry.last_error}")
            return 0

        if args.command == "resolve":
            discarded = await coordinator.resolve_conflict(args.queue_id, ConflictDecision(args.decision))
            print("🗑️ Local duplicate discarded" if discarded else "Entry left queued")
            return 0
    finally:
        await coordinator.store.close()
    return 2


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="campus-sync", description="Local-first sync for offices, levels and students")
    parser.add_argument("--config-dir", default="config", help="Directory holding default.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    sync_parser = sub.add_parser("sync", help="Push queued mutations and pull remote changes")
    sync_parser.add_argument("--kind", choices=SYNC_ORDER, help="Only this entity kind")
    sync_parser.add_argument("--respect-backoff", action="store_true",
                             help="Skip entries still waiting out a retry delay")

    sub.add_parser("status", help="Show queue depth and connectivity")
    sub.add_parser("conflicts", help="List entries waiting for a conflict decision")

    resolve_parser = sub.add_parser("resolve", help="Resolve a duplicate-name conflict")
    resolve_parser.add_argument("queue_id", type=int)
    resolve_parser.add_argument("decision", choices=[d.value for d in ConflictDecision])

    serve_parser = sub.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host")
    serve_parser.add_argument("--port", type=int)

    args = parser.parse_args(argv)
    config = initialize_config(args.config_dir)
    configure_logging(config.log_level)

    if args.command == "serve":
        import uvicorn

        from .main import create_app

        uvicorn.run(create_app(config), host=args.host or config.api_host, port=args.port or config.api_port)
        return 0

    try:
        coordinator = SyncCoordinator.from_config(config)
        return asyncio.run(_run(args, coordinator))
    except CampusSyncError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
