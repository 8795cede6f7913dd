"""
CLI utility for memory store administration.

Usage:
    python scripts/memory_admin.py kpis --since-hours 24
    python scripts/memory_admin.py sweep
    python scripts/memory_admin.py summarize --user u1 --dry-run
    python scripts/memory_admin.py list --user u1
"""

import argparse
import asyncio
import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from assistant_memory.config import MemorySettings
from assistant_memory.metrics import MetricsLogger, compute_kpis
from assistant_memory.memory.store import MemoryStore
from assistant_memory.memory.summarizer import MemorySummarizer


def open_store(settings: MemorySettings) -> MemoryStore:
    metrics = MetricsLogger(Path(settings.paths.metrics))
    return MemoryStore(Path(settings.paths.store), settings.cache_ttl_seconds, metrics)


def show_kpis(settings: MemorySettings, since_hours: float = None) -> int:
    path = Path(settings.paths.metrics)
    if not path.exists():
        print(f"❌ Metrics log not found: {path}")
        return 1

    start = int((time.time() - since_hours * 3600) * 1000) if since_hours else None
    kpis = compute_kpis(path, start=start)

    print(f"📊 Memory KPIs: {path}\n")
    print(f"   Saved:             {kpis.total_saved:>8,}")
    print(f"   Auto-save rate:    {kpis.auto_save_rate:>8.1%}")
    print(f"   Ask rate:          {kpis.ask_rate:>8.1%}")
    print(f"   Reject rate:       {kpis.reject_rate:>8.1%}")
    print(f"   Avg score saved:   {kpis.avg_score_saved:>8.3f}")
    print(f"   Avg score reject:  {kpis.avg_score_rejected:>8.3f}")
    print(f"   Retrievals:        {kpis.retrievals:>8,}")
    print(f"   Latency P50 / P95: {kpis.latency_p50:.1f} / {kpis.latency_p95:.1f} ms")
    print(f"   Errors:            {kpis.errors:>8,}")

    if kpis.top_keys:
        print("\n   Top keys:")
        for entry in kpis.top_keys:
            print(f"     {entry.key:<25} {entry.count:>6,}")
    print()
    return 0


async def run_sweep(settings: MemorySettings) -> int:
    removed = await open_store(settings).expire_sweep()
    print(f"🧹 Expired memories removed: {removed}")
    return 0


async def run_summarize(settings: MemorySettings, user_id: str = None, min_age_days: int = None,
                        dry_run: bool = False) -> int:
    store = open_store(settings)
    summarizer = MemorySummarizer(store, store.metrics, settings.summarizer)
    users = [user_id] if user_id else await store.list_user_ids()

    if not users:
        print("ℹ️  No users in store")
        return 0

    for uid in users:
        if dry_run:
            clusters = await summarizer.preview(uid, min_age_days)
            print(f"👤 {uid}: {len(clusters)} cluster(s) would be summarized")
            for cluster in clusters:
                print(f"   {cluster[0].type.value:<14} {cluster[0].key:<25} {len(cluster)} items")
            continue

        stats = await summarizer.summarize_user(uid, min_age_days)
        print(
            f"👤 {uid}: {stats.summaries_created} summaries, "
            f"{stats.memories_archived} archived, {stats.errors} errors"
        )
    return 0


async def list_memories(settings: MemorySettings, user_id: str) -> int:
    items = await open_store(settings).list_by_user(user_id)
    if not items:
        print(f"ℹ️  No memories for {user_id}")
        return 0

    print(f"🧠 Memories for {user_id}: {len(items)}\n")
    print(f"{'Type':<14} {'Person':<12} {'Key':<22} {'Conf':>5}  Value")
    print("=" * 80)
    for m in items:
        print(f"{m.type.value:<14} {(m.person or '-'):<12} {m.key:<22} {m.confidence:>5.2f}  {m.value}")
    print()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Memory store administration")
    sub = parser.add_subparsers(dest="command", required=True)

    kpis = sub.add_parser("kpis", help="Show KPIs from the metrics log")
    kpis.add_argument("--since-hours", type=float, default=None, help="Only events of the last N hours")

    sub.add_parser("sweep", help="Delete expired memories")

    summarize = sub.add_parser("summarize", help="Summarize old memory clusters")
    summarize.add_argument("--user", type=str, default=None, help="Only this user (default: all)")
    summarize.add_argument("--min-age-days", type=int, default=None, help="Override minimum age")
    summarize.add_argument("--dry-run", action="store_true", help="Show clusters without changing anything")

    list_cmd = sub.add_parser("list", help="List a user's memories")
    list_cmd.add_argument("--user", type=str, required=True, help="User identifier")

    args = parser.parse_args()
    settings = MemorySettings.from_env()

    if args.command == "kpis":
        return show_kpis(settings, args.since_hours)
    if args.command == "sweep":
        return asyncio.run(run_sweep(settings))
    if args.command == "summarize":
        return asyncio.run(run_summarize(settings, args.user, args.min_age_days, args.dry_run))
    if args.command == "list":
        return asyncio.run(list_memories(settings, args.user))
    return 1


if __name__ == "__main__":
    sys.exit(main())
