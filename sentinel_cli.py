#!/usr/bin/env python3
"""
Sentinel management CLI - run, inspect and moderate the ingestion pipeline.

Usage: python sentinel_cli.py <command> [options]

Commands:
    serve                       - Start the long-running service (timers + notifications)
    run-once [--force]          - Run one ingestion pass now (--force ignores the cooldown)
    import-url <url> [--persist]- Import a single URL (preview unless --persist)
    auto-publish                - Promote eligible Sentinel drafts now
    status                      - Show scheduler state and auto-publish stats
    sources                     - List configured sources with health
    runs [n]                    - Show the last n run records (default: 10)
    metrics                     - Show aggregate metrics
    drafts [status]             - List recent drafts (draft|pending_review|published|rejected)
    approve <draft_id>          - Approve a draft for auto-publishing
    enable | disable            - Turn the scheduled runs on or off
"""

import asyncio
import os
import sys
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

# Add project root to PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sentinel.app import main as serve_main, setup_logging
from sentinel.config import load_config
from sentinel.errors import SentinelError
from sentinel.models import DraftStatus, LogEntry, RunRecord
from sentinel.service import SentinelService


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    BOLD = "\033[1m"
    END = "\033[0m"


STATUS_COLORS = {
    "disabled": Colors.RED,
    "idle": Colors.GREEN,
    "running": Colors.BLUE,
    "cooldown": Colors.YELLOW,
}

LEVEL_COLORS = {
    "error": Colors.RED,
    "warning": Colors.YELLOW,
    "info": Colors.WHITE,
    "debug": Colors.CYAN,
}


def format_timestamp(dt: Optional[datetime]) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


def print_logs(entries: List[LogEntry]) -> None:
    for entry in entries:
        color = LEVEL_COLORS.get(entry.level, Colors.WHITE)
        print(f"{Colors.CYAN}{format_timestamp(entry.timestamp)}{Colors.END} {color}{entry.message}{Colors.END}")


def print_run(record: RunRecord) -> None:
    color = Colors.RED if record.errors else Colors.GREEN
    flags = [name for name in ("cancelled", "timed_out", "degraded") if getattr(record, name)]
    print(
        f"{color}● {format_timestamp(record.started_at)}{Colors.END} "
        f"[{record.trigger.value}] {record.sources_scanned} sources, {record.candidates_fetched} items, "
        f"{record.drafts_created} drafts, {len(record.previews)} previews, "
        f"{record.duplicates_skipped} dup, {record.candidates_rejected} rejected, "
        f"{record.duration_seconds:.1f}s" + (f" {Colors.YELLOW}({', '.join(flags)}){Colors.END}" if flags else "")
    )
    for preview in record.previews:
        print(f"    {Colors.BLUE}preview{Colors.END} {preview.title} ({preview.source_name}, {preview.quality_score:.2f})")
    for error in record.errors:
        print(f"    {Colors.RED}✗ {error}{Colors.END}")


async def show_status(service: SentinelService) -> None:
    runtime = service.runtime()
    color = STATUS_COLORS.get(runtime["status"], Colors.WHITE)
    print(f"{Colors.BOLD}🛰  Sentinel{Colors.END}  {color}{runtime['status'].upper()}{Colors.END}")
    print(f"   Sources:        {runtime['sourcesCount']}")
    print(f"   Frequency:      every {runtime['frequencyMs'] // 1000}s, max {runtime['maxPerRun']} per run")
    print(f"   Auto-persist:   {'yes' if runtime['autoPersist'] else 'no (preview runs)'}")
    stats = await service.auto_publish_stats()
    print(f"{Colors.BOLD}📰 Auto-publish{Colors.END}")
    print(f"   Drafts waiting: {stats['totalDrafts']}")
    print(f"   Published:      {stats['totalPublished']} ({stats['todayPublished']} today)")
    print(f"   Telegram:       {'enabled' if stats['telegramEnabled'] else 'disabled'}")


def show_sources(service: SentinelService) -> None:
    for source in service.sources():
        marker = f"{Colors.GREEN}●{Colors.END}" if source.enabled else f"{Colors.RED}○{Colors.END}"
        health = source.health
        print(
            f"{marker} {Colors.BOLD}{source.name}{Colors.END} "
            f"[{source.type.value}/{source.category.value}/{source.priority.value}] {source.url}"
        )
        line = f"    success {health.success_rate:.0%}, errors {health.error_count}, last ok {format_timestamp(health.last_success)}"
        if health.last_error:
            line += f" {Colors.RED}last error: {health.last_error}{Colors.END}"
        print(line)
    duplicates = service.registry.duplicate_urls()
    for url, names in duplicates.items():
        print(f"{Colors.YELLOW}⚠️  {url} is configured by: {', '.join(names)}{Colors.END}")


def show_metrics(service: SentinelService) -> None:
    m = service.metrics()
    print(f"{Colors.BOLD}📊 Metrics{Colors.END}")
    print(f"   Processed:      {m.total_processed}")
    print(f"   Created:        {m.total_created}")
    print(f"   Avg run time:   {m.average_processing_time:.1f}s")
    print(f"   Error rate:     {m.error_rate:.1%}")
    print(f"   Sources:        {m.sources_count}")
    print(f"   Dedup cache:    {m.cache_size}")
    if m.degraded:
        print(f"   {Colors.YELLOW}Enrichment degraded (synthesizing drafts){Colors.END}")


async def show_drafts(service: SentinelService, status: Optional[str]) -> None:
    drafts = await service.list_drafts(DraftStatus(status) if status else None)
    for draft in drafts:
        approved = f" {Colors.GREEN}approved{Colors.END}" if draft.approved else ""
        print(
            f"{Colors.CYAN}{draft.id}{Colors.END} [{draft.status.value}]{approved} "
            f"{draft.title.en} ({draft.source_name}, q={draft.quality_score:.2f})"
        )
        if draft.safety_flags:
            print(f"    {Colors.YELLOW}flags: {', '.join(draft.safety_flags)}{Colors.END}")
    if not drafts:
        print(f"{Colors.YELLOW}No drafts{Colors.END}")


async def main() -> int:
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print(__doc__)
        return 1

    command = sys.argv[1].lower()
    args = sys.argv[2:]
    config = load_config()

    try:
        async with SentinelService(config) as service:
            if command == "run-once":
                record = await service.run_once(force="--force" in args)
                print_logs(service.recent_logs())
                print_run(record)
            elif command == "import-url":
                urls = [a for a in args if not a.startswith("--")]
                if not urls:
                    print(f"{Colors.RED}Usage: import-url <url> [--persist]{Colors.END}")
                    return 1
                result = await service.import_url(urls[0], persist="--persist" in args)
                color = Colors.GREEN if result.success else Colors.RED
                print(f"{color}{result.message}{Colors.END}")
                if result.draft:
                    print(f"   {Colors.BOLD}{result.draft.title.en}{Colors.END}")
                    print(f"   {result.draft.description.en}")
                if result.evaluation:
                    print(f"   quality {result.evaluation.quality_score:.2f} flags {result.evaluation.safety_flags}")
            elif command == "auto-publish":
                result = await service.auto_publish_sentinel_drafts()
                await service.notifications.drain()
                print_logs(service.recent_logs())
                print(
                    f"{Colors.GREEN}✅ {result.published} published{Colors.END}, "
                    f"{result.skipped} skipped, {result.processed} processed"
                )
            elif command == "status":
                await show_status(service)
            elif command == "sources":
                show_sources(service)
            elif command == "runs":
                limit = int(args[0]) if args else 10
                for record in await service.run_history(limit):
                    print_run(record)
            elif command == "metrics":
                show_metrics(service)
            elif command == "drafts":
                await show_drafts(service, args[0] if args else None)
            elif command == "approve":
                if not args:
                    print(f"{Colors.RED}Usage: approve <draft_id>{Colors.END}")
                    return 1
                draft = await service.approve_draft(args[0])
                print(f"{Colors.GREEN}✅ Approved: {draft.title.en}{Colors.END}")
            elif command in ("enable", "disable"):
                await service.set_enabled(command == "enable")
                print(f"{Colors.GREEN}✅ Scheduled runs {command}d{Colors.END}")
            else:
                print(f"{Colors.RED}Unknown command: {command}{Colors.END}")
                print(__doc__)
                return 1
    except (SentinelError, ValueError) as e:
        print(f"{Colors.RED}Error: {e}{Colors.END}")
        return 1
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted{Colors.END}")
        return 130
    return 0


def cli() -> None:
    load_dotenv()
    if len(sys.argv) > 1 and sys.argv[1].lower() == "serve":
        serve_main()
        return
    setup_logging(os.getenv("LOG_LEVEL", "WARNING"))
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
