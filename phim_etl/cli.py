#!/usr/bin/env python3
"""
Command line interface for the PhimAPI import pipeline
"""
from __future__ import annotations

import argparse
import signal
import sys
import time
from typing import List, Optional

from .config import ConfigurationError, load_config, resolve_path
from .import_service import PhimETLService
from .log_setup import setup_logging
from .monitoring import ImportMonitor
from .progress import ImportProgressTracker
from .scheduler import ImportScheduler


EXIT_OK = 0
EXIT_PAGES_FAILED = 1
EXIT_FATAL = 2


def signal_handler(signum, frame):
    """Stop on SIGTERM the same way as on Ctrl+C"""
    raise KeyboardInterrupt


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='phim-import',
        description="Import movies from PhimAPI into the local catalog database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import a single page (for testing)
  phim-import page 1

  # Import pages 1 to 50
  phim-import range 1 50

  # Continue from the last saved checkpoint
  phim-import resume

  # Fetch and normalize pages 1 to 5 without writing anything
  phim-import range 1 5 --dry-run

  # Re-sync one movie by slug
  phim-import movie khom-lung

  # Show the checkpoint and recent runs
  phim-import status

  # Re-sync the newest pages every few hours
  phim-import schedule
        """
    )
    parser.add_argument(
        '--config',
        default=None,
        help='Path to configuration file (default: import_config.yaml)'
    )

    dry_run = argparse.ArgumentParser(add_help=False)
    dry_run.add_argument('--dry-run', action='store_true',
                         help='Fetch and normalize only; write nothing and keep the checkpoint')

    sub = parser.add_subparsers(dest='command', required=True)

    page = sub.add_parser('page', parents=[dry_run], help='Import a single page')
    page.add_argument('page', type=int)

    page_range = sub.add_parser('range', parents=[dry_run], help='Import a range of pages')
    page_range.add_argument('start', type=int)
    page_range.add_argument('end', type=int)

    resume = sub.add_parser('resume', parents=[dry_run], help='Resume from the last completed page')
    resume.add_argument('--end', type=int, default=None, help='Last page to import')

    movie = sub.add_parser('movie', parents=[dry_run], help='Import a single movie by slug')
    movie.add_argument('slug')

    sub.add_parser('status', help='Show import progress and recent runs')
    sub.add_parser('reset', help='Clear the progress checkpoint')

    schedule = sub.add_parser('schedule', help='Periodically re-sync the newest pages')
    schedule.add_argument('--run-once', action='store_true',
                          help='Run one sync and exit (no scheduling)')

    return parser


def _validate_range(parser: argparse.ArgumentParser, start: int, end: int, total_pages: int):
    if start < 1 or end > total_pages or start > end:
        parser.error(
            f"Invalid page range. Start page must be >= 1, end page must be <= {total_pages}, "
            f"and start must be <= end."
        )


def _print_summary(summary: dict):
    print("\n" + "=" * 60)
    print("Import Summary")
    print("=" * 60)
    print(f"Pages completed: {summary['pages_completed']}")
    print(f"Pages failed:    {summary['pages_failed']}")
    print(f"Movies saved:    {summary['saved']}")
    print(f"Movies existing: {summary['existing']}")
    if summary.get('validated'):
        print(f"Movies validated: {summary['validated']} (dry run, nothing written)")
    print(f"Movies failed:   {summary['failed']}")
    print(f"Episodes:        {summary['episodes_written']}")
    print(f"Duration:        {summary['execution_time']}")
    if summary['failed_pages']:
        pages = ' '.join(str(p) for p in summary['failed_pages'])
        print(f"\nFailed pages (rerun later): {pages}")
    if summary['errors']:
        print("\nErrors:")
        for error in summary['errors']:
            print(f"  - page {error['page']} {error['slug'] or ''} [{error['step']}]: {error['error']}")
    print("=" * 60 + "\n")


def _monitor(config: dict) -> Optional[ImportMonitor]:
    monitoring = config.get('monitoring', {})
    if not monitoring.get('enable_metrics', True):
        return None
    return ImportMonitor(resolve_path(monitoring.get('metrics_db', 'import_metrics.db')))


def _run_import(args, config: dict) -> int:
    service = PhimETLService(config, monitor=_monitor(config))
    with service:
        if args.command == 'page':
            summary = service.import_pages(args.page, args.page, command='page')
        elif args.command == 'range':
            summary = service.import_pages(args.start, args.end, command='range')
        elif args.command == 'movie':
            summary = service.import_movie(args.slug)
        else:
            summary = service.resume(args.end)

    _print_summary(summary)
    if args.command == 'movie':
        return EXIT_PAGES_FAILED if summary['failed'] else EXIT_OK
    return EXIT_PAGES_FAILED if summary['pages_failed'] else EXIT_OK


def _show_status(config: dict) -> int:
    with PhimETLService(config) as service:
        status = service.status()

    print("\nImport Status:")
    print(f"  Last completed page: {status['last_completed_page'] or 'None'}")
    print(f"  Checkpoint saved at: {status['checkpoint_time'] or 'Never'}")
    print(f"  Next page:           {status['next_page']} of {status['total_pages']}")
    print(f"  Movies stored:       {status['movies']}")
    print(f"  Episodes stored:     {status['episodes']}")

    monitor = _monitor(config)
    if monitor:
        runs = monitor.get_recent_runs(5)
        if runs:
            print("\nRecent runs:")
        for run in runs:
            print(f"  #{run['run_id']} {run['command']} {run['start_time'][:19]} "
                  f"{(run['status'] or '').upper()} - saved {run['movies_saved']}, "
                  f"existing {run['movies_existing']}, failed {run['movies_failed']}")
    print()
    return EXIT_OK


def _reset(config: dict) -> int:
    tracker = ImportProgressTracker(resolve_path(config['progress']['path']))
    if tracker.reset():
        print("Progress checkpoint cleared.")
    else:
        print("No progress checkpoint found.")
    return EXIT_OK


def _schedule(args, config: dict) -> int:
    scheduler = ImportScheduler(config)

    if args.run_once:
        summary = scheduler.run_sync_job()
        if summary is None:
            return EXIT_FATAL
        _print_summary(summary)
        return EXIT_PAGES_FAILED if summary['pages_failed'] else EXIT_OK

    scheduler.start()
    print("\nImport scheduler is running. Press Ctrl+C to stop.\n")
    try:
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        print("\nShutting down scheduler...")
        scheduler.stop()
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_FATAL

    total_pages = config['import']['total_pages']
    if args.command == 'page':
        _validate_range(parser, args.page, args.page, total_pages)
    elif args.command == 'range':
        _validate_range(parser, args.start, args.end, total_pages)
    elif args.command == 'resume' and args.end is not None:
        _validate_range(parser, 1, args.end, total_pages)

    if getattr(args, 'dry_run', False):
        config['import']['dry_run'] = True

    if args.command in ('page', 'range', 'resume', 'movie', 'schedule'):
        log_file = setup_logging(config)
        print(f"Logging to {log_file}")

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if args.command in ('page', 'range', 'resume', 'movie'):
            return _run_import(args, config)
        if args.command == 'status':
            return _show_status(config)
        if args.command == 'reset':
            return _reset(config)
        return _schedule(args, config)
    except ConfigurationError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        print("\nInterrupted. Progress is saved after each page; run 'resume' to continue.")
        return EXIT_PAGES_FAILED


if __name__ == "__main__":
    sys.exit(main())
