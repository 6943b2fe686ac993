#!/usr/bin/env python3
"""
PhimAPI Import Service
Walks a page range of the remote catalog, normalizes every movie and upserts
it into the local store, checkpointing after each completed page
"""
from __future__ import annotations

import logging
import sqlite3
import time
import traceback
from typing import Callable, Dict, List, Optional

import requests

from .config import ConfigurationError, resolve_path
from .monitoring import ImportMonitor
from .normalizer import DEFAULT_IMAGE_CDN, normalize_episodes, normalize_movie
from .phim_client import PhimAPIClient
from .progress import ImportProgressTracker
from .store import EXISTING, SAVED, MovieStore, connect


# Page outcomes
PAGE_COMPLETE = 'page_complete'
PAGE_FAILED = 'failed'

# Item outcome in dry-run mode: fetched and normalized, nothing written
VALIDATED = 'validated'


class PhimETLService:
    """
    Sequential page importer: fetch page -> fetch detail -> normalize -> upsert.

    A failing item never stops its siblings and a failing page fetch never
    stops the range; only fully attempted pages advance the checkpoint.
    """

    def __init__(self, config: dict, client: Optional[PhimAPIClient] = None,
                 store: Optional[MovieStore] = None,
                 progress: Optional[ImportProgressTracker] = None,
                 monitor: Optional[ImportMonitor] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.logger = logging.getLogger('PhimETLService')

        import_config = config.get('import', {})
        self.configured_total_pages = import_config.get('total_pages', 2252)
        self.sort = import_config.get('sort')
        self.request_delay = import_config.get('request_delay', 0.0)
        self.max_retries = import_config.get('max_retries', 0)
        self.retry_backoff = import_config.get('retry_backoff', 3.0)
        self.skip_existing = import_config.get('skip_existing', False)
        self.dry_run = import_config.get('dry_run', False)
        self.image_cdn = config.get('api', {}).get('image_cdn', DEFAULT_IMAGE_CDN)

        self.client = client or PhimAPIClient(config)
        self.store = store
        self._owns_connection = False
        self.progress = progress or ImportProgressTracker(
            resolve_path(config.get('progress', {}).get('path', 'import_progress.json'))
        )
        self.monitor = monitor
        self._sleep = sleep

        # Total page count declared by the API, learned from the first page
        self.total_pages: Optional[int] = None
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict:
        return {
            'pages_requested': 0,
            'pages_completed': 0,
            'pages_failed': 0,
            'failed_pages': [],
            'saved': 0,
            'existing': 0,
            'validated': 0,
            'failed': 0,
            'episodes_written': 0,
            'records_degraded': 0,
            'api_calls': 0,
            'errors': [],
        }

    # ----- lifecycle -----

    def open(self) -> 'PhimETLService':
        """Connect to the database; an unusable database is fatal"""
        if self.store is not None:
            return self

        db_config = self.config.get('database', {})
        db_path = resolve_path(db_config.get('path', 'phimgg.db'))
        self.logger.info(f"Database path: {db_path}")
        try:
            conn = connect(db_path, db_config.get('enable_wal', True))
            store = MovieStore(conn)
            store.ensure_schema()
        except sqlite3.Error as e:
            raise ConfigurationError(f"Cannot use database {db_path}: {e}") from e

        self.store = store
        self._owns_connection = True
        return self

    def close(self):
        if self._owns_connection and self.store is not None:
            self.store.conn.close()
            self.store = None
            self._owns_connection = False
        self.client.close()

    def __enter__(self) -> 'PhimETLService':
        return self.open()

    def __exit__(self, *exc_info):
        self.close()

    # ----- helpers -----

    def _with_retry(self, fn: Callable, *args):
        """Call ``fn`` with the configured retry policy for transient errors"""
        attempt = 0
        while True:
            try:
                return fn(*args)
            except requests.RequestException as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                self.logger.warning(
                    f"Request failed (attempt {attempt}/{self.max_retries + 1}): {e}; "
                    f"retrying in {delay:.1f}s"
                )
                self._sleep(delay)

    def _record_error(self, page: int, slug: Optional[str], step: str, error: Exception):
        self.stats['errors'].append({
            'page': page,
            'slug': slug,
            'step': step,
            'error_type': type(error).__name__,
            'error': str(error),
        })

    # ----- item / page processing -----

    @staticmethod
    def _count(outcome: Optional[str], counts: Dict):
        if outcome in (SAVED, EXISTING, VALIDATED):
            counts[outcome] += 1
        else:
            counts['failed'] += 1

    def _process_item(self, page: Optional[int], stub: dict) -> Optional[str]:
        """Import one stub; returns 'saved' / 'existing' / 'validated', or None on failure"""
        slug = stub['slug']
        step = 'fetch_detail'
        try:
            if self.skip_existing and self.store.movie_exists(slug):
                self.logger.debug(f"Movie already exists, skipping: {slug}")
                return EXISTING

            detail = self._with_retry(self.client.fetch_detail, slug)

            step = 'normalize'
            movie = normalize_movie(detail, self.image_cdn)
            episodes = normalize_episodes(detail, movie['slug'])
            if movie['degraded_fields']:
                self.stats['records_degraded'] += 1
                self.logger.warning(
                    f"Salvaged fields for {slug}: {', '.join(movie['degraded_fields'])}"
                )

            if self.dry_run:
                self.logger.info(f"Validated movie: {movie['name']} ({slug}), "
                                 f"{len(episodes)} episodes")
                return VALIDATED

            step = 'upsert'
            outcome = self.store.save_movie(movie, episodes)
            self.stats['episodes_written'] += len(episodes)
            self.logger.info(f"{outcome.capitalize()} movie: {movie['name']} ({slug}), "
                             f"{len(episodes)} episodes")
            return outcome

        except Exception as e:
            self.logger.error(f"Error processing movie {slug} at step {step}: {e}")
            self._record_error(page, slug, step, e)
            return None

    def import_page(self, page: int, record_progress: bool = True) -> Dict:
        """
        Import a single page.

        Returns the page result; ``status`` is ``'page_complete'`` once every
        item was attempted or ``'failed'`` when the page itself could not be
        fetched (the checkpoint is then left untouched). The checkpoint is
        also left alone when ``record_progress`` is False or in dry-run mode.
        """
        result = {'page': page, 'status': PAGE_FAILED,
                  'saved': 0, 'existing': 0, 'validated': 0, 'failed': 0}
        self.stats['pages_requested'] += 1

        try:
            page_result = self._with_retry(self.client.fetch_page, page, self.sort)
        except Exception as e:
            self.logger.error(f"Error fetching page {page}: {e}")
            self.stats['pages_failed'] += 1
            self.stats['failed_pages'].append(page)
            self._record_error(page, None, 'fetch_page', e)
            return result

        if page_result.total_pages:
            self.total_pages = page_result.total_pages

        stubs = page_result.stubs
        self.logger.info(f"Found {len(stubs)} movies on page {page}")

        for index, stub in enumerate(stubs):
            self._count(self._process_item(page, stub), result)

            if self.request_delay > 0 and index < len(stubs) - 1:
                self._sleep(self.request_delay)

        for key in ('saved', 'existing', 'validated', 'failed'):
            self.stats[key] += result[key]

        if record_progress and not self.dry_run:
            self.progress.record_page_complete(page)
        self.stats['pages_completed'] += 1
        result['status'] = PAGE_COMPLETE

        self.logger.info(
            f"Page {page} completed: {result['saved']} saved, "
            f"{result['existing']} existing, {result['validated']} validated, "
            f"{result['failed']} failed"
        )
        return result

    def import_pages(self, start: int, end: int, command: str = 'range',
                     record_progress: bool = True) -> Dict:
        """
        Import pages ``start`` through ``end`` inclusive and return the summary.

        ``record_progress=False`` is for re-syncs of the newest pages, which
        must not move the bulk import checkpoint.
        """
        if start < 1 or end < start:
            raise ValueError(f"Invalid page range {start}-{end}")

        self.open()
        self.stats = self._empty_stats()
        self.client.api_calls = 0
        start_time = time.time()

        monitor_run_id = self.monitor.start_run(command, start, end) if self.monitor else None

        self.logger.info(f"Starting import from page {start} to {end}"
                         f"{' (dry run, nothing is written)' if self.dry_run else ''}")
        try:
            page = start
            while page <= end:
                if self.total_pages is not None and page > self.total_pages:
                    self.logger.info(
                        f"Reached the last page declared by the API ({self.total_pages})"
                    )
                    break

                self.import_page(page, record_progress)
                page += 1

                if self.request_delay > 0 and page <= end:
                    self._sleep(self.request_delay)
        except Exception as e:
            self.logger.error(f"Import failed: {e}", exc_info=True)
            self._finish(start_time)
            if self.monitor:
                self.monitor.end_run(monitor_run_id, self.stats, status='failed',
                                     error_message=traceback.format_exc(limit=3))
            raise

        summary = self._finish(start_time)
        if self.monitor:
            status = 'success' if not summary['pages_failed'] else 'partial'
            self.monitor.end_run(monitor_run_id, summary, status=status)

        self.logger.info(
            f"Import complete: {summary['pages_completed']} pages completed, "
            f"{summary['pages_failed']} failed; movies {summary['saved']} saved, "
            f"{summary['existing']} existing, {summary['validated']} validated, "
            f"{summary['failed']} failed "
            f"in {summary['execution_time']}"
        )
        if summary['failed_pages']:
            pages = ', '.join(str(p) for p in summary['failed_pages'])
            self.logger.warning(f"Rerun these pages later to recover: {pages}")
        return summary

    def import_movie(self, slug: str) -> Dict:
        """Fetch, normalize and upsert one movie by slug, outside any page walk"""
        self.open()
        self.stats = self._empty_stats()
        self.client.api_calls = 0
        start_time = time.time()

        monitor_run_id = self.monitor.start_run('movie') if self.monitor else None

        self.logger.info(f"Syncing single movie: {slug}")
        outcome = self._process_item(None, {'slug': slug})
        self._count(outcome, self.stats)

        summary = self._finish(start_time)
        if self.monitor:
            self.monitor.end_run(monitor_run_id, summary,
                                 status='success' if outcome else 'failed')
        return summary

    def _finish(self, start_time: float) -> Dict:
        self.stats['api_calls'] = self.client.api_calls
        self.stats['execution_time'] = f"{time.time() - start_time:.2f}s"
        return self.stats

    def resume(self, end: Optional[int] = None) -> Dict:
        """Continue from the page after the last checkpoint"""
        end = end or self.configured_total_pages
        start = self.progress.next_page()
        if start > end:
            self.logger.info(f"Nothing to resume: page {start - 1} of {end} already completed")
            summary = self._empty_stats()
            summary['execution_time'] = "0.00s"
            return summary

        self.logger.info(f"Resuming import from page {start} to {end}")
        return self.import_pages(start, end, command='resume')

    def status(self) -> Dict:
        progress = self.progress.read_progress()
        self.open()
        return {
            'last_completed_page': progress['lastCompletedPage'] if progress else None,
            'checkpoint_time': progress.get('timestamp') if progress else None,
            'next_page': self.progress.next_page(),
            'total_pages': self.configured_total_pages,
            'movies': self.store.count_movies(),
            'episodes': self.store.count_episodes(),
        }
