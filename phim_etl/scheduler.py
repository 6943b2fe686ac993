#!/usr/bin/env python3
"""
Scheduled re-sync of the newest catalog pages using APScheduler
The list endpoint is sorted by modification time, so the first pages carry
every recently added or updated movie
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .config import resolve_path
from .import_service import PhimETLService
from .monitoring import ImportMonitor


class ImportScheduler:
    """
    Runs ``PhimETLService.import_pages(1, N)`` on a cron or interval trigger
    """

    def __init__(self, config: dict, service_factory=PhimETLService):
        self.config = config
        self.schedule_config = config.get('schedule', {})
        self.logger = logging.getLogger('ImportScheduler')
        self.scheduler = BackgroundScheduler(
            timezone=self.schedule_config.get('timezone', 'UTC')
        )
        self._service_factory = service_factory
        self.last_run_time: Optional[datetime] = None
        self.last_run_status: str = "Never run"
        self.run_count: int = 0

        self.monitor: Optional[ImportMonitor] = None
        monitoring = config.get('monitoring', {})
        if monitoring.get('enable_metrics', True):
            self.monitor = ImportMonitor(
                resolve_path(monitoring.get('metrics_db', 'import_metrics.db'))
            )

    def run_sync_job(self) -> Optional[dict]:
        """Import the newest pages once"""
        self.run_count += 1
        run_id = f"SYNC-{self.run_count}-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
        pages = max(int(self.schedule_config.get('pages', 3)), 1)

        self.logger.info("=" * 80)
        self.logger.info(f"Starting sync job {run_id}: pages 1-{pages}")
        self.logger.info("=" * 80)

        start_time = time.time()
        service = self._service_factory(self.config, monitor=self.monitor)
        try:
            with service:
                # The newest pages are not a position in the bulk walk
                summary = service.import_pages(1, pages, command='schedule',
                                               record_progress=False)
        except Exception as e:
            self.logger.error(f"Sync job {run_id} failed after {time.time() - start_time:.2f} seconds")
            self.logger.error(f"Error: {e}", exc_info=True)
            self.last_run_time = datetime.now()
            self.last_run_status = f"Failed: {e}"
            return None

        self.last_run_time = datetime.now()
        self.last_run_status = "Success" if not summary['pages_failed'] else "Partial"
        self.logger.info(f"Sync job {run_id} finished in {time.time() - start_time:.2f} seconds")
        return summary

    def _trigger(self):
        timezone = self.schedule_config.get('timezone', 'UTC')
        if 'cron' in self.schedule_config:
            cron_config = self.schedule_config['cron']
            self.logger.info(f"Scheduled sync with cron: {cron_config}")
            return CronTrigger(
                hour=cron_config.get('hour', 0),
                minute=cron_config.get('minute', 0),
                day_of_week=cron_config.get('day_of_week', '*'),
                timezone=timezone
            )

        interval_hours = self.schedule_config.get('interval_hours', 6)
        self.logger.info(f"Scheduled sync to run every {interval_hours} hours")
        return IntervalTrigger(hours=interval_hours, timezone=timezone)

    def start(self):
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=self._trigger(),
            id='phim_sync_job',
            name='PhimAPI newest pages sync',
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.start()
        self.logger.info("Import scheduler started")

        if self.schedule_config.get('run_on_startup', False):
            self.logger.info("Running initial sync on startup...")
            self.run_sync_job()

    def stop(self):
        self.logger.info("Stopping import scheduler...")
        self.scheduler.shutdown()
        self.logger.info("Import scheduler stopped")

    def get_status(self) -> dict:
        jobs = self.scheduler.get_jobs()
        # Pending jobs have no next_run_time until the scheduler starts
        next_run = getattr(jobs[0], 'next_run_time', None) if jobs else None
        return {
            'running': self.scheduler.running,
            'last_run_time': self.last_run_time.isoformat() if self.last_run_time else None,
            'last_run_status': self.last_run_status,
            'total_runs': self.run_count,
            'next_run_time': next_run.isoformat() if next_run else None
        }
