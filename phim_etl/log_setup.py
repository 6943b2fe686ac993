#!/usr/bin/env python3
"""
Logging configuration shared by the CLI and the scheduler
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import resolve_path


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config: dict, run_id: Optional[str] = None) -> Path:
    """
    Send log records to stdout and to an append-only file for this run.

    Returns the path of the run's log file.
    """
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)

    run_id = run_id or datetime.now().strftime('%Y%m%d-%H%M%S')
    log_dir = Path(resolve_path(log_config.get('dir', 'logs')))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"import-{run_id}.log"

    root = logging.getLogger()
    root.setLevel(log_level)

    # Replace handlers from a previous run in the same process
    for handler in list(root.handlers):
        if getattr(handler, '_phim_etl', False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    for handler in (file_handler, console_handler):
        handler._phim_etl = True
        root.addHandler(handler)

    # Connection pool chatter is not useful in import logs
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return log_file
