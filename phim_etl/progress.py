#!/usr/bin/env python3
"""
Page-level import checkpoint stored as a small JSON file
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class ImportProgressTracker:
    """
    Persists ``{"lastCompletedPage": N, "timestamp": "..."}``.

    The marker only moves forward; resuming after a crash re-processes the
    interrupted page, which relies on the store's upserts being idempotent.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.logger = logging.getLogger('ImportProgressTracker')

    def read_progress(self) -> Optional[dict]:
        """Return the last recorded marker, or None if there is none"""
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.error(f"Could not read progress file {self.path}: {e}")
            return None

        if not isinstance(data, dict) or not isinstance(data.get('lastCompletedPage'), int):
            self.logger.error(f"Ignoring malformed progress file {self.path}")
            return None
        return data

    def last_completed_page(self) -> int:
        progress = self.read_progress()
        return progress['lastCompletedPage'] if progress else 0

    def next_page(self) -> int:
        """Page a resumed import should start from"""
        return self.last_completed_page() + 1

    def record_page_complete(self, page: int) -> bool:
        """
        Overwrite the marker with ``page``.

        Returns False (and writes nothing) when the marker is already at or
        past ``page``.
        """
        if page <= self.last_completed_page():
            return False

        marker = {
            'lastCompletedPage': page,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(marker, f)
        os.replace(tmp_path, self.path)

        self.logger.info(f"Progress saved: completed up to page {page}")
        return True

    def reset(self) -> bool:
        if self.path.exists():
            self.path.unlink()
            self.logger.info(f"Progress file {self.path} removed")
            return True
        return False
