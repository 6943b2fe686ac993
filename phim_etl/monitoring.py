#!/usr/bin/env python3
"""
Run history and error tracking for the import pipeline
"""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta
from typing import Dict, List, Optional


class ImportMonitor:
    """
    Records every import run and its errors in a metrics database
    """

    def __init__(self, db_path: str = "import_metrics.db"):
        self.db_path = db_path
        self._init_metrics_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_metrics_db(self):
        conn = self._connect()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS import_runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                command TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT,
                duration_seconds REAL,
                status TEXT,
                error_message TEXT,
                start_page INTEGER,
                end_page INTEGER,
                pages_completed INTEGER DEFAULT 0,
                pages_failed INTEGER DEFAULT 0,
                movies_saved INTEGER DEFAULT 0,
                movies_existing INTEGER DEFAULT 0,
                movies_failed INTEGER DEFAULT 0,
                episodes_written INTEGER DEFAULT 0,
                records_degraded INTEGER DEFAULT 0,
                api_calls INTEGER DEFAULT 0
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS import_errors (
                error_id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id INTEGER,
                timestamp TEXT NOT NULL,
                page INTEGER,
                slug TEXT,
                error_type TEXT,
                error_message TEXT,
                FOREIGN KEY (run_id) REFERENCES import_runs(run_id)
            )
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_import_runs_start_time
            ON import_runs(start_time)
        """)

        conn.commit()
        conn.close()

    def start_run(self, command: str, start_page: Optional[int] = None,
                  end_page: Optional[int] = None) -> int:
        """Record the start of an import run"""
        conn = self._connect()
        cursor = conn.execute(
            """
            INSERT INTO import_runs (command, start_time, status, start_page, end_page)
            VALUES (?, ?, ?, ?, ?)
            """,
            (command, datetime.now().isoformat(), 'running', start_page, end_page)
        )
        run_id = cursor.lastrowid
        conn.commit()
        conn.close()
        return run_id

    def end_run(self, run_id: int, summary: Dict, status: str = 'success',
                error_message: Optional[str] = None):
        """Record the completion of an import run together with its item errors"""
        conn = self._connect()

        row = conn.execute(
            "SELECT start_time FROM import_runs WHERE run_id = ?",
            (run_id,)
        ).fetchone()

        end_time = datetime.now()
        duration = (end_time - datetime.fromisoformat(row[0])).total_seconds() if row else None

        conn.execute("""
            UPDATE import_runs SET
                end_time = ?,
                duration_seconds = ?,
                status = ?,
                error_message = ?,
                pages_completed = ?,
                pages_failed = ?,
                movies_saved = ?,
                movies_existing = ?,
                movies_failed = ?,
                episodes_written = ?,
                records_degraded = ?,
                api_calls = ?
            WHERE run_id = ?
        """, (
            end_time.isoformat(),
            duration,
            status,
            error_message,
            summary.get('pages_completed', 0),
            summary.get('pages_failed', 0),
            summary.get('saved', 0),
            summary.get('existing', 0),
            summary.get('failed', 0),
            summary.get('episodes_written', 0),
            summary.get('records_degraded', 0),
            summary.get('api_calls', 0),
            run_id
        ))

        for error in summary.get('errors', []):
            conn.execute("""
                INSERT INTO import_errors (run_id, timestamp, page, slug, error_type, error_message)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                run_id,
                end_time.isoformat(),
                error.get('page'),
                error.get('slug'),
                error.get('error_type'),
                error.get('error'),
            ))

        conn.commit()
        conn.close()

    def get_recent_runs(self, limit: int = 10) -> List[Dict]:
        conn = self._connect()
        rows = conn.execute("""
            SELECT * FROM import_runs
            ORDER BY run_id DESC
            LIMIT ?
        """, (limit,)).fetchall()
        conn.close()
        return [dict(row) for row in rows]

    def get_statistics(self, days: int = 7) -> Dict:
        """Aggregate statistics for runs started in the last ``days`` days"""
        conn = self._connect()
        cutoff = (datetime.now() - timedelta(days=days)).isoformat()

        row = conn.execute("""
            SELECT
                COUNT(*) as total_runs,
                SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) as successful_runs,
                SUM(CASE WHEN status = 'partial' THEN 1 ELSE 0 END) as partial_runs,
                SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) as failed_runs,
                AVG(duration_seconds) as avg_duration,
                SUM(movies_saved) as total_saved,
                SUM(movies_failed) as total_failed,
                SUM(api_calls) as total_api_calls
            FROM import_runs
            WHERE start_time >= ?
        """, (cutoff,)).fetchone()

        conn.close()
        return dict(row) if row else {}

    def get_error_summary(self, days: int = 7) -> List[Dict]:
        conn = self._connect()
        cutoff = (datetime.now() - timedelta(days=days)).isoformat()

        rows = conn.execute("""
            SELECT
                error_type,
                COUNT(*) as count,
                MAX(timestamp) as last_occurrence
            FROM import_errors
            WHERE timestamp >= ?
            GROUP BY error_type
            ORDER BY count DESC
        """, (cutoff,)).fetchall()

        conn.close()
        return [dict(row) for row in rows]

    def export_metrics(self, output_file: str = "import_metrics.json") -> str:
        metrics = {
            'recent_runs': self.get_recent_runs(20),
            'statistics_7d': self.get_statistics(7),
            'statistics_30d': self.get_statistics(30),
            'error_summary': self.get_error_summary(7),
            'exported_at': datetime.now().isoformat()
        }

        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(metrics, f, indent=2)

        return output_file
