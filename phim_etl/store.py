#!/usr/bin/env python3
"""
SQLite store for imported movies and episodes
Upserts keyed on slug; episodes keyed on (movie slug, server, episode slug)
"""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional


SCHEMA = """
CREATE TABLE IF NOT EXISTS movies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    movie_id TEXT,
    slug TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    origin_name TEXT,
    description TEXT,
    type TEXT,
    status TEXT,
    quality TEXT,
    lang TEXT,
    time TEXT,
    year INTEGER,
    view INTEGER DEFAULT 0,
    poster_url TEXT,
    thumb_url TEXT,
    trailer_url TEXT,
    actors TEXT,
    directors TEXT,
    categories TEXT NOT NULL DEFAULT '[]',
    countries TEXT NOT NULL DEFAULT '[]',
    modified_at TEXT NOT NULL,
    synced_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS episodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    movie_slug TEXT NOT NULL REFERENCES movies(slug) ON DELETE CASCADE,
    server_name TEXT NOT NULL,
    name TEXT NOT NULL,
    slug TEXT NOT NULL,
    filename TEXT,
    link_embed TEXT,
    link_m3u8 TEXT,
    position INTEGER,
    UNIQUE (movie_slug, server_name, slug)
);

CREATE INDEX IF NOT EXISTS idx_episodes_movie_slug ON episodes(movie_slug);
CREATE INDEX IF NOT EXISTS idx_movies_modified_at ON movies(modified_at);
CREATE INDEX IF NOT EXISTS idx_movies_movie_id ON movies(movie_id);
"""

# Columns added after the first release of the schema
ADDED_COLUMNS = {
    'movies': {
        'episode_current': 'TEXT',
        'episode_total': 'TEXT',
    },
}

MOVIE_COLUMNS = (
    'movie_id', 'slug', 'name', 'origin_name', 'description', 'type', 'status',
    'quality', 'lang', 'time', 'year', 'view', 'episode_current', 'episode_total',
    'poster_url', 'thumb_url', 'trailer_url', 'actors', 'directors',
    'categories', 'countries', 'modified_at', 'synced_at',
)

# Everything but the natural key is refreshed on conflict
UPDATE_COLUMNS = tuple(c for c in MOVIE_COLUMNS if c not in ('slug',))

SAVED = 'saved'
EXISTING = 'existing'


def connect(db_path: str, enable_wal: bool = True) -> sqlite3.Connection:
    """Open a connection configured for the import pipeline"""
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    # Set busy timeout to handle concurrent readers (30 seconds)
    conn.execute("PRAGMA busy_timeout = 30000")

    if enable_wal and db_path != ':memory:':
        conn.execute("PRAGMA journal_mode=WAL")

    return conn


class MovieStore:
    """Upsert writer and read helpers over one SQLite connection"""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def ensure_schema(self):
        """Create tables and add any columns missing from older databases"""
        self.conn.executescript(SCHEMA)

        def has_column(table: str, column: str) -> bool:
            rows = self.conn.execute(f"PRAGMA table_info({table})").fetchall()
            return any(row['name'] == column for row in rows)

        with self.conn:
            for table, columns in ADDED_COLUMNS.items():
                for column, column_type in columns.items():
                    if not has_column(table, column):
                        self.conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")

    def movie_exists(self, slug: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM movies WHERE slug = ?", (slug,)).fetchone()
        return row is not None

    def _movie_params(self, movie: dict, synced_at: str) -> tuple:
        row = dict(movie)
        row['categories'] = json.dumps(movie.get('categories') or [], ensure_ascii=False)
        row['countries'] = json.dumps(movie.get('countries') or [], ensure_ascii=False)
        row['synced_at'] = synced_at
        return tuple(row.get(column) for column in MOVIE_COLUMNS)

    def _upsert_movie(self, movie: dict, synced_at: str):
        placeholders = ', '.join('?' for _ in MOVIE_COLUMNS)
        assignments = ',\n                '.join(f"{c} = excluded.{c}" for c in UPDATE_COLUMNS)
        self.conn.execute(
            f"""
            INSERT INTO movies ({', '.join(MOVIE_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(slug) DO UPDATE SET
                {assignments}
            WHERE excluded.modified_at >= movies.modified_at
            """,
            self._movie_params(movie, synced_at)
        )

    def _upsert_episode(self, episode: dict):
        self.conn.execute(
            """
            INSERT INTO episodes (
                movie_slug, server_name, name, slug, filename, link_embed, link_m3u8, position
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(movie_slug, server_name, slug) DO UPDATE SET
                name = excluded.name,
                filename = excluded.filename,
                link_embed = excluded.link_embed,
                link_m3u8 = excluded.link_m3u8,
                position = excluded.position
            """,
            (
                episode['movie_slug'],
                episode['server_name'],
                episode['name'],
                episode['slug'],
                episode.get('filename'),
                episode.get('link_embed'),
                episode.get('link_m3u8'),
                episode.get('position'),
            )
        )

    def save_movie(self, movie: dict, episodes: List[dict],
                   synced_at: Optional[str] = None) -> str:
        """
        Insert or update a movie and its episodes in one transaction.

        Returns ``'saved'`` for a new slug and ``'existing'`` when the slug was
        already stored. Episodes for other slugs are rejected so no orphan rows
        can be written. Database errors propagate after rollback.
        """
        slug = movie['slug']
        for episode in episodes:
            if episode['movie_slug'] != slug:
                raise ValueError(
                    f"Episode {episode['slug']} belongs to {episode['movie_slug']}, not {slug}"
                )

        synced_at = synced_at or datetime.now(timezone.utc).isoformat()

        with self.conn:
            row = self.conn.execute(
                "SELECT modified_at FROM movies WHERE slug = ?", (slug,)
            ).fetchone()
            if row is not None and movie['modified_at'] < row['modified_at']:
                # Stored copy is newer than this fetch
                return EXISTING

            self._upsert_movie(movie, synced_at)
            for episode in episodes:
                self._upsert_episode(episode)

        return EXISTING if row is not None else SAVED

    def get_movie(self, slug: str) -> Optional[Dict]:
        row = self.conn.execute("SELECT * FROM movies WHERE slug = ?", (slug,)).fetchone()
        if row is None:
            return None
        movie = dict(row)
        movie['categories'] = json.loads(movie['categories'])
        movie['countries'] = json.loads(movie['countries'])
        return movie

    def get_episodes(self, slug: str) -> List[Dict]:
        rows = self.conn.execute(
            """
            SELECT * FROM episodes
            WHERE movie_slug = ?
            ORDER BY server_name, position
            """,
            (slug,)
        ).fetchall()
        return [dict(row) for row in rows]

    def count_movies(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM movies").fetchone()[0]

    def count_episodes(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM episodes").fetchone()[0]
