#!/usr/bin/env python3
"""
Field normalization for PhimAPI movie payloads
Coerces heterogeneous upstream fields into the local schema types
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


PLACEHOLDER_IMAGE = '/placeholder-movie.svg'
DEFAULT_IMAGE_CDN = 'https://img.ophim.live/uploads/movies/'

SERIES_TYPES = {'series', 'tvshows', 'tv'}

MIN_YEAR = 1800
# Largest value a SQLite INTEGER column can hold
MAX_COUNTER = 2 ** 63 - 1


@dataclass
class FieldResult:
    """
    Outcome of parsing a list-like upstream field.

    ``degraded`` is False for clean data (Ok) and True when values had to be
    salvaged (Degraded); ``reason`` then says what was done.
    """
    values: List[str] = field(default_factory=list)
    degraded: bool = False
    reason: Optional[str] = None


def parse_string_list(value: Any) -> FieldResult:
    """Parse an array, JSON-encoded string, or null into a list of strings"""
    if value is None:
        return FieldResult([])

    if isinstance(value, (list, tuple)):
        kept = [item for item in value if isinstance(item, str)]
        if len(kept) != len(value):
            dropped = len(value) - len(kept)
            return FieldResult(kept, True, f"dropped {dropped} non-string entries")
        return FieldResult(kept)

    if isinstance(value, str):
        if not value.strip():
            return FieldResult([])
        try:
            parsed = json.loads(value)
        except (ValueError, RecursionError):
            return FieldResult([value], True, "not JSON, kept as single value")

        if isinstance(parsed, list):
            return parse_string_list(parsed)
        if parsed is None:
            return FieldResult([], True, "JSON null")
        return FieldResult([value], True, "JSON is not an array, kept as single value")

    return FieldResult([], True, f"unsupported type {type(value).__name__}")


def normalize_string_list(value: Any) -> List[str]:
    return parse_string_list(value).values


def taxonomy_names(value: Any) -> Any:
    """Reduce [{id, name, slug}] taxonomy entries to their names"""
    if not isinstance(value, (list, tuple)):
        return value
    names = []
    for item in value:
        if isinstance(item, dict):
            names.append(item.get('name'))
        else:
            names.append(item)
    return names


def clean_text(text: Any) -> Optional[str]:
    """Clean and normalize text data"""
    if text is None:
        return None
    if not isinstance(text, str):
        text = str(text)

    # Remove null bytes that SQLite and JSON consumers choke on
    text = text.replace('\x00', '').strip()

    return text if text else None


def coerce_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if isinstance(value, float):
        # NaN and +/-inf (JSON NaN, 1e999) have no integer value
        if not math.isfinite(value):
            return default
        return int(value)
    return default


def coerce_episode_count(value: Any) -> Optional[str]:
    """episode_current / episode_total arrive as strings, numbers or nothing"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(int(value))
    return clean_text(value)


def normalize_image_url(value: Any, cdn: str = DEFAULT_IMAGE_CDN) -> str:
    url = clean_text(value)
    if not url:
        return PLACEHOLDER_IMAGE
    if url.startswith(('http://', 'https://')):
        return url
    if url.startswith('//'):
        return f"https:{url}"
    if url.startswith('/'):
        return url
    return cdn.rstrip('/') + '/' + url


def normalize_type(value: Any) -> str:
    kind = clean_text(value)
    if kind and kind.lower() in SERIES_TYPES:
        return 'tv'
    return 'movie'


def _modified_time(movie: dict, fallback: str) -> str:
    modified = movie.get('modified')
    if isinstance(modified, dict):
        modified = modified.get('time')
    modified = clean_text(modified)
    if not modified:
        return fallback
    try:
        parsed = datetime.fromisoformat(modified.replace('Z', '+00:00'))
    except ValueError:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def _people(value: Any) -> Optional[str]:
    names = [clean_text(n) for n in normalize_string_list(value)]
    joined = ', '.join(n for n in names if n)
    return joined or None


def normalize_stub(item: dict) -> Optional[Dict[str, Any]]:
    """Turn one list entry into a MovieStub, or None when it has no slug"""
    if not isinstance(item, dict):
        return None
    slug = clean_text(item.get('slug'))
    if not slug:
        return None
    return {
        'slug': slug,
        'name': clean_text(item.get('name')),
        'type': normalize_type(item.get('type')),
        'thumb_url': clean_text(item.get('thumb_url')),
        'poster_url': clean_text(item.get('poster_url')),
        'year': coerce_int(item.get('year')),
    }


def normalize_movie(detail: dict, image_cdn: str = DEFAULT_IMAGE_CDN,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Transform a MovieDetail payload into a ``movies`` row.

    Never fails on odd field values; salvaged list fields are listed in
    ``degraded_fields``. Raises ValueError only when the record has no slug.
    """
    now = now or datetime.now(timezone.utc)
    movie = detail.get('movie') or {}

    slug = clean_text(movie.get('slug'))
    if not slug:
        raise ValueError("movie record has no slug")

    degraded = []
    categories = parse_string_list(taxonomy_names(movie.get('category')))
    if categories.degraded:
        degraded.append('categories')
    countries = parse_string_list(taxonomy_names(movie.get('country')))
    if countries.degraded:
        degraded.append('countries')

    year = coerce_int(movie.get('year'))
    if year is not None and not MIN_YEAR <= year <= now.year + 5:
        degraded.append('year')
        year = None
    if year is None:
        year = now.year

    view = coerce_int(movie.get('view'), 0)
    if not 0 <= view <= MAX_COUNTER:
        degraded.append('view')
        view = min(max(view, 0), MAX_COUNTER)

    return {
        'movie_id': clean_text(movie.get('_id')),
        'slug': slug,
        'name': clean_text(movie.get('name')) or slug,
        'origin_name': clean_text(movie.get('origin_name')),
        'description': clean_text(movie.get('content')),
        'type': normalize_type(movie.get('type')),
        'status': clean_text(movie.get('status')),
        'quality': clean_text(movie.get('quality')),
        'lang': clean_text(movie.get('lang')),
        'time': clean_text(movie.get('time')),
        'year': year,
        'view': view,
        'episode_current': coerce_episode_count(movie.get('episode_current')),
        'episode_total': coerce_episode_count(movie.get('episode_total')),
        'poster_url': normalize_image_url(movie.get('poster_url'), image_cdn),
        'thumb_url': normalize_image_url(movie.get('thumb_url'), image_cdn),
        'trailer_url': clean_text(movie.get('trailer_url')),
        'actors': _people(movie.get('actor')),
        'directors': _people(movie.get('director')),
        'categories': categories.values,
        'countries': countries.values,
        'modified_at': _modified_time(movie, now.isoformat()),
        'degraded_fields': degraded,
    }


def normalize_episodes(detail: dict, movie_slug: str) -> List[Dict[str, Any]]:
    """
    Flatten episodes[].server_data[] into ``episodes`` rows.

    Entries without any playable link are dropped; entries without a slug get
    a positional one so the (movie, server, slug) key stays unique.
    """
    rows = []
    servers = detail.get('episodes') or []
    if not isinstance(servers, list):
        return rows

    for server_index, server in enumerate(servers, start=1):
        if not isinstance(server, dict):
            continue
        server_name = clean_text(server.get('server_name')) or f"Server #{server_index}"
        seen = set()
        position = 0
        for episode in server.get('server_data') or []:
            if not isinstance(episode, dict):
                continue
            link_embed = clean_text(episode.get('link_embed'))
            link_m3u8 = clean_text(episode.get('link_m3u8'))
            if not link_embed and not link_m3u8:
                continue

            position += 1
            slug = clean_text(episode.get('slug')) or f"tap-{position}"
            if slug in seen:
                continue
            seen.add(slug)

            rows.append({
                'movie_slug': movie_slug,
                'server_name': server_name,
                'name': clean_text(episode.get('name')) or f"Tap {position}",
                'slug': slug,
                'filename': clean_text(episode.get('filename')),
                'link_embed': link_embed,
                'link_m3u8': link_m3u8,
                'position': position,
            })
    return rows
