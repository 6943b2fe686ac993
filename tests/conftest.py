from __future__ import annotations

import copy

import pytest
import requests

from phim_etl.config import DEFAULT_CONFIG
from phim_etl.phim_client import PhimAPIClient
from phim_etl.progress import ImportProgressTracker
from phim_etl.store import MovieStore, connect


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def json(self):
        if self.text is not None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.payload


class FakeSession:
    """
    Stands in for requests.Session. ``routes`` maps a URL path to a payload,
    a FakeResponse, an exception instance, or a list of those consumed in
    order (one per call).
    """

    def __init__(self, base_url='https://phimapi.com'):
        self.base_url = base_url
        self.routes = {}
        self.calls = []
        self.headers = {}
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        path = url[len(self.base_url):]
        if path not in self.routes:
            return FakeResponse({'status': False, 'msg': 'not found'}, status_code=404)

        route = self.routes[path]
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        if isinstance(route, FakeResponse):
            return route
        return FakeResponse(route)

    def close(self):
        self.closed = True


def make_stub(slug, name=None):
    return {
        '_id': f"id-{slug}",
        'name': name or slug.replace('-', ' ').title(),
        'slug': slug,
        'type': 'single',
        'thumb_url': f"https://img.ophim.live/uploads/movies/{slug}-thumb.jpg",
        'poster_url': f"https://img.ophim.live/uploads/movies/{slug}-poster.jpg",
        'year': 2023,
    }


def make_list_payload(slugs, total_pages=2252):
    return {
        'status': True,
        'items': [make_stub(slug) for slug in slugs],
        'pagination': {
            'totalItems': total_pages * 10,
            'totalItemsPerPage': 10,
            'currentPage': 1,
            'totalPages': total_pages,
        },
    }


def make_detail_payload(slug, episodes=2, modified='2024-05-01T10:00:00.000Z', **overrides):
    movie = {
        '_id': f"id-{slug}",
        'name': slug.replace('-', ' ').title(),
        'slug': slug,
        'origin_name': 'Original Title',
        'content': 'A story.',
        'type': 'series',
        'status': 'ongoing',
        'thumb_url': f"{slug}-thumb.jpg",
        'poster_url': f"{slug}-poster.jpg",
        'trailer_url': '',
        'time': '45 phút/tập',
        'episode_current': f"Tập {episodes}",
        'episode_total': '12',
        'quality': 'HD',
        'lang': 'Vietsub',
        'year': 2023,
        'view': 120,
        'actor': ['Actor One', 'Actor Two'],
        'director': ['Director'],
        'category': [{'id': 'c1', 'name': 'Hành Động', 'slug': 'hanh-dong'}],
        'country': [{'id': 'k1', 'name': 'Hàn Quốc', 'slug': 'han-quoc'}],
        'modified': {'time': modified},
    }
    movie.update(overrides)
    return {
        'status': True,
        'msg': '',
        'movie': movie,
        'episodes': [{
            'server_name': 'Vietsub #1',
            'server_data': [
                {
                    'name': f"Tập {n}",
                    'slug': f"tap-{n}",
                    'filename': f"{slug} - Tập {n}",
                    'link_embed': f"https://player.example/embed/{slug}/{n}",
                    'link_m3u8': f"https://player.example/{slug}/{n}/index.m3u8",
                }
                for n in range(1, episodes + 1)
            ],
        }],
    }


@pytest.fixture
def config(tmp_path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg['database']['path'] = str(tmp_path / 'phimgg.db')
    cfg['progress']['path'] = str(tmp_path / 'import_progress.json')
    cfg['logging']['dir'] = str(tmp_path / 'logs')
    cfg['monitoring']['metrics_db'] = str(tmp_path / 'import_metrics.db')
    cfg['import']['sort'] = None
    return cfg


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(config, session):
    return PhimAPIClient(config, session=session)


@pytest.fixture
def store(config):
    conn = connect(config['database']['path'])
    movie_store = MovieStore(conn)
    movie_store.ensure_schema()
    yield movie_store
    conn.close()


@pytest.fixture
def tracker(config):
    return ImportProgressTracker(config['progress']['path'])
