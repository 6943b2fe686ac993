#!/usr/bin/env python3
"""
PhimAPI / Ophim catalog client
Page Fetcher and Detail Fetcher over a single requests session
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, NamedTuple, Optional

import requests

from .normalizer import coerce_int, normalize_stub


API_BASE = "https://phimapi.com"


class MalformedPayloadError(ValueError):
    """The remote API answered 2xx but the body is not the expected shape"""


class PageResult(NamedTuple):
    stubs: List[Dict[str, Any]]
    total_pages: Optional[int]


class PhimAPIClient:
    """
    Thin client for the remote catalog API.

    Does not retry: network errors and non-2xx answers surface as
    ``requests.RequestException``, bad bodies as ``MalformedPayloadError``.
    """

    def __init__(self, config: dict, session: Optional[requests.Session] = None):
        api_config = config.get('api', {})
        self.base_url = api_config.get('base_url', API_BASE).rstrip('/')
        self.list_path = api_config.get('list_path', '/danh-sach/phim-moi-cap-nhat')
        self.detail_path = api_config.get('detail_path', '/phim').rstrip('/')
        self.timeout = api_config.get('timeout', 30)
        self.logger = logging.getLogger('PhimAPIClient')
        self.api_calls = 0

        # HTTP session for connection pooling
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': api_config.get('user_agent', 'PhimGG-Importer/1.0'),
            'Accept': 'application/json',
        })

    def _get(self, path: str, **params) -> Any:
        url = f"{self.base_url}{path}"
        self.api_calls += 1
        resp = self.session.get(url, params=params or None, timeout=self.timeout)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as e:
            raise MalformedPayloadError(f"Invalid JSON from {url}: {e}") from e

    @staticmethod
    def _failed_status(payload: dict) -> bool:
        status = payload.get('status')
        return status is False or status in ('error', 'fail', 'failed')

    def fetch_page(self, page: int, sort: Optional[str] = None) -> PageResult:
        """Fetch one page of movie stubs"""
        if page < 1:
            raise ValueError(f"page must be a positive integer, got {page}")

        params: Dict[str, Any] = {'page': page}
        if sort:
            params['sort_field'] = sort
            params['sort_type'] = 'desc'

        payload = self._get(self.list_path, **params)
        if not isinstance(payload, dict) or self._failed_status(payload):
            raise MalformedPayloadError(f"List response for page {page} reports failure")

        # PhimAPI returns items at the top level, Ophim v1 nests them under data
        container = payload.get('data') if isinstance(payload.get('data'), dict) else payload
        items = container.get('items')
        if not isinstance(items, list):
            raise MalformedPayloadError(f"List response for page {page} has no items")

        pagination = container.get('pagination')
        if pagination is None:
            pagination = (container.get('params') or {}).get('pagination')
        total_pages = coerce_int((pagination or {}).get('totalPages'))

        stubs = []
        for item in items:
            stub = normalize_stub(item)
            if stub is None:
                self.logger.warning(f"Dropping list entry without slug on page {page}")
                continue
            stubs.append(stub)

        return PageResult(stubs, total_pages)

    def fetch_detail(self, slug: str) -> Dict[str, Any]:
        """
        Fetch a MovieDetail: ``{"movie": {...}, "episodes": [...]}``.

        Ophim v1's ``data.item`` envelope is unwrapped into the same shape.
        """
        payload = self._get(f"{self.detail_path}/{slug}")
        if not isinstance(payload, dict) or self._failed_status(payload):
            raise MalformedPayloadError(f"Detail response for {slug} reports failure")

        movie = payload.get('movie')
        episodes = payload.get('episodes')
        data = payload.get('data')
        if movie is None and isinstance(data, dict) and isinstance(data.get('item'), dict):
            movie = data['item']
            episodes = movie.get('episodes')

        if not isinstance(movie, dict) or not movie:
            raise MalformedPayloadError(f"Detail response for {slug} is missing the movie object")

        return {
            'movie': movie,
            'episodes': episodes if isinstance(episodes, list) else [],
        }

    def close(self):
        self.session.close()
