"""
PhimAPI Catalog Import Pipeline
"""
from .import_service import PhimETLService
from .phim_client import MalformedPayloadError, PhimAPIClient
from .progress import ImportProgressTracker
from .scheduler import ImportScheduler
from .store import MovieStore

__all__ = [
    'ImportProgressTracker',
    'ImportScheduler',
    'MalformedPayloadError',
    'MovieStore',
    'PhimAPIClient',
    'PhimETLService',
]
