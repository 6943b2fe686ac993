#!/usr/bin/env python3
"""
Configuration loading for the PhimAPI import pipeline
Reads a YAML file and applies environment overrides from .env
"""
from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv


DEFAULT_CONFIG_PATH = "import_config.yaml"

DEFAULT_CONFIG = {
    'api': {
        'base_url': 'https://phimapi.com',
        'list_path': '/danh-sach/phim-moi-cap-nhat',
        'detail_path': '/phim',
        'image_cdn': 'https://img.ophim.live/uploads/movies/',
        'timeout': 30,
        'user_agent': 'PhimGG-Importer/1.0',
    },
    'import': {
        'total_pages': 2252,
        'sort': 'modified.time',
        'request_delay': 0.0,
        'max_retries': 0,
        'retry_backoff': 3.0,
        'skip_existing': False,
        'dry_run': False,
    },
    'database': {
        'path': 'phimgg.db',
        'enable_wal': True,
    },
    'progress': {
        'path': 'import_progress.json',
    },
    'logging': {
        'level': 'INFO',
        'dir': 'logs',
    },
    'monitoring': {
        'enable_metrics': True,
        'metrics_db': 'import_metrics.db',
    },
    'schedule': {
        'interval_hours': 6,
        'pages': 3,
        'timezone': 'UTC',
        'run_on_startup': False,
    },
}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    'PHIM_API_BASE': ('api', 'base_url'),
    'DATABASE_PATH': ('database', 'path'),
    'IMPORT_PROGRESS_FILE': ('progress', 'path'),
    'IMPORT_LOG_DIR': ('logging', 'dir'),
    'IMPORT_LOG_LEVEL': ('logging', 'level'),
}


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected before an import starts"""


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from YAML, layered over the built-in defaults.

    A missing default config file is fine (defaults are used); an explicitly
    requested file that does not exist, or a file that is not valid YAML,
    raises ConfigurationError.
    """
    load_dotenv()

    explicit = config_path is not None
    config_file = Path(config_path or DEFAULT_CONFIG_PATH)

    file_config: dict = {}
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_file}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration file {config_file} must contain a mapping")
    elif explicit:
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    config = _merge(DEFAULT_CONFIG, file_config)

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config[section][key] = value

    return config


def resolve_path(path: str) -> str:
    """
    Make a configured path absolute relative to the working directory, the
    same place the default config file is read from
    """
    if path == ':memory:' or os.path.isabs(path):
        return path
    return os.path.abspath(path)
