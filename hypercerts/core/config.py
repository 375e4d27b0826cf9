#!/usr/bin/env python3
"""
Hypercerts CLI Configuration
Environment-driven settings for the PDS, PLC directory and link index
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Pick up a local .env before the class bodies read the environment
load_dotenv()


def _env(*names, default=''):
    """Return the first non-empty environment variable among names"""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _default_session_file() -> str:
    state_home = os.getenv('XDG_STATE_HOME') or os.path.join(Path.home(), '.local', 'state')
    return os.path.join(state_home, 'hc', 'auth-session.json')


class HypercertsConfig:
    """Configuration for the hc command line client"""

    # Identity & Hosts
    PLC_HOST = _env('ATP_PLC_HOST', default='https://plc.directory')
    PDS_HOST = _env('ATP_PDS_HOST')
    CONSTELLATION_URL = _env('HYPER_CONSTELLATION_URL', default='https://constellation.microcosm.blue')

    # Ephemeral credentials (skip the saved session when both are set)
    USERNAME = _env('HYPER_USERNAME', 'ATP_USERNAME')
    PASSWORD = _env('HYPER_PASSWORD', 'ATP_PASSWORD')

    # Network Settings
    HTTP_TIMEOUT_SECONDS = float(_env('HYPER_HTTP_TIMEOUT', default='10'))
    LIST_PAGE_LIMIT = int(_env('HYPER_LIST_PAGE_LIMIT', default='100'))
    BACKLINK_PAGE_LIMIT = int(_env('HYPER_BACKLINK_PAGE_LIMIT', default='100'))

    # Fan-out for independent backlink scans and record fetches
    DISCOVERY_WORKERS = int(_env('HYPER_DISCOVERY_WORKERS', default='4'))

    # Session persistence
    SESSION_FILE = _env('HYPER_SESSION_FILE', default=_default_session_file())

    # Logging Configuration
    LOG_LEVEL = _env('HYPER_LOG_LEVEL', 'LOG_LEVEL', default='WARNING').upper()

    @classmethod
    def get_network_config(cls):
        """Get current network configuration summary"""
        return {
            'plc_host': cls.PLC_HOST,
            'pds_host': cls.PDS_HOST or '(resolved from identity)',
            'constellation_url': cls.CONSTELLATION_URL,
            'timeout_seconds': cls.HTTP_TIMEOUT_SECONDS,
            'page_limits': {
                'list': cls.LIST_PAGE_LIMIT,
                'backlinks': cls.BACKLINK_PAGE_LIMIT
            }
        }

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        issues = []

        if not cls.PLC_HOST.startswith(('http://', 'https://')):
            issues.append("PLC_HOST must be an http(s) URL")

        if not cls.CONSTELLATION_URL.startswith(('http://', 'https://')):
            issues.append("CONSTELLATION_URL must be an http(s) URL")

        if cls.HTTP_TIMEOUT_SECONDS <= 0:
            issues.append("HTTP_TIMEOUT_SECONDS must be positive")

        # listRecords and /links both cap pages at 100
        for name in ('LIST_PAGE_LIMIT', 'BACKLINK_PAGE_LIMIT'):
            value = getattr(cls, name)
            if value < 1 or value > 100:
                issues.append(f"{name} must be between 1 and 100")

        if cls.DISCOVERY_WORKERS < 1:
            issues.append("DISCOVERY_WORKERS must be at least 1")

        if cls.LOG_LEVEL not in ('DEBUG', 'INFO', 'WARNING', 'WARN', 'ERROR'):
            issues.append(f"Unknown LOG_LEVEL: {cls.LOG_LEVEL}")

        return issues
