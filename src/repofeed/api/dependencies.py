"""
Shared FastAPI dependencies (settings, aggregation engine, telemetry toggle).
"""

from __future__ import annotations

from fastapi import Depends

from ..registry import AggregationEngine
from ..settings import AppSettings, load_settings


def settings_dependency() -> AppSettings:
    """Re-read the configuration per request so edits apply without a restart."""
    return load_settings()


def engine_dependency(settings: AppSettings = Depends(settings_dependency)) -> AggregationEngine:
    return AggregationEngine(settings)


def telemetry_enabled(settings: AppSettings = Depends(settings_dependency)) -> bool:
    """Expose telemetry toggle as a dependency."""
    return settings.telemetry_enabled
