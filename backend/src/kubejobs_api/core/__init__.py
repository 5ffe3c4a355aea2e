"""Core modules for configuration, storage, and telemetry."""

from kubejobs_api.core.config import Settings, get_settings
from kubejobs_api.core.store import JsonStore
from kubejobs_api.core.telemetry import get_tracer, setup_telemetry

__all__ = ["Settings", "get_settings", "JsonStore", "get_tracer", "setup_telemetry"]
