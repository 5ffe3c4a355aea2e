"""Kubernetes job orchestration adapter for the platform job registry."""

__version__ = "0.1.0"
