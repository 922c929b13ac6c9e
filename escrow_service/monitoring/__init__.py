"""Monitoring and observability package."""
from .metrics import metrics
from .logging import setup_logging
from .health import HealthCheck

__all__ = ["metrics", "setup_logging", "HealthCheck"]
