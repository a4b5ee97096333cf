"""Compatibility façade for service classes.

Re-exports focused implementations from dedicated modules so route wiring
imports every collaborator from one place.
"""

from .alert_repository import AlertRepository
from .alert_state_service import AlertStateService
from .db import Database
from .fetchers import UpstreamFetchers
from .fleet_service import FleetService
from .report_service import ReportService
from .upstream_client import UpstreamClient

__all__ = [
    "AlertRepository",
    "AlertStateService",
    "Database",
    "FleetService",
    "ReportService",
    "UpstreamClient",
    "UpstreamFetchers",
]
