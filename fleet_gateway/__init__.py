"""
Fleet Gateway package.

A FastAPI application that proxies a vehicle-telemetry API behind a
request-coalescing cache, computes fleet reports with bounded fan-out and
persists alert workflow state.
"""
from .main import app

__version__ = "1.0.0"
__all__ = ["app"]
