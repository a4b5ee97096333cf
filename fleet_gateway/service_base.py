"""Shared service helpers and base classes.

Provides a lightweight base class giving every service consistent logging,
plus the credential handling shared by the upstream-facing services, without
coupling them to FastAPI routing.
"""

from __future__ import annotations

import logging

from .errors import client_error
from .models import CredentialsRequest
from .utils import make_auth_header


class BaseService:
    """Base class that provides a logger for derived services."""

    def __init__(self, logger: logging.Logger | None = None):
        # Use module-qualified name so loggers stay readable when subclassed
        self.logger = logger or logging.getLogger(self.__class__.__module__)


class UpstreamAuthMixin:
    """Turns request credentials into the cookie forwarded upstream."""

    @staticmethod
    def _require_auth(request: CredentialsRequest) -> str:
        auth = make_auth_header(request.password)
        if auth is None:
            raise client_error("missing_credentials")
        return auth
