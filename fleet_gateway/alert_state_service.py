"""
Alert workflow state kept in the telemetry API's computed-attribute store.

Each company owns one attribute whose ``expression`` field holds a JSON
document mapping alert ids to their workflow state. This is the legacy
persistence path; the relational store in :mod:`fleet_gateway.alert_repository`
supersedes it.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .config_loader import config
from .errors import ApiError
from .models import AlertPatch
from .service_base import BaseService
from .upstream_client import UpstreamClient
from .utils import as_list, company_from_username, make_auth_header

ATTRIBUTES_PATH = "/attributes/computed"


def state_attribute_key(company: str | None) -> str:
    return f"fleet.alerts.state.{str(company or 'default').lower()}"


class AlertStateService(BaseService):
    """Reads and patches the per-company alert state document."""

    def __init__(
        self,
        client: UpstreamClient,
        admin_username: str | None = None,
        admin_password: str | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(logger=logger)
        self.client = client
        self.admin_username = admin_username if admin_username is not None else config.admin_username
        self.admin_password = admin_password if admin_password is not None else config.admin_password

    def _admin_auth(self) -> str:
        auth = make_auth_header(self.admin_password)
        if not self.admin_username or auth is None:
            raise ApiError(403, "admin_required")
        return auth

    @staticmethod
    def resolve_company(company: str | None, username: str | None) -> str:
        return company or company_from_username(username)

    async def load(self, company: str) -> tuple[int | None, dict[str, Any]]:
        """Return ``(attribute_id, state)``; ``(None, {})`` when the company has none yet."""
        auth = self._admin_auth()
        key = state_attribute_key(company)
        attributes = as_list(await self.client.get(ATTRIBUTES_PATH, auth, params={"all": "true"}))
        found = next(
            (a for a in attributes if isinstance(a, dict) and str(a.get("attribute")) == key),
            None,
        )
        if found is None:
            return None, {}
        try:
            state = json.loads(found.get("expression") or "{}")
        except ValueError:
            self.logger.warning("Discarding unreadable alert state for %s", company)
            state = {}
        return _as_int(found.get("id")), state if isinstance(state, dict) else {}

    async def create(self, company: str, initial: dict[str, Any] | None = None) -> int | None:
        auth = self._admin_auth()
        payload = {
            "attribute": state_attribute_key(company),
            "description": "Fleet Alerts State (shared by company)",
            "expression": json.dumps(initial or {}),
        }
        created = await self.client.post(ATTRIBUTES_PATH, auth, payload)
        return _as_int(created.get("id")) if isinstance(created, dict) else None

    async def save(self, attribute_id: int, state: dict[str, Any]) -> None:
        auth = self._admin_auth()
        await self.client.put(
            f"{ATTRIBUTES_PATH}/{attribute_id}", auth, {"expression": json.dumps(state)}
        )

    async def get_states(
        self, company: str | None, username: str | None, ids: list[Any]
    ) -> dict[str, Any]:
        company = self.resolve_company(company, username)
        _, state = await self.load(company)
        wanted = [str(i) for i in ids] if ids else list(state)
        return {"ok": True, "states": {i: state.get(i) for i in wanted}, "company": company}

    async def patch_states(
        self, company: str | None, username: str | None, patches: list[AlertPatch]
    ) -> dict[str, Any]:
        company = self.resolve_company(company, username)
        attribute_id, state = await self.load(company)
        if attribute_id is None:
            attribute_id = await self.create(company, {})
            state = {}
        if attribute_id is None:
            raise ApiError(500, "create_state_failed")

        now = datetime.now(timezone.utc).isoformat()
        for item in patches:
            alert_id = str(item.id if item.id is not None else "").strip()
            if not alert_id:
                continue
            patch = item.patch.model_dump(by_alias=True, exclude_unset=True)
            previous = state.get(alert_id) if isinstance(state.get(alert_id), dict) else {}
            taking = patch.get("status") == "in_progress"
            state[alert_id] = {
                **previous,
                **patch,
                "updatedAt": now,
                "updatedBy": username or previous.get("updatedBy"),
                "takenBy": previous.get("takenBy") or (username if taking else None),
                "takenAt": previous.get("takenAt") or (now if taking else None),
            }

        await self.save(attribute_id, state)
        self.logger.info("Patched %s alert states for %s", len(patches), company)
        return {"ok": True, "company": company, "count": len(patches)}


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
