"""Alert workflow persistence on top of :class:`fleet_gateway.db.Database`."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select

from .db import AlertAction, AlertCommentRow, AlertState, Database
from .models import AlertPatch
from .service_base import BaseService

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 500
RESOLVED_STATUSES = ("resolved", "done")  # "done" predates the resolved status


def clamp_limit(limit: int | None) -> int:
    if not limit or limit < 1:
        return DEFAULT_LIST_LIMIT
    return min(limit, MAX_LIST_LIMIT)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class AlertRepository(BaseService):
    """Upserts and queries alert state, action plans and comments."""

    def __init__(self, database: Database, logger: logging.Logger | None = None):
        super().__init__(logger=logger)
        self.database = database

    def _insert(self, model: type):
        # ON CONFLICT support lives in the dialect-specific insert constructs.
        if self.database.dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        return insert(model)

    def _upsert_state(
        self,
        company: str,
        alert_id: str,
        *,
        status: str | None,
        type_: str | None,
        taken_by: str | None,
        taken_at: datetime | None,
        now: datetime,
    ):
        """
        Build the state upsert.

        ``status`` and ``type`` only overwrite the stored row when given;
        ``taken_by``/``taken_at`` keep the first value ever recorded.
        """
        table = AlertState.__table__
        stmt = self._insert(AlertState).values(
            company=company,
            alert_id=alert_id,
            status=status or "new",
            type=type_ or "success",
            taken_by=taken_by,
            taken_at=taken_at,
            updated_at=now,
        )
        set_: dict[str, Any] = {
            "taken_by": func.coalesce(table.c.taken_by, stmt.excluded.taken_by),
            "taken_at": func.coalesce(table.c.taken_at, stmt.excluded.taken_at),
            "updated_at": stmt.excluded.updated_at,
        }
        if status:
            set_["status"] = stmt.excluded.status
        if type_:
            set_["type"] = stmt.excluded.type
        return stmt.on_conflict_do_update(index_elements=["company", "alert_id"], set_=set_)

    async def patch_states(
        self, company: str, patches: list[AlertPatch], username: str | None
    ) -> int:
        """Apply a batch of patches atomically; returns the number of patches received."""
        now = datetime.now(timezone.utc)
        async with self.database.transaction() as session:
            for item in patches:
                alert_id = str(item.id if item.id is not None else "").strip()
                if not alert_id:
                    continue
                patch = item.patch
                taking = patch.status == "in_progress"
                await session.execute(
                    self._upsert_state(
                        company,
                        alert_id,
                        status=patch.status,
                        type_=patch.type,
                        taken_by=username if taking else None,
                        taken_at=now if taking else None,
                        now=now,
                    )
                )

                for index, step in enumerate(patch.action_plan or []):
                    if step.id is None or str(step.id) == "":
                        continue
                    stmt = self._insert(AlertAction).values(
                        company=company,
                        alert_id=alert_id,
                        action_id=str(step.id),
                        label=step.label or "",
                        done=bool(step.done),
                        position=step.position if step.position is not None else index,
                        created_by=username,
                        created_at=now,
                        updated_at=now,
                    )
                    await session.execute(
                        stmt.on_conflict_do_update(
                            index_elements=["company", "alert_id", "action_id"],
                            set_={
                                "label": stmt.excluded.label,
                                "done": stmt.excluded.done,
                                "position": stmt.excluded.position,
                                "updated_at": stmt.excluded.updated_at,
                            },
                        )
                    )

                for comment in patch.comments or []:
                    if comment.id is None or str(comment.id) == "":
                        continue
                    stmt = self._insert(AlertCommentRow).values(
                        company=company,
                        alert_id=alert_id,
                        comment_id=str(comment.id),
                        text=comment.text or "",
                        author=comment.author or username,
                        at_local=comment.date or comment.at_local,
                        created_at=now,
                    )
                    await session.execute(
                        stmt.on_conflict_do_nothing(
                            index_elements=["company", "alert_id", "comment_id"]
                        )
                    )
        self.logger.info("Stored %s alert patches for %s", len(patches), company)
        return len(patches)

    async def get_states(self, company: str, ids: Iterable[Any] = ()) -> dict[str, Any]:
        """Assemble state, ordered action plan and comments per alert id."""
        wanted = [str(i) for i in ids]

        def scoped(query, model):
            query = query.where(model.company == company)
            if wanted:
                query = query.where(model.alert_id.in_(wanted))
            return query

        async with self.database.session() as session:
            states = (await session.scalars(scoped(select(AlertState), AlertState))).all()
            actions = (
                await session.scalars(
                    scoped(select(AlertAction), AlertAction).order_by(
                        AlertAction.position, AlertAction.created_at
                    )
                )
            ).all()
            comments = (
                await session.scalars(
                    scoped(select(AlertCommentRow), AlertCommentRow).order_by(
                        AlertCommentRow.created_at
                    )
                )
            ).all()

        out: dict[str, Any] = {}
        for row in states:
            out[row.alert_id] = {
                "status": row.status,
                "type": row.type,
                "takenBy": row.taken_by,
                "takenAt": _iso(row.taken_at),
                "updatedAt": _iso(row.updated_at),
                "actionPlan": [],
                "comments": [],
            }
        for row in actions:
            entry = out.setdefault(row.alert_id, {"actionPlan": [], "comments": []})
            entry["actionPlan"].append(
                {"id": row.action_id, "label": row.label, "done": row.done, "position": row.position}
            )
        for row in comments:
            entry = out.setdefault(row.alert_id, {"actionPlan": [], "comments": []})
            entry["comments"].append(
                {
                    "id": row.comment_id,
                    "text": row.text,
                    "author": row.author or "",
                    "date": row.at_local or _iso(row.created_at),
                }
            )
        return out

    async def _set_status(
        self,
        company: str,
        ids: list[str],
        status: str,
        username: str | None,
        type_: str | None,
    ) -> int:
        now = datetime.now(timezone.utc)
        taking = status == "in_progress"
        async with self.database.transaction() as session:
            for alert_id in ids:
                await session.execute(
                    self._upsert_state(
                        company,
                        alert_id,
                        status=status,
                        type_=type_,
                        taken_by=username,
                        taken_at=now if taking else None,
                        now=now,
                    )
                )
        self.logger.info("Marked %s alerts %s for %s", len(ids), status, company)
        return len(ids)

    async def mark_in_progress(
        self, company: str, ids: list[str], username: str | None, type_: str | None = None
    ) -> int:
        return await self._set_status(company, ids, "in_progress", username, type_)

    async def mark_resolved(
        self, company: str, ids: list[str], username: str | None, type_: str | None = None
    ) -> int:
        return await self._set_status(company, ids, "resolved", username, type_)

    async def list_alerts(
        self,
        company: str,
        statuses: Iterable[str],
        *,
        q: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Newest-first page of alerts in ``statuses``, filtered by id text and update time."""
        query = select(AlertState).where(
            AlertState.company == company,
            AlertState.status.in_(list(statuses)),
        )
        if since is not None:
            query = query.where(AlertState.updated_at >= since)
        if until is not None:
            query = query.where(AlertState.updated_at <= until)
        if q:
            query = query.where(AlertState.alert_id.ilike(f"%{q}%"))
        query = (
            query.order_by(AlertState.updated_at.desc())
            .limit(clamp_limit(limit))
            .offset(max(offset or 0, 0))
        )

        async with self.database.session() as session:
            rows = (await session.scalars(query)).all()
        return [
            {
                "alert_id": row.alert_id,
                "status": row.status,
                "type": row.type,
                "taken_by": row.taken_by,
                "taken_at": _iso(row.taken_at),
                "updated_at": _iso(row.updated_at),
            }
            for row in rows
        ]
