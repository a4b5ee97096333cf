"""
Pydantic models for fleet gateway requests and responses.

Request bodies mirror what the dashboard sends (camelCase keys, ``from``
and ``to`` as opaque date strings forwarded upstream). Report results carry
the aggregate next to provenance counts.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

AlertStatus = Literal["new", "in_progress", "resolved"]
DeviceId = int | str


class CredentialsRequest(BaseModel):
    """
    Login credentials forwarded to the telemetry API.

    Attributes:
        username: Account login, also used to derive the company slug
        password: Session token forwarded as the upstream cookie
    """

    username: str | None = None
    password: str | None = None


class ReportRequest(CredentialsRequest):
    """
    Body shared by every report endpoint.

    Fields are optional here so that missing values are reported with the
    gateway's own error codes instead of a generic validation failure.
    """

    model_config = ConfigDict(populate_by_name=True)

    device_ids: list[DeviceId] | None = Field(default=None, alias="deviceIds")
    date_from: str | None = Field(default=None, alias="from")
    date_to: str | None = Field(default=None, alias="to")


class ActionPlanStep(BaseModel):
    id: str | int | None = None
    label: str | None = None
    done: bool = False
    position: int | None = None


class AlertComment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | int | None = None
    text: str | None = None
    author: str | None = None
    date: str | None = None
    at_local: str | None = None


class AlertPatchBody(BaseModel):
    """Fields a client may change on one alert."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: AlertStatus | None = None
    type: str | None = None
    action_plan: list[ActionPlanStep] | None = Field(default=None, alias="actionPlan")
    comments: list[AlertComment] | None = None


class AlertPatch(BaseModel):
    id: str | int | None = None
    patch: AlertPatchBody = Field(default_factory=AlertPatchBody)


class AlertStateGetRequest(BaseModel):
    company: str | None = None
    username: str | None = None
    ids: list[str | int] = Field(default_factory=list)


class AlertStatePatchRequest(BaseModel):
    company: str | None = None
    username: str | None = None
    patches: list[AlertPatch] = Field(default_factory=list)


class AlertBulkStatusRequest(BaseModel):
    """Body for moving a batch of alerts to in-progress or resolved."""

    company: str | None = None
    username: str | None = None
    ids: list[str | int] = Field(default_factory=list)
    type: str | None = None


# ---------------------------------------------------------------------------
# Report results
# ---------------------------------------------------------------------------


class ReportResult(BaseModel):
    """Base for aggregate results; serialized with ``ok: true``."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class AverageSpeedResult(ReportResult):
    average_speed: float = Field(alias="averageSpeed")
    trips_count: int = Field(alias="tripsCount")
    devices_count_used: int = Field(alias="devicesCountUsed")


class MaxSpeedMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: Any = Field(alias="deviceId")
    device_name: str = Field(alias="deviceName")
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")


class MaxSpeedResult(ReportResult):
    max_speed: float = Field(alias="maxSpeed")
    trips_count: int = Field(alias="tripsCount")
    devices_count_used: int = Field(alias="devicesCountUsed")
    meta: MaxSpeedMeta | None = None


class FuelResult(ReportResult):
    average_fuel: float = Field(alias="averageFuel")
    total_fuel: float = Field(alias="totalFuel")
    trips_count: int = Field(alias="tripsCount")
    devices_count_used: int = Field(alias="devicesCountUsed")


class ActiveDevicesResult(ReportResult):
    active_device_ids: list[DeviceId] = Field(alias="activeDeviceIds")
    count: int


class TotalDistanceResult(ReportResult):
    total_km: float = Field(alias="totalKm")
    trips_count: int = Field(default=0, alias="tripsCount")


class MaintenanceEfficiencyResult(ReportResult):
    efficiency: float
    total: int
    compliant: int


class VehicleAlertRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: DeviceId = Field(alias="deviceId")
    alerts: list[str]
    geofences: list[str]
    alert_count: int = Field(alias="alertCount")
    unique_alert_count: int = Field(alias="uniqueAlertCount")
    geofence_count: int = Field(alias="geofenceCount")
    state: str
    state_label: str = Field(alias="stateLabel")


class VehicleAlertsResult(ReportResult):
    rows: list[VehicleAlertRow]
    count: int


__all__ = [
    "ActionPlanStep",
    "ActiveDevicesResult",
    "AlertBulkStatusRequest",
    "AlertComment",
    "AlertPatch",
    "AlertPatchBody",
    "AlertStateGetRequest",
    "AlertStatePatchRequest",
    "AlertStatus",
    "AverageSpeedResult",
    "CredentialsRequest",
    "FuelResult",
    "MaintenanceEfficiencyResult",
    "MaxSpeedMeta",
    "MaxSpeedResult",
    "ReportRequest",
    "TotalDistanceResult",
    "VehicleAlertRow",
    "VehicleAlertsResult",
]
