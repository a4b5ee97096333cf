"""
Report folds over per-device upstream records.

Every function takes ``[(device_id, records), ...]`` in request order and
returns a result model. Nothing here performs I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from .models import (
    ActiveDevicesResult,
    AverageSpeedResult,
    FuelResult,
    MaintenanceEfficiencyResult,
    MaxSpeedMeta,
    MaxSpeedResult,
    TotalDistanceResult,
    VehicleAlertRow,
    VehicleAlertsResult,
)
from .utils import nested_get, parse_id_list, parse_timestamp, to_number

DeviceRecords = Sequence[tuple[Any, list[Any]]]

STATE_IN_SERVICE = "in_service"
STATE_STOPPED = "stopped"
STATE_IDLE = "idle"
STATE_NO_ACTIVITY = "out_of_service"

STATE_LABELS = {
    STATE_IN_SERVICE: "In service",
    STATE_STOPPED: "Stopped",
    STATE_IDLE: "Idle",
    STATE_NO_ACTIVITY: "Out of service",
}

_STOPPED_MARKERS = ("engineoff", "engine off", "arrêt", "arret")


def _field(record: Any, name: str) -> Any:
    return record.get(name) if isinstance(record, dict) else None


def average_speed(trips_by_device: DeviceRecords) -> AverageSpeedResult:
    total = 0.0
    count = 0
    used = set()
    for device_id, trips in trips_by_device:
        speeds = [v for v in (to_number(_field(t, "averageSpeed")) for t in trips) if v is not None]
        if speeds:
            total += sum(speeds)
            count += len(speeds)
            used.add(device_id)
    return AverageSpeedResult(
        average_speed=total / count if count else 0,
        trips_count=count,
        devices_count_used=len(used),
    )


def max_speed(trips_by_device: DeviceRecords) -> MaxSpeedResult:
    """Fleet-wide maximum; the first trip reaching it keeps the provenance."""
    best = 0.0
    meta = None
    count = 0
    used = set()
    for device_id, trips in trips_by_device:
        used.add(device_id)
        for trip in trips:
            speed = to_number(_field(trip, "maxSpeed"))
            if speed is None:
                continue
            count += 1
            if speed > best:
                best = speed
                trip_device = trip.get("deviceId")
                meta = MaxSpeedMeta(
                    device_id=trip_device if trip_device is not None else device_id,
                    device_name=str(trip.get("deviceName") or device_id),
                    start_time=trip.get("startTime") or None,
                    end_time=trip.get("endTime") or None,
                )
    return MaxSpeedResult(max_speed=best, trips_count=count, devices_count_used=len(used), meta=meta)


def fuel(trips_by_device: DeviceRecords) -> FuelResult:
    """Total and per-trip average of ``spentFuel``; negative readings count as 0."""
    total = 0.0
    count = 0
    used = set()
    for device_id, trips in trips_by_device:
        if trips:
            used.add(device_id)
        for trip in trips:
            spent = to_number(_field(trip, "spentFuel"))
            if spent is None:
                continue
            total += max(spent, 0.0)
            count += 1
    # Redundant with the per-record clamp; kept so the total can never go negative.
    total = max(total, 0.0)
    return FuelResult(
        average_fuel=total / count if count else 0,
        total_fuel=total,
        trips_count=count,
        devices_count_used=len(used),
    )


def active_devices(trips_by_device: DeviceRecords) -> ActiveDevicesResult:
    active: list[Any] = []
    for device_id, trips in trips_by_device:
        if trips and device_id not in active:
            active.append(device_id)
    return ActiveDevicesResult(active_device_ids=active, count=len(active))


def total_distance(trips_by_device: DeviceRecords) -> TotalDistanceResult:
    """Sum trip distances in km, preferring ``distance`` (meters) over ``distanceKm``."""
    total_km = 0.0
    count = 0
    for _, trips in trips_by_device:
        for trip in trips:
            meters = to_number(_field(trip, "distance"))
            if meters is not None:
                total_km += meters / 1000
                count += 1
                continue
            km = to_number(_field(trip, "distanceKm"))
            if km is not None:
                total_km += km
                count += 1
    return TotalDistanceResult(total_km=max(0.0, total_km), trips_count=count)


def maintenance_efficiency(maintenance_by_device: DeviceRecords) -> MaintenanceEfficiencyResult:
    """Percentage of devices with no overdue maintenance (``attributes.due <= 0``)."""
    total = 0
    compliant = 0
    for _, records in maintenance_by_device:
        total += 1
        overdue = False
        for record in records:
            due = to_number(nested_get(record, "attributes", "due"))
            if due is not None and due <= 0:
                overdue = True
                break
        if not overdue:
            compliant += 1
    efficiency = round(compliant / total * 100, 2) if total else 0
    return MaintenanceEfficiencyResult(efficiency=efficiency, total=total, compliant=compliant)


# ---------------------------------------------------------------------------
# Vehicle alerts
# ---------------------------------------------------------------------------


def notification_labels(notifications: Iterable[Any]) -> dict[int, str]:
    labels: dict[int, str] = {}
    for notification in notifications:
        notification_id = to_number(_field(notification, "id"))
        if notification_id is None:
            continue
        notification_id = int(notification_id)
        label = (
            nested_get(notification, "attributes", "name")
            or nested_get(notification, "attributes", "alarms")
            or notification.get("type")
            or f"notif:{notification_id}"
        )
        labels[notification_id] = str(label)
    return labels


def geofence_names(geofences: Iterable[Any]) -> dict[int, str]:
    names: dict[int, str] = {}
    for geofence in geofences:
        geofence_id = to_number(_field(geofence, "id"))
        if geofence_id is None:
            continue
        geofence_id = int(geofence_id)
        names[geofence_id] = str(geofence.get("name") or f"geofence:{geofence_id}")
    return names


def _notification_ids(event: dict[str, Any]) -> list[int]:
    attributes = event.get("attributes")
    if not isinstance(attributes, dict):
        return []
    return parse_id_list(attributes.get("notifications") or attributes.get("notificationId"))


def infer_state(event: dict[str, Any], labels: dict[int, str]) -> str | None:
    """Map one event to a vehicle state, or None when it says nothing about it."""
    event_type = str(event.get("type") or "").lower()
    if event_type == "ignitionon":
        return STATE_IN_SERVICE
    if event_type == "ignitionoff":
        return STATE_STOPPED
    if event_type == "alarm":
        alarm = str(nested_get(event, "attributes", "alarm") or "").lower()
        if "idle" in alarm:
            return STATE_IDLE
    for notification_id in _notification_ids(event):
        label = labels.get(notification_id, "").lower()
        if "idle" in label:
            return STATE_IDLE
        if any(marker in label for marker in _STOPPED_MARKERS):
            return STATE_STOPPED
    return None


def vehicle_alert_row(
    device_id: Any,
    events: list[Any],
    labels: dict[int, str],
    geofences: dict[int, str],
) -> VehicleAlertRow:
    ordered = sorted(
        (e for e in events if isinstance(e, dict)),
        key=lambda e: parse_timestamp(e.get("serverTime")),
    )
    alerts: set[str] = set()
    touched: set[str] = set()
    occurrences = 0
    state = None
    state_ts = 0.0

    for event in ordered:
        event_type = event.get("type")
        ids = _notification_ids(event)
        if event_type and event_type != "alarm":
            alerts.add(str(event_type))
            occurrences += 1
        if event_type == "alarm":
            alarm = nested_get(event, "attributes", "alarm")
            if alarm:
                alerts.add(str(alarm))
            occurrences += len(ids) if ids else 1
        for notification_id in ids:
            alerts.add(labels.get(notification_id, f"notif:{notification_id}"))

        geofence_id = to_number(event.get("geofenceId"))
        if geofence_id is not None and geofence_id > 0:
            geofence_id = int(geofence_id)
            touched.add(geofences.get(geofence_id, f"geofence:{geofence_id}"))

        inferred = infer_state(event, labels)
        ts = parse_timestamp(event.get("serverTime"))
        # Later-or-equal wins: same-timestamp events resolve by sort order.
        if inferred and ts >= state_ts:
            state = inferred
            state_ts = ts

    if state is None:
        state = STATE_IN_SERVICE if ordered else STATE_NO_ACTIVITY

    return VehicleAlertRow(
        device_id=device_id,
        alerts=sorted(alerts, key=str.casefold),
        geofences=sorted(touched, key=str.casefold),
        alert_count=occurrences,
        unique_alert_count=len(alerts),
        geofence_count=len(touched),
        state=state,
        state_label=STATE_LABELS[state],
    )


def vehicle_alerts(
    events_by_device: DeviceRecords,
    notifications: Iterable[Any],
    geofences: Iterable[Any],
) -> VehicleAlertsResult:
    labels = notification_labels(notifications)
    names = geofence_names(geofences)
    rows = [
        vehicle_alert_row(device_id, events, labels, names)
        for device_id, events in events_by_device
    ]
    return VehicleAlertsResult(rows=rows, count=len(rows))
