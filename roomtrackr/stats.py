from collections import OrderedDict
from datetime import datetime
from typing import Iterable, List, Sequence

from .drift import BASE_TEMPERATURE, round_half_up
from .schemas import (
    AvailabilityStatus,
    BuildingStats,
    FloorStats,
    MaintenanceRecord,
    MaintenanceStats,
    MaintenanceStatus,
    Room,
    RoomStats,
)


def _percent(part: int, whole: int) -> int:
    return round_half_up(100 * part / whole) if whole > 0 else 0


def room_stats(rooms: Sequence[Room]) -> RoomStats:
    """
    Summarize a room collection.

    Every call recomputes from scratch. Absent occupancy counts as 0 and
    absent temperature as 22 degrees; an empty collection reports an
    average temperature of 0.
    """
    by_status = {s: 0 for s in AvailabilityStatus}
    for room in rooms:
        by_status[room.availability_status] += 1

    total_capacity = sum(room.capacity for room in rooms)
    current_occupancy = sum(room.occupancy_count or 0 for room in rooms)

    if rooms:
        temperatures = [
            room.temperature if room.temperature is not None else BASE_TEMPERATURE
            for room in rooms
        ]
        average_temperature = round_half_up(sum(temperatures) / len(rooms))
    else:
        average_temperature = 0

    return RoomStats(
        total=len(rooms),
        available=by_status[AvailabilityStatus.AVAILABLE],
        occupied=by_status[AvailabilityStatus.OCCUPIED],
        maintenance=by_status[AvailabilityStatus.MAINTENANCE],
        reserved=by_status[AvailabilityStatus.RESERVED],
        total_capacity=total_capacity,
        current_occupancy=current_occupancy,
        utilization_rate=_percent(current_occupancy, total_capacity),
        average_temperature=average_temperature,
    )


def building_breakdown(rooms: Iterable[Room]) -> List[BuildingStats]:
    """Per-building totals, in order of first appearance."""
    acc = OrderedDict()
    for room in rooms:
        b = acc.setdefault(
            room.location,
            {"rooms": 0, "capacity": 0, "occupied": 0, "available": 0},
        )
        b["rooms"] += 1
        b["capacity"] += room.capacity
        b["occupied"] += room.occupancy_count or 0
        if room.availability_status == AvailabilityStatus.AVAILABLE:
            b["available"] += 1

    return [
        BuildingStats(
            building=name,
            utilization=_percent(v["occupied"], v["capacity"]),
            availability=_percent(v["available"], v["rooms"]),
            **v,
        )
        for name, v in acc.items()
    ]


def floor_breakdown(rooms: Iterable[Room]) -> List[FloorStats]:
    acc = {}
    for room in rooms:
        f = acc.setdefault(
            room.floor,
            {"total": 0, "available": 0, "occupied": 0, "maintenance": 0},
        )
        f["total"] += 1
        if room.availability_status == AvailabilityStatus.AVAILABLE:
            f["available"] += 1
        elif room.availability_status == AvailabilityStatus.OCCUPIED:
            f["occupied"] += 1
        elif room.availability_status == AvailabilityStatus.MAINTENANCE:
            f["maintenance"] += 1

    return [FloorStats(floor=floor, **v) for floor, v in sorted(acc.items())]


def maintenance_summary(records: Sequence[MaintenanceRecord], now: datetime) -> MaintenanceStats:
    """
    Counts by status plus overdue work and the cost of completed work.
    """
    def count(status: MaintenanceStatus) -> int:
        return sum(1 for r in records if r.status == status)

    return MaintenanceStats(
        total=len(records),
        scheduled=count(MaintenanceStatus.SCHEDULED),
        in_progress=count(MaintenanceStatus.IN_PROGRESS),
        completed=count(MaintenanceStatus.COMPLETED),
        overdue=sum(1 for r in records if r.is_overdue(now)),
        total_cost=sum(
            r.cost or 0
            for r in records
            if r.status == MaintenanceStatus.COMPLETED
        ),
    )
