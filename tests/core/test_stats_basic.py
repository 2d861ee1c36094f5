import os
import sys
import itertools
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from roomtrackr.drift import round_half_up
from roomtrackr.schemas import (
    AvailabilityStatus,
    MaintenanceRecord,
    MaintenanceStatus,
    MaintenanceType,
    Room,
    RoomType,
)
from roomtrackr.stats import maintenance_summary, room_stats

NOW = datetime(2030, 1, 7, 12, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


def room(status, capacity, occupancy=None, temperature=None):
    n = next(_ids)
    return Room(
        id=f"r{n}",
        room_number=f"R{n}",
        location="Building A",
        floor=1,
        capacity=capacity,
        room_type=RoomType.MEETING,
        availability_status=status,
        occupancy_count=occupancy,
        temperature=temperature,
        created_at=NOW,
        updated_at=NOW,
    )


def test_round_half_up():
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4999) == 2
    assert round_half_up(-0.5) == 0


def test_status_counts_sum_to_total():
    rooms = [
        room(AvailabilityStatus.AVAILABLE, 4),
        room(AvailabilityStatus.AVAILABLE, 4),
        room(AvailabilityStatus.OCCUPIED, 8, occupancy=3),
        room(AvailabilityStatus.MAINTENANCE, 2),
        room(AvailabilityStatus.RESERVED, 10),
    ]
    stats = room_stats(rooms)
    assert stats.total == 5
    assert stats.available + stats.occupied + stats.maintenance + stats.reserved == stats.total
    assert stats.available == 2


def test_utilization_rounds_half_up():
    rooms = [
        room(AvailabilityStatus.OCCUPIED, 8, occupancy=1),
        room(AvailabilityStatus.AVAILABLE, 8),
    ]
    # 1 / 16 = 6.25%
    assert room_stats(rooms).utilization_rate == 6

    rooms = [room(AvailabilityStatus.OCCUPIED, 200, occupancy=1)]
    # 0.5% rounds up
    assert room_stats(rooms).utilization_rate == 1


def test_absent_values_use_defaults():
    rooms = [
        room(AvailabilityStatus.AVAILABLE, 5),
        room(AvailabilityStatus.OCCUPIED, 5, occupancy=2, temperature=25),
    ]
    stats = room_stats(rooms)
    assert stats.current_occupancy == 2
    # (22 + 25) / 2 = 23.5
    assert stats.average_temperature == 24


def test_empty_collection():
    stats = room_stats([])
    assert stats.total == 0
    assert stats.total_capacity == 0
    assert stats.utilization_rate == 0
    assert stats.average_temperature == 0


def test_aggregation_is_idempotent():
    rooms = [
        room(AvailabilityStatus.OCCUPIED, 9, occupancy=4, temperature=21.4),
        room(AvailabilityStatus.RESERVED, 3, temperature=19),
    ]
    assert room_stats(rooms) == room_stats(rooms)


def record(status, scheduled, cost=None):
    return MaintenanceRecord(
        id=f"m-{status.value}-{scheduled.isoformat()}",
        room_id="r1",
        type=MaintenanceType.CLEANING,
        description="Clean",
        technician="Sam",
        scheduled_date=scheduled,
        status=status,
        cost=cost,
        created_at=NOW,
    )


def test_maintenance_summary():
    past = NOW - timedelta(days=1)
    future = NOW + timedelta(days=1)
    records = [
        record(MaintenanceStatus.SCHEDULED, past, cost=10),
        record(MaintenanceStatus.SCHEDULED, future),
        record(MaintenanceStatus.IN_PROGRESS, past, cost=30),
        record(MaintenanceStatus.COMPLETED, past, cost=120.5),
        record(MaintenanceStatus.COMPLETED, past),
        record(MaintenanceStatus.CANCELLED, past, cost=99),
    ]
    summary = maintenance_summary(records, NOW)
    assert summary.total == 6
    assert summary.scheduled == 2
    assert summary.in_progress == 1
    assert summary.completed == 2
    assert summary.overdue == 1
    assert summary.total_cost == 120.5
