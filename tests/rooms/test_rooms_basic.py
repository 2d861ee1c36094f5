import os
import sys
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient

from roomtrackr.drift import DriftSimulator
from roomtrackr.main import app, get_store
from roomtrackr.rate_limiter import reset_rate_limits
from roomtrackr.store import MemoryCollectionBackend, RoomTrackrStore

client = TestClient(app)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def store(clock):
    s = RoomTrackrStore(
        MemoryCollectionBackend(),
        simulator=DriftSimulator(tz=timezone.utc),
        clock=clock,
    )
    app.dependency_overrides[get_store] = lambda: s
    reset_rate_limits()
    yield s
    app.dependency_overrides.clear()


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def room_payload(**overrides):
    payload = {
        "roomNumber": "A101",
        "location": "Building A",
        "floor": 1,
        "capacity": 12,
        "roomType": "Conference",
        "availabilityStatus": "Available",
        "amenities": ["Projector", "WiFi"],
        "temperature": 22,
        "occupancyCount": 0,
    }
    payload.update(overrides)
    return payload


def create_room(**overrides):
    res = client.post("/rooms", json=room_payload(**overrides))
    assert res.status_code == 201, res.text
    return res.json()


def test_root_reports_running():
    res = client.get("/")
    assert res.status_code == 200
    assert res.json() == {"service": "roomtrackr", "status": "running"}


def test_create_then_read_round_trip():
    created = create_room(description="Corner room")
    assert created["id"]
    assert created["createdAt"] == created["updatedAt"]

    res = client.get(f"/rooms/{created['id']}")
    assert res.status_code == 200
    body = res.json()
    for key, value in room_payload(description="Corner room").items():
        assert body[key] == value
    assert body["createdAt"] == created["createdAt"]
    assert body["updatedAt"] == created["updatedAt"]


def test_created_ids_are_unique():
    first = create_room(roomNumber="A101")
    second = create_room(roomNumber="A101")
    assert first["id"] != second["id"]


def test_missing_required_field_is_reported():
    payload = room_payload()
    del payload["roomNumber"]
    res = client.post("/rooms", json=payload)
    assert res.status_code == 400
    body = res.json()
    assert body["errors"]["roomNumber"] == "Missing required field: roomNumber"


def test_invalid_enum_value_is_rejected():
    res = client.post("/rooms", json=room_payload(roomType="Ballroom"))
    assert res.status_code == 400
    assert "roomType" in res.json()["errors"]


def test_occupancy_cannot_exceed_capacity():
    res = client.post(
        "/rooms",
        json=room_payload(capacity=4, occupancyCount=5, availabilityStatus="Occupied"),
    )
    assert res.status_code == 400
    assert "occupancyCount" in res.json()["errors"]


def test_occupied_room_cannot_be_available():
    res = client.post("/rooms", json=room_payload(occupancyCount=3))
    assert res.status_code == 400
    assert "availabilityStatus" in res.json()["errors"]


def test_get_nonexistent_room_returns_404():
    res = client.get("/rooms/does-not-exist")
    assert res.status_code == 404
    assert res.json()["detail"] == "Room not found"


def test_update_merges_fields_and_refreshes_updated_at(clock):
    room = create_room()
    clock.advance(minutes=5)

    res = client.put(
        f"/rooms/{room['id']}",
        json={"capacity": 20, "availabilityStatus": "Occupied", "occupancyCount": 7},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["capacity"] == 20
    assert body["occupancyCount"] == 7
    assert body["roomNumber"] == "A101"
    assert body["createdAt"] == room["createdAt"]
    assert parse_ts(body["updatedAt"]) == parse_ts(room["updatedAt"]) + timedelta(minutes=5)


def test_update_that_breaks_invariant_is_rejected():
    room = create_room(capacity=6)
    res = client.put(
        f"/rooms/{room['id']}",
        json={"availabilityStatus": "Occupied", "occupancyCount": 9},
    )
    assert res.status_code == 400

    unchanged = client.get(f"/rooms/{room['id']}").json()
    assert unchanged["availabilityStatus"] == "Available"
    assert unchanged["occupancyCount"] == 0


def test_update_nonexistent_room_returns_404():
    res = client.put("/rooms/missing", json={"capacity": 3})
    assert res.status_code == 404


def test_delete_removes_exactly_one():
    keep = create_room(roomNumber="A101")
    gone = create_room(roomNumber="A102")

    res = client.delete(f"/rooms/{gone['id']}")
    assert res.status_code == 200
    assert res.json()["message"] == "Room deleted successfully"

    rooms = client.get("/rooms").json()
    assert [r["id"] for r in rooms] == [keep["id"]]
    assert client.get(f"/rooms/{gone['id']}").status_code == 404


def test_delete_nonexistent_room_returns_404_and_keeps_rooms():
    create_room()
    res = client.delete("/rooms/missing")
    assert res.status_code == 404
    assert len(client.get("/rooms").json()) == 1


def test_delete_rejected_while_upcoming_booking_exists():
    room = create_room()
    booking = client.post(
        "/bookings",
        json={
            "roomId": room["id"],
            "title": "Planning",
            "organizer": "Dana",
            "startTime": "2030-01-08T10:00:00Z",
            "endTime": "2030-01-08T11:00:00Z",
        },
    ).json()

    res = client.delete(f"/rooms/{room['id']}")
    assert res.status_code == 409
    assert res.json()["booking_ids"] == [booking["id"]]

    client.post(f"/bookings/{booking['id']}/cancel")
    assert client.delete(f"/rooms/{room['id']}").status_code == 200


def test_list_preserves_insertion_order_after_update():
    a = create_room(roomNumber="A101")
    b = create_room(roomNumber="B201")
    client.put(f"/rooms/{a['id']}", json={"description": "edited"})

    ids = [r["id"] for r in client.get("/rooms").json()]
    assert ids == [a["id"], b["id"]]


def test_room_filters():
    create_room(roomNumber="A101", capacity=4, roomType="Meeting", location="Building A")
    create_room(roomNumber="B201", capacity=20, roomType="Training", location="Building B", floor=2)
    create_room(
        roomNumber="B202",
        capacity=8,
        roomType="Office",
        location="Building B",
        floor=2,
        availabilityStatus="Maintenance",
        description="Quiet corner office",
    )

    def numbers(params):
        res = client.get("/rooms", params=params)
        assert res.status_code == 200
        return {r["roomNumber"] for r in res.json()}

    assert numbers({"minCapacity": 8}) == {"B201", "B202"}
    assert numbers({"maxCapacity": 8}) == {"A101", "B202"}
    assert numbers({"location": "Building B", "floor": 2}) == {"B201", "B202"}
    assert numbers({"roomType": "Training"}) == {"B201"}
    assert numbers({"availabilityStatus": "Maintenance"}) == {"B202"}
    assert numbers({"search": "quiet"}) == {"B202"}


def test_stats_counts_and_rates():
    create_room(roomNumber="A101", capacity=10, temperature=21)
    create_room(
        roomNumber="A102",
        capacity=10,
        availabilityStatus="Occupied",
        occupancyCount=5,
        temperature=24,
    )
    create_room(roomNumber="B202", capacity=5, availabilityStatus="Maintenance", temperature=None)
    create_room(roomNumber="C301", capacity=5, availabilityStatus="Reserved", temperature=None)

    res = client.get("/rooms/stats")
    assert res.status_code == 200
    stats = res.json()
    assert stats == {
        "total": 4,
        "available": 1,
        "occupied": 1,
        "maintenance": 1,
        "reserved": 1,
        "totalCapacity": 30,
        "currentOccupancy": 5,
        "utilizationRate": 17,
        "averageTemperature": 22,
    }
    assert client.get("/rooms/stats").json() == stats


def test_stats_on_empty_collection():
    stats = client.get("/rooms/stats").json()
    assert stats["total"] == 0
    assert stats["utilizationRate"] == 0


def test_building_and_floor_breakdowns():
    create_room(roomNumber="A101", capacity=10, location="Building A", floor=1)
    create_room(
        roomNumber="A201",
        capacity=10,
        location="Building A",
        floor=2,
        availabilityStatus="Occupied",
        occupancyCount=4,
    )
    create_room(roomNumber="B101", capacity=6, location="Building B", floor=1)

    buildings = client.get("/rooms/stats/buildings").json()
    assert buildings[0] == {
        "building": "Building A",
        "rooms": 2,
        "capacity": 20,
        "occupied": 4,
        "available": 1,
        "utilization": 20,
        "availability": 50,
    }
    assert buildings[1]["building"] == "Building B"

    floors = client.get("/rooms/stats/floors").json()
    assert [f["floor"] for f in floors] == [1, 2]
    assert floors[0]["total"] == 2
    assert floors[1]["occupied"] == 1


def test_reading_rooms_applies_drift_to_stale_rooms(clock):
    room = create_room(temperature=30)
    clock.advance(hours=3)

    body = client.get(f"/rooms/{room['id']}").json()
    assert parse_ts(body["updatedAt"]) == clock.now
    assert 18 <= body["temperature"] <= 26
    assert 0 <= body["occupancyCount"] <= body["capacity"]


def test_fresh_rooms_are_not_drifted(clock):
    room = create_room(temperature=30)
    clock.advance(hours=1)

    body = client.get(f"/rooms/{room['id']}").json()
    assert body["temperature"] == 30
    assert body["updatedAt"] == room["updatedAt"]


def test_room_dependents_are_listed():
    room = create_room()
    client.post(
        "/bookings",
        json={
            "roomId": room["id"],
            "title": "Sync",
            "organizer": "Lee",
            "startTime": "2030-01-08T10:00:00Z",
            "endTime": "2030-01-08T10:30:00Z",
        },
    )
    client.post(
        "/maintenance",
        json={
            "roomId": room["id"],
            "type": "Cleaning",
            "description": "Deep clean",
            "technician": "Sam",
            "scheduledDate": "2030-01-09T08:00:00Z",
        },
    )

    assert len(client.get(f"/rooms/{room['id']}/bookings").json()) == 1
    assert len(client.get(f"/rooms/{room['id']}/maintenance").json()) == 1
    assert client.get("/rooms/missing/bookings").status_code == 404


def test_versioned_prefix_serves_same_routes():
    room = create_room()
    res = client.get(f"/api/v1/rooms/{room['id']}")
    assert res.status_code == 200
    assert res.json()["id"] == room["id"]
