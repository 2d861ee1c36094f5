import copy
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from . import models
from .conflicts import find_conflicts
from .drift import DriftSimulator
from .errors import (
    BookingConflict,
    InvalidTransition,
    NotFound,
    RoomInUse,
    StorageError,
    ValidationFailed,
)
from .schemas import (
    Booking,
    BookingStatus,
    MaintenanceRecord,
    MaintenanceStatus,
    Room,
)
from .seed import sample_bookings, sample_maintenance, sample_rooms
from .validators import (
    booking_errors,
    errors_from_pydantic,
    maintenance_errors,
    room_errors,
)

logger = logging.getLogger(__name__)

ROOMS_KEY = "roomtrackr_rooms"
BOOKINGS_KEY = "roomtrackr_bookings"
MAINTENANCE_KEY = "roomtrackr_maintenance"

T = TypeVar("T", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Persistence backends ----------


class CollectionBackend:
    """
    Whole-collection persistence: read a JSON array, replace a JSON array.

    ``save`` is a compare-and-swap: it must fail with StorageError if the
    stored version differs from ``expected_version``.
    """

    def load(self, key: str) -> Tuple[List[Dict[str, Any]], int]:
        raise NotImplementedError

    def save(self, key: str, records: List[Dict[str, Any]], expected_version: int) -> int:
        raise NotImplementedError


class MemoryCollectionBackend(CollectionBackend):
    def __init__(self):
        self._data: Dict[str, Tuple[List[Dict[str, Any]], int]] = {}
        self._lock = threading.Lock()

    def load(self, key):
        with self._lock:
            records, version = self._data.get(key, ([], 0))
            return copy.deepcopy(records), version

    def save(self, key, records, expected_version):
        with self._lock:
            _, version = self._data.get(key, ([], 0))
            if version != expected_version:
                raise StorageError(f"Collection '{key}' was modified concurrently")
            self._data[key] = (copy.deepcopy(records), version + 1)
            return version + 1


class SqlCollectionBackend(CollectionBackend):
    """
    Stores each collection as one row of the ``collections`` table.

    Parameters
    ----------
    session_factory : Callable
        SQLAlchemy session factory (normally ``database.SessionLocal``).
    """

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def load(self, key):
        db = self.session_factory()
        try:
            row = db.get(models.StoredCollection, key)
            if row is None:
                return [], 0
            return json.loads(row.payload), row.version
        except SQLAlchemyError as exc:
            logger.exception("Failed to load collection %s", key)
            raise StorageError() from exc
        finally:
            db.close()

    def save(self, key, records, expected_version):
        payload = json.dumps(records)
        db = self.session_factory()
        try:
            if expected_version == 0:
                db.add(models.StoredCollection(key=key, payload=payload, version=1))
            else:
                updated = (
                    db.query(models.StoredCollection)
                    .filter(models.StoredCollection.key == key)
                    .filter(models.StoredCollection.version == expected_version)
                    .update(
                        {"payload": payload, "version": expected_version + 1},
                        synchronize_session=False,
                    )
                )
                if updated == 0:
                    db.rollback()
                    raise StorageError(f"Collection '{key}' was modified concurrently")
            db.commit()
            return expected_version + 1
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to save collection %s", key)
            raise StorageError() from exc
        finally:
            db.close()


# ---------- Generic collection ----------


class EntityCollection(Generic[T]):
    """
    Insertion-ordered collection of one entity kind.

    Every public operation takes the collection lock, reads the full
    collection, and (for writes) persists the full collection back.

    Parameters
    ----------
    backend : CollectionBackend
        Where the JSON array lives.
    key : str
        Storage key of this collection.
    model : Type[T]
        Pydantic model of the stored records.
    kind : str
        Human-readable entity name used in not-found errors.
    tracks_updates : bool
        Whether records carry an ``updated_at`` that writes refresh.
    clock : Callable[[], datetime]
        Source of "now".
    """

    def __init__(
        self,
        backend: CollectionBackend,
        key: str,
        model: Type[T],
        kind: str,
        tracks_updates: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.key = key
        self.model = model
        self.kind = kind
        self.tracks_updates = tracks_updates
        self.clock = clock
        self.lock = threading.RLock()

    def _load(self) -> Tuple[List[T], int]:
        raw, version = self.backend.load(self.key)
        return [self.model.model_validate(r) for r in raw], version

    def _save(self, items: List[T], version: int) -> None:
        self.backend.save(
            self.key,
            [item.model_dump(mode="json", by_alias=True) for item in items],
            version,
        )

    def _build(self, data: Dict[str, Any]) -> T:
        try:
            return self.model.model_validate(data)
        except ValidationError as exc:
            raise ValidationFailed(errors_from_pydantic(exc)) from exc

    def mutate(self, fn: Callable[[List[T]], Tuple[List[T], Any]]) -> Any:
        """
        Run a read-modify-write cycle under the collection lock.

        ``fn`` receives the current items and returns ``(new_items, result)``;
        the new items are persisted and ``result`` is returned. If ``fn``
        raises, nothing is written.
        """
        with self.lock:
            items, version = self._load()
            new_items, result = fn(items)
            self._save(new_items, version)
            return result

    def list(self) -> List[T]:
        with self.lock:
            return self._load()[0]

    def get_by_id(self, entity_id: str) -> Optional[T]:
        for item in self.list():
            if item.id == entity_id:
                return item
        return None

    def create(
        self,
        fields: Dict[str, Any],
        guard: Optional[Callable[[List[T], T], None]] = None,
    ) -> T:
        """
        Append a new record with a fresh id and creation timestamps.

        ``guard`` is called with the current items and the candidate under
        the lock; it may raise to reject the insert.
        """
        now = self.clock()
        data = {k: v for k, v in fields.items() if k not in ("id", "created_at", "updated_at")}
        data["id"] = uuid.uuid4().hex
        data["created_at"] = now
        if self.tracks_updates:
            data["updated_at"] = now
        entity = self._build(data)

        def step(items: List[T]):
            if guard is not None:
                guard(items, entity)
            return items + [entity], entity

        return self.mutate(step)

    def update(
        self,
        entity_id: str,
        fields: Dict[str, Any],
        guard: Optional[Callable[[T, T], None]] = None,
    ) -> Optional[T]:
        """
        Merge ``fields`` into an existing record.

        Returns None if ``entity_id`` does not exist. ``guard`` receives the
        current and merged records and may raise to reject the change.
        """
        with self.lock:
            items, version = self._load()
            for index, current in enumerate(items):
                if current.id == entity_id:
                    break
            else:
                return None

            data = current.model_dump()
            data.update({k: v for k, v in fields.items() if k not in ("id", "created_at")})
            if self.tracks_updates:
                data["updated_at"] = self.clock()
            merged = self._build(data)
            if guard is not None:
                guard(current, merged)

            items[index] = merged
            self._save(items, version)
            return merged

    def delete(self, entity_id: str) -> bool:
        with self.lock:
            items, version = self._load()
            remaining = [item for item in items if item.id != entity_id]
            if len(remaining) == len(items):
                return False
            self._save(remaining, version)
            return True

    def replace_all(self, items: List[T]) -> None:
        self.mutate(lambda _: (list(items), None))


# ---------- Store ----------


MAINTENANCE_TRANSITIONS = {
    MaintenanceStatus.SCHEDULED: {MaintenanceStatus.IN_PROGRESS, MaintenanceStatus.CANCELLED},
    MaintenanceStatus.IN_PROGRESS: {MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED},
    MaintenanceStatus.COMPLETED: set(),
    MaintenanceStatus.CANCELLED: set(),
}


def _check_room(_, room: Room) -> None:
    errors = room_errors(room)
    if errors:
        raise ValidationFailed(errors)


class RoomTrackrStore:
    """
    Owns the room, booking, and maintenance collections.

    Constructed once at process start with an injected backend and passed
    to whoever needs it. The three collections are locked independently.
    """

    def __init__(
        self,
        backend: CollectionBackend,
        simulator: Optional[DriftSimulator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.clock = clock
        self.simulator = simulator or DriftSimulator()
        self.rooms: EntityCollection[Room] = EntityCollection(
            backend, ROOMS_KEY, Room, "Room", tracks_updates=True, clock=clock
        )
        self.bookings: EntityCollection[Booking] = EntityCollection(
            backend, BOOKINGS_KEY, Booking, "Booking", clock=clock
        )
        self.maintenance: EntityCollection[MaintenanceRecord] = EntityCollection(
            backend, MAINTENANCE_KEY, MaintenanceRecord, "Maintenance record", clock=clock
        )

    # ---------- Rooms ----------

    def list_rooms(self) -> List[Room]:
        """All rooms as stored, without applying drift."""
        return self.rooms.list()

    def reconcile_rooms(self, now: Optional[datetime] = None) -> List[Room]:
        """
        Apply occupancy drift to stale rooms and persist the result.

        The staleness check runs against each room's own ``updated_at``
        inside the room lock, so a room another writer just touched is
        left alone.
        """
        with self.rooms.lock:
            rooms, version = self.rooms._load()
            drifted, changed = self.simulator.apply(rooms, now or self.clock())
            if changed:
                self.rooms._save(drifted, version)
                logger.info("Reconciled %d stale rooms", changed)
            return drifted

    def get_room(self, room_id: str) -> Room:
        for room in self.reconcile_rooms():
            if room.id == room_id:
                return room
        raise NotFound("Room", room_id)

    def create_room(self, fields: Dict[str, Any]) -> Room:
        room = self.rooms.create(fields, guard=_check_room)
        logger.info("Created room %s (%s)", room.id, room.room_number)
        return room

    def update_room(self, room_id: str, fields: Dict[str, Any]) -> Room:
        room = self.rooms.update(room_id, fields, guard=_check_room)
        if room is None:
            raise NotFound("Room", room_id)
        return room

    def delete_room(self, room_id: str) -> None:
        """
        Remove a room that has no active dependents.

        Active dependents are non-cancelled bookings that have not ended
        yet and maintenance that is Scheduled or In Progress. Historical
        records are kept.
        """
        if self.rooms.get_by_id(room_id) is None:
            raise NotFound("Room", room_id)

        now = self.clock()
        booking_ids = [
            b.id
            for b in self.bookings.list()
            if b.room_id == room_id
            and b.status != BookingStatus.CANCELLED
            and b.end_time > now
        ]
        maintenance_ids = [
            m.id
            for m in self.maintenance.list()
            if m.room_id == room_id
            and m.status in (MaintenanceStatus.SCHEDULED, MaintenanceStatus.IN_PROGRESS)
        ]
        if booking_ids or maintenance_ids:
            raise RoomInUse(room_id, booking_ids, maintenance_ids)

        if not self.rooms.delete(room_id):
            raise NotFound("Room", room_id)
        logger.info("Deleted room %s", room_id)

    # ---------- Bookings ----------

    def list_bookings(self) -> List[Booking]:
        return self.bookings.list()

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking", booking_id)
        return booking

    def find_conflicts(self, room_id: str, start: datetime, end: datetime) -> List[Booking]:
        return find_conflicts(room_id, start, end, self.bookings.list())

    def create_booking(self, fields: Dict[str, Any]) -> Booking:
        """
        Validate, conflict-check, and append a booking as one step.

        Raises
        ------
        ValidationFailed
            If any field is missing or invalid (checked before conflicts).
        BookingConflict
            If the interval overlaps a non-cancelled booking on the same room.
        """
        room_id = fields.get("room_id")
        room = self.rooms.get_by_id(room_id) if room_id else None
        errors = booking_errors(fields, room)
        if errors:
            raise ValidationFailed(errors)

        data = dict(fields)
        data["title"] = data["title"].strip()
        data["organizer"] = data["organizer"].strip()
        if data.get("attendees") is None:
            data["attendees"] = 1
        if data.get("status") is None:
            data["status"] = BookingStatus.CONFIRMED

        def guard(existing: List[Booking], candidate: Booking) -> None:
            clashes = find_conflicts(
                candidate.room_id, candidate.start_time, candidate.end_time, existing
            )
            if clashes:
                raise BookingConflict(candidate.room_id, [b.id for b in clashes])

        booking = self.bookings.create(data, guard=guard)
        logger.info("Booked room %s for %s", booking.room_id, booking.id)
        return booking

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self.bookings.update(booking_id, {"status": BookingStatus.CANCELLED})
        if booking is None:
            raise NotFound("Booking", booking_id)
        return booking

    def bookings_for_room(self, room_id: str) -> List[Booking]:
        return [b for b in self.bookings.list() if b.room_id == room_id]

    # ---------- Maintenance ----------

    def list_maintenance(self) -> List[MaintenanceRecord]:
        return self.maintenance.list()

    def get_maintenance(self, record_id: str) -> MaintenanceRecord:
        record = self.maintenance.get_by_id(record_id)
        if record is None:
            raise NotFound("Maintenance record", record_id)
        return record

    def create_maintenance(self, fields: Dict[str, Any]) -> MaintenanceRecord:
        room_id = fields.get("room_id")
        room = self.rooms.get_by_id(room_id) if room_id else None
        errors = maintenance_errors(fields, room)
        if errors:
            raise ValidationFailed(errors)

        data = dict(fields)
        data["description"] = data["description"].strip()
        data["technician"] = data["technician"].strip()
        if data.get("status") is None:
            data["status"] = MaintenanceStatus.SCHEDULED
        return self.maintenance.create(data)

    def transition_maintenance(
        self,
        record_id: str,
        status: MaintenanceStatus,
        completed_date: Optional[datetime] = None,
    ) -> MaintenanceRecord:
        """
        Advance a maintenance record along its lifecycle.

        Scheduled -> In Progress -> Completed, or Cancelled from either
        open state. Completing stamps ``completed_date`` (now unless
        given), which may not precede the scheduled date.
        """
        fields: Dict[str, Any] = {"status": status}
        if status == MaintenanceStatus.COMPLETED:
            fields["completed_date"] = completed_date or self.clock()

        def guard(current: MaintenanceRecord, merged: MaintenanceRecord) -> None:
            if status not in MAINTENANCE_TRANSITIONS[current.status]:
                raise InvalidTransition("Maintenance record", current.status.value, status.value)
            if merged.completed_date is not None and merged.completed_date < merged.scheduled_date:
                raise ValidationFailed(
                    {"completedDate": "Completion date cannot be before the scheduled date"}
                )

        record = self.maintenance.update(record_id, fields, guard=guard)
        if record is None:
            raise NotFound("Maintenance record", record_id)
        return record

    def maintenance_for_room(self, room_id: str) -> List[MaintenanceRecord]:
        return [m for m in self.maintenance.list() if m.room_id == room_id]

    # ---------- Seeding ----------

    def seed_if_empty(self) -> bool:
        """
        Load the sample facility when no rooms exist yet.

        Returns True if anything was seeded.
        """
        if self.rooms.list():
            return False

        now = self.clock()
        created = {}
        for fields in sample_rooms(now):
            room = self.rooms.create(fields)
            created[room.room_number] = room.id

        if not self.bookings.list():
            for room_number, fields in sample_bookings(now):
                self.bookings.create({**fields, "room_id": created[room_number]})

        if not self.maintenance.list():
            for room_number, fields in sample_maintenance(now):
                self.maintenance.create({**fields, "room_id": created[room_number]})

        logger.info("Seeded %d sample rooms", len(created))
        return True
