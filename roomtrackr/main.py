import logging
import os
import threading
from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import schemas
from .cache import get_cached_json, invalidate, listing_key, set_cached_json
from .database import Base, SessionLocal, engine
from .drift import DriftSimulator
from .errors import (
    BookingConflict,
    RoomInUse,
    RoomTrackrError,
    ValidationFailed,
)
from .rate_limiter import booking_rate_limiter
from .stats import building_breakdown, floor_breakdown, maintenance_summary, room_stats
from .store import RoomTrackrStore, SqlCollectionBackend, utcnow
from .validators import errors_from_pydantic

logger = logging.getLogger(__name__)

SERVICE_NAME = "roomtrackr"

DRIFT_STALENESS_SECONDS = int(os.getenv("DRIFT_STALENESS_SECONDS", "7200"))
DRIFT_INTERVAL_SECONDS = int(os.getenv("DRIFT_INTERVAL_SECONDS", "0"))
DRIFT_TIMEZONE = os.getenv("DRIFT_TIMEZONE")
SEED_SAMPLE_DATA = os.getenv("SEED_SAMPLE_DATA", "1") == "1"

BOOKINGS_CACHE = "bookings"
MAINTENANCE_CACHE = "maintenance"

store = RoomTrackrStore(
    SqlCollectionBackend(SessionLocal),
    simulator=DriftSimulator(
        staleness=timedelta(seconds=DRIFT_STALENESS_SECONDS),
        tz=ZoneInfo(DRIFT_TIMEZONE) if DRIFT_TIMEZONE else None,
    ),
)


def get_store() -> RoomTrackrStore:
    """
    FastAPI dependency returning the process-wide store.

    Tests override this to inject a store backed by memory.
    """
    return store


app = FastAPI(title="RoomTrackr", version="1.0.0")

router = APIRouter()


def _envelope(request: Request, status_code: int, detail, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
            "detail": detail,
            **extra,
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _envelope(request, exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _envelope(
        request,
        status.HTTP_400_BAD_REQUEST,
        ValidationFailed.detail,
        errors=errors_from_pydantic(exc),
    )


@app.exception_handler(RoomTrackrError)
async def domain_exception_handler(request: Request, exc: RoomTrackrError):
    if isinstance(exc, ValidationFailed):
        return _envelope(request, exc.status_code, exc.detail, errors=exc.errors)
    if isinstance(exc, BookingConflict):
        return _envelope(
            request,
            exc.status_code,
            exc.detail,
            message="This room is already booked for the selected time slot.",
            room_id=exc.room_id,
            conflicting_booking_ids=exc.conflicting_ids,
        )
    if isinstance(exc, RoomInUse):
        return _envelope(
            request,
            exc.status_code,
            exc.detail,
            booking_ids=exc.booking_ids,
            maintenance_ids=exc.maintenance_ids,
        )
    if exc.status_code >= 500:
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return _envelope(request, exc.status_code, "Internal server error")
    return _envelope(request, exc.status_code, exc.detail)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@app.get("/")
def root():
    """
    Health-check endpoint.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": SERVICE_NAME, "status": "running"}


# ---------- Rooms ----------


@router.get("/rooms", response_model=List[schemas.Room])
def list_rooms(
    room_type: Optional[schemas.RoomType] = Query(default=None, alias="roomType"),
    availability_status: Optional[schemas.AvailabilityStatus] = Query(
        default=None, alias="availabilityStatus"
    ),
    location: Optional[str] = None,
    floor: Optional[int] = Query(default=None, ge=1),
    min_capacity: Optional[int] = Query(default=None, ge=1, alias="minCapacity"),
    max_capacity: Optional[int] = Query(default=None, ge=1, alias="maxCapacity"),
    search: Optional[str] = None,
    db: RoomTrackrStore = Depends(get_store),
):
    """
    List rooms, applying occupancy drift first.

    Parameters
    ----------
    room_type : Optional[RoomType]
        Only rooms of this type.
    availability_status : Optional[AvailabilityStatus]
        Only rooms currently in this status.
    location : Optional[str]
        Exact building name.
    floor : Optional[int]
        Exact floor.
    min_capacity, max_capacity : Optional[int]
        Inclusive capacity bounds.
    search : Optional[str]
        Case-insensitive substring of room number, location, or description.

    Returns
    -------
    List[Room]
        Matching rooms in insertion order.
    """
    rooms = db.reconcile_rooms()

    if room_type is not None:
        rooms = [r for r in rooms if r.room_type == room_type]
    if availability_status is not None:
        rooms = [r for r in rooms if r.availability_status == availability_status]
    if location:
        rooms = [r for r in rooms if r.location == location]
    if floor is not None:
        rooms = [r for r in rooms if r.floor == floor]
    if min_capacity is not None:
        rooms = [r for r in rooms if r.capacity >= min_capacity]
    if max_capacity is not None:
        rooms = [r for r in rooms if r.capacity <= max_capacity]
    if search:
        needle = search.lower()
        rooms = [
            r
            for r in rooms
            if needle in r.room_number.lower()
            or needle in r.location.lower()
            or needle in (r.description or "").lower()
        ]
    return rooms


@router.get("/rooms/stats", response_model=schemas.RoomStats)
def get_room_stats(db: RoomTrackrStore = Depends(get_store)):
    """
    Counts by status, capacity, occupancy, utilization, and average temperature.
    """
    return room_stats(db.reconcile_rooms())


@router.get("/rooms/stats/buildings", response_model=List[schemas.BuildingStats])
def get_building_stats(db: RoomTrackrStore = Depends(get_store)):
    return building_breakdown(db.reconcile_rooms())


@router.get("/rooms/stats/floors", response_model=List[schemas.FloorStats])
def get_floor_stats(db: RoomTrackrStore = Depends(get_store)):
    return floor_breakdown(db.reconcile_rooms())


@router.get("/rooms/{room_id}", response_model=schemas.Room)
def get_room(room_id: str, db: RoomTrackrStore = Depends(get_store)):
    """
    Retrieve a single room by its ID.

    Raises
    ------
    NotFound
        If the room does not exist.
    """
    return db.get_room(room_id)


@router.post("/rooms", response_model=schemas.Room, status_code=status.HTTP_201_CREATED)
def create_room(room_in: schemas.RoomCreate, db: RoomTrackrStore = Depends(get_store)):
    """
    Create a new room.

    Behavior
    --------
    - roomNumber, location, floor, capacity, roomType and
      availabilityStatus are required.
    - Occupancy may not exceed capacity, and an occupied count forbids
      the Available status.
    - The store assigns id, createdAt and updatedAt.

    Returns
    -------
    Room
        The created room.
    """
    return db.create_room(room_in.model_dump())


@router.put("/rooms/{room_id}", response_model=schemas.Room)
def update_room(
    room_id: str,
    update_data: schemas.RoomUpdate,
    db: RoomTrackrStore = Depends(get_store),
):
    """
    Merge the provided fields into an existing room and refresh updatedAt.

    Raises
    ------
    NotFound
        If the room does not exist.
    ValidationFailed
        If the merged room breaks a room invariant.
    """
    return db.update_room(room_id, update_data.model_dump(exclude_unset=True))


@router.delete("/rooms/{room_id}")
def delete_room(room_id: str, db: RoomTrackrStore = Depends(get_store)):
    """
    Delete a room that has no upcoming bookings and no open maintenance.

    Raises
    ------
    NotFound
        If the room does not exist.
    RoomInUse
        If active bookings or open maintenance still reference it.
    """
    db.delete_room(room_id)
    return {"message": "Room deleted successfully"}


@router.get("/rooms/{room_id}/bookings", response_model=List[schemas.Booking])
def list_room_bookings(room_id: str, db: RoomTrackrStore = Depends(get_store)):
    db.get_room(room_id)
    return db.bookings_for_room(room_id)


@router.get("/rooms/{room_id}/maintenance", response_model=List[schemas.MaintenanceRead])
def list_room_maintenance(room_id: str, db: RoomTrackrStore = Depends(get_store)):
    db.get_room(room_id)
    now = utcnow()
    return [schemas.MaintenanceRead.from_record(m, now) for m in db.maintenance_for_room(room_id)]


# ---------- Bookings ----------


def _all_bookings(db: RoomTrackrStore) -> List[schemas.Booking]:
    key = listing_key(BOOKINGS_CACHE)
    cached = get_cached_json(key)
    if cached is not None:
        return [schemas.Booking.model_validate(b) for b in cached]
    bookings = db.list_bookings()
    set_cached_json(
        key,
        [b.model_dump(mode="json", by_alias=True) for b in bookings],
    )
    return bookings


@router.get("/bookings", response_model=List[schemas.Booking])
def list_bookings(
    room_id: Optional[str] = Query(default=None, alias="roomId"),
    booking_status: Optional[schemas.BookingStatus] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    db: RoomTrackrStore = Depends(get_store),
):
    """
    List bookings with optional filters.

    Parameters
    ----------
    room_id : Optional[str]
        Only bookings for this room.
    booking_status : Optional[BookingStatus]
        Only bookings in this status.
    search : Optional[str]
        Case-insensitive substring of title or organizer.

    Returns
    -------
    List[Booking]
        Bookings in creation order.
    """
    bookings = _all_bookings(db)

    if room_id:
        bookings = [b for b in bookings if b.room_id == room_id]
    if booking_status is not None:
        bookings = [b for b in bookings if b.status == booking_status]
    if search:
        needle = search.lower()
        bookings = [
            b for b in bookings if needle in b.title.lower() or needle in b.organizer.lower()
        ]
    return bookings


@router.get("/bookings/availability", response_model=schemas.AvailabilityRead)
def check_availability(
    room_id: str = Query(..., alias="roomId"),
    start_time: datetime = Query(..., alias="startTime"),
    end_time: datetime = Query(..., alias="endTime"),
    db: RoomTrackrStore = Depends(get_store),
):
    """
    Check whether a room is free during [startTime, endTime).

    Returns
    -------
    AvailabilityRead
        ``available`` plus the ids of any conflicting bookings.

    Raises
    ------
    ValidationFailed
        If the room is unknown or endTime is not strictly after startTime.
    """
    errors = {}
    if db.rooms.get_by_id(room_id) is None:
        errors["roomId"] = "Room not found"
    # normalizes naive query datetimes to UTC
    bounds = schemas.BookingCreate(start_time=start_time, end_time=end_time)
    if bounds.end_time <= bounds.start_time:
        errors["endTime"] = "End time must be after start time"
    if errors:
        raise ValidationFailed(errors)

    conflicts = db.find_conflicts(room_id, bounds.start_time, bounds.end_time)
    return schemas.AvailabilityRead(
        room_id=room_id,
        available=not conflicts,
        conflicting_booking_ids=[b.id for b in conflicts],
    )


@router.get("/bookings/{booking_id}", response_model=schemas.Booking)
def get_booking(booking_id: str, db: RoomTrackrStore = Depends(get_store)):
    return db.get_booking(booking_id)


@router.post(
    "/bookings",
    response_model=schemas.Booking,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_booking(booking_in: schemas.BookingCreate, db: RoomTrackrStore = Depends(get_store)):
    """
    Create a booking.

    Behavior
    --------
    - Every field is validated first; failures are reported per field.
    - Then the interval is checked against the room's non-cancelled
      bookings; touching intervals are allowed.
    - attendees defaults to 1 and status to Confirmed.

    Raises
    ------
    ValidationFailed
        Missing fields, end <= start, duration under 15 minutes, or
        attendees over the room capacity.
    BookingConflict
        If the room is already booked for an overlapping interval.
    """
    booking = db.create_booking(booking_in.model_dump())
    invalidate(BOOKINGS_CACHE)
    return booking


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=schemas.Booking,
    dependencies=[Depends(booking_rate_limiter)],
)
def cancel_booking(booking_id: str, db: RoomTrackrStore = Depends(get_store)):
    """
    Cancel a booking. The record is kept with status Cancelled and no
    longer blocks its room. Cancelling twice is a no-op.
    """
    booking = db.cancel_booking(booking_id)
    invalidate(BOOKINGS_CACHE)
    return booking


# ---------- Maintenance ----------


def _all_maintenance(db: RoomTrackrStore) -> List[schemas.MaintenanceRecord]:
    key = listing_key(MAINTENANCE_CACHE)
    cached = get_cached_json(key)
    if cached is not None:
        return [schemas.MaintenanceRecord.model_validate(m) for m in cached]
    records = db.list_maintenance()
    set_cached_json(
        key,
        [m.model_dump(mode="json", by_alias=True) for m in records],
    )
    return records


@router.get("/maintenance", response_model=List[schemas.MaintenanceRead])
def list_maintenance(
    room_id: Optional[str] = Query(default=None, alias="roomId"),
    record_status: Optional[schemas.MaintenanceStatus] = Query(default=None, alias="status"),
    record_type: Optional[schemas.MaintenanceType] = Query(default=None, alias="type"),
    overdue: Optional[bool] = None,
    search: Optional[str] = None,
    db: RoomTrackrStore = Depends(get_store),
):
    """
    List maintenance records with optional filters.

    Parameters
    ----------
    room_id : Optional[str]
        Only records for this room.
    record_status : Optional[MaintenanceStatus]
        Only records in this status.
    record_type : Optional[MaintenanceType]
        Only records of this type.
    overdue : Optional[bool]
        Only records whose derived overdue flag matches.
    search : Optional[str]
        Case-insensitive substring of description or technician.
    """
    now = utcnow()
    records = [schemas.MaintenanceRead.from_record(m, now) for m in _all_maintenance(db)]

    if room_id:
        records = [m for m in records if m.room_id == room_id]
    if record_status is not None:
        records = [m for m in records if m.status == record_status]
    if record_type is not None:
        records = [m for m in records if m.type == record_type]
    if overdue is not None:
        records = [m for m in records if m.overdue == overdue]
    if search:
        needle = search.lower()
        records = [
            m
            for m in records
            if needle in m.description.lower() or needle in m.technician.lower()
        ]
    return records


@router.get("/maintenance/stats", response_model=schemas.MaintenanceStats)
def get_maintenance_stats(db: RoomTrackrStore = Depends(get_store)):
    return maintenance_summary(_all_maintenance(db), utcnow())


@router.get("/maintenance/{record_id}", response_model=schemas.MaintenanceRead)
def get_maintenance(record_id: str, db: RoomTrackrStore = Depends(get_store)):
    return schemas.MaintenanceRead.from_record(db.get_maintenance(record_id), utcnow())


@router.post(
    "/maintenance",
    response_model=schemas.MaintenanceRead,
    status_code=status.HTTP_201_CREATED,
)
def create_maintenance(
    record_in: schemas.MaintenanceCreate,
    db: RoomTrackrStore = Depends(get_store),
):
    """
    Schedule maintenance against a room.

    Raises
    ------
    ValidationFailed
        If roomId, type, description, technician or scheduledDate is
        missing, the room is unknown, or cost is negative.
    """
    record = db.create_maintenance(record_in.model_dump())
    invalidate(MAINTENANCE_CACHE)
    return schemas.MaintenanceRead.from_record(record, utcnow())


@router.post("/maintenance/{record_id}/status", response_model=schemas.MaintenanceRead)
def update_maintenance_status(
    record_id: str,
    update_data: schemas.MaintenanceStatusUpdate,
    db: RoomTrackrStore = Depends(get_store),
):
    """
    Move a maintenance record to its next status.

    Raises
    ------
    NotFound
        If the record does not exist.
    InvalidTransition
        If the requested status does not follow from the current one.
    """
    record = db.transition_maintenance(
        record_id, update_data.status, update_data.completed_date
    )
    invalidate(MAINTENANCE_CACHE)
    return schemas.MaintenanceRead.from_record(record, utcnow())


app.include_router(router)
app.include_router(router, prefix="/api/v1")


# ---------- Background drift ----------


def drift_loop(
    db: RoomTrackrStore,
    interval_seconds: float,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """
    Reconcile rooms on a timer until ``stop_event`` is set.

    Any failure in a pass is logged and the next pass runs as scheduled.
    """
    stop_event = stop_event or threading.Event()
    while not stop_event.is_set():
        try:
            db.reconcile_rooms()
        except Exception:
            logger.exception("Background drift pass failed")
        stop_event.wait(interval_seconds)


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(bind=engine)
    if SEED_SAMPLE_DATA and store.seed_if_empty():
        invalidate(BOOKINGS_CACHE)
        invalidate(MAINTENANCE_CACHE)
        logger.info("Loaded sample facility data")
    if DRIFT_INTERVAL_SECONDS > 0:
        t = threading.Thread(
            target=drift_loop, args=(store, DRIFT_INTERVAL_SECONDS), daemon=True
        )
        t.start()
        logger.info("Background drift every %d seconds", DRIFT_INTERVAL_SECONDS)


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("roomtrackr.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
