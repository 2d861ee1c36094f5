import math
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RoomType(str, PyEnum):
    CONFERENCE = "Conference"
    OFFICE = "Office"
    MEETING = "Meeting"
    TRAINING = "Training"
    STORAGE = "Storage"
    OTHER = "Other"


class AvailabilityStatus(str, PyEnum):
    """
    Mutually exclusive state of a room.

    Only AVAILABLE and OCCUPIED are touched by occupancy drift;
    MAINTENANCE and RESERVED change through explicit updates only.
    """
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"
    MAINTENANCE = "Maintenance"
    RESERVED = "Reserved"


class BookingStatus(str, PyEnum):
    """
    Enumeration of possible booking statuses.

    Values
    ------
    Confirmed
        Booking is active and holds the room for the given time range.
    Pending
        Booking has been requested but not yet confirmed; still holds the room.
    Cancelled
        Booking has been cancelled and should not block the room.
    """
    CONFIRMED = "Confirmed"
    PENDING = "Pending"
    CANCELLED = "Cancelled"


class MaintenanceType(str, PyEnum):
    CLEANING = "Cleaning"
    REPAIR = "Repair"
    INSPECTION = "Inspection"
    UPGRADE = "Upgrade"


class MaintenanceStatus(str, PyEnum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class CamelModel(BaseModel):
    """
    Base schema for everything that crosses the wire or the storage layer.

    Field names are snake_case in Python and camelCase in JSON. Naive
    datetimes are interpreted as UTC so that interval comparisons never
    mix naive and aware values.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*", mode="after")
    @classmethod
    def _assume_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# ---------- Rooms ----------


class RoomBase(CamelModel):
    """
    Shared room fields used when creating and reading rooms.
    """
    room_number: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    floor: int = Field(..., ge=1)
    capacity: int = Field(..., ge=1)
    room_type: RoomType
    availability_status: AvailabilityStatus
    description: Optional[str] = None
    amenities: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    last_cleaned: Optional[datetime] = None
    temperature: Optional[float] = None
    occupancy_count: Optional[int] = Field(default=None, ge=0)

    @field_validator("amenities")
    @classmethod
    def _dedupe_amenities(cls, value: List[str]) -> List[str]:
        seen = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @field_validator("temperature")
    @classmethod
    def _finite_temperature(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not math.isfinite(value):
            raise ValueError("Temperature must be a finite number")
        return value


class RoomCreate(RoomBase):
    """
    Schema for creating a new room.

    Identity and timestamps are assigned by the store.
    """
    pass


class RoomUpdate(CamelModel):
    """
    Schema for partial updates to a room.

    Only the fields present in the request body are merged into the
    stored record; the merged record is validated as a whole.
    """
    room_number: Optional[str] = None
    location: Optional[str] = None
    floor: Optional[int] = None
    capacity: Optional[int] = None
    room_type: Optional[RoomType] = None
    availability_status: Optional[AvailabilityStatus] = None
    description: Optional[str] = None
    amenities: Optional[List[str]] = None
    image_url: Optional[str] = None
    last_cleaned: Optional[datetime] = None
    temperature: Optional[float] = None
    occupancy_count: Optional[int] = None


class Room(RoomBase):
    """
    A room as stored and returned by the API.
    """
    id: str
    created_at: datetime
    updated_at: datetime


# ---------- Bookings ----------


class BookingCreate(CamelModel):
    """
    Schema for creating a booking.

    Required fields are declared optional here so that missing values are
    reported field-by-field by the booking validator instead of by the
    schema layer.
    """
    room_id: Optional[str] = None
    title: Optional[str] = None
    organizer: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    attendees: Optional[int] = None
    status: Optional[BookingStatus] = None


class Booking(CamelModel):
    id: str
    room_id: str
    title: str
    organizer: str
    start_time: datetime
    end_time: datetime
    attendees: int = Field(default=1, ge=1)
    status: BookingStatus = BookingStatus.CONFIRMED
    created_at: datetime


class AvailabilityRead(CamelModel):
    room_id: str
    available: bool
    conflicting_booking_ids: List[str] = Field(default_factory=list)


# ---------- Maintenance ----------


class MaintenanceCreate(CamelModel):
    """
    Schema for scheduling a maintenance activity against a room.
    """
    room_id: Optional[str] = None
    type: Optional[MaintenanceType] = None
    description: Optional[str] = None
    technician: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    status: Optional[MaintenanceStatus] = None
    cost: Optional[float] = Field(default=None, ge=0)


class MaintenanceStatusUpdate(CamelModel):
    status: MaintenanceStatus
    completed_date: Optional[datetime] = None


class MaintenanceRecord(CamelModel):
    id: str
    room_id: str
    type: MaintenanceType
    description: str
    technician: str
    scheduled_date: datetime
    completed_date: Optional[datetime] = None
    status: MaintenanceStatus = MaintenanceStatus.SCHEDULED
    cost: Optional[float] = Field(default=None, ge=0)
    created_at: datetime

    def is_overdue(self, now: datetime) -> bool:
        """Scheduled work whose date has already passed."""
        return self.status == MaintenanceStatus.SCHEDULED and self.scheduled_date < now


class MaintenanceRead(MaintenanceRecord):
    """
    Maintenance record as returned by the API, with the derived overdue flag.
    """
    overdue: bool = False

    @classmethod
    def from_record(cls, record: MaintenanceRecord, now: datetime) -> "MaintenanceRead":
        return cls(**record.model_dump(), overdue=record.is_overdue(now))


# ---------- Aggregates ----------


class RoomStats(CamelModel):
    total: int
    available: int
    occupied: int
    maintenance: int
    reserved: int
    total_capacity: int
    current_occupancy: int
    utilization_rate: int
    average_temperature: int


class BuildingStats(CamelModel):
    building: str
    rooms: int
    capacity: int
    occupied: int
    available: int
    utilization: int
    availability: int


class FloorStats(CamelModel):
    floor: int
    total: int
    available: int
    occupied: int
    maintenance: int


class MaintenanceStats(CamelModel):
    total: int
    scheduled: int
    in_progress: int
    completed: int
    overdue: int
    total_cost: float
