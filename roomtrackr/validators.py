from datetime import timedelta
from typing import Any, Dict, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from .schemas import (
    AvailabilityStatus,
    BookingStatus,
    MaintenanceStatus,
    Room,
)

MIN_BOOKING_DURATION = timedelta(minutes=15)


def _wire_name(field: Any) -> str:
    name = str(field)
    return to_camel(name) if "_" in name else name


def errors_from_pydantic(exc: ValidationError) -> Dict[str, str]:
    """
    Flatten pydantic errors into a field -> message mapping.

    Parameters
    ----------
    exc : ValidationError
        Error raised by a pydantic model (or the list of errors attached
        to a FastAPI ``RequestValidationError``).

    Returns
    -------
    Dict[str, str]
        One message per offending field, keyed by its JSON name. The first
        error wins when a field has several.
    """
    errors = exc.errors() if hasattr(exc, "errors") else exc
    out: Dict[str, str] = {}
    for err in errors:
        loc = [part for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = _wire_name(loc[0]) if loc else "body"
        if err.get("type") == "missing":
            message = f"Missing required field: {field}"
        else:
            message = err.get("msg", "Invalid value")
        out.setdefault(field, message)
    return out


def room_errors(room: Room) -> Dict[str, str]:
    """
    Check the cross-field room invariants that the schema cannot express.
    """
    errors: Dict[str, str] = {}
    occupancy = room.occupancy_count or 0
    if occupancy > room.capacity:
        errors["occupancyCount"] = f"Occupancy cannot exceed room capacity of {room.capacity}"
    elif occupancy > 0 and room.availability_status == AvailabilityStatus.AVAILABLE:
        errors["availabilityStatus"] = "A room with occupants cannot be Available"
    return errors


def booking_errors(fields: Dict[str, Any], room: Optional[Room]) -> Dict[str, str]:
    """
    Validate a booking request before it reaches the conflict check.

    Parameters
    ----------
    fields : Dict[str, Any]
        BookingCreate fields (snake_case keys).
    room : Optional[Room]
        The referenced room, or None if ``room_id`` did not resolve.

    Returns
    -------
    Dict[str, str]
        Field -> message for every violated rule; empty when the request
        may proceed to conflict detection.
    """
    errors: Dict[str, str] = {}

    room_id = fields.get("room_id")
    title = (fields.get("title") or "").strip()
    organizer = (fields.get("organizer") or "").strip()
    start = fields.get("start_time")
    end = fields.get("end_time")
    attendees = fields.get("attendees")

    if not room_id:
        errors["roomId"] = "Please select a room"
    elif room is None:
        errors["roomId"] = "Room not found"
    if not title:
        errors["title"] = "Meeting title is required"
    if not organizer:
        errors["organizer"] = "Organizer name is required"
    if start is None:
        errors["startTime"] = "Start time is required"
    if end is None:
        errors["endTime"] = "End time is required"

    if attendees is not None:
        if attendees < 1:
            errors["attendees"] = "Number of attendees must be at least 1"
        elif room is not None and attendees > room.capacity:
            errors["attendees"] = f"Room capacity is {room.capacity} people"

    if start is not None and end is not None:
        if end <= start:
            errors["endTime"] = "End time must be after start time"
        elif end - start < MIN_BOOKING_DURATION:
            errors["endTime"] = "Minimum booking duration is 15 minutes"

    if fields.get("status") == BookingStatus.CANCELLED:
        errors["status"] = "New bookings must be Confirmed or Pending"

    return errors


def maintenance_errors(fields: Dict[str, Any], room: Optional[Room]) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if not fields.get("room_id"):
        errors["roomId"] = "Please select a room"
    elif room is None:
        errors["roomId"] = "Room not found"
    if fields.get("type") is None:
        errors["type"] = "Maintenance type is required"
    if not (fields.get("description") or "").strip():
        errors["description"] = "Description is required"
    if not (fields.get("technician") or "").strip():
        errors["technician"] = "Technician is required"
    if fields.get("scheduled_date") is None:
        errors["scheduledDate"] = "Scheduled date is required"
    if fields.get("status") in (MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED):
        errors["status"] = "New maintenance must be Scheduled or In Progress"

    return errors
