from typing import Dict, Iterable, List


class RoomTrackrError(Exception):
    """Base class for every error raised by the room/booking/maintenance core."""

    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: str = None):
        super().__init__(detail or self.detail)
        if detail is not None:
            self.detail = detail


class ValidationFailed(RoomTrackrError):
    """
    A request is missing a required field or violates a field constraint.

    Parameters
    ----------
    errors : Dict[str, str]
        Mapping of offending field name to a human-readable message.
    """

    status_code = 400
    detail = "Validation failed"

    def __init__(self, errors: Dict[str, str]):
        super().__init__()
        self.errors = dict(errors)


class BookingConflict(RoomTrackrError):
    status_code = 409
    detail = "Booking Conflict"

    def __init__(self, room_id: str, conflicting_ids: Iterable[str]):
        super().__init__()
        self.room_id = room_id
        self.conflicting_ids: List[str] = list(conflicting_ids)


class NotFound(RoomTrackrError):
    status_code = 404

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidTransition(RoomTrackrError):
    status_code = 409

    def __init__(self, kind: str, current: str, requested: str):
        super().__init__(f"{kind} cannot move from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class RoomInUse(RoomTrackrError):
    """Raised when deleting a room that still has active bookings or open maintenance."""

    status_code = 409

    def __init__(self, room_id: str, booking_ids: List[str], maintenance_ids: List[str]):
        super().__init__("Room has active bookings or open maintenance records")
        self.room_id = room_id
        self.booking_ids = booking_ids
        self.maintenance_ids = maintenance_ids


class StorageError(RoomTrackrError):
    """The persistence backend failed; the operation should be treated as not applied."""

    status_code = 500
