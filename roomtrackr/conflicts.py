from datetime import datetime
from typing import Iterable, List, Optional

from .schemas import Booking, BookingStatus


def overlaps(start: datetime, end: datetime, booking: Booking) -> bool:
    """
    Decide whether the candidate interval [start, end) collides with a booking.

    A collision is any of:
    - the candidate starts inside the booking,
    - the candidate ends inside the booking,
    - the candidate fully contains the booking.

    Touching intervals (candidate.start == booking.end or
    candidate.end == booking.start) do not collide.
    """
    return (
        (booking.start_time <= start < booking.end_time)
        or (booking.start_time < end <= booking.end_time)
        or (start <= booking.start_time and end >= booking.end_time)
    )


def find_conflicts(
    room_id: str,
    start: datetime,
    end: datetime,
    bookings: Iterable[Booking],
    ignore_booking_id: Optional[str] = None,
) -> List[Booking]:
    """
    Return every non-cancelled booking on ``room_id`` that overlaps [start, end).

    Parameters
    ----------
    room_id : str
        Room identifier.
    start : datetime
        Proposed start time.
    end : datetime
        Proposed end time.
    bookings : Iterable[Booking]
        The existing booking set to check against.
    ignore_booking_id : Optional[str]
        If provided, skip this booking (useful when re-checking an existing one).

    Returns
    -------
    List[Booking]
        Conflicting bookings in their original order.
    """
    return [
        b
        for b in bookings
        if b.room_id == room_id
        and b.status != BookingStatus.CANCELLED
        and b.id != ignore_booking_id
        and overlaps(start, end, b)
    ]


def has_conflict(
    room_id: str,
    start: datetime,
    end: datetime,
    bookings: Iterable[Booking],
) -> bool:
    return bool(find_conflicts(room_id, start, end, bookings))
