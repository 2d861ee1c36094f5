import logging
import math
import random
from datetime import datetime, timedelta, tzinfo
from typing import List, Optional, Tuple

from .schemas import AvailabilityStatus, Room

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(hours=2)

BUSINESS_HOURS = range(9, 18)  # 09:00 through 17:59 local

BASE_TEMPERATURE = 22
TEMPERATURE_SWING = 2
TEMPERATURE_PERIOD_MS = 30 * 60 * 1000
MIN_TEMPERATURE = 18
MAX_TEMPERATURE = 26

OCCUPY_CHANCE_BUSINESS = 0.4
VACATE_CHANCE_BUSINESS = 0.3
VACATE_CHANCE_AFTER_HOURS = 0.7


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class OccupancySource:
    """
    Where occupancy drift gets its randomness from.

    The default implementation draws from :mod:`random`; a live sensor
    feed or a scripted sequence (in tests) can be plugged in instead.
    """

    def draw(self) -> float:
        """Uniform sample in [0, 1) deciding whether a transition happens."""
        raise NotImplementedError

    def headcount(self, capacity: int) -> int:
        """Occupants for a room that just became occupied, in [1, floor(0.8 * capacity)]."""
        raise NotImplementedError

    def jitter(self) -> float:
        """Temperature noise in [-0.5, 0.5)."""
        raise NotImplementedError


class RandomOccupancySource(OccupancySource):
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def draw(self) -> float:
        return self.rng.random()

    def headcount(self, capacity: int) -> int:
        upper = max(1, int(capacity * 0.8))
        return self.rng.randint(1, upper)

    def jitter(self) -> float:
        return self.rng.random() - 0.5


class DriftSimulator:
    """
    Time-driven Available/Occupied transitions and temperature oscillation.

    Parameters
    ----------
    source : OccupancySource
        Supplies the random draws.
    staleness : timedelta
        Rooms whose ``updated_at`` is older than this are re-evaluated.
    tz : Optional[tzinfo]
        Zone used to decide business hours; ``None`` means host local time.
    """

    def __init__(
        self,
        source: Optional[OccupancySource] = None,
        staleness: timedelta = DEFAULT_STALENESS,
        tz: Optional[tzinfo] = None,
    ):
        self.source = source or RandomOccupancySource()
        self.staleness = staleness
        self.tz = tz

    def is_stale(self, room: Room, now: datetime) -> bool:
        return now - room.updated_at > self.staleness

    def is_business_hours(self, now: datetime) -> bool:
        return now.astimezone(self.tz).hour in BUSINESS_HOURS

    def temperature(self, now: datetime) -> int:
        now_ms = now.timestamp() * 1000
        swing = TEMPERATURE_SWING * math.sin(now_ms / TEMPERATURE_PERIOD_MS)
        value = round_half_up(BASE_TEMPERATURE + swing + self.source.jitter())
        return max(MIN_TEMPERATURE, min(MAX_TEMPERATURE, value))

    def drift_room(self, room: Room, now: datetime) -> Room:
        """
        Re-evaluate one stale room.

        Only Available <-> Occupied transitions happen here; Maintenance
        and Reserved rooms keep their status and occupancy but still get
        a new temperature and ``updated_at``.
        """
        r = self.source.draw()
        status = room.availability_status
        occupancy = room.occupancy_count or 0

        if self.is_business_hours(now):
            if status == AvailabilityStatus.AVAILABLE and r < OCCUPY_CHANCE_BUSINESS:
                status = AvailabilityStatus.OCCUPIED
                occupancy = min(room.capacity, self.source.headcount(room.capacity))
            elif status == AvailabilityStatus.OCCUPIED and r < VACATE_CHANCE_BUSINESS:
                status = AvailabilityStatus.AVAILABLE
                occupancy = 0
        elif status == AvailabilityStatus.OCCUPIED and r < VACATE_CHANCE_AFTER_HOURS:
            status = AvailabilityStatus.AVAILABLE
            occupancy = 0

        return room.model_copy(
            update={
                "availability_status": status,
                "occupancy_count": occupancy,
                "temperature": self.temperature(now),
                "updated_at": now,
            }
        )

    def apply(self, rooms: List[Room], now: datetime) -> Tuple[List[Room], int]:
        """
        Drift every stale room; fresh rooms pass through untouched.

        Returns
        -------
        Tuple[List[Room], int]
            The new collection (same order) and how many rooms were re-evaluated.
        """
        out: List[Room] = []
        changed = 0
        for room in rooms:
            if self.is_stale(room, now):
                out.append(self.drift_room(room, now))
                changed += 1
            else:
                out.append(room)
        if changed:
            logger.debug("Drifted %d of %d rooms", changed, len(rooms))
        return out, changed
