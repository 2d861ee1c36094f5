from datetime import datetime, timedelta
from typing import Any, Dict, List, Tuple

from .schemas import (
    AvailabilityStatus,
    BookingStatus,
    MaintenanceStatus,
    MaintenanceType,
    RoomType,
)


def sample_rooms(now: datetime) -> List[Dict[str, Any]]:
    """Six rooms across three buildings, one in each status at least."""
    def room(number, building, floor, capacity, room_type, status, description,
             amenities, cleaned_hours_ago, temperature, occupancy):
        return {
            "room_number": number,
            "location": building,
            "floor": floor,
            "capacity": capacity,
            "room_type": room_type,
            "availability_status": status,
            "description": description,
            "amenities": amenities,
            "last_cleaned": now - timedelta(hours=cleaned_hours_ago),
            "temperature": temperature,
            "occupancy_count": occupancy,
        }

    return [
        room("A101", "Building A", 1, 12, RoomType.CONFERENCE, AvailabilityStatus.AVAILABLE,
             "Modern conference room with video conferencing capabilities",
             ["Projector", "Whiteboard", "Video Conference", "WiFi", "Air Conditioning"],
             2, 22, 0),
        room("A102", "Building A", 1, 6, RoomType.MEETING, AvailabilityStatus.OCCUPIED,
             "Intimate meeting space perfect for small team discussions",
             ["TV Display", "Whiteboard", "WiFi", "Coffee Machine"],
             4, 23, 4),
        room("B201", "Building B", 2, 20, RoomType.TRAINING, AvailabilityStatus.AVAILABLE,
             "Spacious training room with flexible seating arrangements",
             ["Projector", "Sound System", "Microphone", "WiFi", "Flipchart", "Air Conditioning"],
             1, 21, 0),
        room("B202", "Building B", 2, 4, RoomType.OFFICE, AvailabilityStatus.MAINTENANCE,
             "Private office space with natural lighting",
             ["Desk", "Chair", "WiFi", "Phone", "Storage"],
             8, 20, 0),
        room("C301", "Building C", 3, 8, RoomType.CONFERENCE, AvailabilityStatus.RESERVED,
             "Executive conference room with premium amenities",
             ["4K Display", "Video Conference", "Premium Audio", "WiFi", "Catering Setup",
              "Air Conditioning"],
             3, 22, 0),
        room("C302", "Building C", 3, 15, RoomType.TRAINING, AvailabilityStatus.AVAILABLE,
             "Interactive training space with modern technology",
             ["Interactive Whiteboard", "Tablets", "WiFi", "Sound System", "Flexible Seating"],
             6, 23, 0),
    ]


def sample_bookings(now: datetime) -> List[Tuple[str, Dict[str, Any]]]:
    """(room number, booking fields) pairs."""
    def booking(title, organizer, start_min, end_min, attendees, status):
        return {
            "title": title,
            "organizer": organizer,
            "start_time": now + timedelta(minutes=start_min),
            "end_time": now + timedelta(minutes=end_min),
            "attendees": attendees,
            "status": status,
        }

    return [
        ("A102", booking("Team Standup", "Sarah Johnson", 30, 90, 4, BookingStatus.CONFIRMED)),
        ("C301", booking("Board Meeting", "Michael Chen", 120, 240, 8, BookingStatus.CONFIRMED)),
        ("A101", booking("Product Review", "Alex Thompson", 240, 300, 6, BookingStatus.CONFIRMED)),
        ("B201", booking("Training Session", "Emma Wilson", 1440, 1560, 15, BookingStatus.PENDING)),
    ]


def sample_maintenance(now: datetime) -> List[Tuple[str, Dict[str, Any]]]:
    return [
        (
            "B202",
            {
                "type": MaintenanceType.REPAIR,
                "description": "Fix air conditioning unit",
                "technician": "John Smith",
                "scheduled_date": now,
                "status": MaintenanceStatus.IN_PROGRESS,
                "cost": 250,
            },
        ),
    ]
