from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Any, Optional

from ..models import Reservation, SpaceStatus, UserRole

ELEVATED_ROLES = frozenset({UserRole.SPACE_MANAGER, UserRole.ADMINISTRATOR})


@dataclass(frozen=True)
class OperatingHours:
    opens_at: time
    closes_at: time


@dataclass(frozen=True)
class SpaceSnapshot:
    space_id: int
    status: SpaceStatus
    weekday_hours: Optional[OperatingHours]
    weekend_hours: Optional[OperatingHours]


@dataclass(frozen=True)
class SpaceDetails:
    space_id: int
    name: str
    room_number: Optional[str]
    floor: Optional[int]
    capacity: int
    room_type: Optional[str]
    noise_level: Optional[str]
    building_id: int
    building_name: str
    campus_id: int
    campus_name: str
    weekday_hours: Optional[OperatingHours] = None
    weekend_hours: Optional[OperatingHours] = None
    amenities: list[str] = field(default_factory=list)
    accessibility_features: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EnrichedReservation:
    reservation: Reservation
    space: Optional[SpaceDetails]


@dataclass(frozen=True)
class Requester:
    user_id: int
    role: UserRole = UserRole.STUDENT

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


@dataclass(frozen=True)
class Recipient:
    email: str
    full_name: str
    email_verified: bool
    preferences: Optional[dict[str, Any]] = None

    @property
    def wants_email(self) -> bool:
        if not self.email_verified:
            return False
        prefs = self.preferences or {"emailNotifications": True}
        return prefs.get("emailNotifications") is not False
