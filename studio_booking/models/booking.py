"""Pydantic models for studio bookings."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RecordingPurpose(str, Enum):
    YOUTUBE = "YouTube"
    PLANNER = "Planner"
    SMART_COURSE = "Smart Course"
    LIVE = "Live"


class NewBooking(BaseModel):
    """A booking request that has not been admitted yet (no id)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    studio: str
    date: str  # YYYY-MM-DD
    start_time: str = Field(alias="startTime")  # HH:MM
    end_time: str = Field(alias="endTime")  # HH:MM
    user_name: str = Field(alias="userName")
    purpose: RecordingPurpose
    subject: str

    def to_wire(self) -> dict[str, str]:
        """Row shape used by the remote store (camelCase, all strings)."""
        return self.model_dump(mode="json", by_alias=True)

    def with_id(self, booking_id: str) -> "Booking":
        return Booking(id=booking_id, **self.model_dump())


class Booking(NewBooking):
    """An admitted booking. Replaced wholesale, never edited in place."""

    id: str

    def without_id(self) -> NewBooking:
        return NewBooking(**self.model_dump(exclude={"id"}))
