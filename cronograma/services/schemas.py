"""Request bodies for the HTTP API."""
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..schedule.conflicts import build_time_range
from ..schedule.models import Event
from ..schedule.types import Direction, ViewMode


class EventIn(BaseModel):
    """Event fields as sent by the editor.

    ``time`` wins over ``start_time``/``end_time`` when both are given.
    """
    id: Optional[str] = None
    title: str = ""
    details: Union[List[str], str] = Field(default_factory=list)
    time: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: str = ""
    color: str = ""
    modality: Optional[str] = None
    confirmed: bool = False

    def to_event(self, event_id: Optional[str] = None) -> Event:
        data = {
            "title": self.title,
            "details": self.details,
            "time": self.time or build_time_range(self.start_time, self.end_time) or None,
            "location": self.location,
            "color": self.color,
            "modality": self.modality,
            "confirmed": self.confirmed,
        }
        event = Event.from_dict(data)
        if event_id or self.id:
            event.id = event_id or self.id
        return event


class EventCreate(BaseModel):
    row_id: str
    day_key: str
    event: EventIn
    check_conflicts: bool = True


class EventUpdate(BaseModel):
    row_id: str
    day_key: str
    event: EventIn
    check_conflicts: bool = True


class EventMove(BaseModel):
    from_row: str
    from_day: str
    to_row: str
    to_day: str


class EventCopy(BaseModel):
    """Target defaults to the source cell."""
    from_row: str
    from_day: str
    to_row: Optional[str] = None
    to_day: Optional[str] = None


class ConflictCheck(BaseModel):
    row_id: str
    day_key: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    exclude_event_id: Optional[str] = None


class InstructorIn(BaseModel):
    name: str = ""
    city: str = ""
    regional: str = ""


class InstructorPatch(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    regional: Optional[str] = None


class TitleIn(BaseModel):
    title: str
    scope: Literal["schedule", "window"] = "window"
    window_key: Optional[str] = None


class WindowIn(BaseModel):
    start_date: str
    end_date: str


class ViewModeIn(BaseModel):
    view_mode: ViewMode


class NavigateIn(BaseModel):
    unit: Literal["week", "month", "today"] = "week"
    direction: Direction = Direction.NEXT
