import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- TASKS ---
class Recurring(ApiModel):
    # daily | weekly | monthly | custom; other values fall back to daily
    frequency: str
    end_date: Optional[datetime.date] = None
    max_occurrences: Optional[int] = Field(default=None, ge=1)


class Task(ApiModel):
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    priority: str = "medium"
    tags: List[str] = []
    due_date: Optional[datetime.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_all_day: bool = True
    recurring: Optional[Recurring] = None
    completed: bool = False
    origin: str = "user"
    google_calendar_event_id: Optional[str] = None
    google_calendar_id: Optional[str] = None
    last_synced_at: Optional[datetime.datetime] = None


class TaskCreate(ApiModel):
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Literal["low", "medium", "high"] = "medium"
    tags: List[str] = []
    due_date: Optional[datetime.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_all_day: bool = True
    recurring: Optional[Recurring] = None


class TaskUpdate(ApiModel):
    user_id: str = Field(..., min_length=1)
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[Literal["low", "medium", "high"]] = None
    tags: Optional[List[str]] = None
    due_date: Optional[datetime.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_all_day: Optional[bool] = None
    recurring: Optional[Recurring] = None
    completed: Optional[bool] = None


class TaskHistoryEntry(ApiModel):
    id: int
    task_id: str
    task_title: Optional[str] = None
    action: str
    details: Optional[str] = None
    timestamp: datetime.datetime


# --- GOOGLE CALENDAR ---
class Calendar(ApiModel):
    id: str
    name: str
    color: str = "#4285F4"
    primary: bool = False
    description: Optional[str] = None
    access_role: Optional[str] = None


class CalendarWithSetting(Calendar):
    enabled: bool = True


class CalendarSetting(ApiModel):
    user_id: str
    calendar_id: str
    enabled: bool


class TokenResult(ApiModel):
    access_token: str
    refreshed: bool = False


class SyncResult(ApiModel):
    task_id: Optional[str] = None
    success: bool
    # created | updated | deleted | skipped | failed
    action: str
    event_id: Optional[str] = None
    calendar_id: Optional[str] = None
    message: Optional[str] = None


class SyncReport(ApiModel):
    success: bool = True
    message: str
    results: List[SyncResult] = []


class TaskResponse(ApiModel):
    task: Task
    sync: Optional[SyncResult] = None
    # only set when completing a recurring task
    next_due_date: Optional[datetime.date] = None
