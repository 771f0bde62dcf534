import datetime
import enum
import uuid
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    JSON,
    Date,
    DateTime,
    Boolean,
    UniqueConstraint,
)
from db import Base


GOOGLE_CALENDAR_PROVIDER = "google_calendar"


class TaskOrigin(str, enum.Enum):
    USER = "user"
    SAMPLE = "sample"


def _new_id() -> str:
    return uuid.uuid4().hex


class TaskDB(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String, default="medium", nullable=False)
    tags = Column(JSON, default=list, nullable=False)
    due_date = Column(Date, nullable=True)
    start_time = Column(String, nullable=True)
    end_time = Column(String, nullable=True)
    is_all_day = Column(Boolean, default=True, nullable=False)
    recurring = Column(JSON, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)
    origin = Column(String, default=TaskOrigin.USER.value, nullable=False)
    google_calendar_event_id = Column(String, nullable=True)
    google_calendar_id = Column(String, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    sync_source = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow, nullable=False
    )

    @property
    def is_sample(self) -> bool:
        return self.origin == TaskOrigin.SAMPLE.value

    @property
    def has_mirror(self) -> bool:
        return bool(self.google_calendar_event_id and self.google_calendar_id)

    def set_mirror(self, event_id: str, calendar_id: str) -> None:
        self.google_calendar_event_id = event_id
        self.google_calendar_id = calendar_id

    def clear_mirror(self) -> None:
        self.google_calendar_event_id = None
        self.google_calendar_id = None


class TaskHistoryDB(Base):
    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    task_id = Column(String, index=True, nullable=False)
    task_title = Column(String, nullable=True)
    action = Column(String, nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)


class UserIntegrationDB(Base):
    __tablename__ = "user_integrations"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_user_integrations_user_provider"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    provider = Column(String, default=GOOGLE_CALENDAR_PROVIDER, nullable=False)
    provider_user_id = Column(String, nullable=True)
    provider_email = Column(String, nullable=True)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    connected = Column(Boolean, default=False, nullable=False)
    calendar_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow
    )


class CalendarSettingDB(Base):
    __tablename__ = "calendar_settings"
    __table_args__ = (UniqueConstraint("user_id", "calendar_id", name="uq_calendar_settings_user_calendar"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    calendar_id = Column(String, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow
    )
