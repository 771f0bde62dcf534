import datetime
import logging
from typing import List

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from errors import ConfigurationError, ValidationError
from google_calendar import GoogleCalendarClient
from models import CalendarSettingDB, UserIntegrationDB
from schemas import Calendar, CalendarSetting, CalendarWithSetting

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def set_calendar_visibility(db: Session, user_id: str, calendar_id: str, enabled: bool) -> CalendarSetting:
    """Inserts or updates the ``(user_id, calendar_id)`` row in a single statement."""
    if not user_id or not calendar_id:
        raise ValidationError("User ID and Calendar ID are required")

    dialect = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise ConfigurationError(f"Atomic upsert is not supported for database dialect {dialect}")

    now = datetime.datetime.utcnow()
    stmt = insert(CalendarSettingDB).values(
        user_id=user_id,
        calendar_id=calendar_id,
        enabled=enabled,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "calendar_id"],
        set_={"enabled": stmt.excluded.enabled, "updated_at": now},
    )
    db.execute(stmt)
    db.commit()

    logger.info(f"Calendar {calendar_id} visibility for user {user_id} set to {enabled}")
    return CalendarSetting(user_id=user_id, calendar_id=calendar_id, enabled=enabled)


def list_settings(db: Session, user_id: str) -> List[CalendarSetting]:
    rows = (
        db.query(CalendarSettingDB)
        .filter(CalendarSettingDB.user_id == user_id)
        .order_by(CalendarSettingDB.id)
        .all()
    )
    return [CalendarSetting.model_validate(row) for row in rows]


def enabled_calendar_ids(db: Session, user_id: str) -> List[str]:
    return [setting.calendar_id for setting in list_settings(db, user_id) if setting.enabled]


def clear_settings(db: Session, user_id: str) -> int:
    """Deletes the user's rows; the caller commits."""
    return db.query(CalendarSettingDB).filter(CalendarSettingDB.user_id == user_id).delete()


def merge_settings(calendars: List[Calendar], settings: List[CalendarSetting]) -> List[CalendarWithSetting]:
    # calendars without a stored setting are visible
    enabled_by_id = {setting.calendar_id: setting.enabled for setting in settings}
    return [
        CalendarWithSetting(**calendar.model_dump(), enabled=enabled_by_id.get(calendar.id, True))
        for calendar in calendars
    ]


def list_calendars_with_settings(
    db: Session, client: GoogleCalendarClient, user_id: str, token: str
) -> List[CalendarWithSetting]:
    calendars = client.list_calendars(token)
    logger.info(f"Fetched {len(calendars)} calendars for user {user_id}")
    return merge_settings(calendars, list_settings(db, user_id))


def select_calendar(
    db: Session, client: GoogleCalendarClient, credential: UserIntegrationDB, token: str, calendar_id: str
) -> UserIntegrationDB:
    """Stores the calendar new events are exported to; it must be one the account can see."""
    if not calendar_id:
        raise ValidationError("Calendar ID is required")
    known_ids = {calendar.id for calendar in client.list_calendars(token)}
    if calendar_id not in known_ids:
        raise ValidationError(f"Calendar {calendar_id} not found or not accessible")

    credential.calendar_id = calendar_id
    db.commit()
    db.refresh(credential)
    return credential
