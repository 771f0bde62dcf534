import datetime
import logging
import re
from typing import List, Optional

from sqlalchemy.orm import Session

from calendar_sync import delete_remote_event, export_task
from errors import AuthExpired, NotFoundLocal, ProviderError, ValidationError
from google_calendar import GoogleCalendarClient
from history import record_history
from models import TaskDB, TaskOrigin
from recurrence import next_occurrence
from schemas import SyncResult, Task, TaskCreate, TaskResponse, TaskUpdate

logger = logging.getLogger(__name__)

_TIME_24H = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")
_TIME_12H = re.compile(r"^(\d{1,2})(?::(\d{1,2}))?(?::\d{2})?(am|pm)?$", re.IGNORECASE)

SAMPLE_TASKS = [
    {"title": "Explore your task list", "priority": "low", "tags": ["personal"], "days": 0},
    {"title": "Plan the week", "priority": "medium", "tags": ["work"], "days": 1},
    {"title": "Connect Google Calendar", "priority": "high", "tags": ["work"], "days": 2},
]


def normalize_time(value: Optional[str]) -> Optional[str]:
    """Converts '2:00 PM', '9pm' or '14:30' to zero padded 24h 'HH:MM'."""
    if value is None or not value.strip():
        return None
    cleaned = re.sub(r"\s", "", value)
    match = _TIME_24H.match(cleaned)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}"

    match = _TIME_12H.match(cleaned)
    if match and match.group(3):
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        if 1 <= hours <= 12 and minutes < 60:
            period = match.group(3).lower()
            if period == "pm" and hours < 12:
                hours += 12
            elif period == "am" and hours == 12:
                hours = 0
            return f"{hours:02d}:{minutes:02d}"

    raise ValidationError(f"Invalid time: {value}")


def _to_response(task: TaskDB, sync: Optional[SyncResult] = None, **extra) -> TaskResponse:
    return TaskResponse(task=Task.model_validate(task), sync=sync, **extra)


def _dump_recurring(recurring) -> Optional[dict]:
    if recurring is None:
        return None
    return recurring.model_dump(by_alias=True, mode="json", exclude_none=True)


def _sync(db: Session, client: GoogleCalendarClient, task: TaskDB, timezone: str) -> Optional[SyncResult]:
    # local state is already committed; sync failures only make the mirror stale
    if task.is_sample:
        return None
    task_id = task.id
    try:
        return export_task(db, client, task.user_id, task_id, timezone)
    except (AuthExpired, ProviderError) as e:
        db.rollback()
        logger.warning(f"Calendar sync for task {task_id} failed: {e}")
        return SyncResult(task_id=task_id, success=False, action="failed", message=str(e))
    except Exception as e:
        db.rollback()
        logger.error(f"Calendar sync for task {task_id} failed unexpectedly", exc_info=True)
        return SyncResult(task_id=task_id, success=False, action="failed", message=str(e))


# --- QUERIES ---
def get_task(db: Session, user_id: str, task_id: str) -> TaskDB:
    if not user_id or not task_id:
        raise ValidationError("User ID and Task ID are required")
    task = db.query(TaskDB).filter(TaskDB.id == task_id, TaskDB.user_id == user_id).first()
    if task is None:
        raise NotFoundLocal(f"Task {task_id} not found")
    return task


def list_tasks(db: Session, user_id: str, include_completed: bool = True) -> List[TaskDB]:
    if not user_id:
        raise ValidationError("User ID is required")
    query = db.query(TaskDB).filter(TaskDB.user_id == user_id)
    if not include_completed:
        query = query.filter(TaskDB.completed.is_(False))
    return query.order_by(TaskDB.due_date.is_(None), TaskDB.due_date, TaskDB.created_at).all()


# --- MUTATIONS ---
def create_task(
    db: Session, client: GoogleCalendarClient, payload: TaskCreate, timezone: str = "UTC"
) -> TaskResponse:
    task = TaskDB(
        user_id=payload.user_id,
        title=payload.title.strip(),
        description=payload.description,
        priority=payload.priority,
        tags=payload.tags,
        due_date=payload.due_date,
        start_time=normalize_time(payload.start_time),
        end_time=normalize_time(payload.end_time),
        is_all_day=payload.is_all_day,
        recurring=_dump_recurring(payload.recurring),
        origin=TaskOrigin.USER.value,
        sync_source="app",
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info(f"Created task {task.id} for user {task.user_id}")
    record_history(db, task.user_id, task.id, task.title, "created")

    return _to_response(task, _sync(db, client, task, timezone))


def update_task(
    db: Session, client: GoogleCalendarClient, task_id: str, payload: TaskUpdate, timezone: str = "UTC"
) -> TaskResponse:
    task = get_task(db, payload.user_id, task_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"user_id", "recurring"})

    for required_field in ("title", "priority", "tags", "is_all_day", "completed"):
        if required_field in changes and changes[required_field] is None:
            del changes[required_field]
    for time_field in ("start_time", "end_time"):
        if time_field in changes:
            changes[time_field] = normalize_time(changes[time_field])
    if "title" in changes:
        changes["title"] = changes["title"].strip()
    if "recurring" in payload.model_fields_set:
        changes["recurring"] = _dump_recurring(payload.recurring)

    for field_name, value in changes.items():
        setattr(task, field_name, value)
    task.sync_source = "app"
    db.commit()
    db.refresh(task)
    record_history(db, task.user_id, task.id, task.title, "updated", ", ".join(sorted(changes)) or None)

    return _to_response(task, _sync(db, client, task, timezone))


def complete_task(
    db: Session, client: GoogleCalendarClient, user_id: str, task_id: str, timezone: str = "UTC"
) -> TaskResponse:
    """
    Marks a task completed. A recurring task is moved to its next
    occurrence in place (same id, completed reset); once the series has
    ended it simply stays completed.
    """
    task = get_task(db, user_id, task_id)
    task.completed = True

    successor = None
    if task.recurring:
        successor = next_occurrence(Task.model_validate(task))
        if successor is not None:
            task.due_date = successor.due_date
            task.completed = successor.completed
            task.start_time = successor.start_time
            task.end_time = successor.end_time
            task.is_all_day = successor.is_all_day
    task.sync_source = "app"
    db.commit()
    db.refresh(task)

    record_history(db, task.user_id, task.id, task.title, "completed")
    next_due_date = None
    if successor is not None:
        next_due_date = successor.due_date
        record_history(
            db,
            task.user_id,
            task.id,
            task.title,
            "updated",
            f"Next occurrence scheduled for {next_due_date.isoformat()}",
        )

    return _to_response(task, _sync(db, client, task, timezone), next_due_date=next_due_date)


def delete_task(db: Session, client: GoogleCalendarClient, user_id: str, task_id: str) -> Optional[SyncResult]:
    """Deletes the task, then its mirrored event. Returns the remote outcome, if any."""
    task = get_task(db, user_id, task_id)
    title = task.title
    mirror = None
    if task.has_mirror and not task.is_sample:
        mirror = (task.google_calendar_id, task.google_calendar_event_id)

    db.delete(task)
    db.commit()
    logger.info(f"Deleted task {task_id} for user {user_id}")
    record_history(db, user_id, task_id, title, "deleted")

    if mirror is None:
        return None
    calendar_id, event_id = mirror
    try:
        return delete_remote_event(db, client, user_id, calendar_id, event_id)
    except (AuthExpired, ProviderError) as e:
        logger.warning(f"Deleting event {event_id} for task {task_id} failed: {e}")
        return SyncResult(task_id=task_id, success=False, action="failed", event_id=event_id, message=str(e))
    except Exception as e:
        db.rollback()
        logger.error(f"Deleting event {event_id} for task {task_id} failed unexpectedly", exc_info=True)
        return SyncResult(task_id=task_id, success=False, action="failed", event_id=event_id, message=str(e))


def seed_sample_tasks(db: Session, user_id: str, today: Optional[datetime.date] = None) -> List[TaskDB]:
    """Creates demo tasks tagged as samples; they are never mirrored to a calendar."""
    if not user_id:
        raise ValidationError("User ID is required")
    today = today or datetime.date.today()
    tasks = [
        TaskDB(
            user_id=user_id,
            title=sample["title"],
            priority=sample["priority"],
            tags=list(sample["tags"]),
            due_date=today + datetime.timedelta(days=sample["days"]),
            origin=TaskOrigin.SAMPLE.value,
        )
        for sample in SAMPLE_TASKS
    ]
    db.add_all(tasks)
    db.commit()
    for task in tasks:
        db.refresh(task)
    return tasks
