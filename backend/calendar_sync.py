import datetime
import logging
from typing import Callable, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from calendar_settings import enabled_calendar_ids
from errors import AuthExpired, NotFoundLocal, ProviderError, ValidationError
from google_calendar import DeleteOutcome, GoogleCalendarClient
from google_oauth import ensure_valid_token, get_credential
from history import record_history
from models import TaskDB, UserIntegrationDB
from schemas import SyncReport, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = "primary"
# update answers meaning the mirrored event can no longer be written
_STALE_EVENT_STATUSES = (403, 404, 410)


def _connected_credential(db: Session, user_id: str) -> Optional[UserIntegrationDB]:
    credential = get_credential(db, user_id)
    if credential is None or not credential.connected:
        return None
    return credential


def resolve_target_calendar(db: Session, credential: UserIntegrationDB) -> str:
    if credential.calendar_id:
        return credential.calendar_id
    enabled = enabled_calendar_ids(db, credential.user_id)
    if enabled:
        return enabled[0]
    return DEFAULT_CALENDAR_ID


def build_event_body(task: TaskDB, timezone: str = "UTC") -> dict:
    body = {
        "summary": task.title,
        "description": task.description or f"Priority: {task.priority or 'medium'}",
        "extendedProperties": {"private": {"task_id": task.id}},
    }
    day = task.due_date.isoformat()
    if not task.is_all_day and task.start_time and task.end_time:
        body["start"] = {"dateTime": f"{day}T{task.start_time}:00", "timeZone": timezone}
        body["end"] = {"dateTime": f"{day}T{task.end_time}:00", "timeZone": timezone}
    else:
        # all-day events end on the following (exclusive) day
        body["start"] = {"date": day}
        body["end"] = {"date": (task.due_date + datetime.timedelta(days=1)).isoformat()}
    return body


def _export_one(
    db: Session,
    client: GoogleCalendarClient,
    token: str,
    task: TaskDB,
    target_calendar_id: str,
    timezone: str,
) -> SyncResult:
    if task.is_sample:
        return SyncResult(task_id=task.id, success=True, action="skipped", message="Sample task is not mirrored")
    if task.due_date is None:
        logger.info(f"Skipping task {task.id} ({task.title}) - no due date")
        return SyncResult(task_id=task.id, success=False, action="skipped", message="Task has no due date")

    body = build_event_body(task, timezone)
    event = None
    action = "created"
    calendar_id = target_calendar_id

    if task.has_mirror:
        try:
            event = client.update_event(token, task.google_calendar_id, task.google_calendar_event_id, body)
            calendar_id = task.google_calendar_id
            action = "updated"
        except ProviderError as e:
            if e.status not in _STALE_EVENT_STATUSES:
                raise
            logger.info(
                f"Event {task.google_calendar_event_id} for task {task.id} is gone (status {e.status}), creating a new one"
            )
            task.clear_mirror()

    if event is None:
        event = client.insert_event(token, calendar_id, body)

    event_id = event["id"]
    synced_at = datetime.datetime.utcnow()
    task.set_mirror(event_id, calendar_id)
    task.last_synced_at = synced_at
    task.updated_at = synced_at
    task.sync_source = "app"
    db.commit()

    task_id, user_id, title = task.id, task.user_id, task.title
    logger.info(f"Task {task_id} {action} as event {event_id} in calendar {calendar_id}")
    record_history(
        db,
        user_id,
        task_id,
        title,
        "synced",
        "Task updated in Google Calendar" if action == "updated" else "Task synced to Google Calendar",
    )
    return SyncResult(task_id=task_id, success=True, action=action, event_id=event_id, calendar_id=calendar_id)


def _summarize(results: List[SyncResult], total: int) -> SyncReport:
    succeeded = [r for r in results if r.success]
    created = len([r for r in succeeded if r.action == "created"])
    updated = len([r for r in succeeded if r.action == "updated"])

    message = f"Synced {len(succeeded)} of {total} tasks to Google Calendar"
    if created and updated:
        message += f" ({created} created, {updated} updated)"
    elif created:
        message += f" ({created} created)"
    elif updated:
        message += f" ({updated} updated)"

    failed = any(r.action == "failed" for r in results)
    return SyncReport(success=not failed, message=message, results=results)


def export_tasks(
    db: Session,
    client: GoogleCalendarClient,
    user_id: str,
    task_ids: Optional[Iterable[str]] = None,
    timezone: str = "UTC",
) -> SyncReport:
    """
    Mirrors tasks into the user's Google Calendar.

    With ``task_ids`` exactly those tasks are exported; otherwise every task
    changed since its last sync. A failure on one task is recorded
    in its result and does not stop the others; the local task is left as
    it is. ``AuthExpired`` ends the whole attempt.
    """
    if not user_id:
        raise ValidationError("User ID is required")

    credential = _connected_credential(db, user_id)
    if credential is None:
        logger.info(f"Google Calendar not connected for user {user_id}, nothing to sync")
        return SyncReport(message="Google Calendar not connected")

    query = db.query(TaskDB).filter(TaskDB.user_id == user_id)
    if task_ids is not None:
        query = query.filter(TaskDB.id.in_(list(task_ids)))
    else:
        query = query.filter(or_(TaskDB.last_synced_at.is_(None), TaskDB.updated_at > TaskDB.last_synced_at))
    tasks = query.order_by(TaskDB.created_at).all()

    if not tasks:
        return SyncReport(message="No tasks to sync")

    token = ensure_valid_token(db, credential, client).access_token
    target_calendar_id = resolve_target_calendar(db, credential)

    results = []
    for task in tasks:
        task_id = task.id
        try:
            results.append(_export_one(db, client, token, task, target_calendar_id, timezone))
        except ProviderError as e:
            db.rollback()
            logger.error(f"Error syncing task {task_id}: {e}")
            results.append(SyncResult(task_id=task_id, success=False, action="failed", message=str(e)))
        except Exception as e:
            db.rollback()
            logger.error(f"Unexpected error syncing task {task_id}", exc_info=True)
            results.append(SyncResult(task_id=task_id, success=False, action="failed", message=str(e)))

    return _summarize(results, len(tasks))


def export_task(
    db: Session,
    client: GoogleCalendarClient,
    user_id: str,
    task_id: str,
    timezone: str = "UTC",
) -> SyncResult:
    if not task_id:
        raise ValidationError("Task ID is required")

    report = export_tasks(db, client, user_id, [task_id], timezone)
    if report.results:
        return report.results[0]
    if _connected_credential(db, user_id) is None:
        return SyncResult(task_id=task_id, success=True, action="skipped", message=report.message)
    raise NotFoundLocal(f"Task {task_id} not found")


def delete_remote_event(
    db: Session,
    client: GoogleCalendarClient,
    user_id: str,
    calendar_id: Optional[str],
    event_id: str,
) -> SyncResult:
    """Deletes a mirrored event; an event that is already gone counts as deleted."""
    if not user_id or not event_id:
        raise ValidationError("User ID and Event ID are required")

    credential = _connected_credential(db, user_id)
    if credential is None:
        logger.info(f"Google Calendar not connected for user {user_id}, skipping event delete")
        return SyncResult(success=True, action="skipped", event_id=event_id, message="Google Calendar not connected")

    token = ensure_valid_token(db, credential, client).access_token
    calendar_id = calendar_id or DEFAULT_CALENDAR_ID
    outcome = client.delete_event(token, calendar_id, event_id)

    if outcome == DeleteOutcome.DELETED:
        message = "Event deleted successfully"
    else:
        message = "Event not found, considered already deleted"
    logger.info(f"Delete of event {event_id} from calendar {calendar_id}: {outcome.value}")
    return SyncResult(success=True, action="deleted", event_id=event_id, calendar_id=calendar_id, message=message)


def auto_sync_all(
    session_factory: Callable[[], Session],
    client_factory: Callable[[], GoogleCalendarClient],
    timezone: str = "UTC",
) -> int:
    """Exports pending tasks for every connected user. Returns how many users synced cleanly."""
    db = session_factory()
    try:
        user_ids = [
            row.user_id
            for row in db.query(UserIntegrationDB.user_id)
            .filter(UserIntegrationDB.connected.is_(True))
            .order_by(UserIntegrationDB.id)
            .all()
        ]
    finally:
        db.close()

    logger.info(f"Auto-sync pulse for {len(user_ids)} connected users")
    synced = 0
    for user_id in user_ids:
        db = session_factory()
        client = client_factory()
        try:
            report = export_tasks(db, client, user_id, timezone=timezone)
            if report.success:
                synced += 1
        except (AuthExpired, ProviderError) as e:
            logger.warning(f"Auto-sync for user {user_id} failed: {e}")
        except Exception:
            # one user must not stop the pulse for the rest
            logger.error(f"Auto-sync for user {user_id} failed unexpectedly", exc_info=True)
        finally:
            client.close()
            db.close()
    return synced
