import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import TaskHistoryDB

logger = logging.getLogger(__name__)


def record_history(
    db: Session,
    user_id: str,
    task_id: str,
    task_title: Optional[str],
    action: str,
    details: Optional[str] = None,
) -> bool:
    """
    Appends a history row in its own commit.

    Call it after the change it describes has been committed. A failed
    insert is logged and rolled back; it never undoes that change.
    """
    try:
        db.add(
            TaskHistoryDB(
                user_id=user_id,
                task_id=task_id,
                task_title=task_title,
                action=action,
                details=details,
            )
        )
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Could not record '{action}' history for task {task_id}: {e}")
        return False


def list_history(db: Session, user_id: str, task_id: str, limit: int = 100) -> List[TaskHistoryDB]:
    return (
        db.query(TaskHistoryDB)
        .filter(TaskHistoryDB.user_id == user_id, TaskHistoryDB.task_id == task_id)
        .order_by(TaskHistoryDB.timestamp.desc(), TaskHistoryDB.id.desc())
        .limit(limit)
        .all()
    )
