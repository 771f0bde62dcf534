import datetime
import logging
from typing import Optional

from dateutil.relativedelta import relativedelta

from schemas import Task

logger = logging.getLogger(__name__)

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
CUSTOM = "custom"


def advance_date(due_date: datetime.date, frequency: str) -> datetime.date:
    """
    Moves ``due_date`` forward by one step of ``frequency``.

    Monthly steps keep the day of month and clamp to the last day of a
    shorter month (2024-01-31 -> 2024-02-29).
    """
    if frequency == DAILY:
        return due_date + datetime.timedelta(days=1)
    if frequency == WEEKLY:
        return due_date + datetime.timedelta(days=7)
    if frequency == MONTHLY:
        return due_date + relativedelta(months=1)
    if frequency == CUSTOM:
        # custom intervals are not modelled yet, step a single day
        return due_date + datetime.timedelta(days=1)

    logger.warning(f"Unknown recurring frequency: {frequency!r}, falling back to daily")
    return due_date + datetime.timedelta(days=1)


def next_occurrence(task: Task) -> Optional[Task]:
    """Returns the task's next occurrence, or None when it does not recur or the series ended."""
    if task.recurring is None or not task.recurring.frequency:
        logger.warning(f"Attempted to schedule next occurrence for non-recurring task {task.id}")
        return None
    if task.due_date is None:
        logger.warning(f"Recurring task {task.id} has no due date, cannot schedule next occurrence")
        return None

    next_date = advance_date(task.due_date, task.recurring.frequency)

    end_date = task.recurring.end_date
    if end_date is not None and next_date > end_date:
        logger.info(f"Reached end date for recurring task {task.id}")
        return None

    return task.model_copy(
        update={
            "due_date": next_date,
            "completed": False,
            "start_time": task.start_time,
            "end_time": task.end_time,
            "is_all_day": task.is_all_day,
        },
        deep=True,
    )
