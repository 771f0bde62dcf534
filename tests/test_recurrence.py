"""Tests for recurring task scheduling."""

import datetime
import logging

import pytest

from recurrence import advance_date, next_occurrence
from schemas import Recurring, Task


def _task(frequency="daily", due_date=datetime.date(2024, 3, 10), end_date=None, **fields):
    return Task(
        id="task-1",
        user_id="user-1",
        title="Water the plants",
        priority="high",
        tags=["home"],
        due_date=due_date,
        start_time="09:00",
        end_time="09:30",
        is_all_day=False,
        recurring=Recurring(frequency=frequency, end_date=end_date),
        completed=True,
        **fields,
    )


class TestAdvanceDate:
    @pytest.mark.parametrize(
        "frequency, start, expected",
        [
            ("daily", datetime.date(2024, 3, 10), datetime.date(2024, 3, 11)),
            ("weekly", datetime.date(2024, 3, 10), datetime.date(2024, 3, 17)),
            ("monthly", datetime.date(2024, 3, 10), datetime.date(2024, 4, 10)),
            ("custom", datetime.date(2024, 3, 10), datetime.date(2024, 3, 11)),
            ("daily", datetime.date(2024, 12, 31), datetime.date(2025, 1, 1)),
        ],
    )
    def test_steps(self, frequency, start, expected):
        assert advance_date(start, frequency) == expected

    def test_monthly_clamps_to_end_of_shorter_month(self):
        """Jan 31 lands on the last day of February, leap year included."""
        assert advance_date(datetime.date(2024, 1, 31), "monthly") == datetime.date(2024, 2, 29)
        assert advance_date(datetime.date(2023, 1, 31), "monthly") == datetime.date(2023, 2, 28)

    def test_unknown_frequency_falls_back_to_daily(self, caplog):
        caplog.set_level(logging.WARNING)
        assert advance_date(datetime.date(2024, 3, 10), "fortnightly") == datetime.date(2024, 3, 11)
        assert "fortnightly" in caplog.text


class TestNextOccurrence:
    def test_copies_task_to_next_date(self):
        task = _task("weekly")
        successor = next_occurrence(task)

        assert successor.due_date == datetime.date(2024, 3, 17)
        assert successor.due_date > task.due_date
        assert successor.completed is False
        assert successor.title == task.title
        assert successor.priority == task.priority
        assert successor.tags == task.tags
        assert successor.start_time == "09:00"
        assert successor.end_time == "09:30"
        assert successor.is_all_day is False
        assert successor.recurring == task.recurring

    def test_source_task_is_not_mutated(self):
        task = _task("daily")
        successor = next_occurrence(task)
        successor.tags.append("extra")

        assert task.due_date == datetime.date(2024, 3, 10)
        assert task.completed is True
        assert task.tags == ["home"]

    def test_series_ends_after_end_date(self):
        assert next_occurrence(_task("daily", end_date=datetime.date(2024, 3, 10))) is None

    def test_next_date_on_end_date_is_kept(self):
        successor = next_occurrence(_task("daily", end_date=datetime.date(2024, 3, 11)))
        assert successor.due_date == datetime.date(2024, 3, 11)

    def test_non_recurring_task_has_no_successor(self):
        task = _task().model_copy(update={"recurring": None})
        assert next_occurrence(task) is None

    def test_task_without_due_date_has_no_successor(self):
        assert next_occurrence(_task(due_date=None)) is None

    def test_max_occurrences_is_not_enforced(self):
        task = _task("daily").model_copy(update={"recurring": Recurring(frequency="daily", max_occurrences=1)})
        assert next_occurrence(task) is not None
