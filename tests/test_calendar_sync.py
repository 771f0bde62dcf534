"""Tests for mirroring tasks into Google Calendar."""

import datetime

import pytest

import calendar_sync
from calendar_settings import set_calendar_visibility
from calendar_sync import (
    auto_sync_all,
    build_event_body,
    delete_remote_event,
    export_task,
    export_tasks,
    resolve_target_calendar,
)
from errors import AuthExpired, NotFoundLocal
from google_calendar import GoogleCalendarClient
from history import list_history
from models import TaskDB, TaskHistoryDB, TaskOrigin


class TestEventBody:
    def test_all_day_event_ends_next_day(self, make_task):
        task = make_task(due_date=datetime.date(2024, 2, 29))
        body = build_event_body(task)

        assert body["start"] == {"date": "2024-02-29"}
        assert body["end"] == {"date": "2024-03-01"}
        assert body["summary"] == "Pay rent"
        assert body["description"] == "Priority: medium"
        assert body["extendedProperties"]["private"]["task_id"] == task.id

    def test_timed_event(self, make_task):
        task = make_task(is_all_day=False, start_time="09:00", end_time="10:30", description="Call the landlord")
        body = build_event_body(task, "Europe/Warsaw")

        assert body["start"] == {"dateTime": "2024-03-01T09:00:00", "timeZone": "Europe/Warsaw"}
        assert body["end"] == {"dateTime": "2024-03-01T10:30:00", "timeZone": "Europe/Warsaw"}
        assert body["description"] == "Call the landlord"


class TestTargetCalendar:
    def test_selected_calendar_wins(self, db, connect_user):
        credential = connect_user(calendar_id="work")
        set_calendar_visibility(db, "user-1", "family", True)
        assert resolve_target_calendar(db, credential) == "work"

    def test_first_enabled_calendar(self, db, connect_user):
        credential = connect_user()
        set_calendar_visibility(db, "user-1", "holidays", False)
        set_calendar_visibility(db, "user-1", "family", True)
        assert resolve_target_calendar(db, credential) == "family"

    def test_defaults_to_primary(self, db, connect_user):
        assert resolve_target_calendar(db, connect_user()) == "primary"


class TestExport:
    def test_creates_event_and_records_mirror(self, db, client, http, connect_user, make_task):
        connect_user()
        task = make_task()
        http.queue(200, {"id": "evt-1"})

        result = export_task(db, client, "user-1", task.id)

        assert result.success is True
        assert result.action == "created"
        assert result.event_id == "evt-1"
        assert http.calls[0]["method"] == "POST"
        assert http.calls[0]["url"].endswith("/calendars/primary/events")
        assert http.calls[0]["headers"]["Authorization"] == "Bearer access-1"
        db.refresh(task)
        assert task.google_calendar_event_id == "evt-1"
        assert task.google_calendar_id == "primary"
        assert task.last_synced_at is not None
        assert [h.action for h in list_history(db, "user-1", task.id)] == ["synced"]

    def test_existing_mirror_is_updated(self, db, client, http, connect_user, make_task):
        connect_user()
        task = make_task(google_calendar_event_id="evt-1", google_calendar_id="work")
        http.queue(200, {"id": "evt-1"})

        result = export_task(db, client, "user-1", task.id)

        assert result.action == "updated"
        assert result.calendar_id == "work"
        assert http.calls[0]["method"] == "PUT"
        assert http.calls[0]["url"].endswith("/calendars/work/events/evt-1")

    @pytest.mark.parametrize("status", [404, 410])
    def test_vanished_event_is_recreated(self, db, client, http, connect_user, make_task, status):
        connect_user()
        task = make_task(google_calendar_event_id="evt-old", google_calendar_id="primary")
        http.queue(status, text="gone").queue(200, {"id": "evt-new"})

        result = export_task(db, client, "user-1", task.id)

        assert result.action == "created"
        assert [c["method"] for c in http.calls] == ["PUT", "POST"]
        db.refresh(task)
        assert task.google_calendar_event_id == "evt-new"

    def test_provider_failure_leaves_task_intact(self, db, client, http, connect_user, make_task):
        connect_user()
        task = make_task()
        http.queue(500, text="backend error")

        result = export_task(db, client, "user-1", task.id)

        assert result.success is False
        assert result.action == "failed"
        db.expire_all()
        stored = db.get(TaskDB, task.id)
        assert stored.title == "Pay rent"
        assert stored.google_calendar_event_id is None
        assert stored.last_synced_at is None
        assert list_history(db, "user-1", task.id) == []

    def test_not_connected_is_a_no_op(self, db, client, http, make_task):
        task = make_task()
        result = export_task(db, client, "user-1", task.id)

        assert result.action == "skipped"
        assert result.success is True
        assert http.calls == []

    def test_unknown_task(self, db, client, connect_user):
        connect_user()
        with pytest.raises(NotFoundLocal):
            export_task(db, client, "user-1", "missing")

    def test_sample_tasks_are_never_mirrored(self, db, client, http, connect_user, make_task):
        connect_user()
        task = make_task(origin=TaskOrigin.SAMPLE.value)

        result = export_task(db, client, "user-1", task.id)

        assert result.action == "skipped"
        assert http.calls == []

    def test_task_without_due_date_is_skipped(self, db, client, http, connect_user, make_task):
        connect_user()
        task = make_task(due_date=None)
        result = export_task(db, client, "user-1", task.id)

        assert result.action == "skipped"
        assert result.success is False
        assert http.calls == []

    def test_expired_authorization_aborts(self, db, client, http, connect_user, make_task):
        connect_user(expires_in=-datetime.timedelta(minutes=1), refresh_token=None)
        make_task()
        with pytest.raises(AuthExpired):
            export_tasks(db, client, "user-1")
        assert http.calls == []


class TestBatchExport:
    def test_only_changed_tasks_are_exported(self, db, client, http, connect_user, make_task):
        connect_user()
        synced_at = datetime.datetime.utcnow()
        make_task(
            title="Already mirrored",
            google_calendar_event_id="evt-1",
            google_calendar_id="primary",
            last_synced_at=synced_at,
            updated_at=synced_at,
        )
        pending = make_task(title="New task")
        http.queue(200, {"id": "evt-2"})

        report = export_tasks(db, client, "user-1")

        assert report.success is True
        assert [r.task_id for r in report.results] == [pending.id]
        assert report.message == "Synced 1 of 1 tasks to Google Calendar (1 created)"

    def test_one_failure_does_not_stop_the_rest(self, db, client, http, connect_user, make_task):
        connect_user()
        first = make_task(title="First")
        second = make_task(title="Second")
        http.queue(500, text="backend error").queue(200, {"id": "evt-2"})

        report = export_tasks(db, client, "user-1", [first.id, second.id])

        assert report.success is False
        assert sorted(r.action for r in report.results) == ["created", "failed"]
        assert {r.task_id for r in report.results} == {first.id, second.id}

    def test_nothing_to_sync(self, db, client, http, connect_user):
        connect_user()
        assert export_tasks(db, client, "user-1").message == "No tasks to sync"
        assert http.calls == []

    def test_auto_sync_covers_connected_users(self, db, session_factory, google_config, http, connect_user, make_task):
        connect_user("user-1")
        connect_user("user-2")
        make_task(user_id="user-1")
        http.queue(200, {"id": "evt-1"})

        synced = auto_sync_all(session_factory, lambda: GoogleCalendarClient(google_config, session=http))

        assert synced == 2
        assert len(http.calls) == 1
        assert http.closed is True


class TestDeleteRemoteEvent:
    @pytest.mark.parametrize("status", [204, 404, 410])
    def test_deleting_is_idempotent(self, db, client, http, connect_user, status):
        connect_user()
        http.queue(status)

        result = delete_remote_event(db, client, "user-1", "primary", "evt-1")

        assert result.success is True
        assert result.action == "deleted"

    def test_not_connected_is_skipped(self, db, client, http):
        result = delete_remote_event(db, client, "user-1", "primary", "evt-1")
        assert result.action == "skipped"
        assert http.calls == []


class TestUnexpectedFailures:
    def test_malformed_provider_answer_fails_only_that_task(self, db, client, http, connect_user, make_task):
        connect_user()
        first = make_task(title="First")
        second = make_task(title="Second")
        http.queue(200, text="<html>maintenance</html>").queue(200, {"id": "evt-2"})

        report = export_tasks(db, client, "user-1", [first.id, second.id])

        assert report.success is False
        assert sorted(r.action for r in report.results) == ["created", "failed"]

    def test_non_provider_error_is_recorded_per_task(self, db, client, http, connect_user, make_task, monkeypatch):
        connect_user()
        task = make_task()

        def broken_body(task, timezone="UTC"):
            raise KeyError("due_date")

        monkeypatch.setattr(calendar_sync, "build_event_body", broken_body)

        report = export_tasks(db, client, "user-1", [task.id])

        assert report.results[0].action == "failed"
        assert http.calls == []
        db.expire_all()
        assert db.get(TaskDB, task.id).title == "Pay rent"

    def test_auto_sync_continues_after_a_failing_user(
        self, db, session_factory, google_config, http, connect_user, make_task, monkeypatch
    ):
        connect_user("user-1")
        connect_user("user-2")
        make_task(user_id="user-1")
        second = make_task(user_id="user-2")
        http.queue(200, {"id": "evt-2"})
        real_export = calendar_sync.export_tasks

        def flaky_export(db, client, user_id, *args, **kwargs):
            if user_id == "user-1":
                raise ValueError("malformed task row")
            return real_export(db, client, user_id, *args, **kwargs)

        monkeypatch.setattr(calendar_sync, "export_tasks", flaky_export)

        synced = auto_sync_all(session_factory, lambda: GoogleCalendarClient(google_config, session=http))

        assert synced == 1
        db.expire_all()
        assert db.get(TaskDB, second.id).google_calendar_event_id == "evt-2"

    def test_history_failure_keeps_mirror(self, db, engine, client, http, connect_user, make_task):
        connect_user()
        task = make_task()
        TaskHistoryDB.__table__.drop(engine)
        http.queue(200, {"id": "evt-1"})

        result = export_task(db, client, "user-1", task.id)

        assert result.success is True
        db.expire_all()
        assert db.get(TaskDB, task.id).google_calendar_event_id == "evt-1"
