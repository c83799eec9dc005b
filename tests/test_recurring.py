# tests/test_recurring.py

from datetime import date, timedelta

import pytest

from app.errors import ForbiddenError
from app.models import PointsHistory, RecurrencePattern, Task, TaskStatus
from app.recurring import calculate_next_due_date, create_next_recurring_task, generate_missing_recurring_tasks
from app.tasks import TaskDraft, claim_task, complete_task, create_task, verify_task

from .conftest import TODAY


@pytest.mark.parametrize("pattern, current, expected", [
    (RecurrencePattern.DAILY, date(2025, 3, 12), date(2025, 3, 13)),
    (RecurrencePattern.WEEKLY, date(2025, 3, 12), date(2025, 3, 19)),
    (RecurrencePattern.MONTHLY, date(2025, 3, 12), date(2025, 4, 12)),
    (RecurrencePattern.MONTHLY, date(2025, 1, 31), date(2025, 2, 28)),
    (RecurrencePattern.MONTHLY, date(2024, 1, 31), date(2024, 2, 29)),
    (RecurrencePattern.DAILY, date(2024, 12, 31), date(2025, 1, 1)),
])
def test_calculate_next_due_date(pattern, current, expected):
    assert calculate_next_due_date(pattern, current) == expected


def _recurring(family, pattern=RecurrencePattern.DAILY, **overrides):
    values = dict(
        title="Feed the cat",
        points=2,
        due_date=TODAY,
        assigned_to=family.erik.id,
        is_recurring=True,
        recurrence_pattern=pattern,
    )
    values.update(overrides)
    return TaskDraft(**values)


def _series(db, task):
    return db.query(Task).filter(Task.series_id == task.series_id).order_by(Task.due_date).all()


def test_verifying_recurring_task_creates_next_instance(db, family):
    task = create_task(db, family.mom_ctx, _recurring(family, RecurrencePattern.WEEKLY))
    complete_task(db, family.erik_ctx, task.id, today=TODAY)

    verify_task(db, family.mom_ctx, task.id, today=TODAY)

    series = _series(db, task)
    assert [t.due_date for t in series] == [TODAY, TODAY + timedelta(weeks=1)]
    follow_up = series[1]
    assert follow_up.status == TaskStatus.PENDING
    assert follow_up.assigned_to == family.erik.id
    assert follow_up.points == 2


def test_next_date_comes_from_due_date_not_completion_date(db, family):
    overdue = TODAY - timedelta(days=5)
    task = create_task(db, family.mom_ctx, _recurring(family, due_date=overdue))
    complete_task(db, family.erik_ctx, task.id, today=TODAY)

    verify_task(db, family.mom_ctx, task.id, today=TODAY)

    assert [t.due_date for t in _series(db, task)] == [overdue, overdue + timedelta(days=1)]


def test_next_instance_is_not_duplicated(db, family):
    task = create_task(db, family.mom_ctx, _recurring(family))

    first = create_next_recurring_task(db, task, today=TODAY)
    second = create_next_recurring_task(db, task, today=TODAY)

    assert first is not None
    assert second is None
    assert len(_series(db, task)) == 2


def test_instances_beyond_horizon_are_skipped(db, family):
    task = create_task(db, family.mom_ctx, _recurring(family, due_date=TODAY + timedelta(days=200)))

    assert create_next_recurring_task(db, task, today=TODAY) is None


def test_recurring_bonus_task_reopens_for_claiming(db, family):
    task = create_task(db, family.mom_ctx, TaskDraft(
        title="Mow the lawn",
        points=20,
        due_date=TODAY,
        is_bonus_task=True,
        is_recurring=True,
        recurrence_pattern=RecurrencePattern.WEEKLY,
    ))
    claim_task(db, family.sasha_ctx, task.id)
    complete_task(db, family.sasha_ctx, task.id, today=TODAY)
    verify_task(db, family.dad_ctx, task.id, today=TODAY)

    follow_up = _series(db, task)[1]
    assert follow_up.status == TaskStatus.AVAILABLE
    assert follow_up.assigned_to is None
    assert follow_up.is_bonus_task is True


def test_backfill_catches_series_up_to_today(db, family):
    start = TODAY - timedelta(days=3)
    task = create_task(db, family.mom_ctx, _recurring(family, due_date=start))

    created = generate_missing_recurring_tasks(db, family.mom_ctx, today=TODAY)

    assert [t.due_date for t in created] == [start + timedelta(days=n) for n in (1, 2, 3)]
    assert _series(db, task)[-1].due_date == TODAY

    # Running again has nothing to do
    assert generate_missing_recurring_tasks(db, family.mom_ctx, today=TODAY) == []


def test_backfill_skips_series_with_upcoming_instance(db, family):
    create_task(db, family.mom_ctx, _recurring(family, due_date=TODAY + timedelta(days=1)))

    assert generate_missing_recurring_tasks(db, family.mom_ctx, today=TODAY) == []


def test_backfill_is_parents_only(db, family):
    with pytest.raises(ForbiddenError):
        generate_missing_recurring_tasks(db, family.erik_ctx, today=TODAY)


def test_parent_self_completion_of_daily_task_creates_next_day(db, family):
    task = create_task(db, family.mom_ctx, _recurring(family, due_date=date(2024, 1, 1), assigned_to=family.mom.id))

    done = complete_task(db, family.mom_ctx, task.id, today=date(2024, 1, 1))

    assert done.status == TaskStatus.VERIFIED
    series = _series(db, task)
    assert [t.due_date for t in series] == [date(2024, 1, 1), date(2024, 1, 2)]
    assert (series[1].title, series[1].points, series[1].assigned_to) == ("Feed the cat", 2, family.mom.id)


def test_failed_follow_up_does_not_undo_verification(db, family, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("series table locked")

    monkeypatch.setattr("app.recurring.create_next_recurring_task", broken)
    task = create_task(db, family.mom_ctx, _recurring(family))
    complete_task(db, family.erik_ctx, task.id, today=TODAY)

    result = verify_task(db, family.mom_ctx, task.id, today=TODAY)

    assert result["task"].status == TaskStatus.VERIFIED
    assert result["points_awarded"] == 2
    db.expire_all()
    assert db.get(Task, task.id).status == TaskStatus.VERIFIED
    [entry] = db.query(PointsHistory).filter(PointsHistory.task_id == task.id).all()
    assert entry.points == 2
    assert len(_series(db, task)) == 1
