from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import CalendarItem, CalendarSession, TrackingRecord  # noqa: E402
from services.calendar_service import apply_template_range, materialize_from_template  # noqa: E402
from services.rollup_service import (  # noqa: E402
    day_summary,
    derive_session_status,
    progress_summary,
    streak,
    week_summary,
    window_summary,
)
from services.template_service import create_template  # noqa: E402
from services.tracking_service import upsert_tracking  # noqa: E402


MONDAY = "2026-01-05"


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _session_with_items(count: int) -> CalendarSession:
    session = CalendarSession(id=10, name="Workout", session_order=0)
    for idx in range(count):
        session.items.append(CalendarItem(id=100 + idx, name=f"Item {idx}", item_order=idx))
    return session


def _records(statuses: list[str | None]) -> dict[int, TrackingRecord]:
    return {
        100 + idx: TrackingRecord(calendar_item_id=100 + idx, completion_status=status)
        for idx, status in enumerate(statuses)
        if status is not None
    }


@pytest.mark.parametrize(
    "statuses,expected",
    [
        (["completed", "completed", None], "partial"),
        (["completed", "completed", "completed"], "completed"),
        ([None, None, None], "pending"),
        (["skipped", "skipped", "skipped"], "skipped"),
        (["skipped", None, None], "partial"),
        (["completed", "skipped", "completed"], "partial"),
        (["pending", None, None], "pending"),
    ],
)
def test_derive_session_status_from_items(statuses, expected):
    assert derive_session_status(_session_with_items(3), None, _records(statuses)) == expected


def test_explicit_session_record_wins_over_items():
    session = _session_with_items(3)
    items = _records(["completed", "completed", "completed"])
    explicit = TrackingRecord(calendar_session_id=10, completion_status="pending")
    assert derive_session_status(session, explicit, items) == "pending"


def test_session_without_items_is_pending():
    assert derive_session_status(_session_with_items(0), None, {}) == "pending"


def _week_a(db, subject_id: int = 1):
    create_template(db, subject_id, "fitness", {
        "name": "Week A",
        "days": [
            {"day_of_week": d, "sessions": [
                {"name": "Main", "items": [{"name": "A"}, {"name": "B"}, {"name": "C"}]},
                {"name": "Cooldown"},
            ]}
            for d in range(7)
        ],
    })
    db.commit()


def _complete_items(db, entry, count: int, status: str = "completed"):
    main = entry.sessions[0]
    for item in main.items[:count]:
        upsert_tracking(db, entry.subject_id, "fitness", calendar_entry_id=entry.id, calendar_item_id=item.id, status=status)


def test_day_summary_counts_and_percentage():
    db = _new_db()
    _week_a(db)
    entry = materialize_from_template(db, 1, "fitness", MONDAY)
    _complete_items(db, entry, 2)

    summary = day_summary(db, 1, "fitness", MONDAY)
    assert summary["materialized"] is True
    assert summary["total_items"] == 3
    assert summary["completed_items"] == 2
    assert summary["completion_percentage"] == 67
    assert [s["status"] for s in summary["sessions"]] == ["partial", "pending"]
    assert summary["partial_sessions"] == 1
    assert summary["pending_sessions"] == 1


def test_unmaterialized_day_summary_is_zero_not_error():
    db = _new_db()
    summary = day_summary(db, 1, "fitness", MONDAY)
    assert summary["materialized"] is False
    assert summary["total_items"] == 0
    assert summary["completion_percentage"] == 0


def test_session_level_mark_counts_untracked_items():
    db = _new_db()
    _week_a(db)
    entry = materialize_from_template(db, 1, "fitness", MONDAY)
    main = entry.sessions[0]
    upsert_tracking(db, 1, "fitness", calendar_entry_id=entry.id, calendar_item_id=main.items[0].id, status="skipped")
    upsert_tracking(db, 1, "fitness", calendar_entry_id=entry.id, calendar_session_id=main.id, status="completed")

    summary = day_summary(db, 1, "fitness", MONDAY)
    assert summary["sessions"][0]["status"] == "completed"
    assert summary["sessions"][0]["source"] == "recorded"
    assert summary["completed_items"] == 2
    assert summary["skipped_items"] == 1


def test_window_summary_with_no_data_is_zero():
    db = _new_db()
    summary = window_summary(db, 1, "diet", "2026-01-05", "2026-01-11")
    assert summary["total_count"] == 0
    assert summary["completion_percentage"] == 0
    assert summary["status_counts"]["total"] == 0
    assert summary["days"] == []


def test_week_summary_sums_days_and_counts_ledger_statuses():
    db = _new_db()
    _week_a(db)
    apply_template_range(db, 1, "fitness", "2026-01-05", "2026-01-11")
    db.commit()

    monday = materialize_from_template(db, 1, "fitness", "2026-01-05")
    tuesday = materialize_from_template(db, 1, "fitness", "2026-01-06")
    _complete_items(db, monday, 3)
    _complete_items(db, tuesday, 1, status="skipped")

    summary = week_summary(db, 1, "fitness", "2026-01-08")
    assert summary["week_start"] == "2026-01-05"
    assert summary["week_end"] == "2026-01-11"
    assert len(summary["days"]) == 7
    assert summary["total_items"] == 21
    assert summary["completed_items"] == 3
    assert summary["completion_percentage"] == 14
    assert summary["completed_sessions"] == 1
    assert summary["status_counts"]["completed"] == 3
    assert summary["status_counts"]["skipped"] == 1
    assert summary["status_counts"]["total"] == 4


def test_streak_counts_back_from_reference_and_stops_at_gap():
    db = _new_db()
    _week_a(db)
    for day in ("2026-01-05", "2026-01-07", "2026-01-08", "2026-01-09"):
        entry = materialize_from_template(db, 1, "fitness", day)
        _complete_items(db, entry, 3)
    materialize_from_template(db, 1, "fitness", "2026-01-06")

    assert streak(db, 1, "fitness", "2026-01-09") == 3
    assert streak(db, 1, "fitness", "2026-01-10") == 0
    assert streak(db, 1, "fitness", "2026-01-05") == 1


def test_progress_summary_bundles_window_and_streak():
    db = _new_db()
    _week_a(db)
    entry = materialize_from_template(db, 1, "fitness", MONDAY)
    _complete_items(db, entry, 3)

    progress = progress_summary(db, 1, "fitness", "2026-01-05", "2026-01-05")
    assert progress["completion_percentage"] == 100
    assert progress["streak"] == 1
