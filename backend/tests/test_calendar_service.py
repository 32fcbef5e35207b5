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
from db.models import CalendarEntry, CalendarItem, TrackingRecord  # noqa: E402
from services import calendar_service  # noqa: E402
from services.calendar_service import (  # noqa: E402
    add_item,
    add_session,
    apply_override,
    apply_template_range,
    entry_to_dict,
    list_entries,
    materialize_from_template,
    remove_item,
    remove_session,
    resolve_entry,
)
from services.errors import NotFoundError, PlanValidationError  # noqa: E402
from services.rollup_service import day_summary  # noqa: E402
from services.template_service import create_template, update_template  # noqa: E402
from services.tracking_service import upsert_tracking  # noqa: E402


MONDAY = "2026-01-05"
TUESDAY = "2026-01-06"
WEDNESDAY = "2026-01-07"


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _fitness_template(db, owner_id: int = 1, name: str = "Week A"):
    template = create_template(db, owner_id, "fitness", {
        "name": name,
        "days": [
            {
                "day_of_week": 0,
                "sessions": [
                    {
                        "name": "Lower body",
                        "items": [
                            {"name": "Squat", "sets": 3, "reps": "10", "set_01_rep": "10", "weight_01": 60,
                             "set_02_rep": "8", "weight_02": 65, "set_03_rep": "6", "weight_03": 70},
                            {"name": "Lunge", "sets": 3, "reps": "12"},
                            {"name": "Calf raise", "sets": 2, "reps": "15"},
                        ],
                    },
                    {"name": "Stretch", "session_order": 5, "items": [{"name": "Hamstring", "duration": 60}]},
                ],
            },
            {"day_of_week": 2, "is_rest_day": True},
        ],
    })
    db.commit()
    return template


def test_resolve_entry_is_a_pure_probe():
    db = _new_db()
    _fitness_template(db)
    assert resolve_entry(db, 1, "fitness", MONDAY) is None
    assert db.query(CalendarEntry).count() == 0


def test_materialize_copies_template_day_in_order():
    db = _new_db()
    template = _fitness_template(db)

    entry = materialize_from_template(db, 1, "fitness", MONDAY)
    out = entry_to_dict(entry)

    assert out["entry_date"] == MONDAY
    assert out["is_override"] is False
    assert out["week_template_id"] == template.id
    assert out["template_day_id"] == template.days[0].id
    assert [s["name"] for s in out["sessions"]] == ["Lower body", "Stretch"]
    squat = out["sessions"][0]["items"][0]
    assert squat["name"] == "Squat"
    assert (squat["set_03_rep"], squat["weight_03"]) == ("6", 70)
    assert [i["name"] for i in out["sessions"][0]["items"]] == ["Squat", "Lunge", "Calf raise"]
    assert out["sessions"][0]["week_template_id"] == template.id


def test_materialize_is_idempotent():
    db = _new_db()
    _fitness_template(db)

    first = materialize_from_template(db, 1, "fitness", MONDAY)
    second = materialize_from_template(db, 1, "fitness", MONDAY)

    assert first.id == second.id
    assert db.query(CalendarEntry).count() == 1


def test_materialized_entry_ignores_later_template_edits():
    db = _new_db()
    template = _fitness_template(db)
    entry = materialize_from_template(db, 1, "fitness", MONDAY)

    update_template(db, template.id, {"days": [{"day_of_week": 0, "sessions": [{"name": "Upper body"}]}]})
    db.commit()

    again = materialize_from_template(db, 1, "fitness", MONDAY)
    assert again.id == entry.id
    assert [s.name for s in again.sessions] == ["Lower body", "Stretch"]
    # A fresh date picks up the edited template.
    fresh = materialize_from_template(db, 1, "fitness", "2026-01-12")
    assert [s.name for s in fresh.sessions] == ["Upper body"]


def test_date_without_template_day_becomes_rest_day():
    db = _new_db()
    _fitness_template(db)
    entry = materialize_from_template(db, 1, "fitness", TUESDAY)
    assert entry.is_rest_day is True
    assert entry.sessions == []
    assert entry.template_day_id is None


def test_template_rest_day_flag_is_copied():
    db = _new_db()
    _fitness_template(db)
    entry = materialize_from_template(db, 1, "fitness", WEDNESDAY)
    assert entry.is_rest_day is True
    assert entry.template_day_id is not None


def test_materialize_uses_newest_active_template():
    db = _new_db()
    _fitness_template(db, name="Old")
    newer = create_template(db, 1, "fitness", {"name": "New", "days": [{"day_of_week": 0, "sessions": [{"name": "Run"}]}]})
    db.commit()

    entry = materialize_from_template(db, 1, "fitness", MONDAY)
    assert entry.week_template_id == newer.id
    assert [s.name for s in entry.sessions] == ["Run"]


def test_materialize_without_template_is_not_found():
    db = _new_db()
    with pytest.raises(NotFoundError):
        materialize_from_template(db, 1, "diet", MONDAY)
    with pytest.raises(NotFoundError):
        materialize_from_template(db, 1, "fitness", MONDAY, template_id=999)


def test_concurrent_materialization_returns_the_winner(monkeypatch):
    db = _new_db()
    _fitness_template(db)
    winner = CalendarEntry(subject_id=1, domain="fitness", entry_date=MONDAY, is_override=False)
    db.add(winner)
    db.commit()
    winner_id = winner.id

    real_resolve = calendar_service.resolve_entry
    calls = {"count": 0}

    def _stale_first_read(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return real_resolve(*args, **kwargs)

    monkeypatch.setattr(calendar_service, "resolve_entry", _stale_first_read)
    entry = calendar_service.materialize_from_template(db, 1, "fitness", MONDAY)

    assert entry.id == winner_id
    assert db.query(CalendarEntry).count() == 1


def test_override_replaces_sessions_and_is_permanent():
    db = _new_db()
    _fitness_template(db)
    materialize_from_template(db, 1, "fitness", MONDAY)

    entry = apply_override(db, 1, "fitness", MONDAY, [{"name": "Swim", "items": [{"name": "Laps", "duration": "20 min easy"}]}])
    db.commit()
    assert entry.is_override is True
    assert [s.name for s in entry.sessions] == ["Swim"]
    assert entry.sessions[0].items[0].duration_text == "20 min easy"

    again = materialize_from_template(db, 1, "fitness", MONDAY)
    assert [s.name for s in again.sessions] == ["Swim"]
    assert again.is_override is True


def test_override_creates_missing_entry_with_empty_day():
    db = _new_db()
    entry = apply_override(db, 7, "diet", MONDAY, [], notes="Fasting day", is_rest_day=True)
    db.commit()
    assert entry.id is not None
    assert entry.is_override is True
    assert entry.is_rest_day is True
    assert entry.notes == "Fasting day"


def test_override_carries_ids_so_tracking_stays_attached():
    db = _new_db()
    _fitness_template(db)
    entry = materialize_from_template(db, 1, "fitness", MONDAY)
    sessions = entry_to_dict(entry)["sessions"]
    lower = sessions[0]
    squat_id = lower["items"][0]["id"]

    upsert_tracking(db, 1, "fitness", calendar_entry_id=entry.id, calendar_item_id=squat_id, status="completed")

    lower["name"] = "Lower body (modified)"
    lower["items"].append({"name": "Glute bridge", "sets": 2, "reps": "15"})
    apply_override(db, 1, "fitness", MONDAY, sessions)
    db.commit()

    refreshed = entry_to_dict(resolve_entry(db, 1, "fitness", MONDAY))
    assert refreshed["sessions"][0]["id"] == lower["id"]
    assert refreshed["sessions"][0]["name"] == "Lower body (modified)"
    item_ids = [i["id"] for i in refreshed["sessions"][0]["items"]]
    assert item_ids[:3] == [i["id"] for i in lower["items"][:3]]
    assert item_ids[3] not in item_ids[:3]
    assert item_ids[3] > max(item_ids[:3])

    summary = day_summary(db, 1, "fitness", MONDAY)
    assert summary["completed_items"] == 1
    assert summary["total_items"] == 5


def test_override_ignores_ids_from_other_entries():
    db = _new_db()
    _fitness_template(db)
    monday = materialize_from_template(db, 1, "fitness", MONDAY)
    foreign_item = monday.sessions[0].items[0].id

    other = apply_override(db, 1, "fitness", "2026-01-12", [{"name": "Borrowed", "items": [{"id": foreign_item, "name": "Squat"}]}])
    db.commit()
    assert other.sessions[0].items[0].id != foreign_item
    assert db.query(CalendarItem).filter(CalendarItem.id == foreign_item).one().session.entry.id == monday.id


def test_override_gives_moved_items_a_new_id():
    db = _new_db()
    _fitness_template(db)
    entry = materialize_from_template(db, 1, "fitness", MONDAY)
    sessions = entry_to_dict(entry)["sessions"]
    squat = sessions[0]["items"].pop(0)
    sessions[1]["items"].append(squat)
    upsert_tracking(db, 1, "fitness", calendar_entry_id=entry.id, calendar_item_id=squat["id"], status="completed")

    apply_override(db, 1, "fitness", MONDAY, sessions)
    db.commit()

    refreshed = entry_to_dict(resolve_entry(db, 1, "fitness", MONDAY))
    assert [i["id"] for i in refreshed["sessions"][0]["items"]] == [i["id"] for i in sessions[0]["items"]]
    moved = refreshed["sessions"][1]["items"][-1]
    assert moved["name"] == "Squat"
    assert moved["id"] != squat["id"]

    record = upsert_tracking(db, 1, "fitness", calendar_entry_id=entry.id, calendar_item_id=moved["id"], status="skipped")
    assert record.calendar_session_id == refreshed["sessions"][1]["id"]
    rows = db.query(TrackingRecord).filter(TrackingRecord.calendar_item_id == moved["id"]).all()
    assert len(rows) == 1

    summary = day_summary(db, 1, "fitness", MONDAY)
    assert summary["completed_items"] == 0
    assert summary["skipped_items"] == 1


def test_concurrent_override_reuses_the_winner(monkeypatch):
    db = _new_db()
    _fitness_template(db)
    winner = materialize_from_template(db, 1, "fitness", MONDAY)
    winner_id = winner.id

    real_resolve = calendar_service.resolve_entry
    calls = {"count": 0}

    def _stale_first_read(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return real_resolve(*args, **kwargs)

    monkeypatch.setattr(calendar_service, "resolve_entry", _stale_first_read)
    entry = calendar_service.apply_override(db, 1, "fitness", MONDAY, [{"name": "Swim", "items": [{"name": "Laps"}]}])
    db.commit()

    assert entry.id == winner_id
    assert db.query(CalendarEntry).count() == 1
    assert entry.is_override is True
    assert [s.name for s in entry.sessions] == ["Swim"]
    assert [i.name for i in entry.sessions[0].items] == ["Laps"]


def test_override_validates_before_touching_rows():
    db = _new_db()
    _fitness_template(db)
    materialize_from_template(db, 1, "fitness", MONDAY)
    with pytest.raises(PlanValidationError):
        apply_override(db, 1, "fitness", MONDAY, [{"name": "Ok", "items": [{"name": "Bad", "sets": "many"}]}])
    entry = resolve_entry(db, 1, "fitness", MONDAY)
    assert entry.is_override is False
    assert len(entry.sessions) == 2


def test_ad_hoc_helpers_route_through_override():
    db = _new_db()
    _fitness_template(db)

    entry = add_session(db, 1, "fitness", MONDAY, {"name": "Evening walk", "items": [{"name": "Walk", "duration": 1800}]})
    db.commit()
    assert entry.is_override is True
    names = [s["name"] for s in entry_to_dict(entry)["sessions"]]
    assert names == ["Lower body", "Stretch", "Evening walk"]

    stretch_id = next(s.id for s in entry.sessions if s.name == "Stretch")
    entry = remove_session(db, 1, "fitness", MONDAY, stretch_id)
    db.commit()
    assert [s.name for s in entry.sessions] == ["Lower body", "Evening walk"]

    lower = next(s for s in entry.sessions if s.name == "Lower body")
    entry = add_item(db, 1, "fitness", MONDAY, lower.id, {"name": "Deadlift", "sets": 3, "reps": "5"})
    db.commit()
    lower = next(s for s in entry.sessions if s.name == "Lower body")
    assert [i.name for i in sorted(lower.items, key=lambda i: i.item_order)][-1] == "Deadlift"

    lunge_id = next(i.id for i in lower.items if i.name == "Lunge")
    entry = remove_item(db, 1, "fitness", MONDAY, lunge_id)
    db.commit()
    lower = next(s for s in entry.sessions if s.name == "Lower body")
    assert "Lunge" not in {i.name for i in lower.items}

    with pytest.raises(NotFoundError):
        remove_item(db, 1, "fitness", MONDAY, lunge_id)


def test_add_session_without_template_starts_empty_day():
    db = _new_db()
    entry = add_session(db, 3, "diet", MONDAY, {"name": "Snack", "items": [{"name": "Apple", "calories": 95}]})
    db.commit()
    assert [s.name for s in entry.sessions] == ["Snack"]
    assert entry.is_override is True


def test_list_entries_and_range_limit():
    db = _new_db()
    _fitness_template(db)
    materialize_from_template(db, 1, "fitness", MONDAY)
    materialize_from_template(db, 1, "fitness", WEDNESDAY)

    entries = list_entries(db, 1, "fitness", "2026-01-01", "2026-01-31")
    assert [e.entry_date for e in entries] == [MONDAY, WEDNESDAY]

    with pytest.raises(PlanValidationError):
        list_entries(db, 1, "fitness", "2026-01-01", "2026-03-01")
    with pytest.raises(PlanValidationError):
        list_entries(db, 1, "fitness", "2026-01-10", "2026-01-01")


def test_apply_template_range_creates_and_refreshes_but_keeps_overrides():
    db = _new_db()
    template = _fitness_template(db)

    result = apply_template_range(db, 1, "fitness", "2026-01-05", "2026-01-11", template_id=template.id)
    db.commit()
    assert len(result["created"]) == 7
    assert db.query(CalendarEntry).count() == 7

    apply_override(db, 1, "fitness", MONDAY, [{"name": "Custom"}])
    db.commit()
    update_template(db, template.id, {"days": [
        {"day_of_week": 0, "sessions": [{"name": "Upper body"}]},
        {"day_of_week": 2, "sessions": [{"name": "Intervals"}]},
    ]})
    db.commit()

    again = apply_template_range(db, 1, "fitness", "2026-01-05", "2026-01-11", template_id=template.id)
    db.commit()
    assert again["created"] == []
    assert MONDAY in again["skipped_override"]
    assert len(again["unchanged"]) == 6
    assert [s.name for s in resolve_entry(db, 1, "fitness", WEDNESDAY).sessions] == []

    refreshed = apply_template_range(db, 1, "fitness", "2026-01-05", "2026-01-11", template_id=template.id, refresh=True)
    db.commit()
    assert refreshed["skipped_override"] == [MONDAY]
    assert WEDNESDAY in refreshed["refreshed"]
    wednesday = resolve_entry(db, 1, "fitness", WEDNESDAY)
    assert [s.name for s in wednesday.sessions] == ["Intervals"]
    assert wednesday.is_rest_day is False
    assert [s.name for s in resolve_entry(db, 1, "fitness", MONDAY).sessions] == ["Custom"]


def test_apply_template_range_respects_max_days():
    db = _new_db()
    template = _fitness_template(db)
    with pytest.raises(PlanValidationError):
        apply_template_range(db, 1, "fitness", "2026-01-01", "2026-03-31", template_id=template.id)
    assert db.query(TrackingRecord).count() == 0
    assert db.query(CalendarEntry).count() == 0
