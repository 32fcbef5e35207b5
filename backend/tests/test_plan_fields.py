from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.errors import PlanValidationError  # noqa: E402
from utils.datetime_utils import end_of_week, iter_dates, start_of_week, week_label  # noqa: E402
from utils.plan_fields import coerce_actual_fields, coerce_planned_fields, round_half_up  # noqa: E402


def test_round_half_up_rounds_ties_away_from_even():
    assert round_half_up(2.5) == 3
    assert round_half_up(66.5) == 67
    assert round_half_up(0.25, 1) == 0.3
    assert round_half_up(80.125, 1) == 80.1


def test_planned_fields_keep_only_domain_fields():
    out = coerce_planned_fields("diet", {"calories": "250", "sets": 3, "quantity": " 1 cup "})
    assert out == {"calories": 250.0, "quantity": "1 cup"}


@pytest.mark.parametrize(
    "raw,expected",
    [
        (45, {"duration": 45, "duration_text": None}),
        ("90", {"duration": 90, "duration_text": None}),
        ("2 rounds", {"duration": None, "duration_text": "2 rounds"}),
        ("", {"duration": None, "duration_text": None}),
    ],
)
def test_duration_split(raw, expected):
    assert coerce_planned_fields("fitness", {"duration": raw}) == expected


def test_actual_fields_reject_other_domain():
    with pytest.raises(PlanValidationError) as exc:
        coerce_actual_fields("fitness", {"completed_calories": 100})
    assert exc.value.field == "completed_calories"
    assert coerce_actual_fields("fitness", {"completed_sets": "3"}) == {"completed_sets": 3}


def test_week_helpers():
    wednesday = date(2026, 1, 7)
    assert start_of_week(wednesday) == date(2026, 1, 5)
    assert end_of_week(wednesday) == date(2026, 1, 11)
    assert week_label(date(2025, 1, 12)) == "12 Jan"
    assert week_label(date(2026, 3, 1)) == "01 Mar"
    assert len(list(iter_dates(date(2026, 1, 5), date(2026, 1, 11)))) == 7
