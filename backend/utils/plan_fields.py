"""Planned and actual measurement fields for the two plan domains."""

from __future__ import annotations

import json
import math
from datetime import date
from typing import Any

from services.errors import PlanValidationError
from utils.datetime_utils import parse_iso_date


DOMAINS = ("diet", "fitness")

# field name -> kind ("int" | "float" | "text" | "json")
FITNESS_PLANNED_FIELDS: dict[str, str] = {
    "sets": "int",
    "reps": "text",
    "duration": "int",
    "duration_text": "text",
    "weight": "float",
    "weight_unit": "text",
    "set_01_rep": "text",
    "weight_01": "float",
    "set_02_rep": "text",
    "weight_02": "float",
    "set_03_rep": "text",
    "weight_03": "float",
    "rest_seconds": "int",
    "notes": "text",
}

DIET_PLANNED_FIELDS: dict[str, str] = {
    "quantity": "text",
    "calories": "float",
    "protein": "float",
    "carbs": "float",
    "fats": "float",
    "fiber": "float",
    "sugar": "float",
    "sodium": "float",
    "notes": "text",
}

FITNESS_ACTUAL_FIELDS: dict[str, str] = {
    "completed_sets": "int",
    "completed_reps": "text",
    "completed_duration": "int",
    "completed_weight": "float",
    "completed_sets_detail": "json",
}

DIET_ACTUAL_FIELDS: dict[str, str] = {
    "completed_quantity": "text",
    "completed_calories": "float",
    "completed_protein": "float",
    "completed_carbs": "float",
    "completed_fats": "float",
    "completed_items_detail": "json",
}

ALL_PLANNED_FIELDS = tuple(dict.fromkeys([*FITNESS_PLANNED_FIELDS, *DIET_PLANNED_FIELDS]))
ALL_ACTUAL_FIELDS = tuple([*FITNESS_ACTUAL_FIELDS, *DIET_ACTUAL_FIELDS])


def normalize_domain(domain: str | None) -> str:
    value = (domain or "").strip().lower()
    if value not in DOMAINS:
        raise PlanValidationError(f"Unsupported plan domain: {domain!r}", field="domain")
    return value


def planned_fields_for(domain: str) -> dict[str, str]:
    return FITNESS_PLANNED_FIELDS if domain == "fitness" else DIET_PLANNED_FIELDS


def actual_fields_for(domain: str) -> dict[str, str]:
    return FITNESS_ACTUAL_FIELDS if domain == "fitness" else DIET_ACTUAL_FIELDS


def round_half_up(value: float, decimals: int = 0) -> float:
    """Round like a calculator: 2.5 -> 3, 0.25 -> 0.3 at one decimal."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def _coerce_number(value: Any, kind: str, field: str) -> int | float | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    if isinstance(value, bool):
        raise PlanValidationError(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise PlanValidationError(f"{field} must be a number", field=field) from None
    if math.isnan(number) or math.isinf(number):
        raise PlanValidationError(f"{field} must be a finite number", field=field)
    if number < 0:
        raise PlanValidationError(f"{field} cannot be negative", field=field)
    if kind == "int":
        if not number.is_integer():
            raise PlanValidationError(f"{field} must be a whole number", field=field)
        return int(number)
    return number


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_value(value: Any, kind: str, field: str) -> Any:
    if kind == "text":
        return _coerce_text(value)
    if kind == "json":
        if value is None or value == "":
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                raise PlanValidationError(f"{field} must be a JSON list", field=field) from None
        if not isinstance(value, list):
            raise PlanValidationError(f"{field} must be a list", field=field)
        return json.dumps(value, ensure_ascii=True)
    return _coerce_number(value, kind, field)


def _split_duration(value: Any) -> tuple[int | None, str | None]:
    """Numeric durations go to `duration`; anything else is kept as text."""
    if value is None:
        return None, None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None, None
        try:
            number = float(stripped)
        except ValueError:
            return None, stripped
        if number.is_integer() and number >= 0:
            return int(number), None
        return None, stripped
    return _coerce_number(value, "int", "duration"), None


def coerce_planned_fields(domain: str, payload: dict[str, Any] | None) -> dict[str, Any]:
    """Validate and normalize the planned fields present in payload.

    Only keys that appear in the payload are returned, so the result can be
    used both for full creates and partial updates.
    """
    payload = payload or {}
    allowed = planned_fields_for(domain)
    out: dict[str, Any] = {}
    for field, kind in allowed.items():
        if field not in payload:
            continue
        if field == "duration":
            duration, duration_text = _split_duration(payload.get("duration"))
            out["duration"] = duration
            if duration_text is not None or "duration_text" not in payload:
                out["duration_text"] = duration_text
            continue
        if field == "duration_text" and out.get("duration_text") is not None:
            continue
        out[field] = _coerce_value(payload.get(field), kind, field)
    return out


def coerce_actual_fields(domain: str, actuals: dict[str, Any] | None) -> dict[str, Any]:
    actuals = actuals or {}
    allowed = actual_fields_for(domain)
    unknown = [key for key in actuals if key not in allowed]
    if unknown:
        raise PlanValidationError(
            f"Unsupported {domain} tracking field: {unknown[0]}",
            field=unknown[0],
        )
    return {field: _coerce_value(actuals[field], kind, field) for field, kind in allowed.items() if field in actuals}


def planned_fields_dict(row: Any, domain: str) -> dict[str, Any]:
    return {field: getattr(row, field, None) for field in planned_fields_for(domain)}


def actual_fields_dict(row: Any, domain: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for field, kind in actual_fields_for(domain).items():
        value = getattr(row, field, None)
        if kind == "json":
            value = safe_json_loads(value, [])
        out[field] = value
    return out


def safe_json_loads(raw: str | None, fallback: Any) -> Any:
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return fallback


def coerce_date(value: Any, field: str = "date") -> date:
    try:
        return parse_iso_date(value, field)
    except ValueError as exc:
        raise PlanValidationError(str(exc), field=field) from None
