"""Variable binder: map a deal plus admin overrides to the template value map."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sc.errors import MissingRequiredField
from sc.models import Deal, TemplateVariable, VariableType


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_currency(value: Any) -> str | None:
    """$12,500.00, or None when the value is not a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.\-]", "", value)
        if not cleaned:
            return None
        value = cleaned
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def format_long_date(value: Any) -> str | None:
    """Tuesday, March 4, 2025, or None when the value is not a date."""
    d = _parse_date(value)
    if d is None:
        return None
    return f"{d:%A}, {d:%B} {d.day}, {d.year}"


def format_number(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    try:
        num = Decimal(str(value).replace(",", ""))
    except InvalidOperation:
        return None
    if not num.is_finite():
        return None
    if num == num.to_integral_value():
        return f"{int(num)}"
    return f"{num.normalize()}"


def format_value(value: Any, var_type: VariableType | None = None) -> str:
    """Format one value for substitution; unparseable values pass through."""
    if var_type == VariableType.CURRENCY:
        formatted = format_currency(value)
    elif var_type == VariableType.DATE:
        formatted = format_long_date(value)
    elif var_type == VariableType.NUMBER:
        formatted = format_number(value)
    else:
        formatted = None

    if formatted is not None:
        return formatted
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if var_type is None and isinstance(value, (date, datetime)):
        return format_long_date(value) or str(value)
    return str(value)


def is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ---------------------------------------------------------------------------
# Deal → raw values
# ---------------------------------------------------------------------------

def deal_values(deal: Deal) -> dict[str, Any]:
    """Raw (unformatted) values a deal contributes to the template."""
    client, speaker, event = deal.client, deal.speaker, deal.event
    fin, travel = deal.financial, deal.travel

    speaker_fee = speaker.fee if speaker.fee is not None else fin.deal_value
    return {
        "client_name": client.name,
        "client_company": client.company or client.name,
        "client_contact_name": client.name,
        "client_email": client.email,
        "client_phone": client.phone,
        "client_address": client.address,
        "speaker_name": speaker.name,
        "speaker_email": speaker.email,
        "speaker_phone": speaker.phone,
        "speaker_fee": speaker_fee,
        "event_title": event.title,
        "event_date": event.starts_on,
        "event_time": event.time,
        "event_location": event.location,
        "venue_name": event.venue,
        "event_type": event.event_type,
        "attendee_count": event.attendee_count,
        "deal_value": fin.deal_value,
        "total_amount": fin.deal_value,
        "payment_terms": fin.payment_terms,
        "travel_stipend": fin.travel_stipend,
        "travel_required": travel.travel_required,
        "flight_required": travel.flight_required,
        "hotel_required": travel.hotel_required,
        "travel_notes": travel.notes,
    }


def bind(
    deal: Deal | None,
    overrides: Mapping[str, Any] | None,
    variables: Iterable[TemplateVariable] = (),
    base: Mapping[str, Any] | None = None,
) -> dict[str, str]:
    """Build the flat key/value map the template engine consumes.

    Layers from lowest to highest precedence: declared defaults, deal values,
    ``base`` (system values such as the contract number), admin ``overrides``.
    Absent optional values are left out so the engine shows a placeholder.
    Raises MissingRequiredField listing every required label that no layer supplies.
    """
    variables = list(variables)
    declared = {v.key: v for v in variables}

    raw: dict[str, Any] = {}
    layers: list[Mapping[str, Any]] = [
        {v.key: v.default_value for v in variables},
        deal_values(deal) if deal is not None else {},
        base or {},
        overrides or {},
    ]
    for layer in layers:
        for key, value in layer.items():
            if not is_absent(value):
                raw[key] = value

    missing = [v.display_label for v in variables if v.required and v.key not in raw]
    if missing:
        raise MissingRequiredField(missing)

    values: dict[str, str] = {}
    for key, value in raw.items():
        var = declared.get(key)
        values[key] = format_value(value, var.type if var else None)
    return values
