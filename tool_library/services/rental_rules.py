from __future__ import annotations

import calendar
import os
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from tool_library.services.errors import RentalValidationError


RENTAL_WEEKDAY = int(os.environ.get("RENTAL_WEEKDAY") or "4")
CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def is_rental_weekday(value: date, weekday: int = RENTAL_WEEKDAY) -> bool:
    return value.weekday() == weekday


def days_between(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days


def validate_rental_window(start_date: date | None, end_date: date | None, weekday: int = RENTAL_WEEKDAY) -> None:
    """Reject a booking window before any availability or pricing work runs.

    Both bounds must fall on the rental weekday and the window must span at
    least one day.
    """
    if start_date is None or end_date is None:
        raise RentalValidationError("startDate and endDate are required.")
    day_name = calendar.day_name[weekday]
    if not is_rental_weekday(start_date, weekday):
        raise RentalValidationError(f"Start date must be a {day_name}.")
    if not is_rental_weekday(end_date, weekday):
        raise RentalValidationError(f"End date must be a {day_name}.")
    if end_date <= start_date:
        raise RentalValidationError("End date must be after start date.")


def compute_rental_price(weekly_price, start_date: date, end_date: date) -> Decimal:
    weekly = Decimal(str(weekly_price or 0))
    return to_money(weekly / Decimal(7) * days_between(start_date, end_date))


def validate_amount(amount, field_name: str = "amount") -> Decimal:
    if amount is None:
        raise RentalValidationError(f"{field_name} is required.")
    value = to_money(amount)
    if value <= 0:
        raise RentalValidationError(f"{field_name} must be greater than zero.")
    return value


def validate_price(price, field_name: str = "price") -> Decimal:
    if price is None:
        raise RentalValidationError(f"{field_name} is required.")
    value = to_money(price)
    if value < 0:
        raise RentalValidationError(f"{field_name} cannot be negative.")
    return value
