from __future__ import annotations

from datetime import date
from typing import Iterable

from tool_library.models.library_models import Rental


BLOCKING_STATES = {"pending", "active"}


def _overlaps(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    # Inclusive bounds: a rental ending on the day another starts still conflicts.
    return start_a <= end_b and end_a >= start_b


def find_conflicts(
    tool_id: int,
    start_date: date,
    end_date: date,
    existing_rentals: Iterable[Rental],
    exclude_rental_id: int | None = None,
) -> list[Rental]:
    conflicts = []
    for rental in existing_rentals:
        if rental.ToolID != tool_id:
            continue
        if exclude_rental_id is not None and rental.RentalID == exclude_rental_id:
            continue
        if (rental.Status or "") not in BLOCKING_STATES:
            continue
        if _overlaps(start_date, end_date, rental.StartDate, rental.EndDate):
            conflicts.append(rental)
    return conflicts


def is_available(
    tool_id: int,
    start_date: date,
    end_date: date,
    existing_rentals: Iterable[Rental],
    exclude_rental_id: int | None = None,
) -> bool:
    return not find_conflicts(tool_id, start_date, end_date, existing_rentals, exclude_rental_id)



def describe_availability(
    tool_id: int,
    start_date: date,
    end_date: date,
    existing_rentals: Iterable[Rental],
) -> dict:
    conflicts = find_conflicts(tool_id, start_date, end_date, existing_rentals)
    return {
        "toolID": tool_id,
        "startDate": start_date,
        "endDate": end_date,
        "available": not conflicts,
        "conflicts": [
            {
                "rentalID": rental.RentalID,
                "status": rental.Status,
                "startDate": rental.StartDate,
                "endDate": rental.EndDate,
            }
            for rental in conflicts
        ],
    }
