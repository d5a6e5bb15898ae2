import unittest
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

from tool_library.tests.fixtures import FRIDAY, MONDAY, NEXT_FRIDAY
from tool_library.services.availability_service import describe_availability, find_conflicts, is_available
from tool_library.services.errors import RentalValidationError
from tool_library.services.maintenance_service import add_months, is_blocked, is_urgent, maintenance_expiry, maintenance_status
from tool_library.services.rental_rules import compute_rental_price, days_between, is_rental_weekday, validate_rental_window


def _rental(rental_id, start, end, status="active", tool_id=1):
    return SimpleNamespace(RentalID=rental_id, ToolID=tool_id, StartDate=start, EndDate=end, Status=status)


def _tool(importance="high", last=None, interval=None, status="available"):
    return SimpleNamespace(
        ToolID=1,
        Status=status,
        MaintenanceImportance=importance,
        LastMaintenanceDate=last,
        MaintenanceInterval=interval,
    )


class RentalRulesTests(unittest.TestCase):
    def test_friday_is_the_rental_weekday(self):
        self.assertTrue(is_rental_weekday(FRIDAY))
        self.assertFalse(is_rental_weekday(MONDAY))

    def test_window_rejects_non_friday_bounds(self):
        with self.assertRaises(RentalValidationError):
            validate_rental_window(MONDAY, date(2025, 1, 13))
        with self.assertRaises(RentalValidationError):
            validate_rental_window(FRIDAY, date(2025, 1, 13))

    def test_window_rejects_empty_and_inverted_ranges(self):
        with self.assertRaises(RentalValidationError):
            validate_rental_window(FRIDAY, FRIDAY)
        with self.assertRaises(RentalValidationError):
            validate_rental_window(NEXT_FRIDAY, FRIDAY)
        with self.assertRaises(RentalValidationError):
            validate_rental_window(None, FRIDAY)

    def test_window_accepts_consecutive_fridays(self):
        validate_rental_window(FRIDAY, NEXT_FRIDAY)

    def test_price_is_prorated_from_weekly_price(self):
        self.assertEqual(days_between(FRIDAY, NEXT_FRIDAY), 7)
        self.assertEqual(compute_rental_price(Decimal("70"), FRIDAY, NEXT_FRIDAY), Decimal("70.00"))
        self.assertEqual(compute_rental_price("25.00", FRIDAY, date(2025, 1, 24)), Decimal("75.00"))
        self.assertEqual(compute_rental_price("10.00", FRIDAY, NEXT_FRIDAY), Decimal("10.00"))


class AvailabilityTests(unittest.TestCase):
    def test_overlapping_active_rental_blocks(self):
        existing = [_rental(1, FRIDAY, NEXT_FRIDAY)]
        self.assertFalse(is_available(1, FRIDAY, NEXT_FRIDAY, existing))

    def test_touching_bounds_count_as_conflict(self):
        existing = [_rental(1, FRIDAY, NEXT_FRIDAY, status="pending")]
        self.assertFalse(is_available(1, NEXT_FRIDAY, date(2025, 1, 17), existing))

    def test_terminal_rentals_do_not_block(self):
        existing = [
            _rental(1, FRIDAY, NEXT_FRIDAY, status="rejected"),
            _rental(2, FRIDAY, NEXT_FRIDAY, status="completed"),
        ]
        self.assertTrue(is_available(1, FRIDAY, NEXT_FRIDAY, existing))

    def test_other_tools_and_disjoint_ranges_do_not_block(self):
        existing = [
            _rental(1, FRIDAY, NEXT_FRIDAY, tool_id=2),
            _rental(2, date(2025, 1, 17), date(2025, 1, 24)),
        ]
        self.assertTrue(is_available(1, FRIDAY, NEXT_FRIDAY, existing))

    def test_description_lists_conflicting_windows(self):
        existing = [
            _rental(4, FRIDAY, NEXT_FRIDAY, status="pending"),
            _rental(5, date(2025, 1, 17), date(2025, 1, 24)),
        ]
        busy = describe_availability(1, FRIDAY, NEXT_FRIDAY, existing)
        self.assertFalse(busy["available"])
        self.assertEqual(
            busy["conflicts"],
            [{"rentalID": 4, "status": "pending", "startDate": FRIDAY, "endDate": NEXT_FRIDAY}],
        )
        free = describe_availability(1, date(2025, 1, 31), date(2025, 2, 7), existing)
        self.assertTrue(free["available"])
        self.assertEqual(free["conflicts"], [])

    def test_excluded_rental_is_ignored(self):
        existing = [_rental(7, FRIDAY, NEXT_FRIDAY, status="pending")]
        self.assertEqual(find_conflicts(1, FRIDAY, NEXT_FRIDAY, existing, exclude_rental_id=7), [])


class MaintenanceGateTests(unittest.TestCase):
    def setUp(self):
        self.today = date(2025, 6, 15)

    def test_add_months_clamps_to_month_end(self):
        self.assertEqual(add_months(date(2025, 1, 31), 1), date(2025, 2, 28))
        self.assertEqual(add_months(date(2024, 11, 15), 3), date(2025, 2, 15))

    def test_low_importance_is_never_blocked(self):
        self.assertFalse(is_blocked(_tool("low"), self.today))
        self.assertFalse(is_blocked(_tool("low", date(2020, 1, 1), 1), self.today))

    def test_overdue_high_importance_is_blocked(self):
        tool = _tool("high", self.today - timedelta(days=200), 6)
        self.assertTrue(is_blocked(tool, self.today))

    def test_never_maintained_medium_tool_is_blocked(self):
        self.assertTrue(is_blocked(_tool("medium"), self.today))
        self.assertTrue(is_blocked(_tool("medium", last=date(2025, 1, 1)), self.today))

    def test_expiry_today_is_not_yet_blocked(self):
        tool = _tool("high", date(2025, 3, 15), 3)
        self.assertEqual(maintenance_expiry(tool), self.today)
        self.assertFalse(is_blocked(tool, self.today))
        self.assertTrue(is_blocked(tool, self.today + timedelta(days=1)))

    def test_status_labels(self):
        self.assertEqual(maintenance_status(_tool(status="maintenance"), self.today), "in_service")
        self.assertEqual(maintenance_status(_tool("high", date(2024, 1, 1), 6), self.today), "expired")
        self.assertEqual(maintenance_status(_tool("high", date(2024, 12, 20), 6), self.today), "due_soon")
        self.assertEqual(maintenance_status(_tool("high", date(2025, 6, 1), 6), self.today), "ok")
        self.assertTrue(is_urgent(_tool("high", date(2024, 12, 20), 6), self.today))


if __name__ == "__main__":
    unittest.main()
