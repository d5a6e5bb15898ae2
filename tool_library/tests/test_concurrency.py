import tempfile
import threading
import unittest
from datetime import date
from decimal import Decimal
from pathlib import Path

from sqlalchemy import func, select

from tool_library.tests.fixtures import FRIDAY, NEXT_FRIDAY, add_member, add_tool, build_session_factory
from tool_library.db.store import unit_of_work
from tool_library.models.library_models import LedgerTransaction, Member, Rental, Tool
from tool_library.services.errors import ConflictError
from tool_library.services.ledger_service import post_charge, reconcile_member
from tool_library.services.rental_service import approve_rental, book_direct, request_rental


class ConcurrentBookingTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        db_path = Path(self.tmp.name) / "library.db"
        self.engine, self.session_factory = build_session_factory(f"sqlite+pysqlite:///{db_path}")
        with self.session_factory() as db:
            self.tool_id = add_tool(db).ToolID
            self.member_ids = [add_member(db, "Alice").MemberID, add_member(db, "Bruno").MemberID]

    def tearDown(self):
        self.engine.dispose()
        self.tmp.cleanup()

    def test_simultaneous_direct_bookings_admit_exactly_one(self):
        barrier = threading.Barrier(2)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker(member_id):
            with self.session_factory() as db:
                barrier.wait()
                try:
                    book_direct(db, member_id, self.tool_id, FRIDAY, NEXT_FRIDAY)
                    result = "booked"
                except ConflictError:
                    result = "conflict"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(member_id,)) for member_id in self.member_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(sorted(outcomes), ["booked", "conflict"])
        with self.session_factory() as db:
            self.assertEqual(db.execute(select(func.count()).select_from(Rental)).scalar(), 1)
            self.assertEqual(db.execute(select(func.count()).select_from(LedgerTransaction)).scalar(), 1)
            self.assertEqual(db.get(Tool, self.tool_id).Status, "rented")

    def test_stale_tool_write_becomes_conflict(self):
        first = self.session_factory()
        second = self.session_factory()
        try:
            stale = second.get(Tool, self.tool_id)
            fresh = first.get(Tool, self.tool_id)

            fresh.Status = "maintenance"
            first.commit()

            stale.WeeklyPrice = Decimal("80.00")
            with self.assertRaises(ConflictError):
                with unit_of_work(second):
                    second.add(stale)

            second.expire_all()
            reloaded = second.get(Tool, self.tool_id)
            self.assertEqual(reloaded.Status, "maintenance")
            self.assertEqual(reloaded.WeeklyPrice, Decimal("70.00"))
        finally:
            first.close()
            second.close()

    def _race(self, calls):
        barrier = threading.Barrier(len(calls))
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker(call):
            with self.session_factory() as db:
                barrier.wait()
                try:
                    call(db)
                    result = "ok"
                except ConflictError:
                    result = "conflict"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return sorted(outcomes)

    def test_simultaneous_approvals_activate_exactly_one(self):
        with self.session_factory() as db:
            first = request_rental(db, self.member_ids[0], self.tool_id, FRIDAY, NEXT_FRIDAY).RentalID
            second = request_rental(db, self.member_ids[1], self.tool_id, date(2025, 1, 17), date(2025, 1, 24)).RentalID

        outcomes = self._race([
            lambda db: approve_rental(db, first, "70.00"),
            lambda db: approve_rental(db, second, "70.00"),
        ])

        self.assertEqual(outcomes, ["conflict", "ok"])
        with self.session_factory() as db:
            statuses = sorted(db.get(Rental, rental_id).Status for rental_id in (first, second))
            self.assertEqual(statuses, ["active", "pending"])
            self.assertEqual(db.execute(select(func.count()).select_from(LedgerTransaction)).scalar(), 1)
            self.assertEqual(db.get(Tool, self.tool_id).Status, "rented")

    def test_parallel_bookings_for_one_member_keep_debt_in_sync(self):
        with self.session_factory() as db:
            other_tool_id = add_tool(db, "Angle grinder").ToolID
        member_id = self.member_ids[0]

        outcomes = self._race([
            lambda db: book_direct(db, member_id, self.tool_id, FRIDAY, NEXT_FRIDAY),
            lambda db: book_direct(db, member_id, other_tool_id, FRIDAY, NEXT_FRIDAY),
        ])

        self.assertTrue(set(outcomes) <= {"ok", "conflict"})
        with self.session_factory() as db:
            result = reconcile_member(db, member_id)
            self.assertTrue(result["inSync"])
            self.assertEqual(result["cachedDebt"], Decimal("70.00") * outcomes.count("ok"))

    def test_charge_starts_from_committed_debt(self):
        first = self.session_factory()
        second = self.session_factory()
        member_id = self.member_ids[0]
        try:
            cached = second.get(Member, member_id)
            self.assertEqual(cached.TotalDebt, Decimal("0.00"))

            post_charge(first, member_id, "70.00", "repairCost")
            post_charge(second, member_id, "20.00", "membershipFee")

            self.assertEqual(cached.TotalDebt, Decimal("90.00"))
            self.assertTrue(reconcile_member(second, member_id)["inSync"])
        finally:
            first.close()
            second.close()

    def test_stale_member_write_becomes_conflict(self):
        first = self.session_factory()
        second = self.session_factory()
        member_id = self.member_ids[0]
        try:
            stale = second.get(Member, member_id)
            post_charge(first, member_id, "70.00", "repairCost")

            stale.TotalDebt = Decimal("5.00")
            with self.assertRaises(ConflictError):
                with unit_of_work(second):
                    second.add(stale)

            second.expire_all()
            self.assertEqual(second.get(Member, member_id).TotalDebt, Decimal("70.00"))
        finally:
            first.close()
            second.close()


if __name__ == "__main__":
    unittest.main()
