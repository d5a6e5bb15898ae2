from __future__ import annotations

import logging
import math
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tool_library.db.store import (
    list_rentals_by_tool,
    lock_tool,
    log_audit,
    require_member,
    require_rental,
    save_rental,
    save_tool,
    tool_guard,
    unit_of_work,
)
from tool_library.models.library_models import Rental
from tool_library.services.availability_service import find_conflicts
from tool_library.services.errors import (
    ConflictError,
    LibraryError,
    MaintenanceBlockedError,
    RentalValidationError,
    StateTransitionError,
)
from tool_library.services.ledger_service import charge
from tool_library.services.maintenance_service import append_condition, is_blocked
from tool_library.services.rental_rules import compute_rental_price, validate_price, validate_rental_window


RENTAL_STATES = {"pending", "active", "rejected", "completed"}
STATE_TRANSITIONS = {
    "pending": {"active", "rejected"},
    "active": {"completed"},
    "rejected": set(),
    "completed": set(),
}
UNBOOKABLE_TOOL_STATES = {"maintenance", "unavailable"}
RENTAL_LOGGER = logging.getLogger("tool_library.rentals")


def _transition_state(rental: Rental, target_state: str) -> None:
    current = rental.Status
    if current not in STATE_TRANSITIONS or target_state not in STATE_TRANSITIONS[current]:
        raise StateTransitionError(f"Invalid state transition: {current} -> {target_state}")
    rental.Status = target_state
    rental.UpdatedDate = datetime.now()


def create_rental(
    db: Session,
    member_id: int,
    tool_id: int,
    start_date: date,
    end_date: date,
    manual_price=None,
    direct: bool = False,
    operator_user_id: int | None = None,
    today: date | None = None,
) -> Rental:
    """Admit a booking for one tool.

    Member requests land in ``pending`` with no charge. Direct bookings go
    straight to ``active``, mark the tool rented and post the rental charge.
    The availability check and the write happen under the tool's lock so two
    overlapping bookings can never both be admitted.
    """
    validate_rental_window(start_date, end_date)
    price = validate_price(manual_price, "price") if manual_price is not None else None
    current = today or date.today()

    try:
        with tool_guard(tool_id), unit_of_work(db):
            member = require_member(db, member_id)
            if member.MembershipExpiry and member.MembershipExpiry < current:
                raise RentalValidationError("Membership has expired.")

            tool = lock_tool(db, tool_id)
            if tool.Status in UNBOOKABLE_TOOL_STATES:
                raise ConflictError(f"Tool is {tool.Status} and cannot be booked.")
            if direct and tool.Status != "available":
                # A rented tool has exactly one active rental.
                raise ConflictError(f"Tool is {tool.Status}; a direct booking needs an available tool.")
            if is_blocked(tool, current):
                raise MaintenanceBlockedError(
                    "Tool requires maintenance before rental.",
                    importance=tool.MaintenanceImportance,
                )
            if find_conflicts(tool.ToolID, start_date, end_date, list_rentals_by_tool(db, tool.ToolID)):
                raise ConflictError("Tool is already reserved for this period.")

            if price is None:
                price = compute_rental_price(tool.WeeklyPrice, start_date, end_date)

            rental = Rental(
                MemberID=member.MemberID,
                ToolID=tool.ToolID,
                StartDate=start_date,
                EndDate=end_date,
                Status="active" if direct else "pending",
                TotalPrice=price,
                ApprovedBy=operator_user_id if direct else None,
                CreatedDate=datetime.now(),
            )
            save_rental(db, rental)
            db.flush()

            if direct:
                tool.Status = "rented"
                save_tool(db, tool)
                charge(
                    db,
                    member.MemberID,
                    price,
                    "rental",
                    description=f"Rental: {tool.Title}",
                    rental_id=rental.RentalID,
                    today=current,
                )

            log_audit(
                db,
                "Rental",
                rental.RentalID,
                "created",
                f"Created as {rental.Status} ({start_date} -> {end_date}, {price})",
                user_id=operator_user_id or member.MemberID,
            )
    except LibraryError as exc:
        RENTAL_LOGGER.warning("Booking refused for tool %s: %s", tool_id, exc.message)
        raise

    RENTAL_LOGGER.info("Rental %s created for tool %s as %s", rental.RentalID, tool_id, rental.Status)
    return rental


def request_rental(db: Session, member_id: int, tool_id: int, start_date: date, end_date: date, today: date | None = None) -> Rental:
    return create_rental(db, member_id, tool_id, start_date, end_date, today=today)


def book_direct(
    db: Session,
    member_id: int,
    tool_id: int,
    start_date: date,
    end_date: date,
    price=None,
    operator_user_id: int | None = None,
    today: date | None = None,
) -> Rental:
    return create_rental(
        db,
        member_id,
        tool_id,
        start_date,
        end_date,
        manual_price=price,
        direct=True,
        operator_user_id=operator_user_id,
        today=today,
    )


def approve_rental(
    db: Session,
    rental_id: int,
    final_price,
    operator_user_id: int | None = None,
    today: date | None = None,
) -> Rental:
    price = validate_price(final_price, "finalPrice")
    rental = require_rental(db, rental_id)

    try:
        with tool_guard(rental.ToolID), unit_of_work(db):
            db.refresh(rental)
            if rental.Status != "pending":
                raise StateTransitionError(f"Invalid state transition: {rental.Status} -> active")
            tool = lock_tool(db, rental.ToolID)
            if tool.Status != "available":
                raise ConflictError(f"Tool is {tool.Status}; the rental cannot be approved.")
            others = find_conflicts(
                tool.ToolID,
                rental.StartDate,
                rental.EndDate,
                list_rentals_by_tool(db, tool.ToolID),
                exclude_rental_id=rental.RentalID,
            )
            if any(other.Status == "active" for other in others):
                raise ConflictError("Tool is already rented for this period.")

            _transition_state(rental, "active")
            rental.TotalPrice = price
            rental.ApprovedBy = operator_user_id
            save_rental(db, rental)
            tool.Status = "rented"
            save_tool(db, tool)
            charge(
                db,
                rental.MemberID,
                price,
                "rental",
                description=f"Rental: {tool.Title}",
                rental_id=rental.RentalID,
                today=today,
            )
            log_audit(db, "Rental", rental.RentalID, "approved", f"Final price {price}", user_id=operator_user_id)
    except LibraryError as exc:
        RENTAL_LOGGER.warning("Approval refused for rental %s: %s", rental_id, exc.message)
        raise

    RENTAL_LOGGER.info("Rental %s approved at %s", rental_id, price)
    return rental


def reject_rental(db: Session, rental_id: int, operator_user_id: int | None = None, reason: str | None = None) -> Rental:
    rental = require_rental(db, rental_id)
    try:
        with tool_guard(rental.ToolID), unit_of_work(db):
            db.refresh(rental)
            _transition_state(rental, "rejected")
            save_rental(db, rental)
            log_audit(db, "Rental", rental.RentalID, "rejected", reason, user_id=operator_user_id)
    except LibraryError as exc:
        RENTAL_LOGGER.warning("Rejection refused for rental %s: %s", rental_id, exc.message)
        raise

    RENTAL_LOGGER.info("Rental %s rejected", rental_id)
    return rental


def complete_rental(
    db: Session,
    rental_id: int,
    return_comment: str | None = None,
    operator_user_id: int | None = None,
    returned_at: datetime | None = None,
) -> Rental:
    """Close an active rental and hand the tool back.

    The charge posted at booking or approval stays untouched; returns never
    refund.
    """
    rental = require_rental(db, rental_id)
    moment = returned_at or datetime.now()
    try:
        with tool_guard(rental.ToolID), unit_of_work(db):
            db.refresh(rental)
            _transition_state(rental, "completed")
            rental.ReturnedAt = moment
            rental.EndDate = moment.date()
            rental.ReturnComment = return_comment
            save_rental(db, rental)

            tool = lock_tool(db, rental.ToolID)
            tool.Status = "available"
            append_condition(tool, tool.Status, return_comment, admin_id=operator_user_id)
            save_tool(db, tool)
            log_audit(db, "Rental", rental.RentalID, "returned", return_comment, user_id=operator_user_id)
    except LibraryError as exc:
        RENTAL_LOGGER.warning("Return refused for rental %s: %s", rental_id, exc.message)
        raise

    RENTAL_LOGGER.info("Rental %s completed", rental_id)
    return rental


def list_pending(db: Session) -> list[Rental]:
    stmt = select(Rental).where(Rental.Status == "pending").order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
    return list(db.execute(stmt).scalars().all())


def list_active(db: Session) -> list[Rental]:
    stmt = select(Rental).where(Rental.Status == "active").order_by(Rental.EndDate, Rental.RentalID)
    return list(db.execute(stmt).scalars().all())


def list_history(
    db: Session,
    status: str | None = None,
    member_id: int | None = None,
    tool_id: int | None = None,
    start_from: date | None = None,
    start_to: date | None = None,
    page: int = 1,
    limit: int = 50,
    today: date | None = None,
) -> dict:
    if status and status not in RENTAL_STATES:
        raise RentalValidationError(f"Unknown rental status: {status}.")
    if not 1 <= limit <= 100:
        raise RentalValidationError("limit must be between 1 and 100.")
    page = max(1, page)

    filters = []
    if status:
        filters.append(Rental.Status == status)
    if member_id:
        filters.append(Rental.MemberID == member_id)
    if tool_id:
        filters.append(Rental.ToolID == tool_id)
    if start_from:
        filters.append(Rental.StartDate >= start_from)
    if start_to:
        filters.append(Rental.StartDate <= start_to)

    total = db.execute(select(func.count(Rental.RentalID)).where(*filters)).scalar() or 0
    rows = db.execute(
        select(Rental)
        .where(*filters)
        .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return {
        "data": [serialize_rental(rental, today) for rental in rows],
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
    }


def is_overdue(rental: Rental, today: date | None = None) -> bool:
    if rental.Status != "active":
        return False
    return rental.EndDate < (today or date.today())


def serialize_rental(rental: Rental, today: date | None = None) -> dict:
    return {
        "rentalID": rental.RentalID,
        "memberID": rental.MemberID,
        "toolID": rental.ToolID,
        "startDate": rental.StartDate,
        "endDate": rental.EndDate,
        "status": rental.Status,
        "totalPrice": rental.TotalPrice,
        "returnComment": rental.ReturnComment,
        "returnedAt": rental.ReturnedAt,
        "approvedBy": rental.ApprovedBy,
        "isOverdue": is_overdue(rental, today),
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
        "tool": {
            "toolID": rental.Tool.ToolID,
            "title": rental.Tool.Title,
            "weeklyPrice": rental.Tool.WeeklyPrice,
        } if rental.Tool else None,
        "member": {
            "memberID": rental.Member.MemberID,
            "name": rental.Member.Name,
        } if rental.Member else None,
    }
