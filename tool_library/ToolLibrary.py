import logging
import os
from datetime import date

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from tool_library.db.deps import get_library_db
from tool_library.db.store import list_rentals_by_tool, require_member, require_rental, require_tool, unit_of_work
from tool_library.schemas.finance import ChargeRequest, PaymentRequest, RenewMembershipRequest, RepairCostRequest
from tool_library.schemas.rentals import ApprovalRequest, DirectBookingDto, RejectionRequest, RentalRequestDto, ReturnRequest
from tool_library.schemas.tools import MaintenanceRecordRequest
from tool_library.services.availability_service import describe_availability
from tool_library.services.errors import LibraryError, RentalValidationError
from tool_library.services.ledger_service import (
    list_transactions,
    post_charge,
    reconcile_member,
    record_payment,
    record_repair_cost,
    renew_membership,
    selected_total,
    serialize_balance,
    serialize_transaction,
)
from tool_library.services.maintenance_service import (
    is_blocked,
    record_maintenance,
    serialize_condition,
    serialize_maintenance,
)
from tool_library.services.rental_service import (
    approve_rental,
    book_direct,
    complete_rental,
    list_active,
    list_history,
    list_pending,
    reject_rental,
    request_rental,
    serialize_rental,
)

logging.basicConfig(level=(os.environ.get("LOG_LEVEL") or "INFO").upper())
API_LOGGER = logging.getLogger("tool_library.api")

app = FastAPI()


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)

ROLES = {"admin", "member"}


def _http_error(exc: LibraryError) -> HTTPException:
    API_LOGGER.info("Request refused (%s): %s", exc.kind, exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _get_caller(user_id: int | None, role: str | None) -> dict | None:
    if user_id is None or user_id <= 0:
        return None
    normalized_role = (role or "member").strip().lower()
    if normalized_role not in ROLES:
        return None
    return {"userID": user_id, "role": normalized_role}


def _require_caller_or_401(user_id: int | None, role: str | None) -> dict:
    caller = _get_caller(user_id, role)
    if not caller:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return caller


def _require_admin_or_403(user_id: int | None, role: str | None) -> dict:
    caller = _require_caller_or_401(user_id, role)
    if caller["role"] != "admin":
        raise HTTPException(status_code=403, detail="Admin role required.")
    return caller


def _require_self_or_admin_or_403(caller: dict, member_id: int) -> None:
    if caller["role"] != "admin" and caller["userID"] != member_id:
        raise HTTPException(status_code=403, detail="Members can only act on their own account.")


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_library_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/rentals")
def create_rental_request(
    payload: RentalRequestDto,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_caller_or_401(x_user_id, x_user_role)
    _require_self_or_admin_or_403(caller, payload.memberID)
    try:
        rental = request_rental(db, payload.memberID, payload.toolID, payload.startDate, payload.endDate)
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_rental(rental)


@app.post("/api/rentals/direct")
def create_direct_booking(
    payload: DirectBookingDto,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    try:
        rental = book_direct(
            db,
            payload.memberID,
            payload.toolID,
            payload.startDate,
            payload.endDate,
            price=payload.price,
            operator_user_id=caller["userID"],
        )
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_rental(rental)


@app.get("/api/rentals/pending")
def get_pending_rentals(
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    _require_admin_or_403(x_user_id, x_user_role)
    return [serialize_rental(rental) for rental in list_pending(db)]


@app.get("/api/rentals/active")
def get_active_rentals(
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    _require_admin_or_403(x_user_id, x_user_role)
    return [serialize_rental(rental) for rental in list_active(db)]


@app.get("/api/rentals/history")
def get_rental_history(
    status: str | None = Query(None),
    member_id: int | None = Query(None, alias="memberID"),
    tool_id: int | None = Query(None, alias="toolID"),
    start_from: date | None = Query(None, alias="startDateFrom"),
    start_to: date | None = Query(None, alias="startDateTo"),
    page: int = Query(1),
    limit: int = Query(50),
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_caller_or_401(x_user_id, x_user_role)
    if caller["role"] != "admin":
        member_id = caller["userID"]
    try:
        return list_history(
            db,
            status=status,
            member_id=member_id,
            tool_id=tool_id,
            start_from=start_from,
            start_to=start_to,
            page=page,
            limit=limit,
        )
    except LibraryError as exc:
        raise _http_error(exc) from exc


@app.get("/api/rentals/{rental_id}")
def get_rental(
    rental_id: int,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_caller_or_401(x_user_id, x_user_role)
    try:
        rental = require_rental(db, rental_id)
    except LibraryError as exc:
        raise _http_error(exc) from exc
    _require_self_or_admin_or_403(caller, rental.MemberID)
    return serialize_rental(rental)


@app.post("/api/rentals/{rental_id}/approve")
def approve_rental_request(
    rental_id: int,
    payload: ApprovalRequest,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    try:
        rental = approve_rental(db, rental_id, payload.finalPrice, operator_user_id=caller["userID"])
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_rental(rental)


@app.post("/api/rentals/{rental_id}/reject")
def reject_rental_request(
    rental_id: int,
    payload: RejectionRequest | None = None,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    reason = payload.reason if payload else None
    try:
        rental = reject_rental(db, rental_id, operator_user_id=caller["userID"], reason=reason)
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_rental(rental)


@app.post("/api/rentals/{rental_id}/return")
def return_rental(
    rental_id: int,
    payload: ReturnRequest | None = None,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_caller_or_401(x_user_id, x_user_role)
    try:
        rental = require_rental(db, rental_id)
        _require_self_or_admin_or_403(caller, rental.MemberID)
        rental = complete_rental(
            db,
            rental_id,
            return_comment=payload.comment if payload else None,
            operator_user_id=caller["userID"],
        )
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_rental(rental)


@app.get("/api/tools/{tool_id}/availability")
def get_tool_availability(
    tool_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_library_db),
):
    try:
        if end_date <= start_date:
            raise RentalValidationError("endDate must be after startDate.")
        tool = require_tool(db, tool_id)
    except LibraryError as exc:
        raise _http_error(exc) from exc
    payload = describe_availability(tool.ToolID, start_date, end_date, list_rentals_by_tool(db, tool.ToolID))
    payload["maintenanceBlocked"] = is_blocked(tool)
    payload["available"] = payload["available"] and not payload["maintenanceBlocked"]
    return payload


@app.get("/api/tools/{tool_id}/maintenance")
def get_tool_maintenance(tool_id: int, db: Session = Depends(get_library_db)):
    try:
        tool = require_tool(db, tool_id)
    except LibraryError as exc:
        raise _http_error(exc) from exc
    payload = serialize_maintenance(tool)
    payload["history"] = [serialize_condition(condition) for condition in tool.Conditions]
    return payload


@app.post("/api/tools/{tool_id}/maintenance")
def create_maintenance_record(
    tool_id: int,
    payload: MaintenanceRecordRequest,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    try:
        with unit_of_work(db):
            tool = require_tool(db, tool_id)
            condition = record_maintenance(
                db,
                tool,
                comment=payload.comment,
                cost=payload.cost,
                admin_id=caller["userID"],
                performed_on=payload.performedOn,
            )
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return {"condition": serialize_condition(condition), "maintenance": serialize_maintenance(tool)}


@app.post("/api/payments")
def create_payment(
    payload: PaymentRequest,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    try:
        transaction = record_payment(
            db,
            payload.memberID,
            payload.amount,
            payload.method,
            payload.selectedTransactionIDs,
            operator_user_id=caller["userID"],
        )
        member = require_member(db, payload.memberID)
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return {
        "transaction": serialize_transaction(transaction),
        "selectedTotal": selected_total(db, payload.selectedTransactionIDs),
        "balance": serialize_balance(member),
    }


@app.get("/api/transactions")
def get_transactions(
    member_id: int | None = Query(None, alias="memberID"),
    tx_type: str | None = Query(None, alias="type"),
    status: str | None = Query(None),
    date_from: date | None = Query(None, alias="dateFrom"),
    date_to: date | None = Query(None, alias="dateTo"),
    page: int = Query(1),
    limit: int = Query(50),
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_caller_or_401(x_user_id, x_user_role)
    if caller["role"] != "admin":
        member_id = caller["userID"]
    try:
        return list_transactions(
            db,
            member_id=member_id,
            tx_type=tx_type,
            status=status,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
        )
    except LibraryError as exc:
        raise _http_error(exc) from exc


@app.post("/api/transactions")
def create_charge(
    payload: ChargeRequest,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    try:
        transaction = post_charge(
            db,
            payload.memberID,
            payload.amount,
            payload.type,
            payload.description,
            operator_user_id=caller["userID"],
        )
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_transaction(transaction)


@app.get("/api/members/{member_id}/balance")
def get_member_balance(
    member_id: int,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_caller_or_401(x_user_id, x_user_role)
    _require_self_or_admin_or_403(caller, member_id)
    try:
        member = require_member(db, member_id)
        payload = serialize_balance(member)
        payload["reconciliation"] = reconcile_member(db, member_id)
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return payload


@app.post("/api/members/{member_id}/renew")
def renew_member(
    member_id: int,
    payload: RenewMembershipRequest,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    try:
        member = renew_membership(
            db,
            member_id,
            payload.amount,
            payload.paymentMethod,
            payload.durationMonths,
            operator_user_id=caller["userID"],
        )
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_balance(member)


@app.post("/api/members/{member_id}/repairs")
def charge_repair(
    member_id: int,
    payload: RepairCostRequest,
    db: Session = Depends(get_library_db),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
):
    caller = _require_admin_or_403(x_user_id, x_user_role)
    try:
        transaction = record_repair_cost(
            db,
            member_id,
            payload.toolID,
            payload.amount,
            payload.comment,
            operator_user_id=caller["userID"],
        )
    except LibraryError as exc:
        raise _http_error(exc) from exc
    return serialize_transaction(transaction)
