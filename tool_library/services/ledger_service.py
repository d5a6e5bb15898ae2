from __future__ import annotations

import logging
import math
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tool_library.db.store import (
    append_transaction,
    lock_member,
    log_audit,
    require_member,
    require_tool,
    save_member,
    save_tool,
    unit_of_work,
)
from tool_library.models.library_models import LedgerTransaction, Member
from tool_library.services.errors import NotFoundError, RentalValidationError
from tool_library.services.maintenance_service import add_months, append_condition
from tool_library.services.rental_rules import to_money, validate_amount, validate_price


CHARGE_TYPES = {"rental", "membershipFee", "repairCost"}
TRANSACTION_TYPES = CHARGE_TYPES | {"payment"}
PAYMENT_METHODS = {"card", "check", "cash", "system"}
LEDGER_LOGGER = logging.getLogger("tool_library.ledger")


def _normalize_method(raw: str | None) -> str:
    method = (raw or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise RentalValidationError(f"Payment method must be one of: {', '.join(sorted(PAYMENT_METHODS))}.")
    return method


def charge(
    db: Session,
    member_id: int,
    amount,
    tx_type: str,
    description: str | None = None,
    rental_id: int | None = None,
    method: str = "system",
    today: date | None = None,
) -> LedgerTransaction:
    """Append a charge and raise the member's cached debt by the same amount.

    Runs inside the caller's unit of work and does not commit. The ledger
    does not deduplicate; posting the same charge twice is the caller's bug.
    """
    if tx_type not in CHARGE_TYPES:
        raise RentalValidationError(f"Unsupported charge type: {tx_type}.")
    value = validate_price(amount, "amount")
    member = lock_member(db, member_id)

    transaction = LedgerTransaction(
        MemberID=member.MemberID,
        RentalID=rental_id,
        Amount=value,
        Type=tx_type,
        Method=_normalize_method(method),
        Status="pending",
        Description=description,
        TransactionDate=today or date.today(),
        CreatedAt=datetime.now(),
    )
    append_transaction(db, transaction)
    member.TotalDebt = to_money(member.TotalDebt) + value
    save_member(db, member)
    LEDGER_LOGGER.info("Charged member %s %s (%s)", member.MemberID, value, tx_type)
    return transaction


def apply_payment(
    db: Session,
    member_id: int,
    amount,
    method: str,
    selected_transaction_ids: Iterable[int] | None = None,
    description: str | None = None,
    today: date | None = None,
) -> LedgerTransaction:
    value = validate_amount(amount)
    payment_method = _normalize_method(method)
    member = lock_member(db, member_id)

    selected = _load_selected_charges(db, member, selected_transaction_ids or [])
    for item in selected:
        # Bookkeeping mark only; the entered amount alone drives the balance.
        item.Status = "paid"

    if not description:
        description = f"Payment ({payment_method})"
        if selected:
            description += " for " + ", ".join(f"#{item.TransactionID}" for item in selected)

    transaction = LedgerTransaction(
        MemberID=member.MemberID,
        Amount=-value,
        Type="payment",
        Method=payment_method,
        Status="paid",
        Description=description,
        TransactionDate=today or date.today(),
        CreatedAt=datetime.now(),
    )
    append_transaction(db, transaction)
    member.TotalDebt = max(Decimal("0.00"), to_money(member.TotalDebt) - value)
    save_member(db, member)
    LEDGER_LOGGER.info("Payment of %s recorded for member %s", value, member.MemberID)
    return transaction


def _load_selected_charges(db: Session, member: Member, transaction_ids: Iterable[int]) -> list[LedgerTransaction]:
    selected: list[LedgerTransaction] = []
    seen: set[int] = set()
    for raw_id in transaction_ids:
        transaction_id = int(raw_id)
        if transaction_id in seen:
            continue
        seen.add(transaction_id)
        item = db.get(LedgerTransaction, transaction_id)
        if not item:
            raise NotFoundError(f"Transaction {transaction_id} not found.")
        if item.MemberID != member.MemberID:
            raise RentalValidationError(f"Transaction {transaction_id} does not belong to member {member.MemberID}.")
        if item.Type not in CHARGE_TYPES:
            raise RentalValidationError(f"Transaction {transaction_id} is not a charge.")
        selected.append(item)
    return selected


def record_payment(
    db: Session,
    member_id: int,
    amount,
    method: str,
    selected_transaction_ids: Iterable[int] | None = None,
    operator_user_id: int | None = None,
) -> LedgerTransaction:
    with unit_of_work(db):
        transaction = apply_payment(db, member_id, amount, method, selected_transaction_ids)
        db.flush()
        log_audit(
            db,
            "Transaction",
            transaction.TransactionID,
            "Payment",
            f"Member {member_id} paid {-transaction.Amount}",
            user_id=operator_user_id,
        )
    return transaction


def post_charge(
    db: Session,
    member_id: int,
    amount,
    tx_type: str,
    description: str | None = None,
    operator_user_id: int | None = None,
) -> LedgerTransaction:
    if tx_type == "rental":
        raise RentalValidationError("Rental charges are posted by the rental workflow.")
    with unit_of_work(db):
        transaction = charge(db, member_id, amount, tx_type, description)
        db.flush()
        log_audit(db, "Transaction", transaction.TransactionID, "Charge", f"{tx_type} {transaction.Amount}", user_id=operator_user_id)
    return transaction


def renew_membership(
    db: Session,
    member_id: int,
    amount,
    method: str,
    duration_months: int = 12,
    operator_user_id: int | None = None,
    today: date | None = None,
) -> Member:
    if not 1 <= int(duration_months) <= 24:
        raise RentalValidationError("durationMonths must be between 1 and 24.")
    current = today or date.today()
    with unit_of_work(db):
        member = lock_member(db, member_id)
        previous_expiry = member.MembershipExpiry
        new_expiry = add_months(previous_expiry or current, int(duration_months))
        # charge() reloads the member row, so the expiry is set afterwards.
        charge(
            db,
            member.MemberID,
            amount,
            "membershipFee",
            description=f"Membership fee - {new_expiry.year}",
            method=method,
            today=current,
        )
        member.MembershipExpiry = new_expiry
        save_member(db, member)
        log_audit(
            db,
            "Member",
            member.MemberID,
            "RenewMembership",
            f"{previous_expiry} -> {new_expiry}",
            user_id=operator_user_id,
        )
    LEDGER_LOGGER.info("Membership of member %s renewed until %s", member_id, new_expiry)
    return member


def record_repair_cost(
    db: Session,
    member_id: int,
    tool_id: int,
    amount,
    comment: str | None = None,
    operator_user_id: int | None = None,
) -> LedgerTransaction:
    with unit_of_work(db):
        tool = require_tool(db, tool_id)
        transaction = charge(
            db,
            member_id,
            amount,
            "repairCost",
            description=f"Repair: {tool.Title}" + (f" - {comment}" if comment else ""),
        )
        append_condition(tool, tool.Status, comment, transaction.Amount, operator_user_id)
        save_tool(db, tool)
        db.flush()
        log_audit(db, "Tool", tool.ToolID, "RepairCost", f"Member {member_id} charged {transaction.Amount}", user_id=operator_user_id)
    return transaction


def project_balance(transactions: Iterable[LedgerTransaction]) -> Decimal:
    """Replay a member's ledger in posting order.

    Payments clamp the running balance at zero, exactly like the cached
    TotalDebt update, so the two must always agree.
    """
    balance = Decimal("0.00")
    for item in sorted(transactions, key=lambda tx: tx.TransactionID or 0):
        amount = to_money(item.Amount)
        if item.Type == "payment":
            balance = max(Decimal("0.00"), balance + amount)
        else:
            balance += amount
    return balance


def member_transactions(db: Session, member_id: int) -> list[LedgerTransaction]:
    stmt = (
        select(LedgerTransaction)
        .where(LedgerTransaction.MemberID == member_id)
        .order_by(LedgerTransaction.TransactionID)
    )
    return list(db.execute(stmt).scalars().all())


def reconcile_member(db: Session, member_id: int) -> dict:
    member = require_member(db, member_id)
    ledger_debt = project_balance(member_transactions(db, member_id))
    cached_debt = to_money(member.TotalDebt)
    return {
        "memberID": member.MemberID,
        "cachedDebt": cached_debt,
        "ledgerDebt": ledger_debt,
        "inSync": cached_debt == ledger_debt,
    }


def selected_total(db: Session, transaction_ids: Iterable[int]) -> Decimal:
    total = Decimal("0.00")
    for transaction_id in set(int(value) for value in transaction_ids):
        item = db.get(LedgerTransaction, transaction_id)
        if item:
            total += to_money(item.Amount)
    return total


def list_transactions(
    db: Session,
    member_id: int | None = None,
    tx_type: str | None = None,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    if tx_type and tx_type not in TRANSACTION_TYPES:
        raise RentalValidationError(f"Unknown transaction type: {tx_type}.")
    if not 1 <= limit <= 100:
        raise RentalValidationError("limit must be between 1 and 100.")
    page = max(1, page)

    filters = []
    if member_id:
        filters.append(LedgerTransaction.MemberID == member_id)
    if tx_type:
        filters.append(LedgerTransaction.Type == tx_type)
    if status:
        filters.append(LedgerTransaction.Status == status)
    if date_from:
        filters.append(LedgerTransaction.TransactionDate >= date_from)
    if date_to:
        filters.append(LedgerTransaction.TransactionDate <= date_to)

    total = db.execute(select(func.count(LedgerTransaction.TransactionID)).where(*filters)).scalar() or 0
    rows = db.execute(
        select(LedgerTransaction)
        .where(*filters)
        .order_by(LedgerTransaction.TransactionID.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    all_rows = db.execute(select(LedgerTransaction).where(*filters)).scalars().all()

    return {
        "data": [serialize_transaction(item) for item in rows],
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
        "summary": summarize_transactions(all_rows),
    }


def summarize_transactions(transactions: Iterable[LedgerTransaction]) -> dict:
    total_pending = Decimal("0.00")
    total_paid = Decimal("0.00")
    for item in transactions:
        if item.Type not in CHARGE_TYPES:
            continue
        if item.Status == "paid":
            total_paid += to_money(item.Amount)
        else:
            total_pending += to_money(item.Amount)
    return {"totalPending": total_pending, "totalPaid": total_paid}


def serialize_transaction(transaction: LedgerTransaction) -> dict:
    return {
        "transactionID": transaction.TransactionID,
        "memberID": transaction.MemberID,
        "rentalID": transaction.RentalID,
        "amount": transaction.Amount,
        "type": transaction.Type,
        "method": transaction.Method,
        "status": transaction.Status,
        "description": transaction.Description,
        "date": transaction.TransactionDate,
        "createdAt": transaction.CreatedAt,
    }


def serialize_balance(member: Member) -> dict:
    return {
        "memberID": member.MemberID,
        "name": member.Name,
        "totalDebt": to_money(member.TotalDebt),
        "membershipExpiry": member.MembershipExpiry,
    }
