from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tool_library.models.library_models import AuditLog, LedgerTransaction, Member, Rental, Tool
from tool_library.services.errors import ConflictError, NotFoundError


_TOOL_LOCKS: dict[int, threading.Lock] = {}
_TOOL_LOCKS_GUARD = threading.Lock()


def get_tool(db: Session, tool_id: int) -> Tool | None:
    return db.get(Tool, tool_id)


def save_tool(db: Session, tool: Tool) -> Tool:
    tool.UpdatedDate = datetime.now()
    db.add(tool)
    return tool


def get_rental(db: Session, rental_id: int) -> Rental | None:
    return db.get(Rental, rental_id)


def save_rental(db: Session, rental: Rental) -> Rental:
    rental.UpdatedDate = datetime.now()
    db.add(rental)
    return rental


def list_rentals_by_tool(db: Session, tool_id: int) -> list[Rental]:
    stmt = (
        select(Rental)
        .where(Rental.ToolID == tool_id)
        .order_by(Rental.StartDate)
        .execution_options(populate_existing=True)
    )
    return list(db.execute(stmt).scalars().all())


def get_member(db: Session, member_id: int) -> Member | None:
    return db.get(Member, member_id)


def save_member(db: Session, member: Member) -> Member:
    member.UpdatedDate = datetime.now()
    db.add(member)
    return member


def append_transaction(db: Session, transaction: LedgerTransaction) -> LedgerTransaction:
    if transaction.TransactionID is not None:
        raise ValueError("Ledger transactions are append-only.")
    db.add(transaction)
    return transaction


def require_tool(db: Session, tool_id: int) -> Tool:
    tool = get_tool(db, tool_id)
    if not tool:
        raise NotFoundError(f"Tool {tool_id} not found.")
    return tool


def require_rental(db: Session, rental_id: int) -> Rental:
    rental = get_rental(db, rental_id)
    if not rental:
        raise NotFoundError(f"Rental {rental_id} not found.")
    return rental


def require_member(db: Session, member_id: int) -> Member:
    member = get_member(db, member_id)
    if not member:
        raise NotFoundError(f"Member {member_id} not found.")
    return member


def lock_tool(db: Session, tool_id: int) -> Tool:
    # Row lock where the backend supports it; SQLite ignores FOR UPDATE.
    tool = db.execute(
        select(Tool)
        .where(Tool.ToolID == tool_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if not tool:
        raise NotFoundError(f"Tool {tool_id} not found.")
    return tool


def lock_member(db: Session, member_id: int) -> Member:
    # Reloads the row so the debt update starts from the committed balance.
    member = db.execute(
        select(Member)
        .where(Member.MemberID == member_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if not member:
        raise NotFoundError(f"Member {member_id} not found.")
    return member


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )


@contextmanager
def tool_guard(tool_id: int):
    with _TOOL_LOCKS_GUARD:
        lock = _TOOL_LOCKS.setdefault(int(tool_id), threading.Lock())
    with lock:
        yield


@contextmanager
def unit_of_work(db: Session):
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError("Record was modified by a concurrent request. Retry the operation.") from exc
    except Exception:
        db.rollback()
        raise
