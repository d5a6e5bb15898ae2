from __future__ import annotations

import calendar
import logging
import os
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from tool_library.db.store import log_audit
from tool_library.models.library_models import Tool, ToolCondition
from tool_library.services.rental_rules import to_money


MAINTENANCE_WARNING_DAYS = int(os.environ.get("MAINTENANCE_WARNING_DAYS") or "14")
MAINTENANCE_LOGGER = logging.getLogger("tool_library.maintenance")


def add_months(value: date, months: int) -> date:
    year = value.year + (value.month - 1 + months) // 12
    month = (value.month - 1 + months) % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    day = min(value.day, last_day)
    return date(year, month, day)


def maintenance_expiry(tool: Tool) -> date | None:
    if not tool.LastMaintenanceDate or not tool.MaintenanceInterval:
        return None
    return add_months(tool.LastMaintenanceDate, int(tool.MaintenanceInterval))


def is_blocked(tool: Tool, today: date | None = None) -> bool:
    """Whether overdue upkeep forbids booking this tool.

    Low-importance tools are never blocked. Medium and high tools are blocked
    once their expiry falls strictly before today, or when no maintenance
    date or interval was ever recorded.
    """
    if (tool.MaintenanceImportance or "low") == "low":
        return False
    expiry = maintenance_expiry(tool)
    if expiry is None:
        return True
    return expiry < (today or date.today())


def is_urgent(tool: Tool, today: date | None = None) -> bool:
    expiry = maintenance_expiry(tool)
    if expiry is None:
        return False
    current = today or date.today()
    return expiry < current + timedelta(days=MAINTENANCE_WARNING_DAYS)


def maintenance_status(tool: Tool, today: date | None = None) -> str:
    if tool.Status == "maintenance":
        return "in_service"
    expiry = maintenance_expiry(tool)
    current = today or date.today()
    if expiry is not None and expiry < current:
        return "expired"
    if is_urgent(tool, current):
        return "due_soon"
    return "ok"


def serialize_maintenance(tool: Tool, today: date | None = None) -> dict:
    current = today or date.today()
    return {
        "toolID": tool.ToolID,
        "importance": tool.MaintenanceImportance,
        "lastMaintenanceDate": tool.LastMaintenanceDate,
        "maintenanceInterval": tool.MaintenanceInterval,
        "expiry": maintenance_expiry(tool),
        "status": maintenance_status(tool, current),
        "blocked": is_blocked(tool, current),
    }


def append_condition(
    tool: Tool,
    status_at_time: str,
    comment: str | None = None,
    cost=None,
    admin_id: int | None = None,
) -> ToolCondition:
    condition = ToolCondition(
        StatusAtTime=status_at_time,
        Comment=comment,
        Cost=to_money(cost) if cost is not None else None,
        AdminID=admin_id,
        CreatedAt=datetime.now(),
    )
    tool.Conditions.append(condition)
    return condition


def record_maintenance(
    db: Session,
    tool: Tool,
    comment: str | None = None,
    cost=None,
    admin_id: int | None = None,
    performed_on: date | None = None,
) -> ToolCondition:
    performed = performed_on or date.today()
    tool.LastMaintenanceDate = performed
    if tool.Status == "maintenance":
        tool.Status = "available"
    tool.UpdatedDate = datetime.now()
    condition = append_condition(tool, tool.Status, comment, cost, admin_id)
    db.add(condition)
    log_audit(db, "Tool", tool.ToolID, "Maintenance", f"Performed on {performed}", user_id=admin_id)
    MAINTENANCE_LOGGER.info("Maintenance recorded for tool %s on %s", tool.ToolID, performed)
    return condition


def serialize_condition(condition: ToolCondition) -> dict:
    return {
        "conditionID": condition.ConditionID,
        "toolID": condition.ToolID,
        "statusAtTime": condition.StatusAtTime,
        "comment": condition.Comment,
        "cost": condition.Cost,
        "adminID": condition.AdminID,
        "createdAt": condition.CreatedAt,
    }
