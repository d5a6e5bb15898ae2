import os
from datetime import date
from decimal import Decimal

os.environ.setdefault("TOOL_LIBRARY_DB_URL", "sqlite+pysqlite:///:memory:")

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tool_library.db.base import Base
from tool_library.models.library_models import Member, Tool


FRIDAY = date(2025, 1, 3)
NEXT_FRIDAY = date(2025, 1, 10)
MONDAY = date(2025, 1, 6)


def build_session_factory(db_url: str = "sqlite+pysqlite:///:memory:"):
    if ":memory:" in db_url:
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    Base.metadata.create_all(engine)
    factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    return engine, factory


def add_tool(
    db: Session,
    title: str = "Hammer drill",
    weekly_price: str = "70.00",
    status: str = "available",
    importance: str = "low",
    last_maintenance: date | None = None,
    interval: int | None = None,
) -> Tool:
    tool = Tool(
        Title=title,
        WeeklyPrice=Decimal(weekly_price),
        Status=status,
        MaintenanceImportance=importance,
        LastMaintenanceDate=last_maintenance,
        MaintenanceInterval=interval,
    )
    db.add(tool)
    db.commit()
    return tool


def add_member(
    db: Session,
    name: str = "Alice",
    role: str = "member",
    expiry: date | None = None,
    debt: str = "0.00",
) -> Member:
    member = Member(
        Name=name,
        Email=f"{name.lower()}@example.org",
        Role=role,
        MembershipExpiry=expiry,
        TotalDebt=Decimal(debt),
    )
    db.add(member)
    db.commit()
    return member
