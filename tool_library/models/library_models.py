from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from tool_library.db.base import Base


class Tool(Base):
    __tablename__ = "Tools"

    ToolID = Column(Integer, primary_key=True)
    Title = Column(String(255), nullable=False)
    Description = Column(String(1000))
    WeeklyPrice = Column(Numeric(10, 2), nullable=False, default=0)
    Status = Column(String(20), nullable=False, default="available")
    MaintenanceImportance = Column(String(10), nullable=False, default="low")
    LastMaintenanceDate = Column(Date)
    MaintenanceInterval = Column(Integer)
    Version = Column(Integer, nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Conditions = relationship(
        "ToolCondition",
        back_populates="Tool",
        order_by="ToolCondition.ConditionID",
    )
    Rentals = relationship("Rental", back_populates="Tool")

    __mapper_args__ = {"version_id_col": Version}


class ToolCondition(Base):
    __tablename__ = "ToolConditions"

    ConditionID = Column(Integer, primary_key=True)
    ToolID = Column(Integer, ForeignKey("Tools.ToolID"), nullable=False)
    StatusAtTime = Column(String(20), nullable=False)
    Comment = Column(String(1000))
    Cost = Column(Numeric(10, 2))
    AdminID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())

    Tool = relationship("Tool", back_populates="Conditions")


class Member(Base):
    __tablename__ = "Members"

    MemberID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255))
    Role = Column(String(20), nullable=False, default="member")
    MembershipExpiry = Column(Date)
    TotalDebt = Column(Numeric(10, 2), nullable=False, default=0)
    Version = Column(Integer, nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Member")
    Transactions = relationship(
        "LedgerTransaction",
        back_populates="Member",
        order_by="LedgerTransaction.TransactionID",
    )

    __mapper_args__ = {"version_id_col": Version}


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(Integer, primary_key=True)
    MemberID = Column(Integer, ForeignKey("Members.MemberID"), nullable=False)
    ToolID = Column(Integer, ForeignKey("Tools.ToolID"), nullable=False)
    StartDate = Column(Date, nullable=False)
    EndDate = Column(Date, nullable=False)
    Status = Column(String(20), nullable=False, default="pending")
    TotalPrice = Column(Numeric(10, 2))
    ReturnComment = Column(String(1000))
    ReturnedAt = Column(DateTime)
    ApprovedBy = Column(Integer)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Tool = relationship("Tool", back_populates="Rentals")
    Member = relationship("Member", back_populates="Rentals")
    Transactions = relationship("LedgerTransaction", back_populates="Rental")


class LedgerTransaction(Base):
    __tablename__ = "Transactions"

    TransactionID = Column(Integer, primary_key=True)
    MemberID = Column(Integer, ForeignKey("Members.MemberID"), nullable=False)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"))
    Amount = Column(Numeric(10, 2), nullable=False)
    Type = Column(String(20), nullable=False)
    Method = Column(String(10))
    Status = Column(String(10))
    Description = Column(String(500))
    TransactionDate = Column(Date, nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())

    Member = relationship("Member", back_populates="Transactions")
    Rental = relationship("Rental", back_populates="Transactions")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
