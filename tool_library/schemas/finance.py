from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    memberID: int
    amount: Decimal
    method: str
    selectedTransactionIDs: List[int] = []


class ChargeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    memberID: int
    amount: Decimal
    type: Literal["membershipFee", "repairCost"]
    description: Optional[str] = None


class RenewMembershipRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount: Decimal
    paymentMethod: Literal["card", "check", "cash"]
    durationMonths: int = Field(12, ge=1, le=24)


class RepairCostRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    toolID: int
    amount: Decimal
    comment: Optional[str] = None
