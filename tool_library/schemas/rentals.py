from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class RentalRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    memberID: int
    toolID: int
    startDate: date
    endDate: date


class DirectBookingDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    memberID: int
    toolID: int
    startDate: date
    endDate: date
    price: Optional[Decimal] = None


class ApprovalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    finalPrice: Decimal


class RejectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = None


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    comment: Optional[str] = None
