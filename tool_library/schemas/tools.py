from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class MaintenanceRecordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    comment: Optional[str] = None
    cost: Optional[Decimal] = None
    performedOn: Optional[date] = None
