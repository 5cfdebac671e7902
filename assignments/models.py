from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from uuid import UUID
from pydantic import BaseModel, Field


class ItemType(str, Enum):
    VERIFICATION = "VERIFICATION"
    BOOKING_MONITORING = "BOOKING_MONITORING"
    FLAGGED_MESSAGE = "FLAGGED_MESSAGE"


class Assignment(BaseModel):
    id: UUID
    employee_id: UUID
    item_id: UUID
    item_type: ItemType
    is_active: bool = True
    assigned_at: datetime
    completed_at: Optional[datetime] = None


class Workload(BaseModel):
    employee_id: UUID
    total: int = 0
    by_type: Dict[ItemType, int] = Field(default_factory=dict)


class AssignRequest(BaseModel):
    item_id: UUID
    item_type: ItemType


class ReassignRequest(BaseModel):
    new_employee_id: UUID
