from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field


class MonitoringAlert(BaseModel):
    id: UUID
    booking_id: UUID
    message_id: UUID
    employee_id: Optional[UUID] = None
    risk_score: int
    description: str
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None
    resolution_notes: Optional[str] = None
    created_at: datetime


class AlertResolve(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)
