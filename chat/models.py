from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field


class Message(BaseModel):
    id: UUID
    booking_id: UUID
    sender_id: UUID
    seq: int
    content: str
    media_url: Optional[str] = None
    is_read: bool = False
    is_flagged: bool = False
    flag_reason: Optional[str] = None
    risk_score: int = 0
    policy_version: Optional[str] = None
    is_system_message: bool = False
    created_at: datetime


class MessageCreate(BaseModel):
    content: str = ""
    media_url: Optional[str] = None


class SystemMessageCreate(BaseModel):
    content: str = Field(min_length=1)


class MarkRead(BaseModel):
    message_ids: Optional[List[UUID]] = None


class FlagRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class ChatStatistics(BaseModel):
    window: str
    since: datetime
    total_messages: int
    flagged_messages: int
    flagged_percentage: float


STATISTICS_WINDOWS = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


class WebSocketMessage(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
