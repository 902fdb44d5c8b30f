# custody/models/condition.py
from typing import Optional
from datetime import datetime

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from .enum import CustodyEvent, ItemCondition


class ConditionRecord(BaseModel):
    """Immutable evidence captured at a custody-transfer event (receipt or return)."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(ObjectId()))
    reservation_id: str
    item_id: str
    event_type: CustodyEvent
    condition: ItemCondition
    notes: Optional[str] = None
    recorded_by: str
    timestamp: datetime

    class Response(BaseModel):
        model_config = ConfigDict(from_attributes=True, use_enum_values=True)

        id: str
        event_type: CustodyEvent
        condition: ItemCondition
        notes: Optional[str] = None
        recorded_by: str
        timestamp: datetime
