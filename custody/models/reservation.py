# custody/models/reservation.py
from typing import List, Optional
from datetime import date, datetime, timezone

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from .asset import Asset
from .condition import ConditionRecord
from .enum import ItemCondition, ReservationStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Reservation(BaseModel):
    """A time-boxed claim on one asset, expressed in calendar days."""
    id: str = Field(default_factory=lambda: str(ObjectId()))
    item_id: str
    requester_id: str
    start_date: date
    end_date: date
    return_date: date
    status: ReservationStatus = ReservationStatus.PENDING
    notes: Optional[str] = None

    # Keputusan approver (approve / reject / cancel)
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None

    # Receipt (pickup) - set once
    checkout_date: Optional[datetime] = None
    item_condition_on_receive: Optional[ItemCondition] = None
    damage_notes: Optional[str] = None

    # Return - set once
    returned_at: Optional[datetime] = None
    item_condition_on_return: Optional[ItemCondition] = None
    return_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_checked_out(self) -> bool:
        return self.checkout_date is not None

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        item_id: str = Field(...)
        start_date: date = Field(...)
        end_date: date = Field(...)
        return_date: Optional[date] = Field(None, description="Defaults to end_date")
        notes: Optional[str] = Field(None, max_length=1000)

    class ConditionReport(BaseModel):
        """Body for receipt and return confirmation."""
        condition: ItemCondition
        notes: Optional[str] = Field(None, max_length=2000)

    class Response(BaseModel):
        model_config = ConfigDict(from_attributes=True, use_enum_values=True)

        id: str
        item_id: str
        requester_id: str
        start_date: date
        end_date: date
        return_date: date
        status: ReservationStatus
        notes: Optional[str] = None
        decided_by: Optional[str] = None
        decided_at: Optional[datetime] = None
        checkout_date: Optional[datetime] = None
        item_condition_on_receive: Optional[ItemCondition] = None
        damage_notes: Optional[str] = None
        returned_at: Optional[datetime] = None
        item_condition_on_return: Optional[ItemCondition] = None
        return_notes: Optional[str] = None
        condition_history: List[ConditionRecord.Response] = Field(default_factory=list)
        created_at: datetime
        updated_at: datetime


class CustodyTransfer(BaseModel):
    """Response for receipt/return: both records touched by the transfer."""
    reservation: Reservation.Response
    asset: Asset.Response


class BlockedWindow(BaseModel):
    reservation_id: str
    start_date: date
    end_date: date


class Availability(BaseModel):
    item_id: str
    start_date: date
    end_date: date
    available: bool
    blocked_by: List[BlockedWindow] = Field(default_factory=list)
