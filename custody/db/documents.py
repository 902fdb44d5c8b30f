# custody/db/documents.py
from typing import Optional
from datetime import date, datetime, timezone

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from custody.models.asset import Asset
from custody.models.condition import ConditionRecord
from custody.models.enum import AssetStatus, CustodyEvent, ItemCondition, ReservationStatus
from custody.models.reservation import Reservation


# BSON tidak punya tipe date, simpan sebagai datetime tengah malam UTC
def day_to_datetime(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def datetime_to_day(value: datetime) -> date:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


class AssetDocument(Document):
    id: str
    name: str
    category: str
    is_equipment: bool = True
    location: Optional[str] = None
    status: AssetStatus = AssetStatus.AVAILABLE
    under_maintenance: bool = False
    out_of_service: bool = False
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    class Settings:
        name = "assets"
        indexes = [
            IndexModel([("name", ASCENDING)], name="asset_name_index"),
            IndexModel([("category", ASCENDING), ("is_equipment", ASCENDING)], name="asset_category_index"),
            IndexModel([("status", ASCENDING)], name="asset_status_index"),
        ]

    @classmethod
    def from_domain(cls, asset: Asset) -> "AssetDocument":
        return cls(**asset.model_dump())

    def to_domain(self) -> Asset:
        return Asset(**self.model_dump(exclude={"revision_id"}))


class ReservationDocument(Document):
    id: str
    item_id: str
    requester_id: str
    start_date: datetime
    end_date: datetime
    return_date: datetime
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
    created_at: datetime
    updated_at: datetime

    class Settings:
        name = "reservations"
        indexes = [
            # Index utama untuk overlap check per item
            IndexModel(
                [("item_id", ASCENDING), ("status", ASCENDING), ("start_date", ASCENDING)],
                name="reservation_item_status_start_index",
            ),
            IndexModel([("requester_id", ASCENDING), ("created_at", DESCENDING)], name="reservation_requester_index"),
            IndexModel([("status", ASCENDING), ("return_date", ASCENDING)], name="reservation_status_return_index"),
        ]

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationDocument":
        data = reservation.model_dump()
        for field in ("start_date", "end_date", "return_date"):
            data[field] = day_to_datetime(data[field])
        return cls(**data)

    def to_domain(self) -> Reservation:
        data = self.model_dump(exclude={"revision_id"})
        for field in ("start_date", "end_date", "return_date"):
            data[field] = datetime_to_day(data[field])
        return Reservation(**data)


class ConditionRecordDocument(Document):
    id: str
    reservation_id: str
    item_id: str
    event_type: CustodyEvent
    condition: ItemCondition
    notes: Optional[str] = None
    recorded_by: str
    timestamp: datetime = Field(...)

    class Settings:
        name = "condition_records"
        indexes = [
            IndexModel([("reservation_id", ASCENDING), ("timestamp", ASCENDING)], name="condition_reservation_index"),
            IndexModel([("item_id", ASCENDING)], name="condition_item_index"),
        ]

    @classmethod
    def from_domain(cls, record: ConditionRecord) -> "ConditionRecordDocument":
        return cls(**record.model_dump())

    def to_domain(self) -> ConditionRecord:
        return ConditionRecord(**self.model_dump(exclude={"revision_id"}))
