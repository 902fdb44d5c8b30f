# custody/db/mongo_store.py
from typing import Any, Dict, List, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from custody.db.documents import (
    AssetDocument,
    ConditionRecordDocument,
    ReservationDocument,
    day_to_datetime,
)
from custody.db.store import ReservationStore
from custody.models.asset import Asset
from custody.models.condition import ConditionRecord
from custody.models.enum import ReservationStatus
from custody.models.reservation import Reservation


class MongoReservationStore(ReservationStore):
    """Beanie-backed store. `commit` runs in a multi-document transaction (replica set required)."""

    def __init__(self, client: AsyncIOMotorClient):
        self._client = client

    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        doc = await AssetDocument.get(asset_id)
        return doc.to_domain() if doc else None

    async def list_assets(self, category=None, is_equipment=None, status=None, include_inactive=False) -> List[Asset]:
        query_filters: Dict[str, Any] = {}
        if not include_inactive: query_filters["is_active"] = True
        if category is not None: query_filters["category"] = category
        if is_equipment is not None: query_filters["is_equipment"] = is_equipment
        if status is not None: query_filters["status"] = status.value
        docs = await AssetDocument.find(query_filters, sort=[("name", ASCENDING)]).to_list()
        return [doc.to_domain() for doc in docs]

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        doc = await ReservationDocument.get(reservation_id)
        return doc.to_domain() if doc else None

    async def find_reservations(self, item_id=None, requester_id=None, statuses=None) -> List[Reservation]:
        query_filters: Dict[str, Any] = {}
        if item_id is not None: query_filters["item_id"] = item_id
        if requester_id is not None: query_filters["requester_id"] = requester_id
        if statuses: query_filters["status"] = {"$in": [s.value for s in statuses]}
        docs = await ReservationDocument.find(
            query_filters, sort=[("start_date", ASCENDING), ("created_at", ASCENDING)]
        ).to_list()
        return [doc.to_domain() for doc in docs]

    async def find_approved_overlapping(self, item_id, start, end, exclude_reservation_id=None) -> List[Reservation]:
        query_filters: Dict[str, Any] = {
            "item_id": item_id,
            "status": ReservationStatus.APPROVED.value,
            "start_date": {"$lte": day_to_datetime(end)},
            "end_date": {"$gte": day_to_datetime(start)},
        }
        if exclude_reservation_id:
            query_filters["_id"] = {"$ne": exclude_reservation_id}
        docs = await ReservationDocument.find(query_filters, sort=[("start_date", ASCENDING)]).to_list()
        return [doc.to_domain() for doc in docs]

    async def list_condition_records(self, reservation_id: str) -> List[ConditionRecord]:
        docs = await ConditionRecordDocument.find(
            {"reservation_id": reservation_id}, sort=[("timestamp", ASCENDING)]
        ).to_list()
        return [doc.to_domain() for doc in docs]

    async def commit(self, *, reservation=None, asset=None, records=()) -> None:
        records = list(records)
        async with await self._client.start_session() as session:
            async with session.start_transaction():
                if reservation is not None:
                    await ReservationDocument.from_domain(reservation).save(session=session)
                if asset is not None:
                    await AssetDocument.from_domain(asset).save(session=session)
                # Condition record hanya di-insert, tidak pernah di-update
                for record in records:
                    await ConditionRecordDocument.from_domain(record).insert(session=session)
        logger.debug(
            f"Transaction committed: reservation={getattr(reservation, 'id', None)} "
            f"asset={getattr(asset, 'id', None)} records={len(records)}"
        )

    async def ping(self) -> bool:
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error(f"MongoDB ping failed: {e}")
            return False

    async def close(self) -> None:
        self._client.close()
        logger.info("MongoDB connection closed.")
