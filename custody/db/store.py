# custody/db/store.py
import bisect
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from custody.models.asset import Asset
from custody.models.condition import ConditionRecord
from custody.models.enum import AssetStatus, ReservationStatus
from custody.models.reservation import Reservation

logger = logging.getLogger(__name__)


class ReservationStore(ABC):
    """
    Persistence seam for the lifecycle coordinator.

    Reads return detached copies. All writes go through `commit`, which must
    apply the reservation, the asset and any new condition records together
    or not at all. Condition records cannot be edited or removed and there
    is no standalone asset-status setter.
    """

    @abstractmethod
    async def get_asset(self, asset_id: str) -> Optional[Asset]: ...

    @abstractmethod
    async def list_assets(
        self,
        category: Optional[str] = None,
        is_equipment: Optional[bool] = None,
        status: Optional[AssetStatus] = None,
        include_inactive: bool = False,
    ) -> List[Asset]: ...

    @abstractmethod
    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]: ...

    @abstractmethod
    async def find_reservations(
        self,
        item_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        statuses: Optional[Sequence[ReservationStatus]] = None,
    ) -> List[Reservation]: ...

    @abstractmethod
    async def find_approved_overlapping(
        self,
        item_id: str,
        start: date,
        end: date,
        exclude_reservation_id: Optional[str] = None,
    ) -> List[Reservation]:
        """Approved reservations for `item_id` whose window intersects [start, end]."""

    @abstractmethod
    async def list_condition_records(self, reservation_id: str) -> List[ConditionRecord]: ...

    @abstractmethod
    async def commit(
        self,
        *,
        reservation: Optional[Reservation] = None,
        asset: Optional[Asset] = None,
        records: Iterable[ConditionRecord] = (),
    ) -> None: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class _ApprovedWindowIndex:
    """
    Per-item sorted list of approved windows, keyed by start day.

    Approved windows for one item never overlap, so sorted by start they are
    also sorted by end. An overlap query bisects to the last window starting
    on or before `end` and walks left until windows end before `start`.
    """

    def __init__(self):
        self._entries: Dict[str, List[Tuple[int, int, str]]] = {}

    def add(self, reservation: Reservation) -> None:
        entry = (reservation.start_date.toordinal(), reservation.end_date.toordinal(), reservation.id)
        bisect.insort(self._entries.setdefault(reservation.item_id, []), entry)

    def remove(self, reservation: Reservation) -> None:
        entries = self._entries.get(reservation.item_id, [])
        entry = (reservation.start_date.toordinal(), reservation.end_date.toordinal(), reservation.id)
        pos = bisect.bisect_left(entries, entry)
        if pos < len(entries) and entries[pos] == entry:
            del entries[pos]

    def overlapping(self, item_id: str, start: date, end: date) -> List[str]:
        entries = self._entries.get(item_id, [])
        start_ord, end_ord = start.toordinal(), end.toordinal()
        pos = bisect.bisect_right(entries, (end_ord, float("inf"), ""))
        hits: List[str] = []
        for entry_start, entry_end, reservation_id in reversed(entries[:pos]):
            if entry_end < start_ord:
                break
            if entry_start <= end_ord:
                hits.append(reservation_id)
        hits.reverse()
        return hits


class InMemoryReservationStore(ReservationStore):
    """Process-local store. Suitable for tests and single-instance deployments."""

    def __init__(self):
        self._assets: Dict[str, Asset] = {}
        self._reservations: Dict[str, Reservation] = {}
        self._by_item: Dict[str, List[str]] = {}
        self._records: Dict[str, Tuple[ConditionRecord, ...]] = {}
        self._approved = _ApprovedWindowIndex()

    async def get_asset(self, asset_id: str) -> Optional[Asset]:
        asset = self._assets.get(asset_id)
        return asset.model_copy(deep=True) if asset else None

    async def list_assets(self, category=None, is_equipment=None, status=None, include_inactive=False) -> List[Asset]:
        result = []
        for asset in self._assets.values():
            if not include_inactive and not asset.is_active:
                continue
            if category is not None and asset.category != category:
                continue
            if is_equipment is not None and asset.is_equipment != is_equipment:
                continue
            if status is not None and asset.status != status:
                continue
            result.append(asset.model_copy(deep=True))
        return sorted(result, key=lambda a: a.name.lower())

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        reservation = self._reservations.get(reservation_id)
        return reservation.model_copy(deep=True) if reservation else None

    async def find_reservations(self, item_id=None, requester_id=None, statuses=None) -> List[Reservation]:
        if item_id is not None:
            candidates = (self._reservations[rid] for rid in self._by_item.get(item_id, []))
        else:
            candidates = self._reservations.values()
        wanted = set(statuses) if statuses else None
        result = []
        for reservation in candidates:
            if requester_id is not None and reservation.requester_id != requester_id:
                continue
            if wanted is not None and reservation.status not in wanted:
                continue
            result.append(reservation.model_copy(deep=True))
        return sorted(result, key=lambda r: (r.start_date, r.created_at))

    async def find_approved_overlapping(self, item_id, start, end, exclude_reservation_id=None) -> List[Reservation]:
        ids = self._approved.overlapping(item_id, start, end)
        return [
            self._reservations[rid].model_copy(deep=True)
            for rid in ids
            if rid != exclude_reservation_id
        ]

    async def list_condition_records(self, reservation_id: str) -> List[ConditionRecord]:
        return list(self._records.get(reservation_id, ()))

    async def commit(self, *, reservation=None, asset=None, records=()) -> None:
        # Tidak ada await di sini: seluruh perubahan diterapkan dalam satu langkah event loop
        records = tuple(records)
        if reservation is not None:
            previous = self._reservations.get(reservation.id)
            if previous is not None and previous.status == ReservationStatus.APPROVED:
                self._approved.remove(previous)
            if previous is None:
                self._by_item.setdefault(reservation.item_id, []).append(reservation.id)
            stored = reservation.model_copy(deep=True)
            self._reservations[stored.id] = stored
            if stored.status == ReservationStatus.APPROVED:
                self._approved.add(stored)
        if asset is not None:
            self._assets[asset.id] = asset.model_copy(deep=True)
        for record in records:
            self._records[record.reservation_id] = self._records.get(record.reservation_id, ()) + (record,)
        logger.debug(
            f"Committed reservation={getattr(reservation, 'id', None)} "
            f"asset={getattr(asset, 'id', None)} records={len(records)}"
        )
