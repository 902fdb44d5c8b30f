# custody/core/lifecycle.py
"""
Lifecycle coordinator: the only writer of reservation status and asset status.

State machine per reservation::

    pending --approve--> approved --confirm_receipt--> approved (checked out)
    pending --reject---> rejected                          |
    pending --cancel---> cancelled       approved --confirm_return--> completed

Every transition on an asset runs under that asset's lock, re-reads the
reservation inside the lock, validates everything, then persists the
reservation, the re-derived asset and any condition record in one
`store.commit`. A failure before the commit leaves nothing changed.
"""
import asyncio
import weakref
from contextlib import asynccontextmanager
from datetime import date, datetime, tzinfo
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from custody.core.audit import capture_condition
from custody.core.calendar import Clock, DateLike, to_calendar_day, utc_now
from custody.core.config import REFERENCE_TIMEZONE
from custody.core.conflicts import check_overlap, find_conflicts
from custody.core.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from custody.core.notifications import (
    RESERVATION_APPROVED,
    RESERVATION_CREATED,
    RESERVATION_REJECTED,
    NotificationDispatcher,
)
from custody.core.permissions import Actor, Capability, require_capability
from custody.core.status import derive_asset_status
from custody.db.store import ReservationStore
from custody.models.asset import Asset
from custody.models.condition import ConditionRecord
from custody.models.enum import AssetStatus, CustodyEvent, ItemCondition, ReservationStatus
from custody.models.reservation import Reservation


def is_pickup_due(reservation: Reservation, today: date) -> bool:
    return (
        reservation.status == ReservationStatus.APPROVED
        and reservation.checkout_date is None
        and reservation.start_date == today
    )


def is_return_due(reservation: Reservation, today: date) -> bool:
    return (
        reservation.status == ReservationStatus.APPROVED
        and reservation.item_condition_on_return is None
        and today >= reservation.return_date
    )


class LifecycleCoordinator:
    def __init__(
        self,
        store: ReservationStore,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Clock = utc_now,
        tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self.notifier = notifier or NotificationDispatcher()
        self._clock = clock
        self._tz = tz or REFERENCE_TIMEZONE
        # Lock hilang sendiri setelah tidak ada yang memegang atau menunggunya
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # --- Helpers ---
    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return to_calendar_day(self._clock(), self._tz)

    def _day(self, value: DateLike) -> date:
        return to_calendar_day(value, self._tz)

    @asynccontextmanager
    async def _item_lock(self, item_id: str):
        lock = self._locks.get(item_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[item_id] = lock
        async with lock:
            yield

    async def _require_asset(self, asset_id: str) -> Asset:
        asset = await self.store.get_asset(asset_id)
        if asset is None or not asset.is_active:
            raise NotFoundError(f"Asset '{asset_id}' not found.")
        return asset

    async def _require_reservation(self, reservation_id: str) -> Reservation:
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation '{reservation_id}' not found.")
        return reservation

    @staticmethod
    def _ensure_status(reservation: Reservation, expected: ReservationStatus, action: str) -> None:
        if reservation.status != expected:
            terminal = " (terminal)" if reservation.status.is_terminal else ""
            raise StateError(
                f"Cannot {action} reservation '{reservation.id}': status is '{reservation.status.value}'{terminal}, "
                f"expected '{expected.value}'."
            )

    async def _rederive(
        self,
        asset: Asset,
        changed: Optional[Reservation] = None,
        out_of_service: Optional[bool] = None,
        under_maintenance: Optional[bool] = None,
    ) -> Asset:
        """
        Recompute asset status as if `changed` were already persisted.
        A hold flag left as None keeps its current value.
        """
        if out_of_service is None:
            out_of_service = asset.out_of_service
        if under_maintenance is None:
            under_maintenance = asset.under_maintenance
        approved = await self.store.find_reservations(item_id=asset.id, statuses=[ReservationStatus.APPROVED])
        if changed is not None:
            approved = [r for r in approved if r.id != changed.id] + [changed]
        status = derive_asset_status(out_of_service, under_maintenance, approved)
        if (
            status == asset.status
            and out_of_service == asset.out_of_service
            and under_maintenance == asset.under_maintenance
        ):
            return asset
        logger.info(f"Asset {asset.id} status {asset.status.value} -> {status.value}")
        return asset.model_copy(update={
            "status": status,
            "out_of_service": out_of_service,
            "under_maintenance": under_maintenance,
            "updated_at": self.now(),
        })

    # --- Assets ---
    async def register_asset(self, actor: Actor, data: Asset.Create) -> Asset:
        require_capability(actor, Capability.MANAGE_ASSETS)
        now = self.now()
        asset = Asset(**data.model_dump(), created_at=now, updated_at=now)
        await self.store.commit(asset=asset)
        logger.info(f"Asset '{asset.name}' ({asset.id}) registered by '{actor.actor_id}'.")
        return asset

    async def get_asset(self, asset_id: str) -> Asset:
        return await self._require_asset(asset_id)

    async def list_assets(
        self,
        category: Optional[str] = None,
        is_equipment: Optional[bool] = None,
        status: Optional[AssetStatus] = None,
    ) -> List[Asset]:
        return await self.store.list_assets(category=category, is_equipment=is_equipment, status=status)

    async def update_asset(self, actor: Actor, asset_id: str, data: Asset.Update) -> Asset:
        """Edit descriptive fields. Status and holds are never touched here."""
        require_capability(actor, Capability.MANAGE_ASSETS)
        update_data = data.model_dump(exclude_unset=True)
        for field in ("name", "category", "is_equipment"):
            if field in update_data and update_data[field] is None:
                raise ValidationError(f"Field '{field}' cannot be cleared.")
        if not update_data:
            raise ValidationError("No update data provided.")
        await self._require_asset(asset_id)
        async with self._item_lock(asset_id):
            asset = await self._require_asset(asset_id)
            asset = asset.model_copy(update={**update_data, "updated_at": self.now()})
            await self.store.commit(asset=asset)
        logger.info(f"Asset {asset_id} updated by '{actor.actor_id}': {sorted(update_data)}")
        return asset

    async def delete_asset(self, actor: Actor, asset_id: str) -> None:
        """
        Soft delete: the asset disappears from listings and lookups but its
        reservations and condition history stay. Refused while any approved
        reservation still holds the asset. Deleting twice is a no-op.
        """
        require_capability(actor, Capability.MANAGE_ASSETS)
        if await self.store.get_asset(asset_id) is None:
            raise NotFoundError(f"Asset '{asset_id}' not found.")
        async with self._item_lock(asset_id):
            asset = await self.store.get_asset(asset_id)
            if not asset.is_active:
                logger.info(f"Asset {asset_id} is already inactive. No action taken.")
                return
            approved = await self.store.find_reservations(item_id=asset_id, statuses=[ReservationStatus.APPROVED])
            if approved:
                raise StateError(
                    f"Asset '{asset_id}' still has {len(approved)} approved reservation(s) and cannot be deleted."
                )
            asset = asset.model_copy(update={"is_active": False, "updated_at": self.now()})
            await self.store.commit(asset=asset)
        logger.info(f"Asset '{asset.name}' ({asset_id}) marked inactive by '{actor.actor_id}'.")

    async def release_from_maintenance(self, actor: Actor, asset_id: str) -> Asset:
        require_capability(actor, Capability.MANAGE_ASSETS)
        await self._require_asset(asset_id)
        async with self._item_lock(asset_id):
            asset = await self._require_asset(asset_id)
            if not asset.under_maintenance:
                raise StateError(f"Asset '{asset_id}' is not under maintenance.")
            asset = await self._rederive(asset, under_maintenance=False)
            await self.store.commit(asset=asset)
        logger.info(f"Asset {asset_id} released from maintenance by '{actor.actor_id}'.")
        return asset

    async def mark_out_of_service(self, actor: Actor, asset_id: str) -> Asset:
        require_capability(actor, Capability.MANAGE_ASSETS)
        await self._require_asset(asset_id)
        async with self._item_lock(asset_id):
            asset = await self._require_asset(asset_id)
            if asset.out_of_service:
                raise StateError(f"Asset '{asset_id}' is already out of service.")
            if asset.status == AssetStatus.IN_USE:
                raise StateError(f"Asset '{asset_id}' is in use and cannot be taken out of service.")
            asset = await self._rederive(asset, out_of_service=True)
            await self.store.commit(asset=asset)
        logger.info(f"Asset {asset_id} marked out of service by '{actor.actor_id}'.")
        return asset

    async def return_to_service(self, actor: Actor, asset_id: str) -> Asset:
        """Lift the out-of-service hold. A maintenance hold, if any, stays in place."""
        require_capability(actor, Capability.MANAGE_ASSETS)
        await self._require_asset(asset_id)
        async with self._item_lock(asset_id):
            asset = await self._require_asset(asset_id)
            if not asset.out_of_service:
                raise StateError(f"Asset '{asset_id}' is not out of service.")
            asset = await self._rederive(asset, out_of_service=False)
            await self.store.commit(asset=asset)
        logger.info(f"Asset {asset_id} returned to service by '{actor.actor_id}' (status {asset.status.value}).")
        return asset

    async def check_availability(self, item_id: str, start: DateLike, end: DateLike) -> List[Reservation]:
        """Approved reservations that would block [start, end]; empty when free."""
        await self._require_asset(item_id)
        return await find_conflicts(self.store, item_id, self._day(start), self._day(end))

    # --- Reservations: create / approve / reject / cancel ---
    async def create_reservation(self, actor: Actor, request: Reservation.Create) -> Reservation:
        """New pending reservation. Overlap is not checked here; pending requests may overlap."""
        require_capability(actor, Capability.CREATE)
        start_day, end_day = self._day(request.start_date), self._day(request.end_date)
        if start_day > end_day:
            raise ValidationError(f"Start date {start_day} is after end date {end_day}.")
        return_day = self._day(request.return_date) if request.return_date else end_day
        if return_day < start_day:
            raise ValidationError(f"Return date {return_day} precedes start date {start_day}.")
        await self._require_asset(request.item_id)

        now = self.now()
        reservation = Reservation(
            item_id=request.item_id,
            requester_id=actor.actor_id,
            start_date=start_day,
            end_date=end_day,
            return_date=return_day,
            notes=request.notes.strip() if request.notes else None,
            created_at=now,
            updated_at=now,
        )
        await self.store.commit(reservation=reservation)
        logger.info(
            f"Reservation {reservation.id} created by '{actor.actor_id}' for item {reservation.item_id} "
            f"[{start_day}..{end_day}]"
        )
        self.notifier.fire(RESERVATION_CREATED, reservation)
        return reservation

    async def approve(self, actor: Actor, reservation_id: str) -> Reservation:
        require_capability(actor, Capability.APPROVE)
        item_id = (await self._require_reservation(reservation_id)).item_id
        async with self._item_lock(item_id):
            reservation = await self._require_reservation(reservation_id)
            self._ensure_status(reservation, ReservationStatus.PENDING, "approve")
            asset = await self._require_asset(item_id)
            if asset.out_of_service:
                raise StateError(f"Asset '{item_id}' is out of service; reservation cannot be approved.")
            await check_overlap(
                self.store, item_id, reservation.start_date, reservation.end_date,
                exclude_reservation_id=reservation.id,
            )
            now = self.now()
            approved = reservation.model_copy(update={
                "status": ReservationStatus.APPROVED,
                "decided_by": actor.actor_id,
                "decided_at": now,
                "updated_at": now,
            })
            asset = await self._rederive(asset, approved)
            await self.store.commit(reservation=approved, asset=asset)
        logger.info(f"Reservation {reservation_id} approved by '{actor.actor_id}'.")
        self.notifier.fire(RESERVATION_APPROVED, approved)
        return approved

    async def reject(self, actor: Actor, reservation_id: str) -> Reservation:
        require_capability(actor, Capability.REJECT)
        item_id = (await self._require_reservation(reservation_id)).item_id
        async with self._item_lock(item_id):
            reservation = await self._require_reservation(reservation_id)
            self._ensure_status(reservation, ReservationStatus.PENDING, "reject")
            now = self.now()
            rejected = reservation.model_copy(update={
                "status": ReservationStatus.REJECTED,
                "decided_by": actor.actor_id,
                "decided_at": now,
                "updated_at": now,
            })
            await self.store.commit(reservation=rejected)
        logger.info(f"Reservation {reservation_id} rejected by '{actor.actor_id}'.")
        self.notifier.fire(RESERVATION_REJECTED, rejected)
        return rejected

    async def cancel(self, actor: Actor, reservation_id: str) -> Reservation:
        """Only the original requester may cancel, and only while pending."""
        require_capability(actor, Capability.CANCEL_OWN)
        item_id = (await self._require_reservation(reservation_id)).item_id
        async with self._item_lock(item_id):
            reservation = await self._require_reservation(reservation_id)
            if reservation.requester_id != actor.actor_id:
                raise AuthorizationError(
                    f"Only the requester of reservation '{reservation_id}' may cancel it."
                )
            self._ensure_status(reservation, ReservationStatus.PENDING, "cancel")
            now = self.now()
            cancelled = reservation.model_copy(update={
                "status": ReservationStatus.CANCELLED,
                "decided_by": actor.actor_id,
                "decided_at": now,
                "updated_at": now,
            })
            await self.store.commit(reservation=cancelled)
        logger.info(f"Reservation {reservation_id} cancelled by requester '{actor.actor_id}'.")
        return cancelled

    # --- Custody transfers ---
    async def confirm_receipt(
        self,
        actor: Actor,
        reservation_id: str,
        condition: ItemCondition,
        notes: Optional[str] = None,
    ) -> Tuple[Reservation, Asset]:
        """Pickup: record receive condition, set checkout date, asset becomes in use."""
        require_capability(actor, Capability.CONFIRM_RECEIPT)
        item_id = (await self._require_reservation(reservation_id)).item_id
        async with self._item_lock(item_id):
            reservation = await self._require_reservation(reservation_id)
            self._ensure_status(reservation, ReservationStatus.APPROVED, "confirm receipt for")
            if reservation.checkout_date is not None:
                raise StateError(f"Reservation '{reservation_id}' is already checked out.")
            now = self.now()
            record = capture_condition(reservation, CustodyEvent.RECEIPT, condition, notes, actor.actor_id, now)

            asset = await self._require_asset(item_id)
            if asset.out_of_service:
                raise StateError(f"Asset '{item_id}' is out of service and cannot be handed out.")
            if asset.under_maintenance:
                raise StateError(f"Asset '{item_id}' is under maintenance and cannot be handed out.")
            if asset.status == AssetStatus.IN_USE:
                raise StateError(f"Asset '{item_id}' is still in use under another reservation.")

            checked_out = reservation.model_copy(update={
                "checkout_date": now,
                "item_condition_on_receive": condition,
                "damage_notes": record.notes,
                "updated_at": now,
            })
            asset = await self._rederive(asset, checked_out)
            await self.store.commit(reservation=checked_out, asset=asset, records=[record])
        logger.info(
            f"Receipt confirmed for reservation {reservation_id} by '{actor.actor_id}' "
            f"(condition={condition.value})."
        )
        return checked_out, asset

    async def confirm_return(
        self,
        actor: Actor,
        reservation_id: str,
        condition: ItemCondition,
        notes: Optional[str] = None,
    ) -> Tuple[Reservation, Asset]:
        """Return: record return condition and complete; damage puts the asset into maintenance."""
        require_capability(actor, Capability.CONFIRM_RETURN)
        item_id = (await self._require_reservation(reservation_id)).item_id
        async with self._item_lock(item_id):
            reservation = await self._require_reservation(reservation_id)
            if reservation.item_condition_on_return is not None:
                raise StateError(f"Return is already recorded for reservation '{reservation_id}'.")
            self._ensure_status(reservation, ReservationStatus.APPROVED, "confirm return for")
            now = self.now()
            record = capture_condition(reservation, CustodyEvent.RETURN, condition, notes, actor.actor_id, now)

            asset = await self._require_asset(item_id)
            # Rusak menambah hold maintenance; out-of-service tetap dipertahankan
            under_maintenance = asset.under_maintenance or condition == ItemCondition.DAMAGE

            completed = reservation.model_copy(update={
                "status": ReservationStatus.COMPLETED,
                "returned_at": now,
                "item_condition_on_return": condition,
                "return_notes": record.notes,
                "updated_at": now,
            })
            asset = await self._rederive(asset, completed, under_maintenance=under_maintenance)
            await self.store.commit(reservation=completed, asset=asset, records=[record])
        logger.info(
            f"Return confirmed for reservation {reservation_id} by '{actor.actor_id}' "
            f"(condition={condition.value}); asset {item_id} is now {asset.status.value}."
        )
        return completed, asset

    # --- Queries ---
    async def get_reservation(self, actor: Actor, reservation_id: str) -> Reservation:
        reservation = await self._require_reservation(reservation_id)
        if not actor.can(Capability.VIEW_ALL) and reservation.requester_id != actor.actor_id:
            raise AuthorizationError(f"Reservation '{reservation_id}' belongs to another requester.")
        return reservation

    async def list_reservations(
        self,
        actor: Actor,
        item_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        statuses: Optional[Sequence[ReservationStatus]] = None,
    ) -> List[Reservation]:
        if not actor.can(Capability.VIEW_ALL):
            if requester_id is not None and requester_id != actor.actor_id:
                raise AuthorizationError("Requesters can only list their own reservations.")
            requester_id = actor.actor_id
        return await self.store.find_reservations(item_id=item_id, requester_id=requester_id, statuses=statuses)

    async def condition_history(self, actor: Actor, reservation_id: str) -> List[ConditionRecord]:
        await self.get_reservation(actor, reservation_id)
        records = await self.store.list_condition_records(reservation_id)
        return sorted(records, key=lambda r: r.timestamp)

    async def list_pickup_due(self, actor: Actor) -> List[Reservation]:
        """Approved, not yet picked up, starting today."""
        require_capability(actor, Capability.VIEW_ALL)
        today = self.today()
        approved = await self.store.find_reservations(statuses=[ReservationStatus.APPROVED])
        return [r for r in approved if is_pickup_due(r, today)]

    async def list_return_due(self, actor: Actor) -> List[Reservation]:
        """Approved, return not recorded, return date reached."""
        require_capability(actor, Capability.VIEW_ALL)
        today = self.today()
        approved = await self.store.find_reservations(statuses=[ReservationStatus.APPROVED])
        return [r for r in approved if is_return_due(r, today)]
