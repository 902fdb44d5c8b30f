# custody/api/v1/endpoints/reservations.py
from typing import Iterable, List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request, status
from loguru import logger

from custody.api.deps import get_coordinator, validate_object_id
from custody.core.lifecycle import LifecycleCoordinator
from custody.core.permissions import Actor
from custody.core.rate_limiter import READ_LIMIT, WRITE_LIMIT, limiter
from custody.core.security import get_current_actor
from custody.models.asset import Asset
from custody.models.condition import ConditionRecord
from custody.models.enum import ReservationStatus
from custody.models.reservation import CustodyTransfer, Reservation

router = APIRouter(tags=["Reservations"])


# --- Helper response ---
def build_reservation_response(
    reservation: Reservation, history: Iterable[ConditionRecord] = ()
) -> Reservation.Response:
    return Reservation.Response(
        **reservation.model_dump(),
        condition_history=[ConditionRecord.Response.model_validate(r) for r in history],
    )


def build_transfer_response(reservation: Reservation, asset: Asset, record_history: Iterable[ConditionRecord]) -> CustodyTransfer:
    return CustodyTransfer(
        reservation=build_reservation_response(reservation, record_history),
        asset=Asset.Response.model_validate(asset),
    )


@router.post("/", response_model=Reservation.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
async def create_reservation(
    request: Request,
    reservation_in: Reservation.Create = Body(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Submit a reservation request (status: pending). Overlapping pending requests are allowed."""
    validate_object_id(reservation_in.item_id, "item")
    logger.info(f"'{actor.actor_id}' requesting item {reservation_in.item_id} "
                f"[{reservation_in.start_date}..{reservation_in.end_date}]")
    reservation = await coordinator.create_reservation(actor, reservation_in)
    return build_reservation_response(reservation)


@router.get("/", response_model=List[Reservation.Response])
@limiter.limit(READ_LIMIT)
async def read_reservations(
    request: Request,
    item_id: Optional[str] = Query(None),
    requester_id: Optional[str] = Query(None),
    status: Optional[List[ReservationStatus]] = Query(None),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Requesters see their own reservations; approvers see everything."""
    if item_id: validate_object_id(item_id, "item")
    reservations = await coordinator.list_reservations(
        actor, item_id=item_id, requester_id=requester_id, statuses=status
    )
    return [build_reservation_response(r) for r in reservations]


@router.get("/due/pickup", response_model=List[Reservation.Response], summary="Reservations to hand out today")
@limiter.limit(READ_LIMIT)
async def read_pickup_due(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    return [build_reservation_response(r) for r in await coordinator.list_pickup_due(actor)]


@router.get("/due/return", response_model=List[Reservation.Response], summary="Reservations whose return is due")
@limiter.limit(READ_LIMIT)
async def read_return_due(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    return [build_reservation_response(r) for r in await coordinator.list_return_due(actor)]


@router.get("/{reservation_id}", response_model=Reservation.Response)
@limiter.limit(READ_LIMIT)
async def read_reservation(
    request: Request,
    reservation_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    validate_object_id(reservation_id, "reservation")
    reservation = await coordinator.get_reservation(actor, reservation_id)
    history = await coordinator.condition_history(actor, reservation_id)
    return build_reservation_response(reservation, history)


@router.get("/{reservation_id}/conditions", response_model=List[ConditionRecord.Response])
@limiter.limit(READ_LIMIT)
async def read_condition_history(
    request: Request,
    reservation_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Append-only condition evidence recorded at pickup and return."""
    validate_object_id(reservation_id, "reservation")
    records = await coordinator.condition_history(actor, reservation_id)
    return [ConditionRecord.Response.model_validate(r) for r in records]


@router.patch("/{reservation_id}/approve", response_model=Reservation.Response)
@limiter.limit(WRITE_LIMIT)
async def approve_reservation(
    request: Request,
    reservation_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Approve a pending reservation; 409 when an approved reservation already holds an overlapping window."""
    validate_object_id(reservation_id, "reservation")
    return build_reservation_response(await coordinator.approve(actor, reservation_id))


@router.patch("/{reservation_id}/reject", response_model=Reservation.Response)
@limiter.limit(WRITE_LIMIT)
async def reject_reservation(
    request: Request,
    reservation_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    validate_object_id(reservation_id, "reservation")
    return build_reservation_response(await coordinator.reject(actor, reservation_id))


@router.patch("/{reservation_id}/cancel", response_model=Reservation.Response)
@limiter.limit(WRITE_LIMIT)
async def cancel_reservation(
    request: Request,
    reservation_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Requester withdraws their own pending request."""
    validate_object_id(reservation_id, "reservation")
    return build_reservation_response(await coordinator.cancel(actor, reservation_id))


@router.post("/{reservation_id}/receipt", response_model=CustodyTransfer)
@limiter.limit(WRITE_LIMIT)
async def confirm_receipt(
    request: Request,
    reservation_id: str = Path(...),
    report: Reservation.ConditionReport = Body(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Hand the item over: records the condition at pickup and marks the asset in use."""
    validate_object_id(reservation_id, "reservation")
    reservation, asset = await coordinator.confirm_receipt(actor, reservation_id, report.condition, report.notes)
    history = await coordinator.condition_history(actor, reservation_id)
    return build_transfer_response(reservation, asset, history)


@router.post("/{reservation_id}/return", response_model=CustodyTransfer)
@limiter.limit(WRITE_LIMIT)
async def confirm_return(
    request: Request,
    reservation_id: str = Path(...),
    report: Reservation.ConditionReport = Body(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Take the item back: completes the reservation; damage sends the asset to maintenance."""
    validate_object_id(reservation_id, "reservation")
    reservation, asset = await coordinator.confirm_return(actor, reservation_id, report.condition, report.notes)
    history = await coordinator.condition_history(actor, reservation_id)
    return build_transfer_response(reservation, asset, history)
