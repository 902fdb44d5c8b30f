# custody/api/v1/endpoints/assets.py
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request, Response, status
import logging

from custody.api.deps import get_coordinator, validate_object_id
from custody.api.v1.endpoints.reservations import build_reservation_response
from custody.core.lifecycle import LifecycleCoordinator
from custody.core.permissions import Actor
from custody.core.rate_limiter import READ_LIMIT, WRITE_LIMIT, limiter
from custody.core.security import get_current_actor
from custody.models.asset import Asset
from custody.models.enum import AssetStatus, ReservationStatus
from custody.models.reservation import Availability, BlockedWindow, Reservation

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Assets"]
)


@router.post("/", response_model=Asset.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
async def register_asset(
    request: Request,
    asset_in: Asset.Create = Body(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Register a new asset. Status starts as available."""
    asset = await coordinator.register_asset(actor, asset_in)
    return Asset.Response.model_validate(asset)


@router.get("/", response_model=List[Asset.Response])
@limiter.limit(READ_LIMIT)
async def read_assets(
    request: Request,
    category: Optional[str] = Query(None),
    is_equipment: Optional[bool] = Query(None),
    status: Optional[AssetStatus] = Query(None),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    assets = await coordinator.list_assets(category=category, is_equipment=is_equipment, status=status)
    logger.debug(f"Returning {len(assets)} assets to '{actor.actor_id}'.")
    return [Asset.Response.model_validate(a) for a in assets]


@router.get("/{asset_id}", response_model=Asset.Response)
@limiter.limit(READ_LIMIT)
async def read_asset(
    request: Request,
    asset_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    validate_object_id(asset_id, "asset")
    return Asset.Response.model_validate(await coordinator.get_asset(asset_id))


@router.put("/{asset_id}", response_model=Asset.Response)
@limiter.limit(WRITE_LIMIT)
async def update_asset(
    request: Request,
    asset_id: str = Path(...),
    asset_in: Asset.Update = Body(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Update name, category, equipment flag or location. Status is not editable."""
    validate_object_id(asset_id, "asset")
    return Asset.Response.model_validate(await coordinator.update_asset(actor, asset_id, asset_in))


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(WRITE_LIMIT)
async def delete_asset(
    request: Request,
    asset_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """
    Mark an asset as inactive (soft delete). It is hidden from listings but its
    reservation and condition history are kept. 409 while an approved reservation exists.
    """
    validate_object_id(asset_id, "asset")
    await coordinator.delete_asset(actor, asset_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{asset_id}/reservations", response_model=List[Reservation.Response])
@limiter.limit(READ_LIMIT)
async def read_asset_reservations(
    request: Request,
    asset_id: str = Path(...),
    status: Optional[List[ReservationStatus]] = Query(None),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Reservations on one asset. Requesters only see their own."""
    validate_object_id(asset_id, "asset")
    await coordinator.get_asset(asset_id)
    reservations = await coordinator.list_reservations(actor, item_id=asset_id, statuses=status)
    return [build_reservation_response(r) for r in reservations]


@router.get("/{asset_id}/availability", response_model=Availability)
@limiter.limit(READ_LIMIT)
async def read_asset_availability(
    request: Request,
    asset_id: str = Path(...),
    start_date: date = Query(...),
    end_date: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Would [start_date, end_date] be approvable right now? Only approved reservations block."""
    validate_object_id(asset_id, "asset")
    blocking = await coordinator.check_availability(asset_id, start_date, end_date)
    return Availability(
        item_id=asset_id,
        start_date=start_date,
        end_date=end_date,
        available=not blocking,
        blocked_by=[
            BlockedWindow(reservation_id=r.id, start_date=r.start_date, end_date=r.end_date)
            for r in blocking
        ],
    )


@router.post("/{asset_id}/maintenance/release", response_model=Asset.Response)
@limiter.limit(WRITE_LIMIT)
async def release_asset_from_maintenance(
    request: Request,
    asset_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """Clear the maintenance hold set by a damaged return."""
    validate_object_id(asset_id, "asset")
    return Asset.Response.model_validate(await coordinator.release_from_maintenance(actor, asset_id))


@router.post("/{asset_id}/out-of-service", response_model=Asset.Response)
@limiter.limit(WRITE_LIMIT)
async def mark_asset_out_of_service(
    request: Request,
    asset_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    validate_object_id(asset_id, "asset")
    return Asset.Response.model_validate(await coordinator.mark_out_of_service(actor, asset_id))


@router.post("/{asset_id}/return-to-service", response_model=Asset.Response)
@limiter.limit(WRITE_LIMIT)
async def return_asset_to_service(
    request: Request,
    asset_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    validate_object_id(asset_id, "asset")
    return Asset.Response.model_validate(await coordinator.return_to_service(actor, asset_id))
