from typing import Iterable

from custody.models.enum import AssetStatus, ReservationStatus
from custody.models.reservation import Reservation


def derive_asset_status(
    out_of_service: bool, under_maintenance: bool, reservations: Iterable[Reservation]
) -> AssetStatus:
    """
    Status of an asset given its two administrative holds and its reservations.

    Precedence: out of service, in use, maintenance, reserved, available.
    Only approved reservations count; a checked-out one means the item is in
    someone's hands regardless of a maintenance hold. Reserved covers any
    approved reservation awaiting pickup, whether or not its window has
    started yet: dates do not enter the derivation.
    """
    active = [r for r in reservations if r.status == ReservationStatus.APPROVED]
    if out_of_service:
        return AssetStatus.OUT_OF_SERVICE
    if any(r.is_checked_out for r in active):
        return AssetStatus.IN_USE
    if under_maintenance:
        return AssetStatus.MAINTENANCE
    if active:
        return AssetStatus.RESERVED
    return AssetStatus.AVAILABLE
