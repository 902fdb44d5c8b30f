# custody/core/conflicts.py
import logging
from datetime import date
from typing import List, Optional, Tuple

from custody.core.calendar import DateLike, to_calendar_day, windows_overlap
from custody.core.errors import ConflictError, ValidationError
from custody.db.store import ReservationStore
from custody.models.reservation import Reservation

logger = logging.getLogger(__name__)


def normalize_window(start: DateLike, end: DateLike) -> Tuple[date, date]:
    start_day, end_day = to_calendar_day(start), to_calendar_day(end)
    if start_day > end_day:
        raise ValidationError(f"Start date {start_day} is after end date {end_day}.")
    return start_day, end_day


async def find_conflicts(
    store: ReservationStore,
    item_id: str,
    start: DateLike,
    end: DateLike,
    exclude_reservation_id: Optional[str] = None,
) -> List[Reservation]:
    """
    Approved reservations for `item_id` whose window overlaps [start, end],
    compared inclusively by calendar day in the reference timezone.
    Pending reservations never conflict.
    """
    start_day, end_day = normalize_window(start, end)
    candidates = await store.find_approved_overlapping(
        item_id, start_day, end_day, exclude_reservation_id=exclude_reservation_id
    )
    # Store sudah memfilter lewat index; cek ulang agar aturan overlap hanya ada di satu tempat
    conflicts = [
        r for r in candidates
        if r.id != exclude_reservation_id and windows_overlap(start_day, end_day, r.start_date, r.end_date)
    ]
    logger.debug(
        f"Overlap check item={item_id} [{start_day}..{end_day}] "
        f"exclude={exclude_reservation_id}: {len(conflicts)} conflict(s)"
    )
    return conflicts


async def check_overlap(
    store: ReservationStore,
    item_id: str,
    start: DateLike,
    end: DateLike,
    exclude_reservation_id: Optional[str] = None,
) -> None:
    """Raise ConflictError when the window collides with an approved reservation."""
    conflicts = await find_conflicts(store, item_id, start, end, exclude_reservation_id)
    if conflicts:
        ids = [r.id for r in conflicts]
        logger.info(f"Conflict for item {item_id}: window overlaps approved reservation(s) {ids}")
        raise ConflictError(
            f"Item '{item_id}' is already reserved for an overlapping window "
            f"({', '.join(f'{r.start_date}..{r.end_date}' for r in conflicts)}).",
            conflicting_ids=ids,
        )
