# custody/core/audit.py
"""Condition audit trail: append-only evidence captured at pickup and return."""
from datetime import datetime
from typing import Optional

from loguru import logger

from custody.core.errors import StateError, ValidationError
from custody.models.condition import ConditionRecord
from custody.models.enum import CustodyEvent, ItemCondition
from custody.models.reservation import Reservation

_CONDITION_FIELD = {
    CustodyEvent.RECEIPT: "item_condition_on_receive",
    CustodyEvent.RETURN: "item_condition_on_return",
}


def clean_notes(condition: ItemCondition, notes: Optional[str]) -> Optional[str]:
    """Strip notes; damage without a description is rejected."""
    cleaned = notes.strip() if notes else None
    if condition == ItemCondition.DAMAGE and not cleaned:
        raise ValidationError("Notes describing the damage or missing parts are required when condition is 'damage'.")
    return cleaned or None


def capture_condition(
    reservation: Reservation,
    event: CustodyEvent,
    condition: ItemCondition,
    notes: Optional[str],
    recorded_by: str,
    at: datetime,
) -> ConditionRecord:
    """
    Build the immutable record for a custody event.

    Fails with StateError when the reservation already carries a condition for
    this event; conditions are write-once.
    """
    field = _CONDITION_FIELD[event]
    if getattr(reservation, field) is not None:
        raise StateError(f"Condition on {event.value} is already recorded for reservation '{reservation.id}'.")
    record = ConditionRecord(
        reservation_id=reservation.id,
        item_id=reservation.item_id,
        event_type=event,
        condition=condition,
        notes=clean_notes(condition, notes),
        recorded_by=recorded_by,
        timestamp=at,
    )
    logger.debug(f"Captured {event.value} condition '{condition.value}' for reservation {reservation.id}")
    return record
