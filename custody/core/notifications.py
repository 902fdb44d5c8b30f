# custody/core/notifications.py
import asyncio
from typing import Awaitable, Callable, Set

from loguru import logger

from custody.models.reservation import Reservation

NotificationHook = Callable[[str, Reservation], Awaitable[None]]

RESERVATION_CREATED = "reservation.created"
RESERVATION_APPROVED = "reservation.approved"
RESERVATION_REJECTED = "reservation.rejected"


async def log_notification(event: str, reservation: Reservation) -> None:
    """Default hook: delivery is someone else's job, we only leave a trace."""
    logger.info(
        f"[notify] {event} reservation={reservation.id} item={reservation.item_id} "
        f"requester={reservation.requester_id}"
    )


class NotificationDispatcher:
    """Fires hooks as background tasks; a failing hook is logged and otherwise ignored."""

    def __init__(self, hook: NotificationHook = log_notification):
        self._hook = hook
        self._pending: Set[asyncio.Task] = set()

    def fire(self, event: str, reservation: Reservation) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(event, reservation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: str, reservation: Reservation) -> None:
        try:
            await self._hook(event, reservation)
        except Exception:
            logger.exception(f"Notification hook failed for {event} on reservation {reservation.id}")

    async def drain(self) -> None:
        """Wait for in-flight notifications (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
