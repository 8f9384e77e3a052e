"""Post-commit notifications for admitted and cancelled bookings.

Notifications run after the admission transaction has committed. A failing
notifier is logged and otherwise ignored: it can neither delay nor undo an
admission decision.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence

from admission_engine.domain.intervals import DateRange
from admission_engine.domain.models import Reservation
from admission_engine.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class NotificationService:
    """Default notifier: writes one log line per event.

    Deployments that send email or push messages subclass this and override
    the hooks they care about.
    """

    def stay_admitted(self, stay_id: str, reservations: Sequence[Reservation]) -> None:
        logger.info(
            "Notify stay admitted | %s",
            format_fields(
                stay_id=stay_id,
                segments=len(reservations),
                resources=",".join(str(item.resource_id) for item in reservations),
            ),
        )

    def stay_cancelled(self, stay_id: str, cancelled_segments: int) -> None:
        logger.info(
            "Notify stay cancelled | %s",
            format_fields(stay_id=stay_id, cancelled_segments=cancelled_segments),
        )

    def pass_admitted(self, booking_id: int, pass_id: int, dates: DateRange) -> None:
        logger.info(
            "Notify pass admitted | %s",
            format_fields(booking_id=booking_id, pass_id=pass_id, dates=dates),
        )


def dispatch(hook: Callable[..., Any], *args: Any) -> bool:
    """Invoke ``hook`` and report whether it succeeded."""
    try:
        hook(*args)
    except Exception:
        logger.exception("Notification hook %s failed", getattr(hook, "__name__", hook))
        return False
    return True
