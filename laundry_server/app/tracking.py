# laundry_server/app/tracking.py
"""Order status state machine and the customer-facing tracking timeline.

By default any status may follow any other; ``OrderTracker(strict=True)``
checks moves against ``ALLOWED_TRANSITIONS`` instead.
"""
import copy
from typing import Optional

from .errors import InvalidStatus, InvalidTransition
from .models import ORDER_STATUSES
from .utils import utcnow

TIMELINE = (
    ("pending", "Order Placed", "Your order has been placed successfully"),
    ("confirmed", "Order Confirmed", "We have confirmed your order and will pickup soon"),
    ("picked-up", "Items Picked Up", "Your items have been collected from your location"),
    ("in-progress", "Processing", "Your items are being cleaned with care"),
    ("ready", "Ready for Delivery", "Your items are clean and ready for delivery"),
    ("delivered", "Delivered", "Your items have been delivered successfully"),
)

# forward moves of the normal flow; cancellation from any non-terminal state
ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"picked-up", "cancelled"},
    "picked-up": {"in-progress", "cancelled"},
    "in-progress": {"ready", "cancelled"},
    "ready": {"out-for-delivery", "delivered", "cancelled"},
    "out-for-delivery": {"delivered", "cancelled"},
    "delivered": {"completed"},
    "completed": set(),
    "cancelled": set(),
}


def _stamp() -> str:
    return utcnow().isoformat()


def current_step(steps) -> Optional[dict]:
    """Where the order is now: the first completed step still flagged active,
    else the last completed step (a fresh timeline has only "Order Placed").

    After a backwards move later steps may still be completed and active;
    the transition always clears everything before the current step, so the
    first such step is the current one.
    """
    completed = [step for step in steps or [] if step.get("is_completed")]
    active = [step for step in completed if step.get("is_active")]
    if active:
        return active[0]
    return completed[-1] if completed else None


class OrderTracker:

    def __init__(self, strict: bool = False):
        self.strict = strict

    def initialize(self) -> list[dict]:
        now = _stamp()
        steps = []
        for index, (status, title, description) in enumerate(TIMELINE):
            steps.append({
                "status": status,
                "title": title,
                "description": description,
                "is_completed": index == 0,
                "is_active": index == 1,
                "timestamp": now,
            })
        return steps

    def check(self, current: str, new_status: str) -> None:
        if new_status not in ORDER_STATUSES:
            raise InvalidStatus(f"invalid status: {new_status}")
        if self.strict and current != new_status and new_status not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"cannot move order from {current} to {new_status}")

    def transition(self, steps, current: str, new_status: str) -> list[dict]:
        """
        Returns a new timeline for ``new_status``. Statuses without a step of
        their own (out-for-delivery, completed, cancelled) leave it untouched.
        """
        self.check(current, new_status)
        steps = copy.deepcopy(list(steps or []))
        index = next((i for i, step in enumerate(steps) if step.get("status") == new_status), -1)
        if index == -1:
            return steps
        for step in steps[:index + 1]:
            step["is_completed"] = True
            step["is_active"] = False
        steps[index]["is_active"] = True
        steps[index]["timestamp"] = _stamp()
        # the step after the current one is "next up"; later steps keep their flags
        if index + 1 < len(steps):
            steps[index + 1]["is_active"] = True
        return steps
