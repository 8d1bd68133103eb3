from __future__ import annotations

from .guards import guard_order_has_items, guard_order_not_deleted

WORKFLOWS = {
    "order": {
        "transitions": {
            "PENDING": {
                "IN_PROGRESS": [guard_order_not_deleted, guard_order_has_items],
                "CANCELLED": [guard_order_not_deleted],
            },
            "IN_PROGRESS": {
                "PAUSED": [guard_order_not_deleted],
                "COMPLETED": [guard_order_not_deleted, guard_order_has_items],
                "CANCELLED": [guard_order_not_deleted],
            },
            "PAUSED": {
                "IN_PROGRESS": [guard_order_not_deleted],
                "CANCELLED": [guard_order_not_deleted],
            },
            "COMPLETED": {},
            # Re-opening a cancelled order is the only re-entry path.
            "CANCELLED": {
                "PENDING": [guard_order_not_deleted],
            },
        }
    },
}
