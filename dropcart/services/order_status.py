from __future__ import annotations


class OrderStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    HAPPY_PATH = (PENDING, CONFIRMED, PREPARING, READY, OUT_FOR_DELIVERY, DELIVERED)
    TERMINAL = {DELIVERED, CANCELLED}
    ALL = set(HAPPY_PATH) | {CANCELLED}
    ALLOWED: dict = {}


# Forward jumps along the happy path are allowed; cancellation from any
# non-terminal state. Terminal states accept nothing.
for _idx, _state in enumerate(OrderStatus.HAPPY_PATH):
    OrderStatus.ALLOWED[_state] = set(OrderStatus.HAPPY_PATH[_idx + 1:]) | {OrderStatus.CANCELLED}
OrderStatus.ALLOWED[OrderStatus.DELIVERED] = set()
OrderStatus.ALLOWED[OrderStatus.CANCELLED] = set()
del _idx, _state


STATUS_MESSAGES = {
    OrderStatus.PENDING: "Your order has been placed and is pending confirmation",
    OrderStatus.CONFIRMED: "Your order has been confirmed and is being prepared",
    OrderStatus.PREPARING: "Your order is being prepared",
    OrderStatus.READY: "Your order is ready for pickup/delivery",
    OrderStatus.OUT_FOR_DELIVERY: "Your order is out for delivery",
    OrderStatus.DELIVERED: "Your order has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}
DEFAULT_STATUS_MESSAGE = "Your order status has been updated"


def status_message(status: str | None) -> str:
    return STATUS_MESSAGES.get((status or "").strip().lower(), DEFAULT_STATUS_MESSAGE)


def status_label(status: str | None) -> str:
    return (status or "").replace("_", " ").title()


def can_transition(current: str, target: str) -> bool:
    return target in OrderStatus.ALLOWED.get(current, set())
