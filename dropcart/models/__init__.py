from dropcart.models.user import User
from dropcart.models.tenant import Tenant
from dropcart.models.category import Category
from dropcart.models.item import Item
from dropcart.models.order import Order, OrderLine
from dropcart.models.order_transition import OrderTransition
from dropcart.models.review import Review
from dropcart.models.inventory_adjustment import InventoryAdjustment
from dropcart.models.notification import Notification
from dropcart.models.webhook_event import WebhookEvent
from dropcart.models.idempotency_key import IdempotencyKey

__all__ = [
    "User",
    "Tenant",
    "Category",
    "Item",
    "Order",
    "OrderLine",
    "OrderTransition",
    "Review",
    "InventoryAdjustment",
    "Notification",
    "WebhookEvent",
    "IdempotencyKey",
]
