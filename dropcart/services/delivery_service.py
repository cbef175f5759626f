from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from dropcart.models import Tenant
from dropcart.utils.errors import BadRequestError
from dropcart.utils.geo import haversine_km
from dropcart.utils.money import quantize_money, to_decimal

FREE_SURCHARGE_BAND_KM = Decimal("5")
SURCHARGE_PER_KM = Decimal("1")
TRAVEL_MINUTES_PER_KM = 3
FREE_DELIVERY_MULTIPLIER = Decimal("2")

PREPARATION_MINUTES = {
    "restaurant": 25,
    "pharmacy": 10,
    "grocery": 15,
}
DEFAULT_PREPARATION_MINUTES = 20

OUTSIDE_DELIVERY_RADIUS = "outside_delivery_radius"


@dataclass
class DeliveryQuote:
    can_deliver: bool
    distance_km: float
    delivery_radius_km: float
    delivery_fee: Decimal = Decimal("0.00")
    original_delivery_fee: Decimal = Decimal("0.00")
    free_delivery: bool = False
    meets_minimum_order: bool = False
    minimum_order: Decimal = Decimal("0.00")
    order_total: Decimal = Decimal("0.00")
    preparation_minutes: int = DEFAULT_PREPARATION_MINUTES
    estimated_minutes: int | None = None
    reason: str = ""
    message: str = ""
    merchant: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        payload = {
            "can_deliver": self.can_deliver,
            "distance_km": self.distance_km,
            "delivery_radius_km": self.delivery_radius_km,
            "merchant": self.merchant,
        }
        if not self.can_deliver:
            payload["reason"] = self.reason
            payload["max_radius_km"] = self.delivery_radius_km
            payload["message"] = self.message
            return payload
        payload.update(
            {
                "delivery_fee": float(self.delivery_fee),
                "original_delivery_fee": float(self.original_delivery_fee),
                "free_delivery": self.free_delivery,
                "meets_minimum_order": self.meets_minimum_order,
                "minimum_order": float(self.minimum_order),
                "order_total": float(self.order_total),
                "preparation_minutes": self.preparation_minutes,
                "estimated_minutes": self.estimated_minutes,
            }
        )
        return payload


def preparation_minutes(business_type: str | None) -> int:
    return PREPARATION_MINUTES.get((business_type or "").strip().lower(), DEFAULT_PREPARATION_MINUTES)


def travel_minutes(distance_km: float) -> int:
    return int(math.ceil(float(distance_km) * TRAVEL_MINUTES_PER_KM))


def compute_delivery_fee(base_fee, distance_km: float) -> Decimal:
    """Base fee plus one currency unit per km beyond the first five."""
    surcharge = (to_decimal(distance_km) - FREE_SURCHARGE_BAND_KM) * SURCHARGE_PER_KM
    if surcharge < 0:
        surcharge = Decimal("0")
    return quantize_money(to_decimal(base_fee) + surcharge)


def parse_order_total(value) -> Decimal:
    try:
        total = Decimal(str(value if value not in (None, "") else 0))
        if total.is_finite() and total >= 0:
            return quantize_money(total)
    except (InvalidOperation, ValueError):
        pass
    raise BadRequestError(
        "order_total must be a non-negative amount",
        code="INVALID_ORDER_TOTAL",
        details={"order_total": str(value)},
    )


def quote_delivery(tenant: Tenant, lat: float, lng: float, subtotal=0) -> DeliveryQuote:
    """Decide whether ``tenant`` delivers to (lat, lng) and at what fee.

    Being out of range is a normal negative result, not an error. An inactive
    merchant is refused outright because no order could be placed anyway.
    """
    if not bool(tenant.is_active):
        raise BadRequestError(
            "Merchant is currently not accepting orders",
            code="MERCHANT_NOT_ACCEPTING_ORDERS",
        )
    order_total = parse_order_total(subtotal)

    distance = haversine_km(tenant.latitude, tenant.longitude, lat, lng)
    radius = float(tenant.delivery_radius_km or 0.0)
    merchant = tenant.summary()

    if distance > radius:
        return DeliveryQuote(
            can_deliver=False,
            distance_km=distance,
            delivery_radius_km=radius,
            reason=OUTSIDE_DELIVERY_RADIUS,
            message=(
                f"Sorry, we only deliver within {radius:g}km. "
                f"Your location is {distance}km away."
            ),
            merchant=merchant,
        )

    minimum = quantize_money(tenant.minimum_order)
    original_fee = compute_delivery_fee(tenant.delivery_fee, distance)
    free_delivery = order_total >= minimum * FREE_DELIVERY_MULTIPLIER
    prep = preparation_minutes(tenant.business_type)

    return DeliveryQuote(
        can_deliver=True,
        distance_km=distance,
        delivery_radius_km=radius,
        delivery_fee=Decimal("0.00") if free_delivery else original_fee,
        original_delivery_fee=original_fee,
        free_delivery=free_delivery,
        meets_minimum_order=order_total >= minimum,
        minimum_order=minimum,
        order_total=order_total,
        preparation_minutes=prep,
        estimated_minutes=prep + travel_minutes(distance),
        merchant=merchant,
    )
