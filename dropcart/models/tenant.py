from datetime import datetime
import json

import sqlalchemy as sa

from dropcart.extensions import db


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def default_operating_hours() -> dict:
    return {day: {"open": "09:00", "close": "22:00", "closed": False} for day in WEEKDAYS}


class Tenant(db.Model):
    __tablename__ = "tenants"
    __table_args__ = (
        db.CheckConstraint("delivery_radius_km > 0", name="ck_tenants_delivery_radius_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(160), nullable=False)
    slug = db.Column(db.String(80), nullable=False, unique=True, index=True)

    # restaurant | pharmacy | grocery
    business_type = db.Column(db.String(24), nullable=False, default="restaurant", server_default="restaurant", index=True)

    address = db.Column(db.String(255), nullable=False, default="", server_default="")
    latitude = db.Column(db.Float, nullable=False, default=0.0)
    longitude = db.Column(db.Float, nullable=False, default=0.0)

    delivery_radius_km = db.Column(db.Float, nullable=False, default=5.0, server_default="5")
    minimum_order = db.Column(db.Numeric(12, 2), nullable=False, default=20, server_default="20")
    delivery_fee = db.Column(db.Numeric(12, 2), nullable=False, default=3, server_default="3")

    # JSON object keyed monday..sunday -> {open, close, closed}
    operating_hours_json = db.Column(db.Text, nullable=True)

    image_url = db.Column(db.String(1024), nullable=True)
    business_license = db.Column(db.String(120), nullable=True)

    # Inactive until payment onboarding is verified.
    is_active = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))

    payment_account_id = db.Column(db.String(120), nullable=True, index=True)
    payment_details_submitted = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def operating_hours(self) -> dict:
        raw = (self.operating_hours_json or "").strip()
        if not raw:
            return default_operating_hours()
        try:
            parsed = json.loads(raw)
        except ValueError:
            return default_operating_hours()
        if not isinstance(parsed, dict):
            return default_operating_hours()
        hours = default_operating_hours()
        for day in WEEKDAYS:
            entry = parsed.get(day)
            if isinstance(entry, dict):
                hours[day] = {
                    "open": str(entry.get("open") or hours[day]["open"]),
                    "close": str(entry.get("close") or hours[day]["close"]),
                    "closed": bool(entry.get("closed", False)),
                }
        return hours

    @operating_hours.setter
    def operating_hours(self, value: dict | None) -> None:
        self.operating_hours_json = json.dumps(value or default_operating_hours(), separators=(",", ":"))

    def summary(self) -> dict:
        return {
            "name": self.name,
            "slug": self.slug,
            "business_type": self.business_type,
            "address": self.address or "",
            "operating_hours": self.operating_hours,
        }

    def to_dict(self, *, include_private: bool = False) -> dict:
        payload = {
            "id": int(self.id),
            "name": self.name,
            "slug": self.slug,
            "business_type": self.business_type,
            "address": self.address or "",
            "coordinates": {"lat": float(self.latitude), "lng": float(self.longitude)},
            "delivery_radius_km": float(self.delivery_radius_km or 0.0),
            "minimum_order": float(self.minimum_order or 0),
            "delivery_fee": float(self.delivery_fee or 0),
            "operating_hours": self.operating_hours,
            "image_url": self.image_url or "",
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_private:
            payload["payment_account_id"] = self.payment_account_id or ""
            payload["payment_details_submitted"] = bool(self.payment_details_submitted)
            payload["business_license"] = self.business_license or ""
        return payload
