from datetime import datetime

from dropcart.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(40), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # pending | confirmed | preparing | ready | out_for_delivery | delivered | cancelled
    status = db.Column(db.String(24), nullable=False, default="pending", server_default="pending", index=True)
    # delivery | pickup
    order_type = db.Column(db.String(16), nullable=False, default="delivery", server_default="delivery")

    street = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    country = db.Column(db.String(80), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    address_instructions = db.Column(db.String(500), nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    delivery_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    distance_km = db.Column(db.Float, nullable=True)
    estimated_delivery_at = db.Column(db.DateTime, nullable=True)
    special_instructions = db.Column(db.Text, nullable=True)

    # card | cash
    payment_method = db.Column(db.String(16), nullable=False, default="card", server_default="card")
    # unpaid | paid
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid", server_default="unpaid")
    payment_session_id = db.Column(db.String(255), nullable=True, index=True)
    payment_account_id = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )

    def address_dict(self) -> dict | None:
        if self.order_type == "pickup" and not self.street:
            return None
        coords = None
        if self.latitude is not None and self.longitude is not None:
            coords = {"lat": float(self.latitude), "lng": float(self.longitude)}
        return {
            "street": self.street or "",
            "city": self.city or "",
            "postal_code": self.postal_code or "",
            "country": self.country or "",
            "coordinates": coords,
            "instructions": self.address_instructions or "",
        }

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "number": self.number,
            "user_id": int(self.user_id),
            "tenant_id": int(self.tenant_id),
            "status": self.status,
            "order_type": self.order_type,
            "delivery_address": self.address_dict(),
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": float(self.subtotal or 0),
            "delivery_fee": float(self.delivery_fee or 0),
            "total": float(self.total or 0),
            "distance_km": float(self.distance_km) if self.distance_km is not None else None,
            "estimated_delivery_at": self.estimated_delivery_at.isoformat() if self.estimated_delivery_at else None,
            "special_instructions": self.special_instructions or "",
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_session_id": self.payment_session_id or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # Shared reference; the item may be archived later.
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    item_name = db.Column(db.String(160), nullable=False, default="")
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    special_instructions = db.Column(db.String(500), nullable=True)

    @property
    def line_total(self):
        return self.unit_price * int(self.quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "item_id": int(self.item_id),
            "name": self.item_name,
            "unit_price": float(self.unit_price or 0),
            "quantity": int(self.quantity or 0),
            "line_total": float(self.line_total or 0),
            "special_instructions": self.special_instructions or "",
        }
