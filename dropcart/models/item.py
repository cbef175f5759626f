from datetime import datetime

import sqlalchemy as sa

from dropcart.extensions import db


DEFAULT_LOW_STOCK_THRESHOLD = 10


class Item(db.Model):
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint("inventory >= 0", name="ck_items_inventory_non_negative"),
        db.CheckConstraint("price > 0", name="ck_items_price_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False)

    # food | medicine | grocery
    business_type = db.Column(db.String(24), nullable=False, default="food", server_default="food", index=True)
    # piece | kg | liter | pack | box
    unit = db.Column(db.String(16), nullable=False, default="piece", server_default="piece")

    inventory = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    track_inventory = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))
    low_stock_threshold = db.Column(db.Integer, nullable=True, default=DEFAULT_LOW_STOCK_THRESHOLD)

    prescription_required = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    is_perishable = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    preparation_minutes = db.Column(db.Integer, nullable=False, default=30, server_default="30")
    image_url = db.Column(db.String(1024), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))
    is_archived = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"), index=True)
    is_private = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def effective_low_stock_threshold(self) -> int:
        if self.low_stock_threshold is None:
            return DEFAULT_LOW_STOCK_THRESHOLD
        return int(self.low_stock_threshold)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "tenant_id": int(self.tenant_id),
            "category_id": int(self.category_id) if self.category_id is not None else None,
            "name": self.name,
            "description": self.description or "",
            "price": float(self.price or 0),
            "business_type": self.business_type or "food",
            "unit": self.unit or "piece",
            "inventory": int(self.inventory or 0),
            "track_inventory": bool(self.track_inventory),
            "low_stock_threshold": self.effective_low_stock_threshold,
            "prescription_required": bool(self.prescription_required),
            "is_perishable": bool(self.is_perishable),
            "preparation_minutes": int(self.preparation_minutes or 0),
            "image_url": self.image_url or "",
            "is_active": bool(self.is_active),
            "is_archived": bool(self.is_archived),
            "is_private": bool(self.is_private),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
