from datetime import datetime

from dropcart.extensions import db


class InventoryAdjustment(db.Model):
    __tablename__ = "inventory_adjustments"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    previous_quantity = db.Column(db.Integer, nullable=True)
    new_quantity = db.Column(db.Integer, nullable=True)
    delta = db.Column(db.Integer, nullable=False, default=0)
    # restock | sale | damage | adjustment
    reason = db.Column(db.String(24), nullable=False, default="adjustment")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "item_id": int(self.item_id),
            "tenant_id": int(self.tenant_id),
            "actor_user_id": int(self.actor_user_id) if self.actor_user_id is not None else None,
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "delta": int(self.delta or 0),
            "reason": self.reason or "adjustment",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
