from datetime import datetime

import sqlalchemy as sa

from dropcart.extensions import db


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        # NULL tenant_id (global) slugs are checked in catalog_service; SQL treats NULLs as distinct.
        db.UniqueConstraint("tenant_id", "slug", name="uq_categories_tenant_slug"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), nullable=False, index=True)
    # food | pharmacy | grocery | all
    business_type = db.Column(db.String(24), nullable=False, default="all", server_default="all")
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "tenant_id": int(self.tenant_id) if self.tenant_id is not None else None,
            "name": self.name or "",
            "slug": self.slug or "",
            "business_type": self.business_type or "all",
            "parent_id": int(self.parent_id) if self.parent_id is not None else None,
            "sort_order": int(self.sort_order or 0),
            "is_active": bool(self.is_active),
        }
