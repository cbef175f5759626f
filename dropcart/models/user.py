from datetime import datetime

from werkzeug.security import generate_password_hash, check_password_hash

from dropcart.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    # customer | merchant | superadmin
    role = db.Column(db.String(32), nullable=False, default="customer")

    # Merchants belong to exactly one storefront.
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role or "customer",
            "tenant_id": int(self.tenant_id) if self.tenant_id is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
