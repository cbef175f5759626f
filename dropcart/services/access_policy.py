from __future__ import annotations

from dataclasses import dataclass

from dropcart.extensions import db
from dropcart.utils.errors import BadRequestError, ForbiddenError, NotFoundError


class Role:
    CUSTOMER = "customer"
    MERCHANT = "merchant"
    SUPERADMIN = "superadmin"

    ALL = (CUSTOMER, MERCHANT, SUPERADMIN)


@dataclass(frozen=True)
class Actor:
    """Who is acting. ``kind`` is ``user`` for people and ``system`` for webhooks and tasks."""

    user_id: int | None
    role: str
    tenant_id: int | None = None
    kind: str = "user"

    @classmethod
    def from_user(cls, user) -> "Actor":
        role = (getattr(user, "role", None) or Role.CUSTOMER).strip().lower()
        if role not in Role.ALL:
            role = Role.CUSTOMER
        return cls(user_id=int(user.id), role=role, tenant_id=getattr(user, "tenant_id", None))

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=Role.SUPERADMIN, kind="system")

    def as_log_actor(self) -> dict:
        return {"type": self.kind if self.kind == "system" else self.role, "id": self.user_id}


class AccessPolicy:
    """Single place where tenant scoping and the superadmin bypass are decided."""

    @staticmethod
    def is_superadmin(actor: Actor | None) -> bool:
        return bool(actor is not None and actor.role == Role.SUPERADMIN)

    def can_access_tenant(self, actor: Actor | None, tenant_id: int | None) -> bool:
        if self.is_superadmin(actor):
            return True
        if actor is None or actor.tenant_id is None or tenant_id is None:
            return False
        return int(actor.tenant_id) == int(tenant_id)

    def ensure_tenant_access(self, actor: Actor | None, tenant_id: int | None) -> None:
        if not self.can_access_tenant(actor, tenant_id):
            raise ForbiddenError("You do not have access to this store", code="TENANT_ACCESS_DENIED")

    def ensure_merchant(self, actor: Actor | None) -> None:
        if self.is_superadmin(actor):
            return
        if actor is None or actor.role != Role.MERCHANT or actor.tenant_id is None:
            raise ForbiddenError("Merchant access required", code="MERCHANT_REQUIRED")

    def ensure_superadmin(self, actor: Actor | None) -> None:
        if not self.is_superadmin(actor):
            raise ForbiddenError("Superadmin access required", code="SUPERADMIN_REQUIRED")

    def scope_query(self, actor: Actor | None, query, model):
        """Filter ``query`` to the actor's tenant; superadmins see everything.

        Actors with no tenant membership are refused outright so a list call
        can never be mistaken for an empty store.
        """
        if self.is_superadmin(actor):
            return query
        if actor is None or actor.tenant_id is None:
            raise ForbiddenError("You do not have access to this store", code="TENANT_ACCESS_DENIED")
        return query.filter(model.tenant_id == int(actor.tenant_id))

    def load_scoped(self, actor: Actor | None, model, row_id, *, label: str | None = None):
        """Load one tenant-owned row: NOT_FOUND if missing, FORBIDDEN if foreign."""
        try:
            rid = int(row_id)
        except (TypeError, ValueError):
            rid = None
        row = db.session.get(model, rid) if rid is not None else None
        name = label or model.__name__
        if row is None:
            raise NotFoundError(f"{name} not found", code=f"{name.upper()}_NOT_FOUND")
        self.ensure_tenant_access(actor, getattr(row, "tenant_id", None))
        return row

    def ensure_can_sell(self, tenant, *, actor: Actor | None = None) -> None:
        """Merchants cannot list or sell before payment onboarding completes.

        Passing a superadmin ``actor`` lets platform staff seed a catalog; checkout
        never passes one.
        """
        if actor is not None and self.is_superadmin(actor):
            return
        if not bool(getattr(tenant, "payment_details_submitted", False)):
            raise BadRequestError(
                "Tenant not allowed to sell items until payment verification is complete",
                code="MERCHANT_NOT_VERIFIED",
            )


policy = AccessPolicy()
