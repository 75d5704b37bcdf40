from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PRODUCT_KINDS = ("GOOD", "SERVICE")
MOVEMENT_DIRECTIONS = ("IN", "OUT")


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to organizations via org_id and
    SKUs are unique within an organization.

    STOCK: on_hand_quantity is a running counter maintained only by the
    stock ledger (services/stock_service.py). It must always equal the
    signed sum of the product's StockMovement rows. SERVICE products have
    no stock concept; their counter stays at zero.

    Products are soft-deactivated (is_active=False), never hard-deleted,
    so historical order lines keep their reference.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.Index("ix_products_org_name", "org_id", "name"),
        db.Index("ix_products_org_active", "org_id", "is_active"),
        db.CheckConstraint("kind IN ('GOOD', 'SERVICE')", name="ck_products_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(16), nullable=False, default="GOOD")

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    on_hand_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def tracks_stock(self) -> bool:
        return self.kind == "GOOD"

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} kind={self.kind} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "kind": self.kind,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "on_hand_quantity": self.on_hand_quantity if self.tracks_stock else None,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    Never updated or deleted: corrections are new movements in the
    opposite direction. quantity is always positive; direction carries
    the sign.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_org_product_created", "org_id", "product_id", "created_at"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("direction IN ('IN', 'OUT')", name="ck_stock_movements_direction"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    direction = db.Column(db.String(8), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == "IN" else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "direction": self.direction,
            "quantity": self.quantity,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
