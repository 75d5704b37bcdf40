from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


ORDER_STATUSES = ("QUOTE", "SOLD", "DECLINED")
LINE_KINDS = ("GOOD", "SERVICE")


class Order(db.Model):
    """
    Sales order header (quote or sale).

    LIFECYCLE: QUOTE -> SOLD, QUOTE -> DECLINED. SOLD and DECLINED are
    terminal for update_order; only reopen_order and delete_order undo
    a sale, and both post compensating stock movements.

    NUMBERING: number is tenant-scoped and unique per organization;
    uq_orders_org_number is the final arbiter under concurrent creation.

    TOTAL: total_cents = sum(quantity * unit_price_cents) + shipping_fee_cents,
    recomputed by the lifecycle service whenever lines or fee change.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_orders_org_number"),
        db.Index("ix_orders_org_status_created", "org_id", "status", "created_at"),
        db.CheckConstraint("status IN ('QUOTE', 'SOLD', 'DECLINED')", name="ck_orders_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Human-facing sequential number (e.g., #42)
    number = db.Column(db.Integer, nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    salesperson_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="QUOTE", index=True)

    quote_valid_until = db.Column(db.Date, nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)

    shipping_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    invoice_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client")
    salesperson = db.relationship("User")
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    events = db.relationship(
        "OrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.number} status={self.status} org_id={self.org_id}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "number": self.number,
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "salesperson_id": self.salesperson_id,
            "status": self.status,
            "quote_valid_until": to_iso_date(self.quote_valid_until),
            "delivery_date": to_iso_date(self.delivery_date),
            "shipping_fee_cents": self.shipping_fee_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "invoice_notes": self.invoice_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Line item owned by an order; replaced wholesale on update."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_order_lines_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Free-text lines have no product
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    # Copied from the product when the line is added
    kind = db.Column(db.String(16), nullable=False, default="SERVICE")

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def moves_stock(self) -> bool:
        return self.kind == "GOOD" and self.product_id is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "position": self.position,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "kind": self.kind,
            "subtotal_cents": self.subtotal_cents,
        }


class OrderEvent(db.Model):
    """Append-only order history entry; removed only with its order."""
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    description = db.Column(db.String(512), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="events")
    actor = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "description": self.description,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor.name if self.actor else None,
            "created_at": to_utc_z(self.created_at),
        }


class OrderNumberSequence(db.Model):
    """
    Per-organization order number counter.

    The row is locked (and version-checked) while a number is allocated,
    so two allocations for the same tenant never return the same value.
    """
    __tablename__ = "order_number_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", name="uq_order_number_sequences_org"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
