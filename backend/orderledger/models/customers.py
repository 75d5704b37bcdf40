from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Client(db.Model):
    """
    Client master data.

    MULTI-TENANT: Clients are scoped to organizations via org_id.
    Orders reference a client; this package reads clients but only ever
    writes the first_purchase_completed flag.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.Index("ix_clients_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Set once the client's first order reaches SOLD; never reset
    first_purchase_completed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("clients", lazy=True))

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "first_purchase_completed": self.first_purchase_completed,
            "created_at": to_utc_z(self.created_at),
        }
