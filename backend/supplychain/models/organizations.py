from __future__ import annotations

from ..extensions import db
from supplychain.time_utils import to_utc_z


ORG_TYPE_HQ = "HQ"
ORG_TYPE_MANUFACTURER = "MANUFACTURER"
ORG_TYPE_DISTRIBUTOR = "DISTRIBUTOR"
ORG_TYPE_SHOP = "SHOP"
ORG_TYPE_WAREHOUSE = "WAREHOUSE"

ORG_TYPES = (
    ORG_TYPE_HQ,
    ORG_TYPE_MANUFACTURER,
    ORG_TYPE_DISTRIBUTOR,
    ORG_TYPE_SHOP,
    ORG_TYPE_WAREHOUSE,
)


class Organization(db.Model):
    """
    A node in a tenant's organization hierarchy.

    The parent link is a plain id used for hierarchy traversal only; there is
    deliberately no parent/children relationship so the graph is always
    rebuilt from storage by services.hierarchy_service.

    The root HQ of a chain is the "company" that scopes tenant data.
    """
    __tablename__ = "organizations"
    __table_args__ = (
        db.Index("ix_organizations_parent", "parent_org_id"),
        db.Index("ix_organizations_type_active", "org_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    org_name = db.Column(db.String(255), nullable=False)
    org_type = db.Column(db.String(16), nullable=False)

    parent_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Org-level policy: invoices addressed to this org need a payment proof to be acknowledged
    require_payment_proof = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} code={self.org_code!r} type={self.org_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_code": self.org_code,
            "org_name": self.org_name,
            "org_type": self.org_type,
            "parent_org_id": self.parent_org_id,
            "is_active": self.is_active,
            "require_payment_proof": self.require_payment_proof,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ShopDistributor(db.Model):
    """
    Extra distributors a shop may buy from, besides its parent distributor.
    """
    __tablename__ = "shop_distributors"
    __table_args__ = (
        db.UniqueConstraint("shop_org_id", "distributor_org_id", name="uq_shop_distributors_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    distributor_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_org_id": self.shop_org_id,
            "distributor_org_id": self.distributor_org_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Dashboard user. role_level follows the tiering where 1 is the single
    highest privilege tier (super admin) and larger numbers mean less power.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(255), nullable=True)
    role_level = db.Column(db.Integer, nullable=False, default=40)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", foreign_keys=[org_id])

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} org_id={self.org_id} level={self.role_level}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "email": self.email,
            "full_name": self.full_name,
            "role_level": self.role_level,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Opaque bearer token resolved to an actor by the identity collaborator.

    Only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
