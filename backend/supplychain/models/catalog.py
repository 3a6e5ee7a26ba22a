from __future__ import annotations

from ..extensions import db
from supplychain.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data, scoped to a company (root HQ organization).

    Stock is tracked per ProductVariant, never per Product.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("company_id", "product_code", name="uq_products_company_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_code = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variants = db.relationship("ProductVariant", back_populates="product", lazy=True)

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.product_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariant(db.Model):
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sku", name="uq_product_variants_product_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    variant_name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="variants")

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "variant_name": self.variant_name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
