import logging
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from database.models import Product, utcnow
from services.errors import DuplicateProductError

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGES = {
    "name": "A product with this name already exists.",
    "barcode": "A product with this barcode already exists.",
    "hsn_code": "A product with this HSN code already exists.",
}


class ProductIn(BaseModel):
    name: str = Field(min_length=1)
    brand: Optional[str] = None
    hsn_code: Optional[str] = None
    barcode: Optional[str] = None
    mrp: Decimal = Field(ge=0)
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    selling_price: Optional[Decimal] = Field(default=None, ge=0)
    gst_rate: Decimal = Field(default=Decimal("18"), ge=0, le=100)
    price_includes_gst: bool = True
    stock_quantity: int = Field(default=0, ge=0)
    min_stock_level: int = Field(default=5, ge=0)

    def to_row_values(self) -> dict:
        values = self.model_dump()
        values["name"] = values["name"].strip()
        values["brand"] = (values["brand"] or "").strip() or "Generic"
        # Empty strings would collide on the unique indexes
        values["barcode"] = (values["barcode"] or "").strip() or None
        values["hsn_code"] = (values["hsn_code"] or "").strip() or None
        return values


def duplicate_field_from_error(exc: IntegrityError) -> Optional[str]:
    detail = str(exc.orig)
    for field in ("barcode", "hsn_code", "name"):
        if f"products.{field}" in detail or f"products_{field}" in detail or f"({field})" in detail:
            return field
    return None


class ProductService:
    def find_duplicate(self, session: Session, values: dict, exclude_id: Optional[int] = None) -> Optional[str]:
        """Name of the first unique field already taken by another product."""
        for field in ("name", "barcode", "hsn_code"):
            value = values.get(field)
            if not value:
                continue
            statement = select(Product).where(getattr(Product, field) == value)
            if exclude_id is not None:
                statement = statement.where(Product.id != exclude_id)
            if session.exec(statement).first():
                return field
        return None

    def _save(self, session: Session, product: Product) -> Product:
        try:
            session.add(product)
            session.commit()
        except IntegrityError as e:
            # Raced past the pre-check; the store's constraint still catches it
            session.rollback()
            field = duplicate_field_from_error(e)
            logger.warning("Product save rejected by unique constraint (%s): %s", field, e.orig)
            if field:
                raise DuplicateProductError(field, DUPLICATE_MESSAGES[field]) from e
            raise
        session.refresh(product)
        return product

    def create_product(self, session: Session, data: ProductIn) -> Product:
        values = data.to_row_values()
        field = self.find_duplicate(session, values)
        if field:
            raise DuplicateProductError(field, DUPLICATE_MESSAGES[field])
        product = self._save(session, Product(**values))
        logger.info("Product %s created (%s)", product.id, product.name)
        return product

    def update_product(self, session: Session, product_id: int, data: ProductIn) -> Optional[Product]:
        product = session.get(Product, product_id)
        if not product:
            return None
        values = data.to_row_values()
        field = self.find_duplicate(session, values, exclude_id=product_id)
        if field:
            raise DuplicateProductError(field, DUPLICATE_MESSAGES[field])
        for key, value in values.items():
            setattr(product, key, value)
        product.updated_at = utcnow()
        return self._save(session, product)

    def delete_product(self, session: Session, product_id: int) -> bool:
        product = session.get(Product, product_id)
        if not product:
            return False
        session.delete(product)
        session.commit()
        logger.info("Product %s deleted", product_id)
        return True

    def list_products(self, session: Session, search: Optional[str] = None, brand: Optional[str] = None, in_stock_only: bool = False) -> List[Product]:
        statement = select(Product)
        if brand:
            statement = statement.where(Product.brand == brand)
        if in_stock_only:
            statement = statement.where(Product.stock_quantity > 0)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            statement = statement.where(or_(
                col(Product.name).ilike(pattern),
                col(Product.brand).ilike(pattern),
                col(Product.barcode).ilike(pattern),
                col(Product.hsn_code).ilike(pattern),
            ))
        return session.exec(statement.order_by(Product.name)).all()

    def list_brands(self, session: Session) -> List[str]:
        brands = session.exec(select(Product.brand).distinct()).all()
        return sorted(b or "Generic" for b in brands)

    def find_by_barcode(self, session: Session, barcode: str) -> Optional[Product]:
        return session.exec(select(Product).where(Product.barcode == barcode.strip())).first()

    def low_stock_products(self, session: Session) -> List[Product]:
        return session.exec(
            select(Product).where(Product.stock_quantity < Product.min_stock_level).order_by(Product.stock_quantity)
        ).all()
