from sqlalchemy.orm import Session

from stockledger.errors import IntegrityViolationError, NotFoundError, ValidationError
from stockledger.models import Product, ProductVariant


def resolve_item(
    db: Session,
    product_id: int,
    variant_id: int | None,
    *,
    field_prefix: str = "",
) -> tuple[Product, ProductVariant | None]:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product", product_id, field=f"{field_prefix}product_id")
    if not product.is_active or product.deleted_at is not None:
        raise ValidationError(f"Product {product.sku} is inactive.", field=f"{field_prefix}product_id")
    if variant_id is None:
        return product, None
    variant = db.get(ProductVariant, variant_id)
    if not variant:
        raise NotFoundError("Variant", variant_id, field=f"{field_prefix}variant_id")
    if variant.product_id != product.id:
        raise IntegrityViolationError(
            f"Variant {variant.sku} does not belong to product {product.sku}.",
            field=f"{field_prefix}variant_id",
        )
    if not variant.is_active or variant.deleted_at is not None:
        raise ValidationError(f"Variant {variant.sku} is inactive.", field=f"{field_prefix}variant_id")
    return product, variant
