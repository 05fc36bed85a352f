"""
Product detail service: gallery, variants, rating and stock per product.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from catalog import to_int, to_number
from database import create_document, to_dict, transaction
from errors import Conflict, NotFound, OutOfStock, ValidationError
from models import Product, ProductDetails

logger = logging.getLogger(__name__)

DEFAULT_GALLERY_SLOTS = 4


def _defaults() -> Dict[str, Any]:
    return {
        "gallery": [""] * DEFAULT_GALLERY_SLOTS,
        "rating": None,
        "full_description": "",
        "care_instructions": "",
        "material": "",
        "fit": "",
        "length": "",
        "discount_price": None,
        "discount_percentage": "0",
        "colors": [""],
        "sizes": [""],
        "gender": "",
        "model_info": "",
        "quantity": 0,
    }


def _string_list(value: Any, field: str) -> List[str]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list")
    return ["" if item is None else str(item) for item in value]


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Merge fields over the defaults and coerce them to their column types."""
    unknown = set(fields) - set(_defaults())
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    data = _defaults()
    data.update({key: value for key, value in fields.items() if value is not None})

    try:
        rating = to_number(data["rating"], "rating")
    except ValidationError:
        raise ValidationError("Rating must be a valid number")
    if not 0 <= rating <= 5:
        raise ValidationError("Rating must be between 0 and 5")
    data["rating"] = rating

    try:
        quantity = to_int(data["quantity"], "quantity")
    except ValidationError:
        quantity = -1
    if quantity < 0:
        raise ValidationError("Quantity must be a non-negative integer")
    data["quantity"] = quantity

    data["discount_percentage"] = to_number(data["discount_percentage"] or 0, "discount_percentage")
    if data["discount_price"] not in (None, ""):
        data["discount_price"] = to_number(data["discount_price"], "discount_price")
    else:
        data["discount_price"] = None

    for field in ("gallery", "colors", "sizes"):
        data[field] = _string_list(data[field], field)
    return data


def _parse_product_id(product_id: Any, message: str = "Valid product_id is required") -> int:
    try:
        return to_int(product_id, "product_id")
    except ValidationError:
        raise ValidationError(message)


def get_details(db: Session, product_id: Any) -> Dict[str, Any]:
    product_id = _parse_product_id(product_id, "Invalid product ID")
    details = db.query(ProductDetails).filter(ProductDetails.product_id == product_id).first()
    if details is None:
        raise NotFound("Product not found")
    return to_dict(details)


def create_details(db: Session, product_id: Any, **fields: Any) -> Dict[str, Any]:
    product_id = _parse_product_id(product_id)
    data = _clean_fields(fields)

    with transaction(db):
        if db.get(Product, product_id) is None:
            raise ValidationError("Product does not exist")
        if db.query(ProductDetails.id).filter(ProductDetails.product_id == product_id).first() is not None:
            raise Conflict("Product details already exist")
        details = create_document(db, ProductDetails, {"product_id": product_id, **data})

    logger.info("Created details for product %s with quantity %s", product_id, details.quantity)
    return to_dict(details)


def update_details(db: Session, product_id: Any, **fields: Any) -> Dict[str, Any]:
    """Replace every field of the product's details; omitted fields get the defaults."""
    product_id = _parse_product_id(product_id, "Invalid product ID")
    data = _clean_fields(fields)

    with transaction(db):
        details = db.query(ProductDetails).filter(ProductDetails.product_id == product_id).first()
        if details is None:
            raise NotFound("Product not found")
        for key, value in data.items():
            setattr(details, key, value)
        db.flush()

    logger.info("Updated details for product %s", product_id)
    return to_dict(details)


def delete_details(db: Session, product_id: Any) -> Dict[str, Any]:
    product_id = _parse_product_id(product_id, "Invalid product ID")
    with transaction(db):
        deleted = (
            db.query(ProductDetails)
            .filter(ProductDetails.product_id == product_id)
            .delete(synchronize_session=False)
        )
    if deleted:
        logger.info("Deleted details for product %s", product_id)
    return {"success": True}


def reduce_stock(db: Session, product_id: Any) -> int:
    """Take one unit out of stock and return the quantity left.

    The check and the decrement are one conditional UPDATE, so concurrent
    callers can never drive the quantity below zero.
    """
    product_id = _parse_product_id(product_id, "Invalid product ID")
    stmt = (
        update(ProductDetails)
        .where(ProductDetails.product_id == product_id, ProductDetails.quantity > 0)
        .values(quantity=ProductDetails.quantity - 1)
        .returning(ProductDetails.quantity)
        .execution_options(synchronize_session=False)
    )

    with transaction(db):
        remaining: Optional[int] = db.execute(stmt).scalar_one_or_none()
        if remaining is None:
            exists = db.query(ProductDetails.id).filter(ProductDetails.product_id == product_id).first()
            if exists is None:
                raise NotFound("Product not found")
            raise OutOfStock("Product is out of stock")

    logger.info("Reduced stock for product %s to %s", product_id, remaining)
    return remaining
