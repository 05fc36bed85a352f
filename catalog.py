"""
Catalog service: categories, the navigation tree, and products.

Categories are navigation nodes flagged as categories plus a row in the
categories table linked through nav_item_id. Every write that touches both
tables runs in a single transaction so the link never drifts.
"""

import logging
import math
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, aliased
from sqlalchemy.sql import func

from database import create_document, get_documents, to_dict, transaction
from errors import Conflict, NotFound, ValidationError
from models import Category, NavigationItem, OrderItem, Product, ProductDetails

logger = logging.getLogger(__name__)

PRODUCT_SORTS = ("price-low", "price-high", "name-asc", "name-desc", "sale", "newest")


# ---------- Helpers ----------

def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", (name or "").strip().lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


def generate_slug(name: str) -> str:
    """Name-derived slug with a time-based suffix, e.g. "linen-shirt-482913"."""
    return f"{slugify(name)[:50]}-{str(int(time.time() * 1000))[-6:]}"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_number(value: Any, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a valid number")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be a valid number")
    return number


def to_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def sale_info(price: Optional[float], original_price: Optional[float]) -> Tuple[bool, Optional[int]]:
    if original_price is None or price is None or original_price <= price:
        return False, None
    return True, round_half_up((original_price - price) / original_price * 100)


def effective_original_price(original_price: Any, price: float) -> Optional[float]:
    """Keep original_price only when it is strictly above price."""
    if original_price is None or original_price == "":
        return None
    original = to_number(original_price, "original_price")
    return original if original > price else None


# ---------- Categories ----------

def list_categories(db: Session) -> List[Dict[str, Any]]:
    nav = aliased(NavigationItem)
    parent = aliased(NavigationItem)
    rows = (
        db.query(
            Category.id,
            Category.name,
            Category.nav_item_id,
            nav.title.label("category"),
            nav.slug.label("nav_slug"),
            nav.position,
            nav.parent_id,
            parent.title.label("parent_category"),
        )
        .outerjoin(nav, Category.nav_item_id == nav.id)
        .outerjoin(parent, nav.parent_id == parent.id)
        .order_by(
            func.coalesce(parent.position, -1),
            func.coalesce(parent.id, 0),
            func.coalesce(nav.position, 0),
            Category.name,
        )
        .all()
    )
    return [dict(row._mapping) for row in rows]


def create_category(db: Session, name: Optional[str], parent_id: Optional[int] = None,
                    position: Optional[int] = None) -> Dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    slug = slugify(name)
    if not slug:
        raise ValidationError("Category name must contain letters or digits")

    with transaction(db):
        if parent_id is not None:
            _get_nav_item(db, parent_id, "Parent navigation item not found")
        _ensure_unique_slug(db, slug, parent_id)
        nav_item = create_document(db, NavigationItem, {
            "title": name,
            "slug": slug,
            "parent_id": parent_id,
            "position": position or 0,
            "is_category": True,
        })
        category = create_document(db, Category, {"name": name, "nav_item_id": nav_item.id})

    logger.info("Created category %s (%s) linked to navigation %s", category.id, slug, nav_item.id)
    return {"category": to_dict(category), "navigation": to_dict(nav_item)}


# ---------- Navigation ----------

def _get_nav_item(db: Session, item_id: int, message: str = "Navigation item not found") -> NavigationItem:
    item = db.get(NavigationItem, item_id)
    if item is None:
        raise NotFound(message)
    return item


def _ensure_unique_slug(db: Session, slug: str, parent_id: Optional[int], exclude_id: Optional[int] = None) -> None:
    query = db.query(NavigationItem.id).filter(NavigationItem.slug == slug)
    if parent_id is None:
        query = query.filter(NavigationItem.parent_id.is_(None))
    else:
        query = query.filter(NavigationItem.parent_id == parent_id)
    if exclude_id is not None:
        query = query.filter(NavigationItem.id != exclude_id)
    if query.first() is not None:
        raise Conflict(f"Slug '{slug}' is already used under this parent")


def _check_parent(db: Session, item_id: Optional[int], parent_id: Optional[int]) -> None:
    if parent_id is None:
        return
    if item_id is not None and parent_id == item_id:
        raise ValidationError("A navigation item can not be its own parent")
    node = _get_nav_item(db, parent_id, "Parent navigation item not found")
    # walking up must never reach the item being moved
    while node.parent_id is not None:
        if item_id is not None and node.parent_id == item_id:
            raise ValidationError("A navigation item can not be moved under its own descendant")
        node = db.get(NavigationItem, node.parent_id)


def _require_title_and_slug(title: Optional[str], slug: Optional[str]) -> Tuple[str, str]:
    title = (title or "").strip()
    slug = (slug or "").strip()
    if not title or not slug:
        raise ValidationError("Title and slug are required")
    return title, slug


def list_navigation(db: Session) -> List[Dict[str, Any]]:
    items = get_documents(
        db, NavigationItem,
        order_by=[func.coalesce(NavigationItem.parent_id, 0), NavigationItem.position, NavigationItem.id],
    )
    return [to_dict(item) for item in items]


def create_navigation_item(db: Session, title: Optional[str], slug: Optional[str], parent_id: Optional[int] = None,
                           position: Optional[int] = None, is_category: bool = False) -> Dict[str, Any]:
    title, slug = _require_title_and_slug(title, slug)
    with transaction(db):
        _check_parent(db, None, parent_id)
        _ensure_unique_slug(db, slug, parent_id)
        item = create_document(db, NavigationItem, {
            "title": title,
            "slug": slug,
            "parent_id": parent_id,
            "position": position or 0,
            "is_category": bool(is_category),
        })
        if is_category:
            create_document(db, Category, {"name": title, "nav_item_id": item.id})

    logger.info("Created navigation item %s (%s)", item.id, slug)
    return to_dict(item)


def update_navigation_item(db: Session, item_id: Optional[int], title: Optional[str], slug: Optional[str],
                           parent_id: Optional[int] = None, position: Optional[int] = None,
                           is_category: bool = False) -> Dict[str, Any]:
    if item_id is None:
        raise ValidationError("ID, title, and slug are required")
    title, slug = _require_title_and_slug(title, slug)

    with transaction(db):
        item = _get_nav_item(db, item_id)
        _check_parent(db, item.id, parent_id)
        _ensure_unique_slug(db, slug, parent_id, exclude_id=item.id)
        item.title = title
        item.slug = slug
        item.parent_id = parent_id
        item.position = position or 0
        item.is_category = bool(is_category)

        if is_category:
            category = db.query(Category).filter(Category.nav_item_id == item.id).first()
            if category is None:
                create_document(db, Category, {"name": title, "nav_item_id": item.id})
            else:
                category.name = title
        else:
            # an unflagged node keeps no category behind
            db.query(Category).filter(Category.nav_item_id == item.id).delete(synchronize_session=False)
        db.flush()

    logger.info("Updated navigation item %s", item.id)
    return to_dict(item)


def delete_navigation_item(db: Session, item_id: Optional[int]) -> Dict[str, Any]:
    if item_id is None:
        raise ValidationError("ID is required")

    with transaction(db):
        _get_nav_item(db, item_id)
        children = [
            row.id for row in
            db.query(NavigationItem.id).filter(NavigationItem.parent_id == item_id).order_by(NavigationItem.id)
        ]
        if children:
            raise Conflict(
                "Cannot delete item with children. Please delete or reassign children first.",
                children=children,
            )
        db.query(Category).filter(Category.nav_item_id == item_id).delete(synchronize_session=False)
        db.query(NavigationItem).filter(NavigationItem.id == item_id).delete(synchronize_session=False)

    logger.info("Deleted navigation item %s", item_id)
    return {"success": True}


def reconcile_category_navigation(db: Session) -> Dict[str, List[Dict[str, Any]]]:
    """Report categories without navigation and category nodes without a category."""
    missing_nav = db.query(Category).filter(Category.nav_item_id.is_(None)).order_by(Category.id).all()
    missing_categories = (
        db.query(NavigationItem)
        .outerjoin(Category, Category.nav_item_id == NavigationItem.id)
        .filter(NavigationItem.is_category.is_(True), Category.id.is_(None))
        .order_by(NavigationItem.id)
        .all()
    )
    return {
        "categories_needing_nav": [to_dict(c) for c in missing_nav],
        "nav_needing_categories": [to_dict(n) for n in missing_categories],
    }


def repair_category_navigation(db: Session) -> Dict[str, Any]:
    navigation_created = 0
    categories_created = 0
    with transaction(db):
        report = reconcile_category_navigation(db)
        for row in report["categories_needing_nav"]:
            category = db.get(Category, row["id"])
            slug = slugify(category.name) or f"category-{category.id}"
            if db.query(NavigationItem.id).filter(NavigationItem.slug == slug,
                                                  NavigationItem.parent_id.is_(None)).first():
                slug = f"{slug}-{category.id}"
            nav_item = create_document(db, NavigationItem, {
                "title": category.name,
                "slug": slug,
                "parent_id": None,
                "position": 0,
                "is_category": True,
            })
            category.nav_item_id = nav_item.id
            navigation_created += 1

        for row in report["nav_needing_categories"]:
            create_document(db, Category, {"name": row["title"], "nav_item_id": row["id"]})
            categories_created += 1
        db.flush()

    logger.info("Category sync created %d navigation items and %d categories",
                navigation_created, categories_created)
    return {
        "success": True,
        "navigation_created": navigation_created,
        "categories_created": categories_created,
    }


# ---------- Products ----------

def _product_query(db: Session):
    nav = aliased(NavigationItem)
    parent_nav = aliased(NavigationItem)
    return (
        db.query(
            Product.id,
            Product.name,
            Product.slug,
            Product.price,
            Product.original_price,
            Product.description,
            Product.image,
            Product.category_id,
            Category.name.label("category_name"),
            nav.slug.label("category_slug"),
            parent_nav.slug.label("parent_category_slug"),
            ProductDetails.rating,
            Product.created_at,
        )
        .outerjoin(Category, Product.category_id == Category.id)
        .outerjoin(nav, Category.nav_item_id == nav.id)
        .outerjoin(parent_nav, nav.parent_id == parent_nav.id)
        .outerjoin(ProductDetails, ProductDetails.product_id == Product.id)
    )


def _serialize_product(row) -> Dict[str, Any]:
    product = dict(row._mapping)
    product["is_on_sale"], product["sale_percentage"] = sale_info(product["price"], product["original_price"])
    return product


def list_products(db: Session, category_slug: Optional[str] = None, parent_category_slug: Optional[str] = None,
                  on_sale: Optional[bool] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, sort: Optional[str] = None) -> List[Dict[str, Any]]:
    if sort is not None and sort not in PRODUCT_SORTS:
        raise ValidationError(f"Unknown sort '{sort}'", details=f"Expected one of: {', '.join(PRODUCT_SORTS)}")

    rows = _product_query(db).order_by(Product.created_at.desc(), Product.id.desc()).all()
    products = [_serialize_product(row) for row in rows]

    if category_slug is not None:
        products = [p for p in products if p["category_slug"] == category_slug]
    if parent_category_slug is not None:
        products = [p for p in products if p["parent_category_slug"] == parent_category_slug]
    if on_sale:
        products = [p for p in products if p["is_on_sale"]]
    if min_price is not None:
        products = [p for p in products if p["price"] >= min_price]
    if max_price is not None:
        products = [p for p in products if p["price"] <= max_price]

    if sort == "price-low":
        products.sort(key=lambda p: p["price"])
    elif sort == "price-high":
        products.sort(key=lambda p: p["price"], reverse=True)
    elif sort == "name-asc":
        products.sort(key=lambda p: p["name"].lower())
    elif sort == "name-desc":
        products.sort(key=lambda p: p["name"].lower(), reverse=True)
    elif sort == "sale":
        products.sort(key=lambda p: p["sale_percentage"] or 0, reverse=True)
    elif sort == "newest":
        products.sort(key=lambda p: p["id"], reverse=True)
    return products


def get_product(db: Session, product_id: int) -> Dict[str, Any]:
    row = _product_query(db).filter(Product.id == product_id).first()
    if row is None:
        raise NotFound("Product not found")
    return _serialize_product(row)


def _require_price(price: Any) -> float:
    value = to_number(price, "price")
    if value <= 0:
        raise ValidationError("price must be greater than zero")
    return value


def _unique_product_slug(db: Session, slug: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(Product.id).filter(Product.slug == slug)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is None


def create_product(db: Session, name: Optional[str], price: Any, image: Optional[str], category_id: Optional[int],
                   description: Optional[str] = None, original_price: Any = None,
                   slug: Optional[str] = None) -> Dict[str, Any]:
    if not name or price in (None, "") or not image or category_id is None:
        raise ValidationError("All required fields must be filled")
    price = _require_price(price)
    original_price = effective_original_price(original_price, price)

    with transaction(db):
        category = db.get(Category, to_int(category_id, "category_id"))
        if category is None:
            raise ValidationError("Invalid category")

        if slug:
            if not _unique_product_slug(db, slug):
                raise Conflict(f"Product slug '{slug}' already exists")
        else:
            slug = generate_slug(name)
            suffix = 1
            while not _unique_product_slug(db, slug):
                suffix += 1
                slug = f"{generate_slug(name)}-{suffix}"

        product = create_document(db, Product, {
            "name": name,
            "slug": slug,
            "description": description or "",
            "price": price,
            "original_price": original_price,
            "image": image,
            "category_id": category.id,
        })

    logger.info("Created product %s (%s)", product.id, slug)
    return get_product(db, product.id)


def update_product(db: Session, product_id: int, name: Optional[str], price: Any, image: Optional[str],
                   category_id: Optional[int] = None, description: Optional[str] = None,
                   original_price: Any = None, slug: Optional[str] = None) -> Dict[str, Any]:
    if not name:
        raise ValidationError("Product name is required")
    if price in (None, ""):
        raise ValidationError("Price is required")
    if not image:
        raise ValidationError("Image URL is required")
    price = _require_price(price)

    with transaction(db):
        product = db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")

        if category_id is not None:
            category_id = to_int(category_id, "category_id")
            if db.get(Category, category_id) is None:
                raise ValidationError("Invalid category")
        if slug and not _unique_product_slug(db, slug, exclude_id=product.id):
            raise Conflict(f"Product slug '{slug}' already exists")

        if original_price is None:
            original_price = product.original_price

        product.name = name
        product.slug = slug or product.slug
        product.description = description or ""
        product.price = price
        product.original_price = effective_original_price(original_price, price)
        product.image = image
        product.category_id = category_id
        db.flush()

    logger.info("Updated product %s", product_id)
    return get_product(db, product_id)


def delete_product(db: Session, product_id: int) -> Dict[str, Any]:
    with transaction(db):
        product = db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        if db.query(OrderItem.id).filter(OrderItem.product_id == product_id).first() is not None:
            raise Conflict("Product is part of existing orders and can not be deleted")
        db.query(ProductDetails).filter(ProductDetails.product_id == product_id).delete(synchronize_session=False)
        db.delete(product)

    logger.info("Deleted product %s", product_id)
    return {"success": True}
