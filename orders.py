"""
Order service: placing orders, the admin order list, status changes and deletion.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from catalog import to_int, to_number
from database import create_document, transaction
from errors import NotFound, ValidationError
from models import ORDER_STATUSES, Order, OrderItem, Product

logger = logging.getLogger(__name__)


def _clean_items(items: Iterable[Any]) -> List[Dict[str, int]]:
    cleaned = []
    for item in items:
        if not isinstance(item, dict):
            item = item.model_dump()
        if item.get("product_id") in (None, ""):
            raise ValidationError("Every item needs a product_id")
        product_id = to_int(item["product_id"], "product_id")
        quantity = to_int(item.get("quantity", 1), "quantity")
        if quantity < 1:
            raise ValidationError("Item quantity must be at least 1")
        cleaned.append({"product_id": product_id, "quantity": quantity})
    return cleaned


def create_order(db: Session, items: Optional[List[Any]], total: Any, name: Optional[str], email: Optional[str],
                 phone: Optional[str], address: Optional[str], user_id: Optional[str]) -> int:
    """Persist an order and all of its items, or nothing at all."""
    if not items or total in (None, "") or not name or not email or not phone or not address or not user_id:
        raise ValidationError("Missing required fields")
    total = to_number(total, "total")
    if total <= 0:
        raise ValidationError("total must be greater than zero")
    cleaned = _clean_items(items)

    with transaction(db):
        wanted = {item["product_id"] for item in cleaned}
        found = {row.id for row in db.query(Product.id).filter(Product.id.in_(wanted))}
        missing = sorted(wanted - found)
        if missing:
            raise ValidationError("Unknown products in order", details=", ".join(str(i) for i in missing))

        order = create_document(db, Order, {
            "user_id": user_id,
            "total": total,
            "name": name,
            "email": email,
            "phone": phone,
            "address": address,
            "status": "Processing",
        })
        for item in cleaned:
            create_document(db, OrderItem, {"order_id": order.id, **item})

    logger.info("Order %s placed by %s with %d items", order.id, user_id, len(cleaned))
    return order.id


def list_orders(db: Session, identity: Any = None) -> List[Dict[str, Any]]:
    """Every order with its items and a resolved customer email, oldest first.

    Item prices come from the current product rows. Orders without an email
    fall back to the identity provider, asked once per distinct user id.
    """
    counts = (
        db.query(OrderItem.order_id, func.count(OrderItem.id).label("item_count"))
        .group_by(OrderItem.order_id)
        .subquery()
    )
    rows = (
        db.query(Order, func.coalesce(counts.c.item_count, 0))
        .outerjoin(counts, counts.c.order_id == Order.id)
        .order_by(Order.id.asc())
        .all()
    )

    items_by_order: Dict[int, List[Dict[str, Any]]] = {}
    item_rows = (
        db.query(OrderItem.order_id, Product.name, Product.image, Product.price, OrderItem.quantity)
        .join(Product, Product.id == OrderItem.product_id)
        .order_by(OrderItem.id)
    )
    for row in item_rows:
        items_by_order.setdefault(row.order_id, []).append({
            "productName": row.name,
            "productImage": row.image,
            "price": row.price,
            "quantity": row.quantity,
        })

    emails: Dict[str, str] = {}
    if identity is not None:
        for user_id in dict.fromkeys(order.user_id for order, _ in rows if not order.email and order.user_id):
            emails[user_id] = identity.lookup_email(user_id)

    return [
        {
            "id": order.id,
            "total": order.total,
            "createdAt": order.created_at,
            "userId": order.user_id,
            "userName": order.name or "Unknown",
            "userEmail": order.email or emails.get(order.user_id) or "Unknown",
            "userPhone": order.phone or "N/A",
            "userAddress": order.address or "N/A",
            "itemCount": item_count,
            "status": order.status or "Processing",
            "items": items_by_order.get(order.id, []),
        }
        for order, item_count in rows
    ]


def update_status(db: Session, order_id: Optional[int], status: Optional[str]) -> Dict[str, Any]:
    if not order_id or not status:
        raise ValidationError("Missing orderId or status")
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown status '{status}'", details=f"Expected one of: {', '.join(ORDER_STATUSES)}")

    with transaction(db):
        order = db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        order.status = status

    logger.info("Order %s is now %s", order_id, status)
    return {"message": "Status updated", "orderId": order_id, "status": status}


def _lock_orders(db: Session) -> None:
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("LOCK TABLE orders IN ACCESS EXCLUSIVE MODE"))


def _reset_order_sequence(db: Session) -> None:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        db.execute(text("ALTER SEQUENCE orders_id_seq RESTART WITH 1"))
    elif dialect == "sqlite":
        db.execute(text("DELETE FROM sqlite_sequence WHERE name = 'orders'"))
    else:
        logger.warning("Order id sequence reset is not supported on %s", dialect)
        return
    logger.info("Orders table is empty, id sequence restarted at 1")


def delete_order(db: Session, order_id: Optional[int]) -> Dict[str, Any]:
    """Delete an order with its items; an emptied table restarts ids at 1.

    The table lock keeps concurrent inserts out while the sequence is reset.
    """
    if not order_id:
        raise ValidationError("Missing orderId")

    with transaction(db):
        _lock_orders(db)
        if db.get(Order, order_id) is None:
            raise NotFound("Order not found")
        db.query(OrderItem).filter(OrderItem.order_id == order_id).delete(synchronize_session=False)
        db.query(Order).filter(Order.id == order_id).delete(synchronize_session=False)
        if db.query(func.count(Order.id)).scalar() == 0:
            _reset_order_sequence(db)

    logger.info("Deleted order %s", order_id)
    return {"message": "Order deleted", "orderId": order_id}
