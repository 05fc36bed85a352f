"""
Dashboard statistics over a trailing time window, with growth against the
window of equal length right before it.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from catalog import round_half_up
from errors import ValidationError
from models import Order, OrderItem, Product, utcnow

logger = logging.getLogger(__name__)

RANGES = {"7d": 7, "30d": 30, "90d": 90, "all": None}
DEFAULT_RANGE = "30d"
ALL_TIME_START = datetime(1900, 1, 1)
TOP_PRODUCTS_LIMIT = 4
RECENT_ORDERS_LIMIT = 5


def growth(previous: float, current: float) -> int:
    """Percentage change from previous to current, rounded half up."""
    if previous == 0 and current == 0:
        return 0
    if previous == 0:
        return 100 if current > 0 else -100
    return round_half_up((current - previous) / previous * 100)


def fallback_image(name: str) -> str:
    slug = re.sub(r"\s+", "_", (name or "").lower())
    slug = re.sub(r"[^\w]", "", slug, flags=re.ASCII)
    return f"/{slug}.webp"


def _image_or_fallback(image: Optional[str], name: Optional[str]) -> Optional[str]:
    if image and image.strip():
        return image
    return fallback_image(name) if name else None


def window_bounds(range_: str, now: datetime) -> Tuple[datetime, datetime]:
    """Return (start of current window, start of previous window)."""
    if range_ not in RANGES:
        raise ValidationError(f"Unknown range '{range_}'", details="Expected one of: 7d, 30d, 90d, all")
    days = RANGES[range_]
    date_from = now - timedelta(days=days) if days else ALL_TIME_START
    return date_from, date_from - (now - date_from)


def _order_totals(db: Session, start: datetime, end: Optional[datetime] = None) -> Tuple[int, float, int]:
    query = db.query(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total), 0),
        func.count(func.distinct(Order.email)),
    ).filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)
    count, revenue, customers = query.one()
    return int(count), float(revenue or 0), int(customers)


def _products_created(db: Session, start: datetime, end: Optional[datetime] = None) -> int:
    query = db.query(func.count(Product.id)).filter(Product.created_at >= start)
    if end is not None:
        query = query.filter(Product.created_at < end)
    return int(query.scalar() or 0)


def _top_products(db: Session, date_from: datetime) -> List[Dict[str, Any]]:
    revenue = func.sum(OrderItem.quantity * Product.price).label("revenue")
    rows = (
        db.query(
            Product.id,
            Product.name,
            Product.image,
            func.count(OrderItem.id).label("sales_count"),
            revenue,
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.created_at >= date_from)
        .group_by(Product.id, Product.name, Product.image)
        .order_by(revenue.desc(), Product.id)
        .limit(TOP_PRODUCTS_LIMIT)
        .all()
    )
    return [
        {
            "id": row.id,
            "name": row.name,
            "salesCount": int(row.sales_count),
            "revenue": float(row.revenue or 0),
            "image": _image_or_fallback(row.image, row.name),
        }
        for row in rows
    ]


def _sales_data(db: Session, date_from: datetime) -> List[Dict[str, Any]]:
    daily: Dict[str, float] = {}
    for created_at, total in db.query(Order.created_at, Order.total).filter(Order.created_at >= date_from):
        day = created_at.date().isoformat()
        daily[day] = daily.get(day, 0.0) + float(total or 0)
    return [{"date": day, "sales": daily[day]} for day in sorted(daily)]


def _recent_orders(db: Session, date_from: datetime) -> List[Dict[str, Any]]:
    orders = (
        db.query(Order)
        .filter(Order.created_at >= date_from)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(RECENT_ORDERS_LIMIT)
        .all()
    )
    recent = []
    for order in orders:
        first_item = (
            db.query(Product.name, Product.image)
            .join(OrderItem, OrderItem.product_id == Product.id)
            .filter(OrderItem.order_id == order.id)
            .order_by(OrderItem.id)
            .first()
        )
        product_name = first_item.name if first_item else None
        recent.append({
            "orderId": order.id,
            "userName": order.name or "Guest",
            "total": float(order.total),
            "status": order.status,
            "createdAt": order.created_at,
            "productName": product_name,
            "productImage": _image_or_fallback(first_item.image if first_item else None, product_name),
        })
    return recent


def get_stats(db: Session, range_: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    range_ = range_ or DEFAULT_RANGE
    now = now or utcnow()
    date_from, previous_from = window_bounds(range_, now)

    orders, revenue, customers = _order_totals(db, date_from)
    prev_orders, prev_revenue, prev_customers = _order_totals(db, previous_from, date_from)
    new_products = _products_created(db, date_from)
    prev_new_products = _products_created(db, previous_from, date_from)
    total_products = int(db.query(func.count(Product.id)).scalar() or 0)

    logger.debug("Dashboard stats for %s from %s: %d orders", range_, date_from, orders)
    return {
        "range": range_,
        "totalOrders": orders,
        "totalRevenue": round(revenue, 2),
        "totalProducts": total_products,
        "totalCustomers": customers,
        "orderGrowth": growth(prev_orders, orders),
        "revenueGrowth": growth(prev_revenue, revenue),
        "productGrowth": growth(prev_new_products, new_products),
        "customerGrowth": growth(prev_customers, customers),
        "recentOrders": _recent_orders(db, date_from),
        "topProducts": _top_products(db, date_from),
        "salesData": _sales_data(db, date_from),
    }
