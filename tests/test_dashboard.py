from datetime import datetime, timedelta

import pytest

import dashboard
from database import create_document
from errors import ValidationError
from models import Order, OrderItem, Product

NOW = datetime(2026, 3, 15, 12, 0)


@pytest.mark.parametrize("previous, current, expected", [
    (0, 0, 0),
    (0, 5, 100),
    (100, 150, 50),
    (100, 50, -50),
    (3, 4, 33),
])
def test_growth(previous, current, expected):
    assert dashboard.growth(previous, current) == expected


def test_fallback_image():
    assert dashboard.fallback_image("Linen Shirt") == "/linen_shirt.webp"
    assert dashboard.fallback_image("Kids' Tee (Blue)") == "/kids_tee_blue.webp"


def test_window_bounds():
    assert dashboard.window_bounds("7d", NOW) == (datetime(2026, 3, 8, 12), datetime(2026, 3, 1, 12))
    with pytest.raises(ValidationError):
        dashboard.window_bounds("1y", NOW)


def add_order(db, created_at, total, email, lines):
    order = create_document(db, Order, {
        "user_id": "user_1",
        "total": total,
        "name": "Ayesha",
        "email": email,
        "phone": "0300",
        "address": "Lahore",
        "created_at": created_at,
    })
    for product_id, quantity in lines:
        create_document(db, OrderItem, {"order_id": order.id, "product_id": product_id, "quantity": quantity})
    db.commit()
    return order.id


@pytest.fixture
def shop(db, make_product):
    shirt = make_product(name="Linen Shirt", price=100)
    belt = make_product(name="Leather Belt", price=50, image="/belt.webp")
    for product_id in (shirt["id"], belt["id"]):
        db.get(Product, product_id).created_at = NOW - timedelta(days=3)
    db.get(Product, shirt["id"]).image = ""
    db.commit()

    recent = add_order(db, NOW - timedelta(days=1), 200, "a@example.com", [(shirt["id"], 2)])
    add_order(db, NOW - timedelta(days=2), 50, "b@example.com", [(belt["id"], 1)])
    add_order(db, NOW - timedelta(days=10), 100, "a@example.com", [(shirt["id"], 1)])
    return {"shirt": shirt, "belt": belt, "recent_order": recent}


def test_stats_for_last_week(db, shop):
    stats = dashboard.get_stats(db, "7d", now=NOW)

    assert stats["range"] == "7d"
    assert stats["totalOrders"] == 2
    assert stats["totalRevenue"] == 250
    assert stats["totalProducts"] == 2
    assert stats["totalCustomers"] == 2
    assert stats["orderGrowth"] == 100
    assert stats["revenueGrowth"] == 150
    assert stats["productGrowth"] == 100
    assert stats["customerGrowth"] == 100


def test_top_products_and_sales_series(db, shop):
    stats = dashboard.get_stats(db, "7d", now=NOW)

    top = stats["topProducts"]
    assert [p["name"] for p in top] == ["Linen Shirt", "Leather Belt"]
    assert top[0]["revenue"] == 200
    assert top[0]["salesCount"] == 1
    assert top[0]["image"] == "/linen_shirt.webp"
    assert top[1]["image"] == "/belt.webp"

    assert stats["salesData"] == [
        {"date": "2026-03-13", "sales": 50.0},
        {"date": "2026-03-14", "sales": 200.0},
    ]


def test_recent_orders(db, shop):
    recent = dashboard.get_stats(db, "7d", now=NOW)["recentOrders"]

    assert [o["orderId"] for o in recent][0] == shop["recent_order"]
    assert len(recent) == 2
    assert recent[0]["productName"] == "Linen Shirt"
    assert recent[0]["productImage"] == "/linen_shirt.webp"
    assert recent[0]["userName"] == "Ayesha"
    assert recent[1]["productImage"] == "/belt.webp"


def test_all_time_and_default_range(db, shop):
    everything = dashboard.get_stats(db, "all", now=NOW)
    assert everything["totalOrders"] == 3
    assert everything["totalRevenue"] == 350
    assert everything["orderGrowth"] == 100

    assert dashboard.get_stats(db, now=NOW)["range"] == "30d"


def test_empty_store(db):
    stats = dashboard.get_stats(db, "30d", now=NOW)

    assert stats["totalOrders"] == 0
    assert stats["totalRevenue"] == 0
    assert stats["orderGrowth"] == 0
    assert stats["topProducts"] == []
    assert stats["recentOrders"] == []
    assert stats["salesData"] == []
