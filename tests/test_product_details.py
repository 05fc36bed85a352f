from concurrent.futures import ThreadPoolExecutor

import pytest

import product_details
from errors import Conflict, NotFound, OutOfStock, ValidationError
from models import ProductDetails


@pytest.fixture
def product(make_product):
    return make_product()


def test_create_applies_defaults(db, product):
    details = product_details.create_details(db, str(product["id"]), rating="4.2")

    assert details["product_id"] == product["id"]
    assert details["gallery"] == ["", "", "", ""]
    assert details["colors"] == [""]
    assert details["sizes"] == [""]
    assert details["discount_percentage"] == 0
    assert details["discount_price"] is None
    assert details["quantity"] == 0
    assert details["rating"] == pytest.approx(4.2)


@pytest.mark.parametrize("fields, message", [
    ({"rating": "great"}, "Rating must be a valid number"),
    ({}, "Rating must be a valid number"),
    ({"rating": 6}, "Rating must be between 0 and 5"),
    ({"rating": 4, "quantity": -1}, "Quantity must be a non-negative integer"),
    ({"rating": 4, "quantity": "2.5"}, "Quantity must be a non-negative integer"),
])
def test_create_rejects_bad_fields(db, product, fields, message):
    with pytest.raises(ValidationError, match=message):
        product_details.create_details(db, product["id"], **fields)
    assert db.query(ProductDetails).count() == 0


def test_create_rejects_bad_product_ids(db, product):
    with pytest.raises(ValidationError, match="Valid product_id is required"):
        product_details.create_details(db, "abc", rating=4)
    with pytest.raises(ValidationError, match="Product does not exist"):
        product_details.create_details(db, 999, rating=4)


def test_create_twice_conflicts(db, product):
    product_details.create_details(db, product["id"], rating=4)
    with pytest.raises(Conflict):
        product_details.create_details(db, product["id"], rating=3)


def test_get_details(db, product):
    product_details.create_details(db, product["id"], rating=5, colors=["Navy", "Sand"], sizes=["S", "M"],
                                   quantity=7, material="Linen")

    details = product_details.get_details(db, product["id"])

    assert details["colors"] == ["Navy", "Sand"]
    assert details["sizes"] == ["S", "M"]
    assert details["material"] == "Linen"
    assert details["quantity"] == 7
    with pytest.raises(NotFound):
        product_details.get_details(db, 999)


def test_update_replaces_the_row(db, product):
    product_details.create_details(db, product["id"], rating=4, material="Linen", quantity=2)

    updated = product_details.update_details(db, product["id"], rating=3.5, quantity=10, fit="Relaxed")

    assert updated["rating"] == 3.5
    assert updated["quantity"] == 10
    assert updated["fit"] == "Relaxed"
    assert updated["material"] == ""


def test_update_missing_row(db, product):
    with pytest.raises(NotFound):
        product_details.update_details(db, product["id"], rating=4)


def test_delete_is_idempotent(db, product):
    product_details.create_details(db, product["id"], rating=4)

    assert product_details.delete_details(db, product["id"]) == {"success": True}
    assert product_details.delete_details(db, product["id"]) == {"success": True}
    assert db.query(ProductDetails).count() == 0


def test_reduce_stock_until_empty(db, product):
    product_details.create_details(db, product["id"], rating=4, quantity=1)

    assert product_details.reduce_stock(db, product["id"]) == 0
    with pytest.raises(OutOfStock):
        product_details.reduce_stock(db, product["id"])

    assert product_details.get_details(db, product["id"])["quantity"] == 0


def test_reduce_stock_unknown_product(db):
    with pytest.raises(NotFound):
        product_details.reduce_stock(db, 404)
    with pytest.raises(ValidationError):
        product_details.reduce_stock(db, "abc")


@pytest.mark.parametrize("stock, callers", [(4, 10), (10, 4), (5, 5)])
def test_concurrent_reduce_stock_never_oversells(db, session_factory, product, stock, callers):
    product_details.create_details(db, product["id"], rating=4, quantity=stock)

    def take_one():
        session = session_factory()
        try:
            return product_details.reduce_stock(session, product["id"])
        except OutOfStock:
            return None
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=callers) as pool:
        results = list(pool.map(lambda _: take_one(), range(callers)))

    sold = [r for r in results if r is not None]
    expected = min(stock, callers)
    assert len(sold) == expected
    assert results.count(None) == callers - expected
    assert sorted(sold) == list(range(stock - expected, stock))

    check = session_factory()
    try:
        assert product_details.get_details(check, product["id"])["quantity"] == stock - expected
    finally:
        check.close()
