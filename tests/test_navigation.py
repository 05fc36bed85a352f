import pytest

import catalog
from database import create_document
from errors import Conflict, NotFound, ValidationError
from models import Category, NavigationItem


def test_navigation_is_listed_parents_first(db):
    men = catalog.create_navigation_item(db, "Men", "men", position=1)
    women = catalog.create_navigation_item(db, "Women", "women", position=0)
    catalog.create_navigation_item(db, "Shoes", "shoes", parent_id=men["id"], position=0)

    listed = catalog.list_navigation(db)

    assert [item["title"] for item in listed] == ["Women", "Men", "Shoes"]
    assert listed[0]["id"] == women["id"]


def test_create_requires_title_and_slug(db):
    with pytest.raises(ValidationError):
        catalog.create_navigation_item(db, "Men", "")


def test_create_with_unknown_parent(db):
    with pytest.raises(NotFound):
        catalog.create_navigation_item(db, "Shoes", "shoes", parent_id=12)


def test_slug_unique_per_parent(db):
    men = catalog.create_navigation_item(db, "Men", "men")
    women = catalog.create_navigation_item(db, "Women", "women")
    catalog.create_navigation_item(db, "Shoes", "shoes", parent_id=men["id"])

    with pytest.raises(Conflict):
        catalog.create_navigation_item(db, "Shoes again", "shoes", parent_id=men["id"])
    catalog.create_navigation_item(db, "Shoes", "shoes", parent_id=women["id"])


def test_category_flag_creates_linked_category(db):
    item = catalog.create_navigation_item(db, "Accessories", "accessories", is_category=True)

    category = db.query(Category).filter(Category.nav_item_id == item["id"]).one()
    assert category.name == "Accessories"


def test_update_renames_linked_category(db):
    item = catalog.create_navigation_item(db, "Accessories", "accessories", is_category=True)

    updated = catalog.update_navigation_item(db, item["id"], "Bags", "bags", is_category=True, position=3)

    assert updated["slug"] == "bags"
    assert updated["position"] == 3
    category = db.query(Category).filter(Category.nav_item_id == item["id"]).one()
    assert category.name == "Bags"


def test_update_to_category_creates_link(db):
    item = catalog.create_navigation_item(db, "Bags", "bags")

    catalog.update_navigation_item(db, item["id"], "Bags", "bags", is_category=True)

    assert db.query(Category).filter(Category.nav_item_id == item["id"]).count() == 1


def test_update_to_plain_item_removes_linked_category(db):
    item = catalog.create_navigation_item(db, "Outerwear", "outerwear", is_category=True)
    category = db.query(Category).filter(Category.nav_item_id == item["id"]).one()
    product = catalog.create_product(db, "Parka", 5000, "/parka.webp", category.id)

    updated = catalog.update_navigation_item(db, item["id"], "Outerwear", "outerwear", is_category=False)

    assert updated["is_category"] is False
    assert db.query(Category).filter(Category.nav_item_id == item["id"]).count() == 0
    assert "Outerwear" not in [c["name"] for c in catalog.list_categories(db)]
    assert catalog.reconcile_category_navigation(db) == {
        "categories_needing_nav": [],
        "nav_needing_categories": [],
    }
    assert catalog.get_product(db, product["id"])["category_id"] is None


def test_update_rejects_cycles_and_missing_items(db):
    men = catalog.create_navigation_item(db, "Men", "men")
    shoes = catalog.create_navigation_item(db, "Shoes", "shoes", parent_id=men["id"])

    with pytest.raises(ValidationError):
        catalog.update_navigation_item(db, men["id"], "Men", "men", parent_id=men["id"])
    with pytest.raises(ValidationError):
        catalog.update_navigation_item(db, men["id"], "Men", "men", parent_id=shoes["id"])
    with pytest.raises(NotFound):
        catalog.update_navigation_item(db, 999, "Ghost", "ghost")


def test_delete_with_children_conflicts_without_mutation(db):
    men = catalog.create_navigation_item(db, "Men", "men", is_category=True)
    shoes = catalog.create_navigation_item(db, "Shoes", "shoes", parent_id=men["id"])
    shirts = catalog.create_navigation_item(db, "Shirts", "shirts", parent_id=men["id"])

    with pytest.raises(Conflict) as excinfo:
        catalog.delete_navigation_item(db, men["id"])

    assert excinfo.value.extra["children"] == [shoes["id"], shirts["id"]]
    assert db.query(NavigationItem).count() == 3
    assert db.query(Category).count() == 1


def test_delete_leaf_removes_linked_category(db):
    item = catalog.create_navigation_item(db, "Bags", "bags", is_category=True)

    assert catalog.delete_navigation_item(db, item["id"]) == {"success": True}
    assert db.query(NavigationItem).count() == 0
    assert db.query(Category).count() == 0
    with pytest.raises(NotFound):
        catalog.delete_navigation_item(db, item["id"])


def test_reconcile_reports_and_repairs_drift(db):
    orphan_category = create_document(db, Category, {"name": "Winter Sale", "nav_item_id": None})
    orphan_nav = create_document(db, NavigationItem, {"title": "Kids", "slug": "kids", "is_category": True})
    db.commit()

    report = catalog.reconcile_category_navigation(db)
    assert [c["id"] for c in report["categories_needing_nav"]] == [orphan_category.id]
    assert [n["id"] for n in report["nav_needing_categories"]] == [orphan_nav.id]

    result = catalog.repair_category_navigation(db)
    assert result == {"success": True, "navigation_created": 1, "categories_created": 1}

    assert catalog.reconcile_category_navigation(db) == {
        "categories_needing_nav": [],
        "nav_needing_categories": [],
    }
    repaired = db.get(Category, orphan_category.id)
    assert db.get(NavigationItem, repaired.nav_item_id).slug == "winter-sale"
    assert db.query(Category).filter(Category.nav_item_id == orphan_nav.id).one().name == "Kids"


def test_repair_links_by_id_when_names_collide(db):
    catalog.create_category(db, "Sale")
    orphan = create_document(db, Category, {"name": "Sale", "nav_item_id": None})
    db.commit()

    catalog.repair_category_navigation(db)

    repaired = db.get(Category, orphan.id)
    nav = db.get(NavigationItem, repaired.nav_item_id)
    assert nav.title == "Sale"
    assert nav.slug == f"sale-{orphan.id}"
    assert db.query(Category).filter(Category.nav_item_id == nav.id).count() == 1
