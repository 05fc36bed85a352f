"""
Database Models for the Storefront

Each class maps to one relational table:
- users: people known to the identity provider
- navigation: storefront menu tree (categories are a subset of its nodes)
- categories: product categories, each linked to one navigation node
- products: catalog items
- product_details: optional one-to-one extension of a product (stock lives here)
- orders / order_items: placed orders and the products in them
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship

from database import Base

ORDER_STATUSES = ("Processing", "Shipped", "Delivered", "Cancelled")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every created_at column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def money_column(**kwargs):
    return Column(Numeric(12, 2, asdecimal=False), **kwargs)


class User(Base):
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)  # identity-provider user id
    email = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class NavigationItem(Base):
    __tablename__ = "navigation"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    parent_id = Column(Integer, ForeignKey("navigation.id"), nullable=True, index=True)
    position = Column(Integer, nullable=False, default=0)
    is_category = Column(Boolean, nullable=False, default=False)

    parent = relationship("NavigationItem", remote_side=[id])
    category = relationship("Category", back_populates="nav_item", uselist=False)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    nav_item_id = Column(Integer, ForeignKey("navigation.id"), nullable=True, unique=True)

    nav_item = relationship("NavigationItem", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    price = money_column(nullable=False)
    original_price = money_column(nullable=True)  # only ever greater than price
    image = Column(String(1024), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    category = relationship("Category")
    details = relationship("ProductDetails", back_populates="product", uselist=False, passive_deletes=True)


class ProductDetails(Base):
    __tablename__ = "product_details"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True)
    gallery = Column(JSON, nullable=False, default=list)
    rating = Column(Float, nullable=False, default=0)
    full_description = Column(Text, nullable=False, default="")
    care_instructions = Column(Text, nullable=False, default="")
    material = Column(String(255), nullable=False, default="")
    fit = Column(String(255), nullable=False, default="")
    length = Column(String(255), nullable=False, default="")
    discount_price = money_column(nullable=True)
    discount_percentage = Column(Float, nullable=False, default=0)
    colors = Column(JSON, nullable=False, default=list)
    sizes = Column(JSON, nullable=False, default=list)
    gender = Column(String(64), nullable=False, default="")
    model_info = Column(Text, nullable=False, default="")
    quantity = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="details")


class Order(Base):
    __tablename__ = "orders"
    # AUTOINCREMENT so SQLite keeps a real id sequence, like PostgreSQL's serial
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=True, index=True)
    total = money_column(nullable=False)
    # contact details as typed at checkout, not linked to the user profile
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    address = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="Processing")
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    items = relationship("OrderItem", back_populates="order", passive_deletes=True,
                         order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
