"""
Request Schemas for the Storefront API

Each Pydantic model describes one JSON request body. Business rules (required
names, price rules, stock bounds) are enforced again in the service modules so
they hold no matter how a service is called.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Number = Union[float, str]


# Categories & navigation
class CategoryIn(BaseModel):
    name: Optional[str] = Field(None, description="Category display name")
    parent_id: Optional[int] = Field(None, description="Parent navigation item id")
    position: Optional[int] = Field(None, description="Sort order among siblings")


class NavigationIn(BaseModel):
    title: Optional[str] = None
    slug: Optional[str] = None
    parent_id: Optional[int] = None
    position: Optional[int] = None
    is_category: bool = False


class NavigationUpdate(NavigationIn):
    id: Optional[int] = None


class NavigationDelete(BaseModel):
    id: Optional[int] = None


# Products
class ProductIn(BaseModel):
    name: Optional[str] = None
    price: Optional[Number] = Field(None, description="Sale price")
    image: Optional[str] = Field(None, description="Image URL or path")
    category_id: Optional[int] = None
    description: Optional[str] = None
    original_price: Optional[Number] = Field(None, description="Pre-sale price, kept only if above price")
    slug: Optional[str] = None


# Product details
class ProductDetailsIn(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    gallery: List[str] = Field(default_factory=lambda: ["", "", "", ""])
    rating: Optional[Number] = None
    full_description: str = ""
    care_instructions: str = ""
    material: str = ""
    fit: str = ""
    length: str = ""
    discount_price: Optional[Number] = None
    discount_percentage: Number = "0"
    colors: List[str] = Field(default_factory=lambda: [""])
    sizes: List[str] = Field(default_factory=lambda: [""])
    gender: str = ""
    model_info: str = ""
    quantity: Union[int, str] = 0


class ProductDetailsCreate(ProductDetailsIn):
    product_id: Optional[Union[int, str]] = None


# Orders
class OrderItemIn(BaseModel):
    product_id: Union[int, str]
    quantity: Union[int, str] = 1


class CreateOrderRequest(BaseModel):
    items: Optional[List[OrderItemIn]] = None
    total: Optional[Number] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class UpdateOrderStatusRequest(BaseModel):
    orderId: Optional[int] = None
    status: Optional[str] = None


class DeleteOrderRequest(BaseModel):
    orderId: Optional[int] = None


# Checkout
class CheckoutItem(BaseModel):
    name: str
    price: float
    quantity: int = 1


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem] = Field(default_factory=list)
