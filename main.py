import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
import config
import dashboard
import orders
import product_details
import users
from database import get_db, init_db, table_names
from errors import StoreError
from gateways import get_identity_provider, get_payment_gateway
from schemas import (
    CategoryIn,
    CheckoutRequest,
    CreateOrderRequest,
    DeleteOrderRequest,
    NavigationDelete,
    NavigationIn,
    NavigationUpdate,
    ProductDetailsCreate,
    ProductDetailsIn,
    ProductIn,
    UpdateOrderStatusRequest,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error envelope ----------

@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    logger.warning("%s %s rejected: %s", request.method, request.url.path, details)
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database failure on %s %s", request.method, request.url.path)
    message = str(exc).lower()
    if isinstance(exc, OperationalError) and ("timeout" in message or "locked" in message):
        return JSONResponse(status_code=503, content={"error": "Database unavailable", "details": str(exc.orig)})
    return JSONResponse(status_code=500, content={"error": "Database error"})


# ---------- Auth ----------

def current_user_id(authorization: Optional[str] = Header(None), identity=Depends(get_identity_provider)) -> str:
    return identity.authenticate(authorization)


def category_author(authorization: Optional[str] = Header(None),
                    identity=Depends(get_identity_provider)) -> Optional[str]:
    if config.DEV_MODE:
        return None
    return identity.authenticate(authorization)


# ---------- Health ----------

@app.get("/")
async def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
    }
    try:
        response["tables"] = table_names()
        response["database"] = "✅ Connected"
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# ---------- Categories & navigation ----------

@app.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return catalog.list_categories(db)


@app.post("/categories", status_code=201)
def create_category(req: CategoryIn, db: Session = Depends(get_db), _user=Depends(category_author)):
    return catalog.create_category(db, req.name, req.parent_id, req.position)


@app.get("/navigation")
def list_navigation(db: Session = Depends(get_db)):
    return catalog.list_navigation(db)


@app.post("/navigation", status_code=201)
def create_navigation_item(req: NavigationIn, db: Session = Depends(get_db)):
    return catalog.create_navigation_item(db, req.title, req.slug, req.parent_id, req.position, req.is_category)


@app.put("/navigation")
def update_navigation_item(req: NavigationUpdate, db: Session = Depends(get_db)):
    return catalog.update_navigation_item(db, req.id, req.title, req.slug, req.parent_id, req.position,
                                          req.is_category)


@app.delete("/navigation")
def delete_navigation_item(req: NavigationDelete, db: Session = Depends(get_db)):
    return catalog.delete_navigation_item(db, req.id)


@app.get("/sync-categories")
def reconcile_categories(db: Session = Depends(get_db)):
    return catalog.reconcile_category_navigation(db)


@app.post("/sync-categories")
def repair_categories(db: Session = Depends(get_db)):
    return catalog.repair_category_navigation(db)


# ---------- Products ----------

@app.get("/products")
def list_products(
    category_slug: Optional[str] = None,
    parent_category_slug: Optional[str] = None,
    on_sale: Optional[bool] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return catalog.list_products(db, category_slug, parent_category_slug, on_sale, min_price, max_price, sort)


@app.post("/products", status_code=201)
def create_product(p: ProductIn, db: Session = Depends(get_db)):
    return catalog.create_product(db, p.name, p.price, p.image, p.category_id, p.description, p.original_price,
                                  p.slug)


@app.get("/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.put("/products/{product_id}")
def update_product(product_id: int, p: ProductIn, db: Session = Depends(get_db)):
    return catalog.update_product(db, product_id, p.name, p.price, p.image, p.category_id, p.description,
                                  p.original_price, p.slug)


@app.delete("/products/{product_id}")
def delete_product(product_id: int, db: Session = Depends(get_db)):
    return catalog.delete_product(db, product_id)


# ---------- Product details ----------

@app.post("/product-details", status_code=201)
def create_product_details(req: ProductDetailsCreate, db: Session = Depends(get_db)):
    return product_details.create_details(db, req.product_id, **req.model_dump(exclude={"product_id"}))


@app.get("/product-details/{product_id}")
def get_product_details(product_id: str, db: Session = Depends(get_db)):
    return product_details.get_details(db, product_id)


@app.put("/product-details/{product_id}")
def update_product_details(product_id: str, req: ProductDetailsIn, db: Session = Depends(get_db)):
    return product_details.update_details(db, product_id, **req.model_dump())


@app.delete("/product-details/{product_id}")
def delete_product_details(product_id: str, db: Session = Depends(get_db)):
    return product_details.delete_details(db, product_id)


@app.post("/product-details/{product_id}/reduce-stock")
def reduce_stock(product_id: str, db: Session = Depends(get_db)):
    quantity = product_details.reduce_stock(db, product_id)
    return {"message": "Quantity reduced", "quantity": quantity}


# ---------- Orders ----------

@app.get("/orders")
def list_orders(db: Session = Depends(get_db), _user: str = Depends(current_user_id),
                identity=Depends(get_identity_provider)):
    return orders.list_orders(db, identity)


@app.post("/orders", status_code=201)
def create_order(req: CreateOrderRequest, db: Session = Depends(get_db), user_id: str = Depends(current_user_id)):
    items = [item.model_dump() for item in req.items] if req.items else []
    order_id = orders.create_order(db, items, req.total, req.name, req.email, req.phone, req.address, user_id)
    return {"message": "Order placed", "orderId": order_id}


@app.patch("/orders")
def update_order_status(req: UpdateOrderStatusRequest, db: Session = Depends(get_db),
                        _user: str = Depends(current_user_id)):
    return orders.update_status(db, req.orderId, req.status)


@app.delete("/orders")
def delete_order(req: DeleteOrderRequest, db: Session = Depends(get_db), _user: str = Depends(current_user_id)):
    return orders.delete_order(db, req.orderId)


@app.get("/dashboard-stats")
def dashboard_stats(range_: Optional[str] = Query(None, alias="range"), db: Session = Depends(get_db),
                    _user: str = Depends(current_user_id)):
    return dashboard.get_stats(db, range_)


# ---------- Users & identity provider ----------

@app.get("/users")
def list_users(db: Session = Depends(get_db), _user: str = Depends(current_user_id)):
    return users.list_users(db)


@app.post("/auth/webhook")
async def auth_webhook(request: Request, db: Session = Depends(get_db), identity=Depends(get_identity_provider)):
    payload = identity.verify_webhook(await request.body(), request.headers)
    user = users.user_from_webhook(payload)
    created = users.sync_user(db, user["id"], user["email"], user["name"])
    return {"message": "User created" if created else "User already exists"}


# ---------- Checkout ----------

@app.post("/checkout")
def checkout(req: CheckoutRequest, gateway=Depends(get_payment_gateway)):
    url = gateway.create_checkout_session([item.model_dump() for item in req.items])
    return {"url": url}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
