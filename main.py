import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr
from pymongo.errors import PyMongoError

import database
from analytics import StatisticsService, resolve_window
from config import Settings, load_settings, setup_logging
from errors import ForbiddenError, StoreError, UnauthorizedError
from orders import OrderService
from repositories import (
    MongoCategoryRepository,
    MongoOrderRepository,
    MongoProductRepository,
    MongoStatisticsStore,
    MongoUserRepository,
    MongoWishlistRepository,
)
from schemas import CategoryUpdate, Order, ProductUpdate, ProfileUpdate
from security import Claims, TokenIssuer
from services import CategoryService, ProductService, UserService, WishlistService

log = logging.getLogger(__name__)


@dataclass
class Container:
    tokens: TokenIssuer
    users: UserService
    categories: CategoryService
    products: ProductService
    orders: OrderService
    wishlist: WishlistService
    statistics: StatisticsService


def build_container(db, settings: Settings) -> Container:
    products_repo = MongoProductRepository(db)
    tokens = TokenIssuer(settings.jwt_secret, settings.jwt_expires_min)
    return Container(
        tokens=tokens,
        users=UserService(MongoUserRepository(db), tokens),
        categories=CategoryService(MongoCategoryRepository(db), products_repo),
        products=ProductService(products_repo),
        orders=OrderService(MongoOrderRepository(db), products_repo),
        wishlist=WishlistService(MongoWishlistRepository(db), products_repo),
        statistics=StatisticsService(MongoStatisticsStore(db)),
    )


# Request bodies
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CategoryIn(BaseModel):
    name: str
    description: str = ""


class ProductIn(BaseModel):
    category_id: str
    name: str
    description: str = ""
    price: float
    stock: int


class ReviewIn(BaseModel):
    rating: int
    comment: str = ""


class StockDecrementIn(BaseModel):
    quantity: int


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int


class CreateOrderRequest(BaseModel):
    items: List[OrderItemIn]


class UpdateOrderStatusRequest(BaseModel):
    status: str


class FindOrderRequest(BaseModel):
    order_id: str


class WishlistIn(BaseModel):
    product_id: str


# Dependencies
security = HTTPBearer(auto_error=False)


def get_container(request: Request) -> Container:
    return request.app.state.container


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    container: Container = Depends(get_container),
) -> Claims:
    if credentials is None:
        raise UnauthorizedError("missing bearer token")
    return container.tokens.parse(credentials.credentials)


async def require_admin(user: Claims = Depends(get_current_user)) -> Claims:
    if not user.is_admin:
        raise ForbiddenError("admin only")
    return user


def order_out(order: Order, admin: bool) -> dict:
    return order.model_dump(exclude=None if admin else {"user_id"})


def page(items, total: int, offset: int, limit: int) -> dict:
    return {"items": items, "total": total, "offset": offset, "limit": limit}


router = APIRouter(prefix="/api/v1")


@router.get("/health")
def health():
    return {"status": "ok"}


# Auth & profile
@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, c: Container = Depends(get_container)):
    token, user = c.users.register(payload.name, payload.email, payload.password)
    return {"token": token, "user": user}


@router.post("/auth/login")
def login(payload: LoginRequest, c: Container = Depends(get_container)):
    token, user = c.users.login(payload.email, payload.password)
    return {"token": token, "user": user}


@router.post("/admin/auth/register", status_code=201)
def register_admin(payload: RegisterRequest, c: Container = Depends(get_container),
                   _: Claims = Depends(require_admin)):
    token, user = c.users.register_admin(payload.name, payload.email, payload.password)
    return {"token": token, "user": user}


@router.get("/profile")
def get_profile(c: Container = Depends(get_container), user: Claims = Depends(get_current_user)):
    return c.users.get_profile(user.user_id)


@router.put("/profile")
def update_profile(payload: ProfileUpdate, c: Container = Depends(get_container),
                   user: Claims = Depends(get_current_user)):
    return c.users.update_profile(user.user_id, payload)


@router.get("/admin/users")
def list_users(c: Container = Depends(get_container), _: Claims = Depends(require_admin)):
    return c.users.list_users()


# Categories
@router.get("/categories")
def list_categories(offset: int = Query(..., ge=0), limit: int = Query(..., gt=0),
                    c: Container = Depends(get_container)):
    items, total = c.categories.list(offset, limit)
    return page(items, total, offset, limit)


@router.get("/categories/{category_id}")
def get_category(category_id: str, c: Container = Depends(get_container)):
    return c.categories.get(category_id)


@router.post("/admin/categories", status_code=201)
def create_category(payload: CategoryIn, c: Container = Depends(get_container),
                    _: Claims = Depends(require_admin)):
    return c.categories.create(payload.name, payload.description)


@router.put("/admin/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, c: Container = Depends(get_container),
                    _: Claims = Depends(require_admin)):
    return c.categories.update(category_id, payload)


@router.delete("/admin/categories/{category_id}")
def delete_category(category_id: str, c: Container = Depends(get_container),
                    _: Claims = Depends(require_admin)):
    c.categories.delete(category_id)
    return {"id": category_id, "deleted": True}


# Products & reviews
@router.get("/products")
def list_products(offset: int = Query(..., ge=0), limit: int = Query(..., gt=0),
                  category_id: Optional[str] = None, c: Container = Depends(get_container)):
    items, total = c.products.list(category_id, offset, limit)
    return page(items, total, offset, limit)


@router.get("/products/{product_id}")
def get_product(product_id: str, c: Container = Depends(get_container)):
    return c.products.get(product_id)


@router.post("/admin/products", status_code=201)
def create_product(payload: ProductIn, c: Container = Depends(get_container),
                   _: Claims = Depends(require_admin)):
    return c.products.create(payload.category_id, payload.name, payload.price, payload.stock,
                             payload.description)


@router.put("/admin/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, c: Container = Depends(get_container),
                   _: Claims = Depends(require_admin)):
    return c.products.update(product_id, payload)


@router.delete("/admin/products/{product_id}")
def delete_product(product_id: str, c: Container = Depends(get_container),
                   _: Claims = Depends(require_admin)):
    c.products.delete(product_id)
    return {"id": product_id, "deleted": True}


@router.post("/admin/products/{product_id}/decrement-stock")
def decrement_stock(product_id: str, payload: StockDecrementIn, c: Container = Depends(get_container),
                    _: Claims = Depends(require_admin)):
    c.products.decrement_stock(product_id, payload.quantity)
    return c.products.get(product_id)


@router.post("/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, payload: ReviewIn, c: Container = Depends(get_container),
               user: Claims = Depends(get_current_user)):
    return c.products.add_review(product_id, user.user_id, payload.rating, payload.comment)


@router.delete("/products/{product_id}/reviews/{review_id}")
def delete_review(product_id: str, review_id: str, c: Container = Depends(get_container),
                  user: Claims = Depends(get_current_user)):
    c.products.delete_review(product_id, review_id, user.user_id, user.is_admin)
    return {"id": review_id, "deleted": True}


# Orders
@router.get("/orders")
def list_orders(offset: int = Query(..., ge=0), limit: int = Query(..., gt=0),
                c: Container = Depends(get_container), user: Claims = Depends(get_current_user)):
    items, total = c.orders.list(user.user_id, user.is_admin, offset, limit)
    return page([order_out(o, user.is_admin) for o in items], total, offset, limit)


@router.get("/orders/{order_id}")
def get_order(order_id: str, c: Container = Depends(get_container),
              user: Claims = Depends(get_current_user)):
    return order_out(c.orders.get(order_id, user.user_id, user.is_admin), user.is_admin)


@router.post("/orders", status_code=201)
def create_order(payload: CreateOrderRequest, c: Container = Depends(get_container),
                 user: Claims = Depends(get_current_user)):
    created = c.orders.create(user.user_id, [(it.product_id, it.quantity) for it in payload.items])
    return order_out(created, user.is_admin)


@router.put("/admin/orders/{order_id}/status")
def update_order_status(order_id: str, payload: UpdateOrderStatusRequest,
                        c: Container = Depends(get_container), _: Claims = Depends(require_admin)):
    return order_out(c.orders.update_status(order_id, payload.status), True)


@router.post("/admin/orders/find")
def find_order(payload: FindOrderRequest, c: Container = Depends(get_container),
               admin: Claims = Depends(require_admin)):
    return order_out(c.orders.get(payload.order_id, admin.user_id, True), True)


# Wishlist
@router.post("/wishlist", status_code=201)
def add_to_wishlist(payload: WishlistIn, c: Container = Depends(get_container),
                    user: Claims = Depends(get_current_user)):
    return c.wishlist.add(user.user_id, payload.product_id)


@router.get("/wishlist")
def list_wishlist(offset: int = Query(..., ge=0), limit: int = Query(..., gt=0),
                  c: Container = Depends(get_container), user: Claims = Depends(get_current_user)):
    items, total = c.wishlist.list(user.user_id, offset, limit)
    return page(items, total, offset, limit)


@router.delete("/wishlist/{item_id}")
def remove_from_wishlist(item_id: str, c: Container = Depends(get_container),
                         user: Claims = Depends(get_current_user)):
    c.wishlist.delete(user.user_id, item_id)
    return {"id": item_id, "deleted": True}


# Statistics
@router.get("/admin/stats/sales")
def sales_stats(year: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None,
                c: Container = Depends(get_container), _: Claims = Depends(require_admin)):
    return c.statistics.sales(resolve_window(year, start, end))


@router.get("/admin/stats/products")
def products_stats(year: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None,
                   c: Container = Depends(get_container), _: Claims = Depends(require_admin)):
    return c.statistics.products(resolve_window(year, start, end))


def create_app(container: Optional[Container] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        owns_db = False
        if getattr(app.state, "container", None) is None:
            db = database.connect(settings)
            database.ensure_indexes(db)
            app.state.container = build_container(db, settings)
            owns_db = True
            if settings.admin_email and settings.admin_password:
                app.state.container.users.ensure_admin(
                    settings.admin_name, settings.admin_email, settings.admin_password
                )
        yield
        if owns_db:
            database.close()

    app = FastAPI(title="Peripherals Store API", version="1.0.0", lifespan=lifespan)
    app.state.container = container
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(PyMongoError)
    async def storage_error_handler(request: Request, exc: PyMongoError):
        log.exception("Storage failure on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal error"})

    @app.get("/")
    def root():
        return {"message": "Peripherals Store API running"}

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=load_settings().port)
