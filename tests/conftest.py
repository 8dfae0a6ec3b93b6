"""Pytest fixtures: in-memory repositories, a fixed clock and an app wired to them."""

from collections import Counter
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from analytics import StatisticsService
from errors import (
    ConflictError,
    InvalidInputError,
    InvalidProductError,
    InvalidReferenceError,
    NotFoundError,
)
from main import Container, create_app
from orders import OrderService
from repositories import CANNOT_DELETE_WITH_STOCK
from schemas import ProductTotals, SalesTotals
from security import TokenIssuer
from services import CategoryService, ProductService, UserService, WishlistService

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def _check_id(value, error=None):
    if not ObjectId.is_valid(str(value)):
        raise error if error is not None else InvalidReferenceError()
    return str(value)


def in_window(window, moment):
    """Same bounds as repositories.window_filter: $gte start, then $lte or $lt end."""
    if window is None:
        return True
    if moment is None or moment < window.start:
        return False
    return moment <= window.end if window.end_inclusive else moment < window.end


def _newest_first(items, offset, limit):
    ordered = sorted(items, key=lambda x: x.created_at, reverse=True)
    return ordered[offset:offset + limit]


class FakeUserRepository:
    def __init__(self):
        self.users = {}

    def insert(self, user):
        if any(u.email == user.email for u in self.users.values()):
            raise ConflictError("email already taken")
        user = user.model_copy(update={"id": str(ObjectId())})
        self.users[user.id] = user
        return user

    def find_by_email(self, email):
        for u in self.users.values():
            if u.email == email:
                return u
        raise NotFoundError("user")

    def find_by_id(self, user_id):
        if user_id not in self.users:
            raise NotFoundError("user")
        return self.users[user_id]

    def update(self, user_id, update):
        user = self.find_by_id(user_id)
        user = user.model_copy(update=update.model_dump(exclude_none=True))
        self.users[user_id] = user
        return user

    def list_all(self):
        return list(self.users.values())


class FakeCategoryRepository:
    def __init__(self):
        self.categories = {}

    def list(self, offset, limit):
        return _newest_first(self.categories.values(), offset, limit)

    def count(self):
        return len(self.categories)

    def get(self, category_id):
        _check_id(category_id)
        if category_id not in self.categories:
            raise NotFoundError("category")
        return self.categories[category_id]

    def create(self, category):
        category = category.model_copy(update={"id": str(ObjectId())})
        self.categories[category.id] = category
        return category

    def update(self, category_id, update, updated_at):
        category = self.get(category_id)
        changes = update.model_dump(exclude_none=True)
        changes["updated_at"] = updated_at
        category = category.model_copy(update=changes)
        self.categories[category_id] = category
        return category

    def delete(self, category_id):
        self.get(category_id)
        del self.categories[category_id]


class FakeProductRepository:
    def __init__(self):
        self.products = {}
        self.lookups = Counter()

    def list(self, category_id, offset, limit):
        items = [p for p in self.products.values() if not category_id or p.category_id == category_id]
        return _newest_first(items, offset, limit)

    def count(self, category_id=None):
        return len([p for p in self.products.values() if not category_id or p.category_id == category_id])

    def count_by_category(self, category_id):
        _check_id(category_id)
        return self.count(category_id)

    def get(self, product_id):
        self.lookups[product_id] += 1
        _check_id(product_id)
        if product_id not in self.products:
            raise NotFoundError("product")
        return self.products[product_id]

    def create(self, product):
        _check_id(product.category_id, InvalidReferenceError("invalid category"))
        product = product.model_copy(update={"id": str(ObjectId()), "reviews": []})
        self.products[product.id] = product
        return product

    def update(self, product_id, update, updated_at):
        product = self.get(product_id)
        changes = update.model_dump(exclude_none=True)
        changes["updated_at"] = updated_at
        product = product.model_copy(update=changes)
        self.products[product_id] = product
        return product

    def delete(self, product_id):
        product = self.get(product_id)
        if product.stock >= 1:
            raise InvalidInputError(CANNOT_DELETE_WITH_STOCK)
        del self.products[product_id]

    def decrement_stock(self, product_id, quantity, updated_at):
        product = self.get(product_id)
        if product.stock < quantity:
            raise InvalidInputError("insufficient stock")
        self.products[product_id] = product.model_copy(
            update={"stock": product.stock - quantity, "updated_at": updated_at}
        )

    def add_review(self, product_id, review):
        product = self.get(product_id)
        review = review.model_copy(update={"id": str(ObjectId())})
        self.products[product_id] = product.model_copy(update={"reviews": product.reviews + [review]})
        return review

    def delete_review(self, product_id, review_id):
        product = self.get(product_id)
        _check_id(review_id, InvalidReferenceError("invalid review id"))
        remaining = [r for r in product.reviews if r.id != review_id]
        if len(remaining) == len(product.reviews):
            raise NotFoundError("review")
        self.products[product_id] = product.model_copy(update={"reviews": remaining})


class FakeOrderRepository:
    def __init__(self):
        self.orders = {}

    def _owned(self, user_id):
        return [o for o in self.orders.values() if user_id is None or o.user_id == user_id]

    def list(self, user_id, offset, limit):
        return _newest_first(self._owned(user_id), offset, limit)

    def count(self, user_id=None):
        return len(self._owned(user_id))

    def get(self, order_id, user_id=None):
        _check_id(order_id)
        order = self.orders.get(order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise NotFoundError("order")
        return order

    def create(self, order):
        for it in order.items:
            _check_id(it.product_id, InvalidProductError(it.product_id))
        order = order.model_copy(update={"id": str(ObjectId())})
        self.orders[order.id] = order
        return order

    def update_status(self, order_id, status, updated_at):
        order = self.get(order_id)
        order = order.model_copy(update={"status": status, "updated_at": updated_at})
        self.orders[order_id] = order
        return order


class FakeWishlistRepository:
    def __init__(self):
        self.items = {}

    def add(self, item):
        if any(i.user_id == item.user_id and i.product_id == item.product_id for i in self.items.values()):
            raise ConflictError("product already in wishlist")
        item = item.model_copy(update={"id": str(ObjectId())})
        self.items[item.id] = item
        return item

    def list(self, user_id, offset, limit):
        return _newest_first([i for i in self.items.values() if i.user_id == user_id], offset, limit)

    def count(self, user_id):
        return len([i for i in self.items.values() if i.user_id == user_id])

    def delete(self, user_id, item_id):
        _check_id(item_id)
        item = self.items.get(item_id)
        if item is None or item.user_id != user_id:
            raise NotFoundError("wishlist item")
        del self.items[item_id]


class FakeStatisticsStore:
    """Computes the same raw aggregates as the MongoDB pipelines, over the fakes."""

    def __init__(self, orders, products, categories):
        self.orders = orders
        self.products = products
        self.categories = categories
        self.queries = []

    def _in(self, window, items):
        return [x for x in items if in_window(window, x.created_at)]

    def sales_totals(self, window):
        self.queries.append(("sales", window))
        counts = Counter()
        revenue = 0.0
        for order in self._in(window, self.orders.orders.values()):
            counts[order.status] += 1
            for item in order.items:
                product = self.products.products.get(item.product_id)
                revenue += item.quantity * (product.price if product else 0)
        return SalesTotals(status_counts=dict(counts), total_revenue=revenue)

    def product_totals(self, window):
        self.queries.append(("products", window))
        totals = ProductTotals()
        for product in self._in(window, self.products.products.values()):
            totals.total_products += 1
            totals.total_stock += product.stock
            totals.out_of_stock += 1 if product.stock <= 0 else 0
            totals.total_reviews += len(product.reviews)
            totals.rating_sum += sum(r.rating for r in product.reviews)
            totals.rating_count += len(product.reviews)
        return totals

    def count_categories(self):
        self.queries.append(("categories", None))
        return len(self.categories.categories)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def repos():
    users = FakeUserRepository()
    categories = FakeCategoryRepository()
    products = FakeProductRepository()
    orders = FakeOrderRepository()
    wishlist = FakeWishlistRepository()
    return SimpleNamespace(
        users=users,
        categories=categories,
        products=products,
        orders=orders,
        wishlist=wishlist,
        stats=FakeStatisticsStore(orders, products, categories),
    )


@pytest.fixture
def container(repos, clock):
    tokens = TokenIssuer("test-secret", 60)
    return Container(
        tokens=tokens,
        users=UserService(repos.users, tokens, now=clock),
        categories=CategoryService(repos.categories, repos.products, now=clock),
        products=ProductService(repos.products, now=clock),
        orders=OrderService(repos.orders, repos.products, now=clock),
        wishlist=WishlistService(repos.wishlist, repos.products, now=clock),
        statistics=StatisticsService(repos.stats),
    )


@pytest.fixture
def client(container):
    return TestClient(create_app(container=container))


@pytest.fixture
def user_id():
    return str(ObjectId())


@pytest.fixture
def user_headers(container, user_id):
    return {"Authorization": f"Bearer {container.tokens.issue(user_id, 'user')}"}


@pytest.fixture
def admin_headers(container):
    return {"Authorization": f"Bearer {container.tokens.issue(str(ObjectId()), 'admin')}"}


@pytest.fixture
def category(container):
    return container.categories.create("Keyboards", "Mechanical and membrane")


@pytest.fixture
def make_product(container, category):
    """Factory creating a product in the default category."""

    def _make(name="Product", price=10.0, stock=5):
        return container.products.create(category.id, name, price, stock)

    return _make
