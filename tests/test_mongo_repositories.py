"""Runs the MongoDB repositories and aggregation pipelines against mongomock."""

from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId

import database
from analytics import StatisticsService, resolve_window, year_window
from errors import ConflictError, InvalidInputError, NotFoundError
from repositories import (
    CANNOT_DELETE_WITH_STOCK,
    MongoCategoryRepository,
    MongoOrderRepository,
    MongoProductRepository,
    MongoStatisticsStore,
    MongoUserRepository,
    MongoWishlistRepository,
)
from schemas import Category, Order, OrderItem, Product, Review, User, WishlistItem


def at(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def db():
    mongo = mongomock.MongoClient(tz_aware=True)["peripherals_test"]
    database.ensure_indexes(mongo)
    return mongo


@pytest.fixture
def categories(db):
    return MongoCategoryRepository(db)


@pytest.fixture
def products(db):
    return MongoProductRepository(db)


@pytest.fixture
def orders(db):
    return MongoOrderRepository(db)


@pytest.fixture
def statistics(db):
    return StatisticsService(MongoStatisticsStore(db))


@pytest.fixture
def category_id(categories):
    return categories.create(Category(name="Keyboards", created_at=at(2024, 1, 1))).id


@pytest.fixture
def add_product(products, category_id):
    def _add(name="Product", price=10.0, stock=5, created_at=None):
        created_at = created_at or at(2024, 3, 1)
        return products.create(Product(
            category_id=category_id, name=name, price=price, stock=stock,
            created_at=created_at, updated_at=created_at,
        ))

    return _add


def place(orders, created_at, *items, status="pending"):
    return orders.create(Order(
        user_id="u1",
        items=[OrderItem(product_id=p, quantity=q) for p, q in items],
        status=status,
        created_at=created_at,
        updated_at=created_at,
    ))


class TestSalesPipeline:
    @pytest.fixture
    def sales(self, orders, add_product):
        p1 = add_product("Mouse", price=10.0)
        p2 = add_product("Monitor", price=25.0)
        gone = str(ObjectId())
        place(orders, at(2024, 2, 1), (p1.id, 2), (p2.id, 1), (gone, 9))
        place(orders, at(2024, 12, 31, 23, 59, 59), (p1.id, 1), status="shipped")
        place(orders, at(2023, 12, 31, 23, 59, 59), (p2.id, 4), status="delivered")
        place(orders, at(2025, 1, 1), (p2.id, 8), status="cancelled")
        return p1, p2

    def test_year_totals(self, statistics, sales):
        stats = statistics.sales(resolve_window(2024))

        assert stats.total_orders == 2
        assert stats.pending_orders == 1
        assert stats.shipped_orders == 1
        assert stats.delivered_orders == 0
        assert stats.cancelled_orders == 0
        assert stats.total_revenue == 55.0
        assert stats.average_order == 27.5

    def test_year_matches_equivalent_range(self, statistics, sales):
        by_year = statistics.sales(resolve_window(year=2024))
        by_range = statistics.sales(resolve_window(start="2024-01-01", end="2024-12-31"))
        assert by_year == by_range

    def test_all_time(self, statistics, sales):
        stats = statistics.sales()
        assert stats.total_orders == 4
        assert stats.total_revenue == 55.0 + 100.0 + 200.0

    def test_empty_year_is_all_zeros(self, statistics, sales):
        stats = statistics.sales(year_window(2030))
        assert stats.total_orders == 0
        assert stats.total_revenue == 0.0
        assert stats.average_order == 0.0

    def test_deleted_product_adds_nothing(self, statistics, orders, products, add_product):
        kept = add_product("Kept", price=10.0)
        dropped = add_product("Dropped", price=99.0, stock=0)
        place(orders, at(2024, 5, 1), (kept.id, 1), (dropped.id, 3))
        products.delete(dropped.id)

        stats = statistics.sales()

        assert stats.total_orders == 1
        assert stats.total_revenue == 10.0


class TestProductPipeline:
    @pytest.fixture
    def catalog(self, products, add_product):
        sold_out = add_product("Sold out", stock=0, created_at=at(2024, 4, 1))
        products.add_review(sold_out.id, Review(user_id="u1", rating=2, created_at=at(2024, 4, 2)))
        products.add_review(sold_out.id, Review(user_id="u2", rating=4, created_at=at(2024, 4, 3)))
        old = add_product("Old", stock=7, created_at=at(2023, 6, 1))
        products.add_review(old.id, Review(user_id="u1", rating=5, created_at=at(2023, 6, 2)))

    def test_year_totals(self, statistics, catalog):
        stats = statistics.products(year_window(2024))

        assert stats.total_products == 1
        assert stats.total_stock == 0
        assert stats.out_of_stock == 1
        assert stats.total_reviews == 2
        assert stats.average_rating == 3.0
        assert stats.total_categories == 1

    def test_all_time(self, statistics, catalog):
        stats = statistics.products()
        assert stats.total_products == 2
        assert stats.total_stock == 7
        assert stats.total_reviews == 3
        assert stats.average_rating == pytest.approx(11 / 3)

    def test_year_matches_equivalent_range(self, statistics, catalog):
        by_year = statistics.products(resolve_window(year=2023))
        by_range = statistics.products(resolve_window(start="2023-01-01", end="2023-12-31"))
        assert by_year == by_range
        assert by_year.total_products == 1

    def test_categories_ignore_the_window(self, statistics, categories, catalog):
        categories.create(Category(name="Mice", created_at=at(2019, 1, 1)))
        for window in (None, year_window(1990), year_window(2024)):
            assert statistics.products(window).total_categories == 2

    def test_empty_catalog(self, statistics):
        stats = statistics.products(year_window(2024))
        assert stats.total_products == 0
        assert stats.average_rating == 0.0


class TestStockWrites:
    def test_decrement_with_enough_stock(self, products, add_product):
        product = add_product(stock=3)
        products.decrement_stock(product.id, 3, at(2024, 7, 1))
        stored = products.get(product.id)
        assert stored.stock == 0
        assert stored.updated_at == at(2024, 7, 1)

    def test_decrement_beyond_stock_changes_nothing(self, products, add_product):
        product = add_product(stock=2)
        with pytest.raises(InvalidInputError, match="insufficient stock"):
            products.decrement_stock(product.id, 3, at(2024, 7, 1))
        assert products.get(product.id).stock == 2

    def test_decrement_unknown_product(self, products):
        with pytest.raises(NotFoundError):
            products.decrement_stock(str(ObjectId()), 1, at(2024, 7, 1))

    def test_delete_without_stock(self, products, add_product):
        product = add_product(stock=0)
        products.delete(product.id)
        with pytest.raises(NotFoundError):
            products.get(product.id)

    def test_delete_with_stock_is_refused(self, products, add_product):
        product = add_product(stock=1)
        with pytest.raises(InvalidInputError) as exc_info:
            products.delete(product.id)
        assert exc_info.value.message == CANNOT_DELETE_WITH_STOCK
        assert products.get(product.id).stock == 1

    def test_delete_unknown_product(self, products):
        with pytest.raises(NotFoundError):
            products.delete(str(ObjectId()))


class TestUniqueIndexes:
    def test_duplicate_email(self, db):
        users = MongoUserRepository(db)
        users.insert(User(name="Ada", email="ada@peripherals.io", password_hash="x"))
        with pytest.raises(ConflictError):
            users.insert(User(name="Other", email="ada@peripherals.io", password_hash="y"))

    def test_duplicate_wishlist_entry(self, db, add_product):
        wishlist = MongoWishlistRepository(db)
        product = add_product()
        wishlist.add(WishlistItem(user_id="u1", product_id=product.id, created_at=at(2024, 5, 1)))
        with pytest.raises(ConflictError):
            wishlist.add(WishlistItem(user_id="u1", product_id=product.id, created_at=at(2024, 5, 2)))
        wishlist.add(WishlistItem(user_id="u2", product_id=product.id, created_at=at(2024, 5, 2)))
        assert wishlist.count("u1") == 1
