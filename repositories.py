"""
Repository contracts and their MongoDB implementations.

Services only depend on the Protocol classes below; the Mongo* classes are the
production implementations. Every repository maps raw documents to the models
in ``schemas`` and translates driver conditions into domain errors:

* malformed ObjectId   -> InvalidReferenceError (or a more specific subclass)
* no matching document -> NotFoundError
* duplicate key        -> ConflictError

Any other ``PyMongoError`` propagates untouched.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from errors import (
    ConflictError,
    InvalidInputError,
    InvalidProductError,
    InvalidReferenceError,
    NotFoundError,
)
from schemas import (
    Category,
    CategoryUpdate,
    Order,
    OrderItem,
    Product,
    ProductTotals,
    ProductUpdate,
    ProfileUpdate,
    Review,
    SalesTotals,
    TimeWindow,
    User,
    WishlistItem,
)

CANNOT_DELETE_WITH_STOCK = "cannot delete product with stock; stock must be less than 1"


# Contracts

class UserRepository(Protocol):
    def insert(self, user: User) -> User: ...
    def find_by_email(self, email: str) -> User: ...
    def find_by_id(self, user_id: str) -> User: ...
    def update(self, user_id: str, update: ProfileUpdate) -> User: ...
    def list_all(self) -> List[User]: ...


class CategoryRepository(Protocol):
    def list(self, offset: int, limit: int) -> List[Category]: ...
    def count(self) -> int: ...
    def get(self, category_id: str) -> Category: ...
    def create(self, category: Category) -> Category: ...
    def update(self, category_id: str, update: CategoryUpdate, updated_at: datetime) -> Category: ...
    def delete(self, category_id: str) -> None: ...


class ProductRepository(Protocol):
    def list(self, category_id: Optional[str], offset: int, limit: int) -> List[Product]: ...
    def count(self, category_id: Optional[str] = None) -> int: ...
    def count_by_category(self, category_id: str) -> int: ...
    def get(self, product_id: str) -> Product: ...
    def create(self, product: Product) -> Product: ...
    def update(self, product_id: str, update: ProductUpdate, updated_at: datetime) -> Product: ...
    def delete(self, product_id: str) -> None: ...
    def decrement_stock(self, product_id: str, quantity: int, updated_at: datetime) -> None: ...
    def add_review(self, product_id: str, review: Review) -> Review: ...
    def delete_review(self, product_id: str, review_id: str) -> None: ...


class OrderRepository(Protocol):
    def list(self, user_id: Optional[str], offset: int, limit: int) -> List[Order]: ...
    def count(self, user_id: Optional[str] = None) -> int: ...
    def get(self, order_id: str, user_id: Optional[str] = None) -> Order: ...
    def create(self, order: Order) -> Order: ...
    def update_status(self, order_id: str, status: str, updated_at: datetime) -> Order: ...


class WishlistRepository(Protocol):
    def add(self, item: WishlistItem) -> WishlistItem: ...
    def list(self, user_id: str, offset: int, limit: int) -> List[WishlistItem]: ...
    def count(self, user_id: str) -> int: ...
    def delete(self, user_id: str, item_id: str) -> None: ...


class StatisticsStore(Protocol):
    def sales_totals(self, window: Optional[TimeWindow]) -> SalesTotals: ...
    def product_totals(self, window: Optional[TimeWindow]) -> ProductTotals: ...
    def count_categories(self) -> int: ...


# Helpers

def to_object_id(value: str, error: Optional[Exception] = None) -> ObjectId:
    try:
        return ObjectId(str(value).strip())
    except (InvalidId, TypeError):
        raise error if error is not None else InvalidReferenceError()


def window_filter(window: Optional[TimeWindow], field: str = "created_at") -> Dict[str, Any]:
    if window is None:
        return {}
    upper = "$lte" if window.end_inclusive else "$lt"
    return {field: {"$gte": window.start, upper: window.end}}


def _paged(cursor, offset: int, limit: int):
    return cursor.sort("created_at", DESCENDING).skip(max(offset, 0)).limit(max(limit, 0))


def _user_from_doc(doc: dict) -> User:
    return User(
        id=str(doc["_id"]),
        name=doc.get("name", ""),
        email=doc.get("email", ""),
        password_hash=doc.get("password_hash", ""),
        role=doc.get("role", "user"),
        address=doc.get("address", ""),
        phone=doc.get("phone", ""),
        bio=doc.get("bio", ""),
        created_at=doc.get("created_at"),
    )


def _category_from_doc(doc: dict) -> Category:
    return Category(
        id=str(doc["_id"]),
        name=doc.get("name", ""),
        description=doc.get("description", ""),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _review_from_doc(doc: dict) -> Review:
    return Review(
        id=str(doc["_id"]),
        user_id=doc.get("user_id", ""),
        rating=doc.get("rating", 1),
        comment=doc.get("comment", ""),
        created_at=doc.get("created_at"),
    )


def _product_from_doc(doc: dict) -> Product:
    return Product(
        id=str(doc["_id"]),
        category_id=str(doc.get("category_id", "")),
        name=doc.get("name", ""),
        description=doc.get("description", ""),
        price=doc.get("price"),
        stock=doc.get("stock", 0),
        reviews=[_review_from_doc(r) for r in doc.get("reviews") or []],
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _order_from_doc(doc: dict) -> Order:
    return Order(
        id=str(doc["_id"]),
        user_id=doc.get("user_id", ""),
        items=[
            OrderItem(product_id=str(it["product_id"]), quantity=it["quantity"])
            for it in doc.get("items", [])
        ],
        status=doc.get("status", "pending"),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def _wishlist_item_from_doc(doc: dict) -> WishlistItem:
    return WishlistItem(
        id=str(doc["_id"]),
        user_id=doc.get("user_id", ""),
        product_id=str(doc.get("product_id", "")),
        created_at=doc.get("created_at"),
    )


# MongoDB implementations

class MongoUserRepository:
    def __init__(self, db: Database):
        self.col = db["user"]

    def insert(self, user: User) -> User:
        doc = user.model_dump(exclude={"id"})
        try:
            inserted_id = self.col.insert_one(doc).inserted_id
        except DuplicateKeyError:
            raise ConflictError("email already taken")
        return user.model_copy(update={"id": str(inserted_id)})

    def find_by_email(self, email: str) -> User:
        doc = self.col.find_one({"email": email})
        if not doc:
            raise NotFoundError("user")
        return _user_from_doc(doc)

    def find_by_id(self, user_id: str) -> User:
        oid = to_object_id(user_id, NotFoundError("user"))
        doc = self.col.find_one({"_id": oid})
        if not doc:
            raise NotFoundError("user")
        return _user_from_doc(doc)

    def update(self, user_id: str, update: ProfileUpdate) -> User:
        oid = to_object_id(user_id, NotFoundError("user"))
        changes = update.model_dump(exclude_none=True)
        if not changes:
            return self.find_by_id(user_id)
        doc = self.col.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError("user")
        return _user_from_doc(doc)

    def list_all(self) -> List[User]:
        return [_user_from_doc(d) for d in self.col.find().sort("created_at", DESCENDING)]


class MongoCategoryRepository:
    def __init__(self, db: Database):
        self.col = db["category"]

    def list(self, offset: int, limit: int) -> List[Category]:
        return [_category_from_doc(d) for d in _paged(self.col.find(), offset, limit)]

    def count(self) -> int:
        return self.col.count_documents({})

    def get(self, category_id: str) -> Category:
        doc = self.col.find_one({"_id": to_object_id(category_id)})
        if not doc:
            raise NotFoundError("category")
        return _category_from_doc(doc)

    def create(self, category: Category) -> Category:
        inserted_id = self.col.insert_one(category.model_dump(exclude={"id"})).inserted_id
        return category.model_copy(update={"id": str(inserted_id)})

    def update(self, category_id: str, update: CategoryUpdate, updated_at: datetime) -> Category:
        oid = to_object_id(category_id)
        changes = update.model_dump(exclude_none=True)
        changes["updated_at"] = updated_at
        doc = self.col.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError("category")
        return _category_from_doc(doc)

    def delete(self, category_id: str) -> None:
        res = self.col.delete_one({"_id": to_object_id(category_id)})
        if res.deleted_count == 0:
            raise NotFoundError("category")


class MongoProductRepository:
    def __init__(self, db: Database):
        self.col = db["product"]

    def _category_filter(self, category_id: Optional[str]) -> Dict[str, Any]:
        if category_id is None or not category_id.strip():
            return {}
        return {"category_id": to_object_id(category_id, InvalidReferenceError("invalid category"))}

    def list(self, category_id: Optional[str], offset: int, limit: int) -> List[Product]:
        cursor = self.col.find(self._category_filter(category_id))
        return [_product_from_doc(d) for d in _paged(cursor, offset, limit)]

    def count(self, category_id: Optional[str] = None) -> int:
        return self.col.count_documents(self._category_filter(category_id))

    def count_by_category(self, category_id: str) -> int:
        return self.col.count_documents({"category_id": to_object_id(category_id)})

    def get(self, product_id: str) -> Product:
        doc = self.col.find_one({"_id": to_object_id(product_id)})
        if not doc:
            raise NotFoundError("product")
        return _product_from_doc(doc)

    def create(self, product: Product) -> Product:
        doc = product.model_dump(exclude={"id", "reviews"})
        doc["category_id"] = to_object_id(product.category_id, InvalidReferenceError("invalid category"))
        doc["reviews"] = []
        inserted_id = self.col.insert_one(doc).inserted_id
        return product.model_copy(update={"id": str(inserted_id), "reviews": []})

    def update(self, product_id: str, update: ProductUpdate, updated_at: datetime) -> Product:
        oid = to_object_id(product_id)
        changes = update.model_dump(exclude_none=True)
        if "category_id" in changes:
            changes["category_id"] = to_object_id(
                changes["category_id"], InvalidReferenceError("invalid category")
            )
        changes["updated_at"] = updated_at
        doc = self.col.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFoundError("product")
        return _product_from_doc(doc)

    def delete(self, product_id: str) -> None:
        oid = to_object_id(product_id)
        res = self.col.delete_one({"_id": oid, "stock": {"$lt": 1}})
        if res.deleted_count == 0:
            if self.col.count_documents({"_id": oid}) == 0:
                raise NotFoundError("product")
            raise InvalidInputError(CANNOT_DELETE_WITH_STOCK)

    def decrement_stock(self, product_id: str, quantity: int, updated_at: datetime) -> None:
        oid = to_object_id(product_id)
        # Check and decrement in one write so concurrent buyers cannot oversell.
        res = self.col.update_one(
            {"_id": oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": updated_at}},
        )
        if res.matched_count == 0:
            if self.col.count_documents({"_id": oid}) == 0:
                raise NotFoundError("product")
            raise InvalidInputError("insufficient stock")

    def add_review(self, product_id: str, review: Review) -> Review:
        pid = to_object_id(product_id)
        doc = review.model_dump(exclude={"id"})
        doc["_id"] = ObjectId()
        res = self.col.update_one({"_id": pid}, {"$push": {"reviews": doc}})
        if res.matched_count == 0:
            raise NotFoundError("product")
        return review.model_copy(update={"id": str(doc["_id"])})

    def delete_review(self, product_id: str, review_id: str) -> None:
        pid = to_object_id(product_id)
        rid = to_object_id(review_id, InvalidReferenceError("invalid review id"))
        res = self.col.update_one({"_id": pid}, {"$pull": {"reviews": {"_id": rid}}})
        if res.matched_count == 0:
            raise NotFoundError("product")
        if res.modified_count == 0:
            raise NotFoundError("review")


class MongoOrderRepository:
    def __init__(self, db: Database):
        self.col = db["order"]

    @staticmethod
    def _owner_filter(user_id: Optional[str]) -> Dict[str, Any]:
        return {} if user_id is None else {"user_id": user_id}

    def list(self, user_id: Optional[str], offset: int, limit: int) -> List[Order]:
        cursor = self.col.find(self._owner_filter(user_id))
        return [_order_from_doc(d) for d in _paged(cursor, offset, limit)]

    def count(self, user_id: Optional[str] = None) -> int:
        return self.col.count_documents(self._owner_filter(user_id))

    def get(self, order_id: str, user_id: Optional[str] = None) -> Order:
        filt = {"_id": to_object_id(order_id), **self._owner_filter(user_id)}
        doc = self.col.find_one(filt)
        if not doc:
            raise NotFoundError("order")
        return _order_from_doc(doc)

    def create(self, order: Order) -> Order:
        items = [
            {"product_id": to_object_id(it.product_id, InvalidProductError(it.product_id)),
             "quantity": it.quantity}
            for it in order.items
        ]
        doc = {
            "user_id": order.user_id,
            "items": items,
            "status": order.status,
            "created_at": order.created_at,
            "updated_at": order.updated_at,
        }
        inserted_id = self.col.insert_one(doc).inserted_id
        return order.model_copy(update={"id": str(inserted_id)})

    def update_status(self, order_id: str, status: str, updated_at: datetime) -> Order:
        doc = self.col.find_one_and_update(
            {"_id": to_object_id(order_id)},
            {"$set": {"status": status, "updated_at": updated_at}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise NotFoundError("order")
        return _order_from_doc(doc)


class MongoWishlistRepository:
    def __init__(self, db: Database):
        self.col = db["wishlistitem"]

    def add(self, item: WishlistItem) -> WishlistItem:
        doc = {
            "user_id": item.user_id,
            "product_id": to_object_id(item.product_id, InvalidProductError(item.product_id)),
            "created_at": item.created_at,
        }
        try:
            inserted_id = self.col.insert_one(doc).inserted_id
        except DuplicateKeyError:
            raise ConflictError("product already in wishlist")
        return item.model_copy(update={"id": str(inserted_id)})

    def list(self, user_id: str, offset: int, limit: int) -> List[WishlistItem]:
        cursor = self.col.find({"user_id": user_id})
        return [_wishlist_item_from_doc(d) for d in _paged(cursor, offset, limit)]

    def count(self, user_id: str) -> int:
        return self.col.count_documents({"user_id": user_id})

    def delete(self, user_id: str, item_id: str) -> None:
        res = self.col.delete_one({"_id": to_object_id(item_id), "user_id": user_id})
        if res.deleted_count == 0:
            raise NotFoundError("wishlist item")


class MongoStatisticsStore:
    """Windowed aggregation queries over orders, products and categories."""

    def __init__(self, db: Database):
        self.orders = db["order"]
        self.products = db["product"]
        self.categories = db["category"]

    def sales_totals(self, window: Optional[TimeWindow]) -> SalesTotals:
        pipeline = [
            {"$match": window_filter(window)},
            {"$facet": {
                "status_counts": [
                    {"$group": {"_id": "$status", "count": {"$sum": 1}}},
                ],
                "revenue": [
                    {"$unwind": "$items"},
                    {"$lookup": {
                        "from": "product",
                        "localField": "items.product_id",
                        "foreignField": "_id",
                        "as": "product",
                    }},
                    # Deleted products keep the line but contribute 0.
                    {"$unwind": {"path": "$product", "preserveNullAndEmptyArrays": True}},
                    {"$group": {
                        "_id": None,
                        "total_revenue": {"$sum": {"$multiply": [
                            "$items.quantity", {"$ifNull": ["$product.price", 0]},
                        ]}},
                    }},
                ],
            }},
        ]
        results = list(self.orders.aggregate(pipeline))
        if not results:
            return SalesTotals()
        row = results[0]
        counts = {sc["_id"]: sc["count"] for sc in row.get("status_counts", []) if sc.get("_id")}
        revenue = row["revenue"][0]["total_revenue"] if row.get("revenue") else 0.0
        return SalesTotals(status_counts=counts, total_revenue=revenue)

    def product_totals(self, window: Optional[TimeWindow]) -> ProductTotals:
        reviews = {"$ifNull": ["$reviews", []]}
        pipeline = [
            {"$match": window_filter(window)},
            {"$group": {
                "_id": None,
                "total_products": {"$sum": 1},
                "total_stock": {"$sum": "$stock"},
                "out_of_stock": {"$sum": {"$cond": [{"$lte": ["$stock", 0]}, 1, 0]}},
                "total_reviews": {"$sum": {"$size": reviews}},
                "rating_sum": {"$sum": {"$sum": "$reviews.rating"}},
                "rating_count": {"$sum": {"$size": {"$filter": {
                    "input": reviews,
                    "as": "r",
                    "cond": {"$ne": [{"$ifNull": ["$$r.rating", None]}, None]},
                }}}},
            }},
        ]
        results = list(self.products.aggregate(pipeline))
        if not results:
            return ProductTotals()
        row = results[0]
        row.pop("_id", None)
        return ProductTotals(**row)

    def count_categories(self) -> int:
        return self.categories.count_documents({})
