"""
Application services for users, categories, products and the wishlist.

Services validate input before touching storage and raise the errors defined
in ``errors``. Each one takes its clock as a constructor argument so tests can
pin timestamps.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvalidProductError,
    InvalidReferenceError,
    NotFoundError,
    UnauthorizedError,
)
from repositories import (
    CategoryRepository,
    ProductRepository,
    UserRepository,
    WishlistRepository,
)
from schemas import (
    Category,
    CategoryUpdate,
    Product,
    ProductUpdate,
    ProfileUpdate,
    PublicUser,
    Review,
    User,
    WishlistItem,
)
from security import TokenIssuer, hash_password, verify_password

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MAX_COMMENT_LENGTH = 500
MAX_BIO_LENGTH = 500


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Optional[str]) -> Optional[str]:
    return value.strip() if value is not None else None


class UserService:
    def __init__(self, repo: UserRepository, tokens: TokenIssuer, now: Clock = utc_now):
        self.repo = repo
        self.tokens = tokens
        self.now = now

    @staticmethod
    def _validate_name(name: str) -> str:
        name = name.strip()
        if len(name) < 2 or len(name) > 60:
            raise InvalidInputError("invalid name")
        return name

    def _create(self, name: str, email: str, password: str, role: str) -> Tuple[str, PublicUser]:
        name = self._validate_name(name)
        email = email.strip().lower()
        if not email or "@" not in email:
            raise InvalidInputError("invalid email")
        if len(password) < 6 or len(password) > 72:
            raise InvalidInputError("invalid password")

        try:
            self.repo.find_by_email(email)
        except NotFoundError:
            pass
        else:
            raise ConflictError("email already taken")

        created = self.repo.insert(User(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=role,
            created_at=self.now(),
        ))
        log.info("Registered %s account %s", role, created.id)
        return self.tokens.issue(created.id, created.role), created.public()

    def register(self, name: str, email: str, password: str) -> Tuple[str, PublicUser]:
        return self._create(name, email, password, "user")

    def register_admin(self, name: str, email: str, password: str) -> Tuple[str, PublicUser]:
        return self._create(name, email, password, "admin")

    def ensure_admin(self, name: str, email: str, password: str) -> None:
        """Creates the bootstrap admin account unless the email is already registered."""
        try:
            self.register_admin(name, email, password)
        except ConflictError:
            log.info("Bootstrap admin %s already exists", email)

    def login(self, email: str, password: str) -> Tuple[str, PublicUser]:
        email = email.strip().lower()
        try:
            user = self.repo.find_by_email(email)
        except NotFoundError:
            raise UnauthorizedError("invalid credentials")
        if not verify_password(password, user.password_hash):
            log.warning("Failed login for user %s", user.id)
            raise UnauthorizedError("invalid credentials")
        return self.tokens.issue(user.id, user.role), user.public()

    def get_profile(self, user_id: str) -> PublicUser:
        return self.repo.find_by_id(user_id).public()

    def update_profile(self, user_id: str, update: ProfileUpdate) -> PublicUser:
        changes = {}
        if update.name is not None:
            changes["name"] = self._validate_name(update.name)
        if update.address is not None:
            changes["address"] = update.address.strip()
        if update.phone is not None:
            changes["phone"] = update.phone.strip()
        if update.bio is not None:
            bio = update.bio.strip()
            if len(bio) > MAX_BIO_LENGTH:
                raise InvalidInputError("invalid bio")
            changes["bio"] = bio
        return self.repo.update(user_id, ProfileUpdate(**changes)).public()

    def list_users(self) -> List[PublicUser]:
        return [u.public() for u in self.repo.list_all()]


class CategoryService:
    def __init__(self, repo: CategoryRepository, products: ProductRepository, now: Clock = utc_now):
        self.repo = repo
        self.products = products
        self.now = now

    def list(self, offset: int, limit: int) -> Tuple[List[Category], int]:
        return self.repo.list(offset, limit), self.repo.count()

    def get(self, category_id: str) -> Category:
        return self.repo.get(category_id)

    def create(self, name: str, description: str = "") -> Category:
        name = name.strip()
        if not name:
            raise InvalidInputError("invalid name")
        now = self.now()
        created = self.repo.create(Category(
            name=name,
            description=(description or "").strip(),
            created_at=now,
            updated_at=now,
        ))
        log.info("Created category %s", created.id)
        return created

    def update(self, category_id: str, update: CategoryUpdate) -> Category:
        name = _clean(update.name)
        if name is not None and not name:
            raise InvalidInputError("invalid name")
        update = CategoryUpdate(name=name, description=_clean(update.description))
        return self.repo.update(category_id, update, self.now())

    def delete(self, category_id: str) -> None:
        if self.products.count_by_category(category_id) > 0:
            log.warning("Refusing to delete category %s: products still reference it", category_id)
            raise ConflictError("category has products")
        self.repo.delete(category_id)
        log.info("Deleted category %s", category_id)


class ProductService:
    def __init__(self, repo: ProductRepository, now: Clock = utc_now):
        self.repo = repo
        self.now = now

    def list(self, category_id: Optional[str], offset: int, limit: int) -> Tuple[List[Product], int]:
        return self.repo.list(category_id, offset, limit), self.repo.count(category_id)

    def get(self, product_id: str) -> Product:
        return self.repo.get(product_id)

    def create(self, category_id: str, name: str, price: float, stock: int,
               description: str = "") -> Product:
        name = name.strip()
        if not name:
            raise InvalidInputError("invalid name")
        if not category_id.strip():
            raise InvalidReferenceError("invalid category")
        if price <= 0:
            raise InvalidInputError("invalid price")
        if stock < 0:
            raise InvalidInputError("invalid stock")

        now = self.now()
        created = self.repo.create(Product(
            category_id=category_id.strip(),
            name=name,
            description=(description or "").strip(),
            price=price,
            stock=stock,
            created_at=now,
            updated_at=now,
        ))
        log.info("Created product %s", created.id)
        return created

    def update(self, product_id: str, update: ProductUpdate) -> Product:
        name = _clean(update.name)
        if name is not None and not name:
            raise InvalidInputError("invalid name")
        category_id = _clean(update.category_id)
        if category_id is not None and not category_id:
            raise InvalidReferenceError("invalid category")
        if update.price is not None and update.price <= 0:
            raise InvalidInputError("invalid price")
        if update.stock is not None and update.stock < 0:
            raise InvalidInputError("invalid stock")

        update = ProductUpdate(
            category_id=category_id,
            name=name,
            description=_clean(update.description),
            price=update.price,
            stock=update.stock,
        )
        return self.repo.update(product_id, update, self.now())

    def delete(self, product_id: str) -> None:
        self.repo.delete(product_id)
        log.info("Deleted product %s", product_id)

    def decrement_stock(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            raise InvalidInputError("invalid quantity")
        self.repo.decrement_stock(product_id, quantity, self.now())
        log.info("Decremented stock of product %s by %d", product_id, quantity)

    def add_review(self, product_id: str, user_id: str, rating: int, comment: str = "") -> Review:
        if not user_id.strip():
            raise ForbiddenError()
        if rating < 1 or rating > 5:
            raise InvalidInputError("invalid rating")
        comment = (comment or "").strip()
        if len(comment) > MAX_COMMENT_LENGTH:
            raise InvalidInputError("invalid comment")

        return self.repo.add_review(product_id, Review(
            user_id=user_id,
            rating=rating,
            comment=comment,
            created_at=self.now(),
        ))

    def delete_review(self, product_id: str, review_id: str, user_id: str, is_admin: bool) -> None:
        if not is_admin:
            product = self.repo.get(product_id)
            review = next((r for r in product.reviews if r.id == review_id), None)
            if review is None:
                raise NotFoundError("review")
            if review.user_id != user_id:
                raise ForbiddenError("not the author of this review")
        self.repo.delete_review(product_id, review_id)


class WishlistService:
    def __init__(self, repo: WishlistRepository, products: ProductRepository, now: Clock = utc_now):
        self.repo = repo
        self.products = products
        self.now = now

    def add(self, user_id: str, product_id: str) -> WishlistItem:
        user_id = user_id.strip()
        if not user_id:
            raise ForbiddenError()
        product_id = product_id.strip()
        if not product_id:
            raise InvalidProductError(product_id)

        try:
            product = self.products.get(product_id)
        except (NotFoundError, InvalidReferenceError):
            raise InvalidProductError(product_id)
        if product.stock < 1:
            raise InvalidInputError("cannot add product to wishlist: product is out of stock")

        return self.repo.add(WishlistItem(
            user_id=user_id,
            product_id=product_id,
            created_at=self.now(),
        ))

    def list(self, user_id: str, offset: int, limit: int) -> Tuple[List[WishlistItem], int]:
        user_id = user_id.strip()
        if not user_id:
            raise ForbiddenError()
        return self.repo.list(user_id, offset, limit), self.repo.count(user_id)

    def delete(self, user_id: str, item_id: str) -> None:
        user_id = user_id.strip()
        if not user_id:
            raise ForbiddenError()
        if not item_id.strip():
            raise InvalidReferenceError()
        self.repo.delete(user_id, item_id.strip())
