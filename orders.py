"""
Orders and order pricing.

Only product references and quantities are stored with an order. Unit prices,
line totals and the order total are filled in every time orders are read,
from the catalog's current prices.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from errors import (
    ForbiddenError,
    InvalidInputError,
    InvalidProductError,
    InvalidReferenceError,
    NotFoundError,
)
from repositories import OrderRepository, ProductRepository
from schemas import ORDER_STATUSES, Order, OrderItem
from services import Clock, utc_now

log = logging.getLogger(__name__)


def price_orders(orders: Iterable[Order], products: ProductRepository) -> List[Order]:
    """Returns priced copies of ``orders``.

    Each distinct product is looked up once per call. If any product cannot be
    resolved the whole call fails with InvalidProductError and nothing is
    returned.
    """
    prices: Dict[str, float] = {}
    priced = []
    for order in orders:
        items = []
        total = 0.0
        for item in order.items:
            if item.product_id not in prices:
                try:
                    prices[item.product_id] = products.get(item.product_id).price
                except (NotFoundError, InvalidReferenceError):
                    raise InvalidProductError(item.product_id)
            unit_price = prices[item.product_id]
            line_total = unit_price * item.quantity
            items.append(item.model_copy(update={"unit_price": unit_price, "line_total": line_total}))
            total += line_total
        priced.append(order.model_copy(update={"items": items, "total_price": total}))
    return priced


class OrderService:
    def __init__(self, repo: OrderRepository, products: ProductRepository, now: Clock = utc_now):
        self.repo = repo
        self.products = products
        self.now = now

    @staticmethod
    def _owner(user_id: str, is_admin: bool) -> Optional[str]:
        return None if is_admin else user_id.strip()

    def list(self, user_id: str, is_admin: bool, offset: int, limit: int) -> Tuple[List[Order], int]:
        owner = self._owner(user_id, is_admin)
        orders = self.repo.list(owner, offset, limit)
        total = self.repo.count(owner)
        return price_orders(orders, self.products), total

    def get(self, order_id: str, user_id: str, is_admin: bool) -> Order:
        order = self.repo.get(order_id, self._owner(user_id, is_admin))
        return price_orders([order], self.products)[0]

    def create(self, user_id: str, items: List[Tuple[str, int]]) -> Order:
        """Stores a pending order.

        ``items`` is a list of ``(product_id, quantity)`` pairs. Stock is
        neither checked nor decremented here.
        """
        user_id = user_id.strip()
        if not user_id:
            raise ForbiddenError()
        if not items:
            raise InvalidInputError("invalid items")

        cleaned = []
        for product_id, quantity in items:
            product_id = (product_id or "").strip()
            if not product_id:
                raise InvalidProductError(product_id)
            if quantity <= 0:
                raise InvalidInputError("invalid quantity")
            cleaned.append(OrderItem(product_id=product_id, quantity=quantity))

        now = self.now()
        created = self.repo.create(Order(
            user_id=user_id,
            items=cleaned,
            status="pending",
            created_at=now,
            updated_at=now,
        ))
        log.info("Created order %s for user %s with %d item(s)", created.id, user_id, len(cleaned))
        return created

    def update_status(self, order_id: str, status: str) -> Order:
        if status not in ORDER_STATUSES:
            raise InvalidInputError("invalid status")
        updated = self.repo.update_status(order_id, status, self.now())
        log.info("Order %s moved to %s", order_id, status)
        return updated
