"""
Sales and catalog statistics.

A statistics request is first resolved into a ``TimeWindow`` (or ``None`` for
all time). The store answers raw counts and sums for that window and the
service derives totals and averages from them.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from errors import InvalidDateFormatError, InvalidDateRangeError, InvalidYearError
from repositories import StatisticsStore
from schemas import ProductStatistics, SalesStatistics, TimeWindow

log = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100
DATE_FORMAT = "%Y-%m-%d"


def year_window(year: int) -> TimeWindow:
    if year < MIN_YEAR or year > MAX_YEAR:
        raise InvalidYearError(year)
    return TimeWindow(
        start=datetime(year, 1, 1, tzinfo=timezone.utc),
        end=datetime(year + 1, 1, 1, tzinfo=timezone.utc),
        end_inclusive=False,
    )


def _parse_year(value: Union[int, str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidYearError(value)


def _parse_day(value: str) -> datetime:
    day = value.strip()
    try:
        parsed = datetime.strptime(day, DATE_FORMAT)
    except ValueError:
        raise InvalidDateFormatError(value)
    # strptime tolerates unpadded fields such as 2024-6-1.
    if parsed.strftime(DATE_FORMAT) != day:
        raise InvalidDateFormatError(value)
    return parsed.replace(tzinfo=timezone.utc)


def range_window(start: str, end: str) -> TimeWindow:
    """Closed window covering both boundary days in full."""
    start_at = _parse_day(start)
    end_at = _parse_day(end) + timedelta(days=1) - timedelta(seconds=1)
    if start_at > end_at:
        raise InvalidDateRangeError()
    return TimeWindow(start=start_at, end=end_at, end_inclusive=True)


def resolve_window(year: Union[int, str, None] = None, start: Optional[str] = None,
                   end: Optional[str] = None) -> Optional[TimeWindow]:
    """Turns request parameters into a window.

    A year wins over an explicit range and may arrive as raw query text. A
    range needs both bounds; with neither (or only one) there is no filter at
    all.
    """
    if year is not None and str(year).strip():
        return year_window(_parse_year(year))
    if start and end:
        return range_window(start, end)
    return None


class StatisticsService:
    def __init__(self, store: StatisticsStore):
        self.store = store

    @staticmethod
    def _check(window: Optional[TimeWindow]) -> None:
        if window is not None and window.start > window.end:
            raise InvalidDateRangeError()

    def sales(self, window: Optional[TimeWindow] = None) -> SalesStatistics:
        self._check(window)
        totals = self.store.sales_totals(window)
        counts = totals.status_counts

        stats = SalesStatistics(
            pending_orders=counts.get("pending", 0),
            shipped_orders=counts.get("shipped", 0),
            delivered_orders=counts.get("delivered", 0),
            cancelled_orders=counts.get("cancelled", 0),
            total_revenue=totals.total_revenue,
        )
        stats.total_orders = (
            stats.pending_orders + stats.shipped_orders
            + stats.delivered_orders + stats.cancelled_orders
        )
        if stats.total_orders > 0:
            stats.average_order = stats.total_revenue / stats.total_orders
        log.debug("Sales statistics for %s: %s", window, stats)
        return stats

    def products(self, window: Optional[TimeWindow] = None) -> ProductStatistics:
        self._check(window)
        totals = self.store.product_totals(window)

        stats = ProductStatistics(
            total_products=totals.total_products,
            total_stock=totals.total_stock,
            out_of_stock=totals.out_of_stock,
            total_reviews=totals.total_reviews,
            # Categories have no creation filter: always the full count.
            total_categories=self.store.count_categories(),
        )
        if totals.rating_count > 0:
            stats.average_rating = totals.rating_sum / totals.rating_count
        log.debug("Product statistics for %s: %s", window, stats)
        return stats
