"""Per-call lookup indices and numeric helpers shared by the aggregators."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from . import data_manager
from .classifiers import classify_category, is_sample
from .constants import CanonicalCategory

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of calendar days, compared on the UTC date."""

    date_from: date
    date_to: date

    def contains(self, moment: datetime) -> bool:
        return self.date_from <= moment.astimezone(UTC).date() <= self.date_to

    @property
    def days(self) -> int:
        """Day span of the window, never less than one."""

        return max((self.date_to - self.date_from).days, 1)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """Return ``part / whole * 100``, or ``0`` when ``whole`` is not positive."""

    if whole <= 0:
        return ZERO
    return part / whole * HUNDRED


def discount_amount(unit_price: Decimal, quantity: Decimal, discount_percent: Decimal) -> Decimal:
    return unit_price * quantity * discount_percent / HUNDRED


def group_transaction_lines(
    lines: Iterable[data_manager.TransactionLineRow],
) -> Dict[int, List[data_manager.TransactionLineRow]]:
    """Index lines by parent transaction id, preserving line order."""

    grouped: Dict[int, List[data_manager.TransactionLineRow]] = defaultdict(list)
    for line in lines:
        grouped[line.transaction_id].append(line)
    return grouped


def group_quotation_lines(
    lines: Iterable[data_manager.QuotationLineRow],
) -> Dict[int, List[data_manager.QuotationLineRow]]:
    """Index quotation lines by parent quotation id, preserving line order."""

    grouped: Dict[int, List[data_manager.QuotationLineRow]] = defaultdict(list)
    for line in lines:
        grouped[line.quotation_id].append(line)
    return grouped


class ProductIndex:
    """Product and category lookups built once per computation.

    Canonical categories are computed up front for every known product so
    the per-line loops of the aggregators only do dictionary lookups. An
    unknown product id, or a line without product, resolves to ``Other`` and
    is never treated as a sample.
    """

    def __init__(
        self,
        products: Iterable[data_manager.ProductRow],
        categories: Iterable[data_manager.CategoryRow],
    ) -> None:
        self.category_names: Dict[int, str] = {
            category.category_id: category.complete_name or category.name
            for category in categories
        }
        self.products: Dict[int, data_manager.ProductRow] = {}
        self._canonical: Dict[int, CanonicalCategory] = {}
        for product in products:
            self.products[product.product_id] = product
            self._canonical[product.product_id] = classify_category(
                self.category_name_for(product), product.sku, product.name
            )

    def category_name_for(self, product: data_manager.ProductRow) -> str:
        if product.category is None:
            return CanonicalCategory.OTHER.value
        return self.category_names.get(product.category.id, CanonicalCategory.OTHER.value)

    def get(self, product_id: Optional[int]) -> Optional[data_manager.ProductRow]:
        if product_id is None:
            return None
        return self.products.get(product_id)

    def canonical_category(self, product_id: Optional[int]) -> CanonicalCategory:
        if product_id is None or product_id not in self._canonical:
            return CanonicalCategory.OTHER
        return self._canonical[product_id]

    def is_sample(self, product_id: Optional[int]) -> bool:
        product = self.get(product_id)
        if product is None:
            return False
        return is_sample(product.sku, product.name)


def product_id_of(reference: Optional[data_manager.Reference]) -> Optional[int]:
    return reference.id if reference is not None else None
