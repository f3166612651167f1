"""Pure classification helpers shared by every aggregator.

Three lookups live here: the canonical product category, the region a store
belongs to, and the salesperson credited with a point-of-sale transaction.
None of them hold state; every table they consult is an ordered tuple in
:mod:`retail_metrics.constants`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from . import data_manager
from .constants import (
    CASH_OUT_REASON_KEYWORDS,
    CATEGORY_KEYWORDS,
    DEFAULT_SALESPERSON_LABEL,
    DISCONTINUED_MARKER,
    REGION_KEYWORDS,
    SAMPLE_PREFIX,
    SKU_PREFIX_CATEGORIES,
    UNKNOWN_SALESPERSON_LABEL,
    CanonicalCategory,
    CashOutReason,
    Region,
)


@dataclass(frozen=True)
class Salesperson:
    """Salesperson credited with a transaction."""

    id: int
    name: str


def is_sample(sku: Optional[str] = "", name: Optional[str] = "") -> bool:
    """Return ``True`` when the SKU or product name marks a sample.

    Samples are recognised by a ``[sample`` prefix, compared
    case-insensitively, on either value.
    """

    sku_lower = (sku or "").lower()
    name_lower = (name or "").lower()
    return sku_lower.startswith(SAMPLE_PREFIX) or name_lower.startswith(SAMPLE_PREFIX)


def classify_category(
    category_name: Optional[str],
    sku: Optional[str] = "",
    product_name: Optional[str] = "",
) -> CanonicalCategory:
    """Map raw catalog data onto one :class:`CanonicalCategory`.

    Rules are evaluated in priority order and the first match wins:

    1. Samples, via :func:`is_sample`.
    2. Discontinued, when the SKU, product name, or category name contains
       ``discontinued``.
    3. The SKU prefix table (``EW``, ``LAM``, ``SV``, ...).
    4. The category-name keyword table (``spc``, ``lvt``, ``lvc``, ...).
    5. ``Other``.

    The function is total: every input, including ``None`` values, maps to
    exactly one category.

    Args:
        category_name (str | None): Hierarchical category display name.
        sku (str | None): Product internal reference.
        product_name (str | None): Product display name.

    Returns:
        CanonicalCategory: The canonical category for the product.
    """

    sku_lower = (sku or "").lower()
    sku_upper = (sku or "").upper()
    name_lower = (product_name or "").lower()
    category_lower = (category_name or "").lower()

    if is_sample(sku, product_name):
        return CanonicalCategory.SAMPLES

    if (
        DISCONTINUED_MARKER in sku_lower
        or DISCONTINUED_MARKER in name_lower
        or DISCONTINUED_MARKER in category_lower
    ):
        return CanonicalCategory.DISCONTINUED

    for prefix, category in SKU_PREFIX_CATEGORIES:
        if sku_upper.startswith(prefix):
            return category

    for keyword, category in CATEGORY_KEYWORDS:
        if keyword in category_lower:
            return category

    return CanonicalCategory.OTHER


def resolve_region(store_name: Optional[str]) -> Region:
    """Resolve a store display name to its :class:`Region`.

    The name is lowercased and scanned against the ordered region table;
    the first substring hit wins and anything unmatched is ``Other``.
    """

    lower = (store_name or "").lower()
    for keyword, region in REGION_KEYWORDS:
        if keyword in lower:
            return region
    return Region.OTHER


def classify_cash_out_reason(text: Optional[str]) -> CashOutReason:
    """Resolve cash-out text (label plus narration) to a :class:`CashOutReason`."""

    lower = (text or "").lower()
    for keyword, reason in CASH_OUT_REASON_KEYWORDS:
        if keyword in lower:
            return reason
    return CashOutReason.OTHER


def resolve_salesperson(
    transaction: data_manager.TransactionRow,
    lines: Iterable[data_manager.TransactionLineRow],
    quotations_by_id: Mapping[int, data_manager.QuotationRow],
    *,
    default_label: str = DEFAULT_SALESPERSON_LABEL,
) -> Salesperson:
    """Resolve who gets credit for a point-of-sale transaction.

    A sale is often quoted by one salesperson and rung through the till by
    another operator; the quotation author keeps the credit. Starting from
    the transaction's own salesperson, the lines are scanned in order and
    the first one whose originating quotation is known and has a salesperson
    overrides both id and name. The scan stops at that first match.

    An empty name or the ``Unknown`` placeholder is replaced by
    ``default_label``.

    Args:
        transaction (TransactionRow): Transaction being attributed.
        lines (Iterable[TransactionLineRow]): The transaction's lines in
            their original order.
        quotations_by_id (Mapping[int, QuotationRow]): Quotations that may
            have originated the lines, keyed by quotation id.
        default_label (str): Name used when no usable name is available.

    Returns:
        Salesperson: Credited salesperson id and name. The id is ``0`` when
            the transaction carries no salesperson at all.
    """

    salesperson_id = transaction.salesperson.id if transaction.salesperson else 0
    salesperson_name = transaction.salesperson.display_name if transaction.salesperson else default_label

    for line in lines:
        if line.origin_quotation is None:
            continue
        quotation = quotations_by_id.get(line.origin_quotation.id)
        if quotation is None or quotation.salesperson is None:
            continue
        salesperson_id = quotation.salesperson.id
        salesperson_name = quotation.salesperson.display_name
        break

    if not salesperson_name or salesperson_name == UNKNOWN_SALESPERSON_LABEL:
        salesperson_name = default_label
    return Salesperson(id=salesperson_id, name=salesperson_name)
