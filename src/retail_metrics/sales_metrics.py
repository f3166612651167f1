"""Sales, margin, discount and refund metrics for point-of-sale transactions.

The dashboard fold walks every transaction once. Order-level money
(grand totals, salesperson, store and region rollups, low margin alerts)
ignores sample lines, while the category and product rollups count every
line. The two rules disagree on purpose and must stay as they are until the
business decides otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Union

from . import data_manager, log
from .classifiers import resolve_region, resolve_salesperson
from .constants import (
    DEFAULT_SALESPERSON_LABEL,
    LOW_MARGIN_ALERT_PERCENT,
    LOW_MARGIN_MIN_SALE_VALUE,
    NAMED_REGIONS,
    STORE_CRITICAL_MARGIN,
    STORE_WARNING_MARGIN,
    TRADE_CUSTOMER_KEYWORDS,
    UNKNOWN_STORE_LABEL,
    AlertLevel,
    CanonicalCategory,
    ProductKind,
    Region,
)
from .lookups import (
    ZERO,
    ProductIndex,
    discount_amount,
    group_transaction_lines,
    percent_of,
    product_id_of,
)


@dataclass
class CategorySales:
    category: CanonicalCategory
    sales: Decimal = ZERO
    margin: Decimal = ZERO
    margin_percent: Decimal = ZERO
    discounts: Decimal = ZERO


@dataclass
class SalespersonStats:
    id: int
    name: str
    total_sales: Decimal = ZERO
    margin: Decimal = ZERO
    margin_percent: Decimal = ZERO
    discounts: Decimal = ZERO
    order_count: int = 0


@dataclass
class StoreStats:
    id: int
    name: str
    region: Region
    total_sales: Decimal = ZERO
    margin: Decimal = ZERO
    margin_percent: Decimal = ZERO
    discounts: Decimal = ZERO
    refund_count: int = 0
    refund_value: Decimal = ZERO
    alert_level: AlertLevel = AlertLevel.OK


@dataclass
class RegionalStats:
    name: Region
    total_sales: Decimal = ZERO
    margin: Decimal = ZERO
    margin_percent: Decimal = ZERO
    discounts: Decimal = ZERO
    order_count: int = 0


@dataclass(frozen=True)
class LowMarginAlert:
    order_id: int
    order_name: str
    margin_percent: Decimal
    date: datetime
    gross_total: Decimal
    customer: Optional[data_manager.Reference]
    sale_value: Decimal
    is_trade: bool


@dataclass
class ProductStat:
    id: int
    name: str
    sku: str
    sales: Decimal = ZERO
    margin: Decimal = ZERO
    margin_percent: Decimal = ZERO
    quantity: Decimal = ZERO
    category: Optional[CanonicalCategory] = None
    kind: Optional[ProductKind] = None


@dataclass
class DashboardMetrics:
    """Metrics document returned by :func:`compute_dashboard_metrics`."""

    total_sales: Decimal = ZERO
    total_margin: Decimal = ZERO
    total_margin_percent: Decimal = ZERO
    total_discounts: Decimal = ZERO
    total_refunds: Decimal = ZERO
    refund_count: int = 0
    average_margin_percent: Decimal = ZERO
    trade_sales: Decimal = ZERO
    trade_sales_percent: Decimal = ZERO
    category_breakdown: List[CategorySales] = field(default_factory=list)
    salesperson_stats: List[SalespersonStats] = field(default_factory=list)
    store_stats: List[StoreStats] = field(default_factory=list)
    regional_stats: List[RegionalStats] = field(default_factory=list)
    low_margin_alerts: List[LowMarginAlert] = field(default_factory=list)
    product_stats: List[ProductStat] = field(default_factory=list)


def is_trade_customer(customer: Optional[data_manager.Reference]) -> bool:
    """Guess whether the customer is a trade account from its name."""

    if customer is None:
        return False
    lower = customer.display_name.lower()
    return any(keyword in lower for keyword in TRADE_CUSTOMER_KEYWORDS)


def store_region(transaction: data_manager.TransactionRow) -> Region:
    store_name = transaction.store.display_name if transaction.store else UNKNOWN_STORE_LABEL
    return resolve_region(store_name)


def store_alert_level(margin_percent: Decimal) -> AlertLevel:
    if margin_percent < STORE_CRITICAL_MARGIN:
        return AlertLevel.CRITICAL
    if margin_percent < STORE_WARNING_MARGIN:
        return AlertLevel.WARNING
    return AlertLevel.OK


def compute_dashboard_metrics(
    transactions: Iterable[data_manager.TransactionRow],
    lines: Iterable[data_manager.TransactionLineRow],
    categories: Iterable[data_manager.CategoryRow],
    products: Iterable[data_manager.ProductRow],
    quotations_by_id: Mapping[int, data_manager.QuotationRow],
    region_filter: Optional[Region] = None,
    *,
    default_salesperson: str = DEFAULT_SALESPERSON_LABEL,
) -> DashboardMetrics:
    """Fold point-of-sale transactions into the sales dashboard document.

    For every transaction (skipped when ``region_filter`` is set and the
    store resolves to another region) the non-sample lines give the order's
    sales, margin and discounts, which feed the grand totals, trade sales,
    the credited salesperson, the store, and the North/South rollups. A
    transaction with a negative gross total is a refund. Every line of the
    same transaction, samples included, also feeds the category and product
    rollups. Low margin alerts are raised from the non-sample lines when the
    order is worth more than ``0.1`` and its margin is under 30%.

    Args:
        transactions (Iterable[TransactionRow]): Completed transactions.
        lines (Iterable[TransactionLineRow]): Lines of those transactions.
        categories (Iterable[CategoryRow]): Catalog categories.
        products (Iterable[ProductRow]): Products referenced by the lines.
        quotations_by_id (Mapping[int, QuotationRow]): Originating quotations
            used for salesperson attribution.
        region_filter (Region | None): Restrict the fold to one region.
        default_salesperson (str): Label for unnamed salespeople.

    Returns:
        DashboardMetrics: Totals, breakdowns and alerts. Percentages are
            ``0`` whenever their denominator is not positive.
    """

    index = ProductIndex(products, categories)
    lines_by_transaction = group_transaction_lines(lines)

    metrics = DashboardMetrics()
    category_totals: Dict[CanonicalCategory, CategorySales] = {}
    salespeople: Dict[int, SalespersonStats] = {}
    stores: Dict[int, StoreStats] = {}
    regions: Dict[Region, RegionalStats] = {region: RegionalStats(name=region) for region in NAMED_REGIONS}
    product_stats: Dict[int, ProductStat] = {
        product.product_id: ProductStat(
            id=product.product_id,
            name=product.name,
            sku=product.sku or "",
            category=index.canonical_category(product.product_id),
            kind=product.kind,
        )
        for product in index.products.values()
    }
    alerts: List[LowMarginAlert] = []

    for transaction in transactions:
        region = store_region(transaction)
        if region_filter is not None and region != region_filter:
            continue

        order_lines = lines_by_transaction.get(transaction.transaction_id, [])
        priced_lines = [line for line in order_lines if not index.is_sample(product_id_of(line.product))]

        order_sales = ZERO
        order_margin = ZERO
        order_discounts = ZERO
        for line in priced_lines:
            order_sales += line.subtotal
            order_margin += line.margin
            order_discounts += discount_amount(line.unit_price, line.quantity, line.discount_percent)

        is_refund = transaction.gross_total < 0
        is_trade = is_trade_customer(transaction.customer)

        metrics.total_sales += order_sales
        metrics.total_margin += order_margin
        metrics.total_discounts += order_discounts
        if is_refund:
            metrics.refund_count += 1
            metrics.total_refunds += abs(order_sales)
        if is_trade:
            metrics.trade_sales += order_sales

        credited = resolve_salesperson(
            transaction, order_lines, quotations_by_id, default_label=default_salesperson
        )
        salesperson = salespeople.get(credited.id)
        if salesperson is None:
            salesperson = SalespersonStats(id=credited.id, name=credited.name)
            salespeople[credited.id] = salesperson
        salesperson.total_sales += order_sales
        salesperson.margin += order_margin
        salesperson.discounts += order_discounts
        salesperson.order_count += 1

        store_id = transaction.store.id if transaction.store else 0
        store = stores.get(store_id)
        if store is None:
            store_name = transaction.store.display_name if transaction.store else UNKNOWN_STORE_LABEL
            store = StoreStats(id=store_id, name=store_name, region=region)
            stores[store_id] = store
        store.total_sales += order_sales
        store.margin += order_margin
        store.discounts += order_discounts
        if is_refund:
            store.refund_count += 1
            store.refund_value += abs(order_sales)

        if region in regions:
            regional = regions[region]
            regional.total_sales += order_sales
            regional.margin += order_margin
            regional.discounts += order_discounts
            regional.order_count += 1

        for line in order_lines:
            product_id = product_id_of(line.product)
            category = index.canonical_category(product_id)
            bucket = category_totals.get(category)
            if bucket is None:
                bucket = CategorySales(category=category)
                category_totals[category] = bucket
            bucket.sales += line.subtotal
            bucket.margin += line.margin
            bucket.discounts += discount_amount(line.unit_price, line.quantity, line.discount_percent)

            stat = product_stats.get(product_id) if product_id is not None else None
            if stat is not None:
                stat.sales += line.subtotal
                stat.margin += line.margin
                stat.quantity += line.quantity

        if not priced_lines:
            continue
        order_margin_percent = percent_of(order_margin, order_sales)
        if order_sales > LOW_MARGIN_MIN_SALE_VALUE and order_margin_percent < LOW_MARGIN_ALERT_PERCENT:
            alerts.append(
                LowMarginAlert(
                    order_id=transaction.transaction_id,
                    order_name=transaction.name,
                    margin_percent=order_margin_percent,
                    date=transaction.date,
                    gross_total=transaction.gross_total,
                    customer=transaction.customer,
                    sale_value=order_sales,
                    is_trade=is_trade,
                )
            )

    metrics.total_margin_percent = percent_of(metrics.total_margin, metrics.total_sales)
    metrics.average_margin_percent = metrics.total_margin_percent
    metrics.trade_sales_percent = percent_of(metrics.trade_sales, metrics.total_sales)

    for salesperson in salespeople.values():
        salesperson.margin_percent = percent_of(salesperson.margin, salesperson.total_sales)
    for regional in regions.values():
        regional.margin_percent = percent_of(regional.margin, regional.total_sales)
    for store in stores.values():
        store.margin_percent = percent_of(store.margin, store.total_sales)
        store.alert_level = store_alert_level(store.margin_percent)
    for bucket in category_totals.values():
        bucket.margin_percent = percent_of(bucket.margin, bucket.sales)

    reported_products = [stat for stat in product_stats.values() if stat.sales > 0 or stat.quantity > 0]
    for stat in reported_products:
        stat.margin_percent = percent_of(stat.margin, stat.sales)

    metrics.category_breakdown = sorted(category_totals.values(), key=lambda item: item.sales, reverse=True)
    metrics.salesperson_stats = sorted(salespeople.values(), key=lambda item: item.total_sales, reverse=True)
    metrics.store_stats = sorted(stores.values(), key=lambda item: item.total_sales, reverse=True)
    metrics.regional_stats = [regions[region] for region in NAMED_REGIONS]
    metrics.low_margin_alerts = sorted(alerts, key=lambda alert: alert.date, reverse=True)
    metrics.product_stats = sorted(reported_products, key=lambda item: item.margin, reverse=True)

    log.debug(
        "Computed dashboard metrics: sales=%s margin=%s refunds=%d alerts=%d",
        metrics.total_sales,
        metrics.total_margin,
        metrics.refund_count,
        len(metrics.low_margin_alerts),
    )
    return metrics


def compute_category_products(
    target_category: Union[CanonicalCategory, str],
    transactions: Iterable[data_manager.TransactionRow],
    lines: Iterable[data_manager.TransactionLineRow],
    categories: Iterable[data_manager.CategoryRow],
    products: Iterable[data_manager.ProductRow],
    region_filter: Optional[Region] = None,
) -> List[ProductStat]:
    """List the products sold within one canonical category.

    Only lines of transactions that pass ``region_filter`` and whose product
    is known are considered.

    Args:
        target_category (CanonicalCategory | str): Category to drill into.
        transactions (Iterable[TransactionRow]): Completed transactions.
        lines (Iterable[TransactionLineRow]): Lines of those transactions.
        categories (Iterable[CategoryRow]): Catalog categories.
        products (Iterable[ProductRow]): Products referenced by the lines.
        region_filter (Region | None): Restrict to one region.

    Returns:
        list[ProductStat]: Per-product sales, margin and quantity, sorted by
            sales descending.

    Raises:
        ValueError: If ``target_category`` is not a canonical category.
    """

    target = CanonicalCategory(target_category)
    index = ProductIndex(products, categories)
    lines_by_transaction = group_transaction_lines(lines)
    stats: Dict[int, ProductStat] = {}

    for transaction in transactions:
        if region_filter is not None and store_region(transaction) != region_filter:
            continue
        for line in lines_by_transaction.get(transaction.transaction_id, []):
            product = index.get(product_id_of(line.product))
            if product is None:
                continue
            if index.canonical_category(product.product_id) != target:
                continue
            stat = stats.get(product.product_id)
            if stat is None:
                stat = ProductStat(
                    id=product.product_id,
                    name=product.name,
                    sku=product.sku or "",
                    category=target,
                    kind=product.kind,
                )
                stats[product.product_id] = stat
            stat.sales += line.subtotal
            stat.margin += line.margin
            stat.quantity += line.quantity

    for stat in stats.values():
        stat.margin_percent = percent_of(stat.margin, stat.sales)
    return sorted(stats.values(), key=lambda item: item.sales, reverse=True)
