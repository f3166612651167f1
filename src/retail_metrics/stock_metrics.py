"""Inventory valuation, velocity rankings and stock alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from . import data_manager, log
from .constants import (
    LONG_LEAD_SKU_PREFIX,
    LONG_LEAD_WEEKS,
    MISSING_SKU_LABEL,
    RESTOCK_MAX_STOCK_LEVEL,
    RESTOCK_MIN_REVENUE,
    RESTOCK_SUGGESTION_LIMIT,
    SLOW_MOVER_MIN_PERIOD_DAYS,
    STANDARD_LEAD_WEEKS,
    STOCK_ALERT_LIMIT,
    TOP_PRODUCTS_LIMIT,
    CanonicalCategory,
    ProductKind,
    Region,
    StockAlertStatus,
)
from .lookups import ZERO, ProductIndex, group_transaction_lines, percent_of, product_id_of
from .sales_metrics import store_region

DAYS_PER_WEEK = Decimal("7")


@dataclass(frozen=True)
class ProductStockStat:
    id: int
    name: str
    sku: str
    quantity: Decimal
    revenue: Decimal
    margin: Decimal
    margin_percent: Decimal
    stock_level: Decimal
    forecasted_stock: Decimal
    kind: ProductKind


@dataclass
class StockValue:
    category: CanonicalCategory
    value: Decimal = ZERO
    item_count: int = 0


@dataclass(frozen=True)
class StockAlert:
    id: int
    name: str
    sku: str
    status: StockAlertStatus
    current_stock: Decimal
    forecasted_stock: Decimal
    avg_weekly_sales: Decimal
    message: Optional[str] = None


@dataclass(frozen=True)
class ScrapStat:
    product_id: int
    name: str
    quantity: Decimal
    value: Decimal
    date: datetime


@dataclass
class StockMetrics:
    """Metrics document returned by :func:`compute_stock_metrics`."""

    top_by_quantity: List[ProductStockStat] = field(default_factory=list)
    top_by_revenue: List[ProductStockStat] = field(default_factory=list)
    top_by_margin: List[ProductStockStat] = field(default_factory=list)
    valuation_by_category: List[StockValue] = field(default_factory=list)
    total_valuation: Decimal = ZERO
    alerts: List[StockAlert] = field(default_factory=list)
    scraps: List[ScrapStat] = field(default_factory=list)
    total_scrap_value: Decimal = ZERO
    suggestions: List[ProductStockStat] = field(default_factory=list)


@dataclass
class _Velocity:
    quantity: Decimal = ZERO
    revenue: Decimal = ZERO
    margin: Decimal = ZERO


def is_long_lead_sku(sku: Optional[str]) -> bool:
    """Return ``True`` for SKUs replenished on the 16-week cycle."""

    return (sku or "").upper().startswith(LONG_LEAD_SKU_PREFIX)


def average_weekly_sales(period_quantity: Decimal, period_days: int) -> Decimal:
    if period_days <= 0:
        return ZERO
    return period_quantity / Decimal(period_days) * DAYS_PER_WEEK


def evaluate_stock_alert(
    product: data_manager.ProductRow,
    period_quantity: Decimal,
    period_days: int,
) -> Optional[StockAlert]:
    """Decide which alert, if any, a product raises.

    Services never alert. For stockable products the checks run in order
    and the first hit wins: nothing on hand is ``out_of_stock``; less on
    hand than the lead-time requirement (16 weeks of sales for long-lead
    SKUs, 2 weeks otherwise) is ``critical_lead`` or ``low``; stock with no
    sales over a window of at least 14 days is ``slow_mover``.

    Args:
        product (ProductRow): Product to evaluate.
        period_quantity (Decimal): Units sold in the analysis window.
        period_days (int): Length of the analysis window in days.

    Returns:
        StockAlert | None: The alert raised, or ``None``.
    """

    if product.kind is not ProductKind.STOCKABLE:
        return None

    stock = product.on_hand
    forecasted = forecasted_stock(product)
    sku = product.sku or MISSING_SKU_LABEL
    weekly = average_weekly_sales(period_quantity, period_days)
    long_lead = is_long_lead_sku(product.sku)
    required = weekly * (LONG_LEAD_WEEKS if long_lead else STANDARD_LEAD_WEEKS)

    if stock <= 0:
        return StockAlert(
            id=product.product_id,
            name=product.name,
            sku=sku,
            status=StockAlertStatus.OUT_OF_STOCK,
            current_stock=stock,
            forecasted_stock=forecasted,
            avg_weekly_sales=weekly,
        )
    if stock < required:
        return StockAlert(
            id=product.product_id,
            name=product.name,
            sku=sku,
            status=StockAlertStatus.CRITICAL_LEAD if long_lead else StockAlertStatus.LOW,
            current_stock=stock,
            forecasted_stock=forecasted,
            avg_weekly_sales=weekly,
            message=f"EG Lead Time (16w req: {required:.1f})" if long_lead else None,
        )
    if period_quantity == 0 and period_days >= SLOW_MOVER_MIN_PERIOD_DAYS:
        return StockAlert(
            id=product.product_id,
            name=product.name,
            sku=sku,
            status=StockAlertStatus.SLOW_MOVER,
            current_stock=stock,
            forecasted_stock=forecasted,
            avg_weekly_sales=ZERO,
        )
    return None


def forecasted_stock(product: data_manager.ProductRow) -> Decimal:
    # A missing or zero forecast falls back to the on-hand quantity.
    if not product.forecasted:
        return product.on_hand
    return product.forecasted


def compute_stock_metrics(
    products: Iterable[data_manager.ProductRow],
    transactions: Iterable[data_manager.TransactionRow],
    lines: Iterable[data_manager.TransactionLineRow],
    categories: Iterable[data_manager.CategoryRow],
    period_days: int = 30,
    scraps: Iterable[data_manager.ScrapRow] = (),
    region_filter: Optional[Region] = None,
) -> StockMetrics:
    """Fold products, sales and write-offs into the stock dashboard document.

    Sales velocity comes from the lines of transactions in
    ``region_filter`` (all transactions when it is ``None``). Valuation uses
    ``max(on_hand, 0) * unit_cost``. Scrap value is the scrapped quantity at
    the product's unit cost, or zero when the product is unknown.

    Args:
        products (Iterable[ProductRow]): Products to value and rank.
        transactions (Iterable[TransactionRow]): Transactions in the window.
        lines (Iterable[TransactionLineRow]): Lines of those transactions.
        categories (Iterable[CategoryRow]): Catalog categories.
        period_days (int): Length of the analysis window in days.
        scraps (Iterable[ScrapRow]): Write-offs in the window.
        region_filter (Region | None): Restrict velocity to one region.

    Returns:
        StockMetrics: Top-10 rankings, valuation, alerts (by weekly sales,
            at most 50), scraps, and restock suggestions (at most 10).
    """

    index = ProductIndex(products, categories)
    lines_by_transaction = group_transaction_lines(lines)

    velocity: Dict[int, _Velocity] = {}
    for transaction in transactions:
        if region_filter is not None and store_region(transaction) != region_filter:
            continue
        for line in lines_by_transaction.get(transaction.transaction_id, []):
            product_id = product_id_of(line.product)
            if product_id is None:
                continue
            sold = velocity.setdefault(product_id, _Velocity())
            sold.quantity += line.quantity
            sold.revenue += line.subtotal
            sold.margin += line.margin

    metrics = StockMetrics()
    valuation: Dict[CanonicalCategory, StockValue] = {}
    alerts: List[StockAlert] = []
    ranked: List[ProductStockStat] = []

    for product in index.products.values():
        sold = velocity.get(product.product_id, _Velocity())
        value = product.on_hand * product.unit_cost if product.on_hand > 0 else ZERO
        metrics.total_valuation += value

        category = index.canonical_category(product.product_id)
        bucket = valuation.setdefault(category, StockValue(category=category))
        bucket.value += value
        bucket.item_count += 1

        alert = evaluate_stock_alert(product, sold.quantity, period_days)
        if alert is not None:
            alerts.append(alert)

        ranked.append(
            ProductStockStat(
                id=product.product_id,
                name=product.name,
                sku=product.sku or MISSING_SKU_LABEL,
                quantity=sold.quantity,
                revenue=sold.revenue,
                margin=sold.margin,
                margin_percent=percent_of(sold.margin, sold.revenue),
                stock_level=product.on_hand,
                forecasted_stock=forecasted_stock(product),
                kind=product.kind,
            )
        )

    for scrap in scraps:
        product = index.get(scrap.product.id)
        unit_cost = product.unit_cost if product is not None else ZERO
        scrap_value = scrap.quantity * unit_cost
        metrics.total_scrap_value += scrap_value
        metrics.scraps.append(
            ScrapStat(
                product_id=scrap.product.id,
                name=scrap.product.display_name,
                quantity=scrap.quantity,
                value=scrap_value,
                date=scrap.date,
            )
        )

    metrics.top_by_quantity = sorted(ranked, key=lambda item: item.quantity, reverse=True)[:TOP_PRODUCTS_LIMIT]
    metrics.top_by_revenue = sorted(ranked, key=lambda item: item.revenue, reverse=True)[:TOP_PRODUCTS_LIMIT]
    metrics.top_by_margin = sorted(ranked, key=lambda item: item.margin, reverse=True)[:TOP_PRODUCTS_LIMIT]
    metrics.valuation_by_category = sorted(valuation.values(), key=lambda item: item.value, reverse=True)
    metrics.alerts = sorted(alerts, key=lambda alert: alert.avg_weekly_sales, reverse=True)[:STOCK_ALERT_LIMIT]
    metrics.suggestions = sorted(
        (
            item
            for item in ranked
            if item.kind is ProductKind.STOCKABLE
            and item.stock_level <= RESTOCK_MAX_STOCK_LEVEL
            and item.revenue > RESTOCK_MIN_REVENUE
        ),
        key=lambda item: item.revenue,
        reverse=True,
    )[:RESTOCK_SUGGESTION_LIMIT]

    log.debug(
        "Computed stock metrics: products=%d valuation=%s alerts=%d scraps=%d",
        len(ranked),
        metrics.total_valuation,
        len(metrics.alerts),
        len(metrics.scraps),
    )
    return metrics
