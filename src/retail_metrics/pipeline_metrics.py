"""Quotation pipeline value, conversion, aging and leaderboards."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from . import data_manager, log
from .classifiers import resolve_region
from .constants import (
    ACTIVE_QUOTATION_STATES,
    AGE_BUCKET_LIMITS,
    RECENT_QUOTES_LIMIT,
    UNASSIGNED_SALESPERSON_LABEL,
    UNKNOWN_TEAM_LABEL,
    WON_QUOTATION_STATES,
    AgeBucket,
    CanonicalCategory,
    DrilldownDimension,
    Region,
)
from .lookups import ZERO, DateWindow, ProductIndex, group_quotation_lines, percent_of, product_id_of

SECONDS_PER_DAY = 86400


@dataclass
class SalespersonPipeline:
    name: str
    pipeline_value: Decimal = ZERO
    quote_count: int = 0
    won_count: int = 0
    conversion_rate: Decimal = ZERO
    avg_value: Decimal = ZERO


@dataclass
class StorePipeline:
    name: str
    pipeline_value: Decimal = ZERO
    quote_count: int = 0
    avg_value: Decimal = ZERO


@dataclass
class CategoryMix:
    category: CanonicalCategory
    value: Decimal = ZERO


@dataclass
class AgedQuotes:
    bucket: AgeBucket
    value: Decimal = ZERO


@dataclass
class PipelineMetrics:
    """Metrics document returned by :func:`compute_pipeline_metrics`."""

    total_quotes: int = 0
    pipeline_value: Decimal = ZERO
    conversion_rate: Decimal = ZERO
    avg_quote_value: Decimal = ZERO
    active_sample_count: Decimal = ZERO
    won_count: int = 0
    aged_quotes: List[AgedQuotes] = field(default_factory=list)
    by_salesperson: List[SalespersonPipeline] = field(default_factory=list)
    by_store: List[StorePipeline] = field(default_factory=list)
    category_mix: List[CategoryMix] = field(default_factory=list)
    recent_quotes: List[data_manager.QuotationRow] = field(default_factory=list)


def age_bucket_for(quotation_date: datetime, now: datetime) -> AgeBucket:
    """Return the aging bucket for a quotation created at ``quotation_date``.

    Ages are fractional days and every upper bound is inclusive, so a
    quotation exactly 30 days old is still ``< 30 Days``.
    """

    age_days = (now - quotation_date).total_seconds() / SECONDS_PER_DAY
    for limit, bucket in AGE_BUCKET_LIMITS:
        if age_days <= limit:
            return bucket
    return AgeBucket.OVER_90


def salesperson_name(quotation: data_manager.QuotationRow) -> str:
    if quotation.salesperson is None:
        return UNASSIGNED_SALESPERSON_LABEL
    return quotation.salesperson.display_name


def team_name(quotation: data_manager.QuotationRow) -> str:
    if quotation.team is None:
        return UNKNOWN_TEAM_LABEL
    return quotation.team.display_name


def quotation_region(quotation: data_manager.QuotationRow) -> Region:
    return resolve_region(quotation.team.display_name if quotation.team else None)


def in_store(quotation: data_manager.QuotationRow, store_filter: Optional[int]) -> bool:
    if store_filter is None:
        return True
    return quotation.team is not None and quotation.team.id == store_filter


def _has_priced_product(lines: List[data_manager.QuotationLineRow], index: ProductIndex) -> bool:
    # Unknown products count as priced, lines without a product do not.
    return any(
        line.product is not None and not index.is_sample(line.product.id)
        for line in lines
    )


def compute_pipeline_metrics(
    quotations: Iterable[data_manager.QuotationRow],
    quotation_lines: Iterable[data_manager.QuotationLineRow],
    categories: Iterable[data_manager.CategoryRow],
    products: Iterable[data_manager.ProductRow],
    window: DateWindow,
    region_filter: Optional[Region] = None,
    store_filter: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> PipelineMetrics:
    """Fold quotations into the pipeline dashboard document.

    Quotations dated inside ``window`` (and in the region and team given by
    the filters) are split into active (draft, sent) and won (sale, done).
    Active quotations whose every line is a sample are left out of the
    count, value, aging, leaderboard and mix figures; a quotation with no
    lines at all still counts. Sample quantities across every kept quotation
    are summed separately into ``active_sample_count``.

    Args:
        quotations (Iterable[QuotationRow]): Candidate quotations.
        quotation_lines (Iterable[QuotationLineRow]): Lines of those quotations.
        categories (Iterable[CategoryRow]): Catalog categories.
        products (Iterable[ProductRow]): Catalog products.
        window (DateWindow): Inclusive date range on the quotation date.
        region_filter (Region | None): Region resolved from the team name.
        store_filter (int | None): Team id to restrict to.
        now (datetime | None): Reference instant for aging; defaults to the
            current UTC time.

    Returns:
        PipelineMetrics: The populated metrics document.
    """

    now = now or datetime.now(UTC)
    index = ProductIndex(products, categories)
    lines_by_quotation = group_quotation_lines(quotation_lines)

    active: List[data_manager.QuotationRow] = []
    won: List[data_manager.QuotationRow] = []
    for quotation in quotations:
        if not window.contains(quotation.date):
            continue
        if region_filter is not None and quotation_region(quotation) != region_filter:
            continue
        if not in_store(quotation, store_filter):
            continue
        if quotation.state in ACTIVE_QUOTATION_STATES:
            active.append(quotation)
        elif quotation.state in WON_QUOTATION_STATES:
            won.append(quotation)

    metrics = PipelineMetrics()

    sample_units = ZERO
    for quotation in active + won:
        for line in lines_by_quotation.get(quotation.quotation_id, []):
            if line.product is not None and index.is_sample(line.product.id):
                sample_units += line.quantity
    metrics.active_sample_count = max(ZERO, sample_units)

    real: List[data_manager.QuotationRow] = []
    for quotation in active:
        lines = lines_by_quotation.get(quotation.quotation_id, [])
        if not lines or _has_priced_product(lines, index):
            real.append(quotation)

    metrics.total_quotes = len(real)
    metrics.won_count = len(won)
    metrics.pipeline_value = sum((quotation.amount_untaxed for quotation in real), ZERO)
    metrics.conversion_rate = percent_of(Decimal(len(won)), Decimal(len(real) + len(won)))
    if real:
        metrics.avg_quote_value = metrics.pipeline_value / len(real)

    aged: Dict[AgeBucket, AgedQuotes] = {bucket: AgedQuotes(bucket=bucket) for bucket in AgeBucket}
    salespeople: Dict[str, SalespersonPipeline] = {}
    stores: Dict[str, StorePipeline] = {}
    mix: Dict[CanonicalCategory, CategoryMix] = {}

    for quotation in real:
        aged[age_bucket_for(quotation.date, now)].value += quotation.amount_untaxed

        name = salesperson_name(quotation)
        seller = salespeople.setdefault(name, SalespersonPipeline(name=name))
        seller.pipeline_value += quotation.amount_untaxed
        seller.quote_count += 1

        team = team_name(quotation)
        store = stores.setdefault(team, StorePipeline(name=team))
        store.pipeline_value += quotation.amount_untaxed
        store.quote_count += 1

        for line in lines_by_quotation.get(quotation.quotation_id, []):
            if line.product is None:
                continue
            category = index.canonical_category(line.product.id)
            mix.setdefault(category, CategoryMix(category=category)).value += line.subtotal

    for quotation in won:
        name = salesperson_name(quotation)
        salespeople.setdefault(name, SalespersonPipeline(name=name)).won_count += 1

    for seller in salespeople.values():
        opportunities = seller.quote_count + seller.won_count
        seller.conversion_rate = percent_of(Decimal(seller.won_count), Decimal(opportunities))
        if seller.quote_count:
            seller.avg_value = seller.pipeline_value / seller.quote_count
    for store in stores.values():
        if store.quote_count:
            store.avg_value = store.pipeline_value / store.quote_count

    metrics.aged_quotes = list(aged.values())
    metrics.by_salesperson = sorted(salespeople.values(), key=lambda item: item.pipeline_value, reverse=True)
    metrics.by_store = sorted(stores.values(), key=lambda item: item.pipeline_value, reverse=True)
    metrics.category_mix = sorted(mix.values(), key=lambda item: item.value, reverse=True)
    metrics.recent_quotes = sorted(real, key=lambda quotation: quotation.date, reverse=True)[:RECENT_QUOTES_LIMIT]

    log.debug(
        "Computed pipeline metrics: quotes=%d won=%d value=%s samples=%s",
        metrics.total_quotes,
        metrics.won_count,
        metrics.pipeline_value,
        metrics.active_sample_count,
    )
    return metrics


def drilldown_quotations(
    quotations: Iterable[data_manager.QuotationRow],
    dimension: Union[DrilldownDimension, str],
    value: str,
    *,
    quotation_lines: Iterable[data_manager.QuotationLineRow] = (),
    categories: Iterable[data_manager.CategoryRow] = (),
    products: Iterable[data_manager.ProductRow] = (),
    store_filter: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[data_manager.QuotationRow]:
    """Return the active quotations behind one segment of the pipeline.

    Args:
        quotations (Iterable[QuotationRow]): Candidate quotations, already
            restricted to the reporting window.
        dimension (DrilldownDimension | str): Segment dimension.
        value (str): Segment label, for example ``"> 90 Days"``,
            a salesperson or team name, or a canonical category.
        quotation_lines (Iterable[QuotationLineRow]): Lines scanned for the
            category dimension.
        categories (Iterable[CategoryRow]): Catalog categories for the
            category dimension.
        products (Iterable[ProductRow]): Catalog products for the category
            dimension.
        store_filter (int | None): Team id to restrict to.
        now (datetime | None): Reference instant for aging.

    Returns:
        list[QuotationRow]: Matching quotations in input order.

    Raises:
        ValueError: If ``dimension`` is unknown, or ``value`` is not a valid
            age bucket or category for those dimensions.
    """

    dimension = DrilldownDimension(dimension)
    candidates = [
        quotation
        for quotation in quotations
        if quotation.state in ACTIVE_QUOTATION_STATES and in_store(quotation, store_filter)
    ]

    if dimension is DrilldownDimension.AGE_BUCKET:
        bucket = AgeBucket(value)
        now = now or datetime.now(UTC)
        return [quotation for quotation in candidates if age_bucket_for(quotation.date, now) is bucket]
    if dimension is DrilldownDimension.SALESPERSON:
        return [quotation for quotation in candidates if salesperson_name(quotation) == value]
    if dimension is DrilldownDimension.STORE:
        return [quotation for quotation in candidates if team_name(quotation) == value]

    target = CanonicalCategory(value)
    index = ProductIndex(products, categories)
    matching = set()
    for line in quotation_lines:
        product_id = product_id_of(line.product)
        if index.get(product_id) is None:
            continue
        if index.canonical_category(product_id) is target:
            matching.add(line.quotation_id)
    return [quotation for quotation in candidates if quotation.quotation_id in matching]
