"""Business logic layer for the retail metrics engine.

This module orchestrates the aggregators over a workbook snapshot. It
consumes the Data Access Layer (DAL) for all I/O, applies the collaborator
filters (reporting window, store, salesperson, excluded companies and
internal partners), and hands the resulting record sets to the pure
aggregators in :mod:`sales_metrics`, :mod:`stock_metrics`,
:mod:`pipeline_metrics` and :mod:`cash_metrics`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .cash_metrics import CashOutMetrics, compute_cash_out_metrics
from .classifiers import resolve_salesperson
from .constants import (
    COUNTED_TRANSACTION_STATES,
    EXPECTED_SCHEMA_VERSION,
    CanonicalCategory,
    DrilldownDimension,
    Region,
)
from .lookups import DateWindow, group_transaction_lines
from .pipeline_metrics import PipelineMetrics, compute_pipeline_metrics, drilldown_quotations
from .sales_metrics import DashboardMetrics, ProductStat, compute_category_products, compute_dashboard_metrics
from .stock_metrics import StockMetrics, compute_stock_metrics


class MetricsError(Exception):
    """Raised when a metrics request cannot be satisfied."""


class MissingReferenceError(MetricsError):
    """Raised when a requested transaction or other record is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class Snapshot:
    """Every record set of one workbook read, after collaborator filters.

    ``errors`` lists the record sets that could not be read; those sets are
    empty here rather than partially populated. ``quotations_by_id`` indexes
    every quotation read, before the company and partner filters; salesperson
    attribution and quotation detail look quotations up there.
    """

    transactions: tuple[data_manager.TransactionRow, ...] = ()
    transaction_lines: tuple[data_manager.TransactionLineRow, ...] = ()
    quotations: tuple[data_manager.QuotationRow, ...] = ()
    quotation_lines: tuple[data_manager.QuotationLineRow, ...] = ()
    products: tuple[data_manager.ProductRow, ...] = ()
    categories: tuple[data_manager.CategoryRow, ...] = ()
    scraps: tuple[data_manager.ScrapRow, ...] = ()
    stores: tuple[data_manager.StoreRow, ...] = ()
    cash_movements: tuple[data_manager.CashMovementRow, ...] = ()
    errors: tuple[data_manager.FetchError, ...] = ()
    quotations_by_id: Mapping[int, data_manager.QuotationRow] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class TransactionDetail:
    """A transaction with the lines shown for it.

    ``from_quotation`` is ``True`` when the transaction had no lines of its
    own and ``lines`` were rebuilt from its originating quotation.
    """

    transaction: data_manager.TransactionRow
    lines: tuple[data_manager.TransactionLineRow, ...]
    from_quotation: bool = False


@dataclass(frozen=True)
class QuotationDetail:
    quotation: data_manager.QuotationRow
    lines: tuple[data_manager.QuotationLineRow, ...]


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping used to cache derived collections.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the snapshot workbook for the BLL.

    The helper resolves ``config.ini``, parses settings, and opens the Excel
    workbook holding the snapshot. The resulting :class:`RuntimeContext`
    bundles the immutable settings with the workbook handle and an empty
    cache store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before reading any record set.

    Args:
        context (RuntimeContext): Runtime context containing the resolved
            settings.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


def is_internal_partner(customer: Optional[data_manager.Reference], partners: Iterable[str]) -> bool:
    """Return ``True`` when the customer name contains an internal partner name."""

    if customer is None:
        return False
    name = customer.display_name.lower()
    return any(partner.lower() in name for partner in partners if partner)


def is_excluded_company(company: Optional[data_manager.Reference], excluded_ids: Iterable[int]) -> bool:
    return company is not None and company.id in set(excluded_ids)


def load_snapshot(context: RuntimeContext) -> Snapshot:
    """Read every record set and apply the collaborator filters.

    All record sets are read before any aggregator runs. Transactions are
    kept only in the counted states (``paid``, ``done``, ``invoiced``).
    Transactions and quotations belonging to an excluded company, or whose
    customer is an internal partner, are dropped; cash movements are kept
    as read. The snapshot is cached on the context, so repeated calls reuse
    the first read.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.

    Returns:
        Snapshot: Filtered record sets plus any fetch errors.
    """
    bucket = _get_cache_bucket(context, "snapshot")
    if "current" in bucket:
        return bucket["current"]

    results = {
        "transactions": data_manager.fetch_transactions(context.workbook),
        "transaction_lines": data_manager.fetch_transaction_lines(context.workbook),
        "quotations": data_manager.fetch_quotations(context.workbook),
        "quotation_lines": data_manager.fetch_quotation_lines(context.workbook),
        "products": data_manager.fetch_products(context.workbook),
        "categories": data_manager.fetch_categories(context.workbook),
        "scraps": data_manager.fetch_scraps(context.workbook),
        "stores": data_manager.fetch_stores(context.workbook),
        "cash_movements": data_manager.fetch_cash_movements(context.workbook),
    }
    errors = tuple(result.error for result in results.values() if result.error is not None)
    for error in errors:
        log.warning("Record set '%s' unavailable, using empty default: %s", error.sheet, error.reason)

    settings = context.settings
    transactions = tuple(
        transaction
        for transaction in results["transactions"].records_or_default()
        if transaction.state in COUNTED_TRANSACTION_STATES
        and not is_excluded_company(transaction.company, settings.excluded_company_ids)
        and not is_internal_partner(transaction.customer, settings.internal_partners)
    )
    all_quotations = results["quotations"].records_or_default()
    quotations = tuple(
        quotation
        for quotation in all_quotations
        if not is_excluded_company(quotation.company, settings.excluded_company_ids)
        and not is_internal_partner(quotation.customer, settings.internal_partners)
    )

    snapshot = Snapshot(
        transactions=transactions,
        transaction_lines=results["transaction_lines"].records_or_default(),
        quotations=quotations,
        quotation_lines=results["quotation_lines"].records_or_default(),
        products=results["products"].records_or_default(),
        categories=results["categories"].records_or_default(),
        scraps=results["scraps"].records_or_default(),
        stores=results["stores"].records_or_default(),
        cash_movements=results["cash_movements"].records_or_default(),
        errors=errors,
        quotations_by_id={quotation.quotation_id: quotation for quotation in all_quotations},
    )
    log.info(
        "Loaded snapshot: transactions=%d quotations=%d products=%d errors=%d",
        len(snapshot.transactions),
        len(snapshot.quotations),
        len(snapshot.products),
        len(errors),
    )
    bucket["current"] = snapshot
    return snapshot


def resolve_window(
    date_from: Optional[date],
    date_to: Optional[date],
    *,
    default_days: Optional[int] = None,
    today: Optional[date] = None,
) -> DateWindow:
    """Fill in a reporting window from optional bounds.

    ``date_to`` defaults to ``today``. ``date_from`` defaults to
    ``default_days`` before ``today``, or to the first day of the current
    month when ``default_days`` is ``None``.

    Raises:
        MetricsError: If ``date_from`` falls after ``date_to``.
    """
    today = today or datetime.now(UTC).date()
    date_to = date_to or today
    if date_from is None:
        date_from = today.replace(day=1) if default_days is None else today - timedelta(days=default_days)
    if date_from > date_to:
        raise MetricsError(f"Window start {date_from.isoformat()} is after its end {date_to.isoformat()}")
    return DateWindow(date_from=date_from, date_to=date_to)


def _transactions_in_scope(
    snapshot: Snapshot,
    window: DateWindow,
    store_id: Optional[int] = None,
    salesperson_id: Optional[int] = None,
) -> List[data_manager.TransactionRow]:
    selected = []
    for transaction in snapshot.transactions:
        if not window.contains(transaction.date):
            continue
        if store_id is not None and (transaction.store is None or transaction.store.id != store_id):
            continue
        if salesperson_id is not None and (
            transaction.salesperson is None or transaction.salesperson.id != salesperson_id
        ):
            continue
        selected.append(transaction)
    return selected


def _lines_of(
    snapshot: Snapshot, transactions: Iterable[data_manager.TransactionRow]
) -> List[data_manager.TransactionLineRow]:
    wanted = {transaction.transaction_id for transaction in transactions}
    return [line for line in snapshot.transaction_lines if line.transaction_id in wanted]


def _originating_quotations(
    snapshot: Snapshot, lines: Iterable[data_manager.TransactionLineRow]
) -> Dict[int, data_manager.QuotationRow]:
    referenced = {line.origin_quotation.id for line in lines if line.origin_quotation is not None}
    return {
        quotation_id: snapshot.quotations_by_id[quotation_id]
        for quotation_id in referenced
        if quotation_id in snapshot.quotations_by_id
    }


def build_dashboard(
    context: RuntimeContext,
    snapshot: Snapshot,
    window: DateWindow,
    region: Optional[Region] = None,
    store_id: Optional[int] = None,
    salesperson_id: Optional[int] = None,
) -> DashboardMetrics:
    """Compute the sales dashboard for a window.

    Args:
        context (RuntimeContext): Runtime context carrying the settings.
        snapshot (Snapshot): Snapshot returned by :func:`load_snapshot`.
        window (DateWindow): Reporting window on the transaction date.
        region (Region | None): Restrict to stores in one region.
        store_id (int | None): Restrict to one store.
        salesperson_id (int | None): Restrict to transactions whose own
            salesperson has this id, before attribution.

    Returns:
        DashboardMetrics: The populated metrics document.
    """
    transactions = _transactions_in_scope(snapshot, window, store_id, salesperson_id)
    lines = _lines_of(snapshot, transactions)
    return compute_dashboard_metrics(
        transactions,
        lines,
        snapshot.categories,
        snapshot.products,
        _originating_quotations(snapshot, lines),
        region,
        default_salesperson=context.settings.default_salesperson_label,
    )


def build_stock_report(
    context: RuntimeContext,
    snapshot: Snapshot,
    window: DateWindow,
    region: Optional[Region] = None,
    store_id: Optional[int] = None,
) -> StockMetrics:
    """Compute the stock dashboard, with velocity and scraps taken from ``window``."""

    transactions = _transactions_in_scope(snapshot, window, store_id)
    scraps = [scrap for scrap in snapshot.scraps if window.contains(scrap.date)]
    log.debug("Stock report over %d days for region=%s store=%s", window.days, region, store_id)
    return compute_stock_metrics(
        snapshot.products,
        transactions,
        _lines_of(snapshot, transactions),
        snapshot.categories,
        window.days,
        scraps,
        region,
    )


def build_pipeline_report(
    context: RuntimeContext,
    snapshot: Snapshot,
    window: DateWindow,
    region: Optional[Region] = None,
    store_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PipelineMetrics:
    """Compute the quotation pipeline for ``window``."""

    return compute_pipeline_metrics(
        snapshot.quotations,
        snapshot.quotation_lines,
        snapshot.categories,
        snapshot.products,
        window,
        region,
        store_id,
        now=now,
    )


def build_quote_drilldown(
    context: RuntimeContext,
    snapshot: Snapshot,
    window: DateWindow,
    dimension: Union[DrilldownDimension, str],
    value: str,
    store_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[data_manager.QuotationRow]:
    """List the active quotations behind one pipeline segment.

    Raises:
        ValueError: If the dimension or the segment value is not recognised.
    """
    quotations = [quotation for quotation in snapshot.quotations if window.contains(quotation.date)]
    return drilldown_quotations(
        quotations,
        dimension,
        value,
        quotation_lines=snapshot.quotation_lines,
        categories=snapshot.categories,
        products=snapshot.products,
        store_filter=store_id,
        now=now,
    )


def build_category_products(
    context: RuntimeContext,
    snapshot: Snapshot,
    window: DateWindow,
    category: Union[CanonicalCategory, str],
    region: Optional[Region] = None,
    store_id: Optional[int] = None,
) -> List[ProductStat]:
    """Rank the products sold in one canonical category."""

    transactions = _transactions_in_scope(snapshot, window, store_id)
    return compute_category_products(
        category,
        transactions,
        _lines_of(snapshot, transactions),
        snapshot.categories,
        snapshot.products,
        region,
    )


def build_cash_out_report(context: RuntimeContext, snapshot: Snapshot, window: DateWindow) -> CashOutMetrics:
    """Roll up the cash taken out of the tills during ``window``.

    Cash movements are not subject to the company or partner filters.
    """

    return compute_cash_out_metrics(snapshot.cash_movements, window)


def list_salesperson_transactions(
    context: RuntimeContext,
    snapshot: Snapshot,
    window: DateWindow,
    salesperson_id: int,
    store_id: Optional[int] = None,
) -> List[data_manager.TransactionRow]:
    """List the transactions credited to a salesperson, newest first.

    Credit follows the same attribution as the dashboard, so a sale rung
    through by another operator still appears under the quotation author.

    Args:
        context (RuntimeContext): Runtime context carrying the settings.
        snapshot (Snapshot): Snapshot returned by :func:`load_snapshot`.
        window (DateWindow): Reporting window on the transaction date.
        salesperson_id (int): Credited salesperson id.
        store_id (int | None): Restrict to one store.

    Returns:
        list[TransactionRow]: Matching transactions sorted by date descending.
    """
    transactions = _transactions_in_scope(snapshot, window, store_id)
    lines_by_transaction = group_transaction_lines(_lines_of(snapshot, transactions))
    credited = []
    for transaction in transactions:
        salesperson = resolve_salesperson(
            transaction,
            lines_by_transaction.get(transaction.transaction_id, []),
            snapshot.quotations_by_id,
            default_label=context.settings.default_salesperson_label,
        )
        if salesperson.id == salesperson_id:
            credited.append(transaction)
    return sorted(credited, key=lambda transaction: transaction.date, reverse=True)


def get_transaction_detail(
    context: RuntimeContext, snapshot: Snapshot, transaction_id: int
) -> TransactionDetail:
    """Retrieve a transaction and the lines to display for it.

    When the transaction has no lines of its own but originates from a
    quotation, the quotation's lines stand in for them with both subtotals
    set to the quotation subtotal and a zero margin.

    Args:
        context (RuntimeContext): Runtime context carrying the settings.
        snapshot (Snapshot): Snapshot returned by :func:`load_snapshot`.
        transaction_id (int): Identifier of the transaction.

    Returns:
        TransactionDetail: The transaction and its lines.

    Raises:
        MissingReferenceError: If the snapshot lacks the supplied identifier.
    """
    transaction = next(
        (row for row in snapshot.transactions if row.transaction_id == transaction_id),
        None,
    )
    if transaction is None:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}")

    lines = tuple(line for line in snapshot.transaction_lines if line.transaction_id == transaction_id)
    if lines or transaction.origin_quotation is None:
        return TransactionDetail(transaction=transaction, lines=lines)

    quotation_id = transaction.origin_quotation.id
    fallback = tuple(
        data_manager.TransactionLineRow(
            line_id=line.line_id,
            transaction_id=transaction_id,
            product=line.product,
            quantity=line.quantity,
            unit_price=line.unit_price,
            subtotal=line.subtotal,
            subtotal_incl=line.subtotal,
            discount_percent=line.discount_percent,
        )
        for line in snapshot.quotation_lines
        if line.quotation_id == quotation_id
    )
    if not fallback:
        return TransactionDetail(transaction=transaction, lines=())
    log.debug("Transaction %s has no lines; using %d lines of quotation %s", transaction_id, len(fallback), quotation_id)
    return TransactionDetail(transaction=transaction, lines=fallback, from_quotation=True)


def get_quotation_detail(
    context: RuntimeContext, snapshot: Snapshot, quotation_id: int
) -> QuotationDetail:
    """Retrieve a quotation and its lines.

    The lookup covers every quotation read, including those hidden from the
    pipeline by the company and partner filters.

    Raises:
        MissingReferenceError: If the snapshot lacks the supplied identifier.
    """
    quotation = snapshot.quotations_by_id.get(quotation_id)
    if quotation is None:
        log.warning("Quotation lookup failed for id '%s'", quotation_id)
        raise MissingReferenceError(f"Unknown quotation id: {quotation_id}")
    lines = tuple(line for line in snapshot.quotation_lines if line.quotation_id == quotation_id)
    return QuotationDetail(quotation=quotation, lines=lines)


def list_stores(snapshot: Snapshot) -> List[data_manager.StoreRow]:
    return list(snapshot.stores)
