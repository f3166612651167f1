"""Data access layer for the retail metrics engine.

This module provides the low-level helpers that read record snapshots from
the ``snapshot.xlsx`` workbook. Metric computations belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening the Excel file that holds the snapshot.
3. Sheet operations: loading structured, immutable records for every record
   set the aggregators consume, wrapped in :class:`FetchResult` so a failed
   read is an explicit value rather than an exception swallowed upstream.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Generic, Iterable, Optional, Sequence, TypeVar

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CASH_OUT_WINDOW_DAYS,
    DEFAULT_QUOTE_WINDOW_DAYS,
    DEFAULT_SALESPERSON_LABEL,
    DEFAULT_STOCK_PERIOD_DAYS,
    ProductKind,
    QuotationState,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"

T = TypeVar("T")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    default_salesperson_label: str = DEFAULT_SALESPERSON_LABEL
    stock_period_days: int = DEFAULT_STOCK_PERIOD_DAYS
    quote_window_days: int = DEFAULT_QUOTE_WINDOW_DAYS
    cash_out_window_days: int = DEFAULT_CASH_OUT_WINDOW_DAYS
    excluded_company_ids: tuple[int, ...] = ()
    internal_partners: tuple[str, ...] = ()


@dataclass(frozen=True)
class Reference:
    """Foreign key to another record: its id plus the display name.

    An absent foreign key is represented by ``None`` wherever a
    ``Optional[Reference]`` is expected, never by an id of ``0``.
    """

    id: int
    display_name: str


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet."""

    transaction_id: int
    name: str
    date: datetime
    gross_total: Decimal
    margin: Decimal
    state: str
    salesperson: Optional[Reference] = None
    store: Optional[Reference] = None
    company: Optional[Reference] = None
    customer: Optional[Reference] = None
    origin_quotation: Optional[Reference] = None


@dataclass(frozen=True)
class TransactionLineRow:
    """In-memory view of a row from the ``TransactionLines`` sheet."""

    line_id: int
    transaction_id: int
    product: Optional[Reference]
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    subtotal_incl: Decimal = Decimal("0")
    discount_percent: Decimal = Decimal("0")
    margin: Decimal = Decimal("0")
    origin_quotation_line_id: Optional[int] = None
    origin_quotation: Optional[Reference] = None


@dataclass(frozen=True)
class QuotationRow:
    """In-memory view of a row from the ``Quotations`` sheet."""

    quotation_id: int
    name: str
    date: datetime
    amount_untaxed: Decimal
    state: QuotationState
    amount_total: Decimal = Decimal("0")
    salesperson: Optional[Reference] = None
    team: Optional[Reference] = None
    customer: Optional[Reference] = None
    company: Optional[Reference] = None


@dataclass(frozen=True)
class QuotationLineRow:
    """In-memory view of a row from the ``QuotationLines`` sheet."""

    line_id: int
    quotation_id: int
    product: Optional[Reference]
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    discount_percent: Decimal = Decimal("0")


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: int
    name: str
    sku: Optional[str] = None
    category: Optional[Reference] = None
    on_hand: Decimal = Decimal("0")
    forecasted: Optional[Decimal] = None
    unit_cost: Decimal = Decimal("0")
    sale_price: Decimal = Decimal("0")
    kind: ProductKind = ProductKind.STOCKABLE


@dataclass(frozen=True)
class CategoryRow:
    """In-memory view of a row from the ``Categories`` sheet."""

    category_id: int
    name: str
    complete_name: Optional[str] = None
    parent: Optional[Reference] = None


@dataclass(frozen=True)
class ScrapRow:
    """In-memory view of a row from the ``ScrapRecords`` sheet."""

    scrap_id: int
    product: Reference
    quantity: Decimal
    date: datetime


@dataclass(frozen=True)
class StoreRow:
    """In-memory view of a row from the ``Stores`` sheet."""

    store_id: int
    name: str


@dataclass(frozen=True)
class CashMovementRow:
    """In-memory view of a row from the ``CashMovements`` sheet.

    ``amount`` is signed as booked on the till journal: money leaving the
    till is negative.
    """

    movement_id: int
    date: datetime
    amount: Decimal
    name: Optional[str] = None
    payment_ref: Optional[str] = None
    ref: Optional[str] = None
    narration: Optional[str] = None
    journal: Optional[Reference] = None
    company: Optional[Reference] = None

    @property
    def label(self) -> str:
        return self.name or self.payment_ref or self.ref or ""


@dataclass(frozen=True)
class FetchError:
    """Describe why a record set could not be read."""

    sheet: str
    reason: str


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of reading one record set: records or an explicit error."""

    sheet: str
    records: tuple[T, ...] = field(default_factory=tuple)
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def records_or_default(self) -> tuple[T, ...]:
        """Return the records, or an empty tuple when the read failed."""

        if self.error is not None:
            return ()
        return self.records


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file. The path is *not* resolved or validated when supplied
            explicitly.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    The function expands user home references (``~``), resolves the absolute
    path, and validates that the file exists before parsing it. Callers receive
    the ``ConfigParser`` even if individual sections are missing; validation of
    required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` and ``[Filters]`` are
    optional and fall back to the package defaults and to empty filters
    respectively. Relative ``DataFile`` paths are expanded against
    ``base_path`` when provided, or against the current working directory as
    a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container with the resolved data
            file path, schema version, defaults, and snapshot filters.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If a numeric option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    excluded_raw = parser.get("Filters", "ExcludedCompanyIds", fallback="")
    partners_raw = parser.get("Filters", "InternalPartners", fallback="")

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        default_salesperson_label=parser.get(
            "Defaults", "DefaultSalespersonLabel", fallback=DEFAULT_SALESPERSON_LABEL),
        stock_period_days=parser.getint(
            "Defaults", "StockPeriodDays", fallback=DEFAULT_STOCK_PERIOD_DAYS),
        quote_window_days=parser.getint(
            "Defaults", "QuoteWindowDays", fallback=DEFAULT_QUOTE_WINDOW_DAYS),
        cash_out_window_days=parser.getint(
            "Defaults", "CashOutWindowDays", fallback=DEFAULT_CASH_OUT_WINDOW_DAYS),
        excluded_company_ids=tuple(int(item) for item in _split_list(excluded_raw)),
        internal_partners=tuple(_split_list(partners_raw)),
    )


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def open_workbook(data_file: Path) -> Workbook:
    """Open the snapshot workbook and return a live ``openpyxl`` workbook.

    The provided path is expanded (supporting ``~``), resolved to its absolute
    form, and verified for existence. Formula cells are loaded with their
    cached values (``data_only=True``) because the engine only ever reads.

    Args:
        data_file (Path): Filesystem path to the ``snapshot.xlsx`` file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file, data_only=True)
    return wb


def iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[object, ...]]:
    """Iterate over the raw data rows of ``sheet_name``.

    The header row and fully empty rows are skipped.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Worksheet title.

    Yields:
        tuple[object, ...]: Cell values for each populated row.

    Raises:
        KeyError: If the workbook has no sheet named ``sheet_name``.
    """

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def fetch_records(
    workbook: Workbook,
    sheet_name: str,
    deserializer: Callable[[Sequence[object]], T],
) -> FetchResult[T]:
    """Read a whole record set and wrap the outcome in a :class:`FetchResult`.

    A missing sheet or a row that cannot be converted turns the entire fetch
    into a failed result: callers must never aggregate over half a record
    set without knowing it. The failure is logged here, and callers decide
    whether the documented empty default is acceptable.

    Args:
        workbook (Workbook): Snapshot workbook.
        sheet_name (str): Worksheet holding the record set.
        deserializer (Callable): Converter from raw cell values to a record.

    Returns:
        FetchResult: Records in sheet order, or an error with no records.
    """

    if sheet_name not in workbook.sheetnames:
        log.warning("Sheet '%s' is missing from the snapshot workbook", sheet_name)
        return FetchResult(sheet=sheet_name, error=FetchError(sheet_name, "sheet not found"))

    records: list[T] = []
    for row_number, raw in enumerate(iter_sheet_rows(workbook, sheet_name), start=2):
        try:
            records.append(deserializer(raw))
        except (TypeError, ValueError, InvalidOperation) as exc:
            log.warning("Unreadable row %d on sheet '%s': %s", row_number, sheet_name, exc)
            return FetchResult(
                sheet=sheet_name,
                error=FetchError(sheet_name, f"row {row_number}: {exc}"),
            )

    log.debug("Fetched %d records from sheet '%s'", len(records), sheet_name)
    return FetchResult(sheet=sheet_name, records=tuple(records))


def fetch_transactions(workbook: Workbook) -> FetchResult[TransactionRow]:
    return fetch_records(workbook, SheetName.TRANSACTIONS.value, deserialize_transaction)


def fetch_transaction_lines(workbook: Workbook) -> FetchResult[TransactionLineRow]:
    return fetch_records(workbook, SheetName.TRANSACTION_LINES.value, deserialize_transaction_line)


def fetch_quotations(workbook: Workbook) -> FetchResult[QuotationRow]:
    return fetch_records(workbook, SheetName.QUOTATIONS.value, deserialize_quotation)


def fetch_quotation_lines(workbook: Workbook) -> FetchResult[QuotationLineRow]:
    return fetch_records(workbook, SheetName.QUOTATION_LINES.value, deserialize_quotation_line)


def fetch_products(workbook: Workbook) -> FetchResult[ProductRow]:
    return fetch_records(workbook, SheetName.PRODUCTS.value, deserialize_product)


def fetch_categories(workbook: Workbook) -> FetchResult[CategoryRow]:
    return fetch_records(workbook, SheetName.CATEGORIES.value, deserialize_category)


def fetch_scraps(workbook: Workbook) -> FetchResult[ScrapRow]:
    return fetch_records(workbook, SheetName.SCRAP_RECORDS.value, deserialize_scrap)


def fetch_stores(workbook: Workbook) -> FetchResult[StoreRow]:
    return fetch_records(workbook, SheetName.STORES.value, deserialize_store)


def fetch_cash_movements(workbook: Workbook) -> FetchResult[CashMovementRow]:
    return fetch_records(workbook, SheetName.CASH_MOVEMENTS.value, deserialize_cash_movement)


def to_decimal(raw: object, default: str = "0") -> Decimal:
    """Normalize a cell value into a :class:`~decimal.Decimal`."""

    if raw is None or raw == "":
        return Decimal(default)
    return Decimal(str(raw))


def to_optional_int(raw: object) -> Optional[int]:
    if raw is None or raw == "":
        return None
    return int(raw)


def to_optional_text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def to_datetime(raw: object) -> datetime:
    """Normalize a date cell into a timezone-aware datetime.

    Excel dates arrive as ``datetime`` objects while exported snapshots often
    carry ISO 8601 strings; both are accepted. Naive values are taken as UTC.

    Raises:
        ValueError: If the cell is blank or not a recognizable date.
    """

    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, date):
        value = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, str) and raw.strip():
        value = datetime.fromisoformat(raw.strip())
    else:
        raise ValueError(f"Invalid date value: {raw!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def to_reference(raw_id: object, raw_name: object) -> Optional[Reference]:
    """Build a :class:`Reference` from an id/name column pair.

    A blank id means the foreign key is absent and yields ``None``.
    """

    ref_id = to_optional_int(raw_id)
    if ref_id is None:
        return None
    return Reference(id=ref_id, display_name=str(raw_name) if raw_name is not None else "")


def to_product_kind(raw: object) -> ProductKind:
    """Map the product type column onto :class:`ProductKind`.

    ``product`` (the source system's name for stockable goods) and blank
    values are stockable; everything else is a service.
    """

    text = (to_optional_text(raw) or ProductKind.STOCKABLE.value).lower()
    if text in (ProductKind.STOCKABLE.value, "product"):
        return ProductKind.STOCKABLE
    return ProductKind.SERVICE


def to_quotation_state(raw: object) -> QuotationState:
    """Map the quotation state column onto :class:`QuotationState`.

    States outside the known lifecycle load as ``other`` so one odd row does
    not fail the whole quotation set; ``other`` is neither active nor won.
    """

    text = (to_optional_text(raw) or "").lower()
    try:
        return QuotationState(text)
    except ValueError:
        log.warning("Unknown quotation state %r loaded as '%s'.", raw, QuotationState.OTHER.value)
        return QuotationState.OTHER


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed transaction record.

    Monetary columns become :class:`~decimal.Decimal` instances, every
    id/name column pair becomes an optional :class:`Reference`, and the date
    is normalized through :func:`to_datetime`.

    Args:
        raw_row (Sequence[object]): Raw cell values from the ``Transactions``
            row in their worksheet order.

    Returns:
        TransactionRow: Dataclass reflecting the row contents.
    """

    (
        transaction_id,
        name,
        date_raw,
        gross_total_raw,
        margin_raw,
        state,
        salesperson_id,
        salesperson_name,
        store_id,
        store_name,
        company_id,
        company_name,
        customer_id,
        customer_name,
        origin_id,
        origin_name,
    ) = raw_row[:16]

    return TransactionRow(
        transaction_id=int(transaction_id),
        name=str(name) if name is not None else "",
        date=to_datetime(date_raw),
        gross_total=to_decimal(gross_total_raw),
        margin=to_decimal(margin_raw),
        state=(to_optional_text(state) or "").lower(),
        salesperson=to_reference(salesperson_id, salesperson_name),
        store=to_reference(store_id, store_name),
        company=to_reference(company_id, company_name),
        customer=to_reference(customer_id, customer_name),
        origin_quotation=to_reference(origin_id, origin_name),
    )


def deserialize_transaction_line(raw_row: Sequence[object]) -> TransactionLineRow:
    """Convert a raw worksheet row into a transaction line record.

    Args:
        raw_row (Sequence[object]): Raw cell values from the
            ``TransactionLines`` row.

    Returns:
        TransactionLineRow: Dataclass with tax-exclusive and tax-inclusive
            subtotals kept apart.
    """

    (
        line_id,
        transaction_id,
        product_id,
        product_name,
        quantity_raw,
        unit_price_raw,
        subtotal_raw,
        subtotal_incl_raw,
        discount_raw,
        margin_raw,
        origin_line_id,
        origin_id,
        origin_name,
    ) = raw_row[:13]

    return TransactionLineRow(
        line_id=int(line_id),
        transaction_id=int(transaction_id),
        product=to_reference(product_id, product_name),
        quantity=to_decimal(quantity_raw),
        unit_price=to_decimal(unit_price_raw),
        subtotal=to_decimal(subtotal_raw),
        subtotal_incl=to_decimal(subtotal_incl_raw),
        discount_percent=to_decimal(discount_raw),
        margin=to_decimal(margin_raw),
        origin_quotation_line_id=to_optional_int(origin_line_id),
        origin_quotation=to_reference(origin_id, origin_name),
    )


def deserialize_quotation(raw_row: Sequence[object]) -> QuotationRow:
    """Convert a raw worksheet row into a quotation record.

    Raises:
        ValueError: If the state column holds an unknown quotation state.
    """

    (
        quotation_id,
        name,
        date_raw,
        amount_untaxed_raw,
        amount_total_raw,
        state,
        salesperson_id,
        salesperson_name,
        team_id,
        team_name,
        customer_id,
        customer_name,
        company_id,
        company_name,
    ) = raw_row[:14]

    return QuotationRow(
        quotation_id=int(quotation_id),
        name=str(name) if name is not None else "",
        date=to_datetime(date_raw),
        amount_untaxed=to_decimal(amount_untaxed_raw),
        amount_total=to_decimal(amount_total_raw),
        state=to_quotation_state(state),
        salesperson=to_reference(salesperson_id, salesperson_name),
        team=to_reference(team_id, team_name),
        customer=to_reference(customer_id, customer_name),
        company=to_reference(company_id, company_name),
    )


def deserialize_quotation_line(raw_row: Sequence[object]) -> QuotationLineRow:
    (
        line_id,
        quotation_id,
        product_id,
        product_name,
        quantity_raw,
        unit_price_raw,
        subtotal_raw,
        discount_raw,
    ) = raw_row[:8]

    return QuotationLineRow(
        line_id=int(line_id),
        quotation_id=int(quotation_id),
        product=to_reference(product_id, product_name),
        quantity=to_decimal(quantity_raw),
        unit_price=to_decimal(unit_price_raw),
        subtotal=to_decimal(subtotal_raw),
        discount_percent=to_decimal(discount_raw),
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    A blank forecast stays ``None`` so consumers can tell "no forecast" from
    a forecast of zero.

    Args:
        raw_row (Sequence[object]): Raw cell values from the ``Products`` row.

    Returns:
        ProductRow: Dataclass containing consistent Python representations of
            the row contents.
    """

    (
        product_id,
        name,
        sku,
        category_id,
        category_name,
        on_hand_raw,
        forecasted_raw,
        unit_cost_raw,
        sale_price_raw,
        kind_raw,
    ) = raw_row[:10]

    return ProductRow(
        product_id=int(product_id),
        name=str(name) if name is not None else "",
        sku=to_optional_text(sku),
        category=to_reference(category_id, category_name),
        on_hand=to_decimal(on_hand_raw),
        forecasted=to_decimal(forecasted_raw) if forecasted_raw not in (None, "") else None,
        unit_cost=to_decimal(unit_cost_raw),
        sale_price=to_decimal(sale_price_raw),
        kind=to_product_kind(kind_raw),
    )


def deserialize_category(raw_row: Sequence[object]) -> CategoryRow:
    category_id, name, complete_name, parent_id, parent_name = raw_row[:5]
    return CategoryRow(
        category_id=int(category_id),
        name=str(name) if name is not None else "",
        complete_name=to_optional_text(complete_name),
        parent=to_reference(parent_id, parent_name),
    )


def deserialize_scrap(raw_row: Sequence[object]) -> ScrapRow:
    """Convert a raw worksheet row into a scrap (write-off) record.

    Raises:
        ValueError: If the row has no product id; a scrap without a product
            cannot be valued.
    """

    scrap_id, product_id, product_name, quantity_raw, date_raw = raw_row[:5]
    product = to_reference(product_id, product_name)
    if product is None:
        raise ValueError(f"Scrap record {scrap_id} has no product")
    return ScrapRow(
        scrap_id=int(scrap_id),
        product=product,
        quantity=to_decimal(quantity_raw),
        date=to_datetime(date_raw),
    )


def deserialize_store(raw_row: Sequence[object]) -> StoreRow:
    store_id, name = raw_row[:2]
    return StoreRow(store_id=int(store_id), name=str(name) if name is not None else "")


def deserialize_cash_movement(raw_row: Sequence[object]) -> CashMovementRow:
    (
        movement_id,
        name,
        date_raw,
        amount_raw,
        payment_ref,
        ref,
        narration,
        journal_id,
        journal_name,
        company_id,
        company_name,
    ) = raw_row[:11]
    return CashMovementRow(
        movement_id=int(movement_id),
        date=to_datetime(date_raw),
        amount=to_decimal(amount_raw),
        name=to_optional_text(name),
        payment_ref=to_optional_text(payment_ref),
        ref=to_optional_text(ref),
        narration=to_optional_text(narration),
        journal=to_reference(journal_id, journal_name),
        company=to_reference(company_id, company_name),
    )
