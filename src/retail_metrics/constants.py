"""Enumerations and lookup tables shared across the retail metrics modules.

Centralises domain constants so that the data access layer (DAL), the
classifiers, the aggregators, and the CLI rely on a single source of truth
for taxonomy values and workbook layout.

Lookup tables are walked in order and the first match wins. Reordering an
entry changes classification results.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class CanonicalCategory(str, Enum):
    """Fixed product taxonomy used by every rollup."""

    SPC = "SPC"
    LVT_LVC = "LVT / LVC"
    LAMINATE = "Laminate"
    CARPET = "Carpet"
    ENGINEERED_WOOD = "Engineered Wood"
    SOLID_WOOD = "Solid Wood"
    ACCESSORIES = "Accessories"
    SHEET_VINYL = "Sheet Vinyl"
    UNDERLAY = "Underlay"
    FITTING = "Fitting"
    ENTRANCE_MATTING = "Entrance Matting"
    ROLL_STOCK_VINYL = "Roll Stock Vinyl"
    ACOUSTIC_WALL_PANEL = "Acoustic Wall Panel"
    SAMPLES = "Samples"
    DISCONTINUED = "Discontinued"
    OTHER = "Other"


class Region(str, Enum):
    """Geographic bucket derived from a store display name."""

    NORTH = "North"
    SOUTH = "South"
    OTHER = "Other"


class AlertLevel(str, Enum):
    """Store health derived from its margin percentage."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class StockAlertStatus(str, Enum):
    """Inventory alert kinds raised for stockable products."""

    LOW = "low"
    OUT_OF_STOCK = "out_of_stock"
    SLOW_MOVER = "slow_mover"
    CRITICAL_LEAD = "critical_lead"


class QuotationState(str, Enum):
    """Lifecycle states of a quotation (sale order)."""

    DRAFT = "draft"
    SENT = "sent"
    SALE = "sale"
    DONE = "done"
    CANCEL = "cancel"
    OTHER = "other"


class ProductKind(str, Enum):
    """Whether a product carries inventory."""

    STOCKABLE = "stockable"
    SERVICE = "service"


class DrilldownDimension(str, Enum):
    """Dimensions a pipeline drilldown can slice active quotations by."""

    AGE_BUCKET = "age-bucket"
    SALESPERSON = "salesperson"
    STORE = "store"
    CATEGORY = "category"


class AgeBucket(str, Enum):
    """Age ranges for open quotations, in reporting order."""

    UNDER_30 = "< 30 Days"
    DAYS_30_60 = "30-60 Days"
    DAYS_60_90 = "60-90 Days"
    OVER_90 = "> 90 Days"


class CashOutReason(str, Enum):
    """Why cash left a till, derived from the movement text."""

    BANKING = "Banking"
    PETTY_CASH = "Petty Cash"
    FUEL = "Fuel"
    SUPPLIES = "Supplies"
    OTHER = "Other"


class SheetName(str, Enum):
    """Enumerate the snapshot workbook sheet names read by the DAL."""

    TRANSACTIONS = "Transactions"
    TRANSACTION_LINES = "TransactionLines"
    QUOTATIONS = "Quotations"
    QUOTATION_LINES = "QuotationLines"
    PRODUCTS = "Products"
    CATEGORIES = "Categories"
    SCRAP_RECORDS = "ScrapRecords"
    STORES = "Stores"
    CASH_MOVEMENTS = "CashMovements"


SAMPLE_PREFIX = "[sample"
DISCONTINUED_MARKER = "discontinued"

SKU_PREFIX_CATEGORIES: tuple[tuple[str, CanonicalCategory], ...] = (
    ("EW", CanonicalCategory.ENGINEERED_WOOD),
    ("LAM", CanonicalCategory.LAMINATE),
    ("SV", CanonicalCategory.SHEET_VINYL),
    ("UL", CanonicalCategory.UNDERLAY),
    ("FGFS", CanonicalCategory.FITTING),
    ("EM", CanonicalCategory.ENTRANCE_MATTING),
    ("RSSV", CanonicalCategory.ROLL_STOCK_VINYL),
    ("AWP", CanonicalCategory.ACOUSTIC_WALL_PANEL),
)

CATEGORY_KEYWORDS: tuple[tuple[str, CanonicalCategory], ...] = (
    ("spc", CanonicalCategory.SPC),
    ("lvt", CanonicalCategory.LVT_LVC),
    ("lvc", CanonicalCategory.LVT_LVC),
    ("laminate", CanonicalCategory.LAMINATE),
    ("carpet", CanonicalCategory.CARPET),
    ("engineered", CanonicalCategory.ENGINEERED_WOOD),
    ("solid", CanonicalCategory.SOLID_WOOD),
    ("accessories", CanonicalCategory.ACCESSORIES),
)

REGION_KEYWORDS: tuple[tuple[str, Region], ...] = (
    ("basildon", Region.NORTH),
    ("hull", Region.NORTH),
    ("doncaster", Region.NORTH),
    ("derby", Region.NORTH),
    ("nottingham", Region.NORTH),
    ("cardiff 1", Region.SOUTH),
    ("cardiff 2", Region.SOUTH),
    ("merthyr", Region.SOUTH),
    ("swansea", Region.SOUTH),
    ("hedgend", Region.SOUTH),
    ("hedge end", Region.SOUTH),
    ("cd1", Region.SOUTH),
    ("cd2", Region.SOUTH),
)

NAMED_REGIONS: tuple[Region, ...] = (Region.NORTH, Region.SOUTH)

CASH_OUT_REASON_KEYWORDS: tuple[tuple[str, CashOutReason], ...] = (
    ("bank", CashOutReason.BANKING),
    ("petty", CashOutReason.PETTY_CASH),
    ("cash out", CashOutReason.PETTY_CASH),
    ("fuel", CashOutReason.FUEL),
    ("diesel", CashOutReason.FUEL),
    ("petrol", CashOutReason.FUEL),
    ("supplies", CashOutReason.SUPPLIES),
    ("office", CashOutReason.SUPPLIES),
    ("cleaning", CashOutReason.SUPPLIES),
)

TRADE_CUSTOMER_KEYWORDS: tuple[str, ...] = ("trade", "ltd", "limited", "contract")

DEFAULT_SALESPERSON_LABEL = "Employee"
UNKNOWN_SALESPERSON_LABEL = "Unknown"
UNKNOWN_STORE_LABEL = "Unknown POS"
UNASSIGNED_SALESPERSON_LABEL = "Unassigned"
UNKNOWN_TEAM_LABEL = "Unknown Team"
MISSING_SKU_LABEL = "N/A"
UNKNOWN_JOURNAL_LABEL = "Unknown"
UNKNOWN_COMPANY_LABEL = "Unknown"

# Store alert thresholds, margin percent.
STORE_CRITICAL_MARGIN = Decimal("40")
STORE_WARNING_MARGIN = Decimal("50")

# Order-level low margin alerting.
LOW_MARGIN_ALERT_PERCENT = Decimal("30")
LOW_MARGIN_MIN_SALE_VALUE = Decimal("0.1")

# Stock alerting.
LONG_LEAD_SKU_PREFIX = "EG-"
LONG_LEAD_WEEKS = Decimal("16")
STANDARD_LEAD_WEEKS = Decimal("2")
SLOW_MOVER_MIN_PERIOD_DAYS = 14
STOCK_ALERT_LIMIT = 50
TOP_PRODUCTS_LIMIT = 10
RESTOCK_MAX_STOCK_LEVEL = Decimal("2")
RESTOCK_MIN_REVENUE = Decimal("1000")
RESTOCK_SUGGESTION_LIMIT = 10

# Quotation pipeline.
ACTIVE_QUOTATION_STATES: frozenset[QuotationState] = frozenset({QuotationState.DRAFT, QuotationState.SENT})
WON_QUOTATION_STATES: frozenset[QuotationState] = frozenset({QuotationState.SALE, QuotationState.DONE})
AGE_BUCKET_LIMITS: tuple[tuple[int, AgeBucket], ...] = (
    (30, AgeBucket.UNDER_30),
    (60, AgeBucket.DAYS_30_60),
    (90, AgeBucket.DAYS_60_90),
)
RECENT_QUOTES_LIMIT = 20

# Till cash-outs.
RECENT_CASH_OUTS_LIMIT = 20

# Point-of-sale states that represent completed sales.
COUNTED_TRANSACTION_STATES: frozenset[str] = frozenset({"paid", "done", "invoiced"})

DEFAULT_STOCK_PERIOD_DAYS = 30
DEFAULT_QUOTE_WINDOW_DAYS = 90
DEFAULT_CASH_OUT_WINDOW_DAYS = 30


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.TRANSACTIONS.value: [
        "TransactionID",
        "Name",
        "Date",
        "GrossTotal",
        "Margin",
        "State",
        "SalespersonID",
        "SalespersonName",
        "StoreID",
        "StoreName",
        "CompanyID",
        "CompanyName",
        "CustomerID",
        "CustomerName",
        "OriginQuotationID",
        "OriginQuotationName",
    ],
    SheetName.TRANSACTION_LINES.value: [
        "LineID",
        "TransactionID",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "Subtotal",
        "SubtotalInclTax",
        "DiscountPercent",
        "Margin",
        "OriginQuotationLineID",
        "OriginQuotationID",
        "OriginQuotationName",
    ],
    SheetName.QUOTATIONS.value: [
        "QuotationID",
        "Name",
        "Date",
        "AmountUntaxed",
        "AmountTotal",
        "State",
        "SalespersonID",
        "SalespersonName",
        "TeamID",
        "TeamName",
        "CustomerID",
        "CustomerName",
        "CompanyID",
        "CompanyName",
    ],
    SheetName.QUOTATION_LINES.value: [
        "LineID",
        "QuotationID",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "Subtotal",
        "DiscountPercent",
    ],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Name",
        "SKU",
        "CategoryID",
        "CategoryName",
        "OnHand",
        "Forecasted",
        "UnitCost",
        "SalePrice",
        "Kind",
    ],
    SheetName.CATEGORIES.value: [
        "CategoryID",
        "Name",
        "CompleteName",
        "ParentID",
        "ParentName",
    ],
    SheetName.SCRAP_RECORDS.value: [
        "ScrapID",
        "ProductID",
        "ProductName",
        "Quantity",
        "Date",
    ],
    SheetName.STORES.value: [
        "StoreID",
        "Name",
    ],
    SheetName.CASH_MOVEMENTS.value: [
        "MovementID",
        "Name",
        "Date",
        "Amount",
        "PaymentRef",
        "Ref",
        "Narration",
        "JournalID",
        "JournalName",
        "CompanyID",
        "CompanyName",
    ],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "CanonicalCategory",
    "Region",
    "AlertLevel",
    "StockAlertStatus",
    "QuotationState",
    "ProductKind",
    "DrilldownDimension",
    "AgeBucket",
    "CashOutReason",
    "SheetName",
    "SHEET_COLUMNS",
    "SKU_PREFIX_CATEGORIES",
    "CATEGORY_KEYWORDS",
    "REGION_KEYWORDS",
    "NAMED_REGIONS",
    "CASH_OUT_REASON_KEYWORDS",
    "TRADE_CUSTOMER_KEYWORDS",
]
