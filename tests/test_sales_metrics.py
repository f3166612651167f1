"""Unit tests for the sales dashboard fold and the category product drilldown."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from retail_metrics import sales_metrics
from retail_metrics.constants import AlertLevel, CanonicalCategory, Region


@pytest.fixture
def catalog(records):
    """Categories and products shared by the dashboard scenarios."""

    categories = [
        records.category(1, "SPC Flooring"),
        records.category(2, "Carpet", complete_name="All / Carpet"),
    ]
    products = [
        records.product(100, name="Stone core plank", sku="SPC-100", category=(1, "SPC Flooring")),
        records.product(200, name="Twist pile", sku="CP-200", category=(2, "Carpet")),
        records.product(300, name="Oak swatch", sku="[SAMPLE-001]", category=(1, "SPC Flooring")),
    ]
    return categories, products


def test_single_sale_scenario(records, catalog):
    """One SPC sale of 100 with 40 margin populates totals and the category rollup."""

    categories, products = catalog
    transactions = [records.transaction(1, gross_total="100", margin="40")]
    lines = [records.line(10, 1, product=(100, "Stone core plank"), subtotal="100", margin="40", unit_price="100")]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert metrics.total_sales == Decimal("100")
    assert metrics.total_margin == Decimal("40")
    assert metrics.total_margin_percent == Decimal("40")
    assert len(metrics.category_breakdown) == 1
    bucket = metrics.category_breakdown[0]
    assert bucket.category is CanonicalCategory.SPC
    assert (bucket.sales, bucket.margin, bucket.margin_percent) == (Decimal("100"), Decimal("40"), Decimal("40"))


def test_refund_scenario(records, catalog):
    """A negative gross total counts as a refund and reduces total sales."""

    categories, products = catalog
    transactions = [
        records.transaction(1, gross_total="200"),
        records.transaction(2, gross_total="-50"),
    ]
    lines = [
        records.line(10, 1, product=(200, "Twist pile"), subtotal="200", margin="80"),
        records.line(20, 2, product=(200, "Twist pile"), subtotal="-50", margin="-20"),
    ]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert metrics.refund_count == 1
    assert metrics.total_refunds == Decimal("50")
    assert metrics.total_sales == Decimal("150")
    store = metrics.store_stats[0]
    assert (store.refund_count, store.refund_value) == (1, Decimal("50"))


def test_sample_lines_are_left_out_of_order_money(records, catalog):
    """Sample lines carry no weight in order totals but still feed the category rollup."""

    categories, products = catalog
    transactions = [records.transaction(1, gross_total="100")]
    lines = [
        records.line(10, 1, product=(100, "Stone core plank"), subtotal="100", margin="45"),
        records.line(11, 1, product=(300, "Oak swatch"), quantity="3", subtotal="0", margin="-6"),
    ]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert metrics.total_sales == Decimal("100")
    assert metrics.total_margin == Decimal("45")
    samples = next(item for item in metrics.category_breakdown if item.category is CanonicalCategory.SAMPLES)
    assert samples.margin == Decimal("-6")
    sample_stat = next(stat for stat in metrics.product_stats if stat.id == 300)
    assert sample_stat.quantity == Decimal("3")


def test_category_rollup_matches_line_subtotals(records, catalog):
    """The category rollup sums every line of the region-filtered transactions."""

    categories, products = catalog
    transactions = [
        records.transaction(1, store=(1, "Nottingham Store")),
        records.transaction(2, store=(2, "Cardiff 1")),
        records.transaction(3, store=(3, "Random City")),
    ]
    lines = [
        records.line(10, 1, product=(100, "Stone core plank"), subtotal="120.50"),
        records.line(11, 1, product=(300, "Oak swatch"), subtotal="2"),
        records.line(20, 2, product=(200, "Twist pile"), subtotal="80"),
        records.line(30, 3, product=None, subtotal="9.99"),
        records.line(31, 3, product=(999, "Unknown"), subtotal="5"),
    ]

    everything = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})
    north = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {}, Region.NORTH)

    assert sum(item.sales for item in everything.category_breakdown) == Decimal("217.49")
    assert sum(item.sales for item in north.category_breakdown) == Decimal("122.50")


def test_region_totals_exclude_other_stores(records, catalog):
    """Stores outside named regions count in the grand total only."""

    categories, products = catalog
    transactions = [
        records.transaction(1, store=(1, "Hedge End 2")),
        records.transaction(2, store=(2, "Random City")),
    ]
    lines = [
        records.line(10, 1, product=(200, "Twist pile"), subtotal="60", margin="30"),
        records.line(20, 2, product=(200, "Twist pile"), subtotal="40", margin="20"),
    ]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert metrics.total_sales == Decimal("100")
    assert [regional.name for regional in metrics.regional_stats] == [Region.NORTH, Region.SOUTH]
    north, south = metrics.regional_stats
    assert north.total_sales == Decimal("0")
    assert south.total_sales == Decimal("60")
    assert {store.name: store.region for store in metrics.store_stats} == {
        "Hedge End 2": Region.SOUTH,
        "Random City": Region.OTHER,
    }


def test_salesperson_credit_follows_originating_quotation(records, catalog):
    """Sales rung through by an operator are credited to the quotation author."""

    categories, products = catalog
    transactions = [
        records.transaction(1, salesperson=(9, "Till")),
        records.transaction(2, salesperson=(9, "Till")),
    ]
    lines = [
        records.line(10, 1, product=(200, "Twist pile"), subtotal="300", margin="150", origin_quotation=(50, "S00050")),
        records.line(20, 2, product=(200, "Twist pile"), subtotal="100", margin="50"),
    ]
    quotations = {50: records.quotation(50, salesperson=(3, "Bob"))}

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, quotations)

    assert [(stat.name, stat.total_sales, stat.order_count) for stat in metrics.salesperson_stats] == [
        ("Bob", Decimal("300"), 1),
        ("Till", Decimal("100"), 1),
    ]


def test_low_margin_alerts_and_store_alert_levels(records, catalog):
    """Orders under 30% margin raise alerts, newest first, and store levels follow margin."""

    categories, products = catalog
    transactions = [
        records.transaction(1, date=datetime(2024, 5, 1, tzinfo=UTC), customer=(1, "Builders Trade Ltd")),
        records.transaction(2, date=datetime(2024, 5, 3, tzinfo=UTC)),
        records.transaction(3, date=datetime(2024, 5, 2, tzinfo=UTC)),
        records.transaction(4, store=(2, "Cardiff 1")),
    ]
    lines = [
        records.line(10, 1, product=(200, "Twist pile"), subtotal="100", margin="10"),
        records.line(20, 2, product=(200, "Twist pile"), subtotal="100", margin="29"),
        records.line(30, 3, product=(200, "Twist pile"), subtotal="100", margin="30"),
        records.line(40, 4, product=(200, "Twist pile"), subtotal="100", margin="45"),
    ]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert [alert.order_id for alert in metrics.low_margin_alerts] == [2, 1]
    assert metrics.low_margin_alerts[1].is_trade is True
    assert metrics.trade_sales == Decimal("100")
    levels = {store.name: store.alert_level for store in metrics.store_stats}
    assert levels == {"Nottingham Store": AlertLevel.CRITICAL, "Cardiff 1": AlertLevel.WARNING}


def test_sample_only_orders_raise_no_low_margin_alert(records, catalog):
    """An order with only sample lines has nothing priced to alert on."""

    categories, products = catalog
    transactions = [records.transaction(1, gross_total="0")]
    lines = [records.line(10, 1, product=(300, "Oak swatch"), subtotal="5", margin="-5")]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert metrics.low_margin_alerts == []


def test_zero_sales_give_zero_percentages(records, catalog):
    """Percentages are zero whenever sales are zero."""

    categories, products = catalog
    transactions = [records.transaction(1, gross_total="0")]
    lines = [records.line(10, 1, product=(100, "Stone core plank"), subtotal="0", margin="12")]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert metrics.total_margin_percent == Decimal("0")
    assert metrics.salesperson_stats[0].margin_percent == Decimal("0")
    assert metrics.category_breakdown[0].margin_percent == Decimal("0")


def test_discounts_use_unit_price_quantity_and_percent(records, catalog):
    """Discount value is unit price times quantity times the discount percent."""

    categories, products = catalog
    transactions = [records.transaction(1)]
    lines = [
        records.line(
            10, 1, product=(200, "Twist pile"), quantity="4", unit_price="25", discount_percent="10", subtotal="90"
        )
    ]

    metrics = sales_metrics.compute_dashboard_metrics(transactions, lines, categories, products, {})

    assert metrics.total_discounts == Decimal("10")
    assert metrics.category_breakdown[0].discounts == Decimal("10")


def test_empty_inputs_yield_zeroed_document():
    """Empty record sets produce a well-formed, zeroed dashboard."""

    metrics = sales_metrics.compute_dashboard_metrics([], [], [], [], {})

    assert metrics.total_sales == Decimal("0")
    assert metrics.category_breakdown == []
    assert metrics.salesperson_stats == []
    assert [regional.total_sales for regional in metrics.regional_stats] == [Decimal("0"), Decimal("0")]
    assert metrics.product_stats == []


def test_compute_category_products_ranks_by_sales(records, catalog):
    """The drilldown keeps known products of the target category, best sellers first."""

    categories, products = catalog
    products = products + [records.product(101, name="Rigid plank", sku="SPC-101", category=(1, "SPC Flooring"))]
    transactions = [records.transaction(1), records.transaction(2, store=(2, "Cardiff 1"))]
    lines = [
        records.line(10, 1, product=(100, "Stone core plank"), quantity="2", subtotal="50", margin="20"),
        records.line(11, 1, product=(101, "Rigid plank"), quantity="1", subtotal="80", margin="20"),
        records.line(12, 1, product=(200, "Twist pile"), subtotal="500"),
        records.line(20, 2, product=(100, "Stone core plank"), quantity="1", subtotal="25", margin="10"),
        records.line(21, 2, product=(999, "Unknown"), subtotal="70"),
    ]

    ranked = sales_metrics.compute_category_products("SPC", transactions, lines, categories, products)
    north_only = sales_metrics.compute_category_products(
        CanonicalCategory.SPC, transactions, lines, categories, products, Region.NORTH
    )

    assert [(stat.id, stat.sales, stat.quantity) for stat in ranked] == [
        (101, Decimal("80"), Decimal("1")),
        (100, Decimal("75"), Decimal("3")),
    ]
    assert ranked[1].margin_percent == Decimal("40")
    assert [stat.sales for stat in north_only] == [Decimal("80"), Decimal("50")]


def test_compute_category_products_rejects_unknown_category():
    """Unknown category labels raise ValueError."""

    with pytest.raises(ValueError):
        sales_metrics.compute_category_products("Bricks", [], [], [], [])
