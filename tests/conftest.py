"""Shared pytest fixtures and utilities for retail metrics tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, Sequence
from unittest.mock import Mock

import openpyxl
import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from retail_metrics import cli, constants, core_logic, data_manager  # noqa: E402
from setup_excel import create_snapshot_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_DATE = datetime(2024, 5, 10, 12, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultSalespersonLabel = Employee\n"
    "StockPeriodDays = 30\n"
    "QuoteWindowDays = 90\n"
    "CashOutWindowDays = 14\n\n"
    "[Filters]\n"
    "ExcludedCompanyIds = {excluded_company_ids}\n"
    "InternalPartners = {internal_partners}\n"
)

RefPair = Optional[tuple[int, str]]


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str


def ref(pair: RefPair) -> Optional[data_manager.Reference]:
    """Turn an ``(id, name)`` pair into a reference, keeping ``None`` absent."""

    if pair is None:
        return None
    return data_manager.Reference(id=pair[0], display_name=pair[1])


def dec(value: object) -> Decimal:
    return Decimal(str(value))


class RecordBuilder:
    """Build snapshot records with sensible defaults for aggregator tests."""

    def transaction(
        self,
        transaction_id: int,
        *,
        gross_total: object = "100",
        margin: object = "0",
        state: str = "paid",
        date: datetime = DEFAULT_DATE,
        salesperson: RefPair = (7, "Alice"),
        store: RefPair = (1, "Nottingham Store"),
        company: RefPair = (1, "Retail Co"),
        customer: RefPair = (500, "Jane Doe"),
        origin_quotation: RefPair = None,
        name: Optional[str] = None,
    ) -> data_manager.TransactionRow:
        return data_manager.TransactionRow(
            transaction_id=transaction_id,
            name=name or f"POS/{transaction_id:04d}",
            date=date,
            gross_total=dec(gross_total),
            margin=dec(margin),
            state=state,
            salesperson=ref(salesperson),
            store=ref(store),
            company=ref(company),
            customer=ref(customer),
            origin_quotation=ref(origin_quotation),
        )

    def line(
        self,
        line_id: int,
        transaction_id: int,
        *,
        product: RefPair = None,
        quantity: object = "1",
        unit_price: object = "0",
        subtotal: object = "0",
        discount_percent: object = "0",
        margin: object = "0",
        origin_quotation: RefPair = None,
    ) -> data_manager.TransactionLineRow:
        return data_manager.TransactionLineRow(
            line_id=line_id,
            transaction_id=transaction_id,
            product=ref(product),
            quantity=dec(quantity),
            unit_price=dec(unit_price),
            subtotal=dec(subtotal),
            subtotal_incl=dec(subtotal),
            discount_percent=dec(discount_percent),
            margin=dec(margin),
            origin_quotation=ref(origin_quotation),
        )

    def quotation(
        self,
        quotation_id: int,
        *,
        amount_untaxed: object = "0",
        state: str = "draft",
        date: datetime = DEFAULT_DATE,
        salesperson: RefPair = (7, "Alice"),
        team: RefPair = (1, "Nottingham Store"),
        customer: RefPair = (500, "Jane Doe"),
        company: RefPair = (1, "Retail Co"),
    ) -> data_manager.QuotationRow:
        return data_manager.QuotationRow(
            quotation_id=quotation_id,
            name=f"S{quotation_id:05d}",
            date=date,
            amount_untaxed=dec(amount_untaxed),
            amount_total=dec(amount_untaxed) * Decimal("1.2"),
            state=constants.QuotationState(state),
            salesperson=ref(salesperson),
            team=ref(team),
            customer=ref(customer),
            company=ref(company),
        )

    def quotation_line(
        self,
        line_id: int,
        quotation_id: int,
        *,
        product: RefPair = None,
        quantity: object = "1",
        unit_price: object = "0",
        subtotal: object = "0",
        discount_percent: object = "0",
    ) -> data_manager.QuotationLineRow:
        return data_manager.QuotationLineRow(
            line_id=line_id,
            quotation_id=quotation_id,
            product=ref(product),
            quantity=dec(quantity),
            unit_price=dec(unit_price),
            subtotal=dec(subtotal),
            discount_percent=dec(discount_percent),
        )

    def product(
        self,
        product_id: int,
        *,
        name: Optional[str] = None,
        sku: Optional[str] = None,
        category: RefPair = None,
        on_hand: object = "0",
        forecasted: object = None,
        unit_cost: object = "0",
        sale_price: object = "0",
        kind: constants.ProductKind = constants.ProductKind.STOCKABLE,
    ) -> data_manager.ProductRow:
        return data_manager.ProductRow(
            product_id=product_id,
            name=name or f"Product {product_id}",
            sku=sku,
            category=ref(category),
            on_hand=dec(on_hand),
            forecasted=dec(forecasted) if forecasted is not None else None,
            unit_cost=dec(unit_cost),
            sale_price=dec(sale_price),
            kind=kind,
        )

    def category(self, category_id: int, name: str, complete_name: Optional[str] = None) -> data_manager.CategoryRow:
        return data_manager.CategoryRow(category_id=category_id, name=name, complete_name=complete_name)

    def scrap(
        self, scrap_id: int, product: tuple[int, str], quantity: object, date: datetime = DEFAULT_DATE
    ) -> data_manager.ScrapRow:
        return data_manager.ScrapRow(scrap_id=scrap_id, product=ref(product), quantity=dec(quantity), date=date)

    def store(self, store_id: int, name: str) -> data_manager.StoreRow:
        return data_manager.StoreRow(store_id=store_id, name=name)

    def cash_movement(
        self,
        movement_id: int,
        amount: object,
        *,
        name: Optional[str] = None,
        narration: Optional[str] = None,
        payment_ref: Optional[str] = None,
        date: datetime = DEFAULT_DATE,
        journal: RefPair = (20, "Nottingham Cash"),
        company: RefPair = (1, "Retail Co"),
    ) -> data_manager.CashMovementRow:
        return data_manager.CashMovementRow(
            movement_id=movement_id,
            date=date,
            amount=dec(amount),
            name=name,
            payment_ref=payment_ref,
            narration=narration,
            journal=ref(journal),
            company=ref(company),
        )


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture(scope="session")
def src_dir() -> Path:
    """Return the ``src`` directory containing the package under test."""

    return SRC_DIR


@pytest.fixture
def records() -> RecordBuilder:
    """Builder for in-memory snapshot records."""

    return RecordBuilder()


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a snapshot workbook, optionally with data rows."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "snapshot.xlsx",
        rows: Mapping[str, Sequence[Sequence[object]]] | None = None,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_snapshot_workbook(workbook_path, overwrite=True)
        if rows:
            workbook = openpyxl.load_workbook(workbook_path)
            for sheet_name, sheet_rows in rows.items():
                for row in sheet_rows:
                    workbook[sheet_name].append(list(row))
            workbook.save(workbook_path)
        return workbook_path

    return _create_workbook


@pytest.fixture
def snapshot_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh, empty snapshot workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        rows: Mapping[str, Sequence[Sequence[object]]] | None = None,
        excluded_company_ids: str = "12",
        internal_partners: str = "FG Nottingham, Evergreen Floors, Floor Giants",
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", rows=rows)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                schema_version=schema_version,
                excluded_company_ids=excluded_company_ids,
                internal_partners=internal_partners,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="metrics-cli", description="Metrics CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "snapshot.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        excluded_company_ids=(12,),
        internal_partners=("FG Nottingham", "Evergreen Floors", "Floor Giants"),
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)
