"""Command-line entry points for the retail metrics engine.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the filters consumed by the business layer, and
writing the resulting metrics documents to stdout as JSON. Keeping the CLI
thin lets tests and scripts reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO

from . import core_logic, log
from .constants import DrilldownDimension, Region


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="metrics-cli",
        description="Sales, stock and quotation metrics over a snapshot workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    read_specs = register_read_commands(subparsers)
    return build_command_table(read_specs.values())


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the read-only report commands."""
    specs = {
        "dashboard": register_dashboard_command(subparsers),
        "stock": register_stock_command(subparsers),
        "quotes": register_quotes_command(subparsers),
        "quote-drilldown": register_quote_drilldown_command(subparsers),
        "category-products": register_category_products_command(subparsers),
        "salesperson-orders": register_salesperson_orders_command(subparsers),
        "order": register_order_command(subparsers),
        "quote": register_quote_command(subparsers),
        "no-sale": register_no_sale_command(subparsers),
        "stores": register_stores_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def add_window_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date-from", type=date.fromisoformat, default=None, help="First day, YYYY-MM-DD.")
    parser.add_argument("--date-to", type=date.fromisoformat, default=None, help="Last day, YYYY-MM-DD.")
    parser.add_argument("--store-id", type=int, default=None)


def add_region_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--region",
        type=Region,
        default=None,
        choices=list(Region),
        metavar="{" + ",".join(region.value for region in Region) + "}",
    )


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Sales, margin, discount and refund metrics."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_window_arguments(parser)
        add_region_argument(parser)
        parser.add_argument("--salesperson-id", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Inventory valuation, rankings and stock alerts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_window_arguments(parser)
        add_region_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_quotes_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``quotes``."""
    name = "quotes"
    help_text = "Quotation pipeline value, conversion and aging."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_window_arguments(parser)
        add_region_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pipeline_report)


def register_quote_drilldown_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``quote-drilldown``."""
    name = "quote-drilldown"
    help_text = "List the open quotations behind one pipeline segment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--dimension",
            required=True,
            choices=[dimension.value for dimension in DrilldownDimension],
        )
        parser.add_argument("--value", required=True, help="Segment label, e.g. '> 90 Days' or 'Carpet'.")
        add_window_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_quote_drilldown)


def register_category_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``category-products``."""
    name = "category-products"
    help_text = "Rank the products sold in one canonical category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", required=True)
        add_window_arguments(parser)
        add_region_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_category_products)


def register_salesperson_orders_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``salesperson-orders``."""
    name = "salesperson-orders"
    help_text = "List the transactions credited to a salesperson."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--salesperson-id", type=int, required=True)
        add_window_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_salesperson_orders)


def register_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``order``."""
    name = "order"
    help_text = "Show one transaction and its lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_order_detail)


def register_quote_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``quote``."""
    name = "quote"
    help_text = "Show one quotation and its lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--quotation-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_quote_detail)


def register_no_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``no-sale``."""
    name = "no-sale"
    help_text = "Cash taken out of the tills, by reason and store."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date-from", type=date.fromisoformat, default=None, help="First day, YYYY-MM-DD.")
        parser.add_argument("--date-to", type=date.fromisoformat, default=None, help="Last day, YYYY-MM-DD.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_no_sale_report)


def register_stores_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stores``."""
    name = "stores"
    help_text = "List the stores in the snapshot."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_stores)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_window(
    args: argparse.Namespace, default_days: Optional[int] = None
) -> core_logic.DateWindow:
    """Translate ``--date-from``/``--date-to`` into a reporting window."""
    return core_logic.resolve_window(
        getattr(args, "date_from", None),
        getattr(args, "date_to", None),
        default_days=default_days,
    )


def to_jsonable(value: Any) -> Any:
    """Convert metrics documents into plain JSON-compatible structures."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_jsonable(getattr(value, item.name)) for item in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def emit(document: Any, stream: Optional[TextIO] = None) -> None:
    """Write ``document`` as indented JSON followed by a newline."""
    target = stream if stream is not None else sys.stdout
    json.dump(to_jsonable(document), target, indent=2)
    target.write("\n")


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sales dashboard workflow."""
    snapshot = core_logic.load_snapshot(context)
    metrics = core_logic.build_dashboard(
        context,
        snapshot,
        translate_window(args),
        region=args.region,
        store_id=args.store_id,
        salesperson_id=args.salesperson_id,
    )
    emit(metrics)
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    snapshot = core_logic.load_snapshot(context)
    window = translate_window(args, context.settings.stock_period_days)
    emit(core_logic.build_stock_report(context, snapshot, window, region=args.region, store_id=args.store_id))
    return 0


def run_pipeline_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the quotation pipeline workflow."""
    snapshot = core_logic.load_snapshot(context)
    window = translate_window(args, context.settings.quote_window_days)
    emit(core_logic.build_pipeline_report(context, snapshot, window, region=args.region, store_id=args.store_id))
    return 0


def run_quote_drilldown(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the pipeline drilldown workflow."""
    snapshot = core_logic.load_snapshot(context)
    window = translate_window(args, context.settings.quote_window_days)
    quotations = core_logic.build_quote_drilldown(
        context, snapshot, window, args.dimension, args.value, store_id=args.store_id
    )
    emit(quotations)
    return 0


def run_category_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the category drilldown workflow."""
    snapshot = core_logic.load_snapshot(context)
    products = core_logic.build_category_products(
        context,
        snapshot,
        translate_window(args),
        args.category,
        region=args.region,
        store_id=args.store_id,
    )
    emit(products)
    return 0


def run_salesperson_orders(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the salesperson transaction listing."""
    snapshot = core_logic.load_snapshot(context)
    transactions = core_logic.list_salesperson_transactions(
        context, snapshot, translate_window(args), args.salesperson_id, store_id=args.store_id
    )
    emit(transactions)
    return 0


def run_order_detail(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction detail lookup."""
    snapshot = core_logic.load_snapshot(context)
    emit(core_logic.get_transaction_detail(context, snapshot, args.transaction_id))
    return 0


def run_quote_detail(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the quotation detail lookup."""
    snapshot = core_logic.load_snapshot(context)
    emit(core_logic.get_quotation_detail(context, snapshot, args.quotation_id))
    return 0


def run_no_sale_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cash-out report."""
    snapshot = core_logic.load_snapshot(context)
    window = translate_window(args, context.settings.cash_out_window_days)
    emit(core_logic.build_cash_out_report(context, snapshot, window))
    return 0


def run_list_stores(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the store listing."""
    emit(core_logic.list_stores(core_logic.load_snapshot(context)))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.MetricsError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
