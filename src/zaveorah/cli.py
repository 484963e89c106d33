"""Command-line entry points for the ZaveOrah business core.

All orchestration in this module is limited to argparse wiring, signing in
with the supplied credentials and translating command-line arguments into the
command objects consumed by the business layer. The Action API reports
refusals as ``None``/``False``; every executor maps that onto exit code 2.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import auth, core_logic, log, reports, session
from .constants import ExpenseCategory, PaymentMethod, SubscriptionTier, WageType
from .errors import BusinessRuleViolation, PermissionDeniedError
from .notifications import NotificationRequest
from .session import RuntimeContext, ensure_schema_version


EXIT_OK = 0
EXIT_REFUSED = 2
EXIT_MISSING_FILE = 3
EXIT_FAILURE = 1

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="zaveorah-cli",
        description="Command-line tools for the ZaveOrah business store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upwards from the working directory).",
    )
    credentials = parser.add_argument_group("credentials")
    credentials.add_argument("--business-id", default=None)
    credentials.add_argument("--user-id", default=None)
    credentials.add_argument("--password", default=None)
    credentials.add_argument("--admin-password", default=None)
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [
        *register_account_commands(),
        *register_write_commands(),
        *register_read_commands(),
        *register_admin_commands(),
    ]
    for spec in specs:
        spec.register(subparsers)
    return build_command_table(specs)


def _spec(
    name: str,
    help_text: str,
    execute: Callable[[RuntimeContext, argparse.Namespace], int],
    arguments: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
) -> CommandSpec:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_account_commands() -> list[CommandSpec]:
    """Declare registration and subscription commands."""

    def register_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--owner-name", required=True)
        parser.add_argument("--owner-password", required=True)
        parser.add_argument("--email", default=None)
        parser.add_argument("--phone", default=None)

    def submit_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--amount", required=True)
        parser.add_argument("--receipt", required=True, help="Receipt reference or encoded image.")
        parser.add_argument(
            "--tier",
            choices=[member.value for member in SubscriptionTier],
            default=SubscriptionTier.LIFETIME.value,
        )
        parser.add_argument("--upgrade", action="store_true", help="Submit from an active or trial plan.")

    return [
        _spec("register", "Register a new business and its owner.", run_register, register_args),
        _spec("businesses", "List registered businesses.", run_list_businesses),
        _spec("start-trial", "Start the free trial for the signed-in business.", run_start_trial),
        _spec("submit-payment", "Submit a subscription payment for approval.", run_submit_payment, submit_args),
    ]


def register_write_commands() -> list[CommandSpec]:
    """Declare mutating CLI commands such as sales and attendance."""

    def sale_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-name", default="")
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )

    def expense_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--category", choices=[member.value for member in ExpenseCategory], required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--receipt", default=None)

    def product_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--stock", type=int, required=True)
        parser.add_argument("--alert-level", type=int, required=True)
        parser.add_argument("--purchase-price", required=True)
        parser.add_argument("--selling-price", required=True)

    def customer_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--contact", default="")
        parser.add_argument("--credit-balance", default="0")

    def employee_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--position", default="")
        parser.add_argument("--wage-rate", required=True)
        parser.add_argument(
            "--wage-type",
            choices=[member.value for member in WageType],
            default=WageType.HOURLY.value,
        )
        parser.add_argument("--pin", required=True)

    def pin_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--pin", required=True)

    def payslip_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--employee-id", required=True)
        parser.add_argument("--start", required=True, help="First day, YYYY-MM-DD.")
        parser.add_argument("--end", required=True, help="Last day, YYYY-MM-DD.")

    return [
        _spec("add-sale", "Record a sale.", run_add_sale, sale_args),
        _spec("add-expense", "Record an expense.", run_add_expense, expense_args),
        _spec("add-product", "Add a product to the inventory.", run_add_product, product_args),
        _spec("add-customer", "Add a customer contact.", run_add_customer, customer_args),
        _spec("add-employee", "Add an employee with a clock-in PIN.", run_add_employee, employee_args),
        _spec("clock-in", "Clock an employee in by PIN.", run_clock_in, pin_args),
        _spec("clock-out", "Clock an employee out by PIN.", run_clock_out, pin_args),
        _spec("payslip", "Generate a payslip for a period.", run_payslip, payslip_args),
    ]


def register_read_commands() -> list[CommandSpec]:
    """Declare read-only CLI commands such as the dashboard."""
    return [_spec("dashboard", "Display the dashboard summary.", run_dashboard)]


def register_admin_commands() -> list[CommandSpec]:
    """Declare commands that require admin mode."""

    def target_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("target", help="Business id to act on.")

    def reject_args(parser: argparse.ArgumentParser) -> None:
        target_args(parser)
        parser.add_argument("--reason", required=True)

    def export_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout.")
        parser.add_argument("--workbook", type=Path, default=None, help="Also write an .xlsx export.")

    def wipe_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--yes", action="store_true", required=True, help="Confirm the irreversible wipe.")

    return [
        _spec("approve", "Approve a pending subscription payment.", run_approve, target_args),
        _spec("reject", "Reject a pending subscription payment.", run_reject, reject_args),
        _spec("export", "Export all data.", run_export, export_args),
        _spec("wipe", "Erase all businesses.", run_wipe, wipe_args),
    ]


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return session.load_runtime_context(config_path, notifier=log_notifier)


def log_notifier(request: NotificationRequest) -> None:
    """Stand-in delivery for the CLI: notifications are written to the log."""
    log.info("[%s to %s] %s: %s", request.channel.value, request.recipient, request.subject, request.body)


def authenticate(context: RuntimeContext, args: argparse.Namespace) -> None:
    """Sign in with whichever credentials were passed on the command line.

    Raises:
        PermissionDeniedError: When credentials were supplied but rejected.
    """
    if getattr(args, "admin_password", None):
        if not auth.admin_login(context, args.admin_password):
            raise PermissionDeniedError("Admin password rejected")
        return
    if getattr(args, "business_id", None) and getattr(args, "user_id", None):
        if not auth.login(context, args.business_id, args.user_id, args.password or ""):
            raise PermissionDeniedError("Invalid business, user or password")


def dispatch_command(
    context: RuntimeContext,
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


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _outcome(result: Any) -> int:
    return EXIT_OK if result not in (None, False) else EXIT_REFUSED


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def parse_money(raw: str) -> Decimal:
    """Parse a monetary CLI value, refusing text that is not a finite number."""
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {raw!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Amount must be a finite number: {raw!r}")
    return value


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        customer_name=args.customer_name,
        amount=parse_money(args.amount),
        payment_method=PaymentMethod(args.payment_method),
    )


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    return core_logic.ExpenseCommand(
        category=ExpenseCategory(args.category),
        amount=parse_money(args.amount),
        receipt=args.receipt,
    )


def translate_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    return core_logic.ProductCommand(
        name=args.name,
        stock=args.stock,
        alert_level=args.alert_level,
        purchase_price=parse_money(args.purchase_price),
        selling_price=parse_money(args.selling_price),
    )


def translate_employee(args: argparse.Namespace) -> core_logic.EmployeeCommand:
    return core_logic.EmployeeCommand(
        name=args.name,
        position=args.position,
        wage_rate=parse_money(args.wage_rate),
        wage_type=WageType(args.wage_type),
    )


def translate_period(args: argparse.Namespace) -> str:
    """Validate both days and render them in the payslip period format."""
    return core_logic.format_period(date.fromisoformat(args.start), date.fromisoformat(args.end))


def run_register(context: RuntimeContext, args: argparse.Namespace) -> int:
    business = auth.register_business(
        context,
        args.name,
        args.owner_name,
        args.owner_password,
        args.email,
        args.phone,
    )
    if business is None:
        return EXIT_REFUSED
    users = auth.get_users_for_business(context, business.id) or ()
    _emit({"businessId": business.id, "ownerUserId": users[0].id if users else None})
    return EXIT_OK


def run_list_businesses(context: RuntimeContext, args: argparse.Namespace) -> int:
    _emit(
        [
            {"id": biz.id, "name": biz.name, "subscriptionStatus": biz.subscription_status.value}
            for biz in context.store.state.businesses
        ]
    )
    return EXIT_OK


def run_start_trial(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.start_trial(context))


def run_submit_payment(context: RuntimeContext, args: argparse.Namespace) -> int:
    if args.upgrade:
        auth.set_upgrade_flow(context, True)
    return _outcome(
        core_logic.submit_for_approval(context, SubscriptionTier(args.tier), parse_money(args.amount), args.receipt)
    )


def run_add_sale(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    return _outcome(core_logic.add_sale(context, translate_sale(args)))


def run_add_expense(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.add_expense(context, translate_expense(args)))


def run_add_product(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.add_product(context, translate_product(args)))


def run_add_customer(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(
        core_logic.add_customer(context, args.name, args.contact, credit_balance=parse_money(args.credit_balance))
    )


def run_add_employee(context: RuntimeContext, args: argparse.Namespace) -> int:
    employee = core_logic.add_employee(context, translate_employee(args), args.pin)
    if employee is None:
        return EXIT_REFUSED
    _emit({"employeeId": employee.id})
    return EXIT_OK


def run_clock_in(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.clock_in(context, args.pin))


def run_clock_out(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.clock_out(context, args.pin))


def run_payslip(context: RuntimeContext, args: argparse.Namespace) -> int:
    payslip = core_logic.generate_payslip(context, args.employee_id, translate_period(args))
    if payslip is None:
        return EXIT_REFUSED
    _emit({"period": payslip.period, "totalHours": payslip.total_hours, "totalPay": payslip.total_pay})
    return EXIT_OK


def run_dashboard(context: RuntimeContext, args: argparse.Namespace) -> int:
    view = core_logic.read_view(context)
    if view.business is None:
        log.error("The dashboard needs a signed-in business user")
        return EXIT_REFUSED
    summary = reports.dashboard_summary(view.data)
    _emit(
        {
            "business": view.business.name,
            "subscriptionStatus": view.business.subscription_status.value,
            "subscriptionRequired": view.requires_subscription_screen,
            "totalSales": summary.total_sales,
            "totalExpenses": summary.total_expenses,
            "netProfit": summary.net_profit,
            "lowStockCount": summary.low_stock_count,
            "totalCreditDue": summary.total_credit_due,
        }
    )
    return EXIT_OK


def run_approve(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.approve_payment(context, args.target))


def run_reject(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.reject_payment(context, args.target, args.reason))


def run_export(context: RuntimeContext, args: argparse.Namespace) -> int:
    payload = core_logic.export_all_data(context)
    if payload is None:
        return EXIT_REFUSED
    if args.output is not None:
        Path(args.output).write_text(payload, encoding="utf-8")
        log.info("Wrote JSON export to '%s'", args.output)
    else:
        print(payload)
    if args.workbook is not None:
        return _outcome(core_logic.export_workbook(context, args.workbook))
    return EXIT_OK


def run_wipe(context: RuntimeContext, args: argparse.Namespace) -> int:
    return _outcome(core_logic.wipe_all_data(context))


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return EXIT_REFUSED
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return EXIT_MISSING_FILE
    log.error("%s", error)
    return EXIT_FAILURE


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        ensure_schema_version(context)
        authenticate(context, args)
        exit_code = dispatch_command(context, args, command_table)
        context.outbox.flush()
        if not context.store.last_save_ok:
            log.error("Changes could not be written to '%s'", context.settings.data_file)
            return EXIT_FAILURE
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
