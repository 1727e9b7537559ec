"""Command-line entry points for the POS system.

The module is limited to argparse wiring, authentication of the employee at
the terminal, and translating command-line arguments into calls on the
transaction engine. Business outcomes that the engine reports as ``None`` or
``False`` are raised here as :class:`CommandRefused` so :func:`main` can map
them onto exit codes.
"""

from __future__ import annotations

import argparse
import getpass
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, employees, log, reporting
from .constants import AuthResult, EmployeeRole, TransactionKind, UpdateResult
from .data_manager import Employee


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_REFUSED = 2
EXIT_MISSING_FILE = 3
EXIT_AUTH_FAILED = 4


class CommandRefused(Exception):
    """A business rule stopped the command (exit code 2)."""


class AuthenticationFailed(Exception):
    """The supplied credentials were rejected (exit code 4)."""


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def parse_item_argument(value: str) -> tuple[int, int]:
    """Parse an ``ID:QTY`` token; a bare ``ID`` means one unit."""
    item_raw, _, quantity_raw = value.partition(":")
    try:
        item_id = int(item_raw)
        quantity = int(quantity_raw) if quantity_raw else 1
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected ID:QTY, got {value!r}") from exc
    return item_id, quantity


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-cli",
        description="Point-of-sale terminal for sales, rentals, and returns.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    transaction_specs = register_transaction_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    admin_specs = register_admin_commands(subparsers)
    return build_command_table([*transaction_specs.values(), *read_specs.values(), *admin_specs.values()])


def register_transaction_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the commands that open, resume, or discard transactions."""
    specs = {
        "sale": register_sale_command(subparsers),
        "rental": register_rental_command(subparsers),
        "return": register_return_command(subparsers),
        "resume": register_resume_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as ledger listings and exports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "rentals": register_rentals_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_admin_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the employee management commands reserved for admins."""
    specs = {
        "add-employee": register_add_employee_command(subparsers),
        "update-employee": register_update_employee_command(subparsers),
        "delete-employee": register_delete_employee_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def add_credential_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", default=None, help="Prompted for when omitted.")


def add_cart_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by every command that builds a cart."""
    add_credential_arguments(parser)
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        type=parse_item_argument,
        default=[],
        metavar="ID:QTY",
        help="Item to add to the cart; repeat for more lines.",
    )
    parser.add_argument("--coupon", default=None)
    parser.add_argument("--card", default=None, help="16-digit card number; cash when omitted.")


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Sell items and take them out of stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_cart_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_rental_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rental``."""
    name = "rental"
    help_text = "Check rental items out, or back in with --check-in."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_cart_arguments(parser)
        parser.add_argument("--phone", type=int, required=True)
        parser.add_argument(
            "--check-in",
            action="store_true",
            help="Return rented items and charge late fees.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rental)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return``."""
    name = "return"
    help_text = "Refund returned items and put them back in stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_cart_arguments(parser)
        parser.add_argument("--phone", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return)


def register_resume_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``resume``."""
    name = "resume"
    help_text = "Finish (or discard) the transaction left open by a crash."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_credential_arguments(parser)
        parser.add_argument("--discard", action="store_true", help="Abandon the open transaction.")
        parser.add_argument("--card", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_resume)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--rental", action="store_true", help="Show the rental stock ledger.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_rentals_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rentals``."""
    name = "rentals"
    help_text = "Display a customer's outstanding rentals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--phone", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rentals_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export stock and outstanding rentals to an Excel workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--destination", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def register_add_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-employee``."""
    name = "add-employee"
    help_text = "Add an employee account (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_credential_arguments(parser)
        parser.add_argument("--employee", required=True, help="Username of the new employee.")
        parser.add_argument("--name", required=True)
        parser.add_argument("--employee-password", required=True)
        parser.add_argument(
            "--role",
            choices=[member.value for member in EmployeeRole],
            default=EmployeeRole.CASHIER.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_employee)


def register_update_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-employee``."""
    name = "update-employee"
    help_text = "Change an employee's password, role, or name (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_credential_arguments(parser)
        parser.add_argument("--employee", required=True)
        parser.add_argument("--name", default="")
        parser.add_argument("--employee-password", default="")
        parser.add_argument("--role", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_employee)


def register_delete_employee_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-employee``."""
    name = "delete-employee"
    help_text = "Remove an employee account (admin only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_credential_arguments(parser)
        parser.add_argument("--employee", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_employee)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


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


def authenticate_employee(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> tuple[Employee, EmployeeRole]:
    """Check the command's credentials and return the employee and role."""
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    employee_file = context.settings.employee_file
    result = employees.authenticate(employee_file, args.username, password)
    role = employees.role_for(result)
    employee = employees.find_employee(employee_file, args.username)
    if result is AuthResult.FAILURE or role is None or employee is None:
        raise AuthenticationFailed(f"Invalid credentials for '{args.username}'")
    return employee, role


def require_admin(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Employee:
    employee, role = authenticate_employee(context, args)
    if role is not EmployeeRole.ADMIN:
        raise CommandRefused(f"'{employee.username}' is not an administrator")
    return employee


def complete_transaction(
    context: core_logic.RuntimeContext,
    transaction: core_logic.Transaction,
    *,
    card: Optional[str],
) -> int:
    """Validate payment, finalize, and print the amount charged or refunded."""
    if card is not None and not core_logic.Transaction.validate_payment_card(card):
        raise CommandRefused("Card number must be 16 digits; the transaction is kept for 'resume'")

    amount = transaction.finalize(context.settings.stock_file_for(transaction.kind))
    if not transaction.finalized:
        raise CommandRefused(f"{transaction.kind.value} could not be completed; the transaction is kept for 'resume'")

    label = "Late fees" if transaction.check_in else f"{transaction.kind.value} total"
    print(f"{label}: {amount:.2f}")
    return EXIT_OK


def run_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace, kind: TransactionKind) -> int:
    """Authenticate, build the cart from ``--item`` arguments, and finalize."""
    employee, role = authenticate_employee(context, args)
    session_log = context.settings.session_log
    employees.log_session(session_log, employee, logged_in=True)
    try:
        transaction = core_logic.start_transaction(
            context,
            kind,
            role=role,
            phone=getattr(args, "phone", None),
            check_in=getattr(args, "check_in", False),
        )
        if transaction is None:
            raise CommandRefused(f"Unable to start a {kind.value} transaction")

        for item_id, quantity in args.items:
            if not transaction.add_line(item_id, quantity):
                print(f"Skipped item {item_id} x{quantity}")

        if args.coupon and not transaction.apply_coupon(args.coupon):
            print(f"Coupon '{args.coupon}' was not applied")

        return complete_transaction(context, transaction, card=args.card)
    finally:
        employees.log_session(session_log, employee, logged_in=False)


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return run_transaction(context, args, TransactionKind.SALE)


def run_rental(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return run_transaction(context, args, TransactionKind.RENTAL)


def run_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return run_transaction(context, args, TransactionKind.RETURN)


def run_resume(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Finish or discard the transaction held in the recovery slot."""
    employee, role = authenticate_employee(context, args)
    if args.discard:
        core_logic.discard_recovery(context)
        print("Open transaction discarded")
        return EXIT_OK

    transaction = core_logic.resume_transaction(context, role=role)
    if transaction is None:
        raise CommandRefused("No transaction to resume")
    log.info("'%s' resumed a %s transaction", employee.username, transaction.kind.value)
    return complete_transaction(context, transaction, card=args.card)


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one line per stock record."""
    settings = context.settings
    source = settings.rental_stock_file if args.rental else settings.stock_file
    if not context.stock_ledger.load(source):
        raise FileNotFoundError(f"Stock ledger not found: {source}")
    for item in context.stock_ledger.items:
        print(f"{item.item_id:>6}  {item.name:<24} {item.unit_price:>8.2f} {item.stock_count:>6}")
    return EXIT_OK


def run_rentals_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the customer's outstanding rentals."""
    records = context.rental_ledger.outstanding_rentals(args.phone)
    if not records:
        print(f"No outstanding rentals for {args.phone}")
    for record in records:
        print(f"Item {record.item_id}: {record.days_outstanding} day(s) outstanding, {record.quantity} unit(s)")
    return EXIT_OK


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the stock ledger and outstanding rentals to a workbook."""
    stock_file = context.settings.stock_file
    if not context.stock_ledger.load(stock_file):
        raise FileNotFoundError(f"Stock ledger not found: {stock_file}")
    destination = reporting.export_workbook(
        args.destination,
        context.stock_ledger.items,
        context.rental_ledger.accounts(),
    )
    print(f"Exported workbook to '{destination}'")
    return EXIT_OK


def run_add_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    require_admin(context, args)
    added = employees.add_employee(
        context.settings.employee_file,
        args.employee,
        args.name,
        args.employee_password,
        args.role,
    )
    if not added:
        raise CommandRefused(f"Employee '{args.employee}' was not added")
    return EXIT_OK


def run_update_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    require_admin(context, args)
    result = employees.update_employee(
        context.settings.employee_file,
        args.employee,
        password=args.employee_password,
        role=args.role,
        name=args.name,
    )
    if result is UpdateResult.NOT_FOUND:
        raise CommandRefused(f"Employee '{args.employee}' not found")
    if result is UpdateResult.INVALID_FIELD:
        raise CommandRefused("Invalid role or password")
    if result is UpdateResult.WRITE_FAILED:
        raise OSError(f"Unable to save changes to employee '{args.employee}'")
    return EXIT_OK


def run_delete_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    admin = require_admin(context, args)
    if admin.username == args.employee:
        raise CommandRefused("Administrators cannot delete their own account")
    if not employees.delete_employee(context.settings.employee_file, args.employee):
        raise CommandRefused(f"Employee '{args.employee}' not found")
    return EXIT_OK


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, AuthenticationFailed):
        return EXIT_AUTH_FAILED
    if isinstance(error, CommandRefused):
        return EXIT_REFUSED
    if isinstance(error, FileNotFoundError):
        return EXIT_MISSING_FILE
    return EXIT_ERROR


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
