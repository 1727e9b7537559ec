"""Transaction engine for the POS system.

This module holds the cart shared by every transaction kind, the finalizer
for each kind (sale, return, rental), and the runtime context that wires
the stock ledger, customer rental ledger, and recovery slot together. It
consumes the data access layer for all I/O and never lets a storage failure
escape a public call: failures degrade to ``False``, ``None`` or a zero
amount.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from . import data_manager, log
from .constants import (
    CARD_NUMBER_LENGTH,
    COUPON_DISCOUNT,
    LATE_FEE_RATE,
    ROLE_PERMISSIONS,
    EmployeeRole,
    TransactionKind,
    TransactionState,
)
from .data_manager import FlatFileStore, LineItem, RentalRecord
from .ledger import CustomerRentalLedger, StockLedger
from .recovery import RecoveryLog


ZERO = Decimal("0")
CENT = Decimal("0.01")

# Kinds that must be tied to a customer account.
PHONE_REQUIRED = frozenset({TransactionKind.RENTAL, TransactionKind.RETURN})


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the ledgers used by transactions."""

    settings: data_manager.ConfigSettings
    stock_ledger: StockLedger
    rental_ledger: CustomerRentalLedger
    recovery_log: RecoveryLog


def build_runtime_context(settings: data_manager.ConfigSettings) -> RuntimeContext:
    """Construct the process-wide ledgers for ``settings``.

    The stock ledger starts empty; it is loaded from the stock file matching
    the transaction kind when a transaction starts or resumes.
    """

    return RuntimeContext(
        settings=settings,
        stock_ledger=StockLedger(),
        rental_ledger=CustomerRentalLedger(settings.customer_file),
        recovery_log=RecoveryLog(settings.recovery_file),
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and build the runtime context.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context ready for :func:`start_transaction`.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        ValueError: When the configured tax rate is invalid.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    log.info("Loaded runtime context for data directory '%s'", settings.data_dir)
    return build_runtime_context(settings)


def quantize_amount(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents, halves rounding up."""

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class Transaction:
    """Cart of line items being built towards one completed transaction.

    The cart behaviour is the same for every kind. ``kind`` selects the
    finalizer from :data:`FINALIZERS`, and ``check_in`` switches a rental
    from checkout to the late-fee check-in path. Every cart mutation is
    mirrored into the recovery slot unless ``mirror`` is ``False``.

    Lifecycle: ``EMPTY`` -> ``BUILDING`` (re-entered on every add/remove) ->
    ``FINALIZED``. A finalized transaction rejects further changes.
    """

    def __init__(
        self,
        kind: TransactionKind,
        context: RuntimeContext,
        *,
        phone: Optional[int] = None,
        check_in: bool = False,
        mirror: bool = True,
    ) -> None:
        if check_in and kind is not TransactionKind.RENTAL:
            raise ValueError("Only rental transactions can check items in")

        self.kind = kind
        self.context = context
        self.phone = phone
        self.check_in = check_in
        self.mirror = mirror
        self.return_list: List[RentalRecord] = []
        self.coupon_code: Optional[str] = None
        self.state = TransactionState.EMPTY
        self._cart: List[LineItem] = []
        self._discount = Decimal("1")
        self._total = ZERO

    def __repr__(self) -> str:
        return (
            f"Transaction(kind={self.kind.value!r}, state={self.state.value!r}, "
            f"lines={len(self._cart)}, total={self._total})"
        )

    @property
    def tax_rate(self) -> Decimal:
        return self.context.settings.tax_rate

    @property
    def takes_stock(self) -> bool:
        """Whether completing this transaction removes items from stock."""

        if self.kind is TransactionKind.SALE:
            return True
        return self.kind is TransactionKind.RENTAL and not self.check_in

    @property
    def finalized(self) -> bool:
        return self.state is TransactionState.FINALIZED

    def cart(self) -> tuple[LineItem, ...]:
        return tuple(self._cart)

    def cart_size(self) -> int:
        return len(self._cart)

    def total(self) -> Decimal:
        return self._total

    def last_added_line(self) -> LineItem:
        """Return the most recently appended line.

        Raises:
            IndexError: If the cart is empty; check :meth:`cart_size` first.
        """

        if not self._cart:
            raise IndexError("Cart is empty")
        return self._cart[-1]

    def _quantity_in_cart(self, item_id: int) -> int:
        return sum(line.quantity for line in self._cart if line.item_id == item_id)

    def add_line(self, item_id: int, quantity: int) -> bool:
        """Append a snapshot of a stock item to the cart.

        The line copies the item's current name and price so later price
        edits do not drift into an open cart. Stock-taking kinds may not ask
        for more units than the ledger still holds after the lines already
        in the cart, and a rental check-in may not return more units than
        the customer has outstanding for that item.

        Args:
            item_id (int): Identifier looked up in the loaded stock ledger.
            quantity (int): Requested units; must be positive.

        Returns:
            bool: ``True`` when the line was added. Unknown ids, non-positive
                or unavailable quantities, and finalized transactions leave
                the cart unchanged and return ``False``.
        """

        if self.finalized:
            log.warning("Cannot add item %s to a finalized transaction", item_id)
            return False
        if quantity <= 0:
            log.warning("Rejected non-positive quantity %s for item %s", quantity, item_id)
            return False

        item = self.context.stock_ledger.find(item_id)
        if item is None:
            log.warning("Item %s not found in stock ledger", item_id)
            return False

        if self.takes_stock:
            available = item.stock_count - self._quantity_in_cart(item_id)
            if quantity > available:
                log.warning(
                    "Requested %s of item %s but only %s available",
                    quantity,
                    item_id,
                    max(available, 0),
                )
                return False
        elif self.check_in:
            rented = sum(record.quantity for record in self.return_list if record.item_id == item_id)
            open_units = rented - self._quantity_in_cart(item_id)
            if quantity > open_units:
                log.warning(
                    "Requested check-in of %s x item %s but only %s rented unit(s) outstanding",
                    quantity,
                    item_id,
                    max(open_units, 0),
                )
                return False

        self._cart.append(
            LineItem(item_id=item.item_id, name=item.name, unit_price=item.unit_price, quantity=quantity)
        )
        self.state = TransactionState.BUILDING
        self.recompute_total()
        self._mirror()
        log.debug("Added %s x item %s to %s cart", quantity, item_id, self.kind.value)
        return True

    def remove_line(self, item_id: int) -> bool:
        """Remove the first cart line for ``item_id``."""

        if self.finalized:
            log.warning("Cannot remove item %s from a finalized transaction", item_id)
            return False

        for index, line in enumerate(self._cart):
            if line.item_id == item_id:
                del self._cart[index]
                self.state = TransactionState.BUILDING
                self.recompute_total()
                if self.mirror:
                    self.context.recovery_log.delete_line(item_id)
                return True
        return False

    def recompute_total(self) -> Decimal:
        """Sum ``unit_price * quantity`` over the cart, before tax.

        An applied coupon stays in effect across later cart changes.
        """

        subtotal = sum((line.line_total for line in self._cart), ZERO)
        self._total = subtotal * self._discount
        return self._total

    def apply_coupon(self, code: str) -> bool:
        """Discount the running total when ``code`` is on the coupon list.

        One coupon may be applied per transaction. An unknown code, an
        unreadable coupon file, or a second coupon leaves the total as it
        was.
        """

        if self.finalized or self.coupon_code is not None:
            log.warning("Coupon rejected: transaction already discounted or finalized")
            return False

        code = code.strip()
        if not code:
            return False

        try:
            valid_codes = set(FlatFileStore(self.context.settings.coupon_file).scan())
        except OSError as exc:
            log.warning("Unable to read coupon list: %s", exc)
            return False

        if code not in valid_codes:
            log.info("Coupon '%s' is not valid", code)
            return False

        self.coupon_code = code
        self._discount = COUPON_DISCOUNT
        self.recompute_total()
        log.info("Applied coupon '%s'; total is now %s", code, self._total)
        return True

    @staticmethod
    def validate_payment_card(number: str) -> bool:
        """Return ``True`` iff ``number`` is exactly 16 decimal digits."""

        return len(number) == CARD_NUMBER_LENGTH and number.isascii() and number.isdigit()

    def replay(self, lines: Iterable[tuple[int, int]]) -> int:
        """Re-add recovered ``(item_id, quantity)`` lines.

        Mirroring is suspended while replaying and the slot is rewritten once
        at the end with only the lines that were accepted.

        Returns:
            int: Number of lines restored into the cart.
        """

        mirror, self.mirror = self.mirror, False
        try:
            restored = sum(1 for item_id, quantity in lines if self.add_line(item_id, quantity))
        finally:
            self.mirror = mirror
        self._mirror()
        return restored

    def finalize(self, target: Path | str) -> Decimal:
        """Complete the transaction and return the amount charged.

        A second finalize, or a blank ``target``, returns zero without
        touching any ledger. Storage failures are logged and also return
        zero, leaving the cart in place for another attempt.

        Args:
            target (Path | str): Stock file that receives the reconciled
                ledger.

        Returns:
            Decimal: Amount charged or refunded, rounded to cents.
        """

        if self.finalized:
            log.warning("Transaction already finalized; ignoring repeated finalize")
            return ZERO
        if not str(target).strip():
            log.warning("No target stock file given; %s transaction left open", self.kind.value)
            return ZERO

        finalizer = FINALIZERS[self.kind]
        try:
            return finalizer(self, Path(target))
        except OSError as exc:
            log.error("Finalize of %s transaction failed: %s", self.kind.value, exc)
            return ZERO

    def _mirror(self) -> None:
        if self.mirror:
            self.context.recovery_log.write(self.kind, self.phone, self._cart, check_in=self.check_in)

    def _complete(self) -> None:
        self._cart.clear()
        self.recompute_total()
        self.state = TransactionState.FINALIZED
        self.context.recovery_log.clear()


def _write_invoice(transaction: Transaction, lines: tuple[LineItem, ...], *, subtotal: Decimal, total: Decimal) -> None:
    """Append an invoice block; failures are logged, not raised."""

    block = data_manager.format_invoice(
        transaction.kind,
        lines,
        subtotal=quantize_amount(subtotal),
        tax_rate=transaction.tax_rate,
        total=total,
        when=datetime.now(),
    )
    path = transaction.context.settings.invoice_log_for(transaction.kind)
    try:
        data_manager.append_invoice(path, block)
    except OSError as exc:
        log.error("Unable to append invoice to '%s': %s", path, exc)


def _reconcile_then(
    transaction: Transaction,
    target: Path,
    lines: Sequence[LineItem],
    *,
    taking: bool,
    follow_up: Optional[Callable[[], bool]] = None,
) -> bool:
    """Reconcile ``lines`` against ``target`` and then run ``follow_up``.

    ``follow_up`` carries the customer ledger update. When it fails the stock
    change is reversed, so the stock and customer ledgers move together.

    Returns:
        bool: ``True`` when the stock write and the follow-up both succeeded.
    """

    stock_ledger = transaction.context.stock_ledger
    if not stock_ledger.reconcile(target, lines, taking=taking):
        return False
    if follow_up is None or follow_up():
        return True

    log.error("Customer ledger update failed; reversing stock change in '%s'", target)
    if not stock_ledger.reconcile(target, lines, taking=not taking):
        log.error("Unable to reverse stock change in '%s'; counts need manual correction", target)
    return False


def _charge_with_tax(
    transaction: Transaction,
    target: Path,
    *,
    taking: bool,
    follow_up: Optional[Callable[[], bool]] = None,
) -> Optional[Decimal]:
    """Reconcile the cart against ``target`` and invoice the taxed total.

    Returns:
        Decimal | None: The taxed total, or ``None`` when the stock ledger
            could not be written or the follow-up failed (nothing was
            committed).
    """

    lines = transaction.cart()
    subtotal = transaction.total()
    if not _reconcile_then(transaction, target, lines, taking=taking, follow_up=follow_up):
        return None

    total = quantize_amount(subtotal * transaction.tax_rate)
    _write_invoice(transaction, lines, subtotal=subtotal, total=total)
    return total


def finalize_sale(transaction: Transaction, target: Path) -> Decimal:
    """Charge the taxed total and take the sold units out of stock."""

    if transaction.cart_size() == 0:
        transaction._complete()
        return ZERO

    total = _charge_with_tax(transaction, target, taking=True)
    if total is None:
        return ZERO

    transaction._complete()
    log.info("Completed sale for %s", total)
    return total


def _close_returned_rentals(transaction: Transaction, lines: Sequence[LineItem]) -> bool:
    """Flag returned units that were rented; ``True`` when none were."""

    rental_ledger = transaction.context.rental_ledger
    rented = {record.item_id for record in rental_ledger.outstanding_rentals(transaction.phone)}
    if not any(line.item_id in rented for line in lines):
        return True
    return rental_ledger.mark_returned(transaction.phone, lines)


def finalize_return(transaction: Transaction, target: Path) -> Decimal:
    """Refund the taxed total and put the returned units back in stock."""

    if transaction.cart_size() == 0:
        transaction._complete()
        return ZERO

    lines = transaction.cart()
    follow_up = None
    if transaction.phone is not None:
        follow_up = partial(_close_returned_rentals, transaction, lines)

    total = _charge_with_tax(transaction, target, taking=False, follow_up=follow_up)
    if total is None:
        return ZERO

    transaction._complete()
    log.info("Completed return for %s", total)
    return total


def _record_rentals(transaction: Transaction, lines: Sequence[LineItem]) -> bool:
    rental_ledger = transaction.context.rental_ledger
    if not rental_ledger.create_account(transaction.phone):
        return False
    return rental_ledger.add_rental(transaction.phone, lines)


def finalize_rental(transaction: Transaction, target: Path) -> Decimal:
    """Check rented items out, or check them back in and charge late fees."""

    if transaction.check_in:
        return _check_in_rental(transaction, target)

    if transaction.cart_size() == 0:
        transaction._complete()
        return ZERO

    lines = transaction.cart()
    follow_up = None
    if transaction.phone is not None:
        follow_up = partial(_record_rentals, transaction, lines)

    total = _charge_with_tax(transaction, target, taking=True, follow_up=follow_up)
    if total is None:
        return ZERO

    transaction._complete()
    log.info("Completed rental checkout for %s", total)
    return total


def _check_in_rental(transaction: Transaction, target: Path) -> Decimal:
    """Charge late fees for cart units matching the customer's open rentals.

    Units are matched against outstanding records with the same item id, in
    ledger order, and never beyond the quantity each record has out. A
    matched unit costs ``unit_price * 0.1 * days``. Units without a matching
    record are neither charged nor returned to stock.
    """

    records = transaction.return_list
    unclaimed = [record.quantity for record in records]
    restock: List[LineItem] = []
    closed: List[RentalRecord] = []
    fees = ZERO
    for line in transaction.cart():
        wanted = line.quantity
        for index, record in enumerate(records):
            if wanted == 0:
                break
            if record.item_id != line.item_id or unclaimed[index] == 0:
                continue
            units = min(wanted, unclaimed[index])
            unclaimed[index] -= units
            wanted -= units
            fees += units * line.unit_price * LATE_FEE_RATE * record.days_outstanding
            closed.append(replace(record, quantity=units))

        if wanted:
            log.info("%s unit(s) of item %s have no outstanding rental; not charged", wanted, line.item_id)
        if wanted < line.quantity:
            restock.append(replace(line, quantity=line.quantity - wanted))

    if not restock:
        transaction._complete()
        return ZERO

    follow_up = None
    if transaction.phone is not None:
        follow_up = partial(transaction.context.rental_ledger.mark_returned, transaction.phone, closed)

    if not _reconcile_then(transaction, target, restock, taking=False, follow_up=follow_up):
        return ZERO

    total = quantize_amount(fees)
    transaction._complete()
    log.info("Checked in %d rented unit(s); late fees %s", sum(line.quantity for line in restock), total)
    return total


FINALIZERS: Dict[TransactionKind, Callable[[Transaction, Path], Decimal]] = {
    TransactionKind.SALE: finalize_sale,
    TransactionKind.RETURN: finalize_return,
    TransactionKind.RENTAL: finalize_rental,
}


def can_start(role: EmployeeRole, kind: TransactionKind) -> bool:
    return kind in ROLE_PERMISSIONS.get(role, frozenset())


def start_transaction(
    context: RuntimeContext,
    kind: TransactionKind,
    *,
    role: EmployeeRole,
    phone: Optional[int] = None,
    check_in: bool = False,
) -> Optional[Transaction]:
    """Open a new transaction after checking the recovery slot and role.

    Args:
        context (RuntimeContext): Runtime context providing the ledgers.
        kind (TransactionKind): Kind of transaction to open.
        role (EmployeeRole): Role of the authenticated employee.
        phone (int | None): Customer phone, required for rentals and returns.
        check_in (bool): Open a rental in check-in mode; the customer's
            outstanding rentals are loaded into ``return_list``.

    Returns:
        Transaction | None: The new transaction, or ``None`` when another
            transaction is in progress, the role may not start ``kind``, a
            required phone is missing, or the stock ledger cannot be loaded.
    """

    if context.recovery_log.exists():
        log.warning("A transaction is already in progress; resume or discard it first")
        return None
    if not can_start(role, kind):
        log.warning("Role %s may not start %s transactions", role.value, kind.value)
        return None
    if kind in PHONE_REQUIRED and phone is None:
        log.warning("%s transactions require a customer phone number", kind.value)
        return None
    if check_in and kind is not TransactionKind.RENTAL:
        log.warning("Check-in is only available for rentals")
        return None

    stock_file = context.settings.stock_file_for(kind)
    if not context.stock_ledger.load(stock_file):
        log.error("Cannot start %s transaction without stock ledger '%s'", kind.value, stock_file)
        return None

    transaction = Transaction(kind, context, phone=phone, check_in=check_in)
    if check_in:
        transaction.return_list = context.rental_ledger.outstanding_rentals(phone)
    log.info("Started %s transaction", kind.value)
    return transaction


def resume_transaction(
    context: RuntimeContext,
    *,
    role: EmployeeRole,
    kind: Optional[TransactionKind] = None,
) -> Optional[Transaction]:
    """Rebuild the in-flight transaction held in the recovery slot.

    Malformed slot lines were already dropped while reading; recovered lines
    whose item is no longer in stock, or that would check in more units than
    the customer still has rented, are dropped while replaying. The slot is
    rewritten with the lines that survived.

    Args:
        context (RuntimeContext): Runtime context providing the ledgers.
        role (EmployeeRole): Role of the authenticated employee.
        kind (TransactionKind | None): Kind to assume when the slot header
            is unrecognised.

    Returns:
        Transaction | None: The resumed transaction, or ``None`` when there
            is nothing usable to resume.
    """

    record = context.recovery_log.read()
    if record is None:
        log.info("No transaction to resume")
        return None

    resolved = record.kind or kind
    if resolved is None:
        log.warning("Recovery slot has no recognisable transaction kind")
        return None
    if not can_start(role, resolved):
        log.warning("Role %s may not resume %s transactions", role.value, resolved.value)
        return None
    if resolved in PHONE_REQUIRED and record.phone is None:
        log.warning("Recovered %s transaction has no customer phone", resolved.value)
        return None

    check_in = record.check_in and resolved is TransactionKind.RENTAL
    stock_file = context.settings.stock_file_for(resolved)
    if not context.stock_ledger.load(stock_file):
        log.error("Cannot resume %s transaction without stock ledger '%s'", resolved.value, stock_file)
        return None

    transaction = Transaction(resolved, context, phone=record.phone, check_in=check_in)
    if check_in:
        transaction.return_list = context.rental_ledger.outstanding_rentals(record.phone)
    restored = transaction.replay(record.lines)
    log.info("Resumed %s transaction with %d of %d line(s)", resolved.value, restored, len(record.lines))
    return transaction


def discard_recovery(context: RuntimeContext) -> None:
    """Abandon the in-flight transaction held in the recovery slot."""

    context.recovery_log.clear()
    log.info("Discarded in-flight transaction")
