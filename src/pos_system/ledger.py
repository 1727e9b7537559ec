"""Stock and customer rental ledgers.

Both ledgers sit on :class:`~pos_system.data_manager.FlatFileStore` and never
let a storage failure escape: a missing or unreadable file degrades to an
empty result or a ``False`` return, and writes are all-or-nothing.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Optional, Protocol, Sequence

from . import data_manager, log
from .constants import CUSTOMER_LEDGER_HEADER
from .data_manager import CustomerAccount, FlatFileStore, Item, LineItem, RentalEntry, RentalRecord


class HasItemId(Protocol):
    item_id: int


class StockLedger:
    """Authoritative list of :class:`Item` stock records for one process.

    The ledger is constructed once by the runtime context and passed to
    whoever needs it. :meth:`load` swaps in the contents of a stock file and
    :meth:`reconcile` applies a completed transaction's lines to it.
    """

    def __init__(self, items: Optional[Sequence[Item]] = None) -> None:
        self.items: list[Item] = list(items or [])
        self.source: Optional[Path] = None

    def __len__(self) -> int:
        return len(self.items)

    def load(self, source: Path) -> bool:
        """Replace the ledger contents with the records held in ``source``.

        Lines that fail to parse are skipped with a warning. An absent source,
        a directory, or any other read failure leaves the ledger empty.

        Args:
            source (Path): Stock file in ``id name unitPrice stockCount`` form.

        Returns:
            bool: ``True`` when the file was read, even if it held no records.
        """

        self.items = []
        self.source = Path(source)
        try:
            lines = list(FlatFileStore(source).scan())
        except OSError as exc:
            log.warning("Unable to read stock ledger '%s': %s", source, exc)
            return False

        for raw in lines:
            try:
                self.items.append(data_manager.deserialize_item(raw))
            except ValueError as exc:
                log.warning("Skipping malformed stock line in '%s': %s", source, exc)

        log.debug("Loaded %d stock records from '%s'", len(self.items), source)
        return True

    def find(self, item_id: int) -> Optional[Item]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def save(self, target: Path) -> bool:
        """Write the current records to ``target``."""

        try:
            FlatFileStore(target).replace(data_manager.serialize_item(item) for item in self.items)
        except OSError as exc:
            log.error("Unable to write stock ledger '%s': %s", target, exc)
            return False
        return True

    def reconcile(self, target: Path, lines: Sequence[LineItem], *, taking: bool) -> bool:
        """Apply transaction lines to the stock counts and persist the result.

        Each line with a positive quantity adjusts the matching item by
        ``-quantity`` when ``taking`` and ``+quantity`` otherwise. Lines for
        unknown ids and lines with ``quantity <= 0`` change nothing. The
        in-memory records are only replaced once ``target`` has been written.

        Args:
            target (Path): Stock file that receives the updated ledger.
            lines (Sequence[LineItem]): Completed transaction lines.
            taking (bool): ``True`` for sales and rental checkouts.

        Returns:
            bool: ``True`` when the updated ledger was persisted.
        """

        if not str(target).strip():
            log.warning("Refusing to reconcile stock without a target file")
            return False

        updated = list(self.items)
        index_by_id = {item.item_id: index for index, item in enumerate(updated)}
        for line in lines:
            if line.quantity <= 0:
                log.warning("Ignoring non-positive quantity %s for item %s", line.quantity, line.item_id)
                continue
            index = index_by_id.get(line.item_id)
            if index is None:
                log.debug("Item %s not in stock ledger; skipping", line.item_id)
                continue
            delta = -line.quantity if taking else line.quantity
            current = updated[index]
            updated[index] = replace(current, stock_count=current.stock_count + delta)
            if updated[index].stock_count < 0:
                log.warning(
                    "Stock for item %s dropped below zero (%s)",
                    current.item_id,
                    updated[index].stock_count,
                )

        try:
            FlatFileStore(target).replace(data_manager.serialize_item(item) for item in updated)
        except OSError as exc:
            log.error("Stock reconciliation aborted, unable to write '%s': %s", target, exc)
            return False

        self.items = updated
        log.info(
            "Reconciled %d line(s) against '%s' (%s)",
            len(lines),
            target,
            "take" if taking else "return",
        )
        return True


class CustomerRentalLedger:
    """Per-customer record of rented items and their checkout dates.

    The backing file starts with a ``User Database`` header followed by one
    line per account: ``phone itemId,MM/DD/YY,returned,quantity ...``.
    """

    def __init__(self, path: Path) -> None:
        self.store = FlatFileStore(path)

    @property
    def path(self) -> Path:
        return self.store.path

    def _read_accounts(self) -> list[CustomerAccount]:
        accounts = []
        for raw in self.store.scan():
            if raw == CUSTOMER_LEDGER_HEADER:
                continue
            try:
                accounts.append(data_manager.deserialize_account(raw))
            except ValueError:
                log.warning("Skipping malformed customer line %r", raw)
        return accounts

    def _find_account(self, phone: int) -> Optional[CustomerAccount]:
        for account in self._read_accounts():
            if account.phone == phone:
                return account
        return None

    def accounts(self) -> list[CustomerAccount]:
        """Return every account in ledger order (empty on read failure)."""

        try:
            return self._read_accounts()
        except OSError as exc:
            log.warning("Unable to read customer ledger '%s': %s", self.path, exc)
            return []

    def account_exists(self, phone: int) -> bool:
        try:
            return self._find_account(phone) is not None
        except OSError as exc:
            log.warning("Unable to read customer ledger '%s': %s", self.path, exc)
            return False

    def create_account(self, phone: int) -> bool:
        """Append an empty account for ``phone``.

        Returns:
            bool: ``True`` when the account exists afterwards, ``False`` when
                the existing ledger cannot be read or appended to.
        """

        try:
            if self._find_account(phone) is not None:
                return True
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.error("Unable to read customer ledger '%s': %s", self.path, exc)
            return False

        lines = [data_manager.serialize_account(CustomerAccount(phone=phone))]
        if not self.store.exists():
            lines.insert(0, CUSTOMER_LEDGER_HEADER)
        try:
            self.store.append(lines)
        except OSError as exc:
            log.error("Unable to create account %s in '%s': %s", phone, self.path, exc)
            return False

        log.info("Created customer account %s", phone)
        return True

    def outstanding_rentals(self, phone: int, *, as_of: Optional[date] = None) -> list[RentalRecord]:
        """Return the customer's unreturned items in ledger order.

        Args:
            phone (int): Customer phone number.
            as_of (date | None): Day used to compute ``days_outstanding``.
                Defaults to today.

        Returns:
            list[RentalRecord]: Outstanding rentals; empty when the account is
                absent or the ledger cannot be read.
        """

        as_of = as_of or date.today()
        try:
            account = self._find_account(phone)
        except OSError as exc:
            log.warning("Unable to read customer ledger '%s': %s", self.path, exc)
            return []
        if account is None:
            return []

        return [
            RentalRecord(
                item_id=entry.item_id,
                days_outstanding=max(0, (as_of - entry.checkout_date).days),
                quantity=entry.quantity,
            )
            for entry in account.outstanding
        ]

    def add_rental(self, phone: int, items: Sequence[LineItem], *, as_of: Optional[date] = None) -> bool:
        """Record one rental entry per line item, with its quantity, on the account.

        The account line is created when the phone is not yet in the ledger.
        When the ledger file is missing or unreadable nothing is written.

        Returns:
            bool: ``True`` when the ledger was updated.
        """

        checkout_date = as_of or date.today()
        new_entries = tuple(
            RentalEntry(item_id=line.item_id, checkout_date=checkout_date, quantity=line.quantity)
            for line in items
            if line.quantity > 0
        )
        if not new_entries:
            return False

        try:
            account = self._find_account(phone) or CustomerAccount(phone=phone)
            updated = replace(account, entries=account.entries + new_entries)
            self.store.upsert(str(phone), data_manager.serialize_account(updated))
        except OSError as exc:
            log.warning("Rental for customer %s not recorded: %s", phone, exc)
            return False

        log.info("Recorded %d rental(s) for customer %s", len(new_entries), phone)
        return True

    def mark_returned(self, phone: int, returned: Sequence[HasItemId]) -> bool:
        """Flag the customer's outstanding entries for ``returned`` ids.

        Each returned object closes up to its ``quantity`` (one when it has
        none) outstanding units of its id, oldest entries first. An entry only
        partly covered is split into a returned part and an outstanding
        remainder. Ids with no outstanding entry are ignored.

        Returns:
            bool: ``True`` when at least one entry changed and the ledger was
                written; a read or write failure leaves the file untouched.
        """

        try:
            account = self._find_account(phone)
        except OSError as exc:
            log.warning("Unable to read customer ledger '%s': %s", self.path, exc)
            return False
        if account is None:
            log.debug("No account %s; nothing to mark returned", phone)
            return False

        entries = list(account.entries)
        changed = 0
        for record in returned:
            remaining = getattr(record, "quantity", 1)
            index = 0
            while remaining > 0 and index < len(entries):
                entry = entries[index]
                if entry.item_id == record.item_id and not entry.returned:
                    closed = min(entry.quantity, remaining)
                    if closed < entry.quantity:
                        entries[index:index + 1] = [
                            replace(entry, returned=True, quantity=closed),
                            replace(entry, quantity=entry.quantity - closed),
                        ]
                    else:
                        entries[index] = replace(entry, returned=True)
                    remaining -= closed
                    changed += closed
                index += 1

        if not changed:
            return False

        try:
            self.store.upsert(str(phone), data_manager.serialize_account(replace(account, entries=tuple(entries))))
        except OSError as exc:
            log.error("Unable to update rentals for customer %s: %s", phone, exc)
            return False

        log.info("Marked %d rented unit(s) returned for customer %s", changed, phone)
        return True
