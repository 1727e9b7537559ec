"""Data access layer for the POS system.

This module provides low-level helpers that read from and write to the flat
text files under the configured data directory. Business logic belongs
elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record storage: :class:`FlatFileStore`, the narrow ``load``/``scan``/
   ``upsert`` interface every ledger is built on.
3. Record codecs: converting stock, customer, recovery, invoice, and
   employee lines to and from typed dataclasses.
"""


from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from . import log
from .constants import (
    CHECK_IN_FLAG,
    DEFAULT_TAX_RATE,
    RENTAL_DATE_FORMAT,
    EmployeeRole,
    TransactionKind,
)


CONFIG_FILE_NAME = "config.ini"

# Attribute name on ConfigSettings -> (key in the [Files] section, default).
FILE_KEYS: dict[str, tuple[str, str]] = {
    "stock_file": ("StockFile", "itemDatabase.txt"),
    "rental_stock_file": ("RentalStockFile", "rentalDatabase.txt"),
    "customer_file": ("CustomerFile", "userDatabase.txt"),
    "recovery_file": ("RecoveryFile", "temp.txt"),
    "coupon_file": ("CouponFile", "couponNumber.txt"),
    "employee_file": ("EmployeeFile", "employeeDatabase.txt"),
    "sale_invoice_log": ("SaleInvoiceLog", "saleInvoiceRecord.txt"),
    "rental_invoice_log": ("RentalInvoiceLog", "rentalInvoiceRecord.txt"),
    "return_invoice_log": ("ReturnInvoiceLog", "returnSale.txt"),
    "session_log": ("SessionLog", "employeeLogfile.txt"),
}

_KIND_BY_TAG = {kind.value.lower(): kind for kind in TransactionKind}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    store_name: str
    data_dir: Path
    stock_file: Path
    rental_stock_file: Path
    customer_file: Path
    recovery_file: Path
    coupon_file: Path
    employee_file: Path
    sale_invoice_log: Path
    rental_invoice_log: Path
    return_invoice_log: Path
    session_log: Path
    tax_rate: Decimal = DEFAULT_TAX_RATE

    def stock_file_for(self, kind: TransactionKind) -> Path:
        """Return the stock ledger a transaction of ``kind`` reconciles against."""

        if kind is TransactionKind.RENTAL:
            return self.rental_stock_file
        return self.stock_file

    def invoice_log_for(self, kind: TransactionKind) -> Path:
        """Return the append-only invoice log for ``kind``."""

        return {
            TransactionKind.SALE: self.sale_invoice_log,
            TransactionKind.RENTAL: self.rental_invoice_log,
            TransactionKind.RETURN: self.return_invoice_log,
        }[kind]


@dataclass(frozen=True)
class Item:
    """In-memory view of a line from a stock ledger file."""

    item_id: int
    name: str
    unit_price: Decimal
    stock_count: int


@dataclass(frozen=True)
class LineItem:
    """Snapshot of an item's name and price taken when it entered a cart."""

    item_id: int
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class RentalRecord:
    """One outstanding rented item, how many units are out, and for how long."""

    item_id: int
    days_outstanding: int
    quantity: int = 1


@dataclass(frozen=True)
class RentalEntry:
    """Persisted form of one rented line on a customer account."""

    item_id: int
    checkout_date: date
    returned: bool = False
    quantity: int = 1


@dataclass(frozen=True)
class CustomerAccount:
    """In-memory view of an account line from the customer ledger."""

    phone: int
    entries: tuple[RentalEntry, ...] = ()

    @property
    def outstanding(self) -> tuple[RentalEntry, ...]:
        return tuple(entry for entry in self.entries if not entry.returned)


@dataclass(frozen=True)
class RecoveryRecord:
    """Durable shadow of the transaction currently in progress."""

    kind: Optional[TransactionKind]
    phone: Optional[int] = None
    lines: tuple[tuple[int, int], ...] = ()
    check_in: bool = False


@dataclass(frozen=True)
class Employee:
    """In-memory view of a line from the employee file."""

    username: str
    name: str
    password: str
    role: EmployeeRole = EmployeeRole.CASHIER


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

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

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. User home references (``~``) are expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration
            data. Required entries are validated by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must name the store and the data directory. Entries in the
    ``[Files]`` section fall back to the historical file names and are
    resolved inside the data directory, which is itself anchored to
    ``base_path`` (or the current working directory) when relative.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for a relative
            ``DataDirectory``. Defaults to :func:`Path.cwd`.

    Returns:
        ConfigSettings: Immutable settings with every path resolved.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``TaxRate`` is not a positive decimal number.
    """

    try:
        store_name = parser.get("System", "StoreName")
        data_dir_raw = parser.get("System", "DataDirectory")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_dir = Path(data_dir_raw).expanduser()
    if not data_dir.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_dir = base_path / data_dir
    data_dir = data_dir.resolve()

    paths: dict[str, Path] = {}
    for attribute, (key, default) in FILE_KEYS.items():
        raw = parser.get("Files", key, fallback=default)
        candidate = Path(raw).expanduser()
        paths[attribute] = candidate if candidate.is_absolute() else data_dir / candidate

    tax_raw = parser.get("Pricing", "TaxRate", fallback=str(DEFAULT_TAX_RATE))
    try:
        tax_rate = Decimal(tax_raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid TaxRate: {tax_raw!r}") from exc
    if not tax_rate.is_finite() or tax_rate <= 0:
        raise ValueError(f"Invalid TaxRate: {tax_raw!r}")

    return ConfigSettings(
        store_name=store_name,
        data_dir=data_dir,
        tax_rate=tax_rate,
        **paths,
    )


class UndecodableFileError(OSError):
    """Raised when a data file holds bytes that are not valid UTF-8."""


class FlatFileStore:
    """Minimal record store over a text file holding one record per line.

    Ledgers talk to their backing files only through this interface so the
    same logic could later target an embedded database. Every method lets
    :class:`OSError` propagate; callers decide how a storage failure degrades.
    Undecodable content surfaces as :class:`UndecodableFileError`, so a single
    ``except OSError`` covers it as well.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"FlatFileStore({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> list[str]:
        """Return every raw line of the file without trailing newlines."""

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                return handle.read().splitlines()
        except UnicodeDecodeError as exc:
            raise self._undecodable(exc) from exc

    def scan(self) -> Iterator[str]:
        """Yield stripped, non-blank lines in file order."""

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                for raw in handle:
                    line = raw.strip()
                    if line:
                        yield line
        except UnicodeDecodeError as exc:
            raise self._undecodable(exc) from exc

    def _undecodable(self, exc: UnicodeDecodeError) -> UndecodableFileError:
        return UndecodableFileError(f"{self.path} is not valid UTF-8 ({exc.reason} at byte {exc.start})")

    def append(self, lines: Iterable[str]) -> None:
        """Append ``lines``, creating the file (and its folder) when absent."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            for line in lines:
                handle.write(f"{line}\n")

    def replace(self, lines: Iterable[str]) -> None:
        """Atomically rewrite the whole file with ``lines``."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(f".{self.path.name}.tmp")
        try:
            temp_path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
            os.replace(temp_path, self.path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def upsert(self, key: str, line: str) -> bool:
        """Replace the first line keyed by ``key`` or append ``line``.

        The key of a line is its first whitespace-separated token.

        Returns:
            bool: ``True`` when an existing line was replaced, ``False`` when
                ``line`` was appended.
        """

        try:
            existing = self.load()
        except FileNotFoundError:
            existing = []

        for index, current in enumerate(existing):
            tokens = current.split()
            if tokens and tokens[0] == key:
                existing[index] = line
                self.replace(existing)
                return True

        existing.append(line)
        self.replace(existing)
        return False

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)


def serialize_item(record: Item) -> str:
    """Convert an item into the ``id name unitPrice stockCount`` layout."""

    return f"{record.item_id} {record.name} {record.unit_price} {record.stock_count}"


def deserialize_item(raw_line: str) -> Item:
    """Convert a stock ledger line into a typed :class:`Item`.

    Args:
        raw_line (str): One whitespace-delimited line from the stock file.

    Returns:
        Item: Parsed record with a :class:`~decimal.Decimal` unit price.

    Raises:
        ValueError: If the line does not hold exactly four fields or a numeric
            field cannot be parsed.
    """

    fields = raw_line.split()
    if len(fields) != 4:
        raise ValueError(f"Expected 4 fields in stock line, found {len(fields)}: {raw_line!r}")

    item_id_raw, name, price_raw, count_raw = fields
    try:
        unit_price = Decimal(price_raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid unit price: {price_raw!r}") from exc
    if not unit_price.is_finite():
        raise ValueError(f"Invalid unit price: {price_raw!r}")

    return Item(item_id=int(item_id_raw), name=name, unit_price=unit_price, stock_count=int(count_raw))


def serialize_rental_entry(entry: RentalEntry) -> str:
    returned = "true" if entry.returned else "false"
    return f"{entry.item_id},{entry.checkout_date.strftime(RENTAL_DATE_FORMAT)},{returned},{entry.quantity}"


def deserialize_rental_entry(raw_entry: str) -> RentalEntry:
    """Parse an ``itemId,MM/DD/YY,returned[,quantity]`` token.

    Entries written before quantities were recorded carry three fields and
    stand for a single unit.

    Raises:
        ValueError: If the token is not made of three or four valid
            comma-separated fields, or the quantity is not positive.
    """

    fields = raw_entry.split(",")
    if len(fields) == 3:
        fields.append("1")
    if len(fields) != 4:
        raise ValueError(f"Malformed rental entry: {raw_entry!r}")

    item_id_raw, date_raw, returned_raw, quantity_raw = fields
    returned_flag = returned_raw.strip().lower()
    if returned_flag not in ("true", "false"):
        raise ValueError(f"Malformed returned flag: {raw_entry!r}")

    quantity = int(quantity_raw)
    if quantity <= 0:
        raise ValueError(f"Non-positive rental quantity: {raw_entry!r}")

    checkout_date = datetime.strptime(date_raw.strip(), RENTAL_DATE_FORMAT).date()
    return RentalEntry(
        item_id=int(item_id_raw),
        checkout_date=checkout_date,
        returned=returned_flag == "true",
        quantity=quantity,
    )


def serialize_account(account: CustomerAccount) -> str:
    """Convert an account into ``phone entry entry ...``."""

    return " ".join([str(account.phone), *(serialize_rental_entry(entry) for entry in account.entries)])


def deserialize_account(raw_line: str) -> CustomerAccount:
    """Convert a customer ledger line into a :class:`CustomerAccount`.

    Malformed rental entries are skipped so a single damaged token does not
    hide the rest of a customer's history.

    Raises:
        ValueError: If the line is blank or its phone field is not numeric.
    """

    tokens = raw_line.split()
    if not tokens:
        raise ValueError("Empty customer ledger line")

    phone = int(tokens[0])
    entries = []
    for raw_entry in tokens[1:]:
        try:
            entries.append(deserialize_rental_entry(raw_entry))
        except ValueError:
            log.warning("Skipping malformed rental entry %r for customer %s", raw_entry, phone)
    return CustomerAccount(phone=phone, entries=tuple(entries))


def serialize_recovery(record: RecoveryRecord) -> list[str]:
    """Convert a recovery record into the slot's line layout.

    Returns:
        list[str]: The kind header (with the check-in flag for rental
            returns), the phone line when present, then one
            ``itemId quantity`` line per cart entry.
    """

    header = record.kind.value if record.kind is not None else "Unknown"
    if record.check_in:
        header = f"{header} {CHECK_IN_FLAG}"

    lines = [header]
    if record.phone is not None:
        lines.append(str(record.phone))
    lines.extend(f"{item_id} {quantity}" for item_id, quantity in record.lines)
    return lines


def parse_recovery_header(raw_line: str) -> tuple[Optional[TransactionKind], bool]:
    """Return the kind tag and check-in flag encoded in a slot header."""

    text = raw_line.strip()
    if text.lower().startswith("type:"):
        text = text[len("type:"):].strip()

    tokens = text.split()
    if not tokens:
        return None, False

    kind = _KIND_BY_TAG.get(tokens[0].lower())
    check_in = any(token.lower() == CHECK_IN_FLAG for token in tokens[1:])
    return kind, check_in


def parse_recovery_phone(raw_line: str) -> Optional[int]:
    """Return the phone number held by a slot line, or ``None``."""

    text = raw_line.strip()
    if text.lower().startswith("phone number:"):
        text = text[len("phone number:"):].strip()

    tokens = text.split()
    if len(tokens) != 1 or not tokens[0].isdigit():
        return None
    return int(tokens[0])


def parse_recovery_line(raw_line: str) -> Optional[tuple[int, int]]:
    """Return ``(item_id, quantity)`` for a well-formed item line."""

    tokens = raw_line.split()
    if len(tokens) != 2:
        return None
    try:
        return int(tokens[0]), int(tokens[1])
    except ValueError:
        return None


def deserialize_recovery(raw_lines: Sequence[str]) -> Optional[RecoveryRecord]:
    """Rebuild a :class:`RecoveryRecord` from the slot's lines.

    Malformed item lines are skipped rather than aborting the read, so a
    transaction with some damaged lines still partially recovers. An
    unrecognised header produces a record whose ``kind`` is ``None``.

    Args:
        raw_lines (Sequence[str]): Lines read from the recovery slot.

    Returns:
        RecoveryRecord | None: Parsed record, or ``None`` when the slot holds
            no content at all.
    """

    lines = [line.strip() for line in raw_lines if line.strip()]
    if not lines:
        return None

    kind, check_in = parse_recovery_header(lines[0])
    if kind is None:
        log.warning("Unrecognised recovery header %r", lines[0])

    body = lines[1:]
    phone = None
    if body:
        phone = parse_recovery_phone(body[0])
        if phone is not None:
            body = body[1:]

    items = []
    for raw in body:
        parsed = parse_recovery_line(raw)
        if parsed is None:
            log.warning("Skipping malformed recovery line %r", raw)
            continue
        items.append(parsed)

    return RecoveryRecord(kind=kind, phone=phone, lines=tuple(items), check_in=check_in)


def format_invoice(
    kind: TransactionKind,
    lines: Sequence[LineItem],
    *,
    subtotal: Decimal,
    tax_rate: Decimal,
    total: Decimal,
    when: datetime,
) -> list[str]:
    """Render a human-readable invoice block for the append-only log.

    The block lists each line item, the subtotal, the tax multiplier, and a
    closing ``Total with tax: <amount>`` line, followed by a blank separator.
    """

    block = [f"{kind.value} invoice {when:%Y-%m-%d %H:%M:%S}"]
    for line in lines:
        block.append(
            f"{line.item_id} {line.name} x{line.quantity} @ {line.unit_price:.2f} = {line.line_total:.2f}"
        )
    block.append(f"Subtotal: {subtotal:.2f}")
    block.append(f"Tax rate: {tax_rate}")
    block.append(f"Total with tax: {total:.2f}")
    block.append("")
    return block


def append_invoice(path: Path, block: Sequence[str]) -> None:
    """Append an invoice block produced by :func:`format_invoice`."""

    FlatFileStore(path).append(block)


def serialize_employee(record: Employee) -> str:
    return f"{record.username} {record.name} {record.password} {record.role.value}"


def deserialize_employee(raw_line: str) -> Employee:
    """Convert an ``username First Last password Role`` line.

    Raises:
        ValueError: If fewer than four fields are present or the role is
            unknown.
    """

    tokens = raw_line.split()
    if len(tokens) < 4:
        raise ValueError(f"Malformed employee line: {raw_line!r}")

    return Employee(
        username=tokens[0],
        name=" ".join(tokens[1:-2]),
        password=tokens[-2],
        role=EmployeeRole(tokens[-1]),
    )
