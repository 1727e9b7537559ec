"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from pos_system import data_manager  # noqa: E402
from pos_system.constants import EmployeeRole, TransactionKind
from pos_system.data_manager import (
    CustomerAccount,
    FlatFileStore,
    Item,
    LineItem,
    RecoveryRecord,
    RentalEntry,
)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nStoreName=Shop\nDataDirectory=Database\n")
    nested = tmp_path / "nested" / "deeper"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "StoreName") == "Corner Store"
    assert parser.get("Files", "StockFile") == "itemDatabase.txt"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_paths_inside_data_directory(tmp_path):
    """File entries should resolve inside DataDirectory, anchored at base_path."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nStoreName=Shop\nDataDirectory=data\n"
        "[Files]\nStockFile=stock.txt\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.data_dir == (tmp_path / "data").resolve()
    assert settings.stock_file == settings.data_dir / "stock.txt"
    assert settings.customer_file == settings.data_dir / "userDatabase.txt"
    assert settings.tax_rate == Decimal("1.06")


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


@pytest.mark.parametrize("raw", ["abc", "0", "-1.06"])
def test_parse_settings_rejects_invalid_tax_rate(tmp_path, raw):
    """TaxRate must be a positive decimal."""

    parser = configparser.ConfigParser()
    parser.read_string(f"[System]\nStoreName=Shop\nDataDirectory=data\n[Pricing]\nTaxRate={raw}\n")
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_settings_route_rentals_to_rental_stock(settings):
    """Rentals reconcile against the rental stock file; sales and returns do not."""

    assert settings.stock_file_for(TransactionKind.RENTAL) == settings.rental_stock_file
    assert settings.stock_file_for(TransactionKind.SALE) == settings.stock_file
    assert settings.stock_file_for(TransactionKind.RETURN) == settings.stock_file
    assert settings.invoice_log_for(TransactionKind.RETURN) == settings.return_invoice_log


# ---------------------------------------------------------------------------
# FlatFileStore
# ---------------------------------------------------------------------------


def test_store_scan_skips_blank_lines(tmp_path):
    """scan should yield stripped, non-blank lines only."""

    path = tmp_path / "records.txt"
    path.write_text("a 1\n\n  b 2  \n")
    assert list(FlatFileStore(path).scan()) == ["a 1", "b 2"]


def test_store_load_missing_file_raises(tmp_path):
    """load should let FileNotFoundError escape."""

    with pytest.raises(FileNotFoundError):
        FlatFileStore(tmp_path / "missing.txt").load()


@pytest.mark.parametrize("read", [lambda store: store.load(), lambda store: list(store.scan())])
def test_store_reads_report_undecodable_bytes_as_os_errors(tmp_path, read):
    """Non UTF-8 content surfaces as an OSError subclass naming the file."""

    path = tmp_path / "records.txt"
    path.write_bytes(b"ok 1\n\xff\xfe garbage\n")
    with pytest.raises(data_manager.UndecodableFileError, match="records.txt") as excinfo:
        read(FlatFileStore(path))
    assert isinstance(excinfo.value, OSError)


def test_store_append_creates_parent_folders(tmp_path):
    """append should create the file and its folders on first use."""

    store = FlatFileStore(tmp_path / "nested" / "log.txt")
    store.append(["one"])
    store.append(["two"])
    assert store.load() == ["one", "two"]


def test_store_replace_leaves_no_temp_file(tmp_path):
    """replace should swap the contents in and clean up after itself."""

    store = FlatFileStore(tmp_path / "records.txt")
    store.replace(["x", "y"])
    assert store.load() == ["x", "y"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["records.txt"]


def test_store_upsert_replaces_then_appends(tmp_path):
    """upsert should replace the keyed line or append a new one."""

    store = FlatFileStore(tmp_path / "records.txt")
    store.replace(["header", "111 a", "222 b"])
    assert store.upsert("111", "111 c") is True
    assert store.upsert("333", "333 d") is False
    assert store.load() == ["header", "111 c", "222 b", "333 d"]


def test_store_delete_is_idempotent(tmp_path):
    """delete should not fail on an absent file."""

    store = FlatFileStore(tmp_path / "records.txt")
    store.delete()
    store.append(["x"])
    store.delete()
    assert not store.exists()


# ---------------------------------------------------------------------------
# Record codecs
# ---------------------------------------------------------------------------


def test_deserialize_item_parses_decimal_price():
    """Stock lines should produce Decimal prices."""

    item = data_manager.deserialize_item("7 Hammer 12.50 4")
    assert item == Item(item_id=7, name="Hammer", unit_price=Decimal("12.50"), stock_count=4)
    assert data_manager.serialize_item(item) == "7 Hammer 12.50 4"


@pytest.mark.parametrize("raw", ["7 Hammer 12.50", "x Hammer 1 1", "7 Hammer abc 1", "7 Hammer NaN 1"])
def test_deserialize_item_rejects_malformed_lines(raw):
    """Malformed stock lines raise ValueError."""

    with pytest.raises(ValueError):
        data_manager.deserialize_item(raw)


def test_deserialize_account_skips_bad_entries():
    """A damaged entry should not hide the rest of the account."""

    account = data_manager.deserialize_account("5551234567 10,01/02/24,false junk 11,01/03/24,true")
    assert account.phone == 5551234567
    assert account.entries == (
        RentalEntry(item_id=10, checkout_date=date(2024, 1, 2), returned=False),
        RentalEntry(item_id=11, checkout_date=date(2024, 1, 3), returned=True),
    )
    assert [entry.item_id for entry in account.outstanding] == [10]


def test_serialize_account_uses_short_dates():
    """Accounts serialize as phone followed by itemId,MM/DD/YY,flag,quantity entries."""

    account = CustomerAccount(
        phone=42,
        entries=(
            RentalEntry(item_id=10, checkout_date=date(2024, 3, 9)),
            RentalEntry(item_id=11, checkout_date=date(2024, 3, 9), returned=True, quantity=4),
        ),
    )
    assert data_manager.serialize_account(account) == "42 10,03/09/24,false,1 11,03/09/24,true,4"


def test_deserialize_rental_entry_reads_quantity_and_legacy_form():
    """Three-field entries stand for one unit; a fourth field is the quantity."""

    assert data_manager.deserialize_rental_entry("10,03/09/24,false").quantity == 1
    assert data_manager.deserialize_rental_entry("10,03/09/24,false,3") == RentalEntry(
        item_id=10, checkout_date=date(2024, 3, 9), quantity=3
    )


@pytest.mark.parametrize("raw", ["10,03/09/24,false,0", "10,03/09/24,false,x", "10,03/09/24,false,1,9"])
def test_deserialize_rental_entry_rejects_bad_quantity(raw):
    """Quantities must be positive integers in the fourth field."""

    with pytest.raises(ValueError):
        data_manager.deserialize_rental_entry(raw)


def test_deserialize_account_rejects_non_numeric_phone():
    """The phone field must be numeric."""

    with pytest.raises(ValueError):
        data_manager.deserialize_account("not-a-phone 10,01/02/24,false")


def test_serialize_recovery_layout():
    """The slot holds the header, the phone line, then item lines."""

    record = RecoveryRecord(kind=TransactionKind.RENTAL, phone=42, lines=((10, 1), (11, 2)), check_in=True)
    assert data_manager.serialize_recovery(record) == ["Rental check-in", "42", "10 1", "11 2"]


def test_deserialize_recovery_tolerates_prefixes_and_bad_lines():
    """Legacy prefixes parse and malformed item lines are skipped."""

    record = data_manager.deserialize_recovery(
        ["Type: RETURN", "Phone number: 5551234567", "1 2", "garbage", "3 x", "4 1"]
    )
    assert record == RecoveryRecord(kind=TransactionKind.RETURN, phone=5551234567, lines=((1, 2), (4, 1)))


def test_deserialize_recovery_sale_without_phone():
    """A sale slot has no phone line; the first item line is not taken for one."""

    record = data_manager.deserialize_recovery(["Sale", "1 2"])
    assert record.phone is None
    assert record.lines == ((1, 2),)


def test_deserialize_recovery_empty_and_unknown_header():
    """An empty slot yields None; an unknown header yields kind None."""

    assert data_manager.deserialize_recovery(["", "  "]) is None
    record = data_manager.deserialize_recovery(["Layaway", "1 1"])
    assert record is not None
    assert record.kind is None
    assert record.lines == ((1, 1),)


def test_format_invoice_ends_with_total_line():
    """Invoices close with the taxed total and a blank separator."""

    lines = [LineItem(item_id=1, name="Widget", unit_price=Decimal("10.00"), quantity=2)]
    block = data_manager.format_invoice(
        TransactionKind.SALE,
        lines,
        subtotal=Decimal("20.00"),
        tax_rate=Decimal("1.06"),
        total=Decimal("21.20"),
        when=datetime(2024, 5, 1, 9, 30),
    )
    assert block[0] == "Sale invoice 2024-05-01 09:30:00"
    assert "1 Widget x2 @ 10.00 = 20.00" in block
    assert block[-2] == "Total with tax: 21.20"
    assert block[-1] == ""


def test_employee_codec_handles_multi_word_names():
    """Employee names may span several tokens."""

    employee = data_manager.deserialize_employee("jdoe Jane Q Doe pw123 Admin")
    assert employee.name == "Jane Q Doe"
    assert employee.password == "pw123"
    assert employee.role is EmployeeRole.ADMIN
    assert data_manager.serialize_employee(employee) == "jdoe Jane Q Doe pw123 Admin"


def test_deserialize_employee_rejects_unknown_role():
    """Unknown roles raise ValueError."""

    with pytest.raises(ValueError):
        data_manager.deserialize_employee("jdoe Jane Doe pw Manager")
