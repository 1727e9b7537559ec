"""Tests for the single-slot recovery log."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pos_system.constants import TransactionKind
from pos_system.data_manager import LineItem, RecoveryRecord
from pos_system.recovery import RecoveryLog

from conftest import read_lines, write_lines


@pytest.fixture
def slot(tmp_path) -> RecoveryLog:
    return RecoveryLog(tmp_path / "temp.txt")


def test_write_accepts_line_items_and_pairs(slot):
    """Both cart lines and bare pairs can be written."""

    line = LineItem(item_id=1, name="Widget", unit_price=Decimal("10.00"), quantity=2)
    assert slot.write(TransactionKind.SALE, None, [line, (2, 1)]) is True
    assert read_lines(slot.path) == ["Sale", "1 2", "2 1"]


def test_read_returns_written_record(slot):
    """read should rebuild what write stored."""

    slot.write(TransactionKind.RETURN, 5551234567, [(3, 1)])
    assert slot.read() == RecoveryRecord(kind=TransactionKind.RETURN, phone=5551234567, lines=((3, 1),))


def test_read_missing_or_empty_slot_is_none(slot):
    """No slot, or an empty one, means nothing to recover."""

    assert slot.read() is None
    write_lines(slot.path, [])
    assert slot.read() is None


def test_read_unreadable_slot_is_none(tmp_path):
    """A slot path that cannot be read yields None."""

    (tmp_path / "temp.txt").mkdir()
    assert RecoveryLog(tmp_path / "temp.txt").read() is None


def test_undecodable_slot_reads_as_none(slot):
    """A slot holding non UTF-8 bytes is treated as unreadable, not raised."""

    slot.path.write_bytes(b"Sale\n1 2\n\xe9\xff\n")
    assert slot.read() is None
    assert slot.delete_line(1) is False
    assert slot.exists()


def test_write_overwrites_previous_snapshot(slot):
    """Each write replaces the slot in full."""

    slot.write(TransactionKind.SALE, None, [(1, 1), (2, 1)])
    slot.write(TransactionKind.SALE, None, [(2, 1)])
    assert slot.read().lines == ((2, 1),)


def test_delete_line_keeps_header_phone_and_order(slot):
    """delete_line removes only the first line for the id."""

    write_lines(slot.path, ["Rental check-in", "42", "10 1", "11 1", "10 3"])
    assert slot.delete_line(10) is True
    assert read_lines(slot.path) == ["Rental check-in", "42", "11 1", "10 3"]


def test_delete_line_does_not_match_the_phone_line(slot):
    """A phone number equal to an item id is never removed."""

    write_lines(slot.path, ["Return", "7", "8 1"])
    assert slot.delete_line(7) is False
    assert read_lines(slot.path) == ["Return", "7", "8 1"]


def test_delete_line_absent_slot_or_id(slot):
    """Missing slots and unknown ids return False."""

    assert slot.delete_line(1) is False
    slot.write(TransactionKind.SALE, None, [(1, 1)])
    assert slot.delete_line(2) is False


def test_clear_is_idempotent(slot):
    """clear removes the slot and tolerates repeats."""

    slot.write(TransactionKind.SALE, None, [(1, 1)])
    slot.clear()
    slot.clear()
    assert slot.exists() is False


def test_write_failure_returns_false(tmp_path):
    """A slot that cannot be written reports False."""

    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    assert RecoveryLog(blocker / "temp.txt").write(TransactionKind.SALE, None, [(1, 1)]) is False
