"""Workbook export of the stock and rental ledgers."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font

from . import log
from .data_manager import CustomerAccount, Item


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    "Stock": ["ItemID", "ItemName", "UnitPrice", "StockCount"],
    "OutstandingRentals": ["Phone", "ItemID", "CheckoutDate", "DaysOutstanding", "Quantity"],
}


def export_workbook(
    destination: Path,
    items: Sequence[Item],
    accounts: Sequence[CustomerAccount],
    *,
    as_of: Optional[date] = None,
) -> Path:
    """Write a snapshot of stock and outstanding rentals to ``destination``.

    Args:
        destination (Path): Target ``.xlsx`` path; parent folders are created.
        items (Sequence[Item]): Stock records for the ``Stock`` sheet.
        accounts (Sequence[CustomerAccount]): Customer accounts; only
            unreturned entries reach the ``OutstandingRentals`` sheet.
        as_of (date | None): Day used to compute ``DaysOutstanding``.

    Returns:
        Path: The resolved destination.

    Raises:
        OSError: If the workbook cannot be saved.
    """

    as_of = as_of or date.today()
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in SHEET_COLUMNS.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    stock_sheet = workbook["Stock"]
    for item in items:
        stock_sheet.append([item.item_id, item.name, float(item.unit_price), item.stock_count])

    rentals_sheet = workbook["OutstandingRentals"]
    rental_rows = 0
    for account in accounts:
        for entry in account.outstanding:
            rentals_sheet.append(
                [
                    account.phone,
                    entry.item_id,
                    entry.checkout_date,
                    max(0, (as_of - entry.checkout_date).days),
                    entry.quantity,
                ]
            )
            rental_rows += 1

    workbook.save(destination)
    log.info(
        "Exported %d stock record(s) and %d outstanding rental(s) to '%s'",
        len(items),
        rental_rows,
        destination,
    )
    return destination
