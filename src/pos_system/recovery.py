"""Single-slot crash-recovery log for the transaction in progress.

The slot is rewritten in full on every cart mutation; there is no delta log.
One slot exists per data directory, so only one terminal may use it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union

from . import data_manager, log
from .constants import TransactionKind
from .data_manager import FlatFileStore, LineItem, RecoveryRecord


CartLine = Union[LineItem, tuple[int, int]]


def _as_pair(line: CartLine) -> tuple[int, int]:
    if isinstance(line, LineItem):
        return line.item_id, line.quantity
    item_id, quantity = line
    return int(item_id), int(quantity)


class RecoveryLog:
    """File-backed record of at most one in-flight transaction."""

    def __init__(self, path: Path) -> None:
        self.store = FlatFileStore(path)

    @property
    def path(self) -> Path:
        return self.store.path

    def exists(self) -> bool:
        return self.store.exists()

    def write(
        self,
        kind: TransactionKind,
        phone: Optional[int],
        lines: Iterable[CartLine],
        *,
        check_in: bool = False,
    ) -> bool:
        """Overwrite the slot with the given transaction snapshot.

        Args:
            kind (TransactionKind): Kind tag written on the header line.
            phone (int | None): Customer phone, omitted for sales.
            lines (Iterable[LineItem | tuple[int, int]]): Cart entries in
                order.
            check_in (bool): Marks a rental check-in on the header line.

        Returns:
            bool: ``True`` when the slot was written.
        """

        record = RecoveryRecord(
            kind=kind,
            phone=phone,
            lines=tuple(_as_pair(line) for line in lines),
            check_in=check_in,
        )
        try:
            self.store.replace(data_manager.serialize_recovery(record))
        except OSError as exc:
            log.error("Unable to write recovery slot '%s': %s", self.path, exc)
            return False
        return True

    def read(self) -> Optional[RecoveryRecord]:
        """Parse the slot, skipping malformed lines.

        Returns:
            RecoveryRecord | None: The in-flight transaction, or ``None`` when
                the slot is absent, empty, or unreadable.
        """

        try:
            raw_lines = self.store.load()
        except FileNotFoundError:
            return None
        except OSError as exc:
            log.warning("Unable to read recovery slot '%s': %s", self.path, exc)
            return None
        return data_manager.deserialize_recovery(raw_lines)

    def delete_line(self, item_id: int) -> bool:
        """Remove the first item line for ``item_id`` from the slot.

        The header, the phone line, and the order of the remaining lines are
        preserved verbatim.

        Returns:
            bool: ``True`` when a line was removed and the slot rewritten.
        """

        try:
            raw_lines = [line for line in self.store.load() if line.strip()]
        except OSError as exc:
            log.warning("Unable to read recovery slot '%s': %s", self.path, exc)
            return False

        # Line 0 is the header; a phone line never parses as an item line.
        for index in range(1, len(raw_lines)):
            parsed = data_manager.parse_recovery_line(raw_lines[index])
            if parsed is not None and parsed[0] == item_id:
                del raw_lines[index]
                break
        else:
            return False

        try:
            self.store.replace(raw_lines)
        except OSError as exc:
            log.error("Unable to rewrite recovery slot '%s': %s", self.path, exc)
            return False
        return True

    def clear(self) -> None:
        try:
            self.store.delete()
        except OSError as exc:
            log.error("Unable to clear recovery slot '%s': %s", self.path, exc)
