"""Utility for initializing the POS system data directory.

The module doubles as a script (``python setup_data.py``) and as a library
used by tests or other tooling. It writes the flat files the POS system
reads and, when asked, a matching ``config.ini``.
"""

from __future__ import annotations

import argparse
import configparser
from pathlib import Path
from typing import Mapping, Sequence
import sys

from pos_system.constants import CUSTOMER_LEDGER_HEADER, DEFAULT_TAX_RATE
from pos_system.data_manager import FILE_KEYS

# Initial contents per file; files not listed start empty.
INITIAL_CONTENTS: Mapping[str, Sequence[str]] = {
    "customer_file": [CUSTOMER_LEDGER_HEADER],
    "employee_file": ["admin Store Admin admin Admin"],
}

# Files that only appear once something is written to them.
CREATED_ON_DEMAND = frozenset({
    "recovery_file",
    "sale_invoice_log",
    "rental_invoice_log",
    "return_invoice_log",
    "session_log",
})

CONFIG_FILE = "config.ini"
DEFAULT_DATA_DIRECTORY = "Database"
DEFAULT_STORE_NAME = "Corner Store"


def create_data_files(
    directory: Path,
    *,
    initial_contents: Mapping[str, Sequence[str]] = INITIAL_CONTENTS,
    overwrite: bool = False,
) -> Path:
    """Create the data directory with its stock, customer, coupon and employee files.

    Parameters are overridable to facilitate testing. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if any
    of the files already exists.
    """

    directory = Path(directory).expanduser().resolve()
    targets = {
        attribute: directory / default
        for attribute, (_key, default) in FILE_KEYS.items()
        if attribute not in CREATED_ON_DEMAND
    }

    if not overwrite:
        existing = [path for path in targets.values() if path.exists()]
        if existing:
            raise FileExistsError(f"Refusing to overwrite existing data file: {existing[0]}")

    directory.mkdir(parents=True, exist_ok=True)
    for attribute, path in targets.items():
        lines = initial_contents.get(attribute, [])
        path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")

    return directory


def write_config(
    config_path: Path,
    *,
    data_directory: str = DEFAULT_DATA_DIRECTORY,
    store_name: str = DEFAULT_STORE_NAME,
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` naming every file under ``data_directory``."""

    config_path = Path(config_path).expanduser().resolve()
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {config_path}")

    parser = configparser.ConfigParser()
    parser.optionxform = str  # preserve key case
    parser["System"] = {"StoreName": store_name, "DataDirectory": data_directory}
    parser["Files"] = {key: default for key, default in FILE_KEYS.values()}
    parser["Pricing"] = {"TaxRate": str(DEFAULT_TAX_RATE)}

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    return config_path


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the data directory named by an existing ``config.ini``."""

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    try:
        data_directory = parser.get("System", "DataDirectory")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_path = Path(data_directory)
    if not data_path.is_absolute():
        data_path = (config_path.parent / data_path).resolve()
    return create_data_files(data_path, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the POS system data files")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--write-config",
        action="store_true",
        help="Create a default config.ini at --config before the data files.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing files.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- POS System Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        if args.write_config:
            write_config(config_path, overwrite=args.force)
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --write-config to create a default configuration.")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing files if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write data files: {exc}")
        return 1

    print(f"\n[SUCCESS] Created data files in '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
