"""Shared pytest fixtures and utilities for POS system tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from pos_system import cli, core_logic, data_manager  # noqa: E402
from setup_data import create_data_files, write_config  # noqa: E402

STOCK_LINES = (
    "1 Widget 10.00 5",
    "2 Gadget 4.50 3",
    "3 Gizmo 2.25 0",
)
RENTAL_STOCK_LINES = (
    "10 Drill 10.00 2",
    "11 Ladder 25.00 1",
)
COUPON_CODES = ("SAVE10", "WELCOME")
EMPLOYEE_LINES = (
    "admin Store Admin admin Admin",
    "casey Casey Jones secret Cashier",
)
CUSTOMER_PHONE = 5551234567


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_dir: Path


def write_lines(path: Path, lines: Iterable[str]) -> Path:
    """Replace ``path`` with ``lines``, one per row."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


def read_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/data-directory bundles on demand."""

    def _create_config(*, seed: bool = True, data_directory: str = "Database") -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        config_path = write_config(bundle_dir / "config.ini", data_directory=data_directory)
        data_dir = create_data_files(bundle_dir / data_directory)
        if seed:
            write_lines(data_dir / "itemDatabase.txt", STOCK_LINES)
            write_lines(data_dir / "rentalDatabase.txt", RENTAL_STOCK_LINES)
            write_lines(data_dir / "couponNumber.txt", COUPON_CODES)
            write_lines(data_dir / "employeeDatabase.txt", EMPLOYEE_LINES)
        return ConfigBundle(directory=bundle_dir, config_path=config_path, data_dir=data_dir)

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    """A seeded data directory with its config.ini."""

    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def settings(config_file: Path) -> data_manager.ConfigSettings:
    parser = data_manager.read_config(config_file)
    return data_manager.parse_settings(parser, base_path=config_file.parent)


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    return core_logic.load_runtime_context(config_file)


@pytest.fixture
def sale_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Runtime context whose stock ledger holds the sale stock."""

    assert runtime_context.stock_ledger.load(runtime_context.settings.stock_file)
    return runtime_context


@pytest.fixture
def rental_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Runtime context whose stock ledger holds the rental stock."""

    assert runtime_context.stock_ledger.load(runtime_context.settings.rental_stock_file)
    return runtime_context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pos-cli", description="POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def run_cli(config_file: Path) -> Callable[..., int]:
    """Invoke ``cli.main`` against the seeded config."""

    def _run(*argv: str) -> int:
        return cli.main(["--config", str(config_file), *argv])

    return _run
