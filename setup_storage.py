"""Utility for initializing the ZaveOrah storage file.

The module doubles as a script (``python setup_storage.py``) and as a library
used by tests or other tooling. Shared helpers keep the storage bootstrap
logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence
import sys

from zaveorah import data_manager
from zaveorah.constants import APP_DATA_KEY, EXPECTED_SCHEMA_VERSION
from zaveorah.models import Store, empty_store


CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    storage_key: str
    schema_version: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, exactly as the runtime does.
    """

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return SetupSettings(
        data_file=settings.data_file,
        storage_key=settings.storage_key,
        schema_version=settings.schema_version,
    )


def create_storage_file(
    destination: Path,
    *,
    storage_key: str = APP_DATA_KEY,
    store: Optional[Store] = None,
    overwrite: bool = False,
) -> Path:
    """Create the key-value storage file at ``destination``.

    The file holds a single entry, ``storage_key``, containing ``store``
    (an empty store by default). When ``overwrite`` is ``False`` (the
    default) this function raises ``FileExistsError`` if the target already
    exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists():
        if not overwrite:
            raise FileExistsError(f"Refusing to overwrite existing storage file: {destination}")
        destination.unlink()

    storage = data_manager.open_storage(destination)
    storage.set_item(storage_key, data_manager.dump_store(store if store is not None else empty_store()))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the storage file named by ``config_path``."""

    settings = load_settings(config_path)
    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        raise ValueError(
            f"config.ini declares schema {settings.schema_version}, expected {EXPECTED_SCHEMA_VERSION}"
        )
    return create_storage_file(settings.data_file, storage_key=settings.storage_key, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the ZaveOrah storage file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the storage file if it already exists. All data in it is lost.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- ZaveOrah Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write storage file: {exc}")
        return 1

    print(f"\n[SUCCESS] Created storage file at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
