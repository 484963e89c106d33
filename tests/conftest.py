"""Shared pytest fixtures and utilities for ZaveOrah tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from zaveorah import auth, constants, data_manager, session  # noqa: E402
from zaveorah.store import TenantStore  # noqa: E402
from setup_storage import create_storage_file  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
ADMIN_PASSWORD = "test-admin-secret"
OWNER_PASSWORD = "owner-pass"
START_MOMENT = datetime(2025, 1, 10, 9, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StorageKey = {storage_key}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Admin]\n"
    "Password = {admin_password}\n\n"
    "[Defaults]\n"
    "Theme = light\n"
    "Language = en\n"
)


class FakeClock:
    """Callable clock whose reading only moves when a test says so."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **delta: float) -> datetime:
        self.moment = self.moment + timedelta(**delta)
        return self.moment

    def set(self, moment: datetime) -> datetime:
        self.moment = moment
        return moment


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    storage_path: Path
    storage_key: str
    schema_version: str
    admin_password: str


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
def storage_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized storage file in a temp folder."""

    def _create_storage(
        *,
        subdir: str | None = None,
        storage_key: str = constants.APP_DATA_KEY,
        filename: str = "zaveorah_storage.json",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        storage_path = base_dir / filename
        create_storage_file(storage_path, storage_key=storage_key, overwrite=True)
        return storage_path

    return _create_storage


@pytest.fixture
def config_factory(tmp_path: Path, storage_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/storage bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        storage_key: str = constants.APP_DATA_KEY,
        admin_password: str = ADMIN_PASSWORD,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        storage_path = storage_factory(subdir=bundle_dir_name, storage_key=storage_key)
        data_file_entry = storage_path.name if make_relative else str(storage_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                storage_key=storage_key,
                schema_version=schema_version,
                admin_password=admin_password,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            storage_path=storage_path,
            storage_key=storage_key,
            schema_version=schema_version,
            admin_password=admin_password,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_MOMENT)


@pytest.fixture
def runtime_context(config_file: Path, clock: FakeClock) -> session.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = session.load_runtime_context(config_file, clock=clock)
    session.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "zaveorah_storage.json",
        storage_key=constants.APP_DATA_KEY,
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings, clock: FakeClock) -> session.RuntimeContext:
    """Assemble a runtime context over a fresh storage file and a fake clock."""

    storage = data_manager.open_storage(settings.data_file)
    return session.RuntimeContext(
        settings=settings,
        store=TenantStore(storage, settings.storage_key),
        clock=clock,
    )


@pytest.fixture
def register(context: session.RuntimeContext) -> Callable[..., tuple]:
    """Register a business and return ``(business, owner_user)``."""

    def _register(name: str = "Kai Bar", owner_name: str = "Kai", email: str | None = "kai@example.com"):
        business = auth.register_business(context, name, owner_name, OWNER_PASSWORD, email, "+675 7000 0000")
        assert business is not None
        owner = auth.get_users_for_business(context, business.id)[0]
        return business, owner

    return _register


@pytest.fixture
def owner_context(context: session.RuntimeContext, register: Callable[..., tuple]) -> session.RuntimeContext:
    """Context with a freshly registered business and its owner signed in."""

    business, owner = register()
    assert auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    return context


@pytest.fixture
def admin_context(context: session.RuntimeContext) -> session.RuntimeContext:
    assert auth.admin_login(context, ADMIN_PASSWORD)
    return context
