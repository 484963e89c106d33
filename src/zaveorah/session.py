"""Runtime context and session state shared by the auth and business layers.

The :class:`RuntimeContext` replaces the global application singleton: it is
built once by :func:`load_runtime_context` (or directly in tests) and passed
explicitly to every action. It bundles configuration, the tenant store, the
notification outbox, the clock, and the current :class:`Session`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, LANGUAGE_KEY, THEME_KEY, Language, Theme
from .models import Business, BusinessData, User
from .notifications import Notifier, Outbox
from .store import TenantStore


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Session:
    """Who is signed in, and which screens the gate currently forces."""

    current_business_id: Optional[str] = None
    current_user: Optional[User] = None
    is_admin_mode: bool = False
    subscription_required: bool = False
    is_upgrade_flow: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None


@dataclass
class RuntimeContext:
    """Container for configuration, state and collaborators used by the core."""

    settings: data_manager.ConfigSettings
    store: TenantStore
    outbox: Outbox = field(default_factory=Outbox)
    clock: Clock = utc_now
    session: Session = field(default_factory=Session)
    theme: Theme = Theme.LIGHT
    language: Language = Language.ENGLISH
    load_warning: Optional[str] = None

    def now(self) -> datetime:
        return self.clock()

    @property
    def current_business(self) -> Optional[Business]:
        return self.store.state.find_business(self.session.current_business_id)

    @property
    def current_business_data(self) -> Optional[BusinessData]:
        if self.session.is_admin_mode:
            return None
        return self.store.state.business_data(self.session.current_business_id)


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    clock: Clock = utc_now,
    notifier: Optional[Notifier] = None,
) -> RuntimeContext:
    """Load configuration settings, storage and the persisted store.

    The helper resolves ``config.ini``, parses settings, opens the key-value
    storage file and loads the multi-tenant store through the persistence
    adapter. A corrupt payload never aborts start-up; its warning is kept on
    :attr:`RuntimeContext.load_warning` for the presentation layer to show
    once.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer performs its
            upward search from the current working directory.
        clock (Callable[[], datetime]): Source of timezone-aware "now".
        notifier (Callable | None): Delivery hook for queued notifications.

    Returns:
        RuntimeContext: Fully populated context ready for actions.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    storage = data_manager.open_storage(settings.data_file)
    result = data_manager.load_store(storage, settings.storage_key, now=clock())
    if result.warning:
        log.warning("%s", result.warning)

    theme = _stored_enum(storage, THEME_KEY, Theme, settings.default_theme)
    language = _stored_enum(storage, LANGUAGE_KEY, Language, settings.default_language)
    log.info("Loaded runtime context for storage '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        store=TenantStore(storage, settings.storage_key, result.store),
        outbox=Outbox(notifier),
        clock=clock,
        theme=theme,
        language=language,
        load_warning=result.warning,
    )


def _stored_enum(storage: data_manager.LocalStorage, key: str, enum_type, default):
    raw = storage.get_item(key)
    if raw is None:
        return default
    try:
        return enum_type(raw)
    except ValueError:
        log.warning("Ignoring unknown %s preference '%s'", key, raw)
        return default


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate storage compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Storage schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Storage schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def generate_id(prefix: str, existing: Iterable[str], *, when: datetime) -> str:
    """Generate a sortable identifier that is unique within ``existing``.

    Args:
        prefix (str): Entity designator such as ``"sale"`` or ``"emp"``.
        existing (Iterable[str]): Identifiers already used in the target
            collection.
        when (datetime): Timestamp encoded into the identifier.

    Returns:
        str: ``{prefix}-{YYYYMMDDHHMMSSffffff}``, suffixed with ``-2``, ``-3``
            and so on when two records are created within the same
            microsecond.
    """
    taken = set(existing)
    base = f"{prefix}-{when.strftime('%Y%m%d%H%M%S%f')}"
    candidate = base
    counter = 2
    while candidate in taken:
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate
