"""Persistence adapter for ZaveOrah.

This module provides low-level helpers that read from and write to the local
key-value storage file. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Storage lifecycle: a JSON-backed key-value file standing in for the
   browser local storage of the original application.
3. Store (de)serialization: turning the multi-tenant :class:`~.models.Store`
   into the persisted camelCase layout and back, including migration of
   legacy payloads and recovery from corrupt ones.
4. Workbook export: an openpyxl snapshot of every tenant for administrators.
"""


from __future__ import annotations

import configparser
import json
import os
import tempfile
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import (
    APP_DATA_KEY,
    LIFETIME_YEARS,
    ContactKind,
    ExpenseCategory,
    InvoiceStatus,
    Language,
    PaymentMethod,
    SubscriptionStatus,
    SubscriptionTier,
    Theme,
    UserRole,
    WageType,
)
from .errors import CorruptDataError
from .models import (
    AttendanceRecord,
    Business,
    BusinessData,
    BusinessProfile,
    Contact,
    Employee,
    Expense,
    Invoice,
    InvoiceItem,
    Loan,
    LoanRepayment,
    Payslip,
    Product,
    Sale,
    SavingGoal,
    Store,
    User,
    empty_store,
)


CONFIG_FILE_NAME = "config.ini"

CORRUPT_DATA_WARNING = (
    "Warning: There was an issue loading your saved data. A backup has been created. "
    "The application will now start with fresh data. Please contact support if you "
    "need to recover your data."
)
BACKUP_FAILED_WARNING = (
    "Critical Error: Could not load your saved data, and also failed to create a backup. "
    "The application will now start with fresh data. Your previous data might be lost."
)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    storage_key: str
    schema_version: str
    admin_password: str
    default_theme: Theme = Theme.LIGHT
    default_language: Language = Language.ENGLISH


@dataclass(frozen=True)
class LoadResult:
    """Outcome of :func:`load_store`.

    ``warning`` carries the one-time, user-visible message produced when the
    persisted payload had to be discarded; it is ``None`` for clean loads.
    """

    store: Store
    warning: Optional[str] = None
    backup_key: Optional[str] = None


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
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
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
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration
            data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(interpolation=None)
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are anchored to ``base_path`` (or the
    current working directory) and resolved to an absolute path. The
    ``[Defaults]`` section is optional; ``StorageKey`` falls back to
    :data:`~.constants.APP_DATA_KEY`.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing, or a default
            theme/language is not recognised.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
        admin_password = parser.get("Admin", "Password")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    storage_key = parser.get("System", "StorageKey", fallback=APP_DATA_KEY)
    try:
        default_theme = Theme(parser.get("Defaults", "Theme", fallback=Theme.LIGHT.value))
        default_language = Language(parser.get("Defaults", "Language", fallback=Language.ENGLISH.value))
    except ValueError as exc:
        raise KeyError(f"Invalid configuration default: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        storage_key=storage_key,
        schema_version=schema_version,
        admin_password=admin_password,
        default_theme=default_theme,
        default_language=default_language,
    )


class LocalStorage:
    """Synchronous key-value storage persisted as one JSON document.

    Keys and values are strings, mirroring browser local storage. Every
    :meth:`set_item` and :meth:`remove_item` rewrites the file atomically so a
    crash mid-write never leaves a truncated document behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser().resolve()
        # Set when an unreadable file had to be moved aside on open.
        self.recovered_from: Optional[Path] = None
        self._items: Dict[str, str] = self._read_items()

    def _read_items(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_bytes().decode("utf-8")
            items = json.loads(raw) if raw.strip() else {}
        except (UnicodeDecodeError, json.JSONDecodeError):
            items = None
        if not isinstance(items, dict) or not all(isinstance(v, str) for v in items.values()):
            self.recovered_from = self._quarantine()
            return {}
        return {str(key): value for key, value in items.items()}

    def _quarantine(self) -> Path:
        stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")
        quarantine = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        suffix = 2
        while quarantine.exists():
            quarantine = self.path.with_name(f"{self.path.name}.corrupt-{stamp}-{suffix}")
            suffix += 1
        log.error("Storage file '%s' is unreadable; moved aside to '%s'", self.path, quarantine)
        os.replace(self.path, quarantine)
        return quarantine

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        updated = dict(self._items)
        updated[key] = value
        self._write(updated)
        self._items = updated

    def remove_item(self, key: str) -> None:
        if key not in self._items:
            return
        updated = {k: v for k, v in self._items.items() if k != key}
        self._write(updated)
        self._items = updated

    def keys(self) -> List[str]:
        return list(self._items)

    def _write(self, items: Mapping[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(items, handle, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def open_storage(data_file: Path) -> LocalStorage:
    """Open (or lazily create) the key-value storage file at ``data_file``."""

    return LocalStorage(data_file)


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def backup_key_for(key: str, when: datetime) -> str:
    """Return the storage key that receives an unreadable payload."""

    return f"{key}_backup_{when.isoformat()}"


def load_store(
    storage: LocalStorage,
    key: str = APP_DATA_KEY,
    *,
    now: Optional[datetime] = None,
) -> LoadResult:
    """Read the multi-tenant store from ``storage``; never raises.

    Missing payloads yield an empty store. Payloads that fail to parse or
    validate are copied verbatim to a timestamped backup key and replaced by an
    empty store, and the returned :class:`LoadResult` carries the warning the
    presentation layer must show once.

    Args:
        storage (LocalStorage): Key-value storage holding the payload.
        key (str): Storage key of the serialized store.
        now (datetime | None): Clock reading used for migration and backup
            naming. Defaults to the current UTC time.

    Returns:
        LoadResult: The loaded (or fresh) store and an optional warning.
    """

    now = now or datetime.now(UTC)
    raw = storage.get_item(key)
    if raw is None and storage.recovered_from is not None:
        log.warning("Storage file was unreadable and preserved at '%s'", storage.recovered_from)
        return LoadResult(store=empty_store(), warning=CORRUPT_DATA_WARNING)
    if raw is None:
        log.info("No persisted data under '%s'; starting with an empty store", key)
        return LoadResult(store=empty_store())

    try:
        store = parse_store_payload(raw, now=now)
    except CorruptDataError as exc:
        log.error("Failed to load persisted data under '%s': %s", key, exc)
        backup_key = backup_key_for(key, now)
        try:
            storage.set_item(backup_key, raw)
        except OSError as backup_error:
            log.error("Failed to save backup of corrupted data: %s", backup_error)
            return LoadResult(store=empty_store(), warning=BACKUP_FAILED_WARNING)
        log.warning("Corrupted payload preserved under '%s'", backup_key)
        return LoadResult(store=empty_store(), warning=CORRUPT_DATA_WARNING, backup_key=backup_key)

    log.info("Loaded %d businesses from '%s'", len(store.businesses), key)
    return LoadResult(store=store)


def save_store(storage: LocalStorage, key: str, store: Store) -> bool:
    """Serialize ``store`` and write it under ``key``.

    Write failures are logged and reported through the return value; the
    in-memory store remains authoritative for the running session.
    """

    try:
        storage.set_item(key, dump_store(store))
    except (OSError, TypeError, ValueError) as exc:
        log.error("Failed to save data under '%s': %s", key, exc)
        return False
    log.debug("Persisted %d businesses under '%s'", len(store.businesses), key)
    return True


def dump_store(store: Store) -> str:
    return json.dumps(serialize_store(store), ensure_ascii=False)


def parse_store_payload(raw: str, *, now: datetime) -> Store:
    """Parse, migrate and deserialize a persisted payload.

    Raises:
        CorruptDataError: If the payload is not JSON, lacks ``businesses`` or
            ``data``, or contains records that cannot be deserialized.
    """

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptDataError(f"Saved data is not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict) or "businesses" not in parsed or "data" not in parsed:
        raise CorruptDataError("Saved data is missing required properties ('businesses' or 'data').")
    if not isinstance(parsed["businesses"], list) or not isinstance(parsed["data"], dict):
        raise CorruptDataError("Saved data has malformed 'businesses' or 'data' properties.")

    migrated = migrate_payload(parsed, now=now)
    try:
        return deserialize_store(migrated)
    except (KeyError, TypeError, ValueError, AttributeError, InvalidOperation) as exc:
        raise CorruptDataError(f"Saved data contains an invalid record: {exc!r}") from exc


def migrate_payload(payload: Mapping[str, Any], *, now: datetime) -> Dict[str, Any]:
    """Return a migrated copy of a raw payload without touching the input.

    Businesses persisted before subscriptions existed carry no
    ``subscriptionStatus``; they are grandfathered to an active lifetime plan
    expiring :data:`~.constants.LIFETIME_YEARS` years from ``now``.
    """

    businesses: List[Any] = []
    for raw_business in payload["businesses"]:
        if isinstance(raw_business, dict) and not raw_business.get("subscriptionStatus"):
            log.info("Grandfathering legacy business '%s' to a lifetime plan", raw_business.get("id"))
            raw_business = {
                **raw_business,
                "subscriptionStatus": SubscriptionStatus.ACTIVE.value,
                "subscriptionTier": SubscriptionTier.LIFETIME.value,
                "subscriptionExpiry": add_years(now, LIFETIME_YEARS).isoformat(),
            }
        businesses.append(raw_business)
    return {**payload, "businesses": businesses}


def add_years(moment: datetime, years: int) -> datetime:
    """Shift ``moment`` by whole calendar years, clamping 29 February."""

    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _decimal(raw: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise TypeError(f"Expected a number, got {raw!r}")
    return Decimal(str(raw))


def _decimal_text(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _datetime(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    parsed = datetime.fromisoformat(str(raw))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _datetime_text(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _date(raw: Any) -> Optional[date]:
    if raw is None or raw == "":
        return None
    return date.fromisoformat(str(raw)[:10])


def _date_text(value: Optional[date]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _optional_enum(enum_type: Callable[[Any], Any], raw: Any) -> Any:
    return None if raw is None or raw == "" else enum_type(raw)


def _compact(record: Dict[str, Any]) -> Dict[str, Any]:
    """Drop ``None`` values so optional fields are omitted like the original layout."""

    return {key: value for key, value in record.items() if value is not None}


def _records(raw: Any, name: str) -> Sequence[Mapping[str, Any]]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise TypeError(f"Collection '{name}' must be a list")
    return raw


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_business(record: Business) -> Dict[str, Any]:
    return _compact({
        "id": record.id,
        "name": record.name,
        "ownerEmail": record.owner_email,
        "ownerPhone": record.owner_phone,
        "subscriptionStatus": record.subscription_status.value,
        "subscriptionTier": record.subscription_tier.value if record.subscription_tier else None,
        "subscriptionExpiry": _datetime_text(record.subscription_expiry),
        "trialStartDate": _datetime_text(record.trial_start_date),
        "hasBeenNotifiedOfApproval": record.has_been_notified_of_approval,
        "pendingSubscriptionTier": (
            record.pending_subscription_tier.value if record.pending_subscription_tier else None
        ),
        "pendingPaymentAmount": _decimal_text(record.pending_payment_amount),
        "pendingPaymentReceipt": record.pending_payment_receipt,
        "rejectionReason": record.rejection_reason,
    })


def serialize_user(record: User) -> Dict[str, Any]:
    return _compact({
        "id": record.id,
        "name": record.name,
        "password": record.password,
        "pin": record.pin,
        "role": record.role.value,
        "employeeId": record.employee_id,
    })


def serialize_sale(record: Sale) -> Dict[str, Any]:
    return {
        "id": record.id,
        "date": _date_text(record.date),
        "customerName": record.customer_name,
        "amount": _decimal_text(record.amount),
        "paymentMethod": record.payment_method.value,
        "createdBy": record.created_by,
    }


def serialize_expense(record: Expense) -> Dict[str, Any]:
    return _compact({
        "id": record.id,
        "date": _date_text(record.date),
        "category": record.category.value,
        "amount": _decimal_text(record.amount),
        "receipt": record.receipt,
        "createdBy": record.created_by,
    })


def serialize_product(record: Product) -> Dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "stock": record.stock,
        "alertLevel": record.alert_level,
        "purchasePrice": _decimal_text(record.purchase_price),
        "sellingPrice": _decimal_text(record.selling_price),
        "createdBy": record.created_by,
    }


def serialize_contact(record: Contact) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": record.id,
        "kind": record.kind.value,
        "name": record.name,
        "contact": record.contact,
    }
    if record.is_customer:
        payload["creditBalance"] = _decimal_text(record.credit_balance)
        if record.due_date is not None:
            payload["dueDate"] = _date_text(record.due_date)
    else:
        payload["paymentDue"] = _decimal_text(record.payment_due)
    return payload


def serialize_employee(record: Employee) -> Dict[str, Any]:
    return _compact({
        "id": record.id,
        "name": record.name,
        "position": record.position,
        "wageRate": _decimal_text(record.wage_rate),
        "wageType": record.wage_type.value,
        "reportsTo": record.reports_to,
    })


def serialize_attendance(record: AttendanceRecord) -> Dict[str, Any]:
    return _compact({
        "id": record.id,
        "employeeId": record.employee_id,
        "clockIn": _datetime_text(record.clock_in),
        "clockOut": _datetime_text(record.clock_out),
    })


def serialize_payslip(record: Payslip) -> Dict[str, Any]:
    return {
        "id": record.id,
        "employeeId": record.employee_id,
        "period": record.period,
        "totalHours": _decimal_text(record.total_hours),
        "totalPay": _decimal_text(record.total_pay),
        "generatedDate": _date_text(record.generated_date),
    }


def serialize_invoice(record: Invoice) -> Dict[str, Any]:
    return _compact({
        "id": record.id,
        "invoiceNumber": record.invoice_number,
        "customerId": record.customer_id,
        "customerName": record.customer_name,
        "issueDate": _date_text(record.issue_date),
        "dueDate": _date_text(record.due_date),
        "items": [
            {
                "description": item.description,
                "quantity": _decimal_text(item.quantity),
                "unitPrice": _decimal_text(item.unit_price),
            }
            for item in record.items
        ],
        "total": _decimal_text(record.total),
        "status": record.status.value,
        "notes": record.notes,
    })


def serialize_loan(record: Loan) -> Dict[str, Any]:
    return {
        "id": record.id,
        "lender": record.lender,
        "initialAmount": _decimal_text(record.initial_amount),
        "dateTaken": _date_text(record.date_taken),
        "repayments": [
            {"id": repayment.id, "date": _date_text(repayment.date), "amount": _decimal_text(repayment.amount)}
            for repayment in record.repayments
        ],
    }


def serialize_saving_goal(record: SavingGoal) -> Dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "targetAmount": _decimal_text(record.target_amount),
        "currentAmount": _decimal_text(record.current_amount),
    }


def serialize_profile(record: BusinessProfile) -> Dict[str, Any]:
    return {
        "name": record.name,
        "logo": record.logo,
        "address": record.address,
        "contact": record.contact,
    }


def serialize_business_data(record: BusinessData) -> Dict[str, Any]:
    return {
        "users": [serialize_user(item) for item in record.users],
        "sales": [serialize_sale(item) for item in record.sales],
        "expenses": [serialize_expense(item) for item in record.expenses],
        "products": [serialize_product(item) for item in record.products],
        "customers": [serialize_contact(item) for item in record.customers],
        "suppliers": [serialize_contact(item) for item in record.suppliers],
        "employees": [serialize_employee(item) for item in record.employees],
        "attendance": [serialize_attendance(item) for item in record.attendance],
        "payslips": [serialize_payslip(item) for item in record.payslips],
        "invoices": [serialize_invoice(item) for item in record.invoices],
        "loans": [serialize_loan(item) for item in record.loans],
        "savingGoals": [serialize_saving_goal(item) for item in record.saving_goals],
        "businessProfile": serialize_profile(record.business_profile),
    }


def serialize_store(store: Store) -> Dict[str, Any]:
    """Convert the store into the persisted ``{businesses, data}`` layout."""

    return {
        "businesses": [serialize_business(business) for business in store.businesses],
        "data": {
            business_id: serialize_business_data(business_data)
            for business_id, business_data in store.data.items()
        },
    }


# ---------------------------------------------------------------------------
# Deserialization
# ---------------------------------------------------------------------------


def deserialize_business(raw: Mapping[str, Any]) -> Business:
    return Business(
        id=str(raw["id"]),
        name=str(raw["name"]),
        owner_email=raw.get("ownerEmail") or None,
        owner_phone=raw.get("ownerPhone") or None,
        subscription_status=SubscriptionStatus(raw["subscriptionStatus"]),
        subscription_tier=_optional_enum(SubscriptionTier, raw.get("subscriptionTier")),
        subscription_expiry=_datetime(raw.get("subscriptionExpiry")),
        trial_start_date=_datetime(raw.get("trialStartDate")),
        has_been_notified_of_approval=raw.get("hasBeenNotifiedOfApproval"),
        pending_subscription_tier=_optional_enum(SubscriptionTier, raw.get("pendingSubscriptionTier")),
        pending_payment_amount=_decimal(raw.get("pendingPaymentAmount"), default=None),
        pending_payment_receipt=raw.get("pendingPaymentReceipt"),
        rejection_reason=raw.get("rejectionReason"),
    )


def deserialize_user(raw: Mapping[str, Any]) -> User:
    return User(
        id=str(raw["id"]),
        name=str(raw["name"]),
        role=UserRole(raw["role"]),
        password=raw.get("password"),
        pin=None if raw.get("pin") is None else str(raw["pin"]),
        employee_id=raw.get("employeeId"),
    )


def deserialize_sale(raw: Mapping[str, Any]) -> Sale:
    return Sale(
        id=str(raw["id"]),
        date=_date(raw["date"]),
        customer_name=str(raw.get("customerName", "")),
        amount=_decimal(raw["amount"]),
        payment_method=PaymentMethod(raw["paymentMethod"]),
        created_by=str(raw.get("createdBy", "")),
    )


def deserialize_expense(raw: Mapping[str, Any]) -> Expense:
    return Expense(
        id=str(raw["id"]),
        date=_date(raw["date"]),
        category=ExpenseCategory(raw["category"]),
        amount=_decimal(raw["amount"]),
        receipt=raw.get("receipt"),
        created_by=str(raw.get("createdBy", "")),
    )


def deserialize_product(raw: Mapping[str, Any]) -> Product:
    return Product(
        id=str(raw["id"]),
        name=str(raw["name"]),
        stock=int(raw.get("stock", 0)),
        alert_level=int(raw.get("alertLevel", 0)),
        purchase_price=_decimal(raw.get("purchasePrice")),
        selling_price=_decimal(raw.get("sellingPrice")),
        created_by=str(raw.get("createdBy", "")),
    )


def deserialize_contact(raw: Mapping[str, Any], kind: ContactKind) -> Contact:
    """Build a :class:`Contact`, tagging it with the collection it came from."""

    return Contact(
        id=str(raw["id"]),
        kind=kind,
        name=str(raw["name"]),
        contact=str(raw.get("contact", "")),
        credit_balance=_decimal(raw.get("creditBalance")) if kind is ContactKind.CUSTOMER else Decimal("0"),
        due_date=_date(raw.get("dueDate")) if kind is ContactKind.CUSTOMER else None,
        payment_due=_decimal(raw.get("paymentDue")) if kind is ContactKind.SUPPLIER else Decimal("0"),
    )


def deserialize_employee(raw: Mapping[str, Any]) -> Employee:
    return Employee(
        id=str(raw["id"]),
        name=str(raw["name"]),
        position=str(raw.get("position", "")),
        wage_rate=_decimal(raw.get("wageRate")),
        wage_type=WageType(raw.get("wageType", WageType.HOURLY.value)),
        reports_to=raw.get("reportsTo") or None,
    )


def deserialize_attendance(raw: Mapping[str, Any]) -> AttendanceRecord:
    return AttendanceRecord(
        id=str(raw["id"]),
        employee_id=str(raw["employeeId"]),
        clock_in=_datetime(raw["clockIn"]),
        clock_out=_datetime(raw.get("clockOut")),
    )


def deserialize_payslip(raw: Mapping[str, Any]) -> Payslip:
    return Payslip(
        id=str(raw["id"]),
        employee_id=str(raw["employeeId"]),
        period=str(raw["period"]),
        total_hours=_decimal(raw.get("totalHours")),
        total_pay=_decimal(raw.get("totalPay")),
        generated_date=_date(raw["generatedDate"]),
    )


def deserialize_invoice(raw: Mapping[str, Any]) -> Invoice:
    items = tuple(
        InvoiceItem(
            description=str(item.get("description", "")),
            quantity=_decimal(item.get("quantity")),
            unit_price=_decimal(item.get("unitPrice")),
        )
        for item in _records(raw.get("items"), "items")
    )
    return Invoice(
        id=str(raw["id"]),
        invoice_number=str(raw["invoiceNumber"]),
        customer_id=str(raw.get("customerId", "")),
        customer_name=str(raw.get("customerName", "")),
        issue_date=_date(raw["issueDate"]),
        due_date=_date(raw["dueDate"]),
        items=items,
        total=_decimal(raw.get("total")),
        status=InvoiceStatus(raw["status"]),
        notes=raw.get("notes"),
    )


def deserialize_loan(raw: Mapping[str, Any]) -> Loan:
    repayments = tuple(
        LoanRepayment(id=str(item["id"]), date=_date(item["date"]), amount=_decimal(item["amount"]))
        for item in _records(raw.get("repayments"), "repayments")
    )
    return Loan(
        id=str(raw["id"]),
        lender=str(raw["lender"]),
        initial_amount=_decimal(raw["initialAmount"]),
        date_taken=_date(raw["dateTaken"]),
        repayments=repayments,
    )


def deserialize_saving_goal(raw: Mapping[str, Any]) -> SavingGoal:
    return SavingGoal(
        id=str(raw["id"]),
        name=str(raw["name"]),
        target_amount=_decimal(raw["targetAmount"]),
        current_amount=_decimal(raw.get("currentAmount")),
    )


def deserialize_profile(raw: Optional[Mapping[str, Any]], fallback_name: str) -> BusinessProfile:
    if raw is None:
        return BusinessProfile(name=fallback_name)
    defaults = BusinessProfile(name=fallback_name)
    return BusinessProfile(
        name=str(raw.get("name", fallback_name)),
        logo=str(raw.get("logo", defaults.logo)),
        address=str(raw.get("address", defaults.address)),
        contact=str(raw.get("contact", defaults.contact)),
    )


def deserialize_business_data(raw: Mapping[str, Any], *, fallback_name: str = "") -> BusinessData:
    """Convert one tenant partition; missing collections default to empty."""

    if not isinstance(raw, Mapping):
        raise TypeError("Business data must be an object")
    return BusinessData(
        business_profile=deserialize_profile(raw.get("businessProfile"), fallback_name),
        users=tuple(deserialize_user(item) for item in _records(raw.get("users"), "users")),
        sales=tuple(deserialize_sale(item) for item in _records(raw.get("sales"), "sales")),
        expenses=tuple(deserialize_expense(item) for item in _records(raw.get("expenses"), "expenses")),
        products=tuple(deserialize_product(item) for item in _records(raw.get("products"), "products")),
        customers=tuple(
            deserialize_contact(item, ContactKind.CUSTOMER) for item in _records(raw.get("customers"), "customers")
        ),
        suppliers=tuple(
            deserialize_contact(item, ContactKind.SUPPLIER) for item in _records(raw.get("suppliers"), "suppliers")
        ),
        employees=tuple(deserialize_employee(item) for item in _records(raw.get("employees"), "employees")),
        attendance=tuple(deserialize_attendance(item) for item in _records(raw.get("attendance"), "attendance")),
        payslips=tuple(deserialize_payslip(item) for item in _records(raw.get("payslips"), "payslips")),
        invoices=tuple(deserialize_invoice(item) for item in _records(raw.get("invoices"), "invoices")),
        loans=tuple(deserialize_loan(item) for item in _records(raw.get("loans"), "loans")),
        saving_goals=tuple(
            deserialize_saving_goal(item) for item in _records(raw.get("savingGoals"), "savingGoals")
        ),
    )


def deserialize_store(payload: Mapping[str, Any]) -> Store:
    businesses = tuple(deserialize_business(item) for item in payload["businesses"])
    names = {business.id: business.name for business in businesses}
    data = {
        str(business_id): deserialize_business_data(raw, fallback_name=names.get(str(business_id), ""))
        for business_id, raw in payload["data"].items()
    }
    return Store(businesses=businesses, data=data)


# ---------------------------------------------------------------------------
# Workbook export
# ---------------------------------------------------------------------------


EXPORT_COLUMNS: Mapping[str, Sequence[str]] = {
    "Businesses": ["BusinessID", "Name", "OwnerEmail", "OwnerPhone", "Status", "Tier", "Expiry", "TrialStart"],
    "Users": ["BusinessID", "UserID", "Name", "Role", "EmployeeID"],
    "Sales": ["BusinessID", "SaleID", "Date", "CustomerName", "Amount", "PaymentMethod", "CreatedBy"],
    "Expenses": ["BusinessID", "ExpenseID", "Date", "Category", "Amount", "CreatedBy"],
    "Products": ["BusinessID", "ProductID", "Name", "Stock", "AlertLevel", "PurchasePrice", "SellingPrice"],
    "Contacts": ["BusinessID", "ContactID", "Kind", "Name", "Contact", "CreditBalance", "DueDate", "PaymentDue"],
    "Employees": ["BusinessID", "EmployeeID", "Name", "Position", "WageRate", "WageType", "ReportsTo"],
    "Attendance": ["BusinessID", "RecordID", "EmployeeID", "ClockIn", "ClockOut"],
    "Payslips": ["BusinessID", "PayslipID", "EmployeeID", "Period", "TotalHours", "TotalPay", "Generated"],
    "Invoices": ["BusinessID", "InvoiceID", "Number", "CustomerName", "IssueDate", "DueDate", "Total", "Status"],
    "Loans": ["BusinessID", "LoanID", "Lender", "InitialAmount", "DateTaken", "Outstanding"],
    "SavingGoals": ["BusinessID", "GoalID", "Name", "TargetAmount", "CurrentAmount"],
}


def _export_rows(store: Store) -> Dict[str, List[List[object]]]:
    rows: Dict[str, List[List[object]]] = {name: [] for name in EXPORT_COLUMNS}
    for business in store.businesses:
        rows["Businesses"].append([
            business.id,
            business.name,
            business.owner_email,
            business.owner_phone,
            business.subscription_status.value,
            business.subscription_tier.value if business.subscription_tier else None,
            _datetime_text(business.subscription_expiry),
            _datetime_text(business.trial_start_date),
        ])
    for business_id, data in store.data.items():
        rows["Users"].extend(
            [business_id, u.id, u.name, u.role.value, u.employee_id] for u in data.users
        )
        rows["Sales"].extend(
            [business_id, s.id, s.date, s.customer_name, s.amount, s.payment_method.value, s.created_by]
            for s in data.sales
        )
        rows["Expenses"].extend(
            [business_id, e.id, e.date, e.category.value, e.amount, e.created_by] for e in data.expenses
        )
        rows["Products"].extend(
            [business_id, p.id, p.name, p.stock, p.alert_level, p.purchase_price, p.selling_price]
            for p in data.products
        )
        rows["Contacts"].extend(
            [business_id, c.id, c.kind.value, c.name, c.contact, c.credit_balance, c.due_date, c.payment_due]
            for c in (*data.customers, *data.suppliers)
        )
        rows["Employees"].extend(
            [business_id, e.id, e.name, e.position, e.wage_rate, e.wage_type.value, e.reports_to]
            for e in data.employees
        )
        # Excel cannot hold timezone-aware datetimes, so timestamps go out as ISO text.
        rows["Attendance"].extend(
            [business_id, a.id, a.employee_id, _datetime_text(a.clock_in), _datetime_text(a.clock_out)]
            for a in data.attendance
        )
        rows["Payslips"].extend(
            [business_id, p.id, p.employee_id, p.period, p.total_hours, p.total_pay, p.generated_date]
            for p in data.payslips
        )
        rows["Invoices"].extend(
            [business_id, i.id, i.invoice_number, i.customer_name, i.issue_date, i.due_date, i.total, i.status.value]
            for i in data.invoices
        )
        rows["Loans"].extend(
            [business_id, loan.id, loan.lender, loan.initial_amount, loan.date_taken, loan.outstanding]
            for loan in data.loans
        )
        rows["SavingGoals"].extend(
            [business_id, g.id, g.name, g.target_amount, g.current_amount] for g in data.saving_goals
        )
    return rows


def write_workbook_export(store: Store, destination: Path) -> Path:
    """Write every tenant's records into an ``.xlsx`` workbook.

    One worksheet is created per entity family with a bold header row, in the
    same layout conventions as the storage bootstrap script. Passwords, PINs
    and receipt images are never exported.

    Args:
        store (Store): Store snapshot to export.
        destination (Path): Target workbook path; parent directories are
            created on demand.

    Returns:
        Path: The resolved destination.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    rows = _export_rows(store)
    for sheet_name, columns in EXPORT_COLUMNS.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
        for row in rows[sheet_name]:
            worksheet.append(row)

    workbook.save(dest)
    log.info("Exported %d businesses to workbook '%s'", len(store.businesses), dest)
    return dest


def iter_backup_keys(storage: LocalStorage, key: str = APP_DATA_KEY) -> Iterable[str]:
    """Yield storage keys holding backups of unreadable payloads."""

    prefix = f"{key}_backup_"
    return (candidate for candidate in storage.keys() if candidate.startswith(prefix))
