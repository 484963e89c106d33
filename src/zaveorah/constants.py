"""Enumerations and fixed values shared across ZaveOrah modules.

Centralises domain constants so that the persistence adapter, the store, the
business logic layer and the CLI rely on a single source of truth for
identifiers that end up in persisted data.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating config.ini.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Well-known storage key holding the serialized multi-tenant dataset.
APP_DATA_KEY = "zaveOrahMultiBizData"
THEME_KEY = "theme"
LANGUAGE_KEY = "language"

TRIAL_LENGTH_DAYS = 3
LIFETIME_YEARS = 100
CREDIT_INVOICE_TERM_DAYS = 14
EMPLOYEE_PIN_LENGTH = 4

ADMIN_USER_ID = "admin-user"
ADMIN_USER_NAME = "Super Admin"


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a tenant subscription."""

    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    LAPSED = "lapsed"
    PENDING = "pending"
    REJECTED = "rejected"


class SubscriptionTier(str, Enum):
    """Purchasable subscription tiers."""

    LIFETIME = "lifetime"


class UserRole(str, Enum):
    """Roles a tenant user can hold."""

    OWNER = "owner"
    MANAGER = "manager"
    STAFF = "staff"
    EMPLOYEE = "employee"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "cash"
    CREDIT = "credit"
    MOBILE = "mobile"


class ExpenseCategory(str, Enum):
    """Enumerate expense ledger categories."""

    STOCK = "stock"
    RENT = "rent"
    WAGES = "wages"
    UTILITIES = "utilities"
    TRANSPORT = "transport"
    FUEL = "fuel"


class WageType(str, Enum):
    HOURLY = "hourly"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"
    PAID = "paid"


class ContactKind(str, Enum):
    """Discriminates the two contact variants stored by a business."""

    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class StockStatus(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    IN_STOCK = "in_stock"


class Page(str, Enum):
    """Navigable pages of the presentation layer."""

    DASHBOARD = "dashboard"
    SALES = "sales"
    INVENTORY = "inventory"
    CONTACTS = "contacts"
    EMPLOYEES = "employees"
    INVOICING = "invoicing"
    FINANCE = "finance"
    LEARNING = "learning"
    SETTINGS = "settings"


class Capability(str, Enum):
    """Action-level capabilities checked by the business logic layer."""

    CAN_ADD = "canAdd"
    CAN_EDIT = "canEdit"
    CAN_DELETE = "canDelete"
    CAN_MANAGE_USERS = "canManageUsers"
    CAN_VIEW_REPORTS = "canViewReports"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class Language(str, Enum):
    ENGLISH = "en"
    TOK_PISIN = "tp"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "APP_DATA_KEY",
    "THEME_KEY",
    "LANGUAGE_KEY",
    "TRIAL_LENGTH_DAYS",
    "LIFETIME_YEARS",
    "CREDIT_INVOICE_TERM_DAYS",
    "EMPLOYEE_PIN_LENGTH",
    "ADMIN_USER_ID",
    "ADMIN_USER_NAME",
    "SubscriptionStatus",
    "SubscriptionTier",
    "UserRole",
    "PaymentMethod",
    "ExpenseCategory",
    "WageType",
    "InvoiceStatus",
    "ContactKind",
    "StockStatus",
    "Page",
    "Capability",
    "Theme",
    "Language",
    "NotificationChannel",
]
