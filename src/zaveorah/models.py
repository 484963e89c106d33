"""Domain entities for the ZaveOrah multi-tenant core.

Every entity is an immutable dataclass. Collections owned by a tenant are
stored as tuples on :class:`BusinessData`, and the whole dataset lives in a
single :class:`Store`. Mutations never edit these objects in place; the
business logic layer builds replacements with :func:`dataclasses.replace` and
hands them to the tenant store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

from .constants import (
    ContactKind,
    ExpenseCategory,
    InvoiceStatus,
    PaymentMethod,
    SubscriptionStatus,
    SubscriptionTier,
    UserRole,
    WageType,
)


DEFAULT_PROFILE_ADDRESS = "Waigani, Port Moresby, NCD"
DEFAULT_PROFILE_CONTACT = "contact@business.com"
DEFAULT_PROFILE_LOGO = ""


@dataclass(frozen=True)
class Business:
    """Tenant record and the subscription fields that gate its access."""

    id: str
    name: str
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    owner_email: Optional[str] = None
    owner_phone: Optional[str] = None
    subscription_tier: Optional[SubscriptionTier] = None
    subscription_expiry: Optional[datetime] = None
    trial_start_date: Optional[datetime] = None
    has_been_notified_of_approval: Optional[bool] = None
    pending_subscription_tier: Optional[SubscriptionTier] = None
    pending_payment_amount: Optional[Decimal] = None
    pending_payment_receipt: Optional[str] = None
    rejection_reason: Optional[str] = None


@dataclass(frozen=True)
class User:
    """Login identity scoped to one business."""

    id: str
    name: str
    role: UserRole
    password: Optional[str] = field(default=None, repr=False)
    pin: Optional[str] = field(default=None, repr=False)
    employee_id: Optional[str] = None


@dataclass(frozen=True)
class Sale:
    id: str
    date: date
    customer_name: str
    amount: Decimal
    payment_method: PaymentMethod
    created_by: str


@dataclass(frozen=True)
class Expense:
    id: str
    date: date
    category: ExpenseCategory
    amount: Decimal
    created_by: str
    receipt: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    stock: int
    alert_level: int
    purchase_price: Decimal
    selling_price: Decimal
    created_by: str


@dataclass(frozen=True)
class Contact:
    """Customer or supplier, told apart by :attr:`kind`.

    Customers carry ``credit_balance`` (and optionally ``due_date``); suppliers
    carry ``payment_due``. The unused balance field stays at zero.
    """

    id: str
    kind: ContactKind
    name: str
    contact: str
    credit_balance: Decimal = Decimal("0")
    due_date: Optional[date] = None
    payment_due: Decimal = Decimal("0")

    @property
    def is_customer(self) -> bool:
        return self.kind is ContactKind.CUSTOMER


@dataclass(frozen=True)
class Employee:
    id: str
    name: str
    position: str
    wage_rate: Decimal
    wage_type: WageType = WageType.HOURLY
    reports_to: Optional[str] = None


@dataclass(frozen=True)
class AttendanceRecord:
    id: str
    employee_id: str
    clock_in: datetime
    clock_out: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.clock_out is None


@dataclass(frozen=True)
class Payslip:
    """Pay snapshot; never recomputed after the wage rate changes."""

    id: str
    employee_id: str
    period: str
    total_hours: Decimal
    total_pay: Decimal
    generated_date: date


@dataclass(frozen=True)
class InvoiceItem:
    description: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class Invoice:
    id: str
    invoice_number: str
    customer_id: str
    customer_name: str
    issue_date: date
    due_date: date
    items: Tuple[InvoiceItem, ...]
    total: Decimal
    status: InvoiceStatus
    notes: Optional[str] = None


@dataclass(frozen=True)
class LoanRepayment:
    id: str
    date: date
    amount: Decimal


@dataclass(frozen=True)
class Loan:
    id: str
    lender: str
    initial_amount: Decimal
    date_taken: date
    repayments: Tuple[LoanRepayment, ...] = ()

    @property
    def outstanding(self) -> Decimal:
        return self.initial_amount - sum((r.amount for r in self.repayments), Decimal("0"))


@dataclass(frozen=True)
class SavingGoal:
    id: str
    name: str
    target_amount: Decimal
    current_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class BusinessProfile:
    name: str
    logo: str = field(default=DEFAULT_PROFILE_LOGO, repr=False)
    address: str = DEFAULT_PROFILE_ADDRESS
    contact: str = DEFAULT_PROFILE_CONTACT


@dataclass(frozen=True)
class BusinessData:
    """All collections owned by a single tenant."""

    business_profile: BusinessProfile
    users: Tuple[User, ...] = ()
    sales: Tuple[Sale, ...] = ()
    expenses: Tuple[Expense, ...] = ()
    products: Tuple[Product, ...] = ()
    customers: Tuple[Contact, ...] = ()
    suppliers: Tuple[Contact, ...] = ()
    employees: Tuple[Employee, ...] = ()
    attendance: Tuple[AttendanceRecord, ...] = ()
    payslips: Tuple[Payslip, ...] = ()
    invoices: Tuple[Invoice, ...] = ()
    loans: Tuple[Loan, ...] = ()
    saving_goals: Tuple[SavingGoal, ...] = ()

    def find_user(self, user_id: str) -> Optional[User]:
        return next((user for user in self.users if user.id == user_id), None)

    def find_employee(self, employee_id: str) -> Optional[Employee]:
        return next((emp for emp in self.employees if emp.id == employee_id), None)

    def find_user_by_pin(self, pin: str) -> Optional[User]:
        return next((user for user in self.users if user.pin is not None and user.pin == pin), None)

    def open_attendance(self, employee_id: str) -> Optional[AttendanceRecord]:
        return next(
            (record for record in self.attendance if record.employee_id == employee_id and record.is_open),
            None,
        )


@dataclass(frozen=True)
class Store:
    """Canonical multi-tenant dataset: tenant rows plus their partitions."""

    businesses: Tuple[Business, ...] = ()
    data: Mapping[str, BusinessData] = field(default_factory=dict)

    def find_business(self, business_id: Optional[str]) -> Optional[Business]:
        if business_id is None:
            return None
        return next((biz for biz in self.businesses if biz.id == business_id), None)

    def business_data(self, business_id: Optional[str]) -> Optional[BusinessData]:
        if business_id is None:
            return None
        return self.data.get(business_id)


def create_initial_business_data(business_name: str, owner: Optional[User] = None) -> BusinessData:
    """Return the empty partition a freshly registered tenant starts with."""

    users: Tuple[User, ...] = (owner,) if owner is not None else ()
    return BusinessData(business_profile=BusinessProfile(name=business_name), users=users)


def empty_store() -> Store:
    data: Dict[str, BusinessData] = {}
    return Store(businesses=(), data=data)


__all__ = [
    "Business",
    "User",
    "Sale",
    "Expense",
    "Product",
    "Contact",
    "Employee",
    "AttendanceRecord",
    "Payslip",
    "InvoiceItem",
    "Invoice",
    "LoanRepayment",
    "Loan",
    "SavingGoal",
    "BusinessProfile",
    "BusinessData",
    "Store",
    "create_initial_business_data",
    "empty_store",
]
