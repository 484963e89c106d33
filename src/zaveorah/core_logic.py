"""Business logic layer (Action API) for ZaveOrah.

Every public function takes the :class:`~.session.RuntimeContext` first,
checks the acting session against the role permission table, validates its
input, builds new immutable records and hands a pure updater to the tenant
store. Secondary effects (the invoice raised by a credit sale, the user paired
with a new employee) are applied inside the same update.

Internally the helpers raise :class:`~.errors.BusinessRuleViolation` (or
``ValueError`` for malformed values). The :func:`action` decorator turns those
into the ``None`` or ``False`` result the presentation layer expects, after
logging a warning, so expected refusals never escape as exceptions.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple, TypeVar

from . import data_manager, log, notifications, subscription
from .constants import (
    CREDIT_INVOICE_TERM_DAYS,
    EMPLOYEE_PIN_LENGTH,
    LANGUAGE_KEY,
    THEME_KEY,
    Capability,
    ContactKind,
    ExpenseCategory,
    InvoiceStatus,
    Language,
    Page,
    PaymentMethod,
    SubscriptionTier,
    Theme,
    UserRole,
    WageType,
)
from .errors import (
    BusinessRuleViolation,
    MissingReferenceError,
    PermissionDeniedError,
)
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
    User,
    create_initial_business_data,
)
from .notifications import NotificationRequest
from .permissions import PermissionKey, allowed_pages, has_permission, is_self_service, permission_table
from .session import RuntimeContext, Session, generate_id


CENTS = Decimal("0.01")
MICROSECONDS_PER_HOUR = Decimal(3_600_000_000)
PERIOD_SEPARATOR = " to "
CASH_SALE_CUSTOMER = "Cash Sale"
CREDIT_SALE_DESCRIPTION = "Credit sale"
CREDIT_SALE_NOTES = "Thank you for your business."

_PIN_PATTERN = re.compile(rf"^\d{{{EMPLOYEE_PIN_LENGTH}}}$")

F = TypeVar("F", bound=Callable[..., Any])


def action(refused: Any = None) -> Callable[[F], F]:
    """Decorate an Action API function so rule violations become ``refused``.

    Args:
        refused (Any): Value returned when the wrapped function raises
            :class:`BusinessRuleViolation` or ``ValueError``. ``None`` for
            actions that return the created record, ``False`` for actions that
            report success as a boolean.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(context: RuntimeContext, *args: Any, **kwargs: Any) -> Any:
            try:
                return func(context, *args, **kwargs)
            except (BusinessRuleViolation, ValueError) as exc:
                log.warning("%s refused: %s", func.__name__, exc)
                return refused

        return wrapper  # type: ignore[return-value]

    return decorator


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale."""

    customer_name: str
    amount: Decimal
    payment_method: PaymentMethod
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for recording an expense."""

    category: ExpenseCategory
    amount: Decimal
    receipt: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ProductCommand:
    name: str
    stock: int
    alert_level: int
    purchase_price: Decimal
    selling_price: Decimal


@dataclass(frozen=True)
class InvoiceCommand:
    """User intent for issuing an invoice to an existing customer."""

    customer_id: str
    due_date: date
    items: Sequence[InvoiceItem]
    issue_date: Optional[date] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class EmployeeCommand:
    name: str
    position: str
    wage_rate: Decimal
    wage_type: WageType = WageType.HOURLY
    reports_to: Optional[str] = None


@dataclass(frozen=True)
class UserCommand:
    name: str
    role: UserRole
    password: Optional[str] = None
    pin: Optional[str] = None
    employee_id: Optional[str] = None


@dataclass(frozen=True)
class LoanCommand:
    lender: str
    initial_amount: Decimal
    date_taken: Optional[date] = None


@dataclass(frozen=True)
class SessionView:
    """Everything the presentation layer reads in one snapshot."""

    theme: Theme
    language: Language
    business: Optional[Business]
    user: Optional[User]
    is_admin_mode: bool
    subscription_required: bool
    is_upgrade_flow: bool
    requires_subscription_screen: bool
    show_approval_banner: bool
    can_offer_trial: bool
    allowed_pages: Tuple[Page, ...]
    permissions: dict
    data: BusinessData
    load_warning: Optional[str] = None


# ---------------------------------------------------------------------------
# Guards and validation helpers
# ---------------------------------------------------------------------------


def _resolve_timestamp(context: RuntimeContext, candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` when provided, otherwise the context clock's now."""

    return candidate if candidate is not None else context.now()


def _require_business_session(context: RuntimeContext) -> Tuple[str, User, BusinessData]:
    """Return the active tenant id, acting user and partition.

    Raises:
        PermissionDeniedError: When logged out or in admin mode.
        MissingReferenceError: When the session points at a vanished tenant.
    """

    session = context.session
    if session.is_admin_mode or session.current_business_id is None or session.current_user is None:
        raise PermissionDeniedError("No active business session")
    data = context.store.state.business_data(session.current_business_id)
    if data is None:
        raise MissingReferenceError(f"Unknown business id: {session.current_business_id}")
    return session.current_business_id, session.current_user, data


def _require_permission(context: RuntimeContext, key: PermissionKey) -> Tuple[str, User, BusinessData]:
    business_id, actor, data = _require_business_session(context)
    if not has_permission(actor, key):
        raise PermissionDeniedError(f"Role '{actor.role.value}' may not use '{key.value}'")
    return business_id, actor, data


def _require_admin(context: RuntimeContext) -> None:
    if not context.session.is_admin_mode:
        raise PermissionDeniedError("Admin mode required")


def _require_business(context: RuntimeContext, business_id: Optional[str]) -> Business:
    business = context.store.state.find_business(business_id)
    if business is None:
        raise MissingReferenceError(f"Unknown business id: {business_id}")
    return business


def require_text(value: Optional[str], label: str) -> str:
    """Return ``value`` stripped, refusing empty input.

    Raises:
        ValueError: If ``value`` is ``None`` or blank.
    """
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{label} is required")
    return cleaned


def require_finite_money(amount: Decimal, label: str = "Amount") -> None:
    """Reject NaN and infinite amounts before any comparison is made."""

    if not Decimal(amount).is_finite():
        raise ValueError(f"{label} must be a finite number")


def require_positive_money(amount: Decimal, label: str = "Amount") -> None:
    """Validate that a monetary value is strictly positive.

    Raises:
        ValueError: If ``amount`` is not finite, zero or negative.
    """
    require_finite_money(amount, label)
    if amount <= Decimal("0"):
        raise ValueError(f"{label} must be greater than zero")


def require_nonnegative_money(amount: Decimal, label: str = "Amount") -> None:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValueError: If ``amount`` is not finite or negative.
    """
    require_finite_money(amount, label)
    if amount < Decimal("0"):
        raise ValueError(f"{label} must be zero or positive")


def require_pin(pin: Optional[str], users: Iterable[User], *, ignore_user_id: Optional[str] = None) -> str:
    """Validate a PIN's shape and its uniqueness among ``users``.

    Raises:
        ValueError: If the PIN is not exactly four digits.
        BusinessRuleViolation: If another user already holds the PIN.
    """
    if pin is None or not _PIN_PATTERN.match(pin):
        raise ValueError(f"PIN must be exactly {EMPLOYEE_PIN_LENGTH} digits")
    for user in users:
        if user.id != ignore_user_id and user.pin == pin:
            raise BusinessRuleViolation("PIN is already assigned to another user")
    return pin


def parse_period(period: str) -> Tuple[date, date]:
    """Split ``"YYYY-MM-DD to YYYY-MM-DD"`` into its two calendar days.

    Raises:
        ValueError: If the text is malformed or the start follows the end.
    """
    start_text, separator, end_text = period.partition(PERIOD_SEPARATOR)
    if not separator:
        raise ValueError(f"Payslip period must look like 'YYYY-MM-DD{PERIOD_SEPARATOR}YYYY-MM-DD': {period!r}")
    start, end = date.fromisoformat(start_text.strip()), date.fromisoformat(end_text.strip())
    if start > end:
        raise ValueError(f"Payslip period starts after it ends: {period!r}")
    return start, end


def format_period(start: date, end: date) -> str:
    return f"{start.isoformat()}{PERIOD_SEPARATOR}{end.isoformat()}"


def _ids(records: Iterable[Any]) -> Iterable[str]:
    return (record.id for record in records)


def _owner_count(users: Iterable[User]) -> int:
    return sum(1 for user in users if user.role is UserRole.OWNER)


def _replace_record(records: Tuple[Any, ...], updated: Any) -> Tuple[Any, ...]:
    return tuple(updated if record.id == updated.id else record for record in records)


def _find(records: Iterable[Any], record_id: str, label: str) -> Any:
    for record in records:
        if record.id == record_id:
            return record
    raise MissingReferenceError(f"Unknown {label} id: {record_id}")


def _commit(context: RuntimeContext, business_id: str, updater: Callable[[BusinessData], BusinessData]) -> None:
    context.store.update_business_data(business_id, updater)


# ---------------------------------------------------------------------------
# Sales, expenses and inventory
# ---------------------------------------------------------------------------


def build_invoice(
    data: BusinessData,
    *,
    invoice_id: str,
    customer: Contact,
    issue_date: date,
    due_date: date,
    items: Sequence[InvoiceItem],
    today: date,
    notes: Optional[str] = None,
) -> Invoice:
    """Derive number, total and status for a new invoice of ``data``.

    The number is ``{issue year}-{count + 1:03d}`` where ``count`` is the
    number of invoices the tenant already holds. The status is ``overdue``
    when ``due_date`` is already in the past, ``sent`` otherwise.

    Raises:
        ValueError: For an empty item list, non-positive quantities, negative
            prices or a due date before the issue date.
    """
    line_items = tuple(items)
    if not line_items:
        raise ValueError("An invoice needs at least one item")
    for item in line_items:
        require_text(item.description, "Item description")
        require_finite_money(item.quantity, "Item quantity")
        if item.quantity <= Decimal("0"):
            raise ValueError("Item quantity must be greater than zero")
        require_nonnegative_money(item.unit_price, "Unit price")
    if due_date < issue_date:
        raise ValueError("Due date cannot precede the issue date")

    return Invoice(
        id=invoice_id,
        invoice_number=f"{issue_date.year}-{len(data.invoices) + 1:03d}",
        customer_id=customer.id,
        customer_name=customer.name,
        issue_date=issue_date,
        due_date=due_date,
        items=line_items,
        total=sum((item.line_total for item in line_items), Decimal("0")),
        status=InvoiceStatus.OVERDUE if due_date < today else InvoiceStatus.SENT,
        notes=notes,
    )


@action()
def add_sale(context: RuntimeContext, command: SaleCommand) -> Optional[Sale]:
    """Record a sale; a credit sale to a known customer also raises an invoice.

    The customer is matched by exact name. The invoice has a single
    "Credit sale" line for the full amount and is due fourteen days after the
    sale. Unknown customers still get the sale, without an invoice.

    Returns:
        Sale | None: The recorded sale, or ``None`` when refused.
    """
    business_id, actor, data = _require_permission(context, Capability.CAN_ADD)
    require_positive_money(command.amount, "Sale amount")
    if not isinstance(command.payment_method, PaymentMethod):
        raise BusinessRuleViolation(f"Unsupported payment method: {command.payment_method}")
    is_credit = command.payment_method is PaymentMethod.CREDIT
    if is_credit:
        customer_name = require_text(command.customer_name, "Customer name for a credit sale")
    else:
        customer_name = (command.customer_name or "").strip() or CASH_SALE_CUSTOMER

    timestamp = _resolve_timestamp(context, command.timestamp)
    sale = Sale(
        id=generate_id("sale", _ids(data.sales), when=timestamp),
        date=timestamp.date(),
        customer_name=customer_name,
        amount=command.amount,
        payment_method=command.payment_method,
        created_by=actor.name,
    )

    invoice: Optional[Invoice] = None
    customer = next((c for c in data.customers if c.name == customer_name), None) if is_credit else None
    if customer is not None:
        invoice = build_invoice(
            data,
            invoice_id=generate_id("inv", _ids(data.invoices), when=timestamp),
            customer=customer,
            issue_date=sale.date,
            due_date=sale.date + timedelta(days=CREDIT_INVOICE_TERM_DAYS),
            items=(InvoiceItem(CREDIT_SALE_DESCRIPTION, Decimal("1"), command.amount),),
            today=context.now().date(),
            notes=CREDIT_SALE_NOTES,
        )
    elif is_credit:
        log.info("Credit sale for '%s' has no matching customer; no invoice raised", customer_name)

    def updater(current: BusinessData) -> BusinessData:
        updated = replace(current, sales=(sale, *current.sales))
        if invoice is not None:
            updated = replace(updated, invoices=(invoice, *updated.invoices))
        return updated

    _commit(context, business_id, updater)
    log.info(
        "Recorded sale '%s' (amount=%s, method=%s)",
        sale.id,
        sale.amount,
        sale.payment_method.value,
    )
    if invoice is not None:
        log.info("Raised invoice '%s' for credit sale '%s'", invoice.invoice_number, sale.id)
    return sale


@action()
def add_expense(context: RuntimeContext, command: ExpenseCommand) -> Optional[Expense]:
    business_id, actor, data = _require_permission(context, Capability.CAN_ADD)
    require_positive_money(command.amount, "Expense amount")
    if not isinstance(command.category, ExpenseCategory):
        raise BusinessRuleViolation(f"Unsupported expense category: {command.category}")

    timestamp = _resolve_timestamp(context, command.timestamp)
    expense = Expense(
        id=generate_id("exp", _ids(data.expenses), when=timestamp),
        date=timestamp.date(),
        category=command.category,
        amount=command.amount,
        created_by=actor.name,
        receipt=command.receipt or None,
    )
    _commit(context, business_id, lambda current: replace(current, expenses=(expense, *current.expenses)))
    log.info("Recorded expense '%s' (category=%s, amount=%s)", expense.id, expense.category.value, expense.amount)
    return expense


@action()
def add_product(context: RuntimeContext, command: ProductCommand) -> Optional[Product]:
    business_id, actor, data = _require_permission(context, Capability.CAN_ADD)
    name = require_text(command.name, "Product name")
    if command.stock < 0 or command.alert_level < 0:
        raise ValueError("Stock and alert level must be zero or positive")
    require_nonnegative_money(command.purchase_price, "Purchase price")
    require_nonnegative_money(command.selling_price, "Selling price")

    product = Product(
        id=generate_id("prod", _ids(data.products), when=context.now()),
        name=name,
        stock=command.stock,
        alert_level=command.alert_level,
        purchase_price=command.purchase_price,
        selling_price=command.selling_price,
        created_by=actor.name,
    )
    _commit(context, business_id, lambda current: replace(current, products=(product, *current.products)))
    log.info("Added product '%s' (%s, stock=%d)", product.id, product.name, product.stock)
    return product


# ---------------------------------------------------------------------------
# Contacts and invoicing
# ---------------------------------------------------------------------------


@action()
def add_customer(
    context: RuntimeContext,
    name: str,
    contact: str,
    *,
    credit_balance: Decimal = Decimal("0"),
    due_date: Optional[date] = None,
) -> Optional[Contact]:
    """Add a customer; names are unique because credit sales match on them."""

    business_id, _, data = _require_permission(context, Capability.CAN_ADD)
    cleaned = require_text(name, "Customer name")
    require_nonnegative_money(credit_balance, "Credit balance")
    if any(existing.name == cleaned for existing in data.customers):
        raise BusinessRuleViolation(f"A customer named '{cleaned}' already exists")

    customer = Contact(
        id=generate_id("cust", _ids(data.customers), when=context.now()),
        kind=ContactKind.CUSTOMER,
        name=cleaned,
        contact=(contact or "").strip(),
        credit_balance=credit_balance,
        due_date=due_date,
    )
    _commit(context, business_id, lambda current: replace(current, customers=(*current.customers, customer)))
    log.info("Added customer '%s'", customer.id)
    return customer


@action()
def add_supplier(
    context: RuntimeContext,
    name: str,
    contact: str,
    *,
    payment_due: Decimal = Decimal("0"),
) -> Optional[Contact]:
    business_id, _, data = _require_permission(context, Capability.CAN_ADD)
    cleaned = require_text(name, "Supplier name")
    require_nonnegative_money(payment_due, "Payment due")

    supplier = Contact(
        id=generate_id("sup", _ids(data.suppliers), when=context.now()),
        kind=ContactKind.SUPPLIER,
        name=cleaned,
        contact=(contact or "").strip(),
        payment_due=payment_due,
    )
    _commit(context, business_id, lambda current: replace(current, suppliers=(*current.suppliers, supplier)))
    log.info("Added supplier '%s'", supplier.id)
    return supplier


@action()
def request_credit_reminder(context: RuntimeContext, customer_id: str) -> Optional[NotificationRequest]:
    """Queue an SMS reminding a customer of their outstanding balance."""

    _, _, data = _require_permission(context, Page.CONTACTS)
    customer = _find(data.customers, customer_id, "customer")
    if customer.credit_balance <= Decimal("0"):
        raise BusinessRuleViolation(f"Customer '{customer_id}' has no outstanding balance")
    require_text(customer.contact, "Customer contact")
    request = notifications.credit_reminder_sms(customer, data.business_profile)
    context.outbox.enqueue(request)
    return request


@action()
def add_invoice(context: RuntimeContext, command: InvoiceCommand) -> Optional[Invoice]:
    business_id, _, data = _require_permission(context, Capability.CAN_ADD)
    customer = _find(data.customers, command.customer_id, "customer")
    now = context.now()
    invoice = build_invoice(
        data,
        invoice_id=generate_id("inv", _ids(data.invoices), when=now),
        customer=customer,
        issue_date=command.issue_date or now.date(),
        due_date=command.due_date,
        items=command.items,
        today=now.date(),
        notes=command.notes,
    )
    _commit(context, business_id, lambda current: replace(current, invoices=(invoice, *current.invoices)))
    log.info("Issued invoice '%s' to customer '%s' (total=%s)", invoice.invoice_number, customer.id, invoice.total)
    return invoice


@action(refused=False)
def mark_invoice_paid(context: RuntimeContext, invoice_id: str) -> bool:
    business_id, _, data = _require_permission(context, Capability.CAN_EDIT)
    invoice = _find(data.invoices, invoice_id, "invoice")
    if invoice.status is InvoiceStatus.PAID:
        raise BusinessRuleViolation(f"Invoice '{invoice.invoice_number}' is already paid")
    paid = replace(invoice, status=InvoiceStatus.PAID)
    _commit(context, business_id, lambda current: replace(current, invoices=_replace_record(current.invoices, paid)))
    log.info("Marked invoice '%s' as paid", invoice.invoice_number)
    return True


@action(refused=0)
def refresh_overdue_invoices(context: RuntimeContext) -> int:
    """Flip every sent invoice whose due date has passed to ``overdue``.

    Returns:
        int: Number of invoices updated.
    """
    business_id, _, data = _require_business_session(context)
    today = context.now().date()
    stale = {inv.id for inv in data.invoices if inv.status is InvoiceStatus.SENT and inv.due_date < today}
    if not stale:
        return 0

    def updater(current: BusinessData) -> BusinessData:
        invoices = tuple(
            replace(inv, status=InvoiceStatus.OVERDUE) if inv.id in stale else inv for inv in current.invoices
        )
        return replace(current, invoices=invoices)

    _commit(context, business_id, updater)
    log.info("Marked %d invoice(s) overdue", len(stale))
    return len(stale)


# ---------------------------------------------------------------------------
# Settings and users
# ---------------------------------------------------------------------------


@action(refused=False)
def update_business_profile(context: RuntimeContext, profile: BusinessProfile) -> bool:
    business_id, _, _ = _require_permission(context, Page.SETTINGS)
    cleaned = replace(profile, name=require_text(profile.name, "Business name"))
    _commit(context, business_id, lambda current: replace(current, business_profile=cleaned))
    log.info("Updated business profile for '%s'", business_id)
    return True


def _validate_user(data: BusinessData, candidate: User) -> None:
    """Check a new or edited user against the tenant's other users.

    Employee-role users need a PIN and a link to an existing employee that no
    other user is linked to. Every other role signs in with a password.
    """
    require_text(candidate.name, "User name")
    others = [user for user in data.users if user.id != candidate.id]
    if candidate.pin is not None:
        require_pin(candidate.pin, others)
    if candidate.role is UserRole.EMPLOYEE:
        if candidate.employee_id is None:
            raise BusinessRuleViolation("Employee users must be linked to an employee record")
        if data.find_employee(candidate.employee_id) is None:
            raise MissingReferenceError(f"Unknown employee id: {candidate.employee_id}")
        if any(user.employee_id == candidate.employee_id for user in others):
            raise BusinessRuleViolation(f"Employee '{candidate.employee_id}' already has a user")
        if candidate.pin is None:
            raise ValueError("Employee users need a PIN")
    elif not candidate.password:
        raise ValueError(f"A password is required for role '{candidate.role.value}'")


@action()
def add_user(context: RuntimeContext, command: UserCommand) -> Optional[User]:
    business_id, _, data = _require_permission(context, Capability.CAN_MANAGE_USERS)
    user = User(
        id=generate_id("user", _ids(data.users), when=context.now()),
        name=(command.name or "").strip(),
        role=command.role,
        password=command.password or None,
        pin=command.pin or None,
        employee_id=command.employee_id if command.role is UserRole.EMPLOYEE else None,
    )
    _validate_user(data, user)
    _commit(context, business_id, lambda current: replace(current, users=(*current.users, user)))
    log.info("Added user '%s' with role '%s'", user.id, user.role.value)
    return user


@action(refused=False)
def update_user(context: RuntimeContext, user: User) -> bool:
    """Replace a user record; omitted secrets keep their stored values."""

    business_id, actor, data = _require_permission(context, Capability.CAN_MANAGE_USERS)
    existing = _find(data.users, user.id, "user")
    updated = replace(
        user,
        password=user.password if user.password is not None else existing.password,
        pin=user.pin if user.pin is not None else existing.pin,
        employee_id=user.employee_id if user.role is UserRole.EMPLOYEE else None,
    )
    if existing.role is UserRole.OWNER and updated.role is not UserRole.OWNER and _owner_count(data.users) <= 1:
        raise BusinessRuleViolation("Cannot demote the last owner")
    _validate_user(data, updated)

    _commit(context, business_id, lambda current: replace(current, users=_replace_record(current.users, updated)))
    if actor.id == updated.id:
        context.session = replace(context.session, current_user=updated)
    log.info("Updated user '%s'", updated.id)
    return True


@action(refused=False)
def delete_user(context: RuntimeContext, user_id: str) -> bool:
    business_id, actor, data = _require_permission(context, Capability.CAN_MANAGE_USERS)
    if user_id == actor.id:
        raise BusinessRuleViolation("Users cannot delete themselves")
    target = _find(data.users, user_id, "user")
    if target.role is UserRole.OWNER and _owner_count(data.users) <= 1:
        raise BusinessRuleViolation("Cannot delete the last owner")

    _commit(
        context,
        business_id,
        lambda current: replace(current, users=tuple(u for u in current.users if u.id != user_id)),
    )
    log.info("Deleted user '%s'", user_id)
    return True


# ---------------------------------------------------------------------------
# Employees, attendance and payroll
# ---------------------------------------------------------------------------


@action()
def add_employee(context: RuntimeContext, command: EmployeeCommand, pin: str) -> Optional[Employee]:
    """Create an employee together with the employee-role user that clocks in.

    Args:
        context (RuntimeContext): Active runtime context.
        command (EmployeeCommand): Employee details.
        pin (str): Four-digit PIN, unique among the business' users, assigned
            to the paired user.

    Returns:
        Employee | None: The new employee, or ``None`` when refused.
    """
    business_id, _, data = _require_permission(context, Capability.CAN_MANAGE_USERS)
    name = require_text(command.name, "Employee name")
    require_nonnegative_money(command.wage_rate, "Wage rate")
    require_pin(pin, data.users)
    if command.reports_to is not None and data.find_employee(command.reports_to) is None:
        raise MissingReferenceError(f"Unknown employee id: {command.reports_to}")

    now = context.now()
    employee = Employee(
        id=generate_id("emp", _ids(data.employees), when=now),
        name=name,
        position=(command.position or "").strip(),
        wage_rate=command.wage_rate,
        wage_type=command.wage_type,
        reports_to=command.reports_to,
    )
    user = User(
        id=generate_id("user", _ids(data.users), when=now),
        name=name,
        role=UserRole.EMPLOYEE,
        pin=pin,
        employee_id=employee.id,
    )

    _commit(
        context,
        business_id,
        lambda current: replace(
            current,
            employees=(*current.employees, employee),
            users=(*current.users, user),
        ),
    )
    log.info("Added employee '%s' with user '%s'", employee.id, user.id)
    return employee


@action(refused=False)
def delete_employee(context: RuntimeContext, employee_id: str) -> bool:
    """Remove an employee and their linked user.

    Direct reports lose their ``reports_to`` link. Attendance and payslips
    stay as historical records.
    """
    business_id, actor, data = _require_permission(context, Capability.CAN_DELETE)
    _find(data.employees, employee_id, "employee")
    linked = next((user for user in data.users if user.employee_id == employee_id), None)
    if linked is not None and linked.id == actor.id:
        raise BusinessRuleViolation("Users cannot delete their own employee record")

    def updater(current: BusinessData) -> BusinessData:
        employees = tuple(
            replace(emp, reports_to=None) if emp.reports_to == employee_id else emp
            for emp in current.employees
            if emp.id != employee_id
        )
        users = tuple(user for user in current.users if user.employee_id != employee_id)
        return replace(current, employees=employees, users=users)

    _commit(context, business_id, updater)
    log.info("Deleted employee '%s'%s", employee_id, f" and user '{linked.id}'" if linked else "")
    return True


def _employee_for_pin(data: BusinessData, pin: str) -> str:
    user = data.find_user_by_pin(pin)
    if user is None or user.employee_id is None:
        raise BusinessRuleViolation("PIN does not belong to an employee")
    if data.find_employee(user.employee_id) is None:
        raise MissingReferenceError(f"Unknown employee id: {user.employee_id}")
    return user.employee_id


@action(refused=False)
def clock_in(context: RuntimeContext, pin: str) -> bool:
    business_id, _, data = _require_business_session(context)
    employee_id = _employee_for_pin(data, pin)
    if data.open_attendance(employee_id) is not None:
        raise BusinessRuleViolation(f"Employee '{employee_id}' is already clocked in")

    now = context.now()
    record = AttendanceRecord(
        id=generate_id("att", _ids(data.attendance), when=now),
        employee_id=employee_id,
        clock_in=now,
    )
    _commit(context, business_id, lambda current: replace(current, attendance=(*current.attendance, record)))
    log.info("Employee '%s' clocked in", employee_id)
    return True


@action(refused=False)
def clock_out(context: RuntimeContext, pin: str) -> bool:
    business_id, _, data = _require_business_session(context)
    employee_id = _employee_for_pin(data, pin)
    record = data.open_attendance(employee_id)
    if record is None:
        raise BusinessRuleViolation(f"Employee '{employee_id}' is not clocked in")

    closed = replace(record, clock_out=context.now())
    _commit(
        context,
        business_id,
        lambda current: replace(current, attendance=_replace_record(current.attendance, closed)),
    )
    log.info("Employee '%s' clocked out", employee_id)
    return True


def payable_hours(records: Iterable[AttendanceRecord], employee_id: str, start: date, end: date) -> Decimal:
    """Sum the closed attendance of ``employee_id`` inside ``[start, end]``.

    A record counts when it clocked in at or after ``start`` 00:00 UTC and
    clocked out before the day after ``end``. The result is exact; callers
    quantize.
    """
    window_start = datetime.combine(start, time.min, tzinfo=UTC)
    window_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=UTC)
    micros = 0
    for record in records:
        if record.employee_id != employee_id or record.clock_out is None:
            continue
        if record.clock_in >= window_start and record.clock_out < window_end:
            micros += (record.clock_out - record.clock_in) // timedelta(microseconds=1)
    return Decimal(micros) / MICROSECONDS_PER_HOUR


@action()
def generate_payslip(context: RuntimeContext, employee_id: str, period: str) -> Optional[Payslip]:
    """Snapshot an employee's pay for ``period`` at their current wage rate.

    Args:
        context (RuntimeContext): Active runtime context.
        employee_id (str): Employee being paid.
        period (str): ``"YYYY-MM-DD to YYYY-MM-DD"``, both days inclusive.

    Returns:
        Payslip | None: The stored payslip, with hours rounded to 0.01 and pay
            rounded to cents, or ``None`` when refused.
    """
    business_id, _, data = _require_permission(context, Capability.CAN_VIEW_REPORTS)
    employee = _find(data.employees, employee_id, "employee")
    start, end = parse_period(period)

    hours = payable_hours(data.attendance, employee_id, start, end)
    now = context.now()
    payslip = Payslip(
        id=generate_id("slip", _ids(data.payslips), when=now),
        employee_id=employee_id,
        period=format_period(start, end),
        total_hours=hours.quantize(CENTS, rounding=ROUND_HALF_UP),
        total_pay=(hours * employee.wage_rate).quantize(CENTS, rounding=ROUND_HALF_UP),
        generated_date=now.date(),
    )
    _commit(context, business_id, lambda current: replace(current, payslips=(*current.payslips, payslip)))
    log.info(
        "Generated payslip '%s' for employee '%s' (hours=%s, pay=%s)",
        payslip.id,
        employee_id,
        payslip.total_hours,
        payslip.total_pay,
    )
    return payslip


# ---------------------------------------------------------------------------
# Finance
# ---------------------------------------------------------------------------


@action()
def add_loan(context: RuntimeContext, command: LoanCommand) -> Optional[Loan]:
    business_id, _, data = _require_permission(context, Page.FINANCE)
    lender = require_text(command.lender, "Lender")
    require_positive_money(command.initial_amount, "Loan amount")
    now = context.now()
    loan = Loan(
        id=generate_id("loan", _ids(data.loans), when=now),
        lender=lender,
        initial_amount=command.initial_amount,
        date_taken=command.date_taken or now.date(),
    )
    _commit(context, business_id, lambda current: replace(current, loans=(*current.loans, loan)))
    log.info("Recorded loan '%s' from '%s' (amount=%s)", loan.id, loan.lender, loan.initial_amount)
    return loan


@action()
def add_loan_repayment(context: RuntimeContext, loan_id: str, amount: Decimal) -> Optional[LoanRepayment]:
    """Append a repayment; paying more than the outstanding balance is refused."""

    business_id, _, data = _require_permission(context, Page.FINANCE)
    loan = _find(data.loans, loan_id, "loan")
    require_positive_money(amount, "Repayment amount")
    if amount > loan.outstanding:
        raise BusinessRuleViolation(f"Repayment {amount} exceeds outstanding balance {loan.outstanding}")

    now = context.now()
    repayment = LoanRepayment(
        id=generate_id("rep", (r.id for each in data.loans for r in each.repayments), when=now),
        date=now.date(),
        amount=amount,
    )
    repaid = replace(loan, repayments=(*loan.repayments, repayment))
    _commit(context, business_id, lambda current: replace(current, loans=_replace_record(current.loans, repaid)))
    log.info("Recorded repayment '%s' on loan '%s' (amount=%s)", repayment.id, loan_id, amount)
    return repayment


@action()
def add_saving_goal(context: RuntimeContext, name: str, target_amount: Decimal) -> Optional[SavingGoal]:
    business_id, _, data = _require_permission(context, Page.FINANCE)
    require_positive_money(target_amount, "Target amount")
    goal = SavingGoal(
        id=generate_id("sg", _ids(data.saving_goals), when=context.now()),
        name=require_text(name, "Goal name"),
        target_amount=target_amount,
    )
    _commit(context, business_id, lambda current: replace(current, saving_goals=(*current.saving_goals, goal)))
    log.info("Added saving goal '%s' (target=%s)", goal.id, goal.target_amount)
    return goal


@action(refused=False)
def add_contribution_to_saving(context: RuntimeContext, goal_id: str, amount: Decimal) -> bool:
    business_id, _, data = _require_permission(context, Page.FINANCE)
    goal = _find(data.saving_goals, goal_id, "saving goal")
    require_positive_money(amount, "Contribution")
    funded = replace(goal, current_amount=goal.current_amount + amount)
    _commit(
        context,
        business_id,
        lambda current: replace(current, saving_goals=_replace_record(current.saving_goals, funded)),
    )
    log.info("Added %s to saving goal '%s'", amount, goal_id)
    return True


# ---------------------------------------------------------------------------
# Subscription (session-level wrappers)
# ---------------------------------------------------------------------------


def _apply_transition(context: RuntimeContext, business: Business, updated: Business) -> None:
    context.store.update_business(business.id, lambda _: updated)
    log.info(
        "Business '%s' subscription %s -> %s",
        business.id,
        business.subscription_status.value,
        updated.subscription_status.value,
    )


@action(refused=False)
def start_trial(context: RuntimeContext) -> bool:
    business_id, _, _ = _require_business_session(context)
    business = _require_business(context, business_id)
    _apply_transition(context, business, subscription.start_trial(business, context.now()))
    context.session = replace(context.session, subscription_required=False, is_upgrade_flow=False)
    return True


@action(refused=False)
def submit_for_approval(context: RuntimeContext, tier: SubscriptionTier, amount: Decimal, receipt: str) -> bool:
    """Submit proof of payment for admin review and leave the upgrade flow."""

    business_id, _, _ = _require_business_session(context)
    business = _require_business(context, business_id)
    updated = subscription.submit_for_approval(
        business, tier, amount, receipt, upgrade=context.session.is_upgrade_flow
    )
    _apply_transition(context, business, updated)
    context.session = replace(context.session, is_upgrade_flow=False)
    return True


@action(refused=False)
def approve_payment(context: RuntimeContext, business_id: str) -> bool:
    _require_admin(context)
    business = _require_business(context, business_id)
    updated = subscription.approve_payment(business, context.now())
    _apply_transition(context, business, updated)
    request = notifications.approval_email(updated)
    if request is not None:
        context.outbox.enqueue(request)
    return True


@action(refused=False)
def reject_payment(context: RuntimeContext, business_id: str, reason: str) -> bool:
    _require_admin(context)
    business = _require_business(context, business_id)
    cleaned = require_text(reason, "Rejection reason")
    _apply_transition(context, business, subscription.reject_payment(business, cleaned))
    request = notifications.rejection_email(business, cleaned)
    if request is not None:
        context.outbox.enqueue(request)
    return True


@action(refused=False)
def mark_approval_as_notified(context: RuntimeContext, business_id: Optional[str] = None) -> bool:
    """Dismiss the approval banner for the session's business (or any, as admin)."""

    target = business_id or context.session.current_business_id
    if not context.session.is_admin_mode and target != context.session.current_business_id:
        raise PermissionDeniedError("Cannot acknowledge approval for another business")
    business = _require_business(context, target)
    updated = subscription.mark_approval_as_notified(business)
    if updated is not business:
        context.store.update_business(business.id, lambda _: updated)
        log.info("Approval banner dismissed for business '%s'", business.id)
    return True


# ---------------------------------------------------------------------------
# Admin data operations
# ---------------------------------------------------------------------------


@action()
def export_all_data(context: RuntimeContext) -> Optional[str]:
    """Return the whole store serialized exactly as it is persisted."""

    _require_admin(context)
    payload = data_manager.dump_store(context.store.state)
    log.info("Exported data for %d businesses", len(context.store.state.businesses))
    return payload


@action()
def export_workbook(context: RuntimeContext, destination: Path) -> Optional[Path]:
    _require_admin(context)
    try:
        return data_manager.write_workbook_export(context.store.state, destination)
    except OSError as exc:
        log.error("Failed to write workbook export to '%s': %s", destination, exc)
        return None


@action(refused=False)
def wipe_all_data(context: RuntimeContext) -> bool:
    """Erase every tenant and end the admin session. Irreversible."""

    _require_admin(context)
    context.store.reset()
    context.session = Session()
    log.warning("All business data wiped by admin")
    return True


# ---------------------------------------------------------------------------
# Preferences and read surface
# ---------------------------------------------------------------------------


def _persist_preference(context: RuntimeContext, key: str, value: str) -> None:
    try:
        context.store.storage.set_item(key, value)
    except OSError as exc:
        log.error("Failed to save preference '%s': %s", key, exc)


def toggle_theme(context: RuntimeContext) -> Theme:
    context.theme = Theme.DARK if context.theme is Theme.LIGHT else Theme.LIGHT
    _persist_preference(context, THEME_KEY, context.theme.value)
    return context.theme


def set_language(context: RuntimeContext, language: Language) -> Language:
    context.language = Language(language)
    _persist_preference(context, LANGUAGE_KEY, context.language.value)
    return context.language


def _self_service_data(data: BusinessData, user: User) -> BusinessData:
    """Narrow a partition to what an employee may see about themselves."""

    own = user.employee_id
    return replace(
        data,
        users=tuple(u for u in data.users if u.id == user.id),
        employees=tuple(e for e in data.employees if e.id == own),
        attendance=tuple(a for a in data.attendance if a.employee_id == own),
        payslips=tuple(p for p in data.payslips if p.employee_id == own),
    )


def read_view(context: RuntimeContext) -> SessionView:
    """Build the read-only snapshot the presentation layer renders from.

    Admin mode and logged-out sessions see an empty partition. Employees see
    only their own user, employee, attendance and payslip records.
    """
    session = context.session
    business = None if session.is_admin_mode else context.current_business
    data = context.current_business_data
    if data is None:
        data = create_initial_business_data("")
    elif is_self_service(session.current_user):
        data = _self_service_data(data, session.current_user)

    logged_in_tenant = business is not None and session.current_user is not None
    return SessionView(
        theme=context.theme,
        language=context.language,
        business=business,
        user=session.current_user,
        is_admin_mode=session.is_admin_mode,
        subscription_required=session.subscription_required,
        is_upgrade_flow=session.is_upgrade_flow,
        requires_subscription_screen=logged_in_tenant
        and subscription.requires_subscription_screen(
            business,
            subscription_required=session.subscription_required,
            is_upgrade_flow=session.is_upgrade_flow,
        ),
        show_approval_banner=logged_in_tenant and subscription.should_show_approval_banner(business),
        can_offer_trial=subscription.can_offer_trial(business, is_upgrade_flow=session.is_upgrade_flow),
        allowed_pages=tuple(allowed_pages(session.current_user)),
        permissions=permission_table(),
        data=data,
        load_warning=context.load_warning,
    )


__all__ = [
    "action",
    "SaleCommand",
    "ExpenseCommand",
    "ProductCommand",
    "InvoiceCommand",
    "EmployeeCommand",
    "UserCommand",
    "LoanCommand",
    "SessionView",
    "add_sale",
    "add_expense",
    "add_product",
    "add_customer",
    "add_supplier",
    "request_credit_reminder",
    "add_invoice",
    "mark_invoice_paid",
    "refresh_overdue_invoices",
    "update_business_profile",
    "add_user",
    "update_user",
    "delete_user",
    "add_employee",
    "delete_employee",
    "clock_in",
    "clock_out",
    "generate_payslip",
    "add_loan",
    "add_loan_repayment",
    "add_saving_goal",
    "add_contribution_to_saving",
    "start_trial",
    "submit_for_approval",
    "approve_payment",
    "reject_payment",
    "mark_approval_as_notified",
    "export_all_data",
    "export_workbook",
    "wipe_all_data",
    "toggle_theme",
    "set_language",
    "read_view",
]
