"""Read-side projections over tenant data.

Nothing here mutates state or consults the session. Every function derives
its result from a :class:`~.models.BusinessData` (or the whole
:class:`~.models.Store` for admin views), so the presentation layer can
recompute them on every render.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import ExpenseCategory, InvoiceStatus, PaymentMethod, StockStatus, SubscriptionStatus, UserRole
from .models import (
    AttendanceRecord,
    Business,
    BusinessData,
    Contact,
    Employee,
    Expense,
    Invoice,
    Loan,
    Payslip,
    Product,
    Sale,
    Store,
    User,
)


ZERO = Decimal("0")
RECENT_ACTIVITY_LIMIT = 5


@dataclass(frozen=True)
class DashboardSummary:
    total_sales: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    low_stock_count: int
    total_credit_due: Decimal


@dataclass(frozen=True)
class DailyTotals:
    day: date
    sales: Decimal
    expenses: Decimal


@dataclass(frozen=True)
class SalesReport:
    start: Optional[date]
    end: Optional[date]
    sales: Tuple[Sale, ...]
    total_sales: Decimal
    number_of_sales: int
    average_sale: Decimal
    by_payment_method: Dict[PaymentMethod, Decimal]


@dataclass(frozen=True)
class EmployeeSelfService:
    """What an employee-role user sees about themselves."""

    employee: Optional[Employee]
    attendance: Tuple[AttendanceRecord, ...]
    payslips: Tuple[Payslip, ...]
    is_clocked_in: bool


@dataclass(frozen=True)
class AdminUserRow:
    business_id: str
    business_name: str
    user_id: str
    user_name: str
    role: UserRole


def stock_status(product: Product) -> StockStatus:
    if product.stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if product.stock <= product.alert_level:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def low_stock_products(data: BusinessData) -> List[Product]:
    """Products still in stock but at or below their alert level."""

    return [product for product in data.products if stock_status(product) is StockStatus.LOW_STOCK]


def customers_with_credit(data: BusinessData) -> List[Contact]:
    """Customers owing money, largest balance first."""

    owing = [customer for customer in data.customers if customer.credit_balance > ZERO]
    return sorted(owing, key=lambda customer: customer.credit_balance, reverse=True)


def expense_breakdown(data: BusinessData) -> Dict[ExpenseCategory, Decimal]:
    breakdown: Dict[ExpenseCategory, Decimal] = defaultdict(lambda: ZERO)
    for expense in data.expenses:
        breakdown[expense.category] += expense.amount
    return dict(breakdown)


def dashboard_summary(data: BusinessData) -> DashboardSummary:
    total_sales = sum((sale.amount for sale in data.sales), ZERO)
    total_expenses = sum((expense.amount for expense in data.expenses), ZERO)
    return DashboardSummary(
        total_sales=total_sales,
        total_expenses=total_expenses,
        net_profit=total_sales - total_expenses,
        low_stock_count=len(low_stock_products(data)),
        total_credit_due=sum((customer.credit_balance for customer in data.customers), ZERO),
    )


def daily_series(data: BusinessData, today: date, *, days: int = 7) -> List[DailyTotals]:
    """Per-day sales and expense totals for the ``days`` ending ``today``, oldest first."""

    sales_by_day: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    expenses_by_day: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    for sale in data.sales:
        sales_by_day[sale.date] += sale.amount
    for expense in data.expenses:
        expenses_by_day[expense.date] += expense.amount

    window = [today - timedelta(days=offset) for offset in reversed(range(days))]
    return [DailyTotals(day=day, sales=sales_by_day[day], expenses=expenses_by_day[day]) for day in window]


def recent_activity(data: BusinessData, *, limit: int = RECENT_ACTIVITY_LIMIT) -> List[Sale | Expense]:
    combined: List[Sale | Expense] = [*data.sales, *data.expenses]
    return sorted(combined, key=lambda record: record.date, reverse=True)[:limit]


def sales_report(data: BusinessData, start: Optional[date] = None, end: Optional[date] = None) -> SalesReport:
    """Summarise the sales dated within ``[start, end]``; either bound may be open.

    Args:
        data (BusinessData): Tenant partition to report on.
        start (date | None): First day included, or ``None`` for no lower bound.
        end (date | None): Last day included, or ``None`` for no upper bound.

    Returns:
        SalesReport: Matching sales with their total, count, average and the
            total per payment method. Methods without sales are omitted.
    """
    selected = tuple(
        sale
        for sale in data.sales
        if (start is None or sale.date >= start) and (end is None or sale.date <= end)
    )
    total = sum((sale.amount for sale in selected), ZERO)
    by_method: Dict[PaymentMethod, Decimal] = defaultdict(lambda: ZERO)
    for sale in selected:
        by_method[sale.payment_method] += sale.amount
    return SalesReport(
        start=start,
        end=end,
        sales=selected,
        total_sales=total,
        number_of_sales=len(selected),
        average_sale=total / len(selected) if selected else ZERO,
        by_payment_method=dict(by_method),
    )


def customer_sales(data: BusinessData, customer: Contact) -> List[Sale]:
    if not customer.is_customer:
        return []
    return [sale for sale in data.sales if sale.customer_name == customer.name]


def overdue_invoices(data: BusinessData, today: date) -> List[Invoice]:
    """Unpaid invoices whose due date has passed, whatever their stored status."""

    return [
        invoice
        for invoice in data.invoices
        if invoice.status in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE) and invoice.due_date < today
    ]


def loan_balances(data: BusinessData) -> List[Tuple[Loan, Decimal]]:
    return [(loan, loan.outstanding) for loan in data.loans]


def total_loan_outstanding(data: BusinessData) -> Decimal:
    return sum((loan.outstanding for loan in data.loans), ZERO)


def employee_clock_status(data: BusinessData) -> Dict[str, bool]:
    """Map each employee id to whether they currently have an open attendance record."""

    open_ids = {record.employee_id for record in data.attendance if record.is_open}
    return {employee.id: employee.id in open_ids for employee in data.employees}


def self_service_view(data: BusinessData, user: User) -> EmployeeSelfService:
    employee_id = user.employee_id
    employee = data.find_employee(employee_id) if employee_id else None
    return EmployeeSelfService(
        employee=employee,
        attendance=tuple(r for r in data.attendance if r.employee_id == employee_id),
        payslips=tuple(p for p in data.payslips if p.employee_id == employee_id),
        is_clocked_in=employee_id is not None and data.open_attendance(employee_id) is not None,
    )


def admin_user_overview(store: Store) -> List[AdminUserRow]:
    """Every user of every tenant, in business registration order."""

    rows: List[AdminUserRow] = []
    for business in store.businesses:
        data = store.data.get(business.id)
        if data is None:
            continue
        rows.extend(
            AdminUserRow(
                business_id=business.id,
                business_name=business.name,
                user_id=user.id,
                user_name=user.name,
                role=user.role,
            )
            for user in data.users
        )
    return rows


def pending_approvals(store: Store) -> List[Business]:
    return [business for business in store.businesses if business.subscription_status is SubscriptionStatus.PENDING]


def businesses_by_status(businesses: Sequence[Business]) -> Dict[SubscriptionStatus, int]:
    counts: Dict[SubscriptionStatus, int] = defaultdict(int)
    for business in businesses:
        counts[business.subscription_status] += 1
    return dict(counts)
