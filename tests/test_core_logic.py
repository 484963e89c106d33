"""Tests covering the Action API and its guard rails."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

import pytest

from zaveorah import auth, core_logic, data_manager
from zaveorah.constants import (
    LANGUAGE_KEY,
    THEME_KEY,
    ExpenseCategory,
    InvoiceStatus,
    Language,
    NotificationChannel,
    Page,
    PaymentMethod,
    SubscriptionStatus,
    SubscriptionTier,
    Theme,
    UserRole,
)
from zaveorah.core_logic import (
    EmployeeCommand,
    ExpenseCommand,
    InvoiceCommand,
    LoanCommand,
    ProductCommand,
    SaleCommand,
    UserCommand,
)
from zaveorah.errors import BusinessRuleViolation
from zaveorah.models import AttendanceRecord, BusinessProfile, InvoiceItem
from zaveorah.session import Session, generate_id

from conftest import ADMIN_PASSWORD, OWNER_PASSWORD

STAFF_PASSWORD = "staff-pass"


def _data(context):
    return context.current_business_data


def _business(context):
    return context.current_business


def _login_as_new_user(context, role: UserRole, name: str = "Sione"):
    """Add a password user with ``role`` through the owner and sign them in."""

    business_id = context.session.current_business_id
    user = core_logic.add_user(context, UserCommand(name=name, role=role, password=STAFF_PASSWORD))
    assert user is not None
    assert auth.login(context, business_id, user.id, STAFF_PASSWORD)
    return user


def _hire(context, name: str = "Tau", pin: str = "1234", wage: str = "10", **kwargs):
    employee = core_logic.add_employee(
        context,
        EmployeeCommand(name=name, position="Barista", wage_rate=Decimal(wage), **kwargs),
        pin,
    )
    assert employee is not None
    return employee


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def test_actions_refuse_without_a_session(context, register):
    register()
    assert core_logic.add_sale(context, SaleCommand("", Decimal("5"), PaymentMethod.CASH)) is None
    assert core_logic.clock_in(context, "1234") is False
    assert core_logic.refresh_overdue_invoices(context) == 0


def test_admin_mode_has_no_tenant_partition(admin_context, register):
    register()
    assert core_logic.add_sale(admin_context, SaleCommand("", Decimal("5"), PaymentMethod.CASH)) is None
    assert admin_context.current_business_data is None


def test_validation_helpers_raise_value_errors():
    with pytest.raises(ValueError):
        core_logic.require_text("   ", "Name")
    with pytest.raises(ValueError):
        core_logic.require_positive_money(Decimal("0"))
    with pytest.raises(ValueError):
        core_logic.require_pin("12a4", ())
    with pytest.raises(ValueError):
        core_logic.parse_period("2025-01-10 - 2025-01-12")
    with pytest.raises(ValueError):
        core_logic.parse_period("2025-01-12 to 2025-01-10")


def test_generate_id_suffixes_collisions():
    when = datetime(2025, 1, 10, 9, 0, tzinfo=UTC)
    first = generate_id("sale", (), when=when)
    assert first == "sale-20250110090000000000"
    assert generate_id("sale", [first], when=when) == f"{first}-2"
    assert generate_id("sale", [first, f"{first}-2"], when=when) == f"{first}-3"


# ---------------------------------------------------------------------------
# Sales, expenses and inventory
# ---------------------------------------------------------------------------


def test_add_sale_records_newest_first_with_actor(owner_context, clock):
    first = core_logic.add_sale(owner_context, SaleCommand("", Decimal("12.50"), PaymentMethod.CASH))
    clock.advance(minutes=5)
    second = core_logic.add_sale(owner_context, SaleCommand("Mere", Decimal("8"), PaymentMethod.MOBILE))

    sales = _data(owner_context).sales
    assert [s.id for s in sales] == [second.id, first.id]
    assert first.customer_name == core_logic.CASH_SALE_CUSTOMER
    assert first.created_by == "Kai"
    assert first.date == date(2025, 1, 10)
    assert _data(owner_context).invoices == ()


def test_credit_sale_to_known_customer_raises_invoice(owner_context):
    customer = core_logic.add_customer(owner_context, "Mere", "+675 7000 1111")
    sale = core_logic.add_sale(owner_context, SaleCommand("Mere", Decimal("45.50"), PaymentMethod.CREDIT))

    data = _data(owner_context)
    assert data.sales[0] == sale
    [invoice] = data.invoices
    assert invoice.invoice_number == "2025-001"
    assert invoice.customer_id == customer.id
    assert invoice.issue_date == date(2025, 1, 10)
    assert invoice.due_date == date(2025, 1, 24)
    assert invoice.total == Decimal("45.50")
    assert invoice.status is InvoiceStatus.SENT
    assert invoice.items == (InvoiceItem("Credit sale", Decimal("1"), Decimal("45.50")),)
    assert invoice.notes == "Thank you for your business."
    assert data.customers[0].credit_balance == Decimal("0")


def test_credit_sale_to_unknown_customer_records_sale_only(owner_context):
    sale = core_logic.add_sale(owner_context, SaleCommand("Stranger", Decimal("10"), PaymentMethod.CREDIT))
    assert sale is not None
    assert _data(owner_context).invoices == ()


@pytest.mark.parametrize(
    "command",
    [
        SaleCommand("", Decimal("10"), PaymentMethod.CREDIT),
        SaleCommand("Mere", Decimal("0"), PaymentMethod.CASH),
        SaleCommand("Mere", Decimal("-3"), PaymentMethod.CASH),
        SaleCommand("Mere", Decimal("3"), "cheque"),
    ],
)
def test_add_sale_refuses_invalid_input(owner_context, command):
    assert core_logic.add_sale(owner_context, command) is None
    assert _data(owner_context).sales == ()


def test_add_sale_honours_explicit_timestamp(owner_context):
    when = datetime(2024, 12, 31, 23, 0, tzinfo=UTC)
    sale = core_logic.add_sale(owner_context, SaleCommand("", Decimal("1"), PaymentMethod.CASH, timestamp=when))
    assert sale.date == date(2024, 12, 31)
    assert sale.id == "sale-20241231230000000000"


def test_staff_sales_are_attributed_to_staff(owner_context):
    staff = _login_as_new_user(owner_context, UserRole.STAFF)
    sale = core_logic.add_sale(owner_context, SaleCommand("", Decimal("4"), PaymentMethod.CASH))
    assert sale.created_by == staff.name


def test_add_expense_and_product(owner_context):
    expense = core_logic.add_expense(
        owner_context, ExpenseCommand(ExpenseCategory.FUEL, Decimal("60"), receipt="data:image/png;base64,AAA")
    )
    product = core_logic.add_product(
        owner_context, ProductCommand("Coke", 24, 6, Decimal("2.10"), Decimal("3.50"))
    )

    data = _data(owner_context)
    assert data.expenses[0] == expense
    assert expense.receipt.startswith("data:image")
    assert data.products[0] == product
    assert product.created_by == "Kai"


def test_add_product_refuses_negative_stock(owner_context):
    assert core_logic.add_product(owner_context, ProductCommand("Coke", -1, 6, Decimal("1"), Decimal("2"))) is None
    assert core_logic.add_product(owner_context, ProductCommand(" ", 1, 6, Decimal("1"), Decimal("2"))) is None


def test_add_expense_refuses_unknown_category(owner_context):
    assert core_logic.add_expense(owner_context, ExpenseCommand("snacks", Decimal("5"))) is None


@pytest.mark.parametrize("amount", [Decimal("NaN"), Decimal("sNaN"), Decimal("Infinity"), Decimal("-Infinity")])
def test_non_finite_amounts_are_refused(owner_context, amount):
    """NaN and infinite money values are refused rather than raised or stored."""

    assert core_logic.add_sale(owner_context, SaleCommand("", amount, PaymentMethod.CASH)) is None
    assert core_logic.add_expense(owner_context, ExpenseCommand(ExpenseCategory.FUEL, amount)) is None
    assert core_logic.add_product(owner_context, ProductCommand("Coke", 1, 1, amount, Decimal("2"))) is None
    assert core_logic.add_loan(owner_context, LoanCommand("BSP", amount)) is None
    assert core_logic.add_saving_goal(owner_context, "Fridge", amount) is None
    assert core_logic.submit_for_approval(owner_context, SubscriptionTier.LIFETIME, amount, "receipt") is False

    data = _data(owner_context)
    assert (data.sales, data.expenses, data.products, data.loans, data.saving_goals) == ((), (), (), (), ())


def test_non_finite_helpers_raise_value_error():
    with pytest.raises(ValueError):
        core_logic.require_positive_money(Decimal("NaN"))
    with pytest.raises(ValueError):
        core_logic.require_nonnegative_money(Decimal("Infinity"))


# ---------------------------------------------------------------------------
# Contacts and invoices
# ---------------------------------------------------------------------------


def test_customer_names_are_unique(owner_context):
    assert core_logic.add_customer(owner_context, "Mere", "7000") is not None
    assert core_logic.add_customer(owner_context, " Mere ", "7001") is None
    assert len(_data(owner_context).customers) == 1


def test_add_supplier_keeps_payment_due(owner_context):
    supplier = core_logic.add_supplier(owner_context, "Coca-Cola", "7100", payment_due=Decimal("120"))
    assert _data(owner_context).suppliers == (supplier,)
    assert supplier.payment_due == Decimal("120")
    assert supplier.credit_balance == Decimal("0")


def test_credit_reminder_queues_sms(owner_context):
    customer = core_logic.add_customer(owner_context, "Mere", "+675 7000 1111", credit_balance=Decimal("45.5"))
    request = core_logic.request_credit_reminder(owner_context, customer.id)

    assert request.channel is NotificationChannel.SMS
    assert owner_context.outbox.pending == [request]


def test_credit_reminder_refused_without_balance(owner_context):
    customer = core_logic.add_customer(owner_context, "Mere", "7000")
    assert core_logic.request_credit_reminder(owner_context, customer.id) is None
    assert core_logic.request_credit_reminder(owner_context, "cust-missing") is None
    assert owner_context.outbox.pending == []


def test_invoice_numbers_and_status(owner_context):
    customer = core_logic.add_customer(owner_context, "Mere", "7000")
    items = [InvoiceItem("Catering", Decimal("2"), Decimal("150")), InvoiceItem("Delivery", Decimal("1"), Decimal("20"))]

    first = core_logic.add_invoice(owner_context, InvoiceCommand(customer.id, date(2025, 2, 1), items))
    late = core_logic.add_invoice(
        owner_context,
        InvoiceCommand(customer.id, date(2025, 1, 5), items[:1], issue_date=date(2025, 1, 1)),
    )

    assert first.invoice_number == "2025-001"
    assert first.total == Decimal("320")
    assert first.status is InvoiceStatus.SENT
    assert late.invoice_number == "2025-002"
    assert late.status is InvoiceStatus.OVERDUE
    assert [i.id for i in _data(owner_context).invoices] == [late.id, first.id]


@pytest.mark.parametrize(
    "due, items",
    [
        (date(2025, 1, 9), [InvoiceItem("Catering", Decimal("1"), Decimal("1"))]),
        (date(2025, 2, 1), []),
        (date(2025, 2, 1), [InvoiceItem("Catering", Decimal("0"), Decimal("1"))]),
        (date(2025, 2, 1), [InvoiceItem("", Decimal("1"), Decimal("1"))]),
    ],
)
def test_add_invoice_refuses_invalid_invoices(owner_context, due, items):
    customer = core_logic.add_customer(owner_context, "Mere", "7000")
    assert core_logic.add_invoice(owner_context, InvoiceCommand(customer.id, due, items)) is None


def test_add_invoice_requires_known_customer(owner_context):
    items = [InvoiceItem("Catering", Decimal("1"), Decimal("1"))]
    assert core_logic.add_invoice(owner_context, InvoiceCommand("cust-missing", date(2025, 2, 1), items)) is None


def test_mark_invoice_paid_only_once(owner_context):
    customer = core_logic.add_customer(owner_context, "Mere", "7000")
    invoice = core_logic.add_invoice(
        owner_context,
        InvoiceCommand(customer.id, date(2025, 2, 1), [InvoiceItem("Catering", Decimal("1"), Decimal("50"))]),
    )
    assert core_logic.mark_invoice_paid(owner_context, invoice.id) is True
    assert _data(owner_context).invoices[0].status is InvoiceStatus.PAID
    assert core_logic.mark_invoice_paid(owner_context, invoice.id) is False


def test_refresh_overdue_invoices(owner_context, clock):
    customer = core_logic.add_customer(owner_context, "Mere", "7000")
    core_logic.add_invoice(
        owner_context,
        InvoiceCommand(customer.id, date(2025, 1, 15), [InvoiceItem("Catering", Decimal("1"), Decimal("50"))]),
    )
    assert core_logic.refresh_overdue_invoices(owner_context) == 0

    clock.set(datetime(2025, 1, 20, 8, 0, tzinfo=UTC))
    assert core_logic.refresh_overdue_invoices(owner_context) == 1
    assert _data(owner_context).invoices[0].status is InvoiceStatus.OVERDUE
    assert core_logic.refresh_overdue_invoices(owner_context) == 0


# ---------------------------------------------------------------------------
# Settings and users
# ---------------------------------------------------------------------------


def test_update_business_profile(owner_context):
    profile = BusinessProfile(name="Kai Bar & Grill", address="Boroko", contact="7000")
    assert core_logic.update_business_profile(owner_context, profile)
    assert _data(owner_context).business_profile == profile
    assert not core_logic.update_business_profile(owner_context, BusinessProfile(name=" "))


def test_staff_cannot_reach_settings_or_finance(owner_context):
    _login_as_new_user(owner_context, UserRole.STAFF)
    assert not core_logic.update_business_profile(owner_context, BusinessProfile(name="Nope"))
    assert core_logic.add_loan(owner_context, LoanCommand("BSP", Decimal("100"))) is None
    assert core_logic.add_user(owner_context, UserCommand("Ana", UserRole.STAFF, password="x")) is None


def test_add_user_requires_password_for_non_employees(owner_context):
    assert core_logic.add_user(owner_context, UserCommand("Ana", UserRole.MANAGER)) is None
    manager = core_logic.add_user(owner_context, UserCommand("Ana", UserRole.MANAGER, password="m"))
    assert manager.role is UserRole.MANAGER
    assert manager.employee_id is None


def test_employee_users_need_unique_link_and_pin(owner_context):
    tau = _hire(owner_context)
    lani = _hire(owner_context, name="Lani", pin="5678")

    assert core_logic.add_user(owner_context, UserCommand("X", UserRole.EMPLOYEE, pin="1111")) is None
    assert core_logic.add_user(
        owner_context, UserCommand("X", UserRole.EMPLOYEE, pin="1111", employee_id=tau.id)
    ) is None
    assert core_logic.add_user(
        owner_context, UserCommand("X", UserRole.EMPLOYEE, pin="1111", employee_id="emp-missing")
    ) is None
    assert core_logic.add_user(owner_context, UserCommand("X", UserRole.STAFF, password="p", pin="5678")) is None
    assert lani is not None


def test_update_user_keeps_omitted_secrets_and_refreshes_session(owner_context):
    owner = owner_context.session.current_user
    assert core_logic.update_user(owner_context, replace(owner, name="Kai K", password=None))

    stored = _data(owner_context).find_user(owner.id)
    assert stored.name == "Kai K"
    assert stored.password == OWNER_PASSWORD
    assert owner_context.session.current_user.name == "Kai K"


def test_last_owner_cannot_be_demoted_or_deleted(owner_context):
    owner = owner_context.session.current_user
    assert not core_logic.update_user(owner_context, replace(owner, role=UserRole.MANAGER))

    _login_as_new_user(owner_context, UserRole.MANAGER, name="Ana")
    assert not core_logic.delete_user(owner_context, owner.id)
    assert _data(owner_context).find_user(owner.id) is not None


def test_delete_user_refuses_self_and_removes_others(owner_context):
    owner = owner_context.session.current_user
    staff = core_logic.add_user(owner_context, UserCommand("Sione", UserRole.STAFF, password="s"))

    assert not core_logic.delete_user(owner_context, owner.id)
    assert core_logic.delete_user(owner_context, staff.id)
    assert _data(owner_context).find_user(staff.id) is None
    assert not core_logic.delete_user(owner_context, staff.id)


# ---------------------------------------------------------------------------
# Employees, attendance and payroll
# ---------------------------------------------------------------------------


def test_add_employee_creates_paired_user(owner_context):
    employee = _hire(owner_context)

    data = _data(owner_context)
    user = next(u for u in data.users if u.employee_id == employee.id)
    assert user.role is UserRole.EMPLOYEE
    assert user.pin == "1234"
    assert user.password is None
    assert user.name == "Tau"


@pytest.mark.parametrize("pin", ["123", "12345", "12a4", ""])
def test_add_employee_rejects_malformed_pins(owner_context, pin):
    assert core_logic.add_employee(owner_context, EmployeeCommand("Tau", "Barista", Decimal("10")), pin) is None
    assert _data(owner_context).employees == ()


def test_add_employee_rejects_duplicate_pin_and_unknown_manager(owner_context):
    _hire(owner_context)
    assert core_logic.add_employee(owner_context, EmployeeCommand("Lani", "Cook", Decimal("9")), "1234") is None
    assert core_logic.add_employee(
        owner_context, EmployeeCommand("Lani", "Cook", Decimal("9"), reports_to="emp-missing"), "5678"
    ) is None


def test_clock_in_and_out_by_pin(owner_context, clock):
    employee = _hire(owner_context)

    assert core_logic.clock_in(owner_context, "1234")
    assert not core_logic.clock_in(owner_context, "1234")
    clock.advance(hours=2)
    assert core_logic.clock_out(owner_context, "1234")
    assert not core_logic.clock_out(owner_context, "1234")

    [record] = _data(owner_context).attendance
    assert record.employee_id == employee.id
    assert record.clock_out - record.clock_in == timedelta(hours=2)


def test_clock_in_refuses_unknown_or_non_employee_pin(owner_context):
    _hire(owner_context)
    assert not core_logic.clock_in(owner_context, "9999")
    assert _data(owner_context).attendance == ()


def test_payslip_for_two_hours_at_ten_kina(owner_context, clock):
    employee = _hire(owner_context)
    core_logic.clock_in(owner_context, "1234")
    clock.advance(hours=2)
    core_logic.clock_out(owner_context, "1234")

    payslip = core_logic.generate_payslip(owner_context, employee.id, "2025-01-10 to 2025-01-10")

    assert payslip.total_hours == Decimal("2.00")
    assert payslip.total_pay == Decimal("20.00")
    assert payslip.period == "2025-01-10 to 2025-01-10"
    assert payslip.generated_date == date(2025, 1, 10)
    assert _data(owner_context).payslips == (payslip,)


def test_payslip_only_counts_closed_records_inside_period(owner_context, clock):
    employee = _hire(owner_context)
    core_logic.clock_in(owner_context, "1234")
    clock.advance(hours=2)
    core_logic.clock_out(owner_context, "1234")
    clock.advance(days=1)
    core_logic.clock_in(owner_context, "1234")
    clock.advance(hours=3)
    core_logic.clock_out(owner_context, "1234")
    clock.advance(hours=1)
    core_logic.clock_in(owner_context, "1234")

    single_day = core_logic.generate_payslip(owner_context, employee.id, "2025-01-10 to 2025-01-10")
    both_days = core_logic.generate_payslip(owner_context, employee.id, "2025-01-10 to 2025-01-11")

    assert single_day.total_hours == Decimal("2.00")
    assert both_days.total_hours == Decimal("5.00")
    assert both_days.total_pay == Decimal("50.00")


def test_payable_hours_rounds_half_up_to_cents():
    start = datetime(2025, 1, 10, 9, 0, tzinfo=UTC)
    records = [AttendanceRecord("att-1", "emp-1", start, start + timedelta(seconds=18))]
    hours = core_logic.payable_hours(records, "emp-1", date(2025, 1, 10), date(2025, 1, 10))
    assert hours == Decimal("0.005")
    assert hours.quantize(core_logic.CENTS, rounding=ROUND_HALF_UP) == Decimal("0.01")


def test_payable_hours_excludes_shift_crossing_period_end():
    start = datetime(2025, 1, 10, 22, 0, tzinfo=UTC)
    records = [AttendanceRecord("att-1", "emp-1", start, start + timedelta(hours=4))]
    assert core_logic.payable_hours(records, "emp-1", date(2025, 1, 10), date(2025, 1, 10)) == Decimal("0")


def test_payslip_refuses_bad_period_and_unknown_employee(owner_context):
    employee = _hire(owner_context)
    assert core_logic.generate_payslip(owner_context, employee.id, "last week") is None
    assert core_logic.generate_payslip(owner_context, "emp-missing", "2025-01-10 to 2025-01-10") is None


def test_delete_employee_unlinks_reports_and_keeps_history(owner_context, clock):
    boss = _hire(owner_context, name="Lani", pin="5678")
    tau = _hire(owner_context, reports_to=boss.id)
    core_logic.clock_in(owner_context, "5678")
    clock.advance(hours=1)
    core_logic.clock_out(owner_context, "5678")

    assert core_logic.delete_employee(owner_context, boss.id)

    data = _data(owner_context)
    assert [e.id for e in data.employees] == [tau.id]
    assert data.employees[0].reports_to is None
    assert all(u.employee_id != boss.id for u in data.users)
    assert len(data.attendance) == 1


def test_only_owners_delete_employees(owner_context):
    tau = _hire(owner_context)
    _login_as_new_user(owner_context, UserRole.MANAGER, name="Ana")
    assert not core_logic.delete_employee(owner_context, tau.id)


# ---------------------------------------------------------------------------
# Finance
# ---------------------------------------------------------------------------


def test_loan_repayments_reduce_outstanding(owner_context):
    loan = core_logic.add_loan(owner_context, LoanCommand("BSP", Decimal("1000")))
    assert loan.date_taken == date(2025, 1, 10)

    assert core_logic.add_loan_repayment(owner_context, loan.id, Decimal("250")) is not None
    assert core_logic.add_loan_repayment(owner_context, loan.id, Decimal("800")) is None
    assert core_logic.add_loan_repayment(owner_context, loan.id, Decimal("0")) is None

    assert _data(owner_context).loans[0].outstanding == Decimal("750")


def test_saving_goal_contributions_accumulate(owner_context):
    goal = core_logic.add_saving_goal(owner_context, "New fridge", Decimal("800"))
    assert core_logic.add_contribution_to_saving(owner_context, goal.id, Decimal("120"))
    assert core_logic.add_contribution_to_saving(owner_context, goal.id, Decimal("30"))
    assert not core_logic.add_contribution_to_saving(owner_context, goal.id, Decimal("-1"))
    assert _data(owner_context).saving_goals[0].current_amount == Decimal("150")
    assert core_logic.add_saving_goal(owner_context, "", Decimal("10")) is None


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


def test_new_business_lands_on_subscription_screen(owner_context):
    view = core_logic.read_view(owner_context)
    assert _business(owner_context).subscription_status is SubscriptionStatus.NONE
    assert view.subscription_required
    assert view.requires_subscription_screen
    assert view.can_offer_trial


def test_trial_starts_once(owner_context):
    assert core_logic.start_trial(owner_context)
    business = _business(owner_context)
    assert business.subscription_status is SubscriptionStatus.TRIAL
    assert business.trial_start_date == datetime(2025, 1, 10, 9, 0, tzinfo=UTC)
    assert not owner_context.session.subscription_required
    assert not core_logic.read_view(owner_context).requires_subscription_screen
    assert not core_logic.start_trial(owner_context)


def test_trial_lapses_at_login_after_three_days(owner_context, clock):
    business_id = owner_context.session.current_business_id
    owner_id = owner_context.session.current_user.id
    core_logic.start_trial(owner_context)

    clock.advance(days=3)
    auth.logout(owner_context)
    assert auth.login(owner_context, business_id, owner_id, OWNER_PASSWORD)

    view = core_logic.read_view(owner_context)
    assert view.business.subscription_status is SubscriptionStatus.LAPSED
    assert view.subscription_required
    assert view.requires_subscription_screen
    assert not view.can_offer_trial
    reloaded = data_manager.load_store(owner_context.store.storage, owner_context.store.key).store
    assert reloaded.find_business(business_id).subscription_status is SubscriptionStatus.LAPSED


def test_payment_approval_flow(owner_context, clock):
    business_id = owner_context.session.current_business_id
    owner_id = owner_context.session.current_user.id

    assert core_logic.submit_for_approval(owner_context, SubscriptionTier.LIFETIME, Decimal("250"), "receipt-1")
    assert _business(owner_context).subscription_status is SubscriptionStatus.PENDING
    assert core_logic.read_view(owner_context).requires_subscription_screen

    assert auth.admin_login(owner_context, ADMIN_PASSWORD)
    clock.advance(hours=1)
    assert core_logic.approve_payment(owner_context, business_id)
    [email] = owner_context.outbox.pending
    assert email.recipient == "kai@example.com"
    assert email.subject == "Business Approved"

    assert auth.login(owner_context, business_id, owner_id, OWNER_PASSWORD)
    view = core_logic.read_view(owner_context)
    assert view.business.subscription_status is SubscriptionStatus.ACTIVE
    assert view.business.subscription_expiry == datetime(2125, 1, 10, 10, 0, tzinfo=UTC)
    assert not view.subscription_required
    assert view.show_approval_banner

    assert core_logic.mark_approval_as_notified(owner_context)
    assert not core_logic.read_view(owner_context).show_approval_banner


def test_rejection_requires_reason_and_notifies(owner_context):
    business_id = owner_context.session.current_business_id
    core_logic.submit_for_approval(owner_context, SubscriptionTier.LIFETIME, Decimal("250"), "receipt-1")
    auth.admin_login(owner_context, ADMIN_PASSWORD)

    assert not core_logic.reject_payment(owner_context, business_id, "  ")
    assert core_logic.reject_payment(owner_context, business_id, "Receipt unreadable")

    business = owner_context.store.state.find_business(business_id)
    assert business.subscription_status is SubscriptionStatus.REJECTED
    assert business.rejection_reason == "Receipt unreadable"
    assert business.pending_payment_receipt == "receipt-1"
    assert owner_context.outbox.pending[0].subject == "Business Rejected"


def test_subscription_admin_actions_require_admin(owner_context):
    business_id = owner_context.session.current_business_id
    core_logic.submit_for_approval(owner_context, SubscriptionTier.LIFETIME, Decimal("250"), "receipt-1")
    assert not core_logic.approve_payment(owner_context, business_id)
    assert not core_logic.reject_payment(owner_context, business_id, "no")


def test_upgrade_submission_needs_upgrade_flow(owner_context):
    business_id = owner_context.session.current_business_id
    owner_id = owner_context.session.current_user.id
    core_logic.start_trial(owner_context)

    assert not core_logic.submit_for_approval(owner_context, SubscriptionTier.LIFETIME, Decimal("250"), "r")

    auth.set_upgrade_flow(owner_context, True)
    assert core_logic.read_view(owner_context).requires_subscription_screen
    assert core_logic.submit_for_approval(owner_context, SubscriptionTier.LIFETIME, Decimal("250"), "r")
    assert not owner_context.session.is_upgrade_flow
    assert auth.login(owner_context, business_id, owner_id, OWNER_PASSWORD)
    assert _business(owner_context).subscription_status is SubscriptionStatus.PENDING


def test_mark_approval_for_another_business_is_refused(owner_context, register):
    other, _ = register("Tau Store", "Tau", None)
    assert not core_logic.mark_approval_as_notified(owner_context, other.id)


# ---------------------------------------------------------------------------
# Admin data operations and preferences
# ---------------------------------------------------------------------------


def test_export_all_data_matches_persisted_layout(owner_context):
    core_logic.add_sale(owner_context, SaleCommand("", Decimal("5"), PaymentMethod.CASH))
    assert core_logic.export_all_data(owner_context) is None

    auth.admin_login(owner_context, ADMIN_PASSWORD)
    payload = json.loads(core_logic.export_all_data(owner_context))
    assert payload == json.loads(owner_context.store.storage.get_item(owner_context.store.key))
    assert len(payload["businesses"]) == 1


def test_export_workbook_writes_file(admin_context, register, tmp_path):
    register()
    destination = core_logic.export_workbook(admin_context, tmp_path / "exports" / "all.xlsx")
    assert destination is not None and destination.exists()


def test_wipe_all_data_resets_store_and_session(owner_context):
    auth.admin_login(owner_context, ADMIN_PASSWORD)
    assert core_logic.wipe_all_data(owner_context)
    assert owner_context.store.state.businesses == ()
    assert owner_context.session == Session()
    reloaded = data_manager.load_store(owner_context.store.storage, owner_context.store.key).store
    assert reloaded.businesses == ()
    assert not core_logic.wipe_all_data(owner_context)


def test_preferences_persist_to_storage(context):
    assert core_logic.toggle_theme(context) is Theme.DARK
    assert core_logic.set_language(context, Language.TOK_PISIN) is Language.TOK_PISIN
    assert context.store.storage.get_item(THEME_KEY) == "dark"
    assert context.store.storage.get_item(LANGUAGE_KEY) == "tp"
    assert core_logic.toggle_theme(context) is Theme.LIGHT


def test_action_decorator_converts_rule_violations():
    @core_logic.action(refused=False)
    def refuse(context):
        raise BusinessRuleViolation("nope")

    assert refuse(object()) is False


# ---------------------------------------------------------------------------
# Read surface and tenant isolation
# ---------------------------------------------------------------------------


def test_tenants_are_isolated(context, register, clock):
    kai_bar, kai = register()
    clock.advance(seconds=1)
    tau_store, tau = register("Tau Store", "Tau", None)

    assert auth.login(context, kai_bar.id, kai.id, OWNER_PASSWORD)
    core_logic.add_sale(context, SaleCommand("", Decimal("5"), PaymentMethod.CASH))
    assert not auth.login(context, tau_store.id, kai.id, OWNER_PASSWORD)

    assert auth.login(context, tau_store.id, tau.id, OWNER_PASSWORD)
    assert core_logic.read_view(context).data.sales == ()
    assert len(context.store.state.data[kai_bar.id].sales) == 1


def test_employee_view_is_self_service(owner_context):
    business_id = owner_context.session.current_business_id
    tau = _hire(owner_context)
    _hire(owner_context, name="Lani", pin="5678")
    core_logic.clock_in(owner_context, "1234")
    core_logic.clock_in(owner_context, "5678")
    tau_user = next(u for u in _data(owner_context).users if u.employee_id == tau.id)

    auth.admin_login(owner_context, ADMIN_PASSWORD)
    assert auth.impersonate_user(owner_context, business_id, tau_user.id)
    view = core_logic.read_view(owner_context)

    assert view.allowed_pages == (Page.DASHBOARD, Page.EMPLOYEES, Page.LEARNING)
    assert [e.id for e in view.data.employees] == [tau.id]
    assert [u.id for u in view.data.users] == [tau_user.id]
    assert all(a.employee_id == tau.id for a in view.data.attendance)
    assert len(view.data.attendance) == 1
    assert core_logic.add_sale(owner_context, SaleCommand("", Decimal("5"), PaymentMethod.CASH)) is None


def test_admin_view_has_empty_partition(admin_context, register):
    register()
    view = core_logic.read_view(admin_context)
    assert view.is_admin_mode
    assert view.business is None
    assert view.data.sales == ()
    assert not view.requires_subscription_screen
    assert view.permissions["finance"] == ["owner"]


def test_read_view_carries_load_warning(context):
    context.load_warning = data_manager.CORRUPT_DATA_WARNING
    view = core_logic.read_view(context)
    assert view.load_warning == data_manager.CORRUPT_DATA_WARNING
    assert view.user is None
    assert view.allowed_pages == ()
