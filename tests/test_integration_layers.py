"""Integration tests describing the end-to-end ZaveOrah workflows.

These scenarios exercise the persistence adapter, the tenant store, the auth
layer and the Action API together, reloading the runtime context from disk
between steps the way a restarted application would.
"""

from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal

from zaveorah import auth, core_logic, data_manager, reports, session
from zaveorah.constants import (
    InvoiceStatus,
    Language,
    PaymentMethod,
    SubscriptionStatus,
    SubscriptionTier,
    Theme,
)

from conftest import ADMIN_PASSWORD, OWNER_PASSWORD


def _reload(config_path, clock):
    """Build a fresh context from disk, as a restarted application would."""

    context = session.load_runtime_context(config_path, clock=clock)
    session.ensure_schema_version(context)
    return context


def test_tenant_day_flow(runtime_context, config_file, clock):
    """Register, trade, pay staff, and find everything again after a restart."""

    context = runtime_context
    business = auth.register_business(context, "Kai Bar", "Kai", OWNER_PASSWORD, "kai@example.com")
    owner = auth.get_users_for_business(context, business.id)[0]
    assert auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    assert core_logic.start_trial(context)

    customer = core_logic.add_customer(context, "Mere", "+675 7000 1111")
    core_logic.add_sale(context, core_logic.SaleCommand("Mere", Decimal("45.50"), PaymentMethod.CREDIT))
    core_logic.add_sale(context, core_logic.SaleCommand("", Decimal("12"), PaymentMethod.CASH))
    tau = core_logic.add_employee(context, core_logic.EmployeeCommand("Tau", "Barista", Decimal("10")), "1234")

    assert core_logic.clock_in(context, "1234")
    clock.advance(hours=2)
    assert core_logic.clock_out(context, "1234")

    context = _reload(config_file, clock)
    assert auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    assert not context.session.subscription_required

    payslip = core_logic.generate_payslip(context, tau.id, "2025-01-10 to 2025-01-10")
    assert payslip.total_pay == Decimal("20.00")

    data = _reload(config_file, clock).store.state.data[business.id]
    assert [i.customer_id for i in data.invoices] == [customer.id]
    assert data.invoices[0].invoice_number == "2025-001"
    assert data.payslips == (payslip,)
    assert reports.dashboard_summary(data).total_sales == Decimal("57.50")
    assert reports.employee_clock_status(data) == {tau.id: False}


def test_trial_expiry_and_payment_approval_flow(runtime_context, config_file, clock):
    """A lapsed trial is paid for, approved by the admin, and celebrated once."""

    context = runtime_context
    business = auth.register_business(context, "Kai Bar", "Kai", OWNER_PASSWORD, "kai@example.com")
    owner = auth.get_users_for_business(context, business.id)[0]
    auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    core_logic.start_trial(context)

    clock.advance(days=3, minutes=1)
    context = _reload(config_file, clock)
    assert auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    view = core_logic.read_view(context)
    assert view.business.subscription_status is SubscriptionStatus.LAPSED
    assert view.requires_subscription_screen
    assert core_logic.submit_for_approval(context, SubscriptionTier.LIFETIME, Decimal("250"), "receipt-1")

    admin = _reload(config_file, clock)
    assert auth.admin_login(admin, ADMIN_PASSWORD)
    assert [b.id for b in reports.pending_approvals(admin.store.state)] == [business.id]
    assert core_logic.approve_payment(admin, business.id)
    assert [n.recipient for n in admin.outbox.drain()] == ["kai@example.com"]

    context = _reload(config_file, clock)
    assert auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    view = core_logic.read_view(context)
    assert view.business.subscription_status is SubscriptionStatus.ACTIVE
    assert view.show_approval_banner
    assert not view.requires_subscription_screen
    core_logic.mark_approval_as_notified(context)

    reloaded = _reload(config_file, clock)
    assert reloaded.store.state.find_business(business.id).has_been_notified_of_approval is True


def test_invoice_overdue_after_restart(runtime_context, config_file, clock):
    context = runtime_context
    business = auth.register_business(context, "Kai Bar", "Kai", OWNER_PASSWORD)
    owner = auth.get_users_for_business(context, business.id)[0]
    auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    customer = core_logic.add_customer(context, "Mere", "7000")
    core_logic.add_sale(context, core_logic.SaleCommand("Mere", Decimal("30"), PaymentMethod.CREDIT))

    clock.advance(days=15)
    context = _reload(config_file, clock)
    auth.login(context, business.id, owner.id, OWNER_PASSWORD)
    today = context.now().date()
    assert [i.customer_id for i in reports.overdue_invoices(context.current_business_data, today)] == [customer.id]
    assert core_logic.refresh_overdue_invoices(context) == 1

    data = _reload(config_file, clock).store.state.data[business.id]
    assert data.invoices[0].status is InvoiceStatus.OVERDUE
    assert data.invoices[0].due_date == today - timedelta(days=1)


def test_corrupt_payload_is_backed_up_on_load(config_file, clock):
    """Unreadable data never blocks start-up; the warning reaches the read view."""

    first = _reload(config_file, clock)
    storage = first.store.storage
    storage.set_item(first.settings.storage_key, "{not valid json")

    context = _reload(config_file, clock)

    assert context.load_warning == data_manager.CORRUPT_DATA_WARNING
    assert context.store.state.businesses == ()
    assert core_logic.read_view(context).load_warning == data_manager.CORRUPT_DATA_WARNING
    backups = list(data_manager.iter_backup_keys(context.store.storage, context.settings.storage_key))
    assert len(backups) == 1
    assert context.store.storage.get_item(backups[0]) == "{not valid json"

    assert auth.register_business(context, "Fresh Start", "Kai", OWNER_PASSWORD) is not None
    assert len(_reload(config_file, clock).store.state.businesses) == 1


def test_unreadable_storage_file_warns_on_start_up(config_file, clock):
    """A storage file that is not valid UTF-8 JSON is set aside, not fatal."""

    data_file = _reload(config_file, clock).settings.data_file
    data_file.write_bytes(b'{"zaveOrahMultiBizData": "\xff\xfe"}')

    context = _reload(config_file, clock)

    assert context.load_warning == data_manager.CORRUPT_DATA_WARNING
    assert context.store.state.businesses == ()
    assert context.store.storage.recovered_from.exists()
    assert auth.register_business(context, "Fresh Start", "Kai", OWNER_PASSWORD) is not None
    assert _reload(config_file, clock).load_warning is None


def test_legacy_businesses_are_grandfathered(config_file, clock):
    """Data saved before subscriptions existed loads as an active lifetime plan."""

    context = _reload(config_file, clock)
    legacy = {
        "businesses": [{"id": "biz-old", "name": "Old Shop"}],
        "data": {
            "biz-old": {
                "users": [{"id": "user-old", "name": "Kai", "password": "pw", "role": "owner"}],
                "businessProfile": {"name": "Old Shop"},
            }
        },
    }
    context.store.storage.set_item(context.settings.storage_key, json.dumps(legacy))

    context = _reload(config_file, clock)
    business = context.store.state.find_business("biz-old")
    assert business.subscription_status is SubscriptionStatus.ACTIVE
    assert business.subscription_tier is SubscriptionTier.LIFETIME
    assert business.subscription_expiry.year == 2125
    assert auth.login(context, "biz-old", "user-old", "pw")
    assert not context.session.subscription_required
    assert context.current_business_data.sales == ()


def test_preferences_survive_restart(config_file, clock):
    context = _reload(config_file, clock)
    assert context.theme is Theme.LIGHT
    core_logic.toggle_theme(context)
    core_logic.set_language(context, Language.TOK_PISIN)

    context = _reload(config_file, clock)
    assert context.theme is Theme.DARK
    assert context.language is Language.TOK_PISIN


def test_relative_data_file_resolves_next_to_config(config_factory, clock, monkeypatch, tmp_path):
    bundle = config_factory(make_relative=True)
    monkeypatch.chdir(tmp_path)

    context = _reload(bundle.config_path, clock)
    assert context.settings.data_file == bundle.storage_path
    assert auth.register_business(context, "Kai Bar", "Kai", OWNER_PASSWORD) is not None
    assert data_manager.load_store(
        data_manager.open_storage(bundle.storage_path), bundle.storage_key
    ).store.businesses[0].name == "Kai Bar"


def test_export_after_wipe_is_empty(runtime_context, config_file, clock, tmp_path):
    context = runtime_context
    auth.register_business(context, "Kai Bar", "Kai", OWNER_PASSWORD)
    auth.admin_login(context, ADMIN_PASSWORD)
    assert core_logic.wipe_all_data(context)

    admin = _reload(config_file, clock)
    auth.admin_login(admin, ADMIN_PASSWORD)
    assert json.loads(core_logic.export_all_data(admin)) == {"businesses": [], "data": {}}
    assert core_logic.export_workbook(admin, tmp_path / "empty.xlsx").exists()
