"""Authentication, impersonation and tenant registration.

All functions report failure through their return value. A failed login is a
normal outcome for the presentation layer, so nothing here raises for bad
credentials or unknown ids.
"""

from __future__ import annotations

import hmac
from dataclasses import replace
from typing import Optional, Tuple

from . import log
from .constants import ADMIN_USER_ID, ADMIN_USER_NAME, UserRole
from .models import Business, User, create_initial_business_data
from .session import RuntimeContext, Session, generate_id
from .subscription import evaluate_login_gate


ADMIN_USER = User(id=ADMIN_USER_ID, name=ADMIN_USER_NAME, role=UserRole.OWNER)


def _secrets_match(expected: Optional[str], supplied: Optional[str]) -> bool:
    if not expected or supplied is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def login(context: RuntimeContext, business_id: str, user_id: str, password: str) -> bool:
    """Sign a tenant user in with their password and run the subscription gate.

    On success the session points at the business and user. An expired trial
    or plan is persisted as ``lapsed``; whenever the business has no usable
    subscription (and is not waiting on an admin decision) the session is
    flagged ``subscription_required``.

    Returns:
        bool: ``True`` when the credentials matched.
    """
    state = context.store.state
    business = state.find_business(business_id)
    data = state.business_data(business_id)
    if business is None or data is None:
        log.warning("Login refused: unknown business '%s'", business_id)
        return False
    user = data.find_user(user_id)
    if user is None or not _secrets_match(user.password, password):
        log.warning("Login refused for user '%s' of business '%s'", user_id, business_id)
        return False

    gated, required = evaluate_login_gate(business, context.now())
    if gated is not business:
        context.store.update_business(business_id, lambda _: gated)
    context.session = Session(
        current_business_id=business_id,
        current_user=user,
        subscription_required=required,
    )
    log.info(
        "User '%s' logged in to business '%s' (subscription_required=%s)",
        user.id,
        business_id,
        required,
    )
    return True


def admin_login(context: RuntimeContext, secret: str) -> bool:
    """Enter admin mode when ``secret`` matches the configured admin password."""

    if not _secrets_match(context.settings.admin_password, secret):
        log.warning("Admin login refused")
        return False
    context.session = Session(current_user=ADMIN_USER, is_admin_mode=True)
    log.info("Admin session started")
    return True


def impersonate_user(context: RuntimeContext, business_id: str, user_id: str) -> bool:
    """Let an admin act as a tenant user, bypassing password and gate."""

    if not context.session.is_admin_mode:
        log.warning("Impersonation refused: admin mode required")
        return False
    data = context.store.state.business_data(business_id)
    user = data.find_user(user_id) if data is not None else None
    if user is None:
        log.warning("Impersonation refused: unknown user '%s' of business '%s'", user_id, business_id)
        return False
    context.session = Session(current_business_id=business_id, current_user=user)
    log.info("Admin impersonating user '%s' of business '%s'", user_id, business_id)
    return True


def logout(context: RuntimeContext) -> None:
    context.session = Session()
    log.debug("Session cleared")


def register_business(
    context: RuntimeContext,
    name: str,
    owner_name: str,
    owner_password: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> Optional[Business]:
    """Create a tenant with status ``none``, one owner user and a profile.

    Args:
        context (RuntimeContext): Active runtime context.
        name (str): Business name, also used for the initial profile.
        owner_name (str): Display name of the owner user.
        owner_password (str): Owner's login password.
        email (str | None): Owner email, used for approval notifications.
        phone (str | None): Owner phone number.

    Returns:
        Business | None: The registered business, or ``None`` when a required
            field is blank or the tenant could not be stored.
    """
    business_name = (name or "").strip()
    owner = (owner_name or "").strip()
    if not business_name or not owner or not owner_password:
        log.warning("Registration refused: business name, owner name and password are required")
        return None

    now = context.now()
    business = Business(
        id=generate_id("biz", (biz.id for biz in context.store.state.businesses), when=now),
        name=business_name,
        owner_email=(email or "").strip() or None,
        owner_phone=(phone or "").strip() or None,
    )
    owner_user = User(
        id=generate_id("user", (), when=now),
        name=owner,
        role=UserRole.OWNER,
        password=owner_password,
    )
    if not context.store.add_tenant(business, create_initial_business_data(business_name, owner_user)):
        return None
    log.info("Registered business '%s' (%s)", business.id, business.name)
    return business


def get_users_for_business(context: RuntimeContext, business_id: str) -> Optional[Tuple[User, ...]]:
    data = context.store.state.business_data(business_id)
    return data.users if data is not None else None


def set_upgrade_flow(context: RuntimeContext, flag: bool) -> None:
    context.session = replace(context.session, is_upgrade_flow=bool(flag))
