"""Static role permission table.

Each page and each action capability maps to the set of roles allowed to use
it. The table is data, not behaviour: the business logic layer and the
presentation layer both consult it through the helpers below, and an entry
that is too generous is a security defect.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import FrozenSet, List, Mapping, Optional, Union

from .constants import Capability, Page, UserRole
from .models import User


OWNER = UserRole.OWNER
MANAGER = UserRole.MANAGER
STAFF = UserRole.STAFF
EMPLOYEE = UserRole.EMPLOYEE

PermissionKey = Union[Page, Capability]

PERMISSIONS: Mapping[str, FrozenSet[UserRole]] = MappingProxyType({
    Page.DASHBOARD.value: frozenset({OWNER, MANAGER, STAFF, EMPLOYEE}),
    Page.SALES.value: frozenset({OWNER, MANAGER, STAFF}),
    Page.INVENTORY.value: frozenset({OWNER, MANAGER, STAFF}),
    Page.CONTACTS.value: frozenset({OWNER, MANAGER, STAFF}),
    Page.EMPLOYEES.value: frozenset({OWNER, MANAGER, EMPLOYEE}),
    Page.INVOICING.value: frozenset({OWNER, MANAGER, STAFF}),
    Page.FINANCE.value: frozenset({OWNER}),
    Page.LEARNING.value: frozenset({OWNER, MANAGER, STAFF, EMPLOYEE}),
    Page.SETTINGS.value: frozenset({OWNER, MANAGER}),
    Capability.CAN_ADD.value: frozenset({OWNER, MANAGER, STAFF}),
    Capability.CAN_EDIT.value: frozenset({OWNER, MANAGER}),
    Capability.CAN_DELETE.value: frozenset({OWNER}),
    Capability.CAN_MANAGE_USERS.value: frozenset({OWNER, MANAGER}),
    Capability.CAN_VIEW_REPORTS.value: frozenset({OWNER, MANAGER}),
})


def roles_for(key: PermissionKey) -> FrozenSet[UserRole]:
    """Return the roles granted ``key``; unknown keys grant nobody."""

    return PERMISSIONS.get(key.value, frozenset())


def has_permission(user: Optional[User], key: PermissionKey) -> bool:
    """Return ``True`` when ``user`` holds a role listed for ``key``."""

    if user is None:
        return False
    return user.role in roles_for(key)


def allowed_pages(user: Optional[User]) -> List[Page]:
    """List the pages ``user`` may navigate to, in menu order."""

    return [page for page in Page if has_permission(user, page)]


def resolve_page(user: Optional[User], requested: Page) -> Page:
    """Return ``requested`` when permitted, otherwise fall back to the dashboard."""

    if has_permission(user, requested):
        return requested
    return Page.DASHBOARD


def is_self_service(user: Optional[User]) -> bool:
    """Employees only ever see their own attendance and payslips."""

    return user is not None and user.role is UserRole.EMPLOYEE


def permission_table() -> dict[str, list[str]]:
    """Plain-data copy of the table for the read surface."""

    return {key: sorted(role.value for role in roles) for key, roles in PERMISSIONS.items()}
