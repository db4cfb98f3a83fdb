from __future__ import annotations

import pytest

from bizdash.apps.accounts import permissions, services
from bizdash.apps.accounts.models import OrgRole
from bizdash.apps.billing import store
from bizdash.apps.billing.errors import AuthorizationError, NotFoundError
from bizdash.apps.billing.models import Plan


def _user(db_session, org, role, *, email=None, active=True):
    user = services.create_user(
        db_session,
        email=email or f"{role.value}@example.test",
        organization_id=org.id,
        role=role,
    )
    if not active:
        user.is_active = False
        db_session.commit()
    return user


@pytest.fixture()
def org(db_session):
    return services.create_organization(db_session, name="  Studio Nord ", contact_email=" Hello@Nord.TEST ")


def test_create_organization_normalises_fields_and_creates_record(db_session, org):
    assert org.name == "Studio Nord"
    assert org.contact_email == "hello@nord.test"
    record = store.get_record(db_session, org.id)
    assert record.plan == Plan.FREE


def test_only_owner_manages_subscription(db_session, org):
    owner = _user(db_session, org, OrgRole.OWNER)
    admin = _user(db_session, org, OrgRole.ADMIN)
    member = _user(db_session, org, OrgRole.MEMBER)

    assert permissions.has_permission(owner, permissions.MANAGE_SUBSCRIPTION)
    assert not permissions.has_permission(admin, permissions.MANAGE_SUBSCRIPTION)
    assert not permissions.has_permission(member, permissions.MANAGE_SUBSCRIPTION)


@pytest.mark.parametrize("role", [OrgRole.OWNER, OrgRole.ADMIN, OrgRole.MEMBER])
def test_every_active_role_can_view_billing(db_session, org, role):
    user = _user(db_session, org, role)

    assert permissions.has_permission(user, permissions.VIEW_BILLING)


def test_inactive_owner_has_no_permissions(db_session, org):
    owner = _user(db_session, org, OrgRole.OWNER, active=False)

    assert not permissions.has_permission(owner, permissions.MANAGE_SUBSCRIPTION)
    with pytest.raises(AuthorizationError):
        permissions.require_permission(owner, permissions.MANAGE_SUBSCRIPTION)


def test_require_permission_returns_user(db_session, org):
    owner = _user(db_session, org, OrgRole.OWNER)

    assert permissions.require_permission(owner, permissions.MANAGE_SUBSCRIPTION) is owner


def test_resolve_organization_id(db_session, org):
    owner = _user(db_session, org, OrgRole.OWNER)
    orphan = services.create_user(db_session, email="orphan@example.test", organization_id=None)

    assert services.resolve_organization_id(db_session, owner) == org.id
    with pytest.raises(NotFoundError):
        services.resolve_organization_id(db_session, orphan)


def test_create_user_normalises_email(db_session, org):
    user = services.create_user(db_session, email=" Mixed@Case.TEST ", organization_id=org.id)

    assert user.email == "mixed@case.test"
    assert user.role == OrgRole.MEMBER
    assert services.get_user_by_id(db_session, user.id) is user
