"""Permission guard tests — pure functions over AuthContext values."""

import uuid

import pytest

from tollgate.auth.context import ANONYMOUS, ApiKeyContext, CredentialRecord, SessionContext
from tollgate.auth.errors import (
    AdminNotConfigured,
    IdentityNotAllowed,
    InsufficientPermission,
    InsufficientRole,
    InvalidAdminKey,
    MissingCredential,
    MissingScope,
    ResourceNotFound,
    ScopeMismatch,
    TwoFactorRequired,
)
from tollgate.auth.guard import (
    OPEN,
    GuardSpec,
    check_resource_scope,
    evaluate_guard,
    verify_admin_key,
)

ORG_A = uuid.uuid4()
ORG_B = uuid.uuid4()
P1 = uuid.uuid4()
P2 = uuid.uuid4()


def _session(role="member", org=ORG_A, tfa=False, project=None):
    return SessionContext(
        user_id=uuid.uuid4(),
        organization_id=org,
        role=role,
        two_factor_enabled=tfa,
        project_id=project,
    )


def _api_key(permissions=("traces:read",), org=ORG_A, project=None):
    record = CredentialRecord(
        id=uuid.uuid4(),
        name="k",
        key_hash="0" * 64,
        key_prefix="tg_live_0000",
        user_id=uuid.uuid4(),
        organization_id=org,
        project_id=project,
        permissions=list(permissions),
        rate_limit=100,
    )
    return ApiKeyContext(credential=record, organization_id=org, project_id=project)


ADMIN_ONLY = GuardSpec(identity_types={"session"}, roles={"owner", "admin"})


# ═══════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════


def test_member_denied_on_owner_admin_endpoint():
    with pytest.raises(InsufficientRole) as exc:
        evaluate_guard(_session("member"), ADMIN_ONLY)
    assert exc.value.status_code == 403
    assert exc.value.extra["required"] == ["admin", "owner"]
    assert "admin or owner" in exc.value.message


def test_member_allowed_after_promotion():
    evaluate_guard(_session("admin", tfa=True), ADMIN_ONLY)


def test_role_check_ignores_api_keys():
    spec = GuardSpec(roles={"owner"}, permissions={"traces:read"})
    evaluate_guard(_api_key(), spec)


# ═══════════════════════════════════════════════════════════
# Permissions (OR semantics)
# ═══════════════════════════════════════════════════════════


def test_permission_any_of_passes():
    spec = GuardSpec(permissions={"traces:write", "traces:read"})
    evaluate_guard(_api_key(permissions=["traces:read"]), spec)


def test_permission_missing_denied_with_names():
    spec = GuardSpec(permissions={"traces:write"})
    with pytest.raises(InsufficientPermission) as exc:
        evaluate_guard(_api_key(permissions=["traces:read"]), spec)
    assert exc.value.extra["required"] == ["traces:write"]


def test_permissions_do_not_apply_to_sessions():
    evaluate_guard(_session(), GuardSpec(permissions={"traces:write"}))


# ═══════════════════════════════════════════════════════════
# Identity type, scope, anonymous
# ═══════════════════════════════════════════════════════════


def test_anonymous_denied_unless_open():
    with pytest.raises(MissingCredential):
        evaluate_guard(ANONYMOUS, GuardSpec())
    evaluate_guard(ANONYMOUS, OPEN)


def test_identity_type_filter():
    with pytest.raises(IdentityNotAllowed):
        evaluate_guard(_api_key(), GuardSpec(identity_types={"session"}))


def test_missing_organization():
    with pytest.raises(MissingScope) as exc:
        evaluate_guard(_session(org=None), GuardSpec(require_organization=True))
    assert "Select an organization first" in exc.value.message


def test_missing_project():
    with pytest.raises(MissingScope):
        evaluate_guard(_api_key(), GuardSpec(require_project=True))
    evaluate_guard(_api_key(project=P1), GuardSpec(require_project=True))


def test_scope_checked_before_role():
    spec = GuardSpec(roles={"owner"}, require_organization=True)
    with pytest.raises(MissingScope):
        evaluate_guard(_session("member", org=None), spec)


# ═══════════════════════════════════════════════════════════
# Two-factor for privileged roles
# ═══════════════════════════════════════════════════════════

TFA_SPEC = GuardSpec(require_2fa_for_privileged=True)


@pytest.mark.parametrize("role", ["owner", "admin"])
def test_privileged_role_without_2fa_denied(role):
    with pytest.raises(TwoFactorRequired) as exc:
        evaluate_guard(_session(role, tfa=False), TFA_SPEC)
    assert exc.value.code == "2FA_REQUIRED"


def test_privileged_role_with_2fa_allowed():
    evaluate_guard(_session("owner", tfa=True), TFA_SPEC)


def test_member_never_needs_2fa():
    evaluate_guard(_session("member", tfa=False), TFA_SPEC)


def test_2fa_enforcement_can_be_disabled_globally():
    evaluate_guard(_session("owner", tfa=False), TFA_SPEC, enforce_2fa=False)


# ═══════════════════════════════════════════════════════════
# Resource scope
# ═══════════════════════════════════════════════════════════


def test_api_key_other_tenant_resource_is_403():
    with pytest.raises(ScopeMismatch):
        check_resource_scope(_api_key(org=ORG_A), ORG_B, None)


def test_api_key_other_project_resource_is_403():
    with pytest.raises(ScopeMismatch):
        check_resource_scope(_api_key(project=P1), ORG_A, P2)
    check_resource_scope(_api_key(project=P1), ORG_A, P1)


def test_org_less_api_key_matches_no_tenant():
    with pytest.raises(ScopeMismatch):
        check_resource_scope(_api_key(org=None), ORG_A, P1)


def test_session_other_tenant_resource_is_404():
    with pytest.raises(ResourceNotFound) as exc:
        check_resource_scope(_session(org=ORG_A), ORG_B, None)
    assert exc.value.status_code == 404


def test_anonymous_resource_read_denied():
    with pytest.raises(MissingCredential):
        check_resource_scope(ANONYMOUS, ORG_A)


# ═══════════════════════════════════════════════════════════
# Admin secret
# ═══════════════════════════════════════════════════════════


def test_admin_key_not_configured():
    with pytest.raises(AdminNotConfigured) as exc:
        verify_admin_key("Bearer anything", "")
    assert exc.value.status_code == 503


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer wrong", "Basic s3cret-admin"])
def test_admin_key_mismatch(header):
    with pytest.raises(InvalidAdminKey):
        verify_admin_key(header, "s3cret-admin")


def test_admin_key_match():
    verify_admin_key("Bearer s3cret-admin", "s3cret-admin")


def test_guard_spec_accepts_plain_sets():
    spec = GuardSpec(roles=["owner"], permissions=("a:b",))
    assert spec.roles == frozenset({"owner"})
    assert spec.permissions == frozenset({"a:b"})
    assert hash(spec)
