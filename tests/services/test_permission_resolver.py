"""
Tests for PermissionResolver.

Validates:
- Field capabilities per role and view kind, with default flags for
  fields that have no permission row
- Editable never exceeds visible
- Action permissions: explicit allow, explicit deny, missing rule, admin
  bypass, row conditions
- Unknown and inactive users see nothing and may do nothing
"""

from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from procure_kernel.domain.entity_schema import ViewKind
from procure_kernel.exceptions import ActionDeniedError, UnknownEntityTypeError
from procure_kernel.models import RoleModel
from procure_kernel.services.permission_resolver import PermissionResolver


# =============================================================================
# Field capabilities
# =============================================================================


class TestFieldCapabilities:
    """Visibility and editability per view."""

    def test_fields_ordered_by_field_order(self, resolver, ui_config):
        caps = resolver.field_capabilities(ui_config.buyer_id, "purchase_order", ViewKind.LIST)

        assert [c.field_name for c in caps][:3] == ["po_number", "supplier_id", "po_date"]

    def test_defaults_without_permission_rows(self, resolver, ui_config):
        """Buyer has no field rows: list visible/read-only, forms editable, view read-only."""
        for view_kind, editable in (
            (ViewKind.LIST, False),
            (ViewKind.FORM_CREATE, True),
            (ViewKind.FORM_EDIT, True),
            (ViewKind.FORM_VIEW, False),
        ):
            caps = resolver.field_capabilities(ui_config.buyer_id, "purchase_order", view_kind)
            assert all(c.visible for c in caps)
            assert all(c.editable is editable for c in caps), view_kind

    def test_hidden_field_for_clerk(self, resolver, ui_config):
        for view_kind in (ViewKind.LIST, ViewKind.FORM_VIEW, ViewKind.FORM_EDIT):
            caps = resolver.field_capabilities(ui_config.clerk_id, "purchase_order", view_kind)
            assert not caps.can_see("total_amount")
            assert caps.can_see("po_number")

    def test_read_only_field_for_clerk(self, resolver, ui_config):
        caps = resolver.field_capabilities(ui_config.clerk_id, "purchase_order", ViewKind.FORM_EDIT)

        assert caps.can_see("po_number")
        assert not caps.can_edit("po_number")
        assert caps.can_edit("notes")

    def test_row_partial_uses_list_flags(self, resolver, ui_config):
        caps = resolver.field_capabilities(ui_config.clerk_id, "purchase_order", "row_partial")

        assert caps.view_kind is ViewKind.ROW_PARTIAL
        assert not caps.can_see("total_amount")

    def test_inactive_user_sees_nothing(self, resolver, ui_config):
        caps = resolver.field_capabilities(ui_config.inactive_id, "purchase_order", ViewKind.LIST)

        assert len(caps) > 0
        assert caps.visible_names() == frozenset()

    def test_unknown_user_sees_nothing(self, resolver, ui_config):
        caps = resolver.field_capabilities(uuid4(), "purchase_order", ViewKind.FORM_EDIT)

        assert caps.editable_names() == frozenset()

    def test_malformed_user_id_is_unknown(self, resolver, ui_config):
        caps = resolver.field_capabilities("not-a-uuid", "purchase_order", ViewKind.LIST)

        assert caps.visible_names() == frozenset()

    def test_unknown_entity_raises(self, resolver, ui_config):
        with pytest.raises(UnknownEntityTypeError):
            resolver.field_capabilities(ui_config.buyer_id, "spaceship", ViewKind.LIST)

    @given(
        view_kind=st.sampled_from(list(ViewKind)),
        who=st.sampled_from(["admin_id", "buyer_id", "approver_id", "clerk_id", "inactive_id"]),
    )
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_editable_implies_visible(self, resolver, ui_config, view_kind, who):
        caps = resolver.field_capabilities(getattr(ui_config, who), "purchase_order", view_kind)

        assert caps.editable_names() <= caps.visible_names()


# =============================================================================
# Action permissions
# =============================================================================


class TestActionPermissions:
    """Action rules, admin bypass and row conditions."""

    def test_explicit_allow(self, resolver, ui_config):
        assert resolver.can_perform_action(ui_config.buyer_id, "purchase_order", "submit")

    def test_explicit_deny(self, resolver, ui_config):
        assert not resolver.can_perform_action(ui_config.buyer_id, "purchase_order", "approve")

    def test_missing_rule_denies(self, resolver, ui_config):
        assert not resolver.can_perform_action(ui_config.approver_id, "purchase_order", "delete")

    def test_admin_bypasses_rules(self, resolver, ui_config):
        assert resolver.can_perform_action(ui_config.admin_id, "purchase_order", "anything")
        assert resolver.can_perform_action(ui_config.admin_id, "payment", "reverse")

    def test_inactive_user_denied(self, resolver, ui_config):
        assert not resolver.can_perform_action(ui_config.inactive_id, "purchase_order", "read")

    def test_condition_without_record_denies(self, resolver, ui_config):
        assert not resolver.can_perform_action(ui_config.clerk_id, "purchase_order", "edit")

    def test_condition_on_own_record(self, resolver, ui_config):
        own = {"created_by_id": ui_config.clerk_id}
        other = {"created_by_id": ui_config.buyer_id}

        assert resolver.can_perform_action(ui_config.clerk_id, "purchase_order", "edit", own)
        assert not resolver.can_perform_action(ui_config.clerk_id, "purchase_order", "edit", other)

    def test_require_action_raises(self, resolver, ui_config):
        with pytest.raises(ActionDeniedError) as exc_info:
            resolver.require_action(ui_config.approver_id, "purchase_order", "create")

        assert exc_info.value.action == "create"
        assert exc_info.value.code == "ACTION_DENIED"

    def test_allowed_actions_excludes_conditional(self, resolver, ui_config):
        assert resolver.allowed_actions(ui_config.clerk_id, "purchase_order") == ("read",)

    def test_allowed_actions_for_approver(self, resolver, ui_config):
        assert resolver.allowed_actions(ui_config.approver_id, "purchase_order") == (
            "approve", "read", "reject",
        )

    def test_check_actions(self, resolver, ui_config):
        result = resolver.check_actions(ui_config.approver_id, "purchase_order", ["read", "create"])

        assert result == {"read": True, "create": False}

    def test_denial_logged(self, resolver, ui_config, captured_logs):
        resolver.can_perform_action(ui_config.approver_id, "purchase_order", "delete")

        denied = [r for r in captured_logs() if r["message"] == "permission_denied"]
        assert denied[-1]["reason"] == "no_rule"
        assert denied[-1]["action"] == "delete"


class TestInactiveRole:
    """A deactivated role loses its rules, including the admin bypass."""

    @pytest.fixture
    def deactivate(self, session, config_provider, ui_config):
        def _deactivate(role_name):
            session.get(RoleModel, ui_config.roles[role_name]).is_active = False
            session.flush()
            return PermissionResolver(config_provider.snapshot(session))

        return _deactivate

    def test_inactive_admin_does_not_bypass(self, deactivate, ui_config, captured_logs):
        resolver = deactivate("admin")

        assert not resolver.can_perform_action(ui_config.admin_id, "purchase_order", "delete")
        denied = [r for r in captured_logs() if r["message"] == "permission_denied"]
        assert denied[-1]["reason"] == "inactive_role"

    def test_inactive_role_denies_granted_action(self, deactivate, ui_config):
        resolver = deactivate("buyer")

        assert not resolver.can_perform_action(ui_config.buyer_id, "purchase_order", "submit")
        assert resolver.allowed_actions(ui_config.buyer_id, "purchase_order") == ()

    def test_inactive_role_sees_no_fields(self, deactivate, ui_config):
        resolver = deactivate("buyer")

        caps = resolver.field_capabilities(ui_config.buyer_id, "purchase_order", ViewKind.FORM_EDIT)

        assert caps.visible_names() == frozenset()

    def test_other_roles_unaffected(self, deactivate, ui_config):
        resolver = deactivate("admin")

        assert resolver.can_perform_action(ui_config.buyer_id, "purchase_order", "submit")
