"""
PermissionResolver -- field capabilities and action decisions.

Responsibility:
    Answer two questions for a (user, entity) pair: which fields may be seen
    or edited in a given view kind, and whether an action is allowed,
    optionally against a specific record.

Architecture position:
    Kernel > Services.  Reads configuration only through a
    ``ConfigurationSnapshot``; performs no writes.

Invariants enforced:
    - editable implies visible for every returned capability.
    - Fields are returned in (field_order, field_name) order.
    - Missing field permission rows fall back to DEFAULT_FIELD_FLAGS.
    - Action decisions are deny-by-default: a missing or inactive user, a
      missing rule, ``is_allowed = false`` and a conditional rule without a
      record all deny.  An inactive role denies every action and sees no
      fields.  An active ``admin`` role bypasses action rules.

Failure modes:
    - UnknownEntityTypeError: entity not configured.
    - UnknownRoleError: the user's role row is missing.
    A missing or inactive user is denied, never raised.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from procure_kernel.domain.capabilities import (
    DEFAULT_FIELD_FLAGS,
    FieldCapability,
    FieldCapabilitySet,
    UserIdentity,
)
from procure_kernel.domain.entity_schema import ViewKind
from procure_kernel.exceptions import ActionDeniedError
from procure_kernel.logging_config import get_logger
from procure_kernel.services.config_cache import ConfigurationSnapshot

logger = get_logger("services.permission_resolver")


def as_user_id(value: Any) -> UUID | None:
    """Normalize a user id; malformed ids map to None (an unknown user)."""
    if isinstance(value, UUID):
        return value
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class PermissionResolver:
    """Resolves field capabilities and action permissions."""

    def __init__(self, config: ConfigurationSnapshot):
        self._config = config

    def _active_user(self, user_id: Any) -> UserIdentity | None:
        uid = as_user_id(user_id)
        if uid is None:
            return None
        user = self._config.user(uid)
        if user is None or not user.is_active or user.role_id is None:
            return None
        return user

    def field_capabilities(
        self, user_id: Any, entity_name: str, view_kind: ViewKind | str,
    ) -> FieldCapabilitySet:
        """
        Capabilities for every field of ``entity_name`` in ``view_kind``.

        An unknown or inactive user, or one whose role is inactive, sees nothing.
        """
        view_kind = ViewKind(view_kind)
        entity = self._config.entity(entity_name)
        user = self._active_user(user_id)

        if user is None:
            capabilities = tuple(
                FieldCapability(field=f, visible=False, editable=False) for f in entity.fields
            )
            return FieldCapabilitySet(entity_name, view_kind, capabilities)

        permissions = self._config.role_permissions(entity, user)
        if not permissions.is_active:
            capabilities = tuple(
                FieldCapability(field=f, visible=False, editable=False) for f in entity.fields
            )
            return FieldCapabilitySet(entity_name, view_kind, capabilities)

        capabilities = []
        for spec in sorted(entity.fields, key=lambda f: (f.field_order, f.field_name)):
            flags = permissions.field_flags.get(spec.field_name, DEFAULT_FIELD_FLAGS)
            visible, editable = flags.for_view(view_kind)
            capabilities.append(FieldCapability(field=spec, visible=visible, editable=editable))
        return FieldCapabilitySet(entity_name, view_kind, tuple(capabilities))

    def can_perform_action(
        self,
        user_id: Any,
        entity_name: str,
        action: str,
        record: Mapping[str, Any] | None = None,
    ) -> bool:
        entity = self._config.entity(entity_name)
        user = self._active_user(user_id)
        if user is None:
            return self._deny(user_id, entity_name, action, "inactive_or_unknown_user")

        permissions = self._config.role_permissions(entity, user)
        if not permissions.is_active:
            return self._deny(user_id, entity_name, action, "inactive_role")
        if permissions.is_admin:
            return True

        rule = permissions.action_rules.get(action)
        if rule is None:
            return self._deny(user_id, entity_name, action, "no_rule")
        if not rule.is_allowed:
            return self._deny(user_id, entity_name, action, "rule_disallows")
        if rule.condition is None:
            return True
        if record is None:
            return self._deny(user_id, entity_name, action, "condition_without_record")
        if not rule.condition.evaluate(record, user.user_id):
            return self._deny(user_id, entity_name, action, "condition_failed")
        return True

    def require_action(
        self,
        user_id: Any,
        entity_name: str,
        action: str,
        record: Mapping[str, Any] | None = None,
    ) -> None:
        """Raise ActionDeniedError unless ``can_perform_action`` allows."""
        if not self.can_perform_action(user_id, entity_name, action, record):
            raise ActionDeniedError(str(user_id), entity_name, action)

    def allowed_actions(self, user_id: Any, entity_name: str) -> tuple[str, ...]:
        """Sorted names of actions allowed without a record."""
        entity = self._config.entity(entity_name)
        user = self._active_user(user_id)
        if user is None:
            return ()
        permissions = self._config.role_permissions(entity, user)
        if not permissions.is_active:
            return ()
        return tuple(
            sorted(
                name
                for name, rule in permissions.action_rules.items()
                if permissions.is_admin or (rule.is_allowed and rule.condition is None)
            )
        )

    def check_actions(
        self,
        user_id: Any,
        entity_name: str,
        actions: Iterable[str],
        record: Mapping[str, Any] | None = None,
    ) -> dict[str, bool]:
        return {
            action: self.can_perform_action(user_id, entity_name, action, record)
            for action in actions
        }

    def _deny(self, user_id: Any, entity_name: str, action: str, reason: str) -> bool:
        logger.info(
            "permission_denied",
            extra={
                "actor_id": str(user_id),
                "entity_type": entity_name,
                "action": action,
                "reason": reason,
            },
        )
        return False
