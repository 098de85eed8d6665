"""
Typed Exception Hierarchy for the Procure Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The view layer must render different messages for "you typed a bad filter",
"you are not allowed to do that", "this screen is not set up" and "that row
does not exist".  Parsing message strings to tell those apart is fragile, so
every error here:

  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

Example - WRONG way:
    try:
        data_service.fetch_list(...)
    except Exception as e:
        if "permission" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        data_service.fetch_list(...)
    except ActionDeniedError as e:
        log.warning("denied", extra={"action": e.action})
        api_response(code=e.code, entity=e.entity_type)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProcureKernelError:

    ProcureKernelError (base)
    |
    +-- ValidationError                 client-fixable input problems
    |   +-- UnknownFilterFieldError
    |   +-- FilterValueTypeError
    |   +-- InvalidSortError
    |   +-- InvalidPaginationError
    |   +-- MassAssignmentError
    |
    +-- AuthorizationError              known entity/action, denied
    |   +-- ActionDeniedError
    |   +-- FieldAccessDeniedError
    |
    +-- ConfigurationError              operator-fixable setup gaps
    |   +-- UnknownEntityTypeError
    |   +-- UnknownRoleError
    |   +-- TemplateNotFoundError
    |   +-- TemplateSyntaxError
    |   +-- FieldMappingError
    |
    +-- NotFoundError
    |   +-- RecordNotFoundError
    |
    +-- WorkflowError                   business-rule rejection (internal)
    |   +-- InvalidTransitionError
    |   +-- BusinessRuleViolation
    |   +-- StatusConflictError
    |
    +-- BackendError                    storage failure, never shown raw

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | UNKNOWN_FILTER_FIELD        | Filter key matches no field definition
                | FILTER_VALUE_TYPE           | Value fails the field's type pattern
                | INVALID_SORT                | Unknown sort field or direction
                | INVALID_PAGINATION          | Page/page size is not an integer
                | MASS_ASSIGNMENT             | Update touches a non-mutable field
----------------|-----------------------------|-----------------------------------------
Authorization   | ACTION_DENIED               | Role lacks the action or row rule fails
                | FIELD_ACCESS_DENIED         | Filter/sort on a field the role can't see
----------------|-----------------------------|-----------------------------------------
Configuration   | UNKNOWN_ENTITY_TYPE         | Entity name not configured
                | UNKNOWN_ROLE                | User's role row missing
                | TEMPLATE_NOT_FOUND          | No active template for entity/view
                | TEMPLATE_SYNTAX             | Unbalanced or mismatched section tag
                | FIELD_MAPPING               | Field definition names a missing column
----------------|-----------------------------|-----------------------------------------
NotFound        | RECORD_NOT_FOUND            | Row absent or soft-deleted
----------------|-----------------------------|-----------------------------------------
Workflow        | INVALID_TRANSITION          | Action not legal from current status
                | BUSINESS_RULE_VIOLATION     | Overpayment, over-receipt, etc.
                | STATUS_CONFLICT             | Concurrent transition won the race
----------------|-----------------------------|-----------------------------------------
Backend         | BACKEND_ERROR               | SQLAlchemy/driver failure

===============================================================================
HANDLING PATTERNS
===============================================================================

1. WORKFLOW ERRORS NEVER ESCAPE A WORKFLOW OPERATION.  They are raised inside
   the atomic unit and converted to ``WorkflowResult(success=False)`` by the
   workflow runner, so callers branch on ``result.is_success``.

2. THE VIEW GENERATOR CATCHES EVERYTHING.  ValidationError and NotFoundError
   messages are safe to show; AuthorizationError gets a fixed message;
   ConfigurationError and BackendError are logged in full and shown as a
   generic message.

3. BACKEND TEXT IS NEVER RENDERED.  BackendError keeps the original driver
   exception on ``.original`` for server-side logs only.
"""


class ProcureKernelError(Exception):
    """
    Base exception for all procure kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCURE_KERNEL_ERROR"


# Validation exceptions


class ValidationError(ProcureKernelError):
    """Malformed or unknown client input."""

    code: str = "VALIDATION_ERROR"


class UnknownFilterFieldError(ValidationError):
    """Filter key does not resolve to a known field after suffix stripping."""

    code: str = "UNKNOWN_FILTER_FIELD"

    def __init__(self, filter_key: str, entity_type: str | None = None):
        self.filter_key = filter_key
        self.entity_type = entity_type
        super().__init__(f"Unknown filter field: {filter_key}")


class FilterValueTypeError(ValidationError):
    """Filter value does not match the field's declared value kind."""

    code: str = "FILTER_VALUE_TYPE"

    def __init__(self, field_name: str, expected_kind: str, value: object):
        self.field_name = field_name
        self.expected_kind = expected_kind
        self.value = value
        super().__init__(
            f"Invalid value for {field_name}: expected {expected_kind}"
        )


class InvalidSortError(ValidationError):
    """Sort field is not allow-listed or direction is not ASC/DESC."""

    code: str = "INVALID_SORT"

    def __init__(self, sort_field: str | None, sort_direction: str | None, reason: str):
        self.sort_field = sort_field
        self.sort_direction = sort_direction
        self.reason = reason
        super().__init__(f"Invalid sort: {reason}")


class InvalidPaginationError(ValidationError):
    """Page or page size is not an integer."""

    code: str = "INVALID_PAGINATION"

    def __init__(self, parameter: str, value: object):
        self.parameter = parameter
        self.value = value
        super().__init__(f"Invalid {parameter}: must be an integer")


class MassAssignmentError(ValidationError):
    """
    Update payload names fields outside the entity's mutable allow-list.

    Raised before any write so a partial update never happens.
    """

    code: str = "MASS_ASSIGNMENT"

    def __init__(self, entity_type: str, rejected_fields: list[str]):
        self.entity_type = entity_type
        self.rejected_fields = sorted(rejected_fields)
        super().__init__(
            f"Fields not updatable on {entity_type}: {', '.join(self.rejected_fields)}"
        )


# Authorization exceptions


class AuthorizationError(ProcureKernelError):
    """Known entity/action, denied by permission rules."""

    code: str = "AUTHORIZATION_ERROR"


class ActionDeniedError(AuthorizationError):
    """User's role does not allow the action (or the row rule failed)."""

    code: str = "ACTION_DENIED"

    def __init__(self, user_id: str, entity_type: str, action: str):
        self.user_id = user_id
        self.entity_type = entity_type
        self.action = action
        super().__init__(f"Action '{action}' denied on {entity_type}")


class FieldAccessDeniedError(AuthorizationError):
    """Filter or sort references a field the role cannot see."""

    code: str = "FIELD_ACCESS_DENIED"

    def __init__(self, entity_type: str, field_name: str):
        self.entity_type = entity_type
        self.field_name = field_name
        super().__init__(f"Field '{field_name}' is not accessible on {entity_type}")


# Configuration exceptions


class ConfigurationError(ProcureKernelError):
    """Missing or inconsistent configuration rows."""

    code: str = "CONFIGURATION_ERROR"


class UnknownEntityTypeError(ConfigurationError):
    """Entity name is not configured (or inactive)."""

    code: str = "UNKNOWN_ENTITY_TYPE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: {entity_type}")


class UnknownRoleError(ConfigurationError):
    """A user references a role row that does not exist."""

    code: str = "UNKNOWN_ROLE"

    def __init__(self, role_id: str, user_id: str | None = None):
        self.role_id = role_id
        self.user_id = user_id
        super().__init__(f"Unknown role: {role_id}")


class TemplateNotFoundError(ConfigurationError):
    """No active template exists for the entity/view kind."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, entity_type: str, view_kind: str):
        self.entity_type = entity_type
        self.view_kind = view_kind
        super().__init__(f"No active {view_kind} template for {entity_type}")


class TemplateSyntaxError(ConfigurationError):
    """Template has unbalanced or mismatched section tags."""

    code: str = "TEMPLATE_SYNTAX"

    def __init__(self, message: str, tag: str, position: int):
        self.tag = tag
        self.position = position
        super().__init__(f"{message}: '{tag}' at offset {position}")


class FieldMappingError(ConfigurationError):
    """Field definition or entity type names a table/column the ORM lacks."""

    code: str = "FIELD_MAPPING"

    def __init__(self, entity_type: str, name: str):
        self.entity_type = entity_type
        self.name = name
        super().__init__(f"{entity_type}: '{name}' is not mapped to storage")


# Not-found exceptions


class NotFoundError(ProcureKernelError):
    """Requested row is absent."""

    code: str = "NOT_FOUND"


class RecordNotFoundError(NotFoundError):
    """Record is absent or soft-deleted."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, entity_type: str, record_id: str):
        self.entity_type = entity_type
        self.record_id = record_id
        super().__init__(f"{entity_type} record not found: {record_id}")


# Workflow exceptions (converted to WorkflowResult at the service boundary)


class WorkflowError(ProcureKernelError):
    """Expected business-rule rejection."""

    code: str = "WORKFLOW_ERROR"
    result_code: str = "workflow_error"

    def __init__(self, reason: str, result_code: str | None = None):
        self.reason = reason
        if result_code is not None:
            self.result_code = result_code
        super().__init__(reason)


class InvalidTransitionError(WorkflowError):
    """Action is not legal from the entity's current status."""

    code: str = "INVALID_TRANSITION"
    result_code: str = "invalid_transition"

    def __init__(self, workflow: str, current_status: str, action: str):
        self.workflow = workflow
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {workflow} in status '{current_status}'"
        )


class BusinessRuleViolation(WorkflowError):
    """A domain rule (overpayment, over-receipt, missing reason, ...) failed."""

    code: str = "BUSINESS_RULE_VIOLATION"
    result_code: str = "business_rule_violation"


class StatusConflictError(WorkflowError):
    """Compare-and-set status update lost to a concurrent transition."""

    code: str = "STATUS_CONFLICT"
    result_code: str = "status_conflict"

    def __init__(self, workflow: str, entity_id: str, expected_status: str):
        self.workflow = workflow
        self.entity_id = entity_id
        self.expected_status = expected_status
        super().__init__(
            f"{workflow} {entity_id} changed concurrently "
            f"(expected status '{expected_status}')"
        )


# Backend exceptions


class BackendError(ProcureKernelError):
    """
    Storage-layer failure.

    The message is generic; the driver exception stays on ``original`` so it
    can be logged server-side without reaching an end user.
    """

    code: str = "BACKEND_ERROR"

    def __init__(self, operation: str, original: BaseException | None = None):
        self.operation = operation
        self.original = original
        super().__init__(f"Storage failure during {operation}")
