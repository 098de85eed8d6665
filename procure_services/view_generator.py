"""
procure_services.view_generator -- Permission-aware HTML view rendering.

Responsibility:
    Turn (user, entity, view kind, request parameters) into a complete HTML
    fragment: check the action, pick the active template, fetch the
    projected data, build the template payload and render it.  Form output
    is post-processed so hidden controls are removed and read-only ones
    disabled.

Architecture position:
    Services layer.  Composes kernel services (configuration snapshot,
    permission resolver, data service, generation logger) and the pure
    template renderer.  Never writes business data.

Invariants enforced:
    - Every failure becomes an escaped, length-bounded error fragment;
      backend and unexpected error text never reaches the user.
    - Every attempt, success or failure, is handed to the generation
      logger; a logger failure never affects the response.
    - Hidden fields are never in the payload: the data service does not
      project them and the field list only carries capabilities.

Failure modes:
    None raised.  Failures are reported through ``ViewResponse.success`` and
    ``ViewResponse.error_code``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from procure_kernel.domain.capabilities import FieldCapabilitySet
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.entity_schema import ViewKind
from procure_kernel.domain.field_masking import apply_field_permissions
from procure_kernel.domain.template_renderer import escape_html, to_display_text
from procure_kernel.exceptions import (
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from procure_kernel.logging_config import LogContext, get_logger
from procure_kernel.services.config_cache import ConfigurationSnapshot
from procure_kernel.services.data_service import DataService
from procure_kernel.services.generation_logger import GenerationLogEntry, NullGenerationLogger
from procure_kernel.services.permission_resolver import PermissionResolver, as_user_id

logger = get_logger("services.view_generator")

DEFAULT_ERROR_MESSAGE_MAX_LENGTH = 200
DEFAULT_ACTION_FLAGS = ("create", "edit", "delete", "read", "approve", "submit")

MESSAGE_DENIED = "You do not have permission to perform this action."
MESSAGE_NOT_CONFIGURED = "This view is not configured."
MESSAGE_UNEXPECTED = "An unexpected error occurred."

GENERATION_LOG_ERROR_MAX_LENGTH = 1000

FORM_VIEW_KINDS = (ViewKind.FORM_CREATE, ViewKind.FORM_EDIT, ViewKind.FORM_VIEW)


@dataclass(frozen=True)
class ViewResponse:
    """Rendered HTML plus outcome; ``error_code`` is the exception code."""

    html: str
    success: bool
    error_code: str | None = None
    row_count: int = 0

    @property
    def output_size_bytes(self) -> int:
        return len(self.html.encode("utf-8"))


class UnsupportedViewKindError(ValidationError):
    """View kind is unknown or not valid for the requested operation."""

    code: str = "UNSUPPORTED_VIEW_KIND"

    def __init__(self, view_kind: object):
        self.view_kind = view_kind
        super().__init__(f"Unsupported view kind: {view_kind}")


class MissingRecordIdError(ValidationError):
    code: str = "MISSING_RECORD_ID"

    def __init__(self, view_kind: str):
        self.view_kind = view_kind
        super().__init__(f"A record id is required for {view_kind}")


def error_fragment(message: str, max_length: int = DEFAULT_ERROR_MESSAGE_MAX_LENGTH) -> str:
    """Bounded, escaped error markup."""
    if len(message) > max_length:
        message = message[: max(0, max_length - 3)] + "..."
    return f'<div class="error-message" role="alert">{escape_html(message)}</div>'


def _truncate(text: str, max_length: int) -> str:
    return text if len(text) <= max_length else text[:max_length]


class ViewGenerator:
    """
    Renders list, form and row views for one request.

    Contract:
        ``render_*`` methods never raise; they return ``ViewResponse``.
    """

    def __init__(
        self,
        session: Session,
        config: ConfigurationSnapshot,
        resolver: PermissionResolver | None = None,
        data_service: DataService | None = None,
        clock: Clock | None = None,
        generation_logger=None,
        error_message_max_length: int = DEFAULT_ERROR_MESSAGE_MAX_LENGTH,
        action_flags: Sequence[str] = DEFAULT_ACTION_FLAGS,
    ):
        self.session = session
        self._config = config
        self._resolver = resolver or PermissionResolver(config)
        self._data = data_service or DataService(session, config, self._resolver)
        self._clock = clock or SystemClock()
        self._generation_logger = generation_logger or NullGenerationLogger()
        self._max_error_length = error_message_max_length
        self._action_flags = tuple(action_flags)

    # -- public API --------------------------------------------------------

    def render_list(
        self,
        user_id: Any,
        entity_name: str,
        filters: Mapping[str, Any] | None = None,
        sort: str | None = None,
        sort_dir: str | None = None,
        page: Any = 1,
        page_size: Any = None,
    ) -> ViewResponse:
        def build() -> tuple[str, int]:
            self._resolver.require_action(user_id, entity_name, "read")
            template = self._config.template(entity_name, ViewKind.LIST)
            entity = self._config.entity(entity_name)
            list_page = self._data.fetch_list(
                user_id, entity_name, filters, sort, sort_dir, page, page_size,
            )
            caps = self._resolver.field_capabilities(user_id, entity_name, ViewKind.LIST)
            payload: dict[str, Any] = {
                "entity_name": entity.entity_name,
                "entity_display_name": entity.display_name,
                "records": list(list_page.records),
                "fields": [f.to_template_data() for f in caps.visible_fields()],
                "filters": [{"key": k, "value": v} for k, v in sorted(list_page.filters.items())],
                "has_records": bool(list_page.records),
                "pagination": list_page.to_template_data(),
            }
            payload.update(list_page.to_template_data())
            payload.update(self._action_flags_for(user_id, entity_name))
            return template.compiled.render(payload), len(list_page.records)

        return self._attempt(user_id, entity_name, ViewKind.LIST.value, build)

    def render_form(
        self,
        user_id: Any,
        entity_name: str,
        view_kind: ViewKind | str,
        record_id: Any = None,
    ) -> ViewResponse:
        """
        Render a create, edit or read-only form.

        form_create needs ``create`` and has no record; form_edit and
        form_view load the record, so a missing row reports not-found before
        any permission decision about it.
        """
        kind_label = view_kind.value if isinstance(view_kind, ViewKind) else str(view_kind)

        def build() -> tuple[str, int]:
            kind = self._form_kind(view_kind)
            if kind is ViewKind.FORM_CREATE:
                self._resolver.require_action(user_id, entity_name, "create")
                record: dict[str, Any] = {}
                raw = None
            else:
                if record_id is None or record_id == "":
                    raise MissingRecordIdError(kind.value)
                record = self._data.fetch_record(user_id, entity_name, record_id, kind)
                raw = self._data.fetch_record_any(entity_name, record["id"])

            template = self._config.template(entity_name, kind)
            entity = self._config.entity(entity_name)
            caps = self._resolver.field_capabilities(user_id, entity_name, kind)
            payload: dict[str, Any] = {
                "entity_name": entity.entity_name,
                "entity_display_name": entity.display_name,
                "record": record,
                "record_id": str(record["id"]) if record else None,
                "fields": self._form_fields(caps, record),
                "is_create": kind is ViewKind.FORM_CREATE,
                "is_edit": kind is ViewKind.FORM_EDIT,
                "is_view": kind is ViewKind.FORM_VIEW,
                "view_kind": kind.value,
            }
            payload.update(self._action_flags_for(user_id, entity_name, raw))
            html = template.compiled.render(payload)
            return apply_field_permissions(html, caps), 1 if record else 0

        return self._attempt(user_id, entity_name, kind_label, build)

    def render_row(self, user_id: Any, entity_name: str, record_id: Any) -> ViewResponse:
        """One list row, for partial page updates after an edit."""

        def build() -> tuple[str, int]:
            record = self._data.fetch_record(user_id, entity_name, record_id, ViewKind.ROW_PARTIAL)
            caps = self._resolver.field_capabilities(user_id, entity_name, ViewKind.ROW_PARTIAL)
            template = self._config.find_template(entity_name, ViewKind.ROW_PARTIAL)
            if template is None:
                return self._default_row(record, caps), 1
            entity = self._config.entity(entity_name)
            raw = self._data.fetch_record_any(entity_name, record["id"])
            payload: dict[str, Any] = {
                "entity_name": entity.entity_name,
                "entity_display_name": entity.display_name,
                "record": record,
                "fields": [f.to_template_data() for f in caps.visible_fields()],
            }
            payload.update(record)
            payload.update(self._action_flags_for(user_id, entity_name, raw))
            return template.compiled.render(payload), 1

        return self._attempt(user_id, entity_name, ViewKind.ROW_PARTIAL.value, build)

    # -- payload helpers ---------------------------------------------------

    def _action_flags_for(
        self,
        user_id: Any,
        entity_name: str,
        record: Mapping[str, Any] | None = None,
    ) -> dict[str, bool]:
        allowed = self._resolver.check_actions(user_id, entity_name, self._action_flags, record)
        return {f"user_can_{action}": allowed[action] for action in self._action_flags}

    @staticmethod
    def _form_fields(caps: FieldCapabilitySet, record: Mapping[str, Any]) -> list[dict[str, Any]]:
        fields = []
        for cap in caps:
            if not cap.visible:
                continue
            data = cap.to_template_data()
            data["value"] = record.get(cap.field_name) if record else None
            data["readonly"] = not cap.editable
            fields.append(data)
        return fields

    @staticmethod
    def _default_row(record: Mapping[str, Any], caps: FieldCapabilitySet) -> str:
        cells = []
        for spec in caps.visible_fields():
            value = record.get(spec.field_name)
            if spec.is_lookup:
                nested = record.get(spec.lookup_key) or {}
                display = nested.get(spec.lookup_display_field)
                if display is not None:
                    value = display
            cells.append(
                f'<td data-field="{escape_html(spec.field_name)}">{escape_html(to_display_text(value))}</td>'
            )
        record_id = escape_html(to_display_text(record.get("id")))
        return f'<tr data-record-id="{record_id}">{"".join(cells)}</tr>'

    @staticmethod
    def _form_kind(view_kind: ViewKind | str) -> ViewKind:
        try:
            kind = ViewKind(view_kind)
        except ValueError:
            raise UnsupportedViewKindError(view_kind) from None
        if kind not in FORM_VIEW_KINDS:
            raise UnsupportedViewKindError(view_kind)
        return kind

    # -- attempt / failure handling ---------------------------------------

    def _attempt(self, user_id: Any, entity_name: str, view_kind: str, build) -> ViewResponse:
        request_id = LogContext.get_all().get("request_id") or str(uuid4())
        started_at = self._clock.now()
        started = self._clock.monotonic()

        with LogContext.bind(request_id=request_id, entity_type=entity_name, view_kind=view_kind):
            try:
                html, row_count = build()
                response = ViewResponse(html=html, success=True, row_count=row_count)
                error_text = None
            except Exception as exc:
                response = self._failure(exc, entity_name, view_kind)
                error_text = _truncate(f"{type(exc).__name__}: {exc}", GENERATION_LOG_ERROR_MAX_LENGTH)
                row_count = 0

            duration_ms = int(round((self._clock.monotonic() - started) * 1000))
            if response.success:
                logger.info(
                    "view_rendered",
                    extra={
                        "view_kind": view_kind,
                        "row_count": row_count,
                        "output_size_bytes": response.output_size_bytes,
                        "duration_ms": duration_ms,
                    },
                )
            self._generation_logger.record(
                GenerationLogEntry(
                    request_id=request_id,
                    user_id=as_user_id(user_id),
                    entity_type=str(entity_name),
                    view_kind=view_kind,
                    started_at=started_at,
                    finished_at=self._clock.now(),
                    duration_ms=duration_ms,
                    success=response.success,
                    template_cache_hit=self._config.template_cache_hit,
                    permission_cache_hit=self._config.permission_cache_hit,
                    data_row_count=row_count,
                    output_size_bytes=response.output_size_bytes,
                    error_message=error_text,
                )
            )
        return response

    def _failure(self, exc: Exception, entity_name: str, view_kind: str) -> ViewResponse:
        code = getattr(exc, "code", None)
        if isinstance(exc, (ValidationError, NotFoundError)):
            message = str(exc)
            logger.info(
                "view_render_rejected",
                extra={"error_code": code, "error_type": type(exc).__name__},
            )
        elif isinstance(exc, AuthorizationError):
            message = MESSAGE_DENIED
            logger.info(
                "view_render_denied",
                extra={"error_code": code, "error_type": type(exc).__name__},
            )
        elif isinstance(exc, ConfigurationError):
            message = MESSAGE_NOT_CONFIGURED
            logger.error(
                "view_render_failed",
                extra={"error_code": code, "error_type": type(exc).__name__},
                exc_info=True,
            )
        else:
            message = MESSAGE_UNEXPECTED
            code = code or "UNEXPECTED_ERROR"
            logger.error(
                "view_render_failed",
                extra={"error_code": code, "error_type": type(exc).__name__},
                exc_info=True,
            )
        return ViewResponse(
            html=error_fragment(message, self._max_error_length),
            success=False,
            error_code=code,
        )
