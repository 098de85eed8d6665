"""
procure_services.runtime -- Named-operation façade for an HTTP layer.

Responsibility:
    Expose every data, view, workflow and generic-record operation as one
    method.  Each call opens ``session_scope()``, builds the request's
    services over that session and a fresh configuration snapshot, runs the
    operation and commits (or rolls back on an exception).

Architecture position:
    Services layer, outermost.  Owns the process-wide
    ``ConfigurationProvider`` and the settings; the only consumer of
    ``procure_config``.

Invariants enforced:
    - One transaction per call.  Workflow services only flush; a failed
      ``WorkflowResult`` has already rolled back its savepoint, so the outer
      commit writes nothing for it.
    - Generation log entries are written after the request transaction has
      closed, through their own session.
    - Configuration is read-only at request time; the only mutation is
      ``invalidate_configuration``.

Failure modes:
    - Kernel exceptions (validation, authorization, configuration,
      not-found, backend) propagate from ``fetch_*`` and record operations.
    - ``render_*`` never raise.
    - Workflow operations raise only for configuration or backend failures.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.orm import Session

from procure_config import RuntimeSettings, get_runtime_settings
from procure_kernel.db.engine import get_session_factory, init_engine_from_url, session_scope
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.entity_schema import ViewKind
from procure_kernel.domain.workflow import WorkflowResult
from procure_kernel.logging_config import LogContext, get_logger
from procure_kernel.services.config_cache import ConfigurationProvider, ConfigurationSnapshot
from procure_kernel.services.data_service import DataService, ListPage
from procure_kernel.services.generation_logger import GenerationLogEntry, GenerationLogger
from procure_kernel.services.permission_resolver import PermissionResolver
from procure_kernel.services.record_service import BulkResult, RecordResult, RecordService
from procure_modules.ap.config import APConfig
from procure_modules.ap.models import InvoiceMatchingSummary, OutstandingAmount
from procure_modules.ap.service import APService
from procure_modules.procurement.config import ProcurementConfig
from procure_modules.procurement.service import ProcurementService
from procure_services.view_generator import ViewGenerator, ViewResponse

logger = get_logger("services.runtime")


class _BufferedGenerationLog:
    """Collects entries during a request; written once the request closes."""

    def __init__(self) -> None:
        self.entries: list[GenerationLogEntry] = []

    def record(self, entry: GenerationLogEntry) -> bool:
        self.entries.append(entry)
        return True


class _Request:
    """Services for one call, all bound to one session and one snapshot."""

    def __init__(self, runtime: ProcureRuntime, session: Session):
        self.session = session
        self.config: ConfigurationSnapshot = runtime.provider.snapshot(session)
        self.resolver = PermissionResolver(self.config)
        self._runtime = runtime

    @property
    def data(self) -> DataService:
        settings = self._runtime.settings.data_service
        return DataService(
            self.session,
            self.config,
            self.resolver,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
        )

    @property
    def records(self) -> RecordService:
        return RecordService(self.session, self.config, self.resolver, self._runtime.clock)

    @property
    def procurement(self) -> ProcurementService:
        return ProcurementService(
            self.session, self.resolver, self._runtime.clock, self._runtime.procurement_config,
        )

    @property
    def ap(self) -> APService:
        return APService(self.session, self.resolver, self._runtime.clock, self._runtime.ap_config)

    def views(self, generation_log: _BufferedGenerationLog) -> ViewGenerator:
        view_settings = self._runtime.settings.view
        return ViewGenerator(
            self.session,
            self.config,
            self.resolver,
            self.data,
            clock=self._runtime.clock,
            generation_logger=generation_log,
            error_message_max_length=view_settings.error_message_max_length,
            action_flags=view_settings.action_flags,
        )


class ProcureRuntime:
    """
    The procurement UI runtime.

    Args:
        session_factory: Callable returning a new Session.  Defaults to the
            kernel engine's factory, initialized from ``settings.database``.
        settings: Runtime settings; defaults to ``get_runtime_settings()``.
        clock: Injectable clock for timestamps and render timing.
        generation_logger: Sink for view generation entries; defaults to a
            ``GenerationLogger`` over ``session_factory``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        settings: RuntimeSettings | None = None,
        clock: Clock | None = None,
        generation_logger=None,
    ):
        self.settings = settings or get_runtime_settings()
        if session_factory is None:
            database = self.settings.database
            init_engine_from_url(database.url, echo=database.echo, pool_size=database.pool_size)
            session_factory = get_session_factory()
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.generation_logger = generation_logger or GenerationLogger(session_factory)
        self.provider = ConfigurationProvider(
            template_ttl_seconds=self.settings.cache.template_ttl_seconds,
            permission_ttl_seconds=self.settings.cache.permission_ttl_seconds,
        )
        self.procurement_config = ProcurementConfig.from_dict(self.settings.module_section("procurement"))
        self.ap_config = APConfig.from_dict(self.settings.module_section("ap"))
        logger.info(
            "procure_runtime_initialized",
            extra={
                "settings_name": self.settings.name,
                "settings_checksum": self.settings.checksum,
            },
        )

    @contextmanager
    def _request(self, operation: str, actor_id: Any) -> Iterator[_Request]:
        with LogContext.bind(actor_id=str(actor_id) if actor_id is not None else None):
            with session_scope(self.session_factory) as session:
                logger.debug("runtime_operation_started", extra={"operation": operation})
                yield _Request(self, session)

    def _render(self, operation: str, actor_id: Any, render: Callable[[ViewGenerator], ViewResponse]) -> ViewResponse:
        buffer = _BufferedGenerationLog()
        with self._request(operation, actor_id) as request:
            response = render(request.views(buffer))
        for entry in buffer.entries:
            self.generation_logger.record(entry)
        return response

    # =========================================================================
    # Data and views
    # =========================================================================

    def fetch_list(
        self,
        user_id: Any,
        entity_name: str,
        filters: Mapping[str, Any] | None = None,
        sort: str | None = None,
        sort_dir: str | None = None,
        page: Any = 1,
        page_size: Any = None,
    ) -> ListPage:
        with self._request("fetch_list", user_id) as request:
            return request.data.fetch_list(user_id, entity_name, filters, sort, sort_dir, page, page_size)

    def fetch_record(
        self,
        user_id: Any,
        entity_name: str,
        record_id: Any,
        view_kind: ViewKind | str = ViewKind.FORM_VIEW,
    ) -> dict[str, Any]:
        with self._request("fetch_record", user_id) as request:
            return request.data.fetch_record(user_id, entity_name, record_id, view_kind)

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
        return self._render(
            "render_list",
            user_id,
            lambda views: views.render_list(user_id, entity_name, filters, sort, sort_dir, page, page_size),
        )

    def render_form(
        self,
        user_id: Any,
        entity_name: str,
        view_kind: ViewKind | str,
        record_id: Any = None,
    ) -> ViewResponse:
        return self._render(
            "render_form",
            user_id,
            lambda views: views.render_form(user_id, entity_name, view_kind, record_id),
        )

    def render_row(self, user_id: Any, entity_name: str, record_id: Any) -> ViewResponse:
        return self._render(
            "render_row",
            user_id,
            lambda views: views.render_row(user_id, entity_name, record_id),
        )

    # =========================================================================
    # Purchase orders
    # =========================================================================

    def create_purchase_order(self, user_id: Any, supplier_id: Any, lines: Sequence[Mapping[str, Any]], **kwargs) -> WorkflowResult:
        with self._request("create_purchase_order", user_id) as request:
            return request.procurement.create_purchase_order(user_id, supplier_id, lines, **kwargs)

    def submit_purchase_order(self, user_id: Any, po_id: Any) -> WorkflowResult:
        with self._request("submit_purchase_order", user_id) as request:
            return request.procurement.submit_purchase_order(user_id, po_id)

    def approve_purchase_order(self, user_id: Any, po_id: Any) -> WorkflowResult:
        with self._request("approve_purchase_order", user_id) as request:
            return request.procurement.approve_purchase_order(user_id, po_id)

    def reject_purchase_order(self, user_id: Any, po_id: Any, reason: str | None) -> WorkflowResult:
        with self._request("reject_purchase_order", user_id) as request:
            return request.procurement.reject_purchase_order(user_id, po_id, reason)

    def cancel_purchase_order(self, user_id: Any, po_id: Any, reason: str | None) -> WorkflowResult:
        with self._request("cancel_purchase_order", user_id) as request:
            return request.procurement.cancel_purchase_order(user_id, po_id, reason)

    # =========================================================================
    # Goods receipts
    # =========================================================================

    def create_goods_receipt(self, user_id: Any, po_id: Any, lines: Sequence[Mapping[str, Any]], **kwargs) -> WorkflowResult:
        with self._request("create_goods_receipt", user_id) as request:
            return request.procurement.create_goods_receipt(user_id, po_id, lines, **kwargs)

    def accept_goods_receipt(self, user_id: Any, receipt_id: Any) -> WorkflowResult:
        with self._request("accept_goods_receipt", user_id) as request:
            return request.procurement.accept_goods_receipt(user_id, receipt_id)

    def reject_goods_receipt(self, user_id: Any, receipt_id: Any, reason: str | None) -> WorkflowResult:
        with self._request("reject_goods_receipt", user_id) as request:
            return request.procurement.reject_goods_receipt(user_id, receipt_id, reason)

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice_receipt(
        self, user_id: Any, po_id: Any, lines: Sequence[Mapping[str, Any]] = (), **kwargs,
    ) -> WorkflowResult:
        with self._request("create_invoice_receipt", user_id) as request:
            return request.ap.create_invoice_receipt(user_id, po_id, lines, **kwargs)

    def approve_invoice_variance(self, user_id: Any, invoice_id: Any, notes: str | None) -> WorkflowResult:
        with self._request("approve_invoice_variance", user_id) as request:
            return request.ap.approve_invoice_variance(user_id, invoice_id, notes)

    def rematch_invoice(self, user_id: Any, invoice_id: Any) -> WorkflowResult:
        with self._request("rematch_invoice", user_id) as request:
            return request.ap.rematch_invoice(user_id, invoice_id)

    def cancel_invoice(self, user_id: Any, invoice_id: Any, reason: str | None) -> WorkflowResult:
        with self._request("cancel_invoice", user_id) as request:
            return request.ap.cancel_invoice(user_id, invoice_id, reason)

    def get_invoice_matching_summary(self, user_id: Any, invoice_id: Any) -> InvoiceMatchingSummary:
        with self._request("get_invoice_matching_summary", user_id) as request:
            return request.ap.get_invoice_matching_summary(user_id, invoice_id)

    def get_outstanding_amount(self, user_id: Any, invoice_id: Any) -> OutstandingAmount:
        with self._request("get_outstanding_amount", user_id) as request:
            return request.ap.get_outstanding_amount(user_id, invoice_id)

    # =========================================================================
    # Payments
    # =========================================================================

    def create_payment(self, user_id: Any, invoice_id: Any, amount: Any, **kwargs) -> WorkflowResult:
        with self._request("create_payment", user_id) as request:
            return request.ap.create_payment(user_id, invoice_id, amount, **kwargs)

    def process_payment(self, user_id: Any, payment_id: Any) -> WorkflowResult:
        with self._request("process_payment", user_id) as request:
            return request.ap.process_payment(user_id, payment_id)

    def clear_payment(self, user_id: Any, payment_id: Any, **kwargs) -> WorkflowResult:
        with self._request("clear_payment", user_id) as request:
            return request.ap.clear_payment(user_id, payment_id, **kwargs)

    def cancel_payment(self, user_id: Any, payment_id: Any, reason: str | None) -> WorkflowResult:
        with self._request("cancel_payment", user_id) as request:
            return request.ap.cancel_payment(user_id, payment_id, reason)

    def fail_payment(self, user_id: Any, payment_id: Any, reason: str | None) -> WorkflowResult:
        with self._request("fail_payment", user_id) as request:
            return request.ap.fail_payment(user_id, payment_id, reason)

    def retry_payment(self, user_id: Any, payment_id: Any) -> WorkflowResult:
        with self._request("retry_payment", user_id) as request:
            return request.ap.retry_payment(user_id, payment_id)

    def reverse_payment(self, user_id: Any, payment_id: Any, reason: str | None) -> WorkflowResult:
        with self._request("reverse_payment", user_id) as request:
            return request.ap.reverse_payment(user_id, payment_id, reason)

    # =========================================================================
    # Generic records
    # =========================================================================

    def update_record(
        self, user_id: Any, entity_name: str, record_id: Any, changes: Mapping[str, Any],
    ) -> RecordResult:
        with self._request("update_record", user_id) as request:
            return request.records.update_record(user_id, entity_name, record_id, changes)

    def soft_delete_record(
        self, user_id: Any, entity_name: str, record_id: Any, reason: str | None = None,
    ) -> RecordResult:
        with self._request("soft_delete_record", user_id) as request:
            return request.records.soft_delete_record(user_id, entity_name, record_id, reason)

    def restore_record(self, user_id: Any, entity_name: str, record_id: Any) -> RecordResult:
        with self._request("restore_record", user_id) as request:
            return request.records.restore_record(user_id, entity_name, record_id)

    def bulk_update(
        self, user_id: Any, entity_name: str, record_ids: Iterable[Any], changes: Mapping[str, Any],
    ) -> BulkResult:
        with self._request("bulk_update", user_id) as request:
            return request.records.bulk_update(user_id, entity_name, record_ids, changes)

    def bulk_soft_delete(
        self, user_id: Any, entity_name: str, record_ids: Iterable[Any], reason: str | None = None,
    ) -> BulkResult:
        with self._request("bulk_soft_delete", user_id) as request:
            return request.records.bulk_soft_delete(user_id, entity_name, record_ids, reason)

    # =========================================================================
    # Cache control
    # =========================================================================

    def invalidate_configuration(self, entity_name: str | None = None) -> None:
        self.provider.invalidate(entity_name)
