"""
Tests for ViewGenerator.

Validates:
- List, form and row rendering against seeded templates
- Hidden fields never reach the output; read-only controls are disabled
- Action flags drive conditional markup
- Every failure becomes an escaped, bounded error fragment
- Every attempt is handed to the generation logger
"""

from datetime import date

import pytest

from procure_kernel.models import TemplateModel
from procure_kernel.services.generation_logger import GenerationLogger
from procure_services.view_generator import (
    MESSAGE_DENIED,
    MESSAGE_NOT_CONFIGURED,
    MESSAGE_UNEXPECTED,
    ViewGenerator,
    error_fragment,
)


class RecordingSink:
    def __init__(self):
        self.entries = []

    def record(self, entry):
        self.entries.append(entry)
        return True


class ExplodingDataService:
    """Stands in for a data layer that fails with internal detail."""

    def fetch_list(self, *args, **kwargs):
        raise RuntimeError("connection to 10.0.0.5 refused for user procure_admin")


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def views(session, config_snapshot, resolver, data_service, deterministic_clock, sink):
    return ViewGenerator(
        session, config_snapshot, resolver, data_service, clock=deterministic_clock, generation_logger=sink,
    )


@pytest.fixture
def orders(make_supplier, make_purchase_order, ui_config):
    acme = make_supplier(name="Acme Corp")
    return [
        make_purchase_order(acme, total="1000", po_date=date(2024, 1, 1)),
        make_purchase_order(acme, total="2500", po_date=date(2024, 1, 2), created_by_id=ui_config.clerk_id),
    ]


# =============================================================================
# Lists
# =============================================================================


class TestRenderList:
    """render_list."""

    def test_buyer_list(self, views, ui_config, orders):
        response = views.render_list(ui_config.buyer_id, "purchase_order", sort="po_date")

        assert response.success
        assert response.row_count == 2
        assert '<td class="number">PO-TEST-0001</td>' in response.html
        assert '<td class="supplier">Acme Corp</td>' in response.html
        assert "<th>Total</th>" in response.html
        assert response.html.count('<a class="edit">') == 2
        assert '<span class="total">2</span>' in response.html
        assert "No purchase orders" not in response.html

    def test_clerk_never_sees_hidden_values(self, views, ui_config, orders):
        response = views.render_list(ui_config.clerk_id, "purchase_order")

        assert response.success
        assert "<th>Total</th>" not in response.html
        assert response.html.count('<td class="amount"></td>') == 2
        assert '<a class="edit">' not in response.html

    def test_empty_list(self, views, ui_config, orders):
        response = views.render_list(ui_config.buyer_id, "purchase_order", {"status": "paid"})

        assert response.success
        assert response.row_count == 0
        assert '<p class="empty">No purchase orders</p>' in response.html

    def test_next_page_link(self, views, ui_config, orders):
        response = views.render_list(ui_config.buyer_id, "purchase_order", page_size=1)

        assert '<a class="next" data-page="2">' in response.html

    def test_values_escaped(self, views, ui_config, make_supplier, make_purchase_order):
        make_purchase_order(make_supplier(name='<script>alert("x")</script>'))

        response = views.render_list(ui_config.buyer_id, "purchase_order")

        assert "<script>" not in response.html
        assert "&lt;script&gt;" in response.html

    def test_denied(self, views, ui_config, orders):
        response = views.render_list(ui_config.approver_id, "payment")

        assert not response.success
        assert response.error_code == "ACTION_DENIED"
        assert response.html == error_fragment(MESSAGE_DENIED)

    def test_missing_template(self, views, ui_config):
        response = views.render_list(ui_config.admin_id, "payment")

        assert response.error_code == "TEMPLATE_NOT_FOUND"
        assert MESSAGE_NOT_CONFIGURED in response.html

    def test_unknown_entity(self, views, ui_config):
        response = views.render_list(ui_config.buyer_id, "spaceship")

        assert response.error_code == "UNKNOWN_ENTITY_TYPE"

    def test_bad_filter_message_escaped(self, views, ui_config, orders):
        response = views.render_list(ui_config.buyer_id, "purchase_order", {"<b>bold</b>": "1"})

        assert response.error_code == "UNKNOWN_FILTER_FIELD"
        assert "&lt;b&gt;bold&lt;/b&gt;" in response.html
        assert "<b>" not in response.html

    def test_unexpected_error_hides_detail(self, session, config_snapshot, resolver, ui_config, sink):
        views = ViewGenerator(session, config_snapshot, resolver, ExplodingDataService(), generation_logger=sink)

        response = views.render_list(ui_config.buyer_id, "purchase_order")

        assert response.error_code == "UNEXPECTED_ERROR"
        assert MESSAGE_UNEXPECTED in response.html
        assert "10.0.0.5" not in response.html
        assert "RuntimeError" in sink.entries[-1].error_message

    def test_error_length_bounded(self, session, config_snapshot, resolver, data_service, ui_config):
        views = ViewGenerator(session, config_snapshot, resolver, data_service, error_message_max_length=20)

        response = views.render_list(ui_config.buyer_id, "purchase_order", {"x" * 200: "1"})

        assert "x" * 30 not in response.html
        assert "..." in response.html


# =============================================================================
# Forms
# =============================================================================


class TestRenderForm:
    """render_form for create, edit and view."""

    def test_edit_form_for_clerk(self, views, ui_config, orders):
        own = orders[1]

        response = views.render_form(ui_config.clerk_id, "purchase_order", "form_edit", own.id)

        assert response.success
        assert f'data-record="{own.id}"' in response.html
        assert 'name="po_number" value="PO-TEST-0002" disabled/>' in response.html
        assert 'name="total_amount"' not in response.html
        assert '<textarea name="notes">' in response.html
        assert 'class="delete"' not in response.html

    def test_edit_form_other_record_denied(self, views, ui_config, orders):
        response = views.render_form(ui_config.clerk_id, "purchase_order", "form_edit", orders[0].id)

        assert response.error_code == "ACTION_DENIED"

    def test_edit_form_for_buyer(self, views, ui_config, orders):
        response = views.render_form(ui_config.buyer_id, "purchase_order", "form_edit", orders[0].id)

        assert 'name="total_amount" value="1000' in response.html
        assert "disabled" not in response.html
        assert '<button class="delete">' in response.html

    def test_view_form(self, views, ui_config, orders):
        response = views.render_form(ui_config.approver_id, "purchase_order", "form_view", orders[0].id)

        assert '<dd data-field="po_number">PO-TEST-0001</dd>' in response.html
        assert '<dd data-field="total_amount">1000' in response.html
        assert '<button class="approve">' in response.html

    def test_view_form_hides_fields_for_clerk(self, views, ui_config, orders):
        response = views.render_form(ui_config.clerk_id, "purchase_order", "form_view", orders[0].id)

        assert response.success
        assert 'data-field="total_amount"' not in response.html
        assert "<dt>Total</dt>" not in response.html
        assert '<button class="approve">' not in response.html

    def test_create_form(self, views, ui_config):
        response = views.render_form(ui_config.buyer_id, "purchase_order", "form_create")

        assert response.success
        assert '<label for="supplier_id">Supplier</label>' in response.html
        assert response.row_count == 0

    def test_create_requires_permission(self, views, ui_config):
        response = views.render_form(ui_config.approver_id, "purchase_order", "form_create")

        assert response.error_code == "ACTION_DENIED"

    def test_missing_record_id(self, views, ui_config):
        response = views.render_form(ui_config.buyer_id, "purchase_order", "form_edit")

        assert response.error_code == "MISSING_RECORD_ID"

    def test_unknown_record(self, views, ui_config, new_id):
        response = views.render_form(ui_config.buyer_id, "purchase_order", "form_view", new_id)

        assert response.error_code == "RECORD_NOT_FOUND"

    @pytest.mark.parametrize("kind", ["list", "row_partial", "spreadsheet"])
    def test_non_form_kinds_rejected(self, views, ui_config, orders, kind):
        response = views.render_form(ui_config.buyer_id, "purchase_order", kind, orders[0].id)

        assert response.error_code == "UNSUPPORTED_VIEW_KIND"

    def test_broken_template(self, session, views, ui_config, make_supplier, test_actor_id):
        supplier = make_supplier()
        session.add(
            TemplateModel(
                entity_type_id=ui_config.entities["supplier"],
                view_kind="form_view",
                template_name="supplier_view_broken",
                template_html="{{#if supplier_name}}unterminated",
                created_by_id=test_actor_id,
            )
        )
        session.flush()

        response = views.render_form(ui_config.buyer_id, "supplier", "form_view", supplier.id)

        assert response.error_code == "TEMPLATE_SYNTAX"
        assert MESSAGE_NOT_CONFIGURED in response.html


# =============================================================================
# Rows
# =============================================================================


class TestRenderRow:
    """render_row with and without a row template."""

    def test_row_template(self, views, ui_config, make_supplier):
        supplier = make_supplier(name="Globex")

        response = views.render_row(ui_config.buyer_id, "supplier", supplier.id)

        assert response.html == f'<tr class="supplier-row" data-id="{supplier.id}"><td>Globex</td></tr>'

    def test_default_row(self, views, ui_config, orders):
        response = views.render_row(ui_config.buyer_id, "purchase_order", orders[0].id)

        assert response.html.startswith(f'<tr data-record-id="{orders[0].id}">')
        assert '<td data-field="supplier_id">Acme Corp</td>' in response.html
        assert '<td data-field="total_amount">' in response.html

    def test_default_row_for_clerk(self, views, ui_config, orders):
        response = views.render_row(ui_config.clerk_id, "purchase_order", orders[0].id)

        assert response.success
        assert 'data-field="total_amount"' not in response.html


# =============================================================================
# Generation logging
# =============================================================================


class TestGenerationLogging:
    """Every attempt is recorded."""

    def test_success_entry(self, views, sink, ui_config, orders):
        views.render_list(ui_config.buyer_id, "purchase_order")

        [entry] = sink.entries
        assert entry.success
        assert entry.entity_type == "purchase_order"
        assert entry.view_kind == "list"
        assert entry.data_row_count == 2
        assert entry.output_size_bytes > 0
        assert entry.user_id == ui_config.buyer_id
        assert entry.error_message is None

    def test_failure_entry(self, views, sink, ui_config):
        views.render_form(ui_config.buyer_id, "purchase_order", "form_edit")

        [entry] = sink.entries
        assert not entry.success
        assert entry.view_kind == "form_edit"
        assert entry.error_message.startswith("MissingRecordIdError")

    def test_request_id_from_log_context(self, views, sink, ui_config, orders):
        from procure_kernel.logging_config import LogContext

        with LogContext.bind(request_id="req-42"):
            views.render_list(ui_config.buyer_id, "purchase_order")

        assert sink.entries[0].request_id == "req-42"

    def test_broken_log_sink_does_not_affect_response(self, session, config_snapshot, resolver, data_service,
                                                       ui_config, orders):
        class Unreachable:
            def __call__(self):
                raise ConnectionError("log database down")

        views = ViewGenerator(
            session, config_snapshot, resolver, data_service, generation_logger=GenerationLogger(Unreachable()),
        )

        response = views.render_list(ui_config.buyer_id, "purchase_order")

        assert response.success

    def test_rendered_event_logged(self, views, ui_config, orders, captured_logs):
        views.render_list(ui_config.buyer_id, "purchase_order")

        [event] = [r for r in captured_logs() if r["message"] == "view_rendered"]
        assert event["row_count"] == 2
        assert event["entity_type"] == "purchase_order"
