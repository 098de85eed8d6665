"""
Tests for ConfigurationProvider and ConfigurationSnapshot.

Validates:
- Entities, templates, users and role permissions are cached per process
- Cache hits are reported on the snapshot
- TTL expiry and explicit invalidation (per entity and global)
- Misses are not cached
- Highest active template version wins
"""

import pytest
from sqlalchemy import update

from procure_kernel.domain.entity_schema import ViewKind
from procure_kernel.exceptions import (
    TemplateNotFoundError,
    TemplateSyntaxError,
    UnknownEntityTypeError,
)
from procure_kernel.models import EntityTypeModel, TemplateModel
from procure_kernel.services.config_cache import ConfigurationProvider


class FakeTime:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def timed_provider(fake_time):
    return ConfigurationProvider(
        template_ttl_seconds=300, permission_ttl_seconds=60, time_source=fake_time,
    )


def _set_list_template(session, entity_id, html):
    session.execute(
        update(TemplateModel)
        .where(TemplateModel.entity_type_id == entity_id, TemplateModel.view_kind == "list")
        .values(template_html=html)
    )
    session.flush()


class TestCaching:
    """Reads are served from cache until expiry or invalidation."""

    def test_entity_cached(self, session, config_provider, ui_config):
        first = config_provider.get_entity(session, "purchase_order")
        second = config_provider.get_entity(session, "purchase_order")

        assert first is second
        assert config_provider.stats()["entities"]["hits"] >= 1

    def test_entity_descriptor(self, session, config_provider, ui_config):
        entity = config_provider.get_entity(session, "purchase_order")

        assert entity.primary_table == "purchase_orders"
        assert entity.mutable_fields == frozenset({"notes", "expected_delivery_date"})
        supplier_field = entity.get_field("supplier_id")
        assert supplier_field.is_lookup
        assert supplier_field.lookup_display_field == "supplier_name"

    def test_snapshot_reports_template_hit(self, session, config_provider, ui_config):
        first = config_provider.snapshot(session)
        first.template("purchase_order", ViewKind.LIST)
        assert first.template_cache_hit is False

        second = config_provider.snapshot(session)
        second.template("purchase_order", ViewKind.LIST)
        assert second.template_cache_hit is True

    def test_snapshot_reports_permission_hit(self, session, config_provider, ui_config):
        first = config_provider.snapshot(session)
        entity = first.entity("purchase_order")
        user = first.user(ui_config.buyer_id)
        first.role_permissions(entity, user)
        assert first.permission_cache_hit is False

        second = config_provider.snapshot(session)
        second.role_permissions(entity, user)
        assert second.permission_cache_hit is True

    def test_stale_template_until_invalidated(self, session, config_provider, ui_config):
        original = config_provider.snapshot(session).template("purchase_order", ViewKind.LIST)
        _set_list_template(session, ui_config.entities["purchase_order"], "<p>v2</p>")

        cached = config_provider.snapshot(session).template("purchase_order", ViewKind.LIST)
        assert cached is original

        config_provider.invalidate("purchase_order")
        fresh = config_provider.snapshot(session).template("purchase_order", ViewKind.LIST)
        assert fresh.record.template_html == "<p>v2</p>"

    def test_invalidate_other_entity_keeps_cache(self, session, config_provider, ui_config):
        original = config_provider.snapshot(session).template("purchase_order", ViewKind.LIST)

        config_provider.invalidate("supplier")

        assert config_provider.snapshot(session).template("purchase_order", ViewKind.LIST) is original

    def test_global_invalidate_clears_users(self, session, config_provider, ui_config):
        config_provider.get_user(session, ui_config.buyer_id)
        assert config_provider.stats()["users"]["size"] == 1

        config_provider.invalidate()

        assert all(stats["size"] == 0 for stats in config_provider.stats().values())

    def test_invalidation_logged(self, config_provider, captured_logs):
        config_provider.invalidate("payment")

        events = [r for r in captured_logs() if r["message"] == "config_cache_invalidated"]
        assert events[-1]["entity_type"] == "payment"


class TestExpiry:
    """TTL windows."""

    def test_template_expires(self, session, timed_provider, fake_time, ui_config):
        timed_provider.snapshot(session).template("purchase_order", ViewKind.LIST)
        _set_list_template(session, ui_config.entities["purchase_order"], "<p>expired</p>")

        fake_time.now += 299
        assert "expired" not in timed_provider.snapshot(session).template(
            "purchase_order", ViewKind.LIST
        ).record.template_html

        fake_time.now += 2
        assert timed_provider.snapshot(session).template(
            "purchase_order", ViewKind.LIST
        ).record.template_html == "<p>expired</p>"

    def test_permissions_expire_sooner(self, session, timed_provider, fake_time, ui_config):
        snapshot = timed_provider.snapshot(session)
        entity = snapshot.entity("purchase_order")
        user = snapshot.user(ui_config.buyer_id)
        snapshot.role_permissions(entity, user)

        fake_time.now += 61
        later = timed_provider.snapshot(session)
        later.role_permissions(entity, user)

        assert later.permission_cache_hit is False


class TestMisses:
    """Missing configuration."""

    def test_unknown_entity(self, session, config_provider, ui_config):
        with pytest.raises(UnknownEntityTypeError) as exc_info:
            config_provider.get_entity(session, "spaceship")

        assert exc_info.value.code == "UNKNOWN_ENTITY_TYPE"

    def test_inactive_entity_is_unknown(self, session, config_provider, ui_config):
        session.execute(
            update(EntityTypeModel).where(EntityTypeModel.entity_name == "payment").values(is_active=False)
        )
        session.flush()

        with pytest.raises(UnknownEntityTypeError):
            config_provider.get_entity(session, "payment")

    def test_missing_template_not_cached(self, session, config_provider, ui_config, test_actor_id):
        snapshot = config_provider.snapshot(session)
        with pytest.raises(TemplateNotFoundError):
            snapshot.template("supplier", ViewKind.FORM_EDIT)

        session.add(
            TemplateModel(
                entity_type_id=ui_config.entities["supplier"],
                view_kind="form_edit",
                template_name="supplier_form_edit",
                template_html="<form></form>",
                created_by_id=test_actor_id,
            )
        )
        session.flush()

        found = config_provider.snapshot(session).template("supplier", ViewKind.FORM_EDIT)
        assert found.record.template_html == "<form></form>"

    def test_find_template_returns_none(self, session, config_provider, ui_config):
        assert config_provider.snapshot(session).find_template("purchase_order", ViewKind.ROW_PARTIAL) is None

    def test_broken_template_raises_on_load(self, session, config_provider, ui_config, test_actor_id):
        session.add(
            TemplateModel(
                entity_type_id=ui_config.entities["payment"],
                view_kind="list",
                template_name="broken",
                template_html="{{#records}}",
                created_by_id=test_actor_id,
            )
        )
        session.flush()

        with pytest.raises(TemplateSyntaxError):
            config_provider.snapshot(session).template("payment", ViewKind.LIST)


class TestVersions:
    """Provisioning overlap."""

    def test_highest_active_version_wins(self, session, config_provider, ui_config, test_actor_id):
        entity_id = ui_config.entities["supplier"]
        for version, active in ((2, True), (3, False)):
            session.add(
                TemplateModel(
                    entity_type_id=entity_id,
                    view_kind="list",
                    template_name=f"supplier_list_v{version}",
                    template_html=f"<p>v{version}</p>",
                    version=version,
                    is_active=active,
                    created_by_id=test_actor_id,
                )
            )
        session.flush()

        template = config_provider.snapshot(session).template("supplier", ViewKind.LIST)

        assert template.record.version == 2
        assert template.cache_key == (template.record.template_id, 2)
