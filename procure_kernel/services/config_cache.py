"""
ConfigurationProvider -- TTL-cached, immutable configuration descriptors.

Responsibility:
    Serve entity descriptors, compiled templates, role permission maps and
    user identities to the permission resolver, data service and view
    generator without a database round trip on every request.

Architecture position:
    Kernel > Services.  Reads through ``ConfigSelector``; never writes.
    One provider is shared per process; each request works through a
    ``ConfigurationSnapshot`` bound to its own session.

Invariants enforced:
    - Caches hold frozen descriptors only (EntitySpec, RolePermissions,
      CachedTemplate, UserIdentity), never ORM instances.
    - A stale entry lives at most one TTL.  Templates and entities use the
      template TTL (default 300 s); permissions and users use the permission
      TTL (default 60 s).
    - ``invalidate`` swaps cache dicts under the lock, so a concurrent reader
      sees either the old or the new map, never a half-cleared one.
    - Misses are not cached: a newly provisioned row is visible on the next
      request.

Failure modes:
    - UnknownEntityTypeError: entity not configured or inactive.
    - TemplateNotFoundError: no active template for (entity, view kind).
    - UnknownRoleError: user points at a missing role row.
    - TemplateSyntaxError: the active template does not compile.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from procure_kernel.domain.capabilities import RolePermissions, UserIdentity
from procure_kernel.domain.entity_schema import EntitySpec, ViewKind
from procure_kernel.domain.template_renderer import CompiledTemplate, compile_template
from procure_kernel.exceptions import (
    TemplateNotFoundError,
    UnknownEntityTypeError,
    UnknownRoleError,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.selectors.config_selector import ConfigSelector, TemplateRecord

logger = get_logger("services.config_cache")

DEFAULT_TEMPLATE_TTL_SECONDS = 300.0
DEFAULT_PERMISSION_TTL_SECONDS = 60.0

_MISSING = object()


class TTLCache:
    """
    Dict-backed cache whose entries expire after ``ttl_seconds``.

    The time source must be monotonic.  All access is serialized by an
    RLock shared with the owning provider.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        time_source: Callable[[], float],
        lock: threading.RLock,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._time_source = time_source
        self._lock = lock
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any:
        """Return the cached value or the ``_MISSING`` sentinel."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                expires_at, value = entry
                if self._time_source() < expires_at:
                    self.hits += 1
                    return value
                del self._entries[key]
            self.misses += 1
            return _MISSING

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._time_source() + self.ttl_seconds, value)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def discard_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Drop every key matching ``predicate``; return how many were dropped."""
        with self._lock:
            kept = {k: v for k, v in self._entries.items() if not predicate(k)}
            dropped = len(self._entries) - len(kept)
            self._entries = kept
            return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"hits": self.hits, "misses": self.misses, "size": len(self._entries)}


@dataclass(frozen=True)
class CachedTemplate:
    """An active template and its compiled token tree."""

    record: TemplateRecord
    compiled: CompiledTemplate

    @property
    def cache_key(self) -> tuple[UUID, int]:
        return (self.record.template_id, self.record.version)


class ConfigurationProvider:
    """
    Process-wide configuration cache.

    Args:
        template_ttl_seconds: TTL for entity descriptors and templates.
        permission_ttl_seconds: TTL for role permission maps and users.
        time_source: Monotonic seconds source; injectable for tests.
    """

    def __init__(
        self,
        template_ttl_seconds: float = DEFAULT_TEMPLATE_TTL_SECONDS,
        permission_ttl_seconds: float = DEFAULT_PERMISSION_TTL_SECONDS,
        time_source: Callable[[], float] | None = None,
    ):
        self._lock = threading.RLock()
        source = time_source or time.monotonic
        self._entities = TTLCache("entities", template_ttl_seconds, source, self._lock)
        self._templates = TTLCache("templates", template_ttl_seconds, source, self._lock)
        self._permissions = TTLCache("permissions", permission_ttl_seconds, source, self._lock)
        self._users = TTLCache("users", permission_ttl_seconds, source, self._lock)

    def snapshot(self, session: Session) -> ConfigurationSnapshot:
        return ConfigurationSnapshot(self, session)

    # -- reads -------------------------------------------------------------

    def get_entity(self, session: Session, entity_name: str) -> EntitySpec:
        cached = self._entities.get(entity_name)
        if cached is not _MISSING:
            return cached
        spec = ConfigSelector(session).get_entity(entity_name)
        if spec is None:
            raise UnknownEntityTypeError(entity_name)
        self._entities.put(entity_name, spec)
        return spec

    def get_template(
        self, session: Session, entity_name: str, view_kind: ViewKind,
    ) -> tuple[CachedTemplate, bool]:
        """Return (template, cache_hit)."""
        found, hit = self.find_template(session, entity_name, view_kind)
        if found is None:
            raise TemplateNotFoundError(entity_name, view_kind.value)
        return found, hit

    def find_template(
        self, session: Session, entity_name: str, view_kind: ViewKind,
    ) -> tuple[CachedTemplate | None, bool]:
        key = (entity_name, view_kind.value)
        cached = self._templates.get(key)
        if cached is not _MISSING:
            return cached, True
        entity = self.get_entity(session, entity_name)
        record = ConfigSelector(session).get_active_template(entity.id, view_kind.value)
        if record is None:
            return None, False
        template = CachedTemplate(record=record, compiled=compile_template(record.template_html))
        self._templates.put(key, template)
        logger.debug(
            "template_cached",
            extra={
                "entity_type": entity_name,
                "view_kind": view_kind.value,
                "template_version": record.version,
            },
        )
        return template, False

    def get_user(self, session: Session, user_id: UUID) -> UserIdentity | None:
        cached = self._users.get(user_id)
        if cached is not _MISSING:
            return cached
        user = ConfigSelector(session).get_user(user_id)
        if user is not None:
            self._users.put(user_id, user)
        return user

    def get_role_permissions(
        self, session: Session, entity: EntitySpec, user: UserIdentity,
    ) -> tuple[RolePermissions, bool]:
        """Return (permissions, cache_hit) for the user's role on ``entity``."""
        key = (entity.entity_name, user.role_id)
        cached = self._permissions.get(key)
        if cached is not _MISSING:
            return cached, True
        selector = ConfigSelector(session)
        role = selector.get_role(user.role_id)
        if role is None:
            raise UnknownRoleError(str(user.role_id), str(user.user_id))
        permissions = selector.get_role_permissions(role, entity)
        self._permissions.put(key, permissions)
        return permissions, False

    # -- maintenance -------------------------------------------------------

    def invalidate(self, entity_name: str | None = None) -> None:
        """Drop cached configuration for one entity, or everything."""
        with self._lock:
            if entity_name is None:
                for cache in (self._entities, self._templates, self._permissions, self._users):
                    cache.clear()
            else:
                self._entities.discard_where(lambda k: k == entity_name)
                self._templates.discard_where(lambda k: k[0] == entity_name)
                self._permissions.discard_where(lambda k: k[0] == entity_name)
        logger.info(
            "config_cache_invalidated",
            extra={"entity_type": entity_name or "*"},
        )

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            cache.name: cache.stats()
            for cache in (self._entities, self._templates, self._permissions, self._users)
        }


class ConfigurationSnapshot:
    """
    Per-request view of the provider bound to one session.

    Records whether this request's template and permission reads were
    served from cache, for the generation log.
    """

    def __init__(self, provider: ConfigurationProvider, session: Session):
        self.provider = provider
        self.session = session
        self.template_cache_hit = False
        self.permission_cache_hit = False

    def entity(self, entity_name: str) -> EntitySpec:
        return self.provider.get_entity(self.session, entity_name)

    def template(self, entity_name: str, view_kind: ViewKind) -> CachedTemplate:
        template, hit = self.provider.get_template(self.session, entity_name, view_kind)
        self.template_cache_hit = hit
        return template

    def find_template(self, entity_name: str, view_kind: ViewKind) -> CachedTemplate | None:
        template, hit = self.provider.find_template(self.session, entity_name, view_kind)
        self.template_cache_hit = hit
        return template

    def user(self, user_id: UUID) -> UserIdentity | None:
        return self.provider.get_user(self.session, user_id)

    def role_permissions(self, entity: EntitySpec, user: UserIdentity) -> RolePermissions:
        permissions, hit = self.provider.get_role_permissions(self.session, entity, user)
        self.permission_cache_hit = hit
        return permissions
