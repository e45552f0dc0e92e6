"""Assembles the core engines around one store."""

from __future__ import annotations

from dataclasses import dataclass

from sectiongate.config import Config
from sectiongate.core.cache import PermissionCache
from sectiongate.core.catalog import RoleSlugMapper
from sectiongate.core.invalidation import (
    CachePushDispatcher,
    InvalidationDispatcher,
    NullDispatcher,
)
from sectiongate.core.rbac import PermissionService
from sectiongate.core.resolver import AccessResolver
from sectiongate.core.sections import SectionService
from sectiongate.events.bus import EventBus
from sectiongate.storage.base import MembershipBackend


@dataclass
class Engines:
    store: MembershipBackend
    event_bus: EventBus
    cache: PermissionCache
    dispatcher: InvalidationDispatcher
    mapper: RoleSlugMapper
    resolver: AccessResolver
    sections: SectionService
    permissions: PermissionService


def build_engines(
    store: MembershipBackend,
    config: Config | None = None,
    *,
    event_bus: EventBus | None = None,
) -> Engines:
    config = config or Config()
    bus = event_bus or EventBus()
    cache = PermissionCache(config.permission_cache_ttl)
    dispatcher: InvalidationDispatcher
    if config.notifications_enabled:
        dispatcher = CachePushDispatcher(cache, bus)
    else:
        dispatcher = NullDispatcher()
    mapper = RoleSlugMapper(store)
    return Engines(
        store=store,
        event_bus=bus,
        cache=cache,
        dispatcher=dispatcher,
        mapper=mapper,
        resolver=AccessResolver(store),
        sections=SectionService(store, mapper, dispatcher, bus),
        permissions=PermissionService(store, cache if config.notifications_enabled else None),
    )
