"""
Service wiring for the application.

`init_services` picks the storage backend from settings (`postgres` or
`memory`), builds the incident, analytics and notification services on top
of it and keeps them in module state for the routers' dependencies.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from modules.analytics.manager import AnalyticsEngine
from modules.auth.store import MemoryUserDirectory, PostgresUserDirectory, UserDirectory
from modules.incidents.lifecycle import LifecycleManager
from modules.incidents.manager import IncidentService
from modules.incidents.query import QueryEngine
from modules.incidents.store import IncidentStore, MemoryIncidentStore, PostgresIncidentStore
from modules.notifications.manager import NotificationDispatcher
from modules.shared.config import Settings, get_settings
from modules.shared.db import close_db, init_db
from modules.shared.email_service import EmailService
from modules.shared.errors import InfrastructureError
from modules.shared.schema import create_tables
from modules.shared.uploads import CloudinaryUploader

logger = logging.getLogger("shared.deps")


@dataclass
class Services:
    settings: Settings
    store: IncidentStore
    users: UserDirectory
    notifier: NotificationDispatcher
    incidents: IncidentService
    analytics: AnalyticsEngine


_services: Optional[Services] = None


def build_services(settings: Settings, store: IncidentStore, users: UserDirectory) -> Services:
    notifier = NotificationDispatcher(users, EmailService(settings))
    lifecycle = LifecycleManager(store, notifier)
    incidents = IncidentService(
        store,
        users,
        lifecycle,
        QueryEngine(store, settings),
        CloudinaryUploader(settings),
    )
    return Services(
        settings=settings,
        store=store,
        users=users,
        notifier=notifier,
        incidents=incidents,
        analytics=AnalyticsEngine(store, users, settings),
    )


async def init_services(settings: Optional[Settings] = None) -> Services:
    global _services
    settings = settings or get_settings()
    if settings.STORE_BACKEND == "memory":
        store, users = MemoryIncidentStore(), MemoryUserDirectory()
    elif settings.STORE_BACKEND == "postgres":
        await init_db(settings.DATABASE_URL)
        await create_tables()
        store, users = PostgresIncidentStore(), PostgresUserDirectory()
    else:
        raise RuntimeError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
    _services = build_services(settings, store, users)
    logger.info(f"Services initialized with {settings.STORE_BACKEND} backend")
    return _services


async def shutdown_services() -> None:
    global _services
    if _services is None:
        return
    await _services.notifier.drain()
    if _services.settings.STORE_BACKEND == "postgres":
        await close_db()
    _services = None


def get_services() -> Services:
    if _services is None:
        raise InfrastructureError("Services are not initialized")
    return _services


def get_incident_service() -> IncidentService:
    return get_services().incidents


def get_analytics_engine() -> AnalyticsEngine:
    return get_services().analytics


def get_user_directory() -> UserDirectory:
    return get_services().users
