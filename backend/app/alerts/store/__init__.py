"""
store — Data-access layer for devices, alerts and delivery records.

Backends:
    memory  — InMemoryAlertStore (default, process-local)
    sql     — SqlAlchemyAlertStore (async SQLAlchemy; sqlite / PostgreSQL)

Pick one with ``build_store(settings)``.
"""

from __future__ import annotations

from typing import Optional

from backend.app.alerts.store.base import AlertStore
from backend.app.alerts.store.memory import InMemoryAlertStore
from backend.app.core.config import Settings, get_settings


def build_store(settings: Optional[Settings] = None) -> AlertStore:
    """Construct the store backend named by ``STORE_BACKEND``."""
    settings = settings or get_settings()
    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        return InMemoryAlertStore()
    if backend in ("database", "sql"):
        from backend.app.alerts.store.sql import SqlAlchemyAlertStore
        return SqlAlchemyAlertStore.from_url(
            settings.DATABASE_URL, echo=settings.DATABASE_ECHO
        )
    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND!r}")
