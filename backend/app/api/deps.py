"""
FastAPI dependencies — pull the wired services off ``app.state``.

The lifespan in ``backend.app.main`` builds the store, providers,
dispatcher and risk monitor once and parks them on the app.
"""

from __future__ import annotations

from fastapi import Request

from backend.app.alerts.alert_service import AlertDispatchService
from backend.app.alerts.channels.base import ChannelProviders
from backend.app.alerts.risk_monitor import RiskMonitor
from backend.app.alerts.store.base import AlertStore
from backend.app.core.config import Settings


def get_store(request: Request) -> AlertStore:
    return request.app.state.store


def get_providers(request: Request) -> ChannelProviders:
    return request.app.state.providers


def get_dispatcher(request: Request) -> AlertDispatchService:
    return request.app.state.dispatcher


def get_monitor(request: Request) -> RiskMonitor:
    return request.app.state.monitor


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
