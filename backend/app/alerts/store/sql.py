"""
sql.py — SQLAlchemy 2.0 async store (aiosqlite locally, asyncpg in prod).

Tables:
    devices             registered endpoints + normalized preferences (JSON)
    alerts              every alert produced or dispatched
    alert_deliveries    one row per (alert, device, channel, attempt)
    risk_assessments    zone score snapshots per evaluation tick
    system_logs         business events (dispatch summaries, failures)

Any SQLAlchemy / driver failure is re-raised as ``DataAccessError`` so the
orchestrator can abort the pass and the API can answer 503.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.alerts.models import (
    Alert,
    Channel,
    DeliveryRecord,
    DeliveryStatus,
    Device,
    Preferences,
    RiskAssessmentSnapshot,
    Severity,
    _now,
)
from backend.app.core.database import (
    Base,
    build_engine,
    build_session_factory,
    close_db,
    init_db,
)
from backend.app.core.errors import DataAccessError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ORM Tables
# ═══════════════════════════════════════════════════════════════════════════

class DeviceRow(Base):
    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_name: Mapped[str] = mapped_column(String(200))
    device_type: Mapped[str] = mapped_column(String(20), default="android")
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    push_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    push_subscription: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    zone_assignment: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    preferences: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    battery_level: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    network_status: Mapped[str] = mapped_column(String(20), default="online")
    location: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class AlertRow(Base):
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    severity: Mapped[str] = mapped_column(String(16), index=True)
    zone_id: Mapped[str] = mapped_column(String(64), index=True)
    zone_name: Mapped[str] = mapped_column(String(200))
    title: Mapped[str] = mapped_column(String(300), default="")
    message: Mapped[str] = mapped_column(Text)
    risk_score: Mapped[float] = mapped_column(Float)
    risk_probability: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recommended_actions: Mapped[List[str]] = mapped_column(JSON, default=list)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    alert_type: Mapped[str] = mapped_column(String(32), default="risk")
    predicted_timeline: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class DeliveryRow(Base):
    __tablename__ = "alert_deliveries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(64), index=True)
    device_id: Mapped[str] = mapped_column(String(64), index=True)
    channel: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16), default=DeliveryStatus.PENDING.value)
    delivery_attempts: Mapped[int] = mapped_column(Integer, default=1)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider_ref: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class RiskAssessmentRow(Base):
    __tablename__ = "risk_assessments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    zone_scores: Mapped[Dict[str, float]] = mapped_column(JSON)
    alerts_generated: Mapped[List[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class SystemLogRow(Base):
    __tablename__ = "system_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level: Mapped[str] = mapped_column(String(16))
    category: Mapped[str] = mapped_column(String(32), index=True)
    message: Mapped[str] = mapped_column(Text)
    context: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ model mapping
# ═══════════════════════════════════════════════════════════════════════════

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _device_from_row(row: DeviceRow) -> Device:
    return Device(
        id=row.id,
        owner_name=row.owner_name,
        device_type=row.device_type,
        phone_number=row.phone_number,
        email=row.email,
        push_token=row.push_token,
        push_subscription=row.push_subscription,
        zone_assignment=row.zone_assignment,
        is_active=bool(row.is_active),
        preferences=Preferences.from_mapping(row.preferences),
        last_seen=_aware(row.last_seen),
        battery_level=row.battery_level,
        network_status=row.network_status,
        location=row.location,
        created_at=_aware(row.created_at) or _now(),
    )


def _apply_device(row: DeviceRow, device: Device) -> None:
    row.owner_name = device.owner_name
    row.device_type = device.device_type
    row.phone_number = device.phone_number
    row.email = device.email
    row.push_token = device.push_token
    row.push_subscription = device.push_subscription
    row.zone_assignment = device.zone_assignment
    row.is_active = device.is_active
    row.preferences = device.preferences.to_dict()
    row.last_seen = device.last_seen
    row.battery_level = device.battery_level
    row.network_status = device.network_status
    row.location = device.location
    row.created_at = device.created_at


def _alert_from_row(row: AlertRow) -> Alert:
    return Alert(
        id=row.id,
        severity=Severity.parse(row.severity),
        zone_id=row.zone_id,
        zone_name=row.zone_name,
        title=row.title,
        message=row.message,
        risk_score=row.risk_score,
        risk_probability=row.risk_probability,
        recommended_actions=tuple(row.recommended_actions or ()),
        timestamp=_aware(row.timestamp) or _now(),
        alert_type=row.alert_type,
        predicted_timeline=row.predicted_timeline,
    )


def _delivery_from_row(row: DeliveryRow) -> DeliveryRecord:
    return DeliveryRecord(
        id=row.id,
        alert_id=row.alert_id,
        device_id=row.device_id,
        channel=Channel(row.channel),
        status=DeliveryStatus(row.status),
        delivery_attempts=row.delivery_attempts,
        error_message=row.error_message,
        provider_ref=row.provider_ref,
        created_at=_aware(row.created_at) or _now(),
        sent_at=_aware(row.sent_at),
        delivered_at=_aware(row.delivered_at),
        read_at=_aware(row.read_at),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlAlchemyAlertStore:
    """AlertStore over an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] = build_session_factory(engine)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> "SqlAlchemyAlertStore":
        return cls(build_engine(url, echo=echo))

    async def init(self) -> None:
        """Create tables if missing."""
        try:
            await init_db(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise DataAccessError("init", str(e)) from e

    async def close(self) -> None:
        await close_db(self._engine)

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Transactional session; storage failures become DataAccessError."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error("Store operation %s failed: %s", operation, e)
            raise DataAccessError(operation, str(e)) from e

    # ── Devices ──

    async def get_devices(self) -> List[Device]:
        async with self._session("get_devices") as session:
            rows = (await session.scalars(select(DeviceRow).order_by(DeviceRow.created_at))).all()
            return [_device_from_row(r) for r in rows]

    async def get_devices_by_zone(self, zone_id: str) -> List[Device]:
        async with self._session("get_devices_by_zone") as session:
            rows = (await session.scalars(
                select(DeviceRow)
                .where(DeviceRow.zone_assignment == zone_id)
                .order_by(DeviceRow.created_at)
            )).all()
            return [_device_from_row(r) for r in rows]

    async def get_device(self, device_id: str) -> Optional[Device]:
        async with self._session("get_device") as session:
            row = await session.get(DeviceRow, device_id)
            return _device_from_row(row) if row else None

    async def save_device(self, device: Device) -> Device:
        async with self._session("save_device") as session:
            row = await session.get(DeviceRow, device.id)
            if row is None:
                row = DeviceRow(id=device.id)
                session.add(row)
            _apply_device(row, device)
        return device

    async def delete_device(self, device_id: str) -> bool:
        async with self._session("delete_device") as session:
            row = await session.get(DeviceRow, device_id)
            if row is None:
                return False
            await session.delete(row)
            return True

    # ── Alerts ──

    async def create_alert(self, alert: Alert) -> Alert:
        async with self._session("create_alert") as session:
            session.add(AlertRow(
                id=alert.id,
                severity=alert.severity.value,
                zone_id=alert.zone_id,
                zone_name=alert.zone_name,
                title=alert.title,
                message=alert.message,
                risk_score=alert.risk_score,
                risk_probability=alert.risk_probability,
                recommended_actions=list(alert.recommended_actions),
                timestamp=alert.timestamp,
                alert_type=alert.alert_type,
                predicted_timeline=alert.predicted_timeline,
            ))
        return alert

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        async with self._session("get_alert") as session:
            row = await session.get(AlertRow, alert_id)
            return _alert_from_row(row) if row else None

    # ── Deliveries ──

    async def create_alert_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        async with self._session("create_alert_delivery") as session:
            session.add(DeliveryRow(
                id=record.id,
                alert_id=record.alert_id,
                device_id=record.device_id,
                channel=record.channel.value,
                status=record.status.value,
                delivery_attempts=record.delivery_attempts,
                error_message=record.error_message,
                created_at=record.created_at,
            ))
        return record

    async def update_delivery_status(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        error: Optional[str] = None,
        *,
        provider_ref: Optional[str] = None,
    ) -> Optional[DeliveryRecord]:
        async with self._session("update_delivery_status") as session:
            row = await session.get(DeliveryRow, delivery_id)
            if row is None:
                return None
            row.status = status.value
            row.error_message = error
            if provider_ref:
                row.provider_ref = provider_ref
            now = _now()
            if status == DeliveryStatus.SENT:
                row.sent_at = now
            elif status == DeliveryStatus.DELIVERED:
                row.delivered_at = now
            elif status == DeliveryStatus.READ:
                row.read_at = now
            return _delivery_from_row(row)

    async def get_deliveries(self, alert_id: str) -> List[DeliveryRecord]:
        async with self._session("get_deliveries") as session:
            rows = (await session.scalars(
                select(DeliveryRow)
                .where(DeliveryRow.alert_id == alert_id)
                .order_by(DeliveryRow.created_at)
            )).all()
            return [_delivery_from_row(r) for r in rows]

    # ── Assessments & logs ──

    async def create_risk_assessment(
        self, snapshot: RiskAssessmentSnapshot
    ) -> RiskAssessmentSnapshot:
        async with self._session("create_risk_assessment") as session:
            session.add(RiskAssessmentRow(
                id=snapshot.id,
                zone_scores=dict(snapshot.zone_scores),
                alerts_generated=list(snapshot.alerts_generated),
                created_at=snapshot.created_at,
            ))
        return snapshot

    async def log(
        self,
        level: str,
        category: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._session("log") as session:
            session.add(SystemLogRow(
                level=level,
                category=category,
                message=message,
                context=context or {},
            ))

    async def ping(self) -> bool:
        async with self._session("ping") as session:
            await session.execute(text("SELECT 1"))
        return True
