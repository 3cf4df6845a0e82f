"""
Tracking Service
Shipment registration and the carrier polling job

Polling picks active shipments whose next_poll_at has passed, asks the
carrier adapter for events, stores the new ones and moves the shipment (and
its order's shipping_status) to the status of the most recent event.

Author: Backoffice API team
Date: 2026-02-12
"""
import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from backoffice.connectors.correios_connector import CorreiosConnector
from backoffice.connectors.loggi_connector import LoggiConnector
from backoffice.connectors.tracking_result import TrackingResult
from backoffice.core.auth import TenantContext
from backoffice.core.config import settings
from backoffice.core.errors import NotFoundError
from backoffice.domain.shipment import Shipment, ShipmentCreate, ShipmentEventRecord, latest_event
from backoffice.repositories.event_repository import EventRepository
from backoffice.repositories.integration_repository import IntegrationRepository
from backoffice.repositories.shipment_repository import ShipmentRepository

logger = logging.getLogger(__name__)

MAX_ERROR_COUNT = 10
BACKOFF_MULTIPLIER = 2
SKIP_BACKOFF_FACTOR = 4


# ============================================================================
# Carrier resolution
# ============================================================================

def infer_carrier(tracking_code: Optional[str]) -> str:
    """Correios codes end with BR, Loggi codes start with BLI"""
    if not tracking_code:
        return "unknown"
    code = tracking_code.strip().upper()
    if code.endswith("BR"):
        return "correios"
    if code.startswith("BLI"):
        return "loggi"
    return "unknown"


def normalize_carrier(carrier: Optional[str], tracking_code: Optional[str]) -> str:
    name = (carrier or "").strip().lower()
    if "correio" in name:
        return "correios"
    if "loggi" in name:
        return "loggi"
    if name in ("", "unknown"):
        return infer_carrier(tracking_code)
    return name


@dataclass
class ProviderCheck:
    carrier: str
    provider: Optional[Dict[str, Any]] = None
    skip_reason: Optional[str] = None


@dataclass
class TrackingStats:
    total: int = 0
    processed: int = 0
    updated: int = 0
    errors: int = 0
    noAdapter: int = 0


@dataclass
class TrackingPollResult:
    success: bool
    stats: TrackingStats = field(default_factory=TrackingStats)
    duration_ms: int = 0
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['message'] is None:
            del data['message']
        return data


def _default_adapter_factory(carrier: str, tenant_id: str, provider: Dict[str, Any]):
    credentials = provider.get('credentials') or {}
    if carrier == "correios":
        return CorreiosConnector(tenant_id, credentials)
    if carrier == "loggi":
        return LoggiConnector(credentials)
    return None


# ============================================================================
# Service
# ============================================================================

class TrackingService:
    """
    Service for shipment tracking

    Handles:
    - Shipment registration for an order
    - Polling carriers with exponential backoff on adapter failures
    - shipment.status_changed events for the notification pipeline
    """

    def __init__(
        self,
        repo: ShipmentRepository = None,
        integrations: IntegrationRepository = None,
        events: EventRepository = None,
        adapter_factory: Callable = _default_adapter_factory,
        poll_interval_minutes: Optional[int] = None,
        max_per_run: Optional[int] = None
    ):
        self.repo = repo or ShipmentRepository()
        self.integrations = integrations or IntegrationRepository()
        self.events = events or EventRepository()
        self.adapter_factory = adapter_factory
        self.poll_interval_minutes = poll_interval_minutes or settings.TRACKING_POLL_INTERVAL_MINUTES
        self.max_per_run = max_per_run or settings.TRACKING_MAX_PER_RUN

    # =========================================================================
    # Tenant operations
    # =========================================================================

    def register_shipment(self, ctx: TenantContext, data: ShipmentCreate) -> Shipment:
        tracking_code = data.tracking_code.strip().upper()

        existing = self.repo.find_by_tracking_code(ctx.tenant_id, data.order_id, tracking_code)
        if existing:
            return existing

        if not self.repo.order_exists(ctx.tenant_id, data.order_id):
            raise NotFoundError("Pedido não encontrado")

        shipment = self.repo.insert(
            ctx.tenant_id, data.order_id, tracking_code, data.carrier,
            now=datetime.now(timezone.utc)
        )
        logger.info(f"Shipment {shipment.id} registered for order {data.order_id} ({tracking_code})")
        return shipment

    def list_events(self, ctx: TenantContext, shipment_id: str) -> List[ShipmentEventRecord]:
        if not self.repo.find_by_id(ctx.tenant_id, shipment_id):
            raise NotFoundError("Envio não encontrado")
        return self.repo.find_events(shipment_id)

    # =========================================================================
    # Polling
    # =========================================================================

    def check_provider(self, tenant_id: str, carrier: Optional[str], tracking_code: Optional[str]) -> ProviderCheck:
        normalized = normalize_carrier(carrier, tracking_code)
        if normalized == "unknown":
            return ProviderCheck(carrier=normalized, skip_reason="carrier_unknown")

        provider = self.integrations.get_shipping_provider(tenant_id, normalized)
        if not provider:
            return ProviderCheck(carrier=normalized, skip_reason="provider_not_configured")
        if not provider.get('is_enabled'):
            return ProviderCheck(carrier=normalized, skip_reason="provider_disabled")
        if not provider.get('supports_tracking'):
            return ProviderCheck(carrier=normalized, skip_reason="tracking_not_supported")

        return ProviderCheck(carrier=normalized, provider=provider)

    async def fetch_events(self, shipment: Shipment, check: ProviderCheck) -> TrackingResult:
        adapter = self.adapter_factory(check.carrier, shipment.tenant_id, check.provider)
        if adapter is None:
            logger.info(f"No adapter available for carrier: {check.carrier}")
            return TrackingResult(success=True, error="no_provider_adapter")
        return await adapter.fetch_events(shipment.tracking_code)

    def _minutes_from(self, now: datetime, minutes: float) -> datetime:
        return now + timedelta(minutes=minutes)

    async def process_shipment(self, shipment: Shipment, check: ProviderCheck, now: datetime) -> Tuple[TrackingResult, bool]:
        """
        Poll one shipment and persist the outcome.

        Returns:
            (adapter result, whether the delivery status changed)
        """
        result = await self.fetch_events(shipment, check)

        if not result.success:
            error_count = shipment.poll_error_count + 1
            backoff = self.poll_interval_minutes * BACKOFF_MULTIPLIER ** min(error_count, 5)
            self.repo.update_poll_state(
                shipment.id, now, self._minutes_from(now, backoff),
                last_poll_error=result.error or "unknown_error",
                poll_error_count=error_count
            )
            return result, False

        if not result.events:
            self.repo.update_poll_state(
                shipment.id, now, self._minutes_from(now, self.poll_interval_minutes),
                last_poll_error="no_provider_adapter" if result.error == "no_provider_adapter" else None,
                poll_error_count=0
            )
            return result, False

        newest = latest_event(result.events)
        old_status = shipment.delivery_status
        new_status = newest.status

        self.repo.apply_tracking(
            shipment, result.events, new_status, newest.occurred_at,
            now=now, next_poll_at=self._minutes_from(now, self.poll_interval_minutes)
        )

        if new_status != old_status:
            self.events.emit(
                shipment.tenant_id,
                "shipment.status_changed",
                {
                    'shipment_id': shipment.id,
                    'order_id': shipment.order_id,
                    'tracking_code': shipment.tracking_code,
                    'carrier': shipment.carrier,
                    'old_status': old_status,
                    'new_status': new_status,
                    'last_event': newest.model_dump(mode="json"),
                },
                idempotency_key=f"shipment_status_{shipment.id}_{old_status}_{new_status}",
                subject=shipment.id
            )
            logger.info(f"Shipment {shipment.id} updated: {old_status} -> {new_status}")

        return result, new_status != old_status

    async def poll(self, now: Optional[datetime] = None) -> TrackingPollResult:
        start_time = time.time()
        now = now or datetime.now(timezone.utc)
        result = TrackingPollResult(success=True)
        stats = result.stats

        shipments = self.repo.find_due_for_polling(now, limit=self.max_per_run, max_error_count=MAX_ERROR_COUNT)
        if not shipments:
            logger.info("No shipments due for polling")
            result.message = "No shipments to poll"
            result.duration_ms = int((time.time() - start_time) * 1000)
            return result

        stats.total = len(shipments)
        logger.info(f"Processing {len(shipments)} shipments")

        provider_cache: Dict[str, ProviderCheck] = {}

        for shipment in shipments:
            try:
                cache_key = f"{shipment.tenant_id}_{normalize_carrier(shipment.carrier, shipment.tracking_code)}"
                if cache_key not in provider_cache:
                    provider_cache[cache_key] = self.check_provider(
                        shipment.tenant_id, shipment.carrier, shipment.tracking_code
                    )
                check = provider_cache[cache_key]

                if check.skip_reason:
                    logger.info(f"Skipping shipment {shipment.id}: {check.skip_reason}")
                    self.repo.record_skip(
                        shipment, check.skip_reason, now,
                        self._minutes_from(now, self.poll_interval_minutes * SKIP_BACKOFF_FACTOR)
                    )
                    stats.noAdapter += 1
                    continue

                adapter_result, updated = await self.process_shipment(shipment, check, now)
                stats.processed += 1

                if updated:
                    stats.updated += 1
                if adapter_result.error == "no_provider_adapter":
                    stats.noAdapter += 1
                elif adapter_result.error:
                    stats.errors += 1

            except Exception as e:
                stats.errors += 1
                logger.error(f"Error processing shipment {shipment.id}: {e}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Tracking poll completed in {result.duration_ms}ms: {asdict(stats)}")
        return result
