"""
Repository Layer - Data Access

This layer handles all database queries and returns domain models.
Every query is scoped by tenant_id unless it belongs to a cron job that
works across tenants.

Author: Backoffice API team
Date: 2026-02-09
"""
from backoffice.repositories.tenant_repository import TenantRepository
from backoffice.repositories.event_repository import EventRepository
from backoffice.repositories.integration_repository import IntegrationRepository
from backoffice.repositories.customer_repository import CustomerRepository
from backoffice.repositories.menu_repository import MenuRepository
from backoffice.repositories.agenda_repository import AgendaRepository
from backoffice.repositories.shipment_repository import ShipmentRepository
from backoffice.repositories.fiscal_repository import FiscalRepository
from backoffice.repositories.creative_repository import CreativeRepository
from backoffice.repositories.notification_repository import NotificationRepository
from backoffice.repositories.payment_repository import PaymentRepository

__all__ = [
    'TenantRepository',
    'EventRepository',
    'IntegrationRepository',
    'CustomerRepository',
    'MenuRepository',
    'AgendaRepository',
    'ShipmentRepository',
    'FiscalRepository',
    'CreativeRepository',
    'NotificationRepository',
    'PaymentRepository'
]
