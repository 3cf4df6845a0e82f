"""
Domain Layer - Business Entities

Pydantic models for the tenant-scoped entities of the back-office and the
request bodies the API accepts.

Author: Backoffice API team
Date: 2026-02-09
"""
from backoffice.domain.customer import Customer, CustomerAddress
from backoffice.domain.menu import MenuItem
from backoffice.domain.agenda import AgendaTask, AgendaReminder
from backoffice.domain.shipment import Shipment, TrackingEvent
from backoffice.domain.fiscal import FiscalInvoice, FiscalInvoiceItem, FiscalSettings
from backoffice.domain.creative import CreativeJob
from backoffice.domain.notification import Notification
from backoffice.domain.payment import PaymentTransaction

__all__ = [
    'Customer', 'CustomerAddress', 'MenuItem', 'AgendaTask', 'AgendaReminder',
    'Shipment', 'TrackingEvent', 'FiscalInvoice', 'FiscalInvoiceItem',
    'FiscalSettings', 'CreativeJob', 'Notification', 'PaymentTransaction'
]
