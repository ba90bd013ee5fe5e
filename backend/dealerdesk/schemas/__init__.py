"""
Schemas Pydantic per il progetto DealerDesk

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione delle risposte API.
"""

# Import degli schemi per renderli disponibili tramite import diretto
# es: from dealerdesk.schemas import VehicleInwardRead, PaymentCreate, etc.

from dealerdesk.schemas.vehicle_inward import (
    LineItem,
    Priority,
    VehicleInwardCreate,
    VehicleInwardList,
    VehicleInwardRead,
    VehicleInwardUpdate,
    VehicleStatus,
    VehicleStatusUpdate,
)
from dealerdesk.schemas.billing import (
    AccountEntryList,
    AccountEntryRead,
    BillingFigures,
    BillingStats,
    BillingStatus,
    Bucket,
    DiscountInfo,
    DiscountUpdate,
    DueDateUpdate,
    InvoiceMismatch,
    InvoiceNumberUpdate,
    LedgerGroupBy,
    LedgerLine,
    LegacyNotes,
    PaymentCreate,
    PaymentMethod,
    PaymentRead,
    PaymentStatus,
    ReconcileRequest,
    ReconcileResponse,
)

__all__ = [
    # VehicleInward
    "LineItem",
    "Priority",
    "VehicleInwardCreate",
    "VehicleInwardList",
    "VehicleInwardRead",
    "VehicleInwardUpdate",
    "VehicleStatus",
    "VehicleStatusUpdate",
    # Billing
    "AccountEntryList",
    "AccountEntryRead",
    "BillingFigures",
    "BillingStats",
    "BillingStatus",
    "Bucket",
    "DiscountInfo",
    "DiscountUpdate",
    "DueDateUpdate",
    "InvoiceMismatch",
    "InvoiceNumberUpdate",
    "LedgerGroupBy",
    "LedgerLine",
    "LegacyNotes",
    "PaymentCreate",
    "PaymentMethod",
    "PaymentRead",
    "PaymentStatus",
    "ReconcileRequest",
    "ReconcileResponse",
]
