"""
Schemas Pydantic per la Contabilità
Progetto: DealerDesk (Gestionale Concessionaria)

Contiene:
- Enums: BillingStatus, PaymentStatus, Bucket, PaymentMethod, LedgerGroupBy
- Valori calcolati dal motore di riconciliazione (BillingFigures, InvoiceMismatch, LedgerLine)
- Schemas per Payment
- Schemas per le operazioni sulle schede contabili (sconto, fattura, scadenza)
- Schemas per elenchi e statistiche
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class BillingStatus(str, Enum):
    """Stato contabile persistito della scheda."""
    DRAFT = "draft"
    INVOICED = "invoiced"
    CLOSED = "closed"


class PaymentStatus(str, Enum):
    """Stato incasso calcolato, mai persistito."""
    DRAFT = "draft"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


class Bucket(str, Enum):
    """Tab contabile a cui appartiene una scheda (partizione esclusiva)."""
    BILLING_ENTRIES = "billing_entries"
    PARTIAL_PAYMENT = "partial_payment"
    OVERDUE = "overdue"
    SETTLED = "settled"


class PaymentMethod(str, Enum):
    """Metodi di pagamento supportati."""
    CASH = "cash"
    UPI = "upi"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    OTHER = "other"


class LedgerGroupBy(str, Enum):
    """Criterio di descrizione delle righe del mastrino."""
    VEHICLE = "vehicle"
    CUSTOMER = "customer"


# -------------------------------------------------------------------
# Valori calcolati
# -------------------------------------------------------------------

class BillingFigures(BaseModel):
    """Importi canonici di una scheda, ricalcolati ad ogni lettura."""

    model_config = ConfigDict(frozen=True)

    net_payable: Decimal = Field(..., serialization_alias="netPayable")
    total_paid: Decimal = Field(..., ge=0, serialization_alias="totalPaid")
    balance_due: Decimal = Field(..., ge=0, serialization_alias="balanceDue")


class InvoiceMismatch(BaseModel):
    """Scostamento tra importo fattura esterna e netto calcolato dal sistema."""

    model_config = ConfigDict(frozen=True)

    system_amount: Decimal = Field(..., serialization_alias="systemAmount")
    invoice_amount: Decimal = Field(..., serialization_alias="invoiceAmount")
    difference: Decimal = Field(
        ...,
        description="invoice_amount - system_amount",
    )


class LedgerLine(BaseModel):
    """Riga del mastrino con saldo progressivo."""

    entry_date: date = Field(..., serialization_alias="date")
    description: str
    debit: Decimal
    credit: Decimal
    balance: Decimal
    entry_id: uuid.UUID = Field(..., serialization_alias="entryId")
    line_type: str = Field(
        ...,
        description="bill | payment",
        serialization_alias="type",
    )


class DiscountInfo(BaseModel):
    """Dati sconto come salvati nel vecchio blob JSON delle note."""

    discount_amount: Decimal = Decimal("0")
    discount_percentage: Optional[Decimal] = None
    discount_offered_by: Optional[str] = None
    discount_reason: Optional[str] = None


class LegacyNotes(BaseModel):
    """Contenuto interpretato della vecchia colonna notes."""

    discount: Optional[DiscountInfo] = None
    invoice_number: Optional[str] = None
    reconciliation_notes: Optional[str] = None
    remarks: Optional[str] = None
    unknown_fields: dict[str, Any] = Field(default_factory=dict)


# -------------------------------------------------------------------
# Schemas per Payment
# -------------------------------------------------------------------

class PaymentBase(BaseModel):
    """Schema base per i pagamenti su scheda."""

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Importo incassato",
    )
    payment_method: PaymentMethod = Field(
        ...,
        description="Metodo di pagamento",
        serialization_alias="paymentMethod",
    )
    payment_date: date = Field(
        ...,
        description="Data pagamento",
        serialization_alias="paymentDate",
    )
    reference_number: Optional[str] = Field(
        None,
        max_length=255,
        description="Riferimento (UTR, numero assegno, etc.)",
        serialization_alias="referenceNumber",
    )
    notes: Optional[str] = Field(
        None,
        description="Note aggiuntive sul pagamento",
    )

    model_config = ConfigDict(from_attributes=True)


class PaymentCreate(PaymentBase):
    """Schema per registrare un pagamento su una scheda."""

    @field_validator("payment_date")
    @classmethod
    def validate_payment_date(cls, v: date) -> date:
        """Valida che la data pagamento non sia futura."""
        if v > date.today():
            raise ValueError("La data del pagamento non può essere futura")
        return v

    @field_validator("reference_number", "notes")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class PaymentRead(PaymentBase):
    """Schema per leggere un pagamento esistente."""

    id: uuid.UUID
    vehicle_inward_id: uuid.UUID = Field(..., serialization_alias="vehicleInwardId")
    created_at: datetime = Field(..., serialization_alias="createdAt")


# -------------------------------------------------------------------
# Schemas per operazioni sulle schede
# -------------------------------------------------------------------

class DiscountUpdate(BaseModel):
    """Schema per impostare lo sconto di una scheda."""

    discount_amount: Decimal = Field(..., ge=0, description="Importo sconto")
    discount_percentage: Optional[Decimal] = Field(
        None,
        ge=0,
        le=100,
        description="Percentuale sconto (derivata se assente)",
    )
    discount_offered_by: Optional[str] = Field(None, max_length=255)
    discount_reason: Optional[str] = None


class InvoiceNumberUpdate(BaseModel):
    """Numero fattura; stringa vuota o None riporta la scheda in bozza."""

    invoice_number: Optional[str] = Field(None, max_length=50)

    @field_validator("invoice_number")
    @classmethod
    def strip_invoice_number(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class DueDateUpdate(BaseModel):
    """Scadenza pagamento; None rimuove la scadenza."""

    due_date: Optional[date] = None


class ReconcileRequest(BaseModel):
    """Dati della fattura esterna da riconciliare con la scheda."""

    invoice_number: str = Field(..., min_length=1, max_length=50)
    invoice_date: Optional[date] = None
    invoice_amount: Optional[Decimal] = Field(None, ge=0)
    reconciliation_notes: Optional[str] = None

    @field_validator("invoice_number")
    @classmethod
    def strip_invoice_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Il numero fattura è obbligatorio")
        return v


class ReconcileResponse(BaseModel):
    """Esito della riconciliazione."""

    success: bool = True
    mismatch: Optional[InvoiceMismatch] = None


# -------------------------------------------------------------------
# Schemas per elenchi
# -------------------------------------------------------------------

class AccountEntryRead(BaseModel):
    """Scheda contabile con importi calcolati e classificazione."""

    id: uuid.UUID
    display_id: Optional[str] = Field(None, serialization_alias="shortId")
    customer_name: str = Field(..., serialization_alias="customerName")
    customer_phone: str = Field(..., serialization_alias="customerPhone")
    registration_number: str = Field(..., serialization_alias="vehicleNumber")
    make: Optional[str] = None
    model: str
    status: str
    billing_status: BillingStatus = Field(..., serialization_alias="billingStatus")
    total_amount: Decimal = Field(..., serialization_alias="totalAmount")
    discount_amount: Decimal = Field(Decimal("0"), serialization_alias="discountAmount")
    discount_percentage: Decimal = Field(Decimal("0"), serialization_alias="discountPercentage")
    discount_offered_by: Optional[str] = Field(None, serialization_alias="discountOfferedBy")
    discount_reason: Optional[str] = Field(None, serialization_alias="discountReason")
    tax_amount: Decimal = Field(Decimal("0"), serialization_alias="taxAmount")
    final_amount: Decimal = Field(..., serialization_alias="finalAmount")
    invoice_number: Optional[str] = Field(None, serialization_alias="invoiceNumber")
    invoice_date: Optional[date] = Field(None, serialization_alias="invoiceDate")
    invoice_amount: Optional[Decimal] = Field(None, serialization_alias="invoiceAmount")
    due_date: Optional[date] = Field(None, serialization_alias="dueDate")
    billing_closed_at: Optional[datetime] = Field(None, serialization_alias="billingClosedAt")
    created_at: datetime = Field(..., serialization_alias="createdAt")
    figures: BillingFigures
    payment_status: PaymentStatus = Field(..., serialization_alias="paymentStatus")
    bucket: Bucket
    payments: list[PaymentRead] = Field(default_factory=list)


class AccountEntryList(BaseModel):
    """Lista paginata delle schede di un tab contabile."""

    items: list[AccountEntryRead] = Field(default_factory=list)
    total: int = Field(..., serialization_alias="totalItems")
    page: int = Field(..., serialization_alias="currentPage")
    per_page: int = Field(..., serialization_alias="itemsPerPage")
    total_pages: int = Field(..., serialization_alias="totalPages")
    display_id_scope: str = Field(
        ...,
        description=(
            "Insieme su cui sono stati numerati gli ID progressivi (active | settled). "
            "Lo stesso veicolo può ricevere ID diversi in insiemi diversi."
        ),
        serialization_alias="displayIdScope",
    )


class BillingStats(BaseModel):
    """Statistiche contabili sulle schede non consegnate."""

    total_entries: int = Field(..., serialization_alias="totalEntries")
    total_revenue: Decimal = Field(..., serialization_alias="totalRevenue")
    total_receivable: Decimal = Field(..., serialization_alias="totalReceivable")
    outstanding_amount: Decimal = Field(..., serialization_alias="outstandingAmount")
    partial_payments_count: int = Field(..., serialization_alias="partialPaymentsCount")
    overdue_entries: int = Field(..., serialization_alias="overdueEntries")
    average_payment_time: Decimal = Field(
        ...,
        description="Giorni medi tra ingresso e primo pagamento (schede chiuse)",
        serialization_alias="averagePaymentTime",
    )
