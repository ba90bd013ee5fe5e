"""
Modello SQLAlchemy per l'entità VehicleInward
Progetto: DealerDesk (Gestionale Concessionaria)

Rappresenta la scheda di ingresso veicolo: dati di accettazione,
lavorazioni richieste (accessori/installazioni) e dati contabili.
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, List

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealerdesk.models import Base
from dealerdesk.models.mixins import TimestampMixin, UUIDMixin
from dealerdesk.services.billing_engine import apply_discount, line_items_total

if TYPE_CHECKING:
    from dealerdesk.models.payment import Payment


class VehicleInward(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le schede di ingresso veicolo.

    Una scheda nasce all'accettazione del veicolo con billing_status='draft',
    passa a 'invoiced' quando viene assegnato un numero fattura e a 'closed'
    con la chiusura contabile (irreversibile).

    Attributes:
        customer_name / customer_phone / customer_email: Dati cliente
        registration_number / make / model / year / color / vehicle_type: Dati veicolo
        status: Stato operativo (pending, in_progress, ..., delivered)
        line_items: Lavorazioni richieste [{product, brand, price, department}]
        discount_amount / discount_percentage / discount_offered_by / discount_reason: Sconto
        tax_amount: Imposte
        net_payable: Netto da pagare precalcolato (opzionale)
        final_amount: Importo finale legacy (totale - sconto)
        due_date: Scadenza pagamento
        billing_status: draft | invoiced | closed
        invoice_number / invoice_date / invoice_amount: Dati fattura esterna
        reconciliation_notes: Note di riconciliazione
        notes: Note libere (colonna legacy, prima conteneva un blob JSON)

    Relationships:
        payments: Pagamenti registrati sulla scheda
    """

    __tablename__ = "vehicle_inward"

    # ------------------------------------------------------------
    # Colonne Cliente
    # ------------------------------------------------------------
    customer_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Nome del cliente",
    )

    customer_phone: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Telefono del cliente",
    )

    customer_email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Email del cliente",
    )

    # ------------------------------------------------------------
    # Colonne Veicolo
    # ------------------------------------------------------------
    registration_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Targa del veicolo",
    )

    make: Mapped[str | None] = mapped_column(String(100), nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    vehicle_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    odometer_reading: Mapped[int | None] = mapped_column(Integer, nullable=True)

    priority: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="medium",
        doc="Priorità lavorazione (low, medium, high)",
    )

    issues_reported: Mapped[str | None] = mapped_column(Text, nullable=True)

    estimated_completion_date: Mapped[datetime.date | None] = mapped_column(
        Date,
        nullable=True,
        doc="Data prevista di consegna",
    )

    # ------------------------------------------------------------
    # Colonne Lavorazione
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="pending",
        doc="Stato operativo della scheda",
    )

    line_items: Mapped[List[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Accessori/installazioni richiesti con prezzo",
    )

    completed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora del primo passaggio a uno stato terminale",
    )

    # ------------------------------------------------------------
    # Colonne Sconto
    # ------------------------------------------------------------
    discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    discount_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    discount_offered_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    discount_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    net_payable: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        doc="Netto da pagare precalcolato; se NULL viene derivato",
    )

    final_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        doc="Importo finale legacy (totale - sconto)",
    )

    due_date: Mapped[datetime.date | None] = mapped_column(
        Date,
        nullable=True,
        doc="Scadenza pagamento; NULL = mai scaduta",
    )

    # ------------------------------------------------------------
    # Colonne Fatturazione
    # ------------------------------------------------------------
    billing_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        doc="Stato contabile: draft, invoiced, closed",
    )

    invoice_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        unique=True,
        doc="Numero fattura esterna",
    )

    invoice_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    invoice_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    reconciliation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    billing_closed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Note libere",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="vehicle_inward",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Payment.payment_date",
        doc="Pagamenti registrati sulla scheda",
    )

    # ------------------------------------------------------------
    # Properties Calcolate
    # ------------------------------------------------------------
    @property
    def total_amount(self) -> Decimal:
        """Somma dei prezzi delle lavorazioni richieste."""
        return line_items_total(self.line_items or [])

    @property
    def discounted_amount(self) -> Decimal:
        """Totale al netto dello sconto (mai negativo)."""
        return apply_discount(self.total_amount, self.discount_amount or Decimal("0"))

    @property
    def is_billing_closed(self) -> bool:
        return self.billing_status == "closed"

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        Index("ix_vehicle_inward_status", "status"),
        Index("ix_vehicle_inward_created_at", "created_at"),
        Index("ix_vehicle_inward_registration", "registration_number"),
        Index("ix_vehicle_inward_due_date", "due_date"),
        CheckConstraint(
            "billing_status IN ('draft', 'invoiced', 'closed')",
            name="ck_vehicle_inward_billing_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name="ck_vehicle_inward_priority",
        ),
        CheckConstraint(
            "tax_amount IS NULL OR tax_amount >= 0",
            name="ck_vehicle_inward_tax_positive",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<VehicleInward(id={self.id}, reg={self.registration_number}, "
            f"status={self.status}, billing={self.billing_status})>"
        )

    @property
    def display_name(self) -> str:
        """
        Nome visualizzato del veicolo.

        Returns:
            Stringa formattata: "Marca Modello (Targa)"
        """
        make = f"{self.make} " if self.make else ""
        return f"{make}{self.model} ({self.registration_number})"
