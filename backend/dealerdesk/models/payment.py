"""
Modello SQLAlchemy per i Pagamenti
Progetto: DealerDesk (Gestionale Concessionaria)

I pagamenti sono append-only: vengono inseriti o eliminati,
mai modificati.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealerdesk.models import Base
from dealerdesk.models.mixins import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from dealerdesk.models.vehicle_inward import VehicleInward


class Payment(Base, UUIDMixin, TimestampMixin):
    """
    Modello per i pagamenti registrati su una scheda veicolo.

    Attributes:
        id: UUID primary key, generato automaticamente
        vehicle_inward_id: UUID della scheda a cui si riferisce
        amount: Importo incassato (> 0)
        payment_method: Metodo di pagamento (cash, upi, card, bank_transfer, cheque, other)
        payment_date: Data dell'incasso
        reference_number: Riferimento (UTR, numero assegno, ...)
        notes: Note aggiuntive
        created_at: Data/ora registrazione

    Relationships:
        vehicle_inward: Scheda veicolo associata
    """

    __tablename__ = "payments"

    vehicle_inward_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("vehicle_inward.id", ondelete="CASCADE"),
        nullable=False,
        doc="UUID della scheda veicolo",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        doc="Importo del pagamento",
    )

    payment_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Metodo di pagamento",
    )

    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Data del pagamento",
    )

    reference_number: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Riferimento (UTR bonifico/UPI, numero assegno, etc.)",
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Note aggiuntive sul pagamento",
    )

    # ------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------
    vehicle_inward: Mapped["VehicleInward"] = relationship(
        "VehicleInward",
        back_populates="payments",
        doc="Scheda veicolo associata",
    )

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        Index("ix_payments_vehicle_inward_id", "vehicle_inward_id"),
        Index("ix_payments_payment_date", "payment_date"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "payment_method IN ('cash', 'upi', 'card', 'bank_transfer', 'cheque', 'other')",
            name="ck_payments_payment_method",
        ),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, amount={self.amount}, method={self.payment_method})>"
