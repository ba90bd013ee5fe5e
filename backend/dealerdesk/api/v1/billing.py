"""
Router FastAPI per la Contabilità
Progetto: DealerDesk (Gestionale Concessionaria)

Definisce gli endpoint del modulo contabile:
- Tab schede (da fatturare, pagamento parziale, scadute, saldate)
- Pagamenti su scheda
- Chiusura, riconciliazione, numero fattura, sconto, scadenza
- Statistiche e mastrino
"""

import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.config import settings
from dealerdesk.core.database import get_db
from dealerdesk.schemas.billing import (
    AccountEntryList,
    AccountEntryRead,
    BillingStats,
    Bucket,
    DiscountUpdate,
    DueDateUpdate,
    InvoiceNumberUpdate,
    LedgerGroupBy,
    LedgerLine,
    PaymentCreate,
    PaymentRead,
    ReconcileRequest,
    ReconcileResponse,
)
from dealerdesk.services.billing_service import billing_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/billing",
    tags=["Contabilità"],
)


def get_today() -> date:
    """Data di riferimento per scadenze e classificazione."""
    return date.today()


# -------------------------------------------------------------------
# Report
# -------------------------------------------------------------------

@router.get(
    "/stats",
    name="contabilita_statistiche",
    summary="Statistiche contabili",
    response_model=BillingStats,
    status_code=status.HTTP_200_OK,
)
async def get_stats(
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> BillingStats:
    return await billing_service.get_stats(db=db, now=today)


@router.get(
    "/ledger",
    name="contabilita_mastrino",
    summary="Mastrino con saldo progressivo",
    description="Addebiti (netto schede) e accrediti (pagamenti) in ordine di data.",
    response_model=list[LedgerLine],
    status_code=status.HTTP_200_OK,
)
async def get_ledger(
    group_by: LedgerGroupBy = Query(LedgerGroupBy.VEHICLE, description="vehicle | customer"),
    db: AsyncSession = Depends(get_db),
) -> list[LedgerLine]:
    return await billing_service.get_ledger(db=db, group_by=group_by)


# -------------------------------------------------------------------
# Schede
# -------------------------------------------------------------------

@router.get(
    "/entries",
    name="contabilita_schede",
    summary="Schede di un tab contabile",
    response_model=AccountEntryList,
    status_code=status.HTTP_200_OK,
)
async def list_entries(
    bucket: Bucket = Query(Bucket.BILLING_ENTRIES, description="Tab contabile"),
    search: Optional[str] = Query(None, description="Ricerca su cliente, telefono, targa, fattura"),
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: Optional[int] = Query(None, ge=1, le=settings.max_page_size, description="Elementi per pagina"),
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> AccountEntryList:
    """
    Elenco delle schede del tab richiesto con importi calcolati.

    Args:
        bucket: billing_entries | partial_payment | overdue | settled
        search: Termine di ricerca opzionale
        page: Numero pagina
        per_page: Elementi per pagina (default da configurazione)
    """
    return await billing_service.list_entries(
        db=db,
        bucket=bucket,
        now=today,
        search=search,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/entries/{entry_id}",
    name="contabilita_scheda",
    summary="Dettaglio contabile scheda",
    response_model=AccountEntryRead,
    status_code=status.HTTP_200_OK,
)
async def get_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> AccountEntryRead:
    return await billing_service.get_entry(db=db, entry_id=entry_id, now=today)


# -------------------------------------------------------------------
# Pagamenti
# -------------------------------------------------------------------

@router.get(
    "/entries/{entry_id}/payments",
    name="contabilita_pagamenti",
    summary="Pagamenti della scheda",
    response_model=list[PaymentRead],
    status_code=status.HTTP_200_OK,
)
async def get_payments(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[PaymentRead]:
    payments = await billing_service.get_payments(db=db, entry_id=entry_id)
    return [PaymentRead.model_validate(p) for p in payments]


@router.post(
    "/entries/{entry_id}/payments",
    name="contabilita_pagamento_crea",
    summary="Registra pagamento",
    description=(
        "Registra un pagamento. L'importo non può superare il saldo; "
        "una scheda fatturata e saldata viene chiusa automaticamente."
    ),
    response_model=PaymentRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_payment(
    entry_id: uuid.UUID,
    data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> PaymentRead:
    """
    Registra un pagamento su una scheda.

    Raises:
        NotFoundError: Se la scheda non esiste
        409 Conflict: Se la scheda è chiusa
        422: Se l'importo supera il saldo
    """
    payment = await billing_service.add_payment(
        db=db,
        entry_id=entry_id,
        data=data,
        now=today,
    )
    await db.commit()
    return PaymentRead.model_validate(payment)


@router.delete(
    "/entries/{entry_id}/payments/{payment_id}",
    name="contabilita_pagamento_elimina",
    summary="Elimina pagamento",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_payment(
    entry_id: uuid.UUID,
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    await billing_service.delete_payment(db=db, entry_id=entry_id, payment_id=payment_id)
    await db.commit()


# -------------------------------------------------------------------
# Operazioni sulla scheda
# -------------------------------------------------------------------

@router.post(
    "/entries/{entry_id}/close",
    name="contabilita_chiudi",
    summary="Chiusura contabile",
    description="Chiude una scheda saldata. La chiusura è irreversibile.",
    response_model=AccountEntryRead,
    status_code=status.HTTP_200_OK,
)
async def close_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> AccountEntryRead:
    entry = await billing_service.close_entry(db=db, entry_id=entry_id, now=today)
    await db.commit()
    return entry


@router.post(
    "/entries/{entry_id}/reconcile",
    name="contabilita_riconcilia",
    summary="Riconcilia con fattura esterna",
    description="Registra i dati della fattura e segnala lo scostamento dal netto calcolato.",
    response_model=ReconcileResponse,
    status_code=status.HTTP_200_OK,
)
async def reconcile(
    entry_id: uuid.UUID,
    data: ReconcileRequest,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> ReconcileResponse:
    response = await billing_service.reconcile(db=db, entry_id=entry_id, data=data, now=today)
    await db.commit()
    return response


@router.put(
    "/entries/{entry_id}/invoice-number",
    name="contabilita_numero_fattura",
    summary="Imposta numero fattura",
    description="Un numero vuoto riporta la scheda in bozza.",
    response_model=AccountEntryRead,
    status_code=status.HTTP_200_OK,
)
async def set_invoice_number(
    entry_id: uuid.UUID,
    data: InvoiceNumberUpdate,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> AccountEntryRead:
    entry = await billing_service.set_invoice_number(
        db=db,
        entry_id=entry_id,
        invoice_number=data.invoice_number,
        now=today,
    )
    await db.commit()
    return entry


@router.put(
    "/entries/{entry_id}/discount",
    name="contabilita_sconto",
    summary="Imposta sconto",
    response_model=AccountEntryRead,
    status_code=status.HTTP_200_OK,
)
async def set_discount(
    entry_id: uuid.UUID,
    data: DiscountUpdate,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> AccountEntryRead:
    entry = await billing_service.set_discount(db=db, entry_id=entry_id, data=data, now=today)
    await db.commit()
    return entry


@router.put(
    "/entries/{entry_id}/due-date",
    name="contabilita_scadenza",
    summary="Imposta scadenza pagamento",
    response_model=AccountEntryRead,
    status_code=status.HTTP_200_OK,
)
async def set_due_date(
    entry_id: uuid.UUID,
    data: DueDateUpdate,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> AccountEntryRead:
    entry = await billing_service.set_due_date(
        db=db,
        entry_id=entry_id,
        due_date=data.due_date,
        now=today,
    )
    await db.commit()
    return entry


@router.post(
    "/entries/{entry_id}/complete",
    name="contabilita_completa",
    summary="Segna come completata",
    description="Porta la scheda in stato 'completed': esce dai tab attivi.",
    response_model=AccountEntryRead,
    status_code=status.HTTP_200_OK,
)
async def mark_completed(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
) -> AccountEntryRead:
    entry = await billing_service.mark_completed(db=db, entry_id=entry_id, now=today)
    await db.commit()
    return entry
