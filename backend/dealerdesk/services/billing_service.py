"""
Service Layer per la Contabilità
Progetto: DealerDesk (Gestionale Concessionaria)

Definisce la logica di business del modulo contabile: tab delle schede,
registrazione e annullamento pagamenti, chiusura, riconciliazione con la
fattura esterna, sconti, scadenze, statistiche e mastrino.

Gli importi (netto, pagato, saldo) non sono mai letti da colonne
precalcolate: vengono ricalcolati dal motore ad ogni operazione.
"""

import logging
import math
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.config import settings
from dealerdesk.core.exceptions import (
    BusinessValidationError,
    ConflictError,
    DuplicateError,
    NotFoundError,
)
from dealerdesk.models import Payment, VehicleInward
from dealerdesk.schemas.billing import (
    AccountEntryList,
    AccountEntryRead,
    BillingFigures,
    BillingStats,
    BillingStatus,
    Bucket,
    DiscountUpdate,
    InvoiceMismatch,
    LedgerGroupBy,
    LedgerLine,
    PaymentCreate,
    PaymentRead,
    ReconcileRequest,
    ReconcileResponse,
)
from dealerdesk.schemas.vehicle_inward import VehicleStatus
from dealerdesk.services.billing_engine import (
    BALANCE_EPSILON,
    apply_discount,
    assign_sequential_ids,
    build_ledger,
    check_invoice_mismatch,
    classify_bucket,
    classify_payment_status,
    compute_figures,
    derive_discount_percentage,
    is_terminal_status,
    line_items_total,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)

ZERO = Decimal("0")

ACTIVE_SCOPE = "active"
SETTLED_SCOPE = "settled"


def _format_amount(amount: Decimal) -> str:
    """Importo con simbolo di valuta per i messaggi all'utente."""
    return f"{settings.currency_symbol}{amount.quantize(Decimal('0.01'))}"


def _matches_search(entry: Any, search: Optional[str]) -> bool:
    """Ricerca case-insensitive su cliente, telefono, targa, modello e fattura."""
    if not search or not search.strip():
        return True
    term = search.strip().lower()
    haystack = (
        entry.customer_name,
        entry.customer_phone,
        entry.registration_number,
        entry.model,
        entry.invoice_number,
    )
    return any(term in value.lower() for value in haystack if value)


class BillingService:
    """
    Service per il modulo contabile delle schede veicolo.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.

    Implementa:
    - Tab contabili (da fatturare, pagamento parziale, scadute, saldate)
    - Pagamenti con controllo sul saldo e chiusura automatica
    - Chiusura contabile e riconciliazione con la fattura esterna
    - Statistiche e mastrino con saldo progressivo
    """

    # ------------------------------------------------------------
    # Caricamento schede
    # ------------------------------------------------------------
    async def _get_entry(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        lock: bool = False,
    ) -> VehicleInward:
        """
        Recupera una scheda con i suoi pagamenti.

        Con lock=True la riga viene bloccata (SELECT ... FOR UPDATE) fino
        alla fine della transazione, così i controlli sul saldo non sono
        invalidati da pagamenti concorrenti.

        Raises:
            NotFoundError: Se la scheda non esiste
        """
        stmt = select(VehicleInward).where(VehicleInward.id == entry_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        entry = result.scalar_one_or_none()

        if entry is None:
            logger.warning(f"Scheda contabile non trovata: {entry_id}")
            raise NotFoundError(f"Scheda {entry_id} non trovata")

        return entry

    async def _get_all_entries(self, db: AsyncSession) -> list[VehicleInward]:
        """Tutte le schede in ordine di creazione, pagamenti inclusi."""
        result = await db.execute(
            select(VehicleInward).order_by(VehicleInward.created_at.asc(), VehicleInward.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    def _ensure_open(entry: VehicleInward) -> None:
        if entry.billing_status == BillingStatus.CLOSED.value:
            raise ConflictError(
                "La scheda è chiusa contabilmente",
                error_code="BILLING_CLOSED",
            )

    @staticmethod
    def _to_read(
        entry: VehicleInward,
        figures: BillingFigures,
        now: date,
        display_id: Optional[str] = None,
    ) -> AccountEntryRead:
        """Compone la vista contabile di una scheda."""
        total_amount = line_items_total(entry.line_items or [])
        discount_amount = entry.discount_amount or ZERO
        payments = sorted(
            entry.payments or [],
            key=lambda p: p.payment_date,
            reverse=True,
        )
        return AccountEntryRead(
            id=entry.id,
            display_id=display_id,
            customer_name=entry.customer_name,
            customer_phone=entry.customer_phone,
            registration_number=entry.registration_number,
            make=entry.make,
            model=entry.model,
            status=entry.status,
            billing_status=entry.billing_status,
            total_amount=total_amount,
            discount_amount=discount_amount,
            discount_percentage=derive_discount_percentage(
                total_amount, discount_amount, entry.discount_percentage
            ),
            discount_offered_by=entry.discount_offered_by,
            discount_reason=entry.discount_reason,
            tax_amount=entry.tax_amount or ZERO,
            final_amount=apply_discount(total_amount, discount_amount),
            invoice_number=entry.invoice_number,
            invoice_date=entry.invoice_date,
            invoice_amount=entry.invoice_amount,
            due_date=entry.due_date,
            billing_closed_at=entry.billing_closed_at,
            created_at=entry.created_at,
            figures=figures,
            payment_status=classify_payment_status(
                figures.net_payable,
                figures.total_paid,
                figures.balance_due,
                entry.due_date,
                now,
            ),
            bucket=classify_bucket(entry, figures, now),
            payments=[PaymentRead.model_validate(p) for p in payments],
        )

    # ------------------------------------------------------------
    # Letture
    # ------------------------------------------------------------
    async def list_entries(
        self,
        db: AsyncSession,
        bucket: Bucket,
        now: date,
        search: Optional[str] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> AccountEntryList:
        """
        Elenco paginato delle schede di un tab contabile, più recenti prima.

        Gli ID progressivi sono assegnati sull'insieme delle schede attive
        (stato non terminale) per i tab attivi e sull'insieme delle schede
        saldate per il tab 'settled'. La ricerca filtra le righe mostrate
        ma non cambia la numerazione.

        Args:
            db: Sessione database
            bucket: Tab richiesto
            now: Data di riferimento per le scadenze
            search: Ricerca testuale (opzionale)
            page: Numero pagina (default 1)
            per_page: Elementi per pagina (default da configurazione)
        """
        per_page = min(per_page or settings.default_page_size, settings.max_page_size)
        entries = await self._get_all_entries(db)

        scope = SETTLED_SCOPE if bucket == Bucket.SETTLED else ACTIVE_SCOPE
        snapshot = [
            entry for entry in entries
            if is_terminal_status(entry.status) == (scope == SETTLED_SCOPE)
        ]
        display_ids = assign_sequential_ids(snapshot, prefix=settings.display_id_prefix)

        rows = []
        for entry in snapshot:
            figures = compute_figures(entry, entry.payments)
            if classify_bucket(entry, figures, now) != bucket:
                continue
            if not _matches_search(entry, search):
                continue
            rows.append(self._to_read(entry, figures, now, display_ids.get(entry.id)))

        rows.reverse()
        total = len(rows)
        offset = (page - 1) * per_page

        logger.debug(f"Tab {bucket.value}: {total} schede")

        return AccountEntryList(
            items=rows[offset:offset + per_page],
            total=total,
            page=page,
            per_page=per_page,
            total_pages=math.ceil(total / per_page) if total else 0,
            display_id_scope=scope,
        )

    async def get_entry(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        now: date,
    ) -> AccountEntryRead:
        """
        Vista contabile di una singola scheda.

        L'ID progressivo è calcolato sullo stesso insieme usato dall'elenco
        del tab a cui la scheda appartiene.
        """
        entry = await self._get_entry(db, entry_id)
        figures = compute_figures(entry, entry.payments)

        terminal = is_terminal_status(entry.status)
        result = await db.execute(
            select(VehicleInward.id, VehicleInward.status, VehicleInward.created_at)
            .order_by(VehicleInward.created_at.asc(), VehicleInward.id.asc())
        )
        snapshot = [row for row in result.all() if is_terminal_status(row.status) == terminal]
        display_ids = assign_sequential_ids(snapshot, prefix=settings.display_id_prefix)

        return self._to_read(entry, figures, now, display_ids.get(entry.id))

    async def get_payments(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
    ) -> list[Payment]:
        """Pagamenti di una scheda, più recenti prima."""
        await self._get_entry(db, entry_id)
        result = await db.execute(
            select(Payment)
            .where(Payment.vehicle_inward_id == entry_id)
            .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------
    # Pagamenti
    # ------------------------------------------------------------
    async def add_payment(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        data: PaymentCreate,
        now: date,
    ) -> Payment:
        """
        Registra un pagamento su una scheda.

        Steps:
        1. Blocca la scheda e ricarica i pagamenti esistenti
        2. Verifica che la scheda non sia chiusa
        3. Verifica che l'importo non superi il saldo corrente
        4. Inserisce il pagamento
        5. Se la scheda è fatturata e risulta saldata, la chiude

        Raises:
            NotFoundError: Se la scheda non esiste
            ConflictError: Se la scheda è chiusa
            BusinessValidationError: Se l'importo supera il saldo
        """
        entry = await self._get_entry(db, entry_id, lock=True)
        self._ensure_open(entry)

        figures = compute_figures(entry, entry.payments)
        if data.amount > figures.balance_due:
            raise BusinessValidationError(
                f"L'importo supera il saldo da incassare ({_format_amount(figures.balance_due)})",
                error_code="PAYMENT_EXCEEDS_BALANCE",
                extra={"balance_due": str(figures.balance_due)},
            )

        payment = Payment(
            vehicle_inward_id=entry.id,
            amount=data.amount,
            payment_method=data.payment_method.value,
            payment_date=data.payment_date,
            reference_number=data.reference_number,
            notes=data.notes,
        )
        db.add(payment)
        entry.payments.append(payment)

        new_total_paid = figures.total_paid + data.amount
        if (
            entry.billing_status == BillingStatus.INVOICED.value
            and new_total_paid >= figures.net_payable
        ):
            entry.billing_status = BillingStatus.CLOSED.value
            entry.billing_closed_at = datetime.now(timezone.utc)
            logger.info(f"Scheda {entry.id} saldata: chiusura automatica")

        await db.flush()
        await db.refresh(payment)

        logger.info(
            f"Registrato pagamento {_format_amount(data.amount)} ({payment.payment_method}) "
            f"su scheda {entry.id}"
        )
        return payment

    async def delete_payment(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        payment_id: uuid.UUID,
    ) -> None:
        """
        Elimina un pagamento registrato per errore.

        L'eliminazione è definitiva e viene registrata nel log con importo
        e scheda.

        Raises:
            NotFoundError: Se la scheda o il pagamento non esistono
            ConflictError: Se la scheda è chiusa
        """
        entry = await self._get_entry(db, entry_id, lock=True)
        self._ensure_open(entry)

        result = await db.execute(
            select(Payment).where(
                Payment.id == payment_id,
                Payment.vehicle_inward_id == entry_id,
            )
        )
        payment = result.scalar_one_or_none()

        if payment is None:
            raise NotFoundError(f"Pagamento {payment_id} non trovato sulla scheda {entry_id}")

        logger.warning(
            f"Eliminato pagamento {payment.id} di {_format_amount(payment.amount)} "
            f"({payment.payment_method}, {payment.payment_date}) dalla scheda {entry.id}"
        )
        await db.delete(payment)
        await db.flush()

    # ------------------------------------------------------------
    # Stato contabile
    # ------------------------------------------------------------
    async def close_entry(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        now: date,
    ) -> AccountEntryRead:
        """
        Chiude contabilmente una scheda saldata. La chiusura è irreversibile.

        Raises:
            ConflictError: Se la scheda è già chiusa
            BusinessValidationError: Se resta un saldo superiore alla tolleranza
        """
        entry = await self._get_entry(db, entry_id, lock=True)
        if entry.billing_status == BillingStatus.CLOSED.value:
            raise ConflictError("La scheda è già chiusa", error_code="BILLING_CLOSED")

        figures = compute_figures(entry, entry.payments)
        if figures.balance_due > BALANCE_EPSILON:
            raise BusinessValidationError(
                f"Impossibile chiudere la scheda: saldo residuo {_format_amount(figures.balance_due)}",
                error_code="OUTSTANDING_BALANCE",
                extra={"balance_due": str(figures.balance_due)},
            )

        entry.billing_status = BillingStatus.CLOSED.value
        entry.billing_closed_at = datetime.now(timezone.utc)
        await db.flush()

        logger.info(f"Chiusa scheda contabile {entry.id}")
        return self._to_read(entry, figures, now)

    async def _ensure_invoice_number_free(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        invoice_number: str,
    ) -> None:
        result = await db.execute(
            select(VehicleInward.id).where(
                VehicleInward.invoice_number == invoice_number,
                VehicleInward.id != entry_id,
            )
        )
        if result.scalar_one_or_none() is not None:
            raise DuplicateError(
                f"Numero fattura {invoice_number} già assegnato a un'altra scheda",
                error_code="DUPLICATE_INVOICE_NUMBER",
            )

    async def _flush_invoice(self, db: AsyncSession, invoice_number: str) -> None:
        """Flush che traduce la violazione del vincolo unique in DuplicateError."""
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Numero fattura duplicato: {e.orig}")
            raise DuplicateError(
                f"Numero fattura {invoice_number} già assegnato a un'altra scheda",
                error_code="DUPLICATE_INVOICE_NUMBER",
            )

    @staticmethod
    def _default_due_date(entry: VehicleInward, base_date: date) -> None:
        terms = settings.default_payment_terms_days
        if entry.due_date is None and terms > 0:
            entry.due_date = base_date + timedelta(days=terms)

    async def reconcile(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        data: ReconcileRequest,
        now: date,
    ) -> ReconcileResponse:
        """
        Registra la fattura esterna e la confronta con il netto calcolato.

        Lo scostamento non blocca l'operazione: viene restituito al
        chiamante e registrato nel log.

        Raises:
            ConflictError: Se la scheda è chiusa
            DuplicateError: Se il numero fattura è già in uso
        """
        entry = await self._get_entry(db, entry_id, lock=True)
        self._ensure_open(entry)
        await self._ensure_invoice_number_free(db, entry.id, data.invoice_number)

        entry.invoice_number = data.invoice_number
        entry.invoice_date = data.invoice_date or now
        entry.invoice_amount = data.invoice_amount
        entry.reconciliation_notes = data.reconciliation_notes
        entry.billing_status = BillingStatus.INVOICED.value
        self._default_due_date(entry, entry.invoice_date)

        await self._flush_invoice(db, data.invoice_number)

        figures = compute_figures(entry, entry.payments)
        mismatch: Optional[InvoiceMismatch] = check_invoice_mismatch(
            figures.net_payable, data.invoice_amount
        )
        if mismatch is not None:
            logger.warning(
                f"Scheda {entry.id}: fattura {data.invoice_number} di "
                f"{_format_amount(mismatch.invoice_amount)} diversa dal netto "
                f"{_format_amount(mismatch.system_amount)}"
            )

        logger.info(f"Riconciliata scheda {entry.id} con fattura {data.invoice_number}")
        return ReconcileResponse(success=True, mismatch=mismatch)

    async def set_invoice_number(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        invoice_number: Optional[str],
        now: date,
    ) -> AccountEntryRead:
        """
        Assegna o rimuove il numero fattura.

        Un numero vuoto riporta la scheda in bozza; un numero valorizzato
        la rende fatturata.

        Raises:
            ConflictError: Se la scheda è chiusa
            DuplicateError: Se il numero è già assegnato a un'altra scheda
        """
        entry = await self._get_entry(db, entry_id, lock=True)
        self._ensure_open(entry)

        number = invoice_number.strip() if invoice_number else None
        if number:
            await self._ensure_invoice_number_free(db, entry.id, number)
            entry.invoice_number = number
            entry.billing_status = BillingStatus.INVOICED.value
            self._default_due_date(entry, now)
            await self._flush_invoice(db, number)
            logger.info(f"Scheda {entry.id}: assegnato numero fattura {number}")
        else:
            entry.invoice_number = None
            entry.billing_status = BillingStatus.DRAFT.value
            await db.flush()
            logger.info(f"Scheda {entry.id}: numero fattura rimosso, ritorno in bozza")

        return self._to_read(entry, compute_figures(entry, entry.payments), now)

    async def set_discount(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        data: DiscountUpdate,
        now: date,
    ) -> AccountEntryRead:
        """
        Imposta lo sconto della scheda.

        La percentuale, se non indicata, è derivata da sconto e totale.
        L'importo finale viene riallineato a totale - sconto.

        Raises:
            ConflictError: Se la scheda è chiusa
            BusinessValidationError: Se lo sconto supera il totale
        """
        entry = await self._get_entry(db, entry_id, lock=True)
        self._ensure_open(entry)

        total_amount = line_items_total(entry.line_items or [])
        if data.discount_amount > total_amount:
            raise BusinessValidationError(
                f"Lo sconto ({_format_amount(data.discount_amount)}) supera il totale "
                f"della scheda ({_format_amount(total_amount)})",
                error_code="DISCOUNT_EXCEEDS_TOTAL",
            )

        entry.discount_amount = data.discount_amount
        entry.discount_percentage = derive_discount_percentage(
            total_amount, data.discount_amount, data.discount_percentage
        )
        entry.discount_offered_by = data.discount_offered_by
        entry.discount_reason = data.discount_reason
        entry.final_amount = apply_discount(total_amount, data.discount_amount)
        # Il netto precalcolato non riflette più lo sconto
        entry.net_payable = None
        await db.flush()

        logger.info(
            f"Scheda {entry.id}: sconto {_format_amount(data.discount_amount)} "
            f"({entry.discount_percentage}%)"
        )
        return self._to_read(entry, compute_figures(entry, entry.payments), now)

    async def set_due_date(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        due_date: Optional[date],
        now: date,
    ) -> AccountEntryRead:
        """Imposta o rimuove la scadenza di pagamento."""
        entry = await self._get_entry(db, entry_id, lock=True)
        self._ensure_open(entry)

        entry.due_date = due_date
        await db.flush()

        logger.info(f"Scheda {entry.id}: scadenza {due_date or 'rimossa'}")
        return self._to_read(entry, compute_figures(entry, entry.payments), now)

    async def mark_completed(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        now: date,
    ) -> AccountEntryRead:
        """Segna la scheda come completata: esce dai tab attivi e passa in 'settled'."""
        entry = await self._get_entry(db, entry_id, lock=True)

        entry.status = VehicleStatus.COMPLETED.value
        if entry.completed_at is None:
            entry.completed_at = datetime.now(timezone.utc)
        await db.flush()

        logger.info(f"Scheda {entry.id} segnata come completata")
        return self._to_read(entry, compute_figures(entry, entry.payments), now)

    # ------------------------------------------------------------
    # Report
    # ------------------------------------------------------------
    async def get_stats(
        self,
        db: AsyncSession,
        now: date,
    ) -> BillingStats:
        """
        Statistiche contabili sulle schede attive.

        Le schede con netto <= 0 non sono conteggiate. I conteggi di
        pagamenti parziali e scadute usano la stessa classificazione dei tab.
        Il tempo medio di pagamento considera le schede chiuse con almeno
        un pagamento: giorni tra l'ingresso e il primo pagamento.
        """
        entries = await self._get_all_entries(db)

        total_entries = 0
        total_revenue = ZERO
        total_receivable = ZERO
        outstanding_amount = ZERO
        partial_payments_count = 0
        overdue_entries = 0
        payment_days: list[int] = []

        for entry in entries:
            if is_terminal_status(entry.status):
                continue
            figures = compute_figures(entry, entry.payments)
            if figures.net_payable <= ZERO:
                continue

            total_entries += 1
            total_revenue += figures.total_paid
            total_receivable += figures.balance_due

            bucket = classify_bucket(entry, figures, now)
            if bucket == Bucket.PARTIAL_PAYMENT:
                partial_payments_count += 1
            elif bucket == Bucket.OVERDUE:
                overdue_entries += 1
                outstanding_amount += figures.balance_due

            if entry.billing_status == BillingStatus.CLOSED.value and entry.payments:
                first_payment = min(p.payment_date for p in entry.payments)
                created = entry.created_at.date() if entry.created_at else first_payment
                payment_days.append(max((first_payment - created).days, 0))

        average_payment_time = ZERO
        if payment_days:
            average_payment_time = (
                Decimal(sum(payment_days)) / Decimal(len(payment_days))
            ).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)

        return BillingStats(
            total_entries=total_entries,
            total_revenue=total_revenue,
            total_receivable=total_receivable,
            outstanding_amount=outstanding_amount,
            partial_payments_count=partial_payments_count,
            overdue_entries=overdue_entries,
            average_payment_time=average_payment_time,
        )

    async def get_ledger(
        self,
        db: AsyncSession,
        group_by: LedgerGroupBy = LedgerGroupBy.VEHICLE,
    ) -> list[LedgerLine]:
        """Mastrino di tutte le schede con saldo progressivo."""
        entries = await self._get_all_entries(db)
        return build_ledger(
            ((entry, entry.payments) for entry in entries),
            group_by=group_by,
        )


# Istanza globale del service
billing_service = BillingService()
