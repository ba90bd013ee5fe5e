"""
Motore di riconciliazione contabile
Progetto: DealerDesk (Gestionale Concessionaria)

Funzioni pure che, data una scheda veicolo e i suoi pagamenti, calcolano
gli importi canonici (netto, pagato, saldo), lo stato incasso e il tab
contabile di appartenenza.

Regole generali:
- Nessun I/O e nessuna lettura dell'orologio: `now` è sempre passato dal chiamante.
- Un importo non interpretabile non solleva mai eccezioni: vale 0.
- Pagato e saldo non sono mai negativi.
- Le schede possono essere modelli ORM, schemi Pydantic, mock o dict.
"""

import json
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Sequence

from dealerdesk.schemas.billing import (
    BillingFigures,
    Bucket,
    DiscountInfo,
    InvoiceMismatch,
    LedgerGroupBy,
    LedgerLine,
    LegacyNotes,
    PaymentStatus,
)

ZERO = Decimal("0")
CENT = Decimal("0.01")

# Tolleranza per arrotondamenti sugli importi in valuta
BALANCE_EPSILON = Decimal("0.01")

# Stati operativi terminali: la scheda esce dai tab modificabili
TERMINAL_STATUSES = frozenset({
    "completed",
    "complete_and_delivered",
    "delivered",
    "delivered_final",
})

# Chiavi note del vecchio blob JSON nella colonna notes
LEGACY_NOTES_KEYS = frozenset({
    "discount",
    "invoice_number",
    "reconciliation_notes",
    "remarks",
    "notes",
})


# ------------------------------------------------------------
# Conversioni tolleranti
# ------------------------------------------------------------
def _field(record: Any, name: str) -> Any:
    """Legge un campo da dict o oggetto, None se assente."""
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _to_decimal(value: Any) -> Optional[Decimal]:
    """
    Converte un valore in Decimal.

    Returns:
        Decimal finito, oppure None se il valore non è interpretabile
        (stringa non numerica, NaN, infinito, tipo non supportato).
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, int):
            result = Decimal(value)
        elif isinstance(value, float):
            result = Decimal(str(value))
        elif isinstance(value, str):
            result = Decimal(value.strip())
        else:
            return None
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _optional_amount(value: Any) -> Optional[Decimal]:
    """
    Importo opzionale di una scheda.

    None resta None (campo assente); un valore presente ma non valido vale 0.
    """
    if value is None:
        return None
    parsed = _to_decimal(value)
    return parsed if parsed is not None else ZERO


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_date(value: Any) -> Optional[date]:
    """Normalizza date, datetime o stringhe ISO a data di calendario."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


def _to_datetime(value: Any) -> Optional[datetime]:
    """Normalizza a datetime aware (i naive sono considerati UTC)."""
    if isinstance(value, str) and value.strip():
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return None


def sanitize_amount(value: Any) -> Decimal:
    """
    Importo di un pagamento (o di una riga) ai fini delle somme.

    Valori non interpretabili, NaN, infiniti, nulli o negativi valgono 0.
    """
    parsed = _to_decimal(value)
    if parsed is None or parsed <= ZERO:
        return ZERO
    return parsed


def line_items_total(items: Iterable[Any]) -> Decimal:
    """Somma dei prezzi delle lavorazioni richieste."""
    return sum((sanitize_amount(_field(item, "price")) for item in items or ()), ZERO)


def is_terminal_status(status: Optional[str]) -> bool:
    """True per gli stati consegnato/completato e loro varianti."""
    if not status:
        return False
    normalized = status.strip().lower().replace(" ", "_").replace("-", "_")
    return normalized in TERMINAL_STATUSES


def is_past_due(due_date: Any, now: Any) -> bool:
    """True se la scadenza è strettamente precedente alla data di riferimento."""
    due = _to_date(due_date)
    today = _to_date(now)
    if due is None or today is None:
        return False
    return due < today


# ------------------------------------------------------------
# Calcolo importi
# ------------------------------------------------------------
def resolve_net_payable(job: Any) -> Decimal:
    """
    Netto da pagare di una scheda.

    Catena di fallback, vince il primo valore presente:
    1. net_payable esplicito
    2. total_amount - sconto + imposte (se total_amount presente)
    3. final_amount
    4. total_amount (già coperto dal punto 2)
    5. 0

    Lo sconto è limitato a [0, total_amount], le imposte negative valgono 0.
    """
    explicit = _optional_amount(_field(job, "net_payable"))
    if explicit is not None:
        return explicit

    total = _optional_amount(_field(job, "total_amount"))
    if total is not None:
        discount = _optional_amount(_field(job, "discount_amount")) or ZERO
        discount = min(max(discount, ZERO), max(total, ZERO))
        tax = max(_optional_amount(_field(job, "tax_amount")) or ZERO, ZERO)
        return total - discount + tax

    final_amount = _optional_amount(_field(job, "final_amount"))
    if final_amount is not None:
        return final_amount

    return ZERO


def compute_figures(job: Any, payments: Optional[Sequence[Any]]) -> BillingFigures:
    """
    Calcola netto, pagato e saldo di una scheda.

    Args:
        job: Scheda veicolo (modello, schema, mock o dict)
        payments: Pagamenti della scheda (anche vuoto o None)

    Returns:
        BillingFigures con total_paid >= 0 e balance_due >= 0
    """
    net_payable = resolve_net_payable(job)
    paid = sum(
        (sanitize_amount(_field(payment, "amount")) for payment in payments or ()),
        ZERO,
    )
    total_paid = max(ZERO, paid)
    balance_due = max(ZERO, net_payable - total_paid)
    return BillingFigures(
        net_payable=_money(net_payable),
        total_paid=_money(total_paid),
        balance_due=_money(balance_due),
    )


# ------------------------------------------------------------
# Classificazione
# ------------------------------------------------------------
def classify_payment_status(
    net_payable: Any,
    total_paid: Any,
    balance_due: Any,
    due_date: Any,
    now: Any,
) -> PaymentStatus:
    """
    Stato incasso, valutato in ordine di precedenza:

    1. nessun pagamento            → draft
    2. saldo <= 0.01               → paid
    3. scaduta con saldo > 0.01    → overdue
    4. altrimenti                  → partially_paid

    Il netto non entra nella decisione: conta solo il saldo ricevuto.
    """
    paid = max(_to_decimal(total_paid) or ZERO, ZERO)
    if paid == ZERO:
        return PaymentStatus.DRAFT

    balance = max(_to_decimal(balance_due) or ZERO, ZERO)
    if balance <= BALANCE_EPSILON:
        return PaymentStatus.PAID

    if is_past_due(due_date, now):
        return PaymentStatus.OVERDUE

    return PaymentStatus.PARTIALLY_PAID


def classify_bucket(job: Any, figures: BillingFigures, now: Any) -> Bucket:
    """
    Tab contabile della scheda. Ogni scheda cade in esattamente un tab.

    Gli stati operativi sconosciuti sono trattati come non terminali.
    """
    if is_terminal_status(_field(job, "status")):
        return Bucket.SETTLED

    has_payments = figures.total_paid > ZERO
    has_balance = figures.balance_due > BALANCE_EPSILON

    if has_payments and has_balance and is_past_due(_field(job, "due_date"), now):
        return Bucket.OVERDUE
    if has_payments and has_balance:
        return Bucket.PARTIAL_PAYMENT
    return Bucket.BILLING_ENTRIES


def assign_sequential_ids(jobs: Iterable[Any], prefix: str = "Z") -> dict[Any, str]:
    """
    Assegna gli ID visualizzati Z01, Z02, ... in ordine di creazione.

    Gli ID sono posizionali: sono stabili solo se ricalcolati sullo stesso
    insieme di schede. Una scheda esclusa da un filtro non consuma un numero,
    quindi la stessa scheda può ricevere ID diversi in insiemi diversi.

    Returns:
        dict {id scheda: ID visualizzato}
    """
    def sort_key(job: Any) -> tuple:
        # A parità di data decide l'ID scheda: elenco e dettaglio concordano
        created = _to_datetime(_field(job, "created_at"))
        tie_breaker = str(_field(job, "id"))
        if created is None:
            return (1, tie_breaker)
        return (0, created, tie_breaker)

    ordered = sorted(jobs, key=sort_key)
    return {
        _field(job, "id"): f"{prefix}{index + 1:02d}"
        for index, job in enumerate(ordered)
    }


# ------------------------------------------------------------
# Sconti e riconciliazione
# ------------------------------------------------------------
def apply_discount(total_amount: Any, discount_amount: Any) -> Decimal:
    """Importo finale dopo lo sconto, mai negativo."""
    total = _to_decimal(total_amount) or ZERO
    discount = max(_to_decimal(discount_amount) or ZERO, ZERO)
    return max(ZERO, total - discount)


def derive_discount_percentage(
    total_amount: Any,
    discount_amount: Any,
    explicit: Any = None,
) -> Decimal:
    """Percentuale sconto: quella esplicita, altrimenti sconto / totale * 100."""
    if explicit is not None:
        return _to_decimal(explicit) or ZERO
    total = _to_decimal(total_amount) or ZERO
    if total <= ZERO:
        return ZERO
    discount = max(_to_decimal(discount_amount) or ZERO, ZERO)
    return _money(discount / total * Decimal("100"))


def check_invoice_mismatch(net_payable: Any, invoice_amount: Any) -> Optional[InvoiceMismatch]:
    """
    Confronta l'importo della fattura esterna con il netto calcolato.

    Returns:
        InvoiceMismatch se la differenza supera la tolleranza, altrimenti None
    """
    invoice = _to_decimal(invoice_amount)
    if invoice is None:
        return None
    system = _to_decimal(net_payable) or ZERO
    difference = invoice - system
    if abs(difference) <= BALANCE_EPSILON:
        return None
    return InvoiceMismatch(
        system_amount=_money(system),
        invoice_amount=_money(invoice),
        difference=_money(difference),
    )


# ------------------------------------------------------------
# Mastrino
# ------------------------------------------------------------
def _bill_description(job: Any, group_by: LedgerGroupBy) -> str:
    registration = _field(job, "registration_number") or "N/D"
    if group_by == LedgerGroupBy.CUSTOMER:
        return f"Fattura: {_field(job, 'customer_name') or 'N/D'} - {registration}"
    vehicle = " ".join(
        part for part in (_field(job, "make"), _field(job, "model")) if part
    )
    return f"Fattura: {vehicle or 'N/D'} ({registration})"


def _payment_description(payment: Any) -> str:
    method = _field(payment, "payment_method")
    method = getattr(method, "value", method) or "N/D"
    reference = _field(payment, "reference_number")
    if reference:
        return f"Pagamento: {method} ({reference})"
    return f"Pagamento: {method}"


def build_ledger(
    entries: Iterable[tuple[Any, Sequence[Any]]],
    group_by: LedgerGroupBy = LedgerGroupBy.VEHICLE,
) -> list[LedgerLine]:
    """
    Costruisce il mastrino con saldo progressivo.

    Ogni scheda produce una riga di addebito (netto calcolato, alla data di
    ingresso) e una riga di accredito per ogni pagamento valido. Le righe
    sono ordinate per data, addebiti prima degli accrediti a parità di data.

    Args:
        entries: Coppie (scheda, pagamenti)
        group_by: Descrizione per veicolo o per cliente
    """
    rows: list[tuple[date, int, int, dict[str, Any]]] = []
    sequence = 0

    for job, payments in entries:
        figures = compute_figures(job, payments)
        bill_date = _to_date(_field(job, "created_at")) or date.min
        rows.append((bill_date, 0, sequence, {
            "entry_date": bill_date,
            "description": _bill_description(job, group_by),
            "debit": figures.net_payable,
            "credit": ZERO,
            "entry_id": _field(job, "id"),
            "line_type": "bill",
        }))
        sequence += 1

        for payment in payments or ():
            amount = sanitize_amount(_field(payment, "amount"))
            if amount == ZERO:
                continue
            payment_date = _to_date(_field(payment, "payment_date")) or bill_date
            rows.append((payment_date, 1, sequence, {
                "entry_date": payment_date,
                "description": _payment_description(payment),
                "debit": ZERO,
                "credit": _money(amount),
                "entry_id": _field(job, "id"),
                "line_type": "payment",
            }))
            sequence += 1

    rows.sort(key=lambda row: row[:3])

    ledger = []
    running = ZERO
    for _, _, _, data in rows:
        running = running + data["debit"] - data["credit"]
        ledger.append(LedgerLine(balance=_money(running), **data))
    return ledger


# ------------------------------------------------------------
# Note legacy
# ------------------------------------------------------------
def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_legacy_notes(notes: Optional[str]) -> LegacyNotes:
    """
    Interpreta la vecchia colonna notes.

    Le schede storiche salvavano sconto, numero fattura e note di
    riconciliazione in un blob JSON; le altre contengono testo libero.
    Non solleva mai eccezioni: ciò che non è interpretabile diventa remarks.
    """
    text = _clean_text(notes)
    if text is None:
        return LegacyNotes()

    try:
        data = json.loads(text)
    except ValueError:
        return LegacyNotes(remarks=text)

    if not isinstance(data, dict):
        return LegacyNotes(remarks=text)

    discount = None
    raw_discount = data.get("discount")
    if isinstance(raw_discount, dict):
        percentage = _to_decimal(raw_discount.get("discount_percentage"))
        discount = DiscountInfo(
            discount_amount=sanitize_amount(raw_discount.get("discount_amount")),
            discount_percentage=percentage,
            discount_offered_by=_clean_text(raw_discount.get("discount_offered_by")),
            discount_reason=_clean_text(raw_discount.get("discount_reason")),
        )

    return LegacyNotes(
        discount=discount,
        invoice_number=_clean_text(data.get("invoice_number")),
        reconciliation_notes=_clean_text(data.get("reconciliation_notes")),
        remarks=_clean_text(data.get("remarks") or data.get("notes")),
        unknown_fields={k: v for k, v in data.items() if k not in LEGACY_NOTES_KEYS},
    )
