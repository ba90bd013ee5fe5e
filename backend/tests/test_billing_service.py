"""
Unit tests per BillingService.

Il database è un AsyncMock: ogni test imposta in ordine i risultati
di db.execute attesi dal metodo sotto test.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from dealerdesk.core.config import Settings
from dealerdesk.core.exceptions import (
    BusinessValidationError,
    ConflictError,
    DuplicateError,
    NotFoundError,
)
from dealerdesk.schemas.billing import (
    BillingStatus,
    Bucket,
    DiscountUpdate,
    LedgerGroupBy,
    PaymentCreate,
    PaymentMethod,
    PaymentStatus,
    ReconcileRequest,
)
from dealerdesk.services import billing_service as billing_service_module
from dealerdesk.services.billing_service import BillingService

from conftest import (
    TODAY,
    MockPayment,
    MockVehicleInward,
    make_entries,
    rows_result,
    scalar_result,
    scalars_result,
)


@pytest.fixture
def service():
    return BillingService()


def _payment_data(amount, method=PaymentMethod.UPI):
    return PaymentCreate(
        amount=Decimal(amount),
        payment_method=method,
        payment_date=date.today(),
        reference_number="UTR123",
    )


# ============================================================
# Pagamenti
# ============================================================


class TestAddPayment:
    """Test registrazione pagamenti."""

    @pytest.mark.asyncio
    async def test_registra_pagamento(self, service, mock_db, entry):
        """Test pagamento valido su scheda in bozza."""
        mock_db.execute.return_value = scalar_result(entry)

        payment = await service.add_payment(mock_db, entry.id, _payment_data("4000"), TODAY)

        assert payment.amount == Decimal("4000")
        assert payment.payment_method == "upi"
        assert payment.vehicle_inward_id == entry.id
        mock_db.add.assert_called_once_with(payment)
        mock_db.flush.assert_awaited()
        assert entry.billing_status == "draft"

    @pytest.mark.asyncio
    async def test_scheda_non_trovata(self, service, mock_db):
        """Test scheda inesistente: NotFoundError."""
        mock_db.execute.return_value = scalar_result(None)

        with pytest.raises(NotFoundError):
            await service.add_payment(mock_db, uuid.uuid4(), _payment_data("100"), TODAY)

    @pytest.mark.asyncio
    async def test_importo_oltre_il_saldo(self, service, mock_db, entry_partially_paid):
        """Test importo superiore al saldo (6000) rifiutato con saldo nel messaggio."""
        mock_db.execute.return_value = scalar_result(entry_partially_paid)

        with pytest.raises(BusinessValidationError) as exc_info:
            await service.add_payment(mock_db, entry_partially_paid.id, _payment_data("7000"), TODAY)

        assert "6000.00" in exc_info.value.detail
        assert exc_info.value.extra == {"balance_due": "6000.00"}
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_importo_pari_al_saldo_ammesso(self, service, mock_db, entry_partially_paid):
        """Test importo esattamente uguale al saldo."""
        mock_db.execute.return_value = scalar_result(entry_partially_paid)

        await service.add_payment(mock_db, entry_partially_paid.id, _payment_data("6000"), TODAY)

        mock_db.add.assert_called_once()

    @pytest.mark.asyncio
    async def test_scheda_chiusa(self, service, mock_db, entry_closed):
        """Test pagamento su scheda chiusa: ConflictError."""
        mock_db.execute.return_value = scalar_result(entry_closed)

        with pytest.raises(ConflictError):
            await service.add_payment(mock_db, entry_closed.id, _payment_data("1"), TODAY)

    @pytest.mark.asyncio
    async def test_chiusura_automatica_se_fatturata_e_saldata(self, service, mock_db, entry_partially_paid):
        """Test scheda fatturata saldata dal pagamento: chiusa automaticamente."""
        mock_db.execute.return_value = scalar_result(entry_partially_paid)

        await service.add_payment(mock_db, entry_partially_paid.id, _payment_data("6000"), TODAY)

        assert entry_partially_paid.billing_status == "closed"
        assert entry_partially_paid.billing_closed_at is not None

    @pytest.mark.asyncio
    async def test_nessuna_chiusura_se_in_bozza(self, service, mock_db, entry):
        """Test scheda in bozza saldata: resta aperta."""
        mock_db.execute.return_value = scalar_result(entry)

        await service.add_payment(mock_db, entry.id, _payment_data("10000"), TODAY)

        assert entry.billing_status == "draft"
        assert entry.billing_closed_at is None

    @pytest.mark.asyncio
    async def test_pagamenti_non_validi_ignorati_nel_saldo(self, service, mock_db):
        """Test pagamenti storici non validi non riducono il saldo."""
        entry = MockVehicleInward()
        entry.payments = [MockPayment(amount="abc")]
        mock_db.execute.return_value = scalar_result(entry)

        await service.add_payment(mock_db, entry.id, _payment_data("10000"), TODAY)

        mock_db.add.assert_called_once()


class TestDeletePayment:
    """Test eliminazione pagamenti."""

    @pytest.mark.asyncio
    async def test_elimina_pagamento(self, service, mock_db, entry_partially_paid):
        """Test eliminazione di un pagamento della scheda."""
        payment = entry_partially_paid.payments[0]
        mock_db.execute.side_effect = [
            scalar_result(entry_partially_paid),
            scalar_result(payment),
        ]

        await service.delete_payment(mock_db, entry_partially_paid.id, payment.id)

        mock_db.delete.assert_awaited_once_with(payment)
        mock_db.flush.assert_awaited()

    @pytest.mark.asyncio
    async def test_pagamento_di_altra_scheda(self, service, mock_db, entry_partially_paid):
        """Test pagamento non appartenente alla scheda: NotFoundError."""
        mock_db.execute.side_effect = [
            scalar_result(entry_partially_paid),
            scalar_result(None),
        ]

        with pytest.raises(NotFoundError):
            await service.delete_payment(mock_db, entry_partially_paid.id, uuid.uuid4())

        mock_db.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scheda_chiusa(self, service, mock_db, entry_closed):
        """Test eliminazione su scheda chiusa: ConflictError."""
        mock_db.execute.return_value = scalar_result(entry_closed)

        with pytest.raises(ConflictError):
            await service.delete_payment(mock_db, entry_closed.id, entry_closed.payments[0].id)


# ============================================================
# Chiusura e riconciliazione
# ============================================================


class TestCloseEntry:
    """Test chiusura contabile."""

    @pytest.mark.asyncio
    async def test_chiusura_con_saldo_residuo(self, service, mock_db, entry_partially_paid):
        """Test saldo residuo: chiusura rifiutata."""
        mock_db.execute.return_value = scalar_result(entry_partially_paid)

        with pytest.raises(BusinessValidationError):
            await service.close_entry(mock_db, entry_partially_paid.id, TODAY)

        assert entry_partially_paid.billing_status == "invoiced"

    @pytest.mark.asyncio
    async def test_chiusura_entro_tolleranza(self, service, mock_db):
        """Test saldo di un centesimo: chiusura ammessa."""
        entry = MockVehicleInward()
        entry.payments = [MockPayment(amount=Decimal("9999.99"))]
        mock_db.execute.return_value = scalar_result(entry)

        result = await service.close_entry(mock_db, entry.id, TODAY)

        assert entry.billing_status == "closed"
        assert entry.billing_closed_at is not None
        assert result.billing_status == BillingStatus.CLOSED

    @pytest.mark.asyncio
    async def test_gia_chiusa(self, service, mock_db, entry_closed):
        """Test scheda già chiusa: ConflictError."""
        mock_db.execute.return_value = scalar_result(entry_closed)

        with pytest.raises(ConflictError):
            await service.close_entry(mock_db, entry_closed.id, TODAY)


class TestReconcile:
    """Test riconciliazione con fattura esterna."""

    @pytest.mark.asyncio
    async def test_riconciliazione_senza_scostamento(self, service, mock_db, entry):
        """Test importo fattura uguale al netto: nessuno scostamento."""
        mock_db.execute.side_effect = [scalar_result(entry), scalar_result(None)]
        data = ReconcileRequest(invoice_number=" INV-100 ", invoice_amount=Decimal("10000"))

        response = await service.reconcile(mock_db, entry.id, data, TODAY)

        assert response.success is True
        assert response.mismatch is None
        assert entry.invoice_number == "INV-100"
        assert entry.invoice_date == TODAY
        assert entry.billing_status == "invoiced"

    @pytest.mark.asyncio
    async def test_riconciliazione_con_scostamento(self, service, mock_db):
        """Test scostamento calcolato sul netto (totale - sconto + imposte)."""
        entry = MockVehicleInward(discount_amount=Decimal("1500"))
        mock_db.execute.side_effect = [scalar_result(entry), scalar_result(None)]
        data = ReconcileRequest(
            invoice_number="INV-101",
            invoice_date=date(2024, 6, 10),
            invoice_amount=Decimal("9000"),
            reconciliation_notes="Sconto non riportato in fattura",
        )

        response = await service.reconcile(mock_db, entry.id, data, TODAY)

        assert response.mismatch.system_amount == Decimal("8500.00")
        assert response.mismatch.difference == Decimal("500.00")
        assert entry.invoice_date == date(2024, 6, 10)
        assert entry.reconciliation_notes == "Sconto non riportato in fattura"

    @pytest.mark.asyncio
    async def test_numero_fattura_duplicato(self, service, mock_db, entry):
        """Test numero fattura già usato da un'altra scheda."""
        mock_db.execute.side_effect = [scalar_result(entry), scalar_result(uuid.uuid4())]

        with pytest.raises(DuplicateError):
            await service.reconcile(
                mock_db, entry.id, ReconcileRequest(invoice_number="INV-1"), TODAY
            )

    @pytest.mark.asyncio
    async def test_scadenza_di_default(self, service, mock_db, entry):
        """Test termini di pagamento configurati applicati se scadenza assente."""
        mock_db.execute.side_effect = [scalar_result(entry), scalar_result(None)]

        with patch.object(billing_service_module, "settings", Settings(default_payment_terms_days=30)):
            await service.reconcile(
                mock_db,
                entry.id,
                ReconcileRequest(invoice_number="INV-2", invoice_date=date(2024, 6, 1)),
                TODAY,
            )

        assert entry.due_date == date(2024, 7, 1)


class TestSetInvoiceNumber:
    """Test numero fattura."""

    @pytest.mark.asyncio
    async def test_numero_valorizzato_fatturata(self, service, mock_db, entry):
        """Test numero non vuoto: scheda fatturata."""
        mock_db.execute.side_effect = [scalar_result(entry), scalar_result(None)]

        result = await service.set_invoice_number(mock_db, entry.id, "INV-7", TODAY)

        assert entry.invoice_number == "INV-7"
        assert result.billing_status == BillingStatus.INVOICED
        assert entry.due_date is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("number", [None, "", "   "])
    async def test_numero_vuoto_torna_in_bozza(self, service, mock_db, number):
        """Test numero vuoto: scheda in bozza."""
        entry = MockVehicleInward(billing_status="invoiced", invoice_number="INV-8")
        mock_db.execute.return_value = scalar_result(entry)

        await service.set_invoice_number(mock_db, entry.id, number, TODAY)

        assert entry.invoice_number is None
        assert entry.billing_status == "draft"

    @pytest.mark.asyncio
    async def test_scheda_chiusa(self, service, mock_db, entry_closed):
        """Test scheda chiusa: ConflictError."""
        mock_db.execute.return_value = scalar_result(entry_closed)

        with pytest.raises(ConflictError):
            await service.set_invoice_number(mock_db, entry_closed.id, "INV-9", TODAY)


# ============================================================
# Sconti, scadenze, completamento
# ============================================================


class TestSetDiscount:
    """Test sconto."""

    @pytest.mark.asyncio
    async def test_sconto_valido(self, service, mock_db, entry):
        """Test sconto con percentuale derivata e importo finale riallineato."""
        entry.net_payable = Decimal("10000")
        mock_db.execute.return_value = scalar_result(entry)
        data = DiscountUpdate(
            discount_amount=Decimal("1500"),
            discount_offered_by="Sales Manager",
            discount_reason="Festival offer",
        )

        result = await service.set_discount(mock_db, entry.id, data, TODAY)

        assert entry.discount_percentage == Decimal("15.00")
        assert entry.final_amount == Decimal("8500")
        assert entry.net_payable is None
        assert result.figures.net_payable == Decimal("8500.00")

    @pytest.mark.asyncio
    async def test_sconto_oltre_il_totale(self, service, mock_db, entry):
        """Test sconto superiore al totale rifiutato."""
        mock_db.execute.return_value = scalar_result(entry)

        with pytest.raises(BusinessValidationError):
            await service.set_discount(
                mock_db, entry.id, DiscountUpdate(discount_amount=Decimal("10000.01")), TODAY
            )

    @pytest.mark.asyncio
    async def test_scheda_chiusa(self, service, mock_db, entry_closed):
        """Test sconto su scheda chiusa: ConflictError."""
        mock_db.execute.return_value = scalar_result(entry_closed)

        with pytest.raises(ConflictError):
            await service.set_discount(
                mock_db, entry_closed.id, DiscountUpdate(discount_amount=Decimal("100")), TODAY
            )


class TestDueDateAndCompletion:
    """Test scadenza e completamento."""

    @pytest.mark.asyncio
    async def test_scadenza_passata_sposta_in_overdue(self, service, mock_db, entry_partially_paid):
        """Test scadenza ieri su scheda con acconto: tab scadute."""
        mock_db.execute.return_value = scalar_result(entry_partially_paid)

        result = await service.set_due_date(
            mock_db, entry_partially_paid.id, TODAY - timedelta(days=1), TODAY
        )

        assert result.bucket == Bucket.OVERDUE
        assert result.payment_status == PaymentStatus.OVERDUE

    @pytest.mark.asyncio
    async def test_completata_passa_in_settled(self, service, mock_db, entry_partially_paid):
        """Test scheda completata: tab 'settled' anche con saldo aperto."""
        mock_db.execute.return_value = scalar_result(entry_partially_paid)

        result = await service.mark_completed(mock_db, entry_partially_paid.id, TODAY)

        assert entry_partially_paid.status == "completed"
        assert entry_partially_paid.completed_at is not None
        assert result.bucket == Bucket.SETTLED


# ============================================================
# Letture e report
# ============================================================


def _sample_entries():
    """Quattro schede: bozza, acconto, scaduta, consegnata."""
    draft, partial, overdue, delivered = make_entries(4)
    partial.payments = [MockPayment(amount=Decimal("4000"))]
    overdue.payments = [MockPayment(amount=Decimal("2000"))]
    overdue.due_date = TODAY - timedelta(days=3)
    delivered.status = "delivered"
    return draft, partial, overdue, delivered


class TestListEntries:
    """Test elenco schede per tab."""

    @pytest.mark.asyncio
    async def test_partizione_e_id_progressivi(self, service, mock_db):
        """Test ogni scheda attiva in un solo tab con ID calcolati sulle schede attive."""
        draft, partial, overdue, delivered = _sample_entries()
        entries = [draft, partial, overdue, delivered]

        seen = {}
        for bucket in Bucket:
            mock_db.execute.return_value = scalars_result(entries)
            result = await service.list_entries(mock_db, bucket, TODAY)
            for item in result.items:
                assert item.id not in seen
                seen[item.id] = (bucket, item.display_id, result.display_id_scope)

        assert seen[draft.id] == (Bucket.BILLING_ENTRIES, "Z01", "active")
        assert seen[partial.id] == (Bucket.PARTIAL_PAYMENT, "Z02", "active")
        assert seen[overdue.id] == (Bucket.OVERDUE, "Z03", "active")
        assert seen[delivered.id] == (Bucket.SETTLED, "Z01", "settled")

    @pytest.mark.asyncio
    async def test_ricerca_non_cambia_numerazione(self, service, mock_db):
        """Test la ricerca filtra le righe ma non rinumera."""
        first, second = make_entries(2)
        second.customer_name = "Priya Nair"
        mock_db.execute.return_value = scalars_result([first, second])

        result = await service.list_entries(mock_db, Bucket.BILLING_ENTRIES, TODAY, search="priya")

        assert result.total == 1
        assert result.items[0].display_id == "Z02"

    @pytest.mark.asyncio
    async def test_paginazione_piu_recenti_prima(self, service, mock_db):
        """Test paginazione con le schede più recenti in testa."""
        entries = make_entries(5)
        mock_db.execute.return_value = scalars_result(entries)

        result = await service.list_entries(
            mock_db, Bucket.BILLING_ENTRIES, TODAY, page=2, per_page=2
        )

        assert result.total == 5
        assert result.total_pages == 3
        assert [item.display_id for item in result.items] == ["Z03", "Z02"]


class TestGetEntry:
    """Test dettaglio scheda."""

    @pytest.mark.asyncio
    async def test_dettaglio_con_id_progressivo(self, service, mock_db):
        """Test ID calcolato sull'insieme delle schede attive."""
        draft, partial, overdue, delivered = _sample_entries()
        rows = [
            SimpleNamespace(id=e.id, status=e.status, created_at=e.created_at)
            for e in (draft, partial, overdue, delivered)
        ]
        mock_db.execute.side_effect = [scalar_result(overdue), rows_result(rows)]

        result = await service.get_entry(mock_db, overdue.id, TODAY)

        assert result.display_id == "Z03"
        assert result.figures.balance_due == Decimal("8000.00")
        assert result.bucket == Bucket.OVERDUE


class TestStatsAndLedger:
    """Test statistiche e mastrino."""

    @pytest.mark.asyncio
    async def test_statistiche(self, service, mock_db):
        """Test statistiche sulle schede attive con netto positivo."""
        draft, partial, overdue, delivered = _sample_entries()
        empty = MockVehicleInward(line_items=[])
        closed = MockVehicleInward(
            billing_status="closed",
            created_at=datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc),
        )
        closed.payments = [
            MockPayment(amount=Decimal("6000"), payment_date=date(2024, 6, 5)),
            MockPayment(amount=Decimal("4000"), payment_date=date(2024, 6, 9)),
        ]
        mock_db.execute.return_value = scalars_result(
            [draft, partial, overdue, delivered, empty, closed]
        )

        stats = await service.get_stats(mock_db, TODAY)

        assert stats.total_entries == 4
        assert stats.total_revenue == Decimal("16000.00")
        assert stats.total_receivable == Decimal("24000.00")
        assert stats.outstanding_amount == Decimal("8000.00")
        assert stats.partial_payments_count == 1
        assert stats.overdue_entries == 1
        assert stats.average_payment_time == Decimal("4.0")

    @pytest.mark.asyncio
    async def test_mastrino(self, service, mock_db):
        """Test mastrino su tutte le schede."""
        draft, partial, _, _ = _sample_entries()
        mock_db.execute.return_value = scalars_result([draft, partial])

        ledger = await service.get_ledger(mock_db, LedgerGroupBy.CUSTOMER)

        assert [line.line_type for line in ledger][:2] == ["bill", "bill"]
        assert ledger[-1].balance == Decimal("16000.00")
