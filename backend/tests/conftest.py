"""
Pytest configuration and fixtures for DealerDesk tests.

I record sono mock semplici (kwargs con default) così che motore e
service possano essere testati senza database.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession


# ============================================================
# Date di riferimento
# ============================================================

TODAY = date(2024, 6, 15)


@pytest.fixture
def today():
    """Data di riferimento fissa per scadenze e classificazione."""
    return TODAY


# ============================================================
# Fixtures per AsyncSession Mock
# ============================================================


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.delete = AsyncMock()
    return db


def scalar_result(value):
    """Risultato di db.execute per scalar_one_or_none()."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def scalars_result(values):
    """Risultato di db.execute per scalars().all()."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(values)
    return result


def rows_result(rows):
    """Risultato di db.execute per all()."""
    result = MagicMock()
    result.all.return_value = list(rows)
    return result


# ============================================================
# Mock dei record (senza importare i modelli)
# ============================================================


class MockPayment:
    """Mock di Payment."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.vehicle_inward_id = kwargs.get('vehicle_inward_id', uuid.uuid4())
        self.amount = kwargs.get('amount', Decimal("1000.00"))
        self.payment_method = kwargs.get('payment_method', 'cash')
        self.payment_date = kwargs.get('payment_date', TODAY)
        self.reference_number = kwargs.get('reference_number', None)
        self.notes = kwargs.get('notes', None)
        self.created_at = kwargs.get(
            'created_at', datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
        )


class MockVehicleInward:
    """Mock di VehicleInward."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.customer_name = kwargs.get('customer_name', 'Rahul Sharma')
        self.customer_phone = kwargs.get('customer_phone', '9876543210')
        self.customer_email = kwargs.get('customer_email', None)
        self.registration_number = kwargs.get('registration_number', 'MH12AB1234')
        self.make = kwargs.get('make', 'Hyundai')
        self.model = kwargs.get('model', 'Creta')
        self.year = kwargs.get('year', 2023)
        self.color = kwargs.get('color', None)
        self.vehicle_type = kwargs.get('vehicle_type', None)
        self.odometer_reading = kwargs.get('odometer_reading', None)
        self.priority = kwargs.get('priority', 'medium')
        self.issues_reported = kwargs.get('issues_reported', None)
        self.estimated_completion_date = kwargs.get('estimated_completion_date', None)
        self.status = kwargs.get('status', 'pending')
        self.line_items = kwargs.get('line_items', [
            {"product": "Seat covers", "brand": "Autoform", "price": "10000", "department": "Interior"},
        ])
        self.completed_at = kwargs.get('completed_at', None)
        self.discount_amount = kwargs.get('discount_amount', None)
        self.discount_percentage = kwargs.get('discount_percentage', None)
        self.discount_offered_by = kwargs.get('discount_offered_by', None)
        self.discount_reason = kwargs.get('discount_reason', None)
        self.tax_amount = kwargs.get('tax_amount', None)
        self.net_payable = kwargs.get('net_payable', None)
        self.final_amount = kwargs.get('final_amount', None)
        self.due_date = kwargs.get('due_date', None)
        self.billing_status = kwargs.get('billing_status', 'draft')
        self.invoice_number = kwargs.get('invoice_number', None)
        self.invoice_date = kwargs.get('invoice_date', None)
        self.invoice_amount = kwargs.get('invoice_amount', None)
        self.reconciliation_notes = kwargs.get('reconciliation_notes', None)
        self.billing_closed_at = kwargs.get('billing_closed_at', None)
        self.notes = kwargs.get('notes', None)
        self.payments = kwargs.get('payments', [])
        self.created_at = kwargs.get(
            'created_at', datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
        )
        self.updated_at = kwargs.get('updated_at', self.created_at)

    @property
    def total_amount(self):
        return sum(
            (Decimal(str(item.get("price", 0))) for item in self.line_items),
            Decimal("0"),
        )

    @property
    def is_billing_closed(self):
        return self.billing_status == "closed"


def make_entries(count, start=None, **kwargs):
    """Crea `count` schede create a un giorno di distanza l'una dall'altra."""
    start = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    return [
        MockVehicleInward(created_at=start + timedelta(days=index), **kwargs)
        for index in range(count)
    ]


# ============================================================
# Fixtures per le schede
# ============================================================


@pytest.fixture
def entry():
    """Scheda in bozza da 10000 senza pagamenti."""
    return MockVehicleInward()


@pytest.fixture
def entry_partially_paid():
    """Scheda da 10000 con un acconto di 4000."""
    entry = MockVehicleInward(billing_status="invoiced", invoice_number="INV-001")
    entry.payments = [MockPayment(vehicle_inward_id=entry.id, amount=Decimal("4000"))]
    return entry


@pytest.fixture
def entry_closed():
    """Scheda chiusa e saldata."""
    entry = MockVehicleInward(
        billing_status="closed",
        invoice_number="INV-002",
        billing_closed_at=datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc),
    )
    entry.payments = [MockPayment(vehicle_inward_id=entry.id, amount=Decimal("10000"))]
    return entry
