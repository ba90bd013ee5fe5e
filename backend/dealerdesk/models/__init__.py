"""
Modelli Database SQLAlchemy
Progetto: DealerDesk (Gestionale Concessionaria)

Import centralizzato di tutti i modelli per create_all e usage generico.

Modelli:
- VehicleInward: Scheda di ingresso veicolo (accettazione + dati contabili)
- Payment: Pagamenti registrati sulle schede
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from dealerdesk.models.vehicle_inward import VehicleInward
from dealerdesk.models.payment import Payment

__all__ = [
    "Base",
    "VehicleInward",
    "Payment",
]
