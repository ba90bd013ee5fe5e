"""
API v1 Routes
Progetto: DealerDesk (Gestionale Concessionaria)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from dealerdesk.api.v1 import billing, vehicles

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(vehicles.router)
api_v1_router.include_router(billing.router)

# Esportazione
__all__ = ["api_v1_router"]
