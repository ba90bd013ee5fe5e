"""
API Routes
Progetto: DealerDesk (Gestionale Concessionaria)

Modulo per l'aggregazione dei router versionati.
"""

from dealerdesk.api.v1 import api_v1_router

# Esportazione router
__all__ = ["api_v1_router"]
