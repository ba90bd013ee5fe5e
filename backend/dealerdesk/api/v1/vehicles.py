"""
Router FastAPI per l'entità VehicleInward
Progetto: DealerDesk (Gestionale Concessionaria)

Definisce gli endpoint API per l'accettazione veicoli e la coda
di lavoro degli installatori.
"""

import logging
import math
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.config import settings
from dealerdesk.core.database import get_db
from dealerdesk.schemas.vehicle_inward import (
    VehicleInwardCreate,
    VehicleInwardList,
    VehicleInwardRead,
    VehicleInwardUpdate,
    VehicleStatus,
    VehicleStatusUpdate,
)
from dealerdesk.services.vehicle_inward_service import vehicle_inward_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    prefix="/vehicles",
    tags=["Veicoli"],
)


# -------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------

# IMPORTANTE: l'ordine delle route è intenzionale.
# GET /installer-queue deve essere definito PRIMA di GET /{entry_id}
# per evitare che FastAPI interpreti "installer-queue" come un UUID.

@router.get(
    "/",
    name="veicoli_lista",
    summary="Lista schede veicolo",
    description="Recupera la lista paginata delle schede con filtro per stato e ricerca.",
    response_model=VehicleInwardList,
    status_code=status.HTTP_200_OK,
)
async def get_vehicles(
    status_filter: Optional[VehicleStatus] = Query(None, alias="status", description="Stato operativo"),
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: Optional[int] = Query(None, ge=1, le=settings.max_page_size, description="Elementi per pagina"),
    search: Optional[str] = Query(None, description="Ricerca su cliente, telefono, targa, modello"),
    db: AsyncSession = Depends(get_db),
) -> VehicleInwardList:
    """
    Recupera la lista paginata delle schede veicolo.

    Args:
        status_filter: Stato operativo (opzionale)
        page: Numero pagina (default 1)
        per_page: Elementi per pagina (default da configurazione)
        search: Termine di ricerca opzionale
        db: Sessione database
    """
    per_page = per_page or settings.default_page_size
    entries, total = await vehicle_inward_service.get_all(
        db=db,
        status=status_filter,
        search=search,
        page=page,
        per_page=per_page,
    )

    return VehicleInwardList(
        items=[VehicleInwardRead.model_validate(e) for e in entries],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=math.ceil(total / per_page) if total else 0,
    )


@router.get(
    "/installer-queue",
    name="veicoli_coda_installatori",
    summary="Coda installatori",
    description="Schede in attesa, in lavorazione o in installazione, più vecchie prima.",
    response_model=list[VehicleInwardRead],
    status_code=status.HTTP_200_OK,
)
async def get_installer_queue(
    db: AsyncSession = Depends(get_db),
) -> list[VehicleInwardRead]:
    entries = await vehicle_inward_service.get_installer_queue(db=db)
    return [VehicleInwardRead.model_validate(e) for e in entries]


@router.get(
    "/{entry_id}",
    name="veicolo_dettaglio",
    summary="Dettaglio scheda veicolo",
    response_model=VehicleInwardRead,
    status_code=status.HTTP_200_OK,
)
async def get_vehicle(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> VehicleInwardRead:
    """
    Recupera i dettagli di una scheda.

    Raises:
        NotFoundError: Se la scheda non esiste
    """
    entry = await vehicle_inward_service.get_by_id(db=db, entry_id=entry_id)
    return VehicleInwardRead.model_validate(entry)


@router.post(
    "/",
    name="veicolo_crea",
    summary="Accettazione veicolo",
    description="Registra l'ingresso di un veicolo con le lavorazioni richieste.",
    response_model=VehicleInwardRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_vehicle(
    data: VehicleInwardCreate,
    db: AsyncSession = Depends(get_db),
) -> VehicleInwardRead:
    entry = await vehicle_inward_service.create(db=db, data=data)
    await db.commit()
    return VehicleInwardRead.model_validate(entry)


@router.patch(
    "/{entry_id}",
    name="veicolo_aggiorna",
    summary="Aggiorna scheda veicolo",
    description="Aggiorna dati di accettazione e lavorazioni di una scheda non chiusa.",
    response_model=VehicleInwardRead,
    status_code=status.HTTP_200_OK,
)
async def update_vehicle(
    entry_id: uuid.UUID,
    data: VehicleInwardUpdate,
    db: AsyncSession = Depends(get_db),
) -> VehicleInwardRead:
    """
    Aggiorna una scheda esistente.

    Raises:
        NotFoundError: Se la scheda non esiste
        409 Conflict: Se la scheda è chiusa contabilmente
    """
    entry = await vehicle_inward_service.update(db=db, entry_id=entry_id, data=data)
    await db.commit()
    return VehicleInwardRead.model_validate(entry)


@router.patch(
    "/{entry_id}/status",
    name="veicolo_stato",
    summary="Cambia stato lavorazione",
    response_model=VehicleInwardRead,
    status_code=status.HTTP_200_OK,
)
async def update_vehicle_status(
    entry_id: uuid.UUID,
    data: VehicleStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> VehicleInwardRead:
    entry = await vehicle_inward_service.update_status(
        db=db,
        entry_id=entry_id,
        status=data.status,
    )
    await db.commit()
    return VehicleInwardRead.model_validate(entry)
