"""
Service Layer per l'entità VehicleInward
Progetto: DealerDesk (Gestionale Concessionaria)

Definisce la logica di business per l'accettazione dei veicoli e il
tracciamento delle lavorazioni degli installatori.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealerdesk.core.exceptions import ConflictError, NotFoundError
from dealerdesk.models import VehicleInward
from dealerdesk.schemas.vehicle_inward import (
    INSTALLER_QUEUE_STATUSES,
    VehicleInwardCreate,
    VehicleInwardUpdate,
    VehicleStatus,
)
from dealerdesk.services.billing_engine import (
    apply_discount,
    derive_discount_percentage,
    is_terminal_status,
    line_items_total,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)


class VehicleInwardService:
    """
    Service per la gestione delle schede di ingresso veicolo.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.
    """

    async def get_all(
        self,
        db: AsyncSession,
        status: Optional[VehicleStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[VehicleInward], int]:
        """
        Recupera la lista paginata delle schede, più recenti prima.

        Args:
            db: Sessione database
            status: Filtro per stato operativo (opzionale)
            search: Ricerca su cliente, telefono, targa e modello
            page: Numero pagina (default 1)
            per_page: Elementi per pagina

        Returns:
            Tuple di (lista schede, totale count)
        """
        filter_conditions = []

        if status is not None:
            filter_conditions.append(VehicleInward.status == status.value)

        if search:
            search_term = f"%{search.strip()}%"
            filter_conditions.append(
                or_(
                    VehicleInward.customer_name.ilike(search_term),
                    VehicleInward.customer_phone.ilike(search_term),
                    VehicleInward.registration_number.ilike(search_term),
                    VehicleInward.model.ilike(search_term),
                )
            )

        query = select(VehicleInward)
        if filter_conditions:
            query = query.where(*filter_conditions)

        offset = (page - 1) * per_page
        query = query.order_by(VehicleInward.created_at.desc()).offset(offset).limit(per_page)
        result = await db.execute(query)
        entries = list(result.scalars().all())

        count_query = select(func.count()).select_from(VehicleInward)
        if filter_conditions:
            count_query = count_query.where(*filter_conditions)
        count_result = await db.execute(count_query)
        total = count_result.scalar() or 0

        logger.debug(f"Recuperate {len(entries)} schede veicolo su {total} totali")

        return entries, total

    async def get_by_id(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
    ) -> VehicleInward:
        """
        Recupera una scheda tramite ID.

        Raises:
            NotFoundError: Se la scheda non esiste
        """
        result = await db.execute(
            select(VehicleInward).where(VehicleInward.id == entry_id)
        )
        entry = result.scalar_one_or_none()

        if entry is None:
            logger.warning(f"Scheda veicolo non trovata: {entry_id}")
            raise NotFoundError(f"Scheda veicolo {entry_id} non trovata")

        return entry

    async def create(
        self,
        db: AsyncSession,
        data: VehicleInwardCreate,
    ) -> VehicleInward:
        """
        Registra l'ingresso di un nuovo veicolo.

        La scheda nasce in stato 'pending' con billing_status 'draft'.

        Args:
            db: Sessione database
            data: Dati di accettazione

        Returns:
            Oggetto VehicleInward appena creato
        """
        entry_dict = data.model_dump(exclude={"line_items", "priority"})
        line_items = [item.to_json() for item in data.line_items]

        entry = VehicleInward(
            **entry_dict,
            priority=data.priority.value,
            line_items=line_items,
            status=VehicleStatus.PENDING.value,
            billing_status="draft",
            final_amount=line_items_total(line_items),
        )

        db.add(entry)
        await db.flush()
        await db.refresh(entry)

        logger.info(
            f"Registrato ingresso veicolo: {entry.id} - {entry.registration_number} "
            f"({len(line_items)} lavorazioni)"
        )
        return entry

    async def update(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        data: VehicleInwardUpdate,
    ) -> VehicleInward:
        """
        Aggiorna i dati di accettazione e le lavorazioni di una scheda.

        Le lavorazioni determinano il totale: modificarle su una scheda
        contabilmente chiusa non è consentito.

        Raises:
            NotFoundError: Se la scheda non esiste
            ConflictError: Se la scheda è chiusa contabilmente
        """
        entry = await self.get_by_id(db, entry_id)

        if entry.is_billing_closed:
            raise ConflictError(
                "Impossibile modificare una scheda chiusa contabilmente",
                error_code="BILLING_CLOSED",
            )

        update_data = data.model_dump(exclude_unset=True)

        if "line_items" in update_data:
            line_items = [item.to_json() for item in data.line_items or []]
            total_amount = line_items_total(line_items)
            discount = entry.discount_amount
            if discount is not None:
                if discount > total_amount:
                    logger.warning(
                        f"Scheda {entry.id}: sconto {discount} ridotto al nuovo totale {total_amount}"
                    )
                    discount = total_amount
                update_data["discount_amount"] = discount
                update_data["discount_percentage"] = derive_discount_percentage(
                    total_amount, discount
                )
            update_data["line_items"] = line_items
            update_data["final_amount"] = apply_discount(total_amount, discount)
            # Il netto precalcolato non riflette più le lavorazioni
            update_data["net_payable"] = None
        if update_data.get("priority") is not None:
            update_data["priority"] = data.priority.value

        for field, value in update_data.items():
            setattr(entry, field, value)

        await db.flush()
        await db.refresh(entry)

        logger.info(f"Aggiornata scheda veicolo: {entry.id}")
        return entry

    async def update_status(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        status: VehicleStatus,
    ) -> VehicleInward:
        """
        Cambia lo stato operativo della scheda.

        Il primo passaggio a uno stato terminale registra completed_at;
        i passaggi successivi non lo sovrascrivono.

        Raises:
            NotFoundError: Se la scheda non esiste
        """
        entry = await self.get_by_id(db, entry_id)
        old_status = entry.status

        entry.status = status.value
        if is_terminal_status(status.value) and entry.completed_at is None:
            entry.completed_at = datetime.now(timezone.utc)

        await db.flush()
        await db.refresh(entry)

        logger.info(f"Scheda {entry.id}: stato {old_status} -> {entry.status}")
        return entry

    async def get_installer_queue(
        self,
        db: AsyncSession,
    ) -> list[VehicleInward]:
        """
        Coda di lavoro degli installatori.

        Schede in attesa, in lavorazione o in installazione, più vecchie prima.
        """
        result = await db.execute(
            select(VehicleInward)
            .where(VehicleInward.status.in_(INSTALLER_QUEUE_STATUSES))
            .order_by(VehicleInward.created_at.asc())
        )
        return list(result.scalars().all())


# Istanza globale del service
vehicle_inward_service = VehicleInwardService()
