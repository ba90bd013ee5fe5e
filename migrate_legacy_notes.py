"""
Migrazione una tantum della vecchia colonna notes.
Progetto: DealerDesk (Gestionale Concessionaria)

Le schede storiche salvavano sconto, numero fattura e note di
riconciliazione in un blob JSON nella colonna notes. Lo script porta quei
dati nelle colonne dedicate (solo se ancora vuote) e lascia in notes il
solo testo libero.

Uso:
    python migrate_legacy_notes.py            # applica le modifiche
    python migrate_legacy_notes.py --dry-run  # mostra cosa cambierebbe
"""

import argparse
import asyncio
import json
import logging
import os
import sys

# Aggiungi backend/ alla PYTHONPATH per importare dealerdesk.*
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from sqlalchemy import select

from dealerdesk.core.config import settings
from dealerdesk.core.database import AsyncSessionLocal, engine
from dealerdesk.models import VehicleInward
from dealerdesk.services.billing_engine import (
    apply_discount,
    derive_discount_percentage,
    line_items_total,
    parse_legacy_notes,
)

logger = logging.getLogger("migrate_legacy_notes")


def migrate_entry(entry: VehicleInward) -> bool:
    """
    Applica le note interpretate a una scheda.

    Returns:
        True se la scheda è stata modificata
    """
    parsed = parse_legacy_notes(entry.notes)
    changed = False

    if parsed.discount is not None and not entry.discount_amount:
        total = line_items_total(entry.line_items or [])
        entry.discount_amount = min(parsed.discount.discount_amount, total)
        entry.discount_percentage = derive_discount_percentage(
            total, entry.discount_amount, parsed.discount.discount_percentage
        )
        entry.discount_offered_by = parsed.discount.discount_offered_by
        entry.discount_reason = parsed.discount.discount_reason
        entry.final_amount = apply_discount(total, entry.discount_amount)
        changed = True

    if parsed.invoice_number and not entry.invoice_number:
        entry.invoice_number = parsed.invoice_number
        if entry.billing_status == "draft":
            entry.billing_status = "invoiced"
        changed = True

    if parsed.reconciliation_notes and not entry.reconciliation_notes:
        entry.reconciliation_notes = parsed.reconciliation_notes
        changed = True

    remarks = parsed.remarks
    if parsed.unknown_fields:
        # Campi non riconosciuti: restano nel testo libero
        unknown = json.dumps(parsed.unknown_fields, ensure_ascii=False, sort_keys=True, default=str)
        logger.warning(f"Scheda {entry.id}: campi note non riconosciuti conservati: {unknown}")
        remarks = f"{remarks}\n{unknown}" if remarks else unknown

    if entry.notes != remarks:
        entry.notes = remarks
        changed = True

    return changed


async def migrate(dry_run: bool) -> None:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(VehicleInward).where(VehicleInward.notes.is_not(None))
        )
        entries = list(result.scalars().all())
        logger.info(f"Schede con note da esaminare: {len(entries)}")

        migrated = 0
        for entry in entries:
            if migrate_entry(entry):
                migrated += 1
                logger.info(
                    f"Scheda {entry.id} ({entry.registration_number}): "
                    f"fattura={entry.invoice_number} sconto={entry.discount_amount}"
                )

        if dry_run:
            await session.rollback()
            logger.info(f"Dry run: {migrated} schede verrebbero aggiornate")
        else:
            await session.commit()
            logger.info(f"Migrazione completata: {migrated} schede aggiornate")

    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Migra le vecchie note JSON nelle colonne dedicate")
    parser.add_argument("--dry-run", action="store_true", help="Non salva le modifiche")
    args = parser.parse_args()
    asyncio.run(migrate(args.dry_run))
