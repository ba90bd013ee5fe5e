"""
Accesso al database - SQLAlchemy 2.0 Async
Progetto: DealerDesk (Gestionale Concessionaria)

Engine e sessioni per le schede veicolo e i pagamenti. Le operazioni
contabili bloccano la riga della scheda (SELECT ... FOR UPDATE): su
PostgreSQL l'attesa del lock è limitata da db_lock_timeout_ms, così una
richiesta concorrente fallisce invece di restare appesa.
"""

import logging
from typing import Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from dealerdesk.core.config import Settings, settings

logger = logging.getLogger(__name__)


def _connect_args(config: Settings) -> dict[str, Any]:
    """Parametri di connessione specifici del driver."""
    url = make_url(config.database_url)
    if url.get_backend_name() != "postgresql":
        return {}

    server_settings = {"application_name": config.app_name.lower()}
    if config.db_lock_timeout_ms > 0:
        server_settings["lock_timeout"] = str(config.db_lock_timeout_ms)
    return {"server_settings": server_settings}


def _engine_options(config: Settings) -> dict[str, Any]:
    """Opzioni dell'engine: il pool si applica solo ai database server."""
    options: dict[str, Any] = {
        "echo": config.debug,
        "connect_args": _connect_args(config),
    }
    if make_url(config.database_url).get_backend_name() != "sqlite":
        options.update(
            pool_pre_ping=True,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
        )
    return options


# ------------------------------------------------------------
# Engine e Session Factory
# ------------------------------------------------------------
engine: AsyncEngine = create_async_engine(settings.database_url, **_engine_options(settings))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    # I service leggono gli importi dopo il commit della route
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Sessione per richiesta HTTP.

    Il commit spetta alla route; in caso di eccezione la transazione
    viene annullata, così un pagamento rifiutato non lascia scritture.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Verifica all'avvio che il database sia raggiungibile."""
    target = make_url(settings.database_url).render_as_string(hide_password=True)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database %s non raggiungibile: %s", target, e)
        raise
    logger.info("Connessione al database %s stabilita", target)


async def close_db() -> None:
    """Rilascia il pool di connessioni allo shutdown."""
    await engine.dispose()
    logger.info("Connessioni database chiuse")
