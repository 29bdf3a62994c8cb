"""
Database Setup - creación y eliminación del esquema de workflows.

Usado en desarrollo y tests; en producción el esquema lo gestiona Alembic.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from workflow_engine.models.db import Base

logger = logging.getLogger(__name__)


async def create_tables(engine: AsyncEngine) -> None:
    """Crea todas las tablas en la base de datos."""
    try:
        async with engine.begin() as conn:
            logger.info("Creando tablas de workflow...")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tablas creadas exitosamente")
    except Exception as e:
        logger.error(f"Error creando tablas: {e}")
        raise


async def drop_tables(engine: AsyncEngine) -> None:
    """Elimina todas las tablas de la base de datos."""
    try:
        async with engine.begin() as conn:
            logger.info("Eliminando tablas de workflow...")
            await conn.run_sync(Base.metadata.drop_all)
            logger.info("Tablas eliminadas exitosamente")
    except Exception as e:
        logger.error(f"Error eliminando tablas: {e}")
        raise
