from fastapi import APIRouter

from app.core.config import settings
from app.core.database import ping_db

router = APIRouter()


@router.get("/health")
async def health_check():
    database_ok = await ping_db()
    return {
        "status": "ok" if database_ok else "degraded",
        "environment": settings.ENVIRONMENT,
        "persistence": settings.persistence_backend,
        "database": database_ok,
    }
