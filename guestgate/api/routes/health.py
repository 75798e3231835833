from fastapi import APIRouter

from guestgate.core.config import get_settings

router = APIRouter()
settings = get_settings()


@router.get("/health")
def health():
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT,
        "timezone": settings.TIMEZONE,
    }
